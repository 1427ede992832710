"""Tests for the control and device bridge endpoints."""

import httpx
import pytest
from fastapi.testclient import TestClient

from kronotrack.adapters.device_bridge import DeviceBridge
from kronotrack.api.app import create_app
from kronotrack.domain.models import NotificationStatus
from tests.conftest import FULL_AUTHORIZATION, FakeTimingClient

START_BODY = {
    "event_id": "E1",
    "bib": "42",
    "birth_year": "1990",
    "race_code": "ABC123",
}


def _wait_for_state(client: TestClient, state: str) -> dict[str, object]:
    for _ in range(50):
        body = client.get("/tracking").json()
        if body["state"] == state:
            return body
    raise AssertionError(f"tracking never reached {state}")


def _wait_for_prompt(client: TestClient, prompt: str) -> dict[str, object]:
    for _ in range(50):
        commands = client.get("/device/commands").json()
        if prompt in commands["prompts"]:
            return commands
    raise AssertionError(f"prompt {prompt} never issued")


def _authorize(device_bridge: DeviceBridge) -> None:
    device_bridge.authorization = FULL_AUTHORIZATION
    device_bridge.notifications_status = NotificationStatus.GRANTED


def test_health_endpoint(container) -> None:
    with TestClient(create_app(container)) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_events_endpoint(container) -> None:
    with TestClient(create_app(container)) as client:
        response = client.get("/events")

    assert response.json() == {"events": ["E1", "E2"]}


def test_events_endpoint_empty_when_server_fails(
    container, timing_client: FakeTimingClient
) -> None:
    timing_client.events_payload = {"unexpected": True}

    with TestClient(create_app(container)) as client:
        response = client.get("/events")

    assert response.status_code == 200
    assert response.json() == {"events": []}


def test_identity_round_trip(container) -> None:
    with TestClient(create_app(container)) as client:
        put = client.put("/identity", json={**START_BODY, "bib": " 42 "})
        response = client.get("/identity")

    assert put.status_code == 200
    assert response.json() == START_BODY


def test_start_reaches_active(
    container, device_bridge: DeviceBridge, timing_client: FakeTimingClient
) -> None:
    _authorize(device_bridge)

    with TestClient(create_app(container)) as client:
        response = client.post("/tracking/start", json=START_BODY)
        body = _wait_for_state(client, "active")
        commands = client.get("/device/commands").json()

    assert response.status_code == 202
    assert body["participant"] == {"display_name": "Jo Doe", "event_name": "Trail X"}
    assert body["has_track"] is True
    assert body["start_enabled"] is False
    assert body["identity_editable"] is False
    assert commands["location_updates"] is True
    assert commands["notices"] == ["tracking_active"]
    assert len(timing_client.track_requests) == 1


def test_start_with_invalid_identity_is_rejected(container) -> None:
    with TestClient(create_app(container)) as client:
        response = client.post(
            "/tracking/start", json={**START_BODY, "birth_year": "90"}
        )
        status_body = client.get("/tracking").json()

    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "validation_error"
    assert body["problems"]
    assert status_body["state"] == "idle"


def test_rejected_bib_is_reported_on_status(
    container, device_bridge: DeviceBridge, timing_client: FakeTimingClient
) -> None:
    _authorize(device_bridge)
    request = httpx.Request("POST", "https://live.test/track")
    timing_client.track_error = httpx.HTTPStatusError(
        "not found", request=request, response=httpx.Response(404, request=request)
    )

    with TestClient(create_app(container)) as client:
        client.post("/tracking/start", json=START_BODY)
        body = client.get("/tracking").json()
        for _ in range(50):
            if body["last_error"] is not None:
                break
            body = client.get("/tracking").json()

    assert body["state"] == "idle"
    assert body["last_error"]["error"] == "validation_rejected"
    assert body["last_error"]["reason"] == "invalid_bib_or_birth_year"


def test_prompt_sequence_through_the_bridge(
    container, device_bridge: DeviceBridge
) -> None:
    with TestClient(create_app(container)) as client:
        client.post(
            "/device/authorization",
            json={"location_services_enabled": True, "location_precise": True},
        )
        response = client.post("/tracking/start", json=START_BODY)
        _wait_for_prompt(client, "notifications")
        client.post("/device/notifications", json={"granted": True})
        _wait_for_prompt(client, "foreground_location")
        client.post(
            "/device/authorization",
            json={
                "location_services_enabled": True,
                "location_precise": True,
                "location_when_in_use": True,
            },
        )
        _wait_for_prompt(client, "background_location")
        client.post(
            "/device/authorization",
            json={
                "location_services_enabled": True,
                "location_precise": True,
                "location_when_in_use": True,
                "location_always": True,
                "notifications_granted": True,
            },
        )
        body = _wait_for_state(client, "active")

    assert response.status_code == 202
    assert response.json()["state"] == "pending_permission"
    assert body["participant"]["display_name"] == "Jo Doe"


def test_identity_frozen_while_active(
    container, device_bridge: DeviceBridge
) -> None:
    _authorize(device_bridge)

    with TestClient(create_app(container)) as client:
        client.post("/tracking/start", json=START_BODY)
        _wait_for_state(client, "active")
        response = client.put("/identity", json={**START_BODY, "bib": "7"})

    assert response.status_code == 409
    assert response.json()["error"] == "identity_frozen"


def test_stop_keeps_course_geometry(container, device_bridge: DeviceBridge) -> None:
    _authorize(device_bridge)

    with TestClient(create_app(container)) as client:
        client.post("/tracking/start", json=START_BODY)
        _wait_for_state(client, "active")
        stopped = client.post("/tracking/stop").json()
        geometry = client.get("/tracking/geometry").json()

    assert stopped["state"] == "stopped"
    assert stopped["start_enabled"] is True
    assert stopped["participant"] is None
    assert geometry["points"] == [[45.0, 5.0], [45.1, 5.1]]
    assert geometry["markers"][-1]["type"] == "start"
    assert geometry["markers"][-1]["icon"] == "flag"
    assert geometry["bounding_box"]["north"] > 45.1


def test_smoothed_geometry(container, device_bridge: DeviceBridge) -> None:
    _authorize(device_bridge)

    with TestClient(create_app(container)) as client:
        client.post("/tracking/start", json=START_BODY)
        _wait_for_state(client, "active")
        response = client.get("/tracking/geometry?smooth=true&segments=4")

    points = response.json()["points"]
    assert len(points) == 5
    assert points[0] == [45.0, 5.0]
    assert points[-1] == pytest.approx([45.1, 5.1])


def test_geometry_empty_before_any_fetch(container) -> None:
    with TestClient(create_app(container)) as client:
        response = client.get("/tracking/geometry")

    assert response.json() == {"points": [], "markers": [], "bounding_box": None}


def test_fix_is_uploaded_while_active(
    container, device_bridge: DeviceBridge, timing_client: FakeTimingClient
) -> None:
    _authorize(device_bridge)

    with TestClient(create_app(container)) as client:
        client.post("/tracking/start", json=START_BODY)
        _wait_for_state(client, "active")
        response = client.post(
            "/device/fix",
            json={
                "latitude": 45.05,
                "longitude": 5.05,
                "accuracy": 4.0,
                "timestamp_ms": 1_748_764_800_000,
            },
        )
        body = client.get("/tracking").json()

    assert response.status_code == 202
    assert body["last_position"]["latitude"] == 45.05
    assert len(timing_client.uploads) == 1
    upload = timing_client.uploads[0]
    assert upload["bib_number"] == 42
    assert upload["timestamp"] == 1_748_764_800_000
    assert upload["token"] == "test-token"


def test_authorization_downgrade_stops_tracking(
    container, device_bridge: DeviceBridge
) -> None:
    _authorize(device_bridge)

    with TestClient(create_app(container)) as client:
        client.post("/tracking/start", json=START_BODY)
        _wait_for_state(client, "active")
        client.get("/device/commands")
        body = client.post(
            "/device/authorization",
            json={
                "location_services_enabled": True,
                "location_precise": True,
                "location_when_in_use": True,
                "notifications_granted": True,
            },
        ).json()
        commands = client.get("/device/commands").json()

    assert body["state"] == "idle"
    assert body["last_notice"] == "stopped_permission_revoked"
    assert commands["notices"] == ["stopped_permission_revoked"]
    assert commands["location_updates"] is False


def test_expiring_unknown_ticket_returns_404(container) -> None:
    with TestClient(create_app(container)) as client:
        response = client.post("/device/background/missing/expire")

    assert response.status_code == 404
