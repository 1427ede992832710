"""Shared test fixtures."""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from kronotrack.adapters.device_bridge import DeviceBridge
from kronotrack.adapters.timing_client import TimingClient
from kronotrack.config import Settings
from kronotrack.containers import AppContainer
from kronotrack.domain.models import (
    AuthorizationSnapshot,
    Identity,
    LocationFix,
    NotificationStatus,
)
from kronotrack.services.course import CourseService
from kronotrack.services.permissions import DeviceAuthorization, PermissionGate
from kronotrack.services.settings import SettingsRepository, SettingsService
from kronotrack.services.tracking import (
    LocationProvider,
    NotificationPort,
    TrackingNotice,
    TrackSessionService,
)
from kronotrack.services.upload import BackgroundExecution, LocationUploadThrottle

IDENTITY = Identity(event_id="E1", bib="42", birth_year="1990", race_code="ABC123")

TRACK_PAYLOAD: dict[str, object] = {
    "track": [[45.0, 5.0], [45.1, 5.1]],
    "markers": [],
    "firstName": "Jo",
    "lastName": "Doe",
    "eventName": "Trail X",
}

FULL_AUTHORIZATION = AuthorizationSnapshot(
    location_always=True,
    location_precise=True,
    notifications_granted=True,
    location_services_enabled=True,
    location_when_in_use=True,
)

START = datetime(2025, 6, 1, 8, 0, tzinfo=UTC)


@dataclass
class InMemorySettingsRepository(SettingsRepository):
    """In-memory settings repository for tests."""

    values: dict[str, str] = field(default_factory=dict)

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self.values[key] = value

    def delete(self, key: str) -> None:
        self.values.pop(key, None)


@dataclass
class FakeTimingClient(TimingClient):
    """Fake timing client with canned responses."""

    events_payload: object = field(default_factory=lambda: {"events": ["E1", "E2"]})
    track_payload: object = field(default_factory=lambda: dict(TRACK_PAYLOAD))
    track_error: Exception | None = None
    upload_error: Exception | None = None
    track_requests: list[dict[str, object]] = field(default_factory=list)
    uploads: list[dict[str, object]] = field(default_factory=list)

    async def list_events(self) -> dict[str, object]:
        return self.events_payload  # type: ignore[return-value]

    async def fetch_track(self, payload: dict[str, object]) -> dict[str, object]:
        self.track_requests.append(payload)
        if self.track_error is not None:
            raise self.track_error
        return self.track_payload  # type: ignore[return-value]

    async def update_location(self, payload: dict[str, object]) -> None:
        self.uploads.append(payload)
        if self.upload_error is not None:
            raise self.upload_error


@dataclass
class FakeDevice(
    DeviceAuthorization, LocationProvider, NotificationPort, BackgroundExecution
):
    """Scripted device that answers prompts immediately."""

    authorization: AuthorizationSnapshot = field(
        default_factory=lambda: AuthorizationSnapshot(
            location_precise=True, location_services_enabled=True
        )
    )
    notifications: NotificationStatus = NotificationStatus.NOT_DETERMINED
    grant_foreground: bool = True
    grant_background: bool = True
    grant_notifications: bool = True
    emits_change_events: bool = False
    prompts: list[str] = field(default_factory=list)
    running: bool = False
    posted: list[TrackingNotice] = field(default_factory=list)
    clears: int = 0
    opened: list[str] = field(default_factory=list)
    closed: list[str] = field(default_factory=list)

    def snapshot(self) -> AuthorizationSnapshot:
        return self.authorization

    def prompt_foreground_location(self) -> None:
        self.prompts.append("foreground")
        if self.grant_foreground:
            self._update(location_when_in_use=True)

    def prompt_background_location(self) -> None:
        self.prompts.append("background")
        if self.grant_background:
            self._update(location_always=True)

    def notification_status(self) -> NotificationStatus:
        return self.notifications

    async def prompt_notifications(self) -> bool:
        self.prompts.append("notifications")
        self.notifications = (
            NotificationStatus.GRANTED
            if self.grant_notifications
            else NotificationStatus.DENIED
        )
        self._update(notifications_granted=self.grant_notifications)
        return self.grant_notifications

    def start_updates(self) -> None:
        self.running = True

    def stop_updates(self) -> None:
        self.running = False

    def post(self, notice: TrackingNotice) -> None:
        self.posted.append(notice)

    def clear(self) -> None:
        self.clears += 1

    def begin(self, name: str, on_expiration: Callable[[], None]) -> str:
        ticket_id = f"ticket-{len(self.opened) + 1}"
        self.opened.append(ticket_id)
        return ticket_id

    def end(self, ticket_id: str) -> None:
        self.closed.append(ticket_id)

    def _update(self, **changes: bool) -> None:
        values = {
            "location_always": self.authorization.location_always,
            "location_precise": self.authorization.location_precise,
            "notifications_granted": self.authorization.notifications_granted,
            "location_services_enabled": self.authorization.location_services_enabled,
            "location_when_in_use": self.authorization.location_when_in_use,
        }
        values.update(changes)
        self.authorization = AuthorizationSnapshot(**values)


@dataclass
class FakeClock:
    """Manually advanced clock."""

    now: datetime = START

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_fix(
    seconds: float = 0, latitude: float = 45.0, longitude: float = 5.0
) -> LocationFix:
    return LocationFix(
        latitude=latitude,
        longitude=longitude,
        accuracy=5.0,
        timestamp=START + timedelta(seconds=seconds),
    )


def make_tracking_service(
    timing_client: FakeTimingClient | None = None,
    device: FakeDevice | None = None,
    repository: InMemorySettingsRepository | None = None,
    clock: FakeClock | None = None,
) -> TrackSessionService:
    """Build a session service over fakes; call inside a running loop."""
    timing_client = timing_client or FakeTimingClient()
    device = device or FakeDevice()
    clock = clock or FakeClock()
    throttle = LocationUploadThrottle(
        client=timing_client,
        background=device,
        upload_token="test-token",
        clock=clock,
    )
    return TrackSessionService(
        permission_gate=PermissionGate(
            device=device, settle_delay=0, settle_attempts=2
        ),
        course_service=CourseService(timing_client),
        throttle=throttle,
        settings_service=SettingsService(repository or InMemorySettingsRepository()),
        location_provider=device,
        notifications=device,
        clock=clock,
    )


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        upload_token="test-token",
        settings_path=str(tmp_path / "settings.json"),
    )


@pytest.fixture
def timing_client() -> FakeTimingClient:
    return FakeTimingClient()


@pytest.fixture
def device_bridge() -> DeviceBridge:
    return DeviceBridge(background_budget_seconds=30)


@pytest.fixture
def container(
    settings: Settings,
    timing_client: FakeTimingClient,
    device_bridge: DeviceBridge,
) -> AppContainer:
    settings_service = SettingsService(InMemorySettingsRepository())
    course_service = CourseService(timing_client)
    permission_gate = PermissionGate(device=device_bridge, settle_delay=0)
    throttle = LocationUploadThrottle(
        client=timing_client,
        background=device_bridge,
        upload_token=settings.upload_token,
    )
    tracking_service = TrackSessionService(
        permission_gate=permission_gate,
        course_service=course_service,
        throttle=throttle,
        settings_service=settings_service,
        location_provider=device_bridge,
        notifications=device_bridge,
    )

    async def close_resources() -> None:
        await tracking_service.close()

    return AppContainer(
        settings=settings,
        timing_client=timing_client,
        device=device_bridge,
        settings_service=settings_service,
        course_service=course_service,
        permission_gate=permission_gate,
        upload_throttle=throttle,
        tracking_service=tracking_service,
        close_resources=close_resources,
    )
