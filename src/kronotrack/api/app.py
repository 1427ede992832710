"""FastAPI application factory."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from kronotrack.api.models import (
    AuthorizationPayload,
    IdentityPayload,
    LocationFixPayload,
    NotificationAnswerPayload,
)
from kronotrack.app_logging import configure_logging
from kronotrack.containers import AppContainer
from kronotrack.domain.errors import (
    IdentityValidationError,
    LocationServicesDisabledError,
    PermissionDeniedError,
    TrackFetchError,
    TrackingError,
    ValidationRejectedError,
)
from kronotrack.domain.geometry import (
    catmull_rom,
    marker_style,
    markers_with_start,
    padded_bounding_box,
)
from kronotrack.domain.models import Identity, TrackGeometry
from kronotrack.services.tracking import IdentityFrozenError, SessionStatus

_ERROR_STATUS: list[tuple[type[TrackingError], int]] = [
    (IdentityValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (IdentityFrozenError, status.HTTP_409_CONFLICT),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (LocationServicesDisabledError, status.HTTP_409_CONFLICT),
    (ValidationRejectedError, status.HTTP_400_BAD_REQUEST),
    (TrackFetchError, status.HTTP_502_BAD_GATEWAY),
]


def create_app(container: AppContainer) -> FastAPI:  # noqa: PLR0915
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        tracking = app.state.container.tracking_service
        tracking.start_actor()
        # Resumed starts finish in the background.
        resumed = tracking.resume()
        resumed.add_done_callback(
            lambda future: _log_resume_failure(logger, future)
        )
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    @app.exception_handler(TrackingError)
    async def tracking_error_handler(
        request: Request, exc: TrackingError
    ) -> JSONResponse:
        return JSONResponse(status_code=_status_for(exc), content=_error_body(exc))

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.get("/events")
    async def list_events(request: Request) -> dict[str, object]:
        """Return selectable events; empty when the server is unavailable."""
        state_container: AppContainer = request.app.state.container
        return {"events": await state_container.course_service.list_events()}

    @app.get("/identity")
    async def get_identity(request: Request) -> dict[str, object]:
        """Return the stored form fields."""
        state_container: AppContainer = request.app.state.container
        return _identity_body(state_container.settings_service.load_identity())

    @app.put("/identity")
    async def put_identity(
        payload: IdentityPayload, request: Request
    ) -> dict[str, object]:
        """Persist edited form fields."""
        state_container: AppContainer = request.app.state.container
        identity = payload.to_domain()
        state_container.tracking_service.update_identity(identity)
        return _identity_body(identity)

    @app.get("/tracking")
    async def tracking_status(request: Request) -> dict[str, object]:
        """Return the session status."""
        state_container: AppContainer = request.app.state.container
        return _status_body(state_container.tracking_service.status())

    @app.post("/tracking/start", status_code=status.HTTP_202_ACCEPTED)
    async def start_tracking(
        request: Request, payload: IdentityPayload | None = None
    ) -> dict[str, object]:
        """Begin a start; the outcome is reported by GET /tracking."""
        tracking = request.app.state.container.tracking_service
        future = tracking.request_start(payload.to_domain() if payload else None)
        await tracking.join()
        if future.done() and not future.cancelled() and future.exception():
            raise future.exception()
        return _status_body(tracking.status())

    @app.post("/tracking/stop")
    async def stop_tracking(request: Request) -> dict[str, object]:
        """Stop an active session."""
        tracking = request.app.state.container.tracking_service
        return _status_body(await tracking.stop())

    @app.get("/tracking/geometry")
    async def tracking_geometry(
        request: Request, smooth: bool = False, segments: int = 10
    ) -> dict[str, object]:
        """Return the course prepared for drawing."""
        geometry = request.app.state.container.tracking_service.geometry
        return _geometry_body(geometry or TrackGeometry(), smooth, segments)

    @app.post("/device/fix", status_code=status.HTTP_202_ACCEPTED)
    async def device_fix(
        payload: LocationFixPayload, request: Request
    ) -> dict[str, str]:
        """Accept a fix from the OS location provider."""
        request.app.state.container.tracking_service.deliver_fix(payload.to_domain())
        return {"status": "accepted"}

    @app.post("/device/authorization")
    async def device_authorization(
        payload: AuthorizationPayload, request: Request
    ) -> dict[str, object]:
        """Record an authorization or location-services change."""
        state_container: AppContainer = request.app.state.container
        state_container.device.update_authorization(payload.to_domain())
        state_container.tracking_service.authorization_changed()
        await state_container.tracking_service.join()
        return _status_body(state_container.tracking_service.status())

    @app.post("/device/notifications")
    async def device_notifications(
        payload: NotificationAnswerPayload, request: Request
    ) -> dict[str, str]:
        """Record the answer to the notification prompt."""
        request.app.state.container.device.answer_notifications(payload.granted)
        return {"status": "ok"}

    @app.get("/device/commands")
    async def device_commands(request: Request) -> dict[str, object]:
        """Return prompts and notices the shell has to act on."""
        return request.app.state.container.device.drain_commands()

    @app.post("/device/background/{ticket_id}/expire")
    async def device_background_expired(
        ticket_id: str, request: Request
    ) -> dict[str, str]:
        """Report that the OS ended a background execution ticket."""
        if not request.app.state.container.device.expire(ticket_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
        return {"status": "ok"}

    return app


def _log_resume_failure(logger: logging.Logger, future: asyncio.Future) -> None:
    if future.cancelled():
        return
    error = future.exception()
    if isinstance(error, TrackingError):
        logger.warning("Could not resume tracking: %s", error.message)
    elif error is not None:
        logger.error("Failed to resume tracking", exc_info=error)


def _status_for(exc: TrackingError) -> int:
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


def _error_body(exc: TrackingError) -> dict[str, object]:
    body: dict[str, object] = {"error": exc.kind, "message": exc.message}
    if isinstance(exc, PermissionDeniedError):
        body["permission"] = exc.permission.value
    if isinstance(exc, ValidationRejectedError):
        body["reason"] = exc.reason.value
    if isinstance(exc, IdentityValidationError):
        body["problems"] = exc.problems
    return body


def _identity_body(identity: Identity) -> dict[str, object]:
    return {
        "event_id": identity.event_id,
        "bib": identity.bib,
        "birth_year": identity.birth_year,
        "race_code": identity.race_code,
    }


def _status_body(session: SessionStatus) -> dict[str, object]:
    participant = session.participant
    position = session.last_position
    return {
        "state": session.state.value,
        "started_at": session.started_at.isoformat() if session.started_at else None,
        "start_enabled": session.start_enabled,
        "identity_editable": session.identity_editable,
        "identity": _identity_body(session.identity),
        "participant": (
            {
                "display_name": participant.display_name,
                "event_name": participant.event_name,
            }
            if participant
            else None
        ),
        "has_track": session.geometry is not None and not session.geometry.is_empty,
        "last_position": (
            {
                "latitude": position.latitude,
                "longitude": position.longitude,
                "accuracy": position.accuracy,
            }
            if position
            else None
        ),
        "last_error": _error_body(session.last_error) if session.last_error else None,
        "last_notice": session.last_notice.value if session.last_notice else None,
    }


def _geometry_body(
    geometry: TrackGeometry, smooth: bool, segments: int
) -> dict[str, object]:
    points = catmull_rom(geometry.points, segments) if smooth else list(geometry.points)
    bbox = padded_bounding_box(geometry.points)
    markers = []
    for marker in markers_with_start(geometry):
        style = marker_style(marker.type)
        markers.append(
            {
                "lat": marker.latitude,
                "lon": marker.longitude,
                "type": marker.type,
                "label": style.label,
                "icon": style.icon,
                "color": style.color,
            }
        )
    return {
        "points": [[point.latitude, point.longitude] for point in points],
        "markers": markers,
        "bounding_box": (
            {
                "north": bbox.north,
                "east": bbox.east,
                "south": bbox.south,
                "west": bbox.west,
            }
            if bbox
            else None
        ),
    }
