"""Event listing and participant validation against the timing server."""

import logging
from dataclasses import dataclass

import httpx
from pydantic import ValidationError

from kronotrack.adapters.timing_client import TimingClient
from kronotrack.adapters.timing_models import EventListResponse, TrackResponse
from kronotrack.config import parse_int_or_str
from kronotrack.domain.errors import (
    DecodeError,
    NetworkError,
    RejectionReason,
    ValidationRejectedError,
)
from kronotrack.domain.models import (
    Identity,
    ParticipantInfo,
    TrackFetchResult,
    TrackGeometry,
    TrackMarker,
    TrackPoint,
)

logger = logging.getLogger(__name__)

_STATUS_REASONS: dict[int, tuple[RejectionReason, str]] = {
    404: (
        RejectionReason.INVALID_BIB_OR_BIRTH_YEAR,
        "No participant matches this bib number and birth year.",
    ),
    403: (
        RejectionReason.INVALID_RACE_CODE,
        "The race code is not valid for this event.",
    ),
}


@dataclass
class CourseService:
    """Talks to the timing server and converts failures to domain errors."""

    client: TimingClient

    async def list_events(self) -> list[str]:
        """Return selectable event ids; failures yield an empty list."""
        try:
            raw = await self.client.list_events()
            return EventListResponse.model_validate(raw).events
        except (httpx.HTTPError, ValueError) as exc:
            # pydantic.ValidationError and JSON errors are ValueErrors.
            logger.warning("Could not load events: %s", exc)
            return []

    async def validate_and_fetch_track(self, identity: Identity) -> TrackFetchResult:
        """Validate the participant and return their course."""
        payload = build_track_request(identity)
        try:
            raw = await self.client.fetch_track(payload)
        except httpx.HTTPStatusError as exc:
            raise _rejection_for_status(exc.response) from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"Could not reach the timing server: {exc}") from exc
        except ValueError as exc:
            raise DecodeError("The timing server sent an unreadable response") from exc
        return parse_track_response(raw)


def build_track_request(identity: Identity) -> dict[str, object]:
    """Build the POST /track body."""
    return {
        "main_event": identity.event_id,
        "bib": parse_int_or_str(identity.bib),
        "birth_year": parse_int_or_str(identity.birth_year),
        "code": identity.race_code,
    }


def parse_track_response(raw: object) -> TrackFetchResult:
    """Convert a POST /track body into a fetch result."""
    try:
        response = TrackResponse.model_validate(raw)
    except ValidationError as exc:
        raise DecodeError("The course data could not be read") from exc
    if response.error:
        raise ValidationRejectedError(RejectionReason.SERVER_ERROR, response.error)
    geometry = TrackGeometry(
        points=tuple(
            TrackPoint(latitude=lat, longitude=lon) for lat, lon in response.track
        ),
        markers=tuple(
            TrackMarker(latitude=marker.lat, longitude=marker.lon, type=marker.type)
            for marker in response.markers
        ),
    )
    participant = ParticipantInfo(
        first_name=response.first_name,
        last_name=response.last_name,
        event_name=response.event_name,
    )
    return TrackFetchResult(geometry=geometry, participant=participant)


def _rejection_for_status(response: httpx.Response) -> ValidationRejectedError:
    status_code = response.status_code
    if status_code in _STATUS_REASONS:
        reason, message = _STATUS_REASONS[status_code]
        return ValidationRejectedError(reason, message, status_code=status_code)
    server_message = _error_field(response)
    if server_message:
        return ValidationRejectedError(
            RejectionReason.SERVER_ERROR, server_message, status_code=status_code
        )
    return ValidationRejectedError(
        RejectionReason.UNEXPECTED_STATUS,
        f"The course could not be loaded (HTTP {status_code}).",
        status_code=status_code,
    )


def _error_field(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return None
