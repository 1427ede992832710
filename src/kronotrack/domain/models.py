"""Domain models for a participant tracking session."""

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

_BIRTH_YEAR_PATTERN = re.compile(r"[0-9]{4}")
RACE_CODE_LENGTH = 6


@dataclass(frozen=True)
class Identity:
    """Participant identity entered in the start form."""

    event_id: str = ""
    bib: str = ""
    birth_year: str = ""
    race_code: str = ""

    def problems(self) -> list[str]:
        """Return the reasons this identity cannot start a session."""
        problems = []
        if not self.event_id.strip():
            problems.append("an event must be selected")
        if not self.bib.strip():
            problems.append("bib number is required")
        if not _BIRTH_YEAR_PATTERN.fullmatch(self.birth_year):
            problems.append("birth year must be exactly 4 digits")
        if len(self.race_code) != RACE_CODE_LENGTH:
            problems.append(f"race code must be exactly {RACE_CODE_LENGTH} characters")
        return problems

    def is_valid(self) -> bool:
        """Return True when the identity can start a session."""
        return not self.problems()


class TrackingState(str, Enum):
    """Lifecycle states of a tracking session."""

    IDLE = "idle"
    PENDING_PERMISSION = "pending_permission"
    PENDING_VALIDATION = "pending_validation"
    ACTIVE = "active"
    STOPPED = "stopped"

    @property
    def is_idle(self) -> bool:
        """STOPPED only differs from IDLE in what the UI shows."""
        return self in {TrackingState.IDLE, TrackingState.STOPPED}

    @property
    def is_pending(self) -> bool:
        return self in {
            TrackingState.PENDING_PERMISSION,
            TrackingState.PENDING_VALIDATION,
        }


@dataclass(frozen=True)
class TrackingSession:
    """Current session state and when it became active."""

    state: TrackingState = TrackingState.IDLE
    started_at: datetime | None = None


@dataclass(frozen=True)
class AuthorizationSnapshot:
    """Point-in-time view of OS authorizations relevant to tracking."""

    location_always: bool = False
    location_precise: bool = False
    notifications_granted: bool = False
    location_services_enabled: bool = False
    location_when_in_use: bool = False

    @property
    def fully_authorized(self) -> bool:
        """Background, precise and services all available."""
        return (
            self.location_always
            and self.location_precise
            and self.location_services_enabled
        )


class NotificationStatus(str, Enum):
    """OS notification authorization status."""

    NOT_DETERMINED = "not_determined"
    DENIED = "denied"
    GRANTED = "granted"


@dataclass(frozen=True)
class TrackPoint:
    """Single vertex of a course polyline."""

    latitude: float
    longitude: float


@dataclass(frozen=True)
class TrackMarker:
    """Point of interest along the course."""

    latitude: float
    longitude: float
    type: str = "other"


@dataclass(frozen=True)
class TrackGeometry:
    """Course polyline plus points of interest."""

    points: tuple[TrackPoint, ...] = ()
    markers: tuple[TrackMarker, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.points and not self.markers


@dataclass(frozen=True)
class ParticipantInfo:
    """Participant details returned by the timing server."""

    first_name: str = ""
    last_name: str = ""
    event_name: str = ""

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class TrackFetchResult:
    """Successful validation response."""

    geometry: TrackGeometry
    participant: ParticipantInfo


@dataclass(frozen=True)
class LocationFix:
    """Location reading delivered by the OS provider."""

    latitude: float
    longitude: float
    accuracy: float
    timestamp: datetime

    @property
    def timestamp_ms(self) -> int:
        return int(self.timestamp.timestamp() * 1000)


@dataclass
class UploadRecord:
    """When the last upload was accepted."""

    last_upload_at: datetime | None = None
