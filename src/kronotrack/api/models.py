"""Pydantic models for the control and device bridge endpoints."""

from datetime import UTC, datetime

from pydantic import BaseModel

from kronotrack.domain.models import AuthorizationSnapshot, Identity, LocationFix


class IdentityPayload(BaseModel):
    """Start form fields."""

    event_id: str = ""
    bib: str = ""
    birth_year: str = ""
    race_code: str = ""

    def to_domain(self) -> Identity:
        return Identity(
            event_id=self.event_id.strip(),
            bib=self.bib.strip(),
            birth_year=self.birth_year.strip(),
            race_code=self.race_code.strip(),
        )


class LocationFixPayload(BaseModel):
    """Fix delivered by the OS location provider."""

    latitude: float
    longitude: float
    accuracy: float
    timestamp_ms: int

    def to_domain(self) -> LocationFix:
        return LocationFix(
            latitude=self.latitude,
            longitude=self.longitude,
            accuracy=self.accuracy,
            timestamp=datetime.fromtimestamp(self.timestamp_ms / 1000, tz=UTC),
        )


class AuthorizationPayload(BaseModel):
    """Authorization state reported by the shell."""

    location_always: bool = False
    location_precise: bool = False
    notifications_granted: bool = False
    location_services_enabled: bool = False
    location_when_in_use: bool = False

    def to_domain(self) -> AuthorizationSnapshot:
        return AuthorizationSnapshot(**self.model_dump())


class NotificationAnswerPayload(BaseModel):
    """User's answer to the notification prompt."""

    granted: bool
