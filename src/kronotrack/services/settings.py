"""Persisted participant settings."""

import json
import logging
from dataclasses import dataclass
from typing import Protocol

from kronotrack.domain.models import (
    Identity,
    ParticipantInfo,
    TrackGeometry,
    TrackMarker,
    TrackPoint,
)

logger = logging.getLogger(__name__)

BIB_KEY = "bib"
BIRTH_YEAR_KEY = "birthYear"
CODE_KEY = "code"
EVENT_KEY = "main_event"
IS_TRACKING_KEY = "is_tracking"
IS_TRACKING_PENDING_KEY = "is_tracking_pending"
TRACK_DATA_KEY = "track_data"
FIRST_NAME_KEY = "participant_first_name"
LAST_NAME_KEY = "participant_last_name"
EVENT_NAME_KEY = "event_name"

_TRUE = "true"


class SettingsRepository(Protocol):
    """Durable key-value storage on the device."""

    def get(self, key: str) -> str | None:
        """Return the stored value, if present."""

    def set(self, key: str, value: str) -> None:
        """Store a value."""

    def delete(self, key: str) -> None:
        """Remove a value if present."""


@dataclass
class SettingsService:
    """Typed access to the participant settings."""

    repository: SettingsRepository

    def get(self, key: str) -> str:
        """Return a stored value or an empty string."""
        return self.repository.get(key) or ""

    def load_identity(self) -> Identity:
        """Return the last identity entered in the form."""
        return Identity(
            event_id=self.get(EVENT_KEY),
            bib=self.get(BIB_KEY),
            birth_year=self.get(BIRTH_YEAR_KEY),
            race_code=self.get(CODE_KEY),
        )

    def save_identity(self, identity: Identity) -> None:
        """Persist every identity field."""
        self.repository.set(EVENT_KEY, identity.event_id)
        self.repository.set(BIB_KEY, identity.bib)
        self.repository.set(BIRTH_YEAR_KEY, identity.birth_year)
        self.repository.set(CODE_KEY, identity.race_code)

    def is_tracking(self) -> bool:
        return self.repository.get(IS_TRACKING_KEY) == _TRUE

    def is_tracking_pending(self) -> bool:
        return self.repository.get(IS_TRACKING_PENDING_KEY) == _TRUE

    def mark_pending(self) -> None:
        """Record that a start is in progress."""
        self.repository.set(IS_TRACKING_PENDING_KEY, _TRUE)
        self.repository.delete(IS_TRACKING_KEY)

    def mark_tracking(self) -> None:
        """Record that a session is active."""
        self.repository.set(IS_TRACKING_KEY, _TRUE)
        self.repository.delete(IS_TRACKING_PENDING_KEY)

    def clear_tracking_flags(self) -> None:
        self.repository.delete(IS_TRACKING_KEY)
        self.repository.delete(IS_TRACKING_PENDING_KEY)

    def save_participant(self, participant: ParticipantInfo) -> None:
        self.repository.set(FIRST_NAME_KEY, participant.first_name)
        self.repository.set(LAST_NAME_KEY, participant.last_name)
        self.repository.set(EVENT_NAME_KEY, participant.event_name)

    def load_participant(self) -> ParticipantInfo | None:
        """Return stored participant details, or None when cleared."""
        first_name = self.get(FIRST_NAME_KEY)
        last_name = self.get(LAST_NAME_KEY)
        event_name = self.get(EVENT_NAME_KEY)
        if not (first_name or last_name or event_name):
            return None
        return ParticipantInfo(
            first_name=first_name, last_name=last_name, event_name=event_name
        )

    def clear_participant(self) -> None:
        self.repository.delete(FIRST_NAME_KEY)
        self.repository.delete(LAST_NAME_KEY)
        self.repository.delete(EVENT_NAME_KEY)

    def save_track(self, geometry: TrackGeometry) -> None:
        """Store the last fetched course so it survives a restart."""
        payload = {
            "track": [[point.latitude, point.longitude] for point in geometry.points],
            "markers": [
                {"lat": marker.latitude, "lon": marker.longitude, "type": marker.type}
                for marker in geometry.markers
            ],
        }
        self.repository.set(TRACK_DATA_KEY, json.dumps(payload))

    def load_track(self) -> TrackGeometry | None:
        """Return the stored course, ignoring unreadable data."""
        raw = self.repository.get(TRACK_DATA_KEY)
        if not raw:
            return None
        try:
            payload = json.loads(raw)
            points = tuple(
                TrackPoint(latitude=float(lat), longitude=float(lon))
                for lat, lon in payload.get("track", [])
            )
            markers = tuple(
                TrackMarker(
                    latitude=float(item["lat"]),
                    longitude=float(item["lon"]),
                    type=str(item.get("type", "other")),
                )
                for item in payload.get("markers", [])
            )
        except (ValueError, TypeError, KeyError, AttributeError):
            logger.warning("Ignoring unreadable stored track data")
            return None
        return TrackGeometry(points=points, markers=markers)
