"""Pydantic models for timing server payloads."""

from pydantic import BaseModel, Field, field_validator


class EventListResponse(BaseModel):
    """Response of GET /events."""

    events: list[str] = Field(default_factory=list)


class MarkerPayload(BaseModel):
    """Course marker payload."""

    lat: float
    lon: float
    type: str = "other"

    @field_validator("type", mode="before")
    @classmethod
    def _default_blank_type(cls, value: object) -> object:
        return value or "other"


class TrackResponse(BaseModel):
    """Response of POST /track."""

    track: list[tuple[float, float]] = Field(default_factory=list)
    markers: list[MarkerPayload] = Field(default_factory=list)
    first_name: str = Field(default="", alias="firstName")
    last_name: str = Field(default="", alias="lastName")
    event_name: str = Field(default="", alias="eventName")
    error: str | None = None

    @field_validator("track", mode="before")
    @classmethod
    def _pairs_only(cls, value: object) -> object:
        # Values after lat/lon are ignored.
        if isinstance(value, list):
            return [
                point[:2] if isinstance(point, list) else point for point in value
            ]
        return value

    @field_validator("first_name", "last_name", "event_name", mode="before")
    @classmethod
    def _none_as_blank(cls, value: object) -> object:
        return "" if value is None else value
