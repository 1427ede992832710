"""Kronotiming server API client."""

from dataclasses import dataclass
from typing import Protocol

import httpx


class TimingClient(Protocol):
    """Interface for the timing server endpoints."""

    async def list_events(self) -> dict[str, object]:
        """Return the raw event list payload."""

    async def fetch_track(self, payload: dict[str, object]) -> dict[str, object]:
        """Validate a participant and return the raw track payload."""

    async def update_location(self, payload: dict[str, object]) -> None:
        """Upload one location fix."""


@dataclass
class HttpxTimingClient(TimingClient):
    """HTTPX-backed timing server client."""

    events_base_url: str
    live_base_url: str
    http_client: httpx.AsyncClient
    timeout: float = 15.0

    @classmethod
    def create(
        cls, events_base_url: str, live_base_url: str, timeout: float = 15.0
    ) -> "HttpxTimingClient":
        """Create a timing client with a managed httpx session."""
        return cls(
            events_base_url=events_base_url.rstrip("/"),
            live_base_url=live_base_url.rstrip("/"),
            http_client=httpx.AsyncClient(),
            timeout=timeout,
        )

    async def list_events(self) -> dict[str, object]:
        """Fetch the selectable events."""
        response = await self.http_client.get(
            f"{self.events_base_url}/events", timeout=self.timeout
        )
        response.raise_for_status()
        return response.json()

    async def fetch_track(self, payload: dict[str, object]) -> dict[str, object]:
        """Validate the participant and fetch the course."""
        response = await self.http_client.post(
            f"{self.live_base_url}/track", json=payload, timeout=self.timeout
        )
        response.raise_for_status()
        return response.json()

    async def update_location(self, payload: dict[str, object]) -> None:
        """Post a location fix; the response body is not used."""
        response = await self.http_client.post(
            f"{self.live_base_url}/update-location", json=payload, timeout=self.timeout
        )
        response.raise_for_status()

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()
