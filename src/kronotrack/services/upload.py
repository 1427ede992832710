"""Throttled location uploads."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Protocol

import httpx

from kronotrack.adapters.timing_client import TimingClient
from kronotrack.config import parse_int_or_str
from kronotrack.domain.models import Identity, LocationFix, UploadRecord

logger = logging.getLogger(__name__)


class BackgroundExecution(Protocol):
    """OS allowance to keep running briefly after the app is backgrounded."""

    def begin(self, name: str, on_expiration: Callable[[], None]) -> str:
        """Acquire a ticket and return its id."""

    def end(self, ticket_id: str) -> None:
        """Release a ticket."""


@dataclass
class _Ticket:
    background: BackgroundExecution
    ticket_id: str | None = None

    def release(self) -> None:
        if self.ticket_id is None:
            return
        ticket_id, self.ticket_id = self.ticket_id, None
        self.background.end(ticket_id)


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass
class LocationUploadThrottle:
    """Uploads at most one fix per interval, fire-and-forget."""

    client: TimingClient
    background: BackgroundExecution
    upload_token: str
    interval: timedelta = timedelta(seconds=60)
    clock: Callable[[], datetime] = _utc_now
    record: UploadRecord = field(default_factory=UploadRecord)
    last_position: LocationFix | None = None
    _identity: Identity | None = field(default=None, init=False, repr=False)
    _inflight: set[asyncio.Task[None]] = field(
        default_factory=set, init=False, repr=False
    )

    @property
    def active(self) -> bool:
        return self._identity is not None

    def activate(self, identity: Identity) -> None:
        """Start uploading for a new session."""
        self._identity = identity
        self.record = UploadRecord()

    def deactivate(self) -> None:
        """Stop scheduling uploads; in-flight calls finish on their own."""
        self._identity = None

    def on_fix(self, fix: LocationFix) -> bool:
        """Handle a fix and return True when an upload was scheduled."""
        self.last_position = fix
        if self._identity is None:
            return False
        now = self.clock()
        last = self.record.last_upload_at
        if last is not None and now - last < self.interval:
            return False
        self.record.last_upload_at = now
        task = asyncio.get_running_loop().create_task(
            self._upload(self._identity, fix)
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return True

    async def drain(self) -> None:
        """Wait for outstanding uploads."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _upload(self, identity: Identity, fix: LocationFix) -> None:
        ticket = _Ticket(self.background)
        ticket.ticket_id = self.background.begin("location-upload", ticket.release)
        try:
            await self.client.update_location(
                build_upload_payload(self.upload_token, identity, fix)
            )
            logger.debug("Uploaded fix for bib %s", identity.bib)
        except httpx.HTTPError as exc:
            logger.warning("Location upload failed: %s", exc)
        except Exception:
            logger.exception("Location upload failed unexpectedly")
        finally:
            ticket.release()


def build_upload_payload(
    token: str, identity: Identity, fix: LocationFix
) -> dict[str, object]:
    """Build the POST /update-location body."""
    return {
        "token": token,
        "bib_number": parse_int_or_str(identity.bib),
        "latitude": fix.latitude,
        "longitude": fix.longitude,
        "main_event": identity.event_id,
        "timestamp": fix.timestamp_ms,
        "accuracy": fix.accuracy,
    }
