"""Permission gate for background location tracking."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from kronotrack.domain.errors import Permission
from kronotrack.domain.models import AuthorizationSnapshot, NotificationStatus

logger = logging.getLogger(__name__)


class DeviceAuthorization(Protocol):
    """OS authorization state and permission prompts."""

    emits_change_events: bool

    def snapshot(self) -> AuthorizationSnapshot:
        """Read the current authorization state."""

    def prompt_foreground_location(self) -> None:
        """Show the foreground location prompt; the answer arrives later."""

    def prompt_background_location(self) -> None:
        """Show the background location prompt; the answer arrives later."""

    def notification_status(self) -> NotificationStatus:
        """Read the notification authorization status."""

    async def prompt_notifications(self) -> bool:
        """Show the notification prompt and return whether it was granted."""


@dataclass(frozen=True)
class PermissionOutcome:
    """Result of a location permission request sequence."""

    granted: bool
    snapshot: AuthorizationSnapshot
    denied: Permission | None = None


@dataclass
class PermissionGate:
    """Requests and classifies the authorizations tracking needs.

    OS prompts resolve asynchronously. When the device reports authorization
    changes, the gate waits for the next change after each prompt. Otherwise
    it polls with exponential backoff for a bounded number of attempts.
    """

    device: DeviceAuthorization
    settle_delay: float = 0.6
    settle_attempts: int = 4
    _changed: asyncio.Event = field(
        default_factory=asyncio.Event, init=False, repr=False
    )

    def current_snapshot(self) -> AuthorizationSnapshot:
        """Return the device's authorization state right now."""
        return self.device.snapshot()

    def is_fully_authorized(
        self, snapshot: AuthorizationSnapshot | None = None
    ) -> bool:
        """Return True when background tracking with precise fixes is allowed."""
        return (snapshot or self.current_snapshot()).fully_authorized

    def notify_authorization_changed(self) -> None:
        """Wake any request waiting for the user's answer."""
        self._changed.set()

    async def request_foreground_then_background(self) -> PermissionOutcome:
        """Prompt for foreground then background location access."""
        snapshot = self.current_snapshot()
        if not (snapshot.location_when_in_use or snapshot.location_always):
            logger.info("Requesting foreground location permission")
            snapshot = await self._prompt_and_settle(
                self.device.prompt_foreground_location,
                lambda s: s.location_when_in_use or s.location_always,
            )
            if not (snapshot.location_when_in_use or snapshot.location_always):
                return PermissionOutcome(
                    granted=False,
                    snapshot=snapshot,
                    denied=Permission.FOREGROUND_LOCATION,
                )
        if not snapshot.location_always:
            logger.info("Requesting background location permission")
            snapshot = await self._prompt_and_settle(
                self.device.prompt_background_location,
                lambda s: s.location_always,
            )
        if not snapshot.location_always:
            return PermissionOutcome(
                granted=False,
                snapshot=snapshot,
                denied=Permission.BACKGROUND_LOCATION,
            )
        return PermissionOutcome(granted=True, snapshot=snapshot)

    async def request_notifications(self) -> bool:
        """Prompt for notifications once; a previous denial is final."""
        status = self.device.notification_status()
        if status is NotificationStatus.GRANTED:
            return True
        if status is NotificationStatus.DENIED:
            return False
        logger.info("Requesting notification permission")
        return await self.device.prompt_notifications()

    async def _prompt_and_settle(
        self,
        prompt: Callable[[], None],
        satisfied: Callable[[AuthorizationSnapshot], bool],
    ) -> AuthorizationSnapshot:
        self._changed.clear()
        prompt()
        if self.device.emits_change_events:
            await self._changed.wait()
            return self.current_snapshot()
        delay = self.settle_delay
        snapshot = self.current_snapshot()
        for _ in range(self.settle_attempts):
            await asyncio.sleep(delay)
            snapshot = self.current_snapshot()
            if satisfied(snapshot):
                break
            delay *= 2
        return snapshot
