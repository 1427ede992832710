"""Bridge between the native shell and the OS-facing ports.

The native app owns the real permission dialogs, the location provider,
background execution and notification delivery. It reports state changes to
the bridge and polls it for the commands the core has issued.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from uuid import uuid4

from kronotrack.domain.models import AuthorizationSnapshot, NotificationStatus
from kronotrack.services.permissions import DeviceAuthorization
from kronotrack.services.tracking import (
    LocationProvider,
    NotificationPort,
    TrackingNotice,
)
from kronotrack.services.upload import BackgroundExecution

logger = logging.getLogger(__name__)

FOREGROUND_PROMPT = "foreground_location"
BACKGROUND_PROMPT = "background_location"
NOTIFICATIONS_PROMPT = "notifications"


@dataclass
class _BackgroundTicket:
    name: str
    on_expiration: Callable[[], None]
    timer: asyncio.TimerHandle | None = None


@dataclass
class DeviceBridge(
    DeviceAuthorization, LocationProvider, NotificationPort, BackgroundExecution
):
    """In-process stand-in for the device, fed by the native shell."""

    background_budget_seconds: float = 30.0
    emits_change_events: bool = True
    authorization: AuthorizationSnapshot = field(default_factory=AuthorizationSnapshot)
    notifications_status: NotificationStatus = NotificationStatus.NOT_DETERMINED
    location_updates_running: bool = False
    pending_prompts: list[str] = field(default_factory=list)
    notices: list[TrackingNotice] = field(default_factory=list)
    _notification_answer: asyncio.Future | None = field(
        default=None, init=False, repr=False
    )
    _tickets: dict[str, _BackgroundTicket] = field(
        default_factory=dict, init=False, repr=False
    )

    # Authorization

    def snapshot(self) -> AuthorizationSnapshot:
        """Return the last authorization state reported by the shell."""
        return self.authorization

    def update_authorization(self, snapshot: AuthorizationSnapshot) -> None:
        """Record the authorization state reported by the shell."""
        self.authorization = snapshot

    def prompt_foreground_location(self) -> None:
        self._queue_prompt(FOREGROUND_PROMPT)

    def prompt_background_location(self) -> None:
        self._queue_prompt(BACKGROUND_PROMPT)

    def notification_status(self) -> NotificationStatus:
        return self.notifications_status

    async def prompt_notifications(self) -> bool:
        """Ask the shell to prompt and wait for the user's answer."""
        if self._notification_answer is None or self._notification_answer.done():
            self._notification_answer = asyncio.get_running_loop().create_future()
            self._queue_prompt(NOTIFICATIONS_PROMPT)
        return await asyncio.shield(self._notification_answer)

    def answer_notifications(self, granted: bool) -> None:
        """Record the user's answer to the notification prompt."""
        self.notifications_status = (
            NotificationStatus.GRANTED if granted else NotificationStatus.DENIED
        )
        answer = self._notification_answer
        if answer is not None and not answer.done():
            answer.set_result(granted)

    # Location provider

    def start_updates(self) -> None:
        self.location_updates_running = True

    def stop_updates(self) -> None:
        self.location_updates_running = False

    # Notifications

    def post(self, notice: TrackingNotice) -> None:
        self.notices.append(notice)

    def clear(self) -> None:
        self.notices.clear()

    # Background execution

    def begin(self, name: str, on_expiration: Callable[[], None]) -> str:
        """Open a ticket that expires after the background budget."""
        ticket_id = uuid4().hex
        ticket = _BackgroundTicket(name=name, on_expiration=on_expiration)
        ticket.timer = asyncio.get_running_loop().call_later(
            self.background_budget_seconds, self.expire, ticket_id
        )
        self._tickets[ticket_id] = ticket
        return ticket_id

    def end(self, ticket_id: str) -> None:
        """Close a ticket; unknown ids are ignored."""
        ticket = self._tickets.pop(ticket_id, None)
        if ticket is not None and ticket.timer is not None:
            ticket.timer.cancel()

    def expire(self, ticket_id: str) -> bool:
        """Run the expiration handler of an open ticket."""
        ticket = self._tickets.get(ticket_id)
        if ticket is None:
            return False
        logger.info("Background ticket %s (%s) expired", ticket_id, ticket.name)
        ticket.on_expiration()
        self.end(ticket_id)
        return True

    @property
    def open_tickets(self) -> list[str]:
        return list(self._tickets)

    # Shell polling

    def drain_commands(self) -> dict[str, object]:
        """Return and clear the prompts and notices waiting for the shell."""
        commands: dict[str, object] = {
            "prompts": list(self.pending_prompts),
            "notices": [notice.value for notice in self.notices],
            "location_updates": self.location_updates_running,
            "background_tickets": self.open_tickets,
        }
        self.pending_prompts.clear()
        self.notices.clear()
        return commands

    def _queue_prompt(self, prompt: str) -> None:
        if prompt not in self.pending_prompts:
            self.pending_prompts.append(prompt)
