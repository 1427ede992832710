"""Tracking session state machine.

Every input (user commands, location fixes, authorization changes, results of
the start flow) is a message on a single inbox consumed by ``run()``. Session
state is only read and written while handling a message, so no locking is
needed. The permission and validation round trips run in a separate task
whose outcome comes back through the inbox.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Protocol

from kronotrack.domain.errors import (
    IdentityValidationError,
    LocationServicesDisabledError,
    Permission,
    PermissionDeniedError,
    TrackingError,
)
from kronotrack.domain.models import (
    AuthorizationSnapshot,
    Identity,
    LocationFix,
    ParticipantInfo,
    TrackFetchResult,
    TrackGeometry,
    TrackingSession,
    TrackingState,
)
from kronotrack.services.course import CourseService
from kronotrack.services.permissions import PermissionGate
from kronotrack.services.settings import SettingsService
from kronotrack.services.upload import LocationUploadThrottle

logger = logging.getLogger(__name__)


class LocationProvider(Protocol):
    """OS location provider that pushes fixes while running."""

    def start_updates(self) -> None:
        """Begin delivering fixes."""

    def stop_updates(self) -> None:
        """Stop delivering fixes."""


class TrackingNotice(str, Enum):
    """User-visible notices posted by the session."""

    TRACKING_ACTIVE = "tracking_active"
    STOPPED_SERVICES_DISABLED = "stopped_services_disabled"
    STOPPED_PERMISSION_REVOKED = "stopped_permission_revoked"
    STOPPED_PRECISION_REVOKED = "stopped_precision_revoked"


class NotificationPort(Protocol):
    """Local notification delivery."""

    def post(self, notice: TrackingNotice) -> None:
        """Show a notice to the user."""

    def clear(self) -> None:
        """Remove delivered tracking notices."""


class IdentityFrozenError(TrackingError):
    """The identity cannot change while a session is running."""

    kind = "identity_frozen"

    def __init__(self) -> None:
        super().__init__("Stop tracking before editing the participant details.")


@dataclass(frozen=True)
class SessionStatus:
    """Read-only view of the session for the UI."""

    state: TrackingState
    started_at: datetime | None
    identity: Identity
    participant: ParticipantInfo | None
    geometry: TrackGeometry | None
    last_position: LocationFix | None
    last_error: TrackingError | None
    last_notice: TrackingNotice | None

    @property
    def start_enabled(self) -> bool:
        return self.state.is_idle

    @property
    def identity_editable(self) -> bool:
        return self.state.is_idle


@dataclass(frozen=True)
class _Start:
    future: "asyncio.Future[SessionStatus]"
    identity: Identity | None


@dataclass(frozen=True)
class _Stop:
    pass


@dataclass(frozen=True)
class _Resume:
    future: "asyncio.Future[SessionStatus]"


@dataclass(frozen=True)
class _Fix:
    fix: LocationFix


@dataclass(frozen=True)
class _AuthorizationChanged:
    pass


@dataclass(frozen=True)
class _PermissionsGranted:
    flow: "asyncio.Task[TrackFetchResult]"


@dataclass(frozen=True)
class _FlowFinished:
    flow: "asyncio.Task[TrackFetchResult]"
    identity: Identity


_SHUTDOWN = object()


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _retrieve_exception(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


@dataclass
class TrackSessionService:
    """Owns the tracking lifecycle: idle, pending, active, stopped."""

    permission_gate: PermissionGate
    course_service: CourseService
    throttle: LocationUploadThrottle
    settings_service: SettingsService
    location_provider: LocationProvider
    notifications: NotificationPort
    clock: Callable[[], datetime] = _utc_now
    session: TrackingSession = field(default_factory=TrackingSession)
    identity: Identity | None = None
    participant: ParticipantInfo | None = None
    geometry: TrackGeometry | None = None
    last_error: TrackingError | None = None
    last_notice: TrackingNotice | None = None
    _inbox: asyncio.Queue = field(default_factory=asyncio.Queue, init=False, repr=False)
    _runner: asyncio.Task | None = field(default=None, init=False, repr=False)
    _flow: asyncio.Task | None = field(default=None, init=False, repr=False)
    _flow_future: asyncio.Future | None = field(default=None, init=False, repr=False)
    _listeners: list[Callable[[TrackingSession], None]] = field(
        default_factory=list, init=False, repr=False
    )

    # Lifecycle

    def start_actor(self) -> None:
        """Start consuming the inbox on the running loop."""
        if self._runner is None or self._runner.done():
            self._runner = asyncio.get_running_loop().create_task(self.run())

    async def run(self) -> None:
        """Process inbox messages until closed."""
        while True:
            message = await self._inbox.get()
            try:
                if message is _SHUTDOWN:
                    return
                self._dispatch(message)
            except Exception:
                logger.exception("Failed to handle %s", type(message).__name__)
            finally:
                self._inbox.task_done()

    async def join(self) -> None:
        """Wait until every queued message has been handled."""
        await self._inbox.join()

    async def close(self) -> None:
        """Stop the actor and any start flow, then wait for uploads."""
        if self._flow is not None and not self._flow.done():
            self._flow.cancel()
        if self._runner is not None and not self._runner.done():
            self._inbox.put_nowait(_SHUTDOWN)
            await self._runner
        await self.throttle.drain()

    def add_listener(self, listener: Callable[[TrackingSession], None]) -> None:
        """Call ``listener`` after every state transition."""
        self._listeners.append(listener)

    # Commands and events

    def request_start(
        self, identity: Identity | None = None
    ) -> "asyncio.Future[SessionStatus]":
        """Queue a start; the future resolves once the session is active.

        Without an explicit identity the stored form values are used.
        """
        future: asyncio.Future[SessionStatus] = (
            asyncio.get_running_loop().create_future()
        )
        future.add_done_callback(_retrieve_exception)
        self._inbox.put_nowait(_Start(future=future, identity=identity))
        return future

    async def start(self, identity: Identity | None = None) -> SessionStatus:
        """Start tracking and wait for the outcome."""
        return await self.request_start(identity)

    def request_stop(self) -> None:
        """Queue a user stop."""
        self._inbox.put_nowait(_Stop())

    async def stop(self) -> SessionStatus:
        """Stop tracking and return the resulting status."""
        self.request_stop()
        await self.join()
        return self.status()

    def resume(self) -> "asyncio.Future[SessionStatus]":
        """Restart a session left running or pending before a restart."""
        future: asyncio.Future[SessionStatus] = (
            asyncio.get_running_loop().create_future()
        )
        future.add_done_callback(_retrieve_exception)
        self._inbox.put_nowait(_Resume(future=future))
        return future

    def deliver_fix(self, fix: LocationFix) -> None:
        """Queue a fix from the OS location provider."""
        self._inbox.put_nowait(_Fix(fix))

    def authorization_changed(self) -> None:
        """Queue an OS authorization or location-services change."""
        self._inbox.put_nowait(_AuthorizationChanged())

    def update_identity(self, identity: Identity) -> None:
        """Persist edited form fields."""
        if not self.session.state.is_idle:
            raise IdentityFrozenError
        self.settings_service.save_identity(identity)

    def status(self) -> SessionStatus:
        """Return a snapshot of the session for display."""
        return SessionStatus(
            state=self.session.state,
            started_at=self.session.started_at,
            identity=self.identity or self.settings_service.load_identity(),
            participant=self.participant,
            geometry=self.geometry,
            last_position=self.throttle.last_position,
            last_error=self.last_error,
            last_notice=self.last_notice,
        )

    # Message handling

    def _dispatch(self, message: object) -> None:
        if isinstance(message, _Start):
            self._handle_start(message.future, message.identity)
        elif isinstance(message, _Stop):
            self._handle_stop()
        elif isinstance(message, _Resume):
            self._handle_resume(message.future)
        elif isinstance(message, _Fix):
            self.throttle.on_fix(message.fix)
        elif isinstance(message, _AuthorizationChanged):
            self._handle_authorization_changed()
        elif isinstance(message, _PermissionsGranted):
            if message.flow is self._flow:
                self._transition(TrackingState.PENDING_VALIDATION)
        elif isinstance(message, _FlowFinished):
            self._handle_flow_finished(message.flow, message.identity)

    def _handle_start(
        self, future: "asyncio.Future[SessionStatus]", identity: Identity | None
    ) -> None:
        if not self.session.state.is_idle:
            logger.warning("Ignoring start while %s", self.session.state.value)
            future.set_result(self.status())
            return
        if identity is not None:
            self.settings_service.save_identity(identity)
        else:
            identity = self.settings_service.load_identity()
        problems = identity.problems()
        if problems:
            error = IdentityValidationError(problems)
            self.last_error = error
            future.set_exception(error)
            return
        self.identity = identity
        self.last_error = None
        self.last_notice = None
        self.settings_service.mark_pending()
        self._transition(TrackingState.PENDING_PERMISSION)
        self._flow_future = future
        self._flow = asyncio.get_running_loop().create_task(self._start_flow(identity))
        self._flow.add_done_callback(
            lambda flow: self._inbox.put_nowait(_FlowFinished(flow, identity))
        )

    async def _start_flow(self, identity: Identity) -> TrackFetchResult:
        gate = self.permission_gate
        if not gate.current_snapshot().location_services_enabled:
            raise LocationServicesDisabledError
        if not await gate.request_notifications():
            raise PermissionDeniedError(Permission.NOTIFICATIONS)
        snapshot = gate.current_snapshot()
        if not snapshot.location_always:
            outcome = await gate.request_foreground_then_background()
            if not outcome.granted:
                raise PermissionDeniedError(
                    outcome.denied or Permission.BACKGROUND_LOCATION
                )
            snapshot = outcome.snapshot
        if not snapshot.location_services_enabled:
            raise LocationServicesDisabledError
        if not snapshot.location_precise:
            raise PermissionDeniedError(Permission.PRECISE_LOCATION)
        self._inbox.put_nowait(_PermissionsGranted(asyncio.current_task()))
        return await self.course_service.validate_and_fetch_track(identity)

    def _handle_flow_finished(
        self, flow: "asyncio.Task[TrackFetchResult]", identity: Identity
    ) -> None:
        if flow is not self._flow:
            return
        future = self._flow_future
        self._flow = None
        self._flow_future = None
        if flow.cancelled():
            self._abort(None)
            if future is not None and not future.done():
                future.cancel()
            return
        error = flow.exception()
        if error is not None:
            if not isinstance(error, TrackingError):
                logger.error("Start flow failed unexpectedly", exc_info=error)
            self._abort(error if isinstance(error, TrackingError) else None)
            if future is not None and not future.done():
                future.set_exception(error)
            return
        # Authorization may have changed while the course was loading.
        denied = _authorization_error(self.permission_gate.current_snapshot())
        if denied is not None:
            self._abort(denied)
            if future is not None and not future.done():
                future.set_exception(denied)
            return
        self._enter_active(identity, flow.result())
        if future is not None and not future.done():
            future.set_result(self.status())

    def _enter_active(self, identity: Identity, result: TrackFetchResult) -> None:
        self.geometry = result.geometry
        self.participant = result.participant
        self.settings_service.save_track(result.geometry)
        self.settings_service.save_participant(result.participant)
        self.settings_service.mark_tracking()
        self.throttle.activate(identity)
        self._transition(TrackingState.ACTIVE, started_at=self.clock())
        self.location_provider.start_updates()
        self.notifications.clear()
        self.notifications.post(TrackingNotice.TRACKING_ACTIVE)

    def _abort(self, error: TrackingError | None) -> None:
        if error is not None:
            logger.info("Start aborted: %s", error.message)
        self.last_error = error
        self.identity = None
        self.settings_service.clear_tracking_flags()
        self._transition(TrackingState.IDLE)

    def _handle_stop(self) -> None:
        if self.session.state is not TrackingState.ACTIVE:
            logger.warning("Ignoring stop while %s", self.session.state.value)
            return
        self._teardown()
        self.notifications.clear()
        self._transition(TrackingState.STOPPED)

    def _handle_authorization_changed(self) -> None:
        self.permission_gate.notify_authorization_changed()
        if self.session.state is not TrackingState.ACTIVE:
            return
        notice = _forced_stop_notice(self.permission_gate.current_snapshot())
        if notice is None:
            return
        logger.warning("Tracking force-stopped: %s", notice.value)
        self._teardown()
        self.notifications.clear()
        self.notifications.post(notice)
        self.last_notice = notice
        self._transition(TrackingState.IDLE)

    def _handle_resume(self, future: "asyncio.Future[SessionStatus]") -> None:
        if self.geometry is None:
            self.geometry = self.settings_service.load_track()
        was_running = (
            self.settings_service.is_tracking()
            or self.settings_service.is_tracking_pending()
        )
        if not was_running or not self.session.state.is_idle:
            future.set_result(self.status())
            return
        identity = self.settings_service.load_identity()
        if not identity.is_valid():
            logger.warning("Stored identity is incomplete; not resuming tracking")
            self.settings_service.clear_tracking_flags()
            future.set_result(self.status())
            return
        logger.info("Resuming tracking for bib %s", identity.bib)
        self._handle_start(future, identity)

    def _teardown(self) -> None:
        self.location_provider.stop_updates()
        self.throttle.deactivate()
        self.participant = None
        self.identity = None
        self.settings_service.clear_participant()
        self.settings_service.clear_tracking_flags()

    def _transition(
        self, state: TrackingState, started_at: datetime | None = None
    ) -> None:
        previous = self.session.state
        self.session = TrackingSession(state=state, started_at=started_at)
        logger.info("Tracking %s -> %s", previous.value, state.value)
        for listener in self._listeners:
            listener(self.session)


def _authorization_error(snapshot: AuthorizationSnapshot) -> TrackingError | None:
    if not snapshot.location_services_enabled:
        return LocationServicesDisabledError()
    if not snapshot.location_always:
        return PermissionDeniedError(Permission.BACKGROUND_LOCATION)
    if not snapshot.location_precise:
        return PermissionDeniedError(Permission.PRECISE_LOCATION)
    return None


def _forced_stop_notice(snapshot: AuthorizationSnapshot) -> TrackingNotice | None:
    if not snapshot.location_services_enabled:
        return TrackingNotice.STOPPED_SERVICES_DISABLED
    if not snapshot.location_always:
        return TrackingNotice.STOPPED_PERMISSION_REVOKED
    if not snapshot.location_precise:
        return TrackingNotice.STOPPED_PRECISION_REVOKED
    return None
