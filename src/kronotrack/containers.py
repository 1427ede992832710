"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from kronotrack.adapters.device_bridge import DeviceBridge
from kronotrack.adapters.json_settings_repository import JsonFileSettingsRepository
from kronotrack.adapters.timing_client import HttpxTimingClient, TimingClient
from kronotrack.config import Settings
from kronotrack.services.course import CourseService
from kronotrack.services.permissions import PermissionGate
from kronotrack.services.settings import SettingsService
from kronotrack.services.tracking import TrackSessionService
from kronotrack.services.upload import LocationUploadThrottle


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    timing_client: TimingClient
    device: DeviceBridge
    settings_service: SettingsService
    course_service: CourseService
    permission_gate: PermissionGate
    upload_throttle: LocationUploadThrottle
    tracking_service: TrackSessionService
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    timing_client = HttpxTimingClient.create(
        events_base_url=resolved_settings.events_base_url,
        live_base_url=resolved_settings.live_base_url,
        timeout=resolved_settings.http_timeout_seconds,
    )
    device = DeviceBridge(
        background_budget_seconds=resolved_settings.background_task_budget_seconds
    )
    settings_service = SettingsService(
        JsonFileSettingsRepository(Path(resolved_settings.settings_path))
    )
    course_service = CourseService(timing_client)
    permission_gate = PermissionGate(
        device=device,
        settle_delay=resolved_settings.permission_settle_delay,
        settle_attempts=resolved_settings.permission_settle_attempts,
    )
    upload_throttle = LocationUploadThrottle(
        client=timing_client,
        background=device,
        upload_token=resolved_settings.upload_token,
        interval=timedelta(seconds=resolved_settings.upload_interval_seconds),
    )
    tracking_service = TrackSessionService(
        permission_gate=permission_gate,
        course_service=course_service,
        throttle=upload_throttle,
        settings_service=settings_service,
        location_provider=device,
        notifications=device,
    )

    async def close_resources() -> None:
        await tracking_service.close()
        await timing_client.close()

    return AppContainer(
        settings=resolved_settings,
        timing_client=timing_client,
        device=device,
        settings_service=settings_service,
        course_service=course_service,
        permission_gate=permission_gate,
        upload_throttle=upload_throttle,
        tracking_service=tracking_service,
        close_resources=close_resources,
    )
