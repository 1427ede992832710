"""Error taxonomy surfaced by a tracking session."""

from enum import Enum


class TrackingError(Exception):
    """Base class for errors that abort a tracking start."""

    kind = "tracking_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class IdentityValidationError(TrackingError):
    """The start form holds malformed identity fields."""

    kind = "validation_error"

    def __init__(self, problems: list[str]) -> None:
        super().__init__("; ".join(problems) or "invalid identity")
        self.problems = problems


class Permission(str, Enum):
    """Authorizations requested before tracking starts."""

    NOTIFICATIONS = "notifications"
    FOREGROUND_LOCATION = "foreground_location"
    BACKGROUND_LOCATION = "background_location"
    PRECISE_LOCATION = "precise_location"


class PermissionDeniedError(TrackingError):
    """The user declined a permission; they must fix it in OS settings."""

    kind = "permission_denied"

    def __init__(self, permission: Permission) -> None:
        super().__init__(
            f"{permission.value.replace('_', ' ')} permission is required; "
            "enable it in the system settings"
        )
        self.permission = permission


class LocationServicesDisabledError(TrackingError):
    """Device-wide location services are switched off."""

    kind = "location_services_disabled"

    def __init__(self) -> None:
        super().__init__("location services are disabled; enable them in settings")


class TrackFetchError(TrackingError):
    """Base class for failures of the remote validation call."""


class RejectionReason(str, Enum):
    """Why the timing server refused the participant identity."""

    INVALID_BIB_OR_BIRTH_YEAR = "invalid_bib_or_birth_year"
    INVALID_RACE_CODE = "invalid_race_code"
    SERVER_ERROR = "server_error"
    UNEXPECTED_STATUS = "unexpected_status"


class ValidationRejectedError(TrackFetchError):
    """The timing server rejected the participant identity."""

    kind = "validation_rejected"

    def __init__(
        self,
        reason: RejectionReason,
        message: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.status_code = status_code


class NetworkError(TrackFetchError):
    """The timing server could not be reached."""

    kind = "network_error"


class DecodeError(TrackFetchError):
    """The timing server answered with an unreadable body."""

    kind = "decode_error"
