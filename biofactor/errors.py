"""
Exception taxonomy shared by the access-control, gateway and import layers.
"""


class DashboardError(Exception):
    """Base class for every error raised by the dashboard core."""


class AuthenticationError(DashboardError):
    """Sign-in failed: bad credentials, backend unreachable, or no profile."""


# ── Data gateway ─────────────────────────────────────────────────────

class GatewayError(DashboardError):
    """A resource read or write failed."""

    def __init__(self, message: str, resource: str = None):
        super().__init__(message)
        self.resource = resource


class PermissionDenied(GatewayError):
    """The backend's row-level security policy rejected the operation."""

    user_message = "Permission denied by security policy"


class ConstraintViolation(GatewayError):
    """Uniqueness or foreign-key constraint failed."""


class NetworkError(GatewayError):
    """The backend could not be reached."""


# ── Import pipeline ──────────────────────────────────────────────────

class ImportFileError(DashboardError):
    """File-level import failure; aborts the whole job."""


class UnsupportedFormatError(ImportFileError):
    pass


class EmptyFileError(ImportFileError):
    pass


class MissingRequiredFieldError(DashboardError):
    """Raised while validating a row; turned into a dropped-row outcome."""

    def __init__(self, field: str):
        super().__init__(f"Missing required field '{field}'")
        self.field = field
