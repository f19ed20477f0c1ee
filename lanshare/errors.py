"""Error kinds raised by the drive services.

Each kind carries the HTTP status it maps to; the app turns any of them into
``{"success": false, "message": ...}``.
"""


class DriveError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DriveError):
    status_code = 400


class AuthenticationFailed(DriveError):
    status_code = 401


class Forbidden(DriveError):
    status_code = 403


class NotFound(DriveError):
    status_code = 404


class Conflict(DriveError):
    status_code = 409


class PayloadTooLarge(DriveError):
    status_code = 413


class StorageFault(DriveError):
    """Disk I/O failed after validation and permission checks passed."""

    status_code = 500

    def __init__(self, message: str = "Storage error, please try again"):
        super().__init__(message)
