"""
Error taxonomy for warp.

Every failure is local to one request/response exchange. The REST layer maps
the server-side errors to HTTP status codes; the client raises the client-side
ones to its caller.
"""


class WarpError(Exception):
    """Base class for all warp errors."""
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


class AuthError(WarpError):
    """Token mismatch."""
    status_code = 403


class NotFound(WarpError):
    """Shared source no longer exists."""
    status_code = 404


class RangeUnsatisfiable(WarpError):
    """Requested byte range cannot be honored."""
    status_code = 416


class BadUpload(WarpError):
    """Malformed or empty upload submission."""
    status_code = 400


class SizeLimitExceeded(WarpError):
    """Upload body exceeds the configured ceiling."""
    status_code = 413


class TransferIOError(WarpError):
    """Stream failed mid-transfer."""
    status_code = 500


class DestinationConflict(WarpError):
    """Destination exists and cannot be resumed; use --force to overwrite."""


class TransferError(WarpError):
    """Remote answered with an unexpected status."""
