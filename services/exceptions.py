class CouponError(Exception):
    """Base class for every failure the registration workflow reports."""
    message_key = "submitError"

    def __init__(self, message, *, reason=None, message_key=None):
        super().__init__(message)
        self.message = message
        self.reason = reason
        if message_key:
            self.message_key = message_key


class ConfigError(CouponError):
    """Raised when the write endpoint or sheet identifier is missing or unusable."""
    message_key = "configError"


class FormatError(CouponError):
    """Raised when a code, mobile number or name fails shape validation (no network call made)."""
    message_key = "requiredError"


class ReadError(CouponError):
    """Raised when a sheet snapshot could not be fetched or parsed."""


class ReadTimeoutError(ReadError):
    """Raised when a sheet snapshot did not arrive within the read timeout."""


class IneligibleError(CouponError):
    """Raised when a code is unknown or does not map to an active, date-valid offer."""
    message_key = "invalidQrError"


class DuplicateError(CouponError):
    """Raised when the code or the mobile number already has a registration row."""
    message_key = "duplicateQrError"


class WriteError(CouponError):
    """Raised when the append command was rejected or could not be sent."""
    message_key = "submitError"


class AmbiguousError(CouponError):
    """Raised when a reported write could not be confirmed after the verification polls."""
    message_key = "unverifiedError"
