class NobleError(Exception):
    """Base exception for all Noble errors."""

    pass


class NotAuthenticated(NobleError):
    """Exception raised when there is no valid session for an identity."""

    pass


class NotFound(NobleError):
    """Exception raised when a referenced entity does not exist."""

    pass


class StoreUnavailable(NobleError):
    """Exception raised on a transient backend failure.

    Callers may retry the operation with backoff.
    """

    pass


class VerificationExpired(NobleError):
    """Exception raised when the phone verification state has been lost."""

    pass


class InvalidVerificationCode(NobleError):
    """Exception raised when the submitted verification code is wrong."""

    pass


class Conflict(NobleError):
    """Exception raised when a write would duplicate an existing document."""

    pass
