class PedicabAPIError(Exception):
    """
    Base error for everything that can go wrong while talking to the authority.
    Carries the HTTP status (if a response was received) and the server message.
    """
    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.status = status

    def __str__(self) -> str:
        if self.status is not None:
            return f"{self.message} (HTTP {self.status})"
        return self.message


class NetworkError(PedicabAPIError):
    """The authority could not be reached or did not answer in time. Retryable."""


class AuthenticationRejected(PedicabAPIError):
    """The credential attached to the request is invalid or expired (401)."""


class InvalidCredentials(PedicabAPIError):
    """Login was refused by the authority."""


class OrderConflict(PedicabAPIError):
    """The order was already claimed by another driver (409)."""


class ResourceNotFound(PedicabAPIError):
    """The requested resource does not exist (404)."""


class OrderNotFound(ResourceNotFound):
    """The referenced order no longer exists."""


class DecodeError(PedicabAPIError):
    """The authority answered with a payload that cannot be turned into a typed record."""


class ValidationFailed(Exception):
    """
    Raised before any network dispatch when user input is malformed.

    Args:
        field: The name of the offending input field.
        message: A human-readable explanation shown inline.
    """
    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message
