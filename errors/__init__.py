"""Error taxonomy shared by the marketplace modules.

Domain modules raise subclasses of these errors; the API layer maps each class
to its HTTP status code and an ``{"error": message}`` body.
"""


class MarketplaceError(Exception):
    """Base class for all marketplace errors."""
    status_code = 500


class ValidationError(MarketplaceError):
    """Raised for malformed or missing input."""
    status_code = 400


class AuthenticationError(MarketplaceError):
    """Raised when a bearer token is missing, invalid or expired."""
    status_code = 401


class ForbiddenError(MarketplaceError):
    """Raised when a role or ownership check fails."""
    status_code = 403


class NotFoundError(MarketplaceError):
    """Raised when an entity does not exist."""
    status_code = 404


class ConflictError(MarketplaceError):
    """Raised for duplicate entries and concurrent modifications."""
    status_code = 409


class RateLimitedError(MarketplaceError):
    """Raised when a caller has exhausted its request budget."""
    status_code = 429

    def __init__(self, message: str = "Too many requests", reset_time: int = None):
        self.reset_time = reset_time
        super().__init__(message)


class UnexpectedError(MarketplaceError):
    """Raised for persistence failures and anything else unexpected."""
    status_code = 500


__all__ = [
    'MarketplaceError',
    'ValidationError',
    'AuthenticationError',
    'ForbiddenError',
    'NotFoundError',
    'ConflictError',
    'RateLimitedError',
    'UnexpectedError',
]
