"""Custom exceptions for martlink service operations."""


class MartLinkError(Exception):
    """Base exception for martlink errors."""

    pass


class ValidationError(MartLinkError):
    """Raised when input validation fails."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class ConfigurationError(MartLinkError):
    """Raised when required environment configuration is missing."""

    def __init__(self, message: str, missing_keys: list[str] | None = None):
        super().__init__(message)
        self.missing_keys = missing_keys or []


class AuthorizationError(MartLinkError):
    """Raised when a protected operation is called with a wrong key."""

    pass


class AirbridgeError(MartLinkError):
    """Raised when an Airbridge API call fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SheetsError(MartLinkError):
    """Raised when the mart spreadsheet cannot be read."""

    pass


class DatabaseError(MartLinkError):
    """Raised when a database operation fails."""

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.original_error = original_error
