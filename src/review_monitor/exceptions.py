"""Review-server client exception classes."""

from __future__ import annotations


class ReviewToolError(Exception):
    """Base exception for all review-server client errors."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")


class ConfigurationError(ReviewToolError):
    """Raised when client configuration or credentials are missing."""

    def __init__(self, message: str) -> None:
        super().__init__("CONFIGURATION_ERROR", message)


class TransportError(ReviewToolError):
    """Raised when the server could not be reached or timed out."""


class ResponseError(ReviewToolError):
    """Raised when a response body cannot be parsed into change records."""


class AuthenticationError(ReviewToolError):
    """Raised on 401/403 responses."""


class NotFoundError(ReviewToolError):
    """Raised when the change does not exist."""


class ConflictError(ReviewToolError):
    """Raised when the change was modified concurrently (HTTP 409)."""


class ServerError(ReviewToolError):
    """Raised on 5xx responses."""
