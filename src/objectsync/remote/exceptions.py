"""Exceptions raised by remote API clients."""

from __future__ import annotations

from typing import Any


class RemoteAPIError(Exception):
    """A remote API call failed.

    Carries the HTTP status, the remote error code and message, and the raw
    response body so callers can log the remote error verbatim.

    Attributes:
        operation: Name of the client method that failed (create, upsert, ...).
        code: HTTP status code, or 0 for transport failures.
        error_code: Remote error code (e.g. REQUIRED_FIELD_MISSING), if any.
        message: Remote error message.
        response: Raw decoded response body, if any.
    """

    def __init__(
        self,
        operation: str,
        code: int,
        message: str,
        error_code: str | None = None,
        response: Any = None,
    ) -> None:
        self.operation = operation
        self.code = code
        self.message = message
        self.error_code = error_code
        self.response = response
        super().__init__(str(self))

    def __str__(self) -> str:
        prefix = f"{self.error_code}: " if self.error_code else ""
        return f"{self.operation} failed ({self.code}): {prefix}{self.message}"


class RemoteNotAuthorizedError(RemoteAPIError):
    """The remote API rejected the session's credentials."""
