"""Error taxonomy shared by the storage contract and backend clients.

Backend clients translate vendor SDK failures into these types; the
contract adds operation/container/path context without changing the
exception type or its message.
"""

from __future__ import annotations


class StorageError(RuntimeError):
    """Raised when object storage operations fail."""

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        container: str | None = None,
        path: str | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.container = container
        self.path = path

    def with_context(
        self,
        *,
        operation: str | None = None,
        container: str | None = None,
        path: str | None = None,
    ) -> "StorageError":
        """Fill in missing context fields and return the same instance."""
        if self.operation is None:
            self.operation = operation
        if self.container is None:
            self.container = container
        if self.path is None:
            self.path = path
        return self

    def __str__(self) -> str:
        message = super().__str__()
        context = [
            f"{name}={value}"
            for name, value in (
                ("operation", self.operation),
                ("container", self.container),
                ("path", self.path),
            )
            if value is not None
        ]
        if not context:
            return message
        return f"{message} ({', '.join(context)})"


class ValidationError(StorageError):
    """Raised for bad arguments or metadata limits, before any I/O."""


class NotFoundError(StorageError):
    """Raised when a container or object does not exist."""


class AlreadyExistsError(StorageError):
    """Raised when a strict create collides with an existing container."""


class UnsupportedOperationError(StorageError):
    """Raised when the backend lacks the requested capability."""


class TransportError(StorageError):
    """Raised for network or provider failures that may succeed on retry."""

    retryable = True


class AuthorizationError(StorageError):
    """Raised when credentials or the authorization session are rejected."""


class StreamEndedError(StorageError):
    """Raised when peeking a stream whose data has been fully consumed."""
