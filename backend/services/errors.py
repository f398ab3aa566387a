from __future__ import annotations


class SyncValidationError(ValueError):
    """A push batch is malformed; nothing was written."""

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.details = list(details or [])


class PersistenceError(RuntimeError):
    """Storage failed mid-operation and the transaction was rolled back."""

    retryable = True


class InstanceError(ValueError):
    """An instance read or write targeted a date or task it cannot apply to."""


class NotFoundError(LookupError):
    pass


class ForbiddenError(PermissionError):
    pass
