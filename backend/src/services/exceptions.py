"""Shared exceptions for storage layer operations."""


class EntityStorageError(Exception):
    """
    Raised when a storage operation could not be completed.

    Wraps the remote API failure that caused it (available as __cause__),
    keeping its message and code. When raised from save(), the caller must
    assume the save did not complete, even though part of the change may
    already have been applied remotely.
    """

    def __init__(self, message: str, code: int = 0) -> None:
        self.message = message
        self.code = code
        super().__init__(message)
