from __future__ import annotations


class StorageError(Exception):
    code: str = "STORAGE_ERROR"

    def __init__(self, message: str, *, session_id: str | None = None):
        super().__init__(message)
        self.session_id = session_id


class StorageVersionConflict(StorageError):
    code = "VERSION_CONFLICT"

    def __init__(
        self,
        message: str,
        *,
        session_id: str | None = None,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        super().__init__(message, session_id=session_id)
        self.expected_version = expected_version
        self.actual_version = actual_version


class StorageUnavailableError(StorageError):
    code = "STORAGE_UNAVAILABLE"


class SessionNotFoundError(StorageError):
    code = "SESSION_NOT_FOUND"


class StatusRegressionError(StorageError):
    """A session that has been pushed to n8n cannot go back to `draft`."""

    code = "STATUS_REGRESSION"
