from __future__ import annotations

from typing import Any


class APIError(Exception):
    def __init__(self, message: str, *, status_code: int = 500, code: str = "api_error", details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.details = details
