from __future__ import annotations

import logging
import re
import time
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from flow_builder.api.config import get_settings

# /v1/workflows/<id>[/validate]
_SESSION_PATH = re.compile(r"/workflows/(?P<session_id>[^/]+)")
QUIET_PATHS = frozenset({"/v1/health"})


def session_id_from(request: Request) -> Optional[str]:
    header = request.headers.get("x-session-id")
    if header:
        return header
    match = _SESSION_PATH.search(request.url.path)
    return match.group("session_id") if match else None


class TraceLoggingMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with a trace id (taken from `X-Trace-Id` or minted)
    and the session it touches, then logs one `api_request` event per call.
    """

    def __init__(self, app):
        super().__init__(app)
        self._logger = logging.getLogger(__name__)

    def _log(self, payload: Dict[str, Any], *, failed: bool, quiet: bool) -> None:
        if failed:
            self._logger.error("api_request", extra=payload)
        elif quiet:
            self._logger.debug("api_request", extra=payload)
        else:
            self._logger.info("api_request", extra=payload)

    async def dispatch(self, request: Request, call_next):
        trace_id = request.headers.get("x-trace-id") or uuid4().hex
        request.state.trace_id = trace_id
        request.state.request_id = request.headers.get("x-request-id")
        request.state.session_id = session_id_from(request)

        start = time.perf_counter()
        response: Response | None = None
        try:
            response = await call_next(request)
        finally:
            failed = response is None
            self._log(
                {
                    "event": "api_request",
                    "trace_id": trace_id,
                    "request_id": request.state.request_id,
                    "session_id": request.state.session_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": 500 if failed else response.status_code,
                    "latency_ms": int((time.perf_counter() - start) * 1000),
                    "client_ip": request.client.host if request.client else None,
                    "outcome": "error" if failed else "success",
                },
                failed=failed,
                quiet=request.url.path in QUIET_PATHS,
            )
        response.headers["X-Trace-Id"] = trace_id
        return response


def setup_middlewares(app) -> None:
    app.add_middleware(TraceLoggingMiddleware)
    origins = get_settings().allowed_origins
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Trace-Id"],
        )
