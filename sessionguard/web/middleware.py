from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from sessionguard.core.events import EventLogger
from sessionguard.core.trace import new_trace_id, reset_trace_id, set_trace_id

TRACE_HEADER = "X-Trace-Id"


def _client_ip(request: Request) -> Optional[str]:
    return getattr(getattr(request, "client", None), "host", None)


def enforce_body_limits(body: bytes, *, max_bytes: int) -> None:
    if body is None:
        return
    if len(body) > int(max_bytes):
        raise ValueError("request too large")
    if b"\x00" in body:
        raise ValueError("binary payload rejected")


class RequestContextMiddleware:
    """
    Per-request chain:
    1) trace_id (request.state + context var + response header)
    2) request size guard for bodies
    3) request/response events
    """

    def __init__(self, *, max_request_bytes: int, logger: Optional[logging.Logger] = None, event_logger: Optional[EventLogger] = None):
        self.max_request_bytes = int(max_request_bytes)
        self.logger = logger or logging.getLogger("sessionguard.web")
        self.event_logger = event_logger

    def _event(self, trace_id: str, event: str, details: dict) -> None:
        if self.event_logger is not None:
            self.event_logger.log(trace_id, event, details)

    async def __call__(self, request: Request, call_next):  # noqa: ANN001
        trace_id = new_trace_id()
        request.state.trace_id = trace_id
        path = request.url.path
        method = request.method
        t0 = time.time()

        self._event(trace_id, "web.request", {"path": path, "method": method, "client_host": _client_ip(request)})

        if method in {"POST", "PUT", "PATCH"}:
            body = await request.body()
            try:
                enforce_body_limits(body, max_bytes=self.max_request_bytes)
            except ValueError as e:
                self.logger.warning("Rejected request to %s: %s", path, e)
                self._event(trace_id, "web.request_rejected", {"path": path, "reason": str(e)})
                status = 413 if "large" in str(e) else 400
                return JSONResponse(status_code=status, content={"error": "Request rejected."}, headers={TRACE_HEADER: trace_id})

        token = set_trace_id(trace_id)
        try:
            resp = await call_next(request)
        finally:
            reset_trace_id(token)
        resp.headers[TRACE_HEADER] = trace_id
        self._event(
            trace_id,
            "web.response",
            {"path": path, "method": method, "status": resp.status_code, "latency_ms": round((time.time() - t0) * 1000.0, 3)},
        )
        return resp
