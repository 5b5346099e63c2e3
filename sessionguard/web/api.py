from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from sessionguard import __version__
from sessionguard.core.error_reporter import ErrorReporter
from sessionguard.core.errors import InvalidTokenError, SessionGuardError, http_status_for
from sessionguard.core.events import EventLogger
from sessionguard.core.sessions.orchestrator import HeartbeatOrchestrator
from sessionguard.web.middleware import RequestContextMiddleware
from sessionguard.web.models import ErrorResponse, HeartbeatRequest, HeartbeatResponse


def _trace_id(request: Request) -> str:
    return getattr(getattr(request, "state", None), "trace_id", "web")


def create_app(
    orchestrator: HeartbeatOrchestrator,
    *,
    logger: Optional[logging.Logger] = None,
    event_logger: Optional[EventLogger] = None,
    error_reporter: Optional[ErrorReporter] = None,
    max_request_bytes: int = 16384,
) -> FastAPI:
    app = FastAPI(title="sessionguard", version=__version__)
    log = logger or logging.getLogger("sessionguard.web")
    reporter = error_reporter or ErrorReporter()

    app.middleware("http")(RequestContextMiddleware(max_request_bytes=max_request_bytes, logger=log, event_logger=event_logger))

    @app.exception_handler(SessionGuardError)
    async def session_guard_error_handler(request: Request, exc: SessionGuardError):
        reporter.write_error(exc, trace_id=_trace_id(request), subsystem="web", internal_exc=exc)
        status = http_status_for(exc)
        if status >= 500:
            log.error("Heartbeat failed: %s (%s)", exc.code, exc.user_message)
        return JSONResponse(status_code=status, content={"error": exc.user_message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        # A heartbeat without a usable token is treated like an undecryptable one.
        err = InvalidTokenError(errors=[{"loc": list(e.get("loc") or ()), "type": e.get("type")} for e in exc.errors()])
        reporter.write_error(err, trace_id=_trace_id(request), subsystem="web", internal_exc=None)
        return JSONResponse(status_code=406, content={"error": err.user_message})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        err = reporter.report_exception(exc, trace_id=_trace_id(request), subsystem="web")
        log.error("Unhandled error on %s: %s", request.url.path, type(exc).__name__)
        return JSONResponse(status_code=http_status_for(err), content={"error": err.user_message})

    @app.get("/healthcheck")
    async def healthcheck():
        return Response(status_code=200)

    @app.post(
        "/heartbeat",
        response_model=HeartbeatResponse,
        responses={406: {"model": ErrorResponse}, 412: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    )
    def heartbeat(req: HeartbeatRequest, request: Request):
        # sync handler: store I/O runs in the threadpool
        result = orchestrator.process(req.heartbeat_token, req.progress, trace_id=_trace_id(request))
        return JSONResponse(status_code=result.status, content=result.body)

    return app
