"""
Structured logging for the outreach service.

Every record carries the id of the request it was emitted under, and the
owner the request named, so store and correlator lines can be joined to
the access line the middleware writes when the request completes.
"""

import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from outreach.metrics import record_http_request

REQUEST_ID_HEADER = "X-Request-ID"

# Health checks and scrapes are logged at debug so they do not drown real traffic
QUIET_PATHS = frozenset({"/health/live", "/health/ready", "/metrics"})

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
owner_id_ctx: ContextVar[Optional[str]] = ContextVar("owner_id", default=None)

_base_record_factory = logging.getLogRecordFactory()


def _context_record_factory(*args, **kwargs) -> logging.LogRecord:
    record = _base_record_factory(*args, **kwargs)
    record.request_id = request_id_ctx.get()
    record.owner_id = owner_id_ctx.get()
    return record


class OutreachJsonFormatter(jsonlogger.JsonFormatter):
    """JSON lines with a UTC millisecond `ts`, `level`, and request context when set."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("ts"):
            log_record["ts"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
        log_record["level"] = record.levelname
        for key in ("request_id", "owner_id"):
            if log_record.get(key) is None:
                log_record.pop(key, None)


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """
    Send all logging to stdout as JSON and stamp request context on records.

    Uvicorn's loggers are pointed at the same handler; its access log is
    switched off because RequestLoggingMiddleware writes one line per request.
    """
    logging.setLogRecordFactory(_context_record_factory)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(OutreachJsonFormatter("%(ts)s %(level)s %(name)s %(message)s"))

    root = logging.getLogger()
    root.setLevel(log_level.upper())
    root.handlers = [handler]

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        server_logger = logging.getLogger(name)
        server_logger.handlers = [handler]
        server_logger.propagate = False
    logging.getLogger("uvicorn.access").disabled = True

    # SQL echo is far too chatty for INFO
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return root


def annotate_request(request: Request, **fields) -> None:
    """
    Add fields to the access line for this request. None values are skipped.

    The webhook uses this for message_id and result (recorded, ignored,
    invalid_signature, validation_error, not_configured).
    """
    annotations = getattr(request.state, "log_fields", {})
    annotations.update({key: value for key, value in fields.items() if value is not None})
    request.state.log_fields = annotations


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One structured line per request, plus the request context for every
    record logged while the request runs.

    Access line keys: method, path, route (template), status, latency_ms,
    anything added with annotate_request; request_id and owner_id come
    from the context. A caller-supplied X-Request-ID is reused.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        request_token = request_id_ctx.set(request_id)
        owner_token = owner_id_ctx.set(request.query_params.get("owner_id"))
        started = time.perf_counter()

        try:
            response = await call_next(request)
            elapsed = time.perf_counter() - started
            response.headers[REQUEST_ID_HEADER] = request_id

            route = getattr(request.scope.get("route"), "path", request.url.path)
            if request.url.path != "/metrics":
                record_http_request(
                    method=request.method,
                    path=route,
                    status=response.status_code,
                    latency_seconds=elapsed,
                )

            fields = {
                "method": request.method,
                "path": request.url.path,
                "route": route,
                "status": response.status_code,
                "latency_ms": round(elapsed * 1000, 2),
                **getattr(request.state, "log_fields", {}),
            }
            if response.status_code >= 500:
                level = logging.ERROR
            elif response.status_code >= 400:
                level = logging.WARNING
            elif request.url.path in QUIET_PATHS:
                level = logging.DEBUG
            else:
                level = logging.INFO
            logging.getLogger("outreach.requests").log(level, "Request completed", extra=fields)
            return response
        finally:
            owner_id_ctx.reset(owner_token)
            request_id_ctx.reset(request_token)
