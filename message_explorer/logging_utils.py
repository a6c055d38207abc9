"""
Structured JSON logging for the explorer.

Every request gets an id that is echoed in the X-Request-ID header and
stamped on each log line emitted while the request is handled. Routes can
attach extra fields (page shape, upstream failures) to the access line.
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

from message_explorer.metrics import record_http_request


ACCESS_LOGGER = "message_explorer.requests"

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    return request_id_ctx.get()


class ExplorerJsonFormatter(jsonlogger.JsonFormatter):
    """Adds `ts` (UTC, millisecond ISO-8601), `level` and the current request id."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_record.setdefault("ts", created.isoformat(timespec="milliseconds").replace("+00:00", "Z"))
        log_record["level"] = record.levelname
        request_id = request_id_ctx.get()
        if request_id and "request_id" not in log_record:
            log_record["request_id"] = request_id


def setup_logging(log_level: str = "INFO", quiet: tuple = ("httpx", "httpcore")) -> logging.Logger:
    """
    Route the root logger and uvicorn's loggers through one JSON handler.

    Loggers named in `quiet` are raised to WARNING; httpx otherwise logs
    every RPC call at INFO.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ExplorerJsonFormatter("%(ts)s %(level)s %(name)s %(message)s"))

    root = logging.getLogger()
    root.setLevel(log_level.upper())
    root.handlers = [handler]

    for name in ("uvicorn", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False

    # Access lines come from RequestLogMiddleware
    logging.getLogger("uvicorn.access").disabled = True

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


def annotate_request(request: Request, **fields) -> None:
    """Merge `fields` into the access log line for this request."""
    extra = getattr(request.state, "log_fields", None)
    if extra is None:
        extra = request.state.log_fields = {}
    extra.update(fields)


def annotate_page(request: Request, cursor: Optional[int], page) -> None:
    """
    Record how a /messages page was produced: the requested cursor, the
    number of messages returned, how many upstream events were fetched for
    it and the cursor handed back to the client.
    """
    annotate_request(
        request,
        cursor=cursor,
        returned=len(page.messages),
        backfilled=page.backfilled,
        next_cursor=page.next_cursor,
    )


def annotate_upstream_failure(request: Request, cursor: Optional[int], error: Exception) -> None:
    annotate_request(request, cursor=cursor, upstream_error=str(error))


class RequestLogMiddleware(BaseHTTPMiddleware):
    """
    One access line per request: request_id, method, path, status,
    latency_ms, plus whatever the route attached with annotate_request.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = uuid.uuid4().hex
        token = request_id_ctx.set(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            elapsed = time.perf_counter() - started
            response.headers["X-Request-ID"] = request_id

            path = request.url.path
            if path != "/metrics":
                record_http_request(request.method, path, response.status_code, elapsed)

            fields = {
                "request_id": request_id,
                "method": request.method,
                "path": path,
                "status": response.status_code,
                "latency_ms": round(elapsed * 1000, 2),
            }
            fields.update(getattr(request.state, "log_fields", None) or {})

            if response.status_code >= 500:
                level = logging.ERROR
            elif response.status_code >= 400:
                level = logging.WARNING
            else:
                level = logging.INFO
            logging.getLogger(ACCESS_LOGGER).log(level, "Request completed", extra=fields)
            return response
        finally:
            request_id_ctx.reset(token)
