"""
Structured JSON logging and the per-request access log.

Every log line is a JSON object with at least `ts`, `level`, `name` and
`message`. Lines emitted while a request is being served also carry its
`request_id`, which is returned to the caller in the X-Request-ID header.
"""

import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request, Response
from pythonjsonlogger.json import JsonFormatter
from starlette.middleware.base import BaseHTTPMiddleware

from message_service.metrics import record_http_request, record_message_operation

REQUEST_ID_HEADER = "X-Request-ID"

# Third-party loggers that are too chatty below INFO
NOISY_LOGGERS = ("pymongo", "httpx", "httpcore")

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

access_logger = logging.getLogger("message_service.requests")


class MessageLogFormatter(JsonFormatter):
    """Adds `ts` (record creation time, UTC, millisecond ISO-8601), `level` and `request_id`."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("ts"):
            created = datetime.fromtimestamp(record.created, tz=timezone.utc)
            log_record["ts"] = created.isoformat(timespec="milliseconds").replace("+00:00", "Z")
        log_record["level"] = record.levelname
        request_id = request_id_ctx.get()
        if request_id and "request_id" not in log_record:
            log_record["request_id"] = request_id


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """
    Send every log record to stdout as JSON.

    Uvicorn's own loggers are re-pointed at the same handler; its access log
    is switched off because RequestLoggingMiddleware writes a richer one.
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(MessageLogFormatter("%(ts)s %(level)s %(name)s %(message)s"))

    root = logging.getLogger()
    root.setLevel(log_level.upper())
    root.handlers = [handler]

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False
    logging.getLogger("uvicorn.access").disabled = True

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.INFO))

    return root


def _route_path(request: Request) -> str:
    """Route template (e.g. /messages/{message_id}) to keep metric labels bounded."""
    route = request.scope.get("route")
    return getattr(route, "path", request.url.path)


def _result_for_status(status_code: int) -> str:
    if status_code < 400:
        return "ok"
    return {
        400: "invalid_content",
        401: "unauthorized",
        403: "forbidden",
        404: "not_found",
    }.get(status_code, "error")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One JSON log line and one set of metric samples per request.

    Log keys: request_id, method, path, status, latency_ms, and when known
    user_id. Message routes add operation, message_id and result (see
    log_message_data); result defaults to a label derived from the status.

    5xx responses are logged at ERROR, 4xx at WARNING, the rest at INFO.
    /metrics itself is not counted.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            self._observe(request, response, time.perf_counter() - started)
            return response
        finally:
            request_id_ctx.reset(token)

    def _observe(self, request: Request, response: Response, latency_seconds: float) -> None:
        status = response.status_code
        if request.url.path != "/metrics":
            record_http_request(request.method, _route_path(request), status, latency_seconds)

        fields = {
            "request_id": request.state.request_id,
            "method": request.method,
            "path": request.url.path,
            "status": status,
            "latency_ms": round(latency_seconds * 1000, 2),
        }
        user_id = getattr(request.state, "user_id", None)
        if user_id:
            fields["user_id"] = user_id

        operation = getattr(request.state, "message_log_data", None)
        if operation:
            operation = {"result": _result_for_status(status), **operation}
            record_message_operation(operation["operation"], operation["result"])
            fields.update(operation)

        if status >= 500:
            level = logging.ERROR
        elif status >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        access_logger.log(level, "Request completed", extra=fields)


def log_message_data(request: Request, operation: str, message_id=None, result: Optional[str] = None) -> None:
    """
    Attach message-operation fields to the request's access log line.

    Calling it again in the same request replaces the earlier fields, so a
    handler can log the operation early and add the message id once known.
    """
    data = {"operation": operation}
    if message_id is not None:
        data["message_id"] = str(message_id)
    if result is not None:
        data["result"] = result
    request.state.message_log_data = data
