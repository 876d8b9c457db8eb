import json
import logging
import time
import traceback
from contextvars import ContextVar
from uuid import uuid4

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from stockflow.core.config import settings
from stockflow.core.errors import StockFlowError

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")
logger = logging.getLogger("stockflow.api")

# api: requests, ledger: stock commits, audit: trail write failures, notify: reminders
_LOGGER_NAMES = ("stockflow.api", "stockflow.ledger", "stockflow.audit", "stockflow.notify")

_STATUS_CODE_MAP = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    422: "validation_error",
}


def setup_observability(level: str | None = None) -> None:
    """Attach one JSON-lines stream handler per domain logger (idempotent)."""
    resolved = logging.getLevelName((level or settings.log_level).upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    for name in _LOGGER_NAMES:
        named = logging.getLogger(name)
        named.setLevel(resolved)
        if named.handlers:
            continue
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        named.addHandler(handler)
        named.propagate = False


def get_request_id() -> str:
    return request_id_ctx.get()


def log_event(target: logging.Logger, event: str, *, level: int = logging.INFO, **fields) -> None:
    payload = {"event": event, "request_id": get_request_id(), **fields}
    target.log(level, json.dumps(payload, default=str))


def _request_id(request: Request) -> str:
    return (
        getattr(request.state, "request_id", None)
        or request.headers.get("x-request-id")
        or get_request_id()
    )


def _error_response(
    *,
    status_code: int,
    request: Request,
    code: str,
    message: str,
    details: list[dict] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content={
            "error": {
                "code": code,
                "message": message,
                "request_id": _request_id(request),
                "path": request.url.path,
                "details": details,
            }
        },
    )


async def request_logging_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid4())
    request.state.request_id = request_id
    token = request_id_ctx.set(request_id)
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
    finally:
        log_event(
            logger,
            "request",
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        request_id_ctx.reset(token)

    response.headers["X-Request-ID"] = request_id
    return response


async def stockflow_exception_handler(request: Request, exc: StockFlowError):
    if exc.status_code >= 500:
        log_event(
            logger,
            "store_unavailable",
            level=logging.WARNING,
            path=request.url.path,
            error=exc.message,
        )
    elif exc.status_code == 409:
        # Stock and state conflicts are expected under load; keep them visible.
        log_event(logger, "request_rejected", path=request.url.path, code=exc.code, details=exc.details)

    headers = {"Retry-After": "1"} if exc.status_code == 503 else None
    return _error_response(
        status_code=exc.status_code,
        request=request,
        code=exc.code,
        message=exc.message,
        details=exc.details,
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    if isinstance(exc.detail, str):
        message, details = exc.detail, None
    else:
        message, details = "HTTP error", exc.detail
    return _error_response(
        status_code=exc.status_code,
        request=request,
        code=_STATUS_CODE_MAP.get(exc.status_code, "http_error"),
        message=message,
        details=details,
        headers=exc.headers,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = []
    for err in exc.errors():
        location = [str(part) for part in err.get("loc", []) if part != "body"]
        details.append(
            {
                "field": ".".join(location) if location else "body",
                "message": err.get("msg", "Invalid value"),
                "type": err.get("type"),
            }
        )
    return _error_response(
        status_code=422,
        request=request,
        code="validation_error",
        message="Validation failed",
        details=details,
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    log_event(
        logger,
        "unhandled_exception",
        level=logging.ERROR,
        path=request.url.path,
        error=str(exc),
        traceback=traceback.format_exc(limit=10),
    )
    return _error_response(
        status_code=500,
        request=request,
        code="internal_error",
        message="Internal server error",
    )
