"""Map domain failures onto stable ``{"error", "message"}`` responses."""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Final

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from milesbridge.domain.errors import (
    DuplicateOrderError,
    ErrorCode,
    ExternalCallError,
    MarketplaceError,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from fastapi import FastAPI, Request

log = logging.getLogger(__name__)

_LOC_ROOTS: Final = frozenset({"body", "query", "path"})

STATUS_BY_CODE: Final[Mapping[ErrorCode, int]] = MappingProxyType(
    {
        ErrorCode.INVALID_INPUT: 400,
        ErrorCode.NOT_FOUND: 404,
        ErrorCode.CONFLICT: 409,
        ErrorCode.DUPLICATE_ORDER: 409,
        ErrorCode.BELOW_MINIMUM: 400,
        ErrorCode.INSUFFICIENT_BALANCE: 400,
        ErrorCode.CONFIG_MISSING: 503,
        ErrorCode.UNAUTHORIZED: 401,
        ErrorCode.FORBIDDEN: 403,
        ErrorCode.INTERNAL_ERROR: 500,
    }
)


def error_response(code: ErrorCode, message: str, **extra: object) -> JSONResponse:
    return JSONResponse(
        status_code=STATUS_BY_CODE[code],
        content={"error": code.value, "message": message, **extra},
    )


async def marketplace_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, MarketplaceError)
    extra: dict[str, object] = {}
    if isinstance(exc, DuplicateOrderError):
        extra["existingOrderId"] = exc.existing_order_id
    reason = getattr(exc, "reason", None)
    if reason is not None:
        extra["reason"] = reason
    log.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return error_response(exc.code, exc.message, **extra)


def _describe(errors: Sequence[Any]) -> str:
    parts: list[str] = []
    for error in errors:
        path = ".".join(str(part) for part in error.get("loc", ()) if part not in _LOC_ROOTS)
        message = str(error.get("msg", "invalid value"))
        parts.append(f"{path}: {message}" if path else message)
    return "; ".join(parts) or "Invalid request"


async def validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)
    return error_response(ErrorCode.INVALID_INPUT, _describe(exc.errors()))


async def external_call_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, ExternalCallError)
    log.error("%s %s: upstream call failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=502,
        content={
            "error": ErrorCode.INTERNAL_ERROR.value,
            "message": "An upstream service call failed",
            "retryable": exc.retryable,
        },
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return error_response(ErrorCode.INTERNAL_ERROR, "An unexpected error occurred")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(ExternalCallError, external_call_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
