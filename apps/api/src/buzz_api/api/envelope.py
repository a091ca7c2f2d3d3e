"""Response envelope and exception handlers shared by every endpoint."""

from __future__ import annotations

import math
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from buzz_api.core.clock import isoformat, utcnow
from buzz_api.core.errors import LedgerError
from buzz_api.core.settings import settings

_HTTP_ERROR_CODES = {
    status.HTTP_401_UNAUTHORIZED: "AUTH_001",
    status.HTTP_403_FORBIDDEN: "AUTH_003",
    status.HTTP_404_NOT_FOUND: "RESOURCE_001",
    status.HTTP_409_CONFLICT: "RESOURCE_002",
}


def success(data: Any = None, message: str = "OK") -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "message": message,
        "timestamp": isoformat(utcnow()),
    }


def paginated(items: list[Any], *, total: int, page: int, limit: int, **extra: Any) -> dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    payload: dict[str, Any] = {
        "items": items,
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": total_pages,
            "hasNext": page < total_pages,
            "hasPrev": page > 1,
        },
    }
    payload.update(extra)
    return payload


def error_body(code: str, message: str, details: Any = None) -> dict[str, Any]:
    return {
        "success": False,
        "error": {
            "code": code,
            "message": message,
            "details": jsonable_encoder(details),
            "timestamp": isoformat(utcnow()),
        },
    }


async def _ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    log = logger.bind(path=request.url.path, code=exc.code)
    if exc.status_code >= 500:
        log.error("Request failed", error=exc.message)
    else:
        log.info("Request rejected", error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, exc.message, exc.details))


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("VALIDATION_001", "Invalid input", details),
    )


async def _http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = _HTTP_ERROR_CODES.get(exc.status_code)
    if code is None:
        code = "VALIDATION_001" if exc.status_code < 500 else "SERVER_001"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", path=request.url.path)
    details = {"type": type(exc).__name__, "error": str(exc)} if settings.environment == "development" else None
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("SERVER_001", "Internal server error", details),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LedgerError, _ledger_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(HTTPException, _http_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)


__all__ = ["error_body", "paginated", "register_exception_handlers", "success"]
