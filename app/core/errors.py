"""Domain error taxonomy and its translation to HTTP responses.

Guards, gates and services raise these instead of HTTPException so the
same code can run outside a request (the worker, the trial sweep). The
FastAPI boundary maps each class to one status code:

    Unauthenticated  401    Forbidden        403
    NotFound         404    BadRequest       400
    Conflict         409    PaymentRequired  402
    ServiceUnavailable 503  (billing not configured)

Every error body has the shape ``{success, message, errorCode, requestId}``.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from app.middleware.request_context import request_id_var

logger = logging.getLogger(__name__)


class DomainError(Exception):
    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, data: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data


class Unauthenticated(DomainError):
    status_code = 401
    error_code = "UNAUTHENTICATED"


class Forbidden(DomainError):
    status_code = 403
    error_code = "FORBIDDEN"


class NotFound(DomainError):
    status_code = 404
    error_code = "NOT_FOUND"


class BadRequest(DomainError):
    status_code = 400
    error_code = "BAD_REQUEST"


class Conflict(DomainError):
    status_code = 409
    error_code = "CONFLICT"


class PaymentRequired(DomainError):
    status_code = 402
    error_code = "PAYMENT_REQUIRED"


class ServiceUnavailable(DomainError):
    status_code = 503
    error_code = "SERVICE_UNAVAILABLE"


def error_payload(
    *, code: str, message: str, data: dict[str, Any] | None = None
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "success": False,
        "message": message,
        "errorCode": code,
        "requestId": request_id_var.get("-"),
    }
    if data is not None:
        payload["data"] = data
    return payload


async def _domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, DomainError)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(code=exc.error_code, message=exc.message, data=exc.data),
        headers=headers,
    )


async def _http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, HTTPException)
    if isinstance(exc.detail, dict):
        message = str(exc.detail.get("message") or "Request failed.")
    elif isinstance(exc.detail, str):
        message = exc.detail
    else:
        message = "Request failed."
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(code=f"HTTP_{exc.status_code}", message=message),
        headers=getattr(exc, "headers", None),
    )


async def _validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)
    logger.info("Validation error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=422,
        content=error_payload(
            code="VALIDATION_ERROR",
            message="Validation error. Check request body/query parameters.",
            data={"errors": jsonable_encoder(exc.errors())},
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, _domain_error_handler)
    app.add_exception_handler(HTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
