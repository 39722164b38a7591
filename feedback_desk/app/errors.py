from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from feedback_desk.core.services.errors import ServiceError


logger = logging.getLogger(__name__)


def _error_body(message: str, details: list | None = None) -> dict:
    body = {"success": False, "message": message}
    if details:
        body["errors"] = details
    return body


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Convert a ServiceError into the error envelope with its status code."""
    log_fn = logger.error if exc.status_code >= 500 else logger.info
    log_fn(
        "request.error method=%s path=%s status=%s kind=%s message=%s",
        request.method,
        request.url.path,
        exc.status_code,
        type(exc).__name__,
        exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.message, exc.details))


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        "{0}: {1}".format(".".join(str(p) for p in err.get("loc", ())) or "body", err.get("msg"))
        for err in exc.errors()
    ]
    logger.info("request.invalid path=%s errors=%s", request.url.path, len(details))
    return JSONResponse(status_code=400, content=_error_body("validation_failed", details))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("request.unhandled method=%s path=%s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=_error_body("internal_error"))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
