"""
API error taxonomy and the JSON envelopes every response uses.

Success: {"statusCode", "data", "message", "success": true}
Failure: {"statusCode", "data": null, "message", "success": false, "errors"}
"""

import logging
from typing import AbstractSet, Any, List, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from projection import SENSITIVE_FIELDS, to_public

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Any]] = None, status_code: Optional[int] = None):
        self.message = message or self.default_message
        self.errors = errors or []
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(ApiError):
    """Missing or invalid request field."""
    status_code = 400
    default_message = "Invalid request"


class AuthenticationError(ApiError):
    status_code = 401
    default_message = "Unauthorized request"


class AuthorizationError(ApiError):
    """The caller is authenticated but does not own the target."""
    status_code = 403
    default_message = "Unauthorized access"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "Not found"


class ConflictError(ApiError):
    status_code = 409
    default_message = "Conflict"


class DependencyFailure(ApiError):
    """The media host or the database did not complete a call."""
    status_code = 502
    default_message = "Upstream service failed"


def api_response(
    data: Any,
    message: str = "Success",
    status_code: int = 200,
    hidden: AbstractSet[str] = SENSITIVE_FIELDS,
) -> JSONResponse:
    """Wrap data in the success envelope, shaped for public output."""
    body = {
        "statusCode": status_code,
        "data": to_public(data, hidden),
        "message": message,
        "success": status_code < 400,
    }
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


def error_body(status_code: int, message: str, errors: Optional[List[Any]] = None) -> dict:
    return {
        "statusCode": status_code,
        "data": None,
        "message": message,
        "success": False,
        "errors": errors or [],
    }


async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(error_body(exc.status_code, exc.message, exc.errors)))


async def _http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.status_code, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "message": err.get("msg")}
        for err in exc.errors()
    ]
    message = "All fields are required" if any(e.get("type") == "missing" for e in exc.errors()) else "Invalid request"
    return JSONResponse(status_code=400, content=jsonable_encoder(error_body(400, message, errors)))


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_body(500, "Internal server error"))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _api_error_handler)
    app.add_exception_handler(HTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
