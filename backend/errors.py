"""
Error taxonomy for the cafe API and the handlers that render it as JSON.

Every failure leaves the service as ``{"error": "<message>"}`` with an optional
``details`` field; clients are expected to branch on the status code.
"""
import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class CafeError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationFailed(CafeError):
    status_code = 400
    default_message = "Invalid request"


class NotAuthenticated(CafeError):
    status_code = 401
    default_message = "Unauthorized"


class Forbidden(CafeError):
    status_code = 403
    default_message = "Forbidden"


class NotFound(CafeError):
    status_code = 404
    default_message = "Not found"


class Conflict(CafeError):
    status_code = 409
    default_message = "Conflict"


class RateLimited(CafeError):
    status_code = 429
    default_message = "Too many attempts. Please wait."


class NotImplementedYet(CafeError):
    status_code = 501
    default_message = "Not implemented"


class InternalFailure(CafeError):
    status_code = 500
    default_message = "Internal server error"


def error_body(message: str, details: Any = None) -> dict:
    body = {"error": message}
    if details is not None:
        body["details"] = jsonable_encoder(details)
    return body


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(CafeError)
    async def handle_cafe_error(request: Request, exc: CafeError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(error_body(exc.message, exc.details), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        return JSONResponse(error_body("Invalid request", errors), status_code=400)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return JSONResponse(error_body(message), status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(SQLAlchemyError)
    async def handle_database_error(request: Request, exc: SQLAlchemyError):
        logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(error_body("Internal server error"), status_code=500)
