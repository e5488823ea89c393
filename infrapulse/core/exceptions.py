import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

class InfraPulseException(Exception):
    """Base exception, carries an error code and the HTTP status it maps to"""
    status_code = 500

    def __init__(self, message: str, code: str = "INTERNAL_ERROR"):
        self.message = message
        self.code = code
        super().__init__(self.message)

class ValidationError(InfraPulseException):
    """Bad input, e.g. an unknown severity filter"""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message, "VALIDATION_ERROR")

class AuthError(InfraPulseException):
    """Missing or invalid bearer token"""
    status_code = 401

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(message, "AUTH_ERROR")

class ForbiddenError(InfraPulseException):
    """Authenticated, but the role is not allowed to do this"""
    status_code = 403

    def __init__(self, message: str = "Permission denied"):
        super().__init__(message, "FORBIDDEN")

class NotFoundError(InfraPulseException):
    status_code = 404

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, "NOT_FOUND")

class DependencyError(InfraPulseException):
    """Store or cache unreachable. Never retried inside a request."""
    status_code = 503

    def __init__(self, message: str = "Dependency unavailable"):
        super().__init__(message, "DEPENDENCY_ERROR")

async def infrapulse_exception_handler(request: Request, exc: InfraPulseException):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: [{exc.code}] {exc.message}")
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.code, "message": exc.message, "detail": exc.message},
        headers=headers,
    )

async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"{request.method} {request.url.path} database error: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=503,
        content={"code": "DEPENDENCY_ERROR", "message": "Database unavailable", "detail": "Database unavailable"},
    )
