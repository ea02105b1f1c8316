"""Typed error outcomes shared by every core component.

Each error carries the HTTP status and machine-readable code it maps to at the
API boundary. Handlers in server.py turn them into the
``{"error": ..., "code": ...}`` envelope.
"""
from typing import Optional


class AppError(Exception):
    status_code = 500
    code = "INTERNAL"
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class InvalidIdentifier(AppError):
    status_code = 400
    code = "INVALID_IDENTIFIER"
    default_message = "Invalid identifier"


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "field": self.field}


class BadRequest(AppError):
    status_code = 400
    code = "BAD_REQUEST"
    default_message = "Bad request"


class Unauthenticated(AppError):
    status_code = 401
    code = "UNAUTHENTICATED"
    default_message = "Unauthorized"


class Forbidden(AppError):
    status_code = 403
    code = "FORBIDDEN"
    default_message = "Access denied"


class NotFound(AppError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Not found"


class DuplicateEntity(AppError):
    status_code = 409
    code = "DUPLICATE_ENTITY"
    default_message = "Entity already exists"


class UpstreamUnavailable(AppError):
    status_code = 503
    code = "UPSTREAM_UNAVAILABLE"
    default_message = "Required service is not configured"


class Internal(AppError):
    pass
