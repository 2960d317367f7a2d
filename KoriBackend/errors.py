from typing import Any, Optional


# Typed service errors; `KoriBackend.app` maps them onto the response envelope
class ApiError(Exception):
    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None, errors: Optional[list[dict[str, Any]]] = None):
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)


class BadRequest(ApiError):
    status_code = 400
    default_message = "Bad request"


class Unauthorized(ApiError):
    status_code = 401
    default_message = "Unauthorized access"


class Forbidden(ApiError):
    status_code = 403
    default_message = "Access forbidden"


class NotFound(ApiError):
    status_code = 404
    default_message = "Resource not found"


class Conflict(ApiError):
    status_code = 409
    default_message = "Resource already exists"


class TooManyRequests(ApiError):
    status_code = 429
    default_message = "Too many requests"


class InternalError(ApiError):
    status_code = 500
    default_message = "Internal server error"
