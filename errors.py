"""
Domain errors raised by repositories, the integrity maintainer and handlers.

Each error carries the HTTP status the request boundary answers with and a
message that is shown to the caller verbatim.
"""


class ApiError(Exception):
    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"status": self.status_code, "error": self.message}


class ValidationError(ApiError):
    status_code = 400
    default_message = "All fields are required"


class UnauthorizedError(ApiError):
    status_code = 401
    default_message = "Authentication required"


class ForbiddenError(ApiError):
    status_code = 403
    default_message = "You are not authorized to perform this action"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "Resource not found"


class ConflictError(ApiError):
    status_code = 409
    default_message = "Resource already exists"


class InternalError(ApiError):
    status_code = 500
    default_message = "Internal server error"
