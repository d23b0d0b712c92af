"""
Service-layer exceptions.

Routers translate these into HTTPException using status_code and message, so
the message must be safe to show to the end user.
"""


class ServiceError(Exception):
    status_code = 500
    default_message = "Internal Server Error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredentialError(ServiceError):
    # Same message for unknown email and wrong password
    status_code = 401
    default_message = "Invalid email or password"


class UnauthorizedError(ServiceError):
    status_code = 401
    default_message = "Invalid or expired session"


class ForbiddenError(ServiceError):
    status_code = 403
    default_message = "Not allowed"


class ConflictError(ServiceError):
    status_code = 409
    default_message = "Email is already in use"


class UserNotFoundError(ServiceError):
    status_code = 404
    default_message = "User not found"


class InvalidSignatureError(ServiceError):
    status_code = 401
    default_message = "Invalid signature"


class MalformedEventError(ServiceError):
    status_code = 401
    default_message = "Malformed event"


class RateLimitedError(ServiceError):
    status_code = 429
    default_message = "Rate limit exceeded. Try again later."


class InternalFailureError(ServiceError):
    status_code = 500
