"""
Domain errors raised by the service layer.

Each error carries the HTTP status it maps to; ``create_app`` renders them as
``{"error": message}`` so route handlers never build error responses by hand.
"""


class BookingAppError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: int = None, details=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self):
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(BookingAppError):
    status_code = 400


class InvalidDateRangeError(ValidationError):
    pass


class AuthenticationError(BookingAppError):
    status_code = 401


class InvalidCredentialsError(AuthenticationError):
    pass


class AuthorizationError(BookingAppError):
    status_code = 403


class ForbiddenError(AuthorizationError):
    pass


class NotFoundError(BookingAppError):
    status_code = 404


class ConflictError(BookingAppError):
    status_code = 409


class DuplicateEmailError(ConflictError):
    pass


class InvalidStateError(BookingAppError):
    status_code = 400


class UnavailableError(BookingAppError):
    status_code = 400


class InternalError(BookingAppError):
    status_code = 500
