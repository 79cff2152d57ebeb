"""Errors raised by the result, certificate and admin flows.

Every one of these is recovered at the HTTP boundary and returned to the
client as ``{"error": message}``.
"""


class ResultError(Exception):
    """Base class; ``message`` is what the client sees."""

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ValidationError(ResultError):
    pass


class NotFoundError(ResultError):
    pass


class ResultNotAvailableError(ResultError):
    pass


class AuthError(ResultError):
    pass
