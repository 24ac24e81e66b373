"""
Outcome categories and the errors raised by store and order operations.

The HTTP layer turns each error into its outcome's status code.
"""
from enum import IntEnum


class Outcome(IntEnum):
    OK = 200
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    CONFLICT = 409


class ServiceError(Exception):
    outcome = Outcome.BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailure(ServiceError):
    outcome = Outcome.BAD_REQUEST


class ForbiddenError(ServiceError):
    outcome = Outcome.FORBIDDEN


class NotFoundError(ServiceError):
    outcome = Outcome.NOT_FOUND


class ConflictError(ServiceError):
    outcome = Outcome.CONFLICT
