from typing import Any

from fastapi import status


class TenancyError(Exception):
    """Base class for exceptions from within this application."""

    #: The HTTP status code with which the error is reported.
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    #: A machine-readable name for the kind of error, so that clients can distinguish errors sharing a status code.
    code: str = "error"

    def __init__(self, message: str, data: Any = None):
        super().__init__(message)
        self.message = message
        if data is None:
            self.data = {}
        else:
            self.data = data


class ValidationError(TenancyError):
    """Raised if a payload is missing required data or is inconsistent."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation"


class ForbiddenTransition(TenancyError):
    """Raised if the actor's role on the entity doesn't allow the transition."""

    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class NotFoundError(TenancyError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class InvalidTransition(TenancyError):
    """Raised if the target status is not a direct successor of the current status."""

    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"


class ConflictError(TenancyError):
    """
    Raised if the entity's status changed between the time it was read and the time it was written.

    Clients can refetch the entity and retry.
    """

    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class AlreadyExists(TenancyError):
    """Raised if a derived entity (lease, payment obligation) already exists."""

    status_code = status.HTTP_409_CONFLICT
    code = "already_exists"


class SweepError(TenancyError):
    """
    Raised if a record needs to be skipped by a scheduled command.

    Use only with :func:`tenancy.db.handle_skipped_record`
    """

    def __init__(self, message: str, data: Any = None):
        super().__init__(message, data)
        self.category = "SKIPPED_RECORD"
