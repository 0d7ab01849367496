"""Error taxonomy for the request lifecycle.

Every error carries the HTTP status the API layer renders it with, so the
service layer never imports FastAPI.
"""
from typing import Any, Optional


class LifecycleError(Exception):
    """Base class for all lifecycle failures reported to callers."""

    status_code = 400
    retryable = False

    def __init__(self, detail: str, **extra: Any):
        super().__init__(detail)
        self.detail = detail
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        body = {"detail": self.detail, "error": type(self).__name__, "retryable": self.retryable}
        body.update(self.extra)
        return body


class ValidationError(LifecycleError):
    """Missing or invalid fields."""

    status_code = 400

    def __init__(self, detail: str, missing_fields: Optional[list[str]] = None, **extra: Any):
        super().__init__(detail, missing_fields=list(missing_fields or []), **extra)
        self.missing_fields = list(missing_fields or [])


class PermissionDeniedError(LifecycleError):
    """The actor lacks authority for the event."""

    status_code = 403


class NotFoundError(LifecycleError):
    status_code = 404


class InvalidTransitionError(LifecycleError):
    """The event is not legal from the record's current status."""

    status_code = 409


class RequestNoLongerOpenError(InvalidTransitionError):
    pass


class ConcurrentUpdateError(InvalidTransitionError):
    """Compare-and-set kept losing to concurrent writers."""


class AlreadyRespondedError(LifecycleError):
    status_code = 409


class AlreadyClaimedError(LifecycleError):
    status_code = 409


class DuplicateActionError(LifecycleError):
    """The actor is already in the set the event would add them to."""

    status_code = 409


class ProvisioningError(LifecycleError):
    status_code = 503
    retryable = True
