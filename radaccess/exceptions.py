"""Custom exception hierarchy for radaccess.

Each error carries the HTTP-equivalent ``status_code`` and a stable
``error_type`` so the HTTP layer that consumes this library can translate
them into consistent responses without inspecting messages.

Authorization checks never raise: evaluators return booleans or
:class:`~radaccess.core.models.Decision` objects. Only the service layer
turns a deny into :class:`PermissionDeniedError`.
"""

from __future__ import annotations


class RadAccessError(Exception):
    """Base exception for all radaccess errors."""

    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str = "An internal error occurred") -> None:
        self.message = message
        super().__init__(message)


class ConfigValidationError(RadAccessError):
    """A role configuration is missing a hard-required field."""

    status_code = 400
    error_type = "config_validation_error"


class InvalidRequestError(RadAccessError):
    """Service input is malformed beyond what Pydantic can check."""

    status_code = 400
    error_type = "invalid_request"


class PermissionDeniedError(RadAccessError):
    """The acting account is not permitted to perform the operation."""

    status_code = 403
    error_type = "permission_denied"


class NotFoundError(RadAccessError):
    """Requested account was not found or lies outside the caller's scope."""

    status_code = 404
    error_type = "not_found"


class StorageError(RadAccessError):
    """Database or storage layer failure."""

    status_code = 503
    error_type = "storage_error"


class HierarchyWriteError(StorageError):
    """A creator/child edge could not be written on both sides.

    The transaction has been rolled back; neither account was changed.
    """

    error_type = "hierarchy_write_error"
