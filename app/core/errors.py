"""
Error taxonomy for the access control service.

Every failure the service reports deliberately is an AccessControlError.
Routes and dependencies raise them; a single exception handler in
``app.main`` renders them into the response envelope.
"""
from typing import Any, Dict, Optional

from fastapi import status


class AccessControlError(Exception):
    """Base class carrying the HTTP status and a client-safe message."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Request failed"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class Unauthenticated(AccessControlError):
    """No identity could be resolved for the request."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class Forbidden(AccessControlError):
    """Identity present but not allowed to perform the operation."""

    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You do not have permission to perform this action"


class InvalidArgument(AccessControlError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class NotFound(AccessControlError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class Conflict(AccessControlError):
    """A competing mutation was detected; the caller may retry."""

    status_code = status.HTTP_409_CONFLICT
    default_message = "Concurrent modification detected, please retry"


class StorageFailure(AccessControlError):
    """The transaction could not be committed and was rolled back."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Storage error, no changes were applied"
