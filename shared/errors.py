"""
Shared error handling for the Points service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from .logging import event_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    event_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class PointsServiceException(Exception):
    """Base exception for the Points service."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            event_id=event_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class RuleSourceUnavailable(PointsServiceException):
    """Rule definitions could not be loaded."""

    def __init__(self, message: str = "Rule source unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("RULE_SOURCE_UNAVAILABLE", message, details)


class UnknownParticipant(PointsServiceException):
    """A referenced person or group does not exist."""

    def __init__(self, kind: str, entity_id: str, details: Optional[Dict[str, Any]] = None):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__("UNKNOWN_PARTICIPANT", f"Unknown {kind}: {entity_id}", details)


class PersistenceFailure(PointsServiceException):
    """The entity store rejected a write."""

    def __init__(self, message: str = "Persistence failure", details: Optional[Dict[str, Any]] = None):
        super().__init__("PERSISTENCE_FAILURE", message, details)


class ValidationError(PointsServiceException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)
