"""
Coordination errors and operation results

Domain failures are raised as ``CoordinationError`` subclasses inside the
SOS service and handed back to callers as ``OperationResult`` values.
Storage failures are not domain errors and surface as ``DatabaseError``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Machine-readable failure codes"""
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    ALREADY_ASSIGNED = "ALREADY_ASSIGNED"
    SIGNAL_CLOSED = "SIGNAL_CLOSED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    CANCELLATION_WINDOW_CLOSED = "CANCELLATION_WINDOW_CLOSED"
    NOT_FOUND = "NOT_FOUND"
    RESPONSE_CLOSED = "RESPONSE_CLOSED"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    INVALID_REQUEST = "INVALID_REQUEST"


class CoordinationError(Exception):
    """Base class for SOS coordination failures"""
    code = ErrorCode.INVALID_REQUEST

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason


class NotEligible(CoordinationError):
    """Responder may not take this signal"""
    code = ErrorCode.NOT_ELIGIBLE


class AlreadyAssigned(CoordinationError):
    """Another responder already holds the signal"""
    code = ErrorCode.ALREADY_ASSIGNED


class SignalAlreadyClosed(CoordinationError):
    """Signal is resolved or a false alarm"""
    code = ErrorCode.SIGNAL_CLOSED


class InvalidTransition(CoordinationError):
    code = ErrorCode.INVALID_TRANSITION


class CancellationWindowClosed(CoordinationError):
    """A responder has already arrived on scene"""
    code = ErrorCode.CANCELLATION_WINDOW_CLOSED


class NotFound(CoordinationError):
    code = ErrorCode.NOT_FOUND


class ResponseAlreadyClosed(CoordinationError):
    """Response is completed or cancelled"""
    code = ErrorCode.RESPONSE_CLOSED


class NotAuthorized(CoordinationError):
    """Actor does not own the signal or response"""
    code = ErrorCode.NOT_AUTHORIZED


class InvalidRequest(CoordinationError):
    code = ErrorCode.INVALID_REQUEST


@dataclass
class OperationResult:
    """Outcome of a coordination operation"""
    success: bool
    value: Any = None
    error: Optional[ErrorCode] = None
    message: str = ""
    reason: Optional[str] = None

    @classmethod
    def ok(cls, value: Any = None, message: str = "") -> 'OperationResult':
        return cls(success=True, value=value, message=message)

    @classmethod
    def fail(cls, error: CoordinationError) -> 'OperationResult':
        return cls(success=False, error=error.code, message=error.message, reason=error.reason)

    def to_dict(self) -> Dict[str, Any]:
        result = {'success': self.success, 'message': self.message}
        if self.error:
            result['error'] = self.error.value
        if self.reason:
            result['reason'] = self.reason
        return result
