"""
SOS Response Coordination Module

Provides the emergency coordination engine:
- Geospatial lookup of signals and civilian responders
- Certification-based eligibility for each SOS level
- Race-free assignment of exactly one responder per signal
- Signal and response lifecycles through completion or cancellation
- Escalation of signals nobody has accepted
"""

from .assignment_ledger import AssignmentLedger
from .coordination_service import CoordinationService, NearbySignal
from .eligibility import Eligibility, EligibilityEvaluator
from .errors import (
    AlreadyAssigned, CancellationWindowClosed, CoordinationError, ErrorCode,
    InvalidRequest, InvalidTransition, NotAuthorized, NotEligible, NotFound,
    OperationResult, ResponseAlreadyClosed, SignalAlreadyClosed
)
from .geo_index import GeoIndex, distance_km
from .responder_registry import ResponderRegistry
from .response_lifecycle import ResponseLifecycle
from .signal_lifecycle import SignalLifecycle
from .staleness_monitor import EscalationRule, StalenessMonitor

__all__ = [
    'AssignmentLedger',
    'CoordinationService',
    'NearbySignal',
    'Eligibility',
    'EligibilityEvaluator',
    'AlreadyAssigned',
    'CancellationWindowClosed',
    'CoordinationError',
    'ErrorCode',
    'InvalidRequest',
    'InvalidTransition',
    'NotAuthorized',
    'NotEligible',
    'NotFound',
    'OperationResult',
    'ResponseAlreadyClosed',
    'SignalAlreadyClosed',
    'GeoIndex',
    'distance_km',
    'ResponderRegistry',
    'ResponseLifecycle',
    'SignalLifecycle',
    'EscalationRule',
    'StalenessMonitor'
]
