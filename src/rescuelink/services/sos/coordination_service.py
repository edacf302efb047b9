"""
SOS Coordination Service

Orchestrates signals, responders and responses:
- Signal intake and nearby-signal listings for responders
- Race-free acceptance through the assignment ledger
- Response status tracking, chat, victim cancellation and completion
- Domain event fan-out to notification subscribers
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from rescuelink.core.database import DatabaseManager, get_database
from rescuelink.core.logging import LogContext, get_structured_logger
from rescuelink.models.sos import (
    Certification, CertificationType, ChatMessage, CompletionRecord, CoordinationEvent,
    EmergencyLevel, EmergencyType, EventType, GeoPoint, ResponderProfile, Response,
    ResponseState, RESPONSE_ORDER, SenderType, Signal, SignalPriority, SignalState,
    SIGNAL_ACTIVE_STATES, SIGNAL_OPEN_STATES, StatusUpdateType, utc_now
)
from .assignment_ledger import AssignmentLedger
from .eligibility import EligibilityEvaluator
from .errors import (
    CoordinationError, InvalidRequest, NotAuthorized, NotFound,
    OperationResult, ResponseAlreadyClosed
)
from .geo_index import GeoIndex
from .responder_registry import MAX_RADIUS_KM, ResponderRegistry, check_rating
from .response_lifecycle import ResponseLifecycle
from .signal_lifecycle import SignalLifecycle


REASON_ALREADY_ASSIGNED = "already_assigned"
MAX_CHAT_LENGTH = 1000

EventListener = Callable[[CoordinationEvent], None]


@dataclass
class NearbySignal:
    """Signal listing entry for a responder"""
    signal: Signal
    distance_km: float
    can_accept: bool
    reason: Optional[str] = None
    assigned: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'signal': self.signal.to_dict(),
            'distance_km': round(self.distance_km, 3),
            'can_accept': self.can_accept,
            'reason': self.reason,
            'assigned': self.assigned
        }


class CoordinationService:
    """Entry point for every SOS coordination operation"""

    def __init__(self, db: Optional[DatabaseManager] = None, config: Optional[Dict[str, Any]] = None):
        self.logger = logging.getLogger(__name__)
        self.struct_logger = get_structured_logger('sos.coordination')
        self.db = db or get_database()
        self.config = config or {}

        self.default_radius_km = float(self.config.get('default_radius_km', 5))
        self.public_default_radius_km = float(self.config.get('public_default_radius_km', 10))
        self.public_max_radius_km = float(self.config.get('public_max_radius_km', 10000))

        self.evaluator = EligibilityEvaluator()
        self.signals = SignalLifecycle(self.db)
        self.responses = ResponseLifecycle(self.db)
        self.responders = ResponderRegistry(self.db)
        self.ledger = AssignmentLedger(
            self.db, self.signals, self.responses, self.responders, self.evaluator
        )
        self.signal_index = GeoIndex("signals")

        self._listeners: List[EventListener] = []
        self._listeners_lock = threading.Lock()

        self.rebuild_indexes()

    def rebuild_indexes(self) -> None:
        """Reload the in-memory position indexes from storage"""
        self.signal_index.clear()
        for signal in self.signals.list_by_status(SIGNAL_ACTIVE_STATES):
            self.signal_index.upsert(signal.id, signal.location)
        responder_count = self.responders.load_index()

        self.logger.info(
            f"Indexed {len(self.signal_index)} active signals and {responder_count} responder positions"
        )

    # Events

    def subscribe(self, listener: EventListener) -> None:
        """Register a callback for coordination events"""
        with self._listeners_lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(self, event_type: EventType, signal_id: str,
              response_id: Optional[str] = None, **payload) -> CoordinationEvent:
        event = CoordinationEvent(event_type, signal_id, response_id, payload)
        self.struct_logger.info(
            "coordination_event",
            event_type=event_type.value,
            signal_id=signal_id,
            response_id=response_id
        )

        with self._listeners_lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                self.logger.error(f"Event listener failed on {event_type.value} for signal {signal_id}: {e}")

        return event

    def _execute(self, operation: str, func: Callable[[], Any], **context) -> OperationResult:
        """Run an operation, turning domain errors into a failed result"""
        with LogContext(self.struct_logger, operation=operation, **context) as log:
            try:
                value = func()
            except CoordinationError as e:
                log.info("operation_rejected", error=e.code.value, reason=e.reason, detail=e.message)
                return OperationResult.fail(e)

            log.debug("operation_completed")
            return OperationResult.ok(value)

    # Intake and queries

    def create_signal(self, reporter_id: str, location: GeoPoint,
                      level: Union[EmergencyLevel, int] = EmergencyLevel.FOOD_WATER,
                      message: str = "",
                      priority: Union[SignalPriority, str] = SignalPriority.MEDIUM,
                      emergency_type: Union[EmergencyType, str] = EmergencyType.OTHER,
                      contact_phone: Optional[str] = None,
                      address: str = "") -> OperationResult:
        """
        Register a new SOS signal

        Args:
            reporter_id: Identity of the victim raising the signal
            location: Victim position
            level: 1 food/water, 2 medical, 3 life-threatening

        Returns:
            OperationResult carrying the stored Signal
        """
        def run():
            if not reporter_id:
                raise InvalidRequest("A reporter id is required")
            if location is None:
                raise InvalidRequest("A location is required")
            try:
                signal = Signal(
                    reporter_id=reporter_id,
                    location=location,
                    level=EmergencyLevel(level),
                    message=message or "",
                    priority=SignalPriority(priority),
                    emergency_type=EmergencyType(emergency_type),
                    contact_phone=contact_phone,
                    address=address or ""
                )
            except ValueError as e:
                raise InvalidRequest(f"Invalid signal: {e}")

            with self.ledger.signal_scope(signal.id):
                self.signals.create(signal)
                self.signal_index.upsert(signal.id, signal.location)

                nearby = [profile.id for profile, _ in self._eligible_responders_near(signal)]
                self._emit(
                    EventType.SIGNAL_CREATED, signal.id,
                    level=signal.level.value,
                    priority=signal.priority.value,
                    location=signal.location.to_dict(),
                    nearby_responders=nearby
                )
            return signal

        return self._execute('create_signal', run, reporter_id=reporter_id)

    def list_nearby_signals(self, responder_id: str) -> OperationResult:
        """Open signals inside the responder's radius, closest first"""
        def run() -> List[NearbySignal]:
            responder = self.responders.require(responder_id)
            if responder.location is None:
                raise InvalidRequest("Responder location is unknown; update location first")

            listing = []
            for signal_id, distance in self.signal_index.nearest(
                    responder.location, responder.availability_radius_km or self.default_radius_km):
                signal = self.signals.get(signal_id)
                if signal is None or signal.status not in SIGNAL_OPEN_STATES:
                    continue
                listing.append(self._annotate(responder, signal, distance))
            return listing

        return self._execute('list_nearby_signals', run, responder_id=responder_id)

    def _annotate(self, responder: ResponderProfile, signal: Signal, distance: float) -> NearbySignal:
        eligibility = self.evaluator.evaluate(responder, signal)
        assigned = signal.active_response_id is not None
        reason = eligibility.reason or (REASON_ALREADY_ASSIGNED if assigned else None)
        return NearbySignal(
            signal=signal,
            distance_km=distance,
            can_accept=eligibility.eligible and not assigned,
            reason=reason,
            assigned=assigned
        )

    def find_signals_near(self, location: GeoPoint,
                          radius_km: Optional[float] = None) -> OperationResult:
        """Public query for active signals around a point"""
        def run() -> List[Tuple[Signal, float]]:
            radius = self.public_default_radius_km if radius_km is None else radius_km
            radius = min(max(radius, 0.0), self.public_max_radius_km)

            matches = []
            for signal_id, distance in self.signal_index.nearest(location, radius):
                signal = self.signals.get(signal_id)
                if signal is not None and signal.status in SIGNAL_ACTIVE_STATES:
                    matches.append((signal, distance))
            return matches

        return self._execute('find_signals_near', run)

    def find_nearby_responders(self, signal_id: str,
                               radius_km: Optional[float] = None) -> OperationResult:
        """Eligible responders close enough to help with a signal"""
        def run() -> List[Tuple[ResponderProfile, float]]:
            signal = self._require_signal(signal_id)
            return self._eligible_responders_near(signal, radius_km)

        return self._execute('find_nearby_responders', run, signal_id=signal_id)

    def _eligible_responders_near(self, signal: Signal,
                                  radius_km: Optional[float] = None) -> List[Tuple[ResponderProfile, float]]:
        search_radius = MAX_RADIUS_KM if radius_km is None else radius_km
        matches = []
        for responder_id, distance in self.responders.geo_index.nearest(signal.location, search_radius):
            profile = self.responders.get(responder_id)
            if profile is None or not self.evaluator.can_accept(profile, signal):
                continue
            # Without an explicit radius each responder's own reach applies
            if radius_km is None and distance > profile.availability_radius_km:
                continue
            matches.append((profile, distance))
        return matches

    def get_signal_status(self, signal_id: str, actor_id: Optional[str] = None) -> OperationResult:
        """Polling view of a signal for the victim or the assigned responder"""
        def run() -> Dict[str, Any]:
            signal = self._require_signal(signal_id)
            if actor_id is not None and actor_id not in (signal.reporter_id, signal.assigned_responder):
                raise NotAuthorized(f"{actor_id} may not view signal {signal_id}")

            response = self.responses.get_active_for_signal(signal_id)
            if response is None and signal.status == SignalState.RESOLVED:
                history = self.responses.list_for_signal(signal_id)
                completed = [r for r in history if r.status == ResponseState.COMPLETED]
                response = completed[-1] if completed else None

            responder = None
            if response is not None:
                profile = self.responders.get(response.responder_id)
                if profile is not None:
                    responder = {
                        'id': profile.id,
                        'full_name': profile.full_name,
                        'phone': profile.phone,
                        'rating': profile.rating
                    }

            return {
                'signal': signal.to_dict(),
                'status': signal.status.value,
                'assigned_responder': responder,
                'response': response.to_dict() if response else None,
                'distance_to_victim_km': response.distance_to_victim_km if response else None,
                'chat_messages': [m.to_dict() for m in response.chat_messages] if response else [],
                'status_updates': [u.to_dict() for u in signal.status_updates]
            }

        return self._execute('get_signal_status', run, signal_id=signal_id)

    def get_response(self, response_id: str, actor_id: Optional[str] = None) -> OperationResult:
        def run() -> Response:
            response = self._require_response(response_id)
            if actor_id is not None and actor_id != response.responder_id:
                signal = self.signals.get(response.signal_id)
                if signal is None or actor_id != signal.reporter_id:
                    raise NotAuthorized(f"{actor_id} may not view response {response_id}")
            return response

        return self._execute('get_response', run, response_id=response_id)

    def get_pending_signals(self) -> List[Signal]:
        """Signals still waiting for a responder"""
        return self.signals.list_by_status([SignalState.PENDING])

    # Mutations

    def accept_signal(self, responder_id: str, signal_id: str) -> OperationResult:
        """Try to take a signal; exactly one concurrent caller can win"""
        def run() -> Response:
            with self.ledger.signal_scope(signal_id):
                response, signal = self.ledger.try_accept(signal_id, responder_id)
                self._emit(
                    EventType.SIGNAL_ACCEPTED, signal.id, response.id,
                    responder_id=responder_id,
                    reporter_id=signal.reporter_id,
                    distance_to_victim_km=response.distance_to_victim_km
                )
            return response

        return self._execute('accept_signal', run, signal_id=signal_id, responder_id=responder_id)

    def update_response_status(self, response_id: str, new_status: Union[ResponseState, str],
                               location: Optional[GeoPoint] = None,
                               actor_id: Optional[str] = None) -> OperationResult:
        """
        Move a response along its lifecycle

        Cancelling is the responder withdrawing: the response is closed and
        the signal goes back to pending for someone else to accept. A
        reported location also becomes the responder's current position.
        """
        def run() -> Response:
            try:
                status = ResponseState(new_status)
            except ValueError:
                raise InvalidRequest(f"Unknown response status: {new_status}")

            signal_id = self._require_response(response_id).signal_id
            with self.ledger.signal_scope(signal_id):
                with self.db.transaction(immediate=True) as conn:
                    response = self._require_response(response_id, conn)
                    if actor_id is not None and actor_id != response.responder_id:
                        raise NotAuthorized(f"{actor_id} does not own response {response_id}")

                    signal = self._require_signal(signal_id, conn)
                    previous = response.status

                    if status == ResponseState.CANCELLED:
                        self.responses.cancel(response, "responder_withdrew", conn)
                        if not signal.is_terminal():
                            self.signals.reopen(signal, conn)
                        changed = True
                    else:
                        response, changed = self.responses.advance(
                            response, status, location, signal.location, conn
                        )
                        if changed:
                            self._record_progress(signal, response, conn)

                    if location is not None:
                        self.responders.record_location(response.responder_id, location, conn)

                if location is not None:
                    self.responders.geo_index.upsert(response.responder_id, location)

                if changed:
                    self._emit(
                        EventType.RESPONSE_STATUS_CHANGED, signal_id, response.id,
                        status=response.status.value,
                        previous_status=previous.value,
                        distance_to_victim_km=response.distance_to_victim_km
                    )
            return response

        return self._execute(
            'update_response_status', run,
            response_id=response_id, status=getattr(new_status, 'value', new_status)
        )

    def _record_progress(self, signal: Signal, response: Response, conn) -> None:
        if (RESPONSE_ORDER.index(response.status) >= RESPONSE_ORDER.index(ResponseState.EN_ROUTE)
                and signal.status == SignalState.ACKNOWLEDGED):
            self.signals.mark_responding(signal, conn)

        if response.status == ResponseState.EN_ROUTE:
            eta = ""
            if response.distance_to_victim_km is not None:
                eta = f" ({response.distance_to_victim_km:.1f} km away)"
            self.signals.record_update(
                signal, f"Responder is on the way{eta}", StatusUpdateType.RESPONDER_EN_ROUTE, conn
            )
        elif response.status == ResponseState.ARRIVED:
            self.signals.record_update(
                signal, "Responder has arrived at your location", StatusUpdateType.RESPONDER_ARRIVED, conn
            )

    def mark_victim_safe(self, signal_id: str, location: Optional[GeoPoint] = None,
                         actor_id: Optional[str] = None) -> OperationResult:
        """
        Victim cancels their SOS

        Allowed until a responder arrives; any active response is cancelled
        and the signal becomes a false alarm.
        """
        def run() -> Signal:
            with self.ledger.signal_scope(signal_id):
                with self.db.transaction(immediate=True) as conn:
                    signal = self._require_signal(signal_id, conn)
                    if actor_id is not None and actor_id != signal.reporter_id:
                        raise NotAuthorized(f"{actor_id} did not raise signal {signal_id}")

                    active = self.responses.get_active_for_signal(signal_id, conn)
                    self.signals.mark_false_alarm(signal, active, location, conn)
                    if active is not None:
                        self.responses.cancel(active, "victim_safe_already", conn)

                self.signal_index.remove(signal_id)

                if active is not None:
                    self._emit(
                        EventType.RESPONSE_STATUS_CHANGED, signal_id, active.id,
                        status=active.status.value,
                        reason=active.cancellation_reason
                    )
                self._emit(EventType.SIGNAL_CLOSED, signal_id, status=SignalState.FALSE_ALARM.value)
            return signal

        return self._execute('mark_victim_safe', run, signal_id=signal_id)

    def complete_rescue(self, response_id: str, completion: CompletionRecord,
                        actor_id: Optional[str] = None) -> OperationResult:
        """Close a response with its completion record and resolve the signal"""
        def run() -> Response:
            if not isinstance(completion, CompletionRecord):
                raise InvalidRequest("A completion record is required")

            signal_id = self._require_response(response_id).signal_id
            with self.ledger.signal_scope(signal_id):
                with self.db.transaction(immediate=True) as conn:
                    response = self._require_response(response_id, conn)
                    if actor_id is not None and actor_id != response.responder_id:
                        raise NotAuthorized(f"{actor_id} does not own response {response_id}")
                    if not response.is_active():
                        raise ResponseAlreadyClosed(
                            f"Response {response_id} is already {response.status.value}"
                        )

                    signal = self._require_signal(signal_id, conn)
                    record = completion
                    missing = completion.missing_person
                    if missing is not None and missing.last_seen_location is None:
                        # Stored copy only; the caller's record stays as given
                        record = replace(
                            completion, missing_person=replace(missing, last_seen_location=signal.location)
                        )

                    self.responses.complete(response, record, conn)
                    self.signals.resolve(signal, record, conn)

                    profile = self.responders.get(response.responder_id, conn)
                    if profile is not None:
                        self.responders.record_outcome(profile, record.outcome, conn)

                self.signal_index.remove(signal_id)

                self._emit(
                    EventType.RESPONSE_STATUS_CHANGED, signal.id, response.id,
                    status=response.status.value,
                    outcome=record.outcome.value
                )
                self._emit(
                    EventType.SIGNAL_CLOSED, signal.id, response.id,
                    status=signal.status.value,
                    outcome=record.outcome.value,
                    relief_camp_name=signal.relief_camp_name
                )
                if record.create_missing_person_entry:
                    self._emit(
                        EventType.MISSING_PERSON_REPORTED, signal.id, response.id,
                        missing_person=record.missing_person.to_dict(),
                        relief_camp_id=record.relief_camp_id,
                        relief_camp_name=record.relief_camp_name,
                        reported_by=response.responder_id
                    )
            return response

        return self._execute('complete_rescue', run, response_id=response_id)

    def rate_response(self, response_id: str, rating: int,
                      actor_id: Optional[str] = None) -> OperationResult:
        """Victim rates the responder of a completed rescue, once"""
        def run() -> Response:
            check_rating(rating)

            signal_id = self._require_response(response_id).signal_id
            with self.ledger.signal_scope(signal_id):
                with self.db.transaction(immediate=True) as conn:
                    response = self._require_response(response_id, conn)
                    signal = self._require_signal(signal_id, conn)
                    if actor_id is not None and actor_id != signal.reporter_id:
                        raise NotAuthorized(f"{actor_id} did not raise signal {signal_id}")

                    self.responses.record_rating(response, rating, conn)
                    self.responders.rate(response.responder_id, rating, conn)
            return response

        return self._execute('rate_response', run, response_id=response_id)

    def post_chat_message(self, response_id: str, sender_id: str, text: str) -> OperationResult:
        """Add a chat message between the victim and the assigned responder"""
        def run() -> ChatMessage:
            body = (text or "").strip()
            if not body:
                raise InvalidRequest("Message text is required")
            if len(body) > MAX_CHAT_LENGTH:
                raise InvalidRequest(f"Message text exceeds {MAX_CHAT_LENGTH} characters")

            signal_id = self._require_response(response_id).signal_id
            with self.ledger.signal_scope(signal_id):
                with self.db.transaction(immediate=True) as conn:
                    response = self._require_response(response_id, conn)
                    if not response.is_active():
                        raise ResponseAlreadyClosed(
                            f"Response {response_id} is already {response.status.value}"
                        )

                    signal = self._require_signal(signal_id, conn)
                    if sender_id == response.responder_id:
                        sender_type = SenderType.RESPONDER
                    elif sender_id == signal.reporter_id:
                        sender_type = SenderType.VICTIM
                    else:
                        raise NotAuthorized(f"{sender_id} is not part of response {response_id}")

                    message = ChatMessage(sender_id=sender_id, sender_type=sender_type, text=body)
                    self.responses.add_chat_message(response, message, conn)
                    if sender_type == SenderType.RESPONDER:
                        self.signals.record_update(
                            signal, f"Message from responder: {body}", StatusUpdateType.CHAT_MESSAGE, conn
                        )

                self._emit(
                    EventType.CHAT_MESSAGE_POSTED, signal_id, response_id,
                    message=message.to_dict()
                )
            return message

        return self._execute('post_chat_message', run, response_id=response_id, sender_id=sender_id)

    def escalate_signal(self, signal_id: str) -> OperationResult:
        """Bump the escalation level of a still-pending signal"""
        def run() -> bool:
            with self.ledger.signal_scope(signal_id):
                with self.db.transaction(immediate=True) as conn:
                    signal = self._require_signal(signal_id, conn)
                    raised = self.signals.escalate(signal, conn)

                if raised:
                    self.logger.warning(
                        f"Signal {signal_id} escalated to level {signal.escalation_level} with no responder"
                    )
                    nearby = [profile.id for profile, _ in self._eligible_responders_near(signal, MAX_RADIUS_KM)]
                    self._emit(
                        EventType.SIGNAL_ESCALATED, signal_id,
                        escalation_level=signal.escalation_level,
                        level=signal.level.value,
                        nearby_responders=nearby
                    )
            return raised

        return self._execute('escalate_signal', run, signal_id=signal_id)

    # Responder management

    def register_responder(self, responder_id: str, full_name: str, phone: str = "",
                           radius_km: Optional[float] = None,
                           location: Optional[GeoPoint] = None) -> OperationResult:
        """Sign up a civilian responder; new accounts start pending verification"""
        def run() -> ResponderProfile:
            if not full_name:
                raise InvalidRequest("A full name is required")
            profile = ResponderProfile(
                id=responder_id,
                full_name=full_name,
                phone=phone or "",
                location=location,
                location_updated_at=utc_now() if location else None,
                availability_radius_km=self.default_radius_km if radius_km is None else radius_km
            )
            return self.responders.register(profile)

        return self._execute('register_responder', run, responder_id=responder_id)

    def get_responder(self, responder_id: str) -> OperationResult:
        return self._execute(
            'get_responder', lambda: self.responders.require(responder_id), responder_id=responder_id
        )

    def get_responder_stats(self, responder_id: str) -> OperationResult:
        """Response counters and rating for a responder"""
        def run() -> Dict[str, Any]:
            profile = self.responders.require(responder_id)
            success_rate = 0.0
            if profile.total_responses:
                success_rate = round(profile.successful_responses / profile.total_responses * 100, 1)
            return {
                'total_responses': profile.total_responses,
                'successful_responses': profile.successful_responses,
                'failed_responses': profile.failed_responses,
                'success_rate': success_rate,
                'rating': profile.rating,
                'total_ratings': profile.total_ratings,
                'verification_status': profile.verification_status.value,
                'allowed_levels': sorted(level.value for level in profile.allowed_levels)
            }

        return self._execute('get_responder_stats', run, responder_id=responder_id)

    def add_certification(self, responder_id: str, cert_type: Union[CertificationType, str],
                          certificate_number: str = "", issued_by: str = "") -> OperationResult:
        """Attach an unverified certification awaiting admin review"""
        def run() -> ResponderProfile:
            try:
                certification = Certification(
                    cert_type=CertificationType(cert_type),
                    certificate_number=certificate_number or "",
                    issued_by=issued_by or ""
                )
            except ValueError as e:
                raise InvalidRequest(f"Invalid certification: {e}")
            return self.responders.add_certification(responder_id, certification)

        return self._execute('add_certification', run, responder_id=responder_id)

    def update_responder_location(self, responder_id: str, location: GeoPoint) -> OperationResult:
        return self._execute(
            'update_responder_location',
            lambda: self.responders.update_location(responder_id, location),
            responder_id=responder_id
        )

    def set_responder_availability(self, responder_id: str, available: bool) -> OperationResult:
        return self._execute(
            'set_responder_availability',
            lambda: self.responders.set_availability(responder_id, available),
            responder_id=responder_id
        )

    def set_responder_radius(self, responder_id: str, radius_km: float) -> OperationResult:
        return self._execute(
            'set_responder_radius',
            lambda: self.responders.set_radius(responder_id, radius_km),
            responder_id=responder_id
        )

    def review_responder(self, responder_id: str, approve: bool) -> OperationResult:
        """Admin approval or rejection of a responder account"""
        return self._execute(
            'review_responder',
            lambda: self.responders.review(responder_id, approve),
            responder_id=responder_id, approve=approve
        )

    def verify_certification(self, responder_id: str, cert_index: int,
                             verified: bool = True) -> OperationResult:
        """Admin decision on one certification, addressed by its position"""
        def run() -> ResponderProfile:
            profile = self.responders.require(responder_id)
            if not 0 <= cert_index < len(profile.certifications):
                raise InvalidRequest(f"Invalid certification index {cert_index}")
            certification = profile.certifications[cert_index]
            return self.responders.verify_certification(responder_id, certification.id, verified)

        return self._execute('verify_certification', run, responder_id=responder_id)

    def suspend_responder(self, responder_id: str, reason: str = "") -> OperationResult:
        return self._execute(
            'suspend_responder',
            lambda: self.responders.suspend(responder_id, reason),
            responder_id=responder_id
        )

    # Helpers

    def _require_signal(self, signal_id: str, conn=None) -> Signal:
        signal = self.signals.get(signal_id, conn)
        if signal is None:
            raise NotFound(f"Signal {signal_id} not found")
        return signal

    def _require_response(self, response_id: str, conn=None) -> Response:
        response = self.responses.get(response_id, conn)
        if response is None:
            raise NotFound(f"Response {response_id} not found")
        return response

    def get_service_status(self) -> Dict[str, Any]:
        """Get coordination service status"""
        with self._listeners_lock:
            listener_count = len(self._listeners)

        return {
            'indexed_signals': len(self.signal_index),
            'indexed_responders': len(self.responders.geo_index),
            'pending_signals': len(self.get_pending_signals()),
            'listeners': listener_count,
            'signal_locks': self.ledger.lock_count(),
            'database': self.db.get_stats()
        }
