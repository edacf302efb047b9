"""
SOS Signal Lifecycle

State machine and persistence for emergency signals:
- pending -> acknowledged -> responding -> resolved
- false_alarm when the victim marks themselves safe in time
- reopening when the assigned responder withdraws
- escalation bookkeeping for signals nobody has picked up
"""

import json
import logging
import sqlite3
from typing import Iterable, List, Optional

from rescuelink.core.database import DatabaseManager
from rescuelink.models.sos import (
    CompletionRecord, EmergencyLevel, EmergencyType, GeoPoint, RescueOutcome, Response,
    ResponseState, RESPONSE_ORDER, Signal, SignalPriority, SignalState,
    StatusUpdate, StatusUpdateType, parse_datetime, utc_now
)
from .errors import CancellationWindowClosed, InvalidTransition, SignalAlreadyClosed


MAX_ESCALATION_LEVEL = 2

# Allowed signal transitions; terminal states have no outgoing edges
SIGNAL_TRANSITIONS = {
    SignalState.PENDING: {SignalState.ACKNOWLEDGED, SignalState.FALSE_ALARM},
    SignalState.ACKNOWLEDGED: {
        SignalState.RESPONDING, SignalState.RESOLVED,
        SignalState.FALSE_ALARM, SignalState.PENDING
    },
    SignalState.RESPONDING: {SignalState.RESOLVED, SignalState.FALSE_ALARM, SignalState.PENDING},
    SignalState.RESOLVED: set(),
    SignalState.FALSE_ALARM: set(),
}


def within_cancellation_window(response: Optional[Response]) -> bool:
    """Check if the victim may still cancel given the active response"""
    if response is None or not response.is_active():
        return True
    return RESPONSE_ORDER.index(response.status) < RESPONSE_ORDER.index(ResponseState.ARRIVED)


class SignalLifecycle:
    """Drives signals through their states and stores them"""

    def __init__(self, db: DatabaseManager):
        self.logger = logging.getLogger(__name__)
        self.db = db

    # State transitions

    def _transition(self, signal: Signal, target: SignalState) -> None:
        if signal.is_terminal():
            raise SignalAlreadyClosed(f"Signal {signal.id} is already {signal.status.value}")
        if target not in SIGNAL_TRANSITIONS[signal.status]:
            raise InvalidTransition(
                f"Signal {signal.id} cannot move from {signal.status.value} to {target.value}"
            )

        self.logger.debug(f"Signal {signal.id}: {signal.status.value} -> {target.value}")
        signal.status = target

    def acknowledge(self, signal: Signal, responder_id: str, response_id: str,
                    responder_name: str, conn: sqlite3.Connection) -> Signal:
        """Record that a responder has taken the signal"""
        if signal.is_terminal():
            raise SignalAlreadyClosed(f"Signal {signal.id} is already {signal.status.value}")
        if signal.status != SignalState.ACKNOWLEDGED:
            self._transition(signal, SignalState.ACKNOWLEDGED)

        signal.assigned_responder = responder_id
        signal.active_response_id = response_id
        signal.response_time = utc_now()
        signal.add_status_update(
            f"{responder_name} has accepted your SOS and is preparing to help",
            StatusUpdateType.RESPONDER_ASSIGNED
        )
        self.save(signal, conn)
        return signal

    def mark_responding(self, signal: Signal, conn: sqlite3.Connection) -> bool:
        """Move an acknowledged signal to responding; returns True if it changed"""
        if signal.status == SignalState.RESPONDING:
            return False
        self._transition(signal, SignalState.RESPONDING)
        self.save(signal, conn)
        return True

    def resolve(self, signal: Signal, completion: CompletionRecord,
                conn: sqlite3.Connection) -> Signal:
        """Close the signal after its response completed"""
        self._transition(signal, SignalState.RESOLVED)
        signal.resolution_time = utc_now()
        signal.active_response_id = None

        if completion.outcome == RescueOutcome.TRANSPORTED_TO_CAMP or completion.relief_camp_id:
            signal.transported_to_camp = True
            signal.relief_camp_id = completion.relief_camp_id
            signal.relief_camp_name = completion.relief_camp_name

        signal.add_status_update(
            f"Rescue completed: {completion.outcome.value.replace('_', ' ')}",
            StatusUpdateType.SYSTEM_UPDATE
        )
        self.save(signal, conn)
        return signal

    def mark_false_alarm(self, signal: Signal, active_response: Optional[Response],
                         location: Optional[GeoPoint], conn: sqlite3.Connection) -> Signal:
        """
        Close the signal because the victim reports being safe

        Raises:
            SignalAlreadyClosed: signal is resolved or already a false alarm
            CancellationWindowClosed: a responder has already reached the victim
        """
        if signal.is_terminal():
            raise SignalAlreadyClosed(f"Signal {signal.id} is already {signal.status.value}")
        if not within_cancellation_window(active_response):
            raise CancellationWindowClosed(
                f"Responder has already arrived for signal {signal.id}; complete the rescue instead"
            )

        self._transition(signal, SignalState.FALSE_ALARM)
        now = utc_now()
        signal.safe_confirmed_at = now
        signal.safe_location = location
        signal.resolution_time = now
        signal.active_response_id = None
        signal.add_status_update("Victim confirmed they are safe", StatusUpdateType.SYSTEM_UPDATE)
        self.save(signal, conn)
        return signal

    def reopen(self, signal: Signal, conn: sqlite3.Connection) -> Signal:
        """Return a signal to pending after its responder withdrew"""
        self._transition(signal, SignalState.PENDING)
        signal.assigned_responder = None
        signal.active_response_id = None
        signal.response_time = None
        signal.add_status_update(
            "Your responder had to withdraw. Looking for another responder",
            StatusUpdateType.SYSTEM_UPDATE
        )
        self.save(signal, conn)
        return signal

    def escalate(self, signal: Signal, conn: sqlite3.Connection) -> bool:
        """Raise the escalation level of a pending signal; returns True if raised"""
        if signal.status != SignalState.PENDING or signal.escalation_level >= MAX_ESCALATION_LEVEL:
            return False

        signal.escalation_level += 1
        signal.escalated_at = utc_now()
        signal.add_status_update(
            f"Your SOS has been escalated to level {signal.escalation_level}",
            StatusUpdateType.SYSTEM_UPDATE
        )
        self.save(signal, conn)
        return True

    def record_update(self, signal: Signal, message: str, update_type: StatusUpdateType,
                      conn: sqlite3.Connection) -> StatusUpdate:
        """Append a victim-facing status update"""
        update = signal.add_status_update(message, update_type)
        self.save(signal, conn)
        return update

    # Persistence

    def create(self, signal: Signal, conn: Optional[sqlite3.Connection] = None) -> Signal:
        """Store a new signal"""
        query = """
            INSERT INTO sos_signals (
                id, reporter_id, location_lat, location_lng, address, level, message,
                priority, emergency_type, status, contact_phone, assigned_responder,
                active_response_id, response_time, resolution_time, escalation_level,
                escalated_at, status_updates, safe_confirmed_at, safe_location_lat,
                safe_location_lng, transported_to_camp, relief_camp_id, relief_camp_name,
                created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        params = (
            signal.id, signal.reporter_id, signal.location.lat, signal.location.lng,
            signal.address, signal.level.value, signal.message, signal.priority.value,
            signal.emergency_type.value, signal.status.value, signal.contact_phone,
            signal.assigned_responder, signal.active_response_id,
            _iso(signal.response_time), _iso(signal.resolution_time),
            signal.escalation_level, _iso(signal.escalated_at),
            json.dumps([update.to_dict() for update in signal.status_updates]),
            _iso(signal.safe_confirmed_at),
            signal.safe_location.lat if signal.safe_location else None,
            signal.safe_location.lng if signal.safe_location else None,
            signal.transported_to_camp, signal.relief_camp_id, signal.relief_camp_name,
            signal.created_at.isoformat()
        )

        if conn is not None:
            conn.execute(query, params)
        else:
            self.db.execute_update(query, params)

        self.logger.info(f"Stored SOS signal {signal.id} (level {signal.level.value})")
        return signal

    def save(self, signal: Signal, conn: sqlite3.Connection) -> None:
        """Persist the mutable fields of a signal"""
        conn.execute(
            """
            UPDATE sos_signals SET
                status = ?, assigned_responder = ?, active_response_id = ?,
                response_time = ?, resolution_time = ?, escalation_level = ?,
                escalated_at = ?, status_updates = ?, safe_confirmed_at = ?,
                safe_location_lat = ?, safe_location_lng = ?, transported_to_camp = ?,
                relief_camp_id = ?, relief_camp_name = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                signal.status.value, signal.assigned_responder, signal.active_response_id,
                _iso(signal.response_time), _iso(signal.resolution_time),
                signal.escalation_level, _iso(signal.escalated_at),
                json.dumps([update.to_dict() for update in signal.status_updates]),
                _iso(signal.safe_confirmed_at),
                signal.safe_location.lat if signal.safe_location else None,
                signal.safe_location.lng if signal.safe_location else None,
                signal.transported_to_camp, signal.relief_camp_id, signal.relief_camp_name,
                utc_now().isoformat(), signal.id
            )
        )

    def get(self, signal_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Signal]:
        """Load a signal by id"""
        query = "SELECT * FROM sos_signals WHERE id = ?"
        if conn is not None:
            rows = conn.execute(query, (signal_id,)).fetchall()
        else:
            rows = self.db.execute_query(query, (signal_id,))
        return self._row_to_signal(rows[0]) if rows else None

    def list_by_status(self, states: Iterable[SignalState]) -> List[Signal]:
        """Load all signals currently in one of ``states``"""
        states = list(states)
        if not states:
            return []
        placeholders = ', '.join('?' for _ in states)
        rows = self.db.execute_query(
            f"SELECT * FROM sos_signals WHERE status IN ({placeholders}) ORDER BY created_at",
            tuple(state.value for state in states)
        )
        return [self._row_to_signal(row) for row in rows]

    def _row_to_signal(self, row) -> Signal:
        """Convert database row to Signal object"""
        safe_location = None
        if row['safe_location_lat'] is not None and row['safe_location_lng'] is not None:
            safe_location = GeoPoint(row['safe_location_lat'], row['safe_location_lng'])

        status_updates = json.loads(row['status_updates']) if row['status_updates'] else []

        return Signal(
            id=row['id'],
            reporter_id=row['reporter_id'],
            location=GeoPoint(row['location_lat'], row['location_lng']),
            address=row['address'] or "",
            level=EmergencyLevel(row['level']),
            message=row['message'] or "",
            priority=SignalPriority(row['priority']),
            emergency_type=EmergencyType(row['emergency_type']),
            status=SignalState(row['status']),
            created_at=parse_datetime(row['created_at']),
            contact_phone=row['contact_phone'],
            assigned_responder=row['assigned_responder'],
            active_response_id=row['active_response_id'],
            response_time=parse_datetime(row['response_time']),
            resolution_time=parse_datetime(row['resolution_time']),
            escalation_level=row['escalation_level'] or 0,
            escalated_at=parse_datetime(row['escalated_at']),
            status_updates=[StatusUpdate.from_dict(update) for update in status_updates],
            safe_confirmed_at=parse_datetime(row['safe_confirmed_at']),
            safe_location=safe_location,
            transported_to_camp=bool(row['transported_to_camp']),
            relief_camp_id=row['relief_camp_id'],
            relief_camp_name=row['relief_camp_name']
        )


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None
