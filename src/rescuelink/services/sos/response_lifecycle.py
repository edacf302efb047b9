"""
SOS Response Lifecycle

State machine and persistence for a responder's assignment to a signal.
Statuses only move forward (assigned -> en_route -> arrived -> assisting
-> completed); the single way back out is cancellation.
"""

import json
import logging
import sqlite3
from typing import List, Optional, Tuple

from rescuelink.core.database import DatabaseManager
from rescuelink.models.sos import (
    ChatMessage, CompletionRecord, GeoPoint, Response, ResponseState,
    RESPONSE_ORDER, StatusHistoryEntry, parse_datetime, utc_now
)
from .errors import InvalidRequest, InvalidTransition, ResponseAlreadyClosed
from .geo_index import distance_km


_ACTIVE_FILTER = "status NOT IN ('completed', 'cancelled')"


class ResponseLifecycle:
    """Drives responses through their states and stores them"""

    def __init__(self, db: DatabaseManager):
        self.logger = logging.getLogger(__name__)
        self.db = db

    def open(self, signal_id: str, responder_id: str, victim_location: GeoPoint,
             responder_location: Optional[GeoPoint], conn: sqlite3.Connection) -> Response:
        """Create the assigned response for an accepted signal"""
        response = Response(signal_id=signal_id, responder_id=responder_id)
        response.status_history.append(
            StatusHistoryEntry(ResponseState.ASSIGNED, response.assigned_at, responder_location)
        )
        self._apply_location(response, responder_location, victim_location)
        self.create(response, conn)
        return response

    def advance(self, response: Response, new_status: ResponseState,
                location: Optional[GeoPoint], victim_location: GeoPoint,
                conn: sqlite3.Connection) -> Tuple[Response, bool]:
        """
        Move a response forward to ``new_status``

        Repeating the current status only refreshes the responder position.
        Skipping intermediate statuses is allowed.

        Returns:
            Tuple of (response, status_changed)

        Raises:
            ResponseAlreadyClosed: response is completed or cancelled
            InvalidTransition: backward move, or completion without a record
        """
        if not response.is_active():
            raise ResponseAlreadyClosed(f"Response {response.id} is already {response.status.value}")
        if new_status == ResponseState.COMPLETED:
            raise InvalidTransition("Responses are completed through complete_rescue")
        if new_status == ResponseState.CANCELLED:
            raise InvalidTransition("Responses are cancelled through cancel")

        current_index = RESPONSE_ORDER.index(response.status)
        new_index = RESPONSE_ORDER.index(new_status)

        if new_index == current_index:
            self._apply_location(response, location, victim_location)
            self.save(response, conn)
            return response, False

        if new_index < current_index:
            raise InvalidTransition(
                f"Response {response.id} cannot go back from {response.status.value} to {new_status.value}"
            )

        if new_index > current_index + 1:
            self.logger.warning(
                f"Response {response.id} skipped from {response.status.value} to {new_status.value}"
            )

        now = utc_now()
        response.status = new_status
        response.status_history.append(StatusHistoryEntry(new_status, now, location))
        if new_status == ResponseState.EN_ROUTE:
            response.en_route_at = now
        elif new_status == ResponseState.ARRIVED:
            response.arrived_at = now
            # Arrival without a prior en_route still implies the trip happened
            response.en_route_at = response.en_route_at or now

        self._apply_location(response, location, victim_location)
        self.save(response, conn)
        return response, True

    def complete(self, response: Response, completion: CompletionRecord,
                 conn: sqlite3.Connection) -> Response:
        """Finish a response with its completion record"""
        if not response.is_active():
            raise ResponseAlreadyClosed(f"Response {response.id} is already {response.status.value}")

        now = utc_now()
        response.status = ResponseState.COMPLETED
        response.status_history.append(StatusHistoryEntry(ResponseState.COMPLETED, now))
        response.completion = completion
        response.completed_at = now
        self.save(response, conn)
        return response

    def cancel(self, response: Response, reason: str, conn: sqlite3.Connection) -> Response:
        """Cancel a non-terminal response"""
        if not response.is_active():
            raise ResponseAlreadyClosed(f"Response {response.id} is already {response.status.value}")

        response.status = ResponseState.CANCELLED
        response.status_history.append(StatusHistoryEntry(ResponseState.CANCELLED))
        response.cancellation_reason = reason
        self.save(response, conn)
        return response

    def add_chat_message(self, response: Response, message: ChatMessage,
                         conn: sqlite3.Connection) -> ChatMessage:
        if not response.is_active():
            raise ResponseAlreadyClosed(f"Response {response.id} is already {response.status.value}")

        response.chat_messages.append(message)
        self.save(response, conn)
        return message

    def record_rating(self, response: Response, rating: int, conn: sqlite3.Connection) -> Response:
        """Store the victim's rating of a completed response"""
        if response.status != ResponseState.COMPLETED:
            raise InvalidTransition(f"Response {response.id} is {response.status.value}, not completed")
        if response.victim_rating is not None:
            raise InvalidRequest(f"Response {response.id} has already been rated")

        response.victim_rating = rating
        conn.execute(
            "UPDATE sos_responses SET victim_rating = ?, updated_at = ? WHERE id = ?",
            (rating, utc_now().isoformat(), response.id)
        )
        return response

    def _apply_location(self, response: Response, location: Optional[GeoPoint],
                        victim_location: GeoPoint) -> None:
        if location is None:
            return
        response.responder_location = location
        response.distance_to_victim_km = round(distance_km(location, victim_location), 3)

    # Persistence

    def create(self, response: Response, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            INSERT INTO sos_responses (
                id, signal_id, responder_id, status, status_history, responder_lat,
                responder_lng, distance_to_victim_km, chat_messages, completion,
                cancellation_reason, assigned_at, en_route_at, arrived_at, completed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (response.id, response.signal_id, response.responder_id)
            + self._state_columns(response)
            + (response.assigned_at.isoformat(),)
            + self._timestamp_columns(response)
        )
        self.logger.info(
            f"Created response {response.id} for signal {response.signal_id} "
            f"by responder {response.responder_id}"
        )

    def save(self, response: Response, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            UPDATE sos_responses SET
                status = ?, status_history = ?, responder_lat = ?, responder_lng = ?,
                distance_to_victim_km = ?, chat_messages = ?, completion = ?,
                cancellation_reason = ?, en_route_at = ?, arrived_at = ?,
                completed_at = ?, updated_at = ?
            WHERE id = ?
            """,
            self._state_columns(response)
            + self._timestamp_columns(response)
            + (utc_now().isoformat(), response.id)
        )

    def _state_columns(self, response: Response) -> tuple:
        location = response.responder_location
        return (
            response.status.value,
            json.dumps([entry.to_dict() for entry in response.status_history]),
            location.lat if location else None,
            location.lng if location else None,
            response.distance_to_victim_km,
            json.dumps([message.to_dict() for message in response.chat_messages]),
            json.dumps(response.completion.to_dict()) if response.completion else None,
            response.cancellation_reason
        )

    def _timestamp_columns(self, response: Response) -> tuple:
        return (_iso(response.en_route_at), _iso(response.arrived_at), _iso(response.completed_at))

    def _query(self, query: str, params: tuple,
               conn: Optional[sqlite3.Connection]) -> List[Response]:
        if conn is not None:
            rows = conn.execute(query, params).fetchall()
        else:
            rows = self.db.execute_query(query, params)
        return [self._row_to_response(row) for row in rows]

    def get(self, response_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Response]:
        responses = self._query("SELECT * FROM sos_responses WHERE id = ?", (response_id,), conn)
        return responses[0] if responses else None

    def get_active_for_signal(self, signal_id: str,
                              conn: Optional[sqlite3.Connection] = None) -> Optional[Response]:
        """Get the non-terminal response of a signal, if any"""
        responses = self._query(
            f"SELECT * FROM sos_responses WHERE signal_id = ? AND {_ACTIVE_FILTER}",
            (signal_id,), conn
        )
        return responses[0] if responses else None

    def get_active_for_responder(self, responder_id: str,
                                 conn: Optional[sqlite3.Connection] = None) -> List[Response]:
        return self._query(
            f"SELECT * FROM sos_responses WHERE responder_id = ? AND {_ACTIVE_FILTER}",
            (responder_id,), conn
        )

    def list_for_signal(self, signal_id: str) -> List[Response]:
        """All responses of a signal, oldest first"""
        return self._query(
            "SELECT * FROM sos_responses WHERE signal_id = ? ORDER BY assigned_at",
            (signal_id,), None
        )

    def _row_to_response(self, row) -> Response:
        """Convert database row to Response object"""
        location = None
        if row['responder_lat'] is not None and row['responder_lng'] is not None:
            location = GeoPoint(row['responder_lat'], row['responder_lng'])

        history = json.loads(row['status_history']) if row['status_history'] else []
        messages = json.loads(row['chat_messages']) if row['chat_messages'] else []

        return Response(
            id=row['id'],
            signal_id=row['signal_id'],
            responder_id=row['responder_id'],
            status=ResponseState(row['status']),
            status_history=[StatusHistoryEntry.from_dict(entry) for entry in history],
            responder_location=location,
            distance_to_victim_km=row['distance_to_victim_km'],
            chat_messages=[ChatMessage.from_dict(message) for message in messages],
            completion=CompletionRecord.from_dict(json.loads(row['completion'])) if row['completion'] else None,
            cancellation_reason=row['cancellation_reason'],
            assigned_at=parse_datetime(row['assigned_at']),
            en_route_at=parse_datetime(row['en_route_at']),
            arrived_at=parse_datetime(row['arrived_at']),
            completed_at=parse_datetime(row['completed_at']),
            victim_rating=row['victim_rating']
        )


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None
