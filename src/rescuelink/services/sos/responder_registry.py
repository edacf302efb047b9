"""
Civilian Responder Registry

Stores responder profiles and keeps the responder position index in step
with location updates. Allowed SOS levels are recomputed whenever the
certification set changes.
"""

import json
import logging
import sqlite3
from typing import List, Optional

from rescuelink.core.database import DatabaseManager
from rescuelink.models.sos import (
    Certification, EmergencyLevel, GeoPoint, ResponderProfile,
    RescueOutcome, VerificationStatus, parse_datetime, utc_now
)
from .errors import InvalidRequest, NotFound
from .geo_index import GeoIndex


MIN_RADIUS_KM = 1.0
MAX_RADIUS_KM = 20.0


def check_rating(rating: int) -> None:
    if not 1 <= rating <= 5:
        raise InvalidRequest(f"Rating must be between 1 and 5, got {rating}")


class ResponderRegistry:
    """Manages civilian responder profiles"""

    def __init__(self, db: DatabaseManager):
        self.logger = logging.getLogger(__name__)
        self.db = db
        self.geo_index = GeoIndex("responders")

    def load_index(self) -> int:
        """Rebuild the position index from storage; returns the entry count"""
        self.geo_index.clear()
        for profile in self.list_all():
            if profile.location is not None:
                self.geo_index.upsert(profile.id, profile.location)
        return len(self.geo_index)

    def register(self, profile: ResponderProfile) -> ResponderProfile:
        """Add a new responder profile"""
        if self.get(profile.id) is not None:
            raise InvalidRequest(f"Responder {profile.id} is already registered")

        self._check_radius(profile.availability_radius_km)
        profile.update_allowed_levels()

        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO civilian_responders (
                    id, full_name, phone, verification_status, available,
                    location_lat, location_lng, location_updated_at, availability_radius_km,
                    certifications, allowed_levels, total_responses, successful_responses,
                    failed_responses, rating, total_ratings
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (profile.id, profile.full_name, profile.phone) + self._profile_columns(profile)
            )

        if profile.location is not None:
            self.geo_index.upsert(profile.id, profile.location)

        self.logger.info(f"Registered civilian responder {profile.id} ({profile.full_name})")
        return profile

    def get(self, responder_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[ResponderProfile]:
        """Load a responder profile by id"""
        query = "SELECT * FROM civilian_responders WHERE id = ?"
        if conn is not None:
            rows = conn.execute(query, (responder_id,)).fetchall()
        else:
            rows = self.db.execute_query(query, (responder_id,))
        return self._row_to_profile(rows[0]) if rows else None

    def require(self, responder_id: str, conn: Optional[sqlite3.Connection] = None) -> ResponderProfile:
        profile = self.get(responder_id, conn)
        if profile is None:
            raise NotFound(f"Responder {responder_id} not found")
        return profile

    def list_all(self) -> List[ResponderProfile]:
        rows = self.db.execute_query("SELECT * FROM civilian_responders ORDER BY created_at")
        return [self._row_to_profile(row) for row in rows]

    def set_availability(self, responder_id: str, available: bool) -> ResponderProfile:
        with self.db.transaction() as conn:
            profile = self.require(responder_id, conn)
            profile.available = available
            self.save(profile, conn)

        self.logger.info(f"Responder {responder_id} is now {'available' if available else 'unavailable'}")
        return profile

    def set_radius(self, responder_id: str, radius_km: float) -> ResponderProfile:
        self._check_radius(radius_km)
        with self.db.transaction() as conn:
            profile = self.require(responder_id, conn)
            profile.availability_radius_km = radius_km
            self.save(profile, conn)
        return profile

    def review(self, responder_id: str, approve: bool) -> ResponderProfile:
        """Approve or reject a pending responder account"""
        with self.db.transaction() as conn:
            profile = self.require(responder_id, conn)
            if approve:
                profile.verification_status = VerificationStatus.VERIFIED
                profile.update_allowed_levels()
            else:
                profile.verification_status = VerificationStatus.REJECTED
            self.save(profile, conn)

        self.logger.info(f"Responder {responder_id} {'approved' if approve else 'rejected'}")
        return profile

    def suspend(self, responder_id: str, reason: str = "") -> ResponderProfile:
        """Suspend a responder and take them off duty"""
        with self.db.transaction() as conn:
            profile = self.require(responder_id, conn)
            profile.verification_status = VerificationStatus.SUSPENDED
            profile.available = False
            self.save(profile, conn)

        self.logger.warning(f"Responder {responder_id} suspended: {reason or 'no reason given'}")
        return profile

    def update_location(self, responder_id: str, location: GeoPoint) -> ResponderProfile:
        """Record the responder's latest position"""
        with self.db.transaction() as conn:
            profile = self.record_location(responder_id, location, conn)

        self.geo_index.upsert(responder_id, location)
        return profile

    def record_location(self, responder_id: str, location: GeoPoint,
                        conn: sqlite3.Connection) -> ResponderProfile:
        """Store a new position inside the caller's transaction; the index is not touched"""
        profile = self.require(responder_id, conn)
        profile.location = location
        profile.location_updated_at = utc_now()
        self.save(profile, conn)
        return profile

    def add_certification(self, responder_id: str, certification: Certification) -> ResponderProfile:
        """Attach a certification and recompute allowed levels"""
        with self.db.transaction() as conn:
            profile = self.require(responder_id, conn)
            profile.certifications.append(certification)
            profile.update_allowed_levels()
            self.save(profile, conn)

        self.logger.info(
            f"Responder {responder_id} added {certification.cert_type.value} certification "
            f"(verified={certification.verified})"
        )
        return profile

    def verify_certification(self, responder_id: str, certification_id: str,
                             verified: bool = True) -> ResponderProfile:
        """Mark one certification verified or unverified"""
        with self.db.transaction() as conn:
            profile = self.require(responder_id, conn)
            for cert in profile.certifications:
                if cert.id == certification_id:
                    cert.verified = verified
                    break
            else:
                raise NotFound(f"Certification {certification_id} not found for responder {responder_id}")

            profile.update_allowed_levels()
            self.save(profile, conn)

        self.logger.info(
            f"Responder {responder_id} allowed levels now "
            f"{sorted(level.value for level in profile.allowed_levels)}"
        )
        return profile

    def record_outcome(self, profile: ResponderProfile, outcome: RescueOutcome,
                       conn: sqlite3.Connection) -> ResponderProfile:
        """Update response statistics after a completed rescue"""
        profile.total_responses += 1
        if outcome.is_successful():
            profile.successful_responses += 1
        elif outcome == RescueOutcome.VICTIM_NOT_FOUND:
            profile.failed_responses += 1
        self.save(profile, conn)
        return profile

    def rate(self, responder_id: str, rating: int,
             conn: Optional[sqlite3.Connection] = None) -> ResponderProfile:
        """Fold a 1-5 victim rating into the running average"""
        check_rating(rating)

        if conn is not None:
            return self._apply_rating(self.require(responder_id, conn), rating, conn)
        with self.db.transaction() as conn:
            return self._apply_rating(self.require(responder_id, conn), rating, conn)

    def _apply_rating(self, profile: ResponderProfile, rating: int,
                      conn: sqlite3.Connection) -> ResponderProfile:
        total = profile.rating * profile.total_ratings + rating
        profile.total_ratings += 1
        profile.rating = round(total / profile.total_ratings, 2)
        self.save(profile, conn)
        return profile

    def save(self, profile: ResponderProfile, conn: sqlite3.Connection) -> None:
        conn.execute(
            """
            UPDATE civilian_responders SET
                verification_status = ?, available = ?, location_lat = ?, location_lng = ?,
                location_updated_at = ?, availability_radius_km = ?, certifications = ?,
                allowed_levels = ?, total_responses = ?, successful_responses = ?,
                failed_responses = ?, rating = ?, total_ratings = ?, updated_at = ?
            WHERE id = ?
            """,
            self._profile_columns(profile) + (utc_now().isoformat(), profile.id)
        )

    def _profile_columns(self, profile: ResponderProfile) -> tuple:
        location = profile.location
        return (
            profile.verification_status.value,
            profile.available,
            location.lat if location else None,
            location.lng if location else None,
            profile.location_updated_at.isoformat() if profile.location_updated_at else None,
            profile.availability_radius_km,
            json.dumps([cert.to_dict() for cert in profile.certifications]),
            json.dumps(sorted(level.value for level in profile.allowed_levels)),
            profile.total_responses,
            profile.successful_responses,
            profile.failed_responses,
            profile.rating,
            profile.total_ratings
        )

    def _check_radius(self, radius_km: float) -> None:
        if not MIN_RADIUS_KM <= radius_km <= MAX_RADIUS_KM:
            raise InvalidRequest(
                f"Availability radius must be between {MIN_RADIUS_KM:g} and {MAX_RADIUS_KM:g} km"
            )

    def _row_to_profile(self, row) -> ResponderProfile:
        """Convert database row to ResponderProfile object"""
        location = None
        if row['location_lat'] is not None and row['location_lng'] is not None:
            location = GeoPoint(row['location_lat'], row['location_lng'])

        certifications = json.loads(row['certifications']) if row['certifications'] else []
        allowed_levels = json.loads(row['allowed_levels']) if row['allowed_levels'] else [1]

        return ResponderProfile(
            id=row['id'],
            full_name=row['full_name'],
            phone=row['phone'] or "",
            verification_status=VerificationStatus(row['verification_status']),
            available=bool(row['available']),
            location=location,
            location_updated_at=parse_datetime(row['location_updated_at']),
            availability_radius_km=row['availability_radius_km'],
            certifications=[Certification.from_dict(cert) for cert in certifications],
            allowed_levels={EmergencyLevel(level) for level in allowed_levels},
            total_responses=row['total_responses'] or 0,
            successful_responses=row['successful_responses'] or 0,
            failed_responses=row['failed_responses'] or 0,
            rating=row['rating'] or 0.0,
            total_ratings=row['total_ratings'] or 0
        )


