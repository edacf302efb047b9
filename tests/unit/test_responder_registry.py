"""
Unit tests for the civilian responder registry
"""

import pytest

from rescuelink.core.database import DatabaseManager
from rescuelink.models.sos import (
    Certification, CertificationType, EmergencyLevel, ResponderProfile,
    RescueOutcome, VerificationStatus
)
from rescuelink.services.sos.errors import InvalidRequest, NotFound
from rescuelink.services.sos.responder_registry import ResponderRegistry
from tests.base import BASE_POINT, BaseTestCase, offset_km


class TestResponderRegistry(BaseTestCase):
    """Test responder profile management"""

    def setup_method(self):
        super().setup_method()
        self.db = DatabaseManager(str(self.create_temp_dir() / "responders.db"))
        self.registry = ResponderRegistry(self.db)

    def teardown_method(self):
        self.db.close()
        super().teardown_method()

    def register(self, responder_id="r-1", **kwargs):
        kwargs.setdefault("location", BASE_POINT)
        profile = ResponderProfile(id=responder_id, full_name="Saman Silva", phone="+94712345678", **kwargs)
        return self.registry.register(profile)

    def test_register_and_load(self):
        self.register(
            verification_status=VerificationStatus.VERIFIED,
            certifications=[Certification(cert_type=CertificationType.RED_CROSS, verified=True)]
        )

        loaded = self.registry.get("r-1")
        assert loaded.full_name == "Saman Silva"
        assert loaded.is_verified()
        assert loaded.location == BASE_POINT
        assert loaded.allowed_levels == {EmergencyLevel.FOOD_WATER, EmergencyLevel.MEDICAL}
        assert loaded.certifications[0].cert_type == CertificationType.RED_CROSS
        assert "r-1" in self.registry.geo_index

    def test_duplicate_registration_rejected(self):
        self.register()
        with pytest.raises(InvalidRequest):
            self.register()

    @pytest.mark.parametrize("radius", [0.5, 20.5, -1])
    def test_radius_bounds(self, radius):
        with pytest.raises(InvalidRequest):
            self.register(availability_radius_km=radius)

    def test_set_radius(self):
        self.register()
        assert self.registry.set_radius("r-1", 20).availability_radius_km == 20
        with pytest.raises(InvalidRequest):
            self.registry.set_radius("r-1", 25)

    def test_require_unknown(self):
        with pytest.raises(NotFound):
            self.registry.require("nobody")

    def test_update_location_moves_index_entry(self):
        self.register(location=None)
        assert "r-1" not in self.registry.geo_index

        spot = offset_km(BASE_POINT, 3)
        profile = self.registry.update_location("r-1", spot)

        assert profile.location_updated_at is not None
        assert self.registry.geo_index.get("r-1") == spot
        assert self.registry.get("r-1").location == spot

    def test_load_index_from_storage(self):
        self.register("a")
        self.register("b", location=None)

        fresh = ResponderRegistry(self.db)
        assert fresh.load_index() == 1
        assert "a" in fresh.geo_index

    def test_certification_verification_changes_levels(self):
        self.register(verification_status=VerificationStatus.VERIFIED)
        cert = Certification(cert_type=CertificationType.SEARCH_RESCUE)

        profile = self.registry.add_certification("r-1", cert)
        assert profile.allowed_levels == {EmergencyLevel.FOOD_WATER}

        profile = self.registry.verify_certification("r-1", cert.id)
        assert profile.allowed_levels == set(EmergencyLevel)
        assert self.registry.get("r-1").allowed_levels == set(EmergencyLevel)

        profile = self.registry.verify_certification("r-1", cert.id, verified=False)
        assert profile.allowed_levels == {EmergencyLevel.FOOD_WATER}

    def test_verify_unknown_certification(self):
        self.register()
        with pytest.raises(NotFound):
            self.registry.verify_certification("r-1", "missing-cert")

    def test_review_and_availability(self):
        self.register(certifications=[Certification(cert_type=CertificationType.RED_CROSS, verified=True)])
        self.registry.review("r-1", approve=True)
        self.registry.set_availability("r-1", False)

        loaded = self.registry.get("r-1")
        assert loaded.verification_status == VerificationStatus.VERIFIED
        assert loaded.allowed_levels == {EmergencyLevel.FOOD_WATER, EmergencyLevel.MEDICAL}
        assert loaded.available is False

        assert self.registry.review("r-1", approve=False).verification_status == VerificationStatus.REJECTED

    def test_suspend_takes_responder_off_duty(self):
        self.register(verification_status=VerificationStatus.VERIFIED)

        profile = self.registry.suspend("r-1", "misconduct")

        assert profile.verification_status == VerificationStatus.SUSPENDED
        assert profile.available is False
        assert self.registry.get("r-1").verification_status == VerificationStatus.SUSPENDED

    def test_record_location_leaves_index_to_caller(self):
        self.register()
        spot = offset_km(BASE_POINT, 2)

        with self.db.transaction() as conn:
            self.registry.record_location("r-1", spot, conn)

        assert self.registry.get("r-1").location == spot
        assert self.registry.geo_index.get("r-1") == BASE_POINT

    @pytest.mark.parametrize("outcome,successful,failed", [
        (RescueOutcome.RESCUED_SAFE, 1, 0),
        (RescueOutcome.RESCUED_INJURED, 1, 0),
        (RescueOutcome.VICTIM_NOT_FOUND, 0, 1),
        (RescueOutcome.VICTIM_SAFE_ALREADY, 0, 0),
        (RescueOutcome.TRANSPORTED_TO_CAMP, 0, 0),
    ])
    def test_record_outcome(self, outcome, successful, failed):
        profile = self.register()
        with self.db.transaction() as conn:
            self.registry.record_outcome(profile, outcome, conn)

        loaded = self.registry.get("r-1")
        assert loaded.total_responses == 1
        assert loaded.successful_responses == successful
        assert loaded.failed_responses == failed

    def test_rating_average(self):
        self.register()
        self.registry.rate("r-1", 5)
        profile = self.registry.rate("r-1", 4)

        assert profile.total_ratings == 2
        assert profile.rating == pytest.approx(4.5)
        with pytest.raises(InvalidRequest):
            self.registry.rate("r-1", 6)
