"""
Unit tests for the SOS HTTP API
"""

from unittest.mock import patch

from fastapi.testclient import TestClient

from rescuelink.core.database import DatabaseError
from rescuelink.models.sos import CompletionRecord, EmergencyLevel, RescueOutcome
from rescuelink.services.web import SOSWebService
from tests.base import BASE_POINT, CoordinationTestCase, offset_km


def headers(actor_id):
    return {"X-Actor-Id": actor_id}


class TestSOSApi(CoordinationTestCase):
    """Test HTTP routes against a real coordination service"""

    def setup_method(self):
        super().setup_method()
        self.web = SOSWebService(self.service, {"host": "127.0.0.1", "port": 8099})
        self.client = TestClient(self.web.app)

    def raise_sos(self, actor_id="victim-1", **overrides):
        body = {"lat": BASE_POINT.lat, "lng": BASE_POINT.lng, "level": 1, "message": "Flooded house"}
        body.update(overrides)
        response = self.client.post("/sos", json=body, headers=headers(actor_id))
        assert response.status_code == 201, response.text
        return response.json()["signal"]

    def accept_via_api(self, responder_id, signal_id):
        response = self.client.post(f"/sos/{signal_id}/accept", headers=headers(responder_id))
        assert response.status_code == 200, response.text
        return response.json()["response"]

    def test_health(self):
        response = self.client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_storage_failure_maps_to_503(self):
        with patch.object(self.service, "get_service_status", side_effect=DatabaseError("disk full")):
            response = self.client.get("/health")
        assert response.status_code == 503

    def test_actor_header_required(self):
        response = self.client.post("/sos", json={"lat": 1.0, "lng": 1.0})
        assert response.status_code == 401

    def test_create_signal(self):
        signal = self.raise_sos(level=2, priority="high", emergency_type="medical")

        assert signal["reporter_id"] == "victim-1"
        assert signal["level"] == 2
        assert signal["priority"] == "high"
        assert signal["status"] == "pending"

    def test_create_signal_validation(self):
        response = self.client.post("/sos", json={"lat": 95.0, "lng": 1.0}, headers=headers("v"))
        assert response.status_code == 422

        response = self.client.post("/sos", json={"lat": 1.0, "lng": 1.0, "level": 4}, headers=headers("v"))
        assert response.status_code == 422

    def test_public_nearby(self):
        self.raise_sos()
        self.raise_sos("victim-2", lat=offset_km(BASE_POINT, 40).lat)

        response = self.client.get(
            "/sos/public/nearby", params={"lat": BASE_POINT.lat, "lng": BASE_POINT.lng, "radius_km": 5}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["count"] == 1
        assert "reporter_id" not in body["signals"][0]
        assert "contact_phone" not in body["signals"][0]

    def test_responder_listing(self):
        self.rescuer("r-1")
        signal = self.raise_sos()

        response = self.client.get("/sos/responder/nearby", headers=headers("r-1"))

        assert response.status_code == 200
        entry = response.json()["signals"][0]
        assert entry["signal"]["id"] == signal["id"]
        assert entry["can_accept"] is True

    def test_accept_conflict_and_not_found(self):
        self.rescuer("r-1")
        self.rescuer("r-2")
        signal = self.raise_sos()

        accepted = self.accept_via_api("r-1", signal["id"])
        assert accepted["status"] == "assigned"

        conflict = self.client.post(f"/sos/{signal['id']}/accept", headers=headers("r-2"))
        assert conflict.status_code == 409
        assert conflict.json()["detail"]["error"] == "ALREADY_ASSIGNED"

        missing = self.client.post("/sos/nope/accept", headers=headers("r-2"))
        assert missing.status_code == 404

    def test_accept_not_eligible(self):
        self.make_responder("plain")
        signal = self.raise_sos(level=3)

        response = self.client.post(f"/sos/{signal['id']}/accept", headers=headers("plain"))

        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "certification_required"

    def test_full_rescue_flow(self):
        self.rescuer("r-1", location=offset_km(BASE_POINT, 2))
        signal = self.raise_sos()
        accepted = self.accept_via_api("r-1", signal["id"])
        response_id = accepted["id"]

        near = offset_km(BASE_POINT, 1)
        moved = self.client.put(
            f"/sos/response/{response_id}/status",
            json={"status": "en_route", "lat": near.lat, "lng": near.lng},
            headers=headers("r-1")
        )
        assert moved.status_code == 200
        assert moved.json()["response"]["status"] == "en_route"

        chat = self.client.post(
            f"/sos/response/{response_id}/chat", json={"text": "Coming"}, headers=headers("r-1")
        )
        assert chat.status_code == 201

        arrived = self.client.put(
            f"/sos/response/{response_id}/status", json={"status": "arrived"}, headers=headers("r-1")
        )
        assert arrived.status_code == 200

        backward = self.client.put(
            f"/sos/response/{response_id}/status", json={"status": "en_route"}, headers=headers("r-1")
        )
        assert backward.status_code == 422

        too_late = self.client.post(f"/sos/{signal['id']}/mark-safe", headers=headers("victim-1"))
        assert too_late.status_code == 409

        done = self.client.post(
            f"/sos/response/{response_id}/complete",
            json={"outcome": "transported_to_camp", "relief_camp_name": "School Camp"},
            headers=headers("r-1")
        )
        assert done.status_code == 200
        assert done.json()["response"]["status"] == "completed"

        status = self.client.get(f"/sos/{signal['id']}/status", headers=headers("victim-1"))
        assert status.status_code == 200
        assert status.json()["status"] == "resolved"
        assert status.json()["signal"]["relief_camp_name"] == "School Camp"

    def test_partial_location_rejected(self):
        self.rescuer("r-1")
        signal = self.raise_sos()
        accepted = self.accept_via_api("r-1", signal["id"])

        response = self.client.put(
            f"/sos/response/{accepted['id']}/status",
            json={"status": "en_route", "lat": 7.0},
            headers=headers("r-1")
        )
        assert response.status_code == 400

    def test_mark_safe(self):
        signal = self.raise_sos()
        spot = offset_km(BASE_POINT, 0.2)

        stranger = self.client.post(f"/sos/{signal['id']}/mark-safe", headers=headers("someone"))
        assert stranger.status_code == 403

        response = self.client.post(
            f"/sos/{signal['id']}/mark-safe",
            json={"lat": spot.lat, "lng": spot.lng},
            headers=headers("victim-1")
        )
        assert response.status_code == 200
        assert response.json()["signal"]["status"] == "false_alarm"

    def test_missing_person_requires_payload(self):
        self.rescuer("r-1")
        signal = self.raise_sos()
        accepted = self.accept_via_api("r-1", signal["id"])

        response = self.client.post(
            f"/sos/response/{accepted['id']}/complete",
            json={"outcome": "victim_not_found", "create_missing_person_entry": True},
            headers=headers("r-1")
        )
        assert response.status_code == 400

        response = self.client.post(
            f"/sos/response/{accepted['id']}/complete",
            json={
                "outcome": "victim_not_found",
                "create_missing_person_entry": True,
                "missing_person": {"name": "Anula", "age": 61, "gender": "female"}
            },
            headers=headers("r-1")
        )
        assert response.status_code == 200

    def test_status_requires_involvement(self):
        signal = self.raise_sos()
        response = self.client.get(f"/sos/{signal['id']}/status", headers=headers("stranger"))
        assert response.status_code == 403


class TestResponderApi(CoordinationTestCase):
    """Test responder onboarding and admin routes"""

    def setup_method(self):
        super().setup_method()
        self.web = SOSWebService(self.service, {"admin_ids": "admin-1, admin-2"})
        self.client = TestClient(self.web.app)

    def register(self, actor_id="new-responder", **overrides):
        body = {"full_name": "Kamal Perera", "phone": "+94711111111"}
        body.update(overrides)
        response = self.client.post("/responders/register", json=body, headers=headers(actor_id))
        assert response.status_code == 201, response.text
        return response.json()["responder"]

    def test_admin_ids_parsed(self):
        assert self.web.admin_ids == {"admin-1", "admin-2"}
        assert SOSWebService(self.service, {"admin_ids": ["a"]}).admin_ids == {"a"}
        assert SOSWebService(self.service).admin_ids == set()
        assert SOSWebService(self.service, {"admin_ids": 42}).admin_ids == {"42"}

    def test_onboarding_until_signal_listed(self):
        unknown = self.client.get("/sos/responder/nearby", headers=headers("new-responder"))
        assert unknown.status_code == 404

        profile = self.register()
        assert profile["verification_status"] == "pending"

        cert = self.client.post(
            "/responders/certification",
            json={"cert_type": "life_saving", "certificate_number": "LS-1"},
            headers=headers("new-responder")
        )
        assert cert.status_code == 200
        assert cert.json()["responder"]["certifications"][0]["verified"] is False

        verified = self.client.put(
            "/admin/responders/new-responder/verify-certification/0",
            json={"verified": True},
            headers=headers("admin-1")
        )
        assert verified.status_code == 200
        approved = self.client.put(
            "/admin/responders/new-responder/verify", json={"action": "approve"}, headers=headers("admin-2")
        )
        assert approved.status_code == 200
        assert approved.json()["responder"]["allowed_levels"] == [1, 2, 3]

        spot = offset_km(BASE_POINT, 1)
        moved = self.client.put(
            "/responders/location", json={"lat": spot.lat, "lng": spot.lng}, headers=headers("new-responder")
        )
        assert moved.status_code == 200
        assert "new-responder" in self.service.responders.geo_index

        signal = self.make_signal(level=EmergencyLevel.LIFE_THREATENING)
        listing = self.client.get("/sos/responder/nearby", headers=headers("new-responder"))
        assert listing.status_code == 200
        assert listing.json()["signals"][0]["signal"]["id"] == signal.id
        assert listing.json()["signals"][0]["can_accept"] is True

        profile = self.client.get("/responders/profile", headers=headers("new-responder"))
        assert profile.json()["responder"]["verification_status"] == "verified"

    def test_duplicate_registration(self):
        self.register()
        again = self.client.post(
            "/responders/register", json={"full_name": "Again"}, headers=headers("new-responder")
        )
        assert again.status_code == 400

    def test_availability_and_stats(self):
        self.register()

        response = self.client.put(
            "/responders/availability",
            json={"available": False, "availability_radius_km": 12},
            headers=headers("new-responder")
        )
        assert response.status_code == 200
        assert response.json()["responder"]["available"] is False
        assert response.json()["responder"]["availability_radius_km"] == 12

        stats = self.client.get("/responders/stats", headers=headers("new-responder"))
        assert stats.status_code == 200
        assert stats.json()["stats"]["total_responses"] == 0

    def test_admin_routes_require_admin(self):
        self.register()

        for path, body in (
            ("/admin/responders/new-responder/verify", {"action": "approve"}),
            ("/admin/responders/new-responder/verify-certification/0", {"verified": True}),
            ("/admin/responders/new-responder/suspend", {"reason": "x"}),
        ):
            response = self.client.put(path, json=body, headers=headers("new-responder"))
            assert response.status_code == 403

    def test_admin_review_errors(self):
        self.register()

        bad_index = self.client.put(
            "/admin/responders/new-responder/verify-certification/3",
            json={"verified": True},
            headers=headers("admin-1")
        )
        assert bad_index.status_code == 400

        bad_action = self.client.put(
            "/admin/responders/new-responder/verify", json={"action": "maybe"}, headers=headers("admin-1")
        )
        assert bad_action.status_code == 422

        missing = self.client.put(
            "/admin/responders/ghost/suspend", json={"reason": "x"}, headers=headers("admin-1")
        )
        assert missing.status_code == 404

    def test_suspend(self):
        self.rescuer("r-1")

        response = self.client.put(
            "/admin/responders/r-1/suspend", json={"reason": "complaints"}, headers=headers("admin-1")
        )

        assert response.status_code == 200
        assert response.json()["responder"]["verification_status"] == "suspended"
        assert response.json()["responder"]["available"] is False

    def test_victim_rates_completed_rescue(self):
        self.rescuer("r-1")
        signal = self.make_signal()
        response = self.accept("r-1", signal.id)
        self.service.complete_rescue(response.id, CompletionRecord(outcome=RescueOutcome.RESCUED_SAFE))

        out_of_range = self.client.post(
            f"/sos/response/{response.id}/rate", json={"rating": 0}, headers=headers("victim-1")
        )
        assert out_of_range.status_code == 422

        rated = self.client.post(
            f"/sos/response/{response.id}/rate", json={"rating": 5}, headers=headers("victim-1")
        )
        assert rated.status_code == 200
        assert rated.json()["response"]["victim_rating"] == 5

        twice = self.client.post(
            f"/sos/response/{response.id}/rate", json={"rating": 5}, headers=headers("victim-1")
        )
        assert twice.status_code == 400
