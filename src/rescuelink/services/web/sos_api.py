"""
SOS HTTP API for RescueLink

Exposes the coordination engine to victim and responder clients with
FastAPI. Clients poll these endpoints; the caller identity arrives in the
X-Actor-Id header from the upstream authentication layer.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from rescuelink.core.database import DatabaseError
from rescuelink.models.sos import (
    CertificationType, CompletionRecord, EmergencyType, GeoPoint, Gender,
    MissingPersonPayload, RescueOutcome, Signal, SignalPriority, VictimStatus
)
from rescuelink.services.sos.coordination_service import CoordinationService
from rescuelink.services.sos.errors import ErrorCode, OperationResult


logger = logging.getLogger(__name__)


ERROR_STATUS_CODES = {
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.NOT_ELIGIBLE: 403,
    ErrorCode.NOT_AUTHORIZED: 403,
    ErrorCode.ALREADY_ASSIGNED: 409,
    ErrorCode.SIGNAL_CLOSED: 409,
    ErrorCode.RESPONSE_CLOSED: 409,
    ErrorCode.CANCELLATION_WINDOW_CLOSED: 409,
    ErrorCode.INVALID_TRANSITION: 422,
    ErrorCode.INVALID_REQUEST: 400,
}


# Pydantic models for API
class CreateSignalRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    level: int = Field(1, ge=1, le=3)
    message: str = Field("", max_length=1000)
    priority: SignalPriority = SignalPriority.MEDIUM
    emergency_type: EmergencyType = EmergencyType.OTHER
    contact_phone: Optional[str] = None
    address: str = ""


class LocationRequest(BaseModel):
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)


class StatusUpdateRequest(LocationRequest):
    status: str


class MissingPersonRequest(BaseModel):
    name: str = Field(..., min_length=1)
    age: Optional[int] = Field(None, ge=0, le=150)
    gender: Gender = Gender.OTHER
    description: str = ""
    last_seen_lat: Optional[float] = Field(None, ge=-90, le=90)
    last_seen_lng: Optional[float] = Field(None, ge=-180, le=180)
    reporter_contact: str = ""


class CompleteRescueRequest(BaseModel):
    outcome: RescueOutcome
    victim_status: VictimStatus = VictimStatus.SAFE
    relief_camp_id: Optional[str] = None
    relief_camp_name: Optional[str] = None
    hospital_name: Optional[str] = None
    notes: str = ""
    create_missing_person_entry: bool = False
    missing_person: Optional[MissingPersonRequest] = None


class ChatRequest(BaseModel):
    text: str


class RatingRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)


class RegisterResponderRequest(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: str = ""
    availability_radius_km: Optional[float] = Field(None, ge=1, le=20)
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)


class CertificationRequest(BaseModel):
    cert_type: CertificationType
    certificate_number: str = ""
    issued_by: str = ""


class ResponderLocationRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class AvailabilityRequest(BaseModel):
    available: bool
    availability_radius_km: Optional[float] = Field(None, ge=1, le=20)


class ReviewAction(Enum):
    APPROVE = "approve"
    REJECT = "reject"


class ReviewRequest(BaseModel):
    action: ReviewAction


class CertificationDecisionRequest(BaseModel):
    verified: bool = True


class SuspendRequest(BaseModel):
    reason: str = ""


def _location(lat: Optional[float], lng: Optional[float]) -> Optional[GeoPoint]:
    if lat is None and lng is None:
        return None
    if lat is None or lng is None:
        raise HTTPException(status_code=400, detail="Both lat and lng are required for a location")
    return GeoPoint(lat, lng)


def _unwrap(result: OperationResult) -> Any:
    """Return the result value or raise the matching HTTP error"""
    if result.success:
        return result.value
    raise HTTPException(
        status_code=ERROR_STATUS_CODES.get(result.error, 400),
        detail=result.to_dict()
    )


def _public_view(signal: Signal, distance: float) -> Dict[str, Any]:
    """Signal fields safe to show to anyone"""
    return {
        'id': signal.id,
        'location': signal.location.to_dict(),
        'level': signal.level.value,
        'priority': signal.priority.value,
        'emergency_type': signal.emergency_type.value,
        'status': signal.status.value,
        'message': signal.message,
        'created_at': signal.created_at.isoformat(),
        'distance_km': round(distance, 3)
    }


def _id_set(value) -> set:
    """Admin ids from a YAML list or a comma separated environment value"""
    if not value:
        return set()
    if not isinstance(value, (list, tuple, set)):
        value = str(value).split(",")
    return {str(item).strip() for item in value if str(item).strip()}


def get_actor(x_actor_id: Optional[str] = Header(None)) -> str:
    """Authenticated caller identity"""
    if not x_actor_id:
        raise HTTPException(status_code=401, detail="Missing X-Actor-Id header")
    return x_actor_id


class SOSWebService:
    """
    SOS HTTP Service

    Wraps the coordination service in a FastAPI application and runs it
    with uvicorn.
    """

    def __init__(self, coordinator: CoordinationService, config: Optional[Dict[str, Any]] = None):
        self.logger = logging.getLogger(__name__)
        self.coordinator = coordinator
        config = config or {}

        # Configuration
        self.host = config.get("host", "0.0.0.0")
        self.port = config.get("port", 8080)
        self.debug = config.get("debug", False)
        self.admin_ids = _id_set(config.get("admin_ids"))

        # FastAPI app
        self.app = FastAPI(
            title="RescueLink SOS API",
            description="Emergency SOS response coordination",
            version="1.0.0",
            debug=self.debug
        )

        self._setup_middleware()
        self._setup_routes()

        # Server instance
        self.server = None
        self.server_task = None

    def _setup_middleware(self):
        """Setup FastAPI middleware"""
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        )

    def _setup_routes(self):
        """Setup FastAPI routes"""
        coordinator = self.coordinator

        @self.app.exception_handler(DatabaseError)
        async def database_error_handler(request, exc: DatabaseError):
            self.logger.error(f"Storage failure on {request.url.path}: {exc}")
            return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})

        @self.app.get("/health")
        def health():
            return {"status": "ok", "service": coordinator.get_service_status()}

        @self.app.post("/sos", status_code=201)
        def create_signal(request: CreateSignalRequest, actor: str = Depends(get_actor)):
            signal = _unwrap(coordinator.create_signal(
                reporter_id=actor,
                location=GeoPoint(request.lat, request.lng),
                level=request.level,
                message=request.message,
                priority=request.priority,
                emergency_type=request.emergency_type,
                contact_phone=request.contact_phone,
                address=request.address
            ))
            return {"signal": signal.to_dict()}

        @self.app.get("/sos/public/nearby")
        def public_nearby(lat: float = Query(..., ge=-90, le=90),
                          lng: float = Query(..., ge=-180, le=180),
                          radius_km: Optional[float] = Query(None, ge=0)):
            matches = _unwrap(coordinator.find_signals_near(GeoPoint(lat, lng), radius_km))
            return {
                "count": len(matches),
                "signals": [_public_view(signal, distance) for signal, distance in matches]
            }

        @self.app.get("/sos/responder/nearby")
        def responder_nearby(actor: str = Depends(get_actor)):
            listing = _unwrap(coordinator.list_nearby_signals(actor))
            return {"count": len(listing), "signals": [entry.to_dict() for entry in listing]}

        @self.app.post("/sos/{signal_id}/accept")
        def accept_signal(signal_id: str, actor: str = Depends(get_actor)):
            response = _unwrap(coordinator.accept_signal(actor, signal_id))
            return {"response": response.to_dict()}

        @self.app.put("/sos/response/{response_id}/status")
        def update_status(response_id: str, request: StatusUpdateRequest,
                          actor: str = Depends(get_actor)):
            response = _unwrap(coordinator.update_response_status(
                response_id, request.status, _location(request.lat, request.lng), actor_id=actor
            ))
            return {"response": response.to_dict()}

        @self.app.post("/sos/{signal_id}/mark-safe")
        def mark_safe(signal_id: str, request: Optional[LocationRequest] = None,
                      actor: str = Depends(get_actor)):
            location = _location(request.lat, request.lng) if request else None
            signal = _unwrap(coordinator.mark_victim_safe(signal_id, location, actor_id=actor))
            return {"signal": signal.to_dict()}

        @self.app.post("/sos/response/{response_id}/complete")
        def complete_rescue(response_id: str, request: CompleteRescueRequest,
                            actor: str = Depends(get_actor)):
            missing_person = None
            if request.missing_person is not None:
                person = request.missing_person
                missing_person = MissingPersonPayload(
                    name=person.name,
                    age=person.age,
                    gender=person.gender,
                    description=person.description,
                    last_seen_location=_location(person.last_seen_lat, person.last_seen_lng),
                    reporter_contact=person.reporter_contact
                )

            try:
                completion = CompletionRecord(
                    outcome=request.outcome,
                    victim_status=request.victim_status,
                    relief_camp_id=request.relief_camp_id,
                    relief_camp_name=request.relief_camp_name,
                    hospital_name=request.hospital_name,
                    notes=request.notes,
                    create_missing_person_entry=request.create_missing_person_entry,
                    missing_person=missing_person
                )
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))

            response = _unwrap(coordinator.complete_rescue(response_id, completion, actor_id=actor))
            return {"response": response.to_dict()}

        @self.app.post("/sos/response/{response_id}/chat", status_code=201)
        def post_chat(response_id: str, request: ChatRequest, actor: str = Depends(get_actor)):
            message = _unwrap(coordinator.post_chat_message(response_id, actor, request.text))
            return {"message": message.to_dict()}

        @self.app.get("/sos/{signal_id}/status")
        def signal_status(signal_id: str, actor: str = Depends(get_actor)):
            return _unwrap(coordinator.get_signal_status(signal_id, actor_id=actor))

        @self.app.post("/sos/response/{response_id}/rate")
        def rate_response(response_id: str, request: RatingRequest, actor: str = Depends(get_actor)):
            response = _unwrap(coordinator.rate_response(response_id, request.rating, actor_id=actor))
            return {"response": response.to_dict()}

        # Civilian responder self-service

        @self.app.post("/responders/register", status_code=201)
        def register_responder(request: RegisterResponderRequest, actor: str = Depends(get_actor)):
            profile = _unwrap(coordinator.register_responder(
                actor,
                request.full_name,
                phone=request.phone,
                radius_km=request.availability_radius_km,
                location=_location(request.lat, request.lng)
            ))
            return {"responder": profile.to_dict()}

        @self.app.post("/responders/certification")
        def add_certification(request: CertificationRequest, actor: str = Depends(get_actor)):
            profile = _unwrap(coordinator.add_certification(
                actor, request.cert_type, request.certificate_number, request.issued_by
            ))
            return {"responder": profile.to_dict()}

        @self.app.get("/responders/profile")
        def responder_profile(actor: str = Depends(get_actor)):
            return {"responder": _unwrap(coordinator.get_responder(actor)).to_dict()}

        @self.app.put("/responders/location")
        def responder_location(request: ResponderLocationRequest, actor: str = Depends(get_actor)):
            profile = _unwrap(coordinator.update_responder_location(actor, GeoPoint(request.lat, request.lng)))
            return {"responder": profile.to_dict()}

        @self.app.put("/responders/availability")
        def responder_availability(request: AvailabilityRequest, actor: str = Depends(get_actor)):
            if request.availability_radius_km is not None:
                _unwrap(coordinator.set_responder_radius(actor, request.availability_radius_km))
            profile = _unwrap(coordinator.set_responder_availability(actor, request.available))
            return {"responder": profile.to_dict()}

        @self.app.get("/responders/stats")
        def responder_stats(actor: str = Depends(get_actor)):
            return {"stats": _unwrap(coordinator.get_responder_stats(actor))}

        # Responder administration

        admin_ids = self.admin_ids

        def get_admin(actor: str = Depends(get_actor)) -> str:
            if actor not in admin_ids:
                raise HTTPException(status_code=403, detail="Administrator access required")
            return actor

        @self.app.put("/admin/responders/{responder_id}/verify")
        def review_responder(responder_id: str, request: ReviewRequest, admin: str = Depends(get_admin)):
            approve = request.action == ReviewAction.APPROVE
            profile = _unwrap(coordinator.review_responder(responder_id, approve))
            self.logger.info(f"Admin {admin} {'approved' if approve else 'rejected'} responder {responder_id}")
            return {"responder": profile.to_dict()}

        @self.app.put("/admin/responders/{responder_id}/verify-certification/{cert_index}")
        def verify_certification(responder_id: str, cert_index: int, request: CertificationDecisionRequest,
                                 admin: str = Depends(get_admin)):
            profile = _unwrap(coordinator.verify_certification(responder_id, cert_index, request.verified))
            return {"responder": profile.to_dict()}

        @self.app.put("/admin/responders/{responder_id}/suspend")
        def suspend_responder(responder_id: str, request: SuspendRequest, admin: str = Depends(get_admin)):
            profile = _unwrap(coordinator.suspend_responder(responder_id, request.reason))
            self.logger.warning(f"Admin {admin} suspended responder {responder_id}")
            return {"responder": profile.to_dict()}

    async def start(self) -> bool:
        """Start the web service"""
        try:
            config = uvicorn.Config(
                app=self.app,
                host=self.host,
                port=self.port,
                log_level="info" if not self.debug else "debug"
            )
            self.server = uvicorn.Server(config)

            # Start server in background task
            self.server_task = asyncio.create_task(self.server.serve())

            self.logger.info(f"SOS API started on http://{self.host}:{self.port}")
            return True

        except (OSError, RuntimeError) as e:
            self.logger.error(f"Failed to start SOS API: {e}")
            return False

    async def stop(self) -> bool:
        """Stop the web service"""
        if self.server:
            self.server.should_exit = True

        if self.server_task:
            try:
                await asyncio.wait_for(self.server_task, timeout=5)
            except asyncio.TimeoutError:
                self.server_task.cancel()
            except asyncio.CancelledError:
                pass
            self.server_task = None

        self.logger.info("SOS API stopped")
        return True
