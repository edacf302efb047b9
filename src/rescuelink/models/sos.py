"""
SOS data models for RescueLink

Defines the signal, responder and response structures shared by the
coordination engine, the persistence layer and the HTTP API.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set
import uuid


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime"""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace('Z', '+00:00'))


class EmergencyLevel(Enum):
    """SOS levels used for civilian responder filtering"""
    FOOD_WATER = 1        # Low risk
    MEDICAL = 2           # Medium risk, needs a medical certification
    LIFE_THREATENING = 3  # High risk, needs a rescue certification


class SignalPriority(Enum):
    """Signal priority"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EmergencyType(Enum):
    """Kind of emergency reported by the victim"""
    MEDICAL = "medical"
    FIRE = "fire"
    ACCIDENT = "accident"
    CRIME = "crime"
    NATURAL_DISASTER = "natural_disaster"
    OTHER = "other"


class SignalState(Enum):
    """Emergency signal status"""
    PENDING = "pending"
    ACKNOWLEDGED = "acknowledged"
    RESPONDING = "responding"
    RESOLVED = "resolved"
    FALSE_ALARM = "false_alarm"


SIGNAL_OPEN_STATES = frozenset({SignalState.PENDING, SignalState.ACKNOWLEDGED})
SIGNAL_ACTIVE_STATES = frozenset({SignalState.PENDING, SignalState.ACKNOWLEDGED, SignalState.RESPONDING})
SIGNAL_TERMINAL_STATES = frozenset({SignalState.RESOLVED, SignalState.FALSE_ALARM})


class ResponseState(Enum):
    """Status of one responder's assignment"""
    ASSIGNED = "assigned"
    EN_ROUTE = "en_route"
    ARRIVED = "arrived"
    ASSISTING = "assisting"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Forward order of a response; cancelled sits outside it
RESPONSE_ORDER = (
    ResponseState.ASSIGNED,
    ResponseState.EN_ROUTE,
    ResponseState.ARRIVED,
    ResponseState.ASSISTING,
    ResponseState.COMPLETED,
)
RESPONSE_TERMINAL_STATES = frozenset({ResponseState.COMPLETED, ResponseState.CANCELLED})


class VerificationStatus(Enum):
    """Civilian responder verification status"""
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class CertificationType(Enum):
    """Certifications a civilian responder can hold"""
    RED_CROSS = "red_cross"
    LIFE_SAVING = "life_saving"
    HEAVY_VEHICLE = "heavy_vehicle"
    MEDICAL_PROFESSIONAL = "medical_professional"
    FIRE_SAFETY = "fire_safety"
    SEARCH_RESCUE = "search_rescue"
    BOAT_LICENSE = "boat_license"
    OTHER = "other"


MEDICAL_CERTIFICATIONS = frozenset({
    CertificationType.MEDICAL_PROFESSIONAL,
    CertificationType.RED_CROSS,
})
RESCUE_CERTIFICATIONS = frozenset({
    CertificationType.LIFE_SAVING,
    CertificationType.SEARCH_RESCUE,
    CertificationType.BOAT_LICENSE,
    CertificationType.HEAVY_VEHICLE,
})


class RescueOutcome(Enum):
    """Outcome recorded when a rescue is completed"""
    RESCUED_SAFE = "rescued_safe"
    RESCUED_INJURED = "rescued_injured"
    RESCUED_CRITICAL = "rescued_critical"
    TRANSPORTED_TO_HOSPITAL = "transported_to_hospital"
    TRANSPORTED_TO_CAMP = "transported_to_camp"
    VICTIM_SAFE_ALREADY = "victim_safe_already"
    VICTIM_RELOCATED = "victim_relocated"
    VICTIM_NOT_FOUND = "victim_not_found"
    OTHER = "other"

    def is_successful(self) -> bool:
        """Check if the outcome counts as a successful rescue"""
        return self.value.startswith('rescued')


class VictimStatus(Enum):
    """Victim condition after the rescue"""
    SAFE = "safe"
    INJURED = "injured"
    CRITICAL = "critical"
    DECEASED = "deceased"
    MISSING = "missing"


class Gender(Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class StatusUpdateType(Enum):
    """Kinds of victim-facing status updates"""
    RESPONDER_ASSIGNED = "responder_assigned"
    RESPONDER_EN_ROUTE = "responder_en_route"
    RESPONDER_ARRIVED = "responder_arrived"
    CHAT_MESSAGE = "chat_message"
    SYSTEM_UPDATE = "system_update"


class SenderType(Enum):
    VICTIM = "victim"
    RESPONDER = "responder"


class EventType(Enum):
    """Domain events emitted by the coordination service"""
    SIGNAL_CREATED = "signal_created"
    SIGNAL_ACCEPTED = "signal_accepted"
    RESPONSE_STATUS_CHANGED = "response_status_changed"
    CHAT_MESSAGE_POSTED = "chat_message_posted"
    SIGNAL_CLOSED = "signal_closed"
    SIGNAL_ESCALATED = "signal_escalated"
    MISSING_PERSON_REPORTED = "missing_person_reported"


@dataclass(frozen=True)
class GeoPoint:
    """Latitude/longitude pair in decimal degrees"""
    lat: float
    lng: float

    def __post_init__(self):
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"Latitude out of range: {self.lat}")
        if not -180.0 <= self.lng <= 180.0:
            raise ValueError(f"Longitude out of range: {self.lng}")

    def to_dict(self) -> Dict[str, float]:
        return {'lat': self.lat, 'lng': self.lng}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['GeoPoint']:
        if not data or data.get('lat') is None or data.get('lng') is None:
            return None
        return cls(float(data['lat']), float(data['lng']))


@dataclass
class StatusUpdate:
    """Entry in the victim-facing status log of a signal"""
    message: str
    update_type: StatusUpdateType
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'message': self.message,
            'update_type': self.update_type.value,
            'timestamp': self.timestamp.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StatusUpdate':
        return cls(
            message=data['message'],
            update_type=StatusUpdateType(data['update_type']),
            timestamp=parse_datetime(data['timestamp'])
        )


@dataclass
class Signal:
    """Emergency signal raised by a victim"""
    reporter_id: str
    location: GeoPoint
    level: EmergencyLevel = EmergencyLevel.FOOD_WATER
    message: str = ""
    priority: SignalPriority = SignalPriority.MEDIUM
    emergency_type: EmergencyType = EmergencyType.OTHER
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=utc_now)
    status: SignalState = SignalState.PENDING
    address: str = ""
    contact_phone: Optional[str] = None
    assigned_responder: Optional[str] = None
    active_response_id: Optional[str] = None
    response_time: Optional[datetime] = None
    resolution_time: Optional[datetime] = None
    escalation_level: int = 0
    escalated_at: Optional[datetime] = None
    status_updates: List[StatusUpdate] = field(default_factory=list)
    safe_confirmed_at: Optional[datetime] = None
    safe_location: Optional[GeoPoint] = None
    transported_to_camp: bool = False
    relief_camp_id: Optional[str] = None
    relief_camp_name: Optional[str] = None

    def is_open(self) -> bool:
        """Check if the signal can still be accepted"""
        return self.status in SIGNAL_OPEN_STATES

    def is_terminal(self) -> bool:
        return self.status in SIGNAL_TERMINAL_STATES

    def add_status_update(self, message: str, update_type: StatusUpdateType) -> StatusUpdate:
        update = StatusUpdate(message=message, update_type=update_type)
        self.status_updates.append(update)
        return update

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'reporter_id': self.reporter_id,
            'location': self.location.to_dict(),
            'address': self.address,
            'level': self.level.value,
            'message': self.message,
            'priority': self.priority.value,
            'emergency_type': self.emergency_type.value,
            'status': self.status.value,
            'created_at': self.created_at.isoformat(),
            'contact_phone': self.contact_phone,
            'assigned_responder': self.assigned_responder,
            'active_response_id': self.active_response_id,
            'response_time': self.response_time.isoformat() if self.response_time else None,
            'resolution_time': self.resolution_time.isoformat() if self.resolution_time else None,
            'escalation_level': self.escalation_level,
            'status_updates': [update.to_dict() for update in self.status_updates],
            'safe_confirmed_at': self.safe_confirmed_at.isoformat() if self.safe_confirmed_at else None,
            'transported_to_camp': self.transported_to_camp,
            'relief_camp_name': self.relief_camp_name
        }


@dataclass
class Certification:
    """Certification uploaded by a civilian responder"""
    cert_type: CertificationType
    id: str = field(default_factory=_new_id)
    certificate_number: str = ""
    issued_by: str = ""
    verified: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'cert_type': self.cert_type.value,
            'certificate_number': self.certificate_number,
            'issued_by': self.issued_by,
            'verified': self.verified
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Certification':
        return cls(
            cert_type=CertificationType(data['cert_type']),
            id=data['id'],
            certificate_number=data.get('certificate_number', ''),
            issued_by=data.get('issued_by', ''),
            verified=bool(data.get('verified', False))
        )


@dataclass
class ResponderProfile:
    """Civilian ("Good Samaritan") responder profile"""
    id: str
    full_name: str
    phone: str = ""
    verification_status: VerificationStatus = VerificationStatus.PENDING
    available: bool = True
    location: Optional[GeoPoint] = None
    location_updated_at: Optional[datetime] = None
    availability_radius_km: float = 5.0
    certifications: List[Certification] = field(default_factory=list)
    allowed_levels: Set[EmergencyLevel] = field(default_factory=lambda: {EmergencyLevel.FOOD_WATER})
    total_responses: int = 0
    successful_responses: int = 0
    failed_responses: int = 0
    rating: float = 0.0
    total_ratings: int = 0

    def is_verified(self) -> bool:
        return self.verification_status == VerificationStatus.VERIFIED

    def update_allowed_levels(self) -> Set[EmergencyLevel]:
        """Recompute allowed SOS levels from verified certifications"""
        levels = {EmergencyLevel.FOOD_WATER}

        for cert in self.certifications:
            if not cert.verified:
                continue
            if cert.cert_type in MEDICAL_CERTIFICATIONS:
                levels.add(EmergencyLevel.MEDICAL)
            elif cert.cert_type in RESCUE_CERTIFICATIONS:
                levels.add(EmergencyLevel.MEDICAL)
                levels.add(EmergencyLevel.LIFE_THREATENING)

        self.allowed_levels = levels
        return levels

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'full_name': self.full_name,
            'phone': self.phone,
            'verification_status': self.verification_status.value,
            'available': self.available,
            'location': self.location.to_dict() if self.location else None,
            'availability_radius_km': self.availability_radius_km,
            'certifications': [cert.to_dict() for cert in self.certifications],
            'allowed_levels': sorted(level.value for level in self.allowed_levels),
            'total_responses': self.total_responses,
            'successful_responses': self.successful_responses,
            'failed_responses': self.failed_responses,
            'rating': self.rating,
            'total_ratings': self.total_ratings
        }


@dataclass
class StatusHistoryEntry:
    """Timestamped status change of a response"""
    status: ResponseState
    timestamp: datetime = field(default_factory=utc_now)
    location: Optional[GeoPoint] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'timestamp': self.timestamp.isoformat(),
            'location': self.location.to_dict() if self.location else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StatusHistoryEntry':
        return cls(
            status=ResponseState(data['status']),
            timestamp=parse_datetime(data['timestamp']),
            location=GeoPoint.from_dict(data.get('location'))
        )


@dataclass
class ChatMessage:
    """Chat message between victim and responder"""
    sender_id: str
    sender_type: SenderType
    text: str
    id: str = field(default_factory=_new_id)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'sender_id': self.sender_id,
            'sender_type': self.sender_type.value,
            'text': self.text,
            'timestamp': self.timestamp.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChatMessage':
        return cls(
            sender_id=data['sender_id'],
            sender_type=SenderType(data['sender_type']),
            text=data['text'],
            id=data['id'],
            timestamp=parse_datetime(data['timestamp'])
        )


@dataclass
class MissingPersonPayload:
    """Record handed to the external missing-persons registry"""
    name: str
    gender: Gender = Gender.OTHER
    age: Optional[int] = None
    description: str = ""
    last_seen_location: Optional[GeoPoint] = None
    reporter_contact: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'age': self.age,
            'gender': self.gender.value,
            'description': self.description,
            'last_seen_location': self.last_seen_location.to_dict() if self.last_seen_location else None,
            'reporter_contact': self.reporter_contact
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MissingPersonPayload':
        return cls(
            name=data['name'],
            gender=Gender(data.get('gender', 'other')),
            age=data.get('age'),
            description=data.get('description', ''),
            last_seen_location=GeoPoint.from_dict(data.get('last_seen_location')),
            reporter_contact=data.get('reporter_contact', '')
        )


@dataclass
class CompletionRecord:
    """Post-rescue information attached to a completed response"""
    outcome: RescueOutcome
    victim_status: VictimStatus = VictimStatus.SAFE
    relief_camp_id: Optional[str] = None
    relief_camp_name: Optional[str] = None
    hospital_name: Optional[str] = None
    notes: str = ""
    create_missing_person_entry: bool = False
    missing_person: Optional[MissingPersonPayload] = None

    def __post_init__(self):
        if self.create_missing_person_entry and self.missing_person is None:
            raise ValueError("A missing person payload is required when create_missing_person_entry is set")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'outcome': self.outcome.value,
            'victim_status': self.victim_status.value,
            'relief_camp_id': self.relief_camp_id,
            'relief_camp_name': self.relief_camp_name,
            'hospital_name': self.hospital_name,
            'notes': self.notes,
            'create_missing_person_entry': self.create_missing_person_entry,
            'missing_person': self.missing_person.to_dict() if self.missing_person else None
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CompletionRecord':
        missing_person = data.get('missing_person')
        return cls(
            outcome=RescueOutcome(data['outcome']),
            victim_status=VictimStatus(data.get('victim_status', 'safe')),
            relief_camp_id=data.get('relief_camp_id'),
            relief_camp_name=data.get('relief_camp_name'),
            hospital_name=data.get('hospital_name'),
            notes=data.get('notes', ''),
            create_missing_person_entry=bool(data.get('create_missing_person_entry', False)),
            missing_person=MissingPersonPayload.from_dict(missing_person) if missing_person else None
        )


@dataclass
class Response:
    """One responder's engagement with one signal"""
    signal_id: str
    responder_id: str
    id: str = field(default_factory=_new_id)
    status: ResponseState = ResponseState.ASSIGNED
    status_history: List[StatusHistoryEntry] = field(default_factory=list)
    responder_location: Optional[GeoPoint] = None
    distance_to_victim_km: Optional[float] = None
    chat_messages: List[ChatMessage] = field(default_factory=list)
    completion: Optional[CompletionRecord] = None
    cancellation_reason: Optional[str] = None
    assigned_at: datetime = field(default_factory=utc_now)
    en_route_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    victim_rating: Optional[int] = None

    def is_active(self) -> bool:
        """Check if the response is still non-terminal"""
        return self.status not in RESPONSE_TERMINAL_STATES

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'signal_id': self.signal_id,
            'responder_id': self.responder_id,
            'status': self.status.value,
            'status_history': [entry.to_dict() for entry in self.status_history],
            'responder_location': self.responder_location.to_dict() if self.responder_location else None,
            'distance_to_victim_km': self.distance_to_victim_km,
            'chat_messages': [msg.to_dict() for msg in self.chat_messages],
            'completion': self.completion.to_dict() if self.completion else None,
            'cancellation_reason': self.cancellation_reason,
            'assigned_at': self.assigned_at.isoformat(),
            'en_route_at': self.en_route_at.isoformat() if self.en_route_at else None,
            'arrived_at': self.arrived_at.isoformat() if self.arrived_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'victim_rating': self.victim_rating
        }


@dataclass
class CoordinationEvent:
    """Domain event published to external notifiers"""
    event_type: EventType
    signal_id: str
    response_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_type': self.event_type.value,
            'signal_id': self.signal_id,
            'response_id': self.response_id,
            'payload': self.payload,
            'timestamp': self.timestamp.isoformat()
        }
