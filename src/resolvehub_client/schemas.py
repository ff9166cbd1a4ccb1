from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union


class TicketStatus(str, Enum):
    OPEN = "open"
    ASSIGNED = "assigned"
    RESOLVED = "resolved"


class TicketCategory(str, Enum):
    AGRICULTURE = "agriculture"
    ELEVAGE = "elevage"
    SOS_ACCIDENT = "sos_accident"
    CYBERSECURITY = "cybersecurity"

    @classmethod
    def _missing_(cls, value: object) -> Optional["TicketCategory"]:
        # Older screens and knowledge items still use "health" for SOS/accident.
        if isinstance(value, str) and value.strip().lower() in {"health", "sos", "sos accident"}:
            return cls.SOS_ACCIDENT
        return None

    @classmethod
    def coerce(cls, raw: Any) -> Optional["TicketCategory"]:
        if raw is None or isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return None


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SenderType(str, Enum):
    USER = "user"
    EXPERT = "expert"
    SYSTEM = "system"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class NotificationKind(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True, slots=True)
class Ticket:
    """Server-owned record of an escalated request. Never mutated client-side."""

    id: int
    status: TicketStatus
    category: Optional[TicketCategory] = None
    urgency: Urgency = Urgency.LOW
    last_message: str = ""
    user_phone: str = ""
    photo_url: Optional[str] = None
    photo_analysis: Any = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class Message:
    sender_type: SenderType
    content: str
    sent_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class TicketUser:
    phone: str = ""
    name: Optional[str] = None


@dataclass(frozen=True, slots=True)
class TicketDetail:
    ticket: Ticket
    user: TicketUser = field(default_factory=TicketUser)
    messages: tuple[Message, ...] = ()
    synthesized: bool = False


@dataclass(frozen=True, slots=True)
class Stats:
    total_tickets: int = 0
    open_tickets: int = 0
    assigned_tickets: int = 0
    resolved_today: int = 0
    tickets_with_photos: int = 0


@dataclass(frozen=True, slots=True)
class Session:
    """Authenticated identity. Expiry is enforced by the server only."""

    token: str
    identity: str
    expert_id: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AnalysisRecord:
    disease_detected: Optional[str] = None
    confidence: Optional[float] = None
    analysis: Optional[str] = None
    recommendations: Optional[str] = None
    treatment: Optional[str] = None
    requires_expert: bool = False
    symptoms: tuple[str, ...] = ()
    prevention: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AnalysisAbsent:
    pass


@dataclass(frozen=True, slots=True)
class AnalysisRaw:
    """A photo-analysis string that could not be parsed into a record."""

    text: str


@dataclass(frozen=True, slots=True)
class AnalysisParsed:
    record: AnalysisRecord


PhotoAnalysis = Union[AnalysisAbsent, AnalysisRaw, AnalysisParsed]
ANALYSIS_ABSENT = AnalysisAbsent()


@dataclass(frozen=True, slots=True)
class KnowledgeItem:
    title: Optional[str] = None
    answer: Optional[str] = None
    source: Optional[str] = None
    media: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True, slots=True)
class AssistantReply:
    """Single rendered assistant message derived from one backend payload."""

    text: str
    media: tuple[dict[str, Any], ...] = ()
    analysis: PhotoAnalysis = ANALYSIS_ABSENT


@dataclass(frozen=True, slots=True)
class ConversationTurn:
    role: Role
    content: str
    photo: Optional[str] = None
    analysis: PhotoAnalysis = ANALYSIS_ABSENT


@dataclass(frozen=True, slots=True)
class EscalatedTicket:
    ticket_id: int
    ai_response: str
    category: Optional[TicketCategory] = None
    problem: str = ""
    photo: Optional[str] = None
    analysis: PhotoAnalysis = ANALYSIS_ABSENT
    created_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class Notification:
    id: int
    message: str
    kind: NotificationKind
    created_at: datetime


@dataclass(frozen=True, slots=True)
class TicketFilter:
    """Filter value. ``None`` on an enum field means "all"."""

    status: Optional[TicketStatus] = None
    category: Optional[TicketCategory] = None
    urgency: Optional[Urgency] = None
    query: str = ""

    @classmethod
    def from_values(
        cls,
        status: str = "all",
        category: str = "all",
        urgency: str = "all",
        query: str = "",
    ) -> "TicketFilter":
        def _pick(enum_cls, raw: str):
            if raw is None or str(raw).strip().lower() in {"", "all"}:
                return None
            return enum_cls(str(raw).strip().lower())

        return cls(
            status=_pick(TicketStatus, status),
            category=_pick(TicketCategory, category),
            urgency=_pick(Urgency, urgency),
            query=query or "",
        )


@dataclass(frozen=True, slots=True)
class EmergencyNumber:
    label: str
    number: str
    description: Optional[str] = None
    id: Optional[int] = None
    display_order: int = 0
