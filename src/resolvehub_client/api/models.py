"""Wire models for the ResolveHub REST surface.

The client validates ticket, detail, stats and login bodies with these models;
the mock backend uses the same classes for its requests and responses. Assistant
payloads are intentionally *not* validated here: they are handed to the
prioritizer as raw mappings because any field may be missing or malformed.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from resolvehub_client.schemas import (
    EmergencyNumber,
    Message,
    SenderType,
    Stats,
    Ticket,
    TicketCategory,
    TicketDetail,
    TicketStatus,
    TicketUser,
    Urgency,
)
from resolvehub_client.utils import parse_timestamp


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class LoginRequest(_WireModel):
    email: str
    password: str


class ExpertPayload(_WireModel):
    id: int | str
    name: str | None = None
    email: str | None = None


class LoginResponse(_WireModel):
    token: str
    expert: ExpertPayload


class TicketPayload(_WireModel):
    id: int
    status: TicketStatus
    category: str | None = None
    urgency: Urgency = Urgency.LOW
    last_message: str | None = None
    user_phone: str | None = None
    photo_url: str | None = None
    photo_analysis: Any = None
    created_at: str | None = None

    @field_validator("urgency", mode="before")
    @classmethod
    def _lenient_urgency(cls, value: Any) -> Any:
        if isinstance(value, str) and value in Urgency._value2member_map_:
            return value
        return Urgency.LOW

    def to_domain(self) -> Ticket:
        return Ticket(
            id=self.id,
            status=self.status,
            category=TicketCategory.coerce(self.category),
            urgency=self.urgency,
            last_message=self.last_message or "",
            user_phone=self.user_phone or "",
            photo_url=self.photo_url or None,
            photo_analysis=self.photo_analysis,
            created_at=parse_timestamp(self.created_at),
        )


class MessagePayload(_WireModel):
    sender_type: SenderType
    content: str = ""
    sent_at: str | None = None

    def to_domain(self) -> Message:
        return Message(
            sender_type=self.sender_type,
            content=self.content,
            sent_at=parse_timestamp(self.sent_at),
        )


class UserPayload(_WireModel):
    phone: str | None = None
    name: str | None = None


class TicketDetailPayload(_WireModel):
    ticket: TicketPayload
    user: UserPayload | None = None
    messages: list[MessagePayload] = Field(default_factory=list)

    def to_domain(self) -> TicketDetail:
        user = self.user or UserPayload()
        messages = sorted(
            (message.to_domain() for message in self.messages),
            key=lambda message: (message.sent_at is None, message.sent_at.timestamp() if message.sent_at else 0),
        )
        return TicketDetail(
            ticket=self.ticket.to_domain(),
            user=TicketUser(phone=user.phone or "", name=user.name),
            messages=tuple(messages),
        )


class ReplyRequest(_WireModel):
    message: str


class StatsPayload(_WireModel):
    total_tickets: int = 0
    open_tickets: int = 0
    assigned_tickets: int = 0
    resolved_today: int = 0
    tickets_with_photos: int = 0

    @field_validator("*", mode="before")
    @classmethod
    def _default_zero(cls, value: Any) -> Any:
        return value or 0

    def to_domain(self) -> Stats:
        return Stats(**self.model_dump())


class AssistantQueryRequest(_WireModel):
    phone_number: str
    content: str
    channel: str = "app"
    category: str | None = None
    photo_base64: str | None = None


class RagItemPayload(_WireModel):
    title: str | None = None
    answer: str | None = None
    source: str | None = None
    media: list[dict[str, Any]] | None = None


class AssistantQueryResponse(_WireModel):
    llm_answer: str | None = None
    rag_items: list[RagItemPayload] | None = None
    rag_fallback_answer: str | None = None
    photo_analysis: Any = None


class EscalationResponse(AssistantQueryResponse):
    ticket_id: int


class EmergencyNumberPayload(_WireModel):
    id: int | None = None
    label: str
    number: str
    description: str | None = None
    display_order: int = 0

    def to_domain(self) -> EmergencyNumber:
        return EmergencyNumber(
            id=self.id,
            label=self.label,
            number=self.number,
            description=self.description,
            display_order=self.display_order or 0,
        )


class ErrorDetail(_WireModel):
    detail: str
