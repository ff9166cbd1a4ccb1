"""In-memory FastAPI backend exposing the REST surface the clients consume."""

from __future__ import annotations

import json
import logging
import re
import secrets
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from resolvehub_client.api.models import (
    AssistantQueryRequest,
    AssistantQueryResponse,
    EmergencyNumberPayload,
    EscalationResponse,
    ExpertPayload,
    LoginRequest,
    LoginResponse,
    MessagePayload,
    RagItemPayload,
    ReplyRequest,
    StatsPayload,
    TicketDetailPayload,
    TicketPayload,
    UserPayload,
)
from resolvehub_client.schemas import SenderType, TicketCategory, TicketStatus, Urgency
from resolvehub_client.utils import get_logger

logger = get_logger(__name__)

SEED_EXPERT_EMAIL = "test@resolvehub.bf"
SEED_EXPERT_PASSWORD = "test123"

_WORD = re.compile(r"\w+", re.UNICODE)


@dataclass(slots=True)
class Expert:
    id: int
    name: str
    email: str
    password: str


@dataclass(slots=True)
class KnowledgeEntry:
    title: str
    answer: str
    source: str
    category: str
    keywords: tuple[str, ...]
    media: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class MockState:
    """Everything the mock backend knows. Tests build a fresh one per app."""

    experts: list[Expert] = field(default_factory=list)
    tokens: dict[str, int] = field(default_factory=dict)
    tickets: dict[int, TicketPayload] = field(default_factory=dict)
    messages: dict[int, list[MessagePayload]] = field(default_factory=dict)
    resolved_at: dict[int, datetime] = field(default_factory=dict)
    user_names: dict[str, str] = field(default_factory=dict)
    knowledge: list[KnowledgeEntry] = field(default_factory=list)
    emergency_numbers: list[EmergencyNumberPayload] = field(default_factory=list)
    next_ticket_id: int = 1

    def expert_for_token(self, token: str) -> Optional[Expert]:
        expert_id = self.tokens.get(token)
        return next((expert for expert in self.experts if expert.id == expert_id), None)

    def add_ticket(
        self,
        *,
        phone: str,
        content: str,
        category: Optional[str],
        photo: Optional[str] = None,
        analysis: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> TicketPayload:
        ticket_id = self.next_ticket_id
        self.next_ticket_id += 1
        created = created_at or datetime.now(timezone.utc)
        canonical = TicketCategory.coerce(category)
        if canonical == TicketCategory.SOS_ACCIDENT:
            urgency = Urgency.HIGH
        elif photo:
            urgency = Urgency.MEDIUM
        else:
            urgency = Urgency.LOW
        ticket = TicketPayload(
            id=ticket_id,
            status=TicketStatus.OPEN,
            category=canonical.value if canonical else category,
            urgency=urgency,
            last_message=content,
            user_phone=phone,
            photo_url=photo,
            photo_analysis=analysis,
            created_at=created.isoformat(),
        )
        self.tickets[ticket_id] = ticket
        self.messages[ticket_id] = [
            MessagePayload(sender_type=SenderType.USER, content=content, sent_at=created.isoformat())
        ]
        return ticket


def seed_state() -> MockState:
    state = MockState()
    state.experts.append(
        Expert(id=1, name="Expert Test", email=SEED_EXPERT_EMAIL, password=SEED_EXPERT_PASSWORD)
    )
    state.knowledge.extend(
        [
            KnowledgeEntry(
                title="Mildiou",
                answer=(
                    "Retirer les feuilles atteintes et les brûler loin du champ. "
                    "Espacer les plants pour que l'air circule et arroser au pied, jamais sur les feuilles."
                ),
                source="fiche-042",
                category="agriculture",
                keywords=("taches", "jaunes", "feuilles", "mildiou", "tomate"),
                media=[{"type": "image", "url": "/media/mildiou.jpg", "title": "Feuilles atteintes"}],
            ),
            KnowledgeEntry(
                title="Chenille légionnaire",
                answer="Inspecter les cornets du maïs le matin et retirer les chenilles à la main.",
                source="fiche-017",
                category="agriculture",
                keywords=("maïs", "mais", "chenille", "trous", "cornet"),
            ),
            KnowledgeEntry(
                title="Maladie de Newcastle",
                answer=(
                    "Isoler immédiatement les volailles malades et faire vacciner le reste "
                    "du poulailler par l'agent d'élevage."
                ),
                source="fiche-105",
                category="elevage",
                keywords=("poules", "volaille", "poulet", "toux", "mortalité"),
                media=[{"type": "video", "url": "/media/newcastle.mp4", "title": "Reconnaître la maladie"}],
            ),
            KnowledgeEntry(
                title="Morsure de serpent",
                answer=(
                    "Garder la personne calme et immobile, retirer bagues et bracelets, "
                    "ne pas inciser la plaie et rejoindre le centre de santé le plus proche."
                ),
                source="fiche-sos-03",
                category="sos_accident",
                keywords=("serpent", "morsure", "mordu"),
            ),
            KnowledgeEntry(
                title="Arnaque au transfert d'argent",
                answer=(
                    "Ne jamais communiquer son code secret. Appeler soi-même son opérateur "
                    "avec le numéro officiel avant toute opération."
                ),
                source="fiche-cyber-01",
                category="cybersecurity",
                keywords=("arnaque", "code", "transfert", "argent", "sms"),
            ),
        ]
    )
    state.emergency_numbers.extend(
        [
            EmergencyNumberPayload(id=1, label="Pompiers", number="18", description="Incendies et accidents", display_order=1),
            EmergencyNumberPayload(id=2, label="Police secours", number="17", display_order=2),
            EmergencyNumberPayload(id=3, label="SAMU", number="112", description="Urgences médicales", display_order=3),
        ]
    )
    state.user_names["70000000"] = "Awa"
    ticket = state.add_ticket(
        phone="70000000",
        content="Question 1 : Mes poules toussent et deux sont mortes cette nuit.",
        category="elevage",
    )
    state.tickets[ticket.id] = ticket.model_copy(update={"status": TicketStatus.ASSIGNED})
    state.messages[ticket.id].append(
        MessagePayload(
            sender_type=SenderType.EXPERT,
            content="Isolez les poules malades, je passe demain matin.",
            sent_at=datetime.now(timezone.utc).isoformat(),
        )
    )
    return state


class HealthResponse(BaseModel):
    status: str
    service: str


def get_state(request: Request) -> MockState:
    return request.app.state.backend


def require_expert(
    request: Request, authorization: Optional[str] = Header(default=None)
) -> Expert:
    scheme, _, token = (authorization or "").partition(" ")
    expert = get_state(request).expert_for_token(token) if scheme.lower() == "bearer" else None
    if expert is None:
        raise HTTPException(status_code=401, detail="Non authentifié")
    return expert


def match_knowledge(state: MockState, content: str, category: Optional[str]) -> list[KnowledgeEntry]:
    words = {word.lower() for word in _WORD.findall(content)}
    canonical = TicketCategory.coerce(category)
    scored: list[tuple[int, int, KnowledgeEntry]] = []
    for index, entry in enumerate(state.knowledge):
        if canonical is not None and entry.category != canonical.value:
            continue
        score = len(words.intersection(entry.keywords))
        if score:
            scored.append((-score, index, entry))
    return [entry for _, _, entry in sorted(scored)[:3]]


def analyse_photo(photo: Optional[str]) -> Optional[str]:
    """Stand-in for the image model: always defers to an expert."""
    if not photo:
        return None
    return json.dumps(
        {
            "disease_detected": None,
            "confidence": 0,
            "analysis": "Photo reçue. L'analyse automatique n'a rien identifié avec certitude.",
            "recommendations": "Décrivez les symptômes visibles pour obtenir des conseils.",
            "requires_expert": True,
        },
        ensure_ascii=False,
    )


def answer_query(state: MockState, request: AssistantQueryRequest) -> AssistantQueryResponse:
    entries = match_knowledge(state, request.content, request.category)
    return AssistantQueryResponse(
        rag_items=[
            RagItemPayload(title=entry.title, answer=entry.answer, source=entry.source, media=entry.media)
            for entry in entries
        ]
        or None,
        photo_analysis=analyse_photo(request.photo_base64),
    )


health_router = APIRouter()
auth_router = APIRouter()
tickets_router = APIRouter()
assistant_router = APIRouter()


@health_router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    return HealthResponse(status="healthy", service="resolvehub-mock-backend")


@auth_router.post("/auth/login", response_model=LoginResponse)
async def login(payload: LoginRequest, state: MockState = Depends(get_state)) -> LoginResponse:
    expert = next(
        (
            candidate
            for candidate in state.experts
            if candidate.email == payload.email.strip().lower() and candidate.password == payload.password
        ),
        None,
    )
    if expert is None:
        raise HTTPException(status_code=401, detail="Email ou mot de passe incorrect")
    token = secrets.token_urlsafe(24)
    state.tokens[token] = expert.id
    logger.info("Expert %s logged in", expert.id)
    return LoginResponse(
        token=token, expert=ExpertPayload(id=expert.id, name=expert.name, email=expert.email)
    )


@tickets_router.get("/tickets", response_model=list[TicketPayload])
async def list_tickets(
    state: MockState = Depends(get_state), _expert: Expert = Depends(require_expert)
) -> list[TicketPayload]:
    return sorted(state.tickets.values(), key=lambda ticket: ticket.id, reverse=True)


def _ticket_or_404(state: MockState, ticket_id: int) -> TicketPayload:
    ticket = state.tickets.get(ticket_id)
    if ticket is None:
        raise HTTPException(status_code=404, detail="Ticket introuvable")
    return ticket


@tickets_router.get("/tickets/{ticket_id}", response_model=TicketDetailPayload)
async def ticket_detail(ticket_id: int, state: MockState = Depends(get_state)) -> TicketDetailPayload:
    ticket = _ticket_or_404(state, ticket_id)
    phone = ticket.user_phone or ""
    return TicketDetailPayload(
        ticket=ticket,
        user=UserPayload(phone=phone, name=state.user_names.get(phone)),
        messages=state.messages.get(ticket_id, []),
    )


@tickets_router.post("/tickets/{ticket_id}/reply")
async def reply(
    ticket_id: int,
    payload: ReplyRequest,
    state: MockState = Depends(get_state),
    expert: Expert = Depends(require_expert),
) -> dict[str, Any]:
    ticket = _ticket_or_404(state, ticket_id)
    if not payload.message.strip():
        raise HTTPException(status_code=400, detail="Message vide")
    state.messages.setdefault(ticket_id, []).append(
        MessagePayload(
            sender_type=SenderType.EXPERT,
            content=payload.message,
            sent_at=datetime.now(timezone.utc).isoformat(),
        )
    )
    if ticket.status == TicketStatus.OPEN:
        state.tickets[ticket_id] = ticket.model_copy(update={"status": TicketStatus.ASSIGNED})
    logger.info("Expert %s replied on ticket %s", expert.id, ticket_id)
    return {"status": "sent"}


@tickets_router.post("/tickets/{ticket_id}/resolve")
async def resolve(
    ticket_id: int,
    state: MockState = Depends(get_state),
    expert: Expert = Depends(require_expert),
) -> dict[str, Any]:
    ticket = _ticket_or_404(state, ticket_id)
    if ticket.status == TicketStatus.RESOLVED:
        raise HTTPException(status_code=400, detail="Ce ticket est déjà résolu")
    state.tickets[ticket_id] = ticket.model_copy(update={"status": TicketStatus.RESOLVED})
    state.resolved_at[ticket_id] = datetime.now(timezone.utc)
    logger.info("Expert %s resolved ticket %s", expert.id, ticket_id)
    return {"status": "resolved"}


@tickets_router.get("/stats", response_model=StatsPayload)
async def stats(
    state: MockState = Depends(get_state), _expert: Expert = Depends(require_expert)
) -> StatsPayload:
    tickets = list(state.tickets.values())
    today = datetime.now(timezone.utc).date()
    return StatsPayload(
        total_tickets=len(tickets),
        open_tickets=sum(1 for t in tickets if t.status == TicketStatus.OPEN),
        assigned_tickets=sum(1 for t in tickets if t.status == TicketStatus.ASSIGNED),
        resolved_today=sum(1 for when in state.resolved_at.values() if when.date() == today),
        tickets_with_photos=sum(1 for t in tickets if t.photo_url),
    )


@tickets_router.get("/user-tickets", response_model=list[TicketPayload])
async def user_tickets(
    phone: str = Query(...), state: MockState = Depends(get_state)
) -> list[TicketPayload]:
    return sorted(
        (ticket for ticket in state.tickets.values() if ticket.user_phone == phone),
        key=lambda ticket: ticket.id,
        reverse=True,
    )


@assistant_router.post("/assistant/query", response_model=AssistantQueryResponse)
async def assistant_query(
    payload: AssistantQueryRequest, state: MockState = Depends(get_state)
) -> AssistantQueryResponse:
    return answer_query(state, payload)


@assistant_router.post("/webhooks/incoming-sms", response_model=EscalationResponse)
async def incoming_sms(
    payload: AssistantQueryRequest, state: MockState = Depends(get_state)
) -> EscalationResponse:
    if not payload.content.strip() or not payload.phone_number.strip():
        raise HTTPException(status_code=400, detail="Numéro et message obligatoires")
    answer = answer_query(state, payload)
    ticket = state.add_ticket(
        phone=payload.phone_number,
        content=payload.content,
        category=payload.category,
        photo=payload.photo_base64,
        analysis=answer.photo_analysis,
    )
    logger.info("Ticket %s created from %s channel", ticket.id, payload.channel)
    return EscalationResponse(ticket_id=ticket.id, **answer.model_dump())


@assistant_router.get("/emergency-numbers", response_model=list[EmergencyNumberPayload])
async def emergency_numbers(state: MockState = Depends(get_state)) -> list[EmergencyNumberPayload]:
    return sorted(state.emergency_numbers, key=lambda number: number.display_order)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting ResolveHub mock backend (%s tickets seeded)", len(app.state.backend.tickets))
    yield
    logger.info("Shutting down ResolveHub mock backend")


def create_app(state: Optional[MockState] = None) -> FastAPI:
    """Create the mock backend. Pass ``state`` to share or inspect it from tests."""
    app = FastAPI(
        title="ResolveHub mock backend",
        description="In-memory stand-in for the ResolveHub REST API",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.backend = state if state is not None else seed_state()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router, tags=["Health"])
    app.include_router(auth_router, tags=["Auth"])
    app.include_router(tickets_router, tags=["Tickets"])
    app.include_router(assistant_router, tags=["Assistant"])

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc) if logger.isEnabledFor(logging.DEBUG) else "Erreur interne du serveur",
            },
        )

    return app


app = create_app()
