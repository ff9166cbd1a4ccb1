"""Client-side multi-turn assistant conversation and its escalation to a ticket."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from resolvehub_client.api.client import BackendClient
from resolvehub_client.api.models import AssistantQueryRequest
from resolvehub_client.errors import BackendError, TransportError
from resolvehub_client.notifications import NotificationQueue
from resolvehub_client.prioritizer import normalize
from resolvehub_client.schemas import (
    ANALYSIS_ABSENT,
    AnalysisAbsent,
    AssistantReply,
    ConversationTurn,
    EscalatedTicket,
    NotificationKind,
    PhotoAnalysis,
    Role,
    TicketCategory,
)
from resolvehub_client.utils import get_logger

logger = get_logger(__name__)

MISSING_FIELDS_MESSAGE = "Veuillez remplir tous les champs"
MISSING_FOLLOWUP_MESSAGE = "Écrivez d'abord votre question pour l'IA."
MISSING_PHONE_MESSAGE = "Veuillez vérifier votre numéro de téléphone."
NOTHING_TO_ESCALATE_MESSAGE = "Veuillez poser votre question avant de contacter un expert."
SERVER_UNAVAILABLE_MESSAGE = "Le serveur est indisponible. Veuillez réessayer plus tard."
SUBMIT_FAILED_MESSAGE = "Erreur lors de l'envoi. Vérifiez votre connexion."
SUBMIT_SUCCESS_MESSAGE = "Demande envoyée avec succès !"
FOLLOWUP_FAILED_MESSAGE = "Erreur lors de la réponse de l'IA."
ESCALATION_FAILED_MESSAGE = "Erreur lors de la création du ticket"
ESCALATION_SUCCESS_MESSAGE = "Votre demande a été envoyée à un expert."
ESCALATION_DEFAULT_ANSWER = (
    "Votre demande a été envoyée à un expert. Vous recevrez une réponse dès que possible."
)


class ConversationState(str, Enum):
    IDLE = "idle"
    AWAITING_FIRST_RESPONSE = "awaiting_first_response"
    CONVERSING = "conversing"
    ESCALATED = "escalated"


def build_escalation_summary(turns: tuple[ConversationTurn, ...] | list[ConversationTurn]) -> str:
    """Concatenate every user turn as ``Question k : <text>`` for the expert."""
    questions = [turn.content for turn in turns if turn.role == Role.USER]
    return "\n\n".join(
        f"Question {index} : {content}" for index, content in enumerate(questions, start=1)
    )


class ConversationEngine:
    """State machine for one problem submission.

    ``Idle -> AwaitingFirstResponse -> Conversing -> Escalated``; ``reset`` (a
    new category or a new problem) returns to ``Idle`` from anywhere. No ticket
    exists until ``escalate`` succeeds. Each network-bound operation has an
    in-flight flag: a second call while one is pending is rejected, never
    queued. Responses that arrive after a ``reset`` are discarded.
    """

    def __init__(
        self,
        client: BackendClient,
        notifications: NotificationQueue,
        *,
        channel: str = "app",
        probe_health: bool = True,
    ) -> None:
        self.client = client
        self.notifications = notifications
        self.channel = channel
        self.probe_health = probe_health
        self.generation = 0
        self._querying = False
        self._escalating = False
        self._clear()

    def _clear(self) -> None:
        self.state = ConversationState.IDLE
        self.category: Optional[TicketCategory] = None
        self._turns: list[ConversationTurn] = []
        self.photo: Optional[str] = None
        self.media: tuple[dict, ...] = ()
        self.analysis: PhotoAnalysis = ANALYSIS_ABSENT
        self.last_answer = ""
        self.escalated: Optional[EscalatedTicket] = None

    @property
    def turns(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    @property
    def ticket_id(self) -> Optional[int]:
        return self.escalated.ticket_id if self.escalated else None

    @property
    def busy(self) -> bool:
        return self._querying or self._escalating

    def reset(self, category: TicketCategory | str | None = None) -> None:
        self.generation += 1
        self._querying = False
        self._escalating = False
        self._clear()
        self.category = TicketCategory.coerce(category)
        logger.debug("Conversation reset (category=%s)", self.category)

    def _request(self, phone: str, content: str, photo: Optional[str]) -> AssistantQueryRequest:
        return AssistantQueryRequest(
            phone_number=phone,
            content=content,
            channel=self.channel,
            category=self.category.value if self.category else None,
            photo_base64=photo,
        )

    async def submit(
        self, text: str, phone: str, photo: Optional[str] = None
    ) -> Optional[AssistantReply]:
        if not text.strip() or not phone.strip():
            self.notifications.push(MISSING_FIELDS_MESSAGE, NotificationKind.WARNING)
            return None
        if self._querying:
            logger.debug("Submit ignored: a query is already in flight")
            return None
        if self.state != ConversationState.IDLE:
            logger.warning("Submit ignored in state %s", self.state.value)
            return None

        generation = self.generation
        self._querying = True
        self.state = ConversationState.AWAITING_FIRST_RESPONSE
        self._turns.append(ConversationTurn(role=Role.USER, content=text, photo=photo))

        try:
            if self.probe_health and not await self.client.health():
                raise BackendError(503, SERVER_UNAVAILABLE_MESSAGE)
            payload = await self.client.assistant_query(self._request(phone, text, photo))
        except (BackendError, TransportError) as exc:
            if generation != self.generation:
                return None
            self._querying = False
            self._turns.clear()
            self.state = ConversationState.IDLE
            message = (
                exc.user_message(SUBMIT_FAILED_MESSAGE)
                if isinstance(exc, BackendError)
                else SUBMIT_FAILED_MESSAGE
            )
            self.notifications.push(message, NotificationKind.ERROR)
            return None

        if generation != self.generation:
            logger.debug("Discarding assistant answer for a reset conversation")
            return None

        self._querying = False
        reply = normalize(payload)
        self.photo = photo
        self._accept(reply, carry_analysis=False)
        self.state = ConversationState.CONVERSING
        logger.info("Conversation started (category=%s)", self.category)
        self.notifications.push(SUBMIT_SUCCESS_MESSAGE, NotificationKind.SUCCESS)
        return reply

    async def ask_followup(self, text: str, phone: str) -> Optional[AssistantReply]:
        if self.state != ConversationState.CONVERSING:
            logger.warning("Follow-up ignored in state %s", self.state.value)
            return None
        if not text.strip():
            self.notifications.push(MISSING_FOLLOWUP_MESSAGE, NotificationKind.WARNING)
            return None
        if not phone.strip():
            self.notifications.push(MISSING_PHONE_MESSAGE, NotificationKind.WARNING)
            return None
        if self._querying:
            logger.debug("Follow-up ignored: a query is already in flight")
            return None

        generation = self.generation
        self._querying = True
        turn_index = len(self._turns)
        self._turns.append(ConversationTurn(role=Role.USER, content=text))

        try:
            payload = await self.client.assistant_query(self._request(phone, text, None))
        except (BackendError, TransportError) as exc:
            if generation != self.generation:
                return None
            self._querying = False
            del self._turns[turn_index]
            message = (
                exc.user_message(FOLLOWUP_FAILED_MESSAGE)
                if isinstance(exc, BackendError)
                else FOLLOWUP_FAILED_MESSAGE
            )
            self.notifications.push(message, NotificationKind.ERROR)
            return None

        if generation != self.generation:
            logger.debug("Discarding follow-up answer for a reset conversation")
            return None

        self._querying = False
        reply = normalize(payload)
        self._accept(reply, carry_analysis=True)
        return reply

    def _accept(self, reply: AssistantReply, *, carry_analysis: bool) -> None:
        self._turns.append(
            ConversationTurn(role=Role.ASSISTANT, content=reply.text, analysis=reply.analysis)
        )
        self.last_answer = reply.text
        self.media = reply.media
        if not carry_analysis or not isinstance(reply.analysis, AnalysisAbsent):
            self.analysis = reply.analysis

    def _latest_photo(self) -> Optional[str]:
        for turn in reversed(self._turns):
            if turn.role == Role.USER and turn.photo:
                return turn.photo
        return self.photo

    async def escalate(self, phone: str) -> Optional[EscalatedTicket]:
        if self._escalating:
            logger.debug("Escalation ignored: one is already in flight")
            return None
        if self.state != ConversationState.CONVERSING or not self._turns:
            if self.state != ConversationState.ESCALATED:
                self.notifications.push(NOTHING_TO_ESCALATE_MESSAGE, NotificationKind.WARNING)
            return None
        if not phone.strip():
            self.notifications.push(MISSING_PHONE_MESSAGE, NotificationKind.WARNING)
            return None

        generation = self.generation
        self._escalating = True
        summary = build_escalation_summary(self._turns)
        photo = self._latest_photo()

        try:
            payload = await self.client.escalate(self._request(phone, summary, photo))
            ticket_id = int(payload["ticket_id"])
        except (BackendError, TransportError) as exc:
            if generation == self.generation:
                self._escalating = False
                message = (
                    exc.user_message(ESCALATION_FAILED_MESSAGE)
                    if isinstance(exc, BackendError)
                    else ESCALATION_FAILED_MESSAGE
                )
                self.notifications.push(message, NotificationKind.ERROR)
            return None
        except (KeyError, TypeError, ValueError):
            logger.warning("Escalation answer carried no usable ticket_id")
            if generation == self.generation:
                self._escalating = False
                self.notifications.push(ESCALATION_FAILED_MESSAGE, NotificationKind.ERROR)
            return None

        if generation != self.generation:
            logger.info("Ticket %s created for a conversation that was reset", ticket_id)
            return None

        self._escalating = False
        answer = self.last_answer or normalize(payload, fallback=ESCALATION_DEFAULT_ANSWER).text
        analysis = self.analysis
        if isinstance(analysis, AnalysisAbsent):
            analysis = normalize(payload).analysis
        first_question = next((t.content for t in self._turns if t.role == Role.USER), "")

        self.escalated = EscalatedTicket(
            ticket_id=ticket_id,
            ai_response=answer,
            category=self.category,
            problem=first_question,
            photo=photo,
            analysis=analysis,
            created_at=datetime.now(timezone.utc),
        )
        self.last_answer = answer
        self.state = ConversationState.ESCALATED
        logger.info("Conversation escalated to ticket %s", ticket_id)
        self.notifications.push(ESCALATION_SUCCESS_MESSAGE, NotificationKind.SUCCESS)
        return self.escalated
