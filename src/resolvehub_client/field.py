"""Field-user side: phone identity, problem submission, history and useful numbers."""

from __future__ import annotations

import base64
import mimetypes
from pathlib import Path
from typing import Optional

from resolvehub_client.api.client import BackendClient
from resolvehub_client.conversation import ConversationEngine
from resolvehub_client.errors import BackendError, InputValidationError, TransportError
from resolvehub_client.notifications import NotificationQueue
from resolvehub_client.schemas import (
    AssistantReply,
    EmergencyNumber,
    EscalatedTicket,
    Message,
    NotificationKind,
    SenderType,
    Ticket,
    TicketCategory,
    TicketDetail,
    TicketStatus,
    TicketUser,
)
from resolvehub_client.storage import StateStorage
from resolvehub_client.store import TicketStore
from resolvehub_client.utils import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_PHOTO_BYTES = 5 * 1024 * 1024

MISSING_PHONE_MESSAGE = "Veuillez entrer votre numéro"
UNKNOWN_CATEGORY_MESSAGE = "Catégorie inconnue : {value}"
PHOTO_TOO_LARGE_MESSAGE = "La photo est trop grande. Maximum 5MB."
PHOTO_NOT_IMAGE_MESSAGE = "Le fichier choisi n'est pas une image."
PHOTO_UNREADABLE_MESSAGE = "Impossible de lire la photo."
HISTORY_OFFLINE_MESSAGE = "Vous êtes hors ligne. Impossible de charger l'historique."
DETAIL_FAILED_MESSAGE = "Erreur de chargement des détails"
NUMBERS_FAILED_MESSAGE = "Impossible de charger les numéros utiles. Réessayez plus tard."

SUMMARY_PREFIX = "Résumé automatique de la demande :\n\n"
NO_DETAIL_TEXT = "Aucun détail disponible."
RESOLVED_CANNED_MESSAGE = (
    "Votre problème a été résolu par notre expert. "
    "Si vous avez d'autres questions, n'hésitez pas à nous contacter."
)
ASSIGNED_CANNED_MESSAGE = (
    "Un expert a pris en charge votre demande. Vous recevrez une réponse détaillée sous peu."
)


def load_photo(path: Path | str, max_bytes: int = DEFAULT_MAX_PHOTO_BYTES) -> str:
    """Read an image file and return it as a ``data:`` URL.

    Raises:
        InputValidationError: if the file is missing, not an image, or too large.
    """
    photo_path = Path(path).expanduser()
    mime, _ = mimetypes.guess_type(photo_path.name)
    if not mime or not mime.startswith("image/"):
        raise InputValidationError(PHOTO_NOT_IMAGE_MESSAGE)
    try:
        size = photo_path.stat().st_size
        if size > max_bytes:
            raise InputValidationError(PHOTO_TOO_LARGE_MESSAGE)
        data = photo_path.read_bytes()
    except OSError as exc:
        raise InputValidationError(PHOTO_UNREADABLE_MESSAGE) from exc
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def synthesize_detail(ticket: Ticket, phone: str) -> TicketDetail:
    """Best-effort detail built from a history entry when the full one is unavailable."""
    messages = [
        Message(
            sender_type=SenderType.SYSTEM,
            content=SUMMARY_PREFIX + (ticket.last_message or NO_DETAIL_TEXT),
            sent_at=ticket.created_at,
        )
    ]
    canned = {
        TicketStatus.RESOLVED: RESOLVED_CANNED_MESSAGE,
        TicketStatus.ASSIGNED: ASSIGNED_CANNED_MESSAGE,
    }.get(ticket.status)
    if canned:
        messages.append(
            Message(sender_type=SenderType.EXPERT, content=canned, sent_at=ticket.created_at)
        )
    return TicketDetail(
        ticket=ticket,
        user=TicketUser(phone=phone, name="Utilisateur"),
        messages=tuple(messages),
        synthesized=True,
    )


class FieldAssistant:
    """Everything the field app keeps between screens.

    The phone number is the user's only identity: it is required for every
    query, persisted after the first successful submission and used to list
    the user's past tickets.
    """

    def __init__(
        self,
        client: BackendClient,
        notifications: NotificationQueue,
        storage: StateStorage,
        *,
        channel: str = "app",
        max_photo_bytes: int = DEFAULT_MAX_PHOTO_BYTES,
        probe_health: bool = True,
    ) -> None:
        self.client = client
        self.notifications = notifications
        self.storage = storage
        self.max_photo_bytes = max_photo_bytes
        self.conversation = ConversationEngine(
            client, notifications, channel=channel, probe_health=probe_health
        )
        self.store = TicketStore()
        self.phone = storage.get("phone_number") or ""
        self.photo: Optional[str] = None
        self.emergency_numbers: list[EmergencyNumber] = []

    @property
    def history(self) -> tuple[Ticket, ...]:
        return self.store.user_history

    async def resume(self) -> None:
        if self.phone:
            await self.load_history()

    def set_phone(self, phone: str) -> bool:
        phone = phone.strip()
        if not phone:
            self.notifications.push(MISSING_PHONE_MESSAGE, NotificationKind.WARNING)
            return False
        if phone != self.phone:
            self.phone = phone
            self.store.replace_user_history(())
        return True

    def choose_category(self, category: TicketCategory | str) -> bool:
        chosen = TicketCategory.coerce(category)
        if chosen is None:
            self.notifications.push(
                UNKNOWN_CATEGORY_MESSAGE.format(value=category), NotificationKind.WARNING
            )
            return False
        self.photo = None
        self.conversation.reset(chosen)
        return True

    def new_problem(self) -> None:
        self.photo = None
        self.conversation.reset(self.conversation.category)

    def attach_photo(self, path: Path | str) -> bool:
        try:
            self.photo = load_photo(path, self.max_photo_bytes)
        except InputValidationError as exc:
            self.notifications.push(str(exc), NotificationKind.ERROR)
            return False
        logger.debug("Photo attached (%s bytes encoded)", len(self.photo))
        return True

    def remove_photo(self) -> None:
        self.photo = None

    async def submit(self, text: str) -> Optional[AssistantReply]:
        reply = await self.conversation.submit(text, self.phone, self.photo)
        if reply is None:
            return None
        self.photo = None
        self.storage.update(phone_number=self.phone)
        await self.load_history()
        return reply

    async def ask(self, text: str) -> Optional[AssistantReply]:
        return await self.conversation.ask_followup(text, self.phone)

    async def escalate(self) -> Optional[EscalatedTicket]:
        escalated = await self.conversation.escalate(self.phone)
        if escalated is not None:
            await self.load_history()
        return escalated

    async def load_history(self) -> bool:
        phone = self.phone
        if not phone:
            return False
        try:
            tickets = await self.client.user_tickets(phone)
        except TransportError:
            self.notifications.push(HISTORY_OFFLINE_MESSAGE, NotificationKind.WARNING)
            return False
        except BackendError as exc:
            logger.warning("History for %s not loaded: %s", phone, exc)
            return False
        if phone != self.phone:
            logger.debug("Dropping history fetched for a previous phone number")
            return False
        self.store.replace_user_history(tickets)
        return True

    async def ticket_detail(self, ticket_id: int) -> Optional[TicketDetail]:
        try:
            detail = await self.client.get_ticket(ticket_id, auth=False)
        except BackendError as exc:
            ticket = self.store.get(ticket_id)
            if ticket is None:
                logger.info("Ticket %s unavailable and not in history: %s", ticket_id, exc)
                self.notifications.push(DETAIL_FAILED_MESSAGE, NotificationKind.ERROR)
                return None
            detail = synthesize_detail(ticket, self.phone)
        except TransportError:
            self.notifications.push(DETAIL_FAILED_MESSAGE, NotificationKind.ERROR)
            return None
        self.store.replace_detail(detail)
        return self.store.detail

    async def load_emergency_numbers(self) -> list[EmergencyNumber]:
        try:
            self.emergency_numbers = await self.client.emergency_numbers()
        except (BackendError, TransportError) as exc:
            logger.warning("Emergency numbers not loaded: %s", exc)
            self.notifications.push(NUMBERS_FAILED_MESSAGE, NotificationKind.ERROR)
        return self.emergency_numbers
