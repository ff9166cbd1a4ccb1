"""Expert desk: wires session, polling, ticket store and lifecycle together."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

from resolvehub_client.api.client import BackendClient
from resolvehub_client.errors import BackendError, TransportError, UnauthorizedError
from resolvehub_client.lifecycle import TicketLifecycleController
from resolvehub_client.notifications import NotificationQueue
from resolvehub_client.scheduler import AutoRefreshScheduler
from resolvehub_client.schemas import NotificationKind, Stats, Ticket, TicketDetail, TicketFilter
from resolvehub_client.session import SessionManager
from resolvehub_client.storage import StateStorage
from resolvehub_client.store import TicketStore
from resolvehub_client.utils import get_logger

logger = get_logger(__name__)

TICKETS_UNREACHABLE_MESSAGE = "Impossible de se connecter au serveur"
DETAIL_FAILED_MESSAGE = "Erreur chargement détail du ticket"
CONNECTION_ERROR_MESSAGE = "Erreur de connexion au serveur"
BACKEND_DOWN_MESSAGE = "Backend non accessible. Vérifiez que le serveur est en cours d'exécution."
BACKEND_UNREACHABLE_MESSAGE = (
    "Impossible de se connecter au backend. "
    "Vérifiez que le serveur est en cours d'exécution sur {url}"
)
INVALID_FILTER_MESSAGE = "Valeur de filtre invalide : {value}"


class DeskView(str, Enum):
    LOGIN = "login"
    DASHBOARD = "dashboard"
    TICKET_DETAIL = "ticket_detail"


class ExpertDesk:
    """State container for the expert side.

    Every fetch remembers the session generation it was issued under and the
    ticket it targets; an answer that lands after a logout, or after the
    expert opened another ticket, is dropped instead of applied.
    """

    def __init__(
        self,
        client: BackendClient,
        notifications: NotificationQueue,
        storage: StateStorage,
        *,
        refresh_interval: float = 30.0,
        refetch_delay: float = 0.5,
    ) -> None:
        self.client = client
        self.notifications = notifications
        self.refresh_interval = refresh_interval
        self.session = SessionManager(client, notifications, storage)
        self.store = TicketStore()
        self.scheduler = AutoRefreshScheduler(guard=lambda: self.session.is_authenticated)
        self.lifecycle = TicketLifecycleController(
            client,
            notifications,
            self.store,
            reload_detail=self.load_detail,
            reload_overview=self.load_overview,
            refetch_delay=refetch_delay,
        )
        self.view = DeskView.LOGIN
        self.selected_id: Optional[int] = None
        self.session.add_teardown(self._teardown)

    @property
    def tickets(self) -> list[Ticket]:
        return self.store.filtered

    @property
    def stats(self) -> Stats:
        return self.store.stats

    @property
    def detail(self) -> Optional[TicketDetail]:
        return self.store.detail

    def _teardown(self) -> None:
        self.scheduler.stop()
        self.lifecycle.cancel_pending()
        self.store.clear()
        self.selected_id = None
        self.view = DeskView.LOGIN

    async def resume(self) -> bool:
        """Pick up a persisted session and go straight to the dashboard."""
        if self.session.restore() is None:
            return False
        self.view = DeskView.DASHBOARD
        await self.load_overview()
        self.start_auto_refresh()
        await self.check_backend()
        return self.session.is_authenticated

    async def check_backend(self) -> bool:
        try:
            healthy = await self.client.health()
        except TransportError:
            self.notifications.push(
                BACKEND_UNREACHABLE_MESSAGE.format(url=self.client.base_url), NotificationKind.ERROR
            )
            return False
        if not healthy:
            self.notifications.push(BACKEND_DOWN_MESSAGE, NotificationKind.ERROR)
        return healthy

    async def login(self, email: str, password: str) -> bool:
        if await self.session.login(email, password) is None:
            return False
        self.view = DeskView.DASHBOARD
        await self.load_overview()
        self.start_auto_refresh()
        return self.session.is_authenticated

    def logout(self) -> None:
        self.session.logout()

    def start_auto_refresh(self) -> None:
        self.scheduler.start(self._tick, self.refresh_interval)

    async def _tick(self) -> None:
        # Decide what to fetch from the view as it is now, not when polling started.
        if self.view == DeskView.DASHBOARD:
            await self.load_overview()
        elif self.view == DeskView.TICKET_DETAIL and self.selected_id is not None:
            await self.load_detail(self.selected_id, only_if_selected=True)

    async def load_overview(self) -> None:
        await asyncio.gather(self.load_tickets(), self.load_stats())

    async def load_tickets(self) -> bool:
        generation = self.session.generation
        seq = self.store.begin_fetch()
        try:
            tickets = await self.client.list_tickets()
        except UnauthorizedError:
            return False
        except TransportError:
            self.notifications.push(TICKETS_UNREACHABLE_MESSAGE, NotificationKind.ERROR)
            return False
        except BackendError:
            return False

        if generation != self.session.generation:
            logger.debug("Dropping ticket list fetched for an ended session")
            return False
        return self.store.replace_all(tickets, seq)

    async def load_stats(self) -> bool:
        generation = self.session.generation
        try:
            stats = await self.client.stats()
        except (UnauthorizedError, TransportError, BackendError) as exc:
            logger.debug("Stats not refreshed: %s", exc)
            return False
        if generation != self.session.generation:
            return False
        self.store.replace_stats(stats)
        return True

    async def load_detail(self, ticket_id: int, *, only_if_selected: bool = False) -> bool:
        if only_if_selected and self.selected_id != ticket_id:
            return False
        generation = self.session.generation
        try:
            detail = await self.client.get_ticket(ticket_id)
        except UnauthorizedError:
            return False
        except BackendError:
            self.notifications.push(DETAIL_FAILED_MESSAGE, NotificationKind.ERROR)
            return False
        except TransportError:
            self.notifications.push(CONNECTION_ERROR_MESSAGE, NotificationKind.ERROR)
            return False

        if generation != self.session.generation or self.selected_id != ticket_id:
            logger.debug("Dropping detail of ticket %s, no longer selected", ticket_id)
            return False
        self.store.replace_detail(detail)
        self.view = DeskView.TICKET_DETAIL
        return True

    async def open_ticket(self, ticket_id: int) -> bool:
        previous = self.selected_id
        self.selected_id = ticket_id
        if await self.load_detail(ticket_id):
            self.lifecycle.draft = ""
            return True
        if self.selected_id == ticket_id and self.view != DeskView.LOGIN:
            self.selected_id = previous
        return False

    async def back_to_dashboard(self) -> None:
        self.selected_id = None
        self.store.replace_detail(None)
        self.view = DeskView.DASHBOARD
        await self.load_overview()

    async def reply(self, text: Optional[str] = None) -> bool:
        if self.selected_id is None:
            return False
        return await self.lifecycle.reply(self.selected_id, text)

    async def resolve(self, ticket_id: Optional[int] = None) -> bool:
        target = ticket_id if ticket_id is not None else self.selected_id
        if target is None:
            return False
        return await self.lifecycle.resolve(target)

    def update_filter(self, **changes: str) -> Optional[list[Ticket]]:
        """Change any of ``status``, ``category``, ``urgency`` or ``query``.

        Enum fields take their wire value or ``"all"``.
        """
        current = self.store.filter
        values = {
            "status": current.status.value if current.status else "all",
            "category": current.category.value if current.category else "all",
            "urgency": current.urgency.value if current.urgency else "all",
            "query": current.query,
        }
        values.update(changes)
        try:
            ticket_filter = TicketFilter.from_values(**values)
        except ValueError:
            bad = next(iter(changes.values()), "")
            self.notifications.push(INVALID_FILTER_MESSAGE.format(value=bad), NotificationKind.WARNING)
            return None
        return self.store.set_filter(ticket_filter)

    def shutdown(self) -> None:
        self.scheduler.stop()
        self.lifecycle.cancel_pending()
        self.notifications.clear()
