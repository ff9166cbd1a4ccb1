"""Expert-side ticket mutations: reply and resolve."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from resolvehub_client.api.client import BackendClient
from resolvehub_client.errors import BackendError, TransportError, UnauthorizedError
from resolvehub_client.notifications import NotificationQueue
from resolvehub_client.schemas import NotificationKind, TicketStatus
from resolvehub_client.store import TicketStore
from resolvehub_client.utils import get_logger

logger = get_logger(__name__)

EMPTY_REPLY_MESSAGE = "Veuillez écrire un message"
REPLY_SUCCESS_MESSAGE = "Message envoyé!"
REPLY_FAILED_MESSAGE = "Erreur envoi message"
RESOLVE_SUCCESS_MESSAGE = "Ticket résolu avec succès"
RESOLVE_FAILED_MESSAGE = "Erreur résolution ticket"
ALREADY_RESOLVED_MESSAGE = "Ce ticket est déjà résolu."
CONNECTION_ERROR_MESSAGE = "Erreur de connexion au serveur"

Reload = Callable[..., Awaitable[None]]


class TicketLifecycleController:
    """Requests ticket mutations and re-reads the result; never edits tickets itself.

    ``resolve`` allows one request per ticket id at a time: a second call while
    the first is pending, or any call once the ticket is known resolved, returns
    immediately without touching the network.
    """

    def __init__(
        self,
        client: BackendClient,
        notifications: NotificationQueue,
        store: TicketStore,
        *,
        reload_detail: Reload,
        reload_overview: Reload,
        refetch_delay: float = 0.5,
    ) -> None:
        self.client = client
        self.notifications = notifications
        self.store = store
        self.reload_detail = reload_detail
        self.reload_overview = reload_overview
        self.refetch_delay = refetch_delay
        self.draft = ""
        self._replying: set[int] = set()
        self._resolving: set[int] = set()
        self._confirmed_resolved: set[int] = set()
        self._timers: set[asyncio.TimerHandle] = set()
        self._tasks: set[asyncio.Task] = set()

    def is_resolving(self, ticket_id: int) -> bool:
        return ticket_id in self._resolving

    def is_resolved(self, ticket_id: int) -> bool:
        if ticket_id in self._confirmed_resolved:
            return True
        detail = self.store.detail
        if detail is not None and detail.ticket.id == ticket_id:
            return detail.ticket.status == TicketStatus.RESOLVED
        ticket = self.store.get(ticket_id)
        return ticket is not None and ticket.status == TicketStatus.RESOLVED

    async def reply(self, ticket_id: int, text: Optional[str] = None) -> bool:
        message = self.draft if text is None else text
        if not message.strip():
            self.notifications.push(EMPTY_REPLY_MESSAGE, NotificationKind.WARNING)
            return False
        if ticket_id in self._replying:
            logger.debug("Reply to ticket %s already in flight", ticket_id)
            return False

        self._replying.add(ticket_id)
        try:
            await self.client.reply(ticket_id, message)
        except UnauthorizedError:
            return False
        except BackendError as exc:
            self.notifications.push(exc.user_message(REPLY_FAILED_MESSAGE), NotificationKind.ERROR)
            return False
        except TransportError:
            self.notifications.push(CONNECTION_ERROR_MESSAGE, NotificationKind.ERROR)
            return False
        finally:
            self._replying.discard(ticket_id)

        self.draft = ""
        logger.info("Reply sent on ticket %s", ticket_id)
        await self.reload_detail(ticket_id)
        self.notifications.push(REPLY_SUCCESS_MESSAGE, NotificationKind.SUCCESS)
        await self.reload_overview()
        return True

    async def resolve(self, ticket_id: int) -> bool:
        if self.is_resolved(ticket_id):
            self.notifications.push(ALREADY_RESOLVED_MESSAGE, NotificationKind.INFO)
            return False
        if ticket_id in self._resolving:
            logger.debug("Resolve of ticket %s already in flight", ticket_id)
            return False

        self._resolving.add(ticket_id)
        try:
            await self.client.resolve(ticket_id)
        except UnauthorizedError:
            return False
        except BackendError as exc:
            self.notifications.push(exc.user_message(RESOLVE_FAILED_MESSAGE), NotificationKind.ERROR)
            return False
        except TransportError:
            self.notifications.push(CONNECTION_ERROR_MESSAGE, NotificationKind.ERROR)
            return False
        finally:
            self._resolving.discard(ticket_id)

        self._confirmed_resolved.add(ticket_id)
        logger.info("Ticket %s resolved", ticket_id)
        self.notifications.push(RESOLVE_SUCCESS_MESSAGE, NotificationKind.SUCCESS)
        self._schedule_refetch(ticket_id)
        return True

    def _schedule_refetch(self, ticket_id: int) -> None:
        # The backend needs a moment before the new status shows up in listings.
        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def _fire() -> None:
            self._timers.discard(handle)
            task = loop.create_task(self._refetch(ticket_id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        handle = loop.call_later(self.refetch_delay, _fire)
        self._timers.add(handle)

    async def _refetch(self, ticket_id: int) -> None:
        await self.reload_detail(ticket_id, only_if_selected=True)
        await self.reload_overview()

    async def wait_idle(self) -> None:
        """Wait for refetches that have already been started."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_pending(self) -> None:
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()
        self._replying.clear()
        self._resolving.clear()
        self._confirmed_resolved.clear()
        self.draft = ""
