import asyncio

import pytest

from resolvehub_client.errors import BackendError, TransportError
from resolvehub_client.lifecycle import (
    ALREADY_RESOLVED_MESSAGE,
    CONNECTION_ERROR_MESSAGE,
    EMPTY_REPLY_MESSAGE,
    REPLY_SUCCESS_MESSAGE,
    RESOLVE_FAILED_MESSAGE,
    RESOLVE_SUCCESS_MESSAGE,
    TicketLifecycleController,
)
from resolvehub_client.schemas import Ticket, TicketStatus
from resolvehub_client.store import TicketStore


class _FakeTicketClient:
    def __init__(self):
        self.replies = []
        self.resolves = []
        self.error = None
        self.gate = None

    async def _wait(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error

    async def reply(self, ticket_id, message):
        self.replies.append((ticket_id, message))
        await self._wait()

    async def resolve(self, ticket_id):
        self.resolves.append(ticket_id)
        await self._wait()


class _Reloads:
    def __init__(self):
        self.calls = []

    async def detail(self, ticket_id, **kwargs):
        self.calls.append(("detail", ticket_id, kwargs))

    async def overview(self):
        self.calls.append(("overview",))


@pytest.fixture
def fake_client():
    return _FakeTicketClient()


@pytest.fixture
def reloads():
    return _Reloads()


@pytest.fixture
def controller(fake_client, notifications, reloads):
    store = TicketStore()
    store.replace_all([Ticket(id=1, status=TicketStatus.ASSIGNED), Ticket(id=2, status=TicketStatus.RESOLVED)])
    lifecycle = TicketLifecycleController(
        fake_client,
        notifications,
        store,
        reload_detail=reloads.detail,
        reload_overview=reloads.overview,
        refetch_delay=0.02,
    )
    yield lifecycle
    lifecycle.cancel_pending()


async def test_empty_reply_is_rejected_locally(controller, fake_client, notifications):
    assert not await controller.reply(1, "  ")

    assert fake_client.replies == []
    assert notifications.items[-1].message == EMPTY_REPLY_MESSAGE


async def test_reply_clears_draft_and_reloads(controller, fake_client, notifications, reloads):
    controller.draft = "Traitez au cuivre."

    assert await controller.reply(1)

    assert fake_client.replies == [(1, "Traitez au cuivre.")]
    assert controller.draft == ""
    assert reloads.calls == [("detail", 1, {}), ("overview",)]
    assert REPLY_SUCCESS_MESSAGE in [item.message for item in notifications.items]


async def test_reply_failure_keeps_draft(controller, fake_client, notifications):
    controller.draft = "brouillon"
    fake_client.error = TransportError("down")

    assert not await controller.reply(1)

    assert controller.draft == "brouillon"
    assert notifications.items[-1].message == CONNECTION_ERROR_MESSAGE


async def test_double_resolve_sends_one_request(controller, fake_client):
    fake_client.gate = asyncio.Event()

    first = asyncio.create_task(controller.resolve(1))
    await asyncio.sleep(0)
    assert controller.is_resolving(1)
    second = await controller.resolve(1)
    fake_client.gate.set()

    assert await first
    assert not second
    assert fake_client.resolves == [1]


async def test_resolve_after_success_is_rejected_without_network(controller, fake_client, notifications):
    assert await controller.resolve(1)

    assert not await controller.resolve(1)

    assert fake_client.resolves == [1]
    assert notifications.items[-1].message == ALREADY_RESOLVED_MESSAGE


async def test_resolve_of_resolved_ticket_never_calls_backend(controller, fake_client):
    assert not await controller.resolve(2)

    assert fake_client.resolves == []


async def test_resolve_refetches_after_a_delay(controller, notifications, reloads):
    assert await controller.resolve(1)
    assert reloads.calls == []
    assert notifications.items[-1].message == RESOLVE_SUCCESS_MESSAGE

    await asyncio.sleep(0.05)
    await controller.wait_idle()

    assert reloads.calls == [("detail", 1, {"only_if_selected": True}), ("overview",)]


async def test_cancel_pending_drops_scheduled_refetch(controller, reloads):
    await controller.resolve(1)

    controller.cancel_pending()
    await asyncio.sleep(0.05)

    assert reloads.calls == []


@pytest.mark.parametrize(
    "error, expected",
    [
        (BackendError(400, "Ce ticket est déjà résolu"), "Ce ticket est déjà résolu"),
        (BackendError(500, None), RESOLVE_FAILED_MESSAGE),
        (TransportError("down"), CONNECTION_ERROR_MESSAGE),
    ],
)
async def test_resolve_failure_messages(controller, fake_client, notifications, error, expected):
    fake_client.error = error

    assert not await controller.resolve(1)

    assert notifications.items[-1].message == expected
    assert not controller.is_resolving(1)
    assert not controller.is_resolved(1)
