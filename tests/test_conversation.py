import asyncio

import pytest

from resolvehub_client.conversation import (
    ESCALATION_SUCCESS_MESSAGE,
    NOTHING_TO_ESCALATE_MESSAGE,
    SERVER_UNAVAILABLE_MESSAGE,
    ConversationEngine,
    ConversationState,
    build_escalation_summary,
)
from resolvehub_client.errors import BackendError, TransportError
from resolvehub_client.schemas import AnalysisParsed, ConversationTurn, Role, TicketCategory

PHONE = "70111111"


class _FakeAssistantClient:
    """Records requests; ``gate`` holds calls open until set."""

    def __init__(self):
        self.healthy = True
        self.queries = []
        self.escalations = []
        self.query_payloads = [{"llm_answer": "Réponse de l'assistant."}]
        self.escalation_payload = {"ticket_id": 7}
        self.error = None
        self.gate = None

    async def health(self):
        return self.healthy

    async def _wait(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error

    async def assistant_query(self, request):
        self.queries.append(request)
        await self._wait()
        return self.query_payloads.pop(0) if len(self.query_payloads) > 1 else self.query_payloads[0]

    async def escalate(self, request):
        self.escalations.append(request)
        await self._wait()
        return self.escalation_payload


@pytest.fixture
def fake_client():
    return _FakeAssistantClient()


@pytest.fixture
def engine(fake_client, notifications):
    conversation = ConversationEngine(fake_client, notifications)
    conversation.reset(TicketCategory.AGRICULTURE)
    return conversation


def test_summary_numbers_user_turns_only():
    turns = [
        ConversationTurn(role=Role.USER, content="taches jaunes"),
        ConversationTurn(role=Role.ASSISTANT, content="Retirez les feuilles."),
        ConversationTurn(role=Role.USER, content="et si ça continue ?"),
    ]

    assert build_escalation_summary(turns) == "Question 1 : taches jaunes\n\nQuestion 2 : et si ça continue ?"


async def test_submit_moves_to_conversing(engine, fake_client):
    reply = await engine.submit("taches jaunes sur les feuilles", PHONE)

    assert reply.text == "Réponse de l'assistant."
    assert engine.state is ConversationState.CONVERSING
    assert [turn.role for turn in engine.turns] == [Role.USER, Role.ASSISTANT]
    assert fake_client.queries[0].category == "agriculture"
    assert engine.ticket_id is None


async def test_submit_rejects_empty_text_without_network(engine, fake_client, notifications):
    assert await engine.submit("   ", PHONE) is None

    assert fake_client.queries == []
    assert engine.state is ConversationState.IDLE
    assert notifications.items[-1].kind.value == "warning"


async def test_submit_aborts_when_backend_is_unhealthy(engine, fake_client, notifications):
    fake_client.healthy = False

    assert await engine.submit("question", PHONE) is None

    assert fake_client.queries == []
    assert engine.state is ConversationState.IDLE
    assert engine.turns == ()
    assert notifications.items[-1].message == SERVER_UNAVAILABLE_MESSAGE


async def test_failed_first_query_returns_to_idle(engine, fake_client):
    fake_client.error = TransportError("unreachable")

    assert await engine.submit("question", PHONE) is None

    assert engine.state is ConversationState.IDLE
    assert engine.turns == ()


async def test_followup_keeps_previous_analysis_when_new_one_is_absent(engine, fake_client):
    fake_client.query_payloads = [
        {"llm_answer": "Premier avis.", "photo_analysis": {"disease_detected": "Mildiou"}},
        {"llm_answer": "Deuxième avis."},
    ]
    await engine.submit("photo de ma tomate", PHONE, photo="data:image/png;base64,AAAA")

    reply = await engine.ask_followup("que faire ?", PHONE)

    assert reply.text == "Deuxième avis."
    assert isinstance(engine.analysis, AnalysisParsed)
    assert engine.analysis.record.disease_detected == "Mildiou"
    assert fake_client.queries[1].photo_base64 is None


async def test_failed_followup_repeating_a_question_keeps_turn_order(engine, fake_client, notifications):
    await engine.submit("mes feuilles jaunissent", PHONE)
    fake_client.error = TransportError("unreachable")

    assert await engine.ask_followup("mes feuilles jaunissent", PHONE) is None

    assert [turn.role for turn in engine.turns] == [Role.USER, Role.ASSISTANT]
    assert engine.turns[0].content == "mes feuilles jaunissent"
    assert engine.state is ConversationState.CONVERSING
    assert notifications.items[-1].kind.value == "error"
    assert build_escalation_summary(engine.turns) == "Question 1 : mes feuilles jaunissent"


async def test_followup_only_valid_while_conversing(engine, fake_client):
    assert await engine.ask_followup("encore ?", PHONE) is None
    assert fake_client.queries == []


async def test_escalate_twice_makes_one_network_call(engine, fake_client, notifications):
    await engine.submit("taches jaunes", PHONE, photo="data:image/png;base64,AAAA")
    await engine.ask_followup("et les tiges ?", PHONE)
    fake_client.gate = asyncio.Event()

    first = asyncio.create_task(engine.escalate(PHONE))
    await asyncio.sleep(0)
    second = await engine.escalate(PHONE)
    fake_client.gate.set()
    escalated = await first

    assert second is None
    assert len(fake_client.escalations) == 1
    request = fake_client.escalations[0]
    assert request.content == "Question 1 : taches jaunes\n\nQuestion 2 : et les tiges ?"
    assert request.photo_base64 == "data:image/png;base64,AAAA"
    assert escalated.ticket_id == 7
    assert escalated.ai_response == "Réponse de l'assistant."
    assert escalated.problem == "taches jaunes"
    assert engine.state is ConversationState.ESCALATED
    assert notifications.items[-1].message == ESCALATION_SUCCESS_MESSAGE


async def test_escalate_requires_a_conversation(engine, fake_client, notifications):
    assert await engine.escalate(PHONE) is None

    assert fake_client.escalations == []
    assert notifications.items[-1].message == NOTHING_TO_ESCALATE_MESSAGE


async def test_failed_escalation_stays_conversing_and_surfaces_detail(engine, fake_client, notifications):
    await engine.submit("question", PHONE)
    fake_client.error = BackendError(500, "Base indisponible")

    assert await engine.escalate(PHONE) is None

    assert engine.state is ConversationState.CONVERSING
    assert engine.ticket_id is None
    assert notifications.items[-1].message == "Base indisponible"
    assert len(fake_client.escalations) == 1


async def test_answer_arriving_after_reset_is_discarded(engine, fake_client):
    fake_client.gate = asyncio.Event()
    pending = asyncio.create_task(engine.submit("question", PHONE))
    await asyncio.sleep(0)

    engine.reset(TicketCategory.ELEVAGE)
    fake_client.gate.set()

    assert await pending is None
    assert engine.state is ConversationState.IDLE
    assert engine.turns == ()
    assert engine.category is TicketCategory.ELEVAGE
