import base64

import pytest

from resolvehub_client.conversation import ConversationState
from resolvehub_client.errors import InputValidationError
from resolvehub_client.field import (
    ASSIGNED_CANNED_MESSAGE,
    PHOTO_NOT_IMAGE_MESSAGE,
    PHOTO_TOO_LARGE_MESSAGE,
    FieldAssistant,
    load_photo,
)
from resolvehub_client.schemas import AnalysisParsed, SenderType, Ticket, TicketStatus, Urgency
from resolvehub_client.storage import MemoryStorage

PHONE = "70111111"


@pytest.fixture
def assistant(api, notifications, storage):
    field_assistant = FieldAssistant(api, notifications, storage, max_photo_bytes=64)
    field_assistant.set_phone(PHONE)
    field_assistant.choose_category("agriculture")
    return field_assistant


async def test_submit_renders_knowledge_answer_and_persists_phone(assistant, storage, backend_state):
    reply = await assistant.submit("taches jaunes sur les feuilles")

    assert reply.text.startswith("1) Ce que je comprends")
    assert reply.text.endswith("(Source : fiche-042).")
    assert reply.media[0]["type"] == "image"
    assert storage.get("phone_number") == PHONE
    assert assistant.conversation.state is ConversationState.CONVERSING
    assert len(backend_state.tickets) == 1


async def test_escalation_creates_ticket_and_reloads_history(assistant, backend_state):
    await assistant.submit("taches jaunes sur les feuilles")
    await assistant.ask("et sur les tomates ?")

    escalated = await assistant.escalate()

    assert escalated.ticket_id == 2
    created = backend_state.tickets[2]
    assert created.last_message == (
        "Question 1 : taches jaunes sur les feuilles\n\nQuestion 2 : et sur les tomates ?"
    )
    assert created.user_phone == PHONE
    assert [ticket.id for ticket in assistant.history] == [2]
    assert assistant.conversation.state is ConversationState.ESCALATED


async def test_sos_escalation_is_high_urgency(assistant, backend_state):
    assistant.choose_category("health")
    await assistant.submit("morsure de serpent")

    escalated = await assistant.escalate()

    assert backend_state.tickets[escalated.ticket_id].urgency is Urgency.HIGH
    assert backend_state.tickets[escalated.ticket_id].category == "sos_accident"


async def test_submit_requires_phone(api, notifications, storage, backend_state):
    assistant = FieldAssistant(api, notifications, storage)
    assistant.choose_category("elevage")

    assert await assistant.submit("poules malades") is None

    assert notifications.items[-1].kind.value == "warning"
    assert storage.get("phone_number") is None


async def test_set_phone_rejects_blank(assistant, notifications):
    assert not assistant.set_phone("   ")
    assert assistant.phone == PHONE
    assert notifications.items[-1].kind.value == "warning"


async def test_unknown_category_is_rejected(assistant, notifications):
    assert not assistant.choose_category("astrologie")
    assert notifications.items[-1].kind.value == "warning"


async def test_photo_is_sent_with_first_query_only(assistant, backend_state, tmp_path):
    photo = tmp_path / "feuille.png"
    photo.write_bytes(b"\x89PNG fake")
    assert assistant.attach_photo(photo)

    reply = await assistant.submit("taches jaunes sur les feuilles")

    assert assistant.photo is None
    assert assistant.conversation.photo.startswith("data:image/png;base64,")
    assert isinstance(reply.analysis, AnalysisParsed)
    escalated = await assistant.escalate()
    assert backend_state.tickets[escalated.ticket_id].photo_url == assistant.conversation.photo


async def test_oversized_photo_is_refused(assistant, notifications, tmp_path):
    photo = tmp_path / "grande.jpg"
    photo.write_bytes(b"x" * 65)

    assert not assistant.attach_photo(photo)

    assert assistant.photo is None
    assert notifications.items[-1].message == PHOTO_TOO_LARGE_MESSAGE


def test_load_photo_builds_data_url(tmp_path):
    photo = tmp_path / "leaf.jpg"
    photo.write_bytes(b"jpeg-bytes")

    assert load_photo(photo) == "data:image/jpeg;base64," + base64.b64encode(b"jpeg-bytes").decode()


def test_load_photo_rejects_non_images(tmp_path):
    document = tmp_path / "notes.txt"
    document.write_text("bonjour")

    with pytest.raises(InputValidationError, match=PHOTO_NOT_IMAGE_MESSAGE):
        load_photo(document)


async def test_history_lists_user_tickets(api, notifications, storage):
    assistant = FieldAssistant(api, notifications, storage)
    assistant.set_phone("70000000")

    assert await assistant.load_history()

    assert [ticket.status for ticket in assistant.history] == [TicketStatus.ASSIGNED]


async def test_ticket_detail_from_backend(api, notifications, storage):
    assistant = FieldAssistant(api, notifications, storage)
    assistant.set_phone("70000000")

    detail = await assistant.ticket_detail(1)

    assert not detail.synthesized
    assert detail.user.name == "Awa"
    assert [message.sender_type for message in detail.messages] == [SenderType.USER, SenderType.EXPERT]


async def test_ticket_detail_falls_back_to_history_entry(assistant):
    assistant.store.replace_user_history(
        [Ticket(id=99, status=TicketStatus.ASSIGNED, last_message="Question 1 : maïs troué")]
    )

    detail = await assistant.ticket_detail(99)

    assert detail.synthesized
    assert detail.messages[0].content == "Résumé automatique de la demande :\n\nQuestion 1 : maïs troué"
    assert detail.messages[1].content == ASSIGNED_CANNED_MESSAGE


async def test_unknown_ticket_detail_notifies(assistant, notifications):
    assert await assistant.ticket_detail(99) is None
    assert notifications.items[-1].kind.value == "error"


async def test_emergency_numbers_are_ordered(assistant):
    numbers = await assistant.load_emergency_numbers()

    assert [number.number for number in numbers] == ["18", "17", "112"]


async def test_resume_loads_history_for_persisted_phone(api, notifications):
    assistant = FieldAssistant(api, notifications, MemoryStorage({"phone_number": "70000000"}))

    await assistant.resume()

    assert assistant.phone == "70000000"
    assert [ticket.id for ticket in assistant.history] == [1]
