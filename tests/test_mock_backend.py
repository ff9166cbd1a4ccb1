import pytest

from resolvehub_client.mock_backend.app import SEED_EXPERT_EMAIL, SEED_EXPERT_PASSWORD


@pytest.fixture
def auth_headers(client):
    response = client.post(
        "/auth/login", json={"email": SEED_EXPERT_EMAIL, "password": SEED_EXPERT_PASSWORD}
    )
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


def _escalate(client, **overrides):
    payload = {
        "phone_number": "70222222",
        "content": "Question 1 : taches jaunes sur les feuilles",
        "channel": "app",
        "category": "agriculture",
    }
    payload.update(overrides)
    response = client.post("/webhooks/incoming-sms", json=payload)
    assert response.status_code == 200
    return response.json()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_login_rejects_wrong_password(client):
    response = client.post("/auth/login", json={"email": SEED_EXPERT_EMAIL, "password": "nope"})

    assert response.status_code == 401
    assert response.json()["detail"]


def test_login_returns_token_and_expert(client):
    response = client.post(
        "/auth/login", json={"email": SEED_EXPERT_EMAIL, "password": SEED_EXPERT_PASSWORD}
    )

    body = response.json()
    assert body["token"]
    assert body["expert"] == {"id": 1, "name": "Expert Test", "email": SEED_EXPERT_EMAIL}


def test_tickets_require_bearer_token(client):
    assert client.get("/tickets").status_code == 401
    assert client.get("/tickets", headers={"Authorization": "Bearer forged"}).status_code == 401
    assert client.get("/stats").status_code == 401


def test_assistant_query_does_not_create_ticket(client, backend_state):
    response = client.post(
        "/assistant/query",
        json={
            "phone_number": "70222222",
            "content": "taches jaunes sur les feuilles",
            "category": "agriculture",
        },
    )

    body = response.json()
    assert body["rag_items"][0]["title"] == "Mildiou"
    assert body["rag_items"][0]["source"] == "fiche-042"
    assert body["photo_analysis"] is None
    assert len(backend_state.tickets) == 1


def test_assistant_query_without_match_returns_no_items(client):
    body = client.post(
        "/assistant/query", json={"phone_number": "1", "content": "bonjour", "category": "elevage"}
    ).json()

    assert body["rag_items"] is None
    assert body["llm_answer"] is None


def test_escalation_creates_open_ticket(client):
    body = _escalate(client)

    detail = client.get(f"/tickets/{body['ticket_id']}").json()
    assert detail["ticket"]["status"] == "open"
    assert detail["ticket"]["urgency"] == "low"
    assert detail["messages"][0]["sender_type"] == "user"
    assert detail["user"]["phone"] == "70222222"


def test_sos_escalation_gets_high_urgency(client):
    body = _escalate(client, category="health", content="Question 1 : morsure de serpent")

    ticket = client.get(f"/tickets/{body['ticket_id']}").json()["ticket"]
    assert ticket["category"] == "sos_accident"
    assert ticket["urgency"] == "high"


def test_reply_moves_open_ticket_to_assigned(client, auth_headers):
    ticket_id = _escalate(client)["ticket_id"]

    response = client.post(
        f"/tickets/{ticket_id}/reply", json={"message": "Retirez les feuilles."}, headers=auth_headers
    )

    assert response.status_code == 200
    detail = client.get(f"/tickets/{ticket_id}").json()
    assert detail["ticket"]["status"] == "assigned"
    assert detail["messages"][-1] == {
        "sender_type": "expert",
        "content": "Retirez les feuilles.",
        "sent_at": detail["messages"][-1]["sent_at"],
    }


def test_resolve_twice_answers_400_with_detail(client, auth_headers):
    ticket_id = _escalate(client)["ticket_id"]

    first = client.post(f"/tickets/{ticket_id}/resolve", headers=auth_headers)
    second = client.post(f"/tickets/{ticket_id}/resolve", headers=auth_headers)

    assert first.status_code == 200
    assert second.status_code == 400
    assert second.json() == {"detail": "Ce ticket est déjà résolu"}


def test_stats_count_by_status(client, auth_headers):
    resolved = _escalate(client)["ticket_id"]
    _escalate(client, photo_base64="data:image/png;base64,AAAA")
    client.post(f"/tickets/{resolved}/resolve", headers=auth_headers)

    stats = client.get("/stats", headers=auth_headers).json()

    assert stats == {
        "total_tickets": 3,
        "open_tickets": 1,
        "assigned_tickets": 1,
        "resolved_today": 1,
        "tickets_with_photos": 1,
    }


def test_user_tickets_filtered_by_phone(client):
    _escalate(client, phone_number="70999999")

    tickets = client.get("/user-tickets", params={"phone": "70999999"}).json()

    assert [ticket["user_phone"] for ticket in tickets] == ["70999999"]


def test_unknown_ticket_is_404(client):
    response = client.get("/tickets/999")

    assert response.status_code == 404
    assert response.json()["detail"] == "Ticket introuvable"


def test_emergency_numbers_sorted(client):
    numbers = client.get("/emergency-numbers").json()

    assert [number["display_order"] for number in numbers] == [1, 2, 3]
