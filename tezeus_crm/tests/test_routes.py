from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tezeus_crm.routes.deps import get_container
from tezeus_crm.server import app
from tezeus_crm.utils.auth_helpers import create_token


@pytest.fixture
def client(container, fake_db):
    fake_db.seed("contacts", {"id": "c1", "name": "Maria", "phone": "5511999990000"})
    fake_db.seed("pipelines", {"id": "p1", "workspace_id": "w1", "name": "Vendas", "is_active": True})
    fake_db.seed(
        "pipeline_columns",
        {"id": "col-1", "pipeline_id": "p1", "name": "Novo", "order_position": 0},
        {"id": "col-2", "pipeline_id": "p1", "name": "Proposta", "order_position": 1},
    )
    fake_db.seed("conversations", {"id": "conv1", "workspace_id": "w1", "contact_id": "c1", "queue_id": None, "assigned_user_id": None})

    app.dependency_overrides[get_container] = lambda: container
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_container, None)


@pytest.fixture
def headers():
    return {"Authorization": f"Bearer {create_token('U-admin', 'admin', workspace_id='w1')}"}


def test_health():
    response = TestClient(app).get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_requires_token(client):
    response = client.post("/api/pipeline-cards/resolve", json={"contact_id": "c1"})

    assert response.status_code == 401


def test_resolve_creates_then_updates(client, headers):
    first = client.post("/api/pipeline-cards/resolve", json={"contact_id": "c1", "conversation_id": "conv1"}, headers=headers)
    second = client.post("/api/pipeline-cards/resolve", json={"contact_id": "c1", "conversation_id": "conv1"}, headers=headers)

    assert first.status_code == 200
    assert first.json()["action"] == "created"
    assert first.json()["card"]["pipeline_id"] == "p1"
    assert second.json()["action"] == "updated"
    assert second.json()["card"]["id"] == first.json()["card"]["id"]


def test_resolve_without_workspace_or_pipeline(client):
    token = create_token("U-admin", "admin")

    response = client.post(
        "/api/pipeline-cards/resolve",
        json={"contact_id": "c1"},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == 400


def test_resolve_unknown_contact_is_404(client, headers):
    response = client.post("/api/pipeline-cards/resolve", json={"contact_id": "ghost"}, headers=headers)

    assert response.status_code == 404


def test_close_twice_is_conflict(client, headers):
    card = client.post("/api/pipeline-cards/resolve", json={"contact_id": "c1"}, headers=headers).json()["card"]

    ok = client.patch(f"/api/pipeline-cards/{card['id']}/status", json={"status": "ganho"}, headers=headers)
    again = client.patch(f"/api/pipeline-cards/{card['id']}/status", json={"status": "perdido"}, headers=headers)

    assert ok.status_code == 200
    assert again.status_code == 409


def test_move_card(client, headers):
    card = client.post("/api/pipeline-cards/resolve", json={"contact_id": "c1"}, headers=headers).json()["card"]

    response = client.patch(f"/api/pipeline-cards/{card['id']}/column", json={"column_id": "col-2"}, headers=headers)

    assert response.status_code == 200
    assert response.json()["column_id"] == "col-2"


def test_assignment_patch_stamps_caller(client, headers, fake_db):
    response = client.patch("/api/conversations/conv1/assignment", json={"assigned_user_id": "U7"}, headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["conversation"]["assignedUserId"] == "U7"
    history = fake_db.rows("conversation_assignments", conversation_id="conv1")
    assert history[0]["changed_by"] == "U-admin"

    listed = client.get("/api/conversations/conv1/assignments", headers=headers).json()
    assert [i["action"] for i in listed["items"]] == ["assign"]


def test_assignment_patch_omitted_fields_untouched(client, headers, fake_db):
    fake_db.seed("queues", {"id": "Q1", "name": "Suporte", "ai_agent_id": None})
    client.patch("/api/conversations/conv1/assignment", json={"queue_id": "Q1"}, headers=headers)

    client.patch("/api/conversations/conv1/assignment", json={"assigned_user_id": "U7"}, headers=headers)

    conversation = fake_db.rows("conversations", id="conv1")[0]
    assert conversation["queue_id"] == "Q1"
    assert conversation["assigned_user_id"] == "U7"


def test_tags_endpoints(client, headers, fake_db):
    fake_db.seed("tags", {"id": "t1", "workspace_id": "w1", "name": "VIP", "color": "#f00"})

    added = client.post("/api/conversations/conv1/tags/t1", headers=headers)
    listed = client.get("/api/tags", headers=headers)

    assert added.json()["contactTagged"] is True
    assert [t["name"] for t in listed.json()] == ["VIP"]


def test_workspace_from_header(client):
    token = create_token("U-admin", "admin")

    response = client.get("/api/tags", headers={"Authorization": f"Bearer {token}", "x-workspace-id": "w1"})

    assert response.status_code == 200


def test_card_history_lists_moves(client, headers, fake_db):
    fake_db.seed("system_users", {"id": "U-admin", "name": "Gestora", "profile": "admin", "status": "active"})
    card = client.post("/api/pipeline-cards/resolve", json={"contact_id": "c1"}, headers=headers).json()["card"]
    client.patch(f"/api/pipeline-cards/{card['id']}/column", json={"column_id": "col-2"}, headers=headers)

    response = client.get(f"/api/pipeline-cards/{card['id']}/history", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    moved = [i for i in body["items"] if i["action"] == "column_changed"]
    assert moved[0]["description"] == "Negócio movido: Novo → Proposta"
    assert moved[0]["user_name"] == "Gestora"


def test_card_history_unknown_card_is_404(client, headers):
    response = client.get("/api/pipeline-cards/ghost/history", headers=headers)

    assert response.status_code == 404


def test_move_into_pipeline_with_open_card_is_conflict(client, headers, fake_db):
    fake_db.seed("pipelines", {"id": "p2", "workspace_id": "w1", "name": "Pós-venda", "is_active": True})
    fake_db.seed("pipeline_columns", {"id": "col-p2", "pipeline_id": "p2", "name": "Entrada", "order_position": 0})
    fake_db.seed("pipeline_cards", {"id": "k-p2", "pipeline_id": "p2", "column_id": "col-p2", "contact_id": "c1", "status": "aberto"})
    card = client.post("/api/pipeline-cards/resolve", json={"contact_id": "c1", "pipeline_id": "p1"}, headers=headers).json()["card"]

    response = client.patch(
        f"/api/pipeline-cards/{card['id']}/column",
        json={"column_id": "col-p2", "pipeline_id": "p2"},
        headers=headers,
    )

    assert response.status_code == 409
    assert fake_db.rows("pipeline_cards", id=card["id"])[0]["pipeline_id"] == "p1"
