from __future__ import annotations

import pytest

from tezeus_crm.errors import NotFoundError


@pytest.fixture
def card(fake_db):
    fake_db.seed(
        "system_users",
        {"id": "U1", "name": "Ana", "profile": "user", "status": "active"},
        {"id": "U2", "name": "Bruno", "profile": "user", "status": "active"},
        {"id": "ADM", "name": "Gestora", "profile": "admin", "status": "active"},
    )
    fake_db.seed("tags", {"id": "t-vip", "workspace_id": "w1", "name": "VIP", "color": "#f00"})
    fake_db.seed(
        "conversations",
        {"id": "conv1", "contact_id": "c1"},
        {"id": "conv2", "contact_id": "c1"},
        {"id": "conv-other", "contact_id": "c9"},
    )
    fake_db.seed(
        "pipeline_cards",
        {"id": "k1", "pipeline_id": "p1", "column_id": "col-2", "contact_id": "c1", "status": "aberto"},
    )
    fake_db.seed(
        "pipeline_card_history",
        {"card_id": "k1", "action": "created", "changed_at": "2026-01-01T09:00:00+00:00", "metadata": {}},
        {
            "card_id": "k1",
            "action": "column_changed",
            "changed_by": "ADM",
            "changed_at": "2026-01-01T12:00:00+00:00",
            "metadata": {"old_column_name": "Novo", "new_column_name": "Proposta"},
        },
        {"card_id": "other", "action": "created", "changed_at": "2026-01-01T13:00:00+00:00", "metadata": {}},
    )
    fake_db.seed(
        "conversation_assignments",
        {
            "conversation_id": "conv1",
            "action": "assign",
            "to_assigned_user_id": "U1",
            "changed_by": "ADM",
            "changed_at": "2026-01-01T10:00:00+00:00",
        },
        {
            "conversation_id": "conv2",
            "action": "transfer",
            "from_assigned_user_id": "U1",
            "to_assigned_user_id": "U2",
            "changed_at": "2026-01-01T11:00:00+00:00",
        },
        {"conversation_id": "conv1", "action": "queue_transfer", "changed_at": "2026-01-01T10:30:00+00:00"},
        {"conversation_id": "conv-other", "action": "assign", "to_assigned_user_id": "U1", "changed_at": "2026-01-02T00:00:00+00:00"},
    )
    fake_db.seed(
        "conversation_agent_history",
        {"conversation_id": "conv1", "agent_name": "Agente da Fila", "action": "activated", "created_at": "2026-01-01T10:31:00+00:00"},
    )
    fake_db.seed(
        "contact_tags",
        {"contact_id": "c1", "tag_id": "t-vip", "created_by": "U2", "created_at": "2026-01-01T11:30:00+00:00"},
    )


@pytest.mark.anyio
async def test_timeline_merges_sources_newest_first(container, card):
    events = await container.card_history.card_history("k1")

    assert [e["description"] for e in events] == [
        "Negócio movido: Novo → Proposta",
        'Tag "VIP" foi adicionada ao contato',
        "Conversa transferida de Ana para Bruno",
        "Agente **Agente da Fila** foi ativado para esse Negócio",
        "Conversa transferida de fila",
        "Conversa vinculada ao responsável: Ana",
        "Negócio iniciado por mensagem",
    ]
    assert events[0]["user_name"] == "Gestora"
    assert events[1]["user_name"] == "Bruno"
    assert events[1]["metadata"] == {"tag_name": "VIP", "tag_color": "#f00"}
    assert {e["type"] for e in events} == {"column_transfer", "tag", "user_assigned", "agent_activity", "queue_transfer"}


@pytest.mark.anyio
async def test_unreadable_source_is_skipped(container, fake_db, card):
    fake_db.fail("conversation_agent_history", "select")

    events = await container.card_history.card_history("k1")

    assert "agent_activity" not in {e["type"] for e in events}
    assert len(events) == 6


@pytest.mark.anyio
async def test_history_written_by_card_operations_shows_up(container, fake_db, card):
    fake_db.seed("pipeline_columns", {"id": "col-3", "pipeline_id": "p1", "name": "Fechamento", "order_position": 3})

    await container.cards.move_card("k1", "col-3", changed_by="U1")
    await container.cards.close_card("k1", "ganho", changed_by="U1")

    events = [e for e in await container.card_history.card_history("k1") if e["type"] == "column_transfer"]
    descriptions = [e["description"] for e in events]
    assert "Status alterado para: ganho" in descriptions
    assert "Negócio movido: Desconhecida → Fechamento" in descriptions


@pytest.mark.anyio
async def test_unknown_card(container, card):
    with pytest.raises(NotFoundError):
        await container.card_history.card_history("missing")
