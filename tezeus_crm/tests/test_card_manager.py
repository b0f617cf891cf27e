from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from tezeus_crm.errors import (
    InvalidContactError,
    InvalidTransitionError,
    NoColumnError,
    NoPipelineError,
    NotFoundError,
)
from tezeus_crm.services.card_manager import card_title_for, contact_identifier


@pytest.fixture
def board(fake_db):
    contact = fake_db.seed("contacts", {"id": "c1", "name": "Maria", "phone": "5511999990000", "email": None})[0]
    fake_db.seed(
        "pipelines",
        {"id": "p-old", "workspace_id": "w1", "name": "Vendas", "is_active": True},
        {"id": "p-new", "workspace_id": "w1", "name": "Pós-venda", "is_active": True},
        {"id": "p-off", "workspace_id": "w1", "name": "Arquivado", "is_active": False},
    )
    fake_db.seed(
        "pipeline_columns",
        {"id": "col-2", "pipeline_id": "p-old", "name": "Negociação", "order_position": 2},
        {"id": "col-1", "pipeline_id": "p-old", "name": "Novo", "order_position": 1},
        {"id": "col-b", "pipeline_id": "p-new", "name": "Entrada", "order_position": 0},
    )
    fake_db.seed(
        "conversations",
        {"id": "conv1", "workspace_id": "w1", "contact_id": "c1", "assigned_user_id": "U1", "queue_id": None},
        {"id": "conv2", "workspace_id": "w1", "contact_id": "c1", "assigned_user_id": None, "queue_id": None},
    )
    return contact


def _open_cards(fake_db, contact_id, pipeline_id):
    return fake_db.rows("pipeline_cards", contact_id=contact_id, pipeline_id=pipeline_id, status="aberto")


@pytest.mark.anyio
async def test_creates_card_in_first_column_of_earliest_active_pipeline(container, fake_db, board):
    result = await container.cards.resolve_or_create_card("c1", conversation_id="conv1", workspace_id="w1")

    assert result.action == "created"
    card = result.card
    assert card["pipeline_id"] == "p-old"
    assert card["column_id"] == "col-1"
    assert card["title"] == "Maria"
    assert card["status"] == "aberto"
    assert card["value"] == 0
    assert card["tags"] == []
    assert card["responsible_user_id"] == "U1"
    assert card["conversation_id"] == "conv1"
    assert card["description"].endswith("Card criado automaticamente")


@pytest.mark.anyio
async def test_second_call_updates_the_open_card(container, fake_db, board):
    first = await container.cards.resolve_or_create_card("c1", conversation_id="conv2", pipeline_id="p-old")
    second = await container.cards.resolve_or_create_card("c1", conversation_id="conv2", pipeline_id="p-old")

    assert first.action == "created"
    assert second.action == "updated"
    assert second.card["id"] == first.card["id"]
    assert len(_open_cards(fake_db, "c1", "p-old")) == 1


@pytest.mark.anyio
async def test_update_appends_note_and_keeps_previous_text(fake_db, board, settings):
    from tezeus_crm.container import CrmContainer

    container = CrmContainer.build(client=fake_db, settings=settings)
    container.cards._clock = lambda: datetime(2026, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
    fake_db.seed(
        "pipeline_cards",
        {
            "id": "card1",
            "pipeline_id": "p-old",
            "column_id": "col-2",
            "contact_id": "c1",
            "status": "aberto",
            "description": "Cliente pediu orçamento",
            "responsible_user_id": "U9",
        },
    )

    result = await container.cards.resolve_or_create_card("c1", conversation_id="conv1", pipeline_id="p-old")

    card = result.card
    assert result.action == "updated"
    assert card["description"] == "Cliente pediu orçamento\n\n[04/03/2026, 05:06:07] Nova interação registrada"
    assert card["responsible_user_id"] == "U1"
    assert card["conversation_id"] == "conv1"
    assert card["column_id"] == "col-2"


@pytest.mark.anyio
async def test_update_keeps_responsible_when_conversation_unassigned(container, fake_db, board):
    fake_db.seed(
        "pipeline_cards",
        {"id": "card1", "pipeline_id": "p-old", "column_id": "col-1", "contact_id": "c1", "status": "aberto", "description": "", "responsible_user_id": "U9"},
    )

    result = await container.cards.resolve_or_create_card("c1", conversation_id="conv2", pipeline_id="p-old")

    assert result.card["responsible_user_id"] == "U9"
    assert result.card["description"].endswith("Card atualizado automaticamente")


@pytest.mark.anyio
async def test_same_contact_gets_one_open_card_per_pipeline(container, fake_db, board):
    a = await container.cards.resolve_or_create_card("c1", pipeline_id="p-old")
    b = await container.cards.resolve_or_create_card("c1", pipeline_id="p-new")

    assert a.action == "created"
    assert b.action == "created"
    assert a.card["id"] != b.card["id"]
    assert len(_open_cards(fake_db, "c1", "p-old")) == 1
    assert len(_open_cards(fake_db, "c1", "p-new")) == 1


@pytest.mark.anyio
async def test_closed_card_does_not_block_new_open_card(container, fake_db, board):
    fake_db.seed(
        "pipeline_cards",
        {"id": "old", "pipeline_id": "p-old", "column_id": "col-1", "contact_id": "c1", "status": "ganho"},
    )

    result = await container.cards.resolve_or_create_card("c1", pipeline_id="p-old")

    assert result.action == "created"
    assert result.card["id"] != "old"


@pytest.mark.anyio
async def test_contact_without_phone_or_email_is_rejected(container, fake_db, board):
    fake_db.seed("contacts", {"id": "c2", "name": "Sem contato", "phone": "  ", "email": ""})

    with pytest.raises(InvalidContactError):
        await container.cards.resolve_or_create_card("c2", workspace_id="w1")

    assert fake_db.rows("pipeline_cards") == []
    assert fake_db.writes("pipeline_cards") == []


@pytest.mark.anyio
async def test_missing_contact_raises_not_found(container, board):
    with pytest.raises(NotFoundError):
        await container.cards.resolve_or_create_card("nope", workspace_id="w1")


@pytest.mark.anyio
async def test_workspace_without_active_pipeline(container, fake_db, board):
    with pytest.raises(NoPipelineError):
        await container.cards.resolve_or_create_card("c1", workspace_id="w-empty")


@pytest.mark.anyio
async def test_pipeline_without_columns(container, fake_db, board):
    fake_db.seed("pipelines", {"id": "p-bare", "workspace_id": "w1", "name": "Vazio", "is_active": True})

    with pytest.raises(NoColumnError):
        await container.cards.resolve_or_create_card("c1", pipeline_id="p-bare")


@pytest.mark.anyio
async def test_insert_conflict_falls_back_to_update(container, fake_db, board):
    def competing_insert(db):
        db.insert_row(
            "pipeline_cards",
            {"id": "winner", "pipeline_id": "p-old", "column_id": "col-1", "contact_id": "c1", "status": "aberto", "description": "x"},
        )

    fake_db.before[("pipeline_cards", "insert")] = competing_insert

    result = await container.cards.resolve_or_create_card("c1", pipeline_id="p-old")

    assert result.action == "updated"
    assert result.card["id"] == "winner"
    assert len(_open_cards(fake_db, "c1", "p-old")) == 1


@pytest.mark.anyio
async def test_concurrent_resolutions_create_a_single_card(container, fake_db, board):
    results = await asyncio.gather(
        *[container.cards.resolve_or_create_card("c1", pipeline_id="p-old") for _ in range(5)]
    )

    assert sorted(r.action for r in results) == ["created", "updated", "updated", "updated", "updated"]
    assert len(_open_cards(fake_db, "c1", "p-old")) == 1


def test_title_and_identifier_fallbacks():
    assert card_title_for({"name": "", "phone": "5511", "email": "a@b.c"}) == "5511"
    assert card_title_for({"email": "a@b.c"}) == "a@b.c"
    assert card_title_for({}) == "Contato sem nome"
    assert contact_identifier({"phone": "5511", "email": "a@b.c"}) == "5511"
    assert contact_identifier({"phone": "", "email": "a@b.c"}) == "a@b.c"
    assert contact_identifier({"phone": None, "email": None}) is None


@pytest.mark.anyio
async def test_move_card_within_pipeline(container, fake_db, board):
    created = await container.cards.resolve_or_create_card("c1", pipeline_id="p-old")

    moved = await container.cards.move_card(created.card["id"], "col-2")

    assert moved["column_id"] == "col-2"


@pytest.mark.anyio
async def test_move_card_to_foreign_column_is_rejected(container, fake_db, board):
    created = await container.cards.resolve_or_create_card("c1", pipeline_id="p-old")

    with pytest.raises(NotFoundError):
        await container.cards.move_card(created.card["id"], "col-b")


@pytest.mark.anyio
async def test_close_card_is_one_way(container, fake_db, board):
    created = await container.cards.resolve_or_create_card("c1", pipeline_id="p-old")
    card_id = created.card["id"]

    closed = await container.cards.close_card(card_id, "perdido")
    assert closed["status"] == "perdido"

    with pytest.raises(InvalidTransitionError):
        await container.cards.close_card(card_id, "ganho")
    with pytest.raises(InvalidTransitionError):
        await container.cards.close_card(card_id, "aberto")


@pytest.mark.anyio
async def test_set_card_responsible_syncs_conversation(container, fake_db, board):
    created = await container.cards.resolve_or_create_card("c1", conversation_id="conv2", pipeline_id="p-old")

    result = await container.cards.set_card_responsible(created.card["id"], "U5", changed_by="admin")

    assert result["card"]["responsible_user_id"] == "U5"
    assert result["conversation"]["assigned_user_id"] == "U5"
    history = fake_db.rows("conversation_assignments", conversation_id="conv2")
    assert [h["action"] for h in history] == ["assign"]
    assert history[0]["changed_by"] == "admin"


@pytest.mark.anyio
async def test_same_pair_resolutions_queue_on_the_lock(container, fake_db, board):
    locks = container.cards._locks
    key = ("c1", "p-old")
    contended = []
    first_column_id = container.cards._first_column_id

    async def first_column_once_others_wait(pipeline_id):
        for _ in range(300):
            if locks.waiters(key) >= 5:
                break
            await asyncio.sleep(0.01)
        contended.append(locks.waiters(key))
        return await first_column_id(pipeline_id)

    container.cards._first_column_id = first_column_once_others_wait

    results = await asyncio.gather(
        *[container.cards.resolve_or_create_card("c1", pipeline_id="p-old") for _ in range(5)]
    )

    assert contended == [5]
    assert [r.action for r in results].count("created") == 1
    assert len(_open_cards(fake_db, "c1", "p-old")) == 1
    assert len(locks) == 0


def _card_history(fake_db, card_id):
    return fake_db.rows("pipeline_card_history", card_id=card_id)


@pytest.mark.anyio
async def test_card_lifecycle_is_recorded(container, fake_db, board):
    created = await container.cards.resolve_or_create_card("c1", pipeline_id="p-old")
    card_id = created.card["id"]

    await container.cards.move_card(card_id, "col-2", changed_by="U1")
    await container.cards.close_card(card_id, "ganho", changed_by="U1")

    history = _card_history(fake_db, card_id)
    assert [h["action"] for h in history] == ["created", "column_changed", "status_changed"]
    moved = history[1]
    assert moved["changed_by"] == "U1"
    assert moved["metadata"]["old_column_name"] == "Novo"
    assert moved["metadata"]["new_column_name"] == "Negociação"
    assert history[2]["metadata"] == {"old_status": "aberto", "new_status": "ganho"}


@pytest.mark.anyio
async def test_card_history_failure_does_not_fail_move(container, fake_db, board):
    created = await container.cards.resolve_or_create_card("c1", pipeline_id="p-old")
    fake_db.fail("pipeline_card_history", "insert")

    moved = await container.cards.move_card(created.card["id"], "col-2")

    assert moved["column_id"] == "col-2"


@pytest.mark.anyio
async def test_move_card_to_another_pipeline(container, fake_db, board):
    created = await container.cards.resolve_or_create_card("c1", pipeline_id="p-old")

    moved = await container.cards.move_card(created.card["id"], "col-b", "p-new")

    assert moved["pipeline_id"] == "p-new"
    assert moved["column_id"] == "col-b"
    assert _open_cards(fake_db, "c1", "p-old") == []
    metadata = _card_history(fake_db, created.card["id"])[-1]["metadata"]
    assert metadata["old_pipeline_id"] == "p-old"
    assert metadata["new_pipeline_id"] == "p-new"


@pytest.mark.anyio
async def test_move_into_pipeline_with_open_card_is_refused(container, fake_db, board):
    source = await container.cards.resolve_or_create_card("c1", pipeline_id="p-old")
    await container.cards.resolve_or_create_card("c1", pipeline_id="p-new")

    with pytest.raises(InvalidTransitionError):
        await container.cards.move_card(source.card["id"], "col-b", "p-new")

    assert fake_db.rows("pipeline_cards", id=source.card["id"])[0]["pipeline_id"] == "p-old"
    assert len(_open_cards(fake_db, "c1", "p-new")) == 1


@pytest.mark.anyio
async def test_closed_card_may_join_pipeline_with_open_card(container, fake_db, board):
    source = await container.cards.resolve_or_create_card("c1", pipeline_id="p-old")
    await container.cards.close_card(source.card["id"], "perdido")
    await container.cards.resolve_or_create_card("c1", pipeline_id="p-new")

    moved = await container.cards.move_card(source.card["id"], "col-b", "p-new")

    assert moved["pipeline_id"] == "p-new"
    assert moved["status"] == "perdido"


@pytest.mark.anyio
async def test_move_to_column_outside_target_pipeline(container, fake_db, board):
    created = await container.cards.resolve_or_create_card("c1", pipeline_id="p-old")

    with pytest.raises(NotFoundError):
        await container.cards.move_card(created.card["id"], "col-1", "p-new")
