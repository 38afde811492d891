"""Tests for Supabase-backed knowledge reads with mocked client."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from app.context.models import ItemCategory, ItemKind
from app.db.knowledge import (
    SupabaseKnowledgeStore,
    _parse_timestamp,
    block_to_item,
    context_row_to_item,
    get_project,
    github_row_to_item,
    list_context_items,
)

PROJECT_ID = "2b0c4e8a-6f3d-4b8e-9a1c-5d7e2f1a3b4c"

BLOCK_ROW = {
    "id": "blk-1",
    "project_id": PROJECT_ID,
    "title": "Fix token budget overflow",
    "content": "Summaries exceed the remaining budget",
    "lane": "current",
    "status": "in_progress",
    "priority": "urgent",
    "progress": 40,
    "last_worked_at": "2025-03-14T09:30:00Z",
    "created_at": "2025-03-01T12:00:00+00:00",
}

CONTEXT_ROW = {
    "id": "ctx-1",
    "project_id": PROJECT_ID,
    "type": "decision",
    "title": "Use Postgres",
    "content": "Session ledger lives in a table row",
    "source": "mcp",
    "created_at": "2025-03-10T08:00:00Z",
}

GITHUB_ROW = {
    "id": "gh-1",
    "project_id": PROJECT_ID,
    "provider_type": "pr",
    "url": "https://github.com/frizy/app/pull/42",
    "title": "Add focus query boost",
    "status": "open",
    "created_at": "2025-03-13T18:00:00Z",
}


def query_returning(rows):
    """Chainable query builder mock whose execute() returns rows."""
    query = MagicMock()
    for method in ("select", "eq", "order", "limit"):
        getattr(query, method).return_value = query
    query.execute.return_value = MagicMock(data=rows)
    return query


def supabase_with_tables(tables):
    client = MagicMock()
    client.table.side_effect = lambda name: tables[name]
    return client


# ── Row mapping ──


def test_parse_timestamp():
    assert _parse_timestamp("2025-03-14T09:30:00Z") == datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)
    assert _parse_timestamp(datetime(2025, 3, 14)).tzinfo == timezone.utc
    assert _parse_timestamp("not-a-date") is None
    assert _parse_timestamp(None) is None


def test_block_to_item():
    item = block_to_item(BLOCK_ROW)

    assert item.kind == ItemKind.TASK.value
    assert item.category is ItemCategory.TASKS
    assert item.links == ("/blocks/blk-1",)
    assert item.progress == 40
    assert item.last_touched_at == datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)
    assert item.touched_at == item.last_touched_at


def test_context_row_to_item():
    item = context_row_to_item(CONTEXT_ROW)

    assert item.item_kind is ItemKind.DECISION
    assert item.category is ItemCategory.CAPTURED_KNOWLEDGE
    assert item.links == ("/context/ctx-1",)
    assert item.render() == "Session ledger lives in a table row"


def test_context_row_with_unknown_type_kept():
    item = context_row_to_item({**CONTEXT_ROW, "type": "retro"})

    assert item.kind == "retro"
    assert item.item_kind is None


def test_github_row_to_item():
    item = github_row_to_item(GITHUB_ROW)

    assert item.category is ItemCategory.EXTERNAL_ACTIVITY
    assert item.subtype == "pr"
    assert item.links == ("https://github.com/frizy/app/pull/42",)
    assert item.render() == "pr: Add focus query boost"


# ── Queries ──


def test_get_project():
    with patch("app.db.knowledge.get_supabase") as mock_supabase:
        mock_supabase.return_value = supabase_with_tables(
            {"projects": query_returning([{"id": PROJECT_ID, "name": "Frizy", "description": None}])}
        )

        project = get_project(PROJECT_ID)

    assert project.id == PROJECT_ID
    assert project.name == "Frizy"
    assert project.description is None


def test_get_project_not_found():
    with patch("app.db.knowledge.get_supabase") as mock_supabase:
        mock_supabase.return_value = supabase_with_tables({"projects": query_returning([])})

        assert get_project(PROJECT_ID) is None


def test_list_context_items_limits_and_orders():
    query = query_returning([CONTEXT_ROW])

    with patch("app.db.knowledge.get_supabase") as mock_supabase:
        mock_supabase.return_value = supabase_with_tables({"context_items": query})

        rows = list_context_items(PROJECT_ID, limit=25)

    assert rows == [CONTEXT_ROW]
    query.eq.assert_called_with("project_id", PROJECT_ID)
    query.order.assert_called_with("created_at", desc=True)
    query.limit.assert_called_with(25)


def test_store_reads_requested_categories_only():
    tables = {
        "blocks": query_returning([BLOCK_ROW]),
        "context_items": query_returning([CONTEXT_ROW]),
        "github_entities": query_returning([GITHUB_ROW]),
    }

    with patch("app.db.knowledge.get_supabase") as mock_supabase:
        mock_supabase.return_value = supabase_with_tables(tables)
        store = SupabaseKnowledgeStore()

        items = store.list_candidate_items(
            PROJECT_ID, [ItemCategory.TASKS, ItemCategory.EXTERNAL_ACTIVITY]
        )

    assert [item.id for item in items] == ["blk-1", "gh-1"]
    tables["context_items"].select.assert_not_called()


def test_store_passes_limits():
    tables = {
        "blocks": query_returning([]),
        "context_items": query_returning([]),
        "github_entities": query_returning([]),
    }

    with patch("app.db.knowledge.get_supabase") as mock_supabase:
        mock_supabase.return_value = supabase_with_tables(tables)
        store = SupabaseKnowledgeStore(knowledge_item_limit=10, external_activity_limit=5)

        items = store.list_candidate_items(PROJECT_ID, list(ItemCategory))

    assert items == []
    tables["context_items"].limit.assert_called_with(10)
    tables["github_entities"].limit.assert_called_with(5)
