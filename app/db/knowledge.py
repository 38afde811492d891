"""Read access to project knowledge for context previews.

Maps rows from the blocks, context_items and github_entities projections
into KnowledgeItem models. Read failures propagate; the preview builder
decides how to surface them.
"""

from datetime import datetime, timezone
from typing import Any, Iterable

from app.context.models import ItemCategory, ItemKind, KnowledgeItem, ProjectMeta
from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)


def _parse_timestamp(ts) -> datetime | None:
    """Parse a timestamp from DB (string or datetime)."""
    if isinstance(ts, datetime):
        return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)
    if isinstance(ts, str):
        try:
            dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
            return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
        except (ValueError, TypeError):
            return None
    return None


def _created_at(row: dict[str, Any]) -> datetime:
    return _parse_timestamp(row.get("created_at")) or datetime.fromtimestamp(0, timezone.utc)


def block_to_item(row: dict[str, Any]) -> KnowledgeItem:
    """Map a blocks row to a task item."""
    return KnowledgeItem(
        id=str(row["id"]),
        kind=ItemKind.TASK.value,
        title=row.get("title") or "",
        body=row.get("content") or "",
        created_at=_created_at(row),
        links=(f"/blocks/{row['id']}",),
        status=row.get("status"),
        priority=row.get("priority"),
        lane=row.get("lane"),
        progress=row.get("progress") or 0,
        last_touched_at=_parse_timestamp(row.get("last_worked_at")),
        source="block",
    )


def context_row_to_item(row: dict[str, Any]) -> KnowledgeItem:
    """Map a context_items row to a captured-knowledge item."""
    return KnowledgeItem(
        id=str(row["id"]),
        kind=row.get("type") or ItemKind.NOTE.value,
        title=row.get("title") or "",
        body=row.get("content") or "",
        created_at=_created_at(row),
        links=(f"/context/{row['id']}",),
        source=row.get("source") or "mcp",
    )


def github_row_to_item(row: dict[str, Any]) -> KnowledgeItem:
    """Map a github_entities row to an external-activity item."""
    return KnowledgeItem(
        id=str(row["id"]),
        kind=ItemKind.EXTERNAL_ACTIVITY.value,
        title=row.get("title") or "",
        created_at=_created_at(row),
        links=(row.get("url") or "",),
        status=row.get("status"),
        subtype=row.get("provider_type"),
        source="github",
    )


def get_project(project_id: str) -> ProjectMeta | None:
    """Get project identity, or None when it does not exist."""
    supabase = get_supabase()

    response = (
        supabase.table("projects")
        .select("id, name, description")
        .eq("id", str(project_id))
        .execute()
    )
    if not response.data:
        return None

    row = response.data[0]
    return ProjectMeta(
        id=str(row["id"]),
        name=row.get("name") or "",
        description=row.get("description"),
    )


def list_blocks(project_id: str) -> list[dict[str, Any]]:
    """List all blocks for a project, oldest first."""
    supabase = get_supabase()

    response = (
        supabase.table("blocks")
        .select(
            "id, project_id, title, content, lane, status, priority, progress, "
            "effort, last_worked_at, created_at, updated_at"
        )
        .eq("project_id", str(project_id))
        .order("created_at")
        .execute()
    )
    return response.data or []


def list_context_items(project_id: str, limit: int = 50) -> list[dict[str, Any]]:
    """List the most recent captured context items for a project."""
    supabase = get_supabase()

    response = (
        supabase.table("context_items")
        .select("id, project_id, type, title, content, source, author_id, created_at")
        .eq("project_id", str(project_id))
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
    return response.data or []


def list_github_entities(project_id: str, limit: int = 50) -> list[dict[str, Any]]:
    """List the most recent GitHub entities linked to a project."""
    supabase = get_supabase()

    response = (
        supabase.table("github_entities")
        .select("id, project_id, provider_type, provider_id, url, title, status, created_at")
        .eq("project_id", str(project_id))
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
    return response.data or []


class SupabaseKnowledgeStore:
    """Knowledge store backed by the Supabase projections."""

    def __init__(self, knowledge_item_limit: int = 50, external_activity_limit: int = 50):
        self.knowledge_item_limit = knowledge_item_limit
        self.external_activity_limit = external_activity_limit

    def get_project(self, project_id: str) -> ProjectMeta | None:
        return get_project(project_id)

    def list_candidate_items(
        self, project_id: str, categories: Iterable[ItemCategory]
    ) -> list[KnowledgeItem]:
        """
        Read candidate items for the requested categories.

        Args:
            project_id: Project to read
            categories: Projections to include

        Returns:
            Tasks, then captured knowledge, then external activity
        """
        categories = set(categories)
        items: list[KnowledgeItem] = []

        if ItemCategory.TASKS in categories:
            items.extend(block_to_item(row) for row in list_blocks(project_id))
        if ItemCategory.CAPTURED_KNOWLEDGE in categories:
            rows = list_context_items(project_id, limit=self.knowledge_item_limit)
            items.extend(context_row_to_item(row) for row in rows)
        if ItemCategory.EXTERNAL_ACTIVITY in categories:
            rows = list_github_entities(project_id, limit=self.external_activity_limit)
            items.extend(github_row_to_item(row) for row in rows)

        logger.debug(f"Read {len(items)} candidate items for project {project_id}")
        return items
