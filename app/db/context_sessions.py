"""Database operations for the session ledger.

Each ledger scope (a workspace or assistant connection, or a project when
no wider scope is used) has one context_sessions row holding its full
session history as JSON; the ledger reads and writes the whole list.

Rows written by older clients may not validate (e.g. a "crashed" status).
Rows with an unknown status are read as completed so they can never hold
the active slot; rows that still fail validation are kept aside and
written back untouched, so the history stays append-only.
"""

from typing import Any

from pydantic import ValidationError

from app.context.models import Session, SessionStatus
from app.core.logging import get_logger
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)

KNOWN_STATUSES = {status.value for status in SessionStatus}


def get_session_history(scope_id: str) -> list[dict[str, Any]]:
    """Get the stored session list for a scope (empty on first use)."""
    supabase = get_supabase()

    response = (
        supabase.table("context_sessions")
        .select("sessions")
        .eq("scope_id", str(scope_id))
        .execute()
    )
    if not response.data:
        return []
    return response.data[0].get("sessions") or []


def save_session_history(scope_id: str, sessions: list[dict[str, Any]]) -> None:
    """Replace the stored session list for a scope."""
    supabase = get_supabase()

    (
        supabase.table("context_sessions")
        .upsert(
            {
                "scope_id": str(scope_id),
                "sessions": sessions,
                "updated_at": "now()",
            },
            on_conflict="scope_id",
        )
        .execute()
    )


def parse_session_row(row: Any) -> Session | None:
    """
    Validate one stored session row.

    Returns:
        Session (unknown statuses read as completed), or None if the row is unusable
    """
    if isinstance(row, dict) and row.get("status") not in KNOWN_STATUSES:
        logger.warning(
            f"Session {row.get('id')} has unknown status {row.get('status')!r}, reading as completed"
        )
        row = {**row, "status": SessionStatus.COMPLETED.value}

    try:
        return Session.model_validate(row)
    except ValidationError as e:
        logger.warning(f"Skipping unreadable session row: {e.error_count()} validation errors")
        return None


class SupabaseSessionStore:
    """Session store with one context_sessions row per scope."""

    def __init__(self):
        self._unreadable: dict[str, list[Any]] = {}

    def load(self, scope_id: str) -> list[Session]:
        sessions: list[Session] = []
        unreadable: list[Any] = []
        for row in get_session_history(scope_id):
            session = parse_session_row(row)
            if session is None:
                unreadable.append(row)
            else:
                sessions.append(session)

        self._unreadable[scope_id] = unreadable
        return sessions

    def save(self, scope_id: str, sessions: list[Session]) -> None:
        rows = list(self._unreadable.get(scope_id, []))
        rows.extend(session.model_dump(mode="json") for session in sessions)
        save_session_history(scope_id, rows)
        logger.debug(f"Saved {len(sessions)} sessions for scope {scope_id}")
