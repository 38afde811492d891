"""Append-only session ledger.

Sessions live in a ledger keyed by scope (a workspace or assistant
connection; the project id when no wider scope is given). Sessions are
never deleted: a rotation marks the outgoing active session completed and
appends the new one. At most one session is active per scope at any
committed state.

Writes are serialized per scope with a lock, so concurrent activity for
the same scope cannot create two active sessions. Different scopes never
contend. The lock is process-local: a store-backed ledger must be served
by a single worker process, otherwise concurrent read-all/write-all
commits for one scope can lose an update.
"""

import logging
import threading
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, Protocol, Sequence

from app.context.models import (
    DEFAULT_ENGINE_CONFIG,
    ContextEngineConfig,
    Session,
    SessionActivityResult,
    SessionStatus,
    SessionTrigger,
    SessionUsage,
    TriggerDecision,
)
from app.context.session_triggers import evaluate_session_trigger
from app.core.config import get_engine_config
from app.core.logging import get_logger, log_with_context

logger = get_logger(__name__)


class SessionStore(Protocol):
    """Durable read-all/write-all storage for a scope's session list."""

    def load(self, scope_id: str) -> list[Session]:
        ...

    def save(self, scope_id: str, sessions: list[Session]) -> None:
        ...


class InMemorySessionStore:
    """Process-local session store."""

    def __init__(self):
        self._sessions: dict[str, list[Session]] = {}

    def load(self, scope_id: str) -> list[Session]:
        return list(self._sessions.get(scope_id, []))

    def save(self, scope_id: str, sessions: list[Session]) -> None:
        self._sessions[scope_id] = list(sessions)


def resolve_active_session(sessions: Sequence[Session]) -> Session | None:
    """The single active session, or None when there are zero or several."""
    active = [s for s in sessions if s.status == SessionStatus.ACTIVE]
    if len(active) > 1:
        logger.warning(
            f"Found {len(active)} active sessions, treating as no active session"
        )
        return None
    return active[0] if active else None


def open_session(decision: TriggerDecision, project_id: str, event_count: int = 0) -> Session:
    """Session proposed by a create decision."""
    trigger = decision.trigger
    return Session(
        id=decision.session_id,
        project_id=project_id,
        title=f"{trigger.type.display_name} session - {trigger.timestamp:%Y-%m-%d %H:%M}",
        status=SessionStatus.ACTIVE,
        start_time=trigger.timestamp,
        trigger=trigger,
        usage=SessionUsage(total_events=event_count),
    )


def continue_session(session: Session, usage_update: SessionUsage) -> Session:
    """Copy of session with updated usage; identity is preserved."""
    return session.model_copy(update={"usage": usage_update})


def rotate_sessions(
    sessions: Sequence[Session],
    old_active: Session | None,
    new_session: Session,
    trigger: SessionTrigger,
) -> list[Session]:
    """
    Close the outgoing session and append the new one.

    Every session still marked active is completed, not just old_active,
    so an inconsistent history is repaired by the rotation. If new_session
    is already in the ledger (duplicate trigger) the history is returned
    unchanged.

    Args:
        sessions: Current ledger contents
        old_active: Session being superseded, if any
        new_session: Session to append as the sole active entry
        trigger: Trigger causing the rotation

    Returns:
        New ledger contents
    """
    if any(s.id == new_session.id for s in sessions):
        return list(sessions)

    closed = {old_active.id} if old_active else set()
    rotated: list[Session] = []
    for session in sessions:
        if session.status == SessionStatus.ACTIVE or session.id in closed:
            session = session.model_copy(
                update={
                    "status": SessionStatus.COMPLETED,
                    "end_time": trigger.timestamp,
                    "end_reason": trigger.type,
                }
            )
        rotated.append(session)

    rotated.append(new_session)
    return rotated


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionTracker:
    """Evaluates session triggers for activity and commits them to the ledger."""

    def __init__(
        self,
        store: SessionStore,
        config: ContextEngineConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.config = config or DEFAULT_ENGINE_CONFIG
        self.clock = clock
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, scope_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(scope_id, threading.Lock())

    def list_sessions(self, scope_id: str) -> list[Session]:
        return self.store.load(scope_id)

    def record_activity(
        self,
        project_id: str,
        event_count: int,
        estimated_context_tokens: int,
        last_event_time: datetime | None = None,
        observed_at: datetime | None = None,
        scope_id: str | None = None,
    ) -> SessionActivityResult:
        """
        Record an activity batch, rotating the session when a trigger fires.

        Args:
            project_id: Project the activity belongs to
            event_count: Events in this batch
            estimated_context_tokens: Context usage estimate for the active session
            last_event_time: Time of the previous activity
            observed_at: Time of this batch (defaults to now); replays pass
                the original time so duplicate deliveries are idempotent
            scope_id: Ledger scope (defaults to project_id)

        Returns:
            SessionActivityResult with the decision and the active session
        """
        scope_id = scope_id or project_id
        now = observed_at or self.clock()

        with self._lock_for(scope_id):
            sessions = self.store.load(scope_id)
            active = resolve_active_session(sessions)
            decision = evaluate_session_trigger(
                active,
                last_event_time,
                estimated_context_tokens,
                project_id,
                now=now,
                config=self.config,
            )

            existing = next(
                (s for s in sessions if decision.should_create and s.id == decision.session_id),
                None,
            )
            if existing is not None:
                # Duplicate trigger delivery: the batch was already counted
                return SessionActivityResult(
                    decision=TriggerDecision(should_create=False), session=existing
                )

            if not decision.should_create and active is not None:
                updated = continue_session(
                    active,
                    SessionUsage(
                        total_events=active.usage.total_events + event_count,
                        context_usage_estimate=estimated_context_tokens,
                    ),
                )
                self.store.save(
                    scope_id, [updated if s.id == updated.id else s for s in sessions]
                )
                return SessionActivityResult(decision=decision, session=updated)

            new_session = open_session(decision, project_id, event_count)
            history = rotate_sessions(sessions, active, new_session, decision.trigger)
            completed = [
                s.id
                for before, s in zip(sessions, history)
                if before.status == SessionStatus.ACTIVE and s.status == SessionStatus.COMPLETED
            ]
            self.store.save(scope_id, history)

        log_with_context(
            logger,
            logging.INFO,
            "Rotated session",
            project_id=project_id,
            scope_id=scope_id,
            trigger=decision.trigger.type.value,
            new_session_id=new_session.id,
            completed_session_ids=",".join(completed),
        )
        return SessionActivityResult(
            decision=decision,
            session=new_session,
            rotated=True,
            completed_session_ids=completed,
        )


@lru_cache(maxsize=1)
def get_session_tracker() -> SessionTracker:
    """Get the session tracker backed by Supabase."""
    from app.db.context_sessions import SupabaseSessionStore

    return SessionTracker(SupabaseSessionStore(), config=get_engine_config())
