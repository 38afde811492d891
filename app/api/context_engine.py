"""Context preview and session API endpoints."""

import asyncio
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from app.context.errors import InvalidConfiguration, NotFound, UpstreamUnavailable
from app.context.models import ContextPreview, PreviewOptions, SessionActivityResult
from app.context.preview_builder import get_preview_builder
from app.context.session_ledger import get_session_tracker
from app.context.session_triggers import estimate_context_usage, session_stats
from app.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


class SessionActivityRequest(BaseModel):
    """Activity batch reported by an assistant connection."""

    event_count: int = Field(default=1, ge=0, description="Events in this batch")
    estimated_context_tokens: int = Field(
        default=0, ge=0, description="Estimated context usage of the active session"
    )
    last_event_time: datetime | None = Field(
        default=None, description="Time of the previous activity"
    )
    observed_at: datetime | None = Field(
        default=None, description="Time of this batch (server time when omitted)"
    )
    scope_id: str | None = Field(
        default=None, description="Ledger scope spanning projects (defaults to the project)"
    )
    events: list[Dict[str, Any]] | None = Field(
        default=None,
        description="Raw events of the active session; when given, the usage estimate is derived from them",
    )

    def context_tokens(self) -> int:
        """Usage estimate for the active session."""
        if self.events is not None:
            return estimate_context_usage(self.events)
        return self.estimated_context_tokens


@router.get("/projects/{project_id}/context-preview", response_model=ContextPreview)
async def get_context_preview(
    project_id: str,
    max_tokens: int | None = Query(None, description="Token budget for the preview"),
    include_tasks: bool = Query(True, description="Include tasks"),
    include_captured_knowledge: bool = Query(True, description="Include captured knowledge"),
    include_external_activity: bool = Query(True, description="Include external activity"),
    focus_query: str | None = Query(None, description="Focus relevance on a topic"),
) -> ContextPreview:
    """
    Build a token-budgeted context preview for a project.

    Args:
        project_id: Project identifier
        max_tokens: Token budget (engine default when omitted)
        include_tasks: Include the tasks projection
        include_captured_knowledge: Include captured knowledge
        include_external_activity: Include external activity
        focus_query: Optional query focusing relevance and summary

    Returns:
        ContextPreview

    Raises:
        HTTPException 400: If the budget is invalid
        HTTPException 404: If the project does not exist
        HTTPException 503: If project knowledge cannot be read
    """
    options = PreviewOptions(
        max_tokens=max_tokens,
        include_tasks=include_tasks,
        include_captured_knowledge=include_captured_knowledge,
        include_external_activity=include_external_activity,
        focus_query=focus_query,
    )

    try:
        return await get_preview_builder().build_preview(project_id, options)

    except InvalidConfiguration as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except UpstreamUnavailable as e:
        logger.error(f"Context preview unavailable for project {project_id}: {e}")
        raise HTTPException(status_code=503, detail="Project knowledge unavailable") from e


@router.post(
    "/projects/{project_id}/sessions/activity", response_model=SessionActivityResult
)
async def record_session_activity(
    project_id: str, request: SessionActivityRequest
) -> SessionActivityResult:
    """
    Record an activity batch, starting a new session when a trigger fires.

    Args:
        project_id: Project the activity belongs to
        request: Activity batch

    Returns:
        SessionActivityResult with the decision and the active session
    """
    tracker = get_session_tracker()

    try:
        return await asyncio.to_thread(
            tracker.record_activity,
            project_id,
            event_count=request.event_count,
            estimated_context_tokens=request.context_tokens(),
            last_event_time=request.last_event_time,
            observed_at=request.observed_at,
            scope_id=request.scope_id,
        )

    except Exception as e:
        logger.error(f"Failed to record session activity for project {project_id}: {e}")
        raise HTTPException(status_code=503, detail="Session ledger unavailable") from e


@router.get("/projects/{project_id}/sessions")
async def list_sessions(
    project_id: str,
    scope_id: str | None = Query(None, description="Ledger scope (defaults to the project)"),
) -> Dict[str, Any]:
    """
    List the session history of a ledger scope with per-session stats.

    Args:
        project_id: Project identifier
        scope_id: Ledger scope spanning projects

    Returns:
        Dict with the sessions (oldest first) and their stats
    """
    tracker = get_session_tracker()

    try:
        sessions = tracker.list_sessions(scope_id or project_id)
    except Exception as e:
        logger.error(f"Failed to list sessions for project {project_id}: {e}")
        raise HTTPException(status_code=503, detail="Session ledger unavailable") from e

    return {
        "sessions": [
            {**session.model_dump(mode="json"), "stats": session_stats(session)}
            for session in sessions
        ],
        "total": len(sessions),
    }
