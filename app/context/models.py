"""Pydantic models for context previews and session boundaries."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Closed enumerations used by the relevance lookup tables
# ============================================================================


class ItemKind(str, Enum):
    """Kinds of knowledge item produced by the upstream projections."""

    TASK = "task"
    DECISION = "decision"
    INSIGHT = "insight"
    BLOCKER = "blocker"
    SOLUTION = "solution"
    REFERENCE = "reference"
    NOTE = "note"
    EXTERNAL_ACTIVITY = "external_activity"


class ItemCategory(str, Enum):
    """Projection an item was read from; drives the include-flags."""

    TASKS = "tasks"
    CAPTURED_KNOWLEDGE = "captured_knowledge"
    EXTERNAL_ACTIVITY = "external_activity"


class TaskStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskLane(str, Enum):
    """Board lanes, from aspirational (vision) to current work."""

    VISION = "vision"
    GOALS = "goals"
    CURRENT = "current"
    NEXT = "next"
    CONTEXT = "context"


class ExternalActivityType(str, Enum):
    PULL_REQUEST = "pr"
    ISSUE = "issue"
    COMMIT = "commit"


class ExternalActivityStatus(str, Enum):
    OPEN = "open"
    ACTIVE = "active"
    CLOSED = "closed"
    MERGED = "merged"


# ============================================================================
# Knowledge items and previews
# ============================================================================


class KnowledgeItem(BaseModel):
    """A unit of project information eligible for a context preview.

    Produced by the upstream projections and never modified by the engine.
    Kind-specific fields (status, priority, lane, subtype) are kept as raw
    strings so unknown upstream values degrade to a neutral score instead
    of failing validation.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Item identifier")
    kind: str = Field(..., description="ItemKind value (unknown values allowed)")
    title: str = Field(default="", description="Short title")
    body: str = Field(default="", description="Free-text content")
    created_at: datetime = Field(..., description="When the item was produced")
    links: tuple[str, ...] = Field(default=(), description="Reference URIs, in order")

    # Score inputs
    status: str | None = Field(default=None, description="Task or external status")
    priority: str | None = Field(default=None, description="Task priority")
    lane: str | None = Field(default=None, description="Task board lane")
    subtype: str | None = Field(default=None, description="External activity type")
    progress: int = Field(default=0, description="Task progress percent")
    last_touched_at: datetime | None = Field(
        default=None, description="Last time work touched the item"
    )
    source: str | None = Field(default=None, description="Producer (mcp, github, ...)")

    @property
    def item_kind(self) -> ItemKind | None:
        """Resolved kind, or None for values outside the closed enumeration."""
        try:
            return ItemKind(self.kind)
        except ValueError:
            return None

    @property
    def category(self) -> ItemCategory:
        if self.item_kind is ItemKind.TASK:
            return ItemCategory.TASKS
        if self.item_kind is ItemKind.EXTERNAL_ACTIVITY:
            return ItemCategory.EXTERNAL_ACTIVITY
        return ItemCategory.CAPTURED_KNOWLEDGE

    @property
    def touched_at(self) -> datetime:
        """Timestamp the recency bonus is measured from."""
        return self.last_touched_at or self.created_at

    def render(self) -> str:
        """Text shown to the assistant and used for token estimation."""
        if self.category is ItemCategory.TASKS:
            parts = [
                f"Status: {self.status}",
                f"Lane: {self.lane}",
                f"Priority: {self.priority}",
            ]
            if self.progress > 0:
                parts.append(f"Progress: {self.progress}%")
            if self.body:
                parts.append(f"Content: {self.body}")
            return " | ".join(parts)

        if self.category is ItemCategory.EXTERNAL_ACTIVITY:
            return f"{self.subtype}: {self.title}"

        return self.body


class ScoredItem(KnowledgeItem):
    """A knowledge item with its relevance score, included verbatim."""

    preview_type: Literal["verbatim"] = "verbatim"
    score: float = Field(..., ge=0.0, le=1.0, description="Relevance score")
    content: str = Field(default="", description="Rendered text as included")
    truncated: bool = Field(
        default=False, description="Content shortened by the fallback summary"
    )

    @classmethod
    def from_item(cls, item: KnowledgeItem, score: float) -> "ScoredItem":
        return cls(**item.model_dump(), score=score, content=item.render())


class CompressedItem(BaseModel):
    """Synthetic item condensing several over-budget, high-value items."""

    model_config = ConfigDict(frozen=True)

    preview_type: Literal["compressed"] = "compressed"
    source_ids: tuple[str, ...] = Field(..., description="Ids of the condensed items")
    summary_text: str = Field(..., description="Condensed text")
    score: float = Field(..., ge=0.0, le=1.0)
    links: tuple[str, ...] = Field(default=(), description="Union of source links")

    @property
    def content(self) -> str:
        return self.summary_text


PreviewItem = Annotated[
    Union[ScoredItem, CompressedItem], Field(discriminator="preview_type")
]


class ProjectMeta(BaseModel):
    """Project identity as returned by the knowledge store."""

    id: str
    name: str
    description: str | None = None


class PreviewOptions(BaseModel):
    """Per-request options for building a context preview."""

    max_tokens: int | None = Field(
        default=None, description="Token budget (engine default when omitted)"
    )
    include_tasks: bool = Field(default=True)
    include_captured_knowledge: bool = Field(default=True)
    include_external_activity: bool = Field(default=True)
    focus_query: str | None = Field(
        default=None, description="Optional query focusing relevance and summary"
    )

    def categories(self) -> frozenset[ItemCategory]:
        selected = set()
        if self.include_tasks:
            selected.add(ItemCategory.TASKS)
        if self.include_captured_knowledge:
            selected.add(ItemCategory.CAPTURED_KNOWLEDGE)
        if self.include_external_activity:
            selected.add(ItemCategory.EXTERNAL_ACTIVITY)
        return frozenset(selected)


class ContextPreview(BaseModel):
    """Token-budgeted, relevance-ranked digest handed to an AI assistant."""

    model_config = ConfigDict(frozen=True)

    project_id: str
    items: list[PreviewItem] = Field(
        default_factory=list, description="Included items, descending score"
    )
    summary_text: str = Field(..., description="One-line project summary")
    total_candidate_count: int = Field(..., ge=0)
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================================================
# Engine configuration
# ============================================================================


class ContextEngineConfig(BaseModel):
    """Tunable constants for budgeting, compression and session boundaries."""

    model_config = ConfigDict(frozen=True)

    default_max_tokens: int = Field(default=4000, ge=0)
    summary_reserve_ratio: float = Field(default=0.2, ge=0.0, le=1.0)
    high_value_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    compressed_item_score: float = Field(default=0.9, ge=0.0, le=1.0)
    summary_target_ratio: float = Field(default=0.8, gt=0.0, le=1.0)
    fallback_item_count: int = Field(default=3, ge=0)
    fallback_truncate_chars: int = Field(default=100, ge=1)
    chars_per_token: int = Field(default=4, ge=1)
    knowledge_item_limit: int = Field(default=50, ge=1)
    external_activity_limit: int = Field(default=50, ge=1)
    context_limit_tokens: int = Field(default=160_000, ge=0)
    inactivity_minutes: int = Field(default=120, ge=0)

    @property
    def verbatim_ratio(self) -> float:
        return 1.0 - self.summary_reserve_ratio


DEFAULT_ENGINE_CONFIG = ContextEngineConfig()


# ============================================================================
# Sessions
# ============================================================================


class TriggerType(str, Enum):
    """Conditions that end a session and start a new one."""

    MANUAL = "manual"
    PROJECT_SWITCH = "project_switch"
    CONTEXT_LIMIT = "context_limit"
    INACTIVITY = "inactivity"
    DAILY = "daily"

    @property
    def display_name(self) -> str:
        return self.value.replace("_", " ").capitalize()


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class SessionTrigger(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: TriggerType
    reason: str
    timestamp: datetime


class SessionUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_events: int = Field(default=0, ge=0)
    context_usage_estimate: int = Field(default=0, ge=0, description="Estimated tokens")


class Session(BaseModel):
    """A bounded unit of continuous working activity on a project."""

    model_config = ConfigDict(frozen=True)

    id: str
    project_id: str
    title: str
    status: SessionStatus = SessionStatus.ACTIVE
    start_time: datetime
    end_time: datetime | None = None
    trigger: SessionTrigger | None = Field(
        default=None, description="Trigger that started this session"
    )
    end_reason: TriggerType | None = Field(
        default=None, description="Trigger that completed this session"
    )
    usage: SessionUsage = Field(default_factory=SessionUsage)


class TriggerDecision(BaseModel):
    """Outcome of evaluating session boundaries for an activity batch."""

    model_config = ConfigDict(frozen=True)

    should_create: bool
    trigger: SessionTrigger | None = None
    session_id: str | None = Field(
        default=None, description="Deterministic id for the session to create"
    )


class SessionActivityResult(BaseModel):
    """Committed outcome of recording an activity batch."""

    decision: TriggerDecision
    session: Session = Field(..., description="Active session after the commit")
    rotated: bool = Field(default=False, description="Whether a new session was started")
    completed_session_ids: list[str] = Field(
        default_factory=list, description="Sessions closed by this rotation"
    )
