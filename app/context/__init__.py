"""Context engine for AI assistants working on a project.

This module provides:
- Relevance scoring of project knowledge items
- Token-budgeted selection with compression of over-budget items
- Context preview assembly (build_preview)
- Session boundary decisions (evaluate_session_trigger)
- The append-only session ledger
"""

from app.context.errors import (
    ContextEngineError,
    InvalidConfiguration,
    NotFound,
    SummarizationUnavailable,
    UpstreamUnavailable,
)
from app.context.models import (
    CompressedItem,
    ContextEngineConfig,
    ContextPreview,
    KnowledgeItem,
    PreviewOptions,
    ScoredItem,
    Session,
    SessionTrigger,
    TriggerDecision,
    TriggerType,
)

__all__ = [
    # Errors
    "ContextEngineError",
    "InvalidConfiguration",
    "NotFound",
    "SummarizationUnavailable",
    "UpstreamUnavailable",
    # Models
    "CompressedItem",
    "ContextEngineConfig",
    "ContextPreview",
    "KnowledgeItem",
    "PreviewOptions",
    "ScoredItem",
    "Session",
    "SessionTrigger",
    "TriggerDecision",
    "TriggerType",
]
