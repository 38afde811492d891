"""Relevance scoring for knowledge items.

Additive model per item kind, clamped to [0, 1]:

    base(kind) + status + priority/type + recency + lane (+ focus boosts)

Every term is read from an immutable lookup table keyed by a closed
enumeration. Values outside an enumeration contribute nothing, and an
unknown kind starts from NEUTRAL_BASE_SCORE. All terms are non-negative,
so the score is monotonic in each input.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from app.context.models import (
    ExternalActivityStatus,
    ExternalActivityType,
    ItemCategory,
    ItemKind,
    KnowledgeItem,
    TaskLane,
    TaskPriority,
    TaskStatus,
)

NEUTRAL_BASE_SCORE = 0.3

BASE_SCORE_BY_CATEGORY: Mapping[ItemCategory, float] = MappingProxyType({
    ItemCategory.TASKS: 0.5,
    ItemCategory.CAPTURED_KNOWLEDGE: 0.4,
    ItemCategory.EXTERNAL_ACTIVITY: 0.3,
})

TASK_STATUS_BONUS: Mapping[TaskStatus, float] = MappingProxyType({
    TaskStatus.IN_PROGRESS: 0.3,
    TaskStatus.BLOCKED: 0.2,
})

EXTERNAL_STATUS_BONUS: Mapping[ExternalActivityStatus, float] = MappingProxyType({
    ExternalActivityStatus.OPEN: 0.1,
    ExternalActivityStatus.ACTIVE: 0.1,
})

TASK_PRIORITY_BONUS: Mapping[TaskPriority, float] = MappingProxyType({
    TaskPriority.URGENT: 0.2,
    TaskPriority.HIGH: 0.15,
    TaskPriority.MEDIUM: 0.1,
    TaskPriority.LOW: 0.05,
})

KNOWLEDGE_TYPE_BONUS: Mapping[ItemKind, float] = MappingProxyType({
    ItemKind.DECISION: 0.25,
    ItemKind.BLOCKER: 0.2,
    ItemKind.INSIGHT: 0.15,
    ItemKind.SOLUTION: 0.15,
    ItemKind.REFERENCE: 0.1,
    ItemKind.NOTE: 0.05,
})

EXTERNAL_TYPE_BONUS: Mapping[ExternalActivityType, float] = MappingProxyType({
    ExternalActivityType.PULL_REQUEST: 0.2,
    ExternalActivityType.ISSUE: 0.15,
    ExternalActivityType.COMMIT: 0.1,
})

TASK_LANE_BONUS: Mapping[TaskLane, float] = MappingProxyType({
    TaskLane.CURRENT: 0.2,
    TaskLane.NEXT: 0.15,
    TaskLane.GOALS: 0.1,
    TaskLane.VISION: 0.05,
    TaskLane.CONTEXT: 0.05,
})

# (max age in days, bonus), checked in order; older items get nothing
RECENCY_TIERS: Mapping[ItemCategory, tuple[tuple[float, float], ...]] = MappingProxyType({
    ItemCategory.TASKS: ((1, 0.2), (7, 0.1)),
    ItemCategory.CAPTURED_KNOWLEDGE: ((1, 0.15), (7, 0.1), (30, 0.05)),
    ItemCategory.EXTERNAL_ACTIVITY: ((1, 0.1), (7, 0.05)),
})

MIN_QUERY_TERM_LENGTH = 3
PER_TERM_BOOST_CAP = 0.3
TEXTUAL_BOOST_CAP = 0.5
SEMANTIC_SIMILARITY_FLOOR = 0.5


def _lookup(table: Mapping, enum_type: type[Enum], value: str | None) -> float:
    """Bonus for a raw value, 0.0 when it is not a member of enum_type."""
    if value is None:
        return 0.0
    try:
        return table.get(enum_type(value), 0.0)
    except ValueError:
        return 0.0


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def recency_bonus(category: ItemCategory, touched_at: datetime, now: datetime) -> float:
    """Tiered bonus by days elapsed since touched_at (future times count as now)."""
    elapsed_days = max(
        0.0, (_as_utc(now) - _as_utc(touched_at)).total_seconds() / 86_400
    )
    for max_days, bonus in RECENCY_TIERS.get(category, ()):
        if elapsed_days < max_days:
            return bonus
    return 0.0


def score_breakdown(item: KnowledgeItem, now: datetime) -> dict[str, float]:
    """Per-term contributions before clamping."""
    kind = item.item_kind
    category = item.category
    breakdown = {
        "base": BASE_SCORE_BY_CATEGORY[category] if kind else NEUTRAL_BASE_SCORE,
        "status": 0.0,
        "type": 0.0,
        "recency": recency_bonus(category, item.touched_at, now),
        "lane": 0.0,
    }

    if category is ItemCategory.TASKS:
        breakdown["status"] = _lookup(TASK_STATUS_BONUS, TaskStatus, item.status)
        breakdown["type"] = _lookup(TASK_PRIORITY_BONUS, TaskPriority, item.priority)
        breakdown["lane"] = _lookup(TASK_LANE_BONUS, TaskLane, item.lane)
    elif category is ItemCategory.EXTERNAL_ACTIVITY:
        breakdown["status"] = _lookup(
            EXTERNAL_STATUS_BONUS, ExternalActivityStatus, item.status
        )
        breakdown["type"] = _lookup(
            EXTERNAL_TYPE_BONUS, ExternalActivityType, item.subtype
        )
    else:
        breakdown["type"] = _lookup(KNOWLEDGE_TYPE_BONUS, ItemKind, item.kind)

    return breakdown


def textual_relevance(query: str, text: str) -> float:
    """Keyword overlap boost between a focus query and item text."""
    haystack = text.lower()
    boost = 0.0
    matched_terms = 0

    for term in query.lower().split():
        if len(term) < MIN_QUERY_TERM_LENGTH:
            continue
        occurrences = len(re.findall(re.escape(term), haystack))
        if occurrences:
            matched_terms += 1
            boost += min(occurrences * 0.1, PER_TERM_BOOST_CAP)

    if matched_terms > 1:
        boost *= 1 + (matched_terms - 1) * 0.2

    return min(boost, TEXTUAL_BOOST_CAP)


def score(
    item: KnowledgeItem,
    now: datetime,
    focus_query: str | None = None,
    semantic_similarity: float | None = None,
) -> float:
    """
    Relevance of an item in [0, 1].

    Args:
        item: Knowledge item to score
        now: Reference time for the recency term
        focus_query: Optional query adding a keyword-overlap boost
        semantic_similarity: Optional similarity from vector search

    Returns:
        Clamped additive score
    """
    total = sum(score_breakdown(item, now).values())

    if focus_query:
        total += textual_relevance(focus_query, f"{item.title} {item.body}")
    if semantic_similarity is not None:
        total += max(0.0, semantic_similarity - SEMANTIC_SIMILARITY_FLOOR)

    return min(1.0, max(0.0, total))
