"""Token budget selection for context previews.

Splits a token budget between items included verbatim and a trailing
synthesized summary:
1. Rank items by score (stable, so ties keep input order)
2. Admit items verbatim while they fit the verbatim share (80% by default)
3. Queue over-budget high-value items for compression; drop the rest
4. Hand the queue to the summarizer with whatever budget is left
"""

import math
from dataclasses import dataclass, field
from typing import Sequence

from app.context.errors import InvalidConfiguration
from app.context.models import (
    DEFAULT_ENGINE_CONFIG,
    CompressedItem,
    ContextEngineConfig,
    PreviewItem,
    ScoredItem,
)
from app.context.summarizer import Summarizer
from app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class BudgetPartition:
    """Result of the verbatim pass over ranked items."""

    budget_tokens: int
    verbatim: list[ScoredItem] = field(default_factory=list)
    to_compress: list[ScoredItem] = field(default_factory=list)
    dropped: list[ScoredItem] = field(default_factory=list)
    consumed_tokens: int = 0

    @property
    def remaining_tokens(self) -> int:
        return self.budget_tokens - self.consumed_tokens


class BudgetSelector:
    """Selects preview items within a token budget."""

    def __init__(self, config: ContextEngineConfig | None = None):
        self.config = config or DEFAULT_ENGINE_CONFIG

    def estimate_tokens(self, text: str) -> int:
        """Length-based token estimate (characters / chars_per_token, rounded up)."""
        if not text:
            return 0
        return math.ceil(len(text) / self.config.chars_per_token)

    def truncate_to_tokens(self, text: str, max_tokens: int) -> str:
        """Shorten text so its estimate fits max_tokens (with ... suffix)."""
        if self.estimate_tokens(text) <= max_tokens:
            return text
        max_chars = max_tokens * self.config.chars_per_token
        if max_chars <= 3:
            return ""
        return text[: max_chars - 3] + "..."

    def partition(
        self, scored_items: Sequence[ScoredItem], budget_tokens: int
    ) -> BudgetPartition:
        """
        Rank items and split them into verbatim, to-compress and dropped.

        Args:
            scored_items: Items with scores, in recency/id order
            budget_tokens: Total token budget for the preview

        Returns:
            BudgetPartition with consumed verbatim tokens

        Raises:
            InvalidConfiguration: If budget_tokens is negative
        """
        if budget_tokens < 0:
            raise InvalidConfiguration(f"Token budget must be >= 0, got {budget_tokens}")

        ranked = sorted(scored_items, key=lambda item: item.score, reverse=True)
        result = BudgetPartition(budget_tokens=budget_tokens)

        if budget_tokens == 0:
            result.dropped = ranked
            return result

        verbatim_budget = budget_tokens * self.config.verbatim_ratio

        for item in ranked:
            cost = self.estimate_tokens(item.content)
            if result.consumed_tokens + cost <= verbatim_budget:
                result.verbatim.append(item)
                result.consumed_tokens += cost
            elif item.score > self.config.high_value_threshold:
                result.to_compress.append(item)
            else:
                result.dropped.append(item)

        return result

    async def select(
        self,
        scored_items: Sequence[ScoredItem],
        budget_tokens: int,
        summarizer: Summarizer | None = None,
        focus_query: str | None = None,
    ) -> list[PreviewItem]:
        """
        Choose the preview items for a budget.

        Args:
            scored_items: Items with scores
            budget_tokens: Total token budget
            summarizer: Summarizer for over-budget high-value items
                (a capability-less summarizer, i.e. the local fallback, when omitted)
            focus_query: Optional focus for the summary

        Returns:
            Preview items in descending score order, total estimate within budget
        """
        partition = self.partition(scored_items, budget_tokens)
        selection: list[PreviewItem] = list(partition.verbatim)

        if partition.to_compress and partition.remaining_tokens > 0:
            summarizer = summarizer or Summarizer(completion=None, config=self.config)
            remaining = partition.remaining_tokens
            condensed = await summarizer.summarize(
                partition.to_compress, remaining, focus_query=focus_query
            )
            for item in condensed:
                fitted = self._fit(item, remaining)
                if fitted is None:
                    continue
                selection.append(fitted)
                remaining -= self.estimate_tokens(fitted.content)

        logger.debug(
            f"Selected {len(selection)} of {len(scored_items)} items "
            f"({len(partition.to_compress)} compressed, {len(partition.dropped)} dropped)"
        )
        return sorted(selection, key=lambda item: item.score, reverse=True)

    def _fit(self, item: PreviewItem, remaining: int) -> PreviewItem | None:
        """Return item if it fits remaining tokens, shortening summaries when needed."""
        if self.estimate_tokens(item.content) <= remaining:
            return item
        if isinstance(item, CompressedItem) and remaining > 0:
            text = self.truncate_to_tokens(item.summary_text, remaining)
            if text:
                return item.model_copy(update={"summary_text": text})
        return None
