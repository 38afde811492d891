"""Context preview assembly.

Pipeline per request:
1. Read the project and its candidate items (filtered by include-flags)
2. Score each item (relevance_scorer)
3. Select within the token budget (token_budget), compressing over-budget
   high-value items (summarizer)
4. Attach a one-line project summary

Read failures are all-or-nothing: no preview is produced from partial data.
A degraded preview (fallback summary, empty categories) is not an error.
"""

import asyncio
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, Iterable, Protocol, Sequence

from app.context import relevance_scorer
from app.context.errors import (
    ContextEngineError,
    InvalidConfiguration,
    NotFound,
    UpstreamUnavailable,
)
from app.context.models import (
    DEFAULT_ENGINE_CONFIG,
    CompressedItem,
    ContextEngineConfig,
    ContextPreview,
    ItemCategory,
    KnowledgeItem,
    PreviewItem,
    PreviewOptions,
    ProjectMeta,
    ScoredItem,
    TaskStatus,
)
from app.context.summarizer import Summarizer, get_summarizer
from app.context.token_budget import BudgetSelector
from app.core.config import get_engine_config
from app.core.logging import get_logger, log_with_context

logger = get_logger(__name__)

SEMANTIC_SEARCH_LIMIT = 50


class KnowledgeStore(Protocol):
    """Read API over the project knowledge projections."""

    def get_project(self, project_id: str) -> ProjectMeta | None:
        ...

    def list_candidate_items(
        self, project_id: str, categories: Iterable[ItemCategory]
    ) -> list[KnowledgeItem]:
        ...


class SemanticSearch(Protocol):
    """Vector search capability returning similarity per item id."""

    async def search(self, project_id: str, query: str, limit: int) -> dict[str, float]:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_project_summary(
    project: ProjectMeta, candidates: Sequence[KnowledgeItem], included: Sequence[PreviewItem]
) -> str:
    """One-line summary: task counts, captured knowledge, items included."""
    tasks = [item for item in candidates if item.category is ItemCategory.TASKS]
    active = sum(1 for item in tasks if item.status == TaskStatus.IN_PROGRESS.value)
    completed = sum(1 for item in tasks if item.status == TaskStatus.COMPLETED.value)
    knowledge = sum(
        1 for item in candidates if item.category is ItemCategory.CAPTURED_KNOWLEDGE
    )

    parts = [
        f"Project: {project.name}",
        f"Description: {project.description}" if project.description else "",
        f"Tasks: {len(tasks)} total ({active} active, {completed} completed)",
        f"Context items: {knowledge}",
        f"Items included: {len(included)}",
    ]
    return " | ".join(part for part in parts if part)


class ContextPreviewBuilder:
    """Builds token-budgeted, relevance-ranked previews for a project."""

    def __init__(
        self,
        store: KnowledgeStore,
        summarizer: Summarizer | None = None,
        config: ContextEngineConfig | None = None,
        semantic_search: SemanticSearch | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.config = config or DEFAULT_ENGINE_CONFIG
        self.summarizer = summarizer or Summarizer(completion=None, config=self.config)
        self.selector = BudgetSelector(self.config)
        self.semantic_search = semantic_search
        self.clock = clock

    async def build_preview(
        self, project_id: str, options: PreviewOptions | None = None
    ) -> ContextPreview:
        """
        Build a context preview for a project.

        Args:
            project_id: Project to preview
            options: Budget, include-flags and focus query

        Returns:
            ContextPreview with items in descending score order

        Raises:
            InvalidConfiguration: If the token budget is negative
            NotFound: If the project does not exist
            UpstreamUnavailable: If the knowledge store cannot be read
        """
        options = options or PreviewOptions()
        max_tokens = (
            options.max_tokens if options.max_tokens is not None else self.config.default_max_tokens
        )
        if max_tokens < 0:
            raise InvalidConfiguration(f"max_tokens must be >= 0, got {max_tokens}")

        now = self.clock()
        project = await self._read(self.store.get_project, project_id)
        if project is None:
            raise NotFound(f"Project {project_id} not found")

        candidates = await self._read(
            self.store.list_candidate_items, project_id, options.categories()
        )

        similarities = await self._semantic_similarities(project_id, options.focus_query)
        scored = [
            ScoredItem.from_item(
                item,
                relevance_scorer.score(
                    item,
                    now,
                    focus_query=options.focus_query,
                    semantic_similarity=similarities.get(item.id),
                ),
            )
            for item in candidates
        ]

        items = await self.selector.select(
            scored, max_tokens, summarizer=self.summarizer, focus_query=options.focus_query
        )

        log_with_context(
            logger,
            logging.INFO,
            "Built context preview",
            project_id=project_id,
            candidates=len(candidates),
            included=len(items),
            compressed=any(isinstance(item, CompressedItem) for item in items),
            max_tokens=max_tokens,
        )

        return ContextPreview(
            project_id=project_id,
            items=items,
            summary_text=build_project_summary(project, candidates, items),
            total_candidate_count=len(candidates),
            generated_at=now,
        )

    async def _read(self, fn, *args):
        """Run a blocking store read, wrapping failures as UpstreamUnavailable."""
        try:
            return await asyncio.to_thread(fn, *args)
        except ContextEngineError:
            raise
        except Exception as e:
            logger.error(f"Knowledge store read failed ({getattr(fn, '__name__', 'read')}): {e}")
            raise UpstreamUnavailable(f"Knowledge store read failed: {e}") from e

    async def _semantic_similarities(
        self, project_id: str, focus_query: str | None
    ) -> dict[str, float]:
        if not focus_query or self.semantic_search is None:
            return {}
        try:
            return await self.semantic_search.search(
                project_id, focus_query, SEMANTIC_SEARCH_LIMIT
            )
        except Exception as e:
            logger.warning(f"Semantic search failed, using standard scoring: {e}")
            return {}


@lru_cache(maxsize=1)
def get_preview_builder() -> ContextPreviewBuilder:
    """Get the preview builder wired to Supabase and the configured summarizer."""
    from app.db.knowledge import SupabaseKnowledgeStore

    config = get_engine_config()
    store = SupabaseKnowledgeStore(
        knowledge_item_limit=config.knowledge_item_limit,
        external_activity_limit=config.external_activity_limit,
    )
    return ContextPreviewBuilder(store, summarizer=get_summarizer(), config=config)
