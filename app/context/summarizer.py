"""Compression of over-budget knowledge items via AI summarization.

High-value items that do not fit a preview verbatim are condensed into a
single bulleted summary item. The completion capability is injected, so
a missing API key, a provider error or a timeout never reaches the
caller: the summarizer falls back to the top items by score, truncated.
"""

import asyncio
import logging
from typing import Protocol, Sequence

import anthropic

from app.context.errors import SummarizationUnavailable
from app.context.models import (
    DEFAULT_ENGINE_CONFIG,
    CompressedItem,
    ContextEngineConfig,
    PreviewItem,
    ScoredItem,
)
from app.core.config import get_engine_config, get_settings
from app.core.logging import get_logger, log_with_context

logger = get_logger(__name__)


SUMMARIZATION_PROMPT = """Summarize the following project context items concisely while preserving key information.
{focus}
Target: {target_tokens} tokens maximum

Context items:
{items}

Provide a bulleted summary that captures the essential information:"""

FOCUS_LINE = "Focus on information relevant to: {query}\n"


class CompletionCapability(Protocol):
    """External text-completion capability."""

    async def complete(self, prompt: str, max_tokens: int, temperature: float) -> str:
        ...


class AnthropicCompletion:
    """Completion capability backed by the Anthropic Messages API."""

    def __init__(self, api_key: str, model: str, timeout_seconds: float | None = None):
        self.model = model
        self._client = anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout_seconds)

    async def complete(self, prompt: str, max_tokens: int, temperature: float) -> str:
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
        )

        # Extract text from response
        text = ""
        for block in response.content:
            if hasattr(block, "text"):
                text += block.text
        return text.strip()


def format_items_for_summary(items: Sequence[ScoredItem]) -> str:
    """Render items as prompt lines."""
    return "\n\n".join(f"{item.kind}: {item.title} - {item.content}" for item in items)


def build_summary_prompt(
    items: Sequence[ScoredItem], target_tokens: int, focus_query: str | None = None
) -> str:
    return SUMMARIZATION_PROMPT.format(
        focus=FOCUS_LINE.format(query=focus_query) if focus_query else "",
        target_tokens=target_tokens,
        items=format_items_for_summary(items),
    )


def _unique(values) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))


class Summarizer:
    """Condenses over-budget items into one compressed preview item."""

    def __init__(
        self,
        completion: CompletionCapability | None,
        config: ContextEngineConfig | None = None,
        timeout_seconds: float | None = None,
        temperature: float = 0.3,
        max_output_tokens: int = 1000,
    ):
        self.completion = completion
        self.config = config or DEFAULT_ENGINE_CONFIG
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    async def summarize(
        self,
        items: Sequence[ScoredItem],
        remaining_tokens: int,
        focus_query: str | None = None,
    ) -> list[PreviewItem]:
        """
        Condense items into a single compressed item.

        Args:
            items: Over-budget items, highest score first
            remaining_tokens: Budget left after the verbatim pass
            focus_query: Optional focus for the summary

        Returns:
            One CompressedItem, or the fallback items when summarization fails
        """
        if not items:
            return []

        target_tokens = int(remaining_tokens * self.config.summary_target_ratio)
        prompt = build_summary_prompt(items, target_tokens, focus_query)

        try:
            summary = await self._complete(prompt, min(remaining_tokens, self.max_output_tokens))
        except SummarizationUnavailable as e:
            reason = str(e)
        except asyncio.TimeoutError:
            reason = f"timed out after {self.timeout_seconds}s"
        except Exception as e:
            reason = f"{type(e).__name__}: {e}"
        else:
            return [
                CompressedItem(
                    source_ids=_unique(item.id for item in items),
                    summary_text=summary,
                    score=self.config.compressed_item_score,
                    links=_unique(link for item in items for link in item.links),
                )
            ]

        log_with_context(
            logger,
            logging.WARNING,
            "Summarization unavailable, using fallback",
            reason=reason,
            item_count=len(items),
        )
        return self.fallback(items)

    async def _complete(self, prompt: str, max_tokens: int) -> str:
        if self.completion is None:
            raise SummarizationUnavailable("No completion capability configured")

        call = self.completion.complete(prompt, max_tokens, self.temperature)
        if self.timeout_seconds is not None:
            text = await asyncio.wait_for(call, timeout=self.timeout_seconds)
        else:
            text = await call

        if not text or not text.strip():
            raise SummarizationUnavailable("Completion returned no text")
        return text.strip()

    def fallback(self, items: Sequence[ScoredItem]) -> list[PreviewItem]:
        """Top items by score with their content cut to a fixed length."""
        ranked = sorted(items, key=lambda item: item.score, reverse=True)
        limit = self.config.fallback_truncate_chars
        result: list[PreviewItem] = []

        for item in ranked[: self.config.fallback_item_count]:
            if len(item.content) > limit:
                item = item.model_copy(
                    update={"content": item.content[:limit] + "...", "truncated": True}
                )
            result.append(item)

        return result


def get_summarizer() -> Summarizer:
    """Build a Summarizer from settings (fallback-only without an API key)."""
    settings = get_settings()
    completion = None
    if settings.ANTHROPIC_API_KEY:
        completion = AnthropicCompletion(
            api_key=settings.ANTHROPIC_API_KEY,
            model=settings.SUMMARIZATION_MODEL,
            timeout_seconds=settings.SUMMARIZATION_TIMEOUT_SECONDS,
        )
    else:
        logger.info("ANTHROPIC_API_KEY not set, context summaries use the local fallback")

    return Summarizer(
        completion=completion,
        config=get_engine_config(),
        timeout_seconds=settings.SUMMARIZATION_TIMEOUT_SECONDS,
        temperature=settings.SUMMARIZATION_TEMPERATURE,
        max_output_tokens=settings.SUMMARIZATION_MAX_OUTPUT_TOKENS,
    )
