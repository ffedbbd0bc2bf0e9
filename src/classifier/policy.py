"""
Decision Policy
===============

This module decides how a piece of text gets its label. The text is embedded
and matched against the cached examples; when the best match clears its
category's threshold the local answer is returned. Otherwise, if allowed, the
generative fallback classifier is asked to choose among the known categories.

Every result carries a `Consumption` record listing the tokens and the cost of
exactly the remote calls that were made. A failing remote call never fails
the classification: the policy degrades to the best answer it still has.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Sequence

import structlog

from common.config import Settings
from common.errors import ConfigurationError, TransientAPIError
from common.models import (
    SOURCE_ERROR,
    SOURCE_FALLBACK,
    SOURCE_LOCAL,
    UNKNOWN_LABEL,
    ClassificationResult,
    Consumption,
    FallbackResult,
    Match,
    TokenUsage,
)
from embeddings.provider import EmbeddingSource
from .cache import ClassifierCache
from .engine import find_best_match
from .provider import FallbackClassifier

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Pricing:
    """USD prices used to turn token counts into costs."""

    embedding_per_1k: float = 0.00013
    fallback_input_per_1m: float = 0.15
    fallback_output_per_1m: float = 0.60

    @classmethod
    def from_settings(cls, settings: Settings) -> Pricing:
        return cls(
            embedding_per_1k=settings.EMBEDDING_COST_PER_1K_TOKENS,
            fallback_input_per_1m=settings.FALLBACK_INPUT_COST_PER_1M_TOKENS,
            fallback_output_per_1m=settings.FALLBACK_OUTPUT_COST_PER_1M_TOKENS,
        )

    def consumption(
        self, embedding_tokens: int, fallback_usage: TokenUsage | None = None
    ) -> Consumption:
        fallback_usage = fallback_usage or TokenUsage()
        return Consumption(
            input_tokens=embedding_tokens + fallback_usage.input_tokens,
            output_tokens=fallback_usage.output_tokens,
            embedding_cost=embedding_tokens / 1000 * self.embedding_per_1k,
            fallback_cost=(
                fallback_usage.input_tokens / 1_000_000 * self.fallback_input_per_1m
                + fallback_usage.output_tokens / 1_000_000 * self.fallback_output_per_1m
            ),
        )


class DecisionPolicy:
    """
    Classifies text locally when confident and through the fallback otherwise.

    Either collaborator may be None when it is not configured; the policy
    then uses whichever path is left.
    """

    def __init__(
        self,
        cache: ClassifierCache,
        embedding_source: EmbeddingSource | None,
        fallback: FallbackClassifier | None,
        fallback_enabled: bool = True,
        pricing: Pricing | None = None,
        max_workers: int = 4,
    ):
        self.cache = cache
        self.embedding_source = embedding_source
        self.fallback = fallback
        self.fallback_enabled = fallback_enabled
        self.pricing = pricing or Pricing()
        self.max_workers = max(1, int(max_workers))

    def classify(self, text: str, use_fallback: bool = True) -> ClassificationResult:
        """
        Classify ``text``.

        Raises ``ValueError`` for blank text and ``ConfigurationError`` when
        neither an embedding source nor a usable fallback is configured.
        """
        if not text or not text.strip():
            raise ValueError("Text to classify must not be empty.")

        fallback_usable = (
            use_fallback and self.fallback_enabled and self.fallback is not None
        )
        if self.embedding_source is None and not fallback_usable:
            raise ConfigurationError(
                "No embedding source and no fallback classifier are available."
            )

        self.cache.init()
        self.cache.check_freshness()

        best = Match(label=None, score=-1.0)
        embedding_tokens: int | None = None
        snapshot = self.cache.get_embeddings()
        if snapshot and self.embedding_source is not None:
            try:
                embedded = self.embedding_source.embed(text)
            except TransientAPIError as e:
                log.warning("Embedding failed; continuing without a local match", error=str(e))
            else:
                embedding_tokens = embedded.usage_tokens
                best = find_best_match(embedded.vector, snapshot)

        threshold = self.cache.get_threshold(best.label)
        if best.label is not None and best.score >= threshold:
            log.debug(
                "Local match accepted", label=best.label, score=best.score, threshold=threshold
            )
            return ClassificationResult(
                prompt=text,
                label=best.label,
                score=best.score,
                source=SOURCE_LOCAL,
                consumption=self.pricing.consumption(embedding_tokens or 0),
            )

        if not fallback_usable:
            return ClassificationResult(
                prompt=text,
                label=best.label or UNKNOWN_LABEL,
                score=best.score,
                source=SOURCE_LOCAL,
                consumption=(
                    self.pricing.consumption(embedding_tokens)
                    if embedding_tokens is not None
                    else None
                ),
            )

        log.info(
            "Local match below threshold; using fallback",
            label=best.label,
            score=best.score,
            threshold=threshold,
        )
        answer = self._ask_fallback(text)
        consumption = None
        if embedding_tokens is not None or answer is not None:
            consumption = self.pricing.consumption(
                embedding_tokens or 0, answer.usage if answer else None
            )

        if answer is not None and answer.label is not None:
            return ClassificationResult(
                prompt=text,
                label=answer.label,
                score=answer.confidence,
                source=SOURCE_FALLBACK,
                consumption=consumption,
            )
        return ClassificationResult(
            prompt=text,
            label=best.label or UNKNOWN_LABEL,
            score=best.score,
            source=SOURCE_FALLBACK,
            consumption=consumption,
        )

    def classify_many(
        self, texts: Sequence[str], use_fallback: bool = True
    ) -> list[ClassificationResult]:
        """
        Classify several texts concurrently, keeping their order.

        Blank entries are dropped. A text that fails to classify yields a
        result with ``source="error"`` instead of failing the whole call.
        """
        prompts = [text.strip() for text in texts if text and text.strip()]
        if not prompts:
            raise ValueError("At least one non-empty text is required.")

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(prompts))) as executor:
            futures = [
                executor.submit(self.classify, prompt, use_fallback) for prompt in prompts
            ]
            results = []
            for prompt, future in zip(prompts, futures):
                try:
                    results.append(future.result())
                except Exception as e:
                    log.exception("Classification failed", prompt=prompt)
                    results.append(
                        ClassificationResult(
                            prompt=prompt,
                            label=UNKNOWN_LABEL,
                            score=0.0,
                            source=SOURCE_ERROR,
                            error=str(e),
                        )
                    )
        return results

    def _ask_fallback(self, text: str) -> FallbackResult | None:
        try:
            return self.fallback.classify(text, self.cache.categories())
        except TransientAPIError as e:
            log.warning("Fallback classification failed", error=str(e))
            return None
