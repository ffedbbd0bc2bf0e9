"""
Classifier Service
==================

Wires storage, the classifier cache, the model providers, the decision policy
and the recomputer together. The service owns the single `ClassifierCache`
of its process and hands it to both the policy and the recomputer, so a
recomputation is immediately visible to classification in the same process
and, through the freshness marker, to every other process.

A provider that cannot be configured (for example, no API key) is wired as
None and the remaining path keeps working.
"""

from __future__ import annotations

from typing import Iterable, Sequence

import structlog

from common.config import Settings
from common.errors import ConfigurationError
from common.models import ClassificationResult, EmbeddingStatus, RecomputeStats
from common.storage import SettingsFreshnessMarker, Storage
from embeddings.provider import EmbeddingSource, OpenAIEmbeddingSource
from embeddings.recomputer import Recomputer
from .cache import ClassifierCache
from .policy import DecisionPolicy, Pricing
from .provider import FallbackClassifier, OpenAIFallbackClassifier

log = structlog.get_logger(__name__)


class ClassifierService:
    """Entry point for classification and embedding administration."""

    def __init__(
        self,
        storage: Storage,
        cache: ClassifierCache,
        policy: DecisionPolicy,
        recomputer: Recomputer | None,
    ):
        self.storage = storage
        self.cache = cache
        self.policy = policy
        self.recomputer = recomputer

    @classmethod
    def from_settings(cls, settings: Settings) -> ClassifierService:
        storage = Storage(settings.DATABASE_PATH)
        storage.initialize()
        cache = ClassifierCache(
            storage,
            SettingsFreshnessMarker(storage),
            check_interval=settings.FRESHNESS_CHECK_INTERVAL,
            default_threshold=settings.DEFAULT_THRESHOLD,
        )

        embedding_source: EmbeddingSource | None
        try:
            embedding_source = OpenAIEmbeddingSource(settings)
        except ConfigurationError as e:
            log.warning("Embedding source unavailable", error=str(e))
            embedding_source = None

        fallback: FallbackClassifier | None = None
        if settings.FALLBACK_ENABLED:
            try:
                fallback = OpenAIFallbackClassifier(settings)
            except ConfigurationError as e:
                log.warning("Fallback classifier unavailable", error=str(e))

        policy = DecisionPolicy(
            cache,
            embedding_source,
            fallback,
            fallback_enabled=settings.FALLBACK_ENABLED,
            pricing=Pricing.from_settings(settings),
            max_workers=settings.CLASSIFY_WORKERS,
        )
        recomputer = None
        if embedding_source is not None:
            recomputer = Recomputer(
                storage,
                embedding_source,
                cache,
                batch_size=settings.RECOMPUTE_BATCH_SIZE,
                max_duration=settings.RECOMPUTE_MAX_DURATION,
                max_examples=settings.RECOMPUTE_MAX_EXAMPLES,
            )
        return cls(storage, cache, policy, recomputer)

    def classify(self, text: str, use_fallback: bool = True) -> ClassificationResult:
        return self.policy.classify(text, use_fallback=use_fallback)

    def classify_many(
        self, texts: Sequence[str], use_fallback: bool = True
    ) -> list[ClassificationResult]:
        return self.policy.classify_many(texts, use_fallback=use_fallback)

    def recompute(
        self,
        max_examples: int | None = None,
        max_duration_seconds: float | None = None,
    ) -> RecomputeStats:
        if self.recomputer is None:
            raise ConfigurationError("Recomputation requires a configured embedding source.")
        return self.recomputer.recompute(
            max_examples=max_examples, max_duration_seconds=max_duration_seconds
        )

    def status(self) -> EmbeddingStatus:
        return self.storage.get_status()

    def import_labels(self, labels: Iterable[dict]) -> dict[str, int]:
        """Import label definitions; new examples stay pending until recomputed."""
        return self.storage.import_labels(labels)
