"""
Embedding Recomputer
====================

This module defines the `Recomputer` class, which computes embeddings for
every example that does not have one yet and stores them.

Categories are visited in name order and their pending examples are embedded
in batches on a thread pool. Each example is embedded and persisted on its
own, so one failure only costs that example; it stays pending and the next
run picks it up. Work is bounded by a wall-clock budget and an optional
example budget, both checked between batches: a batch that has started
always runs to completion.

Whatever happens, the classifier cache is reloaded at the end and the reload
is published through the freshness marker so that other processes notice the
new vectors.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable

import structlog

from classifier.cache import ClassifierCache
from common.models import PendingExample, RecomputeStats
from common.storage import Storage
from common.utils import Stopwatch
from .provider import EmbeddingSource

log = structlog.get_logger(__name__)

DEFAULT_BATCH_SIZE = 5
DEFAULT_MAX_DURATION = 60.0


class Recomputer:
    """
    Computes and stores embeddings for uncomputed examples.
    """

    def __init__(
        self,
        storage: Storage,
        embedding_source: EmbeddingSource,
        cache: ClassifierCache,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_duration: float | None = DEFAULT_MAX_DURATION,
        max_examples: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.storage = storage
        self.embedding_source = embedding_source
        self.cache = cache
        self.batch_size = max(1, int(batch_size))
        self.max_duration = max_duration
        self.max_examples = max_examples
        self._clock = clock

    def recompute(
        self,
        max_examples: int | None = None,
        max_duration_seconds: float | None = None,
    ) -> RecomputeStats:
        """
        Embed pending examples until none are left or a budget runs out.

        Arguments left as None fall back to the limits given at construction.
        Running it again right after a complete run processes nothing.
        """
        if max_examples is None:
            max_examples = self.max_examples
        if max_duration_seconds is None:
            max_duration_seconds = self.max_duration

        stopwatch = Stopwatch(clock=self._clock)
        stats = RecomputeStats()
        log.info(
            "Starting recomputation",
            max_examples=max_examples,
            max_duration_seconds=max_duration_seconds,
            batch_size=self.batch_size,
        )

        try:
            self._run(stats, stopwatch, max_examples, max_duration_seconds)
        finally:
            # Reload even after a failure so the cache reflects every vector
            # stored before it.
            self.cache.reload(publish=True)
            stats.elapsed_seconds = round(stopwatch.elapsed(), 2)

        log.info("Finished recomputation", **stats.to_dict())
        self._log_source_stats()
        return stats

    def _log_source_stats(self) -> None:
        """Log embedding source stats if the source exposes them."""
        if not hasattr(self.embedding_source, "get_stats"):
            return
        source_stats = self.embedding_source.get_stats()
        if not source_stats or not source_stats.get("requests"):
            return
        log.info("Embedding source stats", **source_stats)

    def _run(
        self,
        stats: RecomputeStats,
        stopwatch: Stopwatch,
        max_examples: int | None,
        max_duration_seconds: float | None,
    ) -> None:
        for category in self.storage.get_categories():
            pending = self.storage.get_uncomputed_examples(category.id)
            if not pending:
                continue

            log.info(
                "Found uncomputed examples",
                category=category.name,
                count=len(pending),
            )
            for start in range(0, len(pending), self.batch_size):
                if stopwatch.exceeded(max_duration_seconds):
                    log.warning(
                        "Recomputation time budget exhausted",
                        elapsed=round(stopwatch.elapsed(), 2),
                        max_duration_seconds=max_duration_seconds,
                    )
                    stats.incomplete = True
                    return
                if max_examples is not None and stats.total_processed >= max_examples:
                    log.info("Recomputation example budget reached", max_examples=max_examples)
                    stats.incomplete = True
                    return

                batch = pending[start : start + self.batch_size]
                if max_examples is not None:
                    batch = batch[: max_examples - stats.total_processed]
                self._process_batch(batch, stats)

    def _process_batch(self, batch: list[PendingExample], stats: RecomputeStats) -> None:
        """Embed and store one batch concurrently; returns once every item is done."""
        with ThreadPoolExecutor(max_workers=len(batch)) as executor:
            future_to_example = {
                executor.submit(self._compute_one, example): example for example in batch
            }
            for future in as_completed(future_to_example):
                example = future_to_example[future]
                stats.total_processed += 1
                try:
                    tokens = future.result()
                except Exception as e:
                    log.warning(
                        "Failed to compute embedding",
                        example_id=example.id,
                        category_id=example.category_id,
                        error=str(e),
                    )
                    stats.failed += 1
                    continue
                stats.success += 1
                stats.total_tokens += tokens

    def _compute_one(self, example: PendingExample) -> int:
        result = self.embedding_source.embed(example.text)
        self.storage.set_example_vector(example.id, result.vector)
        return result.usage_tokens
