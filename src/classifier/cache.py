"""
Classifier Cache
================

In-memory snapshot of every computed example embedding plus the per-category
thresholds, kept eventually consistent with the durable store across
independent processes.

Consistency model
-----------------
Each process owns one `ClassifierCache`. The current state lives in a single
frozen `CacheState` object; readers grab that reference without locking and
always see either the previous complete state or the next one. A reload builds
the new state off to the side and swaps it in under a short lock.

Processes coordinate through a shared freshness marker (a timestamp in the
store). A successful recomputation reloads its own cache and publishes the
load time to the marker. Every other process compares the marker against its
own load time at most once per ``check_interval`` seconds and reloads when the
marker is newer. Two processes may therefore disagree for at most
``check_interval`` plus one reload after a recomputation. Plain reloads do not
publish, otherwise processes would keep re-triggering one another.

A failed reload never clears or partially overwrites a good state: the error
is logged and the next freshness check or explicit reload tries again.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping

import structlog

from common.models import (
    DEFAULT_THRESHOLD,
    Category,
    EmbeddingSnapshot,
    ExampleVector,
    freeze_snapshot,
)
from common.storage import FreshnessMarker, Storage

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CacheState:
    embeddings: EmbeddingSnapshot = field(default_factory=lambda: MappingProxyType({}))
    thresholds: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    categories: tuple[Category, ...] = ()
    loaded_at: float = 0.0
    item_count: int = 0
    dimension: int | None = None
    initialized: bool = False


def _clamp_threshold(name: str, value: float | None, default: float) -> float:
    if value is None:
        return default
    if 0.0 <= value <= 1.0:
        return float(value)
    clamped = max(0.0, min(1.0, float(value)))
    log.warning("Threshold out of range; clamping", category=name, threshold=value, clamped=clamped)
    return clamped


class ClassifierCache:
    """
    Process-local cache of example embeddings and category thresholds.
    """

    def __init__(
        self,
        storage: Storage,
        marker: FreshnessMarker,
        check_interval: float = 10.0,
        default_threshold: float = DEFAULT_THRESHOLD,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._storage = storage
        self._marker = marker
        self._check_interval = check_interval
        self._default_threshold = default_threshold
        self._clock = clock
        self._monotonic = monotonic
        self._swap_lock = threading.Lock()
        self._gate_lock = threading.Lock()
        self._state = CacheState()
        self._last_check: float | None = None

    @property
    def state(self) -> CacheState:
        return self._state

    @property
    def default_threshold(self) -> float:
        return self._default_threshold

    def init(self) -> None:
        """Load the cache unless it has already been loaded once."""
        if not self._state.initialized:
            self.reload()

    def reload(self, publish: bool = False) -> bool:
        """
        Rebuild the state from storage and swap it in.

        With ``publish`` set, the new load time is written to the freshness
        marker so other processes pick the change up. Returns False (and keeps
        the previous state) when anything fails.
        """
        log.info("Reloading classifier cache")
        # Stamped before reading so a publish racing the reads still looks newer.
        started = self._clock()
        try:
            rows = self._storage.get_computed_examples()
            categories = self._storage.get_categories()
            state = self._build_state(rows, categories, started)
        except Exception:
            log.exception("Classifier cache reload failed; keeping previous state")
            return False

        with self._swap_lock:
            self._state = state
            self._last_check = self._monotonic()

        log.info(
            "Classifier cache loaded",
            categories=len(state.embeddings),
            items=state.item_count,
            dimension=state.dimension,
        )

        if publish:
            try:
                self._marker.write(state.loaded_at)
            except Exception:
                log.exception("Failed to publish freshness marker")
        return True

    def check_freshness(self) -> bool:
        """
        Reload if another process published a newer snapshot.

        Cheap on the hot path: returns immediately, without I/O, until
        ``check_interval`` seconds have passed since the last check. Returns
        True only when a reload happened.
        """
        with self._gate_lock:
            now = self._monotonic()
            if self._last_check is not None and now - self._last_check < self._check_interval:
                return False
            self._last_check = now

        try:
            published = self._marker.read()
        except Exception as e:
            log.warning("Freshness check failed", error=str(e))
            return False

        if published is None or published <= self._state.loaded_at:
            return False

        log.info(
            "Detected stale classifier cache",
            published_at=published,
            loaded_at=self._state.loaded_at,
        )
        return self.reload()

    def get_embeddings(self) -> EmbeddingSnapshot:
        return self._state.embeddings

    def get_threshold(self, category: str | None) -> float:
        if category is None:
            return self._default_threshold
        return self._state.thresholds.get(category, self._default_threshold)

    def categories(self) -> list[Category]:
        """Every known category, including those without computed examples."""
        return list(self._state.categories)

    def is_ready(self) -> bool:
        state = self._state
        return state.initialized and len(state.embeddings) > 0

    def clear(self) -> None:
        """Administrative reset back to the uninitialized state."""
        with self._swap_lock:
            self._state = CacheState()
            self._last_check = None
        log.info("Classifier cache cleared")

    def stats(self) -> dict:
        state = self._state
        return {
            "initialized": state.initialized,
            "ready": state.initialized and len(state.embeddings) > 0,
            "categories": len(state.categories),
            "categories_with_vectors": len(state.embeddings),
            "items": state.item_count,
            "dimension": state.dimension,
            "loaded_at": state.loaded_at,
        }

    def _build_state(self, rows, categories, loaded_at: float) -> CacheState:
        """
        Build a new state, dropping examples whose dimension disagrees with the
        first vector seen so that one snapshot has a single dimensionality.
        """
        dimension = None
        embeddings: dict[str, list[ExampleVector]] = {}
        for name, examples in rows.items():
            kept = []
            for example in examples:
                size = int(example.vector.shape[0])
                if size == 0:
                    continue
                if dimension is None:
                    dimension = size
                if size != dimension:
                    log.warning(
                        "Dropping example with mismatched dimension",
                        category=name,
                        expected=dimension,
                        actual=size,
                    )
                    continue
                kept.append(example)
            if kept:
                embeddings[name] = kept

        thresholds = {
            category.name: _clamp_threshold(
                category.name, category.threshold, self._default_threshold
            )
            for category in categories
        }
        return CacheState(
            embeddings=freeze_snapshot(embeddings),
            thresholds=MappingProxyType(thresholds),
            categories=tuple(categories),
            loaded_at=loaded_at,
            item_count=sum(len(items) for items in embeddings.values()),
            dimension=dimension,
            initialized=True,
        )
