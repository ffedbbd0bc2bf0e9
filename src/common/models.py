"""
Data Model
==========

Plain data types shared by storage, the classifier cache, the decision
policy and the recomputer. Everything handed to readers of the cache is
frozen so that a published snapshot cannot change underneath them.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from types import MappingProxyType
from typing import Mapping, Sequence

import numpy as np

DEFAULT_THRESHOLD = 0.4
UNKNOWN_LABEL = "unknown"

SOURCE_LOCAL = "local"
SOURCE_FALLBACK = "fallback"
SOURCE_ERROR = "error"


@dataclass(frozen=True)
class Category:
    id: int
    name: str
    threshold: float | None = None
    description: str | None = None


@dataclass(frozen=True)
class ExampleVector:
    """A computed example: its text and its embedding."""

    text: str
    vector: np.ndarray = field(repr=False, compare=False)


@dataclass(frozen=True)
class PendingExample:
    """An example still waiting for its embedding."""

    id: int
    category_id: int
    text: str


EmbeddingSnapshot = Mapping[str, Sequence[ExampleVector]]


def freeze_snapshot(embeddings: Mapping[str, Sequence[ExampleVector]]) -> EmbeddingSnapshot:
    """Return a read-only copy of ``embeddings`` preserving key order."""
    return MappingProxyType({name: tuple(items) for name, items in embeddings.items()})


@dataclass(frozen=True)
class Match:
    label: str | None
    score: float


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )


@dataclass(frozen=True)
class EmbeddingResult:
    vector: list[float]
    usage_tokens: int = 0


@dataclass(frozen=True)
class FallbackResult:
    """
    Outcome of a fallback call that reached a model.

    ``label`` is ``None`` when the model answered but the answer did not name a
    known category; ``usage`` still records what the call consumed.
    """

    label: str | None
    confidence: float
    usage: TokenUsage = TokenUsage()
    model: str = ""


@dataclass(frozen=True)
class Consumption:
    input_tokens: int
    output_tokens: int
    embedding_cost: float
    fallback_cost: float

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def total_cost(self) -> float:
        return self.embedding_cost + self.fallback_cost

    def to_dict(self) -> dict:
        return {
            "tokens": {
                "input": self.input_tokens,
                "output": self.output_tokens,
                "total": self.total_tokens,
            },
            "cost": {
                "embeddings": self.embedding_cost,
                "fallback": self.fallback_cost,
                "total": self.total_cost,
            },
        }


@dataclass(frozen=True)
class ClassificationResult:
    prompt: str
    label: str
    score: float
    source: str
    consumption: Consumption | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        data = {
            "prompt": self.prompt,
            "label": self.label,
            "score": self.score,
            "source": self.source,
            "consumption": self.consumption.to_dict() if self.consumption else None,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class RecomputeStats:
    total_processed: int = 0
    success: int = 0
    failed: int = 0
    total_tokens: int = 0
    elapsed_seconds: float = 0.0
    incomplete: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CategoryStatus:
    id: int
    name: str
    total: int
    computed: int

    @property
    def uncomputed(self) -> int:
        return self.total - self.computed

    @property
    def completion_percentage(self) -> int:
        if self.total == 0:
            return 0
        return round(self.computed * 100 / self.total)

    @property
    def status(self) -> str:
        if self.total == 0:
            return "empty"
        if self.computed == 0:
            return "none"
        if self.computed == self.total:
            return "complete"
        return "partial"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "total": self.total,
            "computed": self.computed,
            "uncomputed": self.uncomputed,
            "completion_percentage": self.completion_percentage,
            "status": self.status,
        }


@dataclass(frozen=True)
class EmbeddingStatus:
    categories: tuple[CategoryStatus, ...]

    @property
    def total_examples(self) -> int:
        return sum(item.total for item in self.categories)

    @property
    def computed_examples(self) -> int:
        return sum(item.computed for item in self.categories)

    @property
    def uncomputed_examples(self) -> int:
        return self.total_examples - self.computed_examples

    @property
    def is_complete(self) -> bool:
        return self.total_examples > 0 and self.uncomputed_examples == 0

    def to_dict(self) -> dict:
        total = self.total_examples
        return {
            "total_examples": total,
            "computed_examples": self.computed_examples,
            "uncomputed_examples": self.uncomputed_examples,
            "completion_percentage": (
                0 if total == 0 else round(self.computed_examples * 100 / total)
            ),
            "is_complete": self.is_complete,
            "by_category": [item.to_dict() for item in self.categories],
        }
