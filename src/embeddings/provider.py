"""
Embedding Providers
===================

This module defines the interface for turning text into an embedding vector
and an implementation backed by the OpenAI-compatible embeddings API (OpenAI
itself or Ollama, depending on ``LLM_PROVIDER``).

The `EmbeddingSource` abstract base class keeps the classifier and the
recomputer independent of the concrete provider; tests substitute small
fakes for it.
"""

import threading
from abc import ABC, abstractmethod

import openai
import structlog

from common.config import Settings
from common.errors import ConfigurationError, TransientAPIError
from common.llm import OpenAIMixin, usage_from_response
from common.models import EmbeddingResult

log = structlog.get_logger(__name__)


class EmbeddingSource(ABC):
    """Abstract base class for embedding providers."""

    @abstractmethod
    def embed(self, text: str) -> EmbeddingResult:
        """
        Embed ``text`` and return the vector with its token usage.

        Raises ``TransientAPIError`` when the provider cannot be reached.
        """
        raise NotImplementedError


class OpenAIEmbeddingSource(OpenAIMixin, EmbeddingSource):
    """An embedding source that uses the OpenAI and Ollama APIs."""

    def __init__(self, settings: Settings):
        if settings.LLM_PROVIDER == "openai" and not settings.OPENAI_API_KEY:
            raise ConfigurationError("OPENAI_API_KEY is required for the embedding source.")
        self.settings = settings
        self._stats = {"requests": 0, "api_errors": 0, "tokens": 0}
        self._stats_lock = threading.Lock()

    def get_stats(self) -> dict:
        """Return a snapshot of request stats for this provider instance."""
        with self._stats_lock:
            return dict(self._stats)

    def _count(self, key: str, amount: int = 1) -> None:
        with self._stats_lock:
            self._stats[key] += amount

    def embed(self, text: str) -> EmbeddingResult:
        self._count("requests")
        try:
            response = self._create_embedding(
                model=self.settings.EMBEDDING_MODEL,
                input=text,
                timeout=self.settings.REQUEST_TIMEOUT,
            )
        except openai.APIError as e:
            self._count("api_errors")
            log.warning(
                "Embedding request failed after all retries",
                model=self.settings.EMBEDDING_MODEL,
                error=str(e),
            )
            raise TransientAPIError(f"Embedding request failed: {e}") from e

        if not response.data:
            self._count("api_errors")
            raise TransientAPIError("Embedding response contained no vectors.")

        vector = list(response.data[0].embedding)
        tokens = usage_from_response(response).total_tokens
        self._count("tokens", tokens)
        return EmbeddingResult(vector=vector, usage_tokens=tokens)
