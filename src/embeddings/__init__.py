"""
Embedding domain package.

This package contains:

- the embedding source (OpenAI-compatible embeddings API)
- the recomputer that fills in missing example embeddings
- the recompute command line entrypoint and daemon
"""

from .provider import EmbeddingSource, OpenAIEmbeddingSource

__all__ = ["EmbeddingSource", "OpenAIEmbeddingSource"]
