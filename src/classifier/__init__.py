"""
Classification domain package.

This package contains:

- the match engine (cosine similarity and nearest-example search)
- the process-local classifier cache and its freshness checks
- the fallback classifier (prompt + parsing + LLM calls)
- the decision policy that chooses between the two
- the classify command line entrypoint
"""

from .cache import ClassifierCache
from .engine import cosine_similarity, find_best_match
from .policy import DecisionPolicy, Pricing
from .provider import (
    FallbackClassifier,
    OpenAIFallbackClassifier,
    parse_fallback_response,
)

__all__ = [
    "ClassifierCache",
    "DecisionPolicy",
    "FallbackClassifier",
    "OpenAIFallbackClassifier",
    "Pricing",
    "cosine_similarity",
    "find_best_match",
    "parse_fallback_response",
]
