"""
Shared LLM helpers.

This module centralizes the OpenAI-compatible API calls so the embedding
source and the fallback classifier reuse the same retry behavior and the
same token accounting.
"""

import openai

from .models import TokenUsage
from .utils import retry

RETRYABLE_OPENAI_EXCEPTIONS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)


class OpenAIMixin:
    """
    Mixin providing retried OpenAI-compatible chat and embedding calls.

    The mixin expects ``self.settings`` to expose ``MAX_RETRIES`` and
    ``MAX_RETRY_BACKOFF_SECONDS`` for the retry decorator.
    """

    @retry(retryable_exceptions=RETRYABLE_OPENAI_EXCEPTIONS)
    def _create_completion(self, **kwargs):
        """Call the OpenAI-compatible chat completion API with retries."""
        return openai.chat.completions.create(**kwargs)

    @retry(retryable_exceptions=RETRYABLE_OPENAI_EXCEPTIONS)
    def _create_embedding(self, **kwargs):
        """Call the OpenAI-compatible embeddings API with retries."""
        return openai.embeddings.create(**kwargs)


def usage_from_response(response) -> TokenUsage:
    """
    Extract token usage from an API response.

    Embedding responses only report ``prompt_tokens``/``total_tokens``; chat
    responses also report ``completion_tokens``. Missing fields count as zero.
    """
    usage = getattr(response, "usage", None)
    if usage is None:
        return TokenUsage()
    input_tokens = getattr(usage, "prompt_tokens", None)
    output_tokens = getattr(usage, "completion_tokens", None) or 0
    if not isinstance(input_tokens, int):
        total = getattr(usage, "total_tokens", None)
        input_tokens = total if isinstance(total, int) else 0
    if not isinstance(output_tokens, int):
        output_tokens = 0
    return TokenUsage(input_tokens=input_tokens, output_tokens=output_tokens)
