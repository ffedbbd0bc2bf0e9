"""
Fallback Classification Module
==============================

This module handles classification with a generative model for requests the
local embedding match is not confident about. It provides a parsing layer
that validates the model's reply against the known categories and a provider
class built on the shared OpenAI-compatible helpers.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

import openai
import structlog

from common.config import Settings
from common.errors import ConfigurationError, TransientAPIError
from common.llm import OpenAIMixin, usage_from_response
from common.models import Category, FallbackResult

log = structlog.get_logger(__name__)

DEFAULT_CONFIDENCE = 0.5

FALLBACK_PROMPT = """
You are a request classifier. Classify the user request into exactly one of
the categories listed below.

Categories:
{categories}

Reply only with a single JSON object, without markdown or explanations:
{{"label": "<category name>", "confidence": <number between 0.0 and 1.0>}}

The label must be one of the category names above, spelled exactly as listed.
""".strip()


@dataclass(frozen=True)
class ParsedLabel:
    label: str | None
    confidence: float


def _format_categories(categories: Sequence[Category]) -> str:
    lines = []
    for category in categories:
        if category.description:
            lines.append(f"- {category.name}: {category.description}")
        else:
            lines.append(f"- {category.name}")
    return "\n".join(lines)


def _first_choice_content(response) -> str:
    """Message text of the first choice, or "" when the reply has none."""
    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    return getattr(message, "content", None) or ""


def _strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown code fence such as ```json ... ```."""
    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped
    lines = stripped.splitlines()[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


def _extract_json(text: str) -> dict:
    """Parse JSON from raw model output, trimming surrounding text if needed."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end == -1 or end <= start:
            raise
        return json.loads(text[start : end + 1])


def _coerce_confidence(value) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if confidence != confidence:  # NaN
        return DEFAULT_CONFIDENCE
    return max(0.0, min(1.0, confidence))


def parse_fallback_response(text: str, valid_labels: Sequence[str]) -> ParsedLabel:
    """
    Parse the fallback model's reply.

    The reply should be ``{"label": ..., "confidence": ...}``. When it is not
    JSON, the first line is accepted as a bare label. A label that does not
    name one of ``valid_labels`` is reported as ``None``.
    """
    raw = _strip_code_fence(text or "")
    if not raw:
        return ParsedLabel(label=None, confidence=0.0)

    valid = set(valid_labels)
    try:
        data = _extract_json(raw)
    except json.JSONDecodeError:
        first_line = raw.splitlines()[0].strip().strip("\"'")
        if first_line in valid:
            return ParsedLabel(label=first_line, confidence=DEFAULT_CONFIDENCE)
        return ParsedLabel(label=None, confidence=0.0)

    if not isinstance(data, dict):
        return ParsedLabel(label=None, confidence=0.0)

    label = data.get("label")
    label = str(label).strip() if label is not None else ""
    if label not in valid:
        return ParsedLabel(label=None, confidence=0.0)
    return ParsedLabel(label=label, confidence=_coerce_confidence(data.get("confidence")))


class FallbackClassifier(ABC):
    """Abstract base class for generative fallback classifiers."""

    @abstractmethod
    def classify(self, text: str, categories: Sequence[Category]) -> FallbackResult | None:
        """
        Return the model's best label for ``text``.

        Returns None when there is nothing to classify against and raises
        ``TransientAPIError`` when no model call succeeded.
        """
        raise NotImplementedError


class OpenAIFallbackClassifier(OpenAIMixin, FallbackClassifier):
    """
    Fallback classifier that uses OpenAI-compatible chat completions.

    Models in ``FALLBACK_MODELS`` are tried in order until one returns a
    label naming a known category.
    """

    def __init__(self, settings: Settings):
        if settings.LLM_PROVIDER == "openai" and not settings.OPENAI_API_KEY:
            raise ConfigurationError("OPENAI_API_KEY is required for the fallback classifier.")
        self.settings = settings

    def classify(self, text: str, categories: Sequence[Category]) -> FallbackResult | None:
        if not categories:
            log.warning("No categories available; skipping fallback classification")
            return None

        messages = [
            {
                "role": "system",
                "content": FALLBACK_PROMPT.format(categories=_format_categories(categories)),
            },
            {"role": "user", "content": text},
        ]
        valid_labels = [category.name for category in categories]

        answered: FallbackResult | None = None
        for model in self.settings.FALLBACK_MODELS:
            params = {
                "model": model,
                "messages": messages,
                "temperature": 0,
                "timeout": self.settings.REQUEST_TIMEOUT,
            }
            try:
                response = self._create_completion(**params)
            except openai.APIError as e:
                log.warning("Fallback model failed", model=model, error=str(e))
                continue

            usage = usage_from_response(response)
            if answered is not None:
                usage = usage + answered.usage
            content = _first_choice_content(response)
            parsed = parse_fallback_response(content, valid_labels)
            answered = FallbackResult(
                label=parsed.label,
                confidence=parsed.confidence,
                usage=usage,
                model=model,
            )
            if parsed.label is not None:
                log.info(
                    "Fallback classification succeeded",
                    model=model,
                    label=parsed.label,
                    confidence=parsed.confidence,
                )
                return answered
            log.warning("Fallback model returned an unknown label", model=model)

        if answered is None:
            raise TransientAPIError("All fallback models failed")
        return answered
