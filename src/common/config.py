"""
Configuration module for the embedding classifier.

This module centralizes the loading and validation of all configuration
parameters from environment variables. It provides a single `Settings`
class that acts as a container for all configurable values, ensuring
that they are defined in one place and can be easily imported and used
throughout the application.
"""

from __future__ import annotations

import os
from typing import Literal

import openai

from .errors import ConfigurationError

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class Settings:
    """
    A container for all configuration settings, loaded from environment variables.

    This class centralizes configuration, providing default values for optional
    settings and raising errors for invalid values. Credentials are optional
    here: the providers that need them raise ``ConfigurationError`` themselves
    so the classifier can degrade to whichever path remains available.
    """

    # --- LLM Provider Configuration ---
    LLM_PROVIDER: Literal["openai", "ollama"]
    OLLAMA_BASE_URL: str | None
    OPENAI_API_KEY: str | None

    # --- Model Selection ---
    EMBEDDING_MODEL: str
    FALLBACK_MODELS: list[str]
    FALLBACK_ENABLED: bool

    # --- Storage ---
    DATABASE_PATH: str

    # --- Classification ---
    DEFAULT_THRESHOLD: float
    FRESHNESS_CHECK_INTERVAL: float
    CLASSIFY_WORKERS: int

    # --- Recomputation ---
    RECOMPUTE_BATCH_SIZE: int
    RECOMPUTE_MAX_DURATION: float
    RECOMPUTE_MAX_EXAMPLES: int | None
    POLL_INTERVAL: int

    # --- Network ---
    MAX_RETRIES: int
    MAX_RETRY_BACKOFF_SECONDS: int
    REQUEST_TIMEOUT: int

    # --- Pricing (USD) ---
    EMBEDDING_COST_PER_1K_TOKENS: float
    FALLBACK_INPUT_COST_PER_1M_TOKENS: float
    FALLBACK_OUTPUT_COST_PER_1M_TOKENS: float

    # --- Logging ---
    LOG_LEVEL: str
    LOG_FORMAT: Literal["console", "json"]

    def __init__(self):
        """
        Loads settings from environment variables and performs validation.
        """
        # --- LLM Provider Configuration ---
        self.LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openai").strip().lower()
        if self.LLM_PROVIDER not in ("openai", "ollama"):
            raise ConfigurationError("LLM_PROVIDER must be 'openai' or 'ollama'")

        if self.LLM_PROVIDER == "ollama":
            self.OLLAMA_BASE_URL = os.getenv(
                "OLLAMA_BASE_URL", "http://localhost:11434/v1/"
            )
            self.OPENAI_API_KEY = None  # Not used for Ollama
            self.EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "nomic-embed-text")
            default_fallback = "llama3.1:8b"
        else:  # openai
            self.OLLAMA_BASE_URL = None
            self.OPENAI_API_KEY = os.getenv("OPENAI_API_KEY") or None
            self.EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-large")
            default_fallback = "gpt-4o-mini"

        self.FALLBACK_MODELS = self._get_list("FALLBACK_MODELS", [default_fallback])
        self.FALLBACK_ENABLED = self._get_bool("FALLBACK_ENABLED", True)

        # --- Storage ---
        self.DATABASE_PATH = os.getenv("DATABASE_PATH", "data/classifier.db")

        # --- Classification ---
        self.DEFAULT_THRESHOLD = float(os.getenv("DEFAULT_THRESHOLD", 0.4))
        if not 0.0 <= self.DEFAULT_THRESHOLD <= 1.0:
            raise ConfigurationError("DEFAULT_THRESHOLD must be between 0 and 1")
        self.FRESHNESS_CHECK_INTERVAL = max(
            0.0, float(os.getenv("FRESHNESS_CHECK_INTERVAL", 10))
        )
        self.CLASSIFY_WORKERS = max(1, int(os.getenv("CLASSIFY_WORKERS", 4)))

        # --- Recomputation ---
        self.RECOMPUTE_BATCH_SIZE = max(1, int(os.getenv("RECOMPUTE_BATCH_SIZE", 5)))
        self.RECOMPUTE_MAX_DURATION = float(os.getenv("RECOMPUTE_MAX_DURATION", 60))
        max_examples = os.getenv("RECOMPUTE_MAX_EXAMPLES")
        self.RECOMPUTE_MAX_EXAMPLES = int(max_examples) if max_examples else None
        self.POLL_INTERVAL = int(os.getenv("POLL_INTERVAL", 60))

        # --- Network ---
        self.MAX_RETRIES = int(os.getenv("MAX_RETRIES", 3))
        self.MAX_RETRY_BACKOFF_SECONDS = int(os.getenv("MAX_RETRY_BACKOFF_SECONDS", 30))
        self.REQUEST_TIMEOUT = int(os.getenv("REQUEST_TIMEOUT", 120))

        # --- Pricing (USD) ---
        self.EMBEDDING_COST_PER_1K_TOKENS = float(
            os.getenv("EMBEDDING_COST_PER_1K_TOKENS", 0.00013)
        )
        self.FALLBACK_INPUT_COST_PER_1M_TOKENS = float(
            os.getenv("FALLBACK_INPUT_COST_PER_1M_TOKENS", 0.15)
        )
        self.FALLBACK_OUTPUT_COST_PER_1M_TOKENS = float(
            os.getenv("FALLBACK_OUTPUT_COST_PER_1M_TOKENS", 0.60)
        )

        # --- Logging ---
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_FORMAT = os.getenv("LOG_FORMAT", "console").lower()
        if self.LOG_FORMAT not in ("console", "json"):
            raise ConfigurationError("LOG_FORMAT must be 'console' or 'json'")

    def _get_list(self, var_name: str, default: list[str]) -> list[str]:
        """
        Reads a comma-separated list, dropping blanks and duplicates.
        """
        raw = os.getenv(var_name)
        if raw is None:
            return list(default)
        values = []
        for item in raw.split(","):
            item = item.strip()
            if item and item not in values:
                values.append(item)
        if not values:
            raise ConfigurationError(f"{var_name} must name at least one value.")
        return values

    def _get_bool(self, var_name: str, default: bool) -> bool:
        raw = os.getenv(var_name)
        if raw is None:
            return default
        value = raw.strip().lower()
        if value in _TRUE_VALUES:
            return True
        if value in _FALSE_VALUES:
            return False
        raise ConfigurationError(f"{var_name} must be a boolean, got '{raw}'.")


def setup_libraries(settings: Settings) -> None:
    """
    Configures third-party libraries based on the application settings.
    """
    if settings.LLM_PROVIDER == "ollama":
        openai.base_url = settings.OLLAMA_BASE_URL
        openai.api_key = "dummy"
    elif settings.OPENAI_API_KEY:
        openai.api_key = settings.OPENAI_API_KEY
