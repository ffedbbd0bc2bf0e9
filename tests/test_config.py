import os

import pytest

from common.config import Settings, setup_libraries
from common.errors import ConfigurationError


def test_settings_default_values(mocker):
    """
    Test that the Settings class loads default values correctly when no
    environment variables are set.
    """
    mocker.patch.dict(os.environ, {"OPENAI_API_KEY": "test_api_key"}, clear=True)

    settings = Settings()

    assert settings.LLM_PROVIDER == "openai"
    assert settings.OPENAI_API_KEY == "test_api_key"
    assert settings.EMBEDDING_MODEL == "text-embedding-3-large"
    assert settings.FALLBACK_MODELS == ["gpt-4o-mini"]
    assert settings.FALLBACK_ENABLED is True
    assert settings.DEFAULT_THRESHOLD == 0.4
    assert settings.FRESHNESS_CHECK_INTERVAL == 10
    assert settings.RECOMPUTE_BATCH_SIZE == 5
    assert settings.RECOMPUTE_MAX_DURATION == 60
    assert settings.RECOMPUTE_MAX_EXAMPLES is None
    assert settings.POLL_INTERVAL == 60
    assert settings.MAX_RETRIES == 3
    assert settings.LOG_FORMAT == "console"


def test_settings_from_environment_variables(mocker):
    """
    Test that the Settings class correctly loads values from environment variables.
    """
    mocker.patch.dict(
        os.environ,
        {
            "OPENAI_API_KEY": "env_api_key",
            "EMBEDDING_MODEL": "text-embedding-3-small",
            "FALLBACK_MODELS": "model-a, model-b,,model-a",
            "FALLBACK_ENABLED": "no",
            "DATABASE_PATH": "/tmp/test.db",
            "DEFAULT_THRESHOLD": "0.65",
            "FRESHNESS_CHECK_INTERVAL": "2.5",
            "RECOMPUTE_BATCH_SIZE": "0",
            "RECOMPUTE_MAX_EXAMPLES": "100",
            "LOG_LEVEL": "debug",
            "LOG_FORMAT": "JSON",
        },
        clear=True,
    )

    settings = Settings()

    assert settings.EMBEDDING_MODEL == "text-embedding-3-small"
    assert settings.FALLBACK_MODELS == ["model-a", "model-b"]
    assert settings.FALLBACK_ENABLED is False
    assert settings.DATABASE_PATH == "/tmp/test.db"
    assert settings.DEFAULT_THRESHOLD == 0.65
    assert settings.FRESHNESS_CHECK_INTERVAL == 2.5
    assert settings.RECOMPUTE_BATCH_SIZE == 1
    assert settings.RECOMPUTE_MAX_EXAMPLES == 100
    assert settings.LOG_LEVEL == "DEBUG"
    assert settings.LOG_FORMAT == "json"


def test_openai_key_is_optional(mocker):
    mocker.patch.dict(os.environ, {}, clear=True)

    settings = Settings()

    assert settings.OPENAI_API_KEY is None


def test_ollama_configuration(mocker):
    """
    Test that the settings for the Ollama provider are configured correctly.
    """
    mocker.patch.dict(os.environ, {"LLM_PROVIDER": "ollama"}, clear=True)
    mocker.patch("openai.base_url", None)
    mocker.patch("openai.api_key", None)

    settings = Settings()
    setup_libraries(settings)  # This should configure the openai client

    import openai

    assert settings.LLM_PROVIDER == "ollama"
    assert settings.EMBEDDING_MODEL == "nomic-embed-text"
    assert settings.FALLBACK_MODELS == ["llama3.1:8b"]
    assert openai.base_url == "http://localhost:11434/v1/"
    assert openai.api_key == "dummy"


def test_invalid_llm_provider(mocker):
    """
    Test that an invalid LLM_PROVIDER value raises a ValueError.
    """
    mocker.patch.dict(os.environ, {"LLM_PROVIDER": "invalid_provider"}, clear=True)

    with pytest.raises(ValueError, match="LLM_PROVIDER must be 'openai' or 'ollama'"):
        Settings()


@pytest.mark.parametrize(
    "name, value",
    [
        ("DEFAULT_THRESHOLD", "1.5"),
        ("LOG_FORMAT", "xml"),
        ("FALLBACK_ENABLED", "maybe"),
        ("FALLBACK_MODELS", " , "),
    ],
)
def test_invalid_values_raise_configuration_error(mocker, name, value):
    mocker.patch.dict(os.environ, {name: value}, clear=True)

    with pytest.raises(ConfigurationError):
        Settings()
