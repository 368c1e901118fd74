"""LangChain chat model factory for the collection classifier.

Supported providers:
- OpenAI (OPENAI_API_KEY, or the env var named in the classifier config)
- Ollama (local models via OLLAMA_HOST or an explicit base URL)
- Anthropic (ANTHROPIC_API_KEY; needs the ``anthropic`` extra)

Provider packages are imported lazily so that a missing optional extra only
disables the classifier instead of breaking import of the whole package.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

    from media_resolver.config import ClassifierConfig

log = logging.getLogger(__name__)


class LangChainProviderError(Exception):
    """Raised when a chat model cannot be created."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


PROVIDER_DEFAULTS: dict[str, str | None] = {
    "ollama": None,  # no sensible default, must be configured
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-haiku-latest",
}

PROVIDER_KEY_ENV: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


def get_default_model(provider_name: str) -> str | None:
    return PROVIDER_DEFAULTS.get(provider_name.lower())


def create_chat_model(provider_name: str, model: str, **kwargs: Any) -> BaseChatModel:
    """Create a LangChain chat model.

    Args:
        provider_name: ollama, openai or anthropic
        model: Provider-specific model name
        **kwargs: api_key, base_url, temperature, max_tokens, timeout

    Raises:
        LangChainProviderError: Unknown provider, missing package or credentials.
    """
    provider = provider_name.lower()
    factories = {
        "ollama": _create_ollama_model,
        "openai": _create_openai_model,
        "anthropic": _create_anthropic_model,
    }
    if provider not in factories:
        raise LangChainProviderError(provider, f"Unknown provider: {provider}")

    chat_model = factories[provider](model, **kwargs)
    log.info("Created chat model: provider=%s model=%s", provider, model)
    return chat_model


def chat_model_from_config(config: ClassifierConfig) -> BaseChatModel:
    """Create the classifier's chat model from its configuration section."""
    provider = config.provider.value
    model = config.model_id or get_default_model(provider)
    if not model:
        raise LangChainProviderError(provider, "model_id must be configured")

    kwargs: dict[str, Any] = {
        "temperature": config.temperature,
        "max_tokens": config.max_tokens,
        "timeout": config.timeout_s,
    }
    if config.base_url:
        kwargs["base_url"] = config.base_url
    if provider in PROVIDER_KEY_ENV and (api_key := os.getenv(config.api_key_env)):
        kwargs["api_key"] = api_key

    return create_chat_model(provider, model, **kwargs)


def _common_kwargs(kwargs: dict[str, Any]) -> dict[str, Any]:
    return {k: kwargs[k] for k in ("temperature", "max_tokens", "timeout") if k in kwargs}


def _create_ollama_model(model: str, **kwargs: Any) -> BaseChatModel:
    try:
        from langchain_ollama import ChatOllama
    except ImportError as e:
        raise LangChainProviderError("ollama", "langchain-ollama not installed") from e

    host = kwargs.get("base_url") or os.getenv("OLLAMA_HOST")
    if not host:
        raise LangChainProviderError("ollama", "OLLAMA_HOST not configured")

    options = _common_kwargs(kwargs)
    # Ollama calls the output limit num_predict
    if "max_tokens" in options:
        options["num_predict"] = options.pop("max_tokens")
    options.pop("timeout", None)

    return ChatOllama(model=model, base_url=host, **options)


def _create_openai_model(model: str, **kwargs: Any) -> BaseChatModel:
    try:
        from langchain_openai import ChatOpenAI
    except ImportError as e:
        raise LangChainProviderError("openai", "langchain-openai not installed") from e

    api_key = kwargs.get("api_key") or os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise LangChainProviderError("openai", "API key required (OPENAI_API_KEY)")

    options = _common_kwargs(kwargs)
    if model.lower().startswith(("o1", "o3", "o4")):
        # Reasoning models reject a temperature
        options.pop("temperature", None)
    if base_url := kwargs.get("base_url"):
        options["base_url"] = base_url

    return ChatOpenAI(model=model, api_key=api_key, **options)


def _create_anthropic_model(model: str, **kwargs: Any) -> BaseChatModel:
    try:
        from langchain_anthropic import ChatAnthropic  # pyright: ignore[reportMissingImports]
    except ImportError as e:
        raise LangChainProviderError(
            "anthropic", "langchain-anthropic not installed (pip install media-resolver[anthropic])"
        ) from e

    api_key = kwargs.get("api_key") or os.getenv("ANTHROPIC_API_KEY")
    if not api_key:
        raise LangChainProviderError("anthropic", "API key required (ANTHROPIC_API_KEY)")

    return ChatAnthropic(model=model, api_key=api_key, **_common_kwargs(kwargs))


## Tests


def test_get_default_model():
    assert get_default_model("ollama") is None
    assert get_default_model("OpenAI") == "gpt-4o-mini"
    assert get_default_model("unknown") is None


def test_create_chat_model_unknown_provider():
    import pytest

    with pytest.raises(LangChainProviderError, match="Unknown provider"):
        create_chat_model("mystery", "model")


def test_create_ollama_no_host(monkeypatch):
    import pytest

    monkeypatch.delenv("OLLAMA_HOST", raising=False)
    with pytest.raises(LangChainProviderError, match="OLLAMA_HOST"):
        create_chat_model("ollama", "llama3.2")


def test_create_openai_no_key(monkeypatch):
    import pytest

    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(LangChainProviderError, match="API key required"):
        create_chat_model("openai", "gpt-4o-mini")


def test_chat_model_from_config_reads_named_env(monkeypatch):
    import pytest

    from media_resolver.config import ClassifierConfig

    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("MY_KEY", raising=False)
    config = ClassifierConfig(api_key_env="MY_KEY")
    with pytest.raises(LangChainProviderError):
        chat_model_from_config(config)

    monkeypatch.setenv("MY_KEY", "sk-test")
    model = chat_model_from_config(config)
    assert model is not None
