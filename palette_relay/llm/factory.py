"""LLM provider factory.

Supports the backends in the producer catalog:
- Groq, OpenAI, OpenRouter: OpenAI-compatible APIs via ``langchain_openai``
- Google: Gemini via ``langchain-google-genai``

Environment variables:
- GROQ_API_KEY, OPENAI_API_KEY, OPENROUTER_API_KEY, GOOGLE_API_KEY
- LLM_TEMPERATURE: Generation temperature (0.0-2.0)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from palette_relay.exceptions import ConfigurationError
from palette_relay.settings import Settings, get_settings

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

    from palette_relay.llm.catalog import ProducerSpec

# Provider base URLs
PROVIDER_BASE_URLS = {
    "groq": "https://api.groq.com/openai/v1",
    "openai": "https://api.openai.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
}

_API_KEY_FIELDS = {
    "groq": "groq_api_key",
    "openai": "openai_api_key",
    "openrouter": "openrouter_api_key",
    "google": "google_api_key",
}


def _api_key(provider: str, settings: Settings) -> str:
    field = _API_KEY_FIELDS.get(provider)
    if field is None:
        raise ConfigurationError(f"Unknown provider '{provider}'")
    api_key = getattr(settings, field).get_secret_value()
    if not api_key:
        raise ConfigurationError(f"{field.upper()} is not configured")
    return api_key


def get_llm(
    spec: ProducerSpec,
    temperature: float | None = None,
    settings: Settings | None = None,
    **kwargs: Any,
) -> BaseChatModel:
    """Build the chat model for one catalog entry.

    Args:
        spec: Catalog entry to build.
        temperature: Override default temperature
        settings: Settings to read credentials from (defaults to ``get_settings()``)
        **kwargs: Additional provider-specific arguments

    Returns:
        Configured LLM instance

    Raises:
        ConfigurationError: If the provider is unknown or its API key is missing
    """
    settings = settings or get_settings()
    temp = temperature if temperature is not None else settings.llm_temperature
    api_key = _api_key(spec.provider, settings)

    # Google Gemini uses separate SDK
    if spec.provider == "google":
        from langchain_google_genai import ChatGoogleGenerativeAI

        return ChatGoogleGenerativeAI(
            model=spec.model_id,
            temperature=temp,
            google_api_key=api_key,
            **kwargs,
        )

    # OpenAI-compatible providers
    from langchain_openai import ChatOpenAI

    llm_kwargs: dict[str, Any] = {
        "model": spec.model_id,
        "temperature": temp,
        "api_key": api_key,
        "base_url": PROVIDER_BASE_URLS[spec.provider],
        "streaming": True,
        **kwargs,
    }

    # Add headers for OpenRouter
    if spec.provider == "openrouter":
        llm_kwargs.setdefault("default_headers", {})
        llm_kwargs["default_headers"]["X-Title"] = "Palette Relay"

    return ChatOpenAI(**llm_kwargs)

