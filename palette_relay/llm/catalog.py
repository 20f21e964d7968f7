"""Producer catalog: which models can generate palettes and how they stream.

Two stream modes:

- ``text``: free text is streamed and palettes are extracted from it. Used for
  providers whose structured streaming is unreliable (Groq, OpenAI).
- ``structured``: the provider streams a JSON schema constrained object and
  palettes arrive already parsed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from palette_relay.exceptions import ConfigurationError

Provider = Literal["groq", "openai", "openrouter", "google"]
StreamMode = Literal["text", "structured"]

# Structured output schema bounds for one palette
STRUCTURED_MIN_COLORS = 5
STRUCTURED_MAX_COLORS = 16


@dataclass(frozen=True)
class ProducerSpec:
    """One catalog entry.

    Attributes:
        key: Stable producer id, sent to clients as ``modelKey``.
        model_id: Provider model name.
        name: Display name, sent as ``modelName``.
        provider: Backend the model is served from.
        mode: How palettes are read from the backend stream.
        max_colors: Upper bound on palette length (``None`` = unbounded).
    """

    key: str
    model_id: str
    name: str
    provider: Provider
    mode: StreamMode = "text"
    max_colors: int | None = None


PRODUCER_CATALOG: dict[str, ProducerSpec] = {
    spec.key: spec
    for spec in (
        ProducerSpec("groq-oss-120b", "openai/gpt-oss-120b", "Groq OSS 120B", "groq"),
        ProducerSpec(
            "llama-4-maverick",
            "meta-llama/llama-4-maverick-17b-128e-instruct",
            "Llama 4 Maverick",
            "groq",
        ),
        ProducerSpec(
            "llama-4-scout",
            "meta-llama/llama-4-scout-17b-16e-instruct",
            "Llama 4 Scout",
            "groq",
        ),
        ProducerSpec("llama-3.3-70b", "llama-3.3-70b-versatile", "Llama 3.3 70B", "groq"),
        ProducerSpec("kimi-k2", "moonshotai/kimi-k2-instruct-0905", "Kimi K2", "groq"),
        ProducerSpec("gpt-4.1-nano", "gpt-4.1-nano", "GPT-4.1 Nano", "openai"),
        ProducerSpec(
            "gemini-flash-lite",
            "google/gemini-2.5-flash-lite",
            "Gemini 2.5 Flash Lite (OpenRouter)",
            "openrouter",
            mode="structured",
            max_colors=STRUCTURED_MAX_COLORS,
        ),
        ProducerSpec(
            "gemini-2.0-flash-lite",
            "gemini-2.0-flash-lite",
            "Gemini 2.0 Flash Lite",
            "google",
            mode="structured",
            max_colors=STRUCTURED_MAX_COLORS,
        ),
        ProducerSpec(
            "gemini-2.5-flash-lite",
            "gemini-2.5-flash-lite",
            "Gemini 2.5 Flash Lite",
            "google",
            mode="structured",
            max_colors=STRUCTURED_MAX_COLORS,
        ),
        ProducerSpec(
            "gemini-2.0-flash",
            "gemini-2.0-flash",
            "Gemini 2.0 Flash",
            "google",
            mode="structured",
            max_colors=STRUCTURED_MAX_COLORS,
        ),
    )
}


def get_producer_spec(key: str) -> ProducerSpec:
    """Look up a catalog entry.

    Raises:
        ConfigurationError: ``key`` is not in the catalog.
    """
    try:
        return PRODUCER_CATALOG[key]
    except KeyError:
        raise ConfigurationError(
            f"Unknown producer '{key}'. Available: {', '.join(sorted(PRODUCER_CATALOG))}"
        ) from None


def resolve_producer_keys(keys: list[str] | None) -> list[ProducerSpec]:
    """Catalog entries for ``keys``, or the whole catalog when ``keys`` is empty."""
    if not keys:
        return list(PRODUCER_CATALOG.values())
    return [get_producer_spec(key) for key in keys]
