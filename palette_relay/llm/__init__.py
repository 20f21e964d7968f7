"""LLM backends: producer catalog, chat model factory and stream adapters."""

from palette_relay.llm.catalog import (
    PRODUCER_CATALOG,
    ProducerSpec,
    get_producer_spec,
    resolve_producer_keys,
)
from palette_relay.llm.factory import PROVIDER_BASE_URLS, get_llm
from palette_relay.llm.streams import structured_palettes, text_fragments

__all__ = [
    "PRODUCER_CATALOG",
    "PROVIDER_BASE_URLS",
    "ProducerSpec",
    "get_llm",
    "get_producer_spec",
    "resolve_producer_keys",
    "structured_palettes",
    "text_fragments",
]
