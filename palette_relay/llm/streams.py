"""Backend stream adapters: LangChain ``astream`` to the inputs producers consume."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from palette_relay.llm.catalog import STRUCTURED_MAX_COLORS, STRUCTURED_MIN_COLORS

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from langchain_core.language_models import BaseChatModel
    from langchain_core.messages import BaseMessage

logger = logging.getLogger(__name__)

PALETTES_SCHEMA: dict[str, Any] = {
    "title": "palettes",
    "description": "Color palettes for the requested theme",
    "type": "object",
    "properties": {
        "palettes": {
            "type": "array",
            "items": {
                "type": "array",
                "items": {"type": "string", "pattern": "^#[0-9a-fA-F]{6}$"},
                "minItems": STRUCTURED_MIN_COLORS,
                "maxItems": STRUCTURED_MAX_COLORS,
            },
        }
    },
    "required": ["palettes"],
}


def chunk_text(content: Any) -> str:
    """Text of one message chunk.

    Gemini returns content blocks (``[{"type": "text", "text": ...}]``) where
    OpenAI-compatible models return a plain string.
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "".join(parts)
    return ""


async def text_fragments(
    llm: BaseChatModel,
    messages: list[BaseMessage],
) -> AsyncGenerator[str, None]:
    """Yield the text content of each streamed chunk."""
    async for chunk in llm.astream(messages):
        text = chunk_text(chunk.content)
        if text:
            yield text


async def structured_palettes(
    llm: BaseChatModel,
    messages: list[BaseMessage],
) -> AsyncGenerator[list[str], None]:
    """Yield palettes from a streaming structured output.

    The structured runnable streams growing partial objects. An element of
    ``palettes`` is complete once the next element has started; whatever is
    left is complete when the stream ends.
    """
    structured = llm.with_structured_output(PALETTES_SCHEMA)
    emitted = 0
    latest: list[Any] = []

    async for partial in structured.astream(messages):
        if not isinstance(partial, dict):
            continue
        palettes = partial.get("palettes")
        if not isinstance(palettes, list):
            continue
        latest = palettes
        while emitted < len(palettes) - 1:
            yield palettes[emitted]
            emitted += 1

    for element in latest[emitted:]:
        yield element
