"""Prompt loader for palette generation.

Loads prompt templates from markdown files and folds the request's bias
input (example palettes, good and bad feedback) into the system prompt.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING

from langchain_core.messages import HumanMessage, SystemMessage

from palette_relay.streaming.events import palette_from_id

if TYPE_CHECKING:
    from langchain_core.messages import BaseMessage

    from palette_relay.llm.catalog import StreamMode

PROMPT_DIR = Path(__file__).parent

# Most example / feedback palettes quoted in one prompt
MAX_BIAS_PALETTES = 12


@dataclass
class PromptBias:
    """Opaque steering input for the prompt.

    Attributes:
        examples: Palettes the user wants more of.
        good: Identifiers of palettes rated good.
        bad: Identifiers of palettes rated bad.
    """

    examples: list[list[str]] = field(default_factory=list)
    good: list[str] = field(default_factory=list)
    bad: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.examples or self.good or self.bad)


@lru_cache(maxsize=16)
def _load_raw(name: str) -> str:
    """Load raw prompt template from disk (cached).

    Raises:
        FileNotFoundError: If prompt file doesn't exist
    """
    path = PROMPT_DIR / f"{name}.md"
    if not path.exists():
        raise FileNotFoundError(f"Prompt template not found: {name}.md")
    return path.read_text(encoding="utf-8")


def load_prompt(name: str, **kwargs: object) -> str:
    """Load a prompt template and format it with kwargs."""
    template = _load_raw(name)
    if kwargs:
        template = template.format(**kwargs)
    return template


def _format_palettes(palettes: list[list[str]] | list[tuple[str, ...]]) -> str:
    return "\n".join(
        "- " + ", ".join(colors) for colors in palettes[:MAX_BIAS_PALETTES]
    )


def format_bias(bias: PromptBias) -> str:
    """Render the bias section of the system prompt (empty when there is none)."""
    sections = []
    if bias.examples:
        sections.append(
            "Palettes the user likes as a starting point:\n" + _format_palettes(bias.examples)
        )
    if bias.good:
        liked = [list(palette_from_id(i)) for i in bias.good]
        sections.append("Rated good, explore this direction further:\n" + _format_palettes(liked))
    if bias.bad:
        disliked = [list(palette_from_id(i)) for i in bias.bad]
        sections.append("Rated bad, avoid anything similar:\n" + _format_palettes(disliked))
    if not sections:
        return ""
    return "\n" + "\n\n".join(sections) + "\n"


def build_messages(
    query: str,
    limit: int,
    bias: PromptBias | None = None,
    mode: StreamMode = "text",
) -> list[BaseMessage]:
    """Build the system and user messages for one producer.

    Args:
        query: Theme to generate palettes for.
        limit: Number of palettes to ask for (a target, not a cap).
        bias: Example palettes and feedback to steer generation.
        mode: Text producers get explicit JSON formatting instructions.
    """
    system = load_prompt("palette_system", limit=limit, bias=format_bias(bias or PromptBias()))
    user = load_prompt(f"palette_user_{mode}", query=query)
    return [SystemMessage(content=system), HumanMessage(content=user)]
