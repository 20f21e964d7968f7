"""Palette extractor: pull complete palette arrays out of a growing text buffer.

LLM text streams arrive in arbitrary fragments and mix JSON with prose and
markdown fences. ``extract_palettes`` finds every closed array literal that
starts like ``["#``, validates it, and hands back whatever tail still might
grow into a palette. ``ScanState`` wraps that for one producer's stream.

Calling ``extract_palettes`` repeatedly with the previous remainder prepended
to each new fragment yields the same records as one call on the whole text.
"""

from __future__ import annotations

import json
import logging
import re

from palette_relay.streaming.events import PaletteRecord

logger = logging.getLogger(__name__)

HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")
MIN_COLORS = 5
DEFAULT_MAX_CANDIDATE_CHARS = 4096

# Opening of an array whose first element is a quoted color.
_MARKER = re.compile(r'\[\s*"#')
# Something at the very end of the buffer that may still become a marker.
_PARTIAL_MARKER = re.compile(r'\[\s*"?\Z')
_MAX_PARTIAL_MARKER_CHARS = 64


def is_valid_palette(
    colors: object,
    *,
    min_colors: int = MIN_COLORS,
    max_colors: int | None = None,
) -> bool:
    """Check the palette shape: a list of ``#rrggbb`` strings, at least ``min_colors`` long."""
    if not isinstance(colors, (list, tuple)):
        return False
    if len(colors) < min_colors:
        return False
    if max_colors is not None and len(colors) > max_colors:
        return False
    return all(isinstance(c, str) and HEX_COLOR.match(c) for c in colors)


def _find_close(buffer: str, start: int, limit: int) -> int | None:
    """Find the ``]`` that balances the ``[`` at ``start``.

    Brackets inside quoted strings are ignored; a backslash escapes the next
    character.

    Returns:
        Index of the closing bracket; ``None`` if the buffer ended first;
        ``-1`` if ``limit`` was reached without closing.
    """
    depth = 0
    in_string = False
    escape = False
    end = min(len(buffer), limit)

    for i in range(start, end):
        char = buffer[i]
        if escape:
            escape = False
            continue
        if char == "\\":
            escape = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
            if depth == 0:
                return i

    if end == limit:
        return -1
    return None


def _parse_candidate(
    candidate: str,
    *,
    min_colors: int,
    max_colors: int | None,
) -> PaletteRecord | None:
    try:
        colors = json.loads(candidate)
    except json.JSONDecodeError:
        logger.debug("Discarding unparseable candidate: %s", candidate[:80])
        return None

    if not is_valid_palette(colors, min_colors=min_colors, max_colors=max_colors):
        logger.debug("Discarding candidate with bad shape: %s", candidate[:80])
        return None
    return tuple(colors)


def _partial_marker_tail(buffer: str, pos: int) -> str:
    bracket = buffer.rfind("[", pos)
    if bracket == -1:
        return ""
    tail = buffer[bracket:]
    if len(tail) <= _MAX_PARTIAL_MARKER_CHARS and _PARTIAL_MARKER.match(tail):
        return tail
    return ""


def extract_palettes(
    buffer: str,
    *,
    final: bool = False,
    min_colors: int = MIN_COLORS,
    max_colors: int | None = None,
    max_candidate_chars: int = DEFAULT_MAX_CANDIDATE_CHARS,
) -> tuple[list[PaletteRecord], str]:
    """Extract every complete palette from ``buffer``.

    Args:
        buffer: Accumulated text (previous remainder + new fragment).
        final: The stream has ended; unclosed candidates are abandoned and
            rescanned instead of being returned as remainder.
        min_colors: Fewest colors an accepted palette may have.
        max_colors: Most colors an accepted palette may have (``None`` = no cap).
        max_candidate_chars: An array literal still unclosed after this many
            characters is abandoned, which bounds the retained remainder.

    Returns:
        ``(records, remainder)``. ``remainder`` starts at the opening bracket
        of an unclosed candidate, or is a trailing partial ``["`` marker, or
        is empty.
    """
    records: list[PaletteRecord] = []
    pos = 0

    while True:
        match = _MARKER.search(buffer, pos)
        if match is None:
            break

        start = match.start()
        end = _find_close(buffer, start, start + max_candidate_chars)

        if end is None:
            if final:
                pos = start + 1
                continue
            return records, buffer[start:]

        if end == -1:
            logger.debug(
                "Abandoning array literal unclosed after %d chars", max_candidate_chars
            )
            pos = start + 1
            continue

        record = _parse_candidate(
            buffer[start : end + 1],
            min_colors=min_colors,
            max_colors=max_colors,
        )
        if record is not None:
            records.append(record)
        pos = end + 1

    remainder = "" if final else _partial_marker_tail(buffer, pos)
    return records, remainder


class ScanState:
    """Per-producer extractor state: the unconsumed tail of the text stream.

    Usage::

        state = ScanState()
        async for fragment in text_stream:
            for record in state.feed(fragment):
                ...
        for record in state.flush():
            ...
    """

    def __init__(
        self,
        *,
        min_colors: int = MIN_COLORS,
        max_colors: int | None = None,
        max_candidate_chars: int = DEFAULT_MAX_CANDIDATE_CHARS,
    ) -> None:
        self.buffer = ""
        self._options = {
            "min_colors": min_colors,
            "max_colors": max_colors,
            "max_candidate_chars": max_candidate_chars,
        }

    def feed(self, fragment: str) -> list[PaletteRecord]:
        """Append a fragment and return the palettes it completed."""
        records, self.buffer = extract_palettes(self.buffer + fragment, **self._options)
        return records

    def flush(self) -> list[PaletteRecord]:
        """Scan what is left once the stream has ended."""
        records, _ = extract_palettes(self.buffer, final=True, **self._options)
        self.buffer = ""
        return records
