"""Producer event types for the palette streaming pipeline.

Every producer emits exactly one ``Started``, any number of ``Item``s, and
exactly one terminal event (``Completed`` or ``Failed``). The fan-in
scheduler adds one synthetic ``Done`` after every producer is terminal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar

PaletteRecord = tuple[str, ...]


def palette_id(record: PaletteRecord | list[str]) -> str:
    """Stable identifier for a palette: lower-case hex digits joined by ``-``.

    ``("#0A1628", "#0d3b4a")`` -> ``"0a1628-0d3b4a"``
    """
    return "-".join(color.lstrip("#").lower() for color in record)


def palette_from_id(identifier: str) -> PaletteRecord:
    """Inverse of :func:`palette_id`."""
    return tuple(f"#{part}" for part in identifier.split("-") if part)


@dataclass(frozen=True)
class ProducerEvent:
    """Base class for everything a producer emits."""

    kind: ClassVar[str] = "event"
    terminal: ClassVar[bool] = False

    producer_id: str


@dataclass(frozen=True)
class Started(ProducerEvent):
    """The producer has begun talking to its backend."""

    kind: ClassVar[str] = "started"

    name: str = ""


@dataclass(frozen=True)
class Item(ProducerEvent):
    """One complete, validated palette."""

    kind: ClassVar[str] = "item"

    record: PaletteRecord = ()


@dataclass(frozen=True)
class Completed(ProducerEvent):
    """The backend stream ended normally.

    Attributes:
        item_count: Number of ``Item`` events this producer emitted.
        duration: Milliseconds between ``Started`` and this event.
    """

    kind: ClassVar[str] = "completed"
    terminal: ClassVar[bool] = True

    item_count: int = 0
    duration: int = 0


@dataclass(frozen=True)
class Failed(ProducerEvent):
    """The backend failed; no more events follow for this producer."""

    kind: ClassVar[str] = "failed"
    terminal: ClassVar[bool] = True

    error: str = ""


@dataclass(frozen=True)
class Done:
    """Synthetic summary emitted once every producer reached a terminal state.

    Attributes:
        palettes: Records per producer id, in emission order, for every producer.
        failures: Error message per producer id that ended with ``Failed``.
    """

    kind: ClassVar[str] = "done"

    palettes: dict[str, list[PaletteRecord]] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> dict[str, list[PaletteRecord]]:
        """Records of the producers that completed normally."""
        return {pid: records for pid, records in self.palettes.items() if pid not in self.failures}

    @property
    def all_records(self) -> list[PaletteRecord]:
        """Every record from every producer, producer by producer."""
        return [record for records in self.palettes.values() for record in records]
