"""Producer adapters: turn one backend stream into typed producer events.

A producer wraps one backend (one model) and exposes ``run()``, an async
generator of ``Started``, ``Item``..., then ``Completed`` or ``Failed``.
Backend errors never escape ``run()``; they become a ``Failed`` event.

Two modes share the same event contract:

- ``TextStreamProducer``: the backend yields free text fragments which are fed
  through a per-producer ``ScanState``.
- ``StructuredStreamProducer``: the backend yields palettes directly and the
  extractor is skipped.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from palette_relay.streaming.events import (
    Completed,
    Failed,
    Item,
    PaletteRecord,
    ProducerEvent,
    Started,
)
from palette_relay.streaming.extractor import (
    DEFAULT_MAX_CANDIDATE_CHARS,
    ScanState,
    is_valid_palette,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, AsyncIterator, Callable, Sequence

logger = logging.getLogger(__name__)


def _format_error(exc: BaseException) -> str:
    message = str(exc)
    return message if message else type(exc).__name__


@asynccontextmanager
async def _closing(stream: Any) -> AsyncGenerator[Any, None]:
    """Close an async generator on exit so its backend connection is released."""
    try:
        yield stream
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()


class Producer(ABC):
    """Base producer: owns the event lifecycle, subclasses supply records.

    Attributes:
        producer_id: Stable key (e.g. ``"groq-oss-120b"``), used as ``modelKey``.
        name: Human readable name, used as ``modelName``.
    """

    def __init__(self, producer_id: str, name: str | None = None) -> None:
        self.producer_id = producer_id
        self.name = name or producer_id

    @abstractmethod
    def records(self) -> AsyncIterator[PaletteRecord]:
        """Yield palettes as the backend produces them."""

    async def run(self) -> AsyncGenerator[ProducerEvent, None]:
        """Drive the backend and yield the producer's events.

        Cancellation (``CancelledError``/``GeneratorExit``) is not caught; the
        backend stream is closed and nothing further is emitted.
        """
        start = time.monotonic()
        item_count = 0
        yield Started(self.producer_id, self.name)
        logger.info("Producer %s started", self.producer_id)

        try:
            async with _closing(self.records()) as records:
                async for record in records:
                    item_count += 1
                    yield Item(self.producer_id, record)
        except Exception as e:
            logger.warning("Producer %s failed: %s", self.producer_id, _format_error(e))
            yield Failed(self.producer_id, _format_error(e))
            return

        duration = int((time.monotonic() - start) * 1000)
        logger.info(
            "Producer %s finished with %d palettes in %dms",
            self.producer_id,
            item_count,
            duration,
        )
        yield Completed(self.producer_id, item_count, duration)


class TextStreamProducer(Producer):
    """Producer over a free-text backend stream.

    Args:
        producer_id: Stable producer key.
        name: Display name.
        stream_factory: Zero-argument callable returning the async iterator of
            text fragments. Called lazily inside ``run()`` so configuration
            errors surface as ``Failed``.
        max_colors: Optional cap on palette length.
        max_candidate_chars: Extractor bound for unclosed literals.
    """

    def __init__(
        self,
        producer_id: str,
        name: str | None,
        stream_factory: Callable[[], AsyncIterator[str]],
        *,
        max_colors: int | None = None,
        max_candidate_chars: int = DEFAULT_MAX_CANDIDATE_CHARS,
    ) -> None:
        super().__init__(producer_id, name)
        self._stream_factory = stream_factory
        self._max_colors = max_colors
        self._max_candidate_chars = max_candidate_chars

    async def records(self) -> AsyncGenerator[PaletteRecord, None]:
        state = ScanState(
            max_colors=self._max_colors,
            max_candidate_chars=self._max_candidate_chars,
        )
        async with _closing(self._stream_factory()) as fragments:
            async for fragment in fragments:
                if not fragment:
                    continue
                for record in state.feed(fragment):
                    yield record

        for record in state.flush():
            yield record


class StructuredStreamProducer(Producer):
    """Producer over a backend that already yields palettes.

    Elements that fail the palette shape check are dropped, the same way the
    text extractor drops malformed candidates.
    """

    def __init__(
        self,
        producer_id: str,
        name: str | None,
        stream_factory: Callable[[], AsyncIterator[Sequence[str]]],
        *,
        max_colors: int | None = None,
    ) -> None:
        super().__init__(producer_id, name)
        self._stream_factory = stream_factory
        self._max_colors = max_colors

    async def records(self) -> AsyncGenerator[PaletteRecord, None]:
        async with _closing(self._stream_factory()) as elements:
            async for element in elements:
                if not is_valid_palette(element, max_colors=self._max_colors):
                    logger.debug(
                        "Producer %s: dropping malformed element %r", self.producer_id, element
                    )
                    continue
                yield tuple(element)
