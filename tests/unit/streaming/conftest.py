"""Shared fixtures for streaming module tests."""

import asyncio

from palette_relay.streaming.events import (
    Completed,
    Failed,
    Item,
    Started,
)
from palette_relay.streaming.producers import Producer


async def async_iter(items, delay: float = 0.0):
    """Convert a list to an async iterator, optionally sleeping between items."""
    for item in items:
        if delay:
            await asyncio.sleep(delay)
        yield item


class ScriptedProducer(Producer):
    """Producer that yields a fixed list of records.

    Args:
        producer_id: Producer key.
        records: Records to yield, in order.
        delay: Seconds to sleep before each record.
        error: Raised after the records, if set.
    """

    def __init__(self, producer_id, records, *, delay=0.0, error=None):
        super().__init__(producer_id, producer_id.title())
        self._records = [tuple(r) for r in records]
        self._delay = delay
        self._error = error
        self.closed = False
        self.yielded = 0

    async def records(self):
        try:
            for record in self._records:
                if self._delay:
                    await asyncio.sleep(self._delay)
                self.yielded += 1
                yield record
            if self._error is not None:
                raise self._error
        finally:
            self.closed = True


class RawEventProducer(Producer):
    """Producer whose ``run()`` replays raw events, bypassing the base lifecycle."""

    def __init__(self, producer_id, events, *, error=None):
        super().__init__(producer_id)
        self._events = events
        self._error = error

    def records(self):  # pragma: no cover - run() is overridden
        raise NotImplementedError

    async def run(self):
        for event in self._events:
            await asyncio.sleep(0)
            yield event
        if self._error is not None:
            raise self._error


def started(pid):
    return Started(pid, pid.title())


def item(pid, record):
    return Item(pid, tuple(record))


def completed(pid, count):
    return Completed(pid, count, 0)


def failed(pid, error="boom"):
    return Failed(pid, error)
