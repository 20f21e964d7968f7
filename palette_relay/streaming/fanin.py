"""Fan-in scheduler: run N producers concurrently and merge their events.

Each producer gets its own worker task that pumps the producer's events into
one shared ``asyncio.Queue``. The scheduler reads that queue, so whichever
producer has an event ready first is forwarded first. Per-producer order is
preserved because a single worker pumps each producer sequentially.

Usage::

    scheduler = FanInScheduler([producer_a, producer_b])
    async with contextlib.aclosing(scheduler.run()) as events:
        async for event in events:
            if isinstance(event, Done):
                ...

Closing the ``run()`` generator (or cancelling the task iterating it)
cancels every still-running worker and closes its backend stream. No
``Done`` is emitted in that case.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from palette_relay.exceptions import ProducerContractError
from palette_relay.streaming.events import (
    Done,
    Failed,
    Item,
    PaletteRecord,
    ProducerEvent,
    Started,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Sequence

    from palette_relay.streaming.producers import Producer

logger = logging.getLogger(__name__)


class ProducerPhase(StrEnum):
    """Where a producer is in its event lifecycle."""

    PENDING = "pending"
    STREAMING = "streaming"
    FINISHED = "finished"


@dataclass(frozen=True)
class _WorkerExit:
    """Queued by a worker once its producer's sequence is over."""

    producer_id: str
    error: BaseException | None = None


class FanInScheduler:
    """Multiplex events from N producers onto one ordered stream.

    Args:
        producers: Producers to run. Ids must be unique.
        strict: After a terminal event, poll the producer once more and raise
            ``ProducerContractError`` if it is not exhausted. Otherwise a
            producer is never polled after its terminal event.
    """

    def __init__(self, producers: Sequence[Producer], *, strict: bool = False) -> None:
        ids = [p.producer_id for p in producers]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Producer ids must be unique, got {ids}")
        self._producers = list(producers)
        self._strict = strict

    @property
    def producer_ids(self) -> list[str]:
        return [p.producer_id for p in self._producers]

    async def _pump(self, producer: Producer, queue: asyncio.Queue) -> None:
        """Worker: forward one producer's events until its terminal event."""
        error: BaseException | None = None
        try:
            async with aclosing(producer.run()) as events:
                async for event in events:
                    if event.producer_id != producer.producer_id:
                        raise ProducerContractError(
                            f"Producer {producer.producer_id!r} emitted an event "
                            f"for {event.producer_id!r}",
                            producer_id=producer.producer_id,
                        )
                    if event.terminal:
                        if self._strict:
                            await self._check_exhausted(producer.producer_id, events)
                        queue.put_nowait(event)
                        break
                    queue.put_nowait(event)
        except Exception as e:
            error = e
        queue.put_nowait(_WorkerExit(producer.producer_id, error))

    async def _check_exhausted(
        self, producer_id: str, events: AsyncGenerator[ProducerEvent, None]
    ) -> None:
        extra = await anext(events, None)
        if extra is not None:
            raise ProducerContractError(
                f"Producer {producer_id!r} emitted {extra.kind!r} after its terminal event",
                producer_id=producer_id,
            )

    def _exit_to_failure(self, message: _WorkerExit, phase: ProducerPhase) -> Failed:
        """Handle a worker that stopped before its producer reached a terminal event."""
        pid = message.producer_id
        error = message.error
        if error is None:
            raise ProducerContractError(
                f"Producer {pid!r} ended without a terminal event", producer_id=pid
            )
        if isinstance(error, ProducerContractError):
            raise error
        if phase is ProducerPhase.PENDING:
            raise ProducerContractError(
                f"Producer {pid!r} raised before started", producer_id=pid
            ) from error

        # Producers should report their own errors; keep the others running anyway.
        logger.error("Producer %s raised instead of reporting failure", pid, exc_info=error)
        return Failed(pid, str(error) or type(error).__name__)

    def _check(self, event: ProducerEvent, phases: dict[str, ProducerPhase]) -> None:
        phase = phases.get(event.producer_id)
        if phase is None:
            raise ProducerContractError(
                f"Event {event.kind!r} from unknown producer {event.producer_id!r}",
                producer_id=event.producer_id,
            )
        if phase is ProducerPhase.FINISHED:
            raise ProducerContractError(
                f"Producer {event.producer_id!r} emitted {event.kind!r} after its terminal event",
                producer_id=event.producer_id,
            )
        if isinstance(event, Started):
            if phase is not ProducerPhase.PENDING:
                raise ProducerContractError(
                    f"Producer {event.producer_id!r} emitted a second started event",
                    producer_id=event.producer_id,
                )
        elif phase is ProducerPhase.PENDING:
            raise ProducerContractError(
                f"Producer {event.producer_id!r} emitted {event.kind!r} before started",
                producer_id=event.producer_id,
            )

    async def run(self) -> AsyncGenerator[ProducerEvent | Done, None]:
        """Start every producer and yield their events as they become ready.

        Yields:
            Producer events in arrival order, then one ``Done``.

        Raises:
            ProducerContractError: A producer broke the event protocol.
        """
        queue: asyncio.Queue[ProducerEvent | _WorkerExit] = asyncio.Queue()
        phases = {pid: ProducerPhase.PENDING for pid in self.producer_ids}
        results: dict[str, list[PaletteRecord]] = {pid: [] for pid in self.producer_ids}
        failures: dict[str, str] = {}
        active = set(self.producer_ids)

        tasks = [
            asyncio.create_task(self._pump(p, queue), name=f"producer:{p.producer_id}")
            for p in self._producers
        ]
        logger.debug("Fan-in started %d producers", len(tasks))

        try:
            while active:
                message = await queue.get()

                if isinstance(message, _WorkerExit):
                    if phases[message.producer_id] is ProducerPhase.FINISHED:
                        continue
                    event = self._exit_to_failure(message, phases[message.producer_id])
                else:
                    event = message

                self._check(event, phases)

                if isinstance(event, Started):
                    phases[event.producer_id] = ProducerPhase.STREAMING
                elif isinstance(event, Item):
                    results[event.producer_id].append(event.record)
                elif event.terminal:
                    phases[event.producer_id] = ProducerPhase.FINISHED
                    active.discard(event.producer_id)
                    if isinstance(event, Failed):
                        failures[event.producer_id] = event.error

                yield event

            logger.info(
                "All producers finished: %s",
                ", ".join(f"{pid}: {len(records)}" for pid, records in results.items()),
            )
            yield Done(palettes=results, failures=failures)
        finally:
            pending = [t for t in tasks if not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                logger.debug("Cancelling %d unfinished producers", len(pending))
                await asyncio.gather(*pending, return_exceptions=True)


async def merge_producers(
    producers: Sequence[Producer],
    *,
    strict: bool = False,
) -> AsyncGenerator[ProducerEvent | Done, None]:
    """Convenience wrapper: ``FanInScheduler(producers, strict=strict).run()``."""
    async with aclosing(FanInScheduler(producers, strict=strict).run()) as events:
        async for event in events:
            yield event
