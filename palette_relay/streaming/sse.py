"""Server-Sent Events serialization and the event sink.

Maps producer events onto the wire payloads clients consume:

- ``session``        {"type": "session", "sessionId", "version"}
- ``model_start``    {"type": "model_start", "modelKey", "modelName"} (multi-producer only)
- ``palette``        {"type": "palette", "colors"[, "modelKey"]}
- ``model_complete`` {"type": "model_complete", "modelKey", "paletteCount", "duration"}
- ``model_error``    {"type": "model_error", "modelKey", "error"}
- ``done``           {"type": "done", "allPalettes": {modelKey: [[...], ...]}}
"""

from __future__ import annotations

import json
import logging
from contextlib import aclosing
from typing import TYPE_CHECKING, Any

from palette_relay.exceptions import SinkClosedError
from palette_relay.streaming.events import Completed, Done, Failed, Item, Started

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from typing import TextIO

    from palette_relay.streaming.events import ProducerEvent

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(payload: dict[str, Any]) -> str:
    """Format one payload as an SSE data frame."""
    return f"data: {json.dumps(payload)}\n\n"


def session_payload(session_id: str, version: int) -> dict[str, Any]:
    return {"type": "session", "sessionId": session_id, "version": version}


def to_payload(event: ProducerEvent | Done, *, multi: bool = True) -> dict[str, Any] | None:
    """Build the wire payload for an event.

    Args:
        event: Producer event or the final ``Done``.
        multi: Multi-producer mode adds ``modelKey`` to palettes and emits
            ``model_start``.

    Returns:
        The payload, or ``None`` when the event has no wire form in this mode.
    """
    if isinstance(event, Started):
        if not multi:
            return None
        return {"type": "model_start", "modelKey": event.producer_id, "modelName": event.name}

    if isinstance(event, Item):
        payload: dict[str, Any] = {"type": "palette", "colors": list(event.record)}
        if multi:
            payload["modelKey"] = event.producer_id
        return payload

    if isinstance(event, Completed):
        return {
            "type": "model_complete",
            "modelKey": event.producer_id,
            "paletteCount": event.item_count,
            "duration": event.duration,
        }

    if isinstance(event, Failed):
        return {"type": "model_error", "modelKey": event.producer_id, "error": event.error}

    if isinstance(event, Done):
        return {
            "type": "done",
            "allPalettes": {
                pid: [list(record) for record in records]
                for pid, records in event.succeeded.items()
            },
        }

    raise TypeError(f"Unsupported event type: {type(event).__name__}")


class EventSink:
    """Write SSE frames to a text stream, flushing after every frame.

    When a write fails the source sequence is closed, which cancels the
    fan-in scheduler and every producer behind it, and ``SinkClosedError``
    is raised to the caller.
    """

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self.frames_written = 0

    def write(self, frame: str) -> None:
        try:
            self._stream.write(frame)
            self._stream.flush()
        except (OSError, ValueError) as e:
            # ValueError: write to a closed file
            raise SinkClosedError(f"Event sink closed: {e}") from e
        self.frames_written += 1

    async def drain(self, frames: AsyncIterator[str]) -> int:
        """Write every frame from ``frames`` as it arrives.

        Returns:
            Number of frames written.

        Raises:
            SinkClosedError: The stream could not be written; ``frames`` has
                been closed.
        """
        async with aclosing(frames) as source:
            async for frame in source:
                try:
                    self.write(frame)
                except SinkClosedError:
                    logger.info(
                        "Sink closed after %d frames, cancelling stream", self.frames_written
                    )
                    raise
        return self.frames_written
