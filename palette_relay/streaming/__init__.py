"""Streaming module: extraction, producers, fan-in and SSE output.

Text from each LLM backend flows through a producer (with its own
extractor state), the fan-in scheduler merges every producer's events, and
the SSE layer turns them into wire frames.
"""

from palette_relay.streaming.events import (
    Completed,
    Done,
    Failed,
    Item,
    PaletteRecord,
    ProducerEvent,
    Started,
    palette_id,
)
from palette_relay.streaming.extractor import ScanState, extract_palettes, is_valid_palette
from palette_relay.streaming.fanin import FanInScheduler, merge_producers
from palette_relay.streaming.producers import (
    Producer,
    StructuredStreamProducer,
    TextStreamProducer,
)
from palette_relay.streaming.sse import EventSink, format_sse, session_payload, to_payload

__all__ = [
    "Completed",
    "Done",
    "EventSink",
    "Failed",
    "FanInScheduler",
    "Item",
    "PaletteRecord",
    "Producer",
    "ProducerEvent",
    "ScanState",
    "Started",
    "StructuredStreamProducer",
    "TextStreamProducer",
    "extract_palettes",
    "format_sse",
    "is_valid_palette",
    "merge_producers",
    "palette_id",
    "session_payload",
    "to_payload",
]
