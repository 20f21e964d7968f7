"""Unit tests for the generation service.

Producers are replaced with scripted ones through ``producer_factory`` so
no LLM is called; sessions live in an ``InMemorySessionStore``.
"""

import asyncio
import json
import logging
from contextlib import aclosing
from unittest.mock import patch

import pytest

from palette_relay.dal.sessions import InMemorySessionStore
from palette_relay.exceptions import ConfigurationError, DALError
from palette_relay.llm.catalog import get_producer_spec
from palette_relay.prompts import PromptBias
from palette_relay.services.generation import (
    GenerationRequest,
    GenerationService,
    build_producer,
    merge_feedback,
)
from palette_relay.streaming.events import palette_id
from palette_relay.streaming.producers import StructuredStreamProducer, TextStreamProducer
from tests.factories import FOREST, SUNSET, TEAL
from tests.unit.streaming.conftest import ScriptedProducer


class RecordingFactory:
    """Producer factory that hands out scripted producers and records its calls."""

    def __init__(self, scripts):
        self.scripts = scripts
        self.calls = []

    def __call__(self, specs, query, limit, bias, settings):
        self.calls.append(
            {"keys": [s.key for s in specs], "query": query, "limit": limit, "bias": bias}
        )
        return [self.scripts[spec.key]() for spec in specs]


class FailingPersistStore(InMemorySessionStore):
    async def append_generated_identifiers(self, session_id, version, identifiers):
        raise DALError("database unavailable")


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def factory():
    return RecordingFactory(
        {
            "groq-oss-120b": lambda: ScriptedProducer("groq-oss-120b", [TEAL, SUNSET]),
            "kimi-k2": lambda: ScriptedProducer("kimi-k2", [FOREST], delay=0.002),
            "gpt-4.1-nano": lambda: ScriptedProducer(
                "gpt-4.1-nano", [SUNSET], error=RuntimeError("Invalid API key")
            ),
        }
    )


@pytest.fixture
def service(store, test_settings, factory):
    return GenerationService(store, test_settings, producer_factory=factory)


async def _payloads(service, request, keys, multi):
    return [p async for p in service.payloads(request, keys, multi=multi)]


class TestSingleProducer:
    """Tests for the single-producer wire mode."""

    @pytest.mark.asyncio
    async def test_payload_sequence(self, service):
        request = GenerationRequest(query="Ocean Sunset", limit=6)

        payloads = await _payloads(service, request, ["groq-oss-120b"], multi=False)

        assert [p["type"] for p in payloads] == [
            "session",
            "palette",
            "palette",
            "model_complete",
            "done",
        ]
        assert payloads[0]["version"] == 1
        assert payloads[1] == {"type": "palette", "colors": TEAL}
        assert payloads[-1]["allPalettes"] == {"groq-oss-120b": [TEAL, SUNSET]}

    @pytest.mark.asyncio
    async def test_records_generated_identifiers(self, service, store):
        request = GenerationRequest(query="Ocean Sunset", limit=6)

        payloads = await _payloads(service, request, ["groq-oss-120b"], multi=False)

        session_id = payloads[0]["sessionId"]
        assert store.sessions[session_id].query == "ocean sunset"
        assert store.versions[session_id][1].generated_ids == [
            palette_id(TEAL),
            palette_id(SUNSET),
        ]

    @pytest.mark.asyncio
    async def test_passes_query_and_limit(self, service, factory):
        request = GenerationRequest(query="forest", limit=4)

        await _payloads(service, request, ["groq-oss-120b"], multi=False)

        assert factory.calls[0]["query"] == "forest"
        assert factory.calls[0]["limit"] == 4
        assert factory.calls[0]["keys"] == ["groq-oss-120b"]


class TestMultiProducer:
    """Tests for the compare wire mode."""

    @pytest.mark.asyncio
    async def test_model_events_and_done(self, service):
        request = GenerationRequest(query="forest", limit=6)

        payloads = await _payloads(
            service, request, ["groq-oss-120b", "kimi-k2", "gpt-4.1-nano"], multi=True
        )

        types = [p["type"] for p in payloads]
        assert types[0] == "session"
        assert types[-1] == "done"
        assert types.count("model_start") == 3
        assert types.count("model_complete") == 2
        assert types.count("model_error") == 1
        assert all("modelKey" in p for p in payloads if p["type"] == "palette")

        error = next(p for p in payloads if p["type"] == "model_error")
        assert error == {
            "type": "model_error",
            "modelKey": "gpt-4.1-nano",
            "error": "Invalid API key",
        }

    @pytest.mark.asyncio
    async def test_done_reflects_only_succeeded(self, service):
        request = GenerationRequest(query="forest", limit=6)

        payloads = await _payloads(
            service, request, ["groq-oss-120b", "kimi-k2", "gpt-4.1-nano"], multi=True
        )

        assert payloads[-1]["allPalettes"] == {
            "groq-oss-120b": [TEAL, SUNSET],
            "kimi-k2": [FOREST],
        }

    @pytest.mark.asyncio
    async def test_failed_producer_output_still_recorded(self, service, store):
        request = GenerationRequest(query="forest", limit=6)

        payloads = await _payloads(service, request, ["gpt-4.1-nano"], multi=True)

        session_id = payloads[0]["sessionId"]
        assert store.versions[session_id][1].generated_ids == [palette_id(SUNSET)]

    @pytest.mark.asyncio
    async def test_unknown_key(self, service):
        request = GenerationRequest(query="forest", limit=6)

        with pytest.raises(ConfigurationError, match="Unknown producer"):
            await _payloads(service, request, ["nope"], multi=True)


class TestSessions:
    """Tests for session versioning and feedback."""

    @pytest.mark.asyncio
    async def test_continuing_session_bumps_version(self, service, store):
        first = await _payloads(
            service, GenerationRequest(query="forest", limit=6), ["groq-oss-120b"], multi=False
        )
        session_id = first[0]["sessionId"]

        second = await _payloads(
            service,
            GenerationRequest(query="Forest", limit=6, session_id=session_id),
            ["groq-oss-120b"],
            multi=False,
        )

        assert second[0] == {"type": "session", "sessionId": session_id, "version": 2}
        assert store.sessions[session_id].version == 2

    @pytest.mark.asyncio
    async def test_query_mismatch_starts_new_session(self, service, store):
        first = await _payloads(
            service, GenerationRequest(query="forest", limit=6), ["groq-oss-120b"], multi=False
        )

        second = await _payloads(
            service,
            GenerationRequest(query="desert", limit=6, session_id=first[0]["sessionId"]),
            ["groq-oss-120b"],
            multi=False,
        )

        assert second[0]["sessionId"] != first[0]["sessionId"]
        assert second[0]["version"] == 1
        assert len(store.sessions) == 2

    @pytest.mark.asyncio
    async def test_prior_feedback_reaches_prompt(self, service, store, factory):
        first = await _payloads(
            service, GenerationRequest(query="forest", limit=6), ["groq-oss-120b"], multi=False
        )
        session_id = first[0]["sessionId"]
        await store.save_feedback(session_id, palette_id(TEAL), "good")
        await store.save_feedback(session_id, palette_id(SUNSET), "bad")

        await _payloads(
            service,
            GenerationRequest(query="forest", limit=6, session_id=session_id, examples=[FOREST]),
            ["groq-oss-120b"],
            multi=False,
        )

        bias = factory.calls[1]["bias"]
        assert bias.examples == [FOREST]
        assert bias.good == [palette_id(TEAL)]
        assert bias.bad == [palette_id(SUNSET)]

    @pytest.mark.asyncio
    async def test_persist_failure_still_sends_done(self, test_settings, factory):
        service = GenerationService(FailingPersistStore(), test_settings, producer_factory=factory)

        payloads = await _payloads(
            service, GenerationRequest(query="forest", limit=6), ["groq-oss-120b"], multi=False
        )

        assert payloads[-1]["type"] == "done"
        assert service.store.sessions[payloads[0]["sessionId"]].version == 1


class TestCancellation:
    """Tests for streams that end early."""

    @pytest.mark.asyncio
    async def test_closed_stream_sends_no_done_and_records_nothing(self, store, test_settings):
        producer = ScriptedProducer("groq-oss-120b", [TEAL, SUNSET, FOREST], delay=0.01)
        service = GenerationService(
            store, test_settings, producer_factory=lambda *args: [producer]
        )
        seen = []

        async with aclosing(
            service.payloads(
                GenerationRequest(query="forest", limit=6), ["groq-oss-120b"], multi=False
            )
        ) as payloads:
            async for payload in payloads:
                seen.append(payload)
                if payload["type"] == "palette":
                    break

        assert "done" not in [p["type"] for p in seen]
        assert producer.closed
        session_id = seen[0]["sessionId"]
        assert store.versions[session_id][1].generated_ids == []

    @pytest.mark.asyncio
    async def test_timeout_cancels_without_done(self, store, test_settings, caplog):
        caplog.set_level(logging.WARNING, logger="palette_relay.services.generation")
        settings = test_settings.model_copy(update={"stream_timeout_seconds": 0.05})
        producer = ScriptedProducer("groq-oss-120b", [TEAL, SUNSET], delay=1.0)
        service = GenerationService(store, settings, producer_factory=lambda *args: [producer])

        payloads = await _payloads(
            service, GenerationRequest(query="forest", limit=6), ["groq-oss-120b"], multi=False
        )

        assert [p["type"] for p in payloads] == ["session"]
        assert producer.closed
        assert "timed out after 0.05 seconds" in caplog.text

    @pytest.mark.asyncio
    async def test_slow_consumer_past_deadline_ends_cleanly(self, store, test_settings):
        """A consumer that stalls past the deadline gets a quiet end, not a cancellation."""
        settings = test_settings.model_copy(update={"stream_timeout_seconds": 0.1})
        producer = ScriptedProducer("groq-oss-120b", [TEAL, SUNSET], delay=0.01)
        service = GenerationService(store, settings, producer_factory=lambda *args: [producer])
        seen = []

        async with aclosing(
            service.payloads(
                GenerationRequest(query="forest", limit=6), ["groq-oss-120b"], multi=False
            )
        ) as payloads:
            async for payload in payloads:
                seen.append(payload)
                if payload["type"] == "palette":
                    await asyncio.sleep(0.3)

        assert [p["type"] for p in seen] == ["session", "palette"]
        assert asyncio.current_task().cancelling() == 0
        assert producer.closed
        assert store.versions[seen[0]["sessionId"]][1].generated_ids == []

    @pytest.mark.asyncio
    async def test_cancelled_consumer_task_closes_producers(self, store, test_settings):
        """Cancelling the task that iterates the stream, as a client disconnect does."""
        producer = ScriptedProducer("groq-oss-120b", [TEAL, SUNSET, FOREST], delay=0.05)
        service = GenerationService(
            store, test_settings, producer_factory=lambda *args: [producer]
        )
        frames = []
        first_palette = asyncio.Event()

        async def consume():
            async for frame in service.stream(
                GenerationRequest(query="forest", limit=6), ["groq-oss-120b"], multi=False
            ):
                frames.append(json.loads(frame[len("data: ") :]))
                if frames[-1]["type"] == "palette":
                    first_palette.set()

        task = asyncio.create_task(consume())
        await asyncio.wait_for(first_palette.wait(), timeout=5)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert producer.closed
        assert producer.yielded < 3
        assert "done" not in [f["type"] for f in frames]


class TestStream:
    @pytest.mark.asyncio
    async def test_frames_are_sse(self, service):
        frames = [
            f
            async for f in service.stream(
                GenerationRequest(query="forest", limit=6), ["groq-oss-120b"], multi=False
            )
        ]

        assert all(f.startswith("data: ") and f.endswith("\n\n") for f in frames)
        assert json.loads(frames[0][6:])["type"] == "session"
        assert json.loads(frames[-1][6:])["type"] == "done"


class TestMergeFeedback:
    def test_request_labels_win(self):
        request = GenerationRequest(query="q", limit=1, good=["aaa"], bad=["ccc"])

        bias = merge_feedback(request, {"aaa": "bad", "bbb": "good", "ccc": "good"})

        assert sorted(bias.good) == ["aaa", "bbb"]
        assert bias.bad == ["ccc"]

    def test_empty(self):
        assert not merge_feedback(GenerationRequest(query="q", limit=1), {})


class TestBuildProducer:
    def test_text_mode(self, test_settings):
        with patch("palette_relay.services.generation.get_llm") as mock_get_llm:
            producer = build_producer(
                get_producer_spec("groq-oss-120b"), "forest", 6, PromptBias(), test_settings
            )

        assert isinstance(producer, TextStreamProducer)
        assert producer.producer_id == "groq-oss-120b"
        assert producer.name == "Groq OSS 120B"
        mock_get_llm.assert_not_called()

    def test_structured_mode(self, test_settings):
        producer = build_producer(
            get_producer_spec("gemini-2.0-flash"), "forest", 6, PromptBias(), test_settings
        )

        assert isinstance(producer, StructuredStreamProducer)

    @pytest.mark.asyncio
    async def test_missing_key_reported_as_failure(self, test_settings):
        """Without an API key the producer fails with a model error instead of raising."""
        producer = build_producer(
            get_producer_spec("groq-oss-120b"), "forest", 6, PromptBias(), test_settings
        )

        events = [e async for e in producer.run()]

        assert [e.kind for e in events] == ["started", "failed"]
        assert "GROQ_API_KEY" in events[-1].error
