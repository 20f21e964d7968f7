"""Generation service: one request in, one SSE frame stream out.

Resolves the refinement session, folds prior feedback into the prompt,
starts one producer per catalog entry, relays the merged events and
records what was produced once every producer has finished.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from palette_relay.dal.sessions import collect_prior_feedback
from palette_relay.exceptions import DALError
from palette_relay.llm.catalog import resolve_producer_keys
from palette_relay.llm.factory import get_llm
from palette_relay.llm.streams import structured_palettes, text_fragments
from palette_relay.prompts import PromptBias, build_messages
from palette_relay.settings import Settings, get_settings
from palette_relay.streaming.events import Done, palette_id
from palette_relay.streaming.fanin import FanInScheduler
from palette_relay.streaming.producers import (
    Producer,
    StructuredStreamProducer,
    TextStreamProducer,
)
from palette_relay.streaming.sse import format_sse, session_payload, to_payload

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable, Sequence

    from palette_relay.dal.sessions import Session, SessionStore
    from palette_relay.llm.catalog import ProducerSpec

logger = logging.getLogger(__name__)


@dataclass
class GenerationRequest:
    """A palette generation request.

    Attributes:
        query: Theme to generate palettes for.
        limit: Target palette count per producer.
        session_id: Session to continue, if any.
        examples: Palettes to steer towards.
        good: Identifiers rated good in this request.
        bad: Identifiers rated bad in this request.
        user_id: Owner recorded on a new session.
    """

    query: str
    limit: int
    session_id: str | None = None
    examples: list[list[str]] = field(default_factory=list)
    good: list[str] = field(default_factory=list)
    bad: list[str] = field(default_factory=list)
    user_id: str | None = None


def build_producer(
    spec: ProducerSpec,
    query: str,
    limit: int,
    bias: PromptBias,
    settings: Settings,
) -> Producer:
    """Build the producer for one catalog entry.

    The chat model is created lazily when the producer starts streaming, so a
    missing API key surfaces as that producer's ``Failed`` event.
    """
    messages = build_messages(query, limit, bias, mode=spec.mode)

    if spec.mode == "structured":
        return StructuredStreamProducer(
            spec.key,
            spec.name,
            lambda: structured_palettes(get_llm(spec, settings=settings), messages),
            max_colors=spec.max_colors,
        )

    return TextStreamProducer(
        spec.key,
        spec.name,
        lambda: text_fragments(get_llm(spec, settings=settings), messages),
        max_colors=spec.max_colors,
        max_candidate_chars=settings.extractor_max_candidate_chars,
    )


def build_producers(
    specs: Sequence[ProducerSpec],
    query: str,
    limit: int,
    bias: PromptBias,
    settings: Settings,
) -> list[Producer]:
    return [build_producer(spec, query, limit, bias, settings) for spec in specs]


def merge_feedback(request: GenerationRequest, prior: dict[str, str]) -> PromptBias:
    """Combine earlier versions' feedback with the request's own.

    The request wins when both rate the same palette.
    """
    labels = dict(prior)
    labels.update({identifier: "good" for identifier in request.good})
    labels.update({identifier: "bad" for identifier in request.bad})
    return PromptBias(
        examples=list(request.examples),
        good=[i for i, label in labels.items() if label == "good"],
        bad=[i for i, label in labels.items() if label == "bad"],
    )


class GenerationService:
    """Run palette generation for one request.

    Args:
        store: Session persistence.
        settings: Settings (defaults to ``get_settings()``).
        producer_factory: Builds producers from catalog entries; replaced in
            tests with scripted producers.
    """

    def __init__(
        self,
        store: SessionStore,
        settings: Settings | None = None,
        producer_factory: Callable[..., list[Producer]] | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self._producer_factory = producer_factory or build_producers

    async def resolve_session(self, request: GenerationRequest) -> tuple[Session, int]:
        """Find or create the session and pick the version this run writes to.

        A known session whose query matches continues at ``version + 1``;
        anything else starts a new session at version 1.
        """
        if request.session_id:
            existing = await self.store.load_session(request.query, request.session_id)
            if existing is not None:
                return existing, existing.version + 1
            logger.info(
                "Session %s does not match query %r, starting a new one",
                request.session_id,
                request.query,
            )

        session = await self.store.create_session(request.query, request.user_id)
        return session, session.version

    async def _persist(self, session: Session, version: int, done: Done) -> None:
        identifiers = [palette_id(record) for record in done.all_records]
        try:
            await self.store.append_generated_identifiers(session.id, version, identifiers)
            await self.store.advance_version(session.id, version)
        except DALError as e:
            logger.error(
                "Failed to record version %d of session %s (correlation_id=%s): %s",
                version,
                session.id,
                e.correlation_id,
                e,
            )
            return
        logger.info(
            "Session %s version %d recorded %d palettes", session.id, version, len(identifiers)
        )

    async def payloads(
        self,
        request: GenerationRequest,
        producer_keys: list[str] | None,
        *,
        multi: bool,
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Yield the wire payloads for ``request``, ``session`` first.

        Args:
            request: Generation request.
            producer_keys: Catalog keys to run (``None`` or empty = whole catalog).
            multi: Multi-producer wire mode.

        The stream is cancelled, without a ``done`` frame, when the consumer
        closes it or ``stream_timeout_seconds`` elapses.
        """
        specs = resolve_producer_keys(producer_keys)
        session, version = await self.resolve_session(request)
        yield session_payload(session.id, version)

        prior = await collect_prior_feedback(self.store, session, version)
        bias = merge_feedback(request, prior)
        producers = self._producer_factory(
            specs, request.query, request.limit, bias, self.settings
        )

        timeout = self.settings.stream_timeout_seconds
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        async with aclosing(
            FanInScheduler(producers, strict=self.settings.debug).run()
        ) as events:
            while True:
                # The deadline bounds waits on the scheduler, never the consumer.
                try:
                    if loop.time() >= deadline:
                        raise TimeoutError
                    async with asyncio.timeout_at(deadline):
                        event = await anext(events, None)
                except TimeoutError:
                    logger.warning(
                        "Generation for session %s timed out after %s seconds, cancelled",
                        session.id,
                        timeout,
                    )
                    return
                if event is None:
                    return
                if isinstance(event, Done):
                    await self._persist(session, version, event)
                payload = to_payload(event, multi=multi)
                if payload is not None:
                    yield payload

    async def stream(
        self,
        request: GenerationRequest,
        producer_keys: list[str] | None,
        *,
        multi: bool,
    ) -> AsyncGenerator[str, None]:
        """Yield ``payloads()`` as SSE frames."""
        async with aclosing(self.payloads(request, producer_keys, multi=multi)) as payloads:
            async for payload in payloads:
                yield format_sse(payload)
