"""Palette generation endpoints (Server-Sent Events).

- POST /palettes/generate: one producer (``DEFAULT_PRODUCER``)
- POST /palettes/compare: every enabled producer, events tagged by ``modelKey``
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from palette_relay.api.deps import get_app_settings, get_generation_service
from palette_relay.api.schemas import GenerateRequest
from palette_relay.exceptions import ConfigurationError
from palette_relay.llm.catalog import resolve_producer_keys
from palette_relay.services.generation import GenerationRequest, GenerationService
from palette_relay.settings import Settings
from palette_relay.streaming.sse import SSE_HEADERS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/palettes", tags=["Palettes"])


def _to_generation_request(body: GenerateRequest, settings: Settings) -> GenerationRequest:
    return GenerationRequest(
        query=body.query,
        limit=body.limit or settings.default_limit,
        session_id=body.session_id,
        examples=body.examples,
        good=body.feedback.good,
        bad=body.feedback.bad,
    )


def _event_stream(
    service: GenerationService,
    request: GenerationRequest,
    producer_keys: list[str],
    multi: bool,
) -> StreamingResponse:
    return StreamingResponse(
        service.stream(request, producer_keys, multi=multi),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.post("/generate", response_model=None)
async def generate_palettes(
    body: GenerateRequest,
    service: GenerationService = Depends(get_generation_service),
    settings: Settings = Depends(get_app_settings),
) -> StreamingResponse:
    """Stream palettes from the default producer."""
    # Fail before the stream starts when the configured default is not in the catalog
    resolve_producer_keys([settings.default_producer])
    request = _to_generation_request(body, settings)
    logger.info("Generate %r (limit %d)", request.query, request.limit)
    return _event_stream(service, request, [settings.default_producer], multi=False)


@router.post("/compare", response_model=None)
async def compare_palettes(
    body: GenerateRequest,
    service: GenerationService = Depends(get_generation_service),
    settings: Settings = Depends(get_app_settings),
) -> StreamingResponse:
    """Stream palettes from several producers at once."""
    keys = body.models or settings.enabled_producer_keys
    try:
        specs = resolve_producer_keys(keys)
    except ConfigurationError as e:
        if body.models:
            raise HTTPException(status_code=400, detail=str(e)) from e
        raise
    request = _to_generation_request(body, settings)
    logger.info(
        "Compare %r across %d producers (limit %d)", request.query, len(specs), request.limit
    )
    return _event_stream(service, request, [spec.key for spec in specs], multi=True)
