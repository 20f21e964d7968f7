"""System endpoints.

Endpoints:
- /health    Lightweight liveness probe (no dependency checks)
- /ready     Readiness probe (checks the database)
- /producers Configured palette producers
"""

import asyncio
import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError

from palette_relay import __version__, storage
from palette_relay.api.deps import get_app_settings
from palette_relay.api.schemas import HealthResponse, HealthStatus, ProducerInfo
from palette_relay.llm.catalog import PRODUCER_CATALOG
from palette_relay.settings import Settings

logger = logging.getLogger(__name__)

router = APIRouter()

_HEALTH_CHECK_TIMEOUT_S = 5.0


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check (Liveness)",
)
async def health_check() -> HealthResponse:
    """Return healthy while the process is serving requests."""
    return HealthResponse(
        status=HealthStatus.HEALTHY,
        timestamp=datetime.now(UTC),
        version=__version__,
    )


@router.get(
    "/ready",
    response_model=HealthResponse,
    summary="Readiness Probe",
)
async def readiness_check() -> HealthResponse:
    """Readiness probe: 503 while the database is unreachable."""
    try:
        await asyncio.wait_for(storage.ping(), timeout=_HEALTH_CHECK_TIMEOUT_S)
    except TimeoutError:
        logger.error("Database health check timed out after %.1fs", _HEALTH_CHECK_TIMEOUT_S)
        raise HTTPException(status_code=503, detail="Not ready: database unavailable") from None
    except (OSError, SQLAlchemyError) as e:
        logger.error("Database health check failed: %s", e)
        raise HTTPException(status_code=503, detail="Not ready: database unavailable") from None
    return HealthResponse(
        status=HealthStatus.HEALTHY,
        timestamp=datetime.now(UTC),
        version=__version__,
    )


@router.get("/producers", response_model=list[ProducerInfo], summary="Palette Producers")
async def list_producers(settings: Settings = Depends(get_app_settings)) -> list[ProducerInfo]:
    """Every catalog producer, flagged with whether the compare endpoint runs it."""
    enabled = set(settings.enabled_producer_keys) or set(PRODUCER_CATALOG)
    return [
        ProducerInfo(
            key=spec.key,
            name=spec.name,
            provider=spec.provider,
            model_id=spec.model_id,
            mode=spec.mode,
            default=spec.key == settings.default_producer,
            enabled=spec.key in enabled,
        )
        for spec in PRODUCER_CATALOG.values()
    ]
