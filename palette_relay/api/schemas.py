"""API request and response schemas."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from palette_relay.streaming.extractor import HEX_COLOR


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Health check response."""

    status: HealthStatus = Field(..., description="Overall system health")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Health check timestamp",
    )
    version: str = Field(default="0.1.0", description="Application version")


class FeedbackInput(BaseModel):
    """Palette identifiers rated in the current request."""

    good: list[str] = Field(default_factory=list)
    bad: list[str] = Field(default_factory=list)


class GenerateRequest(BaseModel):
    """Body of the palette generation endpoints."""

    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(..., min_length=1, max_length=500, description="Theme to generate for")
    limit: int | None = Field(
        default=None,
        ge=1,
        le=48,
        description="Target palette count per producer (defaults to DEFAULT_LIMIT)",
    )
    session_id: str | None = Field(
        default=None,
        alias="sessionId",
        description="Session to continue; omitted or unknown starts a new one",
    )
    examples: list[list[str]] = Field(
        default_factory=list,
        description="Palettes to steer generation towards",
    )
    feedback: FeedbackInput = Field(default_factory=FeedbackInput)
    models: list[str] | None = Field(
        default=None,
        description="Catalog keys for the compare endpoint (defaults to the enabled producers)",
    )

    @field_validator("query")
    @classmethod
    def _strip_query(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("query must not be blank")
        return value

    @field_validator("examples")
    @classmethod
    def _check_examples(cls, value: list[list[str]]) -> list[list[str]]:
        for palette in value:
            for color in palette:
                if not HEX_COLOR.match(color):
                    raise ValueError(f"Invalid hex color in examples: {color!r}")
        return value


class SessionResponse(BaseModel):
    """A refinement session."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., serialization_alias="sessionId")
    query: str
    version: int


class FeedbackRequest(BaseModel):
    """Rate one palette on the session's current version."""

    identifier: str = Field(
        ..., min_length=1, description="Palette identifier (hex digits joined by '-')"
    )
    label: Literal["good", "bad"]


class FeedbackResponse(BaseModel):
    """Feedback on the session's current version."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., serialization_alias="sessionId")
    version: int
    feedback: dict[str, Literal["good", "bad"]] = Field(default_factory=dict)


class ProducerInfo(BaseModel):
    """One configured producer."""

    key: str
    name: str
    provider: str
    model_id: str
    mode: Literal["text", "structured"]
    default: bool = False
    enabled: bool = True
