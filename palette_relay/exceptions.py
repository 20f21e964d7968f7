"""Palette Relay exception hierarchy.

Base exceptions for all application layers with correlation ID support.

Usage:
    from palette_relay.exceptions import DALError

    try:
        await repo.append_generated_identifiers(session_id, version, ids)
    except DALError as e:
        logger.error("Persist failed (correlation_id=%s)", e.correlation_id)
"""

import uuid


class PaletteRelayError(Exception):
    """Base exception for all Palette Relay application errors.

    Carries a correlation_id for tracing errors across layers.
    """

    def __init__(self, message: str, *, correlation_id: str | None = None):
        self.correlation_id = correlation_id or str(uuid.uuid4())
        super().__init__(message)


class ProducerContractError(PaletteRelayError):
    """A producer broke the Started / Item* / terminal event protocol.

    This is a programming defect, never a runtime condition to recover from.
    """

    def __init__(self, message: str, *, producer_id: str | None = None, **kwargs):
        self.producer_id = producer_id
        super().__init__(message, **kwargs)


class SinkClosedError(PaletteRelayError):
    """The client side of the event stream went away."""

    pass


class DALError(PaletteRelayError):
    """Errors from data access layer operations."""

    pass


class SessionNotFoundError(DALError):
    """Requested refinement session does not exist."""

    def __init__(self, session_id: str, **kwargs):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}", **kwargs)


class ConfigurationError(PaletteRelayError):
    """Errors from application configuration."""

    pass
