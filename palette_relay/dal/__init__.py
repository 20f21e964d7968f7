"""Data Access Layer for Palette Relay."""

from palette_relay.dal.sessions import (
    DatabaseSessionStore,
    InMemorySessionStore,
    Session,
    SessionRepository,
    SessionStore,
    VersionRecord,
    collect_prior_feedback,
    normalize_query,
)

__all__ = [
    "DatabaseSessionStore",
    "InMemorySessionStore",
    "Session",
    "SessionRepository",
    "SessionStore",
    "VersionRecord",
    "collect_prior_feedback",
    "normalize_query",
]
