"""Shared FastAPI dependencies.

Tests override these through ``app.dependency_overrides``.
"""

from fastapi import Depends

from palette_relay import storage
from palette_relay.dal.sessions import DatabaseSessionStore, SessionStore
from palette_relay.services.generation import GenerationService
from palette_relay.settings import Settings, get_settings


def get_app_settings() -> Settings:
    return get_settings()


def get_session_store() -> SessionStore:
    """Provide the session store (PostgreSQL, one transaction per operation)."""
    return DatabaseSessionStore(storage.get_session)


def get_generation_service(
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_app_settings),
) -> GenerationService:
    return GenerationService(store, settings)
