"""Refinement session endpoints: lookup and feedback."""

import logging

from fastapi import APIRouter, Depends, Query, status

from palette_relay.api.deps import get_session_store
from palette_relay.api.schemas import FeedbackRequest, FeedbackResponse, SessionResponse
from palette_relay.dal.sessions import Session, SessionStore
from palette_relay.exceptions import SessionNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["Sessions"])


async def _require_session(store: SessionStore, session_id: str) -> Session:
    session = await store.get_session(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)
    return session


async def _feedback_response(store: SessionStore, session: Session) -> FeedbackResponse:
    feedback = await store.get_feedback_for_version(session, session.version)
    return FeedbackResponse(session_id=session.id, version=session.version, feedback=feedback)


@router.get("", response_model=SessionResponse)
async def find_session(
    query: str = Query(..., min_length=1, description="Theme to look up"),
    store: SessionStore = Depends(get_session_store),
) -> SessionResponse:
    """Latest session for a theme."""
    session = await store.load_session(query)
    if session is None:
        raise SessionNotFoundError(query)
    return SessionResponse(session_id=session.id, query=session.query, version=session.version)


@router.get("/{session_id}/feedback", response_model=FeedbackResponse)
async def get_feedback(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> FeedbackResponse:
    """Feedback recorded on the session's current version."""
    session = await _require_session(store, session_id)
    return await _feedback_response(store, session)


@router.post("/{session_id}/feedback", response_model=FeedbackResponse)
async def save_feedback(
    session_id: str,
    body: FeedbackRequest,
    store: SessionStore = Depends(get_session_store),
) -> FeedbackResponse:
    """Rate a palette good or bad.

    A ``bad`` rating also removes the palette from the version's generated set.
    """
    session = await _require_session(store, session_id)
    await store.save_feedback(session.id, body.identifier, body.label)
    logger.info("Session %s: %s rated %s", session.id, body.identifier, body.label)
    return await _feedback_response(store, session)


@router.delete("/{session_id}/feedback/{identifier}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_feedback(
    session_id: str,
    identifier: str,
    store: SessionStore = Depends(get_session_store),
) -> None:
    """Remove a palette's rating."""
    session = await _require_session(store, session_id)
    await store.delete_feedback(session.id, identifier)
