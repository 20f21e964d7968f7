"""Refinement session store: versions, generated palettes and feedback.

``SessionStore`` is the contract the generation service depends on. Two
implementations:

- ``DatabaseSessionStore``: PostgreSQL via ``SessionRepository``, one
  transaction per operation.
- ``InMemorySessionStore``: process-local, used by the CLI and tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal, Protocol
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from palette_relay.exceptions import DALError, SessionNotFoundError
from palette_relay.storage.entities import PaletteSession, PaletteSessionVersion

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from contextlib import AbstractAsyncContextManager

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

FeedbackLabel = Literal["good", "bad"]
FEEDBACK_LABELS = ("good", "bad")


def normalize_query(query: str) -> str:
    """Lower-case and trim a theme so repeated requests match."""
    return query.strip().lower()


@dataclass
class Session:
    """A refinement session.

    Attributes:
        id: Session identifier.
        query: Normalized theme.
        version: Latest version that ran.
        user_id: Owner, if known.
    """

    id: str
    query: str
    version: int = 1
    user_id: str | None = None


@dataclass
class VersionRecord:
    """What one version produced and how it was rated."""

    version: int
    generated_ids: list[str] = field(default_factory=list)
    feedback: dict[str, str] = field(default_factory=dict)


def _append_unique(existing: list[str], identifiers: Iterable[str]) -> list[str]:
    seen = set(existing)
    merged = list(existing)
    for identifier in identifiers:
        if identifier not in seen:
            seen.add(identifier)
            merged.append(identifier)
    return merged


def _check_label(label: str) -> None:
    if label not in FEEDBACK_LABELS:
        raise ValueError(f"Feedback label must be one of {FEEDBACK_LABELS}, got {label!r}")


class SessionStore(Protocol):
    """Persistence contract for refinement sessions."""

    async def load_session(self, query: str, session_id: str | None = None) -> Session | None:
        """Find a session for ``query``.

        With ``session_id`` the session must exist and its normalized query
        must match; without it the most recently updated session for the
        query is returned.
        """
        ...

    async def get_session(self, session_id: str) -> Session | None:
        """Find a session by id."""
        ...

    async def create_session(self, query: str, user_id: str | None = None) -> Session:
        """Create a session at version 1."""
        ...

    async def append_generated_identifiers(
        self, session_id: str, version: int, identifiers: Iterable[str]
    ) -> None:
        """Append identifiers to a version, skipping ones already recorded."""
        ...

    async def get_feedback_for_version(self, session: Session, version: int) -> dict[str, str]:
        """Feedback labels recorded on ``version`` (empty if the version never ran)."""
        ...

    async def advance_version(self, session_id: str, version: int) -> None:
        """Record ``version`` as the latest the session has run."""
        ...

    async def save_feedback(self, session_id: str, identifier: str, label: str) -> None:
        """Label a palette on the session's current version."""
        ...

    async def delete_feedback(self, session_id: str, identifier: str) -> None:
        """Remove a palette's label on the session's current version."""
        ...


async def collect_prior_feedback(
    store: SessionStore, session: Session, before_version: int
) -> dict[str, str]:
    """Merge feedback from every version before ``before_version``.

    Later versions override earlier labels for the same palette.
    """
    merged: dict[str, str] = {}
    for version in range(1, before_version):
        merged.update(await store.get_feedback_for_version(session, version))
    return merged


class SessionRepository:
    """Repository for PaletteSession and PaletteSessionVersion rows.

    Operates inside the caller's transaction; it flushes but never commits.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session
        """
        self.session = session

    async def get_by_id(self, session_id: str) -> PaletteSession | None:
        result = await self.session.execute(
            select(PaletteSession).where(PaletteSession.id == session_id)
        )
        return result.scalar_one_or_none()

    async def get_latest_by_query(self, query: str) -> PaletteSession | None:
        result = await self.session.execute(
            select(PaletteSession)
            .where(PaletteSession.query == normalize_query(query))
            .order_by(PaletteSession.updated_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_required(self, session_id: str) -> PaletteSession:
        """Get a session or raise ``SessionNotFoundError``."""
        row = await self.get_by_id(session_id)
        if row is None:
            raise SessionNotFoundError(session_id)
        return row

    async def create(self, query: str, user_id: str | None = None) -> PaletteSession:
        """Create a session and its first version row."""
        row = PaletteSession(
            id=str(uuid4()),
            query=normalize_query(query),
            user_id=user_id,
            version=1,
        )
        self.session.add(row)
        self.session.add(
            PaletteSessionVersion(
                id=str(uuid4()),
                session_id=row.id,
                version=1,
                generated_ids=[],
                feedback={},
            )
        )
        await self.session.flush()
        return row

    async def get_version(self, session_id: str, version: int) -> PaletteSessionVersion | None:
        result = await self.session.execute(
            select(PaletteSessionVersion).where(
                PaletteSessionVersion.session_id == session_id,
                PaletteSessionVersion.version == version,
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create_version(self, session_id: str, version: int) -> PaletteSessionVersion:
        row = await self.get_version(session_id, version)
        if row is None:
            row = PaletteSessionVersion(
                id=str(uuid4()),
                session_id=session_id,
                version=version,
                generated_ids=[],
                feedback={},
            )
            self.session.add(row)
            await self.session.flush()
        return row

    async def append_generated_ids(
        self, session_id: str, version: int, identifiers: Iterable[str]
    ) -> PaletteSessionVersion:
        row = await self.get_or_create_version(session_id, version)
        # Reassign so the JSONB column is marked dirty
        row.generated_ids = _append_unique(row.generated_ids or [], identifiers)
        await self.session.flush()
        return row

    async def set_version(self, session_id: str, version: int) -> PaletteSession:
        row = await self.get_required(session_id)
        row.version = version
        await self.get_or_create_version(session_id, version)
        await self.session.flush()
        return row

    async def set_feedback(
        self, session_id: str, identifier: str, label: str | None
    ) -> PaletteSessionVersion:
        """Set (or clear, with ``label=None``) feedback on the current version."""
        session_row = await self.get_required(session_id)
        row = await self.get_or_create_version(session_id, session_row.version)
        feedback = dict(row.feedback or {})
        if label is None:
            feedback.pop(identifier, None)
        else:
            feedback[identifier] = label
            if label == "bad":
                row.generated_ids = [i for i in row.generated_ids or [] if i != identifier]
        row.feedback = feedback
        await self.session.flush()
        return row


def _to_session(row: PaletteSession) -> Session:
    return Session(id=row.id, query=row.query, version=row.version, user_id=row.user_id)


class DatabaseSessionStore:
    """``SessionStore`` backed by PostgreSQL.

    Each operation runs in its own short transaction so a long-lived stream
    never holds a connection.

    Args:
        session_factory: Callable returning an async context manager that
            yields an ``AsyncSession`` (``palette_relay.storage.get_session``).
    """

    def __init__(self, session_factory: Callable[[], AbstractAsyncContextManager[AsyncSession]]):
        self._session_factory = session_factory

    async def load_session(self, query: str, session_id: str | None = None) -> Session | None:
        try:
            async with self._session_factory() as db:
                repo = SessionRepository(db)
                if session_id is None:
                    row = await repo.get_latest_by_query(query)
                else:
                    row = await repo.get_by_id(session_id)
                    if row is not None and row.query != normalize_query(query):
                        return None
                return _to_session(row) if row is not None else None
        except SQLAlchemyError as e:
            raise DALError(f"Failed to load session: {e}") from e

    async def get_session(self, session_id: str) -> Session | None:
        try:
            async with self._session_factory() as db:
                row = await SessionRepository(db).get_by_id(session_id)
                return _to_session(row) if row is not None else None
        except SQLAlchemyError as e:
            raise DALError(f"Failed to load session: {e}") from e

    async def create_session(self, query: str, user_id: str | None = None) -> Session:
        try:
            async with self._session_factory() as db:
                row = await SessionRepository(db).create(query, user_id)
                await db.commit()
                logger.info("Created session %s for %r", row.id, row.query)
                return _to_session(row)
        except SQLAlchemyError as e:
            raise DALError(f"Failed to create session: {e}") from e

    async def append_generated_identifiers(
        self, session_id: str, version: int, identifiers: Iterable[str]
    ) -> None:
        try:
            async with self._session_factory() as db:
                await SessionRepository(db).append_generated_ids(session_id, version, identifiers)
                await db.commit()
        except SQLAlchemyError as e:
            raise DALError(f"Failed to store generated palettes: {e}") from e

    async def get_feedback_for_version(self, session: Session, version: int) -> dict[str, str]:
        try:
            async with self._session_factory() as db:
                row = await SessionRepository(db).get_version(session.id, version)
                return dict(row.feedback or {}) if row is not None else {}
        except SQLAlchemyError as e:
            raise DALError(f"Failed to load feedback: {e}") from e

    async def advance_version(self, session_id: str, version: int) -> None:
        try:
            async with self._session_factory() as db:
                await SessionRepository(db).set_version(session_id, version)
                await db.commit()
        except SQLAlchemyError as e:
            raise DALError(f"Failed to advance session version: {e}") from e

    async def save_feedback(self, session_id: str, identifier: str, label: str) -> None:
        _check_label(label)
        try:
            async with self._session_factory() as db:
                await SessionRepository(db).set_feedback(session_id, identifier, label)
                await db.commit()
        except SQLAlchemyError as e:
            raise DALError(f"Failed to save feedback: {e}") from e

    async def delete_feedback(self, session_id: str, identifier: str) -> None:
        try:
            async with self._session_factory() as db:
                await SessionRepository(db).set_feedback(session_id, identifier, None)
                await db.commit()
        except SQLAlchemyError as e:
            raise DALError(f"Failed to delete feedback: {e}") from e


class InMemorySessionStore:
    """Process-local ``SessionStore``."""

    def __init__(self) -> None:
        self.sessions: dict[str, Session] = {}
        self.versions: dict[str, dict[int, VersionRecord]] = {}

    def _require(self, session_id: str) -> Session:
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _version(self, session_id: str, version: int) -> VersionRecord:
        versions = self.versions.setdefault(session_id, {})
        if version not in versions:
            versions[version] = VersionRecord(version=version)
        return versions[version]

    async def load_session(self, query: str, session_id: str | None = None) -> Session | None:
        normalized = normalize_query(query)
        if session_id is not None:
            session = self.sessions.get(session_id)
            if session is None or session.query != normalized:
                return None
            return session
        matches = [s for s in self.sessions.values() if s.query == normalized]
        return matches[-1] if matches else None

    async def get_session(self, session_id: str) -> Session | None:
        return self.sessions.get(session_id)

    async def create_session(self, query: str, user_id: str | None = None) -> Session:
        session = Session(id=str(uuid4()), query=normalize_query(query), user_id=user_id)
        self.sessions[session.id] = session
        self._version(session.id, 1)
        return session

    async def append_generated_identifiers(
        self, session_id: str, version: int, identifiers: Iterable[str]
    ) -> None:
        self._require(session_id)
        record = self._version(session_id, version)
        record.generated_ids = _append_unique(record.generated_ids, identifiers)

    async def get_feedback_for_version(self, session: Session, version: int) -> dict[str, str]:
        record = self.versions.get(session.id, {}).get(version)
        return dict(record.feedback) if record is not None else {}

    async def advance_version(self, session_id: str, version: int) -> None:
        session = self._require(session_id)
        session.version = version
        self._version(session_id, version)
        # Most recently used session wins in load_session(query)
        self.sessions[session_id] = self.sessions.pop(session_id)

    async def save_feedback(self, session_id: str, identifier: str, label: str) -> None:
        _check_label(label)
        session = self._require(session_id)
        record = self._version(session_id, session.version)
        record.feedback[identifier] = label
        if label == "bad":
            record.generated_ids = [i for i in record.generated_ids if i != identifier]

    async def delete_feedback(self, session_id: str, identifier: str) -> None:
        session = self._require(session_id)
        self._version(session_id, session.version).feedback.pop(identifier, None)
