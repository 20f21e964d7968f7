"""Refinement session tables.

A session groups repeated generations for one theme. Every generation run
is a version; each version records the palette identifiers it produced and
the feedback the user gave on them.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# Constraint names the alembic revision creates with op.f().
NAMING_CONVENTION: dict[str, str] = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class _SessionRow(Base):
    """UUID key and timestamps shared by both session tables."""

    __abstract__ = True

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    # Bumped on every write, so the latest session for a query sorts first.
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class PaletteSession(_SessionRow):
    """A refinement session for one theme."""

    __tablename__ = "palette_session"

    query: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        index=True,
        doc="Normalized theme (lower-cased, trimmed)",
    )
    user_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        index=True,
        doc="Owner, when the caller is identified",
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        doc="Latest generation version",
    )

    versions: Mapped[list["PaletteSessionVersion"]] = relationship(
        "PaletteSessionVersion",
        back_populates="session",
        lazy="selectin",
        order_by="PaletteSessionVersion.version",
        cascade="all, delete-orphan",
    )


class PaletteSessionVersion(_SessionRow):
    """Generated palettes and feedback for one version of a session."""

    __tablename__ = "palette_session_version"
    __table_args__ = (UniqueConstraint("session_id", "version", name="uq_palette_session_version"),)

    session_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("palette_session.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    generated_ids: Mapped[list] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
        doc="Palette identifiers produced in this version, in arrival order",
    )
    feedback: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        doc="Palette identifier -> 'good' | 'bad'",
    )

    session: Mapped[PaletteSession] = relationship(
        "PaletteSession",
        back_populates="versions",
    )
