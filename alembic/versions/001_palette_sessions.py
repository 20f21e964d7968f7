"""Refinement sessions: palette_session and palette_session_version.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """Create palette_session and palette_session_version."""
    op.create_table(
        "palette_session",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("query", sa.String(500), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_palette_session")),
    )
    op.create_index(op.f("ix_palette_session_query"), "palette_session", ["query"])
    op.create_index(op.f("ix_palette_session_user_id"), "palette_session", ["user_id"])

    op.create_table(
        "palette_session_version",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("session_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column(
            "generated_ids",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.Column(
            "feedback",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["session_id"],
            ["palette_session.id"],
            name=op.f("fk_palette_session_version_session_id_palette_session"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_palette_session_version")),
        sa.UniqueConstraint("session_id", "version", name="uq_palette_session_version"),
    )
    op.create_index(
        op.f("ix_palette_session_version_session_id"),
        "palette_session_version",
        ["session_id"],
    )


def downgrade() -> None:
    """Drop both tables."""
    op.drop_index(
        op.f("ix_palette_session_version_session_id"), table_name="palette_session_version"
    )
    op.drop_table("palette_session_version")
    op.drop_index(op.f("ix_palette_session_user_id"), table_name="palette_session")
    op.drop_index(op.f("ix_palette_session_query"), table_name="palette_session")
    op.drop_table("palette_session")
