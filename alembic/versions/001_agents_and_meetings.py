"""Create agents and meetings tables.

Revision ID: 001_agents_and_meetings
Revises:
Create Date: 2026-10-18

- agents: per-user AI agent personas
- meetings: sessions pairing a user with an agent; provisioning_state and
  provisioning_attempts track the remote call setup
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_agents_and_meetings"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── agents table ─────────────────────────────────────────────────────

    op.create_table(
        "agents",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("instructions", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_agents"),
    )
    op.create_index(
        "ix_agents_user_created", "agents", ["user_id", "created_at"]
    )

    # ── meetings table ───────────────────────────────────────────────────

    op.create_table(
        "meetings",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("agent_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column(
            "status",
            sa.String(20),
            server_default=sa.text("'upcoming'"),
            nullable=False,
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("transcript_url", sa.Text(), nullable=True),
        sa.Column("recording_url", sa.Text(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column(
            "provisioning_state",
            sa.String(20),
            server_default=sa.text("'pending'"),
            nullable=False,
        ),
        sa.Column(
            "provisioning_attempts",
            sa.Integer(),
            server_default=sa.text("0"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_meetings"),
        sa.ForeignKeyConstraint(
            ["agent_id"],
            ["agents.id"],
            name="fk_meetings_agent_id_agents",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_meetings_user_created", "meetings", ["user_id", "created_at", "id"]
    )
    op.create_index(
        "ix_meetings_provisioning", "meetings", ["provisioning_state", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_meetings_provisioning", table_name="meetings")
    op.drop_index("ix_meetings_user_created", table_name="meetings")
    op.drop_table("meetings")
    op.drop_index("ix_agents_user_created", table_name="agents")
    op.drop_table("agents")
