"""stage_lifecycle_tables

Creates the stage lifecycle tables:
  - stages            - status, approval gate and current round per stage
  - approvals         - approval requests scoped to (stage, round)
  - documents         - round-scoped files
  - discussion_notes  - round-scoped notes
  - stage_activity    - append-only lifecycle trail

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 5e1c0a7d2b90
Revises:
Create Date: 2026-10-18 09:12:44.103511
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5e1c0a7d2b90'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Stages ────────────────────────────────────────────────────────────
    if "stages" not in existing:
        op.create_table(
            "stages",
            sa.Column("id", sa.String(length=32), nullable=False),
            sa.Column("phase_id", sa.String(length=64), nullable=False,
                      comment="Owning phase, managed outside the engine"),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=30), nullable=False,
                      server_default="not_started",
                      comment="not_started | in_progress | awaiting_approval | completed | on_hold"),
            sa.Column("allows_rounds", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("current_round", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("requires_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("approval_contact_id", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.CheckConstraint("current_round >= 1", name="ck_stages_current_round_positive"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_stages_phase_id", "stages", ["phase_id"])
        op.create_index("ix_stages_phase_order", "stages", ["phase_id", "order"])

    # ── Approvals ─────────────────────────────────────────────────────────
    if "approvals" not in existing:
        op.create_table(
            "approvals",
            sa.Column("id", sa.String(length=32), nullable=False),
            sa.Column("stage_id", sa.String(length=32), nullable=False),
            sa.Column("round_number", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("title", sa.String(length=200), nullable=False,
                      server_default="Approval Request"),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=30), nullable=False,
                      server_default="pending",
                      comment="pending | approved | rejected | revision_required"),
            sa.Column("requested_by", sa.String(length=64), nullable=True),
            sa.Column("requester_name", sa.String(length=200), nullable=True),
            sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("assigned_to", sa.String(length=64), nullable=True),
            sa.Column("assignee_name", sa.String(length=200), nullable=True),
            sa.Column("approved_by", sa.String(length=200), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["stage_id"], ["stages.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_approvals_stage_round", "approvals", ["stage_id", "round_number"])

    # ── Round-scoped content ──────────────────────────────────────────────
    if "documents" not in existing:
        op.create_table(
            "documents",
            sa.Column("id", sa.String(length=32), nullable=False),
            sa.Column("stage_id", sa.String(length=32), nullable=False),
            sa.Column("round_number", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("url", sa.String(length=1024), nullable=True),
            sa.Column("uploaded_by", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["stage_id"], ["stages.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_documents_stage_round", "documents", ["stage_id", "round_number"])

    if "discussion_notes" not in existing:
        op.create_table(
            "discussion_notes",
            sa.Column("id", sa.String(length=32), nullable=False),
            sa.Column("stage_id", sa.String(length=32), nullable=False),
            sa.Column("round_number", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("is_pinned", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("author_id", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["stage_id"], ["stages.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_discussion_notes_stage_round", "discussion_notes",
                        ["stage_id", "round_number"])

    # ── Activity trail ────────────────────────────────────────────────────
    if "stage_activity" not in existing:
        op.create_table(
            "stage_activity",
            sa.Column("id", sa.String(length=32), nullable=False),
            sa.Column("stage_id", sa.String(length=32), nullable=False),
            sa.Column("round_number", sa.Integer(), nullable=True,
                      comment="Round at the time of the event; not renumbered on round deletion"),
            sa.Column("type", sa.String(length=40), nullable=False),
            sa.Column("actor", sa.String(length=200), nullable=False, server_default="system"),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["stage_id"], ["stages.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_stage_activity_stage_id", "stage_activity", ["stage_id"])


def downgrade():
    op.drop_table("stage_activity")
    op.drop_table("discussion_notes")
    op.drop_table("documents")
    op.drop_table("approvals")
    op.drop_table("stages")
