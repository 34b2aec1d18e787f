"""
Stage model: a unit of phase work with status, approval gate and rounds.

Rounds for a stage are always numbered ``1..current_round`` contiguously.
Only the lifecycle services mutate ``status`` and ``current_round``; stage
creation and deletion belong to phase setup.
"""

from datetime import datetime, timezone

from stage_engine.models import db, new_id

# ── Constants ─────────────────────────────────────────────────────────────────

STAGE_STATUSES = frozenset({
    "not_started",
    "in_progress",
    "awaiting_approval",
    "completed",
    "on_hold",
})


class Stage(db.Model):
    """
    Stage record.

    Business rules:
    - current_round >= 1 at all times (CHECK constraint).
    - allows_rounds is fixed at creation; round operations are rejected
      when it is False.
    - requires_approval gates the transition to ``completed``.
    """

    __tablename__ = "stages"

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    phase_id = db.Column(
        db.String(64),
        nullable=False,
        index=True,
        comment="Owning phase, managed outside the engine",
    )

    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    order = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(
        db.String(30),
        nullable=False,
        default="not_started",
        comment="not_started | in_progress | awaiting_approval | completed | on_hold",
    )

    # Round configuration
    allows_rounds = db.Column(db.Boolean, nullable=False, default=False)
    current_round = db.Column(db.Integer, nullable=False, default=1)

    # Approval configuration
    requires_approval = db.Column(db.Boolean, nullable=False, default=False)
    approval_contact_id = db.Column(
        db.String(64),
        nullable=True,
        comment="Default approver suggested when an approval is requested",
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint("current_round >= 1", name="ck_stages_current_round_positive"),
        db.Index("ix_stages_phase_order", "phase_id", "order"),
    )

    @property
    def rounds(self) -> list[int]:
        """Round numbers that exist for this stage."""
        return list(range(1, (self.current_round or 1) + 1))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "phase_id": self.phase_id,
            "name": self.name,
            "description": self.description,
            "order": self.order,
            "status": self.status,
            "allows_rounds": self.allows_rounds,
            "current_round": self.current_round,
            "requires_approval": self.requires_approval,
            "approval_contact_id": self.approval_contact_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Stage {self.id} {self.status} round={self.current_round}>"
