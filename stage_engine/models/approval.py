"""
Approval request model.

An approval belongs to exactly one ``(stage_id, round_number)``. The most
relevant request for a round decides whether the stage may complete; see
``stage_engine.services.approval_workflow.get_round_approval_status``.
"""

from datetime import datetime, timezone

from stage_engine.models import db, new_id

# ── Constants ─────────────────────────────────────────────────────────────────

APPROVAL_STATUSES = frozenset({"pending", "approved", "rejected", "revision_required"})

# Outcomes a reviewer may choose when declining
REJECTION_OUTCOMES = frozenset({"rejected", "revision_required"})

# Lookup order used when a round holds several requests
APPROVAL_STATUS_PRECEDENCE = ("pending", "approved", "rejected", "revision_required")


class Approval(db.Model):
    """Request for a named reviewer to approve or reject a stage round."""

    __tablename__ = "approvals"

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    stage_id = db.Column(
        db.String(32),
        db.ForeignKey("stages.id", ondelete="CASCADE"),
        nullable=False,
    )
    round_number = db.Column(db.Integer, nullable=False, default=1)

    title = db.Column(db.String(200), nullable=False, default="Approval Request")
    message = db.Column(db.Text, nullable=True, comment="Note from the requester")
    status = db.Column(
        db.String(30),
        nullable=False,
        default="pending",
        comment="pending | approved | rejected | revision_required",
    )

    requested_by = db.Column(db.String(64), nullable=True)
    requester_name = db.Column(db.String(200), nullable=True)
    requested_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    assigned_to = db.Column(db.String(64), nullable=True)
    assignee_name = db.Column(db.String(200), nullable=True)

    # Resolution (used for both approve and reject)
    approved_by = db.Column(db.String(200), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True, comment="Note from the reviewer")

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
        db.Index("ix_approvals_stage_round", "stage_id", "round_number"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "round_number": self.round_number,
            "title": self.title,
            "message": self.message,
            "status": self.status,
            "requested_by": self.requested_by,
            "requester_name": self.requester_name,
            "requested_at": self.requested_at.isoformat() if self.requested_at else None,
            "assigned_to": self.assigned_to,
            "assignee_name": self.assignee_name,
            "approved_by": self.approved_by,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "notes": self.notes,
        }

    def __repr__(self) -> str:
        return f"<Approval {self.id} stage={self.stage_id} r{self.round_number} {self.status}>"
