"""
Stage activity domain model.

Models:
    - StageActivity: append-only trail of lifecycle events for a stage.
"""

import json
from datetime import datetime, timezone

from stage_engine.models import db, new_id

# ── Constants ────────────────────────────────────────────────────────────────

ACTIVITY_TYPES = frozenset({
    "status_changed",
    "stage_completed",
    "approval_requested",
    "approval_approved",
    "approval_rejected",
    "round_started",
    "round_deleted",
})


class StageActivity(db.Model):
    """Immutable activity row. Never updated; removed only with its stage."""

    __tablename__ = "stage_activity"

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    stage_id = db.Column(
        db.String(32),
        db.ForeignKey("stages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    round_number = db.Column(
        db.Integer,
        nullable=True,
        comment="Round at the time of the event; not renumbered on round deletion",
    )
    type = db.Column(db.String(40), nullable=False)
    actor = db.Column(db.String(200), nullable=False, default="system")
    metadata_json = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        try:
            metadata = json.loads(self.metadata_json) if self.metadata_json else {}
        except (TypeError, ValueError):
            metadata = {}
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "round_number": self.round_number,
            "type": self.type,
            "actor": self.actor,
            "metadata": metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<StageActivity {self.type} stage={self.stage_id}>"


def write_activity(
    *,
    stage_id: str,
    type: str,
    actor: str | None = None,
    round_number: int | None = None,
    metadata: dict | None = None,
) -> StageActivity:
    """
    Append a single activity row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) StageActivity instance.
    """
    if type not in ACTIVITY_TYPES:
        raise ValueError(f"Unknown activity type: {type}")

    entry = StageActivity(
        stage_id=stage_id,
        round_number=round_number,
        type=type,
        actor=actor or "system",
        metadata_json=json.dumps(metadata or {}, default=str),
    )
    db.session.add(entry)
    db.session.flush()
    return entry
