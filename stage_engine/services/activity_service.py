"""Stage activity trail: recording and listing lifecycle events."""

import logging

from stage_engine.models import db
from stage_engine.models.activity import StageActivity, write_activity

logger = logging.getLogger(__name__)


def record_activity(
    stage_id: str,
    type: str,
    *,
    actor: str | None = None,
    round_number: int | None = None,
    metadata: dict | None = None,
) -> None:
    """Append and commit one activity row after the business change is committed.

    Failures are logged and rolled back; they never undo or fail the
    operation that triggered them.
    """
    try:
        write_activity(
            stage_id=stage_id,
            type=type,
            actor=actor,
            round_number=round_number,
            metadata=metadata,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.warning("Activity log failed for %s; main flow unaffected", type,
                       exc_info=True, extra={"stage_id": stage_id, "event_type": type})


def list_stage_activity(stage_id: str, *, limit: int = 100) -> list[dict]:
    """Activity rows for a stage, newest first."""
    rows = (
        StageActivity.query
        .filter(StageActivity.stage_id == stage_id)
        .order_by(StageActivity.created_at.desc())
        .limit(limit)
        .all()
    )
    return [r.to_dict() for r in rows]
