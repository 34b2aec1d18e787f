"""
Stage Lifecycle Service

Applies stage status changes with the approval gate:

    not_started → in_progress → awaiting_approval → completed
    on_hold reachable from any non-terminal status and back

Completing a stage that requires approval is only applied when the current
round's approval status is ``approved``.  Otherwise the stage is parked in
``awaiting_approval`` and the caller is told whether a brand-new approval
request must be opened (``approval_triggered``) or one is already in flight
or resolved negatively.

Usage:
    from stage_engine.services.stage_lifecycle import set_stage_status

    result, err = set_stage_status(stage_id, "completed")
    if result and result["approval_triggered"]:
        request_approval(stage_id, result["stage"]["current_round"], assignee)
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from stage_engine.models import db
from stage_engine.models.stage import STAGE_STATUSES
from stage_engine.services.activity_service import record_activity
from stage_engine.services.approval_workflow import ROUND_STATUS_NONE, get_round_approval_status
from stage_engine.services.cache_service import invalidate_stage
from stage_engine.services.stores import stage_store
from stage_engine.utils.errors import E, service_error

logger = logging.getLogger(__name__)


def set_stage_status(
    stage_id: str,
    status: str,
    *,
    skip_approval_check: bool = False,
    actor: str | None = None,
) -> tuple[dict | None, dict | None]:
    """
    Set a stage's status, enforcing the approval gate on completion.

    Args:
        stage_id: Stage to update.
        status: One of STAGE_STATUSES.
        skip_approval_check: Bypass the gate (used by the approval workflow).
        actor: Who triggered the change, for the activity trail.

    Returns:
        ({"stage", "previous_status", "requires_approval",
          "approval_triggered", "approval_status"}, None)
        (None, err) when the status is invalid, the stage is missing or the
        store is unavailable. No write happens on error.
    """
    if status not in STAGE_STATUSES:
        return None, service_error(
            E.VALIDATION_INVALID,
            f"status must be one of {sorted(STAGE_STATUSES)}",
        )

    try:
        stage = stage_store.get(stage_id)
        if stage is None:
            return None, service_error(E.NOT_FOUND, f"Stage not found: {stage_id}")

        previous_status = stage.status
        round_number = stage.current_round
        gated = status == "completed" and stage.requires_approval and not skip_approval_check

        approval_status = None
        applied = status
        if gated:
            approval_status = get_round_approval_status(stage_id, round_number)["status"]
            if approval_status != "approved":
                applied = "awaiting_approval"

        stage_store.update(stage_id, status=applied)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Store error while setting stage status", extra={"stage_id": stage_id})
        return None, service_error(E.DATABASE, "Stage store unavailable")

    blocked = gated and applied != status
    if blocked:
        logger.info("Completion gated: round %s approval is %s", round_number, approval_status,
                    extra={"stage_id": stage_id, "round_number": round_number})

    if applied != previous_status:
        record_activity(
            stage_id,
            "stage_completed" if applied == "completed" else "status_changed",
            actor=actor,
            round_number=round_number,
            metadata={"from": previous_status, "to": applied, "requested": status},
        )
    invalidate_stage(stage_id)

    return {
        "stage": stage.to_dict(),
        "previous_status": previous_status,
        "requires_approval": blocked,
        "approval_triggered": blocked and approval_status == ROUND_STATUS_NONE,
        "approval_status": approval_status,
    }, None
