"""
Stage Approval Workflow Service

Manages approval requests scoped to a stage round:
  - request_approval: open a pending request for (stage, round)
  - approve_approval: resolve as approved and complete the owning stage
  - reject_approval:  resolve as rejected or revision_required
  - get_round_approval_status: the single status that gates completion

Business rules:
  - At most one pending request per (stage, round); a second is a conflict.
  - Only pending requests can be decided.
  - Approving IS the completion path for a gated stage: the stage is set to
    ``completed`` with the approval check skipped.  The approval is committed
    first; if completing the stage then fails, the caller receives an
    ERR_STAGE_SYNC error carrying the already-approved record.
  - Rejecting leaves the stage untouched; a new request may be opened for
    the same round.

Usage:
    from stage_engine.services.approval_workflow import request_approval, approve_approval

    approval, err = request_approval(stage_id, 1, assigned_to="bob")
    result, err = approve_approval(approval["id"], notes="Looks good")
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from stage_engine.models import db
from stage_engine.models.approval import APPROVAL_STATUS_PRECEDENCE, REJECTION_OUTCOMES
from stage_engine.services.activity_service import record_activity
from stage_engine.services.cache_service import invalidate_stage
from stage_engine.services.stores import approval_store, stage_store
from stage_engine.utils.errors import E, service_error

logger = logging.getLogger(__name__)

ROUND_STATUS_NONE = "none"


def _store_unavailable(action: str) -> dict:
    db.session.rollback()
    logger.exception("Store error during %s", action)
    return service_error(E.DATABASE, "Approval store unavailable")


# ── Queries ────────────────────────────────────────────────────────────────────


def get_round_approval_status(stage_id: str, round_number: int) -> dict:
    """
    Resolve the approval status that gates a stage round.

    Returns:
        {"status": "none" | "pending" | "approved" | "rejected" | "revision_required",
         "approval": dict | None}

    An in-flight pending request wins over older resolved ones; after that
    approved, rejected and revision_required are searched in turn, newest
    first within each status.
    """
    approvals = approval_store.find_by_stage_and_round(stage_id, round_number)
    for status in APPROVAL_STATUS_PRECEDENCE:
        match = next((a for a in approvals if a.status == status), None)
        if match is not None:
            return {"status": status, "approval": match.to_dict()}
    return {"status": ROUND_STATUS_NONE, "approval": None}


def get_stages_approval_statuses(stage_ids: list[str]) -> dict[str, dict]:
    """Current-round approval status for several stages. Unknown ids are skipped."""
    result = {}
    for stage_id in stage_ids:
        stage = stage_store.get(stage_id)
        if stage is None:
            continue
        result[stage_id] = get_round_approval_status(stage.id, stage.current_round)
    return result


def get_approval(approval_id: str) -> tuple[dict | None, dict | None]:
    approval = approval_store.get(approval_id)
    if approval is None:
        return None, service_error(E.NOT_FOUND, f"Approval not found: {approval_id}")
    return approval.to_dict(), None


def list_stage_approvals(
    stage_id: str, round_number: int | None = None,
) -> tuple[list[dict] | None, dict | None]:
    """Approvals for a stage (optionally one round), newest first."""
    if stage_store.get(stage_id) is None:
        return None, service_error(E.NOT_FOUND, f"Stage not found: {stage_id}")
    if round_number is None:
        approvals = approval_store.find_by_stage(stage_id)
    else:
        approvals = approval_store.find_by_stage_and_round(stage_id, round_number)
    return [a.to_dict() for a in approvals], None


# ── Commands ───────────────────────────────────────────────────────────────────


def request_approval(
    stage_id: str,
    round_number: int,
    assigned_to: str,
    notes: str | None = None,
    *,
    assignee_name: str | None = None,
    requested_by: str | None = None,
    requester_name: str | None = None,
    title: str | None = None,
) -> tuple[dict | None, dict | None]:
    """Open a pending approval request for one stage round.

    Returns:
        (approval_dict, None) on success.
        (None, err) when the stage is missing, the round does not exist,
        no assignee is given, or a pending request already exists.
    """
    if not assigned_to:
        return None, service_error(E.VALIDATION_REQUIRED, "assigned_to is required")

    try:
        stage = stage_store.get(stage_id)
        if stage is None:
            return None, service_error(E.NOT_FOUND, f"Stage not found: {stage_id}")

        if round_number < 1 or round_number > stage.current_round:
            return None, service_error(
                E.VALIDATION_CONSTRAINT,
                f"Round {round_number} does not exist for this stage "
                f"(rounds 1-{stage.current_round})",
            )

        existing = next(
            (a for a in approval_store.find_by_stage_and_round(stage_id, round_number)
             if a.status == "pending"),
            None,
        )
        if existing is not None:
            return None, service_error(
                E.CONFLICT_DUPLICATE,
                f"Round {round_number} already has a pending approval request",
                details={"approval_id": existing.id},
            )

        approval = approval_store.create(
            stage_id=stage_id,
            round_number=round_number,
            title=title or "Approval Request",
            message=notes,
            status="pending",
            assigned_to=assigned_to,
            assignee_name=assignee_name,
            requested_by=requested_by,
            requester_name=requester_name,
        )
        db.session.commit()
    except SQLAlchemyError:
        return None, _store_unavailable("request_approval")

    logger.info("Approval %s requested for round %s (assignee=%s)",
                approval.id, round_number, assigned_to,
                extra={"stage_id": stage_id, "approval_id": approval.id})
    record_activity(
        stage_id, "approval_requested",
        actor=requester_name or requested_by,
        round_number=round_number,
        metadata={"approval_id": approval.id, "assigned_to": assigned_to},
    )
    invalidate_stage(stage_id)
    return approval.to_dict(), None


def approve_approval(
    approval_id: str,
    notes: str | None = None,
    *,
    approved_by: str | None = None,
) -> tuple[dict | None, dict | None]:
    """Approve a pending request and complete the owning stage.

    Returns:
        ({"approval": dict, "stage": dict}, None) on success.
        (None, err) otherwise; err code ERR_STAGE_SYNC means the approval
        was stored but the stage could not be completed.
    """
    from stage_engine.services.stage_lifecycle import set_stage_status

    try:
        approval = approval_store.get(approval_id)
        if approval is None:
            return None, service_error(E.NOT_FOUND, f"Approval not found: {approval_id}")
        if approval.status != "pending":
            return None, service_error(
                E.CONFLICT_STATE, f"Approval already decided: {approval.status}",
            )

        approval_store.update(
            approval_id,
            status="approved",
            approved_by=approved_by,
            approved_at=datetime.now(timezone.utc),
            notes=notes,
        )
        db.session.commit()
    except SQLAlchemyError:
        return None, _store_unavailable("approve_approval")

    stage_id = approval.stage_id
    round_number = approval.round_number
    approval_data = approval.to_dict()
    logger.info("Approval %s approved", approval_id,
                extra={"stage_id": stage_id, "approval_id": approval_id})
    record_activity(
        stage_id, "approval_approved",
        actor=approved_by,
        round_number=round_number,
        metadata={"approval_id": approval_id},
    )

    stage_result, stage_err = set_stage_status(
        stage_id, "completed", skip_approval_check=True, actor=approved_by,
    )
    if stage_err:
        logger.error("Approval %s stored but stage completion failed: %s",
                     approval_id, stage_err["error"],
                     extra={"stage_id": stage_id, "approval_id": approval_id})
        return None, service_error(
            E.STAGE_SYNC,
            "Approval recorded but the stage could not be completed",
            details={"approval": approval_data, "stage_error": stage_err["error"]},
        )

    return {"approval": approval_data, "stage": stage_result["stage"]}, None


def reject_approval(
    approval_id: str,
    notes: str | None = None,
    *,
    outcome: str = "rejected",
    rejected_by: str | None = None,
) -> tuple[dict | None, dict | None]:
    """Decline a pending request.

    Args:
        outcome: "rejected" (declined outright) or "revision_required"
                 (changes requested). The stage status is not changed.
    """
    if outcome not in REJECTION_OUTCOMES:
        return None, service_error(
            E.VALIDATION_INVALID,
            f"outcome must be one of {sorted(REJECTION_OUTCOMES)}",
        )

    try:
        approval = approval_store.get(approval_id)
        if approval is None:
            return None, service_error(E.NOT_FOUND, f"Approval not found: {approval_id}")
        if approval.status != "pending":
            return None, service_error(
                E.CONFLICT_STATE, f"Approval already decided: {approval.status}",
            )

        approval_store.update(
            approval_id,
            status=outcome,
            approved_by=rejected_by,
            approved_at=datetime.now(timezone.utc),
            notes=notes,
        )
        db.session.commit()
    except SQLAlchemyError:
        return None, _store_unavailable("reject_approval")

    logger.info("Approval %s resolved as %s", approval_id, outcome,
                extra={"stage_id": approval.stage_id, "approval_id": approval_id})
    record_activity(
        approval.stage_id, "approval_rejected",
        actor=rejected_by,
        round_number=approval.round_number,
        metadata={"approval_id": approval_id, "outcome": outcome},
    )
    invalidate_stage(approval.stage_id)
    return approval.to_dict(), None
