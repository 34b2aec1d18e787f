"""
Stage Lifecycle Blueprint.

Routes:
  GET    /stages/<sid>                          – stage + current-round approval status
  PUT    /stages/<sid>/status                   – set status (approval-gated completion)
  POST   /stages/<sid>/rounds                   – start a new round
  DELETE /stages/<sid>/rounds/<n>               – delete a round and renumber later ones
  GET    /stages/<sid>/rounds/<n>/content       – does the round hold documents/notes
  GET    /stages/<sid>/approvals?round=N        – list approval requests
  POST   /stages/<sid>/approvals                – request approval for a round
  GET    /approvals/<aid>                       – single approval
  POST   /approvals/<aid>/approve               – approve (completes the stage)
  POST   /approvals/<aid>/reject                – reject / request revision
  GET    /stages/<sid>/activity                 – lifecycle activity, newest first

Callers are assumed to be authorized for the owning project before they
reach these routes.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from stage_engine.blueprints import current_actor
from stage_engine.core.exceptions import NotFoundError, ValidationError
from stage_engine.services import activity_service, approval_workflow, round_manager
from stage_engine.services.cache_service import get_cached_stage_view, set_cached_stage_view
from stage_engine.services.stage_lifecycle import set_stage_status
from stage_engine.services.stores import stage_store
from stage_engine.utils.errors import E, api_error, error_response

logger = logging.getLogger(__name__)

stage_bp = Blueprint("stage_bp", __name__, url_prefix="/api/v1")


# ── Error handlers ───────────────────────────────────────────────────────


@stage_bp.errorhandler(NotFoundError)
def _handle_not_found(exc):
    return api_error(E.NOT_FOUND, str(exc))


@stage_bp.errorhandler(ValidationError)
def _handle_validation(exc):
    return api_error(E.VALIDATION_INVALID, str(exc), details=exc.details)


# ── helpers ──────────────────────────────────────────────────────────────


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _optional_int(value, field):
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", details={field: "not an integer"})


# ═════════════════════════════════════════════════════════════════════════════
# STAGE
# ═════════════════════════════════════════════════════════════════════════════


@stage_bp.route("/stages/<sid>", methods=["GET"])
def get_stage(sid):
    """Stage with the approval status of its current round (cached)."""
    cached = get_cached_stage_view(sid)
    if cached is not None:
        return jsonify(cached)

    stage = stage_store.require(sid)
    view = stage.to_dict()
    view["rounds"] = stage.rounds
    view["approval"] = approval_workflow.get_round_approval_status(stage.id, stage.current_round)
    set_cached_stage_view(sid, view, ttl=current_app.config.get("STAGE_CACHE_TTL", 300))
    return jsonify(view)


@stage_bp.route("/stages/<sid>/status", methods=["PUT"])
def update_stage_status(sid):
    """Set stage status.

    Body: { status, skip_approval_check? }
    """
    data = _json_body()
    status = data.get("status")
    if not status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    if not isinstance(status, str):
        return api_error(E.VALIDATION_INVALID, "status must be a string")

    skip = data.get("skip_approval_check", False)
    if not isinstance(skip, bool):
        return api_error(E.VALIDATION_INVALID, "skip_approval_check must be a boolean")

    result, err = set_stage_status(
        sid,
        status,
        skip_approval_check=skip,
        actor=current_actor(),
    )
    if err:
        return error_response(err)
    return jsonify(result)


# ═════════════════════════════════════════════════════════════════════════════
# ROUNDS
# ═════════════════════════════════════════════════════════════════════════════


@stage_bp.route("/stages/<sid>/rounds", methods=["POST"])
def start_round(sid):
    result, err = round_manager.start_new_round(sid, actor=current_actor())
    if err:
        return error_response(err)
    return jsonify(result), 201


@stage_bp.route("/stages/<sid>/rounds/<int:round_number>", methods=["DELETE"])
def delete_round(sid, round_number):
    result, err = round_manager.delete_round(sid, round_number, actor=current_actor())
    if err:
        return error_response(err)
    return jsonify(result)


@stage_bp.route("/stages/<sid>/rounds/<int:round_number>/content", methods=["GET"])
def round_content(sid, round_number):
    stage_store.require(sid)
    return jsonify({
        "stage_id": sid,
        "round_number": round_number,
        "has_content": round_manager.round_has_content(sid, round_number),
    })


# ═════════════════════════════════════════════════════════════════════════════
# APPROVALS
# ═════════════════════════════════════════════════════════════════════════════


@stage_bp.route("/stages/<sid>/approvals", methods=["GET"])
def list_approvals(sid):
    round_number = _optional_int(request.args.get("round"), "round")
    items, err = approval_workflow.list_stage_approvals(sid, round_number)
    if err:
        return error_response(err)
    return jsonify(items)


@stage_bp.route("/stages/<sid>/approvals", methods=["POST"])
def create_approval(sid):
    """Request approval for a round.

    Body: { assigned_to, round_number?, assignee_name?, notes?, title? }
    round_number defaults to the stage's current round.
    """
    data = _json_body()
    assigned_to = data.get("assigned_to") or ""
    if not isinstance(assigned_to, str):
        return api_error(E.VALIDATION_INVALID, "assigned_to must be a string")

    round_number = _optional_int(data.get("round_number"), "round_number")
    if round_number is None:
        round_number = stage_store.require(sid).current_round

    actor = current_actor()
    approval, err = approval_workflow.request_approval(
        sid,
        round_number,
        assigned_to.strip(),
        data.get("notes"),
        assignee_name=data.get("assignee_name"),
        requested_by=actor,
        requester_name=actor,
        title=data.get("title"),
    )
    if err:
        return error_response(err)
    return jsonify(approval), 201


@stage_bp.route("/approvals/<aid>", methods=["GET"])
def get_approval(aid):
    approval, err = approval_workflow.get_approval(aid)
    if err:
        return error_response(err)
    return jsonify(approval)


@stage_bp.route("/approvals/<aid>/approve", methods=["POST"])
def approve(aid):
    """Body: { notes? }"""
    data = _json_body()
    result, err = approval_workflow.approve_approval(
        aid, data.get("notes"), approved_by=current_actor(),
    )
    if err:
        return error_response(err)
    return jsonify(result)


@stage_bp.route("/approvals/<aid>/reject", methods=["POST"])
def reject(aid):
    """Body: { notes?, outcome?: "rejected" | "revision_required" }"""
    data = _json_body()
    approval, err = approval_workflow.reject_approval(
        aid,
        data.get("notes"),
        outcome=data.get("outcome") or "rejected",
        rejected_by=current_actor(),
    )
    if err:
        return error_response(err)
    return jsonify(approval)


# ═════════════════════════════════════════════════════════════════════════════
# ACTIVITY
# ═════════════════════════════════════════════════════════════════════════════


@stage_bp.route("/stages/<sid>/activity", methods=["GET"])
def stage_activity(sid):
    stage_store.require(sid)
    limit = _optional_int(request.args.get("limit"), "limit") or 100
    return jsonify(activity_service.list_stage_activity(sid, limit=min(limit, 500)))
