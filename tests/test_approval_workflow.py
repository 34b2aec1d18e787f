"""
Approval workflow service tests.

Tests cover:
  - request_approval: pending record, validation, duplicate pending guard
  - approve_approval: stage auto-completion, decided-record guard,
    partial failure surfaced as ERR_STAGE_SYNC
  - reject_approval: rejected vs revision_required, no stage side effect
  - get_round_approval_status precedence
  - End-to-end gated completion scenario
"""

from stage_engine.models import db
from stage_engine.models.approval import Approval
from stage_engine.models.stage import Stage
from stage_engine.services import approval_workflow, stage_lifecycle
from stage_engine.services.approval_workflow import (
    approve_approval,
    get_round_approval_status,
    get_stages_approval_statuses,
    list_stage_approvals,
    reject_approval,
    request_approval,
)
from stage_engine.services.stage_lifecycle import set_stage_status


def _approval(stage, round_number, status):
    a = Approval(stage_id=stage.id, round_number=round_number, status=status, assigned_to="bob")
    db.session.add(a)
    db.session.commit()
    return a


# ═════════════════════════════════════════════════════════════════════════
# REQUEST
# ═════════════════════════════════════════════════════════════════════════


class TestRequestApproval:
    def test_creates_pending_request(self, make_stage):
        stage = make_stage(requires_approval=True)

        approval, err = request_approval(stage.id, 1, "bob", "Please review the drawings",
                                         assignee_name="Bob Builder")

        assert err is None
        assert approval["status"] == "pending"
        assert approval["round_number"] == 1
        assert approval["assigned_to"] == "bob"
        assert approval["assignee_name"] == "Bob Builder"
        assert approval["message"] == "Please review the drawings"
        assert approval["approved_at"] is None

    def test_assignee_required(self, make_stage):
        stage = make_stage()

        approval, err = request_approval(stage.id, 1, "")

        assert approval is None
        assert err["code"] == "ERR_VALIDATION_REQUIRED"

    def test_unknown_stage(self):
        approval, err = request_approval("missing", 1, "bob")

        assert approval is None
        assert err["status"] == 404

    def test_round_must_exist(self, make_stage):
        stage = make_stage(current_round=2)

        approval, err = request_approval(stage.id, 3, "bob")

        assert approval is None
        assert err["code"] == "ERR_VALIDATION_CONSTRAINT"
        assert Approval.query.count() == 0

    def test_second_pending_request_for_round_is_conflict(self, make_stage):
        stage = make_stage()
        first, _ = request_approval(stage.id, 1, "bob")

        approval, err = request_approval(stage.id, 1, "carol")

        assert approval is None
        assert err["code"] == "ERR_CONFLICT_DUPLICATE"
        assert err["status"] == 409
        assert err["details"]["approval_id"] == first["id"]

    def test_pending_in_other_round_does_not_block(self, make_stage):
        stage = make_stage(current_round=2)
        request_approval(stage.id, 1, "bob")

        approval, err = request_approval(stage.id, 2, "bob")

        assert err is None
        assert approval["round_number"] == 2

    def test_rerequest_after_rejection(self, make_stage):
        stage = make_stage()
        first, _ = request_approval(stage.id, 1, "bob")
        reject_approval(first["id"], "Wrong dimensions")

        second, err = request_approval(stage.id, 1, "bob")

        assert err is None
        assert second["id"] != first["id"]
        assert get_round_approval_status(stage.id, 1)["status"] == "pending"


# ═════════════════════════════════════════════════════════════════════════
# APPROVE / REJECT
# ═════════════════════════════════════════════════════════════════════════


class TestApprove:
    def test_approve_completes_stage(self, make_stage):
        stage = make_stage(requires_approval=True, status="awaiting_approval")
        approval, _ = request_approval(stage.id, 1, "bob")

        result, err = approve_approval(approval["id"], "Looks good", approved_by="Bob")

        assert err is None
        assert result["approval"]["status"] == "approved"
        assert result["approval"]["notes"] == "Looks good"
        assert result["approval"]["approved_by"] == "Bob"
        assert result["approval"]["approved_at"] is not None
        assert result["stage"]["status"] == "completed"
        assert db.session.get(Stage, stage.id).status == "completed"

    def test_approve_unknown(self):
        result, err = approve_approval("missing")

        assert result is None
        assert err["code"] == "ERR_NOT_FOUND"

    def test_approve_already_decided(self, make_stage):
        stage = make_stage()
        approval = _approval(stage, 1, "rejected")

        result, err = approve_approval(approval.id)

        assert result is None
        assert err["code"] == "ERR_CONFLICT_STATE"
        assert db.session.get(Approval, approval.id).status == "rejected"

    def test_stage_completion_failure_is_surfaced(self, make_stage, monkeypatch):
        stage = make_stage(requires_approval=True, status="awaiting_approval")
        approval, _ = request_approval(stage.id, 1, "bob")

        def _fail(*args, **kwargs):
            return None, {"error": "Stage store unavailable", "code": "ERR_DATABASE", "status": 503}

        monkeypatch.setattr(stage_lifecycle, "set_stage_status", _fail)

        result, err = approve_approval(approval["id"])

        assert result is None
        assert err["code"] == "ERR_STAGE_SYNC"
        assert err["details"]["approval"]["status"] == "approved"
        # The approval write is not rolled back
        assert db.session.get(Approval, approval["id"]).status == "approved"
        assert db.session.get(Stage, stage.id).status == "awaiting_approval"


class TestReject:
    def test_reject_defaults_to_rejected(self, make_stage):
        stage = make_stage(requires_approval=True, status="awaiting_approval")
        approval, _ = request_approval(stage.id, 1, "bob")

        result, err = reject_approval(approval["id"], "Not to spec", rejected_by="Bob")

        assert err is None
        assert result["status"] == "rejected"
        assert result["notes"] == "Not to spec"
        assert result["approved_by"] == "Bob"
        assert result["approved_at"] is not None
        assert db.session.get(Stage, stage.id).status == "awaiting_approval"

    def test_revision_required_outcome(self, make_stage):
        stage = make_stage()
        approval, _ = request_approval(stage.id, 1, "bob")

        result, err = reject_approval(approval["id"], "Adjust the roofline", outcome="revision_required")

        assert err is None
        assert result["status"] == "revision_required"
        assert get_round_approval_status(stage.id, 1)["status"] == "revision_required"

    def test_invalid_outcome(self, make_stage):
        stage = make_stage()
        approval, _ = request_approval(stage.id, 1, "bob")

        result, err = reject_approval(approval["id"], outcome="approved")

        assert result is None
        assert err["code"] == "ERR_VALIDATION_INVALID"
        assert db.session.get(Approval, approval["id"]).status == "pending"

    def test_reject_unknown(self):
        result, err = reject_approval("missing")

        assert result is None
        assert err["status"] == 404


# ═════════════════════════════════════════════════════════════════════════
# QUERIES
# ═════════════════════════════════════════════════════════════════════════


class TestRoundApprovalStatus:
    def test_none_when_no_requests(self, make_stage):
        stage = make_stage()

        status = get_round_approval_status(stage.id, 1)

        assert status == {"status": "none", "approval": None}

    def test_pending_wins_over_older_resolved(self, make_stage):
        stage = make_stage()
        _approval(stage, 1, "approved")
        pending = _approval(stage, 1, "pending")

        status = get_round_approval_status(stage.id, 1)

        assert status["status"] == "pending"
        assert status["approval"]["id"] == pending.id

    def test_approved_wins_over_rejected(self, make_stage):
        stage = make_stage()
        _approval(stage, 1, "rejected")
        _approval(stage, 1, "approved")
        _approval(stage, 1, "revision_required")

        assert get_round_approval_status(stage.id, 1)["status"] == "approved"

    def test_scoped_to_round(self, make_stage):
        stage = make_stage(current_round=2)
        _approval(stage, 1, "approved")

        assert get_round_approval_status(stage.id, 2)["status"] == "none"

    def test_bulk_statuses_use_current_round(self, make_stage):
        first = make_stage(current_round=2)
        second = make_stage(name="Site Survey")
        _approval(first, 2, "pending")
        _approval(second, 1, "approved")

        statuses = get_stages_approval_statuses([first.id, second.id, "missing"])

        assert statuses[first.id]["status"] == "pending"
        assert statuses[second.id]["status"] == "approved"
        assert "missing" not in statuses

    def test_list_stage_approvals_filters_round(self, make_stage):
        stage = make_stage(current_round=2)
        _approval(stage, 1, "approved")
        _approval(stage, 2, "pending")

        all_items, err = list_stage_approvals(stage.id)
        round_two, _ = list_stage_approvals(stage.id, 2)

        assert err is None
        assert len(all_items) == 2
        assert [a["status"] for a in round_two] == ["pending"]

    def test_list_stage_approvals_unknown_stage(self):
        items, err = list_stage_approvals("missing")

        assert items is None
        assert err["status"] == 404

    def test_get_approval(self, make_stage):
        stage = make_stage()
        approval = _approval(stage, 1, "pending")

        data, err = approval_workflow.get_approval(approval.id)

        assert err is None
        assert data["id"] == approval.id


# ═════════════════════════════════════════════════════════════════════════
# END-TO-END
# ═════════════════════════════════════════════════════════════════════════


def test_gated_completion_end_to_end(make_stage):
    stage = make_stage(requires_approval=True, status="in_progress")

    first, _ = set_stage_status(stage.id, "completed")
    assert first["stage"]["status"] == "awaiting_approval"
    assert first["approval_triggered"] is True

    approval, err = request_approval(stage.id, 1, "bob")
    assert err is None
    assert approval["status"] == "pending"

    second, _ = set_stage_status(stage.id, "completed")
    assert second["approval_triggered"] is False
    assert second["stage"]["status"] == "awaiting_approval"

    result, err = approve_approval(approval["id"])
    assert err is None
    assert result["approval"]["status"] == "approved"
    assert db.session.get(Stage, stage.id).status == "completed"
