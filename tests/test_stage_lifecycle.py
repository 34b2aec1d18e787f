"""
Stage status transitions with the approval gate.

Covers:
  - Ungated status changes are applied as requested
  - Completion of an approval-gated stage parks it in awaiting_approval
  - approval_triggered only when no request exists for the current round
  - Approved current round lets completion through
  - skip_approval_check bypass
  - Not-found / invalid status produce no write
"""

import pytest

from stage_engine.models import db
from stage_engine.models.activity import StageActivity
from stage_engine.models.approval import Approval
from stage_engine.services.stage_lifecycle import set_stage_status


def _approval(stage, round_number, status):
    a = Approval(stage_id=stage.id, round_number=round_number, status=status, assigned_to="bob")
    db.session.add(a)
    db.session.commit()
    return a


class TestUngatedTransitions:
    @pytest.mark.parametrize("target", ["in_progress", "awaiting_approval", "on_hold", "completed"])
    def test_status_applied(self, make_stage, target):
        stage = make_stage(status="not_started")

        result, err = set_stage_status(stage.id, target)

        assert err is None
        assert result["stage"]["status"] == target
        assert result["requires_approval"] is False
        assert result["approval_triggered"] is False

    def test_non_completed_status_never_consults_gate(self, make_stage):
        stage = make_stage(requires_approval=True, status="in_progress")

        result, err = set_stage_status(stage.id, "on_hold")

        assert err is None
        assert result["stage"]["status"] == "on_hold"
        assert result["approval_status"] is None

    def test_status_change_recorded_in_activity(self, make_stage):
        stage = make_stage(status="not_started")

        set_stage_status(stage.id, "in_progress", actor="alice")

        rows = StageActivity.query.filter_by(stage_id=stage.id).all()
        assert len(rows) == 1
        assert rows[0].type == "status_changed"
        assert rows[0].actor == "alice"
        assert rows[0].to_dict()["metadata"]["to"] == "in_progress"


class TestApprovalGate:
    def test_no_approval_parks_stage_and_triggers_request(self, make_stage):
        stage = make_stage(requires_approval=True, status="in_progress")

        result, err = set_stage_status(stage.id, "completed")

        assert err is None
        assert result["stage"]["status"] == "awaiting_approval"
        assert result["requires_approval"] is True
        assert result["approval_triggered"] is True
        assert result["approval_status"] == "none"

    @pytest.mark.parametrize("existing", ["pending", "rejected", "revision_required"])
    def test_unresolved_or_negative_approval_does_not_trigger(self, make_stage, existing):
        stage = make_stage(requires_approval=True, status="in_progress")
        _approval(stage, 1, existing)

        result, err = set_stage_status(stage.id, "completed")

        assert err is None
        assert result["stage"]["status"] == "awaiting_approval"
        assert result["requires_approval"] is True
        assert result["approval_triggered"] is False
        assert result["approval_status"] == existing

    def test_approved_current_round_completes(self, make_stage):
        stage = make_stage(requires_approval=True, status="awaiting_approval")
        _approval(stage, 1, "approved")

        result, err = set_stage_status(stage.id, "completed")

        assert err is None
        assert result["stage"]["status"] == "completed"
        assert result["requires_approval"] is False

    def test_approval_of_earlier_round_does_not_count(self, make_stage):
        stage = make_stage(requires_approval=True, status="in_progress", current_round=2)
        _approval(stage, 1, "approved")

        result, _ = set_stage_status(stage.id, "completed")

        assert result["stage"]["status"] == "awaiting_approval"
        assert result["approval_triggered"] is True

    def test_skip_approval_check_completes(self, make_stage):
        stage = make_stage(requires_approval=True, status="in_progress")

        result, err = set_stage_status(stage.id, "completed", skip_approval_check=True)

        assert err is None
        assert result["stage"]["status"] == "completed"

    def test_completion_recorded_as_stage_completed(self, make_stage):
        stage = make_stage(status="in_progress")

        set_stage_status(stage.id, "completed")

        types = [r.type for r in StageActivity.query.filter_by(stage_id=stage.id).all()]
        assert types == ["stage_completed"]


class TestErrors:
    def test_unknown_stage_is_not_found(self):
        result, err = set_stage_status("missing", "in_progress")

        assert result is None
        assert err["code"] == "ERR_NOT_FOUND"
        assert err["status"] == 404

    def test_invalid_status_rejected_without_write(self, make_stage):
        stage = make_stage(status="in_progress")

        result, err = set_stage_status(stage.id, "archived")

        assert result is None
        assert err["code"] == "ERR_VALIDATION_INVALID"
        db.session.refresh(stage)
        assert stage.status == "in_progress"
