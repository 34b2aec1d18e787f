"""Store layer tests: registry completeness, round-scoped operations, round CAS."""

from datetime import datetime, timedelta, timezone

import pytest

from stage_engine.core.exceptions import NotFoundError
from stage_engine.models import db
from stage_engine.models.content import Document
from stage_engine.services.stores import (
    CONTENT_KINDS,
    RoundScopedKind,
    approval_store,
    content_stores,
    document_store,
    round_scoped_stores,
    stage_store,
)


class TestRegistry:
    def test_every_kind_has_a_store(self):
        stores = round_scoped_stores()

        assert set(stores) == set(RoundScopedKind)
        assert all(store.kind is kind for kind, store in stores.items())

    def test_content_stores_exclude_approvals(self):
        assert set(content_stores()) == set(CONTENT_KINDS)
        assert RoundScopedKind.APPROVALS not in content_stores()


class TestRoundScopedStore:
    def test_list_and_exists(self, make_stage, add_document):
        stage = make_stage(current_round=2)
        add_document(stage, 1, name="a.pdf")
        add_document(stage, 2, name="b.pdf")

        assert [d.name for d in document_store.list_for_stage_and_round(stage.id, 2)] == ["b.pdf"]
        assert document_store.exists_for_stage_and_round(stage.id, 1) is True
        assert document_store.exists_for_stage_and_round(stage.id, 3) is False

    def test_delete_returns_count(self, make_stage, add_document):
        stage = make_stage(current_round=2)
        add_document(stage, 2)
        add_document(stage, 2)
        add_document(stage, 1)

        deleted = document_store.delete_by_stage_and_round(stage.id, 2)
        db.session.commit()

        assert deleted == 2
        assert Document.query.filter_by(stage_id=stage.id).count() == 1

    def test_retag_returns_count(self, make_stage, add_document):
        stage = make_stage(current_round=3)
        add_document(stage, 3)

        moved = document_store.retag_round(stage.id, 3, 2)
        db.session.commit()

        assert moved == 1
        assert document_store.exists_for_stage_and_round(stage.id, 2) is True
        assert document_store.exists_for_stage_and_round(stage.id, 3) is False


class TestApprovalStore:
    def test_find_newest_first(self, make_stage):
        stage = make_stage()
        now = datetime.now(timezone.utc)
        older = approval_store.create(stage_id=stage.id, round_number=1, status="rejected",
                                      assigned_to="bob", requested_at=now - timedelta(hours=1))
        newer = approval_store.create(stage_id=stage.id, round_number=1, status="pending",
                                      assigned_to="bob", requested_at=now)
        db.session.commit()

        found = approval_store.find_by_stage_and_round(stage.id, 1)

        assert [a.id for a in found] == [newer.id, older.id]


class TestStageStore:
    def test_create_orders_after_siblings(self):
        first = stage_store.create(phase_id="p1", name="Brief")
        second = stage_store.create(phase_id="p1", name="Concept")
        other = stage_store.create(phase_id="p2", name="Survey")
        db.session.commit()

        assert (first.order, second.order, other.order) == (0, 1, 0)
        assert first.current_round == 1
        assert first.status == "not_started"

    def test_require_unknown(self):
        with pytest.raises(NotFoundError):
            stage_store.require("missing")

    def test_update_rejects_unknown_fields(self, make_stage):
        stage = make_stage()

        with pytest.raises(ValueError):
            stage_store.update(stage.id, phase_id="elsewhere")

    def test_compare_and_set_round(self, make_stage):
        stage = make_stage(current_round=2)

        assert stage_store.compare_and_set_round(stage.id, 1, 3) is False
        assert stage_store.compare_and_set_round(stage.id, 2, 3) is True
        db.session.commit()

        assert stage_store.get(stage.id).current_round == 3
