"""
Persistence ports used by the lifecycle engine.

The engine never queries models directly; it goes through these stores so
that every round-scoped collection is handled by the same four operations:

    list_for_stage_and_round   exists_for_stage_and_round
    delete_by_stage_and_round  retag_round

Round-scoped collections form a closed set (``RoundScopedKind``).  Adding a
new kind without registering a store fails at import time instead of being
silently skipped by the round-deletion cascade.

Usage:
    from stage_engine.services.stores import stage_store, round_scoped_stores

    stage = stage_store.get(stage_id)
    for kind, store in round_scoped_stores().items():
        store.retag_round(stage_id, 3, 2)
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from stage_engine.core.exceptions import NotFoundError
from stage_engine.models import db
from stage_engine.models.approval import Approval
from stage_engine.models.content import DiscussionNote, Document
from stage_engine.models.stage import Stage

_STAGE_UPDATABLE = frozenset({"status", "current_round", "name", "description", "requires_approval"})


class RoundScopedKind(str, enum.Enum):
    """Collections whose records are tagged with ``(stage_id, round_number)``."""

    DOCUMENTS = "documents"
    DISCUSSION_NOTES = "discussion_notes"
    APPROVALS = "approvals"


# Kinds that count as user content when probing a round before deletion
CONTENT_KINDS = (RoundScopedKind.DOCUMENTS, RoundScopedKind.DISCUSSION_NOTES)


# ═════════════════════════════════════════════════════════════════════════════
# Round-scoped stores
# ═════════════════════════════════════════════════════════════════════════════


class RoundScopedStore:
    """Stage+round scoped access to one model with ``stage_id``/``round_number``."""

    def __init__(self, model, kind: RoundScopedKind):
        self.model = model
        self.kind = kind

    def _scoped(self, stage_id: str, round_number: int):
        return self.model.query.filter(
            self.model.stage_id == stage_id,
            self.model.round_number == round_number,
        )

    def list_for_stage_and_round(self, stage_id: str, round_number: int) -> list:
        return self._scoped(stage_id, round_number).order_by(self.model.created_at).all()

    def exists_for_stage_and_round(self, stage_id: str, round_number: int) -> bool:
        return db.session.query(self._scoped(stage_id, round_number).exists()).scalar()

    def delete_by_stage_and_round(self, stage_id: str, round_number: int) -> int:
        """Delete every record of the round. Returns the row count."""
        return self._scoped(stage_id, round_number).delete(synchronize_session="fetch")

    def retag_round(self, stage_id: str, from_round: int, to_round: int) -> int:
        """Move every record of ``from_round`` to ``to_round``. Returns the row count."""
        return self._scoped(stage_id, from_round).update(
            {self.model.round_number: to_round},
            synchronize_session="fetch",
        )

    def __repr__(self) -> str:
        return f"<RoundScopedStore {self.kind.value}>"


class ApprovalStore(RoundScopedStore):
    """Approval requests: round-scoped operations plus record CRUD."""

    def __init__(self):
        super().__init__(Approval, RoundScopedKind.APPROVALS)

    def create(self, **fields) -> Approval:
        approval = Approval(**fields)
        db.session.add(approval)
        db.session.flush()
        return approval

    def get(self, approval_id: str) -> Approval | None:
        return db.session.get(Approval, approval_id)

    def find_by_stage_and_round(self, stage_id: str, round_number: int) -> list[Approval]:
        """Requests for one round, newest first."""
        return (
            self._scoped(stage_id, round_number)
            .order_by(Approval.requested_at.desc(), Approval.created_at.desc())
            .all()
        )

    def find_by_stage(self, stage_id: str) -> list[Approval]:
        return (
            Approval.query
            .filter(Approval.stage_id == stage_id)
            .order_by(Approval.requested_at.desc(), Approval.created_at.desc())
            .all()
        )

    def update(self, approval_id: str, **fields) -> Approval | None:
        approval = self.get(approval_id)
        if approval is None:
            return None
        for key, value in fields.items():
            setattr(approval, key, value)
        approval.updated_at = datetime.now(timezone.utc)
        db.session.flush()
        return approval


# ═════════════════════════════════════════════════════════════════════════════
# Stage store
# ═════════════════════════════════════════════════════════════════════════════


class StageStore:
    """Authoritative source of stage status and current round."""

    def get(self, stage_id: str) -> Stage | None:
        return db.session.get(Stage, stage_id)

    def require(self, stage_id: str) -> Stage:
        stage = self.get(stage_id)
        if stage is None:
            raise NotFoundError(resource="Stage", resource_id=stage_id)
        return stage

    def create(
        self,
        *,
        phase_id: str,
        name: str,
        description: str | None = None,
        allows_rounds: bool = False,
        requires_approval: bool = False,
        approval_contact_id: str | None = None,
    ) -> Stage:
        """Create a stage at round 1 ordered after its phase siblings."""
        max_order = (
            db.session.query(db.func.max(Stage.order))
            .filter(Stage.phase_id == phase_id)
            .scalar()
        )
        stage = Stage(
            phase_id=phase_id,
            name=name,
            description=description,
            order=(max_order + 1) if max_order is not None else 0,
            status="not_started",
            allows_rounds=bool(allows_rounds),
            current_round=1,
            requires_approval=bool(requires_approval),
            approval_contact_id=approval_contact_id,
        )
        db.session.add(stage)
        db.session.flush()
        return stage

    def update(self, stage_id: str, **fields) -> Stage | None:
        """Apply ``fields`` and stamp ``updated_at``. Unknown fields raise."""
        unknown = set(fields) - _STAGE_UPDATABLE
        if unknown:
            raise ValueError(f"Stage fields not updatable: {sorted(unknown)}")
        stage = self.get(stage_id)
        if stage is None:
            return None
        for key, value in fields.items():
            setattr(stage, key, value)
        stage.updated_at = datetime.now(timezone.utc)
        db.session.flush()
        return stage

    def compare_and_set_round(self, stage_id: str, expected: int, new_round: int) -> bool:
        """Set ``current_round`` only if it still equals ``expected``.

        Single conditional UPDATE, so two writers that read the same value
        cannot both apply their change.
        """
        matched = (
            Stage.query
            .filter(Stage.id == stage_id, Stage.current_round == expected)
            .update(
                {Stage.current_round: new_round, Stage.updated_at: datetime.now(timezone.utc)},
                synchronize_session="fetch",
            )
        )
        return matched == 1


# ═════════════════════════════════════════════════════════════════════════════
# Registry
# ═════════════════════════════════════════════════════════════════════════════

stage_store = StageStore()
approval_store = ApprovalStore()
document_store = RoundScopedStore(Document, RoundScopedKind.DOCUMENTS)
discussion_note_store = RoundScopedStore(DiscussionNote, RoundScopedKind.DISCUSSION_NOTES)

_ROUND_SCOPED_STORES: dict[RoundScopedKind, RoundScopedStore] = {
    RoundScopedKind.DOCUMENTS: document_store,
    RoundScopedKind.DISCUSSION_NOTES: discussion_note_store,
    RoundScopedKind.APPROVALS: approval_store,
}

_missing = set(RoundScopedKind) - set(_ROUND_SCOPED_STORES)
if _missing:
    raise RuntimeError(f"No store registered for round-scoped kinds: {sorted(k.value for k in _missing)}")


def round_scoped_stores() -> dict[RoundScopedKind, RoundScopedStore]:
    """All round-scoped stores in cascade order (documents, notes, approvals)."""
    return dict(_ROUND_SCOPED_STORES)


def content_stores() -> dict[RoundScopedKind, RoundScopedStore]:
    """Stores probed by ``round_has_content`` (approvals excluded)."""
    return {kind: _ROUND_SCOPED_STORES[kind] for kind in CONTENT_KINDS}
