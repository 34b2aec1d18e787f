"""
Stage Round Manager

Rounds are numbered revision cycles of a stage's content.  For every stage
the existing rounds are exactly ``1..current_round``:

  - start_new_round:   bump current_round (no content is created or copied)
  - delete_round:      remove a round's content and shift every later round
                       down by one so numbering stays contiguous
  - round_has_content: probe documents/notes before a destructive delete

Concurrency:
  A process-local guard keyed by stage id rejects a second round operation
  on the same stage while one is in flight (double-clicked "new round",
  two administrators deleting at once).  The guard is advisory; across
  processes the round bump is protected by a compare-and-set UPDATE on
  ``current_round``.

Delete cascade:
  Each store operation runs in its own savepoint.  A failing operation is
  logged, rolled back on its own and reported as a warning; the cascade and
  the final decrement still run.  A result with
  ``completed_with_warnings=True`` may leave round numbering inconsistent
  for the failed collection and needs operator attention.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from stage_engine.core.exceptions import ConflictError
from stage_engine.models import db
from stage_engine.services.activity_service import record_activity
from stage_engine.services.cache_service import invalidate_stage
from stage_engine.services.stores import content_stores, round_scoped_stores, stage_store
from stage_engine.utils.errors import E, service_error

logger = logging.getLogger(__name__)


class StageOperationGuard:
    """Process-local set of stage ids with a round operation in flight."""

    def __init__(self):
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()

    def try_acquire(self, stage_id: str) -> bool:
        with self._lock:
            if stage_id in self._in_flight:
                return False
            self._in_flight.add(stage_id)
            return True

    def release(self, stage_id: str) -> None:
        with self._lock:
            self._in_flight.discard(stage_id)

    def is_held(self, stage_id: str) -> bool:
        with self._lock:
            return stage_id in self._in_flight

    @contextmanager
    def hold(self, stage_id: str):
        """Hold the stage for the duration of the block; ConflictError if busy."""
        if not self.try_acquire(stage_id):
            raise ConflictError("Stage", "round operation already in progress", retryable=True)
        try:
            yield
        finally:
            self.release(stage_id)


round_guard = StageOperationGuard()


def _in_progress_error(stage_id: str) -> dict:
    logger.info("Rejected concurrent round operation", extra={"stage_id": stage_id})
    return service_error(
        E.CONFLICT_IN_PROGRESS,
        "A round operation is already in progress for this stage",
    )


# ── Start ──────────────────────────────────────────────────────────────────────


def start_new_round(stage_id: str, *, actor: str | None = None) -> tuple[dict | None, dict | None]:
    """
    Open the next round for a stage.

    Returns:
        ({"stage": dict, "round_number": int}, None) on success.
        (None, err) when the stage is missing, rounds are disabled, or
        another round operation for the stage is in flight.
    """
    try:
        with round_guard.hold(stage_id):
            return _start_new_round(stage_id, actor)
    except ConflictError:
        return None, _in_progress_error(stage_id)


def _start_new_round(stage_id, actor):
    try:
        stage = stage_store.get(stage_id)
        if stage is None:
            return None, service_error(E.NOT_FOUND, f"Stage not found: {stage_id}")
        if not stage.allows_rounds:
            return None, service_error(E.VALIDATION_CONSTRAINT, "Rounds are not enabled for this stage")

        previous = stage.current_round
        if not stage_store.compare_and_set_round(stage_id, previous, previous + 1):
            db.session.rollback()
            return None, service_error(
                E.CONFLICT_IN_PROGRESS,
                "Stage round changed concurrently; reload and retry",
            )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Store error while starting round", extra={"stage_id": stage_id})
        return None, service_error(E.DATABASE, "Stage store unavailable")

    new_round = previous + 1
    logger.info("Round %s started", new_round, extra={"stage_id": stage_id, "round_number": new_round})
    record_activity(stage_id, "round_started", actor=actor, round_number=new_round)
    invalidate_stage(stage_id)
    return {"stage": stage.to_dict(), "round_number": new_round}, None


# ── Delete ─────────────────────────────────────────────────────────────────────


def _check_deletable(stage, round_number: int) -> str | None:
    """Return the reason a round cannot be deleted, or None."""
    if not stage.allows_rounds:
        return "Rounds are not enabled for this stage"
    if round_number == 1:
        return "Cannot delete Round 1"
    if stage.current_round == 1:
        return "Cannot delete the only round"
    if round_number < 1:
        return f"Invalid round number: {round_number}"
    if round_number > stage.current_round:
        return f"Round {round_number} does not exist (stage has {stage.current_round} rounds)"
    return None


def _run_step(warnings: list, kind, operation: str, round_number: int, fn) -> int:
    """Run one store operation in a savepoint; record a warning on failure."""
    try:
        with db.session.begin_nested():
            return fn()
    except Exception as exc:
        logger.error("Round cascade step failed: %s %s round %s", operation, kind.value, round_number,
                     exc_info=True, extra={"content_kind": kind.value, "round_number": round_number})
        warnings.append({
            "kind": kind.value,
            "operation": operation,
            "round_number": round_number,
            "error": str(exc),
        })
        return 0


def delete_round(
    stage_id: str, round_number: int, *, actor: str | None = None,
) -> tuple[dict | None, dict | None]:
    """
    Delete a round and renumber every later round down by one.

    Preconditions, checked in order: rounds enabled, not round 1, stage has
    more than one round, round exists.

    Returns:
        ({"success": True, "stage", "deleted_round", "current_round",
          "completed_with_warnings", "warnings", "counts"}, None)
        (None, err) on a failed precondition, missing stage, concurrent
        round operation or unavailable store.
    """
    try:
        with round_guard.hold(stage_id):
            return _delete_round(stage_id, round_number, actor)
    except ConflictError:
        return None, _in_progress_error(stage_id)


def _delete_round(stage_id, round_number, actor):
    warnings: list[dict] = []
    stores = round_scoped_stores()
    counts = {kind.value: {"deleted": 0, "retagged": 0} for kind in stores}

    try:
        stage = stage_store.get(stage_id)
        if stage is None:
            return None, service_error(E.NOT_FOUND, f"Stage not found: {stage_id}")
        reason = _check_deletable(stage, round_number)
        if reason:
            return None, service_error(E.VALIDATION_CONSTRAINT, reason)

        old_round = stage.current_round

        # 1. Remove the round's records from every collection
        for kind, store in stores.items():
            counts[kind.value]["deleted"] += _run_step(
                warnings, kind, "delete", round_number,
                lambda s=store: s.delete_by_stage_and_round(stage_id, round_number),
            )

        # 2. Close the gap: ascending so each round moves into an already vacated number
        for source in range(round_number + 1, old_round + 1):
            for kind, store in stores.items():
                counts[kind.value]["retagged"] += _run_step(
                    warnings, kind, "retag", source,
                    lambda s=store, r=source: s.retag_round(stage_id, r, r - 1),
                )

        # 3. One round fewer
        if not stage_store.compare_and_set_round(stage_id, old_round, old_round - 1):
            warnings.append({
                "kind": "stage",
                "operation": "decrement",
                "round_number": old_round,
                "error": "current_round changed during the cascade",
            })
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Store error while deleting round", extra={"stage_id": stage_id})
        return None, service_error(E.DATABASE, "Stage store unavailable")

    if warnings:
        logger.warning("Round %s deleted with %d failed step(s)", round_number, len(warnings),
                       extra={"stage_id": stage_id, "round_number": round_number})
    else:
        logger.info("Round %s deleted", round_number,
                    extra={"stage_id": stage_id, "round_number": round_number})

    record_activity(
        stage_id, "round_deleted",
        actor=actor,
        round_number=round_number,
        metadata={"counts": counts, "warnings": warnings},
    )
    invalidate_stage(stage_id)

    return {
        "success": True,
        "stage": stage.to_dict(),
        "deleted_round": round_number,
        "current_round": stage.current_round,
        "completed_with_warnings": bool(warnings),
        "warnings": warnings,
        "counts": counts,
    }, None


# ── Probe ──────────────────────────────────────────────────────────────────────


def round_has_content(stage_id: str, round_number: int) -> bool:
    """True if documents or discussion notes exist for the round.

    Approvals are not consulted.  Any store error yields False.
    """
    try:
        return any(
            store.exists_for_stage_and_round(stage_id, round_number)
            for store in content_stores().values()
        )
    except Exception:
        db.session.rollback()
        logger.warning("Content probe failed; reporting no content",
                       exc_info=True, extra={"stage_id": stage_id, "round_number": round_number})
        return False
