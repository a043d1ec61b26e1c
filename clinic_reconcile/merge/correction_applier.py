"""
Correction applier for clinic_reconcile.

Undoes confirmed wrong (source, target) pairings: removes the wrong
enrichment linkage, creates a fresh clinic for the source under a newly
reserved identifier and re-attaches the enrichment payload to it.
"""

import hashlib
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from ..audit.audit_logger import AuditLogger
from ..errors import PersistenceError
from ..models import CorrectionAction, CorrectionState, SourceRecord, TargetRecord
from ..store.clinic_store import ClinicStore

logger = logging.getLogger(__name__)


def generate_action_id(source: SourceRecord, wrong_target_id: int) -> str:
    """
    Generate a stable identifier for a correction action.

    Args:
        source: Source record being re-homed
        wrong_target_id: Target it was wrongly linked to

    Returns:
        Action ID string
    """
    hash_components = [
        str(source.place_id or "").strip(),
        str(wrong_target_id),
        source.name.lower().strip()
    ]
    sha256_hash = hashlib.sha256("|".join(hash_components).encode()).hexdigest()[:16]
    return f"CORR-{sha256_hash.upper()}"


class TargetIdAllocator:
    """
    Hands out new clinic identifiers for one correction batch.

    Seeded once from the store's maximum issued identifier; every reservation
    after that is served from memory under a lock, so identifiers are
    strictly increasing and never handed out twice, even if an insert using
    one of them fails.
    """

    def __init__(self, store: ClinicStore):
        self.store = store
        self._lock = threading.Lock()
        self._next_id: Optional[int] = None
        self.issued: List[int] = []

    def reserve(self) -> int:
        with self._lock:
            if self._next_id is None:
                self._next_id = self.store.max_target_id() + 1
                logger.info(f"Identifier allocator seeded at {self._next_id}")
            target_id = self._next_id
            self._next_id += 1
            self.issued.append(target_id)
            return target_id


@dataclass
class CorrectionSummary:
    """Outcome counts for a correction batch."""

    total: int = 0
    reverted: int = 0
    linkage_rows_removed: int = 0
    created: int = 0
    completed: int = 0
    failed: int = 0
    manual_followup: int = 0
    skipped: int = 0
    bindings: List[Tuple[int, int, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "total": self.total,
            "reverted": self.reverted,
            "linkage_rows_removed": self.linkage_rows_removed,
            "created": self.created,
            "completed": self.completed,
            "failed": self.failed,
            "manual_followup": self.manual_followup,
            "skipped": self.skipped,
            "bindings": [
                {"old_target_id": old, "new_target_id": new, "source_name": name}
                for old, new, name in self.bindings
            ]
        }


class CorrectionApplier:
    """
    Applies confirmed corrections against the clinic store.

    Each action moves PENDING -> REVERSAL_DONE -> CREATED -> COMPLETE, or
    to FAILED. A failure on one action never stops the batch. An action whose
    clinic was created but whose enrichment insert failed stays CREATED and
    is flagged for manual follow-up; it is neither retried nor rolled back.
    """

    def __init__(self, store: ClinicStore, audit_logger: Optional[AuditLogger] = None,
                 allocator: Optional[TargetIdAllocator] = None, run_id: Optional[str] = None):
        """
        Initialize correction applier.

        Args:
            store: Clinic store to correct
            audit_logger: Audit trail for state transitions (optional)
            allocator: Identifier allocator shared by the batch
            run_id: Identifier of this correction run, for the audit trail
        """
        self.store = store
        self.audit_logger = audit_logger
        self.allocator = allocator or TargetIdAllocator(store)
        self.run_id = run_id

        logger.info("Initialized CorrectionApplier")

    def _transition(self, action: CorrectionAction, state: CorrectionState, message: str = ""):
        action.state = state
        if self.audit_logger is None:
            return
        try:
            self.audit_logger.record_transition(action, run_id=self.run_id, message=message)
        except PersistenceError as e:
            logger.error(f"Audit write failed for {action.action_id} ({state.value}): {e} "
                         f"context={e.context}")

    def _fail(self, action: CorrectionAction, error: PersistenceError):
        action.error = str(error)
        action.needs_manual_followup = True
        logger.error(f"Correction {action.action_id} for '{action.source.name}' failed "
                     f"during {error.operation}: {error} context={error.context}")
        self._transition(action, CorrectionState.FAILED, message=str(error))

    def _burn(self, target_id: int):
        try:
            self.store.mark_issued(target_id)
        except PersistenceError as e:
            logger.error(f"Could not record burned clinic id {target_id}: {e} context={e.context}")

    @staticmethod
    def build_target(source: SourceRecord, target_id: int) -> TargetRecord:
        """New clinic record carrying the source's identity and location."""
        return TargetRecord(
            target_id=target_id,
            name=source.name,
            address=source.address,
            latitude=source.latitude,
            longitude=source.longitude,
            place_id=source.place_id,
            phone=source.phone,
            website=source.website
        )

    def apply_one(self, action: CorrectionAction) -> CorrectionAction:
        """
        Drive one action through the correction state machine.

        Args:
            action: Pending correction action

        Returns:
            The same action, in its final state
        """
        if action.state != CorrectionState.PENDING:
            logger.warning(f"Skipping correction {action.action_id}: already {action.state.value}")
            return action

        source = action.source

        try:
            action.linkage_rows_removed = self.store.delete_enrichment(
                source.place_id, action.wrong_target_id
            )
        except PersistenceError as e:
            self._fail(action, e)
            return action

        if action.linkage_rows_removed == 0:
            logger.info(f"No linkage between {source.place_id} and {action.wrong_target_id}; "
                        f"already reverted")
        action.reverted = True
        self._transition(action, CorrectionState.REVERSAL_DONE,
                         message=f"removed {action.linkage_rows_removed} linkage row(s)")

        try:
            action.new_target_id = self.allocator.reserve()
        except PersistenceError as e:
            self._fail(action, e)
            return action

        # Reserved before the insert; a failed insert burns the identifier
        try:
            self.store.insert_target(
                self.build_target(source, action.new_target_id),
                rating=source.rating,
                review_count=source.review_count
            )
        except PersistenceError as e:
            self._burn(action.new_target_id)
            self._fail(action, e)
            return action

        self._transition(action, CorrectionState.CREATED,
                         message=f"created clinic {action.new_target_id}")

        try:
            self.store.insert_enrichment(action.new_target_id, source)
        except PersistenceError as e:
            action.error = str(e)
            action.needs_manual_followup = True
            logger.error(f"Clinic {action.new_target_id} created for '{source.name}' but "
                         f"enrichment insert failed: {e} context={e.context}. "
                         f"Manual follow-up required")
            self._transition(action, CorrectionState.CREATED, message=f"enrichment failed: {e}")
            return action

        binding = f"{action.wrong_target_id} -> {action.new_target_id}"
        self._transition(action, CorrectionState.COMPLETE, message=binding)
        logger.info(f"Corrected '{source.name}': {binding}")
        return action

    def apply(self, actions: Sequence[CorrectionAction]) -> CorrectionSummary:
        """
        Apply a batch of corrections in order.

        Args:
            actions: Confirmed correction actions

        Returns:
            CorrectionSummary for the batch
        """
        logger.info(f"Applying {len(actions)} corrections")

        summary = CorrectionSummary(total=len(actions))
        for action in actions:
            if action.state != CorrectionState.PENDING:
                summary.skipped += 1
                continue

            self.apply_one(action)

            if action.reverted:
                summary.reverted += 1
            summary.linkage_rows_removed += action.linkage_rows_removed

            if action.state == CorrectionState.FAILED:
                summary.failed += 1
            elif action.state in (CorrectionState.CREATED, CorrectionState.COMPLETE):
                summary.created += 1

            if action.state == CorrectionState.COMPLETE:
                summary.completed += 1
                summary.bindings.append(
                    (action.wrong_target_id, action.new_target_id, action.source.name)
                )

            if action.needs_manual_followup:
                summary.manual_followup += 1

        logger.info(f"Corrections completed: {summary.completed} complete, "
                    f"{summary.created - summary.completed} awaiting enrichment, "
                    f"{summary.failed} failed")
        return summary
