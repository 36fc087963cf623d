"""
Reconciliation of gateway answers against the caller's search scope.
"""
from typing import List, Sequence

import structlog

from shared.schemas import CandidateRecord

logger = structlog.get_logger()


def reconcile(matched_ids: Sequence[str], scope: Sequence[CandidateRecord]) -> List[CandidateRecord]:
    """
    Keep only matched ids that belong to the scope.

    Foreign ids are dropped silently. The answer's order is preserved and
    duplicates are removed.
    """
    by_id = {c.id: c for c in scope}
    reconciled: List[CandidateRecord] = []
    seen = set()
    dropped = 0
    for candidate_id in matched_ids:
        if candidate_id in seen:
            continue
        seen.add(candidate_id)
        candidate = by_id.get(candidate_id)
        if candidate is None:
            dropped += 1
            continue
        reconciled.append(candidate)

    if dropped:
        logger.info("reconciliation_dropped_ids", dropped=dropped, kept=len(reconciled))
    return reconciled
