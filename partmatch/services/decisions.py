"""Review decisions on match candidates.

Confirming a candidate is terminal for its store item: at most one candidate
per store item may ever be CONFIRMED.
"""
from datetime import datetime, timezone
from typing import List, Optional, Sequence
import structlog

from partmatch.errors import DecisionConflictError, InputError
from partmatch.interfaces import CandidateRepository
from partmatch.models import DecisionStatus, MatchCandidate, ReviewAction, ReviewDecision

logger = structlog.get_logger(__name__)


class DecisionService:
    """Records confirm/reject decisions through a candidate repository."""

    def __init__(self, repository: CandidateRepository):
        self.repository = repository

    async def _load(self, candidate_id: str) -> MatchCandidate:
        candidate = await self.repository.get_candidate(candidate_id)
        if candidate is None:
            raise InputError(f"Match candidate {candidate_id} not found")
        return candidate

    async def confirm(
        self,
        candidate_id: str,
        decided_by: str,
        note: Optional[str] = None,
    ) -> MatchCandidate:
        """Confirm a candidate.

        Re-confirming an already confirmed candidate is a no-op.

        Raises:
            InputError: Unknown candidate
            DecisionConflictError: Another candidate of the store item is confirmed
        """
        candidate = await self._load(candidate_id)
        if candidate.status == DecisionStatus.CONFIRMED:
            return candidate

        confirmed = await self.repository.list_candidates(
            candidate.project_id,
            store_item_id=candidate.store_item_id,
            status=DecisionStatus.CONFIRMED,
        )
        if confirmed:
            raise DecisionConflictError(
                f"Store item {candidate.store_item_id} already has confirmed candidate {confirmed[0].id}"
            )

        updated = await self.repository.update_decision(
            candidate.model_copy(update=self._decision_fields(DecisionStatus.CONFIRMED, decided_by, note))
        )
        logger.info(
            "candidate_confirmed",
            candidate_id=candidate_id,
            store_item_id=candidate.store_item_id,
            method=candidate.method.value,
            decided_by=decided_by,
        )
        return updated

    async def reject(
        self,
        candidate_id: str,
        decided_by: str,
        note: Optional[str] = None,
    ) -> MatchCandidate:
        """Reject a candidate. Rejecting a confirmed candidate releases the store item."""
        candidate = await self._load(candidate_id)
        if candidate.status == DecisionStatus.REJECTED:
            return candidate

        updated = await self.repository.update_decision(
            candidate.model_copy(update=self._decision_fields(DecisionStatus.REJECTED, decided_by, note))
        )
        logger.info(
            "candidate_rejected",
            candidate_id=candidate_id,
            store_item_id=candidate.store_item_id,
            decided_by=decided_by,
        )
        return updated

    async def apply_decisions(self, decisions: Sequence[ReviewDecision]) -> List[MatchCandidate]:
        """Apply a bulk decision feed; conflicting confirmations are logged and skipped."""
        applied: List[MatchCandidate] = []
        for decision in decisions:
            try:
                if decision.decision == ReviewAction.APPROVE:
                    applied.append(await self.confirm(decision.match_candidate_id, decision.user_id))
                else:
                    applied.append(await self.reject(decision.match_candidate_id, decision.user_id))
            except (DecisionConflictError, InputError) as e:
                logger.warning(
                    "decision_skipped",
                    candidate_id=decision.match_candidate_id,
                    error=e.message,
                )
        return applied

    @staticmethod
    def _decision_fields(status: DecisionStatus, decided_by: str, note: Optional[str]) -> dict:
        return {
            "status": status,
            "decided_by": decided_by,
            "decided_at": datetime.now(timezone.utc),
            "decision_note": note,
        }
