"""Exact matcher: stage 2 of the matching waterfall.

Joins store and supplier items on the canonical part number. Short numeric
codes collide across unrelated parts, so each join is validated against the
description similarity of the two rows and rejected below a configurable
floor.
"""
from typing import List, Optional, Sequence, Tuple
import structlog

from partmatch.config import matching_settings
from partmatch.errors import InputError
from partmatch.models import MatchCandidate, MatchMethod, StageName, StoreItem, SupplierItem
from partmatch.services.matching.base import (
    MatchContext,
    MatcherStrategy,
    StageResult,
    SupplierIndex,
    require_part_number,
)
from partmatch.services.matching.scoring import CONFIDENCE_DECIMALS, exact_confidence
from partmatch.services.normalizer import compact
from partmatch.services.similarity import description_similarity

logger = structlog.get_logger(__name__)


class ExactMatcher(MatcherStrategy):
    """Canonical part number join with a description-similarity guard.

    Attributes:
        similarity_validation: Reject joins below similarity_floor
        similarity_floor: Minimum description similarity (default from MATCH_EXACT_SIMILARITY_FLOOR)
    """

    stage = StageName.EXACT

    def __init__(
        self,
        similarity_validation: Optional[bool] = None,
        similarity_floor: Optional[float] = None,
    ):
        self.similarity_validation = (
            matching_settings.exact_similarity_validation
            if similarity_validation is None
            else similarity_validation
        )
        self.similarity_floor = (
            matching_settings.exact_similarity_floor if similarity_floor is None else similarity_floor
        )
        self._log = logger.bind(matcher="ExactMatcher")

    def get_strategy_name(self) -> str:
        return "exact_normalized"

    def match(self, store_items: Sequence[StoreItem], context: MatchContext) -> StageResult:
        result = StageResult()
        for item in store_items:
            if item.id in context.already_matched_ids:
                result.metrics.skipped_already_matched += 1
                continue
            try:
                canonical = require_part_number(item)
            except InputError as e:
                result.metrics.skipped_invalid += 1
                self._log.warning("store_item_skipped", item_id=item.id, error=e.message)
                continue

            result.metrics.evaluated += 1
            rows = context.supplier_index.find_canonical(canonical)
            if not rows:
                continue

            candidate = self._best_join(item, rows, result)
            if candidate is not None:
                result.candidates.append(candidate)
                result.metrics.matched += 1

        self._log.debug("exact_match_completed", project_id=context.project_id, **result.metrics.to_dict())
        return result

    def _best_join(
        self,
        item: StoreItem,
        rows: List[SupplierItem],
        result: StageResult,
    ) -> Optional[MatchCandidate]:
        scored: List[Tuple[Optional[float], SupplierItem]] = []
        for row in rows:
            similarity = description_similarity(item.description, row.description)
            if self.similarity_validation and similarity is not None and similarity < self.similarity_floor:
                result.metrics.rejected_low_similarity += 1
                self._log.debug(
                    "exact_match_rejected_low_similarity",
                    item_id=item.id,
                    supplier_item_id=row.id,
                    similarity=round(similarity, CONFIDENCE_DECIMALS),
                    floor=self.similarity_floor,
                )
                continue
            scored.append((similarity, row))

        if not scored:
            return None

        # Highest similarity wins; a missing description ranks below any score.
        scored.sort(key=lambda pair: (-(pair[0] if pair[0] is not None else -1.0), pair[1].id))
        similarity, best = scored[0]
        tie = len(scored) > 1 and scored[1][0] == similarity
        if tie:
            result.metrics.ties += 1

        raw_identical = compact(item.part_number) == compact(best.part_number)
        evidence = {
            "canonical_part_number": item.canonical_part_number,
            "raw_identical": raw_identical,
            "description_similarity": (
                round(similarity, CONFIDENCE_DECIMALS) if similarity is not None else None
            ),
            "description_missing": similarity is None,
            "similarity_validated": self.similarity_validation,
            "joined_rows": len(rows),
        }
        if tie:
            evidence["tie"] = True

        return MatchCandidate(
            project_id=item.project_id,
            store_item_id=item.id,
            target_id=best.id,
            method=MatchMethod.EXACT_NORMALIZED,
            confidence=exact_confidence(similarity, raw_identical),
            evidence=evidence,
        )


def match_exact(
    store_items: Sequence[StoreItem],
    supplier_index: SupplierIndex,
    project_id: str,
    similarity_validation: Optional[bool] = None,
    similarity_floor: Optional[float] = None,
) -> List[MatchCandidate]:
    """Run the exact matcher outside a pipeline."""
    matcher = ExactMatcher(similarity_validation, similarity_floor)
    context = MatchContext(project_id=project_id, supplier_index=supplier_index)
    return matcher.match(store_items, context).candidates
