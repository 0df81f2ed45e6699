"""Fuzzy matcher: stage 4 of the matching waterfall.

For store items left unresolved by the deterministic stages, builds a
bounded candidate pool (cheap strategies first) and scores every candidate:

    score = part_similarity + 0.4 * mfr_similarity + 0.25 * same_line_code + desc_bonus

Only the best candidate per store item is kept, and only if it reaches the
adaptive threshold (substring 0.75x, same line code 0.9x, otherwise 1x).
"""
from typing import Dict, List, Optional, Sequence, Set
import structlog

from rapidfuzz import process
from rapidfuzz.distance import Levenshtein

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
from partmatch.services.matching.scoring import FuzzyScore, description_bonus
from partmatch.services.similarity import edit_similarity, part_similarity, significant_words

logger = structlog.get_logger(__name__)

MFR_POOL_CUTOFF = 0.50
PART_POOL_CUTOFF = 0.45
MIN_SHARED_POOL_WORDS = 2


def score_pair(store_item: StoreItem, supplier_item: SupplierItem) -> FuzzyScore:
    """Compute the fuzzy score breakdown for one pair."""
    part_sim, is_substring = part_similarity(
        store_item.canonical_part_number, supplier_item.canonical_part_number
    )
    mfr_sim = 0.0
    if store_item.mfr_code and supplier_item.mfr_code:
        mfr_sim = edit_similarity(store_item.mfr_code, supplier_item.mfr_code)
    shared = len(significant_words(store_item.description) & significant_words(supplier_item.description))
    return FuzzyScore(
        part_similarity=part_sim,
        is_substring=is_substring,
        mfr_similarity=mfr_sim,
        same_line_code=bool(store_item.line_code) and store_item.line_code == supplier_item.line_code,
        shared_words=shared,
        desc_bonus=description_bonus(shared),
    )


class FuzzyMatcher(MatcherStrategy):
    """Weighted part-number / manufacturer / description similarity matcher.

    Attributes:
        threshold: Base acceptance threshold (default from MATCH_FUZZY_THRESHOLD)
        max_candidates_per_item: Candidate pool cap per store item
        min_part_length: Shorter canonical part numbers are not fuzzy matched
    """

    stage = StageName.FUZZY

    def __init__(
        self,
        threshold: Optional[float] = None,
        max_candidates_per_item: Optional[int] = None,
        min_part_length: Optional[int] = None,
    ):
        self.threshold = matching_settings.fuzzy_threshold if threshold is None else threshold
        self.max_candidates_per_item = (
            matching_settings.max_candidates_per_item
            if max_candidates_per_item is None
            else max_candidates_per_item
        )
        self.min_part_length = (
            matching_settings.fuzzy_min_part_length if min_part_length is None else min_part_length
        )
        self._log = logger.bind(matcher="FuzzyMatcher")

    def get_strategy_name(self) -> str:
        return "fuzzy_weighted"

    def match(self, store_items: Sequence[StoreItem], context: MatchContext) -> StageResult:
        threshold = self.threshold if context.fuzzy_threshold is None else context.fuzzy_threshold
        max_candidates = (
            self.max_candidates_per_item
            if context.max_candidates_per_item is None
            else context.max_candidates_per_item
        )
        result = StageResult()
        index = context.supplier_index
        if not len(index):
            return result

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
            if len(canonical) < self.min_part_length:
                result.metrics.skipped_invalid += 1
                self._log.debug("store_item_too_short_for_fuzzy", item_id=item.id, canonical=canonical)
                continue

            result.metrics.evaluated += 1
            pool = self.build_candidate_pool(item, index, max_candidates)
            candidate = self._best_candidate(item, pool, threshold, result)
            if candidate is not None:
                result.candidates.append(candidate)
                result.metrics.matched += 1

        self._log.debug(
            "fuzzy_match_completed",
            project_id=context.project_id,
            threshold=threshold,
            **result.metrics.to_dict(),
        )
        return result

    def build_candidate_pool(
        self,
        item: StoreItem,
        index: SupplierIndex,
        max_candidates: int,
    ) -> List[SupplierItem]:
        """Union of the pool strategies in priority order, capped at max_candidates.

        Strategies:
            a. same line code
            b. manufacturer code edit similarity >= 0.50
            c. canonical part number substring/edit similarity >= 0.45
            d. >= 2 shared description words longer than 3 characters
        """
        pool: Dict[str, SupplierItem] = {}

        def add(candidates) -> bool:
            for supplier in candidates:
                if len(pool) >= max_candidates:
                    return False
                pool.setdefault(supplier.id, supplier)
            return len(pool) < max_candidates

        if not add(index.find_line_code(item.line_code)):
            return list(pool.values())

        if item.mfr_code:
            hits = process.extract(
                item.mfr_code,
                index.mfr_codes,
                scorer=Levenshtein.normalized_similarity,
                score_cutoff=MFR_POOL_CUTOFF,
                limit=None,
            )
            if not add(index.items[i] for _, _, i in hits):
                return list(pool.values())

        # Levenshtein similarity equals the length ratio when one string contains the other.
        hits = process.extract(
            item.canonical_part_number,
            index.canonicals,
            scorer=Levenshtein.normalized_similarity,
            score_cutoff=PART_POOL_CUTOFF,
            limit=None,
        )
        if not add(index.items[i] for _, _, i in hits):
            return list(pool.values())

        store_words = significant_words(item.description)
        if len(store_words) >= MIN_SHARED_POOL_WORDS:
            add(
                s for s, words in zip(index.items, index.description_words)
                if len(store_words & words) >= MIN_SHARED_POOL_WORDS
            )

        return list(pool.values())

    def _best_candidate(
        self,
        item: StoreItem,
        pool: List[SupplierItem],
        threshold: float,
        result: StageResult,
    ) -> Optional[MatchCandidate]:
        accepted = []
        for supplier in pool:
            score = score_pair(item, supplier)
            if score.accepted(threshold):
                accepted.append((score, supplier))

        if not accepted:
            return None

        accepted.sort(key=lambda pair: (-pair[0].total, pair[1].id))
        score, best = accepted[0]
        tie = len(accepted) > 1 and accepted[1][0].total == score.total
        if tie:
            result.metrics.ties += 1

        evidence = score.to_dict()
        evidence["threshold"] = round(score.threshold_for(threshold), 4)
        evidence["pool_size"] = len(pool)
        if tie:
            evidence["tie"] = True

        return MatchCandidate(
            project_id=item.project_id,
            store_item_id=item.id,
            target_id=best.id,
            method=MatchMethod.FUZZY_SUBSTRING if score.is_substring else MatchMethod.FUZZY,
            confidence=score.confidence,
            evidence=evidence,
        )


def match_fuzzy(
    store_items: Sequence[StoreItem],
    supplier_index: SupplierIndex,
    already_matched_ids: Set[str],
    project_id: str,
    threshold: Optional[float] = None,
    max_candidates_per_item: Optional[int] = None,
) -> StageResult:
    """Run the fuzzy matcher outside a pipeline.

    Returns:
        StageResult with the accepted candidates and the stage metrics
    """
    context = MatchContext(
        project_id=project_id,
        supplier_index=supplier_index,
        already_matched_ids=set(already_matched_ids),
        fuzzy_threshold=threshold,
        max_candidates_per_item=max_candidates_per_item,
    )
    return FuzzyMatcher().match(store_items, context)
