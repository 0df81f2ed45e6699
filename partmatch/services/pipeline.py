"""Matching waterfall.

Runs the in-process stages in order (interchange, exact, rules, fuzzy) over
a batch of store items. Every store item resolved by a stage is added to the
context's already-matched set before the next stage runs, so later stages
never see it again within the pass.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence
import structlog

from partmatch.models import (
    DETERMINISTIC_STAGES,
    EXTERNAL_STAGES,
    InterchangeEntry,
    LineCodeMapping,
    MatchCandidate,
    MatchingRule,
    StageName,
    StoreItem,
    SupplierItem,
)
from partmatch.services.line_codes import LineCodeMapper
from partmatch.services.matching import (
    MatchContext,
    MatcherStrategy,
    RuleBook,
    StageMetrics,
    SupplierIndex,
    create_matcher,
    suppress_blocked,
)

logger = structlog.get_logger(__name__)


@dataclass
class PipelineResult:
    """Candidates of one batch plus per-stage metrics."""
    candidates: List[MatchCandidate] = field(default_factory=list)
    stage_metrics: Dict[str, StageMetrics] = field(default_factory=dict)

    def merge(self, other: "PipelineResult") -> None:
        self.candidates.extend(other.candidates)
        for stage, metrics in other.stage_metrics.items():
            self.stage_metrics.setdefault(stage, StageMetrics()).merge(metrics)

    def to_dict(self) -> dict:
        return {
            "candidates": len(self.candidates),
            "stages": {stage: m.to_dict() for stage, m in self.stage_metrics.items()},
        }


class MatchingPipeline:
    """Runs the deterministic and fuzzy stages of the waterfall.

    External stages (AI, web search) are not run here; the job runner drives
    them separately under the external-stage concurrency ceiling.

    Usage:
        pipeline = MatchingPipeline()
        context = pipeline.build_context(project_id, suppliers, entries, rules)
        result = pipeline.run_batch(store_items, context)
    """

    def __init__(
        self,
        stages: Optional[Sequence[StageName]] = None,
        matchers: Optional[Dict[StageName, MatcherStrategy]] = None,
    ):
        requested = list(stages) if stages is not None else list(DETERMINISTIC_STAGES)
        # Waterfall order is fixed regardless of the order stages were requested in.
        self.stages = [s for s in DETERMINISTIC_STAGES if s in requested]
        self._matchers: Dict[StageName, MatcherStrategy] = dict(matchers or {})
        for stage in self.stages:
            if stage not in self._matchers:
                self._matchers[stage] = create_matcher(stage)
        ignored = [s for s in requested if s in EXTERNAL_STAGES]
        self._log = logger.bind(stages=[s.value for s in self.stages])
        if ignored:
            self._log.debug("external_stages_deferred", stages=[s.value for s in ignored])

    @staticmethod
    def build_context(
        project_id: str,
        supplier_items: Sequence[SupplierItem],
        interchange_entries: Sequence[InterchangeEntry] = (),
        rules: Sequence[MatchingRule] = (),
        already_matched_ids: Optional[set] = None,
        fuzzy_threshold: Optional[float] = None,
        max_candidates_per_item: Optional[int] = None,
        line_code_mappings: Sequence[LineCodeMapping] = (),
    ) -> MatchContext:
        return MatchContext(
            project_id=project_id,
            supplier_index=SupplierIndex(supplier_items),
            interchange_entries=list(interchange_entries),
            rule_book=RuleBook(rules),
            line_code_mapper=LineCodeMapper(line_code_mappings, project_id),
            already_matched_ids=set(already_matched_ids or ()),
            fuzzy_threshold=fuzzy_threshold,
            max_candidates_per_item=max_candidates_per_item,
        )

    @staticmethod
    def map_line_codes(store_items: Sequence[StoreItem], context: MatchContext) -> List[StoreItem]:
        """Rewrite client line codes to supplier line codes. Run once per pass, before run_batch."""
        if context.line_code_mapper is None:
            return list(store_items)
        return context.line_code_mapper.apply_all(store_items)

    def run_batch(self, store_items: Sequence[StoreItem], context: MatchContext) -> PipelineResult:
        """Run every configured stage over the batch, in waterfall order."""
        result = PipelineResult()
        by_id = {item.id: item for item in store_items}

        for stage in self.stages:
            stage_result = self._matchers[stage].match(store_items, context)
            kept, blocked = suppress_blocked(
                stage_result.candidates, by_id, context.supplier_index, context.rule_book
            )
            stage_result.metrics.blocked_by_rule += blocked
            stage_result.metrics.matched -= blocked

            result.candidates.extend(kept)
            result.stage_metrics.setdefault(stage.value, StageMetrics()).merge(stage_result.metrics)
            context.already_matched_ids.update(c.store_item_id for c in kept)

        self._log.debug(
            "batch_matched",
            project_id=context.project_id,
            items=len(store_items),
            candidates=len(result.candidates),
        )
        return result

    def match_item(self, store_item: StoreItem, context: MatchContext) -> PipelineResult:
        """Run the waterfall for a single store item."""
        return self.run_batch([store_item], context)
