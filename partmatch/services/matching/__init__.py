"""Waterfall matchers for store/supplier part reconciliation.

Key Components:
    - MatcherStrategy: Abstract base class for waterfall stages
    - InterchangeResolver: Cross-reference table lookup (stage 1)
    - ExactMatcher: Canonical part number join with description guard (stage 2)
    - RuleBasedMatcher: Learned transformation rules (stage 3)
    - FuzzyMatcher: Weighted similarity scoring (stage 4)
"""
from partmatch.services.matching.base import (
    MatchContext,
    MatcherStrategy,
    StageMetrics,
    StageResult,
    SupplierIndex,
)
from partmatch.services.matching.interchange import InterchangeResolver, resolve_interchange
from partmatch.services.matching.exact import ExactMatcher, match_exact
from partmatch.services.matching.fuzzy import FuzzyMatcher, match_fuzzy, score_pair
from partmatch.services.matching.rules import RuleBasedMatcher, RuleBook, suppress_blocked
from partmatch.models import StageName


def create_matcher(stage: StageName, **kwargs) -> MatcherStrategy:
    """Factory function to create the matcher for a waterfall stage.

    Raises:
        ValueError: If the stage has no in-process matcher
    """
    strategies = {
        StageName.INTERCHANGE: InterchangeResolver,
        StageName.EXACT: ExactMatcher,
        StageName.RULES: RuleBasedMatcher,
        StageName.FUZZY: FuzzyMatcher,
    }

    if stage not in strategies:
        raise ValueError(f"Unknown matching stage: {stage}. Available: {[s.value for s in strategies]}")

    return strategies[stage](**kwargs)


__all__ = [
    "MatchContext",
    "MatcherStrategy",
    "StageMetrics",
    "StageResult",
    "SupplierIndex",
    "InterchangeResolver",
    "ExactMatcher",
    "RuleBasedMatcher",
    "FuzzyMatcher",
    "RuleBook",
    "create_matcher",
    "resolve_interchange",
    "match_exact",
    "match_fuzzy",
    "score_pair",
    "suppress_blocked",
]
