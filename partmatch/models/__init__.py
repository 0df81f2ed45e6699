"""Pydantic models for catalogs, candidates, rules and jobs."""
from partmatch.models.parts import (
    PartRecord,
    StoreItem,
    SupplierItem,
    CatalogRecord,
    InterchangeEntry,
    LineCodeMapping,
)
from partmatch.models.matching import (
    MatchMethod,
    MATCH_STAGES,
    DecisionStatus,
    ReviewAction,
    MatchCandidate,
    ReviewDecision,
)
from partmatch.models.rules import (
    RuleScope,
    RuleAction,
    MatchingRule,
    DetectedPattern,
    LearningResult,
    rule_key,
)
from partmatch.models.jobs import (
    JobStatus,
    TERMINAL_STATUSES,
    ALLOWED_TRANSITIONS,
    CancellationType,
    StageName,
    DETERMINISTIC_STAGES,
    EXTERNAL_STAGES,
    JobConfig,
    MatchingJob,
    JobCounts,
    AdmissionResult,
)

__all__ = [
    "PartRecord",
    "StoreItem",
    "SupplierItem",
    "CatalogRecord",
    "InterchangeEntry",
    "LineCodeMapping",
    "MatchMethod",
    "MATCH_STAGES",
    "DecisionStatus",
    "ReviewAction",
    "MatchCandidate",
    "ReviewDecision",
    "RuleScope",
    "RuleAction",
    "MatchingRule",
    "DetectedPattern",
    "LearningResult",
    "rule_key",
    "JobStatus",
    "TERMINAL_STATUSES",
    "ALLOWED_TRANSITIONS",
    "CancellationType",
    "StageName",
    "DETERMINISTIC_STAGES",
    "EXTERNAL_STAGES",
    "JobConfig",
    "MatchingJob",
    "JobCounts",
    "AdmissionResult",
]
