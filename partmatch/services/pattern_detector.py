"""Pattern detection and rule learning from bulk review decisions.

Decisions are grouped by (project, line code, transformation signature).
A group becomes a rule only if it has enough approvals and approvals
outnumber rejections. Rule creation is idempotent: an equivalent active
rule is counted as skipped, never duplicated or overwritten.
"""
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple
import structlog

from partmatch.errors import DatabaseError
from partmatch.interfaces import RuleStore
from partmatch.models import (
    DetectedPattern,
    LearningResult,
    MatchingRule,
    ReviewAction,
    ReviewDecision,
    RuleAction,
    RuleScope,
    rule_key,
)
from partmatch.services.normalizer import compute_transformation_signature

logger = structlog.get_logger(__name__)

DEFAULT_MIN_SUPPORT = 2
MAX_SAMPLES = 5

SKIP_NO_SIGNATURE = "no_signature"
SKIP_INSUFFICIENT_SUPPORT = "insufficient_support"
SKIP_REJECT_DOMINATED = "reject_dominated"
SKIP_EXISTING_RULE = "existing_rule"
SKIP_INACTIVE_RULE = "inactive_rule_exists"


def _normalize_line_code(line_code: Optional[str]) -> Optional[str]:
    if not line_code:
        return None
    return line_code.strip().upper() or None


def detect_patterns(
    decisions: Sequence[ReviewDecision],
    min_support: int = DEFAULT_MIN_SUPPORT,
) -> List[DetectedPattern]:
    """Group decisions and flag the groups eligible to become rules.

    Nothing is written. Patterns are sorted by support, largest first.
    """
    groups: Dict[Tuple[str, Optional[str], Optional[str]], DetectedPattern] = {}
    for decision in decisions:
        line_code = _normalize_line_code(decision.line_code)
        signature = compute_transformation_signature(
            decision.store_part_number, decision.supplier_part_number, line_code
        )
        key = (decision.project_id, line_code, signature)
        pattern = groups.get(key)
        if pattern is None:
            pattern = DetectedPattern(project_id=decision.project_id, line_code=line_code, signature=signature)
            groups[key] = pattern

        if decision.decision == ReviewAction.APPROVE:
            pattern.approvals += 1
        else:
            pattern.rejections += 1
        if len(pattern.sample_part_numbers) < MAX_SAMPLES:
            pattern.sample_part_numbers.append((decision.store_part_number, decision.supplier_part_number))

    for pattern in groups.values():
        if pattern.signature is None:
            pattern.reason = SKIP_NO_SIGNATURE
        elif pattern.approvals < min_support:
            pattern.reason = SKIP_INSUFFICIENT_SUPPORT
        elif pattern.approvals <= pattern.rejections:
            pattern.reason = SKIP_REJECT_DOMINATED
        else:
            pattern.eligible = True

    return sorted(
        groups.values(),
        key=lambda p: (-p.support, p.project_id, p.line_code or "", p.signature or ""),
    )


async def learn_from_decisions(
    decisions: Sequence[ReviewDecision],
    rule_store: RuleStore,
    scope: RuleScope = RuleScope.PROJECT,
    min_support: int = DEFAULT_MIN_SUPPORT,
    created_by: str = "pattern_detector",
) -> LearningResult:
    """Turn eligible decision patterns into approve rules.

    Args:
        decisions: Bulk decision feed
        rule_store: Where rules are looked up and created
        scope: PROJECT (default) or GLOBAL when explicitly promoted
        min_support: Minimum approvals sharing a key
        created_by: Recorded on created rules

    Returns:
        LearningResult with created/skipped/errors counts
    """
    result = LearningResult()
    skipped_reasons: Dict[str, int] = defaultdict(int)

    for pattern in detect_patterns(decisions, min_support):
        log = logger.bind(
            project_id=pattern.project_id,
            line_code=pattern.line_code,
            signature=pattern.signature,
        )
        if not pattern.eligible:
            result.skipped += 1
            skipped_reasons[pattern.reason] += 1
            log.debug("pattern_skipped", reason=pattern.reason, approvals=pattern.approvals,
                      rejections=pattern.rejections)
            continue

        project_id = pattern.project_id if scope == RuleScope.PROJECT else None
        try:
            existing = await rule_store.find_rule(rule_key(scope, project_id, pattern.line_code, pattern.signature))
            if existing is not None:
                reason = SKIP_EXISTING_RULE if existing.active else SKIP_INACTIVE_RULE
                result.skipped += 1
                skipped_reasons[reason] += 1
                log.debug("pattern_skipped", reason=reason, rule_id=existing.id)
                continue

            rule = await rule_store.create_rule(
                MatchingRule(
                    scope=scope,
                    project_id=project_id,
                    line_code=pattern.line_code,
                    signature=pattern.signature,
                    action=RuleAction.APPROVE,
                    confidence=round(pattern.approvals / pattern.support, 4),
                    support=pattern.approvals,
                    created_by=created_by,
                )
            )
        except DatabaseError as e:
            result.errors += 1
            log.error("rule_creation_failed", error=e.message)
            continue

        result.created += 1
        result.rule_ids.append(rule.id)
        log.info("rule_created", rule_id=rule.id, scope=scope.value, support=pattern.approvals)

    result.skipped_reasons = dict(skipped_reasons)
    logger.info(
        "rule_learning_completed",
        decisions=len(decisions),
        created=result.created,
        skipped=result.skipped,
        errors=result.errors,
    )
    return result
