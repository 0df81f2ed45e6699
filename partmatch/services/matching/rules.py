"""Rule evaluation and the rule-based matcher (stage 3).

Rules map (line code, transformation signature) to an action. Project-local
rules take precedence over global rules with the same key. Rules are read
only here; creation and updates go through the rule store.
"""
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import structlog

from partmatch.errors import InputError
from partmatch.models import (
    MatchCandidate,
    MatchingRule,
    MatchMethod,
    RuleAction,
    RuleScope,
    StageName,
    StoreItem,
    SupplierItem,
    rule_key,
)
from partmatch.services.matching.base import (
    MatchContext,
    MatcherStrategy,
    StageResult,
    SupplierIndex,
    require_part_number,
)
from partmatch.services.normalizer import compute_transformation_signature, strip_line_code

logger = structlog.get_logger(__name__)


class RuleBook:
    """Read-only view over the active rules visible to one project."""

    def __init__(self, rules: Iterable[MatchingRule]):
        self._rules: Dict[tuple, MatchingRule] = {}
        for rule in rules:
            if rule.active:
                self._rules[rule.key] = rule

    def __len__(self) -> int:
        return len(self._rules)

    def __bool__(self) -> bool:
        return bool(self._rules)

    def effective_rule(
        self,
        project_id: str,
        line_code: Optional[str],
        signature: Optional[str],
        category: Optional[str] = None,
    ) -> Optional[MatchingRule]:
        """Return the project rule for the key if any, else the global rule, else None.

        A rule with a category filter only applies to items of that category.
        """
        if not signature:
            return None
        for scope in (RuleScope.PROJECT, RuleScope.GLOBAL):
            rule = self._rules.get(rule_key(scope, project_id, line_code, signature))
            if rule is None:
                continue
            if rule.category and rule.category != category:
                continue
            return rule
        return None

    def has_rules_for(self, line_code: Optional[str], action: RuleAction) -> bool:
        return any(r.line_code == line_code and r.action == action for r in self._rules.values())

    def is_blocked(
        self,
        project_id: str,
        line_code: Optional[str],
        signature: Optional[str],
        category: Optional[str] = None,
    ) -> bool:
        rule = self.effective_rule(project_id, line_code, signature, category)
        return rule is not None and rule.action == RuleAction.BLOCK


def _signature_for(store_item: StoreItem, supplier_item: SupplierItem) -> Optional[str]:
    return compute_transformation_signature(
        store_item.part_number,
        supplier_item.part_number,
        store_item.line_code or supplier_item.line_code,
    )


def suppress_blocked(
    candidates: Sequence[MatchCandidate],
    store_items: Dict[str, StoreItem],
    supplier_index: SupplierIndex,
    rule_book: Optional[RuleBook],
) -> Tuple[List[MatchCandidate], int]:
    """Drop candidates whose (line code, signature) resolves to a block rule.

    Returns:
        Tuple of (kept candidates, number blocked)
    """
    if not rule_book:
        return list(candidates), 0

    kept: List[MatchCandidate] = []
    blocked = 0
    for candidate in candidates:
        store_item = store_items.get(candidate.store_item_id)
        supplier_item = supplier_index.by_id.get(candidate.target_id) if candidate.target_id else None
        if store_item is None or supplier_item is None:
            kept.append(candidate)
            continue
        signature = _signature_for(store_item, supplier_item)
        if rule_book.is_blocked(candidate.project_id, store_item.line_code, signature, store_item.category):
            blocked += 1
            logger.debug(
                "candidate_blocked_by_rule",
                store_item_id=store_item.id,
                supplier_item_id=supplier_item.id,
                method=candidate.method.value,
                signature=signature,
            )
            continue
        kept.append(candidate)
    return kept, blocked


class RuleBasedMatcher(MatcherStrategy):
    """Matches pairs whose transformation signature has an effective approve rule.

    Supplier rows are looked up by the store canonical, the store canonical
    without its line code, and the supplier canonical without its line code.
    """

    stage = StageName.RULES

    def __init__(self):
        self._log = logger.bind(matcher="RuleBasedMatcher")

    def get_strategy_name(self) -> str:
        return "rule_based"

    def match(self, store_items: Sequence[StoreItem], context: MatchContext) -> StageResult:
        result = StageResult()
        rule_book = context.rule_book
        if not rule_book:
            return result

        index = context.supplier_index
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
            if not rule_book.has_rules_for(item.line_code, RuleAction.APPROVE):
                continue

            result.metrics.evaluated += 1
            rows: Dict[str, SupplierItem] = {}
            for supplier in index.find_canonical(canonical):
                rows.setdefault(supplier.id, supplier)
            stripped = strip_line_code(canonical, item.line_code)
            if stripped:
                for supplier in index.find_canonical(stripped):
                    rows.setdefault(supplier.id, supplier)
            for supplier in index.find_stripped_canonical(canonical):
                rows.setdefault(supplier.id, supplier)

            candidate = self._best_rule_match(item, list(rows.values()), context.project_id, rule_book, result)
            if candidate is not None:
                result.candidates.append(candidate)
                result.metrics.matched += 1

        self._log.debug("rule_match_completed", project_id=context.project_id, rules=len(rule_book),
                        **result.metrics.to_dict())
        return result

    def _best_rule_match(
        self,
        item: StoreItem,
        rows: List[SupplierItem],
        project_id: str,
        rule_book: RuleBook,
        result: StageResult,
    ) -> Optional[MatchCandidate]:
        options = []
        for supplier in rows:
            signature = _signature_for(item, supplier)
            rule = rule_book.effective_rule(project_id, item.line_code, signature, item.category)
            if rule is not None and rule.action == RuleAction.APPROVE:
                options.append((rule, signature, supplier))

        if not options:
            return None

        options.sort(key=lambda o: (-o[0].confidence, o[2].id))
        rule, signature, best = options[0]
        tie = len(options) > 1 and options[1][0].confidence == rule.confidence
        if tie:
            result.metrics.ties += 1

        evidence = {
            "rule_id": rule.id,
            "rule_scope": rule.scope.value,
            "signature": signature,
            "line_code": item.line_code,
        }
        if tie:
            evidence["tie"] = True

        return MatchCandidate(
            project_id=item.project_id,
            store_item_id=item.id,
            target_id=best.id,
            method=MatchMethod.RULE_BASED,
            confidence=rule.confidence,
            evidence=evidence,
        )
