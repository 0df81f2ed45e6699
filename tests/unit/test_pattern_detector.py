"""Unit tests for pattern detection and rule learning."""
import pytest

from partmatch.errors import DatabaseError
from partmatch.models import MatchingRule, ReviewAction, ReviewDecision, RuleAction, RuleScope, rule_key
from partmatch.services.pattern_detector import detect_patterns, learn_from_decisions
from partmatch.stores import InMemoryRuleStore


@pytest.fixture
def make_decision(project_id):
    """Factory for review decisions."""
    counter = iter(range(1, 1000))

    def _make(store_pn, supplier_pn, action=ReviewAction.APPROVE, line_code=None, project=project_id):
        return ReviewDecision(
            match_candidate_id=f"c{next(counter)}",
            store_part_number=store_pn,
            supplier_part_number=supplier_pn,
            line_code=line_code,
            decision=action,
            project_id=project,
            user_id="reviewer",
        )
    return _make


class TestDetectPatterns:
    def test_groups_by_line_code_and_signature(self, make_decision):
        decisions = [
            make_decision("K060-841", "K060841", line_code="gates"),
            make_decision("K060-842", "K060842", line_code="GATES"),
            make_decision("21/3/1", "21-3-1"),
        ]

        patterns = detect_patterns(decisions)

        assert [(p.line_code, p.signature, p.approvals) for p in patterns] == [
            ("GATES", "remove_dash", 2),
            (None, "slash_to_dash", 1),
        ]
        assert patterns[0].eligible
        assert patterns[1].reason == "insufficient_support"

    def test_rejections_can_dominate(self, make_decision):
        decisions = [
            make_decision("A-1", "A1"),
            make_decision("B-2", "B2"),
            make_decision("C-3", "C3", action=ReviewAction.REJECT),
            make_decision("D-4", "D4", action=ReviewAction.REJECT),
        ]

        [pattern] = detect_patterns(decisions)

        assert not pattern.eligible
        assert pattern.reason == "reject_dominated"

    def test_unrelated_numbers_have_no_signature(self, make_decision):
        [pattern] = detect_patterns([make_decision("123", "456"), make_decision("789", "012")])
        assert pattern.signature is None
        assert pattern.reason == "no_signature"


class TestLearnFromDecisions:
    """Tests for idempotent rule creation."""

    @pytest.mark.asyncio
    async def test_three_approvals_create_one_rule(self, make_decision, project_id):
        store = InMemoryRuleStore()
        decisions = [make_decision("K060-841", "K060841", line_code="GATES") for _ in range(3)]

        result = await learn_from_decisions(decisions, store)

        assert result.created == 1
        assert result.skipped == 0
        rule = await store.find_rule(rule_key(RuleScope.PROJECT, project_id, "GATES", "remove_dash"))
        assert rule is not None
        assert rule.id == result.rule_ids[0]
        assert rule.action == RuleAction.APPROVE
        assert rule.confidence == 1.0
        assert rule.support == 3

    @pytest.mark.asyncio
    async def test_rerun_with_same_pattern_is_skipped(self, make_decision):
        store = InMemoryRuleStore()
        await learn_from_decisions([make_decision("K060-841", "K060841", line_code="GATES") for _ in range(3)], store)

        result = await learn_from_decisions(
            [make_decision("K060-841", "K060841", line_code="GATES") for _ in range(4)], store
        )

        assert result.created == 0
        assert result.skipped == 1
        assert result.skipped_reasons == {"existing_rule": 1}
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_inactive_rule_is_not_recreated(self, make_decision, project_id):
        store = InMemoryRuleStore([
            MatchingRule(project_id=project_id, line_code="GATES", signature="remove_dash", active=False)
        ])

        result = await learn_from_decisions(
            [make_decision("K060-841", "K060841", line_code="GATES") for _ in range(2)], store
        )

        assert result.created == 0
        assert result.skipped_reasons == {"inactive_rule_exists": 1}

    @pytest.mark.asyncio
    async def test_confidence_is_approval_ratio(self, make_decision, project_id):
        store = InMemoryRuleStore()
        decisions = [make_decision(f"A-{i}", f"A{i}") for i in range(3)]
        decisions.append(make_decision("A-9", "A9", action=ReviewAction.REJECT))

        await learn_from_decisions(decisions, store)

        rule = await store.find_rule(rule_key(RuleScope.PROJECT, project_id, None, "remove_dash"))
        assert rule.confidence == 0.75
        assert rule.support == 3

    @pytest.mark.asyncio
    async def test_global_promotion(self, make_decision):
        store = InMemoryRuleStore()
        decisions = [make_decision("21/3/1", "21-3-1"), make_decision("4/5", "4-5", project="proj-2")]

        result = await learn_from_decisions(decisions, store, scope=RuleScope.GLOBAL, min_support=1)

        assert result.created == 1
        assert result.skipped_reasons == {"existing_rule": 1}
        rule = await store.find_rule(rule_key(RuleScope.GLOBAL, None, None, "slash_to_dash"))
        assert rule.project_id is None

    @pytest.mark.asyncio
    async def test_store_errors_are_counted(self, make_decision):
        class FailingRuleStore(InMemoryRuleStore):
            async def create_rule(self, rule):
                raise DatabaseError("insert failed")

        result = await learn_from_decisions(
            [make_decision("K060-841", "K060841") for _ in range(2)], FailingRuleStore()
        )

        assert result.created == 0
        assert result.errors == 1
