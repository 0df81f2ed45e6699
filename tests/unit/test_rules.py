"""Unit tests for rule evaluation and the rule-based matcher (stage 3)."""
from partmatch.models import MatchCandidate, MatchingRule, MatchMethod, RuleAction, RuleScope
from partmatch.services.matching import MatchContext, RuleBasedMatcher, RuleBook, SupplierIndex, suppress_blocked


def project_rule(project_id, signature, line_code=None, **kwargs):
    return MatchingRule(scope=RuleScope.PROJECT, project_id=project_id, line_code=line_code,
                        signature=signature, **kwargs)


def global_rule(signature, line_code=None, **kwargs):
    return MatchingRule(scope=RuleScope.GLOBAL, line_code=line_code, signature=signature, **kwargs)


class TestRuleBook:
    """Tests for effective rule resolution."""

    def test_project_rule_overrides_global_rule(self, project_id):
        book = RuleBook([
            global_rule("remove_dash", action=RuleAction.APPROVE),
            project_rule(project_id, "remove_dash", action=RuleAction.BLOCK),
        ])

        rule = book.effective_rule(project_id, None, "remove_dash")

        assert rule.scope == RuleScope.PROJECT
        assert book.is_blocked(project_id, None, "remove_dash")

    def test_global_rule_applies_to_other_projects(self, project_id):
        book = RuleBook([
            global_rule("remove_dash"),
            project_rule(project_id, "remove_dash", action=RuleAction.BLOCK),
        ])

        rule = book.effective_rule("other-project", None, "remove_dash")

        assert rule.scope == RuleScope.GLOBAL
        assert not book.is_blocked("other-project", None, "remove_dash")

    def test_line_code_is_part_of_the_key(self, project_id):
        book = RuleBook([project_rule(project_id, "remove_dash", line_code="GATES")])

        assert book.effective_rule(project_id, "GATES", "remove_dash") is not None
        assert book.effective_rule(project_id, "DAYCO", "remove_dash") is None
        assert book.effective_rule(project_id, None, "remove_dash") is None

    def test_category_filter(self, project_id):
        book = RuleBook([project_rule(project_id, "remove_dash", category="belts")])

        assert book.effective_rule(project_id, None, "remove_dash", category="belts") is not None
        assert book.effective_rule(project_id, None, "remove_dash", category="filters") is None
        assert book.effective_rule(project_id, None, "remove_dash") is None

    def test_inactive_rules_are_ignored(self, project_id):
        book = RuleBook([project_rule(project_id, "remove_dash", active=False)])

        assert len(book) == 0
        assert not book
        assert book.effective_rule(project_id, None, "remove_dash") is None

    def test_missing_signature_has_no_rule(self, project_id):
        book = RuleBook([project_rule(project_id, "remove_dash")])
        assert book.effective_rule(project_id, None, None) is None


class TestSuppressBlocked:
    def test_blocked_candidate_is_dropped(self, make_store, make_supplier, project_id):
        store = make_store("s1", "K060-841")
        supplier = make_supplier("x1", "K060841")
        candidate = MatchCandidate(project_id=project_id, store_item_id="s1", target_id="x1",
                                   method=MatchMethod.FUZZY, confidence=0.8)
        book = RuleBook([project_rule(project_id, "remove_dash", action=RuleAction.BLOCK)])

        kept, blocked = suppress_blocked([candidate], {"s1": store}, SupplierIndex([supplier]), book)

        assert kept == []
        assert blocked == 1

    def test_sentinels_and_empty_rule_book_pass_through(self, make_store, project_id):
        sentinel = MatchCandidate(project_id=project_id, store_item_id="s1", external_ref="RAY8036",
                                  method=MatchMethod.INTERCHANGE, confidence=0.95)
        store = make_store("s1", "GM8036")
        book = RuleBook([project_rule(project_id, "identical", action=RuleAction.BLOCK)])

        assert suppress_blocked([sentinel], {"s1": store}, SupplierIndex([]), book) == ([sentinel], 0)
        assert suppress_blocked([sentinel], {"s1": store}, SupplierIndex([]), None) == ([sentinel], 0)


class TestRuleBasedMatcher:
    """Tests for approve-rule matching."""

    def test_approve_rule_produces_candidate(self, make_store, make_supplier, project_id):
        store = make_store("s1", "K060-841")
        supplier = make_supplier("x1", "K060841")
        rule = project_rule(project_id, "remove_dash", confidence=0.93)
        context = MatchContext(project_id=project_id, supplier_index=SupplierIndex([supplier]),
                               rule_book=RuleBook([rule]))

        result = RuleBasedMatcher().match([store], context)

        assert len(result.candidates) == 1
        candidate = result.candidates[0]
        assert candidate.method == MatchMethod.RULE_BASED
        assert candidate.match_stage == 3
        assert candidate.confidence == 0.93
        assert candidate.evidence["rule_id"] == rule.id
        assert candidate.evidence["signature"] == "remove_dash"

    def test_line_code_stripped_lookup(self, make_store, make_supplier, project_id):
        store = make_store("s1", "GT-12345")
        supplier = make_supplier("x1", "12345")
        rule = project_rule(project_id, "line_code_stripped_remove_dash", line_code="GT")
        context = MatchContext(project_id=project_id, supplier_index=SupplierIndex([supplier]),
                               rule_book=RuleBook([rule]))

        result = RuleBasedMatcher().match([store], context)

        assert [c.target_id for c in result.candidates] == ["x1"]
        assert result.candidates[0].evidence["line_code"] == "GT"

    def test_signature_without_rule_is_not_matched(self, make_store, make_supplier, project_id):
        store = make_store("s1", "21/3/1")
        supplier = make_supplier("x1", "21-3-1")
        context = MatchContext(project_id=project_id, supplier_index=SupplierIndex([supplier]),
                               rule_book=RuleBook([project_rule(project_id, "remove_dash")]))

        result = RuleBasedMatcher().match([store], context)

        assert result.candidates == []
        assert result.metrics.evaluated == 1

    def test_block_rules_never_produce_candidates(self, make_store, make_supplier, project_id):
        store = make_store("s1", "K060-841")
        supplier = make_supplier("x1", "K060841")
        context = MatchContext(
            project_id=project_id,
            supplier_index=SupplierIndex([supplier]),
            rule_book=RuleBook([project_rule(project_id, "remove_dash", action=RuleAction.BLOCK)]),
        )

        assert RuleBasedMatcher().match([store], context).candidates == []

    def test_no_rules_is_a_no_op(self, make_store, make_supplier, project_id):
        context = MatchContext(project_id=project_id, supplier_index=SupplierIndex([make_supplier("x1", "1")]))
        result = RuleBasedMatcher().match([make_store("s1", "1")], context)
        assert result.candidates == []
        assert result.metrics.evaluated == 0
