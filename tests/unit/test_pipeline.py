"""Unit tests for the matching waterfall."""
from partmatch.models import MatchingRule, MatchMethod, RuleAction, StageName
from partmatch.services.pipeline import MatchingPipeline, PipelineResult


class TestMatchingPipeline:
    """Tests for stage ordering and monotonic exclusion."""

    def test_stage_order_is_fixed(self):
        pipeline = MatchingPipeline(stages=[StageName.FUZZY, StageName.AI, StageName.EXACT])
        assert pipeline.stages == [StageName.EXACT, StageName.FUZZY]

    def test_default_stages_are_deterministic(self):
        assert MatchingPipeline().stages == [
            StageName.INTERCHANGE, StageName.EXACT, StageName.RULES, StageName.FUZZY
        ]

    def test_item_matched_early_is_not_seen_by_later_stages(self, make_store, make_supplier, project_id):
        store = make_store("s1", "000-2112-73")
        supplier = make_supplier("x1", "000.2112.73")
        pipeline = MatchingPipeline()
        context = pipeline.build_context(project_id, [supplier])

        result = pipeline.run_batch([store], context)

        assert [c.method for c in result.candidates] == [MatchMethod.EXACT_NORMALIZED]
        assert result.stage_metrics["exact"].matched == 1
        assert result.stage_metrics["fuzzy"].skipped_already_matched == 1
        assert context.already_matched_ids == {"s1"}

    def test_interchange_takes_precedence_over_exact(self, make_store, make_supplier, make_entry, project_id):
        store = make_store("s1", "GM8036")
        suppliers = [make_supplier("x1", "GM-8036"), make_supplier("x2", "RAY8036")]
        entry = make_entry("e1", ours="GM8036", theirs="RAY8036")
        pipeline = MatchingPipeline()
        context = pipeline.build_context(project_id, suppliers, [entry])

        result = pipeline.run_batch([store], context)

        assert len(result.candidates) == 1
        assert result.candidates[0].method == MatchMethod.INTERCHANGE
        assert result.candidates[0].target_id == "x2"

    def test_fuzzy_runs_for_items_left_unresolved(self, make_store, make_supplier, project_id):
        items = [make_store("s1", "21/3/1"), make_store("s2", "GM8036")]
        suppliers = [make_supplier("x1", "21-3-1"), make_supplier("x2", "GM8036X")]
        pipeline = MatchingPipeline()

        result = pipeline.run_batch(items, pipeline.build_context(project_id, suppliers))

        methods = {c.store_item_id: c.method for c in result.candidates}
        assert methods == {"s1": MatchMethod.EXACT_NORMALIZED, "s2": MatchMethod.FUZZY_SUBSTRING}

    def test_block_rule_suppresses_candidates_of_every_stage(self, make_store, make_supplier, project_id):
        store = make_store("s1", "K060-841")
        supplier = make_supplier("x1", "K060841")
        rule = MatchingRule(project_id=project_id, signature="remove_dash", action=RuleAction.BLOCK)
        pipeline = MatchingPipeline()

        result = pipeline.run_batch([store], pipeline.build_context(project_id, [supplier], rules=[rule]))

        assert result.candidates == []
        assert result.stage_metrics["exact"].blocked_by_rule == 1
        assert result.stage_metrics["exact"].matched == 0
        assert result.stage_metrics["fuzzy"].blocked_by_rule == 1

    def test_match_item_updates_context(self, make_store, make_supplier, project_id):
        pipeline = MatchingPipeline(stages=[StageName.EXACT])
        context = pipeline.build_context(project_id, [make_supplier("x1", "555")])

        first = pipeline.match_item(make_store("s1", "555"), context)
        second = pipeline.match_item(make_store("s1", "555"), context)

        assert len(first.candidates) == 1
        assert second.candidates == []


class TestPipelineResult:
    def test_merge_sums_stage_metrics(self, make_store, make_supplier, project_id):
        pipeline = MatchingPipeline(stages=[StageName.EXACT])
        context = pipeline.build_context(project_id, [make_supplier("x1", "555")])
        total = PipelineResult()

        total.merge(pipeline.run_batch([make_store("s1", "555")], context))
        total.merge(pipeline.run_batch([make_store("s2", "777")], context))

        assert len(total.candidates) == 1
        assert total.stage_metrics["exact"].evaluated == 2
        assert total.to_dict()["stages"]["exact"]["matched"] == 1
