"""Unit tests for the exact normalized matcher (stage 2)."""
from partmatch.models import MatchMethod
from partmatch.services.matching import ExactMatcher, MatchContext, SupplierIndex, match_exact


class TestExactMatcher:
    """Tests for canonical joins and the description-similarity guard."""

    def test_punctuation_variants_join_with_top_confidence(self, make_store, make_supplier, project_id):
        store = make_store("s1", "000-2112-73", description="Oil filter element")
        supplier = make_supplier("x1", "000.2112.73", description="Oil filter element")

        candidates = match_exact([store], SupplierIndex([supplier]), project_id)

        assert len(candidates) == 1
        candidate = candidates[0]
        assert candidate.method == MatchMethod.EXACT_NORMALIZED
        assert candidate.match_stage == 2
        assert candidate.confidence == 0.99
        assert candidate.evidence["raw_identical"] is True

    def test_rejects_join_below_similarity_floor(self, make_store, make_supplier, project_id):
        store = make_store("s1", "123", description="Radiator cap pressure")
        supplier = make_supplier("x1", "123", description="Wiper blade rear")
        context = MatchContext(project_id=project_id, supplier_index=SupplierIndex([supplier]))

        result = ExactMatcher().match([store], context)

        assert result.candidates == []
        assert result.metrics.rejected_low_similarity == 1

    def test_guard_disabled_keeps_low_similarity_join(self, make_store, make_supplier, project_id):
        store = make_store("s1", "123", description="Radiator cap pressure")
        supplier = make_supplier("x1", "123", description="Wiper blade rear")

        candidates = match_exact([store], SupplierIndex([supplier]), project_id, similarity_validation=False)

        assert len(candidates) == 1
        assert candidates[0].confidence == 0.80

    def test_missing_description_is_not_rejected(self, make_store, make_supplier, project_id):
        store = make_store("s1", "21/3/1")
        supplier = make_supplier("x1", "21-3-1", description="Hose clamp")

        candidates = match_exact([store], SupplierIndex([supplier]), project_id)

        assert candidates[0].confidence == 0.92
        assert candidates[0].evidence["description_missing"] is True
        assert candidates[0].evidence["raw_identical"] is True

    def test_keeps_most_similar_row(self, make_store, make_supplier, project_id):
        store = make_store("s1", "4455", description="front brake pad set")
        suppliers = [
            make_supplier("x1", "4455", description="brake caliper"),
            make_supplier("x2", "44-55", description="Front Brake Pad Set"),
        ]

        candidates = match_exact([store], SupplierIndex(suppliers), project_id)

        assert [c.target_id for c in candidates] == ["x2"]

    def test_equal_similarity_tie_broken_by_smallest_id(self, make_store, make_supplier, project_id):
        store = make_store("s1", "4455", description="brake pad")
        suppliers = [
            make_supplier("x9", "4455", description="brake pad"),
            make_supplier("x3", "4455", description="brake pad"),
        ]
        context = MatchContext(project_id=project_id, supplier_index=SupplierIndex(suppliers))

        result = ExactMatcher().match([store], context)

        assert result.candidates[0].target_id == "x3"
        assert result.candidates[0].evidence["tie"] is True
        assert result.metrics.ties == 1

    def test_custom_floor(self, make_store, make_supplier, project_id):
        store = make_store("s1", "123", description="brake pad front")
        supplier = make_supplier("x1", "123", description="brake pad rear")

        strict = match_exact([store], SupplierIndex([supplier]), project_id, similarity_floor=0.99)
        lenient = match_exact([store], SupplierIndex([supplier]), project_id, similarity_floor=0.1)

        assert strict == []
        assert len(lenient) == 1

    def test_unusable_and_already_matched_items_are_counted(self, make_store, make_supplier, project_id):
        items = [make_store("s1", ""), make_store("s2", "555")]
        context = MatchContext(
            project_id=project_id,
            supplier_index=SupplierIndex([make_supplier("x1", "555")]),
            already_matched_ids={"s2"},
        )

        result = ExactMatcher().match(items, context)

        assert result.candidates == []
        assert result.metrics.skipped_invalid == 1
        assert result.metrics.skipped_already_matched == 1
