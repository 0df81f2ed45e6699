"""Unit tests for the fuzzy matcher (stage 4)."""
import pytest

from partmatch.models import MatchMethod
from partmatch.services.matching import FuzzyMatcher, MatchContext, SupplierIndex, match_fuzzy
from partmatch.services.matching.fuzzy import score_pair


class TestScorePair:
    def test_cross_line_pair_scores_below_threshold(self, make_store, make_supplier):
        store = make_store("s1", "ABC10026A")
        supplier = make_supplier("x1", "DLPEG10026", line_code="DLP", mfr_code="EG10026")

        score = score_pair(store, supplier)

        assert score.part_similarity == pytest.approx(0.4)
        assert score.mfr_similarity == pytest.approx(4 / 7)
        assert not score.same_line_code
        assert score.total == pytest.approx(0.4 + 0.4 * 4 / 7)
        assert not score.accepted(0.65)

    def test_description_words_add_bonus(self, make_store, make_supplier):
        store = make_store("s1", "ABC123", description="Serpentine drive belt")
        supplier = make_supplier("x1", "XYZ999", description="belt, serpentine")

        score = score_pair(store, supplier)

        assert score.shared_words == 2
        assert score.desc_bonus == pytest.approx(0.15)


class TestFuzzyMatcher:
    """Tests for pool construction, thresholds and best-candidate selection."""

    def test_different_line_codes_produce_no_candidate(self, make_store, make_supplier, project_id):
        store = make_store("s1", "ABC10026A")
        supplier = make_supplier("x1", "DLPEG10026", line_code="DLP", mfr_code="EG10026")

        result = match_fuzzy([store], SupplierIndex([supplier]), set(), project_id)

        assert result.candidates == []
        assert result.metrics.evaluated == 1
        assert result.metrics.matched == 0

    def test_same_line_code_lifts_pair_over_threshold(self, make_store, make_supplier, project_id):
        store = make_store("s1", "ABC10026A")
        supplier = make_supplier("x1", "DLPEG10026", line_code="ABC", mfr_code="EG10026")

        result = match_fuzzy([store], SupplierIndex([supplier]), set(), project_id)

        assert len(result.candidates) == 1
        candidate = result.candidates[0]
        assert candidate.method == MatchMethod.FUZZY
        assert candidate.match_stage == 4
        assert candidate.confidence == pytest.approx(0.4 + 0.4 * 4 / 7 + 0.25, abs=1e-4)
        assert candidate.evidence["same_line_code"] is True
        assert candidate.evidence["threshold"] == pytest.approx(0.585)

    def test_substring_match_uses_substring_method(self, make_store, make_supplier, project_id):
        store = make_store("s1", "GM8036")
        supplier = make_supplier("x1", "GM8036X")

        result = match_fuzzy([store], SupplierIndex([supplier]), set(), project_id)

        assert result.candidates[0].method == MatchMethod.FUZZY_SUBSTRING
        assert result.candidates[0].evidence["substring"] is True
        assert result.candidates[0].confidence == 1.0

    def test_best_candidate_tie_broken_by_smallest_id(self, make_store, make_supplier, project_id):
        store = make_store("s1", "ABC12345")
        suppliers = [make_supplier("x2", "ABC12346"), make_supplier("x1", "ABC12347")]
        context = MatchContext(project_id=project_id, supplier_index=SupplierIndex(suppliers))

        result = FuzzyMatcher().match([store], context)

        assert [c.target_id for c in result.candidates] == ["x1"]
        assert result.candidates[0].evidence["tie"] is True
        assert result.metrics.ties == 1

    def test_context_threshold_overrides_default(self, make_store, make_supplier, project_id):
        store = make_store("s1", "ABC10026A")
        supplier = make_supplier("x1", "DLPEG10026", line_code="DLP", mfr_code="EG10026")

        result = match_fuzzy([store], SupplierIndex([supplier]), set(), project_id, threshold=0.6)

        assert len(result.candidates) == 1

    def test_short_and_already_matched_items_are_skipped(self, make_store, make_supplier, project_id):
        items = [make_store("s1", "AB"), make_store("s2", "ABC123")]

        result = match_fuzzy(items, SupplierIndex([make_supplier("x1", "ABC123")]), {"s2"}, project_id)

        assert result.candidates == []
        assert result.metrics.skipped_invalid == 1
        assert result.metrics.skipped_already_matched == 1

    def test_empty_catalog_returns_nothing(self, make_store, project_id):
        result = match_fuzzy([make_store("s1", "ABC123")], SupplierIndex([]), set(), project_id)
        assert result.candidates == []
        assert result.metrics.evaluated == 0


class TestCandidatePool:
    def test_pool_is_union_without_duplicates(self, make_store, make_supplier):
        store = make_store("s1", "ABC10026A", description="Front brake rotor")
        suppliers = [
            make_supplier("x1", "ABC55555"),
            make_supplier("x2", "ZZZ10026"),
            make_supplier("x3", "QQ999", description="rotor brake kit"),
            make_supplier("x4", "MNO77777", description="wiper"),
        ]

        pool = FuzzyMatcher().build_candidate_pool(store, SupplierIndex(suppliers), 200)

        assert [s.id for s in pool] == ["x1", "x2", "x3"]

    def test_pool_is_capped(self, make_store, make_supplier):
        store = make_store("s1", "ABC100")
        suppliers = [make_supplier(f"x{i}", f"ABC{i}00{i}") for i in range(5)]

        pool = FuzzyMatcher().build_candidate_pool(store, SupplierIndex(suppliers), 2)

        assert len(pool) == 2
        assert [s.id for s in pool] == ["x0", "x1"]
