"""Unit tests for similarity primitives and confidence scoring."""
import pytest

from partmatch.services.matching.scoring import (
    FuzzyScore,
    description_bonus,
    effective_threshold,
    exact_confidence,
    round_confidence,
)
from partmatch.services.similarity import (
    description_similarity,
    edit_similarity,
    part_similarity,
    shared_significant_words,
    significant_words,
)


class TestSimilarity:
    """Tests for the RapidFuzz-backed similarity helpers."""

    def test_edit_similarity_identical(self):
        assert edit_similarity("ABC123", "ABC123") == 1.0

    def test_edit_similarity_empty(self):
        assert edit_similarity("", "ABC") == 0.0

    def test_edit_similarity_one_substitution(self):
        assert edit_similarity("ABC123", "ABC124") == pytest.approx(5 / 6)

    def test_part_similarity_substring_uses_length_ratio(self):
        score, is_substring = part_similarity("2112", "211273")
        assert is_substring
        assert score == pytest.approx(4 / 6)

    def test_part_similarity_falls_back_to_edit_distance(self):
        score, is_substring = part_similarity("ABC10026A", "DLPEG10026")
        assert not is_substring
        assert score == pytest.approx(0.4)

    def test_description_similarity_ignores_token_order(self):
        assert description_similarity("Brake Pad Front", "front brake pad") == 1.0

    @pytest.mark.parametrize("a,b", [(None, "x"), ("x", ""), ("   ", "brake")])
    def test_description_similarity_missing(self, a, b):
        assert description_similarity(a, b) is None

    def test_significant_words_drop_short_words(self):
        assert significant_words("Brake pad for FORD F-150") == {"brake", "ford"}

    def test_shared_significant_words(self):
        assert shared_significant_words("Serpentine belt Gates", "GATES serpentine drive belt") == 3


class TestExactConfidence:
    @pytest.mark.parametrize(
        "similarity,raw_identical,expected",
        [
            (1.0, True, 0.99),
            (0.95, False, 0.98),
            (0.90, False, 0.98),
            (0.80, False, 0.95),
            (0.60, False, 0.92),
            (0.55, False, 0.87),
            (0.30, False, 0.80),
            (0.30, True, 0.80),
            (None, True, 0.92),
        ],
    )
    def test_tiers(self, similarity, raw_identical, expected):
        assert exact_confidence(similarity, raw_identical) == expected


class TestFuzzyScoring:
    """Tests for the fuzzy score weights and adaptive threshold."""

    @pytest.mark.parametrize(
        "shared,expected",
        [(0, 0.0), (1, 0.10), (2, 0.15), (3, 0.18), (4, 0.20), (10, 0.20)],
    )
    def test_description_bonus_diminishes_and_caps(self, shared, expected):
        assert description_bonus(shared) == pytest.approx(expected)

    def test_effective_threshold(self):
        assert effective_threshold(0.65, is_substring=True, same_line_code=True) == pytest.approx(0.4875)
        assert effective_threshold(0.65, is_substring=False, same_line_code=True) == pytest.approx(0.585)
        assert effective_threshold(0.65, is_substring=False, same_line_code=False) == 0.65

    def test_total_combines_weights(self):
        score = FuzzyScore(
            part_similarity=0.5,
            is_substring=False,
            mfr_similarity=0.5,
            same_line_code=True,
            shared_words=1,
            desc_bonus=0.1,
        )
        assert score.total == pytest.approx(0.5 + 0.2 + 0.25 + 0.1)

    def test_score_exactly_at_threshold_is_accepted(self):
        score = FuzzyScore(0.65, False, 0.0, False, 0, 0.0)
        assert score.accepted(0.65)

    def test_score_just_below_threshold_is_rejected(self):
        score = FuzzyScore(0.65 - 1e-9, False, 0.0, False, 0, 0.0)
        assert not score.accepted(0.65)

    def test_confidence_is_clamped(self):
        score = FuzzyScore(1.0, True, 1.0, True, 4, 0.2)
        assert score.total > 1.0
        assert score.confidence == 1.0
        assert round_confidence(-0.2) == 0.0

    def test_to_dict_rounds_evidence(self):
        evidence = FuzzyScore(2 / 3, True, 0.0, False, 0, 0.0).to_dict()
        assert evidence["part_similarity"] == 0.6667
        assert evidence["substring"] is True
