"""Unit tests for part number normalization and transformation signatures.

Tests cover:
    - canonicalize / compact edge cases
    - Line code extraction rules
    - Normalization idempotence
    - Transformation signatures used by rule learning
"""
import pytest

from partmatch.services.normalizer import (
    IDENTICAL_SIGNATURE,
    PUNCTUATION_SIGNATURE,
    canonicalize,
    compact,
    compute_transformation_signature,
    extract_line_code,
    normalize,
    strip_line_code,
)


class TestCanonicalize:
    """Tests for canonicalize() and compact()."""

    def test_slash_and_dash_forms_share_canonical(self):
        assert normalize("21/3/1").canonical == "2131"
        assert normalize("21-3-1").canonical == "2131"

    def test_strips_leading_zeros_and_punctuation(self):
        assert canonicalize("000-2112-73") == "211273"
        assert canonicalize("000.2112.73") == "211273"

    def test_upper_cases(self):
        assert canonicalize("abc-10026a") == "ABC10026A"

    def test_compact_keeps_leading_zeros(self):
        assert compact("000-2112-73") == "000211273"

    @pytest.mark.parametrize("raw", ["", None, "---", "000", "  /  "])
    def test_unusable_inputs_yield_empty(self, raw):
        result = normalize(raw)
        assert result.canonical == ""
        assert not result.is_usable

    @pytest.mark.parametrize(
        "raw",
        ["21/3/1", "000-2112-73", "GM-8036", "abc 10026a", "0.0.1", "K060-841", "ÄÖ-12", "  x  "],
    )
    def test_normalization_is_idempotent(self, raw):
        once = normalize(raw).canonical
        assert normalize(once).canonical == once


class TestExtractLineCode:
    """Tests for extract_line_code()."""

    def test_alpha_prefix_before_digits(self):
        assert extract_line_code("ABC10026A") == ("ABC", "10026A")

    def test_prefix_after_punctuation_cleanup(self):
        assert extract_line_code("gm-8036") == ("GM", "8036")

    def test_three_letter_alpha_is_bare_line_code(self):
        assert extract_line_code("PPG") == ("PPG", None)

    @pytest.mark.parametrize("raw", ["AB", "A1", "", None])
    def test_short_inputs_have_no_line_code(self, raw):
        assert extract_line_code(raw) == (None, None)

    @pytest.mark.parametrize("raw", ["ABCD", "ABCDE123", "A123", "12345"])
    def test_prefixes_outside_two_to_four_letters_are_ignored(self, raw):
        assert extract_line_code(raw) == (None, None)

    def test_normalize_only_extracts_when_enabled(self):
        assert normalize("ABC10026A").line_code is None
        extracted = normalize("ABC10026A", extract_line_codes=True)
        assert extracted.line_code == "ABC"
        assert extracted.mfr_code == "10026A"
        assert extracted.canonical == "ABC10026A"


class TestStripLineCode:
    def test_strips_prefix(self):
        assert strip_line_code("GATK060841", "GAT") == "K060841"

    def test_returns_none_without_prefix(self):
        assert strip_line_code("K060841", "GAT") is None
        assert strip_line_code("K060841", None) is None

    def test_returns_none_when_nothing_remains(self):
        assert strip_line_code("GAT", "GAT") is None


class TestTransformationSignature:
    """Tests for compute_transformation_signature()."""

    def test_remove_dash(self):
        assert compute_transformation_signature("K060-841", "K060841") == "remove_dash"

    def test_add_dash(self):
        assert compute_transformation_signature("K060841", "K060-841") == "add_dash"

    def test_slash_to_dash(self):
        assert compute_transformation_signature("21/3/1", "21-3-1") == "slash_to_dash"

    def test_dash_to_slash(self):
        assert compute_transformation_signature("21-3-1", "21/3/1") == "dash_to_slash"

    def test_leading_zeros(self):
        assert compute_transformation_signature("00123", "123") == "leading_zeros"

    def test_leading_zeros_with_dots(self):
        assert compute_transformation_signature("000.2112.73", "211273") == "leading_zeros_remove_dot"

    def test_line_code_stripped_with_dash(self):
        signature = compute_transformation_signature("GAT-K060841", "K060841", line_code="gat")
        assert signature == "line_code_stripped_remove_dash"

    def test_case_change(self):
        assert compute_transformation_signature("abc-1", "ABC-1") == "case_change"

    def test_identical(self):
        assert compute_transformation_signature("ABC-1", "ABC-1") == IDENTICAL_SIGNATURE

    def test_untracked_punctuation(self):
        assert compute_transformation_signature("12#3", "123") == PUNCTUATION_SIGNATURE

    def test_multiple_tokens_in_fixed_order(self):
        assert compute_transformation_signature("A.B 1", "AB1") == "remove_dot_remove_space"

    @pytest.mark.parametrize(
        "store,supplier",
        [("123", "456"), ("ABC10026A", "DLPEG10026"), ("", "123"), ("123", None)],
    )
    def test_non_equivalent_numbers_have_no_signature(self, store, supplier):
        assert compute_transformation_signature(store, supplier) is None
