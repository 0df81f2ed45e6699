"""Confidence scoring shared by the exact and fuzzy matchers.

Maps raw signal combinations to a confidence in [0, 1]. Comparisons against
thresholds always use the unrounded score; rounding is applied only to the
emitted confidence.
"""
from dataclasses import dataclass
from typing import Optional

CONFIDENCE_DECIMALS = 4

# Exact matcher tiers, highest first: (minimum description similarity, confidence)
EXACT_IDENTICAL_CONFIDENCE = 0.99
EXACT_TIERS = (
    (0.90, 0.98),
    (0.75, 0.95),
    (0.60, 0.92),
    (0.50, 0.87),
)
EXACT_BELOW_FLOOR_CONFIDENCE = 0.80
EXACT_NO_DESCRIPTION_CONFIDENCE = 0.92

# Fuzzy score weights
MFR_WEIGHT = 0.4
LINE_CODE_BONUS = 0.25
DESC_BONUS_STEPS = (0.10, 0.05, 0.03)
DESC_BONUS_EXTRA_STEP = 0.02
DESC_BONUS_CAP = 0.2

SUBSTRING_THRESHOLD_FACTOR = 0.75
SAME_LINE_THRESHOLD_FACTOR = 0.9


def round_confidence(value: float) -> float:
    """Clamp to [0, 1] and round to the emitted precision."""
    return round(min(max(value, 0.0), 1.0), CONFIDENCE_DECIMALS)


def exact_confidence(similarity: Optional[float], raw_identical: bool) -> float:
    """Confidence tier for an exact canonical join.

    Args:
        similarity: Description similarity, or None if a description is missing
        raw_identical: The two part numbers are identical ignoring case and punctuation

    Returns:
        Tier confidence (0.99 / 0.98 / 0.95 / 0.92 / 0.87 / 0.80)
    """
    if similarity is None:
        return EXACT_NO_DESCRIPTION_CONFIDENCE
    if raw_identical and similarity >= EXACT_TIERS[0][0]:
        return EXACT_IDENTICAL_CONFIDENCE
    for floor, confidence in EXACT_TIERS:
        if similarity >= floor:
            return confidence
    return EXACT_BELOW_FLOOR_CONFIDENCE


def description_bonus(shared_words: int) -> float:
    """Bonus for shared significant description words, diminishing per word."""
    bonus = 0.0
    for i in range(shared_words):
        bonus += DESC_BONUS_STEPS[i] if i < len(DESC_BONUS_STEPS) else DESC_BONUS_EXTRA_STEP
        if bonus >= DESC_BONUS_CAP:
            return DESC_BONUS_CAP
    return bonus


def effective_threshold(threshold: float, is_substring: bool, same_line_code: bool) -> float:
    """Adaptive acceptance threshold for a fuzzy candidate."""
    if is_substring:
        return threshold * SUBSTRING_THRESHOLD_FACTOR
    if same_line_code:
        return threshold * SAME_LINE_THRESHOLD_FACTOR
    return threshold


@dataclass
class FuzzyScore:
    """Breakdown of a fuzzy score for one (store, supplier) pair."""
    part_similarity: float
    is_substring: bool
    mfr_similarity: float
    same_line_code: bool
    shared_words: int
    desc_bonus: float

    @property
    def total(self) -> float:
        return (
            self.part_similarity
            + MFR_WEIGHT * self.mfr_similarity
            + (LINE_CODE_BONUS if self.same_line_code else 0.0)
            + self.desc_bonus
        )

    @property
    def confidence(self) -> float:
        return round_confidence(self.total)

    def threshold_for(self, threshold: float) -> float:
        return effective_threshold(threshold, self.is_substring, self.same_line_code)

    def accepted(self, threshold: float) -> bool:
        """True when the score reaches the adaptive threshold (boundary inclusive)."""
        return self.total >= self.threshold_for(threshold)

    def to_dict(self) -> dict:
        """Convert to the evidence bag stored on the candidate."""
        return {
            "part_similarity": round(self.part_similarity, CONFIDENCE_DECIMALS),
            "substring": self.is_substring,
            "mfr_similarity": round(self.mfr_similarity, CONFIDENCE_DECIMALS),
            "same_line_code": self.same_line_code,
            "shared_words": self.shared_words,
            "desc_bonus": round(self.desc_bonus, CONFIDENCE_DECIMALS),
            "score": round(self.total, CONFIDENCE_DECIMALS),
        }
