"""String similarity primitives built on RapidFuzz.

All scores are normalized to the 0-1 range.
"""
import re
from typing import Optional, Set, Tuple

from rapidfuzz import fuzz, utils
from rapidfuzz.distance import Levenshtein

SIGNIFICANT_WORD_MIN_LENGTH = 4
_WORD = re.compile(r"[a-z0-9]+")


def edit_similarity(a: str, b: str) -> float:
    """Levenshtein distance divided by the longer length, inverted."""
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def part_similarity(a: str, b: str) -> Tuple[float, bool]:
    """Similarity of two canonical part numbers.

    When one canonical form contains the other the score is the
    shorter/longer length ratio and the substring flag is set; otherwise the
    normalized edit similarity is used.

    Returns:
        Tuple of (score, is_substring)
    """
    if not a or not b:
        return 0.0, False
    if a in b or b in a:
        shorter, longer = sorted((len(a), len(b)))
        return shorter / longer, True
    return edit_similarity(a, b), False


def description_similarity(a: Optional[str], b: Optional[str]) -> Optional[float]:
    """Token-set similarity of two descriptions, or None if either is blank."""
    if not a or not b or not a.strip() or not b.strip():
        return None
    return fuzz.token_set_ratio(a, b, processor=utils.default_process) / 100.0


def significant_words(text: Optional[str]) -> Set[str]:
    """Lower-cased description words longer than 3 characters."""
    if not text:
        return set()
    return {w for w in _WORD.findall(text.lower()) if len(w) >= SIGNIFICANT_WORD_MIN_LENGTH}


def shared_significant_words(a: Optional[str], b: Optional[str]) -> int:
    return len(significant_words(a) & significant_words(b))
