"""Part number normalization.

Pure functions that turn a raw part number into the canonical join key used
by every matcher, and optionally split it into a line code (short alphabetic
vendor prefix) and a manufacturer code.

Examples:
    - "21/3/1" and "21-3-1" → canonical "2131"
    - "000-2112-73" → canonical "211273"
    - "ABC10026A" → line "ABC", mfr "10026A"
    - "PPG" → line "PPG", mfr None
"""
import re
from dataclasses import dataclass
from typing import Optional, Tuple

_NON_ALNUM = re.compile(r"[^A-Z0-9]")
_ALPHA_PREFIX = re.compile(r"^([A-Z]+)(?=[0-9])")
_SEPARATORS = "-/. "

MIN_LINE_CODE_SOURCE_LENGTH = 3
LINE_CODE_MIN = 2
LINE_CODE_MAX = 4
WHOLE_ALPHA_LINE_CODE_LENGTH = 3

# Signature tokens in the order they are joined.
SIGNATURE_TOKENS = (
    "line_code_stripped",
    "leading_zeros",
    "slash_to_dash",
    "dash_to_slash",
    "remove_dash",
    "add_dash",
    "remove_slash",
    "add_slash",
    "remove_dot",
    "add_dot",
    "remove_space",
    "add_space",
    "case_change",
)
IDENTICAL_SIGNATURE = "identical"
PUNCTUATION_SIGNATURE = "punctuation_change"

_PUNCTUATION_NAMES = (("-", "dash"), ("/", "slash"), (".", "dot"), (" ", "space"))


@dataclass(frozen=True)
class NormalizedPart:
    """Canonical form of a part number plus its optional line/mfr split."""
    canonical: str
    line_code: Optional[str] = None
    mfr_code: Optional[str] = None

    @property
    def is_usable(self) -> bool:
        """True when the canonical form can serve as a join key."""
        return bool(self.canonical)


def compact(raw: Optional[str]) -> str:
    """Upper-case and drop everything outside [A-Z0-9], keeping leading zeros."""
    if not raw:
        return ""
    return _NON_ALNUM.sub("", raw.upper())


def canonicalize(raw: Optional[str]) -> str:
    """Return the canonical part number.

    Upper-cases, strips characters outside [A-Z0-9] and then strips leading
    zeros. An all-zero code has no usable identity and yields "".
    """
    return compact(raw).lstrip("0")


def extract_line_code(raw: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split a part number into (line_code, mfr_code).

    The alphabetic run before the first digit becomes the line code when it is
    2-4 characters long; the rest is the manufacturer code. A purely alphabetic
    string of exactly 3 characters is a bare line code. Anything shorter than
    3 characters never yields a line code.
    """
    cleaned = compact(raw)
    if len(cleaned) < MIN_LINE_CODE_SOURCE_LENGTH:
        return None, None

    if cleaned.isalpha():
        if len(cleaned) == WHOLE_ALPHA_LINE_CODE_LENGTH:
            return cleaned, None
        return None, None

    match = _ALPHA_PREFIX.match(cleaned)
    if match and LINE_CODE_MIN <= len(match.group(1)) <= LINE_CODE_MAX:
        prefix = match.group(1)
        return prefix, cleaned[len(prefix):]

    return None, None


def normalize(raw: Optional[str], extract_line_codes: bool = False) -> NormalizedPart:
    """Normalize a raw part number.

    Args:
        raw: Part number as ingested (may be empty or None)
        extract_line_codes: Also split off the line code / manufacturer code

    Returns:
        NormalizedPart with the canonical key and optional codes
    """
    canonical = canonicalize(raw)
    if not extract_line_codes:
        return NormalizedPart(canonical=canonical)

    line_code, mfr_code = extract_line_code(raw)
    return NormalizedPart(canonical=canonical, line_code=line_code, mfr_code=mfr_code)


def strip_line_code(canonical: str, line_code: Optional[str]) -> Optional[str]:
    """Return the canonical part number without its line code prefix, if present."""
    if not line_code or not canonical.startswith(line_code):
        return None
    remainder = canonicalize(canonical[len(line_code):])
    return remainder or None


def replace_line_code(raw: Optional[str], line_code: Optional[str], new_line_code: str) -> str:
    """Rewrite the line code prefix of a raw part number.

    "GS-12345" with GS -> GSP gives "GSP-12345". A part number that does not
    start with line_code is returned stripped but otherwise unchanged.
    """
    cleaned = (raw or "").strip()
    if not line_code or not cleaned.upper().startswith(line_code):
        return cleaned
    remainder = cleaned[len(line_code):].lstrip(_SEPARATORS)
    return f"{new_line_code}-{remainder}" if remainder else new_line_code


def _line_code_stripped(a: str, b: str, line_code: Optional[str]) -> bool:
    """True when one compact form is the other plus a line code prefix."""
    for longer, shorter in ((a, b), (b, a)):
        code = line_code or extract_line_code(longer)[0]
        if not code or not longer.startswith(code):
            continue
        if canonicalize(longer[len(code):]) == canonicalize(shorter) and canonicalize(shorter):
            return True
    return False


def compute_transformation_signature(
    store_part_number: str,
    supplier_part_number: str,
    line_code: Optional[str] = None,
) -> Optional[str]:
    """Label the edit that turns one part number into the other.

    Used as a grouping key for rule learning. Returns None when the two
    numbers are not equivalent under punctuation, leading-zero or line-code
    edits.

    Examples:
        - "K060-841" → "K060841" = "remove_dash"
        - "21/3/1" → "21-3-1" = "slash_to_dash"
        - "GAT-K060841" → "K060841" = "line_code_stripped_remove_dash"
    """
    source = (store_part_number or "").strip()
    target = (supplier_part_number or "").strip()
    source_upper = source.upper()
    target_upper = target.upper()
    source_compact = compact(source)
    target_compact = compact(target)

    if not source_compact or not target_compact:
        return None

    tokens = set()
    if source_compact == target_compact:
        pass
    elif canonicalize(source_compact) == canonicalize(target_compact) and canonicalize(source_compact):
        tokens.add("leading_zeros")
    elif _line_code_stripped(source_compact, target_compact, (line_code or "").upper() or None):
        tokens.add("line_code_stripped")
    else:
        return None

    has = {name: (char in source_upper, char in target_upper) for char, name in _PUNCTUATION_NAMES}
    if has["slash"] == (True, False) and has["dash"] == (False, True):
        tokens.add("slash_to_dash")
        del has["slash"], has["dash"]
    elif has["dash"] == (True, False) and has["slash"] == (False, True):
        tokens.add("dash_to_slash")
        del has["slash"], has["dash"]

    for name, (in_source, in_target) in has.items():
        if in_source and not in_target:
            tokens.add(f"remove_{name}")
        elif in_target and not in_source:
            tokens.add(f"add_{name}")

    if source != target and source_upper == target_upper:
        tokens.add("case_change")

    if tokens:
        return "_".join(token for token in SIGNATURE_TOKENS if token in tokens)
    if source_upper == target_upper:
        return IDENTICAL_SIGNATURE
    return PUNCTUATION_SIGNATURE
