"""Matcher strategy contract and shared matching context.

Every stage of the waterfall implements MatcherStrategy. Matchers are
CPU-only: they receive fully-loaded catalogs through MatchContext and never
perform I/O.
"""
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Set

from partmatch.errors import InputError
from partmatch.models import InterchangeEntry, MatchCandidate, StageName, StoreItem, SupplierItem
from partmatch.services.normalizer import strip_line_code
from partmatch.services.similarity import significant_words

if TYPE_CHECKING:
    from partmatch.services.line_codes import LineCodeMapper
    from partmatch.services.matching.rules import RuleBook


class SupplierIndex:
    """Lookup structure over a project's supplier catalog.

    Built once per job and shared read-only by all matchers.
    """

    def __init__(self, items: Sequence[SupplierItem]):
        self.items: List[SupplierItem] = list(items)
        self.by_id: Dict[str, SupplierItem] = {}
        self.by_canonical: Dict[str, List[SupplierItem]] = defaultdict(list)
        self.by_line_code: Dict[str, List[SupplierItem]] = defaultdict(list)
        # Canonical with the row's own line code removed, for rule lookups.
        self.by_stripped_canonical: Dict[str, List[SupplierItem]] = defaultdict(list)
        for item in self.items:
            self.by_id[item.id] = item
            if item.canonical_part_number:
                self.by_canonical[item.canonical_part_number].append(item)
            if item.line_code:
                self.by_line_code[item.line_code].append(item)
            stripped = strip_line_code(item.canonical_part_number, item.line_code)
            if stripped:
                self.by_stripped_canonical[stripped].append(item)
        # Parallel to items, for rapidfuzz.process.extract over the whole catalog.
        self.canonicals: List[str] = [s.canonical_part_number for s in self.items]
        self.mfr_codes: List[str] = [s.mfr_code or "" for s in self.items]
        self.description_words: List[Set[str]] = [significant_words(s.description) for s in self.items]

    def __len__(self) -> int:
        return len(self.items)

    def find_canonical(self, canonical: str) -> List[SupplierItem]:
        if not canonical:
            return []
        return self.by_canonical.get(canonical, [])

    def find_line_code(self, line_code: Optional[str]) -> List[SupplierItem]:
        if not line_code:
            return []
        return self.by_line_code.get(line_code, [])

    def find_stripped_canonical(self, canonical: str) -> List[SupplierItem]:
        if not canonical:
            return []
        return self.by_stripped_canonical.get(canonical, [])


@dataclass
class MatchContext:
    """Inputs shared by the matchers for one project pass."""
    project_id: str
    supplier_index: SupplierIndex
    interchange_entries: List[InterchangeEntry] = field(default_factory=list)
    rule_book: Optional["RuleBook"] = None
    line_code_mapper: Optional["LineCodeMapper"] = None
    already_matched_ids: Set[str] = field(default_factory=set)
    fuzzy_threshold: Optional[float] = None
    max_candidates_per_item: Optional[int] = None
    # Filled by the interchange resolver on first use, then reused for every batch.
    interchange_index: Optional[Dict[str, list]] = field(default=None, repr=False)


@dataclass
class StageMetrics:
    """Per-stage counters, merged into the job metrics."""
    evaluated: int = 0
    matched: int = 0
    skipped_invalid: int = 0
    skipped_already_matched: int = 0
    rejected_low_similarity: int = 0
    blocked_by_rule: int = 0
    ties: int = 0
    sentinels: int = 0

    def merge(self, other: "StageMetrics") -> None:
        for name in self.__dataclass_fields__:
            setattr(self, name, getattr(self, name) + getattr(other, name))

    def to_dict(self) -> dict:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


@dataclass
class StageResult:
    """Candidates produced by one stage plus its metrics."""
    candidates: List[MatchCandidate] = field(default_factory=list)
    metrics: StageMetrics = field(default_factory=StageMetrics)

    @property
    def matched_store_item_ids(self) -> Set[str]:
        return {c.store_item_id for c in self.candidates}


class MatcherStrategy(ABC):
    """Abstract base class for waterfall stages.

    All implementations must honor the contract:
        - match() emits at most one candidate per store item
        - store items in context.already_matched_ids are skipped
        - records without a usable part number are skipped and counted,
          never aborting the batch
    """

    stage: StageName

    @abstractmethod
    def match(self, store_items: Sequence[StoreItem], context: MatchContext) -> StageResult:
        """Match store items against the context's supplier catalog."""
        pass

    @abstractmethod
    def get_strategy_name(self) -> str:
        """Get the name of this matching strategy."""
        pass


def require_part_number(item: StoreItem) -> str:
    """Return the item's canonical part number or raise InputError."""
    if not item.canonical_part_number:
        raise InputError(f"Store item {item.id} has no usable part number: {item.part_number!r}")
    return item.canonical_part_number
