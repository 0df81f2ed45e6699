"""Interchange resolver: stage 1 of the matching waterfall.

Resolves store items through the project's vendor cross-reference table.
Both sides of every entry are canonicalized and tried, so an entry
("GM-8036", "RAY8036") matches a store item "GM8036" as well as a store item
"RAY-8036".

When the opposite side of a matching entry has no supplier row yet, a
sentinel candidate (target_id None) carrying the entry's confidence is
emitted so the reviewer still sees the cross-reference.
"""
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
import structlog

from partmatch.errors import InputError
from partmatch.models import InterchangeEntry, MatchCandidate, MatchMethod, StageName, StoreItem
from partmatch.services.matching.base import (
    MatchContext,
    MatcherStrategy,
    StageResult,
    SupplierIndex,
    require_part_number,
)
from partmatch.services.normalizer import canonicalize

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class _InterchangeSide:
    entry: InterchangeEntry
    matched_side: str
    other_canonical: str
    other_raw: str


@dataclass(frozen=True)
class _Option:
    side: _InterchangeSide
    supplier_id: Optional[str]

    def sort_key(self):
        # Prefer options with a catalog row, then higher confidence, then smallest id.
        target = self.supplier_id if self.supplier_id is not None else self.side.other_raw
        return (self.supplier_id is None, -self.side.entry.confidence, target)

    def rank(self):
        return (self.supplier_id is None, self.side.entry.confidence)


def build_interchange_index(entries: Sequence[InterchangeEntry]) -> Dict[str, List[_InterchangeSide]]:
    """Index entries by the canonical form of both of their sides."""
    index: Dict[str, List[_InterchangeSide]] = defaultdict(list)
    for entry in entries:
        ours = canonicalize(entry.ours)
        theirs = canonicalize(entry.theirs)
        if not ours or not theirs:
            logger.debug("interchange_entry_skipped", entry_id=entry.id, reason="empty_side")
            continue
        index[ours].append(_InterchangeSide(entry, "ours", theirs, entry.theirs))
        if theirs != ours:
            index[theirs].append(_InterchangeSide(entry, "theirs", ours, entry.ours))
    return index


class InterchangeResolver(MatcherStrategy):
    """Matches store items through interchange entries in both directions."""

    stage = StageName.INTERCHANGE

    def __init__(self):
        self._log = logger.bind(matcher="InterchangeResolver")

    def get_strategy_name(self) -> str:
        return "interchange"

    def match(self, store_items: Sequence[StoreItem], context: MatchContext) -> StageResult:
        result = StageResult()
        if not context.interchange_entries:
            return result

        index = context.interchange_index
        if index is None:
            index = context.interchange_index = build_interchange_index(context.interchange_entries)
        for item in store_items:
            if item.id in context.already_matched_ids:
                result.metrics.skipped_already_matched += 1
                continue
            try:
                canonical = require_part_number(item)
            except InputError as e:
                result.metrics.skipped_invalid += 1
                self._log.warning("store_item_skipped", item_id=item.id, error=e.message)
                continue

            result.metrics.evaluated += 1
            sides = index.get(canonical)
            if not sides:
                continue

            candidate = self._resolve_item(item, sides, context.supplier_index, result)
            if candidate is not None:
                result.candidates.append(candidate)
                result.metrics.matched += 1

        self._log.debug(
            "interchange_resolved",
            project_id=context.project_id,
            entries=len(context.interchange_entries),
            **result.metrics.to_dict(),
        )
        return result

    def _resolve_item(
        self,
        item: StoreItem,
        sides: List[_InterchangeSide],
        supplier_index: SupplierIndex,
        result: StageResult,
    ) -> Optional[MatchCandidate]:
        options: List[_Option] = []
        for side in sides:
            rows = supplier_index.find_canonical(side.other_canonical)
            if rows:
                options.extend(_Option(side, row.id) for row in rows)
            else:
                options.append(_Option(side, None))

        options.sort(key=_Option.sort_key)
        best = options[0]
        tie = len(options) > 1 and options[1].rank() == best.rank()
        if tie:
            result.metrics.ties += 1

        entry = best.side.entry
        evidence = {
            "interchange_entry_id": entry.id,
            "matched_side": best.side.matched_side,
            "interchange_source": entry.source,
            "interchange_only": best.supplier_id is None,
        }
        if tie:
            evidence["tie"] = True

        if best.supplier_id is None:
            result.metrics.sentinels += 1
            self._log.debug(
                "interchange_without_supplier_row",
                item_id=item.id,
                other_part_number=best.side.other_raw,
            )

        return MatchCandidate(
            project_id=item.project_id,
            store_item_id=item.id,
            target_id=best.supplier_id,
            external_ref=best.side.other_raw if best.supplier_id is None else None,
            method=MatchMethod.INTERCHANGE,
            confidence=entry.confidence,
            evidence=evidence,
        )


def resolve_interchange(
    store_items: Sequence[StoreItem],
    supplier_index: SupplierIndex,
    entries: Sequence[InterchangeEntry],
    project_id: str,
) -> List[MatchCandidate]:
    """Run the interchange resolver outside a pipeline."""
    context = MatchContext(
        project_id=project_id,
        supplier_index=supplier_index,
        interchange_entries=list(entries),
    )
    return InterchangeResolver().match(store_items, context).candidates
