"""Line code mapping applied to store items before matching.

Stores often sell a manufacturer's line under their own line code ("GS")
while the supplier catalog uses another ("GSP"). Until the code is rewritten,
the exact join, fuzzy line-code agreement and rule keys all miss such items.

Global mappings are loaded first and project mappings override them for the
same client line code. Inactive mappings and mappings without a supplier
line code are ignored.
"""
from typing import Dict, List, Optional, Sequence, Tuple

import structlog

from partmatch.models import LineCodeMapping, StoreItem
from partmatch.services.normalizer import replace_line_code

logger = structlog.get_logger(__name__)

MAPPING_SOURCE_GLOBAL = "global"
MAPPING_SOURCE_PROJECT = "project"


class LineCodeMapper:
    """Resolves client line codes to supplier line codes for one project.

    Usage:
        mapper = LineCodeMapper(mappings, project_id)
        store_items = mapper.apply_all(store_items)
    """

    def __init__(self, mappings: Sequence[LineCodeMapping], project_id: str):
        self.project_id = project_id
        self._targets: Dict[str, Tuple[str, str]] = {}
        # Globals first so a project mapping for the same client code wins.
        for mapping in sorted(mappings, key=lambda m: not m.is_global):
            if not mapping.active or not mapping.supplier_line_code:
                continue
            if not mapping.is_global and mapping.project_id != project_id:
                continue
            source = MAPPING_SOURCE_GLOBAL if mapping.is_global else MAPPING_SOURCE_PROJECT
            self._targets[mapping.client_line_code] = (mapping.supplier_line_code, source)

    def __len__(self) -> int:
        return len(self._targets)

    def resolve(self, line_code: Optional[str]) -> Optional[Tuple[str, str]]:
        """Return (supplier line code, mapping source) for a client line code."""
        if not line_code:
            return None
        return self._targets.get(line_code.strip().upper())

    def apply(self, item: StoreItem) -> StoreItem:
        """Return the item with its line code mapped, or the item itself."""
        hit = self.resolve(item.line_code)
        if hit is None or hit[0] == item.line_code:
            return item

        target, _ = hit
        data = item.model_dump()
        data.update(
            part_number=replace_line_code(item.part_number, item.line_code, target),
            canonical_part_number="",
            line_code=target,
            mapped_from_line_code=item.line_code,
        )
        return StoreItem.model_validate(data)

    def apply_all(self, items: Sequence[StoreItem]) -> List[StoreItem]:
        if not self._targets:
            return list(items)

        mapped = [self.apply(item) for item in items]
        by_source: Dict[str, int] = {}
        for original, item in zip(items, mapped):
            if item is not original:
                source = self._targets[original.line_code][1]
                by_source[source] = by_source.get(source, 0) + 1
        logger.info(
            "line_codes_mapped",
            project_id=self.project_id,
            items=len(items),
            mapped=sum(by_source.values()),
            **{f"mapped_{source}": count for source, count in by_source.items()},
        )
        return mapped
