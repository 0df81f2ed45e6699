"""Database models for part reconciliation."""
from partmatch.db.models.catalog import StoreItemRow, SupplierItemRow, InterchangeEntryRow
from partmatch.db.models.line_code_mapping import LineCodeMappingRow
from partmatch.db.models.match_candidate import MatchCandidateRow
from partmatch.db.models.matching_rule import MatchingRuleRow

__all__ = [
    "StoreItemRow",
    "SupplierItemRow",
    "InterchangeEntryRow",
    "LineCodeMappingRow",
    "MatchCandidateRow",
    "MatchingRuleRow",
]
