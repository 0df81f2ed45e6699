"""Pydantic models for catalog rows and interchange entries.

Catalog rows are immutable once ingested. Normalized fields are derived at
construction so matchers never re-validate their inputs.
"""
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from partmatch.config import matching_settings
from partmatch.services.normalizer import canonicalize, compact, extract_line_code


class PartRecord(BaseModel):
    """A catalog row (store inventory or supplier catalog).

    Attributes:
        id: Stable identifier of the row
        project_id: Reconciliation project the row belongs to
        part_number: Raw part number as ingested
        canonical_part_number: Derived join key (see normalizer)
        line_code: Vendor line prefix, supplied or extracted
        mfr_code: Manufacturer code (part number without line code)
        description: Free-text description
        cost: Optional unit cost
        quantity: Optional on-hand quantity
        category: Optional category label used by rule filters
        mapped_from_line_code: Client line code replaced by a line code mapping
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    project_id: str = Field(..., min_length=1)
    part_number: str = ""
    canonical_part_number: str = ""
    line_code: Optional[str] = Field(default=None, max_length=16)
    mfr_code: Optional[str] = None
    description: Optional[str] = None
    cost: Optional[Decimal] = Field(default=None, ge=0)
    quantity: Optional[int] = None
    category: Optional[str] = None
    mapped_from_line_code: Optional[str] = None

    @field_validator("line_code", "mfr_code", mode="before")
    @classmethod
    def clean_codes(cls, v):
        """Upper-case codes and treat blanks as missing."""
        if v is None:
            return None
        v = str(v).strip().upper()
        return v or None

    @model_validator(mode="before")
    @classmethod
    def derive_normalized_fields(cls, data):
        """Fill the canonical key and, when enabled, the line/mfr split."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        raw = data.get("part_number") or ""
        data["part_number"] = raw
        if not data.get("canonical_part_number"):
            data["canonical_part_number"] = canonicalize(raw)
        if matching_settings.extract_line_codes and not data.get("line_code"):
            line_code, mfr_code = extract_line_code(raw)
            if line_code:
                data["line_code"] = line_code
                if not data.get("mfr_code"):
                    data["mfr_code"] = mfr_code
        supplied = str(data.get("line_code") or "").strip().upper()
        if supplied and not data.get("mfr_code"):
            # Same shape as an extracted mfr code: compact, leading zeros kept.
            # A part number without the prefix is already the manufacturer code.
            compact_raw = compact(raw)
            if compact_raw.startswith(supplied):
                compact_raw = compact_raw[len(supplied):]
            data["mfr_code"] = compact_raw or None
        return data

    @property
    def has_usable_part_number(self) -> bool:
        return bool(self.canonical_part_number)


class StoreItem(PartRecord):
    """Row of the store's inventory."""
    kind: Literal["store"] = "store"


class SupplierItem(PartRecord):
    """Row of the supplier's catalog."""
    kind: Literal["supplier"] = "supplier"


CatalogRecord = Annotated[Union[StoreItem, SupplierItem], Field(discriminator="kind")]


class InterchangeEntry(BaseModel):
    """Vendor cross-reference asserting two part numbers are the same part.

    The pair is unordered in practice; lookups try both sides.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    project_id: str = Field(..., min_length=1)
    ours: str
    theirs: str
    confidence: float = Field(default=0.95, ge=0, le=1)
    source: str = Field(default="curated", max_length=100)


class LineCodeMapping(BaseModel):
    """Maps a client line code to the line code the supplier uses for the same line.

    Example: the store sells Gates belts under "GS" while the supplier lists
    them under "GSP". Mappings without a project apply to every project; a
    project mapping for the same client code takes precedence.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    project_id: Optional[str] = None
    client_line_code: str = Field(..., min_length=1, max_length=16)
    supplier_line_code: Optional[str] = Field(default=None, max_length=16)
    manufacturer_name: Optional[str] = Field(default=None, max_length=200)
    active: bool = True

    @field_validator("client_line_code", "supplier_line_code", mode="before")
    @classmethod
    def clean_codes(cls, v):
        if v is None:
            return None
        v = str(v).strip().upper()
        return v or None

    @property
    def is_global(self) -> bool:
        return self.project_id is None
