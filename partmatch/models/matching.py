"""Pydantic models for match candidates and review decisions.

This module defines the output unit of every matcher and the decision feed
consumed by rule learning.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator


class MatchMethod(str, Enum):
    """How a candidate was produced."""
    INTERCHANGE = "interchange"
    EXACT_NORMALIZED = "exact_normalized"
    RULE_BASED = "rule_based"
    FUZZY = "fuzzy"
    FUZZY_SUBSTRING = "fuzzy_substring"
    AI = "ai"
    WEB_SEARCH = "web_search"


# Precedence marker per method; lower stages run first.
MATCH_STAGES: Dict[MatchMethod, int] = {
    MatchMethod.INTERCHANGE: 1,
    MatchMethod.EXACT_NORMALIZED: 2,
    MatchMethod.RULE_BASED: 3,
    MatchMethod.FUZZY: 4,
    MatchMethod.FUZZY_SUBSTRING: 4,
    MatchMethod.AI: 5,
    MatchMethod.WEB_SEARCH: 6,
}


class DecisionStatus(str, Enum):
    """Review status of a candidate.

    State Transitions:
        - pending → confirmed (reviewer approves; terminal for the store item)
        - pending → rejected (reviewer rejects)
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class ReviewAction(str, Enum):
    """Decision carried by the bulk review feed."""
    APPROVE = "approve"
    REJECT = "reject"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MatchCandidate(BaseModel):
    """A proposed pairing of a store item with a supplier item.

    Attributes:
        id: Candidate identifier
        project_id: Owning project
        store_item_id: Store item being matched
        target_id: Supplier item id, or None when the part was found
            externally and has no catalog row yet
        external_ref: Reference for sentinel targets (e.g. the other side's
            part number from an interchange entry)
        method: Matcher that produced the candidate
        confidence: Match confidence in [0, 1]
        match_stage: Precedence marker (see MATCH_STAGES)
        evidence: Signals that fired and their values
        status: Review status
        decided_by / decided_at / decision_note: Decision metadata
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    project_id: str
    store_item_id: str
    target_id: Optional[str] = None
    external_ref: Optional[str] = None
    method: MatchMethod
    confidence: float = Field(..., ge=0, le=1)
    match_stage: int = Field(default=0, ge=0)
    evidence: Dict[str, Any] = Field(default_factory=dict)
    status: DecisionStatus = DecisionStatus.PENDING
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    decision_note: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def validate_target(self):
        """Require a target and default the stage from the method."""
        if self.target_id is None and not self.external_ref:
            raise ValueError("external_ref is required when target_id is None")
        if self.match_stage == 0:
            self.match_stage = MATCH_STAGES[self.method]
        return self

    @property
    def target_key(self) -> str:
        """Uniqueness key of the target, used with (project, store item)."""
        if self.target_id is not None:
            return f"supplier:{self.target_id}"
        return f"external:{self.external_ref}"

    @property
    def is_sentinel(self) -> bool:
        return self.target_id is None


class ReviewDecision(BaseModel):
    """One row of the bulk decision feed."""

    match_candidate_id: str
    store_part_number: str
    supplier_part_number: str
    line_code: Optional[str] = None
    decision: ReviewAction
    project_id: str
    user_id: str
    category: Optional[str] = None
