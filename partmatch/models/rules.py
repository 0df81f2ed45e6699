"""Pydantic models for matching rules and rule learning results."""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator


class RuleScope(str, Enum):
    GLOBAL = "global"
    PROJECT = "project"


class RuleAction(str, Enum):
    """What an effective rule does to a matching (line code, signature) pair."""
    APPROVE = "approve"
    BLOCK = "block"


RuleKey = Tuple[str, Optional[str], Optional[str], str]


class MatchingRule(BaseModel):
    """A reusable (line code, transformation signature) → action rule.

    Project-local rules take precedence over global rules with the same key.
    Rules are never overwritten silently; updates go through the rule store.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    scope: RuleScope = RuleScope.PROJECT
    project_id: Optional[str] = None
    line_code: Optional[str] = None
    signature: str = Field(..., min_length=1)
    category: Optional[str] = None
    action: RuleAction = RuleAction.APPROVE
    confidence: float = Field(default=0.9, ge=0, le=1)
    active: bool = True
    support: int = Field(default=0, ge=0)
    created_by: str = "pattern_detector"
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None

    @field_validator("line_code", mode="before")
    @classmethod
    def upper_line_code(cls, v):
        if v is None:
            return None
        v = str(v).strip().upper()
        return v or None

    @model_validator(mode="after")
    def validate_scope(self):
        """Project rules need a project; global rules must not carry one."""
        if self.scope == RuleScope.PROJECT and not self.project_id:
            raise ValueError("project_id is required for project-scoped rules")
        if self.scope == RuleScope.GLOBAL and self.project_id is not None:
            raise ValueError("global rules must not have a project_id")
        return self

    @property
    def key(self) -> RuleKey:
        return (self.scope.value, self.project_id, self.line_code, self.signature)


def rule_key(
    scope: RuleScope,
    project_id: Optional[str],
    line_code: Optional[str],
    signature: str,
) -> RuleKey:
    """Build the equivalence key used for idempotent rule creation."""
    return (
        scope.value,
        project_id if scope == RuleScope.PROJECT else None,
        line_code.upper() if line_code else None,
        signature,
    )


class DetectedPattern(BaseModel):
    """A (line code, signature) group mined from review decisions."""

    project_id: str
    line_code: Optional[str] = None
    signature: Optional[str] = None
    approvals: int = 0
    rejections: int = 0
    sample_part_numbers: List[Tuple[str, str]] = Field(default_factory=list)
    eligible: bool = False
    reason: Optional[str] = None

    @property
    def support(self) -> int:
        return self.approvals + self.rejections


class LearningResult(BaseModel):
    """Outcome of a rule learning run."""

    created: int = 0
    skipped: int = 0
    errors: int = 0
    rule_ids: List[str] = Field(default_factory=list)
    skipped_reasons: dict = Field(default_factory=dict)
