"""MatchingRule ORM model."""
from sqlalchemy import Boolean, Float, Index, Integer, String, func
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from typing import Optional

from partmatch.db.base import Base, TimestampMixin, UUIDMixin
from partmatch.models import RuleAction, RuleScope


class MatchingRuleRow(Base, UUIDMixin, TimestampMixin):
    """Learned or administered (line code, signature) → action rule.

    The expression index keeps one rule per (scope, project, line code,
    signature), treating NULL project and line code as equal.
    """

    __tablename__ = "matching_rules"

    scope: Mapped[RuleScope] = mapped_column(
        SQLEnum(
            RuleScope,
            name="rule_scope",
            create_constraint=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    project_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    line_code: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    signature: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    action: Mapped[RuleAction] = mapped_column(
        SQLEnum(
            RuleAction,
            name="rule_action",
            create_constraint=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")
    support: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<MatchingRuleRow(id={self.id}, line_code='{self.line_code}', signature='{self.signature}')>"


Index(
    "uq_matching_rules_key",
    MatchingRuleRow.scope,
    func.coalesce(MatchingRuleRow.project_id, ""),
    func.coalesce(MatchingRuleRow.line_code, ""),
    MatchingRuleRow.signature,
    unique=True,
)
