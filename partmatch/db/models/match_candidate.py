"""MatchCandidate ORM model for matcher output awaiting review."""
from sqlalchemy import DateTime, Float, ForeignKey, Index, SmallInteger, String, Text, UniqueConstraint, func, text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from typing import Any, Dict, Optional

from partmatch.db.base import Base, UUIDMixin
from partmatch.models import DecisionStatus, MatchMethod


class MatchCandidateRow(Base, UUIDMixin):
    """Candidate pairing of a store item with a supplier item.

    Uniqueness on (project_id, store_item_id, target_key) makes candidate
    writes idempotent; a partial unique index allows at most one confirmed
    candidate per store item.

    Attributes:
        target_id: Supplier item, NULL for the "found externally" sentinel
        external_ref: Reference carried by sentinel candidates
        target_key: "supplier:<id>" or "external:<ref>"
        evidence: JSONB bag of the signals that fired
    """

    __tablename__ = "match_candidates"
    __table_args__ = (
        UniqueConstraint("project_id", "store_item_id", "target_key", name="uq_match_candidates_target"),
        Index(
            "uq_match_candidates_confirmed",
            "store_item_id",
            unique=True,
            postgresql_where=text("status = 'confirmed'"),
        ),
    )

    project_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    store_item_id: Mapped[str] = mapped_column(
        ForeignKey("store_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    target_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("supplier_items.id", ondelete="CASCADE"),
        nullable=True,
    )
    external_ref: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    target_key: Mapped[str] = mapped_column(String(220), nullable=False)
    # Note: values_callable stores enum VALUES (lowercase strings), not NAMES
    method: Mapped[MatchMethod] = mapped_column(
        SQLEnum(
            MatchMethod,
            name="match_method",
            create_constraint=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    match_stage: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    evidence: Mapped[Dict[str, Any]] = mapped_column(
        postgresql.JSONB(astext_type=Text),
        nullable=False,
        server_default="{}",
    )
    status: Mapped[DecisionStatus] = mapped_column(
        SQLEnum(
            DecisionStatus,
            name="decision_status",
            create_constraint=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        server_default=DecisionStatus.PENDING.value,
        index=True,
    )
    decided_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    decision_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<MatchCandidateRow(id={self.id}, method='{self.method.value}', status='{self.status.value}')>"
