"""SQLAlchemy implementations of the catalog reader, candidate repository and rule store.

Each operation opens its own session from the session factory and commits
before returning, so a committed batch survives any later failure of the job.
"""
from typing import Callable, List, Optional, Sequence

import structlog
from sqlalchemy import and_, exists, or_, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from partmatch.db.base import async_session_maker
from partmatch.db.models import (
    InterchangeEntryRow,
    LineCodeMappingRow,
    MatchCandidateRow,
    MatchingRuleRow,
    StoreItemRow,
    SupplierItemRow,
)
from partmatch.errors import (
    CandidateSinkError,
    CatalogUnavailableError,
    DatabaseError,
    DecisionConflictError,
)
from partmatch.models import (
    DecisionStatus,
    InterchangeEntry,
    LineCodeMapping,
    MatchCandidate,
    MatchingRule,
    RuleScope,
    StoreItem,
    SupplierItem,
)
from partmatch.models.rules import RuleKey

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]

_CATALOG_FIELDS = (
    "id",
    "project_id",
    "part_number",
    "canonical_part_number",
    "line_code",
    "mfr_code",
    "description",
    "cost",
    "quantity",
    "category",
)
_CANDIDATE_FIELDS = (
    "id",
    "project_id",
    "store_item_id",
    "target_id",
    "external_ref",
    "method",
    "confidence",
    "match_stage",
    "evidence",
    "status",
    "decided_by",
    "decided_at",
    "decision_note",
    "created_at",
)
_RULE_FIELDS = (
    "id",
    "scope",
    "project_id",
    "line_code",
    "signature",
    "category",
    "action",
    "confidence",
    "active",
    "support",
    "created_by",
    "created_at",
    "updated_at",
)
_MAPPING_FIELDS = (
    "id",
    "project_id",
    "client_line_code",
    "supplier_line_code",
    "manufacturer_name",
    "active",
)


def _row_dict(row, fields) -> dict:
    return {name: getattr(row, name) for name in fields}


def _candidate_from_row(row: MatchCandidateRow) -> MatchCandidate:
    return MatchCandidate(**_row_dict(row, _CANDIDATE_FIELDS))


def _rule_from_row(row: MatchingRuleRow) -> MatchingRule:
    return MatchingRule(**_row_dict(row, _RULE_FIELDS))


class SqlCatalogReader:
    """Catalog reader over store_items, supplier_items, interchange_entries and line_code_mappings."""

    def __init__(self, session_factory: SessionFactory = async_session_maker):
        self.session_factory = session_factory

    async def list_unmatched(self, project_id: str) -> List[StoreItem]:
        confirmed = exists().where(
            and_(
                MatchCandidateRow.store_item_id == StoreItemRow.id,
                MatchCandidateRow.status == DecisionStatus.CONFIRMED,
            )
        )
        query = (
            select(StoreItemRow)
            .where(StoreItemRow.project_id == project_id)
            .where(~confirmed)
            .order_by(StoreItemRow.id)
        )
        rows = await self._fetch(query, "store_items", project_id)
        return [StoreItem(**_row_dict(r, _CATALOG_FIELDS)) for r in rows]

    async def list_supplier_catalog(self, project_id: str) -> List[SupplierItem]:
        query = select(SupplierItemRow).where(SupplierItemRow.project_id == project_id).order_by(SupplierItemRow.id)
        rows = await self._fetch(query, "supplier_items", project_id)
        return [SupplierItem(**_row_dict(r, _CATALOG_FIELDS)) for r in rows]

    async def list_interchange_entries(self, project_id: str) -> List[InterchangeEntry]:
        query = select(InterchangeEntryRow).where(InterchangeEntryRow.project_id == project_id)
        rows = await self._fetch(query, "interchange_entries", project_id)
        return [
            InterchangeEntry(
                id=r.id,
                project_id=r.project_id,
                ours=r.ours,
                theirs=r.theirs,
                confidence=r.confidence,
                source=r.source,
            )
            for r in rows
        ]

    async def list_line_code_mappings(self, project_id: str) -> List[LineCodeMapping]:
        query = select(LineCodeMappingRow).where(
            LineCodeMappingRow.active.is_(True),
            or_(LineCodeMappingRow.project_id == project_id, LineCodeMappingRow.project_id.is_(None)),
        )
        rows = await self._fetch(query, "line_code_mappings", project_id)
        return [LineCodeMapping(**_row_dict(r, _MAPPING_FIELDS)) for r in rows]

    async def _fetch(self, query, table: str, project_id: str):
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("catalog_read_failed", table=table, project_id=project_id, error=str(e))
            raise CatalogUnavailableError(f"Failed to read {table} for project {project_id}: {e}") from e


class SqlCandidateRepository:
    """Candidate repository using INSERT ... ON CONFLICT DO NOTHING."""

    def __init__(self, session_factory: SessionFactory = async_session_maker):
        self.session_factory = session_factory

    async def create_candidates(self, candidates: Sequence[MatchCandidate]) -> int:
        if not candidates:
            return 0
        values = [
            {
                "id": c.id,
                "project_id": c.project_id,
                "store_item_id": c.store_item_id,
                "target_id": c.target_id,
                "external_ref": c.external_ref,
                "target_key": c.target_key,
                "method": c.method,
                "confidence": c.confidence,
                "match_stage": c.match_stage,
                "evidence": c.evidence,
                "status": c.status,
                "created_at": c.created_at,
            }
            for c in candidates
        ]
        stmt = insert(MatchCandidateRow).values(values).on_conflict_do_nothing(
            constraint="uq_match_candidates_target"
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("candidate_insert_failed", count=len(candidates), error=str(e))
            raise CandidateSinkError(f"Failed to insert {len(candidates)} candidates: {e}") from e

        inserted = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else 0
        logger.debug("candidates_inserted", requested=len(candidates), inserted=inserted)
        return inserted

    async def get_candidate(self, candidate_id: str) -> Optional[MatchCandidate]:
        try:
            async with self.session_factory() as session:
                row = await session.get(MatchCandidateRow, candidate_id)
                return _candidate_from_row(row) if row else None
        except SQLAlchemyError as e:
            raise CandidateSinkError(f"Failed to read candidate {candidate_id}: {e}") from e

    async def list_candidates(
        self,
        project_id: str,
        store_item_id: Optional[str] = None,
        status: Optional[DecisionStatus] = None,
    ) -> List[MatchCandidate]:
        query = select(MatchCandidateRow).where(MatchCandidateRow.project_id == project_id)
        if store_item_id is not None:
            query = query.where(MatchCandidateRow.store_item_id == store_item_id)
        if status is not None:
            query = query.where(MatchCandidateRow.status == status)
        try:
            async with self.session_factory() as session:
                result = await session.execute(query.order_by(MatchCandidateRow.match_stage))
                return [_candidate_from_row(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise CandidateSinkError(f"Failed to list candidates for project {project_id}: {e}") from e

    async def update_decision(self, candidate: MatchCandidate) -> MatchCandidate:
        stmt = (
            update(MatchCandidateRow)
            .where(MatchCandidateRow.id == candidate.id)
            .values(
                status=candidate.status,
                decided_by=candidate.decided_by,
                decided_at=candidate.decided_at,
                decision_note=candidate.decision_note,
            )
        )
        try:
            async with self.session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except IntegrityError as e:
            # uq_match_candidates_confirmed: another candidate is already confirmed
            raise DecisionConflictError(
                f"Store item {candidate.store_item_id} already has a confirmed candidate"
            ) from e
        except SQLAlchemyError as e:
            raise CandidateSinkError(f"Failed to update candidate {candidate.id}: {e}") from e
        return candidate


class SqlRuleStore:
    """Rule store over matching_rules."""

    def __init__(self, session_factory: SessionFactory = async_session_maker):
        self.session_factory = session_factory

    async def list_rules(self, project_id: str, active_only: bool = True) -> List[MatchingRule]:
        query = select(MatchingRuleRow).where(
            or_(MatchingRuleRow.project_id == project_id, MatchingRuleRow.scope == RuleScope.GLOBAL)
        )
        if active_only:
            query = query.where(MatchingRuleRow.active.is_(True))
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return [_rule_from_row(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to list rules for project {project_id}: {e}") from e

    async def find_rule(self, key: RuleKey) -> Optional[MatchingRule]:
        scope, project_id, line_code, signature = key
        query = select(MatchingRuleRow).where(
            MatchingRuleRow.scope == RuleScope(scope),
            MatchingRuleRow.project_id.is_(None) if project_id is None else MatchingRuleRow.project_id == project_id,
            MatchingRuleRow.line_code.is_(None) if line_code is None else MatchingRuleRow.line_code == line_code,
            MatchingRuleRow.signature == signature,
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                row = result.scalars().first()
                return _rule_from_row(row) if row else None
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to look up rule {key}: {e}") from e

    async def create_rule(self, rule: MatchingRule) -> MatchingRule:
        row = MatchingRuleRow(**{name: getattr(rule, name) for name in _RULE_FIELDS if name != "updated_at"})
        try:
            async with self.session_factory() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("rule_create_failed", signature=rule.signature, line_code=rule.line_code, error=str(e))
            raise DatabaseError(f"Failed to create rule: {e}") from e
        return rule

    async def update_rule(self, rule: MatchingRule) -> MatchingRule:
        values = {name: getattr(rule, name) for name in _RULE_FIELDS if name not in ("id", "created_at", "updated_at")}
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    update(MatchingRuleRow).where(MatchingRuleRow.id == rule.id).values(**values)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to update rule {rule.id}: {e}") from e
        if not result.rowcount:
            raise DatabaseError(f"Rule {rule.id} does not exist")
        return rule
