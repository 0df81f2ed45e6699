"""Protocols for the collaborators the matching core depends on.

Any object with these methods can be passed in, supporting both the
in-memory stores and the SQLAlchemy/Redis implementations.
"""
from typing import AsyncContextManager, List, Optional, Protocol, Sequence, runtime_checkable

from partmatch.models import (
    DecisionStatus,
    InterchangeEntry,
    JobCounts,
    LineCodeMapping,
    JobStatus,
    MatchCandidate,
    MatchingJob,
    MatchingRule,
    MatchMethod,
    StageName,
    StoreItem,
    SupplierItem,
)
from partmatch.models.rules import RuleKey


class CatalogReader(Protocol):
    """Read access to a project's catalogs. Raises CatalogUnavailableError."""

    async def list_unmatched(self, project_id: str) -> List[StoreItem]:
        """Store items without a confirmed candidate."""
        ...

    async def list_supplier_catalog(self, project_id: str) -> List[SupplierItem]:
        ...

    async def list_interchange_entries(self, project_id: str) -> List[InterchangeEntry]:
        ...

    async def list_line_code_mappings(self, project_id: str) -> List[LineCodeMapping]:
        """Active global mappings plus the project's own mappings."""
        ...


class CandidateSink(Protocol):
    """Write side for candidates. Raises CandidateSinkError."""

    async def create_candidates(self, candidates: Sequence[MatchCandidate]) -> int:
        """Insert candidates, skipping any whose (project, store item, target) exists.

        Returns:
            Number of rows actually inserted
        """
        ...


class CandidateRepository(CandidateSink, Protocol):
    """Candidate sink plus the reads and updates needed for review decisions."""

    async def get_candidate(self, candidate_id: str) -> Optional[MatchCandidate]:
        ...

    async def list_candidates(
        self,
        project_id: str,
        store_item_id: Optional[str] = None,
        status: Optional[DecisionStatus] = None,
    ) -> List[MatchCandidate]:
        ...

    async def update_decision(self, candidate: MatchCandidate) -> MatchCandidate:
        """Persist decision fields. Raises DecisionConflictError on a second confirmation."""
        ...


class RuleStore(Protocol):
    async def list_rules(self, project_id: str, active_only: bool = True) -> List[MatchingRule]:
        """Project-local rules of project_id plus all global rules."""
        ...

    async def find_rule(self, key: RuleKey) -> Optional[MatchingRule]:
        ...

    async def create_rule(self, rule: MatchingRule) -> MatchingRule:
        ...

    async def update_rule(self, rule: MatchingRule) -> MatchingRule:
        ...


class JobStore(Protocol):
    """Plain CRUD over job records; the queue manager owns all transitions."""

    async def create_job(self, job: MatchingJob) -> MatchingJob:
        ...

    async def get_job(self, job_id: str) -> Optional[MatchingJob]:
        ...

    async def update_job(self, job_id: str, **fields) -> Optional[MatchingJob]:
        """Write only the given fields; returns None if the job does not exist."""
        ...

    async def list_jobs(self, status: Optional[JobStatus] = None) -> List[MatchingJob]:
        ...

    async def count_processing(self, user_id: str, project_id: str) -> JobCounts:
        """Count processing jobs globally, for the user, for the project and in external stages."""
        ...

    def admission_lock(self) -> AsyncContextManager[None]:
        """Lock serializing admission's read-then-act sequence."""
        ...


@runtime_checkable
class ExternalStage(Protocol):
    """AI / web-search matching collaborator."""

    name: StageName
    method: MatchMethod

    async def match(
        self,
        store_item: StoreItem,
        candidate_pool: Sequence[SupplierItem],
    ) -> Optional[MatchCandidate]:
        ...
