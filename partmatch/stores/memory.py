"""In-memory implementations of the collaborator interfaces.

Used by tests and by callers embedding the matcher without a database.
Every store returns copies so callers cannot mutate stored state.
"""
import asyncio
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from partmatch.errors import DatabaseError, DecisionConflictError
from partmatch.models import (
    DecisionStatus,
    InterchangeEntry,
    JobCounts,
    JobStatus,
    LineCodeMapping,
    MatchCandidate,
    MatchingJob,
    MatchingRule,
    StoreItem,
    SupplierItem,
)
from partmatch.models.rules import RuleKey


class InMemoryCandidateRepository:
    """Candidate repository, idempotent on (project, store item, target key)."""

    def __init__(self):
        self._candidates: Dict[str, MatchCandidate] = {}
        self._keys: Set[Tuple[str, str, str]] = set()

    def __len__(self) -> int:
        return len(self._candidates)

    async def create_candidates(self, candidates: Sequence[MatchCandidate]) -> int:
        inserted = 0
        for candidate in candidates:
            key = (candidate.project_id, candidate.store_item_id, candidate.target_key)
            if key in self._keys:
                continue
            self._keys.add(key)
            self._candidates[candidate.id] = candidate.model_copy(deep=True)
            inserted += 1
        return inserted

    async def get_candidate(self, candidate_id: str) -> Optional[MatchCandidate]:
        candidate = self._candidates.get(candidate_id)
        return candidate.model_copy(deep=True) if candidate else None

    async def list_candidates(
        self,
        project_id: str,
        store_item_id: Optional[str] = None,
        status: Optional[DecisionStatus] = None,
    ) -> List[MatchCandidate]:
        return [
            c.model_copy(deep=True)
            for c in self._candidates.values()
            if c.project_id == project_id
            and (store_item_id is None or c.store_item_id == store_item_id)
            and (status is None or c.status == status)
        ]

    async def update_decision(self, candidate: MatchCandidate) -> MatchCandidate:
        if candidate.id not in self._candidates:
            raise DatabaseError(f"Match candidate {candidate.id} does not exist")
        if candidate.status == DecisionStatus.CONFIRMED:
            for other in self._candidates.values():
                if (
                    other.id != candidate.id
                    and other.project_id == candidate.project_id
                    and other.store_item_id == candidate.store_item_id
                    and other.status == DecisionStatus.CONFIRMED
                ):
                    raise DecisionConflictError(
                        f"Store item {candidate.store_item_id} already has confirmed candidate {other.id}"
                    )
        self._candidates[candidate.id] = candidate.model_copy(deep=True)
        return candidate

    def confirmed_store_item_ids(self, project_id: str) -> Set[str]:
        return {
            c.store_item_id
            for c in self._candidates.values()
            if c.project_id == project_id and c.status == DecisionStatus.CONFIRMED
        }


class InMemoryCatalog:
    """Catalog reader over in-memory rows.

    list_unmatched excludes store items holding a confirmed candidate in the
    linked candidate repository.
    """

    def __init__(
        self,
        store_items: Iterable[StoreItem] = (),
        supplier_items: Iterable[SupplierItem] = (),
        interchange_entries: Iterable[InterchangeEntry] = (),
        candidates: Optional[InMemoryCandidateRepository] = None,
        line_code_mappings: Iterable[LineCodeMapping] = (),
    ):
        self.store_items: List[StoreItem] = list(store_items)
        self.supplier_items: List[SupplierItem] = list(supplier_items)
        self.interchange_entries: List[InterchangeEntry] = list(interchange_entries)
        self.line_code_mappings: List[LineCodeMapping] = list(line_code_mappings)
        self.candidates = candidates

    async def list_unmatched(self, project_id: str) -> List[StoreItem]:
        confirmed = self.candidates.confirmed_store_item_ids(project_id) if self.candidates else set()
        return [i for i in self.store_items if i.project_id == project_id and i.id not in confirmed]

    async def list_supplier_catalog(self, project_id: str) -> List[SupplierItem]:
        return [i for i in self.supplier_items if i.project_id == project_id]

    async def list_interchange_entries(self, project_id: str) -> List[InterchangeEntry]:
        return [e for e in self.interchange_entries if e.project_id == project_id]

    async def list_line_code_mappings(self, project_id: str) -> List[LineCodeMapping]:
        return [
            m for m in self.line_code_mappings
            if m.active and (m.is_global or m.project_id == project_id)
        ]


class InMemoryRuleStore:
    """Rule store; a second rule with the same key is rejected like a unique constraint."""

    def __init__(self, rules: Iterable[MatchingRule] = ()):
        self._rules: Dict[str, MatchingRule] = {}
        for rule in rules:
            self._rules[rule.id] = rule

    def __len__(self) -> int:
        return len(self._rules)

    async def list_rules(self, project_id: str, active_only: bool = True) -> List[MatchingRule]:
        return [
            r.model_copy()
            for r in self._rules.values()
            if (r.project_id is None or r.project_id == project_id) and (r.active or not active_only)
        ]

    async def find_rule(self, key: RuleKey) -> Optional[MatchingRule]:
        for rule in self._rules.values():
            if rule.key == key:
                return rule.model_copy()
        return None

    async def create_rule(self, rule: MatchingRule) -> MatchingRule:
        if await self.find_rule(rule.key) is not None:
            raise DatabaseError(f"Rule with key {rule.key} already exists")
        self._rules[rule.id] = rule.model_copy()
        return rule

    async def update_rule(self, rule: MatchingRule) -> MatchingRule:
        if rule.id not in self._rules:
            raise DatabaseError(f"Rule {rule.id} does not exist")
        self._rules[rule.id] = rule.model_copy()
        return rule


class InMemoryJobStore:
    """Job store with an asyncio lock for admission."""

    def __init__(self):
        self._jobs: Dict[str, MatchingJob] = {}
        self._lock = asyncio.Lock()

    async def create_job(self, job: MatchingJob) -> MatchingJob:
        self._jobs[job.id] = job.model_copy(deep=True)
        return job

    async def get_job(self, job_id: str) -> Optional[MatchingJob]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def update_job(self, job_id: str, **fields) -> Optional[MatchingJob]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        self._jobs[job_id] = job.model_copy(update=fields)
        return self._jobs[job_id].model_copy(deep=True)

    async def list_jobs(self, status: Optional[JobStatus] = None) -> List[MatchingJob]:
        return [j.model_copy(deep=True) for j in self._jobs.values() if status is None or j.status == status]

    async def count_processing(self, user_id: str, project_id: str) -> JobCounts:
        processing = [j for j in self._jobs.values() if j.status == JobStatus.PROCESSING]
        return JobCounts(
            global_processing=len(processing),
            user_processing=sum(1 for j in processing if j.user_id == user_id),
            project_processing=sum(1 for j in processing if j.project_id == project_id),
            external_stage_processing=sum(1 for j in processing if j.in_external_stage),
        )

    def admission_lock(self) -> asyncio.Lock:
        return self._lock
