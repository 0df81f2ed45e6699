"""
Job Queue Manager

Owns the matching job state machine, admission under concurrency ceilings,
cascading drain, cooperative cancellation, progress and the external-stage
slots. Storage is delegated to a JobStore; counts are always read from the
store, never kept in process, so admission stays correct across schedulers.

State machine:
    queued -> processing -> (completed | failed | cancelled)
    queued -> cancelled (cancellation requested before admission)
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, List, Optional

import structlog

from partmatch.config import QueueSettings, queue_settings
from partmatch.errors import InvalidJobTransitionError, JobNotFoundError
from partmatch.interfaces import JobStore
from partmatch.models import (
    ALLOWED_TRANSITIONS,
    AdmissionResult,
    CancellationType,
    JobConfig,
    JobStatus,
    MatchingJob,
    StageName,
)

logger = structlog.get_logger(__name__)

Dispatcher = Callable[[MatchingJob], Awaitable[None]]

REASON_GLOBAL_LIMIT = "global_limit_reached"
REASON_USER_LIMIT = "user_limit_reached"
REASON_PROJECT_LIMIT = "project_limit_reached"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobQueueManager:
    """
    Concurrency-bounded queue of matching jobs.

    Usage:
        manager = JobQueueManager(store, dispatcher=enqueue_runner)
        job = await manager.enqueue(project_id, user_id)
        ...
        await manager.mark_completed(job.id)   # admits the next queued job
    """

    def __init__(
        self,
        store: JobStore,
        limits: Optional[QueueSettings] = None,
        dispatcher: Optional[Dispatcher] = None,
    ):
        self.store = store
        self.limits = limits or queue_settings
        self.dispatcher = dispatcher

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_job(self, job_id: str) -> MatchingJob:
        job = await self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    async def can_job_start(self, job: MatchingJob) -> AdmissionResult:
        """Evaluate the global, per-user and per-project ceilings, in that order.

        Denial is returned as a value; the job stays queued.
        """
        counts = await self.store.count_processing(job.user_id, job.project_id)
        limits = {
            "global": self.limits.global_max,
            "per_user": self.limits.per_user_max,
            "per_project": self.limits.per_project_max,
        }
        reason = None
        if counts.global_processing >= self.limits.global_max:
            reason = REASON_GLOBAL_LIMIT
        elif counts.user_processing >= self.limits.per_user_max:
            reason = REASON_USER_LIMIT
        elif counts.project_processing >= self.limits.per_project_max:
            reason = REASON_PROJECT_LIMIT

        return AdmissionResult(
            job_id=job.id,
            can_start=reason is None,
            reason=reason,
            counts=counts,
            limits=limits,
        )

    # ------------------------------------------------------------------
    # Enqueue / admission
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        project_id: str,
        user_id: str,
        priority: int = 0,
        config: Optional[JobConfig] = None,
    ) -> MatchingJob:
        """Create a queued job and immediately try to admit queued work."""
        job = await self.store.create_job(
            MatchingJob(
                project_id=project_id,
                user_id=user_id,
                priority=priority,
                config=config or JobConfig(),
            )
        )
        logger.info(
            "job_queued",
            job_id=job.id,
            project_id=project_id,
            user_id=user_id,
            priority=priority,
            stages=[s.value for s in job.config.stages],
        )
        await self.drain()
        return await self.get_job(job.id)

    async def try_start(self, job_id: str) -> AdmissionResult:
        """Admit one specific queued job if the ceilings allow it."""
        async with self.store.admission_lock():
            job = await self.get_job(job_id)
            if job.status != JobStatus.QUEUED:
                return AdmissionResult(job_id=job_id, can_start=False, reason=f"job_{job.status.value}")
            admission = await self.can_job_start(job)
            if admission.can_start:
                job = await self._transition(job, JobStatus.PROCESSING)
            else:
                logger.info("job_admission_denied", job_id=job_id, reason=admission.reason,
                            counts=admission.counts.model_dump())

        if admission.can_start:
            await self._dispatch([job])
        return admission

    async def drain(self) -> List[MatchingJob]:
        """Admit as many queued jobs as the ceilings allow.

        Queued jobs are considered by priority (highest first), then enqueue
        time. A job blocked by its user or project ceiling does not block
        jobs of other users or projects behind it.

        Returns:
            Jobs moved to processing
        """
        started: List[MatchingJob] = []
        async with self.store.admission_lock():
            queued = await self.store.list_jobs(JobStatus.QUEUED)
            queued.sort(key=lambda j: (-j.priority, j.queued_at, j.id))
            for job in queued:
                admission = await self.can_job_start(job)
                if not admission.can_start:
                    if admission.reason == REASON_GLOBAL_LIMIT:
                        break
                    continue
                started.append(await self._transition(job, JobStatus.PROCESSING))

        if started:
            logger.info("queue_drained", started=[j.id for j in started], waiting=len(queued) - len(started))
        await self._dispatch(started)
        return started

    async def _dispatch(self, jobs: List[MatchingJob]) -> None:
        if self.dispatcher is None:
            return
        for job in jobs:
            try:
                await self.dispatcher(job)
            except Exception as e:
                logger.error("job_dispatch_failed", job_id=job.id, error=str(e), exc_info=True)
                await self.mark_failed(job.id, f"Dispatch failed: {e}")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _transition(self, job: MatchingJob, target: JobStatus, **fields) -> MatchingJob:
        if target not in ALLOWED_TRANSITIONS[job.status]:
            raise InvalidJobTransitionError(job.id, job.status.value, target.value)

        now = _utcnow()
        fields["status"] = target
        if target == JobStatus.PROCESSING:
            fields["started_at"] = now
        elif target == JobStatus.CANCELLED:
            fields["cancelled_at"] = now
            fields["completed_at"] = now
            fields["in_external_stage"] = False
        else:
            fields["completed_at"] = now
            fields["in_external_stage"] = False

        updated = await self.store.update_job(job.id, **fields)
        if updated is None:
            raise JobNotFoundError(f"Job {job.id} not found")
        logger.info(
            "job_status_changed",
            job_id=job.id,
            project_id=job.project_id,
            from_status=job.status.value,
            to_status=target.value,
        )
        return updated

    async def mark_completed(self, job_id: str, metrics: Optional[dict] = None) -> MatchingJob:
        job = await self.get_job(job_id)
        fields = {"metrics": metrics} if metrics is not None else {}
        job = await self._transition(job, JobStatus.COMPLETED, **fields)
        await self.drain()
        return job

    async def mark_failed(self, job_id: str, error_message: str, metrics: Optional[dict] = None) -> MatchingJob:
        job = await self.get_job(job_id)
        fields = {"error_message": error_message[:2000]}
        if metrics is not None:
            fields["metrics"] = metrics
        job = await self._transition(job, JobStatus.FAILED, **fields)
        await self.drain()
        return job

    async def mark_cancelled(self, job_id: str, metrics: Optional[dict] = None) -> MatchingJob:
        job = await self.get_job(job_id)
        fields = {"metrics": metrics} if metrics is not None else {}
        job = await self._transition(job, JobStatus.CANCELLED, **fields)
        await self.drain()
        return job

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def request_cancellation(
        self,
        job_id: str,
        cancellation_type: CancellationType = CancellationType.GRACEFUL,
        requested_by: Optional[str] = None,
    ) -> MatchingJob:
        """Request cancellation.

        A queued job moves straight to cancelled. A processing job gets the
        request flag; the runner stops at the next batch (GRACEFUL) or item
        (IMMEDIATE) checkpoint. An IMMEDIATE request upgrades a pending
        GRACEFUL one.

        Raises:
            InvalidJobTransitionError: The job is already terminal
        """
        async with self.store.admission_lock():
            job = await self.get_job(job_id)
            if job.is_terminal:
                raise InvalidJobTransitionError(job_id, job.status.value, JobStatus.CANCELLED.value)

            if job.status == JobStatus.QUEUED:
                job = await self._transition(
                    job,
                    JobStatus.CANCELLED,
                    cancellation_requested=True,
                    cancellation_type=cancellation_type,
                    cancelled_by=requested_by,
                )
                logger.info("queued_job_cancelled", job_id=job_id, requested_by=requested_by)
                return job

            if job.cancellation_type == CancellationType.IMMEDIATE:
                cancellation_type = CancellationType.IMMEDIATE
            job = await self.store.update_job(
                job_id,
                cancellation_requested=True,
                cancellation_type=cancellation_type,
                cancelled_by=requested_by,
            )
        logger.info(
            "job_cancellation_requested",
            job_id=job_id,
            cancellation_type=cancellation_type.value,
            requested_by=requested_by,
        )
        return job

    async def should_stop(self, job_id: str, at_item_boundary: bool) -> bool:
        """Cancellation checkpoint for the runner.

        Item boundaries honour only IMMEDIATE requests; batch boundaries
        honour both types.
        """
        job = await self.get_job(job_id)
        if not job.cancellation_requested:
            return False
        if at_item_boundary:
            return job.cancellation_type == CancellationType.IMMEDIATE
        return True

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def update_progress(
        self,
        job_id: str,
        processed_items: int,
        total_items: Optional[int] = None,
        stage: Optional[StageName] = None,
    ) -> MatchingJob:
        """Record progress; processed_items never decreases."""
        job = await self.get_job(job_id)
        fields = {"processed_items": max(job.processed_items, processed_items)}
        if total_items is not None:
            fields["total_items"] = max(total_items, fields["processed_items"])
        elif fields["processed_items"] > job.total_items:
            fields["total_items"] = fields["processed_items"]
        if stage is not None:
            fields["current_stage"] = stage
        return await self.store.update_job(job_id, **fields)

    # ------------------------------------------------------------------
    # External stage slots
    # ------------------------------------------------------------------

    async def acquire_external_slot(
        self,
        job_id: str,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> bool:
        """Wait for a slot under the external-stage ceiling.

        Returns:
            True once the slot is held, False if the wait timed out
        """
        timeout = self.limits.external_slot_timeout_seconds if timeout is None else timeout
        poll_interval = self.limits.external_slot_poll_seconds if poll_interval is None else poll_interval
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            async with self.store.admission_lock():
                job = await self.get_job(job_id)
                if job.in_external_stage:
                    return True
                counts = await self.store.count_processing(job.user_id, job.project_id)
                if counts.external_stage_processing < self.limits.external_stage_max:
                    await self.store.update_job(job_id, in_external_stage=True)
                    logger.debug("external_slot_acquired", job_id=job_id,
                                 in_use=counts.external_stage_processing + 1)
                    return True

            if loop.time() + poll_interval > deadline:
                logger.warning("external_slot_timeout", job_id=job_id, timeout_seconds=timeout)
                return False
            await asyncio.sleep(poll_interval)

    async def release_external_slot(self, job_id: str) -> None:
        await self.store.update_job(job_id, in_external_stage=False)

    @asynccontextmanager
    async def external_slot(self, job_id: str, timeout: Optional[float] = None) -> AsyncIterator[bool]:
        """Hold an external-stage slot for the duration of the block.

        Yields:
            Whether the slot was acquired; callers skip the stage when False
        """
        acquired = await self.acquire_external_slot(job_id, timeout=timeout)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release_external_slot(job_id)
