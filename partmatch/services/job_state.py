"""
Job State Management

Redis-backed JobStore for matching jobs. Each job is a hash with one
JSON-encoded field per attribute, so partial updates (progress from the
runner, cancellation flags from a caller) never overwrite each other.
Status index sets allow the queue manager to count processing jobs without
scanning every key.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional
from uuid import uuid4

import structlog
from pydantic_core import to_jsonable_python
from redis.asyncio import Redis
from redis.exceptions import RedisError

from partmatch.config import queue_settings
from partmatch.errors import DatabaseError
from partmatch.models import JobCounts, JobStatus, MatchingJob

logger = structlog.get_logger(__name__)

# =============================================================================
# Redis Key Constants
# =============================================================================

JOB_KEY_PREFIX = "partmatch:job:"
JOB_STATUS_SET_PREFIX = "partmatch:jobs:"
ADMISSION_LOCK_KEY = "partmatch:admission:lock"
JOB_TTL_SECONDS = 7 * 24 * 60 * 60  # 7 days
LOCK_RETRY_SECONDS = 0.05

RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def get_job_key(job_id: str) -> str:
    """Get Redis key for a job."""
    return f"{JOB_KEY_PREFIX}{job_id}"


def get_status_key(status: JobStatus) -> str:
    return f"{JOB_STATUS_SET_PREFIX}{status.value}"


def _decode(value) -> str:
    return value.decode() if isinstance(value, bytes) else value


def _serialize_fields(fields: dict) -> Dict[str, str]:
    """JSON-encode job fields for HSET."""
    return {name: json.dumps(to_jsonable_python(value)) for name, value in fields.items()}


def _deserialize_job(data: dict) -> MatchingJob:
    decoded = {_decode(k): json.loads(_decode(v)) for k, v in data.items()}
    return MatchingJob.model_validate(decoded)


class RedisJobStore:
    """
    JobStore backed by Redis hashes.

    Usage:
        store = RedisJobStore(ctx["redis"])
        manager = JobQueueManager(store)
    """

    def __init__(self, redis: Redis, lock_ttl_seconds: Optional[int] = None):
        self.redis = redis
        self.lock_ttl_seconds = lock_ttl_seconds or queue_settings.admission_lock_ttl_seconds

    async def create_job(self, job: MatchingJob) -> MatchingJob:
        key = get_job_key(job.id)
        try:
            await self.redis.hset(key, mapping=_serialize_fields(dict(job)))
            await self.redis.expire(key, JOB_TTL_SECONDS)
            await self.redis.sadd(get_status_key(job.status), job.id)
        except RedisError as e:
            logger.error("job_create_failed", job_id=job.id, error=str(e))
            raise DatabaseError(f"Failed to create job {job.id}: {e}") from e

        logger.debug("job_created", job_id=job.id, project_id=job.project_id)
        return job

    async def get_job(self, job_id: str) -> Optional[MatchingJob]:
        try:
            data = await self.redis.hgetall(get_job_key(job_id))
        except RedisError as e:
            logger.error("job_read_failed", job_id=job_id, error=str(e))
            raise DatabaseError(f"Failed to read job {job_id}: {e}") from e
        if not data:
            return None
        return _deserialize_job(data)

    async def update_job(self, job_id: str, **fields) -> Optional[MatchingJob]:
        """Write only the given fields, keeping the status index sets in sync."""
        key = get_job_key(job_id)
        try:
            if not await self.redis.exists(key):
                logger.warning("job_not_found_for_update", job_id=job_id)
                return None

            if "status" in fields:
                previous = await self.redis.hget(key, "status")
                if previous is not None:
                    old_status = JobStatus(json.loads(_decode(previous)))
                    await self.redis.srem(get_status_key(old_status), job_id)
                await self.redis.sadd(get_status_key(JobStatus(fields["status"])), job_id)

            await self.redis.hset(key, mapping=_serialize_fields(fields))
            await self.redis.expire(key, JOB_TTL_SECONDS)
        except RedisError as e:
            logger.error("job_update_failed", job_id=job_id, fields=list(fields), error=str(e))
            raise DatabaseError(f"Failed to update job {job_id}: {e}") from e

        logger.debug("job_updated", job_id=job_id, updates=list(fields.keys()))
        return await self.get_job(job_id)

    async def list_jobs(self, status: Optional[JobStatus] = None) -> List[MatchingJob]:
        statuses = [status] if status is not None else list(JobStatus)
        jobs: List[MatchingJob] = []
        for s in statuses:
            try:
                members = await self.redis.smembers(get_status_key(s))
            except RedisError as e:
                raise DatabaseError(f"Failed to list {s.value} jobs: {e}") from e
            for member in members:
                job = await self.get_job(_decode(member))
                if job is None:
                    # Hash expired; drop the stale index entry.
                    await self.redis.srem(get_status_key(s), member)
                    continue
                if job.status == s:
                    jobs.append(job)
        return jobs

    async def count_processing(self, user_id: str, project_id: str) -> JobCounts:
        processing = await self.list_jobs(JobStatus.PROCESSING)
        return JobCounts(
            global_processing=len(processing),
            user_processing=sum(1 for j in processing if j.user_id == user_id),
            project_processing=sum(1 for j in processing if j.project_id == project_id),
            external_stage_processing=sum(1 for j in processing if j.in_external_stage),
        )

    @asynccontextmanager
    async def admission_lock(self) -> AsyncIterator[None]:
        """Distributed lock using Redis SET NX, released with an atomic check-and-delete."""
        token = str(uuid4())
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.lock_ttl_seconds
        while not await self.redis.set(ADMISSION_LOCK_KEY, token, nx=True, ex=self.lock_ttl_seconds):
            if loop.time() > deadline:
                raise DatabaseError("Timed out waiting for the admission lock")
            await asyncio.sleep(LOCK_RETRY_SECONDS)
        try:
            yield
        finally:
            released = await self.redis.eval(RELEASE_LOCK_SCRIPT, 1, ADMISSION_LOCK_KEY, token)
            if not released:
                logger.warning("admission_lock_not_owned", token=token)
