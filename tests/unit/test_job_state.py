"""Unit tests for the Redis job store, using a mocked Redis client."""
import json
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from partmatch.errors import DatabaseError
from partmatch.models import JobConfig, JobStatus, MatchingJob, StageName
from partmatch.services.job_state import (
    ADMISSION_LOCK_KEY,
    RedisJobStore,
    get_job_key,
    get_status_key,
)


def as_redis_hash(mapping: dict) -> dict:
    """Redis returns bytes keys and values."""
    return {k.encode(): v.encode() for k, v in mapping.items()}


@pytest.fixture
def redis():
    mock = AsyncMock()
    mock.set = AsyncMock(return_value=True)
    mock.eval = AsyncMock(return_value=1)
    return mock


@pytest.fixture
def job():
    return MatchingJob(
        project_id="proj-1",
        user_id="user-1",
        priority=2,
        config=JobConfig(stages=[StageName.EXACT, StageName.FUZZY], fuzzy_threshold=0.7),
    )


class TestRedisJobStore:
    """Tests for RedisJobStore."""

    def test_key_helpers(self):
        assert get_job_key("abc") == "partmatch:job:abc"
        assert get_status_key(JobStatus.PROCESSING) == "partmatch:jobs:processing"

    @pytest.mark.asyncio
    async def test_create_job_writes_hash_and_index(self, redis, job):
        store = RedisJobStore(redis, lock_ttl_seconds=5)

        await store.create_job(job)

        key, = redis.hset.await_args.args
        mapping = redis.hset.await_args.kwargs["mapping"]
        assert key == get_job_key(job.id)
        assert json.loads(mapping["status"]) == "queued"
        assert json.loads(mapping["config"])["fuzzy_threshold"] == 0.7
        redis.sadd.assert_awaited_with("partmatch:jobs:queued", job.id)
        redis.expire.assert_awaited()

    @pytest.mark.asyncio
    async def test_get_job_round_trip(self, redis, job):
        store = RedisJobStore(redis, lock_ttl_seconds=5)
        await store.create_job(job)
        redis.hgetall.return_value = as_redis_hash(redis.hset.await_args.kwargs["mapping"])

        loaded = await store.get_job(job.id)

        assert loaded == job

    @pytest.mark.asyncio
    async def test_get_missing_job(self, redis):
        redis.hgetall.return_value = {}
        assert await RedisJobStore(redis, lock_ttl_seconds=5).get_job("missing") is None

    @pytest.mark.asyncio
    async def test_update_moves_status_index(self, redis, job):
        store = RedisJobStore(redis, lock_ttl_seconds=5)
        await store.create_job(job)
        stored = dict(redis.hset.await_args.kwargs["mapping"])
        redis.exists.return_value = 1
        redis.hget.return_value = b'"queued"'
        redis.sadd.reset_mock()
        stored["status"] = json.dumps("processing")
        redis.hgetall.return_value = as_redis_hash(stored)

        updated = await store.update_job(job.id, status=JobStatus.PROCESSING)

        redis.srem.assert_awaited_with("partmatch:jobs:queued", job.id)
        redis.sadd.assert_awaited_with("partmatch:jobs:processing", job.id)
        assert redis.hset.await_args.kwargs["mapping"] == {"status": '"processing"'}
        assert updated.status == JobStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_update_missing_job(self, redis):
        redis.exists.return_value = 0
        assert await RedisJobStore(redis, lock_ttl_seconds=5).update_job("missing", processed_items=3) is None
        redis.hset.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_redis_errors_become_database_errors(self, redis, job):
        redis.hset.side_effect = RedisConnectionError("connection reset")

        with pytest.raises(DatabaseError):
            await RedisJobStore(redis, lock_ttl_seconds=5).create_job(job)

    @pytest.mark.asyncio
    async def test_count_processing(self, redis, job):
        store = RedisJobStore(redis, lock_ttl_seconds=5)
        other = job.model_copy(update={"id": "other", "user_id": "user-2", "in_external_stage": True,
                                       "status": JobStatus.PROCESSING})
        mine = job.model_copy(update={"status": JobStatus.PROCESSING})
        hashes = {
            get_job_key(mine.id): {k: json.dumps(v) for k, v in mine.model_dump(mode="json").items()},
            get_job_key(other.id): {k: json.dumps(v) for k, v in other.model_dump(mode="json").items()},
        }
        redis.smembers.return_value = {mine.id.encode(), b"other"}
        redis.hgetall.side_effect = lambda key: as_redis_hash(hashes[key])

        counts = await store.count_processing("user-1", "proj-1")

        assert counts.global_processing == 2
        assert counts.user_processing == 1
        assert counts.project_processing == 2
        assert counts.external_stage_processing == 1

    @pytest.mark.asyncio
    async def test_list_jobs_drops_expired_entries(self, redis):
        redis.smembers.return_value = {b"gone"}
        redis.hgetall.return_value = {}

        jobs = await RedisJobStore(redis, lock_ttl_seconds=5).list_jobs(JobStatus.QUEUED)

        assert jobs == []
        redis.srem.assert_awaited_with("partmatch:jobs:queued", b"gone")


class TestAdmissionLock:
    @pytest.mark.asyncio
    async def test_lock_is_acquired_and_released(self, redis):
        store = RedisJobStore(redis, lock_ttl_seconds=5)

        async with store.admission_lock():
            set_args = redis.set.await_args
            assert set_args.args[0] == ADMISSION_LOCK_KEY
            assert set_args.kwargs == {"nx": True, "ex": 5}

        token = set_args.args[1]
        redis.eval.assert_awaited_once()
        assert redis.eval.await_args.args[1:] == (1, ADMISSION_LOCK_KEY, token)

    @pytest.mark.asyncio
    async def test_lock_retries_until_free(self, redis):
        redis.set.side_effect = [None, None, True]

        async with RedisJobStore(redis, lock_ttl_seconds=5).admission_lock():
            pass

        assert redis.set.await_count == 3
