"""arq worker configuration for matching jobs.

This module configures the arq worker with:
    - run_matching_job_task: Run a job admitted by the queue manager
    - learn_rules_task: Learn matching rules from review decisions
    - drain_queue_task: Cron safety net admitting queued jobs
    - monitor_queue_depth: Cron job logging queue and job-state depth
"""
from typing import Any, Dict

from arq import cron
from arq.connections import ArqRedis, RedisSettings
import structlog

from partmatch.config import configure_logging, settings
from partmatch.db.base import engine
from partmatch.db.repository import SqlCandidateRepository, SqlCatalogReader, SqlRuleStore
from partmatch.models import JobStatus, MatchingJob
from partmatch.services.external_stages import create_external_stages
from partmatch.services.job_queue import Dispatcher, JobQueueManager
from partmatch.services.job_state import RedisJobStore, get_status_key
from partmatch.tasks.matching_tasks import (
    drain_queue_task,
    learn_rules_task,
    run_matching_job_task,
)

# Configure logging
configure_logging(settings.log_level)
logger = structlog.get_logger(__name__)


def make_dispatcher(redis: ArqRedis) -> Dispatcher:
    """Dispatcher that enqueues run_matching_job_task for each admitted job.

    The arq job id is derived from the matching job id, so a job admitted
    twice is only enqueued once.
    """
    async def dispatch(job: MatchingJob) -> None:
        await redis.enqueue_job(
            "run_matching_job_task",
            job.id,
            _job_id=f"matching-job:{job.id}",
            _queue_name=settings.queue_name,
        )
        logger.info("matching_job_dispatched", job_id=job.id, project_id=job.project_id)

    return dispatch


def build_manager(redis: ArqRedis) -> JobQueueManager:
    return JobQueueManager(RedisJobStore(redis), dispatcher=make_dispatcher(redis))


async def on_startup(ctx: Dict[str, Any]) -> None:
    """Wire the job store, repositories and queue manager into the worker context."""
    redis: ArqRedis = ctx["redis"]
    ctx["manager"] = build_manager(redis)
    ctx["catalog"] = SqlCatalogReader()
    ctx["candidates"] = SqlCandidateRepository()
    ctx["rule_store"] = SqlRuleStore()
    ctx["stage_factory"] = create_external_stages
    logger.info("worker_started", queue_name=settings.queue_name, environment=settings.environment)


async def on_shutdown(ctx: Dict[str, Any]) -> None:
    await engine.dispose()
    logger.info("worker_stopped")


async def monitor_queue_depth(ctx: Dict[str, Any]) -> None:
    """Periodic task to log arq queue depth and matching job counts.

    Args:
        ctx: Worker context (contains Redis connection)
    """
    try:
        redis: ArqRedis = ctx.get("redis")
        if not redis:
            logger.warning("monitor_queue_depth_no_redis")
            return

        # arq keeps its queue as a sorted set
        queue_depth = await redis.zcard(settings.queue_name)
        dlq_depth = await redis.scard(f"arq:dlq:{settings.dlq_name}")
        queued = await redis.scard(get_status_key(JobStatus.QUEUED))
        processing = await redis.scard(get_status_key(JobStatus.PROCESSING))

        logger.info(
            "queue_depth_monitor",
            queue_name=settings.queue_name,
            queue_depth=queue_depth,
            dlq_depth=dlq_depth,
            jobs_queued=queued,
            jobs_processing=processing,
        )
    except Exception as e:
        logger.error("monitor_queue_depth_error", error=str(e))


async def on_job_end(ctx: Dict[str, Any]) -> None:
    """Hook called after each job ends (success or failure).

    Records tasks that failed on their last attempt in the dead letter set.

    Args:
        ctx: Worker context containing job metadata
    """
    try:
        job_try = ctx.get("job_try", 1)
        job_result = ctx.get("job_result")
        job_id = ctx.get("job_id", "unknown")

        # arq's max_tries counts the first attempt too
        max_tries = WorkerSettings.max_tries
        is_failed = job_result is not None and isinstance(job_result, Exception)
        exceeded_retries = job_try >= max_tries

        if is_failed and exceeded_retries:
            redis: ArqRedis = ctx.get("redis")
            if redis:
                dlq_key = f"arq:dlq:{settings.dlq_name}"
                logger.warning(
                    "job_moved_to_dlq",
                    job_id=job_id,
                    job_try=job_try,
                    max_tries=max_tries,
                    dlq_name=settings.dlq_name,
                    error=str(job_result),
                )
                await redis.sadd(dlq_key, job_id)
                await redis.expire(dlq_key, 86400 * 7)  # Keep for 7 days
        else:
            logger.debug(
                "on_job_end_skipped",
                job_id=job_id,
                job_try=job_try,
                is_failed=is_failed,
            )
    except Exception as e:
        logger.error("on_job_end_error", error=str(e), ctx_keys=list(ctx.keys()) if ctx else [])


class WorkerSettings:
    """arq worker configuration settings.

    This class is imported by arq CLI: `arq partmatch.worker.WorkerSettings`

    Registered Tasks:
        - run_matching_job_task: Run one admitted matching job
        - learn_rules_task: Learn rules from review decisions

    Cron Jobs:
        - drain_queue_task: Every minute
        - monitor_queue_depth: Every 5 minutes
    """

    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.queue_name
    max_jobs = settings.max_workers
    job_timeout = settings.job_timeout
    keep_result = 3600  # Keep results for 1 hour
    max_tries = 3

    functions = [
        run_matching_job_task,
        learn_rules_task,
        drain_queue_task,
    ]

    on_startup = on_startup
    on_shutdown = on_shutdown
    on_job_end = on_job_end

    cron_jobs = [
        cron(drain_queue_task, second={0}, unique=True),
        cron(monitor_queue_depth, minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55}),
    ]
