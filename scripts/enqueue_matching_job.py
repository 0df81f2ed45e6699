#!/usr/bin/env python3
"""Helper script for queueing, inspecting and cancelling matching jobs.

Usage:
    python scripts/enqueue_matching_job.py enqueue --project-id p1 --user-id u1 --priority 5
    python scripts/enqueue_matching_job.py status <job_id>
    python scripts/enqueue_matching_job.py cancel <job_id> --immediate
"""
import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
script_dir = Path(__file__).parent
project_root = script_dir.parent
sys.path.insert(0, str(project_root))

from arq import ArqRedis
from arq.connections import RedisSettings, create_pool

from partmatch.config import settings
from partmatch.errors import ReconciliationError
from partmatch.models import CancellationType, JobConfig, MatchingJob, StageName
from partmatch.worker import build_manager


def _print_job(job: MatchingJob) -> None:
    print(f"   Job ID:    {job.id}")
    print(f"   Project:   {job.project_id}")
    print(f"   User:      {job.user_id}")
    print(f"   Status:    {job.status.value}")
    print(f"   Priority:  {job.priority}")
    print(f"   Stages:    {', '.join(s.value for s in job.config.stages)}")
    print(f"   Progress:  {job.processed_items}/{job.total_items} ({job.progress_percentage}%)")
    if job.current_stage:
        print(f"   Stage:     {job.current_stage.value}")
    if job.cancellation_requested:
        print(f"   Cancel:    {job.cancellation_type.value if job.cancellation_type else 'requested'}")
    if job.error_message:
        print(f"   Error:     {job.error_message}")


async def run(args: argparse.Namespace) -> int:
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    print(f"📤 Connecting to Redis: {settings.redis_url.split('@')[-1]}")
    pool: ArqRedis = await create_pool(redis_settings)
    manager = build_manager(pool)

    try:
        if args.command == "enqueue":
            config = JobConfig(
                stages=[StageName(s) for s in args.stages] if args.stages else JobConfig().stages,
                batch_size=args.batch_size,
                fuzzy_threshold=args.fuzzy_threshold,
            )
            job = await manager.enqueue(args.project_id, args.user_id, priority=args.priority, config=config)
            print("✅ Job queued" if job.status.value == "queued" else "✅ Job admitted")
        elif args.command == "status":
            job = await manager.get_job(args.job_id)
        else:
            cancellation_type = CancellationType.IMMEDIATE if args.immediate else CancellationType.GRACEFUL
            job = await manager.request_cancellation(args.job_id, cancellation_type, requested_by=args.requested_by)
            print("🛑 Cancellation requested")
        _print_job(job)
        return 0
    except ReconciliationError as e:
        print(f"❌ {e.message}")
        return 1
    finally:
        await pool.close()


def main():
    parser = argparse.ArgumentParser(description="Manage part matching jobs")
    sub = parser.add_subparsers(dest="command", required=True)

    enqueue = sub.add_parser("enqueue", help="Queue a matching job")
    enqueue.add_argument("--project-id", required=True)
    enqueue.add_argument("--user-id", required=True)
    enqueue.add_argument("--priority", type=int, default=0, help="Higher runs first (default: 0)")
    enqueue.add_argument(
        "--stages",
        nargs="+",
        choices=[s.value for s in StageName],
        help="Stages to run (default: interchange exact rules fuzzy)",
    )
    enqueue.add_argument("--batch-size", type=int)
    enqueue.add_argument("--fuzzy-threshold", type=float)

    status = sub.add_parser("status", help="Show a job")
    status.add_argument("job_id")

    cancel = sub.add_parser("cancel", help="Request cancellation of a job")
    cancel.add_argument("job_id")
    cancel.add_argument("--immediate", action="store_true", help="Stop at the next item, not the next batch")
    cancel.add_argument("--requested-by", default="cli")

    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
