"""Queue task definitions for the part reconciliation pipeline.

This module contains arq task functions for:
    - run_matching_job_task: Run an admitted matching job
    - learn_rules_task: Learn matching rules from review decisions
    - drain_queue_task: Admit queued jobs (cron safety net)
"""
from partmatch.tasks.matching_tasks import (
    MatchingMetrics,
    drain_queue_task,
    emit_metric,
    learn_rules_task,
    run_matching_job,
    run_matching_job_task,
)

__all__ = [
    "MatchingMetrics",
    "emit_metric",
    "run_matching_job",
    "run_matching_job_task",
    "learn_rules_task",
    "drain_queue_task",
]
