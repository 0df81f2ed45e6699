"""Queue tasks for the part reconciliation pipeline.

This module implements the matching job runner and its arq entry points:
    - run_matching_job: Run one admitted job through the waterfall
    - run_matching_job_task: arq wrapper, dispatched by the queue manager
    - learn_rules_task: Turn reviewer decisions into matching rules
    - drain_queue_task: Cron safety net that admits queued jobs
"""
import time
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import structlog

from partmatch.config import matching_settings
from partmatch.errors import DatabaseError, ExternalStageError
from partmatch.interfaces import CandidateSink, CatalogReader, ExternalStage, RuleStore
from partmatch.models import (
    JobStatus,
    MatchCandidate,
    ReviewDecision,
    RuleScope,
    StageName,
    StoreItem,
)
from partmatch.services.job_queue import JobQueueManager
from partmatch.services.matching import FuzzyMatcher, MatchContext
from partmatch.services.pattern_detector import learn_from_decisions
from partmatch.services.pipeline import MatchingPipeline, PipelineResult

logger = structlog.get_logger(__name__)


# ============================================================================
# Observability Metrics Logging
# ============================================================================
# These functions emit structured log events that can be scraped by monitoring
# systems (e.g., Prometheus via mtail, Loki, or CloudWatch Logs Insights)

def emit_metric(metric_name: str, value: float, labels: Dict[str, str] = None) -> None:
    """Emit a metric event for observability.

    Args:
        metric_name: Name of the metric (e.g., "candidates_created_total")
        value: Numeric value of the metric
        labels: Optional labels/tags for the metric
    """
    labels = labels or {}
    logger.info(
        "metric",
        metric_name=metric_name,
        metric_value=value,
        **labels,
    )


def emit_candidates_created_total(count: int, method: str) -> None:
    emit_metric("candidates_created_total", count, {"method": method})


def emit_matching_duration_seconds(duration: float, status: str) -> None:
    emit_metric("matching_duration_seconds", duration, {"status": status})


def emit_items_processed_total(count: int, status: str) -> None:
    """Emit metric for total store items processed.

    Args:
        count: Number of items processed
        status: Final job status (completed, failed, cancelled)
    """
    emit_metric("items_processed_total", count, {"status": status})


@dataclass
class MatchingMetrics:
    """Metrics collected while running one matching job."""
    total_items: int = 0
    items_processed: int = 0
    batches_committed: int = 0
    candidates_proposed: int = 0
    candidates_created: int = 0
    by_method: Dict[str, int] = field(default_factory=dict)
    stages: PipelineResult = field(default_factory=PipelineResult)
    external_matched: int = 0
    external_errors: int = 0
    external_stages_skipped: List[str] = field(default_factory=list)
    cancelled: bool = False
    duration_seconds: float = 0.0

    def record_candidates(self, candidates: Sequence[MatchCandidate], inserted: int) -> None:
        self.candidates_proposed += len(candidates)
        self.candidates_created += inserted
        for candidate in candidates:
            method = candidate.method.value
            self.by_method[method] = self.by_method.get(method, 0) + 1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/response."""
        return {
            "total_items": self.total_items,
            "items_processed": self.items_processed,
            "batches_committed": self.batches_committed,
            "candidates_proposed": self.candidates_proposed,
            "candidates_created": self.candidates_created,
            "duplicates_skipped": self.candidates_proposed - self.candidates_created,
            "by_method": dict(self.by_method),
            "stages": self.stages.to_dict()["stages"],
            "external_matched": self.external_matched,
            "external_errors": self.external_errors,
            "external_stages_skipped": list(self.external_stages_skipped),
            "cancelled": self.cancelled,
            "duration_seconds": round(self.duration_seconds, 3),
        }


async def run_matching_job(
    job_id: str,
    manager: JobQueueManager,
    catalog: CatalogReader,
    candidates: CandidateSink,
    rule_store: Optional[RuleStore] = None,
    external_stages: Sequence[ExternalStage] = (),
) -> Dict[str, Any]:
    """Run an admitted (processing) job to a terminal state.

    This function:
    1. Loads unmatched store items, the supplier catalog, interchange table and rules
    2. Runs store items through the waterfall in batches, committing each batch
    3. Checks for IMMEDIATE cancellation before every item and for GRACEFUL
       cancellation after every committed batch
    4. Runs the external stages for still unresolved items, each under an
       external-stage slot
    5. Marks the job completed, cancelled or failed; every transition drains the queue

    Args:
        job_id: Job to run
        manager: Queue manager owning the job's state
        catalog: Catalog reader for the job's project
        candidates: Sink receiving the candidates of each batch
        rule_store: Source of matching rules (no rules when omitted)
        external_stages: Opened AI / web-search stages to run after the waterfall

    Returns:
        Dictionary with the final status and metrics

    Note:
        Catalog and sink failures are fatal: the job is marked failed and
        batches committed before the failure stay persisted.
    """
    start_time = time.time()
    metrics = MatchingMetrics()

    job = await manager.get_job(job_id)
    log = logger.bind(job_id=job_id, project_id=job.project_id)
    if job.status != JobStatus.PROCESSING:
        log.warning("matching_job_not_processing", status=job.status.value)
        return {"job_id": job_id, "status": "skipped", "job_status": job.status.value}

    log.info("matching_job_started", stages=[s.value for s in job.config.stages])

    try:
        store_items = await catalog.list_unmatched(job.project_id)
        supplier_items = await catalog.list_supplier_catalog(job.project_id)
        interchange_entries = []
        if StageName.INTERCHANGE in job.config.stages:
            interchange_entries = await catalog.list_interchange_entries(job.project_id)
        rules = await rule_store.list_rules(job.project_id) if rule_store is not None else []
        line_code_mappings = []
        if matching_settings.apply_line_code_mappings:
            line_code_mappings = await catalog.list_line_code_mappings(job.project_id)

        log.info(
            "matching_inputs_loaded",
            store_items=len(store_items),
            supplier_items=len(supplier_items),
            interchange_entries=len(interchange_entries),
            rules=len(rules),
            line_code_mappings=len(line_code_mappings),
        )

        pipeline = MatchingPipeline(job.config.stages)
        context = pipeline.build_context(
            job.project_id,
            supplier_items,
            interchange_entries,
            rules,
            fuzzy_threshold=job.config.fuzzy_threshold,
            max_candidates_per_item=job.config.max_candidates_per_item,
            line_code_mappings=line_code_mappings,
        )
        store_items = pipeline.map_line_codes(store_items, context)
        metrics.total_items = len(store_items)
        first_stage = pipeline.stages[0] if pipeline.stages else None
        await manager.update_progress(job_id, 0, total_items=len(store_items), stage=first_stage)

        batch_size = job.config.batch_size or matching_settings.batch_size
        metrics.cancelled = await _run_waterfall(
            job_id, store_items, batch_size, pipeline, context, manager, candidates, metrics, log
        )

        if not metrics.cancelled and external_stages:
            unresolved = [item for item in store_items if item.id not in context.already_matched_ids]
            metrics.cancelled = await _run_external_stages(
                job_id, unresolved, external_stages, context, manager, candidates, metrics, log
            )

        metrics.duration_seconds = time.time() - start_time
        if metrics.cancelled:
            await manager.mark_cancelled(job_id, metrics=metrics.to_dict())
            status = JobStatus.CANCELLED
        else:
            await manager.mark_completed(job_id, metrics=metrics.to_dict())
            status = JobStatus.COMPLETED

    except DatabaseError as e:
        metrics.duration_seconds = time.time() - start_time
        log.error(
            "matching_job_failed",
            error=e.message,
            error_type=type(e).__name__,
            **metrics.to_dict(),
        )
        await manager.mark_failed(job_id, e.message, metrics=metrics.to_dict())
        status = JobStatus.FAILED

    except Exception as e:
        metrics.duration_seconds = time.time() - start_time
        log.error(
            "matching_job_crashed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        await manager.mark_failed(job_id, f"{type(e).__name__}: {e}", metrics=metrics.to_dict())
        status = JobStatus.FAILED

    log.info("matching_job_finished", status=status.value, **metrics.to_dict())

    emit_matching_duration_seconds(metrics.duration_seconds, status.value)
    emit_items_processed_total(metrics.items_processed, status.value)
    for method, count in metrics.by_method.items():
        emit_candidates_created_total(count, method)

    return {
        "job_id": job_id,
        "status": status.value,
        **metrics.to_dict(),
    }


async def _run_waterfall(
    job_id: str,
    store_items: List[StoreItem],
    batch_size: int,
    pipeline: MatchingPipeline,
    context: MatchContext,
    manager: JobQueueManager,
    sink: CandidateSink,
    metrics: MatchingMetrics,
    log,
) -> bool:
    """Process store items batch by batch. Returns True when cancelled."""
    for offset in range(0, len(store_items), batch_size):
        batch = store_items[offset:offset + batch_size]
        batch_result = PipelineResult()
        stopped = False

        for item in batch:
            if await manager.should_stop(job_id, at_item_boundary=True):
                stopped = True
                break
            batch_result.merge(pipeline.match_item(item, context))
            metrics.items_processed += 1

        # Items already matched in this batch are committed even when stopping mid-batch.
        inserted = await sink.create_candidates(batch_result.candidates)
        metrics.record_candidates(batch_result.candidates, inserted)
        metrics.stages.merge(PipelineResult(stage_metrics=batch_result.stage_metrics))
        metrics.batches_committed += 1
        await manager.update_progress(job_id, metrics.items_processed)

        log.debug(
            "matching_batch_committed",
            batch=metrics.batches_committed,
            items=len(batch),
            candidates=len(batch_result.candidates),
            inserted=inserted,
            processed=metrics.items_processed,
        )

        if stopped:
            log.info("matching_job_stopped_immediately", processed=metrics.items_processed)
            return True
        if await manager.should_stop(job_id, at_item_boundary=False):
            log.info("matching_job_stopped_at_batch_boundary", processed=metrics.items_processed)
            return True
    return False


async def _run_external_stages(
    job_id: str,
    unresolved: List[StoreItem],
    stages: Sequence[ExternalStage],
    context: MatchContext,
    manager: JobQueueManager,
    sink: CandidateSink,
    metrics: MatchingMetrics,
    log,
) -> bool:
    """Offer unresolved items to each external stage. Returns True when cancelled."""
    pool_builder = FuzzyMatcher(max_candidates_per_item=context.max_candidates_per_item)

    for stage in stages:
        remaining = [item for item in unresolved if item.id not in context.already_matched_ids]
        if not remaining:
            break
        await manager.update_progress(job_id, metrics.items_processed, stage=stage.name)

        async with manager.external_slot(job_id) as acquired:
            if not acquired:
                metrics.external_stages_skipped.append(stage.name.value)
                log.warning("external_stage_skipped_no_slot", stage=stage.name.value)
                continue

            log.info("external_stage_started", stage=stage.name.value, items=len(remaining))
            for item in remaining:
                if await manager.should_stop(job_id, at_item_boundary=True):
                    return True
                if not item.canonical_part_number:
                    continue
                pool = pool_builder.build_candidate_pool(
                    item, context.supplier_index, pool_builder.max_candidates_per_item
                )
                try:
                    candidate = await stage.match(item, pool)
                except ExternalStageError as e:
                    metrics.external_errors += 1
                    log.warning(
                        "external_stage_item_failed",
                        stage=stage.name.value,
                        item_id=item.id,
                        error=e.message,
                    )
                    continue
                if candidate is None:
                    continue

                inserted = await sink.create_candidates([candidate])
                metrics.record_candidates([candidate], inserted)
                metrics.external_matched += 1
                context.already_matched_ids.add(item.id)

        if await manager.should_stop(job_id, at_item_boundary=False):
            return True
    return False


# ============================================================================
# arq entry points
# ============================================================================

def _manager(ctx: Dict[str, Any]) -> JobQueueManager:
    manager = ctx.get("manager")
    if manager is None:
        raise RuntimeError("Worker context has no job queue manager; check WorkerSettings.on_startup")
    return manager


async def run_matching_job_task(ctx: Dict[str, Any], job_id: str, **kwargs) -> Dict[str, Any]:
    """Run one matching job inside the arq worker.

    External stages requested by the job and enabled in configuration are
    opened for the duration of the run.

    Args:
        ctx: Worker context (manager, catalog, candidates, rule_store, stage_factory)
        job_id: Job admitted by the queue manager
    """
    manager = _manager(ctx)
    job = await manager.get_job(job_id)

    stage_factory = ctx.get("stage_factory")
    async with AsyncExitStack() as stack:
        stages = []
        if stage_factory is not None and job.config.uses_external_stages:
            for stage in stage_factory(job.config.stages):
                stages.append(await stack.enter_async_context(stage))
        return await run_matching_job(
            job_id,
            manager,
            catalog=ctx["catalog"],
            candidates=ctx["candidates"],
            rule_store=ctx.get("rule_store"),
            external_stages=stages,
        )


async def learn_rules_task(
    ctx: Dict[str, Any],
    decisions: List[Dict[str, Any]],
    scope: str = RuleScope.PROJECT.value,
    min_support: int = 2,
    created_by: str = "pattern_detector",
    **kwargs
) -> Dict[str, Any]:
    """Learn matching rules from a list of serialized review decisions."""
    start_time = time.time()
    log = logger.bind(decisions=len(decisions), scope=scope)
    log.info("learn_rules_task_started")

    parsed = [ReviewDecision.model_validate(d) for d in decisions]
    result = await learn_from_decisions(
        parsed,
        ctx["rule_store"],
        scope=RuleScope(scope),
        min_support=min_support,
        created_by=created_by,
    )

    duration = time.time() - start_time
    log.info(
        "learn_rules_task_completed",
        created=result.created,
        skipped=result.skipped,
        errors=result.errors,
        duration_seconds=round(duration, 3),
    )
    emit_metric("rules_created_total", result.created, {"scope": scope})
    return {
        "status": "success" if result.errors == 0 else "partial_success",
        **result.model_dump(),
    }


async def drain_queue_task(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Admit queued jobs that a missed drain left waiting."""
    started = await _manager(ctx).drain()
    if started:
        logger.info("drain_queue_task_started_jobs", job_ids=[j.id for j in started])
    return {"started": [j.id for j in started]}
