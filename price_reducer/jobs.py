"""
잡 진입점 모음 (스케줄러 / API / CLI 공용)

각 잡은 JobRunner 로 감싸서 job_runs 에 실행 이력을 남깁니다.
"""
import logging
import uuid
from typing import Any, Optional

from price_reducer.bootstrap import Container
from price_reducer.models import TriggerType
from price_reducer.services.job_runner import JobStats
from price_reducer.services.scheduling_guard import JOB_TYPE_PRICE_REDUCTION, CycleSummary

logger = logging.getLogger(__name__)

JOB_TYPE_LOG_PURGE = "log_purge"


async def run_reduction_cycle(
    container: Container,
    dry_run: bool = False,
    limit: Optional[int] = None,
    force: bool = False,
    trigger: TriggerType = TriggerType.SCHEDULED,
    triggered_by: Optional[str] = None,
) -> CycleSummary:
    guard = container.scheduling_guard()

    async def _job(stats: JobStats) -> CycleSummary:
        summary = await guard.run_cycle(
            dry_run=dry_run,
            limit=limit,
            trigger=trigger,
            force=force,
            triggered_by=triggered_by,
        )
        stats.read_count = summary.total_due
        stats.write_count = 0 if summary.dry_run else summary.processed
        stats.error_count = summary.error_count
        stats.meta.update({k: v for k, v in summary.to_dict().items() if k not in ("errors", "details")})
        return summary

    return await container.job_runner.run(
        JOB_TYPE_PRICE_REDUCTION,
        _job,
        meta={"dryRun": dry_run, "limit": limit, "force": force, "trigger": trigger.value},
    )


async def run_listing_sync(container: Container, account_id: Optional[uuid.UUID] = None) -> dict[str, Any]:
    """account_id 가 있으면 해당 계정만, 없으면 연결된 모든 계정 동기화"""
    sync = container.reconciliation_sync()
    targets = [account_id] if account_id is not None else None
    return await sync.sync_all(targets)


async def purge_reduction_logs(container: Container, days: Optional[int] = None) -> int:
    retention = days or container.settings.log_retention_days

    async def _job(stats: JobStats) -> int:
        deleted = container.audit_logger.purge_older_than(retention, container.clock.now())
        stats.write_count = deleted
        stats.meta["retentionDays"] = retention
        return deleted

    return await container.job_runner.run(JOB_TYPE_LOG_PURGE, _job, meta={"retentionDays": retention})
