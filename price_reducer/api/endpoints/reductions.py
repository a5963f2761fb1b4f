import logging

from fastapi import APIRouter, Depends, Query

from price_reducer.api.deps import get_container, verify_job_secret
from price_reducer.bootstrap import Container
from price_reducer.jobs import purge_reduction_logs, run_reduction_cycle
from price_reducer.models import TriggerType
from price_reducer.schemas.listing import CycleRunRequest

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/run", dependencies=[Depends(verify_job_secret)])
async def run_reductions(payload: CycleRunRequest | None = None, container: Container = Depends(get_container)) -> dict:
    """
    가격 인하 사이클 수동 실행.
    dryRun 이면 계산 결과(details)만 돌려주고 eBay/DB 는 변경하지 않습니다.
    """
    payload = payload or CycleRunRequest()
    logger.info(f"[API] Manual reduction run requested (dryRun={payload.dry_run}, limit={payload.limit}, force={payload.force})")
    summary = await run_reduction_cycle(
        container,
        dry_run=payload.dry_run,
        limit=payload.limit,
        force=payload.force,
        trigger=TriggerType.MANUAL,
        triggered_by="api",
    )
    return {"success": True, **summary.to_dict()}


@router.post("/purge", dependencies=[Depends(verify_job_secret)])
async def purge_logs(
    days: int | None = Query(default=None, ge=1),
    container: Container = Depends(get_container),
) -> dict:
    deleted = await purge_reduction_logs(container, days)
    return {"success": True, "deleted": deleted, "retentionDays": days or container.settings.log_retention_days}
