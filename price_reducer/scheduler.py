"""
APScheduler 기반 주기 작업

- 가격 인하: 매일 업무 시간대(business_timezone) 기준 지정 시각
- 리스팅 동기화: N 시간 간격
- 인하 로그 정리: 매일 1회
"""
import logging
from typing import Optional

import pytz
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from price_reducer.bootstrap import build_container
from price_reducer.exceptions import PriceReducerError
from price_reducer.jobs import purge_reduction_logs, run_listing_sync, run_reduction_cycle
from price_reducer.models import TriggerType
from price_reducer.settings import Settings, settings as default_settings

logging.getLogger("apscheduler").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

REDUCTION_JOB_ID = "price_reduction_daily"
SYNC_JOB_ID = "listing_sync_interval"
PURGE_JOB_ID = "reduction_log_purge"


async def scheduled_reduction() -> None:
    container = build_container()
    try:
        summary = await run_reduction_cycle(container, trigger=TriggerType.SCHEDULED, triggered_by="scheduler")
    except PriceReducerError as e:
        logger.error(f"[SCHEDULER] Price reduction job failed: {e.message}")
        return
    logger.info(f"[SCHEDULER] Price reduction finished: {summary.to_dict()}")


async def scheduled_sync() -> None:
    container = build_container()
    try:
        result = await run_listing_sync(container)
    except PriceReducerError as e:
        logger.error(f"[SCHEDULER] Listing sync job failed: {e.message}")
        return
    logger.info(f"[SCHEDULER] Listing sync finished: {result['synced']} synced, {result['failed']} failed")


async def scheduled_purge() -> None:
    container = build_container()
    try:
        deleted = await purge_reduction_logs(container)
    except PriceReducerError as e:
        logger.error(f"[SCHEDULER] Log purge job failed: {e.message}")
        return
    logger.info(f"[SCHEDULER] Purged {deleted} reduction log rows")


def create_scheduler(cfg: Optional[Settings] = None) -> AsyncIOScheduler:
    cfg = cfg or default_settings
    tz = pytz.timezone(cfg.business_timezone)
    scheduler = AsyncIOScheduler(executors={"default": AsyncIOExecutor()}, timezone=tz)

    scheduler.add_job(
        scheduled_reduction,
        CronTrigger(hour=cfg.reduction_schedule_hour, minute=cfg.reduction_schedule_minute, timezone=tz),
        id=REDUCTION_JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.add_job(
        scheduled_sync,
        IntervalTrigger(hours=cfg.sync_interval_hours, timezone=tz),
        id=SYNC_JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.add_job(
        scheduled_purge,
        CronTrigger(hour=cfg.purge_schedule_hour, minute=0, timezone=tz),
        id=PURGE_JOB_ID,
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    logger.info(
        f"[SCHEDULER] Reduction at {cfg.reduction_schedule_hour:02d}:{cfg.reduction_schedule_minute:02d} "
        f"{cfg.business_timezone}, sync every {cfg.sync_interval_hours}h, purge at {cfg.purge_schedule_hour:02d}:00"
    )
    return scheduler
