import argparse
import asyncio
import json
import logging
import sys
import uuid

from price_reducer.bootstrap import build_container
from price_reducer.exceptions import PriceReducerError, StoreUnavailableError
from price_reducer.jobs import purge_reduction_logs, run_listing_sync, run_reduction_cycle
from price_reducer.models import TriggerType
from price_reducer.settings import settings

# 로그 설정
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
)
logger = logging.getLogger("price_reducer.cli")


def run_reduction_command(args) -> int:
    container = build_container()
    summary = asyncio.run(
        run_reduction_cycle(
            container,
            dry_run=args.dry_run,
            limit=args.limit,
            force=args.force,
            trigger=TriggerType.MANUAL,
            triggered_by="cli",
        )
    )
    print(json.dumps(summary.to_dict(), ensure_ascii=False, indent=2))
    return 0 if summary.error_count == 0 else 2


def run_sync_command(args) -> int:
    account_id = uuid.UUID(args.account_id) if args.account_id else None
    result = asyncio.run(run_listing_sync(build_container(), account_id))
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0 if result["failed"] == 0 else 2


def purge_logs_command(args) -> int:
    deleted = asyncio.run(purge_reduction_logs(build_container(), args.days))
    logger.info(f"[CLI] Deleted {deleted} reduction log rows")
    return 0


def run_scheduler_command(args) -> int:
    from price_reducer.scheduler import create_scheduler

    async def _serve() -> None:
        scheduler = create_scheduler(settings)
        scheduler.start()
        logger.info("[CLI] Scheduler started. Press Ctrl+C to stop.")
        try:
            await asyncio.Event().wait()
        finally:
            scheduler.shutdown(wait=False)

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        logger.info("[CLI] Scheduler stopped")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="eBay price reducer operations CLI")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    reduction_parser = subparsers.add_parser("run-reduction", help="Run one price reduction cycle")
    reduction_parser.add_argument("--dry-run", action="store_true", help="계산만 하고 eBay/DB 는 변경하지 않음")
    reduction_parser.add_argument("--limit", type=int, default=None)
    reduction_parser.add_argument("--force", action="store_true", help="오늘 이미 실행했어도 다시 실행")

    sync_parser = subparsers.add_parser("run-sync", help="Sync listings from eBay")
    sync_parser.add_argument("--account-id", default=None)

    purge_parser = subparsers.add_parser("purge-logs", help="Delete old reduction logs")
    purge_parser.add_argument("--days", type=int, default=None)

    subparsers.add_parser("run-scheduler", help="Run the periodic job scheduler in the foreground")

    args = parser.parse_args(argv)

    commands = {
        "run-reduction": run_reduction_command,
        "run-sync": run_sync_command,
        "purge-logs": purge_logs_command,
        "run-scheduler": run_scheduler_command,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return

    try:
        sys.exit(handler(args))
    except StoreUnavailableError as e:
        logger.error(f"[CLI] Store unavailable: {e.message}")
        sys.exit(1)
    except PriceReducerError as e:
        logger.exception(f"[CLI] Critical error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
