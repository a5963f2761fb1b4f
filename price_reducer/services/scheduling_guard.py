"""
가격 인하 사이클 (Scheduling Guard)

인하 대상 리스팅을 골라 계정별로 묶고, 계정마다 토큰을 한 번 발급받아 순차 처리합니다.
- 업무 시간대 기준 하루 1회만 실행 (run_guard_state)
- 리스팅 단위 실패는 기록만 하고 계속 진행
- NeedsReconnect 는 해당 계정만 중단
- dry_run 이면 계산 결과만 돌려주고 원격 호출/DB 변경 없음
"""
import asyncio
import enum
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from price_reducer.clock import Clock, SystemClock, as_utc, business_date_key
from price_reducer.exceptions import AuthError, ErrorKind, NeedsReconnect, ProtocolError, error_kind_of
from price_reducer.models import ListingStatus, TriggerType
from price_reducer.services.audit_logger import AuditEntry
from price_reducer.services.listing_snapshot import ListingSnapshot
from price_reducer.services.listing_store import ListingStore
from price_reducer.services.pricing.market_data import ListingMarketData, MarketDataProvider
from price_reducer.services.pricing.strategy_engine import (
    DEFAULT_FALLBACK_FLOOR,
    StrategyType,
    compute_next_price,
    round2,
    to_decimal,
)
from price_reducer.services.protocol_router import ProtocolRouter
from price_reducer.services.token_broker import TokenBroker

logger = logging.getLogger(__name__)

JOB_TYPE_PRICE_REDUCTION = "price_reduction"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ItemStatus(str, enum.Enum):
    REDUCED = "reduced"
    DRY_RUN = "dry_run"
    SKIPPED = "skipped"
    ENDED = "ended"
    FAILED = "failed"


@dataclass(frozen=True)
class ItemOutcome:
    listing_id: uuid.UUID
    status: ItemStatus
    account_id: Optional[uuid.UUID] = None
    ebay_item_id: Optional[str] = None
    sku: Optional[str] = None
    title: Optional[str] = None
    old_price: Optional[Decimal] = None
    new_price: Optional[Decimal] = None
    reason: Optional[str] = None
    kind: Optional[ErrorKind] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "listingId": str(self.listing_id),
            "itemId": self.ebay_item_id,
            "sku": self.sku,
            "title": self.title,
            "status": self.status.value,
            "oldPrice": float(self.old_price) if self.old_price is not None else None,
            "newPrice": float(self.new_price) if self.new_price is not None else None,
            "reason": self.reason,
            "kind": self.kind.value if self.kind else None,
        }


@dataclass
class CycleSummary:
    business_date: str
    dry_run: bool = False
    already_ran: bool = False
    truncated: bool = False
    total_enabled: int = 0
    total_due: int = 0
    processed: int = 0
    skipped: int = 0
    vacation_skipped: int = 0
    ended: int = 0
    error_count: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    details: list[dict[str, Any]] = field(default_factory=list)
    error_cap: int = 20

    def add_error(self, error: dict[str, Any]) -> None:
        self.error_count += 1
        if len(self.errors) < self.error_cap:
            self.errors.append(error)

    def record(self, outcome: ItemOutcome) -> None:
        if outcome.status in (ItemStatus.REDUCED, ItemStatus.DRY_RUN):
            self.processed += 1
        elif outcome.status == ItemStatus.SKIPPED:
            self.skipped += 1
        elif outcome.status == ItemStatus.ENDED:
            self.ended += 1
        else:
            self.add_error(outcome.to_dict())

        if self.dry_run:
            self.details.append(outcome.to_dict())

    def to_dict(self) -> dict[str, Any]:
        result = {
            "businessDate": self.business_date,
            "dryRun": self.dry_run,
            "alreadyRan": self.already_ran,
            "truncated": self.truncated,
            "totalEnabled": self.total_enabled,
            "totalDue": self.total_due,
            "processed": self.processed,
            "skipped": self.skipped,
            "vacationSkipped": self.vacation_skipped,
            "ended": self.ended,
            "errorCount": self.error_count,
            "errors": self.errors,
        }
        if self.dry_run:
            result["details"] = self.details
        return result


def is_due_for_reduction(listing: ListingSnapshot, now: datetime, default_interval_hours: int = 24) -> bool:
    """
    인하 대상 여부.
    reduction_enabled AND Active AND current > minimum AND 마지막 인하 후 interval 시간 경과
    """
    if not listing.reduction_enabled:
        return False
    if listing.listing_status != ListingStatus.ACTIVE.value:
        return False

    current = to_decimal(listing.current_price)
    if current is None or not current.is_finite():
        return False
    minimum = to_decimal(listing.minimum_price)
    if minimum is not None and minimum.is_finite() and current <= minimum:
        return False

    # 0 은 "매 사이클 대상" 으로 취급, 값이 없을 때만 기본 간격
    interval_hours = default_interval_hours if listing.reduction_interval is None else listing.reduction_interval
    last = as_utc(listing.last_reduction_at) or EPOCH
    hours_since = (as_utc(now) - last).total_seconds() / 3600
    return hours_since >= interval_hours


class SchedulingGuard:
    def __init__(
        self,
        store: ListingStore,
        token_broker: TokenBroker,
        router: ProtocolRouter,
        clock: Optional[Clock] = None,
        market_data: Optional[MarketDataProvider] = None,
        business_timezone: str = "America/Chicago",
        inter_tenant_delay_seconds: float = 1.0,
        default_interval_hours: int = 24,
        fallback_floor: Decimal = DEFAULT_FALLBACK_FLOOR,
        error_cap: int = 20,
        execution_budget_seconds: Optional[float] = None,
        safety_margin_seconds: float = 0.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._token_broker = token_broker
        self._router = router
        self._clock = clock or SystemClock()
        self._market_data = market_data or ListingMarketData()
        self._business_timezone = business_timezone
        self._inter_tenant_delay = inter_tenant_delay_seconds
        self._default_interval_hours = default_interval_hours
        self._fallback_floor = fallback_floor
        self._error_cap = error_cap
        self._budget = execution_budget_seconds
        self._safety_margin = safety_margin_seconds
        self._sleep = sleep
        self._monotonic = monotonic
        self._started_at = 0.0

    def _budget_exhausted(self) -> bool:
        if self._budget is None:
            return False
        return self._monotonic() - self._started_at >= self._budget - self._safety_margin

    async def run_cycle(
        self,
        dry_run: bool = False,
        limit: Optional[int] = None,
        trigger: TriggerType = TriggerType.SCHEDULED,
        force: bool = False,
        triggered_by: Optional[str] = None,
    ) -> CycleSummary:
        """
        가격 인하 사이클 1회 실행.

        Args:
            dry_run: True 면 계산만 수행 (원격 호출, DB 변경, 실행 가드 갱신 없음)
            limit: 처리할 due 리스팅 최대 수
            trigger: 감사 로그에 남길 실행 유형
            force: 오늘 이미 실행했어도 다시 실행 (수동 실행 전용)

        Returns:
            CycleSummary. StoreUnavailableError 외의 오류는 요약에만 담깁니다.
        """
        self._started_at = self._monotonic()
        now = self._clock.now()
        business_date = business_date_key(now, self._business_timezone)
        summary = CycleSummary(business_date=business_date, dry_run=dry_run, error_cap=self._error_cap)
        prefix = "[DRY RUN] " if dry_run else ""

        if not dry_run and not force:
            if self._store.get_run_guard(JOB_TYPE_PRICE_REDUCTION) == business_date:
                logger.info(f"[REDUCTION] Cycle for {business_date} already completed, skipping")
                summary.already_ran = True
                return summary

        logger.info(f"{prefix}[REDUCTION] 가격 인하 사이클 시작 ({business_date}, trigger={trigger.value})")

        candidates = self._store.load_reduction_candidates()
        due = [c for c in candidates if is_due_for_reduction(c, now, self._default_interval_hours)]
        summary.total_enabled = len(candidates)
        summary.total_due = len(due)
        vacation_accounts = self._store.get_vacation_account_ids({listing.account_id for listing in due})
        if vacation_accounts:
            logger.info(f"[REDUCTION] Skipping {len(vacation_accounts)} account(s) in vacation mode")
            due = [listing for listing in due if listing.account_id not in vacation_accounts]
            summary.vacation_skipped = len(vacation_accounts)

        # limit 은 실제로 처리할 리스팅 수 (휴가 계정 제외 후)
        if limit is not None:
            due = due[:limit]

        by_account: dict[uuid.UUID, list[ListingSnapshot]] = {}
        for listing in due:
            by_account.setdefault(listing.account_id, []).append(listing)

        for index, (account_id, listings) in enumerate(by_account.items()):
            if index > 0 and self._inter_tenant_delay > 0:
                await self._sleep(self._inter_tenant_delay)
            if self._budget_exhausted():
                summary.truncated = True
                break

            token = None
            if not dry_run:
                token = await self._issue_token(account_id, summary)
                if token is None:
                    continue

            for listing in listings:
                if self._budget_exhausted():
                    summary.truncated = True
                    break
                outcome = await self._process_listing(listing, token, dry_run, trigger, triggered_by)
                summary.record(outcome)

            if summary.truncated:
                logger.warning("[REDUCTION] Execution budget nearly exhausted, stopping early")
                break

        if not dry_run and not summary.truncated:
            self._store.set_run_guard(JOB_TYPE_PRICE_REDUCTION, business_date, self._clock.now())

        logger.info(
            f"{prefix}[REDUCTION] 사이클 완료: due={summary.total_due}, processed={summary.processed}, "
            f"skipped={summary.skipped}, ended={summary.ended}, errors={summary.error_count}"
        )
        return summary

    async def _issue_token(self, account_id: uuid.UUID, summary: CycleSummary) -> Optional[str]:
        """계정 토큰 발급. 실패하면 요약에 계정 단위 오류를 남기고 None."""
        try:
            return await self._token_broker.get_access_token(account_id)
        except NeedsReconnect as e:
            logger.warning(f"[REDUCTION] Account {account_id} needs reconnect, skipping its listings: {e.message}")
            summary.add_error({"accountId": str(account_id), "kind": ErrorKind.NEEDS_RECONNECT.value, "reason": e.message})
        except (AuthError, ProtocolError) as e:
            logger.error(f"[REDUCTION] Token issue failed for account {account_id}: {e}")
            summary.add_error({"accountId": str(account_id), "kind": error_kind_of(e).value, "reason": str(e)})
        return None

    async def _process_listing(
        self,
        listing: ListingSnapshot,
        token: Optional[str],
        dry_run: bool,
        trigger: TriggerType,
        triggered_by: Optional[str],
    ) -> ItemOutcome:
        base = dict(
            listing_id=listing.id,
            account_id=listing.account_id,
            ebay_item_id=listing.ebay_item_id,
            sku=listing.sku,
            title=listing.title,
            old_price=listing.current_price,
        )

        if listing.strategy_error is not None or listing.strategy is None:
            message = listing.strategy_error.message if listing.strategy_error else "전략 정보가 없습니다"
            return ItemOutcome(status=ItemStatus.FAILED, kind=ErrorKind.VALIDATION, reason=message, **base)

        now = self._clock.now()
        market_average = None
        if listing.strategy.strategy_type == StrategyType.MARKET_BASED:
            market_average = self._market_data.average_price(listing)

        computation = compute_next_price(listing, listing.strategy, now, market_average, self._fallback_floor)
        if computation.error is not None:
            return ItemOutcome(
                status=ItemStatus.FAILED,
                kind=error_kind_of(computation.error),
                reason=computation.error.message,
                **base,
            )
        if computation.skipped:
            return ItemOutcome(status=ItemStatus.SKIPPED, reason=computation.reason, new_price=computation.new_price, **base)

        new_price = computation.new_price
        if dry_run:
            return ItemOutcome(status=ItemStatus.DRY_RUN, new_price=new_price, reason=listing.strategy.strategy_type.value, **base)

        route = await self._router.update_price(listing, new_price, token)
        if not route.ok:
            if route.not_found:
                self._store.mark_ended(listing.id, now)
                logger.info(f"[REDUCTION] Listing {listing.id} no longer exists remotely, marked Ended")
                return ItemOutcome(status=ItemStatus.ENDED, reason=route.error.message, **base)
            return ItemOutcome(
                status=ItemStatus.FAILED,
                kind=error_kind_of(route.error),
                reason=str(route.error),
                new_price=new_price,
                **base,
            )

        interval_hours = listing.reduction_interval or self._default_interval_hours
        current = to_decimal(listing.current_price)
        entry = AuditEntry(
            account_id=listing.account_id,
            listing_id=listing.id,
            ebay_item_id=listing.ebay_item_id,
            sku=listing.sku,
            title=listing.title,
            original_price=current,
            reduced_price=new_price,
            reduction_amount=computation.reduction_applied,
            reduction_percentage=round2(computation.reduction_applied / current * Decimal(100)),
            trigger_type=trigger.value,
            strategy_type=listing.strategy.strategy_type.value,
            strategy_name=listing.strategy.name,
            strategy_id=listing.strategy.strategy_id,
            protocol=route.protocol.value if route.protocol else None,
            triggered_by=triggered_by,
            created_at=now,
        )
        committed = self._store.commit_reduction(listing.id, new_price, now, now + timedelta(hours=interval_hours), entry)
        if not committed:
            logger.error(f"[REDUCTION] Listing {listing.id} updated remotely but missing locally")
            return ItemOutcome(
                status=ItemStatus.FAILED,
                kind=ErrorKind.VALIDATION,
                reason="원격 가격은 변경되었으나 로컬 리스팅을 찾을 수 없습니다",
                new_price=new_price,
                **base,
            )

        logger.info(f"[REDUCTION] {listing.ebay_item_id or listing.sku}: ${current} -> ${new_price}")
        return ItemOutcome(status=ItemStatus.REDUCED, new_price=new_price, **base)
