"""
eBay 리스팅 동기화 (Reconciliation)

원격(eBay) 리스팅 상태를 로컬 listings 테이블에 반영합니다.
- 원격 소유 필드만 갱신: title, quantity, 상태(수량 0/종료), 이미지, URL, last_synced_at
- 엔진 소유 필드(current_price, minimum_price, strategy_id, reduction_enabled)는 절대 덮어쓰지 않음
- 한 번의 전체 풀(pass)에서 보이지 않은 Active 리스팅은 Ended 로 전환 (1회만)
- 실행 시간 한도에 가까워지면 페이지 단위로 멈추고 다음 실행에서 이어서 진행
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Iterable, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from price_reducer.clock import Clock, SystemClock
from price_reducer.exceptions import AuthError, NeedsReconnect, ProtocolError, StoreUnavailableError
from price_reducer.models import (
    ConnectionStatus,
    Listing,
    ListingProtocol,
    ListingStatus,
    MarketCredential,
    SellerAccount,
    SyncCursor,
)
from price_reducer.schemas.listing import RemoteListing
from price_reducer.services.job_runner import JobRunner, JobStats
from price_reducer.services.pricing.strategy_engine import round2
from price_reducer.services.protocol_router import ClientFactory
from price_reducer.services.token_broker import TokenBroker

logger = logging.getLogger(__name__)

JOB_TYPE_LISTING_SYNC = "listing_sync"
ENDED_REMOTE_STATUSES = {"ended", "completed", "inactive", "sold out", "out of stock"}
MIN_SEED_PRICE = Decimal("0.01")


@dataclass(frozen=True)
class SyncOutcome:
    inserted: int = 0
    updated: int = 0
    ended: int = 0
    truncated: bool = False

    def __add__(self, other: "SyncOutcome") -> "SyncOutcome":
        return SyncOutcome(
            inserted=self.inserted + other.inserted,
            updated=self.updated + other.updated,
            ended=self.ended + other.ended,
            truncated=self.truncated or other.truncated,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"inserted": self.inserted, "updated": self.updated, "ended": self.ended, "truncated": self.truncated}


def is_remote_ended(remote: RemoteListing) -> bool:
    if remote.status and remote.status.strip().lower() in ENDED_REMOTE_STATUSES:
        return True
    return remote.quantity_available is not None and remote.quantity_available <= 0


def new_listing_from_remote(account_id: uuid.UUID, remote: RemoteListing, now: datetime, minimum_ratio: Decimal) -> Listing:
    """첫 동기화로 생성되는 리스팅. 자동 인하는 꺼진 상태로 시작합니다."""
    price = remote.price if remote.price is not None and remote.price > 0 else MIN_SEED_PRICE
    ended = is_remote_ended(remote)
    return Listing(
        account_id=account_id,
        ebay_item_id=remote.ebay_item_id,
        sku=remote.sku,
        offer_id=remote.offer_id,
        protocol=remote.source,
        title=remote.title,
        quantity_available=remote.quantity_available or 0,
        quantity_sold=remote.quantity_sold,
        image_url=remote.image_url,
        listing_url=remote.listing_url,
        listing_status=ListingStatus.ENDED.value if ended else ListingStatus.ACTIVE.value,
        ended_at=now if ended else None,
        start_time=remote.start_time,
        last_synced_at=now,
        current_price=price,
        original_price=price,
        minimum_price=max(round2(price * minimum_ratio), MIN_SEED_PRICE),
        reduction_enabled=False,
        total_reductions=0,
    )


def merge_remote_fields(row: Listing, remote: RemoteListing, now: datetime) -> bool:
    """
    원격 소유 필드만 반영. 이번 호출로 Ended 가 되었으면 True.
    Ended -> Active 로 되돌리지는 않습니다.
    """
    if remote.title:
        row.title = remote.title
    if remote.quantity_available is not None:
        row.quantity_available = remote.quantity_available
    if remote.quantity_sold:
        row.quantity_sold = remote.quantity_sold
    if remote.image_url:
        row.image_url = remote.image_url
    if remote.listing_url:
        row.listing_url = remote.listing_url
    if row.start_time is None and remote.start_time is not None:
        row.start_time = remote.start_time

    # 비어 있는 식별자만 채움
    if not row.ebay_item_id and remote.ebay_item_id:
        row.ebay_item_id = remote.ebay_item_id
    if not row.sku and remote.sku:
        row.sku = remote.sku
    if not row.offer_id and remote.offer_id:
        row.offer_id = remote.offer_id
    if row.protocol == ListingProtocol.UNCLASSIFIED.value:
        row.protocol = remote.source

    if remote.price is not None and row.current_price is not None and Decimal(row.current_price) != remote.price:
        logger.warning(
            f"[SYNC] Price mismatch for {row.ebay_item_id or row.sku}: local=${row.current_price}, eBay=${remote.price} (local kept)"
        )

    row.last_synced_at = now

    if row.listing_status == ListingStatus.ACTIVE.value and is_remote_ended(remote):
        row.listing_status = ListingStatus.ENDED.value
        row.ended_at = now
        return True
    return False


class _Deadline:
    def __init__(self, budget: Optional[float], margin: float, monotonic: Callable[[], float]):
        self._budget = budget
        self._margin = margin
        self._monotonic = monotonic
        self._started = monotonic()

    def exhausted(self) -> bool:
        if self._budget is None:
            return False
        return self._monotonic() - self._started >= self._budget - self._margin


class ReconciliationSync:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        token_broker: TokenBroker,
        client_factory: ClientFactory,
        clock: Optional[Clock] = None,
        job_runner: Optional[JobRunner] = None,
        page_size: int = 200,
        legacy_page_delay_seconds: float = 0.5,
        modern_item_delay_seconds: float = 0.2,
        inter_tenant_delay_seconds: float = 1.0,
        default_minimum_ratio: Decimal = Decimal("0.70"),
        execution_budget_seconds: Optional[float] = None,
        safety_margin_seconds: float = 0.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._session_factory = session_factory
        self._token_broker = token_broker
        self._client_factory = client_factory
        self._clock = clock or SystemClock()
        self._job_runner = job_runner
        self._page_size = page_size
        self._legacy_page_delay = legacy_page_delay_seconds
        self._modern_item_delay = modern_item_delay_seconds
        self._inter_tenant_delay = inter_tenant_delay_seconds
        self._minimum_ratio = default_minimum_ratio
        self._budget = execution_budget_seconds
        self._safety_margin = safety_margin_seconds
        self._sleep = sleep
        self._monotonic = monotonic

    def _session(self) -> Session:
        return self._session_factory()

    def _run_in_transaction(self, operation: str, func: Callable[[Session], Any]) -> Any:
        try:
            with self._session() as session:
                with session.begin():
                    return func(session)
        except OperationalError as e:
            logger.error(f"[SYNC] {operation} failed: {e}")
            raise StoreUnavailableError(f"저장소에 접근할 수 없습니다 ({operation})", operation=operation) from e

    # --- cursor ---

    def _load_cursor(self, account_id: uuid.UUID, source: str) -> dict[str, Any]:
        def _load(session: Session) -> dict[str, Any]:
            row = session.scalars(
                select(SyncCursor).where(SyncCursor.account_id == account_id).where(SyncCursor.source == source)
            ).first()
            return dict(row.cursor or {}) if row else {}

        return self._run_in_transaction("load_cursor", _load)

    def _save_cursor(self, account_id: uuid.UUID, source: str, cursor: dict[str, Any]) -> None:
        def _save(session: Session) -> None:
            row = session.scalars(
                select(SyncCursor).where(SyncCursor.account_id == account_id).where(SyncCursor.source == source)
            ).first()
            if row is None:
                row = SyncCursor(account_id=account_id, source=source)
                session.add(row)
            row.cursor = cursor

        self._run_in_transaction("save_cursor", _save)

    def _start_or_resume_pass(self, account_id: uuid.UUID, source: str) -> tuple[int, datetime]:
        cursor = self._load_cursor(account_id, source)
        if cursor.get("next_page") and cursor.get("pass_started_at"):
            started = datetime.fromisoformat(cursor["pass_started_at"])
            logger.info(f"[SYNC] Resuming {source} pass for {account_id} at page {cursor['next_page']}")
            return int(cursor["next_page"]), started
        started = self._clock.now()
        return 1, started

    # --- apply ---

    def apply_remote_items(self, account_id: uuid.UUID, items: Iterable[RemoteListing]) -> SyncOutcome:
        """한 페이지 분량을 한 트랜잭션으로 반영 (페이지 단위로 durable)"""
        now = self._clock.now()

        def _apply(session: Session) -> SyncOutcome:
            inserted = updated = ended = 0
            for remote in items:
                row = self._find_existing(session, account_id, remote)
                if row is None:
                    row = new_listing_from_remote(account_id, remote, now, self._minimum_ratio)
                    session.add(row)
                    session.flush()
                    inserted += 1
                    continue
                if merge_remote_fields(row, remote, now):
                    ended += 1
                updated += 1
            return SyncOutcome(inserted=inserted, updated=updated, ended=ended)

        return self._run_in_transaction("apply_remote_items", _apply)

    @staticmethod
    def _find_existing(session: Session, account_id: uuid.UUID, remote: RemoteListing) -> Optional[Listing]:
        if remote.ebay_item_id:
            row = session.scalars(
                select(Listing).where(Listing.account_id == account_id).where(Listing.ebay_item_id == remote.ebay_item_id)
            ).first()
            if row is not None:
                return row
        if remote.sku:
            return session.scalars(
                select(Listing).where(Listing.account_id == account_id).where(Listing.sku == remote.sku)
            ).first()
        return None

    def end_missing_listings(self, account_id: uuid.UUID, source: str, pass_started_at: datetime) -> int:
        """이번 pass 에서 보이지 않은(last_synced_at < pass 시작) Active 리스팅을 Ended 로 전환"""
        now = self._clock.now()

        def _end(session: Session) -> int:
            result = session.execute(
                update(Listing)
                .where(Listing.account_id == account_id)
                .where(Listing.protocol == source)
                .where(Listing.listing_status == ListingStatus.ACTIVE.value)
                .where(or_(Listing.last_synced_at.is_(None), Listing.last_synced_at < pass_started_at))
                .values(listing_status=ListingStatus.ENDED.value, ended_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

        ended = self._run_in_transaction("end_missing_listings", _end)
        if ended:
            logger.info(f"[SYNC] Marked {ended} {source} listings as Ended for account {account_id} (not found on eBay)")
        return ended

    # --- pulls ---

    async def _pull_legacy(self, account_id: uuid.UUID, clients: Any, deadline: _Deadline) -> SyncOutcome:
        source = ListingProtocol.LEGACY.value
        page, pass_started_at = self._start_or_resume_pass(account_id, source)
        outcome = SyncOutcome()

        while True:
            if deadline.exhausted():
                self._save_cursor(account_id, source, {"next_page": page, "pass_started_at": pass_started_at.isoformat()})
                logger.warning(f"[SYNC] Legacy pull truncated at page {page} for account {account_id}")
                return outcome + SyncOutcome(truncated=True)

            result = await clients.legacy.get_my_ebay_selling(page, self._page_size)
            outcome = outcome + self.apply_remote_items(account_id, result.items)
            logger.info(f"[SYNC] Legacy page {page}/{result.total_pages}: {len(result.items)} listings")

            if not result.has_more:
                break
            page += 1
            self._save_cursor(account_id, source, {"next_page": page, "pass_started_at": pass_started_at.isoformat()})
            if self._legacy_page_delay > 0:
                await self._sleep(self._legacy_page_delay)

        ended = self.end_missing_listings(account_id, source, pass_started_at)
        self._save_cursor(account_id, source, {})
        return outcome + SyncOutcome(ended=ended)

    async def _pull_modern(self, account_id: uuid.UUID, clients: Any, deadline: _Deadline) -> SyncOutcome:
        source = ListingProtocol.MODERN.value
        page, pass_started_at = self._start_or_resume_pass(account_id, source)
        offset = (page - 1) * self._page_size
        outcome = SyncOutcome()

        while True:
            if deadline.exhausted():
                self._save_cursor(account_id, source, {"next_page": page, "pass_started_at": pass_started_at.isoformat()})
                logger.warning(f"[SYNC] Modern pull truncated at offset {offset} for account {account_id}")
                return outcome + SyncOutcome(truncated=True)

            items, total = await clients.modern.get_inventory_items(limit=self._page_size, offset=offset)
            remote_listings: list[RemoteListing] = []
            for item in items:
                sku = item.get("sku")
                if not sku:
                    continue
                offer = await clients.modern.get_offer_by_sku(sku)
                if offer:
                    remote_listings.append(clients.modern.to_remote_listing(item, offer))
                if self._modern_item_delay > 0:
                    await self._sleep(self._modern_item_delay)

            outcome = outcome + self.apply_remote_items(account_id, remote_listings)
            logger.info(f"[SYNC] Modern offset {offset}: {len(remote_listings)} listings with offers (total {total})")

            offset += self._page_size
            if not items or offset >= total:
                break
            page += 1
            self._save_cursor(account_id, source, {"next_page": page, "pass_started_at": pass_started_at.isoformat()})

        ended = self.end_missing_listings(account_id, source, pass_started_at)
        self._save_cursor(account_id, source, {})
        return outcome + SyncOutcome(ended=ended)

    def start_deadline(self) -> _Deadline:
        return _Deadline(self._budget, self._safety_margin, self._monotonic)

    async def sync(self, account_id: uuid.UUID, deadline: Optional[_Deadline] = None) -> SyncOutcome:
        """
        계정 하나의 전체 리스팅 동기화 (Legacy -> Modern 순).

        deadline 을 넘기면 호출자(sync_all)의 누적 실행 시간 예산을 공유합니다.

        Raises:
            NeedsReconnect / AuthError: 토큰 발급 실패
            ProtocolError: 원격 풀 실패 (이미 반영된 페이지는 유지)
        """
        token = await self._token_broker.get_access_token(account_id)
        clients = self._client_factory(token)
        deadline = deadline or self.start_deadline()

        outcome = await self._pull_legacy(account_id, clients, deadline)
        if outcome.truncated:
            return outcome
        outcome = outcome + await self._pull_modern(account_id, clients, deadline)

        logger.info(
            f"[SYNC] Account {account_id}: inserted={outcome.inserted}, updated={outcome.updated}, "
            f"ended={outcome.ended}, truncated={outcome.truncated}"
        )
        return outcome

    def _connected_account_ids(self) -> list[uuid.UUID]:
        def _load(session: Session) -> list[uuid.UUID]:
            return list(
                session.scalars(
                    select(SellerAccount.id)
                    .join(MarketCredential, MarketCredential.account_id == SellerAccount.id)
                    .where(SellerAccount.is_active.is_(True))
                    .where(MarketCredential.connection_status == ConnectionStatus.CONNECTED.value)
                    .where(MarketCredential.refresh_token_encrypted.is_not(None))
                    .order_by(SellerAccount.created_at)
                ).all()
            )

        return self._run_in_transaction("connected_account_ids", _load)

    async def _sync_recorded(self, account_id: uuid.UUID, deadline: _Deadline) -> SyncOutcome:
        if self._job_runner is None:
            return await self.sync(account_id, deadline)

        async def _job(stats: JobStats) -> SyncOutcome:
            outcome = await self.sync(account_id, deadline)
            stats.write_count = outcome.inserted + outcome.updated + outcome.ended
            stats.meta.update(outcome.to_dict())
            return outcome

        return await self._job_runner.run(JOB_TYPE_LISTING_SYNC, _job, account_id=account_id)

    async def sync_all(self, account_ids: Optional[list[uuid.UUID]] = None) -> dict[str, Any]:
        """
        연결된 모든 계정 동기화. 계정 단위 실패는 기록하고 다음 계정으로 진행.

        실행 시간 예산은 호출 전체에 누적 적용됩니다. 예산이 소진되면 남은 계정은
        시작하지 않고 notStarted 로 보고합니다 (다음 실행에서 커서부터 이어감).
        """
        targets = account_ids if account_ids is not None else self._connected_account_ids()
        results: dict[str, Any] = {
            "accounts": len(targets),
            "synced": 0,
            "failed": 0,
            "truncated": 0,
            "notStarted": 0,
            "results": [],
        }
        deadline = self.start_deadline()

        for index, account_id in enumerate(targets):
            if deadline.exhausted():
                remaining = targets[index:]
                logger.warning(f"[SYNC] Execution budget exhausted, {len(remaining)} accounts not started")
                results["notStarted"] = len(remaining)
                results["results"].extend({"accountId": str(pending), "notStarted": True} for pending in remaining)
                break
            if index > 0 and self._inter_tenant_delay > 0:
                await self._sleep(self._inter_tenant_delay)
            try:
                outcome = await self._sync_recorded(account_id, deadline)
            except NeedsReconnect as e:
                logger.warning(f"[SYNC] Account {account_id} needs reconnect: {e.message}")
                results["failed"] += 1
                results["results"].append({"accountId": str(account_id), "error": e.message, "kind": "needs_reconnect"})
                continue
            except (AuthError, ProtocolError) as e:
                logger.error(f"[SYNC] Account {account_id} sync failed: {e}")
                results["failed"] += 1
                results["results"].append({"accountId": str(account_id), "error": str(e)})
                continue

            results["synced"] += 1
            if outcome.truncated:
                results["truncated"] += 1
            results["results"].append({"accountId": str(account_id), **outcome.to_dict()})

        logger.info(f"[SYNC] Sync finished: {results['synced']} synced, {results['failed']} failed")
        return results
