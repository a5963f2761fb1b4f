"""
가격 인하 사이클이 사용하는 저장소 인터페이스와 SQLAlchemy 구현.

사이클은 ListingStore 프로토콜에만 의존하므로 테스트에서는 대체 구현을 주입할 수 있습니다.
전략 필드 정규화도 여기(저장소 경계)에서 끝냅니다.
"""
import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, Iterator, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, selectinload

from price_reducer.clock import as_utc
from price_reducer.exceptions import ListingValidationError, StoreUnavailableError
from price_reducer.models import (
    ConnectionStatus,
    Listing,
    ListingProtocol,
    ListingStatus,
    MarketCredential,
    RunGuardState,
    SellerAccount,
)
from price_reducer.services.audit_logger import AuditEntry, AuditLogger
from price_reducer.services.listing_snapshot import ListingSnapshot
from price_reducer.services.pricing.strategy_normalizer import normalize_strategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialRecord:
    account_id: uuid.UUID
    refresh_token_encrypted: Optional[str]
    app_id: Optional[str]
    client_secret_encrypted: Optional[str]
    connection_status: str


class ListingStore(Protocol):
    def load_reduction_candidates(self) -> list[ListingSnapshot]: ...

    def get_vacation_account_ids(self, account_ids: Iterable[uuid.UUID]) -> set[uuid.UUID]: ...

    def get_credential(self, account_id: uuid.UUID) -> Optional[CredentialRecord]: ...

    def mark_disconnected(self, account_id: uuid.UUID, reason: str, now: datetime) -> None: ...

    def save_offer_id(self, listing_id: uuid.UUID, offer_id: str) -> None: ...

    def save_protocol(self, listing_id: uuid.UUID, protocol: ListingProtocol) -> None: ...

    def commit_reduction(
        self,
        listing_id: uuid.UUID,
        new_price: Decimal,
        now: datetime,
        next_reduction_at: Optional[datetime],
        entry: AuditEntry,
    ) -> bool: ...

    def mark_ended(self, listing_id: uuid.UUID, now: datetime) -> bool: ...

    def get_run_guard(self, job_type: str) -> Optional[str]: ...

    def set_run_guard(self, job_type: str, key: str, now: datetime) -> None: ...


class SqlListingStore:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        audit_logger: AuditLogger,
        default_reduction_percentage: Decimal = Decimal("2"),
    ):
        self._session_factory = session_factory
        self._audit_logger = audit_logger
        self._default_reduction_percentage = default_reduction_percentage

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Session]:
        try:
            with self._session_factory() as session:
                with session.begin():
                    yield session
        except OperationalError as e:
            logger.error(f"[STORE] {operation} failed: {e}")
            raise StoreUnavailableError(f"저장소에 접근할 수 없습니다 ({operation})", operation=operation) from e

    def _to_snapshot(self, row: Listing) -> ListingSnapshot:
        strategy = None
        strategy_error = None
        try:
            strategy = normalize_strategy(
                row.strategy if row.strategy is not None and row.strategy.is_active else None,
                listing_reduction_percentage=row.reduction_percentage,
                default_percentage=self._default_reduction_percentage,
            )
        except ListingValidationError as e:
            strategy_error = e

        try:
            protocol = ListingProtocol(row.protocol)
        except ValueError:
            protocol = ListingProtocol.UNCLASSIFIED

        return ListingSnapshot(
            id=row.id,
            account_id=row.account_id,
            ebay_item_id=row.ebay_item_id,
            sku=row.sku,
            offer_id=row.offer_id,
            protocol=protocol,
            title=row.title,
            current_price=row.current_price,
            minimum_price=row.minimum_price,
            reduction_enabled=bool(row.reduction_enabled),
            listing_status=row.listing_status,
            reduction_interval=row.reduction_interval,
            last_reduction_at=as_utc(row.last_reduction_at),
            next_reduction_at=as_utc(row.next_reduction_at),
            start_time=as_utc(row.start_time),
            quantity_available=row.quantity_available or 0,
            market_average_price=row.market_average_price,
            strategy=strategy,
            strategy_error=strategy_error,
        )

    def load_reduction_candidates(self) -> list[ListingSnapshot]:
        """자동 인하가 켜진 Active 리스팅 스냅샷 (사이클 시작 시 1회)"""
        with self._transaction("load_reduction_candidates") as session:
            rows = session.scalars(
                select(Listing)
                .options(selectinload(Listing.strategy))
                .where(Listing.reduction_enabled.is_(True))
                .where(Listing.listing_status == ListingStatus.ACTIVE.value)
                .order_by(Listing.account_id, Listing.created_at)
            ).all()
            return [self._to_snapshot(row) for row in rows]

    def get_vacation_account_ids(self, account_ids: Iterable[uuid.UUID]) -> set[uuid.UUID]:
        ids = list(account_ids)
        if not ids:
            return set()
        with self._transaction("get_vacation_account_ids") as session:
            rows = session.scalars(
                select(SellerAccount.id).where(SellerAccount.id.in_(ids)).where(SellerAccount.vacation_mode.is_(True))
            ).all()
            return set(rows)

    def get_credential(self, account_id: uuid.UUID) -> Optional[CredentialRecord]:
        with self._transaction("get_credential") as session:
            row = session.scalars(select(MarketCredential).where(MarketCredential.account_id == account_id)).first()
            if row is None:
                return None
            return CredentialRecord(
                account_id=row.account_id,
                refresh_token_encrypted=row.refresh_token_encrypted,
                app_id=row.app_id,
                client_secret_encrypted=row.client_secret_encrypted,
                connection_status=row.connection_status,
            )

    def mark_disconnected(self, account_id: uuid.UUID, reason: str, now: datetime) -> None:
        with self._transaction("mark_disconnected") as session:
            row = session.scalars(select(MarketCredential).where(MarketCredential.account_id == account_id)).first()
            if row is None:
                return
            row.connection_status = ConnectionStatus.DISCONNECTED.value
            row.disconnected_at = now
            row.last_error = reason[:500]
        logger.warning(f"[TOKEN] Account {account_id} marked disconnected: {reason}")

    def save_offer_id(self, listing_id: uuid.UUID, offer_id: str) -> None:
        with self._transaction("save_offer_id") as session:
            row = session.get(Listing, listing_id)
            if row is not None:
                row.offer_id = offer_id

    def save_protocol(self, listing_id: uuid.UUID, protocol: ListingProtocol) -> None:
        with self._transaction("save_protocol") as session:
            row = session.get(Listing, listing_id)
            if row is not None:
                row.protocol = protocol.value

    def commit_reduction(
        self,
        listing_id: uuid.UUID,
        new_price: Decimal,
        now: datetime,
        next_reduction_at: Optional[datetime],
        entry: AuditEntry,
    ) -> bool:
        """가격/타임스탬프 갱신과 감사 로그 기록을 한 트랜잭션으로 처리. 리스팅이 없으면 False."""
        with self._transaction("commit_reduction") as session:
            row = session.get(Listing, listing_id)
            if row is None:
                return False
            row.current_price = new_price
            row.last_reduction_at = now
            row.next_reduction_at = next_reduction_at
            row.total_reductions = (row.total_reductions or 0) + 1
            self._audit_logger.record(entry, session)
            return True

    def mark_ended(self, listing_id: uuid.UUID, now: datetime) -> bool:
        """Active 인 경우에만 Ended 로 전환. 전환했으면 True."""
        with self._transaction("mark_ended") as session:
            row = session.get(Listing, listing_id)
            if row is None or row.listing_status != ListingStatus.ACTIVE.value:
                return False
            row.listing_status = ListingStatus.ENDED.value
            row.ended_at = now
            return True

    def get_run_guard(self, job_type: str) -> Optional[str]:
        with self._transaction("get_run_guard") as session:
            row = session.get(RunGuardState, job_type)
            return row.last_completed_key if row else None

    def set_run_guard(self, job_type: str, key: str, now: datetime) -> None:
        with self._transaction("set_run_guard") as session:
            row = session.get(RunGuardState, job_type)
            if row is None:
                row = RunGuardState(job_type=job_type)
                session.add(row)
            row.last_completed_key = key
            row.completed_at = now
