import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import delete
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from price_reducer.exceptions import StoreUnavailableError
from price_reducer.models import PriceReductionLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEntry:
    account_id: uuid.UUID
    listing_id: uuid.UUID
    original_price: Decimal
    reduced_price: Decimal
    reduction_amount: Decimal
    trigger_type: str
    created_at: datetime
    ebay_item_id: Optional[str] = None
    sku: Optional[str] = None
    title: Optional[str] = None
    reduction_percentage: Optional[Decimal] = None
    strategy_type: Optional[str] = None
    strategy_name: Optional[str] = None
    strategy_id: Optional[uuid.UUID] = None
    protocol: Optional[str] = None
    triggered_by: Optional[str] = None


class AuditLogger:
    """
    가격 변경 감사 로그.
    record() 는 원격 반영 + 로컬 가격 갱신과 같은 트랜잭션에서만 호출됩니다.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def record(self, entry: AuditEntry, session: Session) -> PriceReductionLog:
        row = PriceReductionLog(
            account_id=entry.account_id,
            listing_id=entry.listing_id,
            ebay_item_id=entry.ebay_item_id,
            sku=entry.sku,
            title=entry.title,
            original_price=entry.original_price,
            reduced_price=entry.reduced_price,
            reduction_amount=entry.reduction_amount,
            reduction_percentage=entry.reduction_percentage,
            trigger_type=entry.trigger_type,
            strategy_type=entry.strategy_type,
            strategy_name=entry.strategy_name,
            strategy_id=entry.strategy_id,
            protocol=entry.protocol,
            triggered_by=entry.triggered_by,
            created_at=entry.created_at,
        )
        session.add(row)
        logger.debug(f"[AUDIT] {entry.listing_id}: {entry.original_price} -> {entry.reduced_price} ({entry.trigger_type})")
        return row

    def purge_older_than(self, days: int, now: datetime) -> int:
        """보관 기간(days)이 지난 로그 삭제. 삭제 건수 반환."""
        cutoff = now - timedelta(days=days)
        try:
            with self._session_factory() as session:
                with session.begin():
                    result = session.execute(delete(PriceReductionLog).where(PriceReductionLog.created_at < cutoff))
                    deleted = result.rowcount or 0
        except OperationalError as e:
            raise StoreUnavailableError(f"감사 로그 정리 실패: {e}", operation="purge_audit_log") from e

        logger.info(f"[AUDIT] Purged {deleted} price reduction logs older than {days} days (cutoff {cutoff.isoformat()})")
        return deleted
