import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from price_reducer.exceptions import ListingValidationError
from price_reducer.models import ListingProtocol
from price_reducer.services.pricing.strategy_engine import Strategy


@dataclass(frozen=True)
class ListingSnapshot:
    """
    사이클 시작 시점에 읽은 리스팅 상태 (read-only).
    사이클 도중 재조회하지 않습니다.
    """
    id: uuid.UUID
    account_id: uuid.UUID
    ebay_item_id: Optional[str]
    sku: Optional[str]
    offer_id: Optional[str]
    protocol: ListingProtocol
    title: Optional[str]
    current_price: Decimal
    minimum_price: Optional[Decimal]
    reduction_enabled: bool
    listing_status: str
    reduction_interval: Optional[int] = None
    last_reduction_at: Optional[datetime] = None
    next_reduction_at: Optional[datetime] = None
    start_time: Optional[datetime] = None
    quantity_available: int = 0
    market_average_price: Optional[Decimal] = None
    strategy: Optional[Strategy] = None
    strategy_error: Optional[ListingValidationError] = None
