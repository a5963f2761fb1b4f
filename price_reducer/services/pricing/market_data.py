from decimal import Decimal
from typing import Any, Optional, Protocol

from price_reducer.services.pricing.strategy_engine import to_decimal


class MarketDataProvider(Protocol):
    def average_price(self, listing: Any) -> Optional[Decimal]: ...


class ListingMarketData:
    """경쟁가 분석 결과로 저장된 listings.market_average_price 를 사용"""

    def average_price(self, listing: Any) -> Optional[Decimal]:
        value = to_decimal(getattr(listing, "market_average_price", None))
        if value is None or not value.is_finite() or value <= 0:
            return None
        return value
