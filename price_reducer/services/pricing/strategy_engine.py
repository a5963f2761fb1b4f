"""
가격 인하 전략 엔진

리스팅 스냅샷과 정규화된 Strategy 로 다음 가격을 계산합니다.
I/O 없는 순수 함수이며, 오류도 예외 대신 PriceComputation.error 로 돌려줍니다.
"""
import enum
import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from price_reducer.clock import as_utc
from price_reducer.exceptions import InvariantViolation, ListingValidationError, PriceReducerError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
DEFAULT_FALLBACK_FLOOR = Decimal("0.99")
MARKET_DISCOUNT = Decimal("0.95")  # 시장 평균가 대비 5% 낮게
TIME_FACTOR_CAP = Decimal("2")

SKIP_AT_MINIMUM = "At or below minimum price"
SKIP_NO_REDUCTION = "No reduction"


class StrategyType(str, enum.Enum):
    PERCENTAGE = "percentage"
    DOLLAR = "dollar"
    MARKET_BASED = "market_based"
    TIME_BASED = "time_based"


@dataclass(frozen=True)
class Strategy:
    """사이클 동안 변경되지 않는 정규화된 전략 값 객체"""
    strategy_type: StrategyType
    value: Decimal
    floor: Optional[Decimal] = None
    name: Optional[str] = None
    strategy_id: Optional[uuid.UUID] = None


@dataclass(frozen=True)
class PriceComputation:
    new_price: Optional[Decimal]
    reduction_applied: Decimal
    skipped: bool = False
    reason: Optional[str] = None
    raw_price: Optional[Decimal] = None
    effective_minimum: Optional[Decimal] = None
    error: Optional[PriceReducerError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def will_reduce(self) -> bool:
        return self.error is None and not self.skipped


def round2(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: Any) -> Optional[Decimal]:
    """숫자/문자열을 Decimal 로 변환. 변환 불가하면 None."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return Decimal("NaN")
        return Decimal(str(value))
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None


def resolve_minimum_price(minimum_price: Any, fallback_floor: Decimal = DEFAULT_FALLBACK_FLOOR, listing_ref: Any = None) -> Decimal:
    """
    최저가 결정.
    - 누락 또는 0 이하: 안전 하한(fallback_floor)으로 대체하고 경고 로그
    - NaN/Infinity/숫자 아님: ListingValidationError
    """
    minimum = to_decimal(minimum_price)
    if minimum_price is not None and (minimum is None or not minimum.is_finite()):
        raise ListingValidationError(
            f"최저가 값이 올바르지 않습니다: {minimum_price}",
            field="minimum_price",
            actual_value=minimum_price,
        )
    if minimum is None or minimum <= 0:
        logger.warning(
            f"[REDUCTION] Listing {listing_ref}: invalid minimum price ({minimum_price}), using fallback floor {fallback_floor}"
        )
        return fallback_floor
    return minimum


def days_listed(start_time: Optional[datetime], now: datetime) -> int:
    if start_time is None:
        return 0
    elapsed = (as_utc(now) - as_utc(start_time)).total_seconds() / 86400
    return max(0, math.ceil(elapsed))


def time_based_factor(days: int) -> Decimal:
    """등록 30일마다 0.5씩 증가, 최대 2배"""
    factor = Decimal(1) + (Decimal(days) / Decimal(30)) * Decimal("0.5")
    return min(factor, TIME_FACTOR_CAP)


def _percentage_price(current: Decimal, percent: Decimal) -> Decimal:
    return round2(current * (Decimal(1) - percent / Decimal(100)))


def _raw_price(
    current: Decimal,
    strategy: Strategy,
    start_time: Optional[datetime],
    now: datetime,
    market_average: Optional[Decimal],
) -> Decimal:
    value = strategy.value
    if strategy.strategy_type == StrategyType.PERCENTAGE:
        return _percentage_price(current, value)
    if strategy.strategy_type == StrategyType.DOLLAR:
        return round2(current - value)
    if strategy.strategy_type == StrategyType.TIME_BASED:
        factor = time_based_factor(days_listed(start_time, now))
        return round2(current * (Decimal(1) - (value / Decimal(100)) * factor))
    if strategy.strategy_type == StrategyType.MARKET_BASED:
        percentage_price = _percentage_price(current, value)
        if market_average is None or not market_average.is_finite() or market_average <= 0:
            # 시장 데이터가 없으면 percentage 로 대체
            return percentage_price
        return min(round2(market_average * MARKET_DISCOUNT), percentage_price)
    raise ListingValidationError(
        f"알 수 없는 전략 유형입니다: {strategy.strategy_type}",
        field="strategy_type",
        actual_value=strategy.strategy_type,
    )


def compute_next_price(
    listing: Any,
    strategy: Strategy,
    now: datetime,
    market_average: Optional[Decimal] = None,
    fallback_floor: Decimal = DEFAULT_FALLBACK_FLOOR,
) -> PriceComputation:
    """
    다음 인하 가격 계산.

    Args:
        listing: current_price, minimum_price, start_time 속성을 가진 객체 (ListingSnapshot)
        strategy: 정규화된 Strategy
        now: 기준 시각 (TimeBased 계산용)
        market_average: MarketBased 용 시장 평균가

    Returns:
        PriceComputation. new_price 는 항상 effective_minimum 이상.
    """
    listing_ref = getattr(listing, "id", None)
    try:
        current = to_decimal(listing.current_price)
        if current is None or not current.is_finite() or current <= 0:
            raise ListingValidationError(
                f"현재가가 올바르지 않습니다: {listing.current_price}",
                field="current_price",
                actual_value=listing.current_price,
            )
        if not strategy.value.is_finite() or strategy.value < 0:
            raise ListingValidationError(
                f"전략 인하 값이 올바르지 않습니다: {strategy.value}",
                field="value",
                actual_value=strategy.value,
            )

        minimum = resolve_minimum_price(listing.minimum_price, fallback_floor, listing_ref)
        if strategy.floor is not None and strategy.floor.is_finite() and strategy.floor > minimum:
            minimum = strategy.floor

        if current <= minimum:
            return PriceComputation(
                new_price=current,
                reduction_applied=Decimal("0.00"),
                skipped=True,
                reason=SKIP_AT_MINIMUM,
                effective_minimum=minimum,
            )

        raw = _raw_price(current, strategy, getattr(listing, "start_time", None), now, market_average)
        if not raw.is_finite():
            raise InvariantViolation(f"계산된 가격이 유한하지 않습니다: {raw}", computed_price=raw)

        final = max(raw, minimum)
        if final <= 0:
            raise InvariantViolation(f"계산된 가격이 0 이하입니다: {final}", computed_price=final)

        if final >= current:
            return PriceComputation(
                new_price=current,
                reduction_applied=Decimal("0.00"),
                skipped=True,
                reason=SKIP_NO_REDUCTION,
                raw_price=raw,
                effective_minimum=minimum,
            )

        return PriceComputation(
            new_price=final,
            reduction_applied=round2(current - final),
            raw_price=raw,
            effective_minimum=minimum,
        )
    except (ListingValidationError, InvariantViolation) as e:
        logger.error(f"[REDUCTION] Listing {listing_ref}: price computation failed: {e.message}")
        return PriceComputation(new_price=None, reduction_applied=Decimal("0.00"), error=e)
