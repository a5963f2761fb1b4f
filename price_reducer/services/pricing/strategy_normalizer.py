"""
전략 정규화 (저장소 경계)

DB 의 전략 레코드는 스키마 세대마다 필드명이 다릅니다.
- 신 스키마: reduction_type (percentage/dollar), reduction_amount
- 구 스키마: strategy_type (fixed_percentage/market_based/time_based/...), reduction_percentage
엔진에는 항상 Strategy 값 객체만 전달됩니다.
"""
from decimal import Decimal
from typing import Any, Optional

from price_reducer.exceptions import ListingValidationError
from price_reducer.services.pricing.strategy_engine import Strategy, StrategyType, to_decimal

_TYPE_ALIASES = {
    "percentage": StrategyType.PERCENTAGE,
    "percent": StrategyType.PERCENTAGE,
    "fixed_percentage": StrategyType.PERCENTAGE,
    "dollar": StrategyType.DOLLAR,
    "fixed_amount": StrategyType.DOLLAR,
    "fixed": StrategyType.DOLLAR,
    "market_based": StrategyType.MARKET_BASED,
    "market": StrategyType.MARKET_BASED,
    "time_based": StrategyType.TIME_BASED,
    "time": StrategyType.TIME_BASED,
}


def parse_strategy_type(raw: Optional[str]) -> StrategyType:
    if raw is None or not str(raw).strip():
        return StrategyType.PERCENTAGE
    key = str(raw).strip().lower().replace("-", "_").replace(" ", "_")
    if key not in _TYPE_ALIASES:
        raise ListingValidationError(f"알 수 없는 전략 유형입니다: {raw}", field="reduction_type", actual_value=raw)
    return _TYPE_ALIASES[key]


def _first_value(*candidates: Any) -> Optional[Decimal]:
    for candidate in candidates:
        if candidate is None:
            continue
        value = to_decimal(candidate)
        if value is None:
            raise ListingValidationError(f"전략 인하 값이 숫자가 아닙니다: {candidate}", field="reduction_amount", actual_value=candidate)
        # 0 은 "미설정" 으로 보고 다음 후보로 넘어감
        if value.is_finite() and value == 0:
            continue
        return value
    return None


def normalize_strategy(
    row: Any,
    listing_reduction_percentage: Any = None,
    default_percentage: Decimal = Decimal("2"),
) -> Strategy:
    """
    전략 레코드(또는 None)를 Strategy 로 변환.

    값 우선순위: reduction_amount > reduction_percentage > 리스팅의 reduction_percentage > 기본값.
    전략이 없는 리스팅은 Percentage(리스팅 인하율 또는 기본값).
    """
    if row is None:
        value = _first_value(listing_reduction_percentage) or default_percentage
        return Strategy(strategy_type=StrategyType.PERCENTAGE, value=value)

    raw_type = getattr(row, "reduction_type", None) or getattr(row, "strategy_type", None)
    strategy_type = parse_strategy_type(raw_type)

    value = _first_value(
        getattr(row, "reduction_amount", None),
        getattr(row, "reduction_percentage", None),
        listing_reduction_percentage,
    )
    if value is None:
        value = default_percentage

    floor = to_decimal(getattr(row, "floor_price", None))
    if floor is not None and (not floor.is_finite() or floor <= 0):
        floor = None

    return Strategy(
        strategy_type=strategy_type,
        value=value,
        floor=floor,
        name=getattr(row, "name", None),
        strategy_id=getattr(row, "id", None),
    )
