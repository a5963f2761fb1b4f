import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from price_reducer.exceptions import InvariantViolation, ListingValidationError
from price_reducer.services.pricing.strategy_engine import (
    SKIP_AT_MINIMUM,
    SKIP_NO_REDUCTION,
    Strategy,
    StrategyType,
    compute_next_price,
    days_listed,
    resolve_minimum_price,
    round2,
    time_based_factor,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _listing(current="50.00", minimum="25.00", start_time=None):
    return SimpleNamespace(id=uuid.uuid4(), current_price=current, minimum_price=minimum, start_time=start_time)


def _strategy(strategy_type=StrategyType.PERCENTAGE, value="5", floor=None):
    return Strategy(strategy_type=strategy_type, value=Decimal(value), floor=Decimal(floor) if floor else None)


@pytest.mark.unit
def test_percentage_reduction():
    result = compute_next_price(_listing(), _strategy(), NOW)
    assert result.ok
    assert result.will_reduce
    assert result.new_price == Decimal("47.50")
    assert result.reduction_applied == Decimal("2.50")


@pytest.mark.unit
def test_reduction_is_clamped_to_minimum():
    result = compute_next_price(_listing("26.00", "25.00"), _strategy(value="10"), NOW)
    assert result.raw_price == Decimal("23.40")
    assert result.new_price == Decimal("25.00")
    assert result.reduction_applied == Decimal("1.00")


@pytest.mark.unit
def test_at_minimum_is_skipped():
    result = compute_next_price(_listing("25.00", "25.00"), _strategy(), NOW)
    assert result.skipped
    assert result.reason == SKIP_AT_MINIMUM
    assert result.new_price == Decimal("25.00")
    assert result.reduction_applied == Decimal("0.00")


@pytest.mark.unit
def test_dollar_reduction():
    result = compute_next_price(_listing("19.99", "5.00"), _strategy(StrategyType.DOLLAR, "1.50"), NOW)
    assert result.new_price == Decimal("18.49")
    assert result.reduction_applied == Decimal("1.50")


@pytest.mark.unit
def test_zero_value_gives_no_reduction():
    result = compute_next_price(_listing(), _strategy(value="0"), NOW)
    assert result.skipped
    assert result.reason == SKIP_NO_REDUCTION


@pytest.mark.unit
def test_strategy_floor_raises_effective_minimum():
    result = compute_next_price(_listing("50.00", "25.00"), _strategy(value="50", floor="40.00"), NOW)
    assert result.effective_minimum == Decimal("40.00")
    assert result.new_price == Decimal("40.00")


@pytest.mark.unit
def test_time_based_factor_grows_and_caps():
    assert time_based_factor(0) == Decimal("1")
    assert time_based_factor(30) == Decimal("1.5")
    assert time_based_factor(90) == Decimal("2")

    listing = _listing("100.00", "10.00", start_time=NOW - timedelta(days=60))
    result = compute_next_price(listing, _strategy(StrategyType.TIME_BASED, "5"), NOW)
    # 60일 -> factor 2.0 -> 10% 인하
    assert result.new_price == Decimal("90.00")


@pytest.mark.unit
def test_days_listed_rounds_up_partial_days():
    assert days_listed(None, NOW) == 0
    assert days_listed(NOW - timedelta(hours=1), NOW) == 1
    assert days_listed(NOW + timedelta(days=1), NOW) == 0


@pytest.mark.unit
def test_market_based_uses_lower_of_market_and_percentage():
    listing = _listing("100.00", "10.00")
    strategy = _strategy(StrategyType.MARKET_BASED, "5")

    # 시장가 80 * 0.95 = 76.00 < 95.00
    assert compute_next_price(listing, strategy, NOW, market_average=Decimal("80")).new_price == Decimal("76.00")
    # 시장가가 높으면 percentage 결과
    assert compute_next_price(listing, strategy, NOW, market_average=Decimal("200")).new_price == Decimal("95.00")
    # 시장 데이터 없음 -> percentage 로 대체
    assert compute_next_price(listing, strategy, NOW, market_average=None).new_price == Decimal("95.00")


@pytest.mark.unit
def test_missing_minimum_falls_back_to_floor():
    assert resolve_minimum_price(None) == Decimal("0.99")
    assert resolve_minimum_price("0") == Decimal("0.99")
    assert resolve_minimum_price(Decimal("-3")) == Decimal("0.99")

    result = compute_next_price(_listing("1.00", None), _strategy(value="50"), NOW)
    assert result.new_price == Decimal("0.99")


@pytest.mark.unit
def test_nan_minimum_is_validation_error():
    with pytest.raises(ListingValidationError):
        resolve_minimum_price(float("nan"))

    result = compute_next_price(_listing("50.00", "abc"), _strategy(), NOW)
    assert not result.ok
    assert isinstance(result.error, ListingValidationError)
    assert result.new_price is None


@pytest.mark.unit
def test_invalid_current_price_is_reported_not_raised():
    result = compute_next_price(_listing("0", "1.00"), _strategy(), NOW)
    assert isinstance(result.error, ListingValidationError)
    assert result.error.field == "current_price"


@pytest.mark.unit
def test_negative_strategy_value_is_rejected():
    result = compute_next_price(_listing(), _strategy(value="-5"), NOW)
    assert isinstance(result.error, ListingValidationError)


@pytest.mark.unit
def test_round2_half_up():
    assert round2(Decimal("1.005")) == Decimal("1.01")
    assert round2(Decimal("47.494")) == Decimal("47.49")


@pytest.mark.unit
def test_invariant_violation_carries_price():
    error = InvariantViolation("bad", computed_price=Decimal("-1"))
    assert error.computed_price == Decimal("-1")
