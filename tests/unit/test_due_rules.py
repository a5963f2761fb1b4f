import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from price_reducer.clock import FixedClock, as_utc, business_date_key
from price_reducer.models import ListingProtocol
from price_reducer.services.listing_snapshot import ListingSnapshot
from price_reducer.services.scheduling_guard import CycleSummary, ItemOutcome, ItemStatus, is_due_for_reduction

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _snapshot(**kwargs) -> ListingSnapshot:
    values = dict(
        id=uuid.uuid4(),
        account_id=uuid.uuid4(),
        ebay_item_id="110000000001",
        sku=None,
        offer_id=None,
        protocol=ListingProtocol.LEGACY,
        title="Lamp",
        current_price=Decimal("50.00"),
        minimum_price=Decimal("25.00"),
        reduction_enabled=True,
        listing_status="Active",
        reduction_interval=7,
        last_reduction_at=NOW - timedelta(days=8),
    )
    values.update(kwargs)
    return ListingSnapshot(**values)


@pytest.mark.unit
def test_due_after_interval():
    assert is_due_for_reduction(_snapshot(), NOW)


@pytest.mark.unit
def test_not_due_inside_interval():
    listing = _snapshot(reduction_interval=24, last_reduction_at=NOW - timedelta(hours=23))
    assert not is_due_for_reduction(listing, NOW)


@pytest.mark.unit
def test_never_reduced_is_due():
    assert is_due_for_reduction(_snapshot(last_reduction_at=None), NOW)


@pytest.mark.unit
def test_at_minimum_disabled_or_ended_is_not_due():
    assert not is_due_for_reduction(_snapshot(current_price=Decimal("25.00")), NOW)
    assert not is_due_for_reduction(_snapshot(reduction_enabled=False), NOW)
    assert not is_due_for_reduction(_snapshot(listing_status="Ended"), NOW)


@pytest.mark.unit
def test_zero_interval_is_due_every_cycle_and_missing_uses_default():
    just_reduced = NOW - timedelta(minutes=5)
    assert is_due_for_reduction(_snapshot(reduction_interval=0, last_reduction_at=just_reduced), NOW)

    listing = _snapshot(reduction_interval=None, last_reduction_at=NOW - timedelta(hours=23))
    assert not is_due_for_reduction(listing, NOW, default_interval_hours=24)
    assert is_due_for_reduction(listing, NOW, default_interval_hours=12)


@pytest.mark.unit
def test_missing_minimum_is_still_due():
    assert is_due_for_reduction(_snapshot(minimum_price=None), NOW)


@pytest.mark.unit
def test_naive_timestamps_are_treated_as_utc():
    naive = datetime(2026, 3, 9, 12, 0)
    assert as_utc(naive) == datetime(2026, 3, 9, 12, 0, tzinfo=timezone.utc)
    listing = _snapshot(reduction_interval=24, last_reduction_at=naive)
    assert is_due_for_reduction(listing, NOW)


@pytest.mark.unit
def test_business_date_uses_business_timezone():
    # 03:00 UTC 는 시카고 기준 전날 밤
    early = datetime(2026, 3, 10, 3, 0, tzinfo=timezone.utc)
    assert business_date_key(early, "America/Chicago") == "2026-03-09"
    assert business_date_key(early, "UTC") == "2026-03-10"


@pytest.mark.unit
def test_fixed_clock_advance():
    clock = FixedClock(NOW)
    clock.advance(days=1, hours=2)
    assert clock.now() == NOW + timedelta(days=1, hours=2)


@pytest.mark.unit
def test_summary_caps_error_list_but_counts_all():
    summary = CycleSummary(business_date="2026-03-10", error_cap=2)
    for _ in range(5):
        summary.record(ItemOutcome(listing_id=uuid.uuid4(), status=ItemStatus.FAILED, reason="boom"))
    assert summary.error_count == 5
    assert len(summary.errors) == 2


@pytest.mark.unit
def test_summary_details_only_for_dry_run():
    outcome = ItemOutcome(listing_id=uuid.uuid4(), status=ItemStatus.DRY_RUN, new_price=Decimal("47.50"))

    dry = CycleSummary(business_date="2026-03-10", dry_run=True)
    dry.record(outcome)
    assert dry.to_dict()["details"][0]["newPrice"] == 47.5
    assert dry.processed == 1

    live = CycleSummary(business_date="2026-03-10")
    live.record(ItemOutcome(listing_id=uuid.uuid4(), status=ItemStatus.REDUCED))
    assert "details" not in live.to_dict()
