"""
리스팅 동기화 통합 테스트 (메모리 DB + 가짜 Trading/Inventory 클라이언트)
"""
from decimal import Decimal

import pytest
from sqlalchemy import select

from price_reducer.exceptions import NeedsReconnect
from price_reducer.inventory_client import InventoryApiClient
from price_reducer.models import JobRun, Listing, SyncCursor
from price_reducer.schemas.listing import RemoteListing, RemotePage
from price_reducer.services.job_runner import JobRunner
from price_reducer.services.protocol_router import ProtocolClients
from price_reducer.sync.reconciliation_sync import ReconciliationSync, is_remote_ended


class FakeBroker:
    def __init__(self, reconnect_accounts=()):
        self.reconnect_accounts = set(reconnect_accounts)

    async def get_access_token(self, account_id):
        if account_id in self.reconnect_accounts:
            raise NeedsReconnect("eBay 재연결이 필요합니다", account_id=account_id)
        return f"token-{account_id}"


class FakeLegacy:
    def __init__(self, pages=None):
        self.pages = pages or [[]]
        self.requested = []

    async def get_my_ebay_selling(self, page_number=1, entries_per_page=200):
        self.requested.append(page_number)
        items = self.pages[page_number - 1] if page_number <= len(self.pages) else []
        return RemotePage(items=items, page_number=page_number, total_pages=len(self.pages), total_entries=sum(len(p) for p in self.pages))


class FakeModern:
    def __init__(self, items=None, offers=None):
        self.items = items or []
        self.offers = offers or {}
        self._converter = InventoryApiClient("unused")

    async def get_inventory_items(self, limit=200, offset=0):
        return self.items[offset:offset + limit], len(self.items)

    async def get_offer_by_sku(self, sku):
        return self.offers.get(sku)

    def to_remote_listing(self, item, offer):
        return self._converter.to_remote_listing(item, offer)


def _legacy_item(item_id, price="50.00", quantity=3, title="Brass Lamp", status="Active"):
    return RemoteListing(
        source="LEGACY",
        ebay_item_id=item_id,
        title=title,
        price=Decimal(price),
        quantity_available=quantity,
        status=status,
        listing_url=f"https://www.ebay.com/itm/{item_id}",
    )


async def _no_sleep(seconds):
    return None


@pytest.fixture
def build_sync(session_factory, clock):
    def _build(legacy=None, modern=None, broker=None, **kwargs):
        clients = ProtocolClients(legacy=legacy or FakeLegacy(), modern=modern or FakeModern())
        options = dict(
            clock=clock,
            legacy_page_delay_seconds=0,
            modern_item_delay_seconds=0,
            inter_tenant_delay_seconds=0,
            sleep=_no_sleep,
        )
        options.update(kwargs)
        return ReconciliationSync(session_factory, broker or FakeBroker(), lambda token: clients, **options)

    return _build


def _rows(session_factory, account_id) -> dict[str, Listing]:
    with session_factory() as session:
        rows = session.scalars(select(Listing).where(Listing.account_id == account_id)).all()
        return {row.ebay_item_id or row.sku: row for row in rows}


@pytest.mark.unit
def test_remote_ended_detection():
    assert is_remote_ended(_legacy_item("1", status="Completed"))
    assert is_remote_ended(_legacy_item("1", quantity=0))
    assert not is_remote_ended(_legacy_item("1", quantity=None))
    assert not is_remote_ended(_legacy_item("1"))


@pytest.mark.integration
@pytest.mark.asyncio
async def test_new_listings_are_inserted_with_default_minimum(session_factory, make_account, build_sync):
    account_id = make_account()
    legacy = FakeLegacy([[_legacy_item("111", price="19.99"), _legacy_item("112", quantity=0)]])

    outcome = await build_sync(legacy=legacy).sync(account_id)

    assert outcome.inserted == 2
    rows = _rows(session_factory, account_id)
    fresh = rows["111"]
    assert fresh.current_price == Decimal("19.99")
    assert fresh.original_price == Decimal("19.99")
    assert fresh.minimum_price == Decimal("13.99")
    assert fresh.reduction_enabled is False
    assert fresh.protocol == "LEGACY"
    assert fresh.listing_status == "Active"
    assert rows["112"].listing_status == "Ended"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_merge_never_overwrites_engine_fields(session_factory, make_account, make_strategy, make_listing, build_sync):
    account_id = make_account()
    strategy_id = make_strategy()
    make_listing(
        account_id,
        ebay_item_id="111",
        protocol="UNCLASSIFIED",
        title="Old title",
        current_price=Decimal("40.00"),
        minimum_price=Decimal("30.00"),
        strategy_id=strategy_id,
        reduction_enabled=True,
    )
    legacy = FakeLegacy([[_legacy_item("111", price="50.00", quantity=7, title="New title")]])

    outcome = await build_sync(legacy=legacy).sync(account_id)

    assert outcome.updated == 1
    row = _rows(session_factory, account_id)["111"]
    assert row.title == "New title"
    assert row.quantity_available == 7
    assert row.listing_url == "https://www.ebay.com/itm/111"
    assert row.protocol == "LEGACY"
    assert row.last_synced_at is not None
    # 엔진 소유 필드는 그대로
    assert row.current_price == Decimal("40.00")
    assert row.minimum_price == Decimal("30.00")
    assert row.strategy_id == strategy_id
    assert row.reduction_enabled is True


@pytest.mark.integration
@pytest.mark.asyncio
async def test_missing_listing_is_ended_exactly_once(session_factory, clock, make_account, build_sync):
    account_id = make_account()
    first_pass = FakeLegacy([[_legacy_item("111"), _legacy_item("222")]])
    await build_sync(legacy=first_pass).sync(account_id)

    clock.advance(hours=6)
    second_pass = FakeLegacy([[_legacy_item("111")]])
    outcome = await build_sync(legacy=second_pass).sync(account_id)

    assert outcome.ended == 1
    rows = _rows(session_factory, account_id)
    assert rows["111"].listing_status == "Active"
    assert rows["222"].listing_status == "Ended"
    ended_at = rows["222"].ended_at

    clock.advance(hours=6)
    again = await build_sync(legacy=second_pass).sync(account_id)
    assert again.ended == 0
    assert _rows(session_factory, account_id)["222"].ended_at == ended_at

    # Ended 리스팅이 다시 보여도 Active 로 되돌리지 않음
    clock.advance(hours=6)
    await build_sync(legacy=FakeLegacy([[_legacy_item("111"), _legacy_item("222")]])).sync(account_id)
    assert _rows(session_factory, account_id)["222"].listing_status == "Ended"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_sold_out_listing_is_ended(session_factory, clock, make_account, make_listing, build_sync):
    account_id = make_account()
    make_listing(account_id, ebay_item_id="111", quantity_available=2)

    outcome = await build_sync(legacy=FakeLegacy([[_legacy_item("111", quantity=0)]])).sync(account_id)

    assert outcome.ended == 1
    row = _rows(session_factory, account_id)["111"]
    assert row.listing_status == "Ended"
    assert row.quantity_available == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_unclassified_untouched_rows_are_not_ended(session_factory, clock, make_account, make_listing, build_sync):
    account_id = make_account()
    make_listing(account_id, ebay_item_id="999", protocol="UNCLASSIFIED")

    await build_sync(legacy=FakeLegacy([[_legacy_item("111")]])).sync(account_id)

    assert _rows(session_factory, account_id)["999"].listing_status == "Active"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_modern_items_are_merged_through_offers(session_factory, make_account, build_sync):
    account_id = make_account()
    modern = FakeModern(
        items=[
            {"sku": "SKU-1", "product": {"title": "Desk Fan"}, "availability": {"shipToLocationAvailability": {"quantity": 4}}},
            {"sku": "SKU-NO-OFFER", "product": {"title": "Draft"}},
        ],
        offers={
            "SKU-1": {"offerId": "OFF-1", "status": "PUBLISHED", "pricingSummary": {"price": {"value": "30.00"}}, "listing": {"listingId": "555"}},
        },
    )

    outcome = await build_sync(modern=modern).sync(account_id)

    assert outcome.inserted == 1
    row = _rows(session_factory, account_id)["555"]
    assert row.sku == "SKU-1"
    assert row.offer_id == "OFF-1"
    assert row.protocol == "MODERN"
    assert row.minimum_price == Decimal("21.00")


@pytest.mark.integration
@pytest.mark.asyncio
async def test_truncated_pull_resumes_from_cursor(session_factory, clock, make_account, make_listing, build_sync):
    account_id = make_account()
    stale_id = make_listing(account_id, ebay_item_id="000", protocol="LEGACY")
    pages = [[_legacy_item("111")], [_legacy_item("222")]]

    ticks = iter([0.0, 0.0, 1000.0])
    legacy = FakeLegacy(pages)
    first = await build_sync(legacy=legacy, execution_budget_seconds=60, monotonic=lambda: next(ticks, 1000.0)).sync(account_id)

    assert first.truncated
    assert legacy.requested == [1]
    assert _rows(session_factory, account_id)["000"].listing_status == "Active"
    with session_factory() as session:
        cursor = session.scalars(select(SyncCursor).where(SyncCursor.source == "LEGACY")).one()
        assert cursor.cursor["next_page"] == 2

    clock.advance(minutes=30)
    legacy = FakeLegacy(pages)
    second = await build_sync(legacy=legacy).sync(account_id)

    assert not second.truncated
    assert legacy.requested == [2]
    rows = _rows(session_factory, account_id)
    assert rows["111"].listing_status == "Active"
    assert rows["222"].listing_status == "Active"
    assert rows["000"].listing_status == "Ended"
    with session_factory() as session:
        cursor = session.scalars(select(SyncCursor).where(SyncCursor.source == "LEGACY")).one()
        assert cursor.cursor == {}
        assert session.get(Listing, stale_id).ended_at is not None


@pytest.mark.integration
@pytest.mark.asyncio
async def test_sync_all_shares_one_budget_across_accounts(session_factory, make_account, build_sync):
    first = make_account(name="first")
    second = make_account(name="second")
    third = make_account(name="third")

    # monotonic 을 읽을 때마다 10초씩 흐르는 시계
    elapsed = {"now": -10.0}

    def _ticking():
        elapsed["now"] += 10.0
        return elapsed["now"]

    legacy = FakeLegacy([[_legacy_item("111")]])
    sync = build_sync(legacy=legacy, execution_budget_seconds=50, safety_margin_seconds=0, monotonic=_ticking)

    result = await sync.sync_all([first, second, third])

    assert elapsed["now"] <= 60
    assert legacy.requested == [1]
    assert result["synced"] == 2
    assert result["truncated"] == 1
    assert result["notStarted"] == 1
    assert result["results"][-1] == {"accountId": str(third), "notStarted": True}
    assert "111" in _rows(session_factory, first)
    assert _rows(session_factory, second) == {}
    assert _rows(session_factory, third) == {}

    with session_factory() as session:
        cursor = session.scalars(
            select(SyncCursor).where(SyncCursor.account_id == second, SyncCursor.source == "LEGACY")
        ).one()
        assert cursor.cursor["next_page"] == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_sync_all_records_runs_and_skips_reconnect_accounts(session_factory, clock, make_account, build_sync):
    healthy = make_account(name="healthy")
    broken = make_account(name="broken")
    make_account(name="disconnected", status="disconnected")

    sync = build_sync(
        legacy=FakeLegacy([[_legacy_item("111")]]),
        broker=FakeBroker(reconnect_accounts={broken}),
        job_runner=JobRunner(session_factory, clock=clock),
    )
    result = await sync.sync_all()

    assert result["accounts"] == 2
    assert result["synced"] == 1
    assert result["failed"] == 1
    assert "111" in _rows(session_factory, healthy)

    with session_factory() as session:
        runs = {run.account_id: run for run in session.scalars(select(JobRun)).all()}
        assert runs[healthy].status == "success"
        assert runs[healthy].write_count == 1
        assert runs[broken].status == "fail"
        assert "재연결" in runs[broken].last_error
