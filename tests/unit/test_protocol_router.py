import uuid
from decimal import Decimal

import pytest

from price_reducer.exceptions import ListingNotFoundError, ProtocolError, TransientProtocolError
from price_reducer.models import ListingProtocol
from price_reducer.services.listing_snapshot import ListingSnapshot
from price_reducer.services.protocol_router import ProtocolClients, ProtocolRouter


class FakeStore:
    def __init__(self):
        self.offer_ids = {}
        self.protocols = {}

    def save_offer_id(self, listing_id, offer_id):
        self.offer_ids[listing_id] = offer_id

    def save_protocol(self, listing_id, protocol):
        self.protocols[listing_id] = protocol


class FakeLegacy:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    async def update_price(self, item_id, price):
        self.calls.append((item_id, price))
        if self.error:
            raise self.error
        return {"item_id": item_id, "ack": "Success"}


class FakeModern:
    def __init__(self, offer=None, error=None):
        self.calls = []
        self.lookups = []
        self.offer = offer
        self.error = error

    async def get_offer_by_sku(self, sku):
        self.lookups.append(sku)
        return self.offer

    async def update_price(self, sku, offer_id, price, quantity=None):
        self.calls.append((sku, offer_id, price))
        if self.error:
            raise self.error
        return {"sku": sku, "offer_id": offer_id, "status_code": 200}


def _listing(protocol=ListingProtocol.LEGACY, item_id="110000000001", sku=None, offer_id=None) -> ListingSnapshot:
    return ListingSnapshot(
        id=uuid.uuid4(),
        account_id=uuid.uuid4(),
        ebay_item_id=item_id,
        sku=sku,
        offer_id=offer_id,
        protocol=protocol,
        title="Lamp",
        current_price=Decimal("50.00"),
        minimum_price=Decimal("25.00"),
        reduction_enabled=True,
        listing_status="Active",
    )


def _router(legacy, modern, store=None):
    store = store or FakeStore()
    return ProtocolRouter(store, lambda token: ProtocolClients(legacy=legacy, modern=modern)), store


@pytest.mark.unit
@pytest.mark.asyncio
async def test_legacy_listing_uses_item_id():
    legacy, modern = FakeLegacy(), FakeModern()
    router, _ = _router(legacy, modern)

    result = await router.update_price(_listing(), Decimal("47.50"), "token")

    assert result.ok
    assert result.protocol == ListingProtocol.LEGACY
    assert legacy.calls == [("110000000001", Decimal("47.50"))]
    assert modern.calls == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_modern_listing_resolves_and_saves_offer_id():
    legacy, modern = FakeLegacy(), FakeModern(offer={"offerId": "OFF-1"})
    router, store = _router(legacy, modern)
    listing = _listing(ListingProtocol.MODERN, item_id=None, sku="SKU-1")

    result = await router.update_price(listing, Decimal("9.99"), "token")

    assert result.ok
    assert result.offer_id == "OFF-1"
    assert store.offer_ids[listing.id] == "OFF-1"
    assert modern.calls == [("SKU-1", "OFF-1", Decimal("9.99"))]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_modern_listing_with_known_offer_skips_lookup():
    modern = FakeModern()
    router, _ = _router(FakeLegacy(), modern)

    result = await router.update_price(_listing(ListingProtocol.MODERN, sku="SKU-1", offer_id="OFF-7"), Decimal("9.99"), "t")

    assert result.ok
    assert modern.lookups == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_modern_listing_without_offer_is_not_found():
    router, _ = _router(FakeLegacy(), FakeModern(offer=None))

    result = await router.update_price(_listing(ListingProtocol.MODERN, sku="SKU-1"), Decimal("9.99"), "t")

    assert not result.ok
    assert result.not_found


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unclassified_falls_back_to_legacy_and_records_protocol():
    legacy = FakeLegacy()
    modern = FakeModern(offer={"offerId": "OFF-1"}, error=ProtocolError("SKU is not an inventory item", status_code=400))
    router, store = _router(legacy, modern)
    listing = _listing(ListingProtocol.UNCLASSIFIED, item_id="110000000009", sku="OLD-SKU")

    result = await router.update_price(listing, Decimal("20.00"), "t")

    assert result.ok
    assert result.protocol == ListingProtocol.LEGACY
    assert store.protocols[listing.id] == ListingProtocol.LEGACY
    assert legacy.calls == [("110000000009", Decimal("20.00"))]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unclassified_modern_success_records_protocol():
    router, store = _router(FakeLegacy(), FakeModern(offer={"offerId": "OFF-2"}))
    listing = _listing(ListingProtocol.UNCLASSIFIED, item_id=None, sku="SKU-2")

    result = await router.update_price(listing, Decimal("20.00"), "t")

    assert result.protocol == ListingProtocol.MODERN
    assert store.protocols[listing.id] == ListingProtocol.MODERN


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unclassified_transient_failure_does_not_fall_back():
    legacy = FakeLegacy()
    modern = FakeModern(offer={"offerId": "OFF-1"}, error=TransientProtocolError("busy", status_code=503))
    router, store = _router(legacy, modern)

    result = await router.update_price(_listing(ListingProtocol.UNCLASSIFIED, sku="SKU-1"), Decimal("20.00"), "t")

    assert not result.ok
    assert isinstance(result.error, TransientProtocolError)
    assert legacy.calls == []
    assert store.protocols == {}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_listing_without_identifiers_is_validation_failure():
    router, _ = _router(FakeLegacy(), FakeModern())

    result = await router.update_price(_listing(ListingProtocol.UNCLASSIFIED, item_id=None, sku=None), Decimal("1.00"), "t")

    assert not result.ok
    assert not result.not_found


@pytest.mark.unit
@pytest.mark.asyncio
async def test_legacy_not_found_is_reported():
    router, _ = _router(FakeLegacy(error=ListingNotFoundError("Item ended", protocol="legacy")), FakeModern())

    result = await router.update_price(_listing(), Decimal("10.00"), "t")

    assert result.not_found
