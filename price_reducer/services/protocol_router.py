"""
Protocol Router

리스팅이 어느 eBay API(Legacy Trading / Modern Inventory)에 속하는지 판별하고
가격 변경을 해당 클라이언트로 보냅니다.

분류 우선순위: 리스팅의 protocol 태그 > 식별자 기반 추정 (sku+offer => Modern, item id => Legacy).
원격 호출이 실패하면 로컬 상태는 건드리지 않습니다. 가격/감사 로그 저장은 호출자 몫입니다.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Optional, Protocol, Union

from price_reducer.exceptions import (
    ListingNotFoundError,
    ListingValidationError,
    PriceReducerError,
    ProtocolError,
    TransientProtocolError,
)
from price_reducer.models import ListingProtocol
from price_reducer.services.listing_snapshot import ListingSnapshot
from price_reducer.services.listing_store import ListingStore

logger = logging.getLogger(__name__)


class LegacyPriceClient(Protocol):
    async def update_price(self, item_id: str, price: Decimal) -> dict[str, Any]: ...


class ModernPriceClient(Protocol):
    async def update_price(self, sku: str, offer_id: str, price: Decimal, quantity: Optional[int] = None) -> dict[str, Any]: ...

    async def get_offer_by_sku(self, sku: str) -> Optional[dict[str, Any]]: ...


@dataclass(frozen=True)
class ProtocolClients:
    legacy: LegacyPriceClient
    modern: ModernPriceClient


ClientFactory = Callable[[str], ProtocolClients]


@dataclass(frozen=True)
class LegacyTarget:
    item_id: Optional[str]


@dataclass(frozen=True)
class ModernTarget:
    sku: Optional[str]
    offer_id: Optional[str]


@dataclass(frozen=True)
class UnclassifiedTarget:
    item_id: Optional[str]
    sku: Optional[str]
    offer_id: Optional[str]


ProtocolTarget = Union[LegacyTarget, ModernTarget, UnclassifiedTarget]


@dataclass(frozen=True)
class RouteResult:
    ok: bool
    protocol: Optional[ListingProtocol] = None
    offer_id: Optional[str] = None
    error: Optional[PriceReducerError] = None

    @property
    def not_found(self) -> bool:
        return isinstance(self.error, ListingNotFoundError)


class ProtocolRouter:
    def __init__(self, store: ListingStore, client_factory: ClientFactory):
        self._store = store
        self._client_factory = client_factory

    @staticmethod
    def classify(listing: ListingSnapshot) -> ProtocolTarget:
        if listing.protocol == ListingProtocol.LEGACY:
            return LegacyTarget(item_id=listing.ebay_item_id)
        if listing.protocol == ListingProtocol.MODERN:
            return ModernTarget(sku=listing.sku, offer_id=listing.offer_id)
        return UnclassifiedTarget(item_id=listing.ebay_item_id, sku=listing.sku, offer_id=listing.offer_id)

    async def update_price(self, listing: ListingSnapshot, new_price: Decimal, token: str) -> RouteResult:
        clients = self._client_factory(token)
        target = self.classify(listing)
        try:
            if isinstance(target, LegacyTarget):
                await self._update_legacy(clients, target.item_id, new_price)
                return RouteResult(ok=True, protocol=ListingProtocol.LEGACY)
            if isinstance(target, ModernTarget):
                offer_id = await self._update_modern(clients, listing, target.sku, target.offer_id, new_price)
                return RouteResult(ok=True, protocol=ListingProtocol.MODERN, offer_id=offer_id)
            if isinstance(target, UnclassifiedTarget):
                return await self._update_unclassified(clients, listing, target, new_price)
            raise AssertionError(f"Unhandled protocol target: {target!r}")
        except (ProtocolError, ListingValidationError) as e:
            logger.error(f"[ROUTER] Price update failed for listing {listing.id}: {e}")
            return RouteResult(ok=False, error=e)

    async def _update_legacy(self, clients: ProtocolClients, item_id: Optional[str], new_price: Decimal) -> None:
        if not item_id:
            raise ListingValidationError("Legacy 리스팅에 eBay item id 가 없습니다", field="ebay_item_id")
        await clients.legacy.update_price(item_id, new_price)

    async def _resolve_offer_id(self, clients: ProtocolClients, listing: ListingSnapshot, sku: str) -> str:
        offer = await clients.modern.get_offer_by_sku(sku)
        offer_id = (offer or {}).get("offerId")
        if not offer_id:
            raise ListingNotFoundError(f"SKU {sku} 에 해당하는 offer 가 없습니다", status_code=404, protocol="modern")
        self._store.save_offer_id(listing.id, offer_id)
        logger.info(f"[ROUTER] Resolved offer {offer_id} for SKU {sku}")
        return offer_id

    async def _update_modern(
        self,
        clients: ProtocolClients,
        listing: ListingSnapshot,
        sku: Optional[str],
        offer_id: Optional[str],
        new_price: Decimal,
    ) -> str:
        if not sku:
            raise ListingValidationError("Modern 리스팅에 SKU 가 없습니다", field="sku")
        if not offer_id:
            offer_id = await self._resolve_offer_id(clients, listing, sku)
        await clients.modern.update_price(sku, offer_id, new_price)
        return offer_id

    async def _update_unclassified(
        self,
        clients: ProtocolClients,
        listing: ListingSnapshot,
        target: UnclassifiedTarget,
        new_price: Decimal,
    ) -> RouteResult:
        """식별자로 프로토콜을 추정하고, 첫 성공 시 분류 결과를 저장합니다."""
        if target.sku:
            try:
                offer_id = await self._update_modern(clients, listing, target.sku, target.offer_id, new_price)
            except ProtocolError as e:
                # 일시 오류이거나 Legacy 식별자가 없으면 그대로 실패
                if isinstance(e, TransientProtocolError) or not target.item_id:
                    raise
                logger.info(f"[ROUTER] Modern update failed for listing {listing.id} ({e}), trying Legacy")
            else:
                self._store.save_protocol(listing.id, ListingProtocol.MODERN)
                return RouteResult(ok=True, protocol=ListingProtocol.MODERN, offer_id=offer_id)

        if target.item_id:
            await self._update_legacy(clients, target.item_id, new_price)
            self._store.save_protocol(listing.id, ListingProtocol.LEGACY)
            return RouteResult(ok=True, protocol=ListingProtocol.LEGACY)

        raise ListingValidationError("리스팅에 eBay item id / SKU 가 모두 없습니다", field="identifiers")
