"""
eBay Sell Inventory API (Modern, SKU/offer 기반 REST) 클라이언트
"""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from price_reducer.exceptions import ListingNotFoundError, ProtocolError, TransientProtocolError
from price_reducer.http_retry import DEFAULT_TIMEOUT, classify_http_failure, network_retry
from price_reducer.schemas.listing import RemoteListing
from price_reducer.trading_client import format_price

logger = logging.getLogger(__name__)

PROTOCOL = "modern"


def _error_message(status_code: int, data: Any) -> str:
    """Inventory API 에러 응답({"errors": [{"errorId", "message", "longMessage"}]})에서 메시지 추출"""
    if isinstance(data, dict):
        errors = data.get("errors") or []
        if errors and isinstance(errors[0], dict):
            first = errors[0]
            return first.get("longMessage") or first.get("message") or f"errorId {first.get('errorId')}"
    return f"HTTP {status_code} 오류"


class InventoryApiClient:
    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.ebay.com",
        currency: str = "USD",
        timeout: httpx.Timeout | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._access_token = access_token
        self._base_url = base_url.rstrip("/")
        self._currency = currency
        self._timeout = timeout or DEFAULT_TIMEOUT
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Content-Language": "en-US",
        }

    @network_retry("MODERN")
    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            return await client.request(method, f"{self._base_url}{path}", headers=self._headers(), params=params, json=payload)

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> tuple[int, dict[str, Any]]:
        try:
            response = await self._send(method, path, params=params, payload=payload)
        except httpx.TransportError as e:
            raise TransientProtocolError(f"{method} {path} 네트워크 오류: {e}", protocol=PROTOCOL) from e

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {"_raw_text": response.text}
        return response.status_code, data

    async def get_offer_by_sku(self, sku: str) -> dict[str, Any] | None:
        """SKU 의 첫 번째 offer 반환. 없으면 None."""
        code, data = await self._request("GET", "/sell/inventory/v1/offer", params={"sku": sku})
        if code == 404:
            return None
        if code >= 400:
            logger.error(f"[MODERN] Offer lookup failed for SKU {sku}: {code}")
            raise classify_http_failure(code, _error_message(code, data), PROTOCOL)
        offers = data.get("offers") or []
        return offers[0] if offers else None

    async def update_price(self, sku: str, offer_id: str, price: Decimal, quantity: int | None = None) -> dict[str, Any]:
        """bulk_update_price_quantity 로 단일 offer 가격 변경"""
        request: dict[str, Any] = {
            "sku": sku,
            "offers": [
                {
                    "offerId": offer_id,
                    "price": {"value": format_price(price), "currency": self._currency},
                }
            ],
        }
        if quantity is not None:
            request["shipToLocationAvailability"] = {"quantity": int(quantity)}

        code, data = await self._request(
            "POST",
            "/sell/inventory/v1/bulk_update_price_quantity",
            payload={"requests": [request]},
        )
        if code == 404:
            raise ListingNotFoundError(_error_message(code, data), status_code=code, protocol=PROTOCOL)
        if code >= 400:
            logger.error(f"[MODERN] Price update failed for SKU {sku}: {code}")
            raise classify_http_failure(code, _error_message(code, data), PROTOCOL)

        responses = data.get("responses") or []
        first = responses[0] if responses else {}
        status_code = first.get("statusCode")
        if status_code != 200:
            message = _error_message(status_code or code, first)
            if status_code == 404:
                raise ListingNotFoundError(message, status_code=status_code, protocol=PROTOCOL)
            raise ProtocolError(message, status_code=status_code or code, protocol=PROTOCOL)

        logger.info(f"[MODERN] SKU {sku} (offer {offer_id}) price updated to {format_price(price)}")
        return {"sku": sku, "offer_id": offer_id, "status_code": status_code}

    async def get_inventory_items(self, limit: int = 200, offset: int = 0) -> tuple[list[dict[str, Any]], int]:
        """inventory_item 한 페이지. (items, total) 반환"""
        code, data = await self._request("GET", "/sell/inventory/v1/inventory_item", params={"limit": limit, "offset": offset})
        if code >= 400:
            logger.error(f"[MODERN] Inventory item listing failed: {code}")
            raise classify_http_failure(code, _error_message(code, data), PROTOCOL)
        return data.get("inventoryItems") or [], int(data.get("total") or 0)

    def to_remote_listing(self, item: dict[str, Any], offer: dict[str, Any]) -> RemoteListing:
        product = item.get("product") or {}
        availability = (item.get("availability") or {}).get("shipToLocationAvailability") or {}
        price_value = ((offer.get("pricingSummary") or {}).get("price") or {}).get("value")
        try:
            price = Decimal(str(price_value)) if price_value is not None else None
        except InvalidOperation:
            price = None
        image_urls = product.get("imageUrls") or []
        listing_id = (offer.get("listing") or {}).get("listingId") or offer.get("listingId")

        return RemoteListing(
            source="MODERN",
            ebay_item_id=listing_id,
            sku=item.get("sku"),
            offer_id=offer.get("offerId"),
            title=product.get("title") or item.get("sku"),
            price=price,
            quantity_available=int(availability["quantity"]) if availability.get("quantity") is not None else None,
            status="Active" if offer.get("status") == "PUBLISHED" else "Inactive",
            image_url=image_urls[0] if image_urls else None,
        )
