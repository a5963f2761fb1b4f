"""
eBay Trading API (Legacy, ItemID 기반 XML) 클라이언트
"""
from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from xml.sax.saxutils import escape

import httpx

from price_reducer.exceptions import ListingNotFoundError, ProtocolError, TransientProtocolError
from price_reducer.http_retry import DEFAULT_TIMEOUT, classify_http_failure, network_retry
from price_reducer.schemas.listing import RemoteListing, RemotePage

logger = logging.getLogger(__name__)

EBAY_NS = "urn:ebay:apis:eBLBaseComponents"
_NS = {"e": EBAY_NS}

# 17: 삭제된 아이템, 291: 종료된 리스팅은 수정 불가, 21916750: 존재하지 않는 아이템
NOT_FOUND_ERROR_CODES = {"17", "291", "21916750"}
# 10007: eBay 내부 오류, 21359: 일시적 시스템 오류
TRANSIENT_ERROR_CODES = {"10007", "21359"}

PROTOCOL = "legacy"


def _text(element: ET.Element | None, path: str) -> str | None:
    if element is None:
        return None
    found = element.find(path, _NS)
    if found is None or found.text is None:
        return None
    value = found.text.strip()
    return value or None


def _decimal(value: str | None) -> Decimal | None:
    if value is None:
        return None
    try:
        parsed = Decimal(value)
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def _int(value: str | None) -> int:
    return _optional_int(value) or 0


def _optional_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def format_price(price: Decimal) -> str:
    return f"{Decimal(price):.2f}"


class TradingApiClient:
    def __init__(
        self,
        access_token: str,
        api_url: str = "https://api.ebay.com/ws/api.dll",
        site_id: str = "0",
        compatibility_level: str = "967",
        timeout: httpx.Timeout | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._access_token = access_token
        self._api_url = api_url
        self._site_id = site_id
        self._compatibility_level = compatibility_level
        self._timeout = timeout or DEFAULT_TIMEOUT
        self._transport = transport

    def _headers(self, call_name: str) -> dict[str, str]:
        return {
            "X-EBAY-API-CALL-NAME": call_name,
            "X-EBAY-API-SITEID": self._site_id,
            "X-EBAY-API-COMPATIBILITY-LEVEL": self._compatibility_level,
            "X-EBAY-API-IAF-TOKEN": self._access_token,
            "Content-Type": "text/xml",
        }

    @network_retry("LEGACY")
    async def _post(self, call_name: str, body: str) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            return await client.post(self._api_url, headers=self._headers(call_name), content=body.encode("utf-8"))

    async def _call(self, call_name: str, body: str) -> ET.Element:
        """
        Trading API 호출 후 Ack 검사.
        Success/Warning 이면 루트 엘리먼트를 반환하고, 그 외에는 ProtocolError 계열을 던집니다.
        """
        try:
            response = await self._post(call_name, body)
        except httpx.TransportError as e:
            raise TransientProtocolError(f"{call_name} 네트워크 오류: {e}", protocol=PROTOCOL) from e

        if response.status_code >= 400:
            logger.error(f"[LEGACY] {call_name} HTTP error: {response.status_code}")
            raise classify_http_failure(response.status_code, f"{call_name} HTTP 오류", PROTOCOL)

        try:
            root = ET.fromstring(response.text)
        except ET.ParseError as e:
            raise ProtocolError(f"{call_name} 응답 XML 파싱 실패: {e}", status_code=response.status_code, protocol=PROTOCOL) from e

        ack = _text(root, "e:Ack")
        if ack in ("Success", "Warning"):
            if ack == "Warning":
                logger.warning(f"[LEGACY] {call_name} returned Warning: {self._error_message(root)}")
            return root

        error = root.find("e:Errors", _NS)
        code = _text(error, "e:ErrorCode")
        message = self._error_message(root)
        if code in NOT_FOUND_ERROR_CODES:
            raise ListingNotFoundError(message, status_code=response.status_code, protocol=PROTOCOL, error_code=code)
        if code in TRANSIENT_ERROR_CODES:
            raise TransientProtocolError(message, status_code=response.status_code, protocol=PROTOCOL, error_code=code)
        raise ProtocolError(message, status_code=response.status_code, protocol=PROTOCOL, error_code=code)

    @staticmethod
    def _error_message(root: ET.Element) -> str:
        error = root.find("e:Errors", _NS)
        return _text(error, "e:LongMessage") or _text(error, "e:ShortMessage") or "Unknown Trading API error"

    async def update_price(self, item_id: str, price: Decimal) -> dict[str, Any]:
        """ReviseFixedPriceItem 으로 StartPrice 변경"""
        body = (
            '<?xml version="1.0" encoding="utf-8"?>'
            f'<ReviseFixedPriceItemRequest xmlns="{EBAY_NS}">'
            "<ErrorLanguage>en_US</ErrorLanguage>"
            "<WarningLevel>High</WarningLevel>"
            "<Item>"
            f"<ItemID>{escape(str(item_id))}</ItemID>"
            f"<StartPrice>{format_price(price)}</StartPrice>"
            "</Item>"
            "</ReviseFixedPriceItemRequest>"
        )
        root = await self._call("ReviseFixedPriceItem", body)
        logger.info(f"[LEGACY] Item {item_id} price updated to {format_price(price)}")
        return {"item_id": _text(root, "e:ItemID") or str(item_id), "ack": _text(root, "e:Ack")}

    async def get_my_ebay_selling(self, page_number: int = 1, entries_per_page: int = 200) -> RemotePage:
        """GetMyeBaySelling ActiveList 한 페이지 조회"""
        body = (
            '<?xml version="1.0" encoding="utf-8"?>'
            f'<GetMyeBaySellingRequest xmlns="{EBAY_NS}">'
            "<ErrorLanguage>en_US</ErrorLanguage>"
            "<WarningLevel>High</WarningLevel>"
            "<ActiveList>"
            "<Sort>TimeLeft</Sort>"
            "<Pagination>"
            f"<EntriesPerPage>{int(entries_per_page)}</EntriesPerPage>"
            f"<PageNumber>{int(page_number)}</PageNumber>"
            "</Pagination>"
            "</ActiveList>"
            "</GetMyeBaySellingRequest>"
        )
        root = await self._call("GetMyeBaySelling", body)
        active_list = root.find("e:ActiveList", _NS)

        items: list[RemoteListing] = []
        if active_list is not None:
            for item in active_list.findall("e:ItemArray/e:Item", _NS):
                parsed = self._parse_item(item)
                if parsed is not None:
                    items.append(parsed)

        pagination = active_list.find("e:PaginationResult", _NS) if active_list is not None else None
        total_pages = _int(_text(pagination, "e:TotalNumberOfPages")) or 1
        total_entries = _int(_text(pagination, "e:TotalNumberOfEntries"))

        return RemotePage(items=items, page_number=page_number, total_pages=total_pages, total_entries=total_entries)

    @staticmethod
    def _parse_item(item: ET.Element) -> RemoteListing | None:
        item_id = _text(item, "e:ItemID")
        if not item_id:
            return None

        # CurrentPrice 가 없으면 BuyItNowPrice / StartPrice 순으로 사용
        price = None
        for path in ("e:SellingStatus/e:CurrentPrice", "e:BuyItNowPrice", "e:StartPrice"):
            candidate = _decimal(_text(item, path))
            if candidate is not None and candidate > 0:
                price = candidate
                break

        return RemoteListing(
            source="LEGACY",
            ebay_item_id=item_id,
            sku=_text(item, "e:SKU"),
            title=_text(item, "e:Title"),
            price=price or Decimal("0.01"),
            quantity_available=_optional_int(_text(item, "e:QuantityAvailable")),
            quantity_sold=_int(_text(item, "e:SellingStatus/e:QuantitySold")),
            status=_text(item, "e:SellingStatus/e:ListingStatus") or "Active",
            image_url=_text(item, "e:PictureDetails/e:GalleryURL") or _text(item, "e:PictureDetails/e:PictureURL"),
            listing_url=_text(item, "e:ListingDetails/e:ViewItemURL"),
            start_time=_datetime(_text(item, "e:ListingDetails/e:StartTime")),
        )
