from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RemoteListing(BaseModel):
    """원격(eBay) 리스팅 한 건. Legacy/Modern 풀 결과를 같은 형태로 맞춥니다."""
    source: str  # LEGACY, MODERN
    ebay_item_id: Optional[str] = None
    sku: Optional[str] = None
    offer_id: Optional[str] = None
    title: Optional[str] = None
    price: Optional[Decimal] = None
    quantity_available: Optional[int] = None  # 응답에 없으면 None
    quantity_sold: int = 0
    status: Optional[str] = None  # Active, Ended, Completed, ...
    image_url: Optional[str] = None
    listing_url: Optional[str] = None
    start_time: Optional[datetime] = None


class RemotePage(BaseModel):
    items: list[RemoteListing] = Field(default_factory=list)
    page_number: int = 1
    total_pages: int = 1
    total_entries: int = 0

    @property
    def has_more(self) -> bool:
        return self.page_number < self.total_pages


class CycleRunRequest(BaseModel):
    dry_run: bool = Field(default=False, alias="dryRun")
    limit: Optional[int] = Field(default=None, ge=1)
    force: bool = False

    model_config = ConfigDict(populate_by_name=True)


class SyncRunRequest(BaseModel):
    account_id: Optional[str] = Field(default=None, alias="accountId")

    model_config = ConfigDict(populate_by_name=True)
