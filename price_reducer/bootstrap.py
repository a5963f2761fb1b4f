"""
서비스 조립 (settings -> 실제 객체)

API / CLI / 스케줄러가 같은 방식으로 엔진을 구성하도록 한 곳에 모아 둡니다.
"""
import logging
from decimal import Decimal
from typing import Callable, Optional

import httpx
from sqlalchemy.orm import Session

from price_reducer.clock import Clock, SystemClock
from price_reducer.ebay_oauth_client import EbayOAuthClient
from price_reducer.inventory_client import InventoryApiClient
from price_reducer.services.audit_logger import AuditLogger
from price_reducer.services.credential_cipher import CredentialCipher
from price_reducer.services.job_runner import JobRunner
from price_reducer.services.listing_store import SqlListingStore
from price_reducer.services.pricing.market_data import ListingMarketData
from price_reducer.services.protocol_router import ClientFactory, ProtocolClients, ProtocolRouter
from price_reducer.services.scheduling_guard import SchedulingGuard
from price_reducer.services.token_broker import TokenBroker
from price_reducer.settings import Settings, settings as default_settings
from price_reducer.sync.reconciliation_sync import ReconciliationSync
from price_reducer.trading_client import TradingApiClient

logger = logging.getLogger(__name__)


def build_timeout(cfg: Settings) -> httpx.Timeout:
    return httpx.Timeout(cfg.http_timeout_seconds, connect=min(10.0, cfg.http_timeout_seconds))


def build_cipher(cfg: Settings) -> Optional[CredentialCipher]:
    if not cfg.encryption_key:
        logger.warning("[BOOT] ENCRYPTION_KEY is not set; stored credentials cannot be decrypted")
        return None
    return CredentialCipher(cfg.encryption_key)


def build_client_factory(cfg: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> ClientFactory:
    timeout = build_timeout(cfg)

    def factory(access_token: str) -> ProtocolClients:
        return ProtocolClients(
            legacy=TradingApiClient(
                access_token,
                api_url=cfg.get_trading_api_url(),
                site_id=cfg.ebay_site_id,
                compatibility_level=cfg.ebay_compatibility_level,
                timeout=timeout,
                transport=transport,
            ),
            modern=InventoryApiClient(
                access_token,
                base_url=cfg.get_api_base_url(),
                currency=cfg.ebay_currency,
                timeout=timeout,
                transport=transport,
            ),
        )

    return factory


class Container:
    """하나의 실행(잡/요청) 동안 공유되는 서비스 묶음. 토큰 캐시도 여기 범위로 제한됩니다."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        cfg: Settings = default_settings,
        clock: Optional[Clock] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = cfg
        self.clock = clock or SystemClock()
        self.session_factory = session_factory
        self.audit_logger = AuditLogger(session_factory)
        self.store = SqlListingStore(
            session_factory,
            self.audit_logger,
            default_reduction_percentage=Decimal(str(cfg.default_reduction_percentage)),
        )
        self.job_runner = JobRunner(session_factory, clock=self.clock)
        self.client_factory = build_client_factory(cfg, transport)
        self.token_broker = TokenBroker(
            self.store,
            EbayOAuthClient(cfg.get_oauth_token_url(), cfg.ebay_oauth_scopes, timeout=build_timeout(cfg), transport=transport),
            build_cipher(cfg),
            clock=self.clock,
            platform_client_id=cfg.ebay_client_id,
            platform_client_secret=cfg.ebay_client_secret,
        )
        self.router = ProtocolRouter(self.store, self.client_factory)

    def scheduling_guard(self) -> SchedulingGuard:
        cfg = self.settings
        return SchedulingGuard(
            self.store,
            self.token_broker,
            self.router,
            clock=self.clock,
            market_data=ListingMarketData(),
            business_timezone=cfg.business_timezone,
            inter_tenant_delay_seconds=cfg.inter_tenant_delay_seconds,
            default_interval_hours=cfg.default_reduction_interval_hours,
            fallback_floor=Decimal(str(cfg.fallback_floor_price)),
            error_cap=cfg.error_report_cap,
            execution_budget_seconds=cfg.execution_budget_seconds,
            safety_margin_seconds=cfg.execution_safety_margin_seconds,
        )

    def reconciliation_sync(self) -> ReconciliationSync:
        cfg = self.settings
        return ReconciliationSync(
            self.session_factory,
            self.token_broker,
            self.client_factory,
            clock=self.clock,
            job_runner=self.job_runner,
            page_size=cfg.sync_page_size,
            legacy_page_delay_seconds=cfg.legacy_page_delay_seconds,
            modern_item_delay_seconds=cfg.modern_item_delay_seconds,
            inter_tenant_delay_seconds=cfg.inter_tenant_delay_seconds,
            default_minimum_ratio=Decimal(str(cfg.default_minimum_price_ratio)),
            execution_budget_seconds=cfg.execution_budget_seconds,
            safety_margin_seconds=cfg.execution_safety_margin_seconds,
        )


def build_container(session_factory: Optional[Callable[[], Session]] = None, **kwargs) -> Container:
    if session_factory is None:
        from price_reducer.db import session_factory as default_session_factory

        session_factory = default_session_factory
    return Container(session_factory, **kwargs)
