import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


# PostgreSQL 에서는 JSONB, 그 외(SQLite 테스트)는 JSON
JsonType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(10, 2)


class ListingStatus(str, enum.Enum):
    ACTIVE = "Active"
    ENDED = "Ended"


class ListingProtocol(str, enum.Enum):
    LEGACY = "LEGACY"  # Trading API (ItemID 기반 XML)
    MODERN = "MODERN"  # Inventory API (SKU/offer 기반 REST)
    UNCLASSIFIED = "UNCLASSIFIED"


class ConnectionStatus(str, enum.Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class TriggerType(str, enum.Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    AUTOMATED = "automated"


class SellerAccount(Base):
    __tablename__ = "seller_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    vacation_mode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    credential: Mapped["MarketCredential | None"] = relationship(back_populates="account", uselist=False)


class MarketCredential(Base):
    """
    계정별 eBay 연결 정보.
    refresh token / client secret 은 암호화된 상태로만 저장합니다 ("<iv hex>:<cipher hex>").
    access token 은 저장하지 않습니다.
    """
    __tablename__ = "market_credentials"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("seller_accounts.id"), nullable=False, unique=True)

    refresh_token_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)
    app_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_secret_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)

    connection_status: Mapped[str] = mapped_column(Text, nullable=False, default=ConnectionStatus.CONNECTED.value)
    disconnected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    account: Mapped[SellerAccount] = relationship(back_populates="credential")


class ReductionStrategy(Base):
    """
    가격 인하 전략.
    스키마 세대에 따라 reduction_type/strategy_type, reduction_amount/reduction_percentage 가 혼용되므로
    읽을 때는 strategy_normalizer 를 거쳐야 합니다.
    """
    __tablename__ = "reduction_strategies"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("seller_accounts.id"), nullable=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)

    reduction_type: Mapped[str | None] = mapped_column(Text, nullable=True)  # percentage, dollar
    strategy_type: Mapped[str | None] = mapped_column(Text, nullable=True)  # 구 스키마: fixed_percentage, market_based, time_based
    reduction_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    reduction_percentage: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    floor_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    frequency_days: Mapped[int] = mapped_column(Integer, nullable=False, default=7)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Listing(Base):
    __tablename__ = "listings"
    __table_args__ = (
        UniqueConstraint("account_id", "ebay_item_id", name="uq_listings_account_item"),
        UniqueConstraint("account_id", "sku", name="uq_listings_account_sku"),
        Index("ix_listings_due", "reduction_enabled", "listing_status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("seller_accounts.id"), nullable=False)

    # 원격 식별자: Legacy 는 ebay_item_id, Modern 은 sku + offer_id
    ebay_item_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    sku: Mapped[str | None] = mapped_column(Text, nullable=True)
    offer_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    protocol: Mapped[str] = mapped_column(Text, nullable=False, default=ListingProtocol.UNCLASSIFIED.value)

    # 원격 소유 필드 (ReconciliationSync 가 갱신)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity_available: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    quantity_sold: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    listing_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    listing_status: Mapped[str] = mapped_column(Text, nullable=False, default=ListingStatus.ACTIVE.value)
    start_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # 엔진 소유 필드 (SchedulingGuard 가 갱신, sync 는 절대 덮어쓰지 않음)
    current_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    original_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    minimum_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    reduction_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    strategy_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("reduction_strategies.id"), nullable=True)
    reduction_percentage: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    reduction_interval: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 시간 단위
    last_reduction_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_reduction_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    total_reductions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    market_average_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    strategy: Mapped[ReductionStrategy | None] = relationship()


class PriceReductionLog(Base):
    """가격 변경 감사 로그 (append-only)"""
    __tablename__ = "price_reduction_logs"
    __table_args__ = (Index("ix_price_reduction_logs_created_at", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("seller_accounts.id"), nullable=False)
    listing_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("listings.id"), nullable=False)

    ebay_item_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    sku: Mapped[str | None] = mapped_column(Text, nullable=True)
    title: Mapped[str | None] = mapped_column(Text, nullable=True)

    original_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    reduced_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    reduction_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    reduction_percentage: Mapped[Decimal | None] = mapped_column(Money, nullable=True)

    trigger_type: Mapped[str] = mapped_column(Text, nullable=False)  # manual, scheduled, automated
    strategy_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    strategy_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    strategy_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    protocol: Mapped[str | None] = mapped_column(Text, nullable=True)
    triggered_by: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class RunGuardState(Base):
    """잡 종류별 마지막 완료 사이클의 업무일 키"""
    __tablename__ = "run_guard_state"

    job_type: Mapped[str] = mapped_column(Text, primary_key=True)
    last_completed_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class SyncCursor(Base):
    __tablename__ = "sync_cursors"
    __table_args__ = (UniqueConstraint("account_id", "source", name="uq_sync_cursors_account_source"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("seller_accounts.id"), nullable=False)
    source: Mapped[str] = mapped_column(Text, nullable=False)  # LEGACY, MODERN

    # {"next_page": int, "pass_started_at": iso8601}
    cursor: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class JobRun(Base):
    __tablename__ = "job_runs"
    __table_args__ = (Index("ix_job_runs_job_type_started_at", "job_type", "started_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    job_type: Mapped[str] = mapped_column(Text, nullable=False)  # price_reduction, listing_sync, log_purge
    account_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    status: Mapped[str] = mapped_column(Text, nullable=False)  # running, success, partial, fail

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    read_count: Mapped[int] = mapped_column(Integer, default=0)
    write_count: Mapped[int] = mapped_column(Integer, default=0)
    error_count: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    meta: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
