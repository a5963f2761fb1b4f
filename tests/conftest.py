"""Pytest configuration and fixtures."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from price_reducer.clock import FixedClock
from price_reducer.models import (
    Base,
    ConnectionStatus,
    Listing,
    ListingProtocol,
    MarketCredential,
    ReductionStrategy,
    SellerAccount,
)
from price_reducer.services.credential_cipher import CredentialCipher

TEST_ENCRYPTION_KEY = "0123456789abcdef" * 4

# 테스트용 메모리 SQLite 엔진 (세션 간 같은 커넥션을 공유하도록 StaticPool)
test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)

TestSessionLocal = sessionmaker(
    bind=test_engine,
    autoflush=False,
    expire_on_commit=False,
)


@pytest.fixture(scope="function")
def session_factory():
    """
    각 테스트마다 새 스키마를 만들고, 서비스에 넘길 세션 팩토리를 돌려줍니다.
    """
    Base.metadata.create_all(bind=test_engine)
    try:
        yield TestSessionLocal
    finally:
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def test_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@pytest.fixture(scope="function")
def db_session(test_session: Session):
    """test_session alias."""
    yield test_session


@pytest.fixture
def clock() -> FixedClock:
    # 2026-03-10 12:00 UTC = 시카고 06:00 (같은 업무일)
    return FixedClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def cipher() -> CredentialCipher:
    return CredentialCipher(TEST_ENCRYPTION_KEY)


@pytest.fixture
def make_account(session_factory, cipher):
    """계정 + 자격 증명 생성 헬퍼"""

    def _make(
        name: str = "seller",
        vacation_mode: bool = False,
        refresh_token: str | None = "refresh-token",
        status: str = ConnectionStatus.CONNECTED.value,
        account_id: uuid.UUID | None = None,
    ) -> uuid.UUID:
        account_id = account_id or uuid.uuid4()
        with session_factory() as session:
            with session.begin():
                session.add(SellerAccount(id=account_id, name=name, vacation_mode=vacation_mode, is_active=True))
                session.flush()
                session.add(
                    MarketCredential(
                        account_id=account_id,
                        refresh_token_encrypted=cipher.encrypt(refresh_token) if refresh_token else None,
                        app_id="app-id",
                        client_secret_encrypted=cipher.encrypt("client-secret"),
                        connection_status=status,
                    )
                )
        return account_id

    return _make


@pytest.fixture
def make_strategy(session_factory):
    def _make(reduction_type: str = "percentage", amount: str | None = "5", name: str = "Default", **kwargs) -> uuid.UUID:
        strategy_id = uuid.uuid4()
        with session_factory() as session:
            with session.begin():
                session.add(
                    ReductionStrategy(
                        id=strategy_id,
                        name=name,
                        reduction_type=reduction_type,
                        reduction_amount=Decimal(amount) if amount is not None else None,
                        **kwargs,
                    )
                )
        return strategy_id

    return _make


@pytest.fixture
def make_listing(session_factory):
    def _make(account_id: uuid.UUID, **kwargs) -> uuid.UUID:
        values = dict(
            id=uuid.uuid4(),
            account_id=account_id,
            ebay_item_id=f"11{uuid.uuid4().int % 10**10:010d}",
            protocol=ListingProtocol.LEGACY.value,
            title="Vintage Camera",
            quantity_available=1,
            listing_status="Active",
            current_price=Decimal("50.00"),
            original_price=Decimal("50.00"),
            minimum_price=Decimal("30.00"),
            reduction_enabled=True,
        )
        values.update(kwargs)
        with session_factory() as session:
            with session.begin():
                session.add(Listing(**values))
        return values["id"]

    return _make


# 테스트 마커 정의
def pytest_configure(config):
    """Pytest 마커 등록."""
    config.addinivalue_line("markers", "unit: 단위 테스트 (DB 불필요)")
    config.addinivalue_line("markers", "integration: 통합 테스트 (메모리 DB + 가짜 eBay 클라이언트)")
    config.addinivalue_line("markers", "slow: 느린 테스트")
