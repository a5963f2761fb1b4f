import pytz
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # database_url: str = "postgresql+psycopg://reducer@/price_reducer?host=/var/run/postgresql&port=5432"
    database_url: str = "sqlite:///./price_reducer.db"
    db_auto_create_tables: bool = False

    # eBay 환경 (production / sandbox)
    ebay_environment: str = "production"
    ebay_api_base_url: str = "https://api.ebay.com"
    ebay_sandbox_api_base_url: str = "https://api.sandbox.ebay.com"
    ebay_trading_api_url: str = "https://api.ebay.com/ws/api.dll"
    ebay_sandbox_trading_api_url: str = "https://api.sandbox.ebay.com/ws/api.dll"
    ebay_oauth_token_url: str = "https://api.ebay.com/identity/v1/oauth2/token"
    ebay_sandbox_oauth_token_url: str = "https://api.sandbox.ebay.com/identity/v1/oauth2/token"
    ebay_oauth_scopes: list[str] = [
        "https://api.ebay.com/oauth/api_scope",
        "https://api.ebay.com/oauth/api_scope/sell.inventory",
        "https://api.ebay.com/oauth/api_scope/sell.account",
    ]
    ebay_site_id: str = "0"
    ebay_compatibility_level: str = "967"
    ebay_currency: str = "USD"

    # 계정별 앱 키가 없을 때 사용하는 플랫폼 앱 키
    ebay_client_id: str = ""
    ebay_client_secret: str = ""

    # refresh token 복호화 키 (hex 64자, AES-256)
    encryption_key: str = ""

    http_timeout_seconds: float = 30.0
    http_retry_count: int = 3  # tenacity 재시도 횟수 (네트워크 오류만)

    # 스케줄 (업무 시간대 기준)
    business_timezone: str = "America/Chicago"
    reduction_schedule_hour: int = 1
    reduction_schedule_minute: int = 10
    purge_schedule_hour: int = 3
    sync_interval_hours: int = 6
    scheduler_enabled: bool = False

    inter_tenant_delay_seconds: float = 1.0  # 계정 간 대기 시간
    sync_page_size: int = 200
    legacy_page_delay_seconds: float = 0.5  # GetMyeBaySelling 페이지 간 대기
    modern_item_delay_seconds: float = 0.2  # SKU별 offer 조회 간 대기

    # 호스트 실행 시간 한도
    execution_budget_seconds: float = 900.0
    execution_safety_margin_seconds: float = 60.0

    # 가격 인하 기본값
    default_minimum_price_ratio: float = 0.70  # 신규 리스팅 최저가 = 현재가의 70%
    fallback_floor_price: float = 0.99
    default_reduction_percentage: float = 2.0
    default_reduction_interval_hours: int = 24

    log_retention_days: int = 10
    error_report_cap: int = 20

    job_trigger_secret: str = ""

    @property
    def is_sandbox(self) -> bool:
        return self.ebay_environment.strip().lower() == "sandbox"

    def get_api_base_url(self) -> str:
        return self.ebay_sandbox_api_base_url if self.is_sandbox else self.ebay_api_base_url

    def get_trading_api_url(self) -> str:
        return self.ebay_sandbox_trading_api_url if self.is_sandbox else self.ebay_trading_api_url

    def get_oauth_token_url(self) -> str:
        return self.ebay_sandbox_oauth_token_url if self.is_sandbox else self.ebay_oauth_token_url

    @field_validator("database_url")
    @classmethod
    def validate_db_url(cls, v: str) -> str:
        if v and not v.startswith(("postgresql", "sqlite")):
            raise ValueError("DB URL은 'postgresql' 또는 'sqlite'로 시작해야 합니다.")
        return v

    @field_validator(
        "ebay_api_base_url",
        "ebay_sandbox_api_base_url",
        "ebay_trading_api_url",
        "ebay_sandbox_trading_api_url",
        "ebay_oauth_token_url",
        "ebay_sandbox_oauth_token_url",
    )
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL은 'http://' 또는 'https://'로 시작해야 합니다.")
        return v

    @field_validator("ebay_environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v.strip().lower() not in ("production", "sandbox"):
            raise ValueError("ebay_environment는 'production' 또는 'sandbox'여야 합니다.")
        return v.strip().lower()

    @field_validator(
        "inter_tenant_delay_seconds",
        "legacy_page_delay_seconds",
        "modern_item_delay_seconds",
        "execution_safety_margin_seconds",
    )
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("대기 시간은 0 이상이어야 합니다.")
        return v

    @field_validator("sync_page_size")
    @classmethod
    def validate_page_size(cls, v: int) -> int:
        if not 1 <= v <= 200:
            raise ValueError("sync_page_size는 1에서 200 사이여야 합니다.")
        return v

    @field_validator("default_minimum_price_ratio")
    @classmethod
    def validate_minimum_ratio(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("default_minimum_price_ratio는 0 초과 1 이하여야 합니다.")
        return v

    @field_validator("log_retention_days")
    @classmethod
    def validate_retention(cls, v: int) -> int:
        if v < 1:
            raise ValueError("log_retention_days는 1 이상이어야 합니다.")
        return v

    @field_validator("business_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        if v not in pytz.all_timezones_set:
            raise ValueError(f"알 수 없는 시간대입니다: {v}")
        return v

    @field_validator("encryption_key")
    @classmethod
    def validate_encryption_key(cls, v: str) -> str:
        if v and len(v) != 64:
            raise ValueError("encryption_key는 hex 64자(32바이트)여야 합니다.")
        return v

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", case_sensitive=False)


settings = Settings()
