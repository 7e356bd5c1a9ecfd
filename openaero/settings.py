from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # database_url: str = "postgresql+psycopg://openaero@/openaero?host=/var/run/postgresql"
    database_url: str = "sqlite:///./openaero.db"
    db_auto_create_tables: bool = False

    environment: str = "production"  # development, test, production
    log_level: str = "INFO"

    supabase_url: str = ""
    supabase_service_role_key: str = ""

    # BOM: solution_bom_items 테이블이 기준, Solution.bom JSON 은 투영본
    enable_bom_dual_write: bool = True  # ENABLE_BOM_DUAL_WRITE

    # Alipay (RSA2)
    alipay_app_id: str = ""
    alipay_public_key: str = ""
    alipay_private_key: str = ""
    alipay_gateway_url: str = "https://openapi.alipay.com/gateway.do"

    # WeChat Pay (v2, MD5)
    wechat_app_id: str = ""
    wechat_mch_id: str = ""
    wechat_pay_key: str = ""
    wechat_query_url: str = "https://api.mch.weixin.qq.com/pay/orderquery"

    payment_amount_tolerance: float = 0.01  # 元
    payment_sync_retry_count: int = 3
    payment_sync_batch_size: int = 100

    platform_fee_rate: float = 0.5  # 플랫폼 수수료율 (50%)
    review_overdue_days: int = 3
    batch_review_max_size: int = 50

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @field_validator("database_url")
    @classmethod
    def validate_db_url(cls, v: str) -> str:
        if not v.startswith(("postgresql", "sqlite")):
            raise ValueError("DB URL은 'postgresql' 또는 'sqlite'로 시작해야 합니다.")
        return v

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in ("development", "test", "production"):
            raise ValueError("environment는 development, test, production 중 하나여야 합니다.")
        return v

    @field_validator("alipay_gateway_url", "wechat_query_url")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL은 'http://' 또는 'https://'로 시작해야 합니다.")
        return v

    @field_validator("platform_fee_rate")
    @classmethod
    def validate_fee_rate(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("platform_fee_rate는 0에서 1 사이여야 합니다.")
        return v

    @field_validator("payment_amount_tolerance")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("금액 허용 오차는 0 이상이어야 합니다.")
        return v

    @field_validator("batch_review_max_size")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        if not 1 <= v <= 200:
            raise ValueError("batch_review_max_size는 1에서 200 사이여야 합니다.")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )


settings = Settings()
