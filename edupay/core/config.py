from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Ledger money: amounts are whole multiples of currency_unit (UGX has no minor unit)
    currency: str = Field("UGX", alias="CURRENCY")
    currency_unit: Decimal = Field(Decimal("1"), alias="CURRENCY_UNIT", gt=0)
    receipt_prefix: str = Field("RCP", alias="RECEIPT_PREFIX")

    # Optimistic concurrency: full read-validate-allocate-write attempts per operation
    ledger_max_attempts: int = Field(3, alias="LEDGER_MAX_ATTEMPTS", ge=1)
    ledger_retry_wait_seconds: float = Field(0.05, alias="LEDGER_RETRY_WAIT_SECONDS", ge=0)

    # Post-commit collaborators; receipts are always issued
    notifications_enabled: bool = Field(True, alias="NOTIFICATIONS_ENABLED")
    anchoring_enabled: bool = Field(False, alias="ANCHORING_ENABLED")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
