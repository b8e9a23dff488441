from decimal import Decimal
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class InvalidConfigurationError(ValueError):
    """Credit rules that must abort startup."""


class CreditRules(BaseModel):
    """Process-wide balance and transaction bounds. Built once, read-only."""

    model_config = ConfigDict(frozen=True)

    minimum_balance: Decimal = Decimal("0")
    maximum_balance: Decimal = Decimal("1000000")
    minimum_transaction: Decimal = Decimal("0.01")
    maximum_transaction: Decimal = Decimal("100000")
    low_balance_threshold: Decimal = Decimal("10")
    critical_balance_threshold: Decimal = Decimal("5")

    @model_validator(mode="after")
    def _check_bounds(self) -> "CreditRules":
        if self.maximum_balance < self.minimum_balance:
            raise ValueError("maximum_balance must be >= minimum_balance")
        if self.minimum_transaction <= 0:
            raise ValueError("minimum_transaction must be positive")
        if self.maximum_transaction < self.minimum_transaction:
            raise ValueError("maximum_transaction must be >= minimum_transaction")
        if self.critical_balance_threshold > self.low_balance_threshold:
            raise ValueError("critical_balance_threshold must be <= low_balance_threshold")
        return self


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    secret_key: str = Field(default="change-me-in-production-min-32-chars")
    # CORS: comma-separated in env, exposed as list
    cors_origins_raw: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins_raw.split(",") if o.strip()]

    # Ledger storage: "mongo" | "memory"
    ledger_backend: str = Field(default="mongo", alias="LEDGER_BACKEND")
    ledger_max_retries: int = Field(default=3, alias="LEDGER_MAX_RETRIES")
    ledger_retry_base_delay_ms: int = Field(default=100, alias="LEDGER_RETRY_BASE_DELAY_MS")

    # MongoDB (replica set required for multi-document transactions)
    mongodb_uri: str = Field(default="mongodb://localhost:27017/?replicaSet=rs0", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="credit_ledger", alias="MONGODB_DB_NAME")

    # Redis (ARQ worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # Business rules
    min_credit_balance: Decimal = Field(default=Decimal("0"), alias="MIN_CREDIT_BALANCE")
    max_credit_balance: Decimal = Field(default=Decimal("1000000"), alias="MAX_CREDIT_BALANCE")
    min_credit_transaction: Decimal = Field(default=Decimal("0.01"), alias="MIN_CREDIT_TRANSACTION")
    max_credit_transaction: Decimal = Field(default=Decimal("100000"), alias="MAX_CREDIT_TRANSACTION")
    low_balance_threshold: Decimal = Field(default=Decimal("10"), alias="LOW_BALANCE_THRESHOLD")
    critical_balance_threshold: Decimal = Field(default=Decimal("5"), alias="CRITICAL_BALANCE_THRESHOLD")

    # Reservations
    reservation_ttl_seconds: int = Field(default=300, alias="RESERVATION_TTL_SECONDS")
    max_reservations_per_user: int = Field(default=5, alias="MAX_RESERVATIONS_PER_USER")

    def credit_rules(self) -> CreditRules:
        try:
            return CreditRules(
                minimum_balance=self.min_credit_balance,
                maximum_balance=self.max_credit_balance,
                minimum_transaction=self.min_credit_transaction,
                maximum_transaction=self.max_credit_transaction,
                low_balance_threshold=self.low_balance_threshold,
                critical_balance_threshold=self.critical_balance_threshold,
            )
        except ValidationError as e:
            raise InvalidConfigurationError(f"Invalid credit rules: {e}") from e


@lru_cache
def get_settings() -> Settings:
    return Settings()


@lru_cache
def get_credit_rules() -> CreditRules:
    """Rules for this process; raises InvalidConfigurationError on bad bounds."""
    return get_settings().credit_rules()
