import json
from typing import List, Union
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CRON_SECRET = "stockflow-cron-key"


class Settings(BaseSettings):
    app_name: str = "StockFlow Backend"
    env: str = "dev"
    log_level: str = "INFO"
    secret_key: str
    access_token_expire_minutes: int = 60

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)
    db_isolation_level: str | None = None
    db_statement_timeout_ms: int = Field(default=15_000, ge=0, le=600_000)
    db_transient_retry_attempts: int = Field(default=3, ge=1, le=10)

    # SCHEDULER
    cron_secret: str = DEFAULT_CRON_SECRET

    # NOTIFICATIONS
    notification_provider_default: str = "whatsapp_stub"
    waha_base_url: str | None = None
    waha_session: str = "default"
    waha_api_key: str | None = None
    notification_timeout_seconds: float = Field(default=10.0, gt=0, le=120)
    phone_country_code: str = "62"

    # LEDGER
    loan_reminder_interval_hours: int = Field(default=24, ge=1, le=24 * 30)
    loan_code_prefix: str = "LN"
    invoice_code_prefix: str = "INV"
    code_generation_attempts: int = Field(default=2, ge=1, le=10)
    movement_list_limit: int = Field(default=100, ge=1, le=1000)
    product_history_limit: int = Field(default=50, ge=1, le=500)

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    cors_origin_regex: str | None = None

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            if not v.strip():
                return []
            if v.startswith("["):
                parsed = json.loads(v)
                if not isinstance(parsed, list):
                    raise ValueError("CORS_ORIGINS JSON value must be a list")
                return [str(i).strip() for i in parsed if str(i).strip()]
            return [i.strip() for i in v.split(",") if i.strip()]
        if isinstance(v, list):
            return [str(i).strip() for i in v if str(i).strip()]
        raise ValueError(v)

    @field_validator("db_isolation_level", "waha_base_url", "waha_api_key", mode="before")
    @classmethod
    def normalize_optional_strings(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        env_value = self.env.lower().strip()
        if env_value not in {"prod", "production"}:
            return self

        weak_secrets = {
            "",
            "change_me",
            "change_me_please_to_a_long_random_string",
            "dev-secret-key-change-before-prod",
        }
        if self.secret_key.strip() in weak_secrets or len(self.secret_key.strip()) < 32:
            raise ValueError("SECRET_KEY must be a strong random value in production")

        if self.cron_secret.strip() in {"", DEFAULT_CRON_SECRET}:
            raise ValueError("CRON_SECRET must be changed in production")

        if "*" in self.cors_origins:
            raise ValueError("CORS_ORIGINS cannot contain '*' in production")
        if self.cors_origin_regex:
            raise ValueError("CORS_ORIGIN_REGEX cannot be set in production")

        if self.notification_provider_default == "waha" and not self.waha_base_url:
            raise ValueError("WAHA_BASE_URL is required when the waha provider is selected")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
    )


settings = Settings()
