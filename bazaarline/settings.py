from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ProfitTier(BaseModel):
    min_price: float
    max_price: Optional[float] = None
    rate: float


DEFAULT_PROFIT_TIERS = [
    ProfitTier(min_price=0, max_price=1000, rate=10),
    ProfitTier(min_price=1000, max_price=5000, rate=8),
    ProfitTier(min_price=5000, max_price=10000, rate=6),
    ProfitTier(min_price=10000, max_price=None, rate=5),
]


class Settings(BaseSettings):
    app_name: str = Field("Bazaarline Order Engine", alias="APP_NAME")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    jwt_secret: str = Field("change-me-in-production", alias="JWT_SECRET")
    jwt_issuer: str = Field("bazaarline", alias="JWT_ISSUER")
    token_ttl_seconds: int = Field(3600, alias="TOKEN_TTL_SECONDS")
    admin_user: str = Field("admin", alias="ADMIN_USER")
    admin_password: str = Field("admin-password", alias="ADMIN_PASSWORD")
    admin_user_id: str = Field("admin-1", alias="ADMIN_USER_ID")
    cors_allow_origins: str = Field("*", alias="CORS_ALLOW_ORIGINS")
    database_url: str = Field("", alias="DATABASE_URL")
    db_echo: bool = Field(False, alias="DB_ECHO")
    catalog_seed_path: str = Field("", alias="CATALOG_SEED_PATH")
    order_number_prefix: str = Field("ORD", alias="ORDER_NUMBER_PREFIX")
    max_bulk_orders: int = Field(100, alias="MAX_BULK_ORDERS")
    bulk_action_timeout_seconds: float = Field(30.0, alias="BULK_ACTION_TIMEOUT_SECONDS")
    admin_profit_tiers: List[ProfitTier] = Field(
        default_factory=lambda: list(DEFAULT_PROFIT_TIERS),
        alias="ADMIN_PROFIT_TIERS",
    )
    unmatched_cost_ratio: float = Field(0.7, alias="UNMATCHED_COST_RATIO")
    order_merge_window_minutes: int = Field(30, alias="ORDER_MERGE_WINDOW_MINUTES")
    carrier_api_url: str = Field("", alias="CARRIER_API_URL")
    carrier_api_token: str = Field("", alias="CARRIER_API_TOKEN")
    carrier_timeout_seconds: float = Field(10.0, alias="CARRIER_TIMEOUT_SECONDS")
    rate_limit_enabled: bool = Field(False, alias="RATE_LIMIT_ENABLED")
    rate_limit_default: str = Field("120/minute", alias="RATE_LIMIT_DEFAULT")
    request_id_header: str = Field("X-Request-Id", alias="REQUEST_ID_HEADER")

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    @property
    def allowed_origins(self) -> List[str]:
        return [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]


def resolve_env_file() -> Optional[Path]:
    explicit = os.getenv("BAZAARLINE_ENV_FILE")
    if explicit:
        return Path(explicit)
    default = Path.cwd() / "config" / "api.env"
    if default.exists():
        return default
    return None


def load_settings() -> Settings:
    env_file = resolve_env_file()
    if env_file:
        return Settings(_env_file=str(env_file))
    return Settings()
