"""Application settings and configuration management."""
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


GatePolicy = Literal["cooldown", "quota", "none"]


class StoreSettings(BaseSettings):
    """Remote document store configuration."""

    backend: Literal["firestore", "memory"] = "firestore"
    project_id: Optional[str] = None  # Falls back to GOOGLE_CLOUD_PROJECT
    database: Optional[str] = None  # "(default)" when unset

    # Collection paths; {admin_id} is interpolated per hotel
    guests_collection: str = "guests"
    service_requests_collection: str = "serviceRequests"
    food_orders_path: str = "users/{admin_id}/foodOrders"
    menu_items_path: str = "users/{admin_id}/menuItems"

    model_config = SettingsConfigDict(env_prefix="STORE_")


class RedisSettings(BaseSettings):
    """Redis configuration for per-guest local state."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    ssl: bool = False
    socket_timeout: int = 5
    socket_connect_timeout: int = 5
    key_prefix: str = "roomio"

    model_config = SettingsConfigDict(env_prefix="REDIS_")


class PortalSettings(BaseSettings):
    """Guest portal behaviour: tracking, progress, gating and session liveness."""

    history_limit: int = 30  # Max tracked ids per list

    progress_tick_seconds: float = 1.0
    arrival_sweep_seconds: float = 30.0
    arrival_threshold_seconds: int = 120  # "Arriving soon" window

    # Gating
    gate_policy: GatePolicy = "cooldown"
    service_policies: dict[str, GatePolicy] = {}  # Per-service override, e.g. {"laundry": "quota"}
    cooldown_seconds: int = 3600
    free_requests: int = 2
    paid_request_charge: float = 100.0

    # Session liveness
    heartbeat_seconds: float = 60.0
    session_idle_timeout_seconds: int = 180  # Reaper logs out guests silent this long
    portal_idle_seconds: int = 300  # API closes portals without client activity
    reaper_interval_seconds: float = 60.0

    request_source: str = "guest-web"

    model_config = SettingsConfigDict(env_prefix="PORTAL_")

    def policy_for(self, service_key: str) -> GatePolicy:
        """Gate policy for a service type, honouring per-service overrides."""
        return self.service_policies.get(service_key, self.gate_policy)


class ApiSettings(BaseSettings):
    """HTTP surface configuration."""

    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]

    model_config = SettingsConfigDict(env_prefix="API_")


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["json", "console"] = "json"

    model_config = SettingsConfigDict(env_prefix="LOG_")


class Settings(BaseSettings):
    """Main application settings."""

    environment: Literal["dev", "staging", "prod"] = "dev"

    # Sub-settings
    store: StoreSettings = StoreSettings()
    redis: RedisSettings = RedisSettings()
    portal: PortalSettings = PortalSettings()
    api: ApiSettings = ApiSettings()
    logging: LoggingSettings = LoggingSettings()

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    def food_orders_path(self, admin_id: str) -> str:
        """Collection path of a hotel's food orders."""
        return self.store.food_orders_path.replace("{admin_id}", admin_id)

    def menu_items_path(self, admin_id: str) -> str:
        """Collection path of a hotel's menu items."""
        return self.store.menu_items_path.replace("{admin_id}", admin_id)


# Global settings instance
settings = Settings()
