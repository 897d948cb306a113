"""
The Link Phone - Configuration Management

Centralized configuration using Pydantic Settings.
All secrets and environment-specific values are loaded from environment variables.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Hierarchy (highest to lowest priority):
    1. Environment variables
    2. .env file
    3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: str = "development"
    app_debug: bool = True
    app_log_level: str = "INFO"
    log_json_format: bool = False

    # --- Server ---
    backend_host: str = "0.0.0.0"
    backend_port: int = 8000

    # --- Practice management backend ---
    # Consumed endpoints: SIP provisioning and call logging
    link_api_base_url: str = "http://localhost:5000"
    link_api_token: Optional[str] = None
    sip_provision_path: str = "/api/ringcentral/sip-provision"
    log_call_path: str = "/api/ringcentral/log-call"
    api_request_timeout_seconds: float = 10.0

    # --- Telephony ---
    # "simulator" = in-memory phone adapter (default, no SDK required)
    telephony_provider: str = "simulator"
    default_country_code: str = "+44"
    call_setup_timeout_seconds: float = 30.0
    auto_decline_seconds: float = 30.0
    post_call_reset_seconds: float = 2.0
    duration_tick_seconds: float = 1.0
    simulator_microphone_granted: bool = True

    # --- Phone registry ---
    max_phones: int = 100
    phone_idle_ttl_minutes: int = 60
    cleanup_interval_seconds: int = 60
    recent_calls_max: int = 200
    notices_max: int = 50

    # --- Security ---
    allowed_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse comma-separated origins into list."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env.lower() == "production"

    @property
    def simulation_enabled(self) -> bool:
        """Simulation endpoints require the simulator provider outside production."""
        return self.telephony_provider == "simulator" and not self.is_production


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance.

    Use dependency injection in routes:
        settings: Settings = Depends(get_settings)
    """
    return Settings()


# Convenience export
settings = get_settings()
