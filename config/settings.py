"""
Application settings loaded from environment variables.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # ── Broker credentials ───────────────────────────────────────────────
    pipedream_project_id: str = ""
    pipedream_client_id: str = ""
    pipedream_client_secret: str = ""
    pipedream_project_environment: str = "development"   # development | production
    pipedream_api_host: str = "api.pipedream.com"
    pipedream_frontend_host: str = "pipedream.com"

    # ── Catalog search ───────────────────────────────────────────────────
    search_debounce_ms: int = 300
    search_page_size: int = 10

    # ── Connect tokens / handshake ───────────────────────────────────────
    token_refresh_skew_seconds: int = 30       # treat tokens this close to expiry as stale
    handshake_timeout_seconds: Optional[float] = None   # None → wait until the widget reports back
    connect_redirect_base: str = "http://localhost:8000"  # base URL for widget callbacks

    # ── Sessions ─────────────────────────────────────────────────────────
    session_idle_ttl_seconds: int = 1800       # abandoned sessions are closed after this
    session_sweep_interval_seconds: int = 60

    # ── Server ───────────────────────────────────────────────────────────
    port: int = 8000
    host: str = "0.0.0.0"
    debug: bool = False
    cors_origins: list = ["*"]

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
    }

    def broker_configured(self) -> bool:
        """True when all three broker credentials are present."""
        return bool(
            self.pipedream_project_id
            and self.pipedream_client_id
            and self.pipedream_client_secret
        )

    @property
    def broker_api_base(self) -> str:
        return f"https://{self.pipedream_api_host}"


config = Settings()
