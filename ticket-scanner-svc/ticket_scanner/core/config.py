from __future__ import annotations
from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    database_url: str = Field("sqlite+aiosqlite:///./tickets.db", alias="DATABASE_URL")
    store_timeout_seconds: float = Field(default=5.0, alias="STORE_TIMEOUT_SECONDS")

    # Validation / scan cycle
    validation_max_attempts: int = Field(default=3, alias="VALIDATION_MAX_ATTEMPTS")
    scan_cooldown_seconds: float = Field(default=2.0, alias="SCAN_COOLDOWN_SECONDS")
    flash_seconds: float = Field(default=5.0, alias="FLASH_SECONDS")
    recent_scans_limit: int = Field(default=10, alias="RECENT_SCANS_LIMIT")

    # Door / gate relay
    relay_enabled: bool = Field(default=True, alias="RELAY_ENABLED")
    relay_url: str = Field("http://localhost:3333/open", alias="RELAY_URL")
    relay_timeout_seconds: float = Field(default=3.0, alias="RELAY_TIMEOUT_SECONDS")

    # Local print agent
    print_enabled: bool = Field(default=True, alias="PRINT_ENABLED")
    print_agent_url: str = Field("http://127.0.0.1:17620", alias="PRINT_AGENT_URL")
    print_agent_token: str | None = Field(default=None, alias="PRINT_AGENT_TOKEN")
    print_health_timeout_seconds: float = Field(default=1.0, alias="PRINT_HEALTH_TIMEOUT_SECONDS")
    print_timeout_seconds: float = Field(default=5.0, alias="PRINT_TIMEOUT_SECONDS")
    print_include_qr: bool = Field(default=True, alias="PRINT_INCLUDE_QR")

    # Admin routes (import, clear, settings); open when unset
    admin_token: str | None = Field(default=None, alias="ADMIN_TOKEN")

    cors_origins: str = Field(
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000",
        alias="CORS_ORIGINS",
    )

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_file: str | None = Field(default=None, alias="LOG_FILE")

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False
        populate_by_name = True

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings

def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
