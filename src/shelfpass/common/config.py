"""Shelfpass configuration via pydantic-settings."""

import warnings
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_DEFAULTS = {
    "qr_key": "insecure-qr-key-change-me",
    "api_key": "insecure-admin-key-change-me",
}


class ShelfpassSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SHELFPASS_")

    environment: str = "development"

    # Shared symmetric passphrase. Every client build must carry the same value;
    # there is no rotation.
    qr_key: str = "insecure-qr-key-change-me"

    # Token lifetime and holder-side refresh
    qr_validity_minutes: int = 20
    refresh_margin_seconds: int = 120

    # Scanner behaviour
    dedup_window_seconds: float = 2.0
    lookup_timeout_seconds: float = 5.0
    enforce_latest_version: bool = False
    default_location: str = "main_entrance"

    # QR image rendering
    qr_error_correction: str = "M"
    qr_box_size: int = 10
    qr_border: int = 2

    # Database
    db_url: str = "sqlite+aiosqlite:///./data/shelfpass.db"

    # API
    api_title: str = "Shelfpass"
    api_version: str = "0.1.0"
    api_key: str = "insecure-admin-key-change-me"
    host: str = "0.0.0.0"
    port: int = 8080
    api_prefix: str = ""
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    log_level: str = "INFO"

    # Pagination
    default_page_size: int = 50
    max_page_size: int = 200

    @property
    def qr_validity_seconds(self) -> int:
        return self.qr_validity_minutes * 60

    def validate_for_production(self) -> None:
        """Raise if insecure defaults are used in non-development environments."""
        insecure_fields = [
            field
            for field, default in _INSECURE_DEFAULTS.items()
            if getattr(self, field) == default
        ]

        if self.environment != "development" and insecure_fields:
            env_vars = ", ".join(f"SHELFPASS_{f.upper()}" for f in insecure_fields)
            raise RuntimeError(
                f"Insecure default values detected in '{self.environment}' environment. "
                f"Set these environment variables to secure values: {env_vars}. "
                "The QR key must be identical across every client build."
            )

        if insecure_fields:
            warnings.warn(
                "Using insecure default keys, set SHELFPASS_QR_KEY and "
                "SHELFPASS_API_KEY for production",
                UserWarning,
                stacklevel=2,
            )


@lru_cache
def get_settings() -> ShelfpassSettings:
    settings = ShelfpassSettings()
    settings.validate_for_production()
    return settings
