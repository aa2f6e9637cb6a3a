# overlay_plane/config.py
"""
Application Configuration
Uses pydantic-settings for environment variable management
"""

import logging
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables
    Create a .env file for local development
    """

    # === Application ===
    APP_NAME: str = "Overlay Plane"
    APP_VERSION: str = "1.0.0"
    ENV: str = "development"  # development, staging, production
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # === Database ===
    DATABASE_URL: str = "sqlite:///./overlay_plane.db"
    DB_LOCK_TIMEOUT: float = 1.0  # seconds to wait for the SQLite write lock

    # === WireGuard Network ===
    DEFAULT_LISTEN_PORT: int = 51820

    # Hub forwarding directives (emitted into the hub config, never executed)
    HUB_POST_UP: str = "sysctl -w net.ipv4.ip_forward=1"
    HUB_POST_DOWN: str = "sysctl -w net.ipv4.ip_forward=0"

    # === Key Material ===
    KEY_BACKEND: str = "x25519"  # x25519 (in-process) or wg (wireguard-tools)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="OVERLAY_",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings instance
    Use this to get settings throughout the application
    """
    return Settings()


def configure_logging(config: Optional[Settings] = None) -> None:
    """Apply the process-wide logging configuration"""
    config = config or get_settings()
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
        format=LOG_FORMAT
    )


settings = get_settings()
