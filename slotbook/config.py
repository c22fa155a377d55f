"""
Centralized configuration with environment variable overrides.

Backend location, paging limits, and booking input limits are all
configurable here. Nothing is hardcoded in catalog or booking logic.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


@dataclass(frozen=True)
class ApiConfig:
    """Remote backend connection settings."""

    base_url: str = os.getenv("SLOTBOOK_API_BASE_URL", "http://localhost:8080")
    timeout_sec: float = _safe_float("SLOTBOOK_API_TIMEOUT", "10.0")
    token: str = os.getenv("SLOTBOOK_API_TOKEN", "")


@dataclass(frozen=True)
class CatalogConfig:
    """Paging limits for catalog and ledger fetches."""

    page_size: int = _safe_int("CATALOG_PAGE_SIZE", "200")
    max_pages: int = _safe_int("CATALOG_MAX_PAGES", "50")
    ledger_page_size: int = _safe_int("LEDGER_PAGE_SIZE", "500")
    ledger_max_pages: int = _safe_int("LEDGER_MAX_PAGES", "50")


@dataclass(frozen=True)
class BookingConfig:
    """Input limits and fallback text for booking commits."""

    parent_note_max_length: int = _safe_int("PARENT_NOTE_MAX_LENGTH", "1000")
    default_error_message: str = os.getenv(
        "DEFAULT_ERROR_MESSAGE", "Something went wrong. Please try again later."
    )


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    api: ApiConfig = field(default_factory=ApiConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    booking: BookingConfig = field(default_factory=BookingConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    client_name: str = os.getenv("CLIENT_NAME", "slotbook")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if config.api.timeout_sec <= 0:
        raise ValueError(
            f"SLOTBOOK_API_TIMEOUT must be > 0, got {config.api.timeout_sec}"
        )
    if not config.api.base_url.startswith(("http://", "https://")):
        raise ValueError(
            f"SLOTBOOK_API_BASE_URL must be an http(s) URL, got {config.api.base_url!r}"
        )

    for name, value in [
        ("CATALOG_PAGE_SIZE", config.catalog.page_size),
        ("CATALOG_MAX_PAGES", config.catalog.max_pages),
        ("LEDGER_PAGE_SIZE", config.catalog.ledger_page_size),
        ("LEDGER_MAX_PAGES", config.catalog.ledger_max_pages),
    ]:
        if value < 1:
            raise ValueError(f"{name} must be >= 1, got {value}")

    if config.booking.parent_note_max_length < 1:
        raise ValueError(
            "PARENT_NOTE_MAX_LENGTH must be >= 1, "
            f"got {config.booking.parent_note_max_length}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info("Configuration loaded for '%s' (%s)", config.client_name, config.api.base_url)
    return config


# Singleton instance
settings = load_config()
