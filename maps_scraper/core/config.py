"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class ConfigError(RuntimeError):
    """Raised when an environment value cannot be parsed."""


@dataclass(frozen=True)
class Settings:
    # Browser
    headless: bool = True
    viewport_width: int = 1920
    viewport_height: int = 1080
    user_agent: str = DEFAULT_USER_AGENT

    # Timeouts (milliseconds, handed to Playwright)
    navigation_timeout_ms: int = 30000
    non_ascii_navigation_timeout_ms: int = 45000
    detail_timeout_ms: int = 15000
    email_timeout_ms: int = 5000
    contact_page_timeout_ms: int = 3000

    # Waits (seconds)
    initial_load_wait: float = 3.0
    detail_settle_wait: float = 2.0
    detail_pause: float = 0.5
    hours_expand_wait: float = 0.8
    email_settle_wait: float = 1.0
    email_batch_delay: float = 1.0
    region_delay: float = 2.0
    query_delay: float = 1.0

    # Retry policy
    retry_base_delay: float = 1.0
    retry_max_delay: float = 8.0
    navigation_attempts: int = 2
    detail_attempts: int = 3

    # Scroll heuristics
    scroll_base_delay: float = 0.5
    scroll_delay_increment: float = 0.02
    scroll_end_key_every: int = 3
    stall_more_threshold: int = 2
    stall_ancestor_threshold: int = 3
    stall_stop_threshold: int = 8
    listing_ceiling: int = 200
    more_button_wait: float = 2.0
    ancestor_scroll_wait: float = 1.0

    # Email harvesting
    email_batch_size: int = 5
    search_contact_page: bool = True

    # Sinks and entry points
    output_path: str = ""
    ingest_api_url: str = ""
    database_url: str = ""
    failed_payload_dir: str = "data/failed"
    worker_port: int = 8080


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_str(name: str, default: str = "") -> str:
    value: Optional[str] = os.getenv(name)
    return value.strip() if value else default


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    defaults = Settings()
    settings = Settings(
        headless=_env_bool("MAPS_HEADLESS", defaults.headless),
        user_agent=_env_str("MAPS_USER_AGENT", defaults.user_agent),
        navigation_timeout_ms=_env_int("MAPS_NAVIGATION_TIMEOUT_MS", defaults.navigation_timeout_ms),
        non_ascii_navigation_timeout_ms=_env_int(
            "MAPS_NON_ASCII_NAVIGATION_TIMEOUT_MS", defaults.non_ascii_navigation_timeout_ms
        ),
        detail_timeout_ms=_env_int("MAPS_DETAIL_TIMEOUT_MS", defaults.detail_timeout_ms),
        email_timeout_ms=_env_int("MAPS_EMAIL_TIMEOUT_MS", defaults.email_timeout_ms),
        retry_base_delay=_env_float("MAPS_RETRY_BASE_DELAY", defaults.retry_base_delay),
        retry_max_delay=_env_float("MAPS_RETRY_MAX_DELAY", defaults.retry_max_delay),
        navigation_attempts=_env_int("MAPS_NAVIGATION_ATTEMPTS", defaults.navigation_attempts),
        detail_attempts=_env_int("MAPS_DETAIL_ATTEMPTS", defaults.detail_attempts),
        scroll_base_delay=_env_float("MAPS_SCROLL_BASE_DELAY", defaults.scroll_base_delay),
        scroll_delay_increment=_env_float("MAPS_SCROLL_DELAY_INCREMENT", defaults.scroll_delay_increment),
        stall_more_threshold=_env_int("MAPS_STALL_MORE_THRESHOLD", defaults.stall_more_threshold),
        stall_ancestor_threshold=_env_int("MAPS_STALL_ANCESTOR_THRESHOLD", defaults.stall_ancestor_threshold),
        stall_stop_threshold=_env_int("MAPS_STALL_STOP_THRESHOLD", defaults.stall_stop_threshold),
        listing_ceiling=_env_int("MAPS_LISTING_CEILING", defaults.listing_ceiling),
        email_batch_size=_env_int("MAPS_EMAIL_BATCH_SIZE", defaults.email_batch_size),
        search_contact_page=_env_bool("MAPS_SEARCH_CONTACT_PAGE", defaults.search_contact_page),
        output_path=_env_str("MAPS_OUTPUT_PATH"),
        ingest_api_url=_env_str("INGEST_API_URL"),
        database_url=_env_str("DATABASE_URL"),
        failed_payload_dir=_env_str("MAPS_FAILED_DIR", defaults.failed_payload_dir),
        worker_port=_env_int("PORT", defaults.worker_port),
    )

    if settings.email_batch_size < 1:
        raise ConfigError("MAPS_EMAIL_BATCH_SIZE must be at least 1")
    if settings.navigation_attempts < 1 or settings.detail_attempts < 1:
        raise ConfigError("retry attempts must be at least 1")
    if not (settings.output_path or settings.ingest_api_url or settings.database_url):
        logger.warning("No MAPS_OUTPUT_PATH, INGEST_API_URL or DATABASE_URL configured; records go to stdout.")

    return settings
