"""Process configuration loaded from environment variables.

Each worker reads its own frozen settings object once at startup.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class SweeperSettings:
    """Hold expiry sweeper configuration."""

    interval_seconds: float = 30.0
    batch_limit: int = 500


@dataclass(frozen=True)
class PublisherSettings:
    """Outbox drain, batching, throttling and retry configuration."""

    max_batch_bytes: int = 256 * 1024
    max_batch_items: int = 500
    max_messages_per_second: float = 5.0
    max_attempts: int = 8
    backoff_base_seconds: float = 2.0
    backoff_cap_seconds: float = 900.0
    claim_limit: int = 2000
    poll_interval_seconds: float = 5.0


@dataclass(frozen=True)
class ChannelSettings:
    """External ARI channel endpoint configuration."""

    endpoint_url: str = ""
    partner_id: str = ""
    credentials_file: str | None = None
    timeout_seconds: float = 30.0


def load_sweeper_settings() -> SweeperSettings:
    return SweeperSettings(
        interval_seconds=_env_float("SWEEPER_INTERVAL_SECONDS", 30.0),
        batch_limit=_env_int("SWEEPER_BATCH_LIMIT", 500),
    )


def load_publisher_settings() -> PublisherSettings:
    settings = PublisherSettings(
        max_batch_bytes=_env_int("ARI_MAX_BATCH_BYTES", 256 * 1024),
        max_batch_items=_env_int("ARI_MAX_BATCH_ITEMS", 500),
        max_messages_per_second=_env_float("ARI_MAX_MESSAGES_PER_SECOND", 5.0),
        max_attempts=_env_int("ARI_MAX_ATTEMPTS", 8),
        backoff_base_seconds=_env_float("ARI_BACKOFF_BASE_SECONDS", 2.0),
        backoff_cap_seconds=_env_float("ARI_BACKOFF_CAP_SECONDS", 900.0),
        claim_limit=_env_int("ARI_CLAIM_LIMIT", 2000),
        poll_interval_seconds=_env_float("ARI_POLL_INTERVAL_SECONDS", 5.0),
    )
    if settings.max_messages_per_second <= 0:
        raise RuntimeError("ARI_MAX_MESSAGES_PER_SECOND must be positive")
    if settings.max_batch_items < 1 or settings.max_batch_bytes < 1024:
        raise RuntimeError("ARI batch limits are too small")
    return settings


def load_channel_settings() -> ChannelSettings:
    return ChannelSettings(
        endpoint_url=os.environ.get("ARI_ENDPOINT_URL", "").rstrip("/"),
        partner_id=os.environ.get("ARI_PARTNER_ID", ""),
        credentials_file=os.environ.get("ARI_CREDENTIALS_FILE") or None,
        timeout_seconds=_env_float("ARI_HTTP_TIMEOUT_SECONDS", 30.0),
    )
