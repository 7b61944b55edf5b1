from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    config_path: str = os.getenv("DFR_CONFIG_PATH", "failover.yaml")
    db_path: str = os.getenv("DFR_DB_PATH", "dfr.db")
    http_timeout_s: float = _env_float("DFR_HTTP_TIMEOUT_S", 5.0)
    workers: int = _env_int("DFR_WORKERS", 1)
    log_level: str = os.getenv("DFR_LOG_LEVEL", "INFO")

    # Health oracle (UptimeRobot v2)
    uptimerobot_api_key: str | None = os.getenv("DFR_UPTIMEROBOT_API_KEY")
    uptimerobot_url: str = os.getenv("DFR_UPTIMEROBOT_URL", "https://api.uptimerobot.com/v2")

    # DNS provider (Cloudflare v4); the token should be scoped to the one zone.
    cloudflare_api_token: str | None = os.getenv("DFR_CLOUDFLARE_API_TOKEN")
    cloudflare_api_url: str = os.getenv("DFR_CLOUDFLARE_API_URL", "https://api.cloudflare.com/client/v4")
    cloudflare_per_page: int = _env_int("DFR_CLOUDFLARE_PER_PAGE", 100)

    # Email alerting (optional)
    enable_email: bool = _env_bool("DFR_ENABLE_EMAIL", False)
    smtp_host: str = os.getenv("DFR_SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _env_int("DFR_SMTP_PORT", 587)
    smtp_user: str | None = os.getenv("DFR_SMTP_USER")
    smtp_password: str | None = os.getenv("DFR_SMTP_PASSWORD")
    email_from: str | None = os.getenv("DFR_EMAIL_FROM")
    email_to: str | None = os.getenv("DFR_EMAIL_TO")


settings = Settings()
