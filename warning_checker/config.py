"""
Configuration for the JMA Warning Checker, read from environment variables.

A .env file in the working directory (or a parent) is loaded first;
variables already set in the process environment take precedence.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import find_dotenv, load_dotenv

DEFAULT_MONITORED_REGIONS = {
    "静岡地方気象台": ["裾野市", "御殿場市"],
}


class ConfigError(Exception):
    """Raised for missing or malformed configuration."""
    pass


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ConfigError(f"{name} not set")
    return value


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _json_mapping(name: str, default: dict) -> dict:
    raw = os.getenv(name)
    if not raw:
        return dict(default)
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{name} is not valid JSON: {e}")
    if not isinstance(value, dict):
        raise ConfigError(f"{name} must be a JSON object")
    return value


@dataclass
class Config:
    gmail_from: str
    gmail_app_pass: str
    email_to: str
    email_bcc: Optional[str] = None
    data_dir: str = "data/xml"
    deleted_dir: str = "data/deleted"
    db_path: str = "data/weather.sqlite3"
    heartbeat_path: str = "data/heartbeat"
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    log_level: str = "INFO"
    check_interval_minutes: int = 10
    retention_days: int = 30
    monitored_regions: Dict[str, List[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_MONITORED_REGIONS.items()}
    )
    city_urls: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Config":
        load_dotenv(env_file or find_dotenv(usecwd=True))

        regions = _json_mapping("MONITORED_REGIONS", DEFAULT_MONITORED_REGIONS)
        for lmo, cities in regions.items():
            if not isinstance(cities, list) or not all(isinstance(c, str) for c in cities):
                raise ConfigError(f"MONITORED_REGIONS[{lmo!r}] must be a list of city names")

        return cls(
            gmail_from=_require("GMAIL_FROM"),
            gmail_app_pass=_require("GMAIL_APP_PASS"),
            email_to=_require("EMAIL_TO"),
            email_bcc=os.getenv("EMAIL_BCC") or None,
            data_dir=os.getenv("DATADIR", "data/xml"),
            deleted_dir=os.getenv("DELETED_DIR", "data/deleted"),
            db_path=os.getenv("DB_PATH", "data/weather.sqlite3"),
            heartbeat_path=os.getenv("HEARTBEAT_PATH", "data/heartbeat"),
            smtp_host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
            smtp_port=_int("SMTP_PORT", 587),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            check_interval_minutes=_int("CHECK_INTERVAL_MINUTES", 10),
            retention_days=_int("RETENTION_DAYS", 30),
            monitored_regions={lmo: list(cities) for lmo, cities in regions.items()},
            city_urls={str(k): str(v) for k, v in _json_mapping("CITY_URLS", {}).items()},
        )
