from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parent
load_dotenv(dotenv_path=ROOT_DIR / ".env")

logger = logging.getLogger(__name__)


def _get_env(*keys: str, default: str | None = None) -> str | None:
    for k in keys:
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v.strip()
    return default


def _get_float(*keys: str, default: float) -> float:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    try:
        return float(v)
    except ValueError:
        logger.warning("%s=%r is not a number, using %s", keys[0], v, default)
        return default


def _get_int(*keys: str, default: int) -> int:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        logger.warning("%s=%r is not an integer, using %s", keys[0], v, default)
        return default


def _get_bool(*keys: str, default: bool) -> bool:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return v.lower() not in ("0", "false", "no", "off")


@dataclass(frozen=True)
class Settings:
    api_base_url: str
    storage_dir: str
    exchange_api_url: str
    request_timeout: float
    default_country: str
    fetch_live_rates: bool
    max_sessions: int
    cookie_secure: bool


def load_settings() -> Settings:
    return Settings(
        api_base_url=_get_env("API_BASE_URL", "NEXT_PUBLIC_API_BASE_URL", default="http://localhost:8080") or "",
        storage_dir=_get_env("STOREFRONT_STORAGE_DIR", default="/tmp/icytales-storefront") or "",
        exchange_api_url=_get_env("EXCHANGE_API_URL", default="https://open.er-api.com/v6/latest/USD") or "",
        request_timeout=_get_float("REQUEST_TIMEOUT", default=10.0),
        default_country=(_get_env("DEFAULT_COUNTRY", default="UZB") or "UZB").upper(),
        fetch_live_rates=_get_bool("FETCH_LIVE_RATES", default=True),
        max_sessions=_get_int("MAX_SESSIONS", default=1000),
        cookie_secure=_get_bool("SESSION_COOKIE_SECURE", default=False),
    )


settings = load_settings()
