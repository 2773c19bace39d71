import json
import re
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _parse_str_list(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, (list, tuple, set, frozenset)):
        items = [str(v).strip() for v in raw]
        return [v for v in items if v]

    raw = str(raw).strip()
    if not raw or raw == "[]":
        return []

    # Prefer JSON, but tolerate comma/space separated values so a plain
    # BLOCKED_COUNTRIES=RU,CN does not crash the app at startup.
    if raw.startswith("["):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            items = [str(v).strip() for v in parsed]
            return [v for v in items if v]

    return [p for p in re.split(r"[,\s]+", raw) if p]


def _dedupe(values: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


class Settings(BaseSettings):
    """Edge filter settings loaded from environment variables.

    All settings can be configured via environment variables or .env file.
    """

    # Static classification (ISO 3166-1 alpha-2 codes)
    blocked_countries: Annotated[list[str], NoDecode] = [
        "VN", "CN", "IN", "PK", "BR", "ID", "TH", "TR", "EG", "SC", "IR", "NG", "RU",
    ]
    # Substrings of User-Agent that are let through; everything else is denied
    allowed_user_agents: Annotated[list[str], NoDecode] = [
        # Browsers
        "Chrome",
        "Firefox",
        "Safari",
        "Edg",
        "OPR",
        # Search engine crawlers
        "Googlebot",
        "Bingbot",
        "Slurp",
        "DuckDuckBot",
        "YandexBot",
    ]

    # Per-client rate limiting
    rate_limit_requests: int = 10
    rate_limit_window_seconds: int = 10
    rate_limit_prefix: str = "ratelimit"
    rate_limit_fail_closed: bool = (
        False  # If True, deny requests when Redis is unavailable
    )

    # Attack detection
    attack_threshold: int = 10000
    attack_window_seconds: int = 60

    # Redis settings. An empty URL disables every store-backed check.
    redis_url: str = ""
    redis_socket_timeout: float = 2.0
    redis_connect_timeout: float = 2.0
    store_timeout: float = 3.0  # Upper bound for one store round trip

    # Telegram notification channel
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    telegram_api_base: str = "https://api.telegram.org"
    notification_timeout: float = 5.0

    # Request inspection. X-Forwarded-For is only honored behind a proxy that
    # overwrites it (Vercel, Cloudflare); otherwise the socket peer is the client.
    trust_forwarded_for: bool = False
    country_headers: Annotated[list[str], NoDecode] = [
        "x-vercel-ip-country",
        "cf-ipcountry",
    ]
    excluded_path_prefixes: Annotated[list[str], NoDecode] = [
        "/api",
        "/_next/static",
        "/_next/image",
        "/favicon.ico",
        "/health",
    ]

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    @field_validator("blocked_countries", mode="before")
    @classmethod
    def decode_blocked_countries(cls, v: Any) -> list[str]:
        return _dedupe([code.upper() for code in _parse_str_list(v)])

    @field_validator(
        "allowed_user_agents", "excluded_path_prefixes", mode="before"
    )
    @classmethod
    def decode_str_list(cls, v: Any) -> list[str]:
        return _dedupe(_parse_str_list(v))

    @field_validator("country_headers", mode="before")
    @classmethod
    def decode_country_headers(cls, v: Any) -> list[str]:
        return _dedupe([name.lower() for name in _parse_str_list(v)])

    @field_validator(
        "rate_limit_requests",
        "rate_limit_window_seconds",
        "attack_threshold",
        "attack_window_seconds",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate limits and windows are positive."""
        if v < 1:
            raise ValueError("Limits and windows must be at least 1")
        return v

    @field_validator(
        "redis_socket_timeout",
        "redis_connect_timeout",
        "store_timeout",
        "notification_timeout",
    )
    @classmethod
    def validate_timeout_positive(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout values must be positive")
        return v

    @property
    def store_configured(self) -> bool:
        return bool(self.redis_url.strip())

    @property
    def telegram_configured(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Global settings instance
settings = Settings()
