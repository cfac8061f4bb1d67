"""Runtime settings for the coin service.

Everything is read from the environment so the same code runs locally
(SQLite file next to the repo) and in a deployed setting (PostgreSQL URL,
real partner secrets).
"""

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_DATABASE_URL = f"sqlite:///{BASE_DIR / 'coins.sqlite3'}"

# Partner app_key -> app_secret. Override with COIN_APP_SECRETS in any real deployment.
DEFAULT_APP_SECRETS = {"CS001": "dev-secret-change-me"}


def parse_app_secrets(raw: str) -> dict[str, str]:
    """Parse ``"CS001=secret1,CS002=secret2"`` into a mapping."""
    secrets: dict[str, str] = {}
    for pair in raw.split(","):
        pair = pair.strip()
        if not pair:
            continue
        key, sep, secret = pair.partition("=")
        if not sep or not key.strip() or not secret.strip():
            raise ValueError(f"Malformed app secret entry: {pair!r}")
        secrets[key.strip()] = secret.strip()
    return secrets


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    app_secrets: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_APP_SECRETS))
    signature_max_skew_seconds: int = 300
    checkin_timezone: str = "UTC"
    callback_stale_seconds: int = 300
    sqlite_busy_timeout: float = 30.0
    log_level: str = "INFO"
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        raw_secrets = os.getenv("COIN_APP_SECRETS")
        return cls(
            database_url=os.getenv("COIN_DATABASE_URL", DEFAULT_DATABASE_URL),
            app_secrets=parse_app_secrets(raw_secrets) if raw_secrets else dict(DEFAULT_APP_SECRETS),
            signature_max_skew_seconds=int(os.getenv("COIN_SIGNATURE_MAX_SKEW_SECONDS", "300")),
            checkin_timezone=os.getenv("COIN_CHECKIN_TIMEZONE", "UTC"),
            callback_stale_seconds=int(os.getenv("COIN_CALLBACK_STALE_SECONDS", "300")),
            sqlite_busy_timeout=float(os.getenv("COIN_SQLITE_BUSY_TIMEOUT", "30")),
            log_level=os.getenv("COIN_LOG_LEVEL", "INFO").upper(),
            cors_origins=[o.strip() for o in os.getenv("COIN_CORS_ORIGINS", "*").split(",") if o.strip()],
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
