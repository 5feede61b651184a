"""Application settings loaded from environment variables."""

from __future__ import annotations

import os
from pathlib import Path
from zoneinfo import ZoneInfo

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _default_db_path() -> Path:
    return Path("./data/household.db")


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean flag, got {raw!r}")


def parse_duty_catalog(raw: str) -> list[tuple[str, float]]:
    """Parse ``label[:weight]`` entries separated by commas."""

    entries: list[tuple[str, float]] = []
    for chunk in raw.split(","):
        token = chunk.strip()
        if not token:
            continue
        label, _, weight_raw = token.partition(":")
        weight = float(weight_raw) if weight_raw.strip() else 1.0
        if weight <= 0:
            raise ValueError(f"Duty weight must be positive for '{label.strip()}'")
        entries.append((label.strip(), weight))
    return entries


class Settings:
    """Runtime settings for the service."""

    @property
    def db_path(self) -> Path:
        configured = os.environ.get("HOUSEHOLD_DB_PATH")
        if configured:
            return Path(configured)
        return _default_db_path()

    @property
    def api_token(self) -> str:
        return os.environ.get("HOUSEHOLD_API_TOKEN", "dev-token")

    @property
    def db_url(self) -> str:
        return f"sqlite:///{self.db_path}"

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(os.environ.get("HOUSEHOLD_TIMEZONE", "UTC"))

    @property
    def exclusive_duties(self) -> bool:
        return _env_flag("HOUSEHOLD_EXCLUSIVE_DUTIES", True)

    @property
    def seed_new_users_at_minimum(self) -> bool:
        return _env_flag("HOUSEHOLD_SEED_NEW_USERS_AT_MINIMUM", True)

    @property
    def arrange_lock_timeout(self) -> float:
        return float(os.environ.get("HOUSEHOLD_ARRANGE_LOCK_TIMEOUT", "10"))

    @property
    def arrange_max_attempts(self) -> int:
        return max(int(os.environ.get("HOUSEHOLD_ARRANGE_MAX_ATTEMPTS", "3")), 1)

    @property
    def default_duties(self) -> list[tuple[str, float]]:
        return parse_duty_catalog(os.environ.get("HOUSEHOLD_DEFAULT_DUTIES", "kitchen,bathroom"))

    @property
    def log_level(self) -> str:
        return os.environ.get("HOUSEHOLD_LOG_LEVEL", "INFO").upper()


settings = Settings()
