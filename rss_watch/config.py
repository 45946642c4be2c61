from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

DEFAULT_USER_AGENT = "rss-watch/0.1 (+https://pypi.org/project/rss-watch/)"


def _env_bool(name: str, default: bool) -> bool:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    return int(val) if val and val.strip() else default


def _env_float(name: str, default: float) -> float:
    val = os.getenv(name)
    return float(val) if val and val.strip() else default


@dataclass
class Settings:
    poll_interval: int = 1800
    keep_history: bool = True
    history_size: int = 10
    default_category: str = "Uncategorized"
    http_timeout: float = 30.0
    hub_timeout: float = 10.0
    user_agent: str = DEFAULT_USER_AGENT
    lease_seconds: int = 86400
    callback_url: Optional[str] = None
    # Reject push notifications that carry no X-Hub-Signature header
    require_signature: bool = False

    @classmethod
    def from_env(cls, dotenv: bool = True, dotenv_path: Optional[str] = None) -> "Settings":
        """Build settings from RSS_WATCH_* environment variables (and a .env file)."""
        if dotenv:
            load_dotenv(dotenv_path)
        return cls(
            poll_interval=_env_int("RSS_WATCH_POLL_INTERVAL", cls.poll_interval),
            keep_history=_env_bool("RSS_WATCH_KEEP_HISTORY", cls.keep_history),
            history_size=_env_int("RSS_WATCH_HISTORY_SIZE", cls.history_size),
            default_category=os.getenv("RSS_WATCH_DEFAULT_CATEGORY") or cls.default_category,
            http_timeout=_env_float("RSS_WATCH_HTTP_TIMEOUT", cls.http_timeout),
            hub_timeout=_env_float("RSS_WATCH_HUB_TIMEOUT", cls.hub_timeout),
            user_agent=os.getenv("RSS_WATCH_USER_AGENT") or cls.user_agent,
            lease_seconds=_env_int("RSS_WATCH_LEASE_SECONDS", cls.lease_seconds),
            callback_url=os.getenv("RSS_WATCH_CALLBACK_URL") or None,
            require_signature=_env_bool("RSS_WATCH_REQUIRE_SIGNATURE", cls.require_signature),
        )
