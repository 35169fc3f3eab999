"""Configuration for the basin CLI, read from environment variables."""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .client import DEFAULT_BASE_URL, DEFAULT_INGEST_TIMEOUT, DEFAULT_POLL_INTERVAL
from .errors import ConfigError
from .signing import SIGN_MODES

DEFAULT_CACHE_MINUTES = 10800


@dataclass(frozen=True)
class Config:
    """
    Settings for one run. Built once at startup by from_env().

    Environment variables:
        PRIVATE_KEY           hex or PEM secret (never logged)
        VAULT_ID              vault name
        BASIN_URL             service root
        BASIN_CACHE_MINUTES   cache window used by create
        BASIN_INGEST_TIMEOUT  seconds to wait for a write to become visible
        BASIN_POLL_INTERVAL   first delay between visibility checks
        BASIN_SIGN_MODE       "name" (default) or "content"
    """

    private_key: Optional[str] = None
    vault_id: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    cache_minutes: Optional[int] = DEFAULT_CACHE_MINUTES
    ingest_timeout: float = DEFAULT_INGEST_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    sign_mode: str = "name"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """
        Read settings from environ (defaults to os.environ).

        Call load_dotenv() first if a .env file should be honoured.

        Raises:
            ConfigError: A variable is set but malformed
        """
        env = os.environ if environ is None else environ

        cache_text = env.get("BASIN_CACHE_MINUTES", "").strip()
        if cache_text.lower() == "none":
            cache_minutes = None
        elif cache_text:
            cache_minutes = _parse_int(cache_text, "BASIN_CACHE_MINUTES")
        else:
            cache_minutes = DEFAULT_CACHE_MINUTES

        sign_mode = env.get("BASIN_SIGN_MODE", "name").strip().lower() or "name"
        if sign_mode not in SIGN_MODES:
            raise ConfigError(f"BASIN_SIGN_MODE must be one of {SIGN_MODES}, got {sign_mode!r}")

        return cls(
            private_key=env.get("PRIVATE_KEY") or None,
            vault_id=(env.get("VAULT_ID") or "").strip() or None,
            base_url=(env.get("BASIN_URL") or "").strip() or DEFAULT_BASE_URL,
            cache_minutes=cache_minutes,
            ingest_timeout=_parse_float(
                env.get("BASIN_INGEST_TIMEOUT"), "BASIN_INGEST_TIMEOUT", DEFAULT_INGEST_TIMEOUT
            ),
            poll_interval=_parse_float(
                env.get("BASIN_POLL_INTERVAL"), "BASIN_POLL_INTERVAL", DEFAULT_POLL_INTERVAL
            ),
            sign_mode=sign_mode,
        )

    def require_private_key(self) -> str:
        if not self.private_key:
            raise ConfigError("PRIVATE_KEY is not set")
        return self.private_key

    def require_vault_id(self) -> str:
        if not self.vault_id:
            raise ConfigError("VAULT_ID is not set")
        return self.vault_id

    def __repr__(self) -> str:
        # Keep the secret out of logs and tracebacks
        key = "<set>" if self.private_key else None
        return (
            f"Config(private_key={key}, vault_id={self.vault_id!r}, base_url={self.base_url!r}, "
            f"cache_minutes={self.cache_minutes}, ingest_timeout={self.ingest_timeout}, "
            f"poll_interval={self.poll_interval}, sign_mode={self.sign_mode!r})"
        )


def _parse_int(text: str, name: str) -> int:
    try:
        value = int(text)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {text!r}") from e
    if value < 0:
        raise ConfigError(f"{name} must not be negative")
    return value


def _parse_float(text: Optional[str], name: str, default: float) -> float:
    if text is None or not text.strip():
        return default
    try:
        value = float(text)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {text!r}") from e
    if value <= 0:
        raise ConfigError(f"{name} must be positive")
    return value
