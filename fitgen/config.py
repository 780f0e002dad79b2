"""
Runtime configuration read from the environment.

Settings are re-read on every call to ``Settings.from_env()``; nothing is
cached at import time, so switches such as FITGEN_BYPASS_CREDITS take
effect without a restart.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ENV_BYPASS_CREDITS = "FITGEN_BYPASS_CREDITS"
ENV_OUTPUT_DIR = "FITGEN_OUTPUT_DIR"
ENV_LOAD_TIMEOUT = "FITGEN_LOAD_TIMEOUT"
ENV_LOG_LEVEL = "FITGEN_LOG_LEVEL"

_TRUTHY = {"true", "1", "yes", "on"}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in _TRUTHY


def bypass_credits_enabled() -> bool:
    """Read the FITGEN_BYPASS_CREDITS switch from the current environment."""
    return _env_flag(ENV_BYPASS_CREDITS)


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}") from e
    return value if value > 0 else None


@dataclass
class Settings:
    """Environment-derived settings."""
    bypass_credits: bool = False  # disables the visible watermark for every tier
    output_dir: Path = Path("downloads")
    load_timeout: Optional[float] = None  # seconds; None waits indefinitely
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            bypass_credits=bypass_credits_enabled(),
            output_dir=Path(os.getenv(ENV_OUTPUT_DIR) or "downloads"),
            load_timeout=_env_float(ENV_LOAD_TIMEOUT),
            log_level=(os.getenv(ENV_LOG_LEVEL) or "WARNING").upper(),
        )


def load_env_file(path: Optional[Path] = None) -> bool:
    """Load a .env file (default: ./.env) without overriding the environment."""
    env_path = Path(path) if path else Path.cwd() / ".env"
    if not env_path.exists():
        return False
    return load_dotenv(env_path, override=False)


def configure_logging(level: str = "WARNING"):
    """Configure root logging for command-line use."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.WARNING), format=LOG_FORMAT)
