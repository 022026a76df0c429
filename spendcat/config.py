"""Runtime settings resolved from the environment.

The CLI loads ``.env`` from the working directory (``python-dotenv``) before
calling :func:`load_settings`; library callers may build :class:`Settings`
directly. Unparseable numeric values fall back to their defaults with a
warning rather than failing startup.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .logging_setup import get_logger

DEFAULT_BASE_URL = "http://localhost:11434/v1"
DEFAULT_MODEL = "llama3.1"
DEFAULT_TIMEOUT_SEC = 30.0
DEFAULT_BATCH_SIZE = 5
MAX_BATCH_SIZE = 10
DEFAULT_HISTORY_LIMIT = 100

_logger = get_logger("spendcat.config")


@dataclass(frozen=True, slots=True)
class Settings:
    data_dir: Path
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    api_key: str = "local"
    timeout_sec: float = DEFAULT_TIMEOUT_SEC
    batch_size: int = DEFAULT_BATCH_SIZE
    history_limit: int = DEFAULT_HISTORY_LIMIT
    concurrency: int = 1


def _env_str(name: str) -> str | None:
    val = os.getenv(name)
    if val is None or not val.strip():
        return None
    return val.strip()


def _env_number(
    name: str,
    default: float,
    cast: type[int] | type[float],
    *,
    lo: float,
    hi: float | None = None,
) -> Any:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        val = cast(raw)
    except ValueError:
        _logger.warning("config:invalid_value name=%s value=%r using=%s", name, raw, default)
        return default
    if val < lo or (hi is not None and val > hi):
        _logger.warning("config:out_of_range name=%s value=%r using=%s", name, raw, default)
        return default
    return val


def _data_dir() -> Path:
    """Return the data directory.

    Default: ``./.spendcat`` under the current working directory.
    Override: ``SPENDCAT_DATA_DIR`` (absolute or relative).
    """

    root = _env_str("SPENDCAT_DATA_DIR")
    if root:
        return Path(root).expanduser().resolve()
    return (Path.cwd() / ".spendcat").resolve()


def load_settings() -> Settings:
    return Settings(
        data_dir=_data_dir(),
        base_url=_env_str("SPENDCAT_BASE_URL") or DEFAULT_BASE_URL,
        model=_env_str("SPENDCAT_MODEL") or DEFAULT_MODEL,
        api_key=_env_str("SPENDCAT_API_KEY") or _env_str("OPENAI_API_KEY") or "local",
        timeout_sec=_env_number("SPENDCAT_TIMEOUT_SEC", DEFAULT_TIMEOUT_SEC, float, lo=0.1),
        batch_size=_env_number(
            "SPENDCAT_BATCH_SIZE", DEFAULT_BATCH_SIZE, int, lo=1, hi=MAX_BATCH_SIZE
        ),
        history_limit=_env_number("SPENDCAT_HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT, int, lo=0),
        concurrency=_env_number("SPENDCAT_CONCURRENCY", 1, int, lo=1, hi=16),
    )


__all__ = ["Settings", "load_settings"]
