"""
Environment-backed settings helpers.

Credentials and provider knobs come from the process environment, often
under a primary name plus a legacy fallback. Values are read at call time,
never cached at import, so a test can ``monkeypatch.setenv`` freely.
"""

import logging
import os
from typing import Iterable, Optional, Sequence, Union

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

EnvNames = Union[str, Sequence[str]]

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _names(names: EnvNames) -> Iterable[str]:
    return (names,) if isinstance(names, str) else names


def first_env(names: EnvNames) -> Optional[str]:
    """Return the first non-blank value among ``names``, stripped."""
    for name in _names(names):
        value = os.getenv(name)
        if value is not None and value.strip():
            return value.strip()
    return None


def env_int(names: EnvNames, default: Optional[int]) -> Optional[int]:
    raw = first_env(names)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer value for {raw!r} in {list(_names(names))}")
        return default


def env_float(names: EnvNames, default: Optional[float]) -> Optional[float]:
    raw = first_env(names)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring non-numeric value for {raw!r} in {list(_names(names))}")
        return default


def env_flag(names: EnvNames, default: bool) -> bool:
    raw = first_env(names)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    return default


def default_tier() -> str:
    """Service tier from DEFAULT_TIER: low, normal (default) or high."""
    raw = (first_env("DEFAULT_TIER") or "normal").lower()
    return raw if raw in ("low", "normal", "high") else "normal"


def load_environment(path: Optional[str] = None) -> bool:
    """Load a .env file (safe no-op when it does not exist)."""
    dotenv_path = path or os.getenv("RADAR_DOTENV_PATH", ".env")
    loaded = load_dotenv(dotenv_path)
    if loaded:
        logger.debug(f"Loaded environment from {dotenv_path}")
    return loaded
