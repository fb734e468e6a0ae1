from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


_TRUE = {"1", "true", "yes"}
_FALSE = {"0", "false", "no"}


def _env_bool(name: str, default: bool) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    lowered = val.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    return default


def _env_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    try:
        return float(val)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _env_str(name: str, default: Optional[str]) -> Optional[str]:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    return val.strip()


@dataclass
class ChorusSettings:
    global_timeout: float = 60.0
    call_timeout: float = 45.0
    session_ttl: float = 3600.0
    sessions_dir: str = "sessions"
    session_source: str = "file"  # file | env
    max_retries: int = 3
    retry_delay: float = 1.0
    targets_file: Optional[str] = None
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls) -> "ChorusSettings":
        defaults = cls()
        return cls(
            global_timeout=_env_float("CHORUS_GLOBAL_TIMEOUT", defaults.global_timeout),
            call_timeout=_env_float("CHORUS_CALL_TIMEOUT", defaults.call_timeout),
            session_ttl=_env_float("CHORUS_SESSION_TTL", defaults.session_ttl),
            sessions_dir=_env_str("CHORUS_SESSIONS_DIR", defaults.sessions_dir) or defaults.sessions_dir,
            session_source=(_env_str("CHORUS_SESSION_SOURCE", defaults.session_source) or "file").lower(),
            max_retries=max(1, _env_int("CHORUS_MAX_RETRIES", defaults.max_retries)),
            retry_delay=_env_float("CHORUS_RETRY_DELAY", defaults.retry_delay),
            targets_file=_env_str("CHORUS_TARGETS_FILE", None),
            log_level=(_env_str("CHORUS_LOG_LEVEL", defaults.log_level) or "INFO").upper(),
            log_json=_env_bool("CHORUS_LOG_JSON", defaults.log_json),
        )
