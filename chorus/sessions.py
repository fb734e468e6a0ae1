"""
Per-target session cache with single-flight acquisition.

The manager keeps at most one Session per target id. A cached session is
handed out until its ``expires_at`` passes; after that the next caller
re-acquires it through the configured backend. Concurrent callers for the same
target id share one acquisition, while different target ids never wait on each
other.
"""
from __future__ import annotations

import asyncio
import functools
import json
import os
import re
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Union

from ._logging import get_component_logger
from .targets import ChatbotTarget
from .types import Session, SessionError, SetupReport


class SessionBackend(ABC):
    @abstractmethod
    async def acquire(self, target: ChatbotTarget) -> Session:
        """Establish a fresh session; raise SessionError when that is impossible."""
        ...


class FileSessionBackend(SessionBackend):
    """
    Loads stored credentials from ``<sessions_dir>/<target-id>-session.json``.

    Accepted layout:
        {
          "token": "...",
          "cookies": {"name": "value"} | [{"name": ..., "value": ...}],
          "expires_at": 1700000000.0       # optional, epoch seconds
        }
    """

    def __init__(
        self,
        sessions_dir: Union[str, Path] = "sessions",
        ttl: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ):
        self.sessions_dir = Path(sessions_dir)
        self.ttl = ttl
        self._clock = clock

    def path_for(self, target_id: str) -> Path:
        return self.sessions_dir / f"{target_id}-session.json"

    async def acquire(self, target: ChatbotTarget) -> Session:
        path = self.path_for(target.id)
        if not path.exists():
            raise SessionError(target.id, f"no stored session at {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise SessionError(target.id, f"unreadable session file: {exc}") from exc
        if not isinstance(data, dict):
            raise SessionError(target.id, "session file must hold an object")

        token = str(data.get("token") or "")
        cookies = _normalize_cookies(data.get("cookies"))
        if not token and not cookies:
            raise SessionError(target.id, "session file has neither token nor cookies")

        now = self._clock()
        expires_at = float(data.get("expires_at") or now + self.ttl)
        if expires_at <= now:
            raise SessionError(target.id, "stored session has expired")
        return Session(
            target_id=target.id,
            token=token,
            cookies=cookies,
            created_at=now,
            expires_at=min(expires_at, now + self.ttl),
        )


class EnvSessionBackend(SessionBackend):
    """Reads a token per target from ``<prefix><TARGET_ID>_TOKEN``."""

    def __init__(
        self,
        prefix: str = "CHORUS_",
        ttl: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ):
        self.prefix = prefix
        self.ttl = ttl
        self._clock = clock

    def variable_for(self, target_id: str) -> str:
        return f"{self.prefix}{re.sub(r'[^A-Za-z0-9]', '_', target_id).upper()}_TOKEN"

    async def acquire(self, target: ChatbotTarget) -> Session:
        name = self.variable_for(target.id)
        token = os.getenv(name, "").strip()
        if not token:
            raise SessionError(target.id, f"{name} is not set")
        now = self._clock()
        return Session(target_id=target.id, token=token, created_at=now, expires_at=now + self.ttl)


def _normalize_cookies(raw: Any) -> Dict[str, str]:
    # Browser storage-state files keep cookies as a list of objects.
    if isinstance(raw, dict):
        return {str(k): str(v) for k, v in raw.items()}
    if isinstance(raw, list):
        return {
            str(c["name"]): str(c.get("value", ""))
            for c in raw
            if isinstance(c, dict) and "name" in c
        }
    return {}


class SingleFlight:
    """At most one running call per key; concurrent callers share its outcome."""

    def __init__(self) -> None:
        self._inflight: Dict[str, asyncio.Future] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    async def run(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        fut = self._inflight.get(key)
        if fut is None:
            fut = asyncio.ensure_future(fn())
            self._inflight[key] = fut
            fut.add_done_callback(functools.partial(self._forget, key))
        # Shield so a cancelled waiter does not cancel the shared call.
        return await asyncio.shield(fut)

    def _forget(self, key: str, fut: asyncio.Future) -> None:
        if self._inflight.get(key) is fut:
            del self._inflight[key]
        if not fut.cancelled():
            fut.exception()  # mark retrieved when every waiter went away


class SessionManager:
    def __init__(
        self,
        backend: SessionBackend,
        clock: Callable[[], float] = time.time,
        log: Optional[Any] = None,
    ):
        self.backend = backend
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._flights = SingleFlight()
        self.logger = get_component_logger("session_manager", log)

    def cached(self, target_id: str) -> Optional[Session]:
        """Return the cached session if it is still valid."""
        session = self._sessions.get(target_id)
        if session is None:
            return None
        if session.is_expired(self._clock()):
            del self._sessions[target_id]
            self.logger.debug("session_expired", target_id=target_id)
            return None
        return session

    async def get_session(self, target: ChatbotTarget) -> Session:
        session = self.cached(target.id)
        if session is not None:
            return session
        return await self._flights.run(target.id, functools.partial(self._acquire, target))

    def invalidate(self, target_id: str, session: Optional[Session] = None) -> None:
        """Drop the cached session; with ``session``, only if it is still the cached one."""
        cached = self._sessions.get(target_id)
        if cached is None:
            return
        if session is not None and cached is not session:
            self.logger.debug("session_already_refreshed", target_id=target_id)
            return
        del self._sessions[target_id]
        self.logger.info("session_invalidated", target_id=target_id)

    async def _acquire(self, target: ChatbotTarget) -> Session:
        self.logger.debug("session_acquire_started", target_id=target.id)
        try:
            session = await self.backend.acquire(target)
        except SessionError as exc:
            self.logger.warning("session_acquire_failed", target_id=target.id, cause=exc.cause)
            raise
        except Exception as exc:
            self.logger.warning("session_acquire_failed", target_id=target.id, cause=str(exc))
            raise SessionError(target.id, f"{type(exc).__name__}: {exc}") from exc

        self._sessions[target.id] = session
        self.logger.info("session_acquired", target_id=target.id, expires_at=session.expires_at)
        return session

    async def setup_sessions(self, targets: Iterable[ChatbotTarget]) -> SetupReport:
        """Pre-warm sessions; valid cached sessions are kept as they are."""
        targets = list(targets)
        outcomes = await asyncio.gather(
            *(self.get_session(t) for t in targets), return_exceptions=True
        )

        report = SetupReport()
        for target, outcome in zip(targets, outcomes):
            if isinstance(outcome, SessionError):
                report.failed[target.id] = outcome.cause
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                report.ready.append(target.id)
        self.logger.info(
            "sessions_setup_completed", ready=report.ready, failed=sorted(report.failed)
        )
        return report
