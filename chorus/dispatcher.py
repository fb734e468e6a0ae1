from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Mapping, Optional

from ._logging import get_component_logger
from .adapters import TargetAdapter, default_adapters
from .aggregator import Aggregator
from .registry import TargetRegistry
from .sessions import SessionManager
from .targets import ChatbotTarget, TargetKind
from .types import (
    AdapterError,
    ErrorKind,
    PromptRequest,
    ResponseBundle,
    Session,
    SessionError,
    TargetResult,
    UnknownTarget,
)

DEFAULT_CALL_TIMEOUT = 45.0


class Dispatcher:
    """
    Fans one prompt out to every requested target concurrently.

    Each target runs in its own task. Whatever happens to one target
    (unknown id, disabled, session failure, adapter error, deadline) is
    recorded in that target's result and never affects its siblings.
    """

    def __init__(
        self,
        registry: TargetRegistry,
        sessions: SessionManager,
        adapter_overrides: Optional[Mapping[TargetKind, TargetAdapter]] = None,
        aggregator: Optional[Aggregator] = None,
        call_timeout: float = DEFAULT_CALL_TIMEOUT,
        log: Optional[Any] = None,
    ):
        self.registry = registry
        self.sessions = sessions
        overrides = dict(adapter_overrides or {})
        self.adapters: Dict[TargetKind, TargetAdapter] = default_adapters(
            log=log, kinds=[k for k in TargetKind if k not in overrides]
        )
        self.adapters.update(overrides)
        self.aggregator = aggregator or Aggregator(log=log)
        self.call_timeout = call_timeout
        self.logger = get_component_logger("dispatcher", log)

    async def dispatch(self, request: PromptRequest) -> ResponseBundle:
        """
        Send ``request.prompt`` to each of ``request.target_ids``.

        Returns one result per requested id, in request order.
        """
        self.logger.info("dispatch_started", targets=list(request.target_ids))

        names = {tid: self._display_name(tid) for tid in request.target_ids}
        tasks = {
            tid: asyncio.create_task(self._run_target(tid, request.prompt), name=f"chorus:{tid}")
            for tid in request.target_ids
        }
        try:
            return await self.aggregator.collect(
                request.target_ids, tasks, names=names, prompt=request.prompt
            )
        finally:
            # Stop outstanding target work when the caller gives up on the dispatch.
            for task in tasks.values():
                if not task.done():
                    task.cancel()

    def _display_name(self, target_id: str) -> str:
        try:
            return self.registry.resolve(target_id).name
        except UnknownTarget:
            return target_id

    async def _run_target(self, target_id: str, prompt: str) -> TargetResult:
        log = self.logger.bind(target_id=target_id)
        started = time.monotonic()

        def elapsed() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            target = self.registry.resolve(target_id)
        except UnknownTarget as exc:
            log.warning("target_unknown")
            return TargetResult.failure(target_id, target_id, ErrorKind.UNKNOWN_TARGET, str(exc))

        if not target.enabled:
            log.info("target_disabled")
            return TargetResult.failure(
                target_id, target.name, ErrorKind.DISABLED, f"{target.name} is disabled"
            )

        adapter = self.adapters.get(target.kind)
        if adapter is None:
            log.error("adapter_missing", kind=target.kind.value)
            return TargetResult.failure(
                target_id, target.name, ErrorKind.UNKNOWN, f"no adapter for {target.kind.value}"
            )

        try:
            session = await self.sessions.get_session(target)
            reply = await asyncio.wait_for(
                adapter.send(target, prompt, session, timeout=self.call_timeout),
                timeout=self.call_timeout,
            )
        except SessionError as exc:
            return TargetResult.failure(
                target_id, target.name, ErrorKind.SESSION_ERROR, exc.cause, elapsed_ms=elapsed()
            )
        except asyncio.TimeoutError:
            log.warning("target_timed_out", timeout=self.call_timeout)
            return TargetResult.timeout(
                target_id,
                target.name,
                f"no answer within {self.call_timeout}s",
                elapsed_ms=elapsed(),
            )
        except AdapterError as exc:
            return self._adapter_failure(target, session, exc, elapsed())
        except Exception as exc:
            log.exception("adapter_crashed")
            return TargetResult.failure(
                target_id,
                target.name,
                ErrorKind.UNKNOWN,
                f"{type(exc).__name__}: {exc}",
                elapsed_ms=elapsed(),
            )

        log.info("target_succeeded", elapsed_ms=elapsed(), attempts=reply.attempts)
        return TargetResult.success(
            target_id, target.name, reply.text, elapsed_ms=elapsed(), attempts=reply.attempts
        )

    def _adapter_failure(
        self, target: ChatbotTarget, session: Session, exc: AdapterError, elapsed_ms: int
    ) -> TargetResult:
        if exc.kind == ErrorKind.SESSION_INVALID:
            self.sessions.invalidate(target.id, session)
        if exc.kind == ErrorKind.TIMEOUT:
            return TargetResult.timeout(target.id, target.name, exc.message, elapsed_ms=elapsed_ms)
        return TargetResult.failure(target.id, target.name, exc.kind, exc.message, elapsed_ms=elapsed_ms)
