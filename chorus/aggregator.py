from __future__ import annotations

import asyncio
import time
from typing import Any, List, Mapping, Optional, Sequence

from ._logging import get_component_logger
from .types import ErrorKind, ResponseBundle, TargetResult, now_ms

DEFAULT_GLOBAL_TIMEOUT = 60.0


class Aggregator:
    """
    Collects per-target outcomes into a ResponseBundle.

    Results come back in request order no matter when each target finished.
    Anything still running at the global deadline is cancelled and reported
    as a timeout; a result arriving after that is dropped.
    """

    def __init__(self, timeout: Optional[float] = DEFAULT_GLOBAL_TIMEOUT, log: Optional[Any] = None):
        self.timeout = timeout
        self.logger = get_component_logger("aggregator", log)

    async def collect(
        self,
        target_ids: Sequence[str],
        futures: Mapping[str, "asyncio.Future[TargetResult]"],
        names: Optional[Mapping[str, str]] = None,
        prompt: Optional[str] = None,
    ) -> ResponseBundle:
        names = names or {}
        started = time.monotonic()

        waiting = {f for f in futures.values()}
        timed_out: set = set()
        if waiting:
            _, pending = await asyncio.wait(waiting, timeout=self.timeout)
            for fut in pending:
                fut.cancel()
            timed_out = set(pending)

        results: List[TargetResult] = []
        for target_id in target_ids:
            name = names.get(target_id, target_id)
            fut = futures.get(target_id)
            if fut is None:
                results.append(
                    TargetResult.failure(target_id, name, ErrorKind.UNKNOWN, "target was never scheduled")
                )
            elif fut in timed_out or fut.cancelled():
                results.append(
                    TargetResult.timeout(
                        target_id,
                        name,
                        f"no result within {self.timeout}s",
                        elapsed_ms=_elapsed_ms(started),
                    )
                )
            elif fut.exception() is not None:
                exc = fut.exception()
                self.logger.error("target_task_crashed", target_id=target_id, error=repr(exc))
                results.append(
                    TargetResult.failure(target_id, name, ErrorKind.UNKNOWN, f"{type(exc).__name__}: {exc}")
                )
            else:
                results.append(fut.result())

        bundle = ResponseBundle(
            results=tuple(results),
            timestamp=now_ms(),
            prompt=prompt,
            elapsed_ms=_elapsed_ms(started),
        )
        self.logger.info(
            "bundle_collected",
            targets=len(results),
            success=bundle.success_count,
            errors=bundle.error_count,
            timeouts=bundle.timeout_count,
            elapsed_ms=bundle.elapsed_ms,
        )
        return bundle


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)

