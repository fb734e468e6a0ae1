from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from chorus._logging import get_component_logger
from chorus.targets import ChatbotTarget, TargetKind
from chorus.types import AdapterError, AdapterResponse, ErrorKind, Session

RETRYABLE_STATUS = {429, 502, 503, 504}
RETRYABLE_KINDS = {ErrorKind.TIMEOUT, ErrorKind.CONNECTION}


def _categorize_exception(exc: Exception) -> AdapterError:
    name = exc.__class__.__name__
    if "Timeout" in name:
        return AdapterError(ErrorKind.TIMEOUT, str(exc) or name)
    if "Network" in name or "Connect" in name:
        return AdapterError(ErrorKind.CONNECTION, str(exc) or name)
    return AdapterError(ErrorKind.BACKEND, str(exc) or name)


def is_retryable(err: AdapterError) -> bool:
    if err.kind in RETRYABLE_KINDS:
        return True
    return err.kind == ErrorKind.BACKEND and err.status_code in RETRYABLE_STATUS


class TargetAdapter(ABC):
    kind: TargetKind

    @abstractmethod
    async def send(
        self,
        target: ChatbotTarget,
        prompt: str,
        session: Session,
        timeout: Optional[float] = None,
    ) -> AdapterResponse:
        """
        Pose one prompt to the target and return its answer.

        Failures are raised as AdapterError; ``timeout`` is the per-call
        deadline in seconds granted by the dispatcher.
        """
        ...


class HttpChatAdapter(TargetAdapter):
    """
    JSON-over-HTTP exchange shared by the hosted chatbot APIs.

    Subclasses provide the request path, headers and payload, and pull the
    answer text out of the decoded response body.
    """

    def __init__(
        self,
        timeout: float = 60.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        log: Optional[Any] = None,
    ):
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._transport = transport
        self.logger = get_component_logger(f"adapter.{self.kind.value}", log)

    @abstractmethod
    def _path(self, target: ChatbotTarget) -> str:
        ...

    @abstractmethod
    def _build_payload(self, target: ChatbotTarget, prompt: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def _extract_text(self, data: Dict[str, Any]) -> str:
        ...

    def _headers(self, target: ChatbotTarget, session: Session) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def _params(self, target: ChatbotTarget, session: Session) -> Dict[str, str]:
        return {}

    def _model(self, target: ChatbotTarget, default: str) -> str:
        return target.model or target.metadata.get("model") or default

    async def send(
        self,
        target: ChatbotTarget,
        prompt: str,
        session: Session,
        timeout: Optional[float] = None,
    ) -> AdapterResponse:
        budget = min(self.timeout, timeout) if timeout else self.timeout
        deadline = time.monotonic() + budget
        log = self.logger.bind(target_id=target.id)

        async with httpx.AsyncClient(
            base_url=target.endpoint.rstrip("/"),
            timeout=_http_timeout(budget),
            headers=self._headers(target, session),
            cookies=session.cookies or None,
            transport=self._transport,
        ) as client:
            last_error: Optional[AdapterError] = None
            for attempt in range(1, self.max_retries + 1):
                remaining = deadline - time.monotonic()
                # Each attempt gets an even share of what is left of the budget.
                attempt_timeout = max(remaining, 0.001) / (self.max_retries - attempt + 1)
                try:
                    data = await self._exchange(client, target, prompt, session, attempt_timeout)
                    try:
                        text = (self._extract_text(data) or "").strip()
                    except (KeyError, IndexError, TypeError, AttributeError) as exc:
                        raise AdapterError(
                            ErrorKind.PARSE, f"unexpected response shape: {exc}", raw=data
                        ) from exc
                    if not text:
                        raise AdapterError(ErrorKind.EMPTY_RESPONSE, "empty response received", raw=data)
                    if attempt > 1:
                        log.info("adapter_recovered", attempts=attempt)
                    return AdapterResponse(text=text, attempts=attempt, raw=data)
                except AdapterError as err:
                    last_error = err
                except httpx.HTTPError as exc:
                    last_error = _categorize_exception(exc)

                backoff = self.retry_delay * 2 ** (attempt - 1)
                if (
                    attempt == self.max_retries
                    or not is_retryable(last_error)
                    or deadline - time.monotonic() <= backoff
                ):
                    break
                log.debug("adapter_retrying", attempt=attempt, kind=last_error.kind.value, backoff=backoff)
                await asyncio.sleep(backoff)

        if last_error is None:  # pragma: no cover
            raise AdapterError(ErrorKind.UNKNOWN, "no attempt was made")
        log.warning(
            "adapter_failed",
            attempts=attempt,
            kind=last_error.kind.value,
            error=last_error.message,
        )
        raise last_error

    async def _exchange(
        self,
        client: httpx.AsyncClient,
        target: ChatbotTarget,
        prompt: str,
        session: Session,
        timeout: float,
    ) -> Dict[str, Any]:
        resp = await client.post(
            self._path(target),
            json=self._build_payload(target, prompt),
            params=self._params(target, session) or None,
            timeout=_http_timeout(timeout),
        )
        if resp.status_code in (401, 403):
            raise AdapterError(
                ErrorKind.SESSION_INVALID,
                f"HTTP {resp.status_code}: session rejected",
                status_code=resp.status_code,
                raw=resp.text,
            )
        if resp.status_code >= 400:
            raise AdapterError(
                ErrorKind.BACKEND,
                f"HTTP {resp.status_code}",
                status_code=resp.status_code,
                raw=resp.text,
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise AdapterError(ErrorKind.PARSE, f"invalid JSON body: {exc}", raw=resp.text) from exc
        if not isinstance(data, dict):
            raise AdapterError(ErrorKind.PARSE, "response body is not an object", raw=data)
        return data


def _http_timeout(seconds: float) -> httpx.Timeout:
    return httpx.Timeout(seconds, connect=min(10.0, seconds))
