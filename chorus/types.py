from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple


def now_ms() -> int:
    return int(time.time() * 1000)


class ErrorKind(str, Enum):
    UNKNOWN_TARGET = "unknown_target"
    DISABLED = "disabled"
    SESSION_ERROR = "session_error"
    SESSION_INVALID = "session_invalid"
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    BACKEND = "backend"
    PARSE = "parse"
    EMPTY_RESPONSE = "empty_response"
    UNKNOWN = "unknown"


class TargetStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "error"
    TIMEOUT = "timeout"


class ChorusError(Exception):
    """Base class for errors raised by chorus components."""


class MalformedRequest(ChorusError):
    pass


class RegistryError(ChorusError):
    pass


class UnknownTarget(ChorusError, KeyError):
    def __init__(self, target_id: str):
        super().__init__(target_id)
        self.target_id = target_id

    def __str__(self) -> str:
        return f"unknown target '{self.target_id}'"


@dataclass
class SessionError(ChorusError):
    target_id: str
    cause: str

    def __str__(self) -> str:
        return f"session for '{self.target_id}' unavailable: {self.cause}"


@dataclass
class AdapterError(ChorusError):
    kind: ErrorKind
    message: str
    status_code: Optional[int] = None
    raw: Optional[Any] = None

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


@dataclass
class Session:
    target_id: str
    token: str
    created_at: float
    expires_at: float
    cookies: Dict[str, str] = field(default_factory=dict)

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (time.time() if now is None else now) >= self.expires_at


@dataclass(frozen=True)
class PromptRequest:
    prompt: str
    target_ids: Tuple[str, ...]

    @classmethod
    def create(cls, prompt: Any, target_ids: Iterable[Any]) -> "PromptRequest":
        if not isinstance(prompt, str) or not prompt.strip():
            raise MalformedRequest("prompt must be a non-empty string")

        ordered: List[str] = []
        for target_id in target_ids:
            if not isinstance(target_id, str) or not target_id.strip():
                raise MalformedRequest(f"invalid chatbot id: {target_id!r}")
            target_id = target_id.strip()
            if target_id not in ordered:
                ordered.append(target_id)
        if not ordered:
            raise MalformedRequest("at least one chatbot must be requested")
        return cls(prompt=prompt, target_ids=tuple(ordered))

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PromptRequest":
        """
        Parse the inbound ``{"prompt": ..., "chatbots": [...]}`` payload.

        ``chatbots`` may also be a comma-separated string.
        """
        if not isinstance(payload, Mapping):
            raise MalformedRequest("request must be an object")
        chatbots = payload.get("chatbots")
        if isinstance(chatbots, str):
            chatbots = [c for c in chatbots.split(",") if c.strip()]
        if not isinstance(chatbots, (list, tuple)):
            raise MalformedRequest("chatbots must be a list of ids")
        return cls.create(payload.get("prompt"), chatbots)


@dataclass(frozen=True)
class TargetResult:
    target_id: str
    name: str
    status: TargetStatus
    response: str = ""
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None
    timestamp: int = field(default_factory=now_ms)
    elapsed_ms: Optional[int] = None
    attempts: int = 0

    @classmethod
    def success(cls, target_id: str, name: str, response: str, **kwargs: Any) -> "TargetResult":
        return cls(target_id, name, TargetStatus.SUCCESS, response=response, **kwargs)

    @classmethod
    def failure(
        cls, target_id: str, name: str, kind: ErrorKind, detail: Optional[str] = None, **kwargs: Any
    ) -> "TargetResult":
        return cls(target_id, name, TargetStatus.FAILURE, error=kind, detail=detail, **kwargs)

    @classmethod
    def timeout(cls, target_id: str, name: str, detail: Optional[str] = None, **kwargs: Any) -> "TargetResult":
        return cls(
            target_id, name, TargetStatus.TIMEOUT, error=ErrorKind.TIMEOUT, detail=detail, **kwargs
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.target_id,
            "name": self.name,
            "response": self.response,
            "status": self.status.value,
            "error": self.error.value if self.error else None,
            "detail": self.detail,
            "timestamp": self.timestamp,
            "metadata": {"elapsed_ms": self.elapsed_ms, "attempts": self.attempts},
        }


@dataclass(frozen=True)
class ResponseBundle:
    results: Tuple[TargetResult, ...]
    timestamp: int = field(default_factory=now_ms)
    prompt: Optional[str] = None
    elapsed_ms: Optional[int] = None

    def _count(self, status: TargetStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def success_count(self) -> int:
        return self._count(TargetStatus.SUCCESS)

    @property
    def error_count(self) -> int:
        return self._count(TargetStatus.FAILURE)

    @property
    def timeout_count(self) -> int:
        return self._count(TargetStatus.TIMEOUT)

    def result_for(self, target_id: str) -> Optional[TargetResult]:
        for result in self.results:
            if result.target_id == target_id:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "timestamp": self.timestamp,
            "metadata": {
                "success_count": self.success_count,
                "error_count": self.error_count,
                "timeout_count": self.timeout_count,
                "total_duration_ms": self.elapsed_ms,
            },
        }


@dataclass
class AdapterResponse:
    text: str
    attempts: int = 1
    raw: Optional[Any] = None


@dataclass
class SetupReport:
    ready: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def status(self) -> str:
        if not self.failed:
            return "ok"
        return "partial" if self.ready else "error"

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "ready": list(self.ready), "failed": dict(self.failed)}
