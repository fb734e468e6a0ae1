from __future__ import annotations

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import yaml

from .targets import ChatbotTarget, TargetKind
from .types import RegistryError, UnknownTarget


class TargetRegistry(ABC):
    @abstractmethod
    def list_targets(self, include_disabled: bool = False) -> List[ChatbotTarget]:
        ...

    @abstractmethod
    def resolve(self, target_id: str) -> ChatbotTarget:
        """
        Return the target with the given id, enabled or not.

        Raises UnknownTarget when the id is not registered.
        """
        ...


class StaticRegistry(TargetRegistry):
    """
    Fixed set of chatbot targets, read-only after construction.

    Usage:
        registry = StaticRegistry(default_targets())
        registry = StaticRegistry(load_targets("targets.yaml"))
    """

    def __init__(self, targets: Iterable[ChatbotTarget]):
        self._targets: Dict[str, ChatbotTarget] = {}
        for target in targets:
            if target.id in self._targets:
                raise RegistryError(f"duplicate target id '{target.id}'")
            self._targets[target.id] = target

    def list_targets(self, include_disabled: bool = False) -> List[ChatbotTarget]:
        return [t for t in self._targets.values() if include_disabled or t.enabled]

    def resolve(self, target_id: str) -> ChatbotTarget:
        try:
            return self._targets[target_id]
        except KeyError:
            raise UnknownTarget(target_id) from None

    def __contains__(self, target_id: object) -> bool:
        return target_id in self._targets

    def __len__(self) -> int:
        return len(self._targets)


def default_targets() -> List[ChatbotTarget]:
    return [
        ChatbotTarget(
            id="chatgpt",
            name="ChatGPT",
            endpoint="https://api.openai.com",
            kind=TargetKind.CHATGPT,
            url="https://chat.openai.com",
            model="gpt-4o-mini",
        ),
        ChatbotTarget(
            id="claude",
            name="Claude",
            endpoint="https://api.anthropic.com",
            kind=TargetKind.CLAUDE,
            url="https://claude.ai",
            model="claude-3-5-sonnet-latest",
        ),
        ChatbotTarget(
            id="gemini",
            name="Gemini",
            endpoint="https://generativelanguage.googleapis.com",
            kind=TargetKind.GEMINI,
            url="https://gemini.google.com",
            model="gemini-1.5-flash",
        ),
        ChatbotTarget(
            id="perplexity",
            name="Perplexity",
            endpoint="https://api.perplexity.ai",
            kind=TargetKind.PERPLEXITY,
            url="https://www.perplexity.ai",
            model="sonar",
        ),
    ]


def target_from_dict(item: Dict[str, Any]) -> ChatbotTarget:
    """
    Build a target from a config entry.

    Schema:
        {
          "id": "...",
          "name": "...",
          "endpoint": "https://...",
          "kind": "chatgpt|claude|gemini|perplexity",   # defaults to id
          "enabled": true,
          "url": "https://...",
          "model": "...",
          "metadata": {...}
        }
    """
    if not isinstance(item, dict):
        raise RegistryError(f"target entry must be a mapping, got {type(item).__name__}")
    try:
        target_id = item["id"]
        endpoint = item["endpoint"]
    except KeyError as exc:
        raise RegistryError(f"target entry missing {exc.args[0]!r}") from None
    try:
        kind = TargetKind(item.get("kind", target_id))
    except ValueError:
        raise RegistryError(f"unknown kind for target '{target_id}': {item.get('kind')!r}") from None
    return ChatbotTarget(
        id=target_id,
        name=item.get("name") or target_id,
        endpoint=endpoint,
        kind=kind,
        enabled=bool(item.get("enabled", True)),
        url=item.get("url"),
        model=item.get("model"),
        metadata={str(k): str(v) for k, v in (item.get("metadata") or {}).items()},
    )


def parse_targets(raw: str) -> List[ChatbotTarget]:
    """Parse a JSON (or YAML) list of target entries."""
    try:
        parsed: Optional[Any] = json.loads(raw)
    except json.JSONDecodeError:
        try:
            parsed = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise RegistryError(f"targets file is neither JSON nor YAML: {exc}") from exc

    if isinstance(parsed, dict) and "targets" in parsed:
        parsed = parsed["targets"]
    if not isinstance(parsed, list):
        raise RegistryError("targets must be a list of entries")
    return [target_from_dict(item) for item in parsed]


def load_targets(path: Union[str, Path]) -> List[ChatbotTarget]:
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise RegistryError(f"cannot read targets file {path}: {exc}") from exc
    return parse_targets(raw)
