"""
ChorusService: the request/response surface used by front ends.

Three calls, all JSON-serialisable in and out:

- ``send_prompt({"prompt": ..., "chatbots": [...]})`` -> response bundle
- ``list_chatbots()`` -> registry listing
- ``setup_sessions()`` -> per-target session readiness

Usage:
    service = ChorusService.from_settings(ChorusSettings.from_env())
    bundle = await service.send_prompt({"prompt": "hi", "chatbots": ["chatgpt", "claude"]})
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from ._logging import get_component_logger
from .adapters import default_adapters
from .aggregator import Aggregator
from .dispatcher import Dispatcher
from .registry import StaticRegistry, TargetRegistry, default_targets, load_targets
from .sessions import EnvSessionBackend, FileSessionBackend, SessionBackend, SessionManager
from .settings import ChorusSettings
from .types import PromptRequest, ResponseBundle


class ChorusService:
    def __init__(
        self,
        registry: TargetRegistry,
        sessions: SessionManager,
        dispatcher: Dispatcher,
        log: Optional[Any] = None,
    ):
        self.registry = registry
        self.sessions = sessions
        self.dispatcher = dispatcher
        self.logger = get_component_logger("chorus_service", log)

    @classmethod
    def from_settings(cls, settings: ChorusSettings, log: Optional[Any] = None) -> "ChorusService":
        if settings.targets_file:
            registry: TargetRegistry = StaticRegistry(load_targets(settings.targets_file))
        else:
            registry = StaticRegistry(default_targets())

        sessions = SessionManager(_session_backend(settings), log=log)
        adapters = default_adapters(
            log=log,
            timeout=settings.call_timeout,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay,
        )
        dispatcher = Dispatcher(
            registry,
            sessions,
            adapter_overrides=adapters,
            aggregator=Aggregator(timeout=settings.global_timeout, log=log),
            call_timeout=settings.call_timeout,
            log=log,
        )
        return cls(registry, sessions, dispatcher, log=log)

    async def dispatch(self, request: PromptRequest) -> ResponseBundle:
        return await self.dispatcher.dispatch(request)

    async def send_prompt(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Raises MalformedRequest for an invalid payload; per-target errors land in the bundle."""
        request = PromptRequest.from_dict(payload)
        bundle = await self.dispatch(request)
        return bundle.to_dict()

    def list_chatbots(self) -> List[Dict[str, Any]]:
        return [t.to_listing() for t in self.registry.list_targets(include_disabled=True)]

    async def setup_sessions(self) -> Dict[str, Any]:
        report = await self.sessions.setup_sessions(self.registry.list_targets())
        return report.to_dict()


def _session_backend(settings: ChorusSettings) -> SessionBackend:
    if settings.session_source == "env":
        return EnvSessionBackend(ttl=settings.session_ttl)
    return FileSessionBackend(settings.sessions_dir, ttl=settings.session_ttl)
