"""
OpenAI-style chat completions adapters.

ChatGPT talks to the OpenAI API; Perplexity exposes the same request and
response shape under a different path.
"""
from __future__ import annotations

from typing import Any, Dict

from chorus.adapters.base import HttpChatAdapter
from chorus.targets import ChatbotTarget, TargetKind
from chorus.types import Session


def _completion_text(data: Dict[str, Any]) -> str:
    choices = data.get("choices") or []
    if not choices:
        return ""
    message = choices[0].get("message") or {}
    return message.get("content") or ""


class ChatGPTAdapter(HttpChatAdapter):
    kind = TargetKind.CHATGPT
    default_model = "gpt-4o-mini"

    def _path(self, target: ChatbotTarget) -> str:
        return "/v1/chat/completions"

    def _headers(self, target: ChatbotTarget, session: Session) -> Dict[str, str]:
        headers = super()._headers(target, session)
        if session.token:
            headers["Authorization"] = f"Bearer {session.token}"
        organization = target.metadata.get("organization")
        if organization:
            headers["OpenAI-Organization"] = organization
        return headers

    def _build_payload(self, target: ChatbotTarget, prompt: str) -> Dict[str, Any]:
        return {
            "model": self._model(target, self.default_model),
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
        }

    def _extract_text(self, data: Dict[str, Any]) -> str:
        return _completion_text(data)


class PerplexityAdapter(ChatGPTAdapter):
    kind = TargetKind.PERPLEXITY
    default_model = "sonar"

    def _path(self, target: ChatbotTarget) -> str:
        return "/chat/completions"
