from __future__ import annotations

from typing import Any, Dict

from chorus.adapters.base import HttpChatAdapter
from chorus.targets import ChatbotTarget, TargetKind
from chorus.types import Session

ANTHROPIC_VERSION = "2023-06-01"


class ClaudeAdapter(HttpChatAdapter):
    kind = TargetKind.CLAUDE
    default_model = "claude-3-5-sonnet-latest"
    max_tokens = 1024

    def _path(self, target: ChatbotTarget) -> str:
        return "/v1/messages"

    def _headers(self, target: ChatbotTarget, session: Session) -> Dict[str, str]:
        headers = super()._headers(target, session)
        headers["anthropic-version"] = target.metadata.get("anthropic_version", ANTHROPIC_VERSION)
        if session.token:
            headers["x-api-key"] = session.token
        return headers

    def _build_payload(self, target: ChatbotTarget, prompt: str) -> Dict[str, Any]:
        return {
            "model": self._model(target, self.default_model),
            "max_tokens": int(target.metadata.get("max_tokens", self.max_tokens)),
            "messages": [{"role": "user", "content": prompt}],
        }

    def _extract_text(self, data: Dict[str, Any]) -> str:
        # Content is a list of blocks; only text blocks carry the answer.
        blocks = data.get("content") or []
        return "\n".join(
            b.get("text", "") for b in blocks if b.get("type") == "text" and b.get("text")
        )
