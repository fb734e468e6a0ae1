from __future__ import annotations

from typing import Any, Dict

from chorus.adapters.base import HttpChatAdapter
from chorus.targets import ChatbotTarget, TargetKind
from chorus.types import Session


class GeminiAdapter(HttpChatAdapter):
    kind = TargetKind.GEMINI
    default_model = "gemini-1.5-flash"

    def _path(self, target: ChatbotTarget) -> str:
        return f"/v1beta/models/{self._model(target, self.default_model)}:generateContent"

    def _params(self, target: ChatbotTarget, session: Session) -> Dict[str, str]:
        return {"key": session.token} if session.token else {}

    def _build_payload(self, target: ChatbotTarget, prompt: str) -> Dict[str, Any]:
        return {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}

    def _extract_text(self, data: Dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts)
