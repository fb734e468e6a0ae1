from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class TargetKind(str, Enum):
    CHATGPT = "chatgpt"
    CLAUDE = "claude"
    GEMINI = "gemini"
    PERPLEXITY = "perplexity"


@dataclass(frozen=True)
class ChatbotTarget:
    id: str
    name: str
    endpoint: str
    kind: TargetKind
    enabled: bool = True
    url: Optional[str] = None  # web address shown to users; defaults to endpoint
    model: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def display_url(self) -> str:
        return self.url or self.endpoint

    def to_listing(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.display_url,
            "is_enabled": self.enabled,
        }
