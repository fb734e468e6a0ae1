from typing import Any, Dict, Iterable, Optional

from .anthropic_messages import ClaudeAdapter
from .base import HttpChatAdapter, TargetAdapter
from .gemini import GeminiAdapter
from .openai_chat import ChatGPTAdapter, PerplexityAdapter
from chorus.targets import TargetKind

ADAPTER_CLASSES = {
    TargetKind.CHATGPT: ChatGPTAdapter,
    TargetKind.CLAUDE: ClaudeAdapter,
    TargetKind.GEMINI: GeminiAdapter,
    TargetKind.PERPLEXITY: PerplexityAdapter,
}


def default_adapters(
    log: Optional[Any] = None,
    kinds: Optional[Iterable[TargetKind]] = None,
    **options: Any,
) -> Dict[TargetKind, TargetAdapter]:
    """One adapter per target kind (all known kinds by default), sharing timeout/retry options."""
    selected = ADAPTER_CLASSES if kinds is None else kinds
    return {kind: ADAPTER_CLASSES[kind](log=log, **options) for kind in selected}


__all__ = [
    "TargetAdapter",
    "HttpChatAdapter",
    "ChatGPTAdapter",
    "ClaudeAdapter",
    "GeminiAdapter",
    "PerplexityAdapter",
    "ADAPTER_CLASSES",
    "default_adapters",
]
