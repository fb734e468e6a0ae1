from .types import (
    AdapterError,
    AdapterResponse,
    ChorusError,
    ErrorKind,
    MalformedRequest,
    PromptRequest,
    RegistryError,
    ResponseBundle,
    Session,
    SessionError,
    SetupReport,
    TargetResult,
    TargetStatus,
    UnknownTarget,
)
from .targets import ChatbotTarget, TargetKind
from .registry import StaticRegistry, TargetRegistry, default_targets, load_targets
from .sessions import EnvSessionBackend, FileSessionBackend, SessionBackend, SessionManager
from .adapters import TargetAdapter
from .aggregator import Aggregator
from .dispatcher import Dispatcher
from .service import ChorusService
from .settings import ChorusSettings

__version__ = "0.1.0"

__all__ = [
    # Types
    "AdapterError",
    "AdapterResponse",
    "ChorusError",
    "ErrorKind",
    "MalformedRequest",
    "PromptRequest",
    "RegistryError",
    "ResponseBundle",
    "Session",
    "SessionError",
    "SetupReport",
    "TargetResult",
    "TargetStatus",
    "UnknownTarget",
    # Targets
    "ChatbotTarget",
    "TargetKind",
    # Registry
    "TargetRegistry",
    "StaticRegistry",
    "default_targets",
    "load_targets",
    # Sessions
    "SessionBackend",
    "FileSessionBackend",
    "EnvSessionBackend",
    "SessionManager",
    # Core
    "TargetAdapter",
    "Aggregator",
    "Dispatcher",
    "ChorusService",
    "ChorusSettings",
]
