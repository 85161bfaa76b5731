"""rust-analyzer session management for editors."""

from .host import EditorHost, InMemoryHost
from .registry import SessionRegistry
from .root import RootResolver, ToolchainPaths
from .session import Session, SessionManager, SessionState, Transport
from .utils.config import Config

__version__ = "0.1.0"


def setup(host: EditorHost, transport: Transport, config: Config | None = None, **kwargs) -> SessionManager:
    """Create a manager for ``host`` and register RustAnalyzerStart/Stop on it."""
    manager = SessionManager(host, transport, config=config, **kwargs)
    manager.install_entry_commands()
    return manager


__all__ = [
    "Config",
    "EditorHost",
    "InMemoryHost",
    "RootResolver",
    "Session",
    "SessionManager",
    "SessionRegistry",
    "SessionState",
    "ToolchainPaths",
    "Transport",
    "setup",
]
