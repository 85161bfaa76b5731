import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol

from pydantic import ValidationError

from . import server_status
from .commands import (
    BUILTIN_ACTIONS,
    COMMANDS,
    START_COMMAND,
    STOP_COMMAND,
    CommandBinding,
    CommandNotAvailable,
    LeafAction,
)
from .edits import EditApplier, UnsupportedEdit
from .host import CommandError, EditorHost
from .lsp.capabilities import rust_analyzer_capabilities
from .lsp.types import ApplyWorkspaceEditParams, ServerStatus
from .metadata import CargoMetadataProbe
from .registry import SessionRegistry
from .root import MANIFEST, SERVER_NAME, RootResolver
from .utils.config import Config, evaluate, load_config, merge_config
from .utils.uri import is_within

logger = logging.getLogger(__name__)

Handler = Callable[["Session", Any], Any]
InitListener = Callable[["Session"], Any]
ExitListener = Callable[["Session", "int | None"], Any]


class SessionState(Enum):
    UNSTARTED = "unstarted"
    STARTING = "starting"
    INITIALIZED = "initialized"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"

    @property
    def is_active(self) -> bool:
        return self not in (SessionState.UNSTARTED, SessionState.STOPPED)

    @property
    def is_serving(self) -> bool:
        """Active and not shutting down; only these may take on new buffers."""
        return self.is_active and self is not SessionState.STOPPING


class Connection(Protocol):
    async def send_request(self, method: str, params: Any, timeout: float | None = None) -> Any: ...

    async def send_notification(self, method: str, params: Any) -> None: ...


_session_ids = itertools.count(1)


@dataclass(eq=False)
class Session:
    name: str
    root_dir: Path | None
    cmd: list[str]
    capabilities: dict[str, Any] = field(default_factory=dict)
    handlers: dict[str, Handler] = field(default_factory=dict)
    settings: dict[str, Any] = field(default_factory=dict)
    init_options: dict[str, Any] = field(default_factory=dict)
    init_listeners: list[InitListener] = field(default_factory=list)
    exit_listeners: list[ExitListener] = field(default_factory=list)
    id: int = field(default_factory=lambda: next(_session_ids))
    state: SessionState = SessionState.UNSTARTED
    pid: int | None = None
    client: Connection | Any = None
    server_capabilities: dict[str, Any] = field(default_factory=dict)
    offset_encoding: str = "utf-16"
    status: ServerStatus | None = None
    commands: list[str] = field(default_factory=list)
    augroup: int | None = None
    buffers: set[int] = field(default_factory=set)
    exit_code: int | None = None

    def transition(self, state: SessionState) -> None:
        logger.debug(f"Session {self.id}: {self.state.value} -> {state.value}")
        self.state = state

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "root": str(self.root_dir) if self.root_dir else None,
            "state": self.state.value,
            "pid": self.pid,
            "buffers": sorted(self.buffers),
            "commands": list(self.commands),
            "health": self.status.health if self.status else None,
            "quiescent": self.status.quiescent if self.status else None,
            "exit_code": self.exit_code,
        }


class Transport(Protocol):
    def launch(
        self,
        session: Session,
        on_init: Callable[[Session], None],
        on_exit: Callable[[Session, int | None], None],
    ) -> None: ...

    def terminate(self, session: Session) -> None: ...


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if callable(value):
        return [value]
    return list(value)


class SessionManager:
    """Starts, tracks and tears down rust-analyzer sessions for an editor."""

    def __init__(
        self,
        host: EditorHost,
        transport: Transport,
        registry: SessionRegistry | None = None,
        resolver: RootResolver | None = None,
        applier: EditApplier | None = None,
        config: Config | None = None,
        actions: Mapping[str, LeafAction] | None = None,
        commands: Mapping[str, CommandBinding] | None = None,
    ):
        self.host = host
        self.transport = transport
        self.config: Config = config if config is not None else load_config()
        self.registry = registry if registry is not None else SessionRegistry()
        if resolver is None:
            probe_config = self.config.get("probe", {})
            probe = CargoMetadataProbe(
                probe_config.get("cargo", "cargo"), probe_config.get("timeout")
            )
            resolver = RootResolver(self.registry, probe)
        self.resolver = resolver
        self.applier = applier or EditApplier(host.apply_text_edits, host.buffer_for_uri)
        self.actions: dict[str, LeafAction] = {**BUILTIN_ACTIONS, **(actions or {})}
        self.commands: dict[str, CommandBinding] = dict(commands or COMMANDS)

    def install_entry_commands(self) -> None:
        self.host.create_user_command(START_COMMAND, lambda: self.start())
        self.host.create_user_command(STOP_COMMAND, lambda: self.stop())

    # start / stop

    def start(self, overrides: Mapping[str, Any] | None = None, bufnr: int | None = None) -> Session | None:
        bufnr = self.host.current_buffer() if bufnr is None else bufnr
        server = merge_config(dict(self.config.get("server", {})), dict(overrides or {}))

        file_name = self.host.buffer_name(bufnr)
        root_dir = self.resolver.resolve(file_name) if file_name else None
        if root_dir is None and self.config.get("workspace", {}).get("require_root", False):
            logger.warning(f"Not starting {SERVER_NAME}: no root found for {file_name or 'buffer'}")
            return None

        existing = self.registry.find(SERVER_NAME, root_dir)
        if existing is not None:
            existing.buffers.add(bufnr)
            logger.info(f"Attached buffer {bufnr} to session {existing.id} at {root_dir}")
            return existing

        handlers: dict[str, Handler] = {
            "experimental/serverStatus": server_status.handler,
            "workspace/applyEdit": self._apply_edit,
        }
        handlers.update(server.get("handlers") or {})

        session = Session(
            name=SERVER_NAME,
            root_dir=root_dir,
            cmd=list(evaluate(server.get("cmd") or [SERVER_NAME])),
            capabilities=merge_config(rust_analyzer_capabilities(), server.get("capabilities")),
            handlers=handlers,
            settings=dict(server.get("settings") or {}),
            init_options=dict(server.get("init_options") or {}),
            init_listeners=_as_list(server.get("on_init")),
            exit_listeners=_as_list(server.get("on_exit")),
        )
        session.buffers.add(bufnr)

        self.registry.register(session)
        session.transition(SessionState.STARTING)
        logger.info(f"Starting session {session.id}: {' '.join(session.cmd)} at {root_dir}")
        self.transport.launch(session, self._on_init, self._on_exit)
        return session

    def stop(self, bufnr: int | None = None) -> list[Session]:
        bufnr = self.host.current_buffer() if bufnr is None else bufnr
        sessions = self.registry.for_buffer(bufnr, SERVER_NAME)
        for session in sessions:
            if session.state is SessionState.STOPPING:
                continue
            logger.info(f"Stopping session {session.id} at {session.root_dir}")
            session.transition(SessionState.STOPPING)
            self.transport.terminate(session)
        return sessions

    # lifecycle callbacks

    def _on_init(self, session: Session) -> None:
        if session.state is not SessionState.STARTING:
            logger.debug(f"Session {session.id} initialized while {session.state.value}")
            return

        self.applier.install_snippet_translation()

        for binding in self.commands.values():
            self.host.create_user_command(
                binding.name,
                partial(self._run_command, binding),
                nargs=binding.nargs,
                complete=binding.complete,
            )
        session.commands = list(self.commands)

        if self.config.get("tools", {}).get("reload_workspace_from_cargo_toml", True):
            group = self.host.create_augroup(f"FerrisAutoCmds{session.id}", clear=True)
            self.host.create_autocmd(
                "BufWritePost",
                f"*/{MANIFEST}",
                partial(self._on_manifest_saved, session),
                group,
            )
            session.augroup = group

        session.transition(SessionState.INITIALIZED)
        session.transition(SessionState.RUNNING)
        logger.info(f"Session {session.id} running with {len(session.commands)} commands")

        for listener in session.init_listeners:
            self._notify(listener, session)

    def _on_exit(self, session: Session, code: int | None) -> None:
        if session.state is SessionState.STOPPED:
            return

        self.applier.install_snippet_translation()
        self._remove_commands(session)

        if session.augroup is not None:
            try:
                self.host.del_augroup(session.augroup)
            except CommandError as e:
                logger.debug(f"Auto-command group already gone: {e}")
            session.augroup = None

        session.exit_code = code
        if session.state is not SessionState.STOPPING:
            session.transition(SessionState.STOPPING)
        session.transition(SessionState.STOPPED)
        self.registry.unregister(session)
        session.client = None
        logger.info(f"Session {session.id} exited with code {code}")

        for listener in session.exit_listeners:
            self._notify(listener, session, code)

    def _remove_commands(self, session: Session) -> None:
        if not session.commands:
            return
        # editor commands are shared by every running session
        others = [
            s for s in self.registry.active_sessions(SERVER_NAME) if s is not session and s.commands
        ]
        if not others:
            for name in session.commands:
                if self.host.has_user_command(name):
                    self.host.del_user_command(name)
        else:
            logger.debug(f"Keeping commands for {len(others)} other running sessions")
        session.commands = []

    def _notify(self, listener: Callable[..., Any], *args: Any) -> None:
        try:
            listener(*args)
        except Exception:
            logger.exception(f"Lifecycle listener {listener!r} failed")

    # commands and handlers

    def target_session(self) -> Session:
        running = [
            s
            for s in self.registry.for_buffer(self.host.current_buffer(), SERVER_NAME)
            if s.state is SessionState.RUNNING
        ]
        if not running:
            running = [
                s
                for s in self.registry.active_sessions(SERVER_NAME)
                if s.state is SessionState.RUNNING
            ]
        if not running:
            raise CommandNotAvailable(f"No running {SERVER_NAME} session")
        return running[-1]

    def run_leaf(self, session: Session, leaf: str, *args: Any) -> Any:
        action = self.actions.get(leaf)
        if action is None:
            raise CommandNotAvailable(f"'{leaf}' is not available in this editor")
        return action(session, self.host, *args)

    def _run_command(self, binding: CommandBinding, *args: str) -> Any:
        return self.run_leaf(self.target_session(), binding.leaf, *binding.leaf_args, *args)

    def _on_manifest_saved(self, session: Session, path: str) -> Any:
        if session.state is not SessionState.RUNNING:
            return None
        if session.root_dir is not None and not is_within(Path(path).resolve(), session.root_dir):
            return None
        return self.run_leaf(session, "workspace_refresh")

    def _apply_edit(self, session: Session, params: dict[str, Any] | None) -> dict[str, Any]:
        try:
            request = ApplyWorkspaceEditParams.model_validate(params or {})
            self.applier.apply_workspace_edit(request.edit, session.offset_encoding)
        except (ValidationError, UnsupportedEdit, CommandError, ValueError) as e:
            logger.warning(f"Could not apply workspace edit from session {session.id}: {e}")
            return {"applied": False, "failureReason": str(e)}
        return {"applied": True}
