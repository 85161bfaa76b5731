"""Editor commands a running session exposes, and the leaf actions behind them.

Each :class:`CommandBinding` names a leaf action. Leaves that only need the
session and the current buffer are implemented here; the rest (pickers,
hover windows, debugger glue) are supplied by the embedding editor through
``SessionManager(actions=...)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from .host import EditorHost, Nargs
from .utils.uri import path_to_uri, uri_to_path

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)

LeafAction = Callable[..., Awaitable[Any] | Any]


class CommandNotAvailable(Exception):
    pass


@dataclass(frozen=True)
class CommandBinding:
    name: str
    leaf: str
    nargs: Nargs = "0"
    complete: str | None = None
    leaf_args: tuple[Any, ...] = ()


COMMANDS: dict[str, CommandBinding] = {
    b.name: b
    for b in [
        CommandBinding("RustCodeAction", "code_action_group"),
        CommandBinding(
            "RustViewCrateGraph",
            "crate_graph",
            nargs="*",
            complete="customlist,v:lua.rust_tools_get_graphviz_backends",
        ),
        CommandBinding("RustDebuggables", "debuggables"),
        CommandBinding("RustExpandMacro", "expand_macro"),
        CommandBinding("RustOpenExternalDocs", "external_docs"),
        CommandBinding("RustHoverActions", "hover_actions"),
        CommandBinding("RustHoverRange", "hover_range"),
        CommandBinding("RustLastDebug", "last_debug"),
        CommandBinding("RustLastRun", "last_run"),
        CommandBinding("RustJoinLines", "join_lines"),
        CommandBinding("RustMoveItemDown", "move_item"),
        CommandBinding("RustMoveItemUp", "move_item", leaf_args=(True,)),
        CommandBinding("RustOpenCargo", "open_cargo_toml"),
        CommandBinding("RustParentModule", "parent_module"),
        CommandBinding("RustRunnables", "runnables"),
        CommandBinding("RustSSR", "ssr", nargs="?"),
        CommandBinding("RustReloadWorkspace", "workspace_refresh"),
        CommandBinding("RustSyntaxTree", "syntax_tree"),
        CommandBinding("RustFlyCheck", "fly_check"),
    ]
}

RELOAD_WORKSPACE = "RustReloadWorkspace"
START_COMMAND = "RustAnalyzerStart"
STOP_COMMAND = "RustAnalyzerStop"


def _text_document(host: EditorHost) -> dict[str, str]:
    name = host.buffer_name(host.current_buffer())
    if not name:
        raise CommandNotAvailable("The current buffer has no file")
    return {"uri": path_to_uri(name)}


async def workspace_refresh(session: Session, host: EditorHost) -> None:
    logger.info(f"Reloading workspace {session.root_dir}")
    await session.client.send_request("rust-analyzer/reloadWorkspace", None)


async def fly_check(session: Session, host: EditorHost) -> None:
    name = host.buffer_name(host.current_buffer())
    params = {"textDocument": {"uri": path_to_uri(name)}} if name else {"textDocument": None}
    await session.client.send_notification("rust-analyzer/runFlycheck", params)


async def crate_graph(session: Session, host: EditorHost, *backends: str) -> str:
    """Return the crate graph as graphviz source; rendering is up to the editor."""
    if backends:
        logger.debug(f"Crate graph backends requested: {backends}")
    return await session.client.send_request("rust-analyzer/viewCrateGraph", {"full": False})


async def syntax_tree(session: Session, host: EditorHost) -> str:
    return await session.client.send_request(
        "rust-analyzer/syntaxTree", {"textDocument": _text_document(host)}
    )


async def open_cargo_toml(session: Session, host: EditorHost) -> str | None:
    location = await session.client.send_request(
        "experimental/openCargoToml", {"textDocument": _text_document(host)}
    )
    if not location:
        return None
    return str(uri_to_path(location["uri"]))


async def runnables(session: Session, host: EditorHost) -> list[dict[str, Any]]:
    result = await session.client.send_request(
        "experimental/runnables",
        {"textDocument": _text_document(host), "position": None},
    )
    return result or []


BUILTIN_ACTIONS: dict[str, LeafAction] = {
    "workspace_refresh": workspace_refresh,
    "fly_check": fly_check,
    "crate_graph": crate_graph,
    "syntax_tree": syntax_tree,
    "open_cargo_toml": open_cargo_toml,
    "runnables": runnables,
}
