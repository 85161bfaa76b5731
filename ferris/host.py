"""The editor surface ferris talks to.

Sessions register user commands and auto-commands on an :class:`EditorHost`
and apply text edits through it. :class:`InMemoryHost` is a headless host
used by the command line and the tests.
"""

import fnmatch
import inspect
import itertools
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Literal, Protocol, Sequence

from .lsp.types import TextEdit
from .utils.text import OffsetEncoding, position_to_offset
from .utils.uri import uri_to_path

logger = logging.getLogger(__name__)

Nargs = Literal["0", "?", "*"]


class CommandError(Exception):
    pass


class EditorHost(Protocol):
    def create_user_command(
        self, name: str, callback: Callable[..., Any], nargs: Nargs = "0", complete: str | None = None
    ) -> None: ...

    def del_user_command(self, name: str) -> None: ...

    def has_user_command(self, name: str) -> bool: ...

    def create_augroup(self, name: str, clear: bool = True) -> int: ...

    def create_autocmd(
        self, event: str, pattern: str, callback: Callable[[str], Any], group: int
    ) -> int: ...

    def del_augroup(self, group: int) -> None: ...

    def current_buffer(self) -> int: ...

    def buffer_name(self, bufnr: int) -> str: ...

    def buffer_for_uri(self, uri: str) -> int: ...

    def apply_text_edits(
        self, edits: Sequence[TextEdit], bufnr: int, offset_encoding: str
    ) -> None: ...


@dataclass
class UserCommand:
    name: str
    callback: Callable[..., Any]
    nargs: Nargs = "0"
    complete: str | None = None


@dataclass
class AutoCommand:
    id: int
    event: str
    pattern: str
    callback: Callable[[str], Any]
    group: int


@dataclass
class Buffer:
    bufnr: int
    name: str
    text: str = ""


def check_nargs(name: str, nargs: Nargs, args: Sequence[str]) -> None:
    if nargs == "0" and args:
        raise CommandError(f"{name}: takes no arguments")
    if nargs == "?" and len(args) > 1:
        raise CommandError(f"{name}: takes at most one argument")


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class InMemoryHost:
    def __init__(self) -> None:
        self.commands: dict[str, UserCommand] = {}
        self.augroups: dict[int, str] = {}
        self.autocmds: list[AutoCommand] = []
        self.buffers: dict[int, Buffer] = {}
        self._ids = itertools.count(1)
        self._current: int | None = None

    # commands

    def create_user_command(
        self, name: str, callback: Callable[..., Any], nargs: Nargs = "0", complete: str | None = None
    ) -> None:
        self.commands[name] = UserCommand(name, callback, nargs, complete)

    def del_user_command(self, name: str) -> None:
        if name not in self.commands:
            raise CommandError(f"No such user-defined command: {name}")
        del self.commands[name]

    def has_user_command(self, name: str) -> bool:
        return name in self.commands

    async def run_command(self, name: str, *args: str) -> Any:
        command = self.commands.get(name)
        if command is None:
            raise CommandError(f"Not an editor command: {name}")
        check_nargs(name, command.nargs, args)
        return await _maybe_await(command.callback(*args))

    # auto-commands

    def create_augroup(self, name: str, clear: bool = True) -> int:
        for group_id, group_name in self.augroups.items():
            if group_name == name:
                if clear:
                    self.autocmds = [a for a in self.autocmds if a.group != group_id]
                return group_id
        group_id = next(self._ids)
        self.augroups[group_id] = name
        return group_id

    def create_autocmd(
        self, event: str, pattern: str, callback: Callable[[str], Any], group: int
    ) -> int:
        if group not in self.augroups:
            raise CommandError(f"Invalid augroup: {group}")
        autocmd = AutoCommand(next(self._ids), event, pattern, callback, group)
        self.autocmds.append(autocmd)
        return autocmd.id

    def del_augroup(self, group: int) -> None:
        if group not in self.augroups:
            raise CommandError(f"Invalid augroup: {group}")
        del self.augroups[group]
        self.autocmds = [a for a in self.autocmds if a.group != group]

    async def fire(self, event: str, path: str | Path) -> int:
        """Run every auto-command for ``event`` whose pattern matches ``path``."""
        path = str(path)
        matching = [
            a for a in self.autocmds if a.event == event and fnmatch.fnmatch(path, a.pattern)
        ]
        for autocmd in matching:
            await _maybe_await(autocmd.callback(path))
        return len(matching)

    # buffers

    def open_buffer(self, path: str | Path, text: str | None = None, focus: bool = True) -> int:
        name = str(Path(path).resolve())
        for buf in self.buffers.values():
            if buf.name == name:
                if focus:
                    self._current = buf.bufnr
                return buf.bufnr
        if text is None:
            file_path = Path(name)
            text = file_path.read_text() if file_path.is_file() else ""
        buf = Buffer(next(self._ids), name, text)
        self.buffers[buf.bufnr] = buf
        if focus:
            self._current = buf.bufnr
        return buf.bufnr

    def set_current_buffer(self, bufnr: int) -> None:
        if bufnr not in self.buffers:
            raise CommandError(f"Invalid buffer: {bufnr}")
        self._current = bufnr

    def current_buffer(self) -> int:
        if self._current is None:
            buf = Buffer(next(self._ids), "")
            self.buffers[buf.bufnr] = buf
            self._current = buf.bufnr
        return self._current

    def buffer_name(self, bufnr: int) -> str:
        return self.buffers[bufnr].name

    def buffer_text(self, bufnr: int) -> str:
        return self.buffers[bufnr].text

    def buffer_for_uri(self, uri: str) -> int:
        return self.open_buffer(uri_to_path(uri), focus=False)

    async def write(self, bufnr: int | None = None) -> None:
        buf = self.buffers[self.current_buffer() if bufnr is None else bufnr]
        if not buf.name:
            raise CommandError("No file name")
        Path(buf.name).write_text(buf.text)
        await self.fire("BufWritePost", buf.name)

    def apply_text_edits(
        self, edits: Sequence[TextEdit], bufnr: int, offset_encoding: str = "utf-16"
    ) -> None:
        buf = self.buffers[bufnr]
        encoding: OffsetEncoding = offset_encoding  # type: ignore[assignment]
        text = buf.text
        spans = []
        for index, edit in enumerate(edits):
            start = position_to_offset(text, edit.range.start.line, edit.range.start.character, encoding)
            end = position_to_offset(text, edit.range.end.line, edit.range.end.character, encoding)
            spans.append((start, index, end, edit.newText))

        # back to front so earlier offsets stay valid; ties keep list order
        for start, _, end, new_text in sorted(spans, reverse=True):
            text = text[:start] + new_text + text[end:]
        buf.text = text
        logger.debug(f"Applied {len(spans)} edits to buffer {bufnr}")
