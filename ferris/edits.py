"""Edit interception.

rust-analyzer advertises the `snippetTextEdit` extension, so the text edits it
sends may carry snippet placeholders (``$0``, ``${1:name}``). Editors apply
text edits literally, so every batch goes through :class:`EditApplier`, whose
transforms rewrite snippet edits into plain ones before the real apply runs.
"""

import logging
import re
from typing import Any, Callable, Sequence

from .lsp.types import (
    InsertTextFormat,
    SnippetTextEdit,
    TextDocumentEdit,
    TextEdit,
    WorkspaceEdit,
)

logger = logging.getLogger(__name__)

_TABSTOP = re.compile(r"\$(\d+|[A-Za-z_][A-Za-z0-9_]*)")
_OPEN = re.compile(r"\$\{(\d+|[A-Za-z_][A-Za-z0-9_]*)")

EditTransform = Callable[[list[TextEdit]], list[TextEdit]]
ApplyFn = Callable[[list[TextEdit], int, str], Any]


class UnsupportedEdit(Exception):
    pass


def snippet_to_plain(text: str) -> str:
    """Strip snippet syntax, keeping placeholder text and the first choice."""
    plain, _ = _parse(text, 0, nested=False)
    return plain


def _parse(text: str, i: int, nested: bool) -> tuple[str, int]:
    parts: list[str] = []
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text) and text[i + 1] in "$}\\":
            parts.append(text[i + 1])
            i += 2
            continue
        if nested and ch == "}":
            return "".join(parts), i + 1
        if ch == "$":
            match = _OPEN.match(text, i)
            if match and match.end() < len(text):
                j = match.end()
                if text[j] == "}":
                    i = j + 1
                    continue
                if text[j] == ":":
                    inner, i = _parse(text, j + 1, nested=True)
                    parts.append(inner)
                    continue
                if text[j] == "|":
                    choice = _parse_choice(text, j + 1)
                    if choice is not None:
                        first, i = choice
                        parts.append(first)
                        continue
            match = _TABSTOP.match(text, i)
            if match:
                i = match.end()
                continue
        parts.append(ch)
        i += 1
    return "".join(parts), i


def _parse_choice(text: str, i: int) -> tuple[str, int] | None:
    options: list[str] = []
    current: list[str] = []
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text) and text[i + 1] in ",|\\":
            current.append(text[i + 1])
            i += 2
            continue
        if ch == ",":
            options.append("".join(current))
            current = []
        elif ch == "|" and text.startswith("|}", i):
            options.append("".join(current))
            return options[0], i + 2
        else:
            current.append(ch)
        i += 1
    return None


def is_snippet_edit(edit: TextEdit) -> bool:
    return (
        isinstance(edit, SnippetTextEdit)
        and edit.insertTextFormat == InsertTextFormat.Snippet
    )


def snippet_text_edits_to_text_edits(edits: list[TextEdit]) -> list[TextEdit]:
    """Rewrite snippet edits into plain-text edits over the same ranges.

    Order is kept and every other edit is passed through as the same object.
    """
    result: list[TextEdit] = []
    for edit in edits:
        if is_snippet_edit(edit):
            edit = edit.model_copy(
                update={
                    "newText": snippet_to_plain(edit.newText),
                    "insertTextFormat": None,
                }
            )
        result.append(edit)
    return result


def parse_edits(edits: Sequence[TextEdit | dict[str, Any]]) -> list[TextEdit]:
    return [
        edit if isinstance(edit, TextEdit) else SnippetTextEdit.model_validate(edit)
        for edit in edits
    ]


class EditApplier:
    """The apply-edits routine with an ordered chain of transforms in front."""

    def __init__(self, apply_fn: ApplyFn, buffer_for_uri: Callable[[str], int] | None = None):
        self._apply_fn = apply_fn
        self._buffer_for_uri = buffer_for_uri
        self._transforms: list[EditTransform] = []

    @property
    def transforms(self) -> tuple[EditTransform, ...]:
        return tuple(self._transforms)

    def install(self, transform: EditTransform) -> bool:
        """Append ``transform`` unless it is already installed."""
        if transform in self._transforms:
            return False
        self._transforms.append(transform)
        logger.debug(f"Installed edit transform {getattr(transform, '__name__', transform)}")
        return True

    def install_snippet_translation(self) -> bool:
        return self.install(snippet_text_edits_to_text_edits)

    def apply(
        self,
        edits: Sequence[TextEdit | dict[str, Any]],
        bufnr: int,
        offset_encoding: str = "utf-16",
    ) -> Any:
        batch = parse_edits(edits)
        for transform in self._transforms:
            batch = transform(batch)
        return self._apply_fn(batch, bufnr, offset_encoding)

    def apply_workspace_edit(
        self, edit: WorkspaceEdit | dict[str, Any], offset_encoding: str = "utf-16"
    ) -> None:
        if not isinstance(edit, WorkspaceEdit):
            edit = WorkspaceEdit.model_validate(edit)
        if self._buffer_for_uri is None:
            raise UnsupportedEdit("No buffer lookup available for workspace edits")

        if edit.documentChanges:
            for change in edit.documentChanges:
                if not isinstance(change, TextDocumentEdit):
                    raise UnsupportedEdit(f"Resource operation '{change.kind}' is not supported")
            for change in edit.documentChanges:
                assert isinstance(change, TextDocumentEdit)
                bufnr = self._buffer_for_uri(change.textDocument.uri)
                self.apply(list(change.edits), bufnr, offset_encoding)
        elif edit.changes:
            for uri, text_edits in edit.changes.items():
                self.apply(list(text_edits), self._buffer_for_uri(uri), offset_encoding)
