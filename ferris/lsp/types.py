from enum import IntEnum
from typing import Any, Literal

from pydantic import BaseModel, Field


class InsertTextFormat(IntEnum):
    PlainText = 1
    Snippet = 2


class Position(BaseModel):
    line: int
    character: int


class Range(BaseModel):
    start: Position
    end: Position


class TextDocumentIdentifier(BaseModel):
    uri: str


class OptionalVersionedTextDocumentIdentifier(TextDocumentIdentifier):
    version: int | None = None


class TextEdit(BaseModel):
    range: Range
    newText: str


class SnippetTextEdit(TextEdit):
    """rust-analyzer's `snippetTextEdit` extension: newText may hold `$0`, `${1:foo}`."""

    insertTextFormat: InsertTextFormat | None = None
    annotationId: str | None = None


class TextDocumentEdit(BaseModel):
    textDocument: OptionalVersionedTextDocumentIdentifier
    edits: list[SnippetTextEdit]


class CreateFile(BaseModel):
    kind: Literal["create"] = "create"
    uri: str
    options: dict[str, Any] | None = None


class RenameFile(BaseModel):
    kind: Literal["rename"] = "rename"
    oldUri: str
    newUri: str
    options: dict[str, Any] | None = None


class DeleteFile(BaseModel):
    kind: Literal["delete"] = "delete"
    uri: str
    options: dict[str, Any] | None = None


class WorkspaceEdit(BaseModel):
    changes: dict[str, list[SnippetTextEdit]] | None = None
    documentChanges: (
        list[TextDocumentEdit | CreateFile | RenameFile | DeleteFile] | None
    ) = None


class ApplyWorkspaceEditParams(BaseModel):
    label: str | None = None
    edit: WorkspaceEdit


class ServerStatus(BaseModel):
    health: Literal["ok", "warning", "error"] = "ok"
    quiescent: bool = False
    message: str | None = None


class ServerCapabilities(BaseModel, extra="allow"):
    pass


class ServerInfo(BaseModel):
    name: str
    version: str | None = None


class InitializeResult(BaseModel):
    capabilities: ServerCapabilities = Field(default_factory=ServerCapabilities)
    serverInfo: ServerInfo | None = None


class WorkspaceFolder(BaseModel):
    uri: str
    name: str


class InitializeParams(BaseModel):
    processId: int | None
    rootUri: str | None
    rootPath: str | None = None
    capabilities: dict[str, Any]
    workspaceFolders: list[WorkspaceFolder] | None = None
    initializationOptions: dict[str, Any] | None = None
    clientInfo: dict[str, str] | None = None


class CargoMetadata(BaseModel, extra="ignore"):
    """The slice of `cargo metadata --format-version 1` output we read."""

    workspace_root: str
    target_directory: str | None = None
