import json
import asyncio
from typing import Any


class LSPProtocolError(Exception):
    pass


class LSPResponseError(Exception):
    code: int
    message: str
    data: object | None

    def __init__(self, code: int, message: str, data: object | None = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"LSP Error {code}: {message}")

    def is_method_not_found(self) -> bool:
        return self.code == -32601


class LanguageServerNotFound(Exception):
    server_name: str
    cmd: list[str]

    def __init__(self, server_name: str, cmd: list[str]):
        self.server_name = server_name
        self.cmd = cmd
        super().__init__(
            f"Language server '{server_name}' not found (tried: {' '.join(cmd)}). "
            + "Install with: rustup component add rust-analyzer"
        )


def encode_message(obj: dict[str, Any]) -> bytes:
    content = json.dumps(obj).encode("utf-8")
    header = f"Content-Length: {len(content)}\r\n\r\n".encode("ascii")
    return header + content


async def read_message(reader: asyncio.StreamReader) -> dict[str, Any]:
    headers: dict[str, str] = {}

    while True:
        line = await reader.readline()
        if not line:
            raise LSPProtocolError("Connection closed")

        line_str = line.decode("ascii").strip()
        if not line_str:
            break

        if ":" in line_str:
            key, value = line_str.split(":", 1)
            headers[key.strip().lower()] = value.strip()

    if "content-length" not in headers:
        raise LSPProtocolError("Missing Content-Length header")

    try:
        content_length = int(headers["content-length"])
    except ValueError:
        raise LSPProtocolError(f"Invalid Content-Length: {headers['content-length']}")

    try:
        content = await reader.readexactly(content_length)
    except asyncio.IncompleteReadError:
        raise LSPProtocolError("Connection closed mid-message")

    return json.loads(content.decode("utf-8"))
