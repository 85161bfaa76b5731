from __future__ import annotations

import asyncio
import inspect
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, TextIO

from pydantic import BaseModel

from .protocol import encode_message, read_message, LSPProtocolError, LSPResponseError
from .types import InitializeParams, InitializeResult, WorkspaceFolder
from ..utils.uri import path_to_uri

if TYPE_CHECKING:
    from ..session import Session

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = float(os.environ.get("FERRIS_REQUEST_TIMEOUT", "30"))

# requests every client must answer even when nobody registered a handler
_ACKNOWLEDGED = {
    "window/workDoneProgress/create",
    "client/registerCapability",
    "client/unregisterCapability",
    "workspace/semanticTokens/refresh",
    "workspace/inlayHint/refresh",
    "workspace/codeLens/refresh",
}


class LSPClient:
    process: asyncio.subprocess.Process
    session: Session
    log_file: Path | None
    request_timeout: float
    _request_id: int
    _pending_requests: dict[int, asyncio.Future[Any]]
    _reader_task: asyncio.Task[None] | None
    _stderr_task: asyncio.Task[None] | None
    _initialized: bool
    _log_handle: TextIO | None
    _quiescent: asyncio.Event

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        session: Session,
        log_file: Path | None = None,
        request_timeout: float | None = None,
    ):
        self.process = process
        self.session = session
        self.log_file = log_file
        self.request_timeout = request_timeout or REQUEST_TIMEOUT
        self._request_id = 0
        self._pending_requests = {}
        self._reader_task = None
        self._stderr_task = None
        self._initialized = False
        self._log_handle = None
        self._quiescent = asyncio.Event()

    @property
    def stdin(self) -> asyncio.StreamWriter:
        assert self.process.stdin is not None
        return self.process.stdin

    @property
    def stdout(self) -> asyncio.StreamReader:
        assert self.process.stdout is not None
        return self.process.stdout

    async def start(self) -> InitializeResult:
        self._reader_task = asyncio.create_task(self._read_loop())
        if self.process.stderr:
            if self.log_file:
                self.log_file.parent.mkdir(parents=True, exist_ok=True)
                self._log_handle = open(self.log_file, "a")
            self._stderr_task = asyncio.create_task(self._drain_stderr())
        return await self._initialize()

    async def _drain_stderr(self) -> None:
        try:
            while True:
                assert self.process.stderr is not None
                data = await self.process.stderr.read(4096)
                if not data:
                    break
                text = data.decode(errors="replace")
                if self._log_handle:
                    self._log_handle.write(text)
                    self._log_handle.flush()
                logger.debug(f"Server stderr: {text[:200]}")
        finally:
            if self._log_handle:
                self._log_handle.close()
                self._log_handle = None

    async def _initialize(self) -> InitializeResult:
        root = self.session.root_dir
        root_uri = path_to_uri(root) if root is not None else None
        params = InitializeParams(
            processId=os.getpid(),
            rootUri=root_uri,
            rootPath=str(root) if root is not None else None,
            capabilities=self.session.capabilities,
            workspaceFolders=(
                [WorkspaceFolder(uri=root_uri, name=root.name)] if root is not None and root_uri else None
            ),
            initializationOptions=self.session.init_options or None,
            clientInfo={"name": "ferris"},
        )

        raw = await self.send_request("initialize", params)
        result = InitializeResult.model_validate(raw or {})
        self.session.server_capabilities = result.capabilities.model_dump()
        encoding = self.session.server_capabilities.get("positionEncoding")
        if encoding:
            self.session.offset_encoding = encoding

        await self.send_notification("initialized", {})
        self._initialized = True
        if result.serverInfo:
            logger.info(f"Initialized {result.serverInfo.name} {result.serverInfo.version or ''}")
        return result

    async def stop(self) -> None:
        if self._initialized and self.process.returncode is None:
            try:
                await asyncio.wait_for(self.send_request("shutdown", None), timeout=5.0)
                await self.send_notification("exit", None)
            except (LSPResponseError, LSPProtocolError, ConnectionError, asyncio.TimeoutError) as e:
                logger.warning(f"Error during shutdown: {e}")

        if self.process.returncode is None:
            try:
                await asyncio.wait_for(self.process.wait(), timeout=5.0)
            except asyncio.TimeoutError:
                self.process.terminate()
                try:
                    await asyncio.wait_for(self.process.wait(), timeout=5.0)
                except asyncio.TimeoutError:
                    self.process.kill()

    async def close(self) -> None:
        """Cancel the reader tasks once the process is gone."""
        for task in (self._reader_task, self._stderr_task):
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        for future in self._pending_requests.values():
            if not future.done():
                future.set_exception(LSPProtocolError("Server exited"))
        self._pending_requests.clear()
        self._quiescent.set()

    async def send_request(self, method: str, params: Any, timeout: float | None = None) -> Any:
        self._request_id += 1
        request_id = self._request_id

        params_dict: dict[str, Any] | list[Any] | None
        if isinstance(params, BaseModel):
            params_dict = params.model_dump(exclude_none=True)
        else:
            params_dict = params

        message: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params_dict is not None:
            message["params"] = params_dict

        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        self._pending_requests[request_id] = future

        logger.debug(f"LSP REQUEST [{request_id}] {method}")
        self.stdin.write(encode_message(message))
        await self.stdin.drain()

        try:
            return await asyncio.wait_for(future, timeout=timeout or self.request_timeout)
        except asyncio.TimeoutError:
            self._pending_requests.pop(request_id, None)
            raise LSPResponseError(
                -1, f"Request {method} timed out after {timeout or self.request_timeout}s"
            )

    async def send_notification(self, method: str, params: Any) -> None:
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params

        self.stdin.write(encode_message(message))
        await self.stdin.drain()

        logger.debug(f"LSP NOTIFICATION {method}")

    async def _read_loop(self) -> None:
        try:
            while True:
                message = await read_message(self.stdout)
                await self._handle_message(message)
        except LSPProtocolError as e:
            if self.process.returncode is None:
                logger.error(f"Protocol error: {e}")
            for future in self._pending_requests.values():
                if not future.done():
                    future.set_exception(e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Error in read loop: {e}")
            for future in self._pending_requests.values():
                if not future.done():
                    future.set_exception(e)

    async def _handle_message(self, message: dict[str, Any]) -> None:
        if "id" in message:
            if "method" in message:
                await self._handle_server_request(message)
            else:
                self._handle_response(message)
        else:
            await self._handle_notification(message)

    def _handle_response(self, message: dict[str, Any]) -> None:
        request_id = message["id"]
        future = self._pending_requests.pop(request_id, None)

        if future is None:
            logger.warning(f"Received response for unknown request: {request_id}")
            return

        if "error" in message:
            error = message["error"]
            logger.debug(f"LSP RESPONSE [{request_id}] ERROR: {error}")
            future.set_exception(
                LSPResponseError(
                    error.get("code", -1),
                    error.get("message", "Unknown error"),
                    error.get("data"),
                )
            )
        else:
            future.set_result(message.get("result"))

    async def _call_handler(self, method: str, params: Any) -> tuple[bool, Any]:
        handler = self.session.handlers.get(method)
        if handler is None:
            return False, None
        result = handler(self.session, params)
        if inspect.isawaitable(result):
            result = await result
        return True, result

    async def _handle_server_request(self, message: dict[str, Any]) -> None:
        method = message["method"]
        request_id = message["id"]
        params = message.get("params")

        logger.debug(f"Received server request: {method} (id={request_id})")

        result: Any = None
        error: dict[str, Any] | None = None

        try:
            handled, result = await self._call_handler(method, params)
        except Exception as e:
            logger.exception(f"Handler for {method} failed")
            handled, error = True, {"code": -32603, "message": str(e)}

        if not handled:
            if method == "workspace/configuration":
                result = [self._configuration(item) for item in (params or {}).get("items", [])]
            elif method in _ACKNOWLEDGED:
                result = None
            else:
                error = {"code": -32601, "message": f"Method not found: {method}"}

        response: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id}
        if error:
            response["error"] = error
        else:
            response["result"] = result

        self.stdin.write(encode_message(response))
        await self.stdin.drain()

    def _configuration(self, item: dict[str, Any]) -> Any:
        settings: Any = self.session.settings
        section = item.get("section")
        if not section:
            return settings
        for key in section.split("."):
            if not isinstance(settings, dict) or key not in settings:
                return None
            settings = settings[key]
        return settings

    async def _handle_notification(self, message: dict[str, Any]) -> None:
        method = message["method"]
        params = message.get("params")

        logger.debug(f"Received notification: {method}")

        try:
            await self._call_handler(method, params)
        except Exception:
            logger.exception(f"Handler for {method} failed")

        if method == "experimental/serverStatus":
            status = self.session.status
            if status is not None and status.quiescent and status.health != "error":
                self._quiescent.set()
            else:
                self._quiescent.clear()

    async def wait_for_quiescent(self, timeout: float = 60.0) -> bool:
        if self._quiescent.is_set():
            return True
        try:
            await asyncio.wait_for(self._quiescent.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Timeout waiting for {self.session.name} to become quiescent")
            return False
