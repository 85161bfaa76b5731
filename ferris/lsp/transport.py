from __future__ import annotations

import asyncio
import logging
import os
from typing import Callable

from .client import LSPClient
from .protocol import LanguageServerNotFound, LSPProtocolError, LSPResponseError
from ..root import ToolchainPaths
from ..session import Session, SessionState
from ..utils.config import get_log_dir

logger = logging.getLogger(__name__)


def _get_extended_path() -> str:
    paths = ToolchainPaths.from_env()
    extra_paths = [
        str(paths.cargo_home / "bin"),
        os.path.expanduser("~/.local/bin"),
        "/usr/local/bin",
        "/opt/homebrew/bin",
    ]
    current_path = os.environ.get("PATH", "")
    return os.pathsep.join(extra_paths + [current_path])


class AsyncioTransport:
    """Runs each session's server as a subprocess on the running event loop."""

    def __init__(self, request_timeout: float | None = None):
        self.request_timeout = request_timeout
        self._tasks: dict[int, asyncio.Task[None]] = {}
        self._clients: dict[int, LSPClient] = {}
        self._settled: dict[int, asyncio.Event] = {}

    def launch(
        self,
        session: Session,
        on_init: Callable[[Session], None],
        on_exit: Callable[[Session, int | None], None],
    ) -> None:
        self._settled[session.id] = asyncio.Event()
        self._tasks[session.id] = asyncio.get_running_loop().create_task(
            self._run(session, on_init, on_exit)
        )

    def terminate(self, session: Session) -> None:
        client = self._clients.get(session.id)
        if client is not None:
            asyncio.get_running_loop().create_task(client.stop())
            return
        task = self._tasks.get(session.id)
        if task is not None and not task.done():
            task.cancel()

    async def _run(
        self,
        session: Session,
        on_init: Callable[[Session], None],
        on_exit: Callable[[Session, int | None], None],
    ) -> None:
        code: int | None = None
        process: asyncio.subprocess.Process | None = None
        client: LSPClient | None = None
        env = os.environ.copy()
        env["PATH"] = _get_extended_path()

        try:
            try:
                process = await asyncio.create_subprocess_exec(
                    *session.cmd,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=str(session.root_dir) if session.root_dir else None,
                    env=env,
                )
            except FileNotFoundError:
                logger.error(str(LanguageServerNotFound(session.name, session.cmd)))
                return

            session.pid = process.pid
            client = LSPClient(
                process,
                session,
                log_file=get_log_dir() / f"{session.name}.log",
                request_timeout=self.request_timeout,
            )
            self._clients[session.id] = client

            try:
                await client.start()
            except (LSPProtocolError, LSPResponseError, ConnectionError) as e:
                logger.error(f"{session.name} failed to initialize at {session.root_dir}: {e}")
                await client.stop()
            else:
                session.client = client
                on_init(session)
            finally:
                self._settled[session.id].set()

            code = await process.wait()
        except asyncio.CancelledError:
            if process is not None and process.returncode is None:
                process.kill()
                code = await process.wait()
            raise
        finally:
            if client is not None:
                await client.close()
            self._clients.pop(session.id, None)
            self._settled[session.id].set()
            on_exit(session, code)

    async def wait_ready(self, session: Session, timeout: float = 60.0) -> bool:
        """Wait for initialization and for the server to report it is quiescent."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        settled = self._settled.get(session.id)
        if settled is None:
            return False
        try:
            await asyncio.wait_for(settled.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        client = self._clients.get(session.id)
        if client is None or session.client is None:
            return False
        quiescent = await client.wait_for_quiescent(timeout=max(0.0, deadline - loop.time()))
        return quiescent and session.state is SessionState.RUNNING

    async def wait_closed(self, session: Session) -> None:
        task = self._tasks.get(session.id)
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
