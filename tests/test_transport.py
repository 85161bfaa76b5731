"""End-to-end session tests against a stub language server subprocess."""

import asyncio
import json
import sys

import pytest

from ferris.commands import COMMANDS
from ferris.host import InMemoryHost
from ferris.lsp.transport import AsyncioTransport
from ferris.session import SessionManager, SessionState

from .conftest import FIXTURES_DIR

STUB_SERVER = FIXTURES_DIR / "stub_rust_analyzer.py"
CLOSE_TIMEOUT = 30


@pytest.fixture
def stub_config(config):
    config["server"]["cmd"] = [sys.executable, str(STUB_SERVER)]
    config["server"]["settings"] = {"rust-analyzer": {"checkOnSave": False}}
    return config


@pytest.fixture
def live(isolated_config, stub_config, registry, resolver):
    host = InMemoryHost()
    transport = AsyncioTransport(request_timeout=10)
    manager = SessionManager(
        host, transport, registry=registry, resolver=resolver, config=stub_config
    )
    return host, transport, manager


class TestAsyncioTransport:
    @pytest.mark.asyncio
    async def test_full_lifecycle(self, live, rust_project):
        host, transport, manager = live
        bufnr = host.open_buffer(rust_project / "src" / "main.rs")

        session = manager.start(bufnr=bufnr)
        assert session.state is SessionState.STARTING

        assert await transport.wait_ready(session, timeout=30) is True
        assert session.state is SessionState.RUNNING
        assert session.pid is not None
        assert session.server_capabilities["positionEncoding"] == "utf-16"
        assert set(COMMANDS) <= set(host.commands)
        # the stub echoes the configuration it was given
        assert json.loads(session.status.message) == {"checkOnSave": False}

        manager.stop(bufnr)
        await asyncio.wait_for(transport.wait_closed(session), timeout=CLOSE_TIMEOUT)

        assert session.state is SessionState.STOPPED
        assert session.exit_code == 0
        assert session not in manager.registry
        assert not set(COMMANDS) & set(host.commands)

    @pytest.mark.asyncio
    async def test_server_apply_edit(self, live, rust_project, monkeypatch):
        host, transport, manager = live
        target = rust_project / "src" / "user.rs"
        original = target.read_text()
        monkeypatch.setenv("FERRIS_STUB_EDIT_URI", target.as_uri())

        main_rs = host.open_buffer(rust_project / "src" / "main.rs")
        session = manager.start(bufnr=main_rs)
        assert await transport.wait_ready(session, timeout=30) is True

        assert json.loads(session.status.message) == {"applied": True}
        bufnr = host.buffer_for_uri(target.as_uri())
        assert host.buffer_text(bufnr) == "// generated\n" + original
        assert host.current_buffer() == main_rs

        manager.stop(main_rs)
        await asyncio.wait_for(transport.wait_closed(session), timeout=CLOSE_TIMEOUT)

    @pytest.mark.asyncio
    async def test_reload_workspace_round_trip(self, live, rust_project):
        host, transport, manager = live
        main_rs = host.open_buffer(rust_project / "src" / "main.rs")
        session = manager.start(bufnr=main_rs)
        assert await transport.wait_ready(session, timeout=30)

        assert await host.run_command("RustReloadWorkspace") is None
        await host.write(host.open_buffer(rust_project / "Cargo.toml", focus=False))
        assert host.current_buffer() == main_rs

        assert manager.stop(main_rs) == [session]
        await asyncio.wait_for(transport.wait_closed(session), timeout=CLOSE_TIMEOUT)
        assert session.exit_code == 0

    @pytest.mark.asyncio
    async def test_missing_server(self, isolated_config, config, registry, resolver, rust_project):
        config["server"]["cmd"] = ["ferris-no-such-rust-analyzer"]
        host = InMemoryHost()
        transport = AsyncioTransport()
        manager = SessionManager(host, transport, registry=registry, resolver=resolver, config=config)
        exits = []

        session = manager.start(
            {"on_exit": lambda s, code: exits.append(code)},
            bufnr=host.open_buffer(rust_project / "src" / "main.rs"),
        )
        assert await transport.wait_ready(session, timeout=10) is False
        await asyncio.wait_for(transport.wait_closed(session), timeout=CLOSE_TIMEOUT)

        assert session.state is SessionState.STOPPED
        assert exits == [None]
        assert host.commands == {}

    @pytest.mark.asyncio
    async def test_server_that_exits_immediately(self, isolated_config, config, registry, resolver, rust_project):
        config["server"]["cmd"] = [sys.executable, "-c", "import sys; sys.exit(3)"]
        host = InMemoryHost()
        transport = AsyncioTransport(request_timeout=5)
        manager = SessionManager(host, transport, registry=registry, resolver=resolver, config=config)

        session = manager.start(bufnr=host.open_buffer(rust_project / "src" / "main.rs"))
        assert await transport.wait_ready(session, timeout=10) is False
        await asyncio.wait_for(transport.wait_closed(session), timeout=CLOSE_TIMEOUT)

        assert session.state is SessionState.STOPPED
        assert session.exit_code == 3
