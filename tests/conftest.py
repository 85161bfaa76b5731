import copy
import shutil
import tempfile
from pathlib import Path
from typing import Any

import pytest

from ferris.host import InMemoryHost
from ferris.registry import SessionRegistry
from ferris.root import RootResolver, ToolchainPaths
from ferris.session import Session, SessionManager
from ferris.utils.config import DEFAULT_CONFIG

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def isolated_config(temp_dir, monkeypatch):
    cache_dir = temp_dir / "cache"
    config_dir = temp_dir / "config"
    cache_dir.mkdir()
    config_dir.mkdir()

    monkeypatch.setenv("XDG_CACHE_HOME", str(cache_dir))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_dir))

    return {"cache": cache_dir, "config": config_dir}


@pytest.fixture
def rust_project(temp_dir):
    src = FIXTURES_DIR / "rust_project"
    dst = temp_dir / "rust_project"
    shutil.copytree(src, dst)
    return dst


class FakeProbe:
    """Stands in for `cargo metadata`; returns a fixed answer and records calls."""

    def __init__(self, workspace_root: str | None = None):
        self.result = workspace_root
        self.calls: list[tuple[Path | None, Path | None]] = []

    def workspace_root(self, manifest_path=None, cwd=None):
        self.calls.append((manifest_path, cwd))
        return self.result


class FakeClient:
    def __init__(self, responses: dict[str, Any] | None = None):
        self.responses = responses or {}
        self.requests: list[tuple[str, Any]] = []
        self.notifications: list[tuple[str, Any]] = []

    async def send_request(self, method, params, timeout=None):
        self.requests.append((method, params))
        return self.responses.get(method)

    async def send_notification(self, method, params):
        self.notifications.append((method, params))


class FakeTransport:
    """Records launches; tests fire the init and exit callbacks by hand."""

    def __init__(self):
        self.launched: list[Session] = []
        self.terminated: list[Session] = []
        self._callbacks: dict[int, tuple[Any, Any]] = {}

    def launch(self, session, on_init, on_exit):
        self.launched.append(session)
        self._callbacks[session.id] = (on_init, on_exit)

    def terminate(self, session):
        self.terminated.append(session)

    def init(self, session, client=None):
        session.client = client or FakeClient()
        self._callbacks[session.id][0](session)

    def exit(self, session, code=0):
        self._callbacks[session.id][1](session, code)


@pytest.fixture
def config():
    return copy.deepcopy(DEFAULT_CONFIG)


@pytest.fixture
def toolchain(temp_dir):
    return ToolchainPaths(cargo_home=temp_dir / ".cargo", rustup_home=temp_dir / ".rustup")


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def probe():
    return FakeProbe()


@pytest.fixture
def resolver(registry, probe, toolchain):
    return RootResolver(registry, probe, toolchain)


@pytest.fixture
def host():
    return InMemoryHost()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def manager(host, transport, registry, resolver, config):
    return SessionManager(host, transport, registry=registry, resolver=resolver, config=config)
