from pathlib import Path

import pytest

from ferris.registry import SessionRegistry
from ferris.root import RootResolver, ToolchainPaths, find_upward
from ferris.session import Session, SessionState

from .conftest import FakeProbe


def make_session(root: Path | None, state: SessionState = SessionState.RUNNING) -> Session:
    session = Session(name="rust-analyzer", root_dir=root, cmd=["rust-analyzer"])
    session.state = state
    return session


class TestToolchainPaths:
    def test_defaults_under_home(self, monkeypatch, temp_dir):
        monkeypatch.setenv("HOME", str(temp_dir))
        paths = ToolchainPaths.from_env({})
        assert paths.cargo_home == temp_dir / ".cargo"
        assert paths.rustup_home == temp_dir / ".rustup"

    def test_env_overrides(self):
        paths = ToolchainPaths.from_env({"CARGO_HOME": "/opt/cargo", "RUSTUP_HOME": "/opt/rustup"})
        assert paths.cargo_home == Path("/opt/cargo")
        assert paths.rustup_home == Path("/opt/rustup")

    def test_library_roots(self):
        paths = ToolchainPaths(Path("/c"), Path("/r"))
        assert paths.library_roots() == [
            Path("/r/toolchains"),
            Path("/c/registry/src"),
            Path("/c/git/checkouts"),
        ]


class TestFindUpward:
    def test_finds_in_start_dir(self, temp_dir):
        (temp_dir / "Cargo.toml").touch()
        assert find_upward(["Cargo.toml"], temp_dir) == temp_dir / "Cargo.toml"

    def test_finds_nearest(self, temp_dir):
        inner = temp_dir / "a" / "b"
        inner.mkdir(parents=True)
        (temp_dir / "Cargo.toml").touch()
        (temp_dir / "a" / "Cargo.toml").touch()
        assert find_upward(["Cargo.toml"], inner) == temp_dir / "a" / "Cargo.toml"

    def test_any_of_several_names(self, temp_dir):
        inner = temp_dir / "src"
        inner.mkdir()
        (temp_dir / ".git").mkdir()
        assert find_upward(["rust-project.json", ".git"], inner) == temp_dir / ".git"

    def test_nothing_found(self, temp_dir):
        assert find_upward(["no-such-marker-ferris"], temp_dir) is None


class TestLibraryShortCircuit:
    def test_registry_source_reuses_active_session(self):
        registry = SessionRegistry()
        registry.register(make_session(Path("/home/u/proj")))
        probe = FakeProbe("/somewhere/else")
        paths = ToolchainPaths(Path("/home/u/.cargo"), Path("/home/u/.rustup"))
        resolver = RootResolver(registry, probe, paths)

        root = resolver.resolve("/home/u/.cargo/registry/src/crate-1.0/lib.rs")

        assert root == Path("/home/u/proj")
        assert probe.calls == []

    def test_toolchain_source_reuses_active_session(self, resolver, registry, toolchain, probe):
        registry.register(make_session(Path("/work/app")))
        std_file = toolchain.rustup_home / "toolchains" / "stable" / "lib" / "rustlib" / "src" / "vec.rs"

        assert resolver.resolve(std_file) == Path("/work/app")
        assert probe.calls == []

    def test_most_recent_session_wins(self, resolver, registry, toolchain):
        registry.register(make_session(Path("/work/one")))
        registry.register(make_session(Path("/work/two")))
        dep = toolchain.cargo_home / "registry" / "src" / "index" / "serde-1.0" / "src" / "lib.rs"

        assert resolver.resolve(dep) == Path("/work/two")

    def test_stopped_sessions_are_ignored(self, resolver, registry, toolchain):
        registry.register(make_session(Path("/work/one")))
        registry.register(make_session(Path("/work/two"), SessionState.STOPPED))
        dep = toolchain.cargo_home / "git" / "checkouts" / "foo-123" / "src" / "lib.rs"

        assert resolver.resolve(dep) == Path("/work/one")

    def test_stopping_sessions_are_ignored(self, resolver, registry, toolchain):
        registry.register(make_session(Path("/work/one")))
        registry.register(make_session(Path("/work/two"), SessionState.STOPPING))
        dep = toolchain.cargo_home / "registry" / "src" / "index" / "serde-1.0" / "src" / "lib.rs"

        assert resolver.resolve(dep) == Path("/work/one")

    def test_prefix_must_match_whole_components(self, resolver, registry, toolchain, probe):
        registry.register(make_session(Path("/work/one")))
        lookalike = toolchain.cargo_home / "registry" / "src-backup" / "lib.rs"

        assert resolver.resolve(lookalike) is None
        assert len(probe.calls) == 1

    def test_no_active_session_falls_through(self, temp_dir, registry, toolchain):
        crate = toolchain.cargo_home / "registry" / "src" / "index" / "rand-0.8"
        (crate / "src").mkdir(parents=True)
        (crate / "Cargo.toml").touch()
        resolver = RootResolver(registry, FakeProbe(None), toolchain)

        assert resolver.resolve(crate / "src" / "lib.rs") == crate


class TestManifestResolution:
    def test_workspace_root_from_cargo(self, temp_dir, registry, toolchain):
        proj = temp_dir / "proj"
        (proj / "src").mkdir(parents=True)
        (proj / "Cargo.toml").touch()
        probe = FakeProbe(str(proj))
        resolver = RootResolver(registry, probe, toolchain)

        assert resolver.resolve(proj / "src" / "main.rs") == proj
        assert probe.calls == [(proj / "Cargo.toml", proj / "src")]

    def test_member_crate_resolves_to_workspace(self, temp_dir, registry, toolchain):
        ws = temp_dir / "ws"
        member = ws / "crates" / "core"
        (member / "src").mkdir(parents=True)
        (ws / "Cargo.toml").touch()
        (member / "Cargo.toml").touch()
        probe = FakeProbe(str(ws))
        resolver = RootResolver(registry, probe, toolchain)

        assert resolver.resolve(member / "src" / "lib.rs") == ws
        assert probe.calls[0][0] == member / "Cargo.toml"

    def test_crate_dir_when_cargo_unavailable(self, temp_dir, registry, toolchain):
        sub = temp_dir / "proj" / "sub"
        (sub / "src").mkdir(parents=True)
        (temp_dir / "proj" / ".git").mkdir()
        (sub / "Cargo.toml").touch()
        resolver = RootResolver(registry, FakeProbe(None), toolchain)

        assert resolver.resolve(sub / "src" / "lib.rs") == sub

    def test_reported_root_outside_crate_is_ignored(self, temp_dir, registry, toolchain):
        proj = temp_dir / "proj"
        (proj / "src").mkdir(parents=True)
        (proj / "Cargo.toml").touch()
        resolver = RootResolver(registry, FakeProbe(str(temp_dir / "elsewhere")), toolchain)

        assert resolver.resolve(proj / "src" / "main.rs") == proj

    def test_real_cargo_missing(self, temp_dir, registry, toolchain):
        from ferris.metadata import CargoMetadataProbe

        proj = temp_dir / "proj"
        (proj / "src").mkdir(parents=True)
        (proj / "Cargo.toml").touch()
        resolver = RootResolver(registry, CargoMetadataProbe("ferris-no-such-cargo"), toolchain)

        assert resolver.resolve(proj / "src" / "main.rs") == proj


class TestMarkerFallback:
    def test_git_marker(self, temp_dir, registry, toolchain):
        repo = temp_dir / "repo"
        (repo / "scripts").mkdir(parents=True)
        (repo / ".git").mkdir()
        probe = FakeProbe(None)
        resolver = RootResolver(registry, probe, toolchain)

        assert resolver.resolve(repo / "scripts" / "build.rs") == repo
        assert probe.calls == [(None, repo / "scripts")]

    def test_rust_project_json(self, temp_dir, registry, toolchain):
        proj = temp_dir / "nocargo"
        (proj / "src").mkdir(parents=True)
        (proj / "rust-project.json").write_text("{}")
        resolver = RootResolver(registry, FakeProbe(None), toolchain)

        assert resolver.resolve(proj / "src" / "lib.rs") == proj

    def test_probe_result_used_without_manifest(self, temp_dir, registry, toolchain):
        loose = temp_dir / "loose"
        loose.mkdir()
        resolver = RootResolver(registry, FakeProbe(str(temp_dir / "ws")), toolchain)

        assert resolver.resolve(loose / "main.rs") == temp_dir / "ws"

    @pytest.mark.parametrize("name", ["main.rs", "lib.rs"])
    def test_nothing_found(self, temp_dir, registry, toolchain, name):
        loose = temp_dir / "loose"
        loose.mkdir()
        resolver = RootResolver(registry, FakeProbe(None), toolchain)

        assert resolver.resolve(loose / name) is None
