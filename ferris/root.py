import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping

from .metadata import MetadataProbe
from .registry import SessionRegistry
from .utils.uri import is_within

logger = logging.getLogger(__name__)

SERVER_NAME = "rust-analyzer"
MANIFEST = "Cargo.toml"
PROJECT_MARKERS = ["rust-project.json", ".git"]


@dataclass(frozen=True)
class ToolchainPaths:
    cargo_home: Path
    rustup_home: Path

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "ToolchainPaths":
        env = os.environ if env is None else env
        home = Path.home()
        cargo_home = env.get("CARGO_HOME") or str(home / ".cargo")
        rustup_home = env.get("RUSTUP_HOME") or str(home / ".rustup")
        return cls(Path(cargo_home), Path(rustup_home))

    def library_roots(self) -> list[Path]:
        """Directories whose sources belong to dependencies, not to the user's project."""
        return [
            self.rustup_home / "toolchains",
            self.cargo_home / "registry" / "src",
            self.cargo_home / "git" / "checkouts",
        ]


def find_upward(names: Iterable[str], start: Path) -> Path | None:
    """Return the first of ``names`` found in ``start`` or its nearest ancestor."""
    names = list(names)
    for directory in [start, *start.parents]:
        for name in names:
            candidate = directory / name
            if candidate.exists():
                return candidate
    return None


class RootResolver:
    def __init__(
        self,
        registry: SessionRegistry,
        probe: MetadataProbe,
        paths: ToolchainPaths | None = None,
        server_name: str = SERVER_NAME,
    ):
        self.registry = registry
        self.probe = probe
        self.paths = paths or ToolchainPaths.from_env()
        self.server_name = server_name

    def is_library(self, file_path: Path) -> bool:
        return any(is_within(file_path, root.resolve()) for root in self.paths.library_roots())

    def library_root(self, file_path: Path) -> Path | None:
        """Root of the session that should serve a dependency source file.

        With several sessions running this picks the one registered last,
        which may not be the project that actually depends on the file.
        """
        if not self.is_library(file_path):
            return None
        session = self.registry.latest(self.server_name)
        if session is None:
            logger.debug(f"{file_path} is a dependency source but no session is active")
            return None
        logger.debug(f"Reusing root {session.root_dir} of session {session.id} for {file_path}")
        return session.root_dir

    def resolve(self, file_path: str | Path) -> Path | None:
        file_path = Path(file_path).resolve()
        directory = file_path.parent

        reused = self.library_root(file_path)
        if reused is not None:
            return reused

        manifest = find_upward([MANIFEST], directory)
        crate_dir = manifest.parent if manifest else None

        workspace_root = self.probe.workspace_root(manifest, cwd=directory)
        if workspace_root:
            root = Path(workspace_root)
            if crate_dir is None or is_within(crate_dir, root):
                logger.info(f"Resolved {file_path} to cargo workspace {root}")
                return root
            logger.warning(
                f"cargo reported workspace {root}, which does not contain {crate_dir}; ignoring"
            )

        if crate_dir is not None:
            logger.info(f"Resolved {file_path} to crate directory {crate_dir}")
            return crate_dir

        marker = find_upward(PROJECT_MARKERS, directory)
        if marker is not None:
            logger.info(f"Resolved {file_path} to {marker.parent} (found {marker.name})")
            return marker.parent

        logger.info(f"No root found for {file_path}")
        return None
