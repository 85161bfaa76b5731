import logging
import subprocess
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from .lsp.types import CargoMetadata

logger = logging.getLogger(__name__)

METADATA_CMD = ["metadata", "--no-deps", "--format-version", "1"]


class MetadataProbe(Protocol):
    def workspace_root(
        self, manifest_path: Path | None = None, cwd: Path | None = None
    ) -> str | None: ...


class CargoMetadataProbe:
    """Asks cargo where the workspace containing a manifest is rooted.

    This blocks until cargo exits. Any failure (cargo missing, non-zero
    exit, garbage on stdout) is reported as ``None`` so root resolution can
    fall back to the filesystem.
    """

    def __init__(self, cargo: str = "cargo", timeout: float | None = None):
        self.cargo = cargo
        self.timeout = timeout

    def command(self, manifest_path: Path | None = None) -> list[str]:
        cmd = [self.cargo, *METADATA_CMD]
        if manifest_path is not None:
            cmd += ["--manifest-path", str(manifest_path)]
        return cmd

    def workspace_root(
        self, manifest_path: Path | None = None, cwd: Path | None = None
    ) -> str | None:
        cmd = self.command(manifest_path)
        logger.debug(f"Running {' '.join(cmd)}")

        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                cwd=str(cwd) if cwd is not None and cwd.is_dir() else None,
                timeout=self.timeout,
                check=False,
            )
        except FileNotFoundError:
            logger.debug(f"{self.cargo} not found, skipping cargo metadata")
            return None
        except subprocess.TimeoutExpired:
            logger.warning(f"cargo metadata timed out after {self.timeout}s")
            return None
        except OSError as e:
            logger.warning(f"Failed to run cargo metadata: {e}")
            return None

        if proc.returncode != 0:
            logger.debug(
                f"cargo metadata exited with {proc.returncode}: {proc.stderr.strip()[:200]}"
            )
            return None

        try:
            metadata = CargoMetadata.model_validate_json(proc.stdout)
        except ValidationError as e:
            logger.warning(f"Could not parse cargo metadata output: {e.error_count()} errors")
            return None

        logger.debug(f"cargo metadata workspace_root={metadata.workspace_root}")
        return metadata.workspace_root
