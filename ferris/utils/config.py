import copy
import os
from pathlib import Path
from typing import Any, Callable, TypedDict

import tomli


class ClientConfig(TypedDict, total=False):
    log_level: str
    request_timeout: int


class ServerSection(TypedDict, total=False):
    cmd: list[str] | Callable[[], list[str]]
    settings: dict[str, Any]
    init_options: dict[str, Any]
    capabilities: dict[str, Any]


class ToolsConfig(TypedDict, total=False):
    reload_workspace_from_cargo_toml: bool


class ProbeConfig(TypedDict, total=False):
    cargo: str
    timeout: float


class WorkspaceConfig(TypedDict, total=False):
    require_root: bool


class Config(TypedDict, total=False):
    client: ClientConfig
    server: ServerSection
    tools: ToolsConfig
    probe: ProbeConfig
    workspace: WorkspaceConfig


def get_cache_dir() -> Path:
    xdg = os.environ.get("XDG_CACHE_HOME")
    if xdg:
        base = Path(xdg)
    else:
        base = Path.home() / ".cache"
    return base / "ferris"


def get_config_dir() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        base = Path(xdg)
    else:
        base = Path.home() / ".config"
    return base / "ferris"


def get_config_path() -> Path:
    return get_config_dir() / "config.toml"


def get_log_dir() -> Path:
    return get_cache_dir() / "log"


DEFAULT_CONFIG: Config = {
    "client": {
        "log_level": "info",
        "request_timeout": 30,
    },
    "server": {
        "cmd": ["rust-analyzer"],
        "settings": {},
        "init_options": {},
    },
    "tools": {
        "reload_workspace_from_cargo_toml": True,
    },
    "probe": {
        "cargo": "cargo",
    },
    "workspace": {
        "require_root": False,
    },
}


def load_config(path: Path | None = None) -> Config:
    config_path = path or get_config_path()
    config: dict[str, Any] = copy.deepcopy(dict(DEFAULT_CONFIG))

    if config_path.exists():
        with open(config_path, "rb") as f:
            user_config = tomli.load(f)
            _merge_config(config, user_config)

    return Config(**{k: v for k, v in config.items()})


def _merge_config(base: dict[str, Any], override: dict[str, Any]) -> None:
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_config(base[key], value)
        else:
            base[key] = value


def merge_config(base: dict[str, Any], *overrides: dict[str, Any] | None) -> dict[str, Any]:
    """Recursively merge ``overrides`` into a copy of ``base``; later values win.

    Callables and other non-dict leaves are carried over by reference.
    """
    result = _copy_dicts(base)
    for override in overrides:
        if override:
            _merge_config(result, _copy_dicts(override))
    return result


def _copy_dicts(value: dict[str, Any]) -> dict[str, Any]:
    return {k: _copy_dicts(v) if isinstance(v, dict) else v for k, v in value.items()}


def evaluate(value: Any) -> Any:
    """Config values may be given as zero-argument callables."""
    if callable(value):
        return value()
    return value
