import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import click

from .commands import COMMANDS
from .host import InMemoryHost
from .lsp.capabilities import rust_analyzer_capabilities
from .lsp.transport import AsyncioTransport
from .metadata import CargoMetadataProbe
from .registry import SessionRegistry
from .root import RootResolver
from .session import SessionManager, SessionState
from .utils.config import Config, get_config_path, get_log_dir, load_config


class OrderedGroup(click.Group):
    commands_order: list[str]

    def __init__(self, *args: Any, commands_order: list[str] | None = None, **kwargs: Any):  # noqa: ANN401
        super().__init__(*args, **kwargs)
        self.commands_order = commands_order or []

    def list_commands(self, ctx: click.Context) -> list[str]:
        commands = super().list_commands(ctx)
        if self.commands_order:
            ordered = [c for c in self.commands_order if c in commands]
            remaining = [c for c in commands if c not in self.commands_order]
            return ordered + remaining
        return commands


def configure_logging(level: str) -> None:
    log_dir = get_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.FileHandler(log_dir / "ferris.log"),
        ],
    )


def make_probe(config: Config) -> CargoMetadataProbe:
    probe_config = config.get("probe", {})
    return CargoMetadataProbe(probe_config.get("cargo", "cargo"), probe_config.get("timeout"))


def emit(ctx: click.Context, data: object, plain: str) -> None:
    if ctx.obj["json"]:
        click.echo(json.dumps(data, indent=2, default=str))
    else:
        click.echo(plain)


CLI_HELP = """\
ferris resolves the workspace root rust-analyzer should be started in for a
Rust source file, and manages rust-analyzer sessions for editors.

Files inside $CARGO_HOME/registry/src or $RUSTUP_HOME/toolchains belong to
dependencies and are served by the session that is already running. Other
files are rooted at the cargo workspace (`cargo metadata`), else at the
nearest Cargo.toml, else at the nearest rust-project.json or .git.
"""


@click.group(
    cls=OrderedGroup,
    commands_order=["root", "metadata", "check", "commands", "capabilities", "config"],
    help=CLI_HELP,
    context_settings={"help_option_names": ["-h", "--help"], "max_content_width": 120},
)
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
@click.option("--log-level", default=None, help="Log level (default: client.log_level from config)")
@click.pass_context
def cli(ctx: click.Context, json_output: bool, log_level: str | None) -> None:
    ctx.ensure_object(dict)
    config = load_config()
    ctx.obj["json"] = json_output
    ctx.obj["config"] = config
    configure_logging(log_level or config.get("client", {}).get("log_level", "info"))


@cli.command()
@click.argument("path", type=click.Path())
@click.pass_context
def root(ctx: click.Context, path: str) -> None:
    """Print the root directory rust-analyzer would be started in for PATH."""
    config: Config = ctx.obj["config"]
    resolver = RootResolver(SessionRegistry(), make_probe(config))
    file_path = Path(path).resolve()
    resolved = resolver.resolve(file_path)
    if resolved is None:
        raise click.ClickException(f"No root found for {file_path}")
    emit(ctx, {"path": str(file_path), "root": str(resolved)}, str(resolved))


@cli.command()
@click.option("--manifest-path", type=click.Path(exists=True), help="Path to Cargo.toml")
@click.pass_context
def metadata(ctx: click.Context, manifest_path: str | None) -> None:
    """Print the workspace root reported by `cargo metadata`."""
    config: Config = ctx.obj["config"]
    manifest = Path(manifest_path).resolve() if manifest_path else None
    workspace_root = make_probe(config).workspace_root(manifest, cwd=Path.cwd())
    if workspace_root is None:
        raise click.ClickException(
            f"cargo metadata failed (see {get_log_dir() / 'ferris.log'})"
        )
    emit(ctx, {"workspace_root": workspace_root}, workspace_root)


@cli.command()
@click.pass_context
def capabilities(ctx: click.Context) -> None:
    """Print the client capabilities sent to rust-analyzer."""
    _ = ctx
    click.echo(json.dumps(rust_analyzer_capabilities(), indent=2))


@cli.command("commands")
@click.pass_context
def list_commands(ctx: click.Context) -> None:
    """List the editor commands a running session registers."""
    bindings = list(COMMANDS.values())
    data = [
        {"name": b.name, "leaf": b.leaf, "nargs": b.nargs, "complete": b.complete}
        for b in bindings
    ]
    lines = []
    for b in bindings:
        line = f"{b.name:<22} nargs={b.nargs}"
        if b.complete:
            line += f"  complete={b.complete}"
        lines.append(line)
    emit(ctx, data, "\n".join(lines))


@cli.command()
@click.pass_context
def config(ctx: click.Context) -> None:
    """Print config file location and contents."""
    config_path = get_config_path()
    if ctx.obj["json"]:
        click.echo(json.dumps({"path": str(config_path), "config": ctx.obj["config"]}, indent=2, default=str))
        return

    click.echo(f"Config file: {config_path}")
    click.echo()

    if config_path.exists():
        click.echo(config_path.read_text())
    else:
        click.echo("(file does not exist, using defaults)")


async def run_check(path: Path, config: Config, timeout: float) -> dict[str, Any]:
    host = InMemoryHost()
    bufnr = host.open_buffer(path)
    transport = AsyncioTransport(request_timeout=config.get("client", {}).get("request_timeout"))
    manager = SessionManager(host, transport, config=config)

    session = manager.start(bufnr=bufnr)
    if session is None:
        raise click.ClickException(f"No root found for {path}")

    ready = await transport.wait_ready(session, timeout=timeout)
    info = session.to_dict()
    info["ready"] = ready

    manager.stop(bufnr)
    await transport.wait_closed(session)

    if info["state"] != SessionState.RUNNING.value:
        log_path = get_log_dir() / f"{session.name}.log"
        raise click.ClickException(
            f"{session.name} failed to start (exit code {session.exit_code}). "
            + f"Server log: {log_path}"
        )
    return info


@cli.command()
@click.argument("path", type=click.Path(exists=True))
@click.option("--timeout", default=120.0, help="Seconds to wait for indexing (default: 120)")
@click.pass_context
def check(ctx: click.Context, path: str, timeout: float) -> None:
    """Start rust-analyzer for PATH, wait until it is ready, then stop it."""
    config: Config = ctx.obj["config"]
    info = asyncio.run(run_check(Path(path).resolve(), config, timeout))

    plain = "\n".join(
        [
            f"root:    {info['root']}",
            f"pid:     {info['pid']}",
            f"ready:   {'yes' if info['ready'] else 'no'}",
            f"health:  {info['health'] or 'unknown'}",
        ]
    )
    emit(ctx, info, plain)


if __name__ == "__main__":
    cli()
