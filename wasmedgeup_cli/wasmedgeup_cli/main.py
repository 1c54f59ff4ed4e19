"""Main CLI entry point for wasmedgeup.

This module defines the Typer application and its commands.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import structlog
import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from wasmedgeup import (
    ConfigManager,
    DownloadManager,
    ErrorKind,
    GitHubReleasesSource,
    GlobalConfig,
    HostPlatformProbe,
    LogLevel,
    Phase,
    PluginManager,
    PluginRequest,
    ProfileShellIntegration,
    ReleasesFilter,
    RuntimeInstaller,
    SemanticVersion,
    UnsupportedPlatformError,
    VersionNotFoundError,
    VersionResolver,
    VersionStore,
    WasmedgeupError,
    plugin_platform_key,
)
from wasmedgeup.releases import LATEST

from . import __version__

if TYPE_CHECKING:
    from wasmedgeup import ProgressEvent

# Create the main Typer app
app = typer.Typer(
    name="wasmedgeup",
    help="Install and manage WasmEdge runtime versions and plugins.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

plugin_app = typer.Typer(
    name="plugin",
    help="Install, remove and list WasmEdge plugins.",
    no_args_is_help=True,
)
app.add_typer(plugin_app, name="plugin")

# Create console for rich output
console = Console()
err_console = Console(stderr=True)

LEVEL_ORDER = [logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR]
LEVEL_MAP = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def configure_logging(level: int) -> None:
    """Configure structlog and standard logging to write to stderr.

    Args:
        level: Standard library logging level.
    """
    logging.basicConfig(
        format="%(message)s",
        level=level,
        stream=sys.stderr,
        force=True,
    )

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def resolve_log_level(base: LogLevel, verbose: int, quiet: bool) -> int:
    """Apply -v/-q flags to the configured log level."""
    if quiet:
        return logging.ERROR
    index = LEVEL_ORDER.index(LEVEL_MAP[base])
    return LEVEL_ORDER[max(0, index - verbose)]


@dataclass
class CliState:
    """Options shared by all commands."""

    config: GlobalConfig


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]wasmedgeup[/bold blue] version {__version__}")
        raise typer.Exit()


@contextmanager
def handle_errors() -> Iterator[None]:
    """Print wasmedgeup errors in red and exit (2 for input errors, 1 otherwise)."""
    try:
        yield
    except WasmedgeupError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=2 if e.kind is ErrorKind.INPUT else 1) from e
    except ValueError as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=2) from e


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Increase log verbosity (-vv for debug)."),
    ] = 0,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only log errors."),
    ] = False,
    connect_timeout: Annotated[
        float | None,
        typer.Option("--connect-timeout", help="Connection timeout in seconds."),
    ] = None,
    request_timeout: Annotated[
        float | None,
        typer.Option("--request-timeout", help="Overall request timeout in seconds."),
    ] = None,
    config_path: Annotated[
        Path | None,
        typer.Option("--config", help="Path to the configuration file."),
    ] = None,
) -> None:
    """wasmedgeup: WasmEdge runtime and plugin version manager.

    Install several WasmEdge versions side by side, switch between them and
    manage their plugins.
    """
    with handle_errors():
        manager = ConfigManager(config_path)
        config = manager.with_overrides(
            connect_timeout=connect_timeout, request_timeout=request_timeout
        )

    configure_logging(resolve_log_level(config.log_level, verbose, quiet))
    ctx.obj = CliState(config=config)


def _config(
    ctx: typer.Context,
    path: Path | None = None,
    tmpdir: Path | None = None,
) -> GlobalConfig:
    """Configuration with per-command overrides applied."""
    state: CliState = ctx.obj
    updates = {"install_path": path, "tmpdir": tmpdir}
    return state.config.model_copy(update={k: v for k, v in updates.items() if v is not None})


def _store(config: GlobalConfig) -> VersionStore:
    return VersionStore(config.install_path, ProfileShellIntegration())


def _plugin_manager(config: GlobalConfig) -> PluginManager:
    return PluginManager(
        _store(config),
        DownloadManager.from_config(config),
        HostPlatformProbe().detect(),
        config.release_base_url,
        config.tmpdir,
        config.releases_api_url,
    )


def _resolver(config: GlobalConfig, download_manager: DownloadManager) -> VersionResolver:
    return VersionResolver(GitHubReleasesSource(download_manager, config.releases_api_url))


class ProgressRenderer:
    """Renders ProgressEvent callbacks as rich progress bars."""

    def __init__(self, progress: Progress) -> None:
        self._progress = progress
        self._tasks: dict[str, TaskID] = {}

    def __call__(self, event: ProgressEvent) -> None:
        task = self._tasks.get(event.resource)
        if task is None:
            task = self._progress.add_task(event.resource, total=event.bytes_total)
            self._tasks[event.resource] = task

        if event.phase is Phase.DOWNLOAD:
            self._progress.update(task, completed=event.bytes_downloaded, total=event.bytes_total)
        else:
            status = event.message or event.phase.value
            self._progress.update(task, description=f"{event.resource} ({status})")


def _progress_bar() -> Progress:
    return Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=err_console,
        transient=True,
    )


path_option = typer.Option("--path", "-p", help="Install root (defaults to ~/.wasmedge).")
tmpdir_option = typer.Option(
    "--tmpdir", "-t", help="Directory for staging downloads (defaults to the system temp dir)."
)
runtime_option = typer.Option(
    "--runtime", help="Runtime version to operate on (defaults to the latest installed)."
)


@app.command()
def install(
    ctx: typer.Context,
    version: Annotated[
        str,
        typer.Argument(help="Version to install, e.g. latest, 0.14.1, 0.15.0-rc.1."),
    ],
    path: Annotated[Path | None, path_option] = None,
    tmpdir: Annotated[Path | None, tmpdir_option] = None,
    os_name: Annotated[
        str | None,
        typer.Option("--os", help="Target OS: linux, ubuntu, darwin (macos) or windows."),
    ] = None,
    arch: Annotated[
        str | None,
        typer.Option("--arch", help="Target architecture: x86_64 (amd64) or aarch64 (arm64)."),
    ] = None,
    no_verify: Annotated[
        bool,
        typer.Option("--no-verify", help="Skip SHA-256 checksum verification."),
    ] = False,
    no_use: Annotated[
        bool,
        typer.Option("--no-use", help="Do not make the installed version current."),
    ] = False,
) -> None:
    """Install a WasmEdge version and make it current."""
    config = _config(ctx, path, tmpdir)
    with handle_errors():
        platform = HostPlatformProbe().detect(os_name, arch)
        download_manager = DownloadManager.from_config(config)
        store = _store(config)
        installer = RuntimeInstaller(
            store, download_manager, _resolver(config, download_manager), config
        )

        with _progress_bar() as progress:
            result = asyncio.run(
                installer.install(
                    version,
                    platform,
                    verify=False if no_verify else None,
                    progress=ProgressRenderer(progress),
                )
            )

        console.print(f"[green]✓[/green] Installed WasmEdge {result.version} to {result.path}")
        if not result.checksum_verified:
            console.print("[yellow]Checksum verification was skipped.[/yellow]")

        if not no_use:
            store.use(result.version)
            ProfileShellIntegration().configure(config.install_path)
            console.print(f"[green]✓[/green] WasmEdge {result.version} is now current")


@app.command()
def use(
    ctx: typer.Context,
    version: Annotated[str, typer.Argument(help="Installed version to make current, or latest.")],
    path: Annotated[Path | None, path_option] = None,
) -> None:
    """Switch the current WasmEdge version."""
    config = _config(ctx, path)
    with handle_errors():
        if version.strip().lower() == LATEST:
            download_manager = DownloadManager.from_config(config)
            target = asyncio.run(_resolver(config, download_manager).resolve(LATEST))
        else:
            target = SemanticVersion.parse(version)

        store = _store(config)
        store.use(target)
        ProfileShellIntegration().configure(config.install_path)
        console.print(f"[green]✓[/green] WasmEdge {target} is now current")


@app.command("list")
def list_versions(
    ctx: typer.Context,
    remote: Annotated[
        bool,
        typer.Option("--remote", "-r", help="List releases available for download."),
    ] = False,
    all_releases: Annotated[
        bool,
        typer.Option("--all", "-a", help="Include pre-releases in the remote listing."),
    ] = False,
    path: Annotated[Path | None, path_option] = None,
) -> None:
    """List installed versions, or releases available for download."""
    config = _config(ctx, path)
    with handle_errors():
        if remote:
            download_manager = DownloadManager.from_config(config)
            releases_filter = ReleasesFilter.ALL if all_releases else ReleasesFilter.STABLE
            versions = asyncio.run(_resolver(config, download_manager).releases(releases_filter))
            stable = [v for v in versions if not v.is_prerelease]
            latest = max(stable) if stable else None
            for v in versions:
                marker = " [green]<- latest[/green]" if v == latest else ""
                console.print(f"{v}{marker}")
            return

        store = _store(config)
        installed = store.list_installed()
        if not installed:
            console.print("[yellow]No WasmEdge versions installed.[/yellow]")
            return

        current = store.current_version()
        for v in installed:
            marker = " [green]<- current[/green]" if v == current else ""
            console.print(f"{v}{marker}")


@app.command()
def remove(
    ctx: typer.Context,
    version: Annotated[
        str | None,
        typer.Argument(help="Version to remove (defaults to the current version)."),
    ] = None,
    all_versions: Annotated[
        bool,
        typer.Option("--all", help="Remove every installed version and the install root."),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Do not ask for confirmation."),
    ] = False,
    path: Annotated[Path | None, path_option] = None,
) -> None:
    """Remove an installed WasmEdge version."""
    config = _config(ctx, path)
    with handle_errors():
        store = _store(config)
        if all_versions:
            if not yes and not typer.confirm(
                "This will remove ALL installed WasmEdge versions. Continue?"
            ):
                console.print("Cancelled.")
                return
            result = store.remove_all()
        else:
            if version is not None:
                target = SemanticVersion.parse(version)
            else:
                current = store.current_version()
                if current is None:
                    raise VersionNotFoundError("<no current version>")
                target = current
            result = store.remove(target)

        for removed in result.removed:
            console.print(f"[green]✓[/green] Removed WasmEdge {removed}")
        if result.new_current is not None:
            console.print(f"WasmEdge {result.new_current} is now current")
        if result.root_removed:
            console.print(f"Removed install root {store.root}")


@plugin_app.command("install")
def plugin_install(
    ctx: typer.Context,
    plugins: Annotated[
        list[str] | None,
        typer.Argument(help="Plugins to install, e.g. wasi_nn-ggml or wasi_crypto@0.14.1."),
    ] = None,
    runtime: Annotated[str | None, runtime_option] = None,
    tmpdir: Annotated[Path | None, tmpdir_option] = None,
    path: Annotated[Path | None, path_option] = None,
) -> None:
    """Install plugins into a runtime version."""
    config = _config(ctx, path, tmpdir)
    with handle_errors():
        requests = [PluginRequest.parse(spec) for spec in plugins or []]
        runtime_version = SemanticVersion.parse(runtime) if runtime else None
        manager = _plugin_manager(config)

        with _progress_bar() as progress:
            results = asyncio.run(
                manager.install_plugins(requests, runtime_version, ProgressRenderer(progress))
            )

        for result in results:
            if result.installed:
                console.print(f"[green]✓[/green] Installed plugin {result.name} {result.version}")
            else:
                console.print(
                    f"[yellow]No plugin library found in {result.name} {result.version}; "
                    "nothing was installed.[/yellow]"
                )


@plugin_app.command("remove")
def plugin_remove(
    ctx: typer.Context,
    plugins: Annotated[
        list[str] | None,
        typer.Argument(help="Names of the plugins to remove."),
    ] = None,
    runtime: Annotated[str | None, runtime_option] = None,
    path: Annotated[Path | None, path_option] = None,
) -> None:
    """Remove plugins from a runtime version."""
    config = _config(ctx, path)
    with handle_errors():
        runtime_version = SemanticVersion.parse(runtime) if runtime else None
        manager = _plugin_manager(config)
        result = manager.remove_plugins(plugins or [], runtime_version)

        for removed in result.removed:
            console.print(f"[green]✓[/green] Removed {removed}")
        if result.missing:
            console.print(f"[yellow]Not installed: {', '.join(result.missing)}[/yellow]")


@plugin_app.command("list")
def plugin_list(
    ctx: typer.Context,
    runtime: Annotated[str | None, runtime_option] = None,
    remote: Annotated[
        bool,
        typer.Option("--remote", "-r", help="List plugins published for the runtime release."),
    ] = False,
    name: Annotated[
        str | None, typer.Option("--name", help="Only show the plugin with this name.")
    ] = None,
    path: Annotated[Path | None, path_option] = None,
) -> None:
    """List plugins installed in a runtime version, or published for it."""
    config = _config(ctx, path)
    with handle_errors():
        runtime_version = SemanticVersion.parse(runtime) if runtime else None
        manager = _plugin_manager(config)
        if remote:
            available = asyncio.run(manager.list_available_plugins(runtime_version))
            if name is not None:
                available = [plugin for plugin in available if plugin.name == name]
            if not available:
                console.print("[yellow]No plugins published for this platform.[/yellow]")
                return
            table = Table(title=f"Plugins for WasmEdge {available[0].version}")
            table.add_column("Plugin", style="cyan")
            table.add_column("Version")
            table.add_column("Platform")
            for plugin in available:
                table.add_row(plugin.name, plugin.version, plugin.platform_key)
            console.print(table)
            return

        names = manager.list_installed_plugins(runtime_version)
        if name is not None:
            names = [n for n in names if n == name]
        if not names:
            console.print("[yellow]No plugins installed.[/yellow]")
            return
        for installed in names:
            console.print(installed)


@app.command("platform")
def show_platform(
    ctx: typer.Context,
    path: Annotated[Path | None, path_option] = None,
) -> None:
    """Show the detected platform and plugin platform key."""
    config = _config(ctx, path)
    with handle_errors():
        descriptor = HostPlatformProbe().detect()
        table = Table(title="Platform")
        table.add_column("Property", style="cyan")
        table.add_column("Value")
        table.add_row("OS", descriptor.os_kind.value)
        table.add_row("Architecture", descriptor.arch.value)
        table.add_row("C library", descriptor.libc_kind.value)
        table.add_row("OS version", descriptor.os_version or "unknown")

        runtime = _store(config).latest_installed()
        if runtime is not None:
            try:
                key = plugin_platform_key(runtime, descriptor)
            except UnsupportedPlatformError:
                key = "unsupported"
            table.add_row(f"Plugin key ({runtime})", key)

        console.print(table)


if __name__ == "__main__":
    app()
