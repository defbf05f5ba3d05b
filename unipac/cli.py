"""
unipac - One command line for pacman, the AUR, flatpak, snap and cargo

Every command runs on all selected backends at once and merges the results.
"""

import asyncio
import logging
from typing import Annotated, Optional, Sequence

from cyclopts import App, Parameter
from rich.console import Console

from unipac import __version__
from unipac.commands import Commands
from unipac.config import Config
from unipac.errors import ConfigError
from unipac.log import setup_logging
from unipac.models import Backend

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)

app = App(
    name="unipac",
    help="""
[bold cyan]unipac[/] - One command line for all your package managers

Search, install and update packages across [blue]pacman[/], [red]the AUR[/],
[green]flatpak[/], [yellow]snap[/] and [bright_red]cargo[/] at the same time.
Backend flags go before the command; without any, every backend is used.

[dim]Examples:[/]
  unipac list                 List installed packages
  unipac -f -s search firefox Search flatpak and snap only
  unipac install ripgrep      Pick a package to install
  unipac uninstall ripgrep    Remove an installed package
  unipac update --count       Number of pending updates
  unipac -n list -u           Pending updates, script-friendly
""",
    version=__version__,
    # Global flags only before the command: "update -c" is --count, not --cargo
    parse_mode="strict",
)


def build_config(
    pacman: bool = False,
    aur: bool = False,
    flatpak: bool = False,
    snap: bool = False,
    cargo: bool = False,
    no_interactive: bool = False,
    config_path: Optional[str] = None,
    verbose: bool = False,
) -> Config:
    selected = {
        Backend.PACMAN: pacman,
        Backend.AUR: aur,
        Backend.FLATPAK: flatpak,
        Backend.SNAP: snap,
        Backend.CARGO: cargo,
    }
    return Config.from_flags(
        selected, no_interactive=no_interactive, path=config_path, verbose=verbose
    )


@app.meta.default
def launcher(
    *tokens: Annotated[str, Parameter(show=False, allow_leading_hyphen=True)],
    pacman: Annotated[
        bool, Parameter(name=["--pacman", "-p"], negative="", help="Use pacman")
    ] = False,
    aur: Annotated[
        bool, Parameter(name=["--aur", "-a"], negative="", help="Use the AUR")
    ] = False,
    flatpak: Annotated[
        bool, Parameter(name=["--flatpak", "-f"], negative="", help="Use flatpak")
    ] = False,
    snap: Annotated[
        bool, Parameter(name=["--snap", "-s"], negative="", help="Use snap")
    ] = False,
    cargo: Annotated[
        bool, Parameter(name=["--cargo", "-c"], negative="", help="Use cargo")
    ] = False,
    no_interactive: Annotated[
        bool,
        Parameter(
            name=["--no-interactive", "-n"],
            negative="",
            help="No live progress; plain tab-separated output",
        ),
    ] = False,
    config_path: Annotated[
        Optional[str],
        Parameter(
            name="--config",
            help="Path to YAML config file (default: ~/.config/unipac/config.yaml)",
        ),
    ] = None,
    verbose: Annotated[
        bool, Parameter(name=["--verbose", "-v"], negative="", help="Debug logging")
    ] = False,
):
    try:
        config = build_config(
            pacman, aur, flatpak, snap, cargo, no_interactive, config_path, verbose
        )
    except ConfigError as e:
        err_console.print(f"[red]Error:[/] {e}")
        raise SystemExit(1)

    setup_logging(config.log_level)
    logger.debug("Enabled backends: %s", ", ".join(b.display_name for b in config.enabled))

    command, bound, ignored = app.parse_args(tokens)
    extra = {"config": config} if "config" in ignored else {}
    return command(*bound.args, **bound.kwargs, **extra)


# =============================================================================
# Commands
# =============================================================================


@app.command(name="list")
def list_packages(
    *,
    updates: Annotated[
        bool,
        Parameter(name=["--updates", "-u"], negative="", help="Only packages with pending updates"),
    ] = False,
    config: Annotated[Config, Parameter(parse=False)],
):
    """
    List installed packages.

    [dim]Examples:[/]
      unipac list
      unipac -p -a list --updates
    """
    commands = Commands(config, console=console, err_console=err_console)
    if updates:
        asyncio.run(commands.list_updates())
    else:
        asyncio.run(commands.list_packages())


@app.command
def search(
    query: Annotated[str, Parameter(help="Search terms")],
    *,
    config: Annotated[Config, Parameter(parse=False)],
):
    """
    Search every backend's catalog.

    [dim]Examples:[/]
      unipac search firefox
    """
    commands = Commands(config, console=console, err_console=err_console)
    asyncio.run(commands.search(query))


@app.command
def install(
    query: Annotated[str, Parameter(help="Package name")],
    *,
    config: Annotated[Config, Parameter(parse=False)],
):
    """
    Find a package by name and install it.

    Matching packages from every backend are listed; pick one by number.

    [dim]Examples:[/]
      unipac install ripgrep
      unipac -c install ripgrep
    """
    commands = Commands(config, console=console, err_console=err_console)
    asyncio.run(commands.install(query))


@app.command
def uninstall(
    query: Annotated[str, Parameter(help="Name of an installed package")],
    *,
    config: Annotated[Config, Parameter(parse=False)],
):
    """
    Uninstall an installed package.

    The first backend (in pacman, AUR, flatpak, snap, cargo order) that has
    the package installed is used.
    """
    commands = Commands(config, console=console, err_console=err_console)
    asyncio.run(commands.uninstall(query))


@app.command
def update(
    query: Annotated[Optional[str], Parameter(help="Ignored")] = None,
    *,
    list_only: Annotated[
        bool, Parameter(name=["--list", "-l"], negative="", help="Only list pending updates")
    ] = False,
    count: Annotated[
        bool, Parameter(name=["--count", "-c"], negative="", help="Only count pending updates")
    ] = False,
    config: Annotated[Config, Parameter(parse=False)],
):
    """
    Update every package with a pending update.

    [dim]Examples:[/]
      unipac update
      unipac update --list
      unipac -n update --count
    """
    commands = Commands(config, console=console, err_console=err_console)
    if count:
        asyncio.run(commands.count_updates())
    elif list_only:
        asyncio.run(commands.list_updates())
    else:
        asyncio.run(commands.update(query))


def main(tokens: Optional[Sequence[str]] = None):
    """Entry point for the CLI"""
    app.meta(tokens)


if __name__ == "__main__":
    main()
