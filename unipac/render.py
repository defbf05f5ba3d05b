"""
Printing of aggregated results.

Interactive output is a borderless rich table with one backend-tagged row
per package. Script output is one tab-separated line per package, without
markup, so it can be piped into other tools.
"""

from typing import Any, Iterable, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from unipac.errors import BackendFailure
from unipac.models import (
    AurPackage,
    Backend,
    CargoPackage,
    FlatpakPackage,
    PacmanPackage,
    SnapPackage,
)
from unipac.orchestrator import Packages


def package_columns(package: Any) -> list[str]:
    """Backend-specific column values of a package"""
    if isinstance(package, PacmanPackage):
        return [package.database, package.name, package.version]
    if isinstance(package, AurPackage):
        return [package.name, package.version]
    if isinstance(package, FlatpakPackage):
        return [package.id, package.name, package.version, package.description]
    if isinstance(package, SnapPackage):
        return [package.name, package.version, package.publisher, package.description]
    if isinstance(package, CargoPackage):
        source = str(package.repository) if package.repository else package.url or ""
        return [package.name, package.version, source, ", ".join(package.bins)]
    return [str(package)]


def backend_tag(backend: Backend) -> str:
    return f"[{backend.color}]{backend.display_name}[/]"


def print_rows(
    rows: Iterable[tuple[Backend, Any]],
    console: Console,
    interactive: bool = True,
    numbered: bool = False,
) -> None:
    """Print backend-tagged package rows"""
    rows = list(rows)
    if not interactive:
        for i, (backend, package) in enumerate(rows, start=1):
            fields = [backend.display_name, *package_columns(package)]
            if numbered:
                fields.insert(0, str(i))
            # Bypass rich rendering, which would expand the tabs
            console.file.write("\t".join(fields) + "\n")
        return

    table = Table(show_header=False, box=None, padding=(0, 1))
    if numbered:
        table.add_column(justify="right", style="bold")
    table.add_column(no_wrap=True)
    width = max((len(package_columns(p)) for _, p in rows), default=0)
    for column in range(width):
        last = column == width - 1
        table.add_column(style="dim" if last and width > 3 else "", overflow="fold")

    for i, (backend, package) in enumerate(rows, start=1):
        values = [escape(v) for v in package_columns(package)]
        values += [""] * (width - len(values))
        cells = [backend_tag(backend), *values]
        if numbered:
            cells.insert(0, f"{i})")
        table.add_row(*cells)
    console.print(table)


def print_packages(
    packages: Packages,
    console: Console,
    interactive: bool = True,
    numbered: bool = False,
) -> None:
    """Print every package of an aggregate, grouped by backend"""
    print_rows(packages.flatten(), console, interactive=interactive, numbered=numbered)


def print_failures(failures: Iterable[BackendFailure], console: Optional[Console] = None) -> None:
    """Print one ``<Backend>: <message>`` line per failure on stderr"""
    console = console or Console(stderr=True)
    for failure in failures:
        console.print(
            f"[red]{escape(failure.backend.display_name)}:[/] {escape(failure.message)}",
            highlight=False,
        )
