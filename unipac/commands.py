"""
Command flows.

Each command runs one fan-out through the :class:`Orchestrator`, reports
backend failures on stderr once every job has resolved, and prints
whatever succeeded. The mutating commands add a prompt, a pre-operation
hook and the operation itself.
"""

import logging
from typing import Any, Callable, Optional

from rich.console import Console
from rich.markup import escape
from rich.prompt import Confirm, IntPrompt

from unipac.config import Config
from unipac.hooks import Hooks, ask
from unipac.orchestrator import Counts, FanOut, Orchestrator, Package, resolve_selection
from unipac.render import print_failures, print_packages, print_rows

logger = logging.getLogger(__name__)


class Commands:
    """The user-facing commands, bound to one configuration"""

    def __init__(
        self,
        config: Config,
        orchestrator: Optional[Orchestrator] = None,
        hooks: Optional[Hooks] = None,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
        confirm: Callable[..., bool] = Confirm.ask,
        choose: Callable[..., int] = IntPrompt.ask,
    ):
        self.config = config
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)
        self.orchestrator = orchestrator or Orchestrator(config, console=self.console)
        self.hooks = hooks or Hooks(config, console=self.console, confirm=confirm)
        self.confirm = confirm
        self.choose = choose

    def _report(self, fan_out: FanOut) -> None:
        print_failures(fan_out.errors, self.err_console)

    def _print(self, fan_out: FanOut, numbered: bool = False) -> None:
        print_packages(
            fan_out.results, self.console, interactive=self.config.interactive, numbered=numbered
        )

    async def list_packages(self) -> FanOut:
        fan_out = await self.orchestrator.gather("list")
        self._report(fan_out)
        self._print(fan_out)
        return fan_out

    async def search(self, query: str) -> FanOut:
        fan_out = await self.orchestrator.gather("search", query)
        self._report(fan_out)
        if fan_out.results.total() == 0:
            self.console.print("No packages found.")
        else:
            self._print(fan_out)
        return fan_out

    async def list_updates(self) -> FanOut:
        fan_out = await self.orchestrator.gather("list_updates")
        self._report(fan_out)
        if fan_out.results.total() == 0:
            self.console.print("No updates available.")
        else:
            self._print(fan_out)
        return fan_out

    async def count_updates(self) -> int:
        fan_out = await self.orchestrator.gather("count_updates", aggregate=Counts)
        self._report(fan_out)
        total = fan_out.results.total()
        if self.config.interactive:
            noun = "update" if total == 1 else "updates"
            self.console.print(f"You have {total} {noun}.")
        else:
            self.console.print(str(total), highlight=False)
        return total

    def _select(self, count: int) -> int:
        """Ask for a 1-based option number; returns the 0-based index"""
        try:
            choice = self.choose(
                "Which package do you want to install?",
                choices=[str(i) for i in range(1, count + 1)],
                show_choices=False,
                default=1,
            )
        except (EOFError, KeyboardInterrupt):
            raise SystemExit(1)
        return int(choice) - 1

    async def install(self, query: str) -> Optional[tuple[Any, Any]]:
        fan_out = await self.orchestrator.gather("search_install", query)
        self._report(fan_out)
        packages = fan_out.results
        if packages.total() == 0:
            self.console.print("No packages found.")
            return None

        self._print(fan_out, numbered=True)
        selected = resolve_selection(packages, self._select(packages.total()))
        if selected is None:
            self.console.print("No packages found.")
            return None

        backend, package = selected
        logger.debug("Installing %s from %s", package.name, backend.display_name)
        self.hooks.pre_install(backend, package)
        try:
            await self.orchestrator.call(backend, "install", package)
        except Exception as e:
            self.err_console.print(f"Failed to install {escape(package.name)}: {escape(str(e))}")
            raise SystemExit(1)
        return selected

    async def uninstall(self, query: str) -> Optional[tuple[Any, Any]]:
        fan_out = await self.orchestrator.gather("find", query, aggregate=Package)
        self._report(fan_out)
        found = next(
            ((backend, package) for backend, package in fan_out.results.entries() if package is not None),
            None,
        )
        if found is None:
            self.console.print("No packages found.")
            return None

        backend, package = found
        print_rows([found], self.console, interactive=self.config.interactive)
        if not ask(self.confirm, "Do you want to uninstall this package?", default=True):
            raise SystemExit(0)
        self.hooks.pre_uninstall(backend, package)
        try:
            await self.orchestrator.call(backend, "uninstall", package)
        except Exception as e:
            self.err_console.print(f"Failed to uninstall {escape(package.name)}: {escape(str(e))}")
            raise SystemExit(1)
        return found

    async def update(self, query: Optional[str] = None) -> list:
        """Upgrade every backend that reported pending updates.

        ``query`` is accepted for symmetry with the other commands and ignored.
        """
        fan_out = await self.orchestrator.gather("list_updates")
        self._report(fan_out)
        packages = fan_out.results
        if packages.total() == 0:
            self.console.print("No updates available.")
            return []

        self._print(fan_out)
        pending = [backend for backend, slot in packages.entries() if slot]
        for backend in pending:
            self.hooks.pre_update(backend, packages[backend])

        if not ask(self.confirm, "Do you want to install these packages?", default=True):
            return []

        failures = await self.orchestrator.execute("update", backends=pending)
        print_failures(failures, self.err_console)
        return failures
