"""
Pre-operation hooks.

Called by the commands right before a mutating operation. A hook may
prompt, preview or abort the whole command; it returns normally to let the
operation proceed. Only the AUR backend does anything here: its packages
are built from user-submitted recipes, so the PKGBUILD is offered for
review first.
"""

import logging
import subprocess
import tarfile
from pathlib import Path
from typing import Any, Callable, Optional, Sequence

import requests
from rich.console import Console
from rich.prompt import Confirm

from unipac.config import Config
from unipac.errors import AurError
from unipac.managers import download_aur_snapshot, pkgbuild_path
from unipac.models import Backend

logger = logging.getLogger(__name__)


def ask(confirm: Callable[..., bool], question: str, default: bool) -> bool:
    """Ask a yes/no question; unreadable input aborts the command"""
    try:
        return bool(confirm(question, default=default))
    except (EOFError, KeyboardInterrupt):
        raise SystemExit(1)


class Hooks:
    """Hook points invoked around install, uninstall and update"""

    def __init__(
        self,
        config: Config,
        console: Optional[Console] = None,
        confirm: Callable[..., bool] = Confirm.ask,
        download: Callable[[Config, str], Path] = download_aur_snapshot,
        run: Callable[..., Any] = subprocess.run,
    ):
        self.config = config
        self.console = console or Console()
        self.confirm = confirm
        self.download = download
        self.run = run

    def pre_install(self, backend: Backend, package: Any) -> None:
        if backend is Backend.AUR:
            self._aur_pre_install(package)

    def pre_uninstall(self, backend: Backend, package: Any) -> None:
        pass

    def pre_update(self, backend: Backend, packages: Sequence[Any]) -> None:
        if backend is Backend.AUR and packages:
            self._aur_pre_update(packages)

    # -------------------------------------------------------------------------
    # AUR
    # -------------------------------------------------------------------------

    def _fetch(self, name: str) -> Path:
        try:
            self.download(self.config, name)
        except (requests.RequestException, tarfile.TarError, AurError, OSError) as e:
            self.console.print(f"[red]Error:[/] Failed to download {name}: {e}")
            raise SystemExit(1)
        return pkgbuild_path(self.config, name)

    def _open(self, program: str, path: Path) -> None:
        try:
            self.run([program, str(path)], check=True)
        except FileNotFoundError:
            self.console.print(f"[red]Error:[/] '{program}' not found")
            raise SystemExit(1)
        except subprocess.CalledProcessError as e:
            self.console.print(f"[red]Error:[/] {program} exited with code {e.returncode}")
            raise SystemExit(1)

    def _aur_pre_install(self, package: Any) -> None:
        path = self._fetch(package.name)
        if ask(self.confirm, f"Show/edit the PKGBUILD of {package.name}?", default=False):
            logger.debug("Opening %s with %s", path, self.config.editor)
            self._open(self.config.editor, path)
            if not ask(self.confirm, f"Install {package.name}?", default=True):
                raise SystemExit(0)

    def _aur_pre_update(self, packages: Sequence[Any]) -> None:
        paths = [(package.name, self._fetch(package.name)) for package in packages]
        for name, path in paths:
            if ask(self.confirm, f"Show the PKGBUILD of {name}?", default=False):
                self._open(self.config.pager, path)
