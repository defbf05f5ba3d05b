"""
Package-manager backends.

Every backend implements the same asynchronous contract (:class:`Manager`)
and returns its own package type. Backends shell out to the native tools
and query HTTP registries; none of them blocks the event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import fnmatch
import json
import logging
import os
import re
import shutil
import tarfile
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import AsyncIterator, Optional
from urllib.parse import quote

import requests
from packaging.version import InvalidVersion, Version

from unipac.config import Config
from unipac.errors import (
    AurError,
    CargoError,
    FlatpakError,
    ManagerError,
    PacmanError,
    SnapError,
)
from unipac.models import (
    AurPackage,
    Backend,
    CargoPackage,
    FlatpakPackage,
    PackageRepository,
    PacmanPackage,
    ProgressEvent,
    SnapPackage,
)
from unipac.progress import ProgressSender

logger = logging.getLogger(__name__)

PACMAN_LOCAL_DB = "/var/lib/pacman/local"
AUR_RPC_URL = "https://aur.archlinux.org/rpc/v5"
AUR_SNAPSHOT_URL = "https://aur.archlinux.org/cgit/aur.git/snapshot/{name}.tar.gz"
CRATES_API_URL = "https://crates.io/api/v1/crates"
CRATES_INDEX_URL = "https://index.crates.io/"
HTTP_TIMEOUT = 30


# =============================================================================
# Capability Contract
# =============================================================================


class Manager(ABC):
    """Abstract base class for package-manager backends.

    An instance is owned by exactly one job: the orchestrator builds a fresh
    one for every operation, so instance state (caches, HTTP sessions) is
    never shared between concurrent jobs.
    """

    backend: Backend
    error: type[ManagerError] = ManagerError

    def __init__(self, config: Config, progress: Optional[ProgressSender] = None):
        self.config = config
        self.progress = progress

    @abstractmethod
    async def list(self) -> list:
        """All installed packages owned by this backend"""

    @abstractmethod
    async def find(self, name: str) -> Optional[object]:
        """Exact lookup of an installed package; None when absent"""

    @abstractmethod
    async def search(self, query: str) -> list:
        """Search the backend's catalog"""

    @abstractmethod
    async def search_install(self, query: str) -> list:
        """Narrow search used to pick a package to install"""

    @abstractmethod
    async def install(self, package) -> None:
        pass

    @abstractmethod
    async def uninstall(self, package) -> None:
        pass

    @abstractmethod
    async def list_updates(self) -> list:
        """Installed packages with a newer version available"""

    async def count_updates(self) -> int:
        return len(await self.list_updates())

    @abstractmethod
    async def update(self) -> None:
        """Upgrade everything pending; reports a terminal 100% on success"""

    async def _report(self, event: ProgressEvent) -> None:
        if self.progress is not None:
            await self.progress.send(event)

    async def _spawn(self, cmd: tuple, **kwargs) -> asyncio.subprocess.Process:
        logger.debug("%s: running %s", self.backend.display_name, " ".join(cmd))
        env = dict(os.environ, LC_ALL="C")
        try:
            return await asyncio.create_subprocess_exec(*cmd, env=env, **kwargs)
        except FileNotFoundError as e:
            raise self.error(f'Command "{cmd[0]}": not found') from e
        except OSError as e:
            raise self.error(f'Command "{cmd[0]}": {e}') from e

    async def _run_command(self, *cmd: str, check: bool = True, **kwargs) -> str:
        """Run a command to completion and return its stdout"""
        proc = await self._spawn(
            cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            **kwargs,
        )
        stdout, stderr = await proc.communicate()
        if check and proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip().splitlines()
            reason = detail[-1] if detail else f"exited with status {proc.returncode}"
            raise self.error(f'Command "{cmd[0]}": {reason}')
        return stdout.decode(errors="replace")

    async def _stream_command(self, *cmd: str) -> AsyncIterator[str]:
        """Yield stdout lines of a running command, then check its status"""
        proc = await self._spawn(
            cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        assert proc.stdout is not None
        try:
            async for raw in proc.stdout:
                yield raw.decode(errors="replace").rstrip("\n")
            returncode = await proc.wait()
        finally:
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
        if returncode != 0:
            raise self.error(f'Command "{cmd[0]}": exited with status {returncode}')


class HttpMixin:
    """Blocking HTTP calls, run in a worker thread"""

    config: Config
    error: type[ManagerError]

    def _session(self) -> requests.Session:
        session = getattr(self, "_http", None)
        if session is None:
            session = requests.Session()
            session.headers["User-Agent"] = self.config.user_agent
            self._http = session
        return session

    def _get(self, url: str, params: Optional[dict] = None) -> requests.Response:
        try:
            response = self._session().get(url, params=params, timeout=HTTP_TIMEOUT)
        except requests.RequestException as e:
            raise self.error(f"Failed to send request: {e}") from e
        if not response.ok:
            raise self.error(f"Request to {url} failed with status {response.status_code}")
        return response

    async def _get_json(self, url: str, params: Optional[dict] = None):
        response = await asyncio.to_thread(self._get, url, params)
        try:
            return response.json()
        except ValueError as e:
            raise self.error("Failed to parse response") from e

    async def _get_text(self, url: str) -> str:
        response = await asyncio.to_thread(self._get, url)
        return response.text


# =============================================================================
# Pacman helpers
# =============================================================================


def _parse_info_blocks(output: str) -> list[dict[str, str]]:
    """Parse ``pacman -Si``/``-Qi`` output into one dict per package"""
    blocks: list[dict[str, str]] = []
    current: dict[str, str] = {}
    last_key = None
    for line in output.splitlines():
        if not line.strip():
            if current:
                blocks.append(current)
            current, last_key = {}, None
            continue
        if line.startswith(" ") and last_key:
            # Continuation of a wrapped value
            current[last_key] += " " + line.strip()
            continue
        key, sep, value = line.partition(":")
        if sep:
            last_key = key.strip()
            current[last_key] = value.strip()
    if current:
        blocks.append(current)
    return blocks


def _package_from_info(info: dict[str, str]) -> PacmanPackage:
    description = info.get("Description")
    url = info.get("URL")
    return PacmanPackage(
        name=info["Name"],
        version=info.get("Version", "unknown"),
        database=info.get("Repository", "unknown"),
        description=description if description and description != "None" else None,
        url=url if url and url != "None" else None,
    )


def _parse_sync_list(output: str) -> list[tuple[str, str, str, Optional[str]]]:
    """Parse ``pacman -Sl`` lines into (repo, name, version, installed_version)"""
    entries = []
    for line in output.splitlines():
        parts = line.split(None, 3)
        if len(parts) < 3:
            continue
        repo, name, version = parts[0], parts[1], parts[2]
        installed = None
        if len(parts) == 4 and parts[3].startswith("[installed"):
            marker = parts[3].strip("[]")
            _, _, local = marker.partition(":")
            installed = local.strip() or version
        entries.append((repo, name, version, installed))
    return entries


def _parse_search(output: str) -> list[PacmanPackage]:
    """Parse ``pacman -Ss`` output (header line + indented description)"""
    packages: list[PacmanPackage] = []
    for line in output.splitlines():
        if line.startswith((" ", "\t")):
            if packages and packages[-1].description is None:
                packages[-1].description = line.strip()
            continue
        parts = line.split()
        if len(parts) < 2 or "/" not in parts[0]:
            continue
        database, name = parts[0].split("/", 1)
        packages.append(PacmanPackage(name=name, version=parts[1], database=database))
    return packages


def _parse_upgradable(output: str) -> list[tuple[str, str]]:
    """Parse ``pacman -Qu`` lines ("name old -> new") into (name, new)"""
    updates = []
    for line in output.splitlines():
        if line.rstrip().endswith("[ignored]"):
            continue
        parts = line.split()
        if len(parts) >= 4 and parts[2] == "->":
            updates.append((parts[0], parts[3]))
        elif len(parts) == 1:
            updates.append((parts[0], "unknown"))
    return updates


class _AlpmMixin:
    """Helpers shared by the backends that sit on top of the pacman database"""

    async def _ignored_patterns(self) -> list[str]:
        output = await self._run_command("pacman-conf", "IgnorePkg", check=False)
        return [line.strip() for line in output.splitlines() if line.strip()]

    async def _synced_upgradable(self, foreign: bool) -> tuple[list[tuple[str, str]], dict[str, str]]:
        """List upgrades against freshly synced databases without touching the real ones.

        Returns the (name, new_version) pairs and a name -> repository map.
        """
        with tempfile.TemporaryDirectory(prefix="unipac-") as tmp:
            os.symlink(PACMAN_LOCAL_DB, os.path.join(tmp, "local"))
            await self._run_command(
                "fakeroot", "--", "pacman", "-Sy",
                "--dbpath", tmp, "--logfile", "/dev/null", "--noconfirm",
            )
            flag = "-Qum" if foreign else "-Qun"
            # pacman -Qu exits with 1 when nothing is upgradable
            output = await self._run_command("pacman", flag, "--dbpath", tmp, check=False)
            repos: dict[str, str] = {}
            if not foreign:
                listing = await self._run_command("pacman", "-Sl", "--dbpath", tmp, check=False)
                repos = {name: repo for repo, name, _, _ in _parse_sync_list(listing)}
        ignored = await self._ignored_patterns()
        updates = [
            (name, version)
            for name, version in _parse_upgradable(output)
            if not any(fnmatch.fnmatch(name, pattern) for pattern in ignored)
        ]
        return updates, repos


# =============================================================================
# Pacman
# =============================================================================


class Pacman(_AlpmMixin, Manager):
    """Packages from the system sync databases"""

    backend = Backend.PACMAN
    error = PacmanError

    async def list(self) -> list[PacmanPackage]:
        output = await self._run_command("pacman", "-Sl")
        return [
            PacmanPackage(name=name, version=installed, database=repo)
            for repo, name, _, installed in _parse_sync_list(output)
            if installed is not None
        ]

    async def find(self, name: str) -> Optional[PacmanPackage]:
        local = await self._run_command("pacman", "-Q", name, check=False)
        parts = local.split()
        if len(parts) < 2 or parts[0] != name:
            return None
        info = await self._run_command("pacman", "-Si", name, check=False)
        blocks = _parse_info_blocks(info)
        if not blocks:
            # Installed but not in any sync database: belongs to the AUR backend
            return None
        package = _package_from_info(blocks[0])
        package.version = parts[1]
        return package

    async def search(self, query: str) -> list[PacmanPackage]:
        # pacman -Ss exits with 1 when nothing matches
        output = await self._run_command("pacman", "-Ss", query, check=False)
        return _parse_search(output)

    async def search_install(self, query: str) -> list[PacmanPackage]:
        packages: list[PacmanPackage] = []
        for suffix in ("", "-git", "-bin"):
            name = f"{query}{suffix}"
            if any(p.name == name for p in packages):
                continue
            output = await self._run_command("pacman", "-Si", name, check=False)
            blocks = _parse_info_blocks(output)
            if blocks:
                packages.append(_package_from_info(blocks[0]))
        return packages

    async def install(self, package: PacmanPackage) -> None:
        await self._run_command("pacman", "--noconfirm", "-S", package.name)

    async def uninstall(self, package: PacmanPackage) -> None:
        await self._run_command("pacman", "--noconfirm", "-R", package.name)

    async def list_updates(self) -> list[PacmanPackage]:
        updates, repos = await self._synced_upgradable(foreign=False)
        return [
            PacmanPackage(name=name, version=version, database=repos.get(name, "unknown"))
            for name, version in updates
        ]

    async def update(self) -> None:
        count = 0
        upgraded = 0
        lines = self._stream_command("pacman", "--noconfirm", "-Syu")
        async with contextlib.aclosing(lines):
            async for line in lines:
                announced = re.match(r"^Packages \((\d+)\)", line.strip())
                if announced:
                    count = int(announced.group(1))
                    continue
                upgrading = re.search(r"\bupgrading (\S+)", line)
                if upgrading and count > 0:
                    await self._report(f"{upgraded * 100 // count}% {upgrading.group(1)}")
                    upgraded += 1
        if upgraded < count:
            raise PacmanError(f"Upgraded {upgraded} of {count} packages")
        await self._report("100%")


# =============================================================================
# AUR
# =============================================================================


def aur_cache_dir(config: Config) -> Path:
    return config.cache_dir / "aur"


def pkgbuild_path(config: Config, name: str) -> Path:
    return aur_cache_dir(config) / name / "PKGBUILD"


def download_aur_snapshot(config: Config, name: str) -> Path:
    """Download and extract the build files of an AUR package.

    Blocking; returns the extracted directory.
    """
    target = aur_cache_dir(config)
    target.mkdir(parents=True, exist_ok=True)
    url = AUR_SNAPSHOT_URL.format(name=quote(name))
    logger.debug("AUR: downloading %s", url)
    with tempfile.TemporaryFile() as archive:
        with requests.get(
            url, headers={"User-Agent": config.user_agent}, timeout=HTTP_TIMEOUT, stream=True
        ) as response:
            response.raise_for_status()
            for chunk in response.iter_content(chunk_size=64 * 1024):
                archive.write(chunk)
        archive.seek(0)
        with tarfile.open(fileobj=archive, mode="r:gz") as tar:
            root = target.resolve()
            for member in tar.getmembers():
                if not (root / member.name).resolve().is_relative_to(root):
                    raise AurError(f"Refusing to extract {member.name} outside the cache")
                if member.issym() or member.islnk():
                    raise AurError(f"Refusing to extract link {member.name}")
            try:
                tar.extractall(target, filter="data")
            except tarfile.FilterError as e:
                raise AurError(f"Refusing to extract {name}: {e}") from e
    return target / name


def _aur_package(result: dict) -> AurPackage:
    return AurPackage(
        name=result["Name"],
        version=result["Version"],
        description=result.get("Description"),
    )


class Aur(_AlpmMixin, HttpMixin, Manager):
    """Packages built from the Arch User Repository"""

    backend = Backend.AUR
    error = AurError

    async def _rpc(self, path: str, params: Optional[dict] = None) -> list[dict]:
        payload = await self._get_json(f"{AUR_RPC_URL}/{path}", params)
        if payload.get("type") == "error":
            raise AurError(payload.get("error") or "Unknown error")
        return payload.get("results", [])

    async def list(self) -> list[AurPackage]:
        # pacman -Qm exits with 1 when there are no foreign packages
        output = await self._run_command("pacman", "-Qm", check=False)
        packages = []
        for line in output.splitlines():
            parts = line.split()
            if len(parts) >= 2:
                packages.append(AurPackage(name=parts[0], version=parts[1]))
        return packages

    async def find(self, name: str) -> Optional[AurPackage]:
        return next((p for p in await self.list() if p.name == name), None)

    async def search(self, query: str) -> list[AurPackage]:
        results = await self._rpc(f"search/{quote(query)}", {"by": "name-desc"})
        return [_aur_package(r) for r in results]

    async def search_install(self, query: str) -> list[AurPackage]:
        results = await self._rpc(f"search/{quote(query)}", {"by": "name"})
        wanted = {query, f"{query}-bin", f"{query}-git"}
        return [_aur_package(r) for r in results if r["Name"] in wanted]

    async def _info(self, names: list[str]) -> list[dict]:
        if not names:
            return []
        return await self._rpc("info", {"arg[]": names})

    def _build_user(self) -> Optional[int]:
        # makepkg refuses to run as root
        if os.geteuid() != 0:
            return None
        return int(os.environ.get("SUDO_UID", "1000"))

    async def install(self, package: AurPackage) -> None:
        info = await self._info([package.name])
        if not info:
            raise AurError(f"{package.name} is not in the AUR")
        version = info[0]["Version"]

        path = aur_cache_dir(self.config) / package.name
        if not (path / "PKGBUILD").is_file():
            try:
                await asyncio.to_thread(download_aur_snapshot, self.config, package.name)
            except (requests.RequestException, tarfile.TarError, OSError) as e:
                raise AurError(f"Failed to download {package.name}: {e}") from e

        user = self._build_user()
        if user is not None:
            for entry in [path, *path.rglob("*")]:
                os.chown(entry, user, -1)
        await self._run_command(
            "makepkg", "--noconfirm", "--force", cwd=str(path),
            **({"user": user} if user is not None else {}),
        )

        built = sorted(
            p for p in path.glob(f"{package.name}-{version}-*.pkg.tar.*")
            if not p.name.endswith(".sig")
        )
        if not built:
            raise AurError(f"makepkg produced no package for {package.name}-{version}")
        await self._run_command("pacman", "--noconfirm", "-U", str(built[-1]))

    async def uninstall(self, package: AurPackage) -> None:
        await self._run_command("pacman", "--noconfirm", "-R", package.name)
        path = aur_cache_dir(self.config) / package.name
        try:
            if path.exists():
                shutil.rmtree(path)
        except OSError as e:
            logger.warning("Failed to remove package cache directory %s: %s", path, e)

    async def _is_newer(self, local: str, remote: str) -> bool:
        if local == remote:
            return False
        output = await self._run_command("vercmp", local, remote)
        return output.strip() == "-1"

    async def list_updates(self) -> list[AurPackage]:
        installed = {p.name: p for p in await self.list()}
        if not installed:
            return []
        ignored = await self._ignored_patterns()
        remote = await self._info(sorted(installed))
        candidates = [
            r for r in remote
            if not any(fnmatch.fnmatch(r["Name"], pattern) for pattern in ignored)
        ]
        newer = await asyncio.gather(
            *(self._is_newer(installed[r["Name"]].version, r["Version"]) for r in candidates)
        )
        return [_aur_package(r) for r, is_newer in zip(candidates, newer) if is_newer]

    async def update(self) -> None:
        updates = await self.list_updates()
        await self._report(0)
        for i, package in enumerate(updates):
            await self.install(package)
            await self._report((i + 1) * 100 // len(updates))
        await self._report(100)


# =============================================================================
# Flatpak
# =============================================================================

FLATPAK_COLUMNS = "--columns=name,application,version,branch,description"


def _parse_flatpak(output: str) -> list[FlatpakPackage]:
    """Parse tab-separated flatpak output (name, id, version, branch, description)"""
    packages = []
    for line in output.splitlines():
        if "\t" not in line:
            continue
        parts = line.split("\t")
        if len(parts) < 4:
            raise FlatpakError(f"Format error: {line!r}")
        parts += [""] * (5 - len(parts))
        name, app_id, version, branch, description = parts[:5]
        packages.append(
            FlatpakPackage(
                id=app_id, name=name, version=version, branch=branch, description=description
            )
        )
    return packages


class Flatpak(Manager):
    """Sandboxed applications from flatpak remotes"""

    backend = Backend.FLATPAK
    error = FlatpakError

    def __init__(self, config: Config, progress: Optional[ProgressSender] = None):
        super().__init__(config, progress)
        # Set by list_updates, consumed by update
        self._update_cache: Optional[list[FlatpakPackage]] = None

    async def list(self) -> list[FlatpakPackage]:
        output = await self._run_command("flatpak", "list", "--app", FLATPAK_COLUMNS)
        return _parse_flatpak(output)

    async def find(self, name: str) -> Optional[FlatpakPackage]:
        name = name.lower()
        return next(
            (p for p in await self.list() if p.name.lower() == name or name in p.id.lower()),
            None,
        )

    async def search(self, query: str) -> list[FlatpakPackage]:
        output = await self._run_command("flatpak", "search", FLATPAK_COLUMNS, query)
        return _parse_flatpak(output)

    async def search_install(self, query: str) -> list[FlatpakPackage]:
        query = query.lower()
        return [p for p in await self.search(query) if query in p.name.lower()]

    async def install(self, package: FlatpakPackage) -> None:
        await self._run_command("flatpak", "install", "--noninteractive", "--user", package.id)

    async def uninstall(self, package: FlatpakPackage) -> None:
        await self._run_command("flatpak", "uninstall", "--noninteractive", package.id)

    async def list_updates(self) -> list[FlatpakPackage]:
        self._update_cache = None
        output = await self._run_command(
            "flatpak", "remote-ls", "--updates", FLATPAK_COLUMNS
        )
        packages = _parse_flatpak(output)
        self._update_cache = list(packages)
        return packages

    async def update(self) -> None:
        pending = self._update_cache
        self._update_cache = None
        if pending is None:
            pending = await self.list_updates()
            self._update_cache = None
        done = 0
        lines = self._stream_command("flatpak", "update", "--noninteractive")
        async with contextlib.aclosing(lines):
            async for line in lines:
                if not line.startswith("Updating ") or not pending:
                    continue
                if not any(p.name in line or p.id in line for p in pending):
                    continue
                parts = line.split(" ")
                if len(parts) > 1:
                    await self._report(f"{done * 100 // len(pending)}% {parts[1]}")
                done += 1
        await self._report("100%")


# =============================================================================
# Snap
# =============================================================================


def _clean_publisher(publisher: str) -> str:
    # Verified publishers carry a check mark or asterisk suffix
    return publisher.rstrip("✓*")


def _parse_snap_list(output: str) -> list[SnapPackage]:
    """Parse ``snap list`` (Name Version Rev Tracking Publisher Notes)"""
    packages = []
    for line in output.splitlines()[1:]:
        parts = line.split()
        if len(parts) < 2:
            continue
        publisher = _clean_publisher(parts[4]) if len(parts) > 4 else ""
        packages.append(SnapPackage(name=parts[0], version=parts[1], publisher=publisher))
    return packages


def _parse_snap_find(output: str) -> list[SnapPackage]:
    """Parse ``snap find`` (Name Version Publisher Notes Summary)"""
    packages = []
    for line in output.splitlines()[1:]:
        parts = line.split(None, 4)
        if len(parts) < 2:
            continue
        packages.append(
            SnapPackage(
                name=parts[0],
                version=parts[1],
                publisher=_clean_publisher(parts[2]) if len(parts) > 2 else "",
                description=parts[4] if len(parts) > 4 else "",
            )
        )
    return packages


def _parse_snap_refresh(output: str) -> list[SnapPackage]:
    """Parse ``snap refresh --list`` (Name Version Rev Size Publisher Notes)"""
    packages = []
    lines = output.splitlines()
    if not lines or not lines[0].startswith("Name"):
        return packages
    for line in lines[1:]:
        parts = line.split()
        if len(parts) < 2:
            continue
        publisher = _clean_publisher(parts[4]) if len(parts) > 4 else ""
        packages.append(SnapPackage(name=parts[0], version=parts[1], publisher=publisher))
    return packages


class Snap(Manager):
    """Universal packages from the snap store"""

    backend = Backend.SNAP
    error = SnapError

    async def list(self) -> list[SnapPackage]:
        output = await self._run_command("snap", "list")
        return _parse_snap_list(output)

    async def find(self, name: str) -> Optional[SnapPackage]:
        name = name.lower()
        return next((p for p in await self.list() if p.name.lower() == name), None)

    async def search(self, query: str) -> list[SnapPackage]:
        # snap find exits non-zero when nothing matches
        output = await self._run_command("snap", "find", query, check=False)
        return _parse_snap_find(output)

    async def search_install(self, query: str) -> list[SnapPackage]:
        return [p for p in await self.search(query) if p.name == query][:1]

    async def install(self, package: SnapPackage) -> None:
        await self._run_command("snap", "install", package.name)

    async def uninstall(self, package: SnapPackage) -> None:
        await self._run_command("snap", "remove", package.name)

    async def list_updates(self) -> list[SnapPackage]:
        output = await self._run_command("snap", "refresh", "--list")
        return _parse_snap_refresh(output)

    async def update(self) -> None:
        await self._run_command("snap", "refresh")
        await self._report("100%")


# =============================================================================
# Cargo
# =============================================================================


def crate_index_path(name: str) -> str:
    """Relative path of a crate in the sparse index"""
    name = name.lower()
    if len(name) <= 2:
        return f"{len(name)}/{name}"
    if len(name) == 3:
        return f"3/{name[0]}/{name}"
    return f"{name[0:2]}/{name[2:4]}/{name}"


def _parse_version(value: str) -> Optional[Version]:
    try:
        return Version(value)
    except InvalidVersion:
        return None


def latest_index_version(index: str, current: str) -> Optional[str]:
    """Newest non-yanked version listed in a sparse index file.

    Pre-releases are only considered when the installed version is one.
    """
    current_version = _parse_version(current)
    if current_version is None:
        return None
    best: Optional[tuple[Version, str]] = None
    for line in index.splitlines():
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except ValueError:
            continue
        if entry.get("yanked"):
            continue
        version = _parse_version(entry.get("vers", ""))
        if version is None:
            continue
        if version.is_prerelease and not current_version.is_prerelease:
            continue
        if best is None or version > best[0]:
            best = (version, entry["vers"])
    if best is None or best[0] <= current_version:
        return None
    return best[1]


def remote_commit(output: str, ref: str) -> Optional[str]:
    """Commit of ``ref`` in ``git ls-remote`` output, peeling annotated tags"""
    commits = {}
    for line in output.splitlines():
        parts = line.split()
        if len(parts) == 2:
            commits[parts[1]] = parts[0]
    return commits.get(f"{ref}^{{}}") or commits.get(ref)


def _parse_install_key(key: str, data: dict) -> CargoPackage:
    """Parse a ``.crates2.json`` key ("name version (source)")"""
    parts = key.split(" ", 2)
    if len(parts) < 3:
        raise CargoError(f"Failed to parse installed package: {key!r}")
    name, version, source = parts
    try:
        repository: Optional[PackageRepository] = PackageRepository.parse(source.strip("()"))
    except ValueError:
        repository = None
    return CargoPackage(
        name=name, version=version, repository=repository, bins=list(data.get("bins", []))
    )


class Cargo(HttpMixin, Manager):
    """Binaries installed with ``cargo install``"""

    backend = Backend.CARGO
    error = CargoError

    def __init__(self, config: Config, progress: Optional[ProgressSender] = None):
        super().__init__(config, progress)
        # Set by list_updates, consumed by update
        self._update_cache: Optional[list[CargoPackage]] = None

    def _installs(self) -> list[CargoPackage]:
        cargo_home = Path(os.environ.get("CARGO_HOME", Path.home() / ".cargo"))
        path = cargo_home / ".crates2.json"
        try:
            with open(path) as f:
                data = json.load(f)
        except OSError as e:
            raise CargoError(f"Failed to open {path}: {e}") from e
        except ValueError as e:
            raise CargoError(f"Failed to parse {path}") from e
        return [_parse_install_key(k, v) for k, v in data.get("installs", {}).items()]

    async def list(self) -> list[CargoPackage]:
        return self._installs()

    async def find(self, name: str) -> Optional[CargoPackage]:
        return next((p for p in self._installs() if p.name == name), None)

    async def _crates(self, query: str) -> list[dict]:
        payload = await self._get_json(CRATES_API_URL, {"q": query})
        return payload.get("crates", [])

    @staticmethod
    def _from_crate(crate: dict) -> CargoPackage:
        return CargoPackage(
            name=crate["name"],
            version=crate.get("max_stable_version") or crate.get("max_version", ""),
            url=crate.get("repository"),
        )

    async def search(self, query: str) -> list[CargoPackage]:
        return [self._from_crate(c) for c in await self._crates(query)]

    async def search_install(self, query: str) -> list[CargoPackage]:
        return [self._from_crate(c) for c in await self._crates(query) if c.get("exact_match")]

    async def install(self, package: CargoPackage) -> None:
        repository = package.repository
        if repository is not None and repository.kind == "git":
            source = ["--git", repository.url]
            if repository.reference is not None:
                kind, ref = repository.reference
                source += [f"--{kind}", ref]
            await self._run_command("cargo", "install", *source, "--force", package.name)
            return
        await self._run_command("cargo", "install", package.name, "--version", package.version)

    async def uninstall(self, package: CargoPackage) -> None:
        await self._run_command("cargo", "uninstall", package.name)

    async def _check(self, package: CargoPackage) -> Optional[CargoPackage]:
        """Return the upgraded package, or None when up to date or unknown"""
        repository = package.repository
        try:
            if repository.kind == "registry":
                index = await self._get_text(CRATES_INDEX_URL + crate_index_path(package.name))
                latest = latest_index_version(index, package.version)
                if latest is None:
                    return None
                return CargoPackage(
                    name=package.name, version=latest, repository=repository, bins=package.bins
                )
            if repository.kind == "git":
                ref = repository.remote_ref
                if ref is None:
                    return None
                output = await self._run_command("git", "ls-remote", repository.url, ref)
                head = remote_commit(output, ref)
                if head is None or head == repository.commit:
                    return None
                return dataclasses.replace(
                    package, repository=dataclasses.replace(repository, commit=head)
                )
        except CargoError as e:
            logger.warning("Cargo: could not check %s for updates: %s", package.name, e)
        return None

    async def list_updates(self) -> list[CargoPackage]:
        self._update_cache = None
        installed = [p for p in self._installs() if p.repository is not None]
        checked = await asyncio.gather(*(self._check(p) for p in installed))
        packages = [p for p in checked if p is not None]
        self._update_cache = list(packages)
        return packages

    async def update(self) -> None:
        packages = self._update_cache
        self._update_cache = None
        if packages is None:
            packages = await self.list_updates()
            self._update_cache = None
        for i, package in enumerate(packages):
            await self._report(i * 100 // len(packages))
            await self.install(package)
        await self._report(100)


# =============================================================================
# Registry
# =============================================================================

MANAGERS: dict[Backend, type[Manager]] = {
    Backend.PACMAN: Pacman,
    Backend.AUR: Aur,
    Backend.FLATPAK: Flatpak,
    Backend.SNAP: Snap,
    Backend.CARGO: Cargo,
}

# Order in which results are aggregated, printed and indexed
MANAGER_ORDER: list[Backend] = [b for b in Backend if b in MANAGERS]


def create_manager(
    backend: Backend, config: Config, progress: Optional[ProgressSender] = None
) -> Manager:
    """Build a fresh backend instance for one job"""
    try:
        manager_class = MANAGERS[backend]
    except KeyError:
        raise ManagerError(f"No manager registered for {backend.display_name}") from None
    return manager_class(config, progress)
