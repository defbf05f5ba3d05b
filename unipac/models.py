"""
Data types shared by the backends, the orchestrator and the CLI.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union
from urllib.parse import parse_qsl


class Backend(Enum):
    """Package-management backends, in display order"""

    PACMAN = ("pacman", "Pacman", "blue")
    AUR = ("aur", "AUR", "red")
    FLATPAK = ("flatpak", "Flatpak", "green")
    SNAP = ("snap", "Snap", "yellow")
    CARGO = ("cargo", "Cargo", "bright_red")

    def __init__(self, flag: str, display_name: str, color: str):
        self.flag = flag
        self.display_name = display_name
        self.color = color

    @classmethod
    def from_flag(cls, flag: str) -> "Backend":
        for backend in cls:
            if backend.flag == flag:
                return backend
        valid = ", ".join(b.flag for b in cls)
        raise ValueError(f"Unknown backend '{flag}' (valid: {valid})")

    def __str__(self) -> str:
        return self.display_name


# A progress event is either a percentage (0-100) or free-form status text
ProgressEvent = Union[int, str]


@dataclass
class PacmanPackage:
    """A package from the system sync databases"""

    name: str
    version: str
    database: str = "unknown"
    description: Optional[str] = None
    url: Optional[str] = None


@dataclass
class AurPackage:
    """A package from the Arch User Repository"""

    name: str
    version: str
    description: Optional[str] = None


@dataclass
class FlatpakPackage:
    """A flatpak application"""

    id: str
    name: str
    version: str
    branch: str = ""
    description: str = ""


@dataclass
class SnapPackage:
    """A snap"""

    name: str
    version: str
    publisher: str = ""
    description: str = ""


GIT_REFERENCES = ("branch", "tag", "rev")


@dataclass(frozen=True)
class PackageRepository:
    """Where a cargo package was installed from.

    Serialized by cargo as ``registry+<url>`` or
    ``git+<url>[?branch=|?tag=|?rev=<ref>]#<commit>``.
    """

    kind: str
    url: str
    commit: Optional[str] = None
    # Git reference the install tracks: ("branch" | "tag" | "rev", value)
    reference: Optional[tuple[str, str]] = None

    @classmethod
    def parse(cls, value: str) -> "PackageRepository":
        kind, sep, rest = value.partition("+")
        if not sep or not rest:
            raise ValueError(f"Failed to parse package repository: {value!r}")
        if kind == "git":
            location, sep, commit = rest.partition("#")
            if not sep or not commit:
                raise ValueError(f"Failed to parse package repository: {value!r}")
            url, _, query = location.partition("?")
            reference = None
            for key, ref in parse_qsl(query):
                if key in GIT_REFERENCES:
                    reference = (key, ref)
            return cls(kind="git", url=url, commit=commit, reference=reference)
        if kind == "registry":
            return cls(kind="registry", url=rest)
        raise ValueError(f"Failed to parse package repository: {value!r}")

    @property
    def remote_ref(self) -> Optional[str]:
        """Ref to compare against on the remote; None for a pinned revision"""
        if self.reference is None:
            return "HEAD"
        kind, ref = self.reference
        if kind == "branch":
            return f"refs/heads/{ref}"
        if kind == "tag":
            return f"refs/tags/{ref}"
        return None

    def __str__(self) -> str:
        if self.kind == "git":
            query = f"?{self.reference[0]}={self.reference[1]}" if self.reference else ""
            return f"git+{self.url}{query}#{self.commit}"
        return f"{self.kind}+{self.url}"


@dataclass
class CargoPackage:
    """A crate installed with (or installable by) ``cargo install``"""

    name: str
    version: str
    repository: Optional[PackageRepository] = None
    bins: list[str] = field(default_factory=list)
    # Source repository link reported by crates.io
    url: Optional[str] = None


AnyPackage = Union[PacmanPackage, AurPackage, FlatpakPackage, SnapPackage, CargoPackage]
