"""
Fan-out/fan-in over the enabled backends.

Every operation spawns one job per enabled backend. Jobs are independent:
a failing or slow backend never cancels its siblings, and the orchestrator
only returns once all of them have resolved. Successful results land in an
aggregate container with one slot per enabled backend; failures are
returned alongside it, tagged with their backend.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterator, Optional, Sequence, TypeVar

from rich.console import Console

from unipac.config import Config
from unipac.display import Spinners
from unipac.errors import BackendFailure
from unipac.managers import MANAGER_ORDER, Manager, create_manager
from unipac.models import Backend
from unipac.progress import JobOutcome, ProgressChannel, ProgressSender

logger = logging.getLogger(__name__)

T = TypeVar("T")

ManagerFactory = Callable[[Backend, Config, Optional[ProgressSender]], Manager]


# =============================================================================
# Aggregate Containers
# =============================================================================


class Aggregate(ABC, Generic[T]):
    """Per-operation results, one slot per enabled backend.

    Slots are filled in whatever order jobs complete, but every read goes
    through the fixed backend order.
    """

    def __init__(self, enabled: Sequence[Backend]):
        self._slots: dict[Backend, T] = {
            backend: self.empty() for backend in MANAGER_ORDER if backend in enabled
        }

    @staticmethod
    @abstractmethod
    def empty() -> T:
        """Default value of a slot"""

    @staticmethod
    @abstractmethod
    def size(value: T) -> int:
        """Contribution of one slot to total()"""

    @classmethod
    def summary(cls, value: T) -> str:
        """Short text shown next to a finished backend in the live display"""
        return str(cls.size(value))

    @property
    def backends(self) -> list[Backend]:
        return list(self._slots)

    def __contains__(self, backend: Backend) -> bool:
        return backend in self._slots

    def __getitem__(self, backend: Backend) -> T:
        return self._slots[backend]

    def __setitem__(self, backend: Backend, value: T) -> None:
        if backend not in self._slots:
            raise KeyError(f"{backend.display_name} is not enabled")
        self._slots[backend] = value

    def entries(self) -> Iterator[tuple[Backend, T]]:
        """(backend, slot) pairs in backend order"""
        return iter(self._slots.items())

    def total(self) -> int:
        return sum(self.size(value) for _, value in self.entries())

    def __repr__(self) -> str:
        slots = ", ".join(f"{b.display_name}: {v!r}" for b, v in self.entries())
        return f"{type(self).__name__}({{{slots}}})"


class Packages(Aggregate[list]):
    """A list of packages per backend"""

    @staticmethod
    def empty() -> list:
        return []

    @staticmethod
    def size(value: list) -> int:
        return len(value)

    def flatten(self) -> list[tuple[Backend, Any]]:
        """All packages in display order, each tagged with its backend"""
        return [(backend, package) for backend, slot in self.entries() for package in slot]


class Package(Aggregate[Optional[Any]]):
    """At most one package per backend"""

    @staticmethod
    def empty() -> None:
        return None

    @staticmethod
    def size(value: Optional[Any]) -> int:
        return 0 if value is None else 1

    @classmethod
    def summary(cls, value: Optional[Any]) -> str:
        return ""


class Counts(Aggregate[int]):
    """A count per backend"""

    @staticmethod
    def empty() -> int:
        return 0

    @staticmethod
    def size(value: int) -> int:
        return value


# =============================================================================
# Selection Index
# =============================================================================


def resolve_selection(packages: Packages, index: int) -> Optional[tuple[Backend, Any]]:
    """Map an index into the flattened option list back to (backend, package).

    Returns None when the index is outside [0, total()).
    """
    if index < 0:
        return None
    offset = 0
    for backend, slot in packages.entries():
        if index - offset < len(slot):
            return backend, slot[index - offset]
        offset += len(slot)
    return None


# =============================================================================
# Orchestrator
# =============================================================================


@dataclass
class FanOut(Generic[T]):
    """Result of a fan-out: the aggregate plus failures in backend order"""

    results: T
    errors: list[BackendFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class Orchestrator:
    """Runs one operation on every enabled backend concurrently"""

    def __init__(
        self,
        config: Config,
        factory: ManagerFactory = create_manager,
        console: Optional[Console] = None,
    ):
        self.config = config
        self.factory = factory
        self.console = console

    async def gather(
        self,
        operation: str,
        *args: Any,
        aggregate: type[Aggregate] = Packages,
        backends: Optional[Sequence[Backend]] = None,
    ) -> FanOut:
        """Run ``operation`` on each backend and collect the results.

        Args:
            operation: Name of a :class:`~unipac.managers.Manager` method.
            *args: Arguments passed to that method.
            aggregate: Container class for the results.
            backends: Subset to run on (default: every enabled backend).
        """
        targets = self._targets(backends)
        results = aggregate(targets)
        outcomes = await self._fan_out(operation, args, targets, aggregate.summary)

        errors = []
        for backend in targets:
            ok, value = outcomes[backend]
            if ok:
                results[backend] = value
            else:
                errors.append(BackendFailure(backend, value))
        return FanOut(results=results, errors=errors)

    async def execute(
        self,
        operation: str,
        *args: Any,
        backends: Optional[Sequence[Backend]] = None,
    ) -> list[BackendFailure]:
        """Run a side-effecting operation on each backend; return the failures"""
        targets = self._targets(backends)
        outcomes = await self._fan_out(operation, args, targets, lambda _: "")
        return [
            BackendFailure(backend, outcomes[backend][1])
            for backend in targets
            if not outcomes[backend][0]
        ]

    async def call(self, backend: Backend, operation: str, *args: Any) -> Any:
        """Run an operation on a single backend, without progress display"""
        manager = self.factory(backend, self.config, None)
        return await getattr(manager, operation)(*args)

    def _targets(self, backends: Optional[Sequence[Backend]]) -> list[Backend]:
        wanted = self.config.enabled if backends is None else backends
        return [b for b in MANAGER_ORDER if b in wanted and b in self.config.enabled]

    async def _fan_out(
        self,
        operation: str,
        args: tuple,
        targets: list[Backend],
        summarize: Callable[[Any], str],
    ) -> dict[Backend, tuple[bool, Any]]:
        if not targets:
            return {}

        channels: dict[Backend, ProgressChannel] = {}
        if self.config.interactive:
            channels = {backend: ProgressChannel(backend) for backend in targets}

        jobs = [
            asyncio.create_task(
                self._job(backend, operation, args, channels.get(backend), summarize),
                name=f"unipac-{backend.flag}-{operation}",
            )
            for backend in targets
        ]

        if channels:
            spinners = Spinners(console=self.console, tick_interval=self.config.tick_interval)
            finished, _ = await asyncio.gather(asyncio.gather(*jobs), spinners.work(channels))
        else:
            finished = await asyncio.gather(*jobs)

        return dict(zip(targets, finished))

    async def _job(
        self,
        backend: Backend,
        operation: str,
        args: tuple,
        channel: Optional[ProgressChannel],
        summarize: Callable[[Any], str],
    ) -> tuple[bool, Any]:
        """One backend's job. Never raises: failures are returned as values."""
        logger.debug("%s: starting %s", backend.display_name, operation)
        try:
            manager = self.factory(backend, self.config, channel.sender if channel else None)
            value = await getattr(manager, operation)(*args)
        except Exception as e:
            logger.debug("%s: %s failed: %s", backend.display_name, operation, e)
            if channel is not None:
                await channel.close(JobOutcome(ok=False))
            return False, e

        logger.debug("%s: %s finished", backend.display_name, operation)
        if channel is not None:
            await channel.close(JobOutcome(ok=True, summary=summarize(value)))
        return True, value
