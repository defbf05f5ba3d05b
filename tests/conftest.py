# tests/conftest.py
import asyncio
from dataclasses import dataclass, field
from typing import Any

import pytest

from unipac.config import Config
from unipac.managers import Manager
from unipac.models import Backend

# Result of an operation that nobody configured
DEFAULTS = {
    "find": None,
    "count_updates": 0,
    "install": None,
    "uninstall": None,
    "update": None,
}


@dataclass
class Step:
    result: Any = None
    events: list = field(default_factory=list)
    delay: float = 0.0


class Script:
    """What each fake backend does for each operation, plus a call log"""

    def __init__(self):
        self.steps: dict[tuple[Backend, str], Step] = {}
        self.calls: list[tuple[Backend, str, tuple]] = []
        self.progress: dict[Backend, bool] = {}

    def on(self, backend, operation, result=None, events=(), delay=0.0):
        self.steps[(backend, operation)] = Step(result=result, events=list(events), delay=delay)
        return self

    def called(self, operation):
        return [backend for backend, op, _ in self.calls if op == operation]

    def factory(self, backend, config, progress=None):
        self.progress[backend] = progress is not None
        return FakeManager(backend, config, progress, self)


class FakeManager(Manager):
    def __init__(self, backend, config, progress, script):
        super().__init__(config, progress)
        self.backend = backend
        self.script = script

    async def _do(self, operation, *args):
        self.script.calls.append((self.backend, operation, args))
        step = self.script.steps.get((self.backend, operation))
        if step is None:
            return DEFAULTS.get(operation, [])
        for event in step.events:
            await self._report(event)
        if step.delay:
            await asyncio.sleep(step.delay)
        if isinstance(step.result, BaseException):
            raise step.result
        return step.result

    async def list(self):
        return await self._do("list")

    async def find(self, name):
        return await self._do("find", name)

    async def search(self, query):
        return await self._do("search", query)

    async def search_install(self, query):
        return await self._do("search_install", query)

    async def install(self, package):
        return await self._do("install", package)

    async def uninstall(self, package):
        return await self._do("uninstall", package)

    async def list_updates(self):
        return await self._do("list_updates")

    async def count_updates(self):
        return await self._do("count_updates")

    async def update(self):
        return await self._do("update")


@pytest.fixture
def script():
    return Script()


@pytest.fixture
def make_config(tmp_path):
    def _make(*enabled, interactive=False, **kwargs):
        return Config(
            enabled=tuple(enabled) or tuple(Backend),
            interactive=interactive,
            tick_interval=0.01,
            cache_dir=tmp_path / "cache",
            editor="true",
            pager="true",
            **kwargs,
        )

    return _make
