"""
Live per-backend status display.

One spinner row per backend job. The display loop is the only consumer of
the progress channels; it never touches orchestrator state.
"""

import asyncio
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TaskID, TextColumn

from unipac.models import Backend, ProgressEvent
from unipac.progress import ProgressChannel


def format_event(event: ProgressEvent) -> str:
    """Render a progress event as status text"""
    if isinstance(event, int):
        return f"{event}%"
    return event


class Spinners:
    """Spinner rows for the backends of one fan-out"""

    def __init__(self, console: Optional[Console] = None, tick_interval: float = 0.1):
        self.console = console
        self.tick_interval = tick_interval
        self.progress = Progress(
            SpinnerColumn(finished_text=" "),
            TextColumn("{task.description}"),
            TextColumn("{task.fields[status]}"),
            console=console,
            auto_refresh=False,
        )
        self._rows: dict[Backend, TaskID] = {}
        self._finished: set[Backend] = set()

    @property
    def done(self) -> bool:
        return len(self._finished) == len(self._rows)

    def add(self, backend: Backend) -> None:
        self._rows[backend] = self.progress.add_task(
            f"[{backend.color}]{backend.display_name}[/]", total=1, status=""
        )

    def update(self, backend: Backend, event: ProgressEvent) -> None:
        self.progress.update(self._rows[backend], status=escape(format_event(event)))

    def finish(self, backend: Backend, summary: str = "") -> None:
        status = f"[green]✓[/] {escape(summary)}" if summary else "[green]✓[/]"
        self.progress.update(self._rows[backend], completed=1, status=status)
        self._finished.add(backend)

    def abort(self, backend: Backend) -> None:
        self.progress.update(self._rows[backend], completed=1, status="[red]✗[/]")
        self._finished.add(backend)

    def _poll(self, backend: Backend, channel: ProgressChannel) -> None:
        latest, outcome = channel.drain()
        if latest is not None:
            self.update(backend, latest)
        if outcome is None:
            return
        if outcome.ok:
            self.finish(backend, outcome.summary)
        else:
            self.abort(backend)

    async def work(self, channels: dict[Backend, ProgressChannel]) -> None:
        """Drain the channels every tick until every row is finished or aborted"""
        for backend in channels:
            self.add(backend)

        with self.progress:
            while True:
                for backend, channel in channels.items():
                    if backend not in self._finished:
                        self._poll(backend, channel)
                self.progress.refresh()
                if self.done:
                    return
                await asyncio.sleep(self.tick_interval)
