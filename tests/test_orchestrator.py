import io

import pytest
from rich.console import Console

from unipac.errors import AurError, FlatpakError, PacmanError
from unipac.models import AurPackage, Backend, CargoPackage, FlatpakPackage, PacmanPackage
from unipac.orchestrator import Counts, Orchestrator, Package, Packages


def orchestrator(config, script, console=None):
    console = console or Console(file=io.StringIO(), width=80, color_system=None)
    return Orchestrator(config, factory=script.factory, console=console)


@pytest.mark.asyncio
async def test_list_with_partial_failure(make_config, script):
    script.on(Backend.PACMAN, "list", [PacmanPackage("a", "1"), PacmanPackage("b", "1")])
    script.on(Backend.AUR, "list", AurError("boom"))
    script.on(Backend.FLATPAK, "list", [FlatpakPackage("org.c", "c", "1")])

    result = await orchestrator(make_config(), script).gather("list")

    assert result.results.total() == 3
    assert [p.name for p in result.results[Backend.PACMAN]] == ["a", "b"]
    assert result.results[Backend.AUR] == []
    assert [str(e) for e in result.errors] == ["AUR: boom"]
    assert not result.ok


@pytest.mark.asyncio
async def test_only_enabled_backends_run(make_config, script):
    script.on(Backend.SNAP, "search", [object()])
    config = make_config(Backend.SNAP, Backend.CARGO)

    result = await orchestrator(config, script).gather("search", "vlc")

    assert sorted(script.called("search"), key=list(Backend).index) == [Backend.SNAP, Backend.CARGO]
    assert result.results.backends == [Backend.SNAP, Backend.CARGO]
    assert result.results.total() == 1
    with pytest.raises(KeyError):
        result.results[Backend.PACMAN]


@pytest.mark.asyncio
async def test_failures_reported_in_backend_order(make_config, script):
    # Cargo fails first, pacman fails last
    script.on(Backend.PACMAN, "list_updates", PacmanError("slow"), delay=0.05)
    script.on(Backend.FLATPAK, "list_updates", FlatpakError("medium"), delay=0.02)
    script.on(Backend.CARGO, "list_updates", RuntimeError("fast"))

    result = await orchestrator(make_config(), script).gather("list_updates")

    assert [f.backend for f in result.errors] == [Backend.PACMAN, Backend.FLATPAK, Backend.CARGO]
    assert [f.message for f in result.errors] == ["slow", "medium", "fast"]


@pytest.mark.asyncio
async def test_failure_does_not_cancel_siblings(make_config, script):
    script.on(Backend.PACMAN, "list", PacmanError("fails immediately"))
    script.on(Backend.CARGO, "list", [CargoPackage("ripgrep", "14.1.0")], delay=0.05)

    result = await orchestrator(make_config(Backend.PACMAN, Backend.CARGO), script).gather("list")

    assert [p.name for p in result.results[Backend.CARGO]] == ["ripgrep"]
    assert len(result.errors) == 1


@pytest.mark.asyncio
async def test_count_updates(make_config, script):
    script.on(Backend.PACMAN, "count_updates", 3)
    script.on(Backend.FLATPAK, "count_updates", 2)

    result = await orchestrator(make_config(), script).gather("count_updates", aggregate=Counts)

    assert isinstance(result.results, Counts)
    assert result.results.total() == 5


@pytest.mark.asyncio
async def test_find_into_package(make_config, script):
    script.on(Backend.AUR, "find", AurPackage("paru", "2.0"))

    result = await orchestrator(make_config(), script).gather("find", "paru", aggregate=Package)

    assert result.results[Backend.AUR].name == "paru"
    assert result.results.total() == 1
    assert script.calls[0][2] == ("paru",)


@pytest.mark.asyncio
async def test_all_backends_fail(make_config, script):
    for backend in Backend:
        script.on(backend, "search", RuntimeError(f"{backend.flag} down"))

    result = await orchestrator(make_config(), script).gather("search", "x")

    assert result.results.total() == 0
    assert len(result.errors) == len(Backend)


@pytest.mark.asyncio
async def test_execute_restricted_to_subset(make_config, script):
    script.on(Backend.SNAP, "update", RuntimeError("refresh failed"))

    failures = await orchestrator(make_config(), script).execute(
        "update", backends=[Backend.SNAP, Backend.PACMAN]
    )

    assert sorted(script.called("update"), key=list(Backend).index) == [Backend.PACMAN, Backend.SNAP]
    assert [str(f) for f in failures] == ["Snap: refresh failed"]


@pytest.mark.asyncio
async def test_execute_ignores_disabled_backends(make_config, script):
    config = make_config(Backend.PACMAN)
    failures = await orchestrator(config, script).execute("update", backends=[Backend.CARGO])
    assert failures == []
    assert script.calls == []


@pytest.mark.asyncio
async def test_no_enabled_backends(make_config, script):
    config = make_config(Backend.PACMAN)
    result = await orchestrator(config, script).gather("list", backends=[])
    assert result.results.total() == 0
    assert result.ok


@pytest.mark.asyncio
async def test_non_interactive_creates_no_channels(make_config, script):
    await orchestrator(make_config(interactive=False), script).gather("list")
    assert not any(script.progress.values())


@pytest.mark.asyncio
async def test_interactive_outcome_matches_non_interactive(make_config, script):
    script.on(Backend.PACMAN, "update", None, events=[0, "50% linux", "100%"])
    script.on(Backend.FLATPAK, "update", FlatpakError("no remote"), events=[10])
    console = Console(file=io.StringIO(), width=80, color_system=None)

    interactive = await orchestrator(make_config(interactive=True), script, console).execute("update")
    plain = await orchestrator(make_config(interactive=False), script).execute("update")

    assert [str(f) for f in interactive] == [str(f) for f in plain] == ["Flatpak: no remote"]
    output = console.file.getvalue()
    assert "✗" in output
    assert "✓" in output


@pytest.mark.asyncio
async def test_interactive_display_shows_counts(make_config, script):
    script.on(Backend.PACMAN, "list", [PacmanPackage("a", "1")] * 4, events=["reading"])
    console = Console(file=io.StringIO(), width=80, color_system=None)

    result = await orchestrator(make_config(Backend.PACMAN, interactive=True), script, console).gather("list")

    assert isinstance(result.results, Packages)
    assert script.progress[Backend.PACMAN]
    assert "✓ 4" in console.file.getvalue()


@pytest.mark.asyncio
async def test_call_runs_one_backend(make_config, script):
    package = CargoPackage("bat", "0.24.0")
    await orchestrator(make_config(), script).call(Backend.CARGO, "install", package)
    assert script.calls == [(Backend.CARGO, "install", (package,))]
