import io

import pytest
from rich.console import Console

from unipac.commands import Commands
from unipac.errors import AurError, CargoError, SnapError
from unipac.models import AurPackage, Backend, CargoPackage, FlatpakPackage, PacmanPackage, SnapPackage
from unipac.orchestrator import Orchestrator


class FakeHooks:
    def __init__(self):
        self.calls = []

    def pre_install(self, backend, package):
        self.calls.append(("pre_install", backend, package.name))

    def pre_uninstall(self, backend, package):
        self.calls.append(("pre_uninstall", backend, package.name))

    def pre_update(self, backend, packages):
        self.calls.append(("pre_update", backend, [p.name for p in packages]))


class Prompts:
    def __init__(self, confirm=True, choice=1):
        self.confirm_answer = confirm
        self.choice = choice
        self.asked = []

    def confirm(self, question, default=None):
        self.asked.append(question)
        return self.confirm_answer

    def choose(self, question, **kwargs):
        self.asked.append(question)
        self.choices = kwargs.get("choices")
        return self.choice


@pytest.fixture
def hooks():
    return FakeHooks()


@pytest.fixture
def prompts():
    return Prompts()


@pytest.fixture
def commands(make_config, script, hooks, prompts):
    def _make(*enabled, interactive=False):
        config = make_config(*enabled, interactive=interactive)
        console = Console(file=io.StringIO(), width=200, color_system=None)
        err_console = Console(file=io.StringIO(), width=200, color_system=None)
        return Commands(
            config,
            orchestrator=Orchestrator(config, factory=script.factory, console=console),
            hooks=hooks,
            console=console,
            err_console=err_console,
            confirm=prompts.confirm,
            choose=prompts.choose,
        )

    return _make


def out(commands):
    return commands.console.file.getvalue()


def err(commands):
    return commands.err_console.file.getvalue()


@pytest.mark.asyncio
async def test_list_prints_results_and_failures(commands, script):
    script.on(Backend.PACMAN, "list", [PacmanPackage("bat", "1", "extra")])
    script.on(Backend.AUR, "list", AurError("pacman database locked"))
    cmd = commands()

    await cmd.list_packages()

    assert "Pacman\textra\tbat\t1" in out(cmd)
    assert err(cmd).strip() == "AUR: pacman database locked"


@pytest.mark.asyncio
async def test_search_nothing_found(commands):
    cmd = commands()
    await cmd.search("nothing")
    assert out(cmd).strip() == "No packages found."


@pytest.mark.asyncio
async def test_list_updates_none(commands):
    cmd = commands()
    await cmd.list_updates()
    assert out(cmd).strip() == "No updates available."


@pytest.mark.asyncio
async def test_count_updates_plain(commands, script):
    script.on(Backend.PACMAN, "count_updates", 3)
    script.on(Backend.CARGO, "count_updates", 1)
    script.on(Backend.SNAP, "count_updates", SnapError("offline"))
    cmd = commands()

    assert await cmd.count_updates() == 4
    assert out(cmd).strip() == "4"
    assert "Snap: offline" in err(cmd)


@pytest.mark.asyncio
async def test_count_updates_interactive(commands, script):
    script.on(Backend.FLATPAK, "count_updates", 2)
    cmd = commands(Backend.FLATPAK, interactive=True)
    await cmd.count_updates()
    assert "You have 2 updates." in out(cmd)


@pytest.mark.asyncio
async def test_install_selects_across_backends(commands, script, hooks, prompts):
    script.on(Backend.PACMAN, "search_install", [PacmanPackage("a", "1"), PacmanPackage("b", "1")])
    script.on(Backend.FLATPAK, "search_install", [FlatpakPackage("org.c", "c", "1")])
    prompts.choice = 3
    cmd = commands()

    selected = await cmd.install("x")

    assert selected[0] is Backend.FLATPAK
    assert prompts.choices == ["1", "2", "3"]
    assert hooks.calls == [("pre_install", Backend.FLATPAK, "c")]
    assert script.called("install") == [Backend.FLATPAK]


@pytest.mark.asyncio
async def test_install_nothing_found_does_not_prompt(commands, prompts, hooks):
    cmd = commands()
    assert await cmd.install("x") is None
    assert "No packages found." in out(cmd)
    assert prompts.asked == []
    assert hooks.calls == []


@pytest.mark.asyncio
async def test_install_failure(commands, script):
    script.on(Backend.CARGO, "search_install", [CargoPackage("bat", "0.24.0")])
    script.on(Backend.CARGO, "install", CargoError("linker not found"))
    cmd = commands(Backend.CARGO)

    with pytest.raises(SystemExit) as exc:
        await cmd.install("bat")

    assert exc.value.code == 1
    assert "Failed to install bat: linker not found" in err(cmd)


@pytest.mark.asyncio
async def test_uninstall_first_backend_wins(commands, script, hooks, prompts):
    script.on(Backend.AUR, "find", AurPackage("bat", "1"))
    script.on(Backend.SNAP, "find", SnapPackage("bat", "1"))
    cmd = commands()

    found = await cmd.uninstall("bat")

    assert found[0] is Backend.AUR
    assert prompts.asked == ["Do you want to uninstall this package?"]
    assert hooks.calls == [("pre_uninstall", Backend.AUR, "bat")]
    assert script.called("uninstall") == [Backend.AUR]


@pytest.mark.asyncio
async def test_uninstall_declined(commands, script, prompts):
    script.on(Backend.SNAP, "find", SnapPackage("vlc", "3"))
    prompts.confirm_answer = False
    cmd = commands()

    with pytest.raises(SystemExit) as exc:
        await cmd.uninstall("vlc")

    assert exc.value.code == 0
    assert script.called("uninstall") == []


@pytest.mark.asyncio
async def test_uninstall_not_found(commands):
    cmd = commands()
    assert await cmd.uninstall("ghost") is None
    assert "No packages found." in out(cmd)


@pytest.mark.asyncio
async def test_update_runs_only_backends_with_updates(commands, script, hooks):
    script.on(Backend.PACMAN, "list_updates", [PacmanPackage("linux", "6.6")])
    script.on(Backend.AUR, "list_updates", AurError("rpc down"))
    script.on(Backend.CARGO, "list_updates", [CargoPackage("bat", "0.25")])
    script.on(Backend.CARGO, "update", CargoError("build failed"))
    cmd = commands()

    failures = await cmd.update()

    assert hooks.calls == [
        ("pre_update", Backend.PACMAN, ["linux"]),
        ("pre_update", Backend.CARGO, ["bat"]),
    ]
    assert sorted(script.called("update"), key=list(Backend).index) == [Backend.PACMAN, Backend.CARGO]
    assert [str(f) for f in failures] == ["Cargo: build failed"]
    assert "AUR: rpc down" in err(cmd)
    assert "Cargo: build failed" in err(cmd)


@pytest.mark.asyncio
async def test_update_nothing_pending(commands, script, prompts):
    cmd = commands()
    assert await cmd.update("ignored") == []
    assert "No updates available." in out(cmd)
    assert prompts.asked == []
    assert script.called("update") == []


@pytest.mark.asyncio
async def test_update_declined(commands, script, prompts):
    script.on(Backend.SNAP, "list_updates", [SnapPackage("firefox", "121")])
    prompts.confirm_answer = False
    cmd = commands()

    assert await cmd.update() == []
    assert script.called("update") == []
