import pytest

from unipac.models import Backend, FlatpakPackage, PacmanPackage
from unipac.orchestrator import Packages, resolve_selection


@pytest.fixture
def packages():
    packages = Packages(list(Backend))
    packages[Backend.PACMAN] = [PacmanPackage("a", "1"), PacmanPackage("b", "1")]
    packages[Backend.FLATPAK] = [FlatpakPackage("org.c", "c", "1")]
    return packages


@pytest.mark.parametrize(
    "index, backend, name",
    [
        (0, Backend.PACMAN, "a"),
        (1, Backend.PACMAN, "b"),
        (2, Backend.FLATPAK, "c"),
    ],
)
def test_resolves_across_backends(packages, index, backend, name):
    resolved = resolve_selection(packages, index)
    assert resolved is not None
    assert resolved[0] is backend
    assert resolved[1].name == name


@pytest.mark.parametrize("index", [3, 4, 100, -1])
def test_out_of_range(packages, index):
    assert resolve_selection(packages, index) is None


def test_matches_flattened_order(packages):
    flat = packages.flatten()
    assert [resolve_selection(packages, k) for k in range(packages.total())] == flat


def test_empty_aggregate_selects_nothing():
    assert resolve_selection(Packages(list(Backend)), 0) is None


def test_first_backend_empty():
    packages = Packages([Backend.PACMAN, Backend.CARGO])
    packages[Backend.CARGO] = [PacmanPackage("x", "1")]
    assert resolve_selection(packages, 0) == (Backend.CARGO, packages[Backend.CARGO][0])
    assert resolve_selection(packages, 1) is None
