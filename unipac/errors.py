from dataclasses import dataclass

from unipac.models import Backend


class UnipacError(Exception):
    """Base class for unipac errors"""


class ConfigError(UnipacError):
    """The configuration file could not be loaded"""


class ManagerError(UnipacError):
    """A backend operation failed.

    Each backend raises its own subclass; the orchestrator never looks
    inside, it only records which backend the error came from.
    """


class PacmanError(ManagerError):
    pass


class AurError(ManagerError):
    pass


class FlatpakError(ManagerError):
    pass


class SnapError(ManagerError):
    pass


class CargoError(ManagerError):
    pass


@dataclass
class BackendFailure:
    """A failed job, tagged with the backend that produced it"""

    backend: Backend
    error: BaseException

    @property
    def message(self) -> str:
        return str(self.error) or type(self.error).__name__

    def __str__(self) -> str:
        return f"{self.backend.display_name}: {self.message}"
