__version__ = "0.1.0"

from unipac.config import Config
from unipac.errors import BackendFailure, ConfigError, ManagerError
from unipac.managers import MANAGER_ORDER, MANAGERS, Manager, create_manager
from unipac.models import Backend
from unipac.orchestrator import Counts, Orchestrator, Package, Packages, resolve_selection

__all__ = [
    "__version__",
    "Backend",
    "BackendFailure",
    "Config",
    "ConfigError",
    "Counts",
    "MANAGERS",
    "MANAGER_ORDER",
    "Manager",
    "ManagerError",
    "Orchestrator",
    "Package",
    "Packages",
    "create_manager",
    "resolve_selection",
]
