"""
Per-invocation configuration.

Built once at start-up from the command-line flags and the optional YAML
file, then handed to the orchestrator and the command handlers.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from unipac import __version__
from unipac.errors import ConfigError
from unipac.models import Backend

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = Path.home() / ".config" / "unipac" / "config.yaml"

# Keys accepted in the config file, with their expected type
CONFIG_KEYS = {
    "cache_dir": str,
    "editor": str,
    "pager": str,
    "tick_interval": (int, float),
    "log_level": str,
}


def _default_cache_dir() -> Path:
    base = os.environ.get("XDG_CACHE_HOME")
    return (Path(base) if base else Path.home() / ".cache") / "unipac"


def _default_editor() -> str:
    return os.environ.get("EDITOR") or "less"


@dataclass(frozen=True)
class Config:
    """Settings for one invocation"""

    enabled: tuple[Backend, ...] = tuple(Backend)
    interactive: bool = True
    tick_interval: float = 0.1
    cache_dir: Path = field(default_factory=_default_cache_dir)
    editor: str = field(default_factory=_default_editor)
    pager: str = "less"
    log_level: str = "WARNING"
    user_agent: str = f"unipac/{__version__}"

    def is_enabled(self, backend: Backend) -> bool:
        return backend in self.enabled

    @classmethod
    def from_flags(
        cls,
        selected: Optional[dict[Backend, bool]] = None,
        no_interactive: bool = False,
        path: Optional[str] = None,
        verbose: bool = False,
    ) -> "Config":
        """Build the configuration for this invocation.

        Args:
            selected: Backend flags given on the command line. When none is
                set, every registered backend is enabled.
            no_interactive: Disable the live display and prompts.
            path: Config file (default: $UNIPAC_CONFIG, then
                ~/.config/unipac/config.yaml). A missing default file is fine;
                a missing explicit file is an error.
            verbose: Force debug logging.
        """
        from unipac.managers import MANAGER_ORDER

        chosen = tuple(b for b in MANAGER_ORDER if selected and selected.get(b))
        enabled = chosen or tuple(MANAGER_ORDER)

        settings = load_settings(path)
        if verbose:
            settings["log_level"] = "DEBUG"
        if "cache_dir" in settings:
            settings["cache_dir"] = Path(settings["cache_dir"]).expanduser()
        if "log_level" in settings:
            settings["log_level"] = str(settings["log_level"]).upper()
        if "tick_interval" in settings and settings["tick_interval"] <= 0:
            raise ConfigError("tick_interval must be positive")

        return cls(enabled=enabled, interactive=not no_interactive, **settings)


def load_settings(path: Optional[str] = None) -> dict:
    """Load the YAML config file into a dict of known keys"""
    explicit = path or os.environ.get("UNIPAC_CONFIG")
    config_path = Path(explicit).expanduser() if explicit else DEFAULT_CONFIG

    if not config_path.is_file():
        if explicit:
            raise ConfigError(f"Config file not found: {config_path}")
        return {}

    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read {config_path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"{config_path}: expected a mapping at the top level")

    settings = {}
    for key, value in raw.items():
        expected = CONFIG_KEYS.get(key)
        if expected is None:
            logger.warning("%s: ignoring unknown key '%s'", config_path, key)
            continue
        if isinstance(value, bool) or not isinstance(value, expected):
            raise ConfigError(f"{config_path}: invalid value for '{key}': {value!r}")
        settings[key] = value
    return settings
