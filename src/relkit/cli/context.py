"""CLI context: configuration path and output preferences."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from relkit.core.config import DatabaseSettings


def get_config_path(path: str | None) -> Path:
    """Resolve the configuration file from CLI arg, environment variable, or default.

    Priority:
    1. Explicit path argument
    2. RELKIT_CONFIG environment variable
    3. Default: ./relkit.toml
    """
    if path:
        return Path(path)
    if env_path := os.getenv("RELKIT_CONFIG"):
        return Path(env_path)
    return Path("relkit.toml")


@dataclass
class CLIContext:
    """Shared context for CLI commands."""

    config_path: Path
    json_output: bool
    _settings: DatabaseSettings | None = field(default=None, init=False, repr=False)

    def get_settings(self) -> DatabaseSettings:
        """Load the configuration once (lazy initialization).

        Raises:
            ConfigError: If the file is missing or invalid
        """
        if self._settings is None:
            self._settings = DatabaseSettings.load(self.config_path)
        return self._settings
