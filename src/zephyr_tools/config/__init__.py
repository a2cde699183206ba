"""Persisted configuration for zephyr-tools."""

from .environment import SDK_INSTALL_DIR_VAR, shell_environment, virtualenv_path_entries
from .state import (
    SCHEMA_VERSION,
    GlobalConfig,
    ProjectConfig,
    StateError,
    StateStore,
    WorkspaceConfig,
)

__all__ = [
    "GlobalConfig",
    "WorkspaceConfig",
    "ProjectConfig",
    "StateStore",
    "StateError",
    "SCHEMA_VERSION",
    "SDK_INSTALL_DIR_VAR",
    "shell_environment",
    "virtualenv_path_entries",
]
