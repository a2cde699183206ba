"""Shell environment for external commands.

Every external process (west, pip, tar, post-install scripts) runs with the
host environment plus the overlays recorded in persisted state: the virtual
environment's bin directories on PATH, VIRTUAL_ENV, and the install path of
the workspace's selected SDK.
"""

import os
from pathlib import Path
from typing import Dict, Mapping, Optional

from .state import GlobalConfig, WorkspaceConfig

SDK_INSTALL_DIR_VAR = "ZEPHYR_SDK_INSTALL_DIR"


def prepend_path(entry: str, current: Optional[str]) -> str:
    """Prepend a PATH entry."""
    if not current:
        return entry
    return f"{entry}{os.pathsep}{current}"


def virtualenv_path_entries(env_dir: Path) -> str:
    """PATH entries exposing a virtual environment's executables.

    Both layouts are listed so the overlay works on Windows (Scripts) and
    everywhere else (bin).
    """
    return os.pathsep.join([str(env_dir / "bin"), str(env_dir / "Scripts")])


def shell_environment(
    global_config: GlobalConfig,
    workspace_config: Optional[WorkspaceConfig] = None,
    base: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Build the environment external commands run with.

    Args:
        global_config: Global state with the setup overlay
        workspace_config: Workspace state with its overlay and SDK selection
        base: Starting environment (defaults to os.environ)

    Returns:
        New environment dictionary
    """
    env = dict(os.environ if base is None else base)

    if global_config.env.get("PATH"):
        env["PATH"] = prepend_path(global_config.env["PATH"], env.get("PATH"))
    if global_config.env.get("VIRTUAL_ENV"):
        env["VIRTUAL_ENV"] = global_config.env["VIRTUAL_ENV"]

    if workspace_config is not None:
        if workspace_config.env.get("PATH"):
            env["PATH"] = prepend_path(workspace_config.env["PATH"], env.get("PATH"))
        selected = workspace_config.selected_toolchain
        if selected is not None and selected in global_config.toolchains:
            env[SDK_INSTALL_DIR_VAR] = global_config.toolchains[selected]

    return env
