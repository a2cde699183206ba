"""Persisted global and workspace state.

Two independent records are kept on disk as JSON and rewritten wholesale on
every save:

    GlobalConfig      <tools_dir>/state.json
    WorkspaceConfig   <workspace>/.zephyrtools/state.json

Records are loaded once when the process starts and handed to every component
that needs them. Nothing writes them implicitly; callers mutate a record and
call StateStore.save() once the operation that justified the change has fully
succeeded.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Optional, Type, TypeVar

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
WORKSPACE_STATE_DIR = ".zephyrtools"


class StateError(Exception):
    """Raised when persisted state can't be loaded or saved safely."""

    pass


@dataclass
class ProjectConfig:
    """A project registered in the workspace.

    Attributes:
        name: Project name (folder name)
        path: Project folder
        is_init: Whether the west workspace has been initialized
        board: Selected board identifier
        board_root_dir: Directory passed to the build as BOARD_ROOT
        target: Directory west build/flash run in
        runner: Flash runner (None for west's default)
        runner_params: Extra arguments for the runner
    """

    name: str
    path: str
    is_init: bool = False
    board: Optional[str] = None
    board_root_dir: Optional[str] = None
    target: Optional[str] = None
    runner: Optional[str] = None
    runner_params: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectConfig":
        """Create ProjectConfig from dictionary."""
        return cls(
            name=data["name"],
            path=data["path"],
            is_init=data.get("is_init", False),
            board=data.get("board"),
            board_root_dir=data.get("board_root_dir"),
            target=data.get("target"),
            runner=data.get("runner"),
            runner_params=data.get("runner_params"),
        )


@dataclass
class GlobalConfig:
    """Machine-wide state shared by every workspace."""

    is_setup: bool = False
    env: Dict[str, str] = field(default_factory=dict)
    platform_name: Optional[str] = None
    platform_arch: Optional[str] = None
    toolchains: Dict[str, str] = field(default_factory=dict)
    schema_version: int = SCHEMA_VERSION

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GlobalConfig":
        """Create GlobalConfig from dictionary."""
        return cls(
            is_setup=data.get("is_setup", False),
            env=dict(data.get("env", {})),
            platform_name=data.get("platform_name"),
            platform_arch=data.get("platform_arch"),
            toolchains=dict(data.get("toolchains", {})),
            schema_version=data.get("schema_version", SCHEMA_VERSION),
        )


@dataclass
class WorkspaceConfig:
    """Per-workspace state: projects and the selected toolchain."""

    env: Dict[str, str] = field(default_factory=dict)
    selected_toolchain: Optional[str] = None
    projects: Dict[str, ProjectConfig] = field(default_factory=dict)
    selected_project: Optional[str] = None
    automatic_project_selection: bool = True
    schema_version: int = SCHEMA_VERSION

    @property
    def active_project(self) -> Optional[ProjectConfig]:
        if self.selected_project is None:
            return None
        return self.projects.get(self.selected_project)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["projects"] = {name: project.to_dict() for name, project in self.projects.items()}
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkspaceConfig":
        """Create WorkspaceConfig from dictionary."""
        return cls(
            env=dict(data.get("env", {})),
            selected_toolchain=data.get("selected_toolchain"),
            projects={
                name: ProjectConfig.from_dict(project)
                for name, project in data.get("projects", {}).items()
            },
            selected_project=data.get("selected_project"),
            automatic_project_selection=data.get("automatic_project_selection", True),
            schema_version=data.get("schema_version", SCHEMA_VERSION),
        )


RecordT = TypeVar("RecordT", GlobalConfig, WorkspaceConfig)


class StateStore(Generic[RecordT]):
    """Loads and atomically saves one persisted record."""

    def __init__(self, path: Path, record_type: Type[RecordT]):
        """Initialize the store.

        Args:
            path: JSON file backing the record
            record_type: GlobalConfig or WorkspaceConfig
        """
        self.path = Path(path)
        self.record_type = record_type

    @classmethod
    def for_global(cls, tools_dir: Path) -> "StateStore[GlobalConfig]":
        return StateStore(Path(tools_dir) / "state.json", GlobalConfig)

    @classmethod
    def for_workspace(cls, workspace_dir: Path) -> "StateStore[WorkspaceConfig]":
        return StateStore(Path(workspace_dir) / WORKSPACE_STATE_DIR / "state.json", WorkspaceConfig)

    def load(self) -> RecordT:
        """Load the record, or defaults if there is none.

        A corrupted file is logged and replaced by defaults on the next save.

        Raises:
            StateError: If the file was written by a newer schema version
        """
        factory: Callable[[], RecordT] = self.record_type
        if not self.path.exists():
            return factory()

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("top-level value is not an object")
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Corrupted state file {self.path}: {e}. Using defaults.")
            return factory()

        version = data.get("schema_version", SCHEMA_VERSION)
        if not isinstance(version, int) or version > SCHEMA_VERSION:
            raise StateError(
                f"{self.path} was written by a newer zephyr-tools (schema {version}, "
                + f"supported {SCHEMA_VERSION}). Refusing to load it."
            )

        try:
            record = self.record_type.from_dict(data)
        except (KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Invalid state in {self.path}: {e}. Using defaults.")
            return factory()

        record.schema_version = SCHEMA_VERSION
        return record

    def reset(self) -> RecordT:
        """Replace the stored record with defaults, whatever the file held."""
        record = self.record_type()
        self.save(record)
        logger.info(f"Reset {self.path}")
        return record

    def save(self, record: RecordT) -> None:
        """Write the record atomically.

        Raises:
            StateError: If the file can't be written
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.path.with_suffix(".tmp")
        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(record.to_dict(), f, indent=2)
            temp_file.replace(self.path)
        except OSError as e:
            temp_file.unlink(missing_ok=True)
            raise StateError(f"Failed to write {self.path}: {e}")
        logger.debug(f"Saved {self.path}")
