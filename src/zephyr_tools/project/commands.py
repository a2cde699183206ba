"""Project commands.

Build, flash and dependency commands are translated into west invocations
and pushed onto the task queue. Selection commands (project, board, runner,
SDK) mutate the workspace record and save it immediately.

Workspace state changes that depend on external commands (registering an
initialized repository) happen only in the final job's continuation, so a
failed west step never leaves a half-initialized project on disk.
"""

import logging
import shlex
import shutil
import subprocess
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable, List, Optional

from zephyr_tools.config import GlobalConfig, ProjectConfig, StateStore, WorkspaceConfig, shell_environment
from zephyr_tools.reporting import Reporter
from zephyr_tools.tasks import BatchResult, Job, JobOptions, TaskQueue

from .boards import find_board, find_board_directories, list_boards

logger = logging.getLogger(__name__)

RUNNERS = ["default", "jlink", "nrfjprog", "openocd", "pyocd", "qemu", "stlink"]
WEST_MANIFEST_FILE = "west.yml"
DEFAULT_ZEPHYR_BASE = "zephyr"


class ProjectError(Exception):
    """Raised when a project command can't run with the current state."""

    pass


class ProjectCommands:
    """Project operations for one workspace."""

    def __init__(
        self,
        workspace_root: Path,
        global_config: GlobalConfig,
        workspace_store: StateStore,
        workspace_config: WorkspaceConfig,
        queue: TaskQueue,
        reporter: Optional[Reporter] = None,
    ):
        """Initialize project commands.

        Args:
            workspace_root: Root folder of the west workspace
            global_config: Loaded global record (read only here)
            workspace_store: Store the workspace record is saved to
            workspace_config: Loaded workspace record
            queue: Queue external commands are pushed to
            reporter: Receives user-facing messages
        """
        self.workspace_root = Path(workspace_root)
        self.global_config = global_config
        self.workspace_store = workspace_store
        self.workspace_config = workspace_config
        self.queue = queue
        self.reporter = reporter or Reporter()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _env(self) -> dict:
        return shell_environment(self.global_config, self.workspace_config)

    def _save(self) -> None:
        self.workspace_store.save(self.workspace_config)

    def require_setup(self) -> None:
        if not self.global_config.is_setup:
            raise ProjectError("Run `zephyr-tools setup` first.")

    def require_project(self) -> ProjectConfig:
        """Return the selected project.

        Raises:
            ProjectError: If no project is selected
        """
        project = self.workspace_config.active_project
        if project is None:
            raise ProjectError("Select a project first (`zephyr-tools set-project`).")
        return project

    def _require_target(self, project: ProjectConfig) -> str:
        if not project.target:
            raise ProjectError(
                f"Project {project.name} has no build target. Run `zephyr-tools add-project` first."
            )
        return project.target

    def zephyr_base(self, cwd: Path) -> str:
        """Ask west where the zephyr repository lives, relative to the workspace."""
        cmd = ["west", "list", "-f", "{path:28}", "zephyr"]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, cwd=str(cwd), env=self._env())
        except OSError as e:
            logger.warning(f"Unable to run west list: {e}")
            return DEFAULT_ZEPHYR_BASE

        if result.returncode != 0 or result.stderr:
            logger.warning(f"west list failed: {result.stderr}")
            return DEFAULT_ZEPHYR_BASE

        base = DEFAULT_ZEPHYR_BASE
        for line in result.stdout.splitlines():
            if "zephyr" in line:
                base = line.strip()
        return base

    def _requirements_job(self, name: str, cwd: Path) -> Job:
        requirements = Path(self.zephyr_base(cwd)) / "scripts" / "requirements.txt"
        return Job(
            name=name,
            command=["python", "-m", "pip", "install", "-r", str(requirements)],
            cwd=str(cwd),
            env=self._env(),
        )

    def _then_install_requirements(
        self,
        first: "Future[BatchResult]",
        name: str,
        cwd: Path,
        on_complete: Optional[Callable[[Any], None]] = None,
        payload: Any = None,
        success_message: Optional[str] = None,
    ) -> "Future[BatchResult]":
        """Chain a requirements install batch after a successful first batch.

        The zephyr base can only be asked for once west update has run, so
        the requirements job is built when the first batch completes.

        The two batches are not adjacent in the queue: a batch pushed while
        the first one runs is drained before the requirements install.
        """
        chained: "Future[BatchResult]" = Future()

        def after_first(done: "Future[BatchResult]") -> None:
            result = done.result()
            if not result.success:
                chained.set_result(result)
                return
            try:
                job = self._requirements_job(name, cwd)
                second = self.queue.push(
                    job,
                    JobOptions(
                        is_final=True,
                        on_complete=on_complete,
                        payload=payload,
                        success_message=success_message,
                    ),
                )
            except Exception as e:
                logger.exception("Failed to queue requirements install")
                chained.set_exception(e)
                return
            second.add_done_callback(lambda f: chained.set_result(f.result()))

        first.add_done_callback(after_first)
        return chained

    # ------------------------------------------------------------------
    # Selection commands
    # ------------------------------------------------------------------

    def add_project(self, project_path: Path) -> ProjectConfig:
        """Register a Zephyr application folder and select it.

        Raises:
            ProjectError: If the folder has no CMakeLists.txt declaring a project
        """
        project_path = Path(project_path).resolve()
        cmake_path = project_path / "CMakeLists.txt"
        if not cmake_path.exists():
            raise ProjectError(
                f"Failed to load project {project_path}. Does your project folder have a CMakeLists.txt file?"
            )
        if "project(" not in cmake_path.read_text(encoding="utf-8", errors="replace"):
            raise ProjectError(
                f"Failed to load project {project_path}. Does your project folder have a correct CMake file?"
            )

        name = project_path.name
        existing = self.workspace_config.projects.get(name)
        project = ProjectConfig(
            name=name,
            path=str(project_path),
            target=str(project_path),
            is_init=True,
            board=existing.board if existing else None,
            board_root_dir=existing.board_root_dir if existing else None,
            runner=existing.runner if existing else None,
            runner_params=existing.runner_params if existing else None,
        )
        self.workspace_config.projects[name] = project
        self.workspace_config.selected_project = name
        self._save()
        self.reporter.info(f"Successfully loaded project {project_path}")
        return project

    def set_project(self, name: str) -> ProjectConfig:
        if name not in self.workspace_config.projects:
            known = ", ".join(sorted(self.workspace_config.projects)) or "none"
            raise ProjectError(f"Unknown project {name} (known: {known})")
        self.workspace_config.selected_project = name
        self._save()
        self.reporter.info(f"Successfully set {name} as active project")
        return self.workspace_config.projects[name]

    def select_project_for_path(self, path: Path) -> Optional[str]:
        """Select the project containing a path, if automatic selection is on.

        Returns:
            The newly selected project name, or None if nothing changed
        """
        if not self.workspace_config.automatic_project_selection:
            return None
        resolved = Path(path).resolve()
        for name, project in self.workspace_config.projects.items():
            project_path = Path(project.path)
            if resolved == project_path or project_path in resolved.parents:
                if self.workspace_config.selected_project != name:
                    self.workspace_config.selected_project = name
                    self._save()
                    self.reporter.info(f"Active project changed to {name}")
                    return name
                return None
        return None

    def set_automatic_selection(self, enabled: bool) -> None:
        self.workspace_config.automatic_project_selection = enabled
        self._save()

    def board_directories(self) -> List[Path]:
        return find_board_directories(self.workspace_root)

    def boards(self, board_dir: Path) -> List[str]:
        return list_boards(board_dir)

    def change_board(self, board: str, board_dir: Optional[Path] = None) -> ProjectConfig:
        """Set the board of the selected project.

        Args:
            board: Board name
            board_dir: Board directory defining it (searched for if None)

        Raises:
            ProjectError: If no project is selected or the board isn't defined
        """
        project = self.require_project()
        try:
            if board_dir is None:
                board_dir = find_board(self.workspace_root, board)
            elif board not in list_boards(board_dir):
                raise LookupError(f"Board {board} not found in {board_dir}")
        except (LookupError, OSError) as e:
            raise ProjectError(f"Failed to change board: {e}")

        # BOARD_ROOT is the folder containing the boards directory
        project.board_root_dir = str(Path(board_dir).resolve().parent)
        project.board = board
        self._save()
        self.reporter.info(f"Board changed to {board}")
        return project

    def change_runner(self, runner: str, params: Optional[str] = None) -> ProjectConfig:
        project = self.require_project()
        if runner not in RUNNERS:
            raise ProjectError(f"Unknown runner {runner} (choose from: {', '.join(RUNNERS)})")

        project.runner = None if runner == "default" else runner
        project.runner_params = params or None
        self._save()
        args = f" with args: {params}" if params else ""
        self.reporter.info(f"Runner changed to {runner}{args}")
        return project

    def set_sdk(self, version: str) -> None:
        if version not in self.global_config.toolchains:
            installed = ", ".join(sorted(self.global_config.toolchains)) or "none"
            raise ProjectError(f"SDK {version} is not installed (installed: {installed})")
        self.workspace_config.selected_toolchain = version
        self._save()
        self.reporter.info(f"Set Zephyr SDK to: {version}")

    # ------------------------------------------------------------------
    # Queued commands
    # ------------------------------------------------------------------

    def init_repo(self, dest: Path, url: Optional[str] = None, branch: Optional[str] = None) -> "Future[BatchResult]":
        """Initialize a west workspace and install its Python requirements.

        Args:
            dest: Workspace folder
            url: Manifest repository URL (required unless dest is already a west workspace)
            branch: Manifest revision

        Returns:
            Future resolved once the last job finished

        Raises:
            ProjectError: If setup hasn't run or the URL is missing
        """
        self.require_setup()
        dest = Path(dest).resolve()
        needs_init = not (dest / ".west").exists()
        if needs_init and not url:
            raise ProjectError("Enter a valid git repository address.")
        dest.mkdir(parents=True, exist_ok=True)
        name = "Zephyr Tools: Init Repo"

        if needs_init:
            cmd = ["west", "init", "-m", url, "--mf", WEST_MANIFEST_FILE]
            if branch:
                cmd += ["--mr", branch]
            # Fails on a workspace initialized by hand, which is fine
            self.queue.push(
                Job(name=name, command=cmd, cwd=str(dest), env=self._env()),
                JobOptions(ignore_error=True),
            )

        first = self.queue.push(
            Job(name=name, command=["west", "update"], cwd=str(dest), env=self._env()),
            JobOptions(is_final=True),
        )
        return self._then_install_requirements(
            first,
            name,
            dest,
            on_complete=self._mark_initialized,
            payload={"dest": str(dest)},
            success_message="Init complete!",
        )

    def _mark_initialized(self, payload: Any) -> None:
        dest = Path(payload["dest"])
        project = self.workspace_config.projects.get(dest.name)
        if project is None:
            project = ProjectConfig(name=dest.name, path=str(dest))
            self.workspace_config.projects[dest.name] = project
        project.is_init = True
        if self.workspace_config.selected_project is None:
            self.workspace_config.selected_project = dest.name
        self._save()

    def build(self, pristine: bool = False) -> "Future[BatchResult]":
        """Queue a west build of the selected project.

        Raises:
            ProjectError: If setup, project, init or board are missing
        """
        self.require_setup()
        project = self.require_project()
        if not project.is_init:
            raise ProjectError("Run `zephyr-tools init-repo` first.")
        if not project.board:
            raise ProjectError("You must choose a board to continue (`zephyr-tools change-board`).")
        target = self._require_target(project)

        cmd = ["west", "build", "-b", project.board]
        if pristine:
            cmd.append("-p")
        if project.board_root_dir:
            cmd += ["--", f"-DBOARD_ROOT={project.board_root_dir}"]

        self.reporter.info(f"Building for {project.board}")
        return self.queue.push(
            Job(name="Zephyr Tools: Build", command=cmd, cwd=target, env=self._env()),
            JobOptions(is_final=True, success_message="Build complete!"),
        )

    def flash(self) -> "Future[BatchResult]":
        self.require_setup()
        project = self.require_project()
        target = self._require_target(project)

        cmd = ["west", "flash"]
        if project.runner:
            cmd += ["-r", project.runner]
            if project.runner_params:
                cmd += shlex.split(project.runner_params)

        self.reporter.info(f"Flashing for {project.board}")
        return self.queue.push(
            Job(name="Zephyr Tools: Flash", command=cmd, cwd=target, env=self._env()),
            JobOptions(is_final=True, success_message="Flash complete!"),
        )

    def update(self) -> "Future[BatchResult]":
        """Queue west update followed by the Python requirements install."""
        self.require_setup()
        self.require_project()
        name = "Zephyr Tools: Update Dependencies"

        first = self.queue.push(
            Job(name=name, command=["west", "update"], cwd=str(self.workspace_root), env=self._env()),
            JobOptions(is_final=True),
        )
        self.reporter.info("Updating dependencies for project.")
        return self._then_install_requirements(
            first, name, self.workspace_root, success_message="Dependencies updated!"
        )

    def clean(self) -> bool:
        """Delete the selected project's build directory.

        Returns:
            True if a build directory was removed, False if there was none
        """
        self.require_setup()
        project = self.require_project()
        target = self._require_target(project)

        build_dir = Path(target) / "build"
        if not build_dir.exists():
            logger.info(f"Nothing to clean in {target}")
            return False

        shutil.rmtree(build_dir)
        self.reporter.info(f"Cleaning {target}")
        return True
