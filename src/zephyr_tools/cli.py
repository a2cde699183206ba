"""
Command-line interface for zephyr-tools.

This module provides the `zephyr-tools` CLI for provisioning the Zephyr SDK
and driving west builds.
"""

import argparse
import sys
from concurrent.futures import Future
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from zephyr_tools import __version__
from zephyr_tools.cli_utils import EXPECTED_ERRORS, ErrorFormatter, PathValidator, parse_on_off
from zephyr_tools.config import GlobalConfig, StateStore, WorkspaceConfig
from zephyr_tools.log_utils import setup_logging
from zephyr_tools.packages import Cache
from zephyr_tools.project import RUNNERS, ProjectCommands
from zephyr_tools.provisioning import ProvisioningDriver
from zephyr_tools.reporting import ConsoleReporter
from zephyr_tools.tasks import BatchResult, BatchStatus, TaskQueue


@dataclass
class SetupArgs:
    """Arguments for the setup command."""

    workspace: Path
    verbose: bool = False


@dataclass
class SdkArgs:
    """Arguments for the install-sdk and set-sdk commands."""

    workspace: Path
    version: Optional[str] = None
    list_versions: bool = False
    offline: bool = False
    verbose: bool = False


@dataclass
class InitRepoArgs:
    """Arguments for the init-repo command."""

    workspace: Path
    dest: Path
    url: Optional[str] = None
    branch: Optional[str] = None
    verbose: bool = False


@dataclass
class ProjectArgs:
    """Arguments for the project selection commands."""

    workspace: Path
    command: str
    value: Optional[str] = None
    board_root: Optional[Path] = None
    params: Optional[str] = None
    verbose: bool = False


@dataclass
class RunArgs:
    """Arguments for the run, status and reset commands."""

    workspace: Path
    command: str
    verbose: bool = False


class Session:
    """Persisted state and services for one CLI invocation."""

    def __init__(self, workspace: Path, verbose: bool = False):
        self.workspace = workspace.resolve()
        self.verbose = verbose
        self.cache = Cache()
        self.log_file = setup_logging(self.cache.tools_dir, verbose=verbose)
        self.reporter = ConsoleReporter(show_output=True)

        self.global_store: StateStore[GlobalConfig] = StateStore.for_global(self.cache.tools_dir)
        self.global_config = self.global_store.load()
        self.workspace_store: StateStore[WorkspaceConfig] = StateStore.for_workspace(self.workspace)
        self.workspace_config = self.workspace_store.load()

        self._queue: Optional[TaskQueue] = None

    @property
    def queue(self) -> TaskQueue:
        if self._queue is None:
            self._queue = TaskQueue(reporter=self.reporter)
        return self._queue

    def driver(self) -> ProvisioningDriver:
        return ProvisioningDriver(
            cache=self.cache,
            global_store=self.global_store,
            global_config=self.global_config,
            workspace_store=self.workspace_store,
            workspace_config=self.workspace_config,
            reporter=self.reporter,
        )

    def commands(self) -> ProjectCommands:
        return ProjectCommands(
            workspace_root=self.workspace,
            global_config=self.global_config,
            workspace_store=self.workspace_store,
            workspace_config=self.workspace_config,
            queue=self.queue,
            reporter=self.reporter,
        )

    def wait(self, future: "Future[BatchResult]") -> BatchResult:
        """Block until a batch resolves, cancelling the queue on Ctrl-C."""
        try:
            return future.result()
        except KeyboardInterrupt:
            self.queue.cancel()
            self.queue.wait_idle(timeout=30)
            raise


def _exit_with_batch(title: str, result: BatchResult, session: Session) -> None:
    if result.status is BatchStatus.SUCCEEDED:
        sys.exit(0)
    if result.status is BatchStatus.CANCELLED:
        ErrorFormatter.print_warning(f"{title} cancelled")
        sys.exit(130)
    ErrorFormatter.print_error(f"{title} failed!", result.message or "")
    print(f"See {session.log_file} for details.")
    sys.exit(1)


def setup_command(args: SetupArgs) -> None:
    """Install the base environment: check host tools, create the venv, install west.

    Examples:
        zephyr-tools setup
    """
    session = None
    try:
        session = Session(args.workspace, args.verbose)
        result = session.driver().setup_environment()
        if result.success:
            ErrorFormatter.print_success("Setup complete!")
            sys.exit(0)
        ErrorFormatter.print_error("Setup failed!", result.message)
        print(f"See {session.log_file} for details.")
        sys.exit(1)
    except EXPECTED_ERRORS as e:
        ErrorFormatter.handle_command_error("Setup failed!", e, session.log_file if session else None)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def install_sdk_command(args: SdkArgs) -> None:
    """Download, verify and install a Zephyr SDK version.

    Examples:
        zephyr-tools install-sdk 0.16.1
        zephyr-tools install-sdk --list
        zephyr-tools install-sdk 0.16.1 --offline
    """
    session = None
    try:
        session = Session(args.workspace, args.verbose)
        driver = session.driver()

        if args.list_versions or not args.version:
            versions = driver.available_versions()
            if not versions:
                print("No local manifests. Pass a version to fetch its manifest.")
            for version in versions:
                marker = "*" if version in session.global_config.toolchains else " "
                print(f" {marker} {version}")
            sys.exit(0)

        result = driver.install_sdk(args.version, allow_fetch=not args.offline)
        if result.success:
            ErrorFormatter.print_success(result.message)
            print(f"Installed to: {result.install_path}")
            sys.exit(0)
        ErrorFormatter.print_error("SDK install failed!", result.message)
        print(f"See {session.log_file} for details.")
        sys.exit(1)
    except EXPECTED_ERRORS as e:
        ErrorFormatter.handle_command_error("SDK install failed!", e, session.log_file if session else None)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def set_sdk_command(args: SdkArgs) -> None:
    """Select an installed SDK for the workspace.

    Examples:
        zephyr-tools set-sdk 0.16.1
    """
    session = None
    try:
        session = Session(args.workspace, args.verbose)
        session.commands().set_sdk(args.version or "")
        sys.exit(0)
    except EXPECTED_ERRORS as e:
        ErrorFormatter.handle_command_error("Set SDK failed!", e, session.log_file if session else None)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def init_repo_command(args: InitRepoArgs) -> None:
    """Initialize a west workspace and install its Python requirements.

    Examples:
        zephyr-tools init-repo ./my-app --url https://github.com/org/app.git
        zephyr-tools init-repo ./my-app --url https://github.com/org/app.git --branch main
    """
    session = None
    try:
        session = Session(args.workspace, args.verbose)
        future = session.commands().init_repo(args.dest, url=args.url, branch=args.branch)
        _exit_with_batch("Init repo", session.wait(future), session)
    except EXPECTED_ERRORS as e:
        ErrorFormatter.handle_command_error("Init repo failed!", e, session.log_file if session else None)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def project_command(args: ProjectArgs) -> None:
    """Change the project, board, runner or automatic selection of the workspace.

    Examples:
        zephyr-tools add-project ./app
        zephyr-tools set-project app
        zephyr-tools change-board nrf52840dk_nrf52840
        zephyr-tools change-board my_board --board-root ./boards
        zephyr-tools change-runner jlink --params "--speed 4000"
        zephyr-tools auto-select off
    """
    session = None
    try:
        session = Session(args.workspace, args.verbose)
        commands = session.commands()

        if args.command == "add-project":
            commands.add_project(Path(args.value or "."))
        elif args.command == "set-project":
            commands.set_project(args.value or "")
        elif args.command == "change-board":
            if not args.value:
                commands.require_project()
                for board_dir in commands.board_directories():
                    print(f"{board_dir}:")
                    for board in commands.boards(board_dir):
                        print(f"  {board}")
                sys.exit(0)
            commands.change_board(args.value, args.board_root)
        elif args.command == "change-runner":
            commands.change_runner(args.value or "default", args.params)
        elif args.command == "auto-select":
            try:
                enabled = parse_on_off(args.value or "")
            except ValueError as e:
                ErrorFormatter.print_error("Invalid value", str(e))
                sys.exit(2)
            commands.set_automatic_selection(enabled)
            print(f"Automatic project selection: {'on' if enabled else 'off'}")
        sys.exit(0)
    except EXPECTED_ERRORS as e:
        ErrorFormatter.handle_command_error(f"{args.command} failed!", e, session.log_file if session else None)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def run_command(args: RunArgs) -> None:
    """Run a west command for the selected project.

    The project containing the current directory is selected first when
    automatic project selection is on.

    Examples:
        zephyr-tools build
        zephyr-tools build-pristine
        zephyr-tools flash
        zephyr-tools update
        zephyr-tools clean
    """
    titles = {
        "build": "Build",
        "build-pristine": "Pristine build",
        "flash": "Flash",
        "update": "Update",
        "clean": "Clean",
    }
    title = titles[args.command]
    session = None
    try:
        session = Session(args.workspace, args.verbose)
        commands = session.commands()
        commands.select_project_for_path(Path.cwd())

        if args.command == "clean":
            if not commands.clean():
                print("Nothing to clean.")
            sys.exit(0)

        if args.command == "build":
            future = commands.build()
        elif args.command == "build-pristine":
            future = commands.build(pristine=True)
        elif args.command == "flash":
            future = commands.flash()
        else:
            future = commands.update()
        _exit_with_batch(title, session.wait(future), session)
    except EXPECTED_ERRORS as e:
        ErrorFormatter.handle_command_error(f"{title} failed!", e, session.log_file if session else None)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def status_command(args: RunArgs) -> None:
    """Show setup state, installed SDKs and workspace projects."""
    try:
        session = Session(args.workspace, args.verbose)
        global_config = session.global_config
        workspace_config = session.workspace_config

        print(f"zephyr-tools {__version__}")
        print(f"Tools directory: {session.cache.tools_dir}")
        print(f"Setup:           {'yes' if global_config.is_setup else 'no'}")
        if global_config.platform_name:
            print(f"Platform:        {global_config.platform_name}-{global_config.platform_arch}")
        print()

        print("SDKs:")
        if not global_config.toolchains:
            print("  (none installed)")
        for version, path in sorted(global_config.toolchains.items()):
            marker = "*" if version == workspace_config.selected_toolchain else " "
            print(f"  {marker} {version}  {path}")
        print()

        print(f"Workspace: {session.workspace}")
        print(f"Automatic project selection: {'on' if workspace_config.automatic_project_selection else 'off'}")
        if not workspace_config.projects:
            print("  (no projects)")
        for name, project in sorted(workspace_config.projects.items()):
            marker = "*" if name == workspace_config.selected_project else " "
            print(f"  {marker} {name}  {project.path}")
            print(f"      board:  {project.board or '-'}")
            print(f"      runner: {project.runner or 'default'}{' ' + project.runner_params if project.runner_params else ''}")
            print(f"      init:   {'yes' if project.is_init else 'no'}")
        print()
        print(f"Log file: {session.log_file}")
        sys.exit(0)
    except EXPECTED_ERRORS as e:
        ErrorFormatter.handle_command_error("Status failed!", e)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def reset_command(args: RunArgs) -> None:
    """Clear the global and workspace state records.

    Installed SDKs and the virtual environment stay on disk; run setup again
    afterwards.

    Examples:
        zephyr-tools reset
    """
    log_file = None
    try:
        cache = Cache()
        log_file = setup_logging(cache.tools_dir, verbose=args.verbose)
        StateStore.for_global(cache.tools_dir).reset()
        StateStore.for_workspace(args.workspace.resolve()).reset()
        ErrorFormatter.print_success("State reset. Run `zephyr-tools setup` to set up again.")
        sys.exit(0)
    except EXPECTED_ERRORS as e:
        ErrorFormatter.handle_command_error("Reset failed!", e, log_file)
    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="zephyr-tools",
        description="zephyr-tools - Zephyr SDK provisioning and west front end",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"zephyr-tools {__version__}",
    )

    # Options shared by every command
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-w",
        "--workspace",
        type=Path,
        default=Path.cwd(),
        help="Workspace directory (default: current directory)",
    )
    common.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Echo log output to stderr",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("setup", parents=[common], help="Check host tools, create the venv and install west")

    install_parser = subparsers.add_parser("install-sdk", parents=[common], help="Install a Zephyr SDK version")
    install_parser.add_argument("version", nargs="?", default=None, help="SDK version, e.g. 0.16.1")
    install_parser.add_argument(
        "-l",
        "--list",
        dest="list_versions",
        action="store_true",
        help="List SDK versions with a local manifest",
    )
    install_parser.add_argument(
        "--offline",
        action="store_true",
        help="Don't fetch the manifest from the release",
    )

    set_sdk_parser = subparsers.add_parser("set-sdk", parents=[common], help="Select an installed SDK")
    set_sdk_parser.add_argument("version", help="Installed SDK version")

    init_parser = subparsers.add_parser("init-repo", parents=[common], help="Initialize a west workspace")
    init_parser.add_argument("dest", type=Path, help="Workspace folder to initialize")
    init_parser.add_argument("-u", "--url", default=None, help="Manifest repository URL")
    init_parser.add_argument("-b", "--branch", default=None, help="Manifest revision")

    add_parser = subparsers.add_parser("add-project", parents=[common], help="Register a Zephyr application")
    add_parser.add_argument("value", nargs="?", default=None, metavar="path", help="Application folder")

    set_project_parser = subparsers.add_parser("set-project", parents=[common], help="Select a project")
    set_project_parser.add_argument("value", metavar="name", help="Project name")

    board_parser = subparsers.add_parser(
        "change-board", parents=[common], help="Set the board (list boards when omitted)"
    )
    board_parser.add_argument("value", nargs="?", default=None, metavar="board", help="Board name")
    board_parser.add_argument(
        "--board-root",
        type=Path,
        default=None,
        help="Board directory defining the board (default: search the workspace)",
    )

    runner_parser = subparsers.add_parser("change-runner", parents=[common], help="Set the flash runner")
    runner_parser.add_argument("value", metavar="runner", choices=RUNNERS, help="Flash runner")
    runner_parser.add_argument("-p", "--params", default=None, help="Extra runner arguments")

    auto_parser = subparsers.add_parser(
        "auto-select", parents=[common], help="Turn automatic project selection on or off"
    )
    auto_parser.add_argument("value", metavar="on|off", help="on or off")

    subparsers.add_parser("status", parents=[common], help="Show setup and workspace state")
    subparsers.add_parser("reset", parents=[common], help="Clear global and workspace state")
    subparsers.add_parser("build", parents=[common], help="Build the selected project")
    subparsers.add_parser("build-pristine", parents=[common], help="Pristine build of the selected project")
    subparsers.add_parser("flash", parents=[common], help="Flash the selected project")
    subparsers.add_parser("update", parents=[common], help="Run west update and install requirements")
    subparsers.add_parser("clean", parents=[common], help="Delete the selected project's build directory")

    return parser


def main(argv: Optional[list] = None) -> None:
    """zephyr-tools - Zephyr SDK provisioning and west front end."""
    parser = build_parser()
    parsed_args = parser.parse_args(argv)

    # If no command specified, show help
    if not parsed_args.command:
        parser.print_help()
        sys.exit(0)

    PathValidator.validate_directory(parsed_args.workspace)

    command = parsed_args.command
    if command == "setup":
        setup_command(SetupArgs(workspace=parsed_args.workspace, verbose=parsed_args.verbose))
    elif command in ("install-sdk", "set-sdk"):
        sdk_args = SdkArgs(
            workspace=parsed_args.workspace,
            version=parsed_args.version,
            list_versions=getattr(parsed_args, "list_versions", False),
            offline=getattr(parsed_args, "offline", False),
            verbose=parsed_args.verbose,
        )
        if command == "install-sdk":
            install_sdk_command(sdk_args)
        else:
            set_sdk_command(sdk_args)
    elif command == "init-repo":
        init_repo_command(
            InitRepoArgs(
                workspace=parsed_args.workspace,
                dest=parsed_args.dest,
                url=parsed_args.url,
                branch=parsed_args.branch,
                verbose=parsed_args.verbose,
            )
        )
    elif command in ("add-project", "set-project", "change-board", "change-runner", "auto-select"):
        project_command(
            ProjectArgs(
                workspace=parsed_args.workspace,
                command=command,
                value=parsed_args.value,
                board_root=getattr(parsed_args, "board_root", None),
                params=getattr(parsed_args, "params", None),
                verbose=parsed_args.verbose,
            )
        )
    elif command == "status":
        status_command(RunArgs(workspace=parsed_args.workspace, command=command, verbose=parsed_args.verbose))
    elif command == "reset":
        reset_command(RunArgs(workspace=parsed_args.workspace, command=command, verbose=parsed_args.verbose))
    else:
        run_command(RunArgs(workspace=parsed_args.workspace, command=command, verbose=parsed_args.verbose))


if __name__ == "__main__":
    main()
