"""Provisioning pipelines.

Two pipelines are exposed:

    setup_environment()   check host prerequisites, create the Python
                          virtual environment and install west into it
    install_sdk(version)  resolve the version's manifest for this host,
                          download, verify and install the minimal SDK and
                          the arm overlay, then record the install path

Each install_sdk invocation moves through

    RESOLVED -> DOWNLOADING -> VERIFYING -> EXTRACTING -> POST_INSTALL -> COMPLETE

with any failing stage ending in FAILED. Persisted state is written only on
COMPLETE; a failed invocation leaves it exactly as it was.
"""

import logging
import subprocess
import sys
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

from zephyr_tools.config import (
    GlobalConfig,
    StateError,
    StateStore,
    WorkspaceConfig,
    shell_environment,
    virtualenv_path_entries,
)
from zephyr_tools.packages import (
    ArchiveInstaller,
    Cache,
    ChecksumError,
    DownloadDescriptor,
    DownloadError,
    ExtractionError,
    ManifestError,
    ManifestStore,
    PackageDownloader,
    PlatformDetector,
    PlatformError,
)
from zephyr_tools.packages.manifest import resolve
from zephyr_tools.reporting import Reporter

from .prerequisites import PrerequisiteChecker, PrerequisiteError

logger = logging.getLogger(__name__)

WEST_PACKAGE = "west"


class ProvisioningError(Exception):
    """Raised when a provisioning pipeline can't complete."""

    pass


class ProvisioningBusyError(ProvisioningError):
    """Raised when a pipeline is started while another is running."""

    pass


class ProvisionStage(Enum):
    """Stages of an SDK install."""

    RESOLVED = "resolved"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    EXTRACTING = "extracting"
    POST_INSTALL = "post_install"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class ProvisioningResult:
    """Outcome of a provisioning pipeline.

    Attributes:
        success: Whether the pipeline completed
        message: Human-readable summary
        stage: Last stage reached (COMPLETE or FAILED)
        failed_stage: Stage that was running when the pipeline failed
        version: SDK version for install_sdk
        install_path: Where the SDK was installed
    """

    success: bool
    message: str
    stage: ProvisionStage
    failed_stage: Optional[ProvisionStage] = None
    version: Optional[str] = None
    install_path: Optional[Path] = None


class ProvisioningDriver:
    """Runs the setup and SDK install pipelines against persisted state."""

    # Coarse progress increments (percent points)
    RESOLVE_INCREMENT = 10
    FETCH_INCREMENT = 20
    EXTRACT_INCREMENT = 15
    POST_INSTALL_INCREMENT = 5
    COMMIT_INCREMENT = 10

    def __init__(
        self,
        cache: Cache,
        global_store: StateStore,
        global_config: GlobalConfig,
        workspace_store: StateStore,
        workspace_config: WorkspaceConfig,
        reporter: Optional[Reporter] = None,
        downloader: Optional[PackageDownloader] = None,
        installer: Optional[ArchiveInstaller] = None,
        manifests: Optional[ManifestStore] = None,
    ):
        """Initialize the driver.

        Args:
            cache: Tools directory layout
            global_store: Store the global record is saved to
            global_config: Loaded global record
            workspace_store: Store the workspace record is saved to
            workspace_config: Loaded workspace record
            reporter: Receives progress and messages
            downloader: Download cache (defaults to the tools downloads dir)
            installer: Archive installer (defaults to one using the shell environment)
            manifests: Manifest store (defaults to the tools manifests dir)
        """
        self.cache = cache
        self.global_store = global_store
        self.global_config = global_config
        self.workspace_store = workspace_store
        self.workspace_config = workspace_config
        self.reporter = reporter or Reporter()
        self.downloader = downloader or PackageDownloader(cache.downloads_dir)
        self.installer = installer
        self.manifests = manifests or ManifestStore(cache.manifests_dir)
        self._busy = threading.Lock()

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        if not self._busy.acquire(blocking=False):
            raise ProvisioningBusyError("Another provisioning pipeline is already running")
        try:
            yield
        finally:
            self._busy.release()

    def _shell_env(self) -> dict:
        return shell_environment(self.global_config, self.workspace_config)

    # ------------------------------------------------------------------
    # Environment setup
    # ------------------------------------------------------------------

    def setup_environment(self, checker: Optional[PrerequisiteChecker] = None) -> ProvisioningResult:
        """Check prerequisites, create the virtual environment and install west.

        Raises:
            ProvisioningBusyError: If another pipeline is running
        """
        with self._exclusive():
            self.reporter.progress(5, "Checking prerequisites")
            # Prerequisites are looked up without the previous setup's overlay
            checker = checker or PrerequisiteChecker(env=shell_environment(GlobalConfig()))
            try:
                for check in (checker.check_git, checker.check_python, checker.check_pip, checker.check_venv):
                    check()
                    self.reporter.progress(5, f"{check.__name__[len('check_'):]} OK")
            except PrerequisiteError as e:
                logger.error(f"Prerequisite missing: {e}")
                message = f"{e} {e.hint}".strip()
                self.reporter.error(message)
                return ProvisioningResult(success=False, message=message, stage=ProvisionStage.FAILED)

            self.cache.ensure_directories()
            env_dir = self.cache.python_env_dir

            step = self._run_setup_step(
                "create virtual environment",
                [checker.python, "-m", "venv", str(env_dir)],
            )
            if step is not None:
                return step
            self.reporter.progress(5, "Virtual environment created")

            step = self._run_setup_step(
                f"install {WEST_PACKAGE}",
                [str(self._venv_python(env_dir)), "-m", "pip", "install", WEST_PACKAGE],
            )
            if step is not None:
                return step
            self.reporter.progress(5, f"{WEST_PACKAGE} installed")

            previous_env = self.global_config.env
            previous_is_setup = self.global_config.is_setup
            self.global_config.env = {
                "VIRTUAL_ENV": str(env_dir),
                "PATH": virtualenv_path_entries(env_dir),
            }
            self.global_config.is_setup = True
            try:
                self.global_store.save(self.global_config)
            except StateError as e:
                self.global_config.env = previous_env
                self.global_config.is_setup = previous_is_setup
                return self._fail(None, str(e))

            self.reporter.progress(100, "Setup complete")
            self.reporter.info("Zephyr environment setup complete!")
            return ProvisioningResult(success=True, message="Setup complete", stage=ProvisionStage.COMPLETE)

    @staticmethod
    def _venv_python(env_dir: Path) -> Path:
        if sys.platform == "win32":
            return env_dir / "Scripts" / "python.exe"
        return env_dir / "bin" / "python"

    def _run_setup_step(self, description: str, command: list) -> Optional[ProvisioningResult]:
        logger.info(f"Setup: {description}: {' '.join(command)}")
        try:
            result = subprocess.run(command, capture_output=True, text=True, env=self._shell_env())
        except OSError as e:
            return self._fail(None, f"Unable to {description}: {e}")

        if result.stdout:
            logger.debug(result.stdout)
        if result.returncode != 0:
            logger.error(f"stdout: {result.stdout}\nstderr: {result.stderr}")
            return self._fail(None, f"Unable to {description} (exit code {result.returncode})")
        return None

    # ------------------------------------------------------------------
    # SDK install
    # ------------------------------------------------------------------

    def available_versions(self) -> list:
        """SDK versions with a local manifest."""
        return self.manifests.versions()

    def install_sdk(self, version: str, allow_fetch: bool = True) -> ProvisioningResult:
        """Download and install an SDK version, then select it.

        Args:
            version: SDK version, e.g. '0.16.1'
            allow_fetch: Fetch the manifest from the release if not stored locally

        Returns:
            ProvisioningResult

        Raises:
            ProvisioningBusyError: If another pipeline is running
        """
        with self._exclusive():
            self.reporter.info(f"Installing zephyr-sdk-{version} toolchain...")
            try:
                platform_name, arch = PlatformDetector.detect_sdk_platform()
                text = self.manifests.load(version, allow_fetch=allow_fetch)
                resolution = resolve(text, version, platform_name, arch)
            except (PlatformError, ManifestError) as e:
                return self._fail(ProvisionStage.RESOLVED, str(e), version)

            self.reporter.progress(self.RESOLVE_INCREMENT, "Resolved SDK packages")
            installer = self.installer or ArchiveInstaller(env=self._shell_env())

            for descriptor in resolution.descriptors:
                failure = self._process_download(descriptor, installer, version)
                if failure is not None:
                    return failure

            install_path = self.cache.tools_dir / resolution.install_name
            return self._commit_install(version, platform_name, arch, install_path)

    def _process_download(
        self,
        descriptor: DownloadDescriptor,
        installer: ArchiveInstaller,
        version: str,
    ) -> Optional[ProvisioningResult]:
        """Download, verify, extract and post-install one descriptor.

        Returns:
            None on success, the failed result otherwise
        """
        stage = ProvisionStage.VERIFYING

        def on_stage(name: str) -> None:
            nonlocal stage
            stage = ProvisionStage.DOWNLOADING if name == "downloading" else ProvisionStage.VERIFYING
            logger.info(f"{descriptor.filename}: {stage.value}")

        try:
            archive_path = self.downloader.ensure(descriptor, on_stage=on_stage)
        except ChecksumError as e:
            return self._fail(ProvisionStage.VERIFYING, f"Error downloading {descriptor.filename}. {e}", version)
        except DownloadError as e:
            return self._fail(ProvisionStage.DOWNLOADING, str(e), version)
        self.reporter.progress(self.FETCH_INCREMENT, f"Verified {descriptor.filename}")

        try:
            extracted = installer.extract(descriptor, archive_path, self.cache.tools_dir)
        except ExtractionError as e:
            return self._fail(ProvisionStage.EXTRACTING, str(e), version)
        if not extracted:
            return self._fail(
                ProvisionStage.EXTRACTING, f"Error extracting {descriptor.filename}", version
            )
        self.reporter.progress(self.EXTRACT_INCREMENT, f"Extracted {descriptor.filename}")

        if not installer.post_install(descriptor, self.cache.tools_dir):
            return self._fail(
                ProvisionStage.POST_INSTALL,
                f"Post-install command failed for {descriptor.filename}",
                version,
            )
        self.reporter.progress(self.POST_INSTALL_INCREMENT)
        return None

    def _commit_install(
        self, version: str, platform_name: str, arch: str, install_path: Path
    ) -> ProvisioningResult:
        previous_global = GlobalConfig.from_dict(self.global_config.to_dict())
        previous_selection = self.workspace_config.selected_toolchain

        self.global_config.toolchains[version] = str(install_path)
        self.global_config.platform_name = platform_name
        self.global_config.platform_arch = arch
        self.workspace_config.selected_toolchain = version
        global_saved = False
        try:
            self.global_store.save(self.global_config)
            global_saved = True
            self.workspace_store.save(self.workspace_config)
        except StateError as e:
            self.global_config.toolchains = previous_global.toolchains
            self.global_config.platform_name = previous_global.platform_name
            self.global_config.platform_arch = previous_global.platform_arch
            self.workspace_config.selected_toolchain = previous_selection
            if global_saved:
                self._restore_global()
            return self._fail(ProvisionStage.COMPLETE, str(e), version)

        self.reporter.progress(self.COMMIT_INCREMENT, "Recorded toolchain")
        self.reporter.info(f"Installing zephyr-sdk-{version} complete")
        return ProvisioningResult(
            success=True,
            message=f"Installed zephyr-sdk-{version}",
            stage=ProvisionStage.COMPLETE,
            version=version,
            install_path=install_path,
        )

    def _restore_global(self) -> None:
        """Write the rolled back global record over the one already saved."""
        try:
            self.global_store.save(self.global_config)
        except StateError as e:
            logger.error(f"Unable to restore {self.global_store.path}: {e}")

    def _fail(
        self,
        stage: Optional[ProvisionStage],
        message: str,
        version: Optional[str] = None,
    ) -> ProvisioningResult:
        where = f" during {stage.value}" if stage is not None else ""
        logger.error(f"Provisioning failed{where}: {message}")
        self.reporter.error(message)
        return ProvisioningResult(
            success=False,
            message=message,
            stage=ProvisionStage.FAILED,
            failed_stage=stage,
            version=version,
        )
