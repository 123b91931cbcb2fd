"""
Package manager registry and client.

Thin wrapper over a package manager's own CLI (presence check, install,
uninstall, managed-bin directory query). Each call is a separate short
subprocess with its own timeout. Output is logged; only the bin-directory
query is parsed.
"""

from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass

from .common import process_env
from .detection import find_executable
from .errors import PackageManagerError
from .logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PackageManager:
    """
    Package manager definition.

    Attributes:
        name: Package manager identifier ("pipx", "uv")
        display_name: Human-readable name
        check_command: Command to check if manager is available
        install_command_template: Install command ({package} placeholder
            receives the requirement spec, e.g. "tool>=0.10.0,<0.11.0")
        uninstall_command_template: Uninstall command ({package} placeholder)
        bin_dir_command: Command printing the managed binaries directory
        homepage: Where users can get the manager
    """
    name: str
    display_name: str
    check_command: tuple[str, ...]
    install_command_template: tuple[str, ...]
    uninstall_command_template: tuple[str, ...]
    bin_dir_command: tuple[str, ...]
    homepage: str = ""

    def get_install_command(self, package_spec: str) -> tuple[str, ...]:
        return tuple(part.replace("{package}", package_spec) for part in self.install_command_template)

    def get_uninstall_command(self, package: str) -> tuple[str, ...]:
        return tuple(part.replace("{package}", package) for part in self.uninstall_command_template)


PACKAGE_MANAGERS = (
    PackageManager(
        name="pipx",
        display_name="pipx",
        check_command=("pipx", "--version"),
        install_command_template=("pipx", "install", "{package}"),
        uninstall_command_template=("pipx", "uninstall", "{package}"),
        bin_dir_command=("pipx", "environment", "--value", "PIPX_BIN_DIR"),
        homepage="https://pipx.pypa.io/stable/",
    ),
    PackageManager(
        name="uv",
        display_name="uv",
        check_command=("uv", "--version"),
        install_command_template=("uv", "tool", "install", "{package}"),
        uninstall_command_template=("uv", "tool", "uninstall", "{package}"),
        bin_dir_command=("uv", "tool", "dir", "--bin"),
        homepage="https://docs.astral.sh/uv/",
    ),
)

_PM_BY_NAME = {pm.name: pm for pm in PACKAGE_MANAGERS}


def get_package_manager(name: str) -> PackageManager | None:
    """
    Get package manager by name.

    Args:
        name: Package manager name

    Returns:
        PackageManager object, or None if not found
    """
    return _PM_BY_NAME.get(name)


@dataclass(frozen=True)
class CommandResult:
    """
    Result of a single package manager subprocess.

    Attributes:
        command: Command that was executed
        success: Whether the command exited with 0
        stdout: Standard output
        stderr: Standard error
        exit_code: Process exit code (-1 if it never ran or timed out)
        duration_seconds: Time taken
        error_message: Human-readable error message if failed
    """
    command: tuple[str, ...]
    success: bool
    stdout: str
    stderr: str
    exit_code: int
    duration_seconds: float
    error_message: str | None = None


def run_command(command: tuple[str, ...], timeout: float) -> CommandResult:
    """
    Execute a package manager command.

    Args:
        command: Command and arguments
        timeout: Timeout in seconds (the child is killed on expiry)

    Returns:
        CommandResult with execution outcome
    """
    start_time = time.time()
    logger.debug(f"Executing: {' '.join(command)}")

    try:
        result = subprocess.run(
            list(command),
            capture_output=True,
            stdin=subprocess.DEVNULL,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            check=False,
            env=process_env(),
        )
    except subprocess.TimeoutExpired:
        return CommandResult(
            command=command,
            success=False,
            stdout="",
            stderr="",
            exit_code=-1,
            duration_seconds=time.time() - start_time,
            error_message=f"Command timed out after {timeout}s",
        )
    except FileNotFoundError:
        return CommandResult(
            command=command,
            success=False,
            stdout="",
            stderr="",
            exit_code=-1,
            duration_seconds=time.time() - start_time,
            error_message=f"Command not found: {command[0]}",
        )
    except OSError as e:
        return CommandResult(
            command=command,
            success=False,
            stdout="",
            stderr="",
            exit_code=-1,
            duration_seconds=time.time() - start_time,
            error_message=f"Could not start {command[0]}: {e}",
        )

    duration = time.time() - start_time
    success = result.returncode == 0

    error_msg = None
    if not success:
        error_msg = f"Command failed with exit code {result.returncode}"
        if result.stderr:
            error_msg += f": {result.stderr.strip()[:500]}"

    if result.stdout:
        logger.debug(f"{command[0]} stdout:\n{result.stdout}")
    if result.stderr:
        logger.debug(f"{command[0]} stderr:\n{result.stderr}")

    return CommandResult(
        command=command,
        success=success,
        stdout=result.stdout,
        stderr=result.stderr,
        exit_code=result.returncode,
        duration_seconds=duration,
        error_message=error_msg,
    )


class PackageManagerClient:
    """
    Runs a package manager's CLI for the installer.

    Args:
        manager: Package manager definition
        probe_timeout: Timeout for presence check and bin-dir query
        install_timeout: Timeout for install
        uninstall_timeout: Timeout for uninstall
    """

    def __init__(
        self,
        manager: PackageManager,
        probe_timeout: float = 4.0,
        install_timeout: float = 120.0,
        uninstall_timeout: float = 60.0,
    ):
        self.manager = manager
        self.probe_timeout = probe_timeout
        self.install_timeout = install_timeout
        self.uninstall_timeout = uninstall_timeout

    @classmethod
    def for_name(cls, name: str, **timeouts: float) -> PackageManagerClient:
        """
        Create a client for a registered package manager.

        Raises:
            ValueError: If the package manager is unknown
        """
        manager = get_package_manager(name)
        if manager is None:
            raise ValueError(f"Unknown package manager: {name}")
        return cls(manager, **timeouts)

    @property
    def name(self) -> str:
        return self.manager.name

    def _command(self, command: tuple[str, ...]) -> tuple[str, ...]:
        # The manager itself may live outside PATH (e.g. ~/.local/bin)
        executable = find_executable(command[0]) or command[0]
        return (executable, *command[1:])

    def is_available(self) -> bool:
        """
        Check if the package manager can be executed.

        Returns:
            True if its check command exits with 0
        """
        result = run_command(self._command(self.manager.check_command), self.probe_timeout)
        if not result.success:
            logger.debug(f"{self.name} availability check failed: {result.error_message}")
        return result.success

    def install(self, package_spec: str) -> CommandResult:
        """
        Install a package.

        Args:
            package_spec: Requirement spec (e.g., "listing-generator>=0.10.0,<0.11.0")

        Raises:
            PackageManagerError: If the install command fails
        """
        logger.info(f"Installing {package_spec} with {self.name}")
        result = run_command(self._command(self.manager.get_install_command(package_spec)), self.install_timeout)
        if not result.success:
            raise PackageManagerError(
                f"{self.name} install failed: {result.error_message}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        return result

    def uninstall(self, package: str) -> CommandResult:
        """
        Uninstall a package.

        Raises:
            PackageManagerError: If the uninstall command fails
        """
        logger.info(f"Uninstalling {package} with {self.name}")
        result = run_command(self._command(self.manager.get_uninstall_command(package)), self.uninstall_timeout)
        if not result.success:
            raise PackageManagerError(
                f"{self.name} uninstall failed: {result.error_message}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )
        return result

    def bin_dir(self) -> str | None:
        """
        Directory where the manager places installed binaries.

        Returns:
            Directory path, or None if the query fails
        """
        result = run_command(self._command(self.manager.bin_dir_command), self.probe_timeout)
        if not result.success:
            return None
        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        return lines[0] if lines else None
