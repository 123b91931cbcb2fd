"""
Managed installation of the wrapped CLI.

Guarantees a compatible binary exists, installing or upgrading it through a
package manager when needed. Repeated failures are prevented by a sticky
fatal-error cache (circuit breaker): the first fatal error is raised loudly,
every later call replays it silently without doing any I/O until reset().

Lock scope: the fast path (installed, compatible, no update check due)
never takes the lock. The lock covers the fatal re-check, the package
manager presence check, the install/upgrade decision, the install/upgrade
subprocesses and post-install verification. It is never held while the
wrapped tool itself runs.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Sequence

from .common import Clock
from .config import ToolSpec
from .detection import find_executable, probe_version
from .errors import PackageManagerError, ToolNotFoundError
from .logging_config import get_logger
from .package_managers import PackageManagerClient
from .registry import RegistryClient
from .versioning import (
    Version,
    VersionRange,
    VersionRequirement,
    constraint_for,
    is_compatible,
    is_newer,
)

logger = get_logger(__name__)

UPDATE_CHECK_INTERVAL_SECONDS = 24 * 60 * 60

Locator = Callable[[str, Sequence[str]], "str | None"]
VersionProbe = Callable[[Sequence[str], float], "str | None"]


@dataclass(frozen=True)
class InstallerStatus:
    """
    Snapshot of installer state for diagnostics.

    Attributes:
        package_manager: Package manager in use
        requirement: Required version range
        fatal_error: Cached fatal error, if the circuit breaker is open
        last_update_check: Clock time of the last registry check
        next_check_in_hours: Hours until the next registry check
    """
    package_manager: str
    requirement: str
    fatal_error: str | None
    last_update_check: float | None
    next_check_in_hours: int


class Installer:
    """
    Ensures a compatible managed installation of the wrapped CLI.

    Args:
        tool: Wrapped tool identity and required version
        package_manager: Client for the package manager's CLI
        registry: Registry client for the periodic update check (None
            disables the remote check)
        clock: Time source for the update-check TTL
        update_check_interval: Seconds between registry checks
        probe_timeout: Timeout for --version probes
        locate: Executable lookup, (name, extra_dirs) -> path
        probe: Version probe, (command, timeout) -> version
    """

    def __init__(
        self,
        tool: ToolSpec,
        package_manager: PackageManagerClient,
        registry: RegistryClient | None = None,
        clock: Clock | None = None,
        update_check_interval: float = UPDATE_CHECK_INTERVAL_SECONDS,
        probe_timeout: float = 4.0,
        locate: Locator = find_executable,
        probe: VersionProbe = probe_version,
    ):
        self.tool = tool
        self.package_manager = package_manager
        self.registry = registry
        self.clock = clock or Clock()
        self.update_check_interval = update_check_interval
        self.probe_timeout = probe_timeout
        self._locate = locate
        self._probe = probe

        self._lock = threading.Lock()
        # Read without the lock on the fast path, written only under it
        self._fatal_error: str | None = None
        self._last_update_check: float | None = None
        # Package manager bin dir, remembered once a lookup has queried it
        self._bin_dir: str | None = None

    @property
    def requirement(self) -> VersionRequirement:
        return VersionRequirement.from_string(self.tool.required_version)

    @property
    def constraint(self) -> VersionRange:
        return constraint_for(self.requirement)

    @property
    def package_spec(self) -> str:
        return f"{self.tool.package}{self.constraint}"

    @property
    def fatal_error(self) -> str | None:
        return self._fatal_error

    @property
    def last_update_check(self) -> float | None:
        return self._last_update_check

    def ensure_available(self) -> str:
        """
        Ensure the CLI is installed with a compatible version.

        Installs or upgrades if needed and checks the registry for newer
        compatible patches once per update-check interval.

        Returns:
            Path to the installed CLI binary

        Raises:
            ToolNotFoundError: If the package manager is missing or
                installation fails (silent=True for replays of a cached
                fatal error)
        """
        fatal = self._fatal_error
        if fatal is not None:
            logger.debug(f"CLI unavailable due to previous fatal error: {fatal}")
            raise ToolNotFoundError(fatal, silent=True)

        path = self._fast_path()
        if path is not None:
            return path

        with self._lock:
            # Another caller may have failed while we were waiting
            fatal = self._fatal_error
            if fatal is not None:
                logger.debug(f"CLI unavailable (checked inside lock): {fatal}")
                raise ToolNotFoundError(fatal, silent=True)

            if not self.package_manager.is_available():
                manager = self.package_manager.manager
                raise self._record_fatal(
                    f"{manager.display_name} not found. Install {manager.display_name} "
                    f"({manager.homepage}) or switch to developer mode with a "
                    f"configured Python interpreter."
                )

            try:
                return self._install_or_upgrade()
            except (ToolNotFoundError, PackageManagerError) as e:
                raise self._record_fatal(e.message) from e
            except Exception as e:
                logger.exception("Unexpected error during install/upgrade")
                raise self._record_fatal(f"Unexpected error during install/upgrade: {e}") from e

    def reset(self) -> None:
        """
        Close the circuit breaker and forget the update-check timestamp.

        Used by an explicit retry action; configuration changes do not
        reset the fatal error.
        """
        with self._lock:
            if self._fatal_error is not None:
                logger.info(f"Clearing cached fatal error: {self._fatal_error}")
            self._fatal_error = None
            self._last_update_check = None

    def is_update_check_due(self) -> bool:
        """
        Check if it's time to query the registry.

        Returns:
            True if the interval has elapsed or no check happened yet
        """
        last_check = self._last_update_check
        if last_check is None:
            return True
        return self.clock.now() - last_check >= self.update_check_interval

    def next_check_in_hours(self) -> int:
        """Hours until the next registry check (rounded down)."""
        last_check = self._last_update_check
        if last_check is None:
            return 0
        remaining = self.update_check_interval - (self.clock.now() - last_check)
        return max(0, int(remaining // 3600))

    def installed_version(self) -> str | None:
        """
        Version of the installed CLI.

        Returns:
            Version string, or None if not installed or not runnable
        """
        path = self.locate_binary()
        if path is None:
            return None
        return self._probe([path], self.probe_timeout)

    def locate_binary(self) -> str | None:
        """
        Locate the installed binary.

        Fallback chain: lookup by name (PATH and user dirs), then the
        package manager's managed-binaries directory. The directory is
        queried once and remembered for later lookups.

        Returns:
            Path to the binary, or None
        """
        path = self._find_known_binary()
        if path is not None or self._bin_dir is not None:
            return path

        bin_dir = self.package_manager.bin_dir()
        if bin_dir:
            self._bin_dir = bin_dir
            logger.debug(f"Looking for {self.tool.binary} in {self.package_manager.name} bin dir {bin_dir}")
            return self._locate(self.tool.binary, (bin_dir,))
        return None

    def status(self) -> InstallerStatus:
        return InstallerStatus(
            package_manager=self.package_manager.name,
            requirement=self.package_spec,
            fatal_error=self._fatal_error,
            last_update_check=self._last_update_check,
            next_check_in_hours=self.next_check_in_hours(),
        )

    def _find_known_binary(self) -> str | None:
        # No subprocess here: only the bin dir already learned is searched
        extra_dirs = (self._bin_dir,) if self._bin_dir else ()
        return self._locate(self.tool.binary, extra_dirs)

    def _fast_path(self) -> str | None:
        path = self._find_known_binary()
        if path is None:
            return None
        version = self._probe([path], self.probe_timeout)
        if version is None or not is_compatible(version, self.requirement):
            return None
        if self.is_update_check_due():
            return None
        return path

    def _install_or_upgrade(self) -> str:
        installed = self.installed_version()

        if installed is None:
            logger.info("CLI not installed, installing...")
            self._install()
            self._last_update_check = self.clock.now()
        elif not is_compatible(installed, self.requirement):
            logger.warning(
                f"Incompatible CLI version {installed} (required {self.constraint}), upgrading..."
            )
            self._upgrade()
            self._last_update_check = self.clock.now()
        elif self.is_update_check_due():
            logger.info("Checking for patch updates...")
            latest = self._latest_compatible()
            # Stamp even when the registry is unreachable to avoid hammering it
            self._last_update_check = self.clock.now()
            if latest is not None and is_newer(latest, installed):
                logger.info(f"Newer compatible CLI {latest} available (installed {installed}), upgrading...")
                self._upgrade()
            else:
                logger.debug(f"CLI version {installed} is up to date")
        else:
            logger.debug(
                f"CLI version {installed} is compatible, "
                f"next update check in {self.next_check_in_hours()} hours"
            )

        path = self.locate_binary()
        if path is None:
            raise ToolNotFoundError(
                f"CLI installation failed: '{self.tool.binary}' binary not found after install"
            )
        return path

    def _latest_compatible(self) -> Version | None:
        if self.registry is None:
            return None
        return self.registry.latest_compatible(self.constraint)

    def _install(self) -> None:
        self.package_manager.install(self.package_spec)
        logger.info(f"CLI installed successfully ({self.package_spec})")

    def _upgrade(self) -> None:
        # Not atomic: a failed reinstall leaves the tool absent, which
        # surfaces as a fatal error rather than being retried.
        logger.info("Upgrading CLI")
        self.package_manager.uninstall(self.tool.package)
        self._install()

    def _record_fatal(self, message: str) -> ToolNotFoundError:
        self._fatal_error = message
        logger.error(f"Failed to provide CLI, caching fatal error: {message}")
        return ToolNotFoundError(message, silent=False)
