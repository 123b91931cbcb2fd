"""
Resolution of how to invoke the wrapped CLI.

Strategies, first success wins:
1. Explicit executable path (cli_path)
2. Configured Python interpreter + module prefix, when the configuration
   trusts the system environment (developer mode or install_strategy=system)
3. Managed binary from the Installer (install/upgrade as needed)

The first successful RunSpec is cached until invalidate_cache().
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Sequence

from .config import Config
from .detection import resolve_executable
from .errors import ToolNotFoundError
from .installer import Installer
from .logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RunSpec:
    """
    How to invoke the CLI.

    Attributes:
        command: Executable path (e.g., "/home/u/.local/bin/listing-generator"
            or "/usr/bin/python3")
        prefix_args: Arguments placed before call arguments (e.g., ("-m", "lg.cli"))
    """
    command: str
    prefix_args: tuple[str, ...] = ()

    def argv(self, args: Sequence[str] = ()) -> list[str]:
        return [self.command, *self.prefix_args, *args]

    def __str__(self) -> str:
        return " ".join(self.argv())


class Resolver:
    """
    Chooses and caches the RunSpec used for every CLI invocation.

    Args:
        config: Current configuration
        installer: Managed installer (None when the install strategy does
            not use a package manager)
        resolve_path: Executable lookup for configured paths/names
    """

    def __init__(
        self,
        config: Config,
        installer: Installer | None = None,
        resolve_path: Callable[[str], "str | None"] = resolve_executable,
    ):
        self.config = config
        self.installer = installer
        self._resolve_path = resolve_path

        self._cached_spec: RunSpec | None = None
        self._resolve_lock = threading.Lock()
        self._generation_lock = threading.Lock()
        self._generation = 0

    @property
    def cached_spec(self) -> RunSpec | None:
        return self._cached_spec

    def resolve(self) -> RunSpec:
        """
        Resolve the CLI run specification, using the cache when possible.

        Returns:
            RunSpec for the CLI

        Raises:
            ToolNotFoundError: If no strategy produced a usable executable
        """
        cached = self._cached_spec
        if cached is not None:
            logger.debug(f"Using cached CLI spec: {cached}")
            return cached

        with self._resolve_lock:
            cached = self._cached_spec
            if cached is not None:
                return cached

            generation = self._generation
            spec = self._resolve_uncached()

            with self._generation_lock:
                # Don't publish a spec computed from settings that were
                # invalidated while we were resolving
                if generation == self._generation:
                    self._cached_spec = spec

        logger.info(f"Resolved CLI spec: {spec}")
        return spec

    def invalidate_cache(self) -> None:
        """Drop the cached spec. Called when settings change."""
        logger.debug("Invalidating CLI spec cache")
        with self._generation_lock:
            self._generation += 1
            self._cached_spec = None

    def reconfigure(self, config: Config, installer: Installer | None) -> None:
        """Swap in new settings and installer, invalidating the cache."""
        self.config = config
        self.installer = installer
        self.invalidate_cache()

    def _resolve_uncached(self) -> RunSpec:
        trail: list[str] = []

        spec = self._from_explicit_path(trail)
        if spec is not None:
            return spec

        spec = self._from_interpreter(trail)
        if spec is not None:
            return spec

        installer = self.installer
        if installer is None:
            trail.append(
                f"managed install: disabled (install_strategy={self.config.preferences.install_strategy})"
            )
            raise ToolNotFoundError(self._format_trail(trail))

        try:
            path = installer.ensure_available()
        except ToolNotFoundError as e:
            trail.append(f"managed install ({installer.package_manager.name}): {e.message}")
            raise ToolNotFoundError(
                f"{e.message}\n\n{self._format_trail(trail)}",
                silent=e.silent,
                remediation=e.remediation,
            ) from e

        logger.debug(f"Using managed CLI: {path}")
        return RunSpec(command=path)

    def _from_explicit_path(self, trail: list[str]) -> RunSpec | None:
        cli_path = self.config.preferences.cli_path.strip()
        if not cli_path:
            trail.append("explicit path: not configured")
            return None

        path = self._resolve_path(cli_path)
        if path is None:
            logger.warning(f"Configured CLI path is not an executable file: {cli_path}")
            trail.append(f"explicit path: not found or not executable: {cli_path}")
            return None

        logger.debug(f"Using explicit CLI path: {path}")
        return RunSpec(command=path)

    def _from_interpreter(self, trail: list[str]) -> RunSpec | None:
        prefs = self.config.preferences
        if not prefs.trusts_system_environment:
            trail.append(
                f"python interpreter: skipped (install_strategy={prefs.install_strategy}, developer_mode off)"
            )
            return None

        interpreter = prefs.python_interpreter.strip()
        if not interpreter:
            trail.append("python interpreter: not configured")
            return None

        path = self._resolve_path(interpreter)
        if path is None:
            trail.append(f"python interpreter: not found: {interpreter}")
            return None

        logger.debug(f"Using Python: {path}")
        return RunSpec(command=path, prefix_args=self.config.tool.module_prefix)

    def _format_trail(self, trail: list[str]) -> str:
        lines = [f"Could not locate {self.config.tool.binary}. Strategies tried:"]
        lines.extend(f"  - {entry}" for entry in trail)
        return "\n".join(lines)
