"""
Supervisor facade.

Wires Installer, Resolver and ProcessRunner from a Config and exposes the
single execute(args, stdin, timeout, cwd) -> outcome contract used by host
code, plus settings-change handling and the explicit retry action.
"""

from __future__ import annotations

import threading
from typing import Sequence

from .common import Clock
from .config import Config, ConfigNotifier, load_config, resolution_settings_changed
from .installer import Installer
from .logging_config import get_logger
from .outcomes import ExecutionOutcome, ExecutionRequest
from .package_managers import PackageManagerClient
from .registry import RegistryClient
from .resolver import Resolver, RunSpec
from .runner import ProcessRunner

logger = get_logger(__name__)


class Supervisor:
    """
    Entry point for running the wrapped CLI from a long-lived host.

    Installers are kept per (install strategy, tool) for the lifetime of the
    supervisor, so switching settings back and forth never clears a cached
    fatal error. Only reset() does.

    Args:
        config: Initial configuration
        clock: Time source for the update-check TTL
        notifier: Optional settings-change publisher to subscribe to
    """

    def __init__(
        self,
        config: Config,
        clock: Clock | None = None,
        notifier: ConfigNotifier | None = None,
    ):
        self.config = config
        self.clock = clock or Clock()
        self._installers: dict[tuple, Installer] = {}
        self._installers_lock = threading.Lock()

        self.resolver = Resolver(config, self._installer_for(config))
        self.runner = ProcessRunner(self.resolver)

        self._unsubscribe = None
        if notifier is not None:
            self._unsubscribe = notifier.subscribe(self._on_settings_changed)

    @classmethod
    def from_config(
        cls,
        config: Config | None = None,
        config_path: str | None = None,
        verbose: bool = False,
        **kwargs,
    ) -> Supervisor:
        """
        Build a supervisor, loading configuration from disk if not given.

        Args:
            config: Configuration to use
            config_path: Custom config file (when config is None)
            verbose: Verbose config loading
        """
        if config is None:
            config = load_config(config_path, verbose=verbose)
        return cls(config, **kwargs)

    @property
    def installer(self) -> Installer | None:
        return self.resolver.installer

    def execute(
        self,
        args: Sequence[str],
        stdin: str | bytes | None = None,
        timeout: float | None = None,
        cwd: str | None = None,
    ) -> ExecutionOutcome:
        """
        Run the wrapped CLI.

        Args:
            args: CLI arguments
            stdin: Payload for the child's stdin
            timeout: Seconds (defaults to execution_timeout_seconds)
            cwd: Working directory

        Returns:
            Typed execution outcome
        """
        return self.runner.execute(self.request(args, stdin, timeout, cwd))

    async def execute_async(
        self,
        args: Sequence[str],
        stdin: str | bytes | None = None,
        timeout: float | None = None,
        cwd: str | None = None,
    ) -> ExecutionOutcome:
        return await self.runner.execute_async(self.request(args, stdin, timeout, cwd))

    def request(
        self,
        args: Sequence[str],
        stdin: str | bytes | None = None,
        timeout: float | None = None,
        cwd: str | None = None,
    ) -> ExecutionRequest:
        if timeout is None:
            timeout = self.config.preferences.execution_timeout_seconds
        return ExecutionRequest(args=tuple(args), stdin=stdin, timeout=timeout, cwd=cwd)

    def resolve(self) -> RunSpec:
        """Resolve (and cache) how the CLI is invoked. Raises ToolNotFoundError."""
        return self.resolver.resolve()

    def check_version(self) -> ExecutionOutcome:
        """Run `<cli> --version` with the probe timeout."""
        return self.execute(["--version"], timeout=self.config.preferences.probe_timeout_seconds)

    def apply_config(self, config: Config) -> None:
        """
        Apply new settings.

        Invalidates the resolver cache when settings that affect resolution
        changed. Never clears an installer's fatal error.
        """
        old = self.config
        self.config = config
        installer = self._installer_for(config)

        if resolution_settings_changed(old, config):
            logger.info("Resolution settings changed, invalidating CLI cache")
            self.resolver.reconfigure(config, installer)
        else:
            self.resolver.config = config
            self.resolver.installer = installer

    def reset(self) -> None:
        """Explicit retry: clear the installer's fatal error and the resolver cache."""
        installer = self.installer
        if installer is not None:
            installer.reset()
        self.resolver.invalidate_cache()

    def cancel(self) -> int:
        """Kill all in-flight CLI processes."""
        return self.runner.cancel()

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.runner.cancel()

    def __enter__(self) -> Supervisor:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _on_settings_changed(self, old: Config, new: Config) -> None:
        self.apply_config(new)

    def _installer_for(self, config: Config) -> Installer | None:
        prefs = config.preferences
        if prefs.install_strategy == "system":
            return None

        key = (prefs.install_strategy, config.tool)
        with self._installers_lock:
            installer = self._installers.get(key)
            if installer is None:
                client = PackageManagerClient.for_name(prefs.install_strategy)
                installer = Installer(config.tool, client, clock=self.clock)
                self._installers[key] = installer
                logger.debug(f"Created installer for {config.tool.package} via {prefs.install_strategy}")
            self._apply_tunables(installer, config)
            return installer

    @staticmethod
    def _apply_tunables(installer: Installer, config: Config) -> None:
        prefs = config.preferences
        installer.update_check_interval = prefs.update_check_interval_hours * 3600
        installer.probe_timeout = prefs.probe_timeout_seconds
        installer.package_manager.probe_timeout = prefs.probe_timeout_seconds
        installer.package_manager.install_timeout = prefs.install_timeout_seconds
        installer.package_manager.uninstall_timeout = prefs.uninstall_timeout_seconds
        installer.registry = RegistryClient(
            config.tool.package,
            base_url=prefs.registry_url,
            timeout=prefs.registry_timeout_seconds,
        )
