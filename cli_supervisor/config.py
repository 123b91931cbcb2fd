"""
Configuration file parsing and management.

Supports YAML configuration files (and plain JSON files). Merges
configurations from multiple sources (custom → project → user → system →
defaults), then applies environment variable overrides.
"""

from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Mapping

import yaml

from .common import vlog


# Configuration file locations (in priority order)
CONFIG_LOCATIONS = [
    ".cli-supervisor.yml",                                       # Project root (highest priority)
    ".cli-supervisor.yaml",                                      # Alternative extension
    os.path.expanduser("~/.config/cli-supervisor/config.yml"),   # User global
    os.path.expanduser("~/.config/cli-supervisor/config.yaml"),
    "/etc/cli-supervisor/config.yml",                            # System global
    "/etc/cli-supervisor/config.yaml",
]

INSTALL_STRATEGIES = ("pipx", "uv", "system")

# Environment variables that override file configuration
ENV_CLI_PATH = "CLI_SUPERVISOR_CLI_PATH"
ENV_PYTHON = "CLI_SUPERVISOR_PYTHON"
ENV_INSTALL_STRATEGY = "CLI_SUPERVISOR_INSTALL_STRATEGY"
ENV_DEVELOPER_MODE = "CLI_SUPERVISOR_DEVELOPER_MODE"


@dataclass(frozen=True)
class ToolSpec:
    """
    Identity of the wrapped CLI.

    Attributes:
        package: PyPI package name used for install/uninstall
        binary: Executable name installed by the package
        module: Python module for `python -m <module>` invocation
        required_version: Version this host is built against; any patch of
            the same major.minor is accepted
    """
    package: str = "listing-generator"
    binary: str = "listing-generator"
    module: str = "lg.cli"
    required_version: str = "0.10.0"

    def __post_init__(self):
        for name in ("package", "binary", "module", "required_version"):
            if not getattr(self, name):
                raise ValueError(f"Invalid tool spec: '{name}' must not be empty")

    @property
    def module_prefix(self) -> tuple[str, ...]:
        return ("-m", self.module)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ToolSpec:
        """Create ToolSpec from dictionary."""
        return ToolSpec(
            package=data.get("package", "listing-generator"),
            binary=data.get("binary", "listing-generator"),
            module=data.get("module", "lg.cli"),
            required_version=str(data.get("required_version", "0.10.0")),
        )


@dataclass(frozen=True)
class Preferences:
    """
    Resolution, installation and execution preferences.

    Attributes:
        cli_path: Explicit path (or name) of the tool executable; empty for auto
        python_interpreter: Interpreter used for `python -m <module>` invocation
        install_strategy: 'pipx' or 'uv' (managed install) or 'system'
            (trust the configured interpreter's environment)
        developer_mode: Use the configured interpreter with the module prefix
        execution_timeout_seconds: Default timeout for tool invocations
        probe_timeout_seconds: Timeout for --version probes and presence checks
        install_timeout_seconds: Timeout for package manager install
        uninstall_timeout_seconds: Timeout for package manager uninstall
        update_check_interval_hours: Minimum time between registry checks
        registry_url: Base URL of the PyPI-compatible JSON API
        registry_timeout_seconds: Timeout for registry requests
    """
    cli_path: str = ""
    python_interpreter: str = ""
    install_strategy: str = "pipx"
    developer_mode: bool = False
    execution_timeout_seconds: float = 120.0
    probe_timeout_seconds: float = 4.0
    install_timeout_seconds: float = 120.0
    uninstall_timeout_seconds: float = 60.0
    update_check_interval_hours: float = 24.0
    registry_url: str = "https://pypi.org/pypi"
    registry_timeout_seconds: float = 10.0

    def __post_init__(self):
        """Validate preferences after initialization."""
        if self.install_strategy not in INSTALL_STRATEGIES:
            raise ValueError(
                f"Invalid install_strategy: {self.install_strategy}. "
                f"Must be one of: {', '.join(INSTALL_STRATEGIES)}"
            )

        for name in (
            "execution_timeout_seconds",
            "probe_timeout_seconds",
            "install_timeout_seconds",
            "uninstall_timeout_seconds",
            "registry_timeout_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"Invalid {name}: {getattr(self, name)}. Must be positive")

        if self.update_check_interval_hours < 0:
            raise ValueError(
                f"Invalid update_check_interval_hours: {self.update_check_interval_hours}. "
                "Must not be negative"
            )

    @property
    def trusts_system_environment(self) -> bool:
        """Whether the configured interpreter may be used directly."""
        return self.developer_mode or self.install_strategy == "system"

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Preferences:
        """Create Preferences from dictionary."""
        defaults = Preferences()
        return Preferences(
            cli_path=str(data.get("cli_path") or ""),
            python_interpreter=str(data.get("python_interpreter") or ""),
            install_strategy=data.get("install_strategy", defaults.install_strategy),
            developer_mode=bool(data.get("developer_mode", False)),
            execution_timeout_seconds=float(
                data.get("execution_timeout_seconds", defaults.execution_timeout_seconds)
            ),
            probe_timeout_seconds=float(
                data.get("probe_timeout_seconds", defaults.probe_timeout_seconds)
            ),
            install_timeout_seconds=float(
                data.get("install_timeout_seconds", defaults.install_timeout_seconds)
            ),
            uninstall_timeout_seconds=float(
                data.get("uninstall_timeout_seconds", defaults.uninstall_timeout_seconds)
            ),
            update_check_interval_hours=float(
                data.get("update_check_interval_hours", defaults.update_check_interval_hours)
            ),
            registry_url=data.get("registry_url", defaults.registry_url),
            registry_timeout_seconds=float(
                data.get("registry_timeout_seconds", defaults.registry_timeout_seconds)
            ),
        )


@dataclass(frozen=True)
class Config:
    """
    Complete configuration for the CLI supervisor.

    Attributes:
        version: Config schema version
        tool: Wrapped tool identity
        preferences: Resolution/installation preferences
        source: Path to the configuration file that was loaded
    """
    version: int = 1
    tool: ToolSpec = field(default_factory=ToolSpec)
    preferences: Preferences = field(default_factory=Preferences)
    source: str = ""

    def __post_init__(self):
        """Validate config after initialization."""
        if self.version != 1:
            raise ValueError(f"Unsupported config version: {self.version}. Expected version 1")

    @staticmethod
    def from_dict(data: dict[str, Any], source: str = "") -> Config:
        """Create Config from dictionary."""
        return Config(
            version=data.get("version", 1),
            tool=ToolSpec.from_dict(data.get("tool") or {}),
            preferences=Preferences.from_dict(data.get("preferences") or {}),
            source=source,
        )

    def merge_with(self, other: Config) -> Config:
        """
        Merge this config with another, preferring values from this config.

        A value from this config wins unless it equals the default, in which
        case the other config's value is used.

        Args:
            other: Other config to merge (lower priority)

        Returns:
            New merged Config object
        """
        return Config(
            version=self.version,
            tool=_merge_dataclass(self.tool, other.tool, ToolSpec()),
            preferences=_merge_dataclass(self.preferences, other.preferences, Preferences()),
            source=self.source or other.source,
        )


def _merge_dataclass(preferred: Any, fallback: Any, defaults: Any) -> Any:
    changes = {}
    for name in preferred.__dataclass_fields__:
        value = getattr(preferred, name)
        if value == getattr(defaults, name):
            value = getattr(fallback, name)
        changes[name] = value
    return replace(preferred, **changes)


def resolution_settings_changed(old: Config, new: Config) -> bool:
    """
    Check whether a config change affects which executable is resolved.

    Args:
        old: Previously applied config
        new: Newly applied config

    Returns:
        True if the resolver cache must be invalidated
    """
    keys = ("cli_path", "python_interpreter", "install_strategy", "developer_mode")
    if any(getattr(old.preferences, k) != getattr(new.preferences, k) for k in keys):
        return True
    return old.tool != new.tool


def _load_yaml(file_path: str) -> dict[str, Any] | None:
    """
    Load YAML configuration file.

    Args:
        file_path: Path to YAML file

    Returns:
        Parsed configuration dictionary, or None if file invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return None


def _load_json(file_path: str) -> dict[str, Any] | None:
    """
    Load JSON configuration file.

    Args:
        file_path: Path to JSON file

    Returns:
        Parsed configuration dictionary, or None if file invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, json.JSONDecodeError):
        return None


def load_config_file(file_path: str, verbose: bool = False) -> Config | None:
    """
    Load configuration from a single file.

    Files ending in .json are parsed as JSON, everything else as YAML.

    Args:
        file_path: Path to configuration file
        verbose: Enable verbose logging

    Returns:
        Config object, or None if file cannot be loaded
    """
    if not os.path.exists(file_path):
        return None

    vlog(f"Loading config from: {file_path}", verbose)

    if file_path.endswith(".json"):
        data = _load_json(file_path)
    else:
        data = _load_yaml(file_path)

    if data is None:
        vlog(f"Invalid config file: {file_path}", verbose)
        return None

    try:
        config = Config.from_dict(data, source=file_path)
        vlog(f"Loaded config successfully: {file_path}", verbose)
        return config
    except (ValueError, TypeError) as e:
        vlog(f"Config validation failed for {file_path}: {e}", verbose)
        return None


def apply_env_overrides(config: Config, environ: Mapping[str, str] | None = None) -> Config:
    """
    Apply CLI_SUPERVISOR_* environment variables on top of a config.

    Args:
        config: Loaded config
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Config with overrides applied (same object if nothing changed)
    """
    if environ is None:
        environ = os.environ

    changes: dict[str, Any] = {}
    if environ.get(ENV_CLI_PATH):
        changes["cli_path"] = environ[ENV_CLI_PATH]
    if environ.get(ENV_PYTHON):
        changes["python_interpreter"] = environ[ENV_PYTHON]
    if environ.get(ENV_INSTALL_STRATEGY):
        changes["install_strategy"] = environ[ENV_INSTALL_STRATEGY]
    if environ.get(ENV_DEVELOPER_MODE):
        changes["developer_mode"] = environ[ENV_DEVELOPER_MODE].lower() in ("1", "true", "yes", "on")

    if not changes:
        return config
    return replace(config, preferences=replace(config.preferences, **changes))


def load_config(
    custom_path: str | None = None,
    verbose: bool = False,
) -> Config:
    """
    Load and merge configuration from all sources.

    Configuration precedence (highest to lowest):
    1. Environment variables (CLI_SUPERVISOR_*)
    2. Custom path (if provided)
    3. Project .cli-supervisor.yml
    4. User ~/.config/cli-supervisor/config.yml
    5. System /etc/cli-supervisor/config.yml
    6. Default configuration

    Args:
        custom_path: Optional path to custom configuration file
        verbose: Enable verbose logging

    Returns:
        Merged Config object (never None, returns defaults if no config found)

    Raises:
        ValueError: If custom_path is provided but file cannot be loaded
    """
    configs: list[Config] = []

    if custom_path:
        config = load_config_file(custom_path, verbose)
        if config is None:
            raise ValueError(f"Could not load config from specified path: {custom_path}")
        configs.append(config)
        vlog(f"Using custom config: {custom_path}", verbose)

    for location in CONFIG_LOCATIONS:
        config = load_config_file(location, verbose)
        if config is not None:
            configs.append(config)
            vlog(f"Found config at: {location}", verbose)

    if not configs:
        vlog("No config files found, using defaults", verbose)
        return apply_env_overrides(Config())

    # First config has highest priority
    merged = configs[0]
    for config in configs[1:]:
        merged = merged.merge_with(config)

    vlog(f"Merged {len(configs)} config files", verbose)
    return apply_env_overrides(merged)


def validate_config(config: Config) -> list[str]:
    """
    Validate configuration and return list of warnings.

    Args:
        config: Config object to validate

    Returns:
        List of validation warning messages (empty if valid)
    """
    warnings = []
    prefs = config.preferences

    if prefs.trusts_system_environment and not prefs.python_interpreter and not prefs.cli_path:
        warnings.append(
            "Developer/system mode is enabled but no python_interpreter is configured; "
            "the managed install will be used instead"
        )

    if prefs.cli_path and prefs.developer_mode:
        warnings.append("cli_path takes precedence over developer_mode python_interpreter")

    if prefs.update_check_interval_hours == 0:
        warnings.append("update_check_interval_hours is 0: the registry is queried on every slow-path call")

    return warnings


SettingsListener = Callable[[Config, Config], None]


class ConfigNotifier:
    """
    Publishes settings-changed notifications to subscribers.

    Listeners receive (old_config, new_config) and are called in
    subscription order on the publishing thread.
    """

    def __init__(self) -> None:
        self._listeners: list[SettingsListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            Function that removes the listener again
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def notify(self, old: Config, new: Config) -> None:
        """Notify all listeners about a settings change."""
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(old, new)
