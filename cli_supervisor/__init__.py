"""
CLI Supervisor - Resolve, install and run an external versioned CLI.

Core Modules:
- Versioning: Compatibility policy (same major.minor) and install constraints
- Resolution: Explicit path, interpreter + module, or managed binary (cached)
- Installation: Idempotent ensure-installed with circuit breaker and update check
- Execution: Process runner with stdin piping, timeouts and typed outcomes
"""

__version__ = "1.0.0"

# Version info for backward compatibility
VERSION = __version__

# Foundation
from .errors import (
    CliSupervisorError,
    ToolNotFoundError,
    ToolUnavailableError,
    ExecutionFailedError,
    ExecutionTimeoutError,
    PackageManagerError,
    ParseFailure,
)
from .versioning import (
    Version,
    VersionRequirement,
    VersionRange,
    parse_version,
    constraint_for,
    is_compatible,
    is_newer,
)
from .config import (
    Config,
    ToolSpec,
    Preferences,
    ConfigNotifier,
    load_config,
    load_config_file,
    validate_config,
)
from .common import Clock, FixedClock

# Installation
from .registry import RegistryClient
from .package_managers import PackageManager, PackageManagerClient, get_package_manager
from .installer import Installer, InstallerStatus

# Resolution and execution
from .resolver import Resolver, RunSpec
from .outcomes import (
    ExecutionRequest,
    ExecutionOutcome,
    Success,
    Failure,
    Timeout,
    NotFound,
    Unavailable,
)
from .runner import ProcessRunner, STDIN_SENTINEL, with_stdin_payload
from .supervisor import Supervisor

# Logging configuration
from .logging_config import (
    setup_logging,
    get_logger,
)

__all__ = [
    # Version
    "__version__",
    "VERSION",
    # Errors
    "CliSupervisorError",
    "ToolNotFoundError",
    "ToolUnavailableError",
    "ExecutionFailedError",
    "ExecutionTimeoutError",
    "PackageManagerError",
    "ParseFailure",
    # Versioning
    "Version",
    "VersionRequirement",
    "VersionRange",
    "parse_version",
    "constraint_for",
    "is_compatible",
    "is_newer",
    # Configuration
    "Config",
    "ToolSpec",
    "Preferences",
    "ConfigNotifier",
    "load_config",
    "load_config_file",
    "validate_config",
    "Clock",
    "FixedClock",
    # Installation
    "RegistryClient",
    "PackageManager",
    "PackageManagerClient",
    "get_package_manager",
    "Installer",
    "InstallerStatus",
    # Resolution and execution
    "Resolver",
    "RunSpec",
    "ExecutionRequest",
    "ExecutionOutcome",
    "Success",
    "Failure",
    "Timeout",
    "NotFound",
    "Unavailable",
    "ProcessRunner",
    "STDIN_SENTINEL",
    "with_stdin_payload",
    "Supervisor",
    # Logging
    "setup_logging",
    "get_logger",
]
