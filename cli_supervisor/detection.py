"""
Local executable detection and version probing.

GUI hosts on Linux often don't inherit the login shell's PATH, so
~/.local/bin (where pipx and uv put their shims) may be missing. Lookup
therefore falls back to common user installation directories.
"""

from __future__ import annotations

import os
import re
import shutil
import subprocess
from typing import Sequence

from .common import is_macos, is_windows, process_env
from .logging_config import get_logger

logger = get_logger(__name__)

# Default timeout for --version probes
TIMEOUT_SECONDS = float(os.environ.get("CLI_SUPERVISOR_PROBE_TIMEOUT", "4"))

VERSION_RE = re.compile(r"(\d+\.\d+\.\d+)")
ANSI_ESCAPE_RE = re.compile(r'\x1b\[[0-9;]*m')

WINDOWS_EXTENSIONS = ("", ".exe", ".cmd", ".bat", ".com")


def user_install_dirs() -> list[str]:
    """
    Common user installation directories for the current platform.

    Returns:
        Directory paths in search order (existence not checked)
    """
    home = os.path.expanduser("~")

    if is_windows():
        appdata_local = os.path.join(home, "AppData", "Local", "Programs", "Python")
        appdata_roaming = os.path.join(home, "AppData", "Roaming", "Python")
        return [
            os.path.join(home, ".local", "bin"),
            os.path.join(appdata_local, "Python311", "Scripts"),
            os.path.join(appdata_local, "Python312", "Scripts"),
            os.path.join(appdata_roaming, "Python311", "Scripts"),
            os.path.join(appdata_roaming, "Python312", "Scripts"),
        ]
    if is_macos():
        return [
            os.path.join(home, ".local", "bin"),
            os.path.join(home, "bin"),
            "/opt/homebrew/bin",
            "/usr/local/bin",
        ]
    return [
        os.path.join(home, ".local", "bin"),
        os.path.join(home, "bin"),
        "/usr/local/bin",
    ]


def is_executable_file(path: str) -> bool:
    """Check that path exists, is a regular file and is executable."""
    if not path or not os.path.isfile(path):
        return False
    if is_windows():
        return True
    return os.access(path, os.X_OK)


def find_in_directory(directory: str, name: str) -> str | None:
    """
    Find an executable by name in a single directory.

    On Windows, common executable extensions are tried as well.

    Args:
        directory: Directory to search
        name: Executable name

    Returns:
        Absolute path, or None if not found
    """
    if not directory or not os.path.isdir(directory):
        return None

    extensions = WINDOWS_EXTENSIONS if is_windows() else ("",)
    for ext in extensions:
        candidate = os.path.join(directory, name + ext)
        if is_executable_file(candidate):
            return os.path.abspath(candidate)
    return None


def find_executable(name: str, extra_dirs: Sequence[str] = ()) -> str | None:
    """
    Find executable on PATH with fallback to user installation paths.

    Search order:
    1. PATH (shutil.which)
    2. extra_dirs (e.g. a package manager's bin directory)
    3. Common user installation directories

    Args:
        name: Executable name (e.g., "pipx", "listing-generator")
        extra_dirs: Additional directories to search before the user dirs

    Returns:
        Absolute path to executable, or None if not found
    """
    path = shutil.which(name)
    if path:
        logger.debug(f"Found '{name}' on PATH: {path}")
        return os.path.abspath(path)

    for directory in [*extra_dirs, *user_install_dirs()]:
        found = find_in_directory(directory, name)
        if found:
            logger.debug(f"Found '{name}' in {directory}: {found}")
            return found

    logger.debug(f"Executable '{name}' not found")
    return None


def resolve_executable(path_or_name: str) -> str | None:
    """
    Resolve a configured executable which may be a path or a bare name.

    Args:
        path_or_name: Absolute/relative path, or a name to look up

    Returns:
        Absolute path to an existing executable file, or None
    """
    candidate = os.path.expanduser(path_or_name.strip())
    if not candidate:
        return None

    if os.sep in candidate or (os.altsep and os.altsep in candidate):
        return os.path.abspath(candidate) if is_executable_file(candidate) else None

    return find_executable(candidate)


def extract_version_number(s: str) -> str:
    """Extract a dotted x.y.z version number from tool output.

    Args:
        s: String potentially containing version

    Returns:
        Version number (e.g., "0.10.3") or empty string
    """
    if not s:
        return ""
    m = VERSION_RE.search(ANSI_ESCAPE_RE.sub("", s))
    return m.group(1) if m else ""


def probe_version(command: Sequence[str], timeout: float | None = None) -> str | None:
    """
    Run `<command> --version` and extract the version number.

    Args:
        command: Command prefix (e.g., ["listing-generator"] or
            ["/usr/bin/python3", "-m", "lg.cli"])
        timeout: Timeout in seconds (default: TIMEOUT_SECONDS)

    Returns:
        Version string (e.g., "0.10.3"), or None when the tool is missing,
        fails, times out, or prints no recognisable version
    """
    args = [*command, "--version"]
    try:
        proc = subprocess.run(
            args,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout or TIMEOUT_SECONDS,
            check=False,
            env=process_env(),
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"Version probe failed for {args[0]}: {e}")
        return None

    if proc.returncode != 0:
        logger.debug(f"Version probe for {args[0]} exited with {proc.returncode}")
        return None

    version = extract_version_number(proc.stdout) or extract_version_number(proc.stderr)
    return version or None
