"""
Remote version lookup against the PyPI JSON API.

Best effort only: every network or data problem degrades to "no update
available this cycle" (None) and is logged, never raised to the caller.
"""

from __future__ import annotations

import http.client
import json
import urllib.error
import urllib.request
from typing import Any, Callable

from packaging.version import InvalidVersion
from packaging.version import Version as PackagingVersion

from .errors import ParseFailure
from .logging_config import get_logger
from .versioning import Version, VersionRange, parse_version

logger = get_logger(__name__)

DEFAULT_REGISTRY_URL = "https://pypi.org/pypi"
DEFAULT_TIMEOUT_SECONDS = 10.0


class RegistryClient:
    """
    Fetches published versions of a package from a PyPI-compatible registry.

    Args:
        package: Package name (e.g., "listing-generator")
        base_url: Registry JSON API base URL
        timeout: Request timeout in seconds
        urlopen: Opener callable, injectable for tests
    """

    def __init__(
        self,
        package: str,
        base_url: str = DEFAULT_REGISTRY_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        urlopen: Callable[..., Any] = urllib.request.urlopen,
    ):
        self.package = package
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._urlopen = urlopen

    @property
    def url(self) -> str:
        return f"{self.base_url}/{self.package}/json"

    def fetch_metadata(self) -> dict[str, Any]:
        """
        Fetch the package metadata document.

        Returns:
            Parsed JSON document

        Raises:
            ParseFailure: If the response is not a JSON object
            urllib.error.URLError, OSError: On network failure
        """
        request = urllib.request.Request(self.url, headers={"Accept": "application/json"})
        with self._urlopen(request, timeout=self.timeout) as response:
            raw = response.read()
        try:
            data = json.loads(raw)
        except (ValueError, TypeError) as e:
            raise ParseFailure(f"Invalid JSON from {self.url}: {e}") from e
        if not isinstance(data, dict):
            raise ParseFailure(f"Unexpected metadata document from {self.url}")
        return data

    def latest_version(self) -> str | None:
        """
        Latest published version (the registry's `info.version`).

        Returns:
            Version string, or None if unknown
        """
        data = self._safe_fetch()
        if data is None:
            return None
        try:
            return _info_version(data)
        except ParseFailure as e:
            logger.debug(f"Registry response for {self.package} malformed: {e}")
            return None

    def latest_compatible(self, version_range: VersionRange) -> Version | None:
        """
        Latest stable, non-yanked release inside version_range.

        Falls back to `info.version` when the document has no release list.

        Args:
            version_range: Accepted range (e.g., >=0.10.0,<0.11.0)

        Returns:
            Highest matching Version, or None if unknown/none match
        """
        data = self._safe_fetch()
        if data is None:
            return None

        releases = data.get("releases")
        if not isinstance(releases, dict) or not releases:
            try:
                latest = _info_version(data)
            except ParseFailure as e:
                logger.debug(f"Registry response for {self.package} malformed: {e}")
                return None
            return parse_version(latest) if version_range.accepts(latest) else None

        specifier = version_range.specifier
        best: PackagingVersion | None = None
        for tag, files in releases.items():
            try:
                candidate = PackagingVersion(tag)
            except InvalidVersion:
                continue
            if candidate.is_prerelease or _is_yanked(files):
                continue
            if candidate not in specifier:
                continue
            if best is None or candidate > best:
                best = candidate

        return parse_version(str(best)) if best is not None else None

    def _safe_fetch(self) -> dict[str, Any] | None:
        try:
            return self.fetch_metadata()
        except ParseFailure as e:
            logger.debug(f"Registry response for {self.package} malformed: {e}")
        except (urllib.error.URLError, http.client.HTTPException, OSError, ValueError) as e:
            logger.debug(f"Registry lookup for {self.package} failed: {e}")
        return None


def _info_version(data: dict[str, Any]) -> str:
    info = data.get("info")
    if not isinstance(info, dict):
        raise ParseFailure("missing 'info' object")
    version = info.get("version")
    if not isinstance(version, str) or not version:
        raise ParseFailure("missing 'info.version'")
    return version


def _is_yanked(files: Any) -> bool:
    # A release is yanked when it has files and all of them are yanked
    if not isinstance(files, list) or not files:
        return False
    return all(isinstance(f, dict) and f.get("yanked", False) for f in files)
