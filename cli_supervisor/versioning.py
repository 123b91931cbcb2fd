"""
Version compatibility policy for the wrapped CLI.

Pure functions over (major, minor, patch) triples. A version is compatible
with the required one when major and minor match; patch is unconstrained.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import NamedTuple

from packaging.specifiers import SpecifierSet

# First dotted numeric token, e.g. "0.10.3" in "listing-generator 0.10.3"
_VERSION_TOKEN_RE = re.compile(r"\d+(?:\.[0-9A-Za-z]*)*")
_LEADING_DIGITS_RE = re.compile(r"\d+")


class Version(NamedTuple):
    major: int
    minor: int
    patch: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def parse_version(text: str | None) -> Version:
    """
    Extract (major, minor, patch) from free-form text.

    Missing or unparsable components default to 0, so parse failure shows up
    as degraded data ((0, 0, 0)) rather than an exception.

    Args:
        text: Version string or tool output (e.g., "listing-generator 0.10.3")

    Returns:
        Parsed Version
    """
    if not text:
        return Version(0, 0, 0)

    match = _VERSION_TOKEN_RE.search(text)
    if not match:
        return Version(0, 0, 0)

    numbers = []
    for part in match.group(0).split(".")[:3]:
        digits = _LEADING_DIGITS_RE.match(part)
        numbers.append(int(digits.group(0)) if digits else 0)
    while len(numbers) < 3:
        numbers.append(0)

    return Version(numbers[0], numbers[1], numbers[2])


def _coerce(version: Version | str) -> Version:
    if isinstance(version, Version):
        return version
    return parse_version(version)


@dataclass(frozen=True)
class VersionRequirement:
    """
    Required version of the wrapped CLI.

    Attributes:
        major: Required major component
        minor: Required minor component
        patch: Minimum patch (lower bound of the install constraint)
    """
    major: int
    minor: int
    patch: int = 0

    @staticmethod
    def from_string(required: str) -> VersionRequirement:
        """Create VersionRequirement from a version string like "0.10.0"."""
        v = parse_version(required)
        return VersionRequirement(v.major, v.minor, v.patch)

    @property
    def version(self) -> Version:
        return Version(self.major, self.minor, self.patch)

    def __str__(self) -> str:
        return str(self.version)


@dataclass(frozen=True)
class VersionRange:
    """Half-open version range [lower, upper)."""

    lower: Version
    upper: Version

    @property
    def specifier(self) -> SpecifierSet:
        return SpecifierSet(f">={self.lower},<{self.upper}")

    def accepts(self, version: Version | str) -> bool:
        """Check if a version falls inside the range."""
        v = _coerce(version)
        return self.lower <= v < self.upper

    def __str__(self) -> str:
        # pip/pipx/uv requirement suffix, e.g. ">=0.10.0,<0.11.0"
        return f">={self.lower},<{self.upper}"


def constraint_for(required: VersionRequirement | str) -> VersionRange:
    """
    Build the install/upgrade constraint for a required version.

    Accepts [required, next minor), so an install never silently jumps a
    minor version: "0.10.0" -> ">=0.10.0,<0.11.0".
    """
    if isinstance(required, str):
        required = VersionRequirement.from_string(required)
    return VersionRange(
        lower=required.version,
        upper=Version(required.major, required.minor + 1, 0),
    )


def is_compatible(installed: Version | str, required: VersionRequirement | Version | str) -> bool:
    """True iff installed shares major and minor with required."""
    inst = _coerce(installed)
    if isinstance(required, VersionRequirement):
        req = required.version
    else:
        req = _coerce(required)
    return inst.major == req.major and inst.minor == req.minor


def is_newer(a: Version | str, b: Version | str) -> bool:
    """True iff a > b over (major, minor, patch). Ties are not newer."""
    return _coerce(a) > _coerce(b)
