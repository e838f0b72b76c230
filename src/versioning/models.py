"""Data models for specifiers and resolved packages."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ResolutionMode(Enum):
    """Resolution strategy derived from the version part of a specifier."""
    EXACT = "exact"
    RANGE = "range"
    TAG = "tag"
    LATEST = "latest"


class UnresolvedPolicy(Enum):
    """What to do with a specifier that cannot be resolved to an exact version."""
    FAIL = "fail"  # record a ResolutionError
    KEEP = "keep"  # warn and hand the raw specifier to the pack fallback


@dataclass(frozen=True)
class VersionSpec:
    """Normalized representation of a version spec."""
    raw: str
    mode: ResolutionMode
    include_prerelease: bool = False


@dataclass(frozen=True)
class PackageSpecifier:
    """A package name plus an optional version spec."""
    name: str
    spec: Optional[VersionSpec]
    raw: str

    @property
    def mode(self) -> ResolutionMode:
        return self.spec.mode if self.spec else ResolutionMode.LATEST

    def __str__(self) -> str:
        if self.spec is None:
            return self.name
        return f"{self.name}@{self.spec.raw}"


@dataclass(frozen=True)
class ResolvedPackage:
    """Exact package version discovered in the closure."""
    name: str
    version: str
    tarball_url: Optional[str] = None
    integrity: Optional[str] = None

    @property
    def key(self) -> str:
        """Visited-set key."""
        return f"{self.name}@{self.version}"

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class UnresolvedPackage:
    """Specifier kept as-is under UnresolvedPolicy.KEEP."""
    specifier: str
    reason: str


@dataclass(frozen=True)
class FailureRecord:
    """One per-item failure, named by the error class that caused it."""
    specifier: str
    kind: str
    message: str

    @classmethod
    def from_exception(cls, specifier: str, exc: Exception) -> "FailureRecord":
        return cls(specifier=specifier, kind=type(exc).__name__, message=str(exc))
