"""Typed view of an npm registry packument.

Absent or malformed fields decode to None or to empty mappings so callers
never need to probe the raw JSON shape.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional


def _str_map(value: Any) -> Dict[str, str]:
    """Keep only string->string pairs of a JSON object, preserving order."""
    if not isinstance(value, dict):
        return {}
    return {k: v for k, v in value.items() if isinstance(k, str) and isinstance(v, str)}


def _opt_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


@dataclass(frozen=True)
class VersionDescriptor:
    """Per-version entry of ``versions`` in a packument."""

    version: str
    dependencies: Dict[str, str] = field(default_factory=dict)
    peer_dependencies: Dict[str, str] = field(default_factory=dict)
    optional_dependencies: Dict[str, str] = field(default_factory=dict)
    tarball_url: Optional[str] = None
    integrity: Optional[str] = None
    shasum: Optional[str] = None

    @classmethod
    def from_json(cls, version: str, data: Any) -> "VersionDescriptor":
        data = data if isinstance(data, dict) else {}
        dist = data.get("dist") if isinstance(data.get("dist"), dict) else {}
        return cls(
            version=version,
            dependencies=_str_map(data.get("dependencies")),
            peer_dependencies=_str_map(data.get("peerDependencies")),
            optional_dependencies=_str_map(data.get("optionalDependencies")),
            tarball_url=_opt_str(dist.get("tarball")),
            integrity=_opt_str(dist.get("integrity")),
            shasum=_opt_str(dist.get("shasum")),
        )

    @property
    def sri(self) -> Optional[str]:
        """``integrity``, or the legacy hex ``shasum`` as a sha1 SRI string."""
        if self.integrity:
            return self.integrity
        if not self.shasum:
            return None
        try:
            return "sha1-" + base64.b64encode(bytes.fromhex(self.shasum)).decode("ascii")
        except ValueError:
            return None


@dataclass(frozen=True)
class Packument:
    """Registry metadata document for one package name."""

    name: str
    dist_tags: Dict[str, str] = field(default_factory=dict)
    versions: Mapping[str, VersionDescriptor] = field(default_factory=dict)

    @classmethod
    def from_json(cls, name: str, data: Any) -> "Packument":
        data = data if isinstance(data, dict) else {}
        raw_versions = data.get("versions") if isinstance(data.get("versions"), dict) else {}
        versions = {
            str(v): VersionDescriptor.from_json(str(v), body)
            for v, body in raw_versions.items()
        }
        return cls(
            name=_opt_str(data.get("name")) or name,
            dist_tags=_str_map(data.get("dist-tags")),
            versions=versions,
        )

    @property
    def latest(self) -> Optional[str]:
        """The ``latest`` dist-tag, if the registry publishes one."""
        return self.dist_tags.get("latest")

    def version_list(self) -> List[str]:
        return list(self.versions.keys())

    def get(self, version: str) -> Optional[VersionDescriptor]:
        return self.versions.get(version)
