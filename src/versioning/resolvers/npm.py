"""NPM version resolver using semantic versioning."""

import re
from typing import List, Optional, Tuple

import semantic_version

from registry.npm.packument import Packument
from ..models import ResolutionMode, VersionSpec

PickResult = Tuple[Optional[str], int, Optional[str]]


class NpmVersionResolver:
    """Pick one exact version out of a packument for a requested spec."""

    def pick(self, spec: Optional[VersionSpec], packument: Packument) -> PickResult:
        """Apply npm semver rules to select a version.

        Args:
            spec: Requested version spec; None means latest.
            packument: Registry metadata for the package.

        Returns:
            Tuple of (resolved_version, candidate_count, error_message)
        """
        candidates = packument.version_list()
        if spec is None or spec.mode == ResolutionMode.LATEST:
            return self._pick_latest(packument, candidates)
        if spec.mode == ResolutionMode.EXACT:
            return self._pick_exact(spec.raw, candidates)
        if spec.mode == ResolutionMode.TAG:
            return self._pick_tag(spec.raw, packument, candidates)
        if spec.mode == ResolutionMode.RANGE:
            return self._pick_range(spec.raw, candidates, spec.include_prerelease)
        return None, len(candidates), "Unsupported resolution mode"

    def _pick_latest(self, packument: Packument, candidates: List[str]) -> PickResult:
        """Use dist-tags.latest, falling back to the highest stable version."""
        latest = packument.latest
        if latest and latest in packument.versions:
            return latest, len(candidates), None
        if not candidates:
            return None, 0, "No versions available"

        parsed_versions = []
        for v in candidates:
            try:
                parsed_versions.append((semantic_version.Version(v), v))
            except ValueError:
                continue  # Skip invalid versions
        if not parsed_versions:
            return None, len(candidates), "No valid semantic versions found"

        stable = [pair for pair in parsed_versions if not pair[0].prerelease]
        pool = stable or parsed_versions
        return max(pool)[1], len(candidates), None

    def _pick_exact(self, version: str, candidates: List[str]) -> PickResult:
        """Check if exact version exists in candidates."""
        if version in candidates:
            return version, len(candidates), None
        return None, len(candidates), f"Version {version} not found"

    def _pick_tag(self, tag: str, packument: Packument, candidates: List[str]) -> PickResult:
        version = packument.dist_tags.get(tag)
        if version is None:
            return None, len(candidates), f"No dist-tag '{tag}'"
        return version, len(candidates), None

    def _normalize_spec(self, spec_str: str) -> str:
        """Normalize npm range syntax (hyphen, x-ranges) into SimpleSpec-compatible form."""
        s = spec_str.strip()

        # Hyphen ranges: "1.2.3 - 1.4.5" => ">=1.2.3,<=1.4.5"
        m = re.match(r'^\s*([0-9A-Za-z\.\-\+]+)\s+-\s+([0-9A-Za-z\.\-\+]+)\s*$', s)
        if m:
            return f">={m.group(1)},<={m.group(2)}"

        s2 = s.replace('*', 'x').lower()
        m = re.match(r'^\s*(\d+)\.(\d+)\.x\s*$', s2)
        if m:
            major, minor = int(m.group(1)), int(m.group(2))
            return f">={major}.{minor}.0,<{major}.{minor + 1}.0"

        m = re.match(r'^\s*(\d+)(?:\.x)?\s*$', s2)
        if m:
            major = int(m.group(1))
            return f">={major}.0.0,<{major + 1}.0.0"

        return spec_str

    def _pick_range(self, spec_str: str, candidates: List[str], include_prerelease: bool) -> PickResult:
        """Apply a semver range and pick the highest matching version."""
        # NpmSpec understands ^, ~, hyphen ranges, x-ranges and ||.
        try:
            npm_spec = semantic_version.NpmSpec(spec_str)
        except ValueError:
            try:
                npm_spec = semantic_version.SimpleSpec(self._normalize_spec(spec_str))
            except ValueError as e:
                return None, len(candidates), f"Invalid semver spec: {str(e)}"

        matching_versions = []
        for v in candidates:
            try:
                ver = semantic_version.Version(v)
            except ValueError:
                continue
            if ver.prerelease and not include_prerelease:
                continue
            if npm_spec.match(ver):
                matching_versions.append((ver, v))

        if not matching_versions:
            return None, len(candidates), f"No versions match spec '{spec_str}'"
        return max(matching_versions)[1], len(candidates), None
