"""Specifier parsing and input list reading."""

import re
from typing import Iterable, List, Optional, Tuple

from common.errors import InputError
from .models import PackageSpecifier, ResolutionMode, VersionSpec

_EXACT_VERSION = re.compile(
    r"^\d+\.\d+\.\d+(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$"
)
_DIST_TAG = re.compile(r"^[A-Za-z][A-Za-z0-9._-]*$")
# npm accepts one leading "v" or "=" on an exact version.
_LOOSE_EXACT = re.compile(r"^[v=]\s*(\d+\.\d+\.\d+\S*)$")
_PRERELEASE = re.compile(r"\d+\.\d+\.\d+-")
_NAME_CHARS = re.compile(r"^[^\s/@]+$")
# Dependency-map values that point somewhere other than the registry.
_NON_REGISTRY_PREFIXES = ("file:", "link:", "git:", "git+", "http:", "https:", "github:", "workspace:", "portal:")


def clean_line(line: str) -> str:
    """Trim surrounding whitespace and stray carriage returns."""
    return line.replace("\r", "").strip()


def iter_specifier_lines(lines: Iterable[str]) -> List[str]:
    """Drop blank and ``#`` comment lines, trimming the rest."""
    specifiers = []
    for line in lines:
        cleaned = clean_line(line)
        if not cleaned or cleaned.startswith("#"):
            continue
        specifiers.append(cleaned)
    return specifiers


def read_specifier_lines(file_name: str) -> List[str]:
    """Read a newline-delimited specifier list.

    Raises:
        FileNotFoundError, OSError: left for the CLI to map to an exit code.
    """
    with open(file_name, encoding="utf-8") as file:
        return iter_specifier_lines(file)


def split_specifier(token: str) -> Tuple[str, Optional[str]]:
    """Return (name, version part or None) using the last-``@`` rule.

    The leading ``@`` of a scoped name is never treated as a separator.
    """
    token = clean_line(token)
    idx = token.rfind("@")
    if idx > 0:
        return token[:idx], token[idx + 1:]
    return token, None


def validate_name(name: str) -> None:
    """Raise InputError unless ``name`` is ``pkg`` or ``@scope/pkg``."""
    if name.startswith("@"):
        scope, sep, rest = name[1:].partition("/")
        if not sep or not _NAME_CHARS.match(scope) or not _NAME_CHARS.match(rest):
            raise InputError(f"Malformed scoped package name '{name}'", specifier=name)
        return
    if not _NAME_CHARS.match(name):
        raise InputError(f"Malformed package name '{name}'", specifier=name)


def _determine_resolution_mode(spec: str) -> ResolutionMode:
    if _EXACT_VERSION.match(spec):
        return ResolutionMode.EXACT
    if _DIST_TAG.match(spec) and spec.lower() not in ("x",):
        return ResolutionMode.TAG
    return ResolutionMode.RANGE


def make_version_spec(raw: Optional[str]) -> Optional[VersionSpec]:
    """Build a VersionSpec, or None when the request means "latest"."""
    if raw is None:
        return None
    spec = raw.strip()
    if not spec or spec.lower() == "latest":
        return None
    loose = _LOOSE_EXACT.match(spec)
    if loose and _EXACT_VERSION.match(loose.group(1)):
        spec = loose.group(1)
    return VersionSpec(
        raw=spec,
        mode=_determine_resolution_mode(spec),
        include_prerelease=bool(_PRERELEASE.search(spec)),
    )


def parse_specifier(token: str) -> PackageSpecifier:
    """Parse a list line such as ``@scope/pkg@^1.2.0`` into a PackageSpecifier.

    Raises:
        InputError: if the name part is malformed.
    """
    raw = clean_line(token)
    name, version = split_specifier(raw)
    validate_name(name)
    return PackageSpecifier(name=name, spec=make_version_spec(version), raw=raw)


def parse_dependency(name: str, range_spec: Optional[str]) -> PackageSpecifier:
    """Turn one dependency-map entry into a PackageSpecifier.

    Handles ``npm:`` aliases; other non-registry sources raise InputError.
    """
    raw_range = (range_spec or "").strip()
    if raw_range.startswith("npm:"):
        real_name, real_range = split_specifier(raw_range[len("npm:"):])
        validate_name(real_name)
        return PackageSpecifier(
            name=real_name,
            spec=make_version_spec(real_range),
            raw=f"{name}@{raw_range}",
        )
    if raw_range.lower().startswith(_NON_REGISTRY_PREFIXES) or "/" in raw_range:
        raise InputError(
            f"Unsupported dependency source for {name}: '{raw_range}'",
            specifier=f"{name}@{raw_range}",
        )
    validate_name(name)
    raw = f"{name}@{raw_range}" if raw_range else name
    return PackageSpecifier(name=name, spec=make_version_spec(raw_range), raw=raw)
