"""Shared fixtures: an in-memory registry and Constants isolation."""

from typing import Dict, List, Optional

import pytest

from common.errors import NetworkError, ResolutionError
from constants import Constants
from registry.npm.packument import Packument

_TUNABLES = [name for name in vars(Constants) if name.isupper()]


@pytest.fixture(autouse=True)
def restore_constants(monkeypatch):
    """Undo config/CLI overrides applied to Constants by a test."""
    snapshot = {name: getattr(Constants, name) for name in _TUNABLES}
    monkeypatch.delenv("TARPREFETCH_CONFIG", raising=False)
    monkeypatch.delenv("PACKAGES_FILE", raising=False)
    monkeypatch.delenv("TAR_DIR", raising=False)
    yield
    for name, value in snapshot.items():
        setattr(Constants, name, value)


class FakeRegistry:
    """Packument documents keyed by package name, served without HTTP."""

    def __init__(self, tarball_base: str = "https://registry.example.test"):
        self.tarball_base = tarball_base.rstrip("/")
        self.documents: Dict[str, dict] = {}
        self.broken: Dict[str, str] = {}
        self.calls: List[str] = []

    def add(
        self,
        name: str,
        version: str,
        dependencies: Optional[Dict[str, str]] = None,
        peer: Optional[Dict[str, str]] = None,
        optional: Optional[Dict[str, str]] = None,
        tarball: Optional[str] = "default",
        latest: bool = True,
    ) -> "FakeRegistry":
        doc = self.documents.setdefault(name, {"name": name, "dist-tags": {}, "versions": {}})
        body: dict = {"name": name, "version": version}
        if dependencies:
            body["dependencies"] = dependencies
        if peer:
            body["peerDependencies"] = peer
        if optional:
            body["optionalDependencies"] = optional
        if tarball == "default":
            short = name.split("/")[-1]
            tarball = f"{self.tarball_base}/{name}/-/{short}-{version}.tgz"
        if tarball is not None:
            body["dist"] = {"tarball": tarball}
        doc["versions"][version] = body
        if latest:
            doc["dist-tags"]["latest"] = version
        return self

    def fail_with_network_error(self, name: str, message: str = "timed out") -> None:
        self.broken[name] = message

    def get_packument(self, name: str) -> Packument:
        self.calls.append(name)
        if name in self.broken:
            raise NetworkError(self.broken[name], specifier=name)
        if name not in self.documents:
            raise ResolutionError(f"Package {name} not found", specifier=name)
        return Packument.from_json(name, self.documents[name])


@pytest.fixture
def registry():
    """Empty in-memory registry; tests add the packages they need."""
    return FakeRegistry()
