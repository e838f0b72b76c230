"""Per-run state for dependency closure resolution."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Set, Tuple, Union

from common.errors import PrefetchError
from registry.npm.packument import Packument
from versioning.models import FailureRecord, PackageSpecifier, ResolvedPackage, UnresolvedPackage

PackumentOutcome = Union[Packument, PrefetchError]


@dataclass
class ResolutionReport:
    """Result of one resolution run."""

    resolved: List[ResolvedPackage] = field(default_factory=list)
    deferred: List[UnresolvedPackage] = field(default_factory=list)
    failures: List[FailureRecord] = field(default_factory=list)
    cancelled: bool = False

    @property
    def partial(self) -> bool:
        """True when at least one item failed."""
        return bool(self.failures) or self.cancelled

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resolved": [
                {"name": p.name, "version": p.version, "tarball": p.tarball_url}
                for p in self.resolved
            ],
            "deferred": [{"specifier": d.specifier, "reason": d.reason} for d in self.deferred],
            "failures": [
                {"specifier": f.specifier, "kind": f.kind, "message": f.message}
                for f in self.failures
            ],
            "cancelled": self.cancelled,
        }


class ResolutionContext:
    """Work queue, visited set and accumulated results for a single run.

    Created by the resolver at the start of ``resolve`` and dropped when it
    returns. The lock covers the visited set and the packument memo, which
    metadata workers may touch concurrently.
    """

    def __init__(self) -> None:
        self.queue: Deque[PackageSpecifier] = deque()
        self.visited: Set[str] = set()
        self.resolved: List[ResolvedPackage] = []
        self.deferred: List[UnresolvedPackage] = []
        self.failures: List[FailureRecord] = []
        self._enqueued: Set[Tuple[str, str]] = set()
        self._packuments: Dict[str, PackumentOutcome] = {}
        self._lock = threading.Lock()

    def enqueue(self, specifier: PackageSpecifier) -> bool:
        """Append to the queue unless the same name/spec was already queued."""
        marker = (specifier.name, specifier.spec.raw if specifier.spec else "")
        if marker in self._enqueued:
            return False
        self._enqueued.add(marker)
        self.queue.append(specifier)
        return True

    def mark_visited(self, key: str) -> bool:
        """Atomically insert ``name@version``; False when it was already present."""
        with self._lock:
            if key in self.visited:
                return False
            self.visited.add(key)
            return True

    def add_resolved(self, package: ResolvedPackage) -> None:
        self.resolved.append(package)

    def defer(self, specifier: str, reason: str) -> None:
        if any(d.specifier == specifier for d in self.deferred):
            return
        self.deferred.append(UnresolvedPackage(specifier=specifier, reason=reason))

    def record_failure(self, specifier: str, exc: Exception) -> None:
        self.failures.append(FailureRecord.from_exception(specifier, exc))

    def lookup_packument(self, name: str) -> Optional[PackumentOutcome]:
        with self._lock:
            return self._packuments.get(name)

    def store_packument(self, name: str, outcome: PackumentOutcome) -> None:
        with self._lock:
            self._packuments.setdefault(name, outcome)

    def report(self, cancelled: bool = False) -> ResolutionReport:
        return ResolutionReport(
            resolved=list(self.resolved),
            deferred=list(self.deferred),
            failures=list(self.failures),
            cancelled=cancelled,
        )
