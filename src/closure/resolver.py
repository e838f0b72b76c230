"""Dependency closure resolver.

Breadth-first walk over ``dependencies`` / ``peerDependencies`` edges,
starting from a seed list of specifiers. Every dequeued specifier is resolved
to an exact version against current registry metadata, so two parents asking
for different ranges of the same package may both contribute a version to the
closure. Visited keys are exact ``name@version`` strings, which is what makes
cyclic graphs terminate.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Iterator, Optional, Tuple

from common.errors import InputError, NetworkError, PrefetchError, ResolutionError
from common.logging_utils import extra_context, is_debug_enabled
from registry.npm.client import NpmRegistryClient
from registry.npm.packument import Packument, VersionDescriptor
from versioning.models import PackageSpecifier, ResolvedPackage, UnresolvedPolicy
from versioning.parser import parse_dependency, parse_specifier
from versioning.resolvers.npm import NpmVersionResolver

from .context import ResolutionContext, ResolutionReport

logger = logging.getLogger(__name__)


class DependencyResolver:
    """Compute the transitive closure of a seed list of specifiers."""

    def __init__(
        self,
        client: NpmRegistryClient,
        *,
        version_resolver: Optional[NpmVersionResolver] = None,
        policy: UnresolvedPolicy = UnresolvedPolicy.FAIL,
        include_peer: bool = True,
        include_optional: bool = False,
        workers: int = 1,
    ):
        """Initialize the resolver.

        Args:
            client: Registry client used for packument lookups.
            version_resolver: Picks exact versions; defaults to NpmVersionResolver.
            policy: Handling of specifiers that cannot be resolved.
            include_peer: Follow peerDependencies edges.
            include_optional: Follow optionalDependencies edges.
            workers: Metadata prefetch threads; 1 keeps everything sequential.
        """
        self.client = client
        self.version_resolver = version_resolver or NpmVersionResolver()
        self.policy = policy
        self.include_peer = include_peer
        self.include_optional = include_optional
        self.workers = max(1, int(workers))
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Stop dequeuing; ``resolve`` returns what it has so far."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def resolve(self, specifiers: Iterable[str]) -> ResolutionReport:
        """Resolve seed specifiers into an ordered, de-duplicated closure."""
        ctx = ResolutionContext()
        for token in specifiers:
            try:
                ctx.enqueue(parse_specifier(token))
            except InputError as exc:
                logger.warning("Skipping malformed specifier '%s': %s", token, exc)
                ctx.record_failure(token, exc)

        while ctx.queue:
            if self._cancel.is_set():
                logger.warning("Resolution cancelled with %d item(s) still queued", len(ctx.queue))
                return ctx.report(cancelled=True)
            if self.workers > 1 and ctx.lookup_packument(ctx.queue[0].name) is None:
                self._warm_metadata(ctx)
            self._process(ctx, ctx.queue.popleft())

        logger.info(
            "Resolved %d package(s), %d failure(s), %d deferred",
            len(ctx.resolved),
            len(ctx.failures),
            len(ctx.deferred),
            extra=extra_context(
                event="function_exit",
                component="resolver",
                action="resolve",
                outcome="partial" if ctx.failures else "success",
                count=len(ctx.resolved),
            )
        )
        return ctx.report()

    def _process(self, ctx: ResolutionContext, spec: PackageSpecifier) -> None:
        try:
            packument = self._packument(ctx, spec.name)
            version, candidate_count, error = self.version_resolver.pick(spec.spec, packument)
            if version is None:
                raise ResolutionError(f"{spec}: {error}", specifier=spec.raw)
            descriptor = packument.get(version)
            if descriptor is None:
                raise ResolutionError(f"{spec.name}@{version} is tagged but not published", specifier=spec.raw)
        except ResolutionError as exc:
            self._unresolved(ctx, spec, exc)
            return
        except NetworkError as exc:
            logger.warning("Could not resolve %s: %s", spec.raw, exc)
            ctx.record_failure(spec.raw, exc)
            return

        package = ResolvedPackage(
            name=spec.name,
            version=version,
            tarball_url=descriptor.tarball_url,
            integrity=descriptor.sri,
        )
        if not ctx.mark_visited(package.key):
            return
        ctx.add_resolved(package)
        if is_debug_enabled(logger):
            logger.debug(
                "Resolved %s -> %s",
                spec.raw,
                package.key,
                extra=extra_context(
                    event="decision",
                    component="resolver",
                    action="pick",
                    resolution_mode=spec.mode.value,
                    count=candidate_count,
                )
            )

        for dep_name, dep_range in self._edges(descriptor):
            try:
                ctx.enqueue(parse_dependency(dep_name, dep_range))
            except InputError as exc:
                logger.warning("Skipping dependency of %s: %s", package.key, exc)
                ctx.record_failure(exc.specifier or f"{dep_name}@{dep_range}", exc)

    def _unresolved(self, ctx: ResolutionContext, spec: PackageSpecifier, exc: ResolutionError) -> None:
        if self.policy == UnresolvedPolicy.KEEP:
            logger.warning("Could not resolve %s (%s); keeping as-is", spec.raw, exc)
            ctx.defer(spec.raw, str(exc))
        else:
            logger.warning("Could not resolve %s: %s", spec.raw, exc)
            ctx.record_failure(spec.raw, exc)

    def _edges(self, descriptor: VersionDescriptor) -> Iterator[Tuple[str, str]]:
        yield from descriptor.dependencies.items()
        if self.include_peer:
            yield from descriptor.peer_dependencies.items()
        if self.include_optional:
            yield from descriptor.optional_dependencies.items()

    def _packument(self, ctx: ResolutionContext, name: str) -> Packument:
        """Fetch once per run; failures are memoized too."""
        outcome = ctx.lookup_packument(name)
        if outcome is None:
            try:
                outcome = self.client.get_packument(name)
            except (ResolutionError, NetworkError) as exc:
                outcome = exc
            ctx.store_packument(name, outcome)
        if isinstance(outcome, PrefetchError):
            raise outcome
        return outcome

    def _warm_metadata(self, ctx: ResolutionContext) -> None:
        """Fetch packuments for every queued name concurrently.

        Only the metadata memo is filled here; queue processing stays in
        order on the calling thread.
        """
        names = list(dict.fromkeys(s.name for s in ctx.queue if ctx.lookup_packument(s.name) is None))
        if len(names) < 2:
            return

        def _fetch(name: str) -> None:
            try:
                self._packument(ctx, name)
            except PrefetchError:
                pass  # memoized; reported when the item is processed

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            list(pool.map(_fetch, names))
