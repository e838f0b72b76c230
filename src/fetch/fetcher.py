"""Tarball fetcher: one `.tgz` per resolved package, presence-on-disk is the cache."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

import aiohttp

from constants import Constants
from common.errors import PrefetchError
from common.logging_utils import extra_context
from versioning.models import FailureRecord, ResolvedPackage, UnresolvedPackage

from .naming import tarball_filename
from .strategies import DirectTarballStrategy, FetchRequest, FetchStrategy, NpmPackStrategy, StrategyResult

logger = logging.getLogger(__name__)

STATUS_CACHED = "cached"
STATUS_FAILED = "failed"


@dataclass
class FetchOutcome:
    """Result of fetching a single package."""
    specifier: str
    status: str
    path: Optional[str] = None
    errors: List[FailureRecord] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status != STATUS_FAILED


@dataclass
class FetchReport:
    """All outcomes of one batch, in input order."""
    outcomes: List[FetchOutcome] = field(default_factory=list)

    def _with_status(self, *statuses: str) -> List[FetchOutcome]:
        return [o for o in self.outcomes if o.status in statuses]

    @property
    def cached(self) -> List[FetchOutcome]:
        return self._with_status(STATUS_CACHED)

    @property
    def failed(self) -> List[FetchOutcome]:
        return self._with_status(STATUS_FAILED)

    @property
    def new_downloads(self) -> int:
        return len([o for o in self.outcomes if o.status not in (STATUS_CACHED, STATUS_FAILED)])

    @property
    def failures(self) -> List[FailureRecord]:
        records: List[FailureRecord] = []
        for outcome in self.failed:
            records.extend(outcome.errors)
        return records

    @property
    def partial(self) -> bool:
        return bool(self.failed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcomes": [
                {
                    "specifier": o.specifier,
                    "status": o.status,
                    "path": o.path,
                    "errors": [{"kind": e.kind, "message": e.message} for e in o.errors],
                }
                for o in self.outcomes
            ],
            "new_downloads": self.new_downloads,
        }


def default_strategies(
    *,
    timeout: float = Constants.TARBALL_TIMEOUT,
    pack_timeout: float = Constants.PACK_TIMEOUT,
    pack_fallback: bool = True,
    registry_url: Optional[str] = None,
) -> List[FetchStrategy]:
    """Direct download first, then ``npm pack`` when enabled."""
    strategies: List[FetchStrategy] = [DirectTarballStrategy(timeout=timeout)]
    if pack_fallback:
        strategies.append(NpmPackStrategy(timeout=pack_timeout, registry_url=registry_url))
    return strategies


class TarballFetcher:
    """Ensure a tarball exists in ``dest_dir`` for each package.

    Downloads run concurrently up to ``concurrency``; the outcome list keeps
    the input order regardless of completion order.
    """

    def __init__(
        self,
        dest_dir: str,
        *,
        strategies: Optional[Sequence[FetchStrategy]] = None,
        concurrency: int = Constants.DOWNLOAD_CONCURRENCY,
    ):
        self.dest_dir = dest_dir
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        self.concurrency = max(1, int(concurrency))
        self._inflight: Dict[str, "asyncio.Future[FetchOutcome]"] = {}
        self._inflight_lock: Optional[asyncio.Lock] = None
        self._semaphore: Optional[asyncio.Semaphore] = None

    def request_for(self, package: ResolvedPackage) -> FetchRequest:
        return FetchRequest(
            specifier=package.key,
            dest_dir=self.dest_dir,
            filename=tarball_filename(package.name, package.version),
            tarball_url=package.tarball_url,
            integrity=package.integrity,
        )

    def run(
        self,
        packages: Iterable[ResolvedPackage],
        deferred: Iterable[UnresolvedPackage] = (),
    ) -> FetchReport:
        """Synchronous entry point."""
        return asyncio.run(self.fetch_all(packages, deferred))

    async def fetch_all(
        self,
        packages: Iterable[ResolvedPackage],
        deferred: Iterable[UnresolvedPackage] = (),
    ) -> FetchReport:
        """Fetch every package; one failure never aborts the batch."""
        os.makedirs(self.dest_dir, exist_ok=True)
        fetch_requests = [self.request_for(p) for p in packages]
        fetch_requests.extend(
            FetchRequest(specifier=d.specifier, dest_dir=self.dest_dir) for d in deferred
        )
        self._inflight = {}
        self._inflight_lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(self.concurrency)

        connector = aiohttp.TCPConnector(limit=self.concurrency)
        async with aiohttp.ClientSession(connector=connector, auto_decompress=False) as session:
            outcomes = await asyncio.gather(*(self._fetch_coalesced(r, session) for r in fetch_requests))

        report = FetchReport(outcomes=list(outcomes))
        logger.info(
            "Tarball fetch complete. New downloads: %d, cached: %d, failed: %d",
            report.new_downloads,
            len(report.cached),
            len(report.failed),
            extra=extra_context(
                event="function_exit",
                component="fetcher",
                action="fetch_all",
                outcome="partial" if report.partial else "success",
                count=len(report.outcomes),
            )
        )
        return report

    async def _fetch_coalesced(self, request: FetchRequest, session: aiohttp.ClientSession) -> FetchOutcome:
        """Concurrent requests for the same destination share one fetch."""
        key = request.dest or f"spec:{request.specifier}"
        assert self._inflight_lock is not None
        async with self._inflight_lock:
            future = self._inflight.get(key)
            if future is None:
                future = asyncio.ensure_future(self._fetch(request, session))
                self._inflight[key] = future
        return await future

    async def _fetch(self, request: FetchRequest, session: aiohttp.ClientSession) -> FetchOutcome:
        dest = request.dest
        if dest is not None and os.path.exists(dest):
            logger.info("Already have %s; skipping", os.path.basename(dest))
            return FetchOutcome(specifier=request.specifier, status=STATUS_CACHED, path=dest)

        errors: List[FailureRecord] = []
        assert self._semaphore is not None
        async with self._semaphore:
            for strategy in self.strategies:
                if not strategy.applies(request):
                    continue
                try:
                    result = await strategy.fetch(request, session)
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    logger.error("%s raised for %s: %s", strategy.name, request.specifier, exc)
                    result = StrategyResult.failed(
                        strategy.name,
                        PrefetchError(f"{strategy.name} raised {type(exc).__name__}: {exc}",
                                      specifier=request.specifier),
                    )
                if result.ok:
                    return FetchOutcome(specifier=request.specifier, status=strategy.status, path=result.path)
                if result.error is not None:
                    logger.warning("%s failed for %s: %s", strategy.name, request.specifier, result.error)
                    errors.append(FailureRecord.from_exception(request.specifier, result.error))

        if not errors:
            errors.append(FailureRecord.from_exception(
                request.specifier, PrefetchError(f"No fetch strategy applies to {request.specifier}")
            ))
        logger.error("Could not fetch %s", request.specifier)
        return FetchOutcome(specifier=request.specifier, status=STATUS_FAILED, errors=errors)
