"""NPM registry client: packument lookups."""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import quote

from constants import Constants
from common.errors import NetworkError, ResolutionError
from common.http_client import RetryWrapper, get_json
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer
from versioning.cache import TTLCache

from .packument import Packument

logger = logging.getLogger(__name__)


def encode_package_name(name: str) -> str:
    """Encode a package name for the registry URL path.

    ``@scope/name`` becomes ``@scope%2Fname``; the leading ``@`` stays literal.
    """
    return quote(name, safe="@")


class NpmRegistryClient:
    """Fetch and cache packuments from an npm-compatible registry."""

    def __init__(
        self,
        registry_url: str = Constants.REGISTRY_URL_NPM,
        *,
        timeout: float = Constants.METADATA_TIMEOUT,
        retry: Optional[RetryWrapper] = None,
        cache: Optional[TTLCache] = None,
    ):
        """Initialize the client.

        Args:
            registry_url: Registry base URL.
            timeout: Per-request timeout in seconds.
            retry: Optional retry wrapper applied to each GET.
            cache: Packument cache; a fresh one is created when omitted.
        """
        self.registry_url = registry_url.rstrip("/") + "/"
        self.timeout = timeout
        self.retry = retry
        self.cache = cache if cache is not None else TTLCache(Constants.PACKUMENT_CACHE_TTL_SEC)

    def packument_url(self, name: str) -> str:
        return f"{self.registry_url}{encode_package_name(name)}"

    def get_packument(self, name: str) -> Packument:
        """Return the packument for ``name``.

        Raises:
            ResolutionError: the registry does not know the package (404).
            NetworkError: transport failure, unexpected status or bad JSON.
        """
        cache_key = f"npm:{name}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        url = self.packument_url(name)
        headers = {"Accept": "application/json"}
        with Timer() as timer:
            try:
                status_code, _, data = get_json(url, timeout=self.timeout, headers=headers, retry=self.retry)
            except NetworkError as exc:
                exc.specifier = name
                logger.warning(
                    "Metadata fetch failed for %s: %s",
                    name,
                    exc,
                    extra=extra_context(
                        event="http_error",
                        component="client",
                        outcome="network_error",
                        target=safe_url(url),
                        package_manager="npm",
                    )
                )
                raise

        if status_code == 404:
            logger.warning(
                "Package %s not found in registry",
                name,
                extra=extra_context(
                    event="http_response",
                    component="client",
                    outcome="not_found",
                    status_code=404,
                    target=safe_url(url),
                    package_manager="npm",
                )
            )
            raise ResolutionError(f"Package {name} not found", specifier=name)
        if status_code != 200 or data is None:
            raise NetworkError(
                f"Unexpected HTTP {status_code} for {safe_url(url)}",
                specifier=name,
                status_code=status_code,
            )

        packument = Packument.from_json(name, data)
        if is_debug_enabled(logger):
            logger.debug(
                "Packument fetched",
                extra=extra_context(
                    event="http_response",
                    component="client",
                    outcome="success",
                    duration_ms=timer.duration_ms(),
                    count=len(packument.versions),
                    package_manager="npm",
                )
            )
        self.cache.set(cache_key, packument)
        return packument
