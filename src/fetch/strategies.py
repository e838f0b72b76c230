"""Ordered fetch strategies for one tarball.

Each strategy returns a StrategyResult instead of raising, so the fetcher can
walk the chain and stop at the first success. Every strategy writes to a
temporary name inside the destination directory and publishes with
``os.replace``; a file at the final name is always complete.
"""

from __future__ import annotations

import asyncio
import base64
import glob
import hashlib
import logging
import os
import shutil
import tempfile
import uuid
from dataclasses import dataclass
from typing import Dict, Optional

import aiohttp

from constants import Constants
from common.errors import IntegrityError, NetworkError, PrefetchError, ResolutionError
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

from .naming import display_name

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024
_SRI_ALGORITHMS = ("sha512", "sha384", "sha256", "sha1")


@dataclass(frozen=True)
class FetchRequest:
    """What to fetch and where to put it.

    ``filename`` is None for specifiers kept as-is; the pack strategy then
    names the file after what npm produced.
    """
    specifier: str
    dest_dir: str
    filename: Optional[str] = None
    tarball_url: Optional[str] = None
    integrity: Optional[str] = None

    @property
    def dest(self) -> Optional[str]:
        if self.filename is None:
            return None
        return os.path.join(self.dest_dir, self.filename)


@dataclass
class StrategyResult:
    """Outcome of one strategy attempt."""
    ok: bool
    strategy: str
    path: Optional[str] = None
    error: Optional[PrefetchError] = None

    @classmethod
    def failed(cls, strategy: str, error: PrefetchError) -> "StrategyResult":
        return cls(ok=False, strategy=strategy, error=error)


def _temp_path(dest: str) -> str:
    return f"{dest}.{uuid.uuid4().hex[:8]}.part"


def _discard(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def _sri_expectations(integrity: Optional[str]) -> Dict[str, str]:
    """Parse ``sha512-<b64> sha1-<b64>`` into {algorithm: digest}."""
    expected: Dict[str, str] = {}
    for token in (integrity or "").split():
        alg, _, digest = token.partition("-")
        if alg in _SRI_ALGORITHMS and digest:
            expected.setdefault(alg, digest.split("?", 1)[0])
    return expected


class FetchStrategy:
    """Base class; subclasses implement ``fetch``."""

    name = "base"
    status = "fetched"

    def applies(self, request: FetchRequest) -> bool:
        return True

    async def fetch(self, request: FetchRequest, session: aiohttp.ClientSession) -> StrategyResult:
        raise NotImplementedError


class DirectTarballStrategy(FetchStrategy):
    """GET ``dist.tarball`` and stream it to disk."""

    name = "direct"
    status = "downloaded"

    def __init__(self, timeout: float = Constants.TARBALL_TIMEOUT):
        self.timeout = timeout

    def applies(self, request: FetchRequest) -> bool:
        return request.filename is not None

    async def fetch(self, request: FetchRequest, session: aiohttp.ClientSession) -> StrategyResult:
        url = request.tarball_url
        if not url:
            return StrategyResult.failed(
                self.name, ResolutionError(f"No dist.tarball for {request.specifier}", specifier=request.specifier)
            )
        if not url.startswith(("http://", "https://")):
            return StrategyResult.failed(
                self.name,
                ResolutionError(f"Non-HTTP tarball URL for {request.specifier}: {url}", specifier=request.specifier),
            )

        dest = request.dest
        assert dest is not None
        tmp = _temp_path(dest)
        expected_digests = _sri_expectations(request.integrity)
        hashers = {alg: hashlib.new(alg) for alg in expected_digests}
        logger.info("Downloading %s (%s) -> %s", request.specifier, display_name(url), dest)
        try:
            with Timer() as timer:
                async with session.get(url, timeout=aiohttp.ClientTimeout(total=self.timeout)) as response:
                    if not 200 <= response.status < 300:
                        raise NetworkError(
                            f"GET {safe_url(url)} returned HTTP {response.status}",
                            specifier=request.specifier,
                            status_code=response.status,
                        )
                    expected_length = response.content_length
                    written = 0
                    with open(tmp, "wb") as fh:
                        async for chunk in response.content.iter_chunked(_CHUNK_SIZE):
                            fh.write(chunk)
                            written += len(chunk)
                            for hasher in hashers.values():
                                hasher.update(chunk)

            if expected_length is not None and written != expected_length:
                raise IntegrityError(
                    f"{request.specifier}: expected {expected_length} bytes, got {written}",
                    specifier=request.specifier,
                )
            for alg, hasher in hashers.items():
                actual = base64.b64encode(hasher.digest()).decode("ascii")
                if actual != expected_digests[alg]:
                    raise IntegrityError(f"{request.specifier}: {alg} digest mismatch", specifier=request.specifier)

            os.replace(tmp, dest)
            if is_debug_enabled(logger):
                logger.debug(
                    "Tarball written",
                    extra=extra_context(
                        event="download",
                        component="fetcher",
                        action="direct",
                        outcome="success",
                        duration_ms=timer.duration_ms(),
                        size=written,
                        target=safe_url(url),
                    )
                )
            return StrategyResult(ok=True, strategy=self.name, path=dest)
        except asyncio.TimeoutError:
            return StrategyResult.failed(
                self.name,
                NetworkError(f"GET {safe_url(url)} timed out after {self.timeout} seconds", specifier=request.specifier),
            )
        except aiohttp.ClientError as exc:
            return StrategyResult.failed(
                self.name, NetworkError(f"GET {safe_url(url)} failed: {exc}", specifier=request.specifier)
            )
        except PrefetchError as exc:
            return StrategyResult.failed(self.name, exc)
        except OSError as exc:
            return StrategyResult.failed(
                self.name, PrefetchError(f"Cannot write {dest}: {exc}", specifier=request.specifier)
            )
        finally:
            _discard(tmp)


class NpmPackStrategy(FetchStrategy):
    """Run ``npm pack <spec>`` in a scratch directory and move the result into place."""

    name = "npm-pack"
    status = "packed"

    def __init__(
        self,
        npm_command: str = Constants.NPM_COMMAND,
        timeout: float = Constants.PACK_TIMEOUT,
        registry_url: Optional[str] = None,
    ):
        self.npm_command = npm_command
        self.timeout = timeout
        self.registry_url = registry_url

    def _command(self, specifier: str):
        cmd = [self.npm_command, "pack", specifier]
        if self.registry_url:
            cmd.extend(["--registry", self.registry_url])
        return cmd

    async def fetch(self, request: FetchRequest, session: aiohttp.ClientSession) -> StrategyResult:
        logger.info("Attempting npm pack fallback for %s", request.specifier)
        with tempfile.TemporaryDirectory(prefix="tarprefetch-pack-") as workdir:
            try:
                proc = await asyncio.create_subprocess_exec(
                    *self._command(request.specifier),
                    cwd=workdir,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except OSError as exc:
                return StrategyResult.failed(
                    self.name, PrefetchError(f"Cannot run {self.npm_command}: {exc}", specifier=request.specifier)
                )

            try:
                _, stderr = await asyncio.wait_for(proc.communicate(), self.timeout)
            except asyncio.TimeoutError:
                return StrategyResult.failed(
                    self.name,
                    NetworkError(f"npm pack {request.specifier} timed out after {self.timeout} seconds",
                                 specifier=request.specifier),
                )
            finally:
                if proc.returncode is None:
                    proc.kill()
                    await proc.wait()

            if proc.returncode != 0:
                detail = (stderr or b"").decode("utf-8", errors="replace").strip().splitlines()
                return StrategyResult.failed(
                    self.name,
                    PrefetchError(
                        f"npm pack {request.specifier} exited with {proc.returncode}: "
                        f"{detail[-1] if detail else 'no output'}",
                        specifier=request.specifier,
                    ),
                )

            produced = sorted(glob.glob(os.path.join(workdir, "*.tgz")), key=os.path.getmtime)
            if not produced:
                return StrategyResult.failed(
                    self.name, PrefetchError(f"npm pack produced no tarball for {request.specifier}",
                                             specifier=request.specifier)
                )

            dest = request.dest
            if dest is None:
                # The file name is only known once npm has packed.
                dest = os.path.join(request.dest_dir, os.path.basename(produced[-1]))
                if os.path.isfile(dest):
                    logger.info("Already have %s; keeping existing file", os.path.basename(dest))
                    return StrategyResult(ok=True, strategy=self.name, path=dest)
            tmp = _temp_path(dest)
            try:
                shutil.copyfile(produced[-1], tmp)
                os.replace(tmp, dest)
            except OSError as exc:
                return StrategyResult.failed(
                    self.name, PrefetchError(f"Cannot write {dest}: {exc}", specifier=request.specifier)
                )
            finally:
                _discard(tmp)
        return StrategyResult(ok=True, strategy=self.name, path=dest)
