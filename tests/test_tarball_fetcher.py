"""Tests for the tarball fetcher and its strategies."""

import asyncio
import base64
import hashlib
import os
import stat
import sys
from collections import Counter

import pytest

aiohttp_mod = pytest.importorskip("aiohttp")

from aiohttp import web
from aiohttp import test_utils

from closure import DependencyResolver
from fetch import (
    DirectTarballStrategy,
    FetchRequest,
    FetchStrategy,
    NpmPackStrategy,
    StrategyResult,
    TarballFetcher,
)
from versioning.models import ResolvedPackage, UnresolvedPackage

from conftest import FakeRegistry


class TarballServer:
    """Serves fake tarballs and records what was asked for."""

    def __init__(self):
        self.hits = Counter()
        self.queries = []
        self.statuses = {}
        self.bodies = {}

    def app(self):
        app = web.Application()
        app.router.add_get("/{tail:.*}", self.handle)
        return app

    async def handle(self, request):
        self.hits[request.path] += 1
        self.queries.append(request.query_string)
        status = self.statuses.get(request.path, 200)
        if status != 200:
            return web.Response(status=status, text="unavailable")
        body = self.bodies.get(request.path, b"tarball:" + request.path.encode())
        return web.Response(body=body, content_type="application/octet-stream")


def serve(server, scenario):
    """Run ``scenario(url_for)`` against a live TestServer."""
    async def _run():
        async with test_utils.TestServer(server.app()) as ts:
            return await scenario(lambda path: str(ts.make_url(path)))
    return asyncio.run(_run())


def package(name, version, url, integrity=None):
    return ResolvedPackage(name=name, version=version, tarball_url=url, integrity=integrity)


def sri(data, alg="sha512"):
    return f"{alg}-" + base64.b64encode(hashlib.new(alg, data).digest()).decode("ascii")


class FakePack(FetchStrategy):
    """Stands in for ``npm pack``."""

    name = "fake-pack"
    status = "packed"

    def __init__(self):
        self.calls = []

    async def fetch(self, request, session):
        self.calls.append(request.specifier)
        dest = request.dest or os.path.join(request.dest_dir, "packed.tgz")
        with open(dest, "wb") as fh:
            fh.write(b"packed")
        return StrategyResult(ok=True, strategy=self.name, path=dest)


class TestTarballFetcher:
    """Direct downloads against a local HTTP server."""

    def test_downloads_to_deterministic_name(self, tmp_path):
        server = TarballServer()

        async def scenario(url_for):
            fetcher = TarballFetcher(str(tmp_path), strategies=[DirectTarballStrategy()])
            return await fetcher.fetch_all([package("@scope/pkg-name", "1.2.3", url_for("/scope/pkg-name-1.2.3.tgz"))])

        report = serve(server, scenario)
        outcome = report.outcomes[0]
        assert outcome.status == "downloaded"
        assert outcome.path == str(tmp_path / "scope-pkg-name-1.2.3.tgz")
        assert (tmp_path / "scope-pkg-name-1.2.3.tgz").read_bytes() == b"tarball:/scope/pkg-name-1.2.3.tgz"
        assert report.new_downloads == 1

    def test_second_run_is_cached(self, tmp_path):
        server = TarballServer()

        async def scenario(url_for):
            pkg = package("left-pad", "1.3.0", url_for("/left-pad/-/left-pad-1.3.0.tgz"))
            first = await TarballFetcher(str(tmp_path), strategies=[DirectTarballStrategy()]).fetch_all([pkg])
            second = await TarballFetcher(str(tmp_path), strategies=[DirectTarballStrategy()]).fetch_all([pkg])
            return first, second

        first, second = serve(server, scenario)
        assert first.new_downloads == 1
        assert second.new_downloads == 0
        assert [o.status for o in second.outcomes] == ["cached"]
        assert server.hits["/left-pad/-/left-pad-1.3.0.tgz"] == 1

    def test_full_url_with_query_is_requested(self, tmp_path):
        server = TarballServer()

        async def scenario(url_for):
            url = url_for("/private/-/private-1.0.0.tgz") + "?token=abc123"
            fetcher = TarballFetcher(str(tmp_path), strategies=[DirectTarballStrategy()])
            return await fetcher.fetch_all([package("private", "1.0.0", url)])

        report = serve(server, scenario)
        assert report.outcomes[0].ok
        assert server.queries == ["token=abc123"]
        assert os.listdir(tmp_path) == ["private-1.0.0.tgz"]

    def test_duplicate_packages_share_one_download(self, tmp_path):
        server = TarballServer()

        async def scenario(url_for):
            pkg = package("dup", "1.0.0", url_for("/dup-1.0.0.tgz"))
            fetcher = TarballFetcher(str(tmp_path), strategies=[DirectTarballStrategy()])
            return await fetcher.fetch_all([pkg, pkg])

        report = serve(server, scenario)
        assert len(report.outcomes) == 2
        assert all(o.ok for o in report.outcomes)
        assert server.hits["/dup-1.0.0.tgz"] == 1

    def test_not_found_falls_back_to_pack(self, tmp_path):
        server = TarballServer()
        server.statuses["/gone-1.0.0.tgz"] = 404
        pack = FakePack()

        async def scenario(url_for):
            fetcher = TarballFetcher(str(tmp_path), strategies=[DirectTarballStrategy(), pack])
            return await fetcher.fetch_all([package("gone", "1.0.0", url_for("/gone-1.0.0.tgz"))])

        report = serve(server, scenario)
        outcome = report.outcomes[0]
        assert outcome.status == "packed"
        assert pack.calls == ["gone@1.0.0"]
        assert (tmp_path / "gone-1.0.0.tgz").read_bytes() == b"packed"

    def test_failure_is_isolated(self, tmp_path):
        server = TarballServer()
        server.statuses["/b-1.0.0.tgz"] = 500

        async def scenario(url_for):
            fetcher = TarballFetcher(str(tmp_path), strategies=[DirectTarballStrategy()], concurrency=2)
            return await fetcher.fetch_all([
                package("a", "1.0.0", url_for("/a-1.0.0.tgz")),
                package("b", "1.0.0", url_for("/b-1.0.0.tgz")),
                package("c", "1.0.0", url_for("/c-1.0.0.tgz")),
            ])

        report = serve(server, scenario)
        assert [o.status for o in report.outcomes] == ["downloaded", "failed", "downloaded"]
        assert report.partial is True
        assert [f.kind for f in report.failures] == ["NetworkError"]
        assert sorted(os.listdir(tmp_path)) == ["a-1.0.0.tgz", "c-1.0.0.tgz"]

    def test_integrity_match(self, tmp_path):
        server = TarballServer()
        server.bodies["/ok-1.0.0.tgz"] = b"real tarball bytes"

        async def scenario(url_for):
            pkg = package("ok", "1.0.0", url_for("/ok-1.0.0.tgz"), integrity=sri(b"real tarball bytes"))
            return await TarballFetcher(str(tmp_path), strategies=[DirectTarballStrategy()]).fetch_all([pkg])

        assert serve(server, scenario).outcomes[0].status == "downloaded"

    def test_integrity_mismatch_leaves_nothing(self, tmp_path):
        server = TarballServer()
        server.bodies["/bad-1.0.0.tgz"] = b"tampered"

        async def scenario(url_for):
            pkg = package("bad", "1.0.0", url_for("/bad-1.0.0.tgz"), integrity=sri(b"original"))
            return await TarballFetcher(str(tmp_path), strategies=[DirectTarballStrategy()]).fetch_all([pkg])

        report = serve(server, scenario)
        assert report.outcomes[0].status == "failed"
        assert report.failures[0].kind == "IntegrityError"
        assert os.listdir(tmp_path) == []

    def test_missing_tarball_url(self, tmp_path):
        pack = FakePack()
        fetcher = TarballFetcher(str(tmp_path), strategies=[DirectTarballStrategy(), pack])
        report = fetcher.run([package("nourl", "1.0.0", None)])
        assert report.outcomes[0].status == "packed"
        assert pack.calls == ["nourl@1.0.0"]

    def test_deferred_specifiers_go_to_pack(self, tmp_path):
        pack = FakePack()
        fetcher = TarballFetcher(str(tmp_path), strategies=[DirectTarballStrategy(), pack])
        report = fetcher.run([], [UnresolvedPackage(specifier="internal@^2.0.0", reason="not found")])
        assert [o.status for o in report.outcomes] == ["packed"]
        assert pack.calls == ["internal@^2.0.0"]

    def test_no_strategy_applies(self, tmp_path):
        fetcher = TarballFetcher(str(tmp_path), strategies=[DirectTarballStrategy()])
        report = fetcher.run([], [UnresolvedPackage(specifier="internal", reason="not found")])
        assert report.outcomes[0].status == "failed"
        assert report.failures[0].kind == "PrefetchError"

    def test_raising_strategy_falls_through(self, tmp_path):
        """An exception out of one strategy is recorded and the next one runs."""
        class Broken(FetchStrategy):
            name = "broken"

            async def fetch(self, request, session):
                raise RuntimeError("disk on fire")

        pack = FakePack()
        fetcher = TarballFetcher(str(tmp_path), strategies=[Broken(), pack])
        report = fetcher.run([package("a", "1.0.0", None)])
        assert report.outcomes[0].status == "packed"

        report = TarballFetcher(str(tmp_path), strategies=[Broken()]).run([package("b", "1.0.0", None)])
        assert report.outcomes[0].status == "failed"
        assert report.failures[0].kind == "PrefetchError"
        assert "disk on fire" in report.failures[0].message

    def test_creates_destination_directory(self, tmp_path):
        target = tmp_path / "nested" / "tarballs"
        report = TarballFetcher(str(target), strategies=[FakePack()]).run([package("x", "1.0.0", None)])
        assert report.outcomes[0].ok
        assert (target / "x-1.0.0.tgz").exists()


class FakeContent:
    def __init__(self, data):
        self.data = data

    async def iter_chunked(self, size):
        for i in range(0, len(self.data), size):
            yield self.data[i:i + size]


class FakeResponse:
    def __init__(self, data, status=200, content_length=None):
        self.status = status
        self.content = FakeContent(data)
        self.content_length = content_length

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        return self.response


class TestDirectTarballStrategy:
    """Strategy-level checks without a server."""

    def _request(self, tmp_path, url="https://registry.example.test/t/-/t-1.0.0.tgz", integrity=None):
        return FetchRequest(
            specifier="t@1.0.0",
            dest_dir=str(tmp_path),
            filename="t-1.0.0.tgz",
            tarball_url=url,
            integrity=integrity,
        )

    def test_short_body_is_rejected(self, tmp_path):
        session = FakeSession(FakeResponse(b"0123456789", content_length=100))
        result = asyncio.run(DirectTarballStrategy().fetch(self._request(tmp_path), session))
        assert result.ok is False
        assert type(result.error).__name__ == "IntegrityError"
        assert os.listdir(tmp_path) == []

    def test_matching_length_is_written(self, tmp_path):
        session = FakeSession(FakeResponse(b"0123456789", content_length=10))
        result = asyncio.run(DirectTarballStrategy().fetch(self._request(tmp_path), session))
        assert result.ok is True
        assert (tmp_path / "t-1.0.0.tgz").read_bytes() == b"0123456789"

    def test_non_http_url(self, tmp_path):
        session = FakeSession(FakeResponse(b""))
        result = asyncio.run(DirectTarballStrategy().fetch(self._request(tmp_path, url="file:///etc/passwd"), session))
        assert result.ok is False
        assert session.urls == []

    def test_unknown_sri_algorithm_is_ignored(self, tmp_path):
        session = FakeSession(FakeResponse(b"abc", content_length=3))
        request = self._request(tmp_path, integrity="md5-AAAA")
        assert asyncio.run(DirectTarballStrategy().fetch(request, session)).ok is True

    def test_sha1_integrity(self, tmp_path):
        session = FakeSession(FakeResponse(b"abc"))
        request = self._request(tmp_path, integrity=sri(b"abc", "sha1"))
        assert asyncio.run(DirectTarballStrategy().fetch(request, session)).ok is True


@pytest.mark.skipif(sys.platform == "win32", reason="uses a POSIX shell script as npm")
class TestNpmPackStrategy:
    """``npm pack`` fallback with a stand-in executable."""

    def _fake_npm(self, tmp_path, body):
        script = tmp_path / "fake-npm"
        script.write_text("#!/bin/sh\n" + body + "\n")
        script.chmod(script.stat().st_mode | stat.S_IXUSR)
        return str(script)

    def test_pack_moves_tarball_into_place(self, tmp_path):
        npm = self._fake_npm(tmp_path, 'printf packed > "internal-2.1.0.tgz"\necho internal-2.1.0.tgz')
        dest_dir = tmp_path / "out"
        dest_dir.mkdir()
        request = FetchRequest(specifier="internal@^2.0.0", dest_dir=str(dest_dir))

        result = asyncio.run(NpmPackStrategy(npm_command=npm, timeout=10).fetch(request, None))

        assert result.ok is True
        assert result.path == str(dest_dir / "internal-2.1.0.tgz")
        assert (dest_dir / "internal-2.1.0.tgz").read_bytes() == b"packed"

    def test_pack_uses_requested_filename(self, tmp_path):
        npm = self._fake_npm(tmp_path, 'printf packed > "scope-x-1.0.0.tgz"')
        request = FetchRequest(specifier="@scope/x@1.0.0", dest_dir=str(tmp_path), filename="scope-x-1.0.0.tgz")
        result = asyncio.run(NpmPackStrategy(npm_command=npm, timeout=10).fetch(request, None))
        assert result.path == str(tmp_path / "scope-x-1.0.0.tgz")

    def test_pack_failure(self, tmp_path):
        npm = self._fake_npm(tmp_path, 'echo "npm ERR! 404 Not Found" >&2\nexit 1')
        request = FetchRequest(specifier="missing", dest_dir=str(tmp_path))
        result = asyncio.run(NpmPackStrategy(npm_command=npm, timeout=10).fetch(request, None))
        assert result.ok is False
        assert "404 Not Found" in str(result.error)

    def test_pack_timeout(self, tmp_path):
        npm = self._fake_npm(tmp_path, "exec sleep 5")
        request = FetchRequest(specifier="slow", dest_dir=str(tmp_path))
        result = asyncio.run(NpmPackStrategy(npm_command=npm, timeout=0.3).fetch(request, None))
        assert result.ok is False
        assert "timed out" in str(result.error)

    def test_unwritable_destination_is_a_failed_result(self, tmp_path):
        npm = self._fake_npm(tmp_path, 'printf packed > "internal-2.1.0.tgz"')
        dest_dir = tmp_path / "out"
        (dest_dir / "internal-2.1.0.tgz").mkdir(parents=True)
        request = FetchRequest(specifier="internal@^2.0.0", dest_dir=str(dest_dir))

        result = asyncio.run(NpmPackStrategy(npm_command=npm, timeout=10).fetch(request, None))

        assert result.ok is False
        assert "Cannot write" in str(result.error)
        assert [p.name for p in dest_dir.iterdir()] == ["internal-2.1.0.tgz"]

    def test_unwritable_destination_does_not_abort_batch(self, tmp_path):
        npm = self._fake_npm(tmp_path, 'printf packed > "internal-2.1.0.tgz"')
        dest_dir = tmp_path / "out"
        (dest_dir / "internal-2.1.0.tgz").mkdir(parents=True)
        fetcher = TarballFetcher(str(dest_dir), strategies=[NpmPackStrategy(npm_command=npm, timeout=10)])

        report = fetcher.run(
            [ResolvedPackage("other", "1.0.0", None)],
            [UnresolvedPackage(specifier="internal@^2.0.0", reason="not found")],
        )

        assert [o.status for o in report.outcomes] == ["packed", "failed"]
        assert (dest_dir / "other-1.0.0.tgz").read_bytes() == b"packed"
        assert report.failures[0].specifier == "internal@^2.0.0"

    def test_existing_deferred_tarball_is_kept(self, tmp_path):
        npm = self._fake_npm(tmp_path, 'printf packed > "internal-2.1.0.tgz"')
        dest_dir = tmp_path / "out"
        dest_dir.mkdir()
        (dest_dir / "internal-2.1.0.tgz").write_bytes(b"old")
        request = FetchRequest(specifier="internal@^2.0.0", dest_dir=str(dest_dir))

        result = asyncio.run(NpmPackStrategy(npm_command=npm, timeout=10).fetch(request, None))

        assert result.ok is True
        assert result.path == str(dest_dir / "internal-2.1.0.tgz")
        assert (dest_dir / "internal-2.1.0.tgz").read_bytes() == b"old"

    def test_missing_npm_binary(self, tmp_path):
        request = FetchRequest(specifier="x", dest_dir=str(tmp_path))
        strategy = NpmPackStrategy(npm_command=str(tmp_path / "no-such-npm"))
        result = asyncio.run(strategy.fetch(request, None))
        assert result.ok is False
        assert "Cannot run" in str(result.error)


def test_resolve_then_fetch(tmp_path):
    """One good seed and one missing seed produce exactly one tarball."""
    server = TarballServer()

    async def scenario(url_for):
        registry = FakeRegistry(tarball_base=url_for("/"))
        registry.add("left-pad", "1.3.0")
        resolution = DependencyResolver(registry).resolve(["left-pad@1.3.0", "nonexistent-pkg-xyz"])
        fetcher = TarballFetcher(str(tmp_path), strategies=[DirectTarballStrategy()])
        return resolution, await fetcher.fetch_all(resolution.resolved, resolution.deferred)

    resolution, report = serve(server, scenario)
    assert [f.specifier for f in resolution.failures] == ["nonexistent-pkg-xyz"]
    assert report.new_downloads == 1
    assert os.listdir(tmp_path) == ["left-pad-1.3.0.tgz"]
