"""tarprefetch - npm tarball prefetcher

Reads package specifiers, resolves their transitive dependency closure
against an npm registry and stores one tarball per resolved version in a
local directory that doubles as the cache.
"""
import json
import logging
import os
import signal
import sys
from typing import List, Optional

from args import parse_args
from cli_config import load_config
from closure import DependencyResolver, ResolutionReport
from common.http_client import with_retries
from common.logging_utils import configure_logging, extra_context, is_debug_enabled
from constants import Constants, ExitCodes
from fetch import FetchReport, TarballFetcher, default_strategies
from registry.npm.client import NpmRegistryClient
from versioning.models import UnresolvedPolicy
from versioning.parser import read_specifier_lines

logger = logging.getLogger(__name__)


def load_specifiers(args) -> List[str]:
    """Collect specifiers from -p flags and list files.

    Falls back to Constants.PACKAGES_FILE when neither is given.
    """
    specifiers = list(getattr(args, "SINGLE", None) or [])
    files = list(getattr(args, "LIST_FROM_FILE", None) or [])
    if not specifiers and not files:
        files = [Constants.PACKAGES_FILE]
    for file_name in files:
        try:
            specifiers.extend(read_specifier_lines(file_name))
        except FileNotFoundError as e:
            logging.error("File not found: %s, aborting", e)
            sys.exit(ExitCodes.FILE_ERROR.value)
        except OSError as e:
            logging.error("IO error: %s, aborting", e)
            sys.exit(ExitCodes.FILE_ERROR.value)
    return specifiers


def build_resolver() -> DependencyResolver:
    """Build a resolver from the current Constants."""
    retry = None
    if Constants.HTTP_RETRY_MAX > 1:
        retry = with_retries(Constants.HTTP_RETRY_MAX, Constants.HTTP_RETRY_BASE_DELAY_SEC)
    client = NpmRegistryClient(
        Constants.REGISTRY_URL_NPM,
        timeout=Constants.METADATA_TIMEOUT,
        retry=retry,
    )
    try:
        policy = UnresolvedPolicy(str(Constants.UNRESOLVED_POLICY).lower())
    except ValueError:
        logging.warning("Unknown unresolved policy '%s'; using 'fail'", Constants.UNRESOLVED_POLICY)
        policy = UnresolvedPolicy.FAIL
    return DependencyResolver(
        client,
        policy=policy,
        include_peer=Constants.INCLUDE_PEER,
        include_optional=Constants.INCLUDE_OPTIONAL,
        workers=Constants.RESOLVE_WORKERS,
    )


def build_fetcher() -> TarballFetcher:
    """Build a fetcher from the current Constants."""
    strategies = default_strategies(
        timeout=Constants.TARBALL_TIMEOUT,
        pack_timeout=Constants.PACK_TIMEOUT,
        pack_fallback=Constants.PACK_FALLBACK,
        registry_url=Constants.REGISTRY_URL_NPM,
    )
    return TarballFetcher(
        Constants.TARBALL_DIR,
        strategies=strategies,
        concurrency=Constants.DOWNLOAD_CONCURRENCY,
    )


def export_json(path: str, resolution: ResolutionReport, fetch_report: Optional[FetchReport]) -> None:
    """Write resolution and fetch results as JSON."""
    payload = {"resolution": resolution.to_dict()}
    if fetch_report is not None:
        payload["fetch"] = fetch_report.to_dict()
    try:
        with open(path, "w", encoding="utf-8") as file:
            json.dump(payload, file, indent=2)
        logging.info("JSON report written to %s", path)
    except OSError as e:
        logging.error("Could not write report %s: %s", path, e)
        sys.exit(ExitCodes.FILE_ERROR.value)


def print_summary(resolution: ResolutionReport, fetch_report: Optional[FetchReport]) -> None:
    """Log a human-readable run summary."""
    logging.info("--------------------------------------")
    logging.info("Resolved packages: %d", len(resolution.resolved))
    if fetch_report is not None:
        logging.info("New downloads: %d, already cached: %d",
                     fetch_report.new_downloads, len(fetch_report.cached))
        logging.info("Tarballs are in: %s", os.path.abspath(Constants.TARBALL_DIR))
    failures = list(resolution.failures)
    if fetch_report is not None:
        failures.extend(fetch_report.failures)
    if failures:
        logging.warning("Failed items: %d", len(failures))
        for record in failures:
            logging.warning("  - %s [%s] %s", record.specifier, record.kind, record.message)


def exit_code(resolution: ResolutionReport, fetch_report: Optional[FetchReport], error_on_warnings: bool) -> int:
    """Map a run outcome to an ExitCodes value."""
    failures = list(resolution.failures) + (fetch_report.failures if fetch_report else [])
    if not failures:
        return ExitCodes.SUCCESS.value
    if not resolution.resolved and all(f.kind == "NetworkError" for f in failures):
        return ExitCodes.CONNECTION_ERROR.value
    if error_on_warnings:
        return ExitCodes.EXIT_WARNINGS.value
    return ExitCodes.SUCCESS.value


def resolve_interruptibly(resolver: DependencyResolver, specifiers: List[str]) -> ResolutionReport:
    """Run the resolver with the first Ctrl-C mapped to ``resolver.cancel()``.

    A second Ctrl-C raises KeyboardInterrupt as usual.
    """
    def _on_sigint(signum, frame):
        if resolver.cancelled:
            raise KeyboardInterrupt
        logging.warning("Interrupt received; stopping after the current package.")
        resolver.cancel()

    try:
        previous = signal.signal(signal.SIGINT, _on_sigint)
    except ValueError:
        # Handlers can only be installed from the main thread.
        return resolver.resolve(specifiers)
    try:
        return resolver.resolve(specifiers)
    finally:
        signal.signal(signal.SIGINT, previous)


def main(argv=None):
    """Main function of the program."""
    args = parse_args(argv)
    os.environ[Constants.LOG_LEVEL_ENV] = str(args.LOG_LEVEL).upper()
    configure_logging(getattr(args, "LOG_FILE", None))
    load_config(args)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(event="function_entry", component="cli", action="main")
        )

    specifiers = load_specifiers(args)
    if not specifiers:
        logging.error("No packages found in the input list.")
        sys.exit(ExitCodes.FILE_ERROR.value)
    logging.info("Resolving %d seed specifier(s) against %s", len(specifiers), Constants.REGISTRY_URL_NPM)

    resolver = build_resolver()
    fetch_report = None
    try:
        resolution = resolve_interruptibly(resolver, specifiers)
        if resolution.cancelled:
            logging.warning("Interrupted; resolution stopped before the closure was complete.")
            if args.OUTPUT:
                export_json(args.OUTPUT, resolution, None)
            print_summary(resolution, None)
            sys.exit(ExitCodes.INTERRUPTED.value)
        if args.RESOLVE_ONLY:
            for package in resolution.resolved:
                print(package.key)
            for deferred in resolution.deferred:
                print(f"{deferred.specifier} (unresolved)")
        else:
            fetch_report = build_fetcher().run(resolution.resolved, resolution.deferred)
    except KeyboardInterrupt:
        logging.warning("Interrupted; no partially written tarballs were left behind.")
        sys.exit(ExitCodes.INTERRUPTED.value)

    if args.OUTPUT:
        export_json(args.OUTPUT, resolution, fetch_report)
    print_summary(resolution, fetch_report)
    sys.exit(exit_code(resolution, fetch_report, args.ERROR_ON_WARNINGS))


if __name__ == "__main__":
    main()
