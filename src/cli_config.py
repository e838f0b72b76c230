"""CLI configuration overrides for runtime tunables.

Kept out of the entrypoint so precedence is easy to follow: Constants
defaults, then the YAML file and environment (``_load_yaml_config``), then
the CLI flags applied here.
"""

from __future__ import annotations

import logging

from constants import Constants, _load_yaml_config

logger = logging.getLogger(__name__)


def load_config(args) -> None:
    """Load the YAML config (if any), then apply CLI overrides on top."""
    loaded = _load_yaml_config(getattr(args, "CONFIG", None))
    if loaded:
        logger.info("Loaded configuration from %s", loaded)
    apply_cli_overrides(args)


def apply_cli_overrides(args) -> None:
    """Copy explicitly given CLI values onto Constants."""
    if getattr(args, "REGISTRY", None):
        Constants.REGISTRY_URL_NPM = args.REGISTRY
    if getattr(args, "TAR_DIR", None):
        Constants.TARBALL_DIR = args.TAR_DIR
    if getattr(args, "CONCURRENCY", None) is not None:
        Constants.DOWNLOAD_CONCURRENCY = max(1, int(args.CONCURRENCY))
    if getattr(args, "WORKERS", None) is not None:
        Constants.RESOLVE_WORKERS = max(1, int(args.WORKERS))
    if getattr(args, "RETRIES", None) is not None:
        Constants.HTTP_RETRY_MAX = max(1, int(args.RETRIES))
    if getattr(args, "UNRESOLVED_POLICY", None):
        Constants.UNRESOLVED_POLICY = args.UNRESOLVED_POLICY
    if getattr(args, "NO_PEER", False):
        Constants.INCLUDE_PEER = False
    if getattr(args, "INCLUDE_OPTIONAL", False):
        Constants.INCLUDE_OPTIONAL = True
    if getattr(args, "NO_PACK_FALLBACK", False):
        Constants.PACK_FALLBACK = False
