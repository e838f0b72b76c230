"""Constants used in the project."""

import logging
import os
import sys
from enum import Enum
from typing import Any, Dict, Optional


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONNECTION_ERROR = 2
    EXIT_WARNINGS = 3
    INTERRUPTED = 130


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    REGISTRY_URL_NPM = "https://registry.npmjs.org/"
    PACKAGES_FILE = "packages.txt"
    TARBALL_DIR = "tarballs"
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    LOG_LEVEL_ENV = "TARPREFETCH_LOG_LEVEL"
    CONFIG_ENV = "TARPREFETCH_CONFIG"

    # Metadata documents are small; tarballs get a longer timeout.
    METADATA_TIMEOUT = 10.0
    TARBALL_TIMEOUT = 30.0
    PACK_TIMEOUT = 120.0

    HTTP_RETRY_MAX = 1  # 1 means a single attempt, no retry
    HTTP_RETRY_BASE_DELAY_SEC = 0.3
    PACKUMENT_CACHE_TTL_SEC = 600

    DOWNLOAD_CONCURRENCY = 4
    RESOLVE_WORKERS = 1
    UNRESOLVED_POLICY = "fail"
    INCLUDE_PEER = True
    INCLUDE_OPTIONAL = False
    PACK_FALLBACK = True

    NPM_COMMAND = "npm.cmd" if sys.platform == "win32" else "npm"
    USER_AGENT = "tarprefetch/0.1"


# Maps dotted YAML keys onto Constants attributes.
_CONFIG_KEYS = {
    "registry.url": "REGISTRY_URL_NPM",
    "timeouts.metadata": "METADATA_TIMEOUT",
    "timeouts.tarball": "TARBALL_TIMEOUT",
    "timeouts.pack": "PACK_TIMEOUT",
    "http.retries": "HTTP_RETRY_MAX",
    "http.retry_base_delay": "HTTP_RETRY_BASE_DELAY_SEC",
    "fetch.concurrency": "DOWNLOAD_CONCURRENCY",
    "fetch.pack_fallback": "PACK_FALLBACK",
    "resolve.workers": "RESOLVE_WORKERS",
    "resolve.unresolved_policy": "UNRESOLVED_POLICY",
    "resolve.include_peer": "INCLUDE_PEER",
    "resolve.include_optional": "INCLUDE_OPTIONAL",
    "paths.packages_file": "PACKAGES_FILE",
    "paths.tarball_dir": "TARBALL_DIR",
}


def _candidate_config_paths(explicit: Optional[str] = None):
    if explicit:
        return [explicit]
    env_path = os.environ.get(Constants.CONFIG_ENV)
    if env_path:
        return [env_path]
    return [
        os.path.join(os.getcwd(), "tarprefetch.yml"),
        os.path.join(os.path.expanduser("~"), ".config", "tarprefetch", "tarprefetch.yml"),
    ]


def _lookup(data: Dict[str, Any], dotted: str) -> Any:
    node: Any = data
    for part in dotted.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _apply_config(data: Dict[str, Any]) -> None:
    """Copy recognized keys from a parsed config mapping onto Constants."""
    for dotted, attr in _CONFIG_KEYS.items():
        value = _lookup(data, dotted)
        if value is None:
            continue
        current = getattr(Constants, attr)
        try:
            if isinstance(current, bool):
                value = value if isinstance(value, bool) else str(value).lower() in ("1", "true", "yes", "on")
            elif isinstance(current, int):
                value = int(value)
            elif isinstance(current, float):
                value = float(value)
            else:
                value = str(value)
        except (TypeError, ValueError):
            logging.warning("Ignoring invalid config value for %s: %r", dotted, value)
            continue
        setattr(Constants, attr, value)


def _apply_env() -> None:
    """Environment names carried over from the shell tooling."""
    if os.environ.get("PACKAGES_FILE"):
        Constants.PACKAGES_FILE = os.environ["PACKAGES_FILE"]
    if os.environ.get("TAR_DIR"):
        Constants.TARBALL_DIR = os.environ["TAR_DIR"]


def _load_yaml_config(path: Optional[str] = None) -> Optional[str]:
    """Load the first readable YAML config into Constants, then apply env overrides.

    Returns the path that was loaded, or None when no config file was found.
    """
    import yaml  # pylint: disable=import-outside-toplevel

    loaded = None
    for candidate in _candidate_config_paths(path):
        if not os.path.isfile(candidate):
            if path:
                logging.warning("Config file not found: %s", candidate)
            continue
        try:
            with open(candidate, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as exc:
            logging.error("Failed to load config %s: %s", candidate, exc)
            break
        if isinstance(data, dict):
            _apply_config(data)
            loaded = candidate
        break
    _apply_env()
    return loaded
