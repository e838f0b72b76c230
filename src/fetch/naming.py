"""Deterministic tarball file names."""

import os
import re
from urllib.parse import urlsplit

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_name(name: str) -> str:
    """``/`` becomes ``-``, ``@`` is dropped, anything else unsafe becomes ``-``."""
    return _UNSAFE.sub("-", name.replace("/", "-").replace("@", ""))


def tarball_filename(name: str, version: str) -> str:
    """``@scope/pkg-name`` + ``1.2.3`` -> ``scope-pkg-name-1.2.3.tgz``."""
    return f"{sanitize_name(name)}-{_UNSAFE.sub('-', version)}.tgz"


def display_name(url: str) -> str:
    """Basename of a tarball URL with the query string removed.

    Only for logs; requests always use the full URL.
    """
    short_url = url.split("?", 1)[0]
    return os.path.basename(urlsplit(short_url).path) or short_url
