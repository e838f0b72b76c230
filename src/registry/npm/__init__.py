"""npm registry package.

- packument.py: typed view of registry metadata documents
- client.py: HTTP lookups against an npm-compatible registry
"""

from .client import NpmRegistryClient, encode_package_name
from .packument import Packument, VersionDescriptor

__all__ = ["NpmRegistryClient", "Packument", "VersionDescriptor", "encode_package_name"]
