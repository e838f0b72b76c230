"""Tarball fetching."""

from .fetcher import FetchOutcome, FetchReport, TarballFetcher, default_strategies
from .naming import display_name, sanitize_name, tarball_filename
from .strategies import DirectTarballStrategy, FetchRequest, FetchStrategy, NpmPackStrategy, StrategyResult

__all__ = [
    "DirectTarballStrategy",
    "FetchOutcome",
    "FetchReport",
    "FetchRequest",
    "FetchStrategy",
    "NpmPackStrategy",
    "StrategyResult",
    "TarballFetcher",
    "default_strategies",
    "display_name",
    "sanitize_name",
    "tarball_filename",
]
