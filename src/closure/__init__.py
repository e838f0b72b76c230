"""Dependency closure resolution."""

from .context import ResolutionContext, ResolutionReport
from .resolver import DependencyResolver

__all__ = ["DependencyResolver", "ResolutionContext", "ResolutionReport"]
