"""Dependency resolution."""

from .resolver import (  # noqa: F401
    DependencyRequest,
    ResolutionAction,
    ResolutionEntry,
    ResolutionPlan,
    Resolver,
)

__all__ = [
    "DependencyRequest",
    "ResolutionAction",
    "ResolutionEntry",
    "ResolutionPlan",
    "Resolver",
]
