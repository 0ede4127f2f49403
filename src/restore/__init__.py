"""Package restore for solutions."""

from .coordinator import (  # noqa: F401
    CancellationToken,
    RestoreCoordinator,
    RestoreFailure,
    RestoreReport,
    RestoreState,
)
from .solution import Project, Solution  # noqa: F401

__all__ = [
    "CancellationToken",
    "RestoreCoordinator",
    "RestoreFailure",
    "RestoreReport",
    "RestoreState",
    "Project",
    "Solution",
]
