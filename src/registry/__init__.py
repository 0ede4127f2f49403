"""Package repositories.

This package provides the repository collaborators used during restore:
- base.py: repository contract and version selection helpers
- local.py: on-disk .nupkg repository (solution packages folder, folder feeds)
- cache.py: machine cache with per-package locking and payload hashing
- feed.py: remote OData feed client
- sources.py: configured package sources
"""

from .base import PackageRepository  # noqa: F401
from .cache import HashProvider, MachineCache  # noqa: F401
from .feed import FeedRepository  # noqa: F401
from .local import LocalPackageRepository, package_file_name  # noqa: F401
from .sources import PackageSource, PackageSourceProvider  # noqa: F401

__all__ = [
    "PackageRepository",
    "HashProvider",
    "MachineCache",
    "FeedRepository",
    "LocalPackageRepository",
    "package_file_name",
    "PackageSource",
    "PackageSourceProvider",
]
