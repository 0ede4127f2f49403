"""Persisted package reference stores."""

from .store import PackageReference, PackageReferenceFile  # noqa: F401

__all__ = ["PackageReference", "PackageReferenceFile"]
