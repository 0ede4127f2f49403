"""Solution model: a directory holding projects with ``packages.config`` files."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from glob import glob
from typing import Dict, List, Optional

from constants import Constants
from errors import SolutionNotAvailableError
from references.store import PackageReference, PackageReferenceFile

logger = logging.getLogger(__name__)


@dataclass
class Project:
    name: str
    reference_file: PackageReferenceFile

    @property
    def directory(self) -> str:
        return os.path.dirname(os.path.abspath(self.reference_file.path))


class Solution:
    """Projects discovered below a solution directory.

    Layout::

        <solution>/
            .nuget/packages.config      solution-level references
            packages/                   local repository (side-by-side)
            <Project>/packages.config   one per project
    """

    def __init__(self, directory: str):
        self.directory = os.path.abspath(directory)
        self._projects: Optional[List[Project]] = None

    @classmethod
    def open(cls, directory: str) -> "Solution":
        if not os.path.isdir(directory):
            raise SolutionNotAvailableError(f"Solution directory not found: {directory}")
        solution = cls(directory)
        solution.reload()
        return solution

    def reload(self) -> None:
        """Rediscover project reference files."""
        skipped = (
            os.path.join(self.directory, Constants.PACKAGES_FOLDER) + os.sep,
            os.path.join(self.directory, Constants.SOLUTION_SETTINGS_FOLDER) + os.sep,
        )
        pattern = os.path.join(self.directory, "**", Constants.PACKAGE_REFERENCE_FILE)
        projects = []
        for path in sorted(glob(pattern, recursive=True)):
            if path.startswith(skipped):
                continue
            projects.append(Project(os.path.basename(os.path.dirname(path)), PackageReferenceFile(path)))
        logger.debug("Discovered %d project(s) under %s", len(projects), self.directory)
        self._projects = projects

    @property
    def is_open(self) -> bool:
        return self._projects is not None

    def close(self) -> None:
        self._projects = None

    def _require_open(self) -> List[Project]:
        if self._projects is None:
            raise SolutionNotAvailableError(f"Solution {self.directory} is not open")
        return self._projects

    @property
    def identity(self) -> str:
        return os.path.normcase(os.path.realpath(self.directory))

    @property
    def projects(self) -> List[Project]:
        return list(self._require_open())

    @property
    def solution_references(self) -> PackageReferenceFile:
        return PackageReferenceFile(
            os.path.join(self.directory, Constants.SOLUTION_SETTINGS_FOLDER, Constants.PACKAGE_REFERENCE_FILE),
            name="(solution)",
        )

    @property
    def local_repository_path(self) -> str:
        return os.path.join(self.directory, Constants.PACKAGES_FOLDER)

    def reference_files(self) -> List[PackageReferenceFile]:
        """Project reference files followed by the solution-level one."""
        files = [p.reference_file for p in self._require_open()]
        files.append(self.solution_references)
        return files

    def get_all_references(self) -> List[PackageReference]:
        """Every reference of every store, deduplicated by (id, version), first seen kept."""
        seen: Dict[tuple, PackageReference] = {}
        for ref_file in self.reference_files():
            for reference in ref_file.get_package_references():
                seen.setdefault(reference.key, reference)
        return list(seen.values())
