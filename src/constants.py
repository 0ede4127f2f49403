"""Constants and configuration defaults used in the project."""

from __future__ import annotations

import logging
import os
from enum import Enum
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONNECTION_ERROR = 2
    RESTORE_ERRORS = 3
    MISSING_PACKAGES = 4


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    """

    DEFAULT_FEED_URL = "https://www.nuget.org/api/v2/"
    PACKAGE_EXTENSION = ".nupkg"
    MANIFEST_EXTENSION = ".nuspec"
    PACKAGE_REFERENCE_FILE = "packages.config"
    PACKAGES_FOLDER = "packages"
    SOLUTION_SETTINGS_FOLDER = ".nuget"
    HASH_ALGORITHM = "SHA512"

    LOG_FORMAT = "[%(levelname)s] %(message)s"
    LOG_LEVEL_ENV = "NUPACK_LOG_LEVEL"
    CONFIG_ENV = "NUPACK_CONFIG"

    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    HTTP_RETRY_MAX = 3
    HTTP_CACHE_TTL_SEC = 300

    MACHINE_CACHE_DIR = os.path.join(os.path.expanduser("~"), ".nupack", "cache")
    MAX_FETCH_WORKERS = 4
    ALLOW_PRERELEASE = False
    VERIFY_CACHE_HASHES = True

    # name -> url; order is the query order used during restore
    PACKAGE_SOURCES: List[Dict[str, Any]] = [
        {"name": "nuget.org", "url": DEFAULT_FEED_URL, "enabled": True},
    ]


def default_config_locations() -> List[str]:
    """Default config files, resolved against the current working directory."""
    cwd = os.getcwd()
    return [
        os.path.join(cwd, "nupack.yml"),
        os.path.join(cwd, "nupack.yaml"),
        os.path.join(os.path.expanduser("~"), ".config", "nupack", "nupack.yml"),
    ]


def _load_yaml_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load the first available YAML configuration.

    Lookup order: explicit ``path``, the ``NUPACK_CONFIG`` environment
    variable, then the default locations.

    Returns:
        dict: Parsed configuration, empty when nothing was found.
    """
    candidates: List[str] = []
    if path:
        candidates.append(path)
    env_path = os.environ.get(Constants.CONFIG_ENV)
    if env_path:
        candidates.append(env_path)
    if not path:
        candidates.extend(default_config_locations())

    for candidate in candidates:
        if not os.path.isfile(candidate):
            continue
        try:
            with open(candidate, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Couldn't read config file %s: %s", candidate, exc)
            continue
        if isinstance(data, dict):
            logger.debug("Loaded configuration from %s", candidate)
            return data
        logger.warning("Ignoring config file %s: top level is not a mapping", candidate)
    return {}


def apply_config(cfg: Dict[str, Any]) -> None:
    """Overlay a parsed configuration mapping onto ``Constants``.

    Recognised sections::

        restore: {cache_dir, max_workers, verify_cache_hashes}
        resolver: {allow_prerelease}
        http: {timeout, retries, cache_ttl}
        sources: [{name, url, enabled}]
    """
    if not isinstance(cfg, dict):
        return

    restore = cfg.get("restore") or {}
    if isinstance(restore, dict):
        if restore.get("cache_dir"):
            Constants.MACHINE_CACHE_DIR = os.path.expanduser(str(restore["cache_dir"]))
        if restore.get("max_workers") is not None:
            Constants.MAX_FETCH_WORKERS = max(1, int(restore["max_workers"]))
        if restore.get("verify_cache_hashes") is not None:
            Constants.VERIFY_CACHE_HASHES = bool(restore["verify_cache_hashes"])

    resolver = cfg.get("resolver") or {}
    if isinstance(resolver, dict) and resolver.get("allow_prerelease") is not None:
        Constants.ALLOW_PRERELEASE = bool(resolver["allow_prerelease"])

    http = cfg.get("http") or {}
    if isinstance(http, dict):
        if http.get("timeout") is not None:
            Constants.REQUEST_TIMEOUT = int(http["timeout"])
        if http.get("retries") is not None:
            Constants.HTTP_RETRY_MAX = max(1, int(http["retries"]))
        if http.get("cache_ttl") is not None:
            Constants.HTTP_CACHE_TTL_SEC = int(http["cache_ttl"])

    sources = cfg.get("sources")
    if isinstance(sources, list):
        parsed = []
        for i, entry in enumerate(sources):
            if isinstance(entry, str):
                parsed.append({"name": f"source{i + 1}", "url": entry, "enabled": True})
            elif isinstance(entry, dict) and entry.get("url"):
                parsed.append({
                    "name": str(entry.get("name") or f"source{i + 1}"),
                    "url": str(entry["url"]),
                    "enabled": bool(entry.get("enabled", True)),
                })
        Constants.PACKAGE_SOURCES = parsed
