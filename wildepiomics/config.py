"""
Build configuration.

Paths are derived from a single site root.  API keys and contact details
are loaded from:
  1. Environment variables  (NCBI_API_KEY, CROSSREF_MAILTO, WILDEPIOMICS_CACHE)
  2. .env file in the site root

Usage:
    from wildepiomics.config import BuildConfig
    config = BuildConfig.from_env("/path/to/site", use_gbif=False)
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAILTO = "wildepiomics@example.com"


def _load_env_file(root: str) -> Dict[str, str]:
    """Load key=value pairs from .env file in the site root."""
    env_path = os.path.join(root, ".env")
    vals: Dict[str, str] = {}
    if not os.path.exists(env_path):
        return vals
    with open(env_path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                key, _, value = line.partition("=")
                value = value.strip().strip("'\"")
                vals[key.strip()] = value
    return vals


def _get_key(name: str, env_file: Dict[str, str]) -> Optional[str]:
    """Get a setting from the environment or the .env file."""
    val = os.environ.get(name)
    if val:
        return val
    return env_file.get(name) or None


@dataclass
class BuildConfig:
    """Everything a build needs to know, resolved against ``root``."""

    root: str = "."
    data_dir: Optional[str] = None
    public_dir: Optional[str] = None
    dist_dir: Optional[str] = None
    cache_path: Optional[str] = None
    overrides_path: Optional[str] = None

    # Network
    timeout: float = 15.0
    attempts: int = 3
    backoff: float = 0.5
    request_delay: float = 0.35
    mailto: str = DEFAULT_MAILTO
    ncbi_api_key: Optional[str] = None

    # Behaviour
    use_gbif: bool = True
    refresh: bool = False
    strict: bool = False

    def __post_init__(self):
        self.root = os.path.abspath(self.root)
        if self.data_dir is None:
            self.data_dir = os.path.join(self.root, "data")
        if self.public_dir is None:
            self.public_dir = os.path.join(self.root, "public")
        if self.dist_dir is None:
            self.dist_dir = os.path.join(self.root, "dist")
        if self.cache_path is None:
            self.cache_path = os.path.join(self.root, ".cache", "taxonomy.json")
        if self.overrides_path is None:
            candidate = os.path.join(self.root, "overrides.yaml")
            if os.path.isfile(candidate):
                self.overrides_path = candidate

    @property
    def template_path(self) -> str:
        return os.path.join(self.root, "template.html")

    @property
    def user_agent(self) -> str:
        from . import __version__
        return f"wildEpiOmics/{__version__} (mailto:{self.mailto})"

    @classmethod
    def from_env(cls, root: str = ".", **overrides) -> "BuildConfig":
        """Build a config for ``root``, filling secrets from env / .env.

        Keyword arguments whose value is ``None`` are ignored so CLI flags
        that were not given fall through to the defaults.
        """
        env_file = _load_env_file(os.path.abspath(root))
        kwargs = {k: v for k, v in overrides.items() if v is not None}

        if "ncbi_api_key" not in kwargs:
            kwargs["ncbi_api_key"] = _get_key("NCBI_API_KEY", env_file)
        if "mailto" not in kwargs:
            kwargs["mailto"] = _get_key("CROSSREF_MAILTO", env_file) or DEFAULT_MAILTO
        if "cache_path" not in kwargs:
            cache = _get_key("WILDEPIOMICS_CACHE", env_file)
            if cache:
                kwargs["cache_path"] = cache

        config = cls(root=root, **kwargs)
        if not config.ncbi_api_key:
            logger.debug("No NCBI_API_KEY found -- NCBI Datasets calls are "
                         "limited to 5/second.  Set NCBI_API_KEY in .env.")
        return config
