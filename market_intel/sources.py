"""
Source profile catalog.

Profiles are loaded once from ``sources.yml`` (shipped with the package) or
from a caller-supplied YAML file. Adding a source is a data change: each
entry carries its domain, categories, hourly quota, CSS selectors and fetch
overrides.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterator, List, Optional
from urllib.parse import quote, urlparse

import yaml
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).with_name("sources.yml")
DEFAULT_RATE_LIMIT = 60  # requests per hour
DEFAULT_SEARCH_PATH = "/search?q={query}"

HIGH_VOLUME_THRESHOLD = 200
PREMIUM_THRESHOLD = 60


class FetchOptions(BaseModel):
    """Per-source overrides handed to the fetch collaborator."""
    model_config = ConfigDict(frozen=True)

    headers: Dict[str, str] = Field(default_factory=dict)
    wait_for_ms: Optional[int] = None
    include_tags: List[str] = Field(default_factory=list)
    exclude_tags: List[str] = Field(default_factory=list)
    only_main_content: bool = True


class SourceProfile(BaseModel):
    """Static configuration for one origin site."""
    model_config = ConfigDict(frozen=True)

    key: str = Field(..., description="Catalog key (e.g., 'product_hunt')")
    name: str = Field(..., description="Display name (e.g., 'Product Hunt')")
    domain: str = Field(..., description="Origin domain without 'www.'")
    categories: List[str] = Field(default_factory=list)
    rate_limit: int = Field(DEFAULT_RATE_LIMIT, description="Requests per hour")
    selectors: Dict[str, str] = Field(default_factory=dict)
    fetch: FetchOptions = Field(default_factory=FetchOptions)
    search_path: str = DEFAULT_SEARCH_PATH

    def selector(self, name: str) -> Optional[str]:
        return self.selectors.get(name) or None


def normalize_host(url: str) -> Optional[str]:
    """Lowercased host of ``url`` with a leading 'www.' removed."""
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    return host


class SourceCatalog:
    """
    Lookup table of source profiles plus named source groups.

    Usage:
        catalog = load_catalog()
        profile = catalog.get_source_by_url("https://www.etsy.com/listing/1")
        for source in catalog.group("trending")[:5]:
            url = catalog.build_search_url(source, "templates")
    """

    def __init__(
        self,
        profiles: Dict[str, SourceProfile],
        groups: Optional[Dict[str, List[str]]] = None,
    ):
        self._profiles = dict(profiles)
        self._groups = {name: list(keys) for name, keys in (groups or {}).items()}

    def __len__(self) -> int:
        return len(self._profiles)

    def __iter__(self) -> Iterator[SourceProfile]:
        return iter(self._profiles.values())

    def __contains__(self, key: str) -> bool:
        return key in self._profiles

    def keys(self) -> List[str]:
        return list(self._profiles)

    def get(self, key: str) -> Optional[SourceProfile]:
        return self._profiles.get(key)

    def get_source_by_url(self, url: str) -> Optional[SourceProfile]:
        """
        Find the profile whose domain matches the URL's host.

        A match is a substring match in either direction, so both
        ``shop.etsy.com`` and ``etsy.com`` resolve to the Etsy profile.
        Profiles are tried in catalog order.
        """
        host = normalize_host(url)
        if not host:
            return None

        for profile in self._profiles.values():
            if profile.domain in host or host in profile.domain:
                return profile
        return None

    def is_supported_url(self, url: str) -> bool:
        return self.get_source_by_url(url) is not None

    def get_rate_limit(self, key: str) -> int:
        profile = self._profiles.get(key)
        return profile.rate_limit if profile else DEFAULT_RATE_LIMIT

    def group_names(self) -> List[str]:
        return list(self._groups)

    def group(self, name: str) -> List[SourceProfile]:
        """Profiles in a named group, skipping keys missing from the catalog."""
        keys = self._groups.get(name, [])
        return [self._profiles[k] for k in keys if k in self._profiles]

    def in_group(self, key: str, name: str) -> bool:
        return key in self._groups.get(name, [])

    def high_volume_sources(self) -> List[SourceProfile]:
        return [p for p in self._profiles.values() if p.rate_limit >= HIGH_VOLUME_THRESHOLD]

    def premium_sources(self) -> List[SourceProfile]:
        return [p for p in self._profiles.values() if p.rate_limit <= PREMIUM_THRESHOLD]

    def build_search_url(self, profile: SourceProfile, query: str) -> str:
        """Listing/search URL on ``profile`` for ``query``."""
        path = profile.search_path.format(query=quote(query, safe=""))
        return f"https://{profile.domain}{path}"


def _parse_catalog(config: dict, origin: str) -> SourceCatalog:
    if not isinstance(config, dict) or not isinstance(config.get("sources"), dict):
        raise ValueError(f"Source catalog must define a 'sources' mapping: {origin}")

    profiles = {}
    for key, entry in config["sources"].items():
        entry = dict(entry or {})
        entry.setdefault("key", key)
        profiles[key] = SourceProfile.model_validate(entry)

    groups = config.get("groups") or {}
    for name, keys in groups.items():
        missing = [k for k in keys if k not in profiles]
        if missing:
            logger.warning(f"Group '{name}' references unknown sources: {missing}")

    logger.debug(f"Loaded {len(profiles)} source profiles from {origin}")
    return SourceCatalog(profiles, groups)


def load_catalog(path: Optional[Path | str] = None) -> SourceCatalog:
    """
    Load a source catalog from YAML.

    Args:
        path: Catalog file. Defaults to the packaged ``sources.yml``.

    Returns:
        The parsed SourceCatalog

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not a valid catalog
    """
    path = Path(path) if path else DEFAULT_CATALOG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Source catalog not found: {path}")

    with open(path) as f:
        config = yaml.safe_load(f)

    return _parse_catalog(config, str(path))


@lru_cache(maxsize=1)
def default_catalog() -> SourceCatalog:
    """The packaged catalog, loaded once per process."""
    return load_catalog()
