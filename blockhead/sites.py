"""
Site records and the JSON file that stores them.

The store is a flat list of site objects. A malformed file never erases the
list that was last loaded successfully.
"""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .config import config
from .errors import InvalidDomain, InvalidPath

logger = logging.getLogger(__name__)

# Leading alphanumeric keeps ".", ".." and "-flag" out of paths and argv
DOMAIN_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9.-]*")


def validate_domain(domain: str) -> str:
    """Return the domain unchanged or raise InvalidDomain."""
    if not isinstance(domain, str) or not DOMAIN_RE.fullmatch(domain):
        raise InvalidDomain(f"Invalid domain {domain!r}: use only letters, digits, dots and hyphens")
    return domain


# Whitespace and characters nginx treats as syntax or variable expansion
ROOT_UNSAFE_RE = re.compile(r"[\s;{}#\"'$\\]")


def validate_root(root: str) -> str:
    """Return the root unchanged or raise InvalidPath if nginx could misread it."""
    if not isinstance(root, str) or not root or ROOT_UNSAFE_RE.search(root):
        raise InvalidPath(f"Invalid site root {root!r}: whitespace and ; {{ }} # $ \\ or quotes are not allowed")
    return root


class Site(BaseModel):
    """A managed domain."""

    domain: str = Field(..., description="Unique hostname served by this site")
    repo: str = Field("", description="Source locator handed to git")
    root: str = Field(..., description="Absolute path of the working tree")
    port: Optional[int] = Field(None, gt=0, description="Local port to proxy to; static site when unset")
    start_command: Optional[str] = Field(None, description="Overrides the standard start procedure")

    @field_validator("root")
    @classmethod
    def check_root(cls, value: str) -> str:
        try:
            return validate_root(value)
        except InvalidPath as e:
            raise ValueError(e.message) from e

    @property
    def root_path(self) -> Path:
        return Path(self.root)

    def to_dict(self) -> dict:
        return self.model_dump()


class SiteStore:
    """Reads and writes the site list as JSON."""

    def __init__(self, path: Path = None):
        self.path = Path(path or config.sites_file)
        # Reentrant so add/remove can hold it across list() and save()
        self._lock = threading.RLock()
        self._last_good: list[Site] = []

    def list(self) -> list[Site]:
        """Load all sites, falling back to the last good list on parse errors."""
        with self._lock:
            if not self.path.exists():
                self._last_good = []
                return []
            try:
                raw = json.loads(self.path.read_text())
                sites = [Site.model_validate(item) for item in raw]
            except (OSError, json.JSONDecodeError, TypeError, ValidationError) as e:
                logger.error(f"Could not parse {self.path}, keeping last loaded sites: {e}")
                return list(self._last_good)
            self._last_good = sites
            return list(sites)

    def get(self, domain: str) -> Site | None:
        for site in self.list():
            if site.domain == domain:
                return site
        return None

    def save(self, sites: list[Site]):
        """Write the full list atomically."""
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(".json.tmp")
            tmp.write_text(json.dumps([s.to_dict() for s in sites], indent=2))
            os.replace(tmp, self.path)
            self._last_good = list(sites)
        logger.info(f"Saved {len(sites)} sites to {self.path}")

    def add(self, site: Site):
        with self._lock:
            sites = self.list()
            sites.append(site)
            self.save(sites)

    def remove(self, domain: str) -> bool:
        """Drop a site record. Returns False when nothing matched."""
        with self._lock:
            sites = self.list()
            kept = [s for s in sites if s.domain != domain]
            if len(kept) == len(sites):
                return False
            self.save(kept)
            return True
