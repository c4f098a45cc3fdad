"""
Reachability diagnostics for managed sites.

A best-effort liveness check run on every listing: files on disk first, then
a bounded plain HTTP request to the site's hostname. Every outcome maps to a
three-level verdict; the probe never raises and never mutates state.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

import httpx

from .config import Config, config
from .errors import InvalidDomain
from .nginx import config_path
from .sites import Site, validate_domain

logger = logging.getLogger(__name__)

# Extra time allowed past the request timeout before the probe gives up
GRACE_SECONDS = 0.5


class HealthLevel(Enum):
    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class HealthVerdict:
    """Outcome of one probe."""

    level: HealthLevel
    message: str

    def to_dict(self) -> dict:
        return {"level": self.level.value, "message": self.message}


async def _fetch_status(domain: str, timeout: float, transport: httpx.AsyncBaseTransport = None) -> int:
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        response = await client.get(f"http://{domain}/")
        return response.status_code


async def check_site(
    site: Site,
    cfg: Config = None,
    timeout: float = None,
    transport: httpx.AsyncBaseTransport = None,
) -> HealthVerdict:
    """Check that a site's files exist and that it answers over HTTP."""
    cfg = cfg or config
    timeout = cfg.probe_timeout if timeout is None else timeout

    try:
        validate_domain(site.domain)
    except InvalidDomain:
        return HealthVerdict(HealthLevel.ERROR, "Invalid domain")

    try:
        present = site.root_path.exists() and config_path(site.domain, cfg).exists()
    except OSError as e:
        logger.warning(f"Could not check files for {site.domain}: {e}")
        present = False
    if not present:
        return HealthVerdict(HealthLevel.ERROR, "Missing files or config")

    try:
        status = await asyncio.wait_for(
            _fetch_status(site.domain, timeout, transport),
            timeout + GRACE_SECONDS,
        )
    except (asyncio.TimeoutError, httpx.TimeoutException):
        return HealthVerdict(HealthLevel.WARNING, "Timeout")
    except httpx.HTTPError as e:
        logger.debug(f"Probe request for {site.domain} failed: {e}")
        return HealthVerdict(HealthLevel.WARNING, "Request failed")
    except Exception as e:
        logger.warning(f"Unexpected probe error for {site.domain}: {e}")
        return HealthVerdict(HealthLevel.WARNING, "Request failed")

    if status >= 400:
        return HealthVerdict(HealthLevel.WARNING, f"HTTP {status}")
    return HealthVerdict(HealthLevel.OK, "Site reachable")


async def check_sites(sites: list[Site], cfg: Config = None) -> list[HealthVerdict]:
    """Probe all sites concurrently, preserving order."""
    return list(await asyncio.gather(*(check_site(site, cfg) for site in sites)))
