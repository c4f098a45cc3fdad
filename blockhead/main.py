"""
BlockHead FastAPI application.

JSON API over the site lifecycle: create, update and delete sites, run and
stop their processes, repair nginx activation, download backups, and list
sites with live reachability diagnostics.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field, field_validator

from . import __version__, models
from .config import config
from .errors import BlockheadError, InvalidPath
from .lifecycle import SiteLifecycle
from .process import supervisor
from .sites import Site, validate_domain, validate_root

# Configure logging with rotation
log_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

file_handler = RotatingFileHandler(
    config.console_log,
    maxBytes=config.log_max_bytes,
    backupCount=config.log_backup_count,
)
file_handler.setFormatter(log_formatter)

console_handler = logging.StreamHandler()
console_handler.setFormatter(log_formatter)

logging.basicConfig(
    level=logging.INFO,
    handlers=[file_handler, console_handler],
)
logger = logging.getLogger(__name__)

lifecycle = SiteLifecycle(supervisor=supervisor)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting BlockHead...")
    models.initialize_db()
    models.prune()

    # Process exits and launch failures go to the diagnostics stream
    supervisor.set_event_callback(models.record)

    if config.autostart:
        started = await asyncio.to_thread(lifecycle.resume_all)
        logger.info(f"Resumed {started} site processes")

    yield

    logger.info("Shutting down BlockHead...")
    supervisor.shutdown_all()


app = FastAPI(
    title="BlockHead",
    description="Manage nginx-fronted sites and their processes on one host",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(BlockheadError)
async def blockhead_error_handler(request: Request, exc: BlockheadError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Request models
class SiteCreate(BaseModel):
    domain: str = Field(..., description="Domain served by the site")
    repo: str = Field(..., description="Git repository to clone")
    root: str = Field(..., description="Absolute path to clone into")
    port: Optional[int] = Field(None, gt=0, description="Local port to proxy to; static site when unset")
    start_command: Optional[str] = Field(None, description="Custom start command")
    overwrite: bool = Field(False, description="Replace a non-empty root")

    @field_validator("root")
    @classmethod
    def check_root(cls, value: str) -> str:
        try:
            return validate_root(value)
        except InvalidPath as e:
            raise ValueError(e.message) from e


class RunRequest(BaseModel):
    command: Optional[str] = Field(None, description="Ad hoc command; the site's default when unset")


# Sites
@app.get("/api/sites")
async def list_sites():
    """List all sites with diagnostic status information."""
    return await lifecycle.list_sites()


@app.post("/api/sites", status_code=201)
async def create_site(data: SiteCreate):
    """Clone, start, render and enable a new site."""
    site = Site(**data.model_dump(exclude={"overwrite"}))
    result = await asyncio.to_thread(lifecycle.create, site, data.overwrite)
    return result.to_dict()


@app.get("/api/sites/{domain}/status")
async def site_status(domain: str):
    return await lifecycle.status(domain)


@app.post("/api/sites/{domain}/update")
async def update_site(domain: str):
    """Pull latest changes for a site and restart it."""
    result = await asyncio.to_thread(lifecycle.update, domain)
    return result.to_dict()


@app.delete("/api/sites/{domain}")
async def delete_site(domain: str, teardown: bool = Query(False, description="Also stop the process and disable nginx")):
    result = await asyncio.to_thread(lifecycle.delete, domain, teardown)
    return result.to_dict()


@app.post("/api/sites/{domain}/run")
async def run_site(domain: str, data: Optional[RunRequest] = None):
    command = data.command if data else None
    result = await asyncio.to_thread(lifecycle.run, domain, command)
    return result.to_dict()


@app.post("/api/sites/{domain}/stop")
async def stop_site(domain: str):
    result = await asyncio.to_thread(lifecycle.stop, domain)
    return result.to_dict()


@app.post("/api/sites/{domain}/fix")
async def fix_site(domain: str):
    """Re-render the nginx config and re-enable it."""
    result = await asyncio.to_thread(lifecycle.fix, domain)
    return result.to_dict()


@app.get("/api/sites/{domain}/config", response_class=PlainTextResponse)
async def get_site_config(domain: str):
    """Serve the generated nginx config for a site."""
    return PlainTextResponse(lifecycle.site_config(domain))


@app.get("/api/sites/{domain}/logs")
async def get_site_logs(
    domain: str,
    level: Optional[str] = Query(None, description="Filter by level: info, warning, error"),
    limit: int = Query(100, ge=1, le=1000),
):
    """Recent diagnostics for a site."""
    validate_domain(domain)
    return [entry.to_dict() for entry in models.recent(domain, limit=limit, level=level)]


@app.post("/api/sites/{domain}/backup")
async def backup_site(domain: str):
    """Create and download a zip of the site's files and nginx config."""
    path = await asyncio.to_thread(lifecycle.backup, domain)
    return FileResponse(path, filename=path.name, media_type="application/zip")


# Status overview
@app.get("/api/status")
async def get_status():
    sites = lifecycle.store.list()
    return {
        "total": len(sites),
        "running": sum(1 for s in sites if lifecycle.supervisor.is_running(s.domain)),
        "processes": [p.to_dict() for p in lifecycle.supervisor.list_processes()],
        "server_ip": config.get_server_ip(),
    }
