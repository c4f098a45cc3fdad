"""Zip backups of a site's working tree and its rendered config."""

import logging
import zipfile
from datetime import datetime
from pathlib import Path

from .config import Config, config
from .nginx import config_path
from .sites import Site, validate_domain

logger = logging.getLogger(__name__)

SKIP_DIRS = {"node_modules"}


def create_backup(site: Site, cfg: Config = None) -> Path:
    """
    Archive a site as <domain>-<timestamp>.zip in the backups directory.

    Root contents are stored at the top level of the archive and the rendered
    config, when present, as <domain>.nginx.
    """
    cfg = cfg or config
    validate_domain(site.domain)
    cfg.backups_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    archive_path = cfg.backups_dir / f"{site.domain}-{timestamp}.zip"
    logger.info(f"Creating backup for {site.domain} at {archive_path}")

    root = site.root_path
    with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
        if root.is_dir():
            for path in sorted(root.rglob("*")):
                relative = path.relative_to(root)
                if SKIP_DIRS.intersection(relative.parts) or not path.is_file():
                    continue
                archive.write(path, str(relative))

        rendered = config_path(site.domain, cfg)
        if rendered.is_file():
            archive.write(rendered, f"{site.domain}.nginx")

    logger.info(f"Backup created at {archive_path}")
    return archive_path
