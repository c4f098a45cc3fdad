"""Dependency installation for fetched site trees."""

import logging
import subprocess
from pathlib import Path

from .config import config

logger = logging.getLogger(__name__)

MANIFEST = "package.json"


def find_manifest(root: Path) -> Path | None:
    path = Path(root) / MANIFEST
    return path if path.is_file() else None


class DependencyInstaller:
    """Runs the package manager's install in a site root."""

    def __init__(self, package_manager: str = None):
        self.package_manager = package_manager or config.package_manager

    def install(self, root: Path) -> tuple[bool, str] | None:
        """
        Install dependencies when a manifest is present.

        Returns None when there is nothing to install, otherwise a tuple of
        (success, captured output). Never raises for a failing install.
        """
        if not find_manifest(root):
            return None

        argv = [self.package_manager, "install"]
        logger.info(f"Installing dependencies in {root}")
        try:
            result = subprocess.run(argv, cwd=str(root), capture_output=True, text=True)
        except OSError as e:
            logger.error(f"Could not run {self.package_manager}: {e}")
            return False, f"Could not run {self.package_manager}: {e}"

        output = (result.stdout + result.stderr).strip()
        if result.returncode != 0:
            logger.error(f"Dependency install failed in {root}: {output}")
            return False, output
        logger.info(f"Dependencies installed in {root}")
        return True, output
