"""
Git access for site working trees.

Clones and pulls are run as argument vectors against a fixed branch; the
repository locator is never interpreted, only passed after "--".
"""

import logging
import subprocess
from pathlib import Path

from .config import config

logger = logging.getLogger(__name__)


class GitSource:
    """Fetches and updates site working trees with the git CLI."""

    def __init__(self, branch: str = None, git: str = "git"):
        self.branch = branch or config.git_branch
        self.git = git

    def _run(self, argv: list[str], cwd: str = None) -> tuple[bool, str]:
        try:
            result = subprocess.run(argv, cwd=cwd, capture_output=True, text=True)
        except OSError as e:
            return False, f"Could not run {argv[0]}: {e}"
        output = (result.stdout + result.stderr).strip()
        return result.returncode == 0, output

    def clone(self, repo: str, dest: Path) -> tuple[bool, str]:
        """Materialize a working tree at dest."""
        logger.info(f"Cloning {repo} into {dest}")
        success, output = self._run([self.git, "clone", "--", repo, str(dest)])
        if success:
            logger.info(f"Repository cloned into {dest}")
        else:
            logger.error(f"Clone of {repo} failed: {output}")
        return success, output

    def pull(self, path: Path) -> tuple[bool, str]:
        """Pull the fixed branch from origin into an existing tree."""
        logger.info(f"Pulling origin/{self.branch} in {path}")
        success, output = self._run([self.git, "pull", "origin", self.branch], cwd=str(path))
        if success:
            logger.info(f"Pull complete in {path}")
        else:
            logger.error(f"Pull in {path} failed: {output}")
        return success, output
