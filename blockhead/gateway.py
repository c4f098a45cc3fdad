"""
Activation of rendered configs against the live nginx.

The site script copies a generated config into sites-available, links it into
sites-enabled, tests the nginx config and reloads the server. From here that
is one external call that either succeeds or fails with the tool's own output.
Elevated privilege comes from a pre-granted, non-interactive sudo.
"""

import logging
import shlex
import subprocess

from .config import Config, config
from .nginx import config_path
from .sites import validate_domain

logger = logging.getLogger(__name__)


class ReloadGateway:
    """Runs the enable script for a domain."""

    def __init__(self, cfg: Config = None):
        self.cfg = cfg or config

    def _argv(self, args: list[str]) -> list[str]:
        argv = ["bash", str(self.cfg.enable_script), *args]
        if self.cfg.use_sudo:
            argv = ["sudo", "-n", *argv]
        return argv

    def _run(self, argv: list[str]) -> tuple[bool, str]:
        timeout = self.cfg.reload_timeout
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return False, f"{shlex.join(argv)} timed out after {timeout}s"
        except OSError as e:
            return False, f"Could not run {argv[0]}: {e}"

        output = (result.stdout + result.stderr).strip()
        if result.returncode != 0:
            return False, output or f"{argv[0]} exited with code {result.returncode}"
        return True, output

    def manual_command(self, domain: str) -> str:
        """The command an operator can run by hand to enable a site."""
        validate_domain(domain)
        args = ["bash", str(self.cfg.enable_script), domain, str(config_path(domain, self.cfg))]
        return "sudo " + shlex.join(args)

    def enable_site(self, domain: str) -> tuple[bool, str]:
        """
        Activate the rendered config for a domain and reload nginx.

        Returns:
            Tuple of (success, message); a failure message carries the
            script's output verbatim.
        """
        validate_domain(domain)
        success, output = self._run(self._argv([domain, str(config_path(domain, self.cfg))]))
        if success:
            logger.info(f"Enabled {domain} and reloaded nginx")
            return True, output or f"Site {domain} enabled and nginx reloaded"

        logger.error(f"Enabling {domain} failed: {output}")
        return False, f"Nginx reload failed for {domain}:\n{output}"

    def disable_site(self, domain: str) -> tuple[bool, str]:
        """Remove a domain from the enabled set and reload nginx."""
        validate_domain(domain)
        success, output = self._run(self._argv(["--disable", domain]))
        if success:
            logger.info(f"Disabled {domain} and reloaded nginx")
            return True, output or f"Site {domain} disabled"

        logger.error(f"Disabling {domain} failed: {output}")
        return False, f"Nginx disable failed for {domain}:\n{output}"
