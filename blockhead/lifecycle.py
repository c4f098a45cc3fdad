"""
Site lifecycle orchestration.

Sequences the steps behind creating, updating and deleting a site: fetching
the working tree, installing dependencies, (re)starting the site process,
rendering the nginx config and activating it. Validation failures are raised
before anything is touched. Failures after the site is committed are
returned as warnings with the command that finishes the job by hand.
"""

import asyncio
import logging
import os
import shlex
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path

from . import models, nginx
from .backup import create_backup
from .config import Config, config
from .errors import (
    DestinationNotEmpty,
    DirectoryPermissionError,
    DuplicateDomain,
    FetchError,
    InvalidPath,
    NotFound,
    PortConflict,
    ReloadFailure,
    SyncError,
)
from .gateway import ReloadGateway
from .installer import DependencyInstaller, find_manifest
from .probe import check_site, check_sites
from .process import DomainLocks, ProcessSupervisor, supervisor as default_supervisor
from .sites import Site, SiteStore, validate_domain
from .source import GitSource

logger = logging.getLogger(__name__)

NOT_EMPTY_MARKER = "already exists and is not an empty directory"


@dataclass
class LifecycleResult:
    """What a lifecycle operation did, for the caller to report."""

    domain: str
    action: str
    message: str = ""
    warnings: list[str] = field(default_factory=list)
    log: list[str] = field(default_factory=list)
    process: dict = None

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "action": self.action,
            "message": self.message,
            "warnings": self.warnings,
            "log": "\n".join(self.log),
            "process": self.process,
        }


@dataclass(frozen=True)
class StartPlan:
    """How a site's process is launched."""

    strategy: str  # custom, standard
    command: list[str] | str
    working_dir: str
    env: dict[str, str]

    @property
    def shell(self) -> bool:
        # Operator-supplied start commands are the only input run through a shell
        return self.strategy == "custom"


def resolve_start_plan(site: Site, package_manager: str = None) -> StartPlan | None:
    """
    Pick the start strategy for a site.

    A start command always wins; otherwise a proxied site with a package
    manifest runs the package manager's start script; static sites get none.
    """
    env = {"PORT": str(site.port)} if site.port else {}
    if site.start_command:
        return StartPlan("custom", site.start_command, site.root, env)
    if site.port and find_manifest(site.root_path):
        return StartPlan("standard", [package_manager or config.package_manager, "start"], site.root, env)
    return None


class SiteLifecycle:
    """Coordinates site creation, updates, deletion and manual process control."""

    def __init__(
        self,
        store: SiteStore = None,
        supervisor: ProcessSupervisor = None,
        source: GitSource = None,
        installer: DependencyInstaller = None,
        gateway: ReloadGateway = None,
        cfg: Config = None,
    ):
        self.cfg = cfg or config
        self.store = store or SiteStore(self.cfg.sites_file)
        self.supervisor = supervisor or default_supervisor
        self.source = source or GitSource(self.cfg.git_branch)
        self.installer = installer or DependencyInstaller(self.cfg.package_manager)
        self.gateway = gateway or ReloadGateway(self.cfg)
        self._locks = DomainLocks()
        # Guards cross-site uniqueness; sites being created are reserved until stored
        self._registry_lock = threading.Lock()
        self._pending: dict[str, Site] = {}

    def _note(self, result: LifecycleResult, level: str, message: str):
        result.log.append(message)
        getattr(logger, level)(f"[{result.domain}] {message}")
        models.record(result.domain, level, message)

    def _require(self, domain: str) -> Site:
        site = self.store.get(domain)
        if not site:
            raise NotFound(f"No site named {domain}")
        return site

    # Create

    def create(self, site: Site, overwrite: bool = False) -> LifecycleResult:
        """Fetch, install, start, store, render and enable a new site."""
        domain = validate_domain(site.domain)
        root = site.root_path
        if not root.is_absolute():
            raise InvalidPath(f"Site root must be an absolute path, got {site.root!r}")

        with self._locks.hold(domain):
            self._reserve(site)
            try:
                return self._create(site, root, overwrite)
            finally:
                with self._registry_lock:
                    self._pending.pop(domain, None)

    def _create(self, site: Site, root: Path, overwrite: bool) -> LifecycleResult:
        domain = site.domain
        result = LifecycleResult(domain, "create")
        logger.info(f"Creating new site {domain} from {site.repo} into {root}")

        self._ensure_parent_writable(root)
        self._clear_destination(root, overwrite)
        self._note(result, "info", f"Creating {domain} from {site.repo} into {root}")

        success, output = self.source.clone(site.repo, root)
        if not success:
            self._note(result, "error", f"Clone failed: {output}")
            if NOT_EMPTY_MARKER in output:
                raise self._not_empty_error(root)
            raise FetchError(
                f"Error cloning repository. {output} Verify the repository URL and that "
                "this process has permission to write to the destination.",
                remediation=f"git clone -- {shlex.quote(site.repo)} {shlex.quote(str(root))}",
            )
        self._note(result, "info", "Repository cloned")

        self._install(result, root)
        self._start(result, site)

        with self._registry_lock:
            self.store.add(site)
            self._pending.pop(domain, None)
        self._note(result, "info", "Site record saved")

        self._activate(result, site)
        result.message = f"Site {domain} created"
        return result

    def _reserve(self, site: Site):
        with self._registry_lock:
            self._check_unique(site)
            self._pending[site.domain] = site

    def _check_unique(self, site: Site):
        root = site.root_path
        # Caller holds _registry_lock
        for other in [*self.store.list(), *self._pending.values()]:
            if other.domain == site.domain:
                raise DuplicateDomain(f"Domain {site.domain} already exists")
            if Path(other.root) == root:
                raise InvalidPath(f"{root} is already the root of {other.domain}")
            if site.port and other.port == site.port:
                raise PortConflict(f"Port {site.port} is already used by {other.domain}")

    def _ensure_parent_writable(self, root: Path):
        parent = root.parent
        if parent.is_dir() and os.access(parent, os.W_OK):
            return
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Could not create {parent}: {e}")
        if not (parent.is_dir() and os.access(parent, os.W_OK)):
            quoted = shlex.quote(str(parent))
            raise DirectoryPermissionError(
                f"Cannot write to {parent}",
                remediation=f"sudo mkdir -p {quoted} && sudo chown $(whoami):$(whoami) {quoted}",
            )

    def _not_empty_error(self, root: Path) -> DestinationNotEmpty:
        return DestinationNotEmpty(
            f"Destination {root} is not empty. Enable overwrite to replace it, or clear it first.",
            remediation=f"rm -rf {shlex.quote(str(root))}",
        )

    def _clear_destination(self, root: Path, overwrite: bool):
        if not root.exists():
            return
        if root.is_dir() and not any(root.iterdir()):
            return
        if not overwrite:
            raise self._not_empty_error(root)

        logger.warning(f"Removing existing {root} before clone")
        try:
            if root.is_dir() and not root.is_symlink():
                shutil.rmtree(root)
            else:
                root.unlink()
        except OSError as e:
            raise DirectoryPermissionError(
                f"Could not remove {root}: {e}",
                remediation=f"sudo rm -rf {shlex.quote(str(root))}",
            ) from e

    def _install(self, result: LifecycleResult, root: Path):
        outcome = self.installer.install(root)
        if outcome is None:
            return
        success, output = outcome
        if success:
            self._note(result, "info", "Dependencies installed")
        else:
            self._note(result, "warning", f"Dependency install failed: {output}")
            result.warnings.append(
                f"Dependency install failed in {root}. Run: "
                f"cd {shlex.quote(str(root))} && {self.cfg.package_manager} install"
            )

    def _start(self, result: LifecycleResult, site: Site):
        plan = resolve_start_plan(site, self.cfg.package_manager)
        if plan is None:
            if self.supervisor.stop(site.domain):
                self._note(result, "info", "Stopped previous process; site is now static")
            else:
                self._note(result, "info", "Static site, no process to start")
            return

        self._note(result, "info", f"Starting {plan.strategy} process")
        managed = self.supervisor.start(
            site.domain,
            plan.command,
            plan.working_dir,
            env=plan.env,
            shell=plan.shell,
        )
        if managed is None:
            failure = self.supervisor.last_failure(site.domain)
            result.warnings.append(str(failure) if failure else f"Process for {site.domain} failed to start")
            return
        result.process = managed.to_dict()

    def _activate(self, result: LifecycleResult, site: Site):
        manual = self.gateway.manual_command(site.domain)
        try:
            path = nginx.write_site_config(site, self.cfg)
        except OSError as e:
            warning = ReloadFailure(f"Could not write nginx config for {site.domain}: {e}", remediation=manual)
            self._note(result, "warning", str(warning))
            result.warnings.append(str(warning))
            return
        self._note(result, "info", f"Nginx config written to {path}")

        success, message = self.gateway.enable_site(site.domain)
        if success:
            self._note(result, "info", message)
            return
        warning = ReloadFailure(message, remediation=manual)
        self._note(result, "warning", str(warning))
        result.warnings.append(str(warning))

    # Update

    def update(self, domain: str) -> LifecycleResult:
        """Pull the latest revision and restart the site on it."""
        validate_domain(domain)
        with self._locks.hold(domain):
            site = self._require(domain)
            result = LifecycleResult(domain, "update")
            logger.info(f"Pulling latest for {domain}")

            success, output = self.source.pull(site.root_path)
            if not success:
                self._note(result, "error", f"Pull failed: {output}")
                raise SyncError(
                    f"Failed to pull updates for {domain}: {output}",
                    remediation=f"cd {shlex.quote(site.root)} && git pull origin {self.cfg.git_branch}",
                )
            self._note(result, "info", output or "Pull complete")

            self._install(result, site.root_path)
            self._start(result, site)
            result.message = f"Site {domain} updated"
            return result

    # Delete

    def delete(self, domain: str, teardown: bool = False) -> LifecycleResult:
        """
        Remove the site record.

        Files, process and nginx config are left alone unless teardown is
        requested, in which case the process is stopped and the config
        removed and disabled. The working tree is never deleted.
        """
        validate_domain(domain)
        with self._locks.hold(domain):
            if not self.store.remove(domain):
                raise NotFound(f"No site named {domain}")
            result = LifecycleResult(domain, "delete")
            self._note(result, "info", f"Removed configuration for {domain}")

            if teardown:
                if self.supervisor.stop(domain):
                    self._note(result, "info", "Stopped site process")
                if nginx.remove_site_config(domain, self.cfg):
                    self._note(result, "info", "Removed generated nginx config")
                success, message = self.gateway.disable_site(domain)
                if success:
                    self._note(result, "info", message)
                else:
                    self._note(result, "warning", message)
                    result.warnings.append(message)

            result.message = f"Site {domain} deleted"
            return result

    # Manual process control

    def run(self, domain: str, command: str = None) -> LifecycleResult:
        """Start a site process by hand, with an ad hoc command or the site's default."""
        validate_domain(domain)
        with self._locks.hold(domain):
            site = self._require(domain)
            result = LifecycleResult(domain, "run")
            if command:
                site = site.model_copy(update={"start_command": command})
            if resolve_start_plan(site, self.cfg.package_manager) is None:
                result.message = f"Site {domain} is static, nothing to run"
                result.warnings.append(result.message)
                return result
            self._start(result, site)
            result.message = f"Started {domain}" if result.process else f"Could not start {domain}"
            return result

    def stop(self, domain: str) -> LifecycleResult:
        """Stop a site process. Works for processes orphaned by a plain delete too."""
        validate_domain(domain)
        with self._locks.hold(domain):
            result = LifecycleResult(domain, "stop")
            if self.supervisor.stop(domain):
                self._note(result, "info", "Stopped site process")
                result.message = f"Stopped {domain}"
            else:
                result.message = f"No process running for {domain}"
            return result

    # Maintenance

    def fix(self, domain: str) -> LifecycleResult:
        """Re-render and re-enable a site's nginx config."""
        validate_domain(domain)
        with self._locks.hold(domain):
            site = self._require(domain)
            result = LifecycleResult(domain, "fix")
            path = nginx.write_site_config(site, self.cfg)
            self._note(result, "info", f"Nginx config written to {path}")

            success, message = self.gateway.enable_site(domain)
            if not success:
                self._note(result, "error", message)
                raise ReloadFailure(message, remediation=self.gateway.manual_command(domain))
            self._note(result, "info", message)
            result.message = f"Site {domain} repaired and nginx reloaded"
            return result

    def backup(self, domain: str) -> Path:
        validate_domain(domain)
        with self._locks.hold(domain):
            return create_backup(self._require(domain), self.cfg)

    def site_config(self, domain: str) -> str:
        validate_domain(domain)
        content = nginx.read_site_config(domain, self.cfg)
        if content is None:
            raise NotFound(f"Config not found for {domain}")
        return content

    def resume_all(self) -> int:
        """Start every stored site that has a process. Used at console startup."""
        started = 0
        for site in self.store.list():
            if resolve_start_plan(site, self.cfg.package_manager) is None:
                continue
            with self._locks.hold(site.domain):
                result = LifecycleResult(site.domain, "resume")
                self._start(result, site)
            if result.process:
                started += 1
        return started

    # Read path

    def describe(self, site: Site) -> dict:
        data = site.to_dict()
        data["running"] = self.supervisor.is_running(site.domain)
        data["pid"] = self.supervisor.get_pid(site.domain)
        failure = self.supervisor.last_failure(site.domain)
        data["start_failure"] = str(failure) if failure else None
        return data

    async def list_sites(self) -> list[dict]:
        """All sites with process state and a fresh health verdict."""
        sites = self.store.list()
        verdicts = await check_sites(sites, self.cfg)
        listing = []
        for site, verdict in zip(sites, verdicts):
            data = self.describe(site)
            data["status"] = verdict.to_dict()
            listing.append(data)
        return listing

    async def status(self, domain: str) -> dict:
        validate_domain(domain)
        site = self._require(domain)
        data = self.describe(site)
        data["status"] = (await check_site(site, self.cfg)).to_dict()
        # cpu_percent samples for a fraction of a second
        data["metrics"] = await asyncio.to_thread(self.supervisor.get_process_metrics, domain)
        return data
