"""Shared test fixtures."""

from __future__ import annotations

import os
import tempfile

# Keep the module-level config away from the real home directory
os.environ.setdefault("BLOCKHEAD_DATA_DIR", tempfile.mkdtemp(prefix="blockhead-test-"))
os.environ.setdefault("AUTOSTART", "false")

from dataclasses import dataclass, field
from pathlib import Path

import pytest

from blockhead import models
from blockhead.config import Config
from blockhead.lifecycle import SiteLifecycle
from blockhead.process import ProcessSupervisor
from blockhead.sites import SiteStore


@pytest.fixture
def tmp_config(tmp_path: Path) -> Config:
    """Return a Config pointing at temp directories."""
    return Config(
        data_dir=tmp_path / "data",
        certs_dir=tmp_path / "certs",
        enable_script=tmp_path / "enable_site.sh",
        use_sudo=False,
        reload_timeout=10,
        probe_timeout=1.0,
    )


@pytest.fixture(autouse=True)
def diagnostics_db(tmp_path: Path):
    models.initialize_db(tmp_path / "diagnostics.db")
    yield
    models.database.close()


@pytest.fixture
def supervisor(tmp_path: Path):
    sup = ProcessSupervisor(logs_dir=tmp_path / "proc-logs")
    yield sup
    sup.shutdown_all()


class FakeSource:
    """Stands in for git: clone writes a small tree."""

    def __init__(self, files: dict[str, str] = None):
        self.files = files or {"index.html": "<h1>hello</h1>"}
        self.clone_result = (True, "Cloning into...")
        self.pull_result = (True, "Already up to date.")
        self.clones: list[tuple[str, Path]] = []
        self.pulls: list[Path] = []

    def clone(self, repo: str, dest: Path):
        self.clones.append((repo, Path(dest)))
        if self.clone_result[0]:
            Path(dest).mkdir(parents=True, exist_ok=True)
            for name, content in self.files.items():
                target = Path(dest) / name
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content)
        return self.clone_result

    def pull(self, path: Path):
        self.pulls.append(Path(path))
        return self.pull_result


class FakeInstaller:
    def __init__(self, outcome=None):
        self.outcome = outcome
        self.calls: list[Path] = []

    def install(self, root: Path):
        self.calls.append(Path(root))
        return self.outcome


class FakeGateway:
    def __init__(self):
        self.enable_result = (True, "Site enabled and nginx reloaded")
        self.disable_result = (True, "Site disabled")
        self.enabled: list[str] = []
        self.disabled: list[str] = []

    def manual_command(self, domain: str) -> str:
        return f"sudo bash enable_site.sh {domain}"

    def enable_site(self, domain: str):
        self.enabled.append(domain)
        return self.enable_result

    def disable_site(self, domain: str):
        self.disabled.append(domain)
        return self.disable_result


@dataclass
class FakeManaged:
    domain: str
    command: object
    working_dir: str
    env: dict = field(default_factory=dict)
    shell: bool = False

    def to_dict(self) -> dict:
        return {"domain": self.domain, "pid": 4242, "command": self.command}


class FakeSupervisor:
    """Records start/stop calls instead of spawning processes."""

    def __init__(self):
        self.tracked: dict[str, FakeManaged] = {}
        self.starts: list[FakeManaged] = []
        self.stops: list[str] = []

    def start(self, domain, command, working_dir, env=None, shell=False):
        managed = FakeManaged(domain, command, str(working_dir), dict(env or {}), shell)
        self.starts.append(managed)
        self.tracked[domain] = managed
        return managed

    def stop(self, domain):
        self.stops.append(domain)
        return self.tracked.pop(domain, None) is not None

    def last_failure(self, domain):
        return None

    def is_running(self, domain):
        return domain in self.tracked

    def get_pid(self, domain):
        return 4242 if domain in self.tracked else None

    def get_process_metrics(self, domain):
        return None

    def list_processes(self):
        return []


@pytest.fixture
def fake_source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def fake_supervisor() -> FakeSupervisor:
    return FakeSupervisor()


@pytest.fixture
def fake_installer() -> FakeInstaller:
    return FakeInstaller()


@pytest.fixture
def lifecycle(tmp_config, fake_source, fake_gateway, fake_supervisor, fake_installer) -> SiteLifecycle:
    return SiteLifecycle(
        store=SiteStore(tmp_config.sites_file),
        supervisor=fake_supervisor,
        source=fake_source,
        installer=fake_installer,
        gateway=fake_gateway,
        cfg=tmp_config,
    )
