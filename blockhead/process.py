"""
Process supervisor for site servers.

Owns the table of live site processes, at most one per domain. Each process
runs in its own session and process group with output appended to per-domain
log files, so it outlives the request that started it and can be terminated
together with anything it spawns.
"""

import logging
import os
import shlex
import signal
import subprocess
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator

import psutil

from .config import config
from .errors import ProcessStartFailure
from .sites import validate_domain

logger = logging.getLogger(__name__)


class DomainLocks:
    """A lazily created lock per domain."""

    def __init__(self):
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, domain: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(domain, threading.Lock())

    @contextmanager
    def hold(self, domain: str) -> Iterator[None]:
        with self.get(domain):
            yield


@dataclass
class ManagedProcess:
    """A tracked site process."""

    domain: str
    process: subprocess.Popen
    command: list[str] | str
    working_dir: str
    started_at: datetime = field(default_factory=datetime.now)
    terminated: bool = False

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def display_command(self) -> str:
        if isinstance(self.command, str):
            return self.command
        return shlex.join(self.command)

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "pid": self.pid,
            "command": self.display_command,
            "working_dir": self.working_dir,
            "started_at": self.started_at.isoformat(),
            "running": self.process.poll() is None,
        }


class ProcessSupervisor:
    """Starts, tracks and stops site processes."""

    def __init__(self, logs_dir: Path = None):
        self.logs_dir = Path(logs_dir or config.logs_dir)
        self._processes: dict[str, ManagedProcess] = {}
        self._failures: dict[str, ProcessStartFailure] = {}
        self._lock = threading.Lock()
        self._domain_locks = DomainLocks()
        self._on_event: Callable[[str, str, str], None] = None

    def set_event_callback(self, callback: Callable[[str, str, str], None]):
        """Set callback for process events: callback(domain, level, message)."""
        self._on_event = callback

    def _emit(self, domain: str, level: str, message: str):
        if self._on_event:
            try:
                self._on_event(domain, level, message)
            except Exception as e:
                logger.error(f"Event callback failed for {domain}: {e}")

    def start(
        self,
        domain: str,
        command: list[str] | str,
        working_dir: str,
        env: dict[str, str] = None,
        shell: bool = False,
    ) -> ManagedProcess | None:
        """
        Start a site process, stopping the one already tracked for the domain.

        `command` is an argument vector, or with shell=True a single string
        handed to /bin/sh. Launch failures are logged and recorded, and None
        is returned.
        """
        validate_domain(domain)
        if shell and not isinstance(command, str):
            raise TypeError("shell commands must be a single string")

        with self._domain_locks.hold(domain):
            self._stop_locked(domain)

            log_dir = self.logs_dir / domain
            log_dir.mkdir(parents=True, exist_ok=True)

            full_env = os.environ.copy()
            full_env.update(env or {})
            display = command if isinstance(command, str) else shlex.join(command)

            try:
                with open(log_dir / "stdout.log", "ab") as stdout_log, open(log_dir / "stderr.log", "ab") as stderr_log:
                    stdout_log.write(f"[{datetime.now().isoformat()}] $ {display}\n".encode())
                    stdout_log.flush()
                    process = subprocess.Popen(
                        command,
                        shell=shell,
                        stdin=subprocess.DEVNULL,
                        stdout=stdout_log,
                        stderr=stderr_log,
                        cwd=working_dir,
                        env=full_env,
                        start_new_session=True,  # Own session and process group
                    )
            except OSError as e:
                failure = ProcessStartFailure(
                    f"Failed to start {domain}: {e}",
                    remediation=f"cd {shlex.quote(str(working_dir))} && {display}",
                )
                with self._lock:
                    self._failures[domain] = failure
                logger.error(str(failure))
                self._emit(domain, "error", str(failure))
                return None

            managed = ManagedProcess(
                domain=domain,
                process=process,
                command=command,
                working_dir=str(working_dir),
            )
            with self._lock:
                self._processes[domain] = managed
                self._failures.pop(domain, None)

            watcher = threading.Thread(target=self._watch, args=(managed,), daemon=True)
            watcher.start()

            logger.info(f"Started {domain} with PID {process.pid}: {display}")
            self._emit(domain, "info", f"Started PID {process.pid}: {display}")
            return managed

    def stop(self, domain: str) -> bool:
        """Terminate the domain's process group. Returns True if one was tracked."""
        validate_domain(domain)
        with self._domain_locks.hold(domain):
            return self._stop_locked(domain)

    def _stop_locked(self, domain: str) -> bool:
        with self._lock:
            managed = self._processes.pop(domain, None)

        if not managed:
            return False

        managed.terminated = True
        try:
            # Session leader pid doubles as the process group id
            os.killpg(managed.pid, signal.SIGTERM)
        except ProcessLookupError:
            logger.info(f"Process group {managed.pid} for {domain} had already exited")
        except OSError as e:
            logger.error(f"Failed to signal process group {managed.pid} for {domain}: {e}")
            self._emit(domain, "error", f"Failed to stop PID {managed.pid}: {e}")
        else:
            logger.info(f"Sent SIGTERM to process group {managed.pid} for {domain}")
            self._emit(domain, "info", f"Stopped PID {managed.pid}")
        return True

    def _watch(self, managed: ManagedProcess):
        """Wait for a process to exit and report how it ended."""
        returncode = managed.process.wait()
        if managed.terminated:
            logger.info(f"{managed.domain} PID {managed.pid} exited after stop ({returncode})")
            return
        if returncode == 0:
            logger.info(f"{managed.domain} PID {managed.pid} exited cleanly")
            self._emit(managed.domain, "warning", f"Process {managed.pid} exited with code 0")
        else:
            logger.error(f"{managed.domain} PID {managed.pid} exited with code {returncode}")
            self._emit(
                managed.domain,
                "error",
                f"Process {managed.pid} exited with code {returncode}; see {self.logs_dir / managed.domain / 'stderr.log'}",
            )

    def is_running(self, domain: str) -> bool:
        with self._lock:
            managed = self._processes.get(domain)
        return bool(managed and managed.process.poll() is None)

    def get_pid(self, domain: str) -> int | None:
        with self._lock:
            managed = self._processes.get(domain)
        if managed and managed.process.poll() is None:
            return managed.pid
        return None

    def get_info(self, domain: str) -> ManagedProcess | None:
        with self._lock:
            return self._processes.get(domain)

    def last_failure(self, domain: str) -> ProcessStartFailure | None:
        with self._lock:
            return self._failures.get(domain)

    def list_processes(self) -> list[ManagedProcess]:
        with self._lock:
            return list(self._processes.values())

    def get_process_metrics(self, domain: str) -> dict | None:
        """Current resource usage of a domain's process and its children."""
        pid = self.get_pid(domain)
        if not pid:
            return None

        info = self.get_info(domain)
        try:
            proc = psutil.Process(pid)
            cpu_percent = proc.cpu_percent(interval=0.1)
            memory_mb = proc.memory_info().rss / 1024 / 1024
            child_count = 0
            try:
                children = proc.children(recursive=True)
                child_count = len(children)
                for child in children:
                    memory_mb += child.memory_info().rss / 1024 / 1024
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return None

        return {
            "pid": pid,
            "cpu_percent": round(cpu_percent, 1),
            "memory_mb": round(memory_mb, 1),
            "child_processes": child_count,
            "uptime_seconds": (datetime.now() - info.started_at).total_seconds() if info else 0,
        }

    def shutdown_all(self):
        """Stop every tracked process."""
        with self._lock:
            domains = list(self._processes.keys())

        for domain in domains:
            self.stop(domain)


# Global supervisor instance
supervisor = ProcessSupervisor()
