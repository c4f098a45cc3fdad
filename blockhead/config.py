"""
Configuration for the BlockHead console.

Loads settings from environment variables with sensible defaults.
All persistent data is stored in ~/.blockhead/ unless BLOCKHEAD_DATA_DIR is set.
"""

import os
import socket
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

PACKAGE_DIR = Path(__file__).resolve().parent


@dataclass
class Config:
    """BlockHead configuration."""

    # Paths
    data_dir: Path = Path(os.environ.get("BLOCKHEAD_DATA_DIR", str(Path.home() / ".blockhead")))
    sites_file: Path = None
    db_path: Path = None
    logs_dir: Path = None
    generated_dir: Path = None
    backups_dir: Path = None
    console_log: Path = None

    # TLS material, one directory per domain holding fullchain.pem and privkey.pem
    certs_dir: Path = Path(os.environ.get("BLOCKHEAD_CERTS_DIR", "/etc/ssl/blockhead"))

    # Logging
    log_max_bytes: int = int(os.environ.get("LOG_MAX_BYTES", str(10 * 1024 * 1024)))  # 10MB
    log_backup_count: int = int(os.environ.get("LOG_BACKUP_COUNT", "5"))
    log_retention_days: int = int(os.environ.get("LOG_RETENTION_DAYS", "7"))

    # Server
    host: str = os.environ.get("BLOCKHEAD_HOST", "0.0.0.0")
    port: int = int(os.environ.get("BLOCKHEAD_PORT", "3000"))

    # Address used in "view via IP" links (auto-detected when empty)
    server_ip: str = os.environ.get("SERVER_IP", "")

    # Source control
    git_branch: str = os.environ.get("GIT_BRANCH", "main")

    # Site processes
    package_manager: str = os.environ.get("PACKAGE_MANAGER", "npm")
    autostart: bool = os.environ.get("AUTOSTART", "true").lower() == "true"

    # Reload gateway
    enable_script: Path = Path(os.environ.get("ENABLE_SCRIPT", str(PACKAGE_DIR / "scripts" / "enable_site.sh")))
    use_sudo: bool = os.environ.get("USE_SUDO", "true").lower() == "true"
    reload_timeout: int = int(os.environ.get("RELOAD_TIMEOUT", "60"))

    # Reachability probe
    probe_timeout: float = float(os.environ.get("PROBE_TIMEOUT", "3"))

    def __post_init__(self):
        """Initialize derived paths and create directories."""
        self.data_dir = Path(self.data_dir)
        self.certs_dir = Path(self.certs_dir)
        self.enable_script = Path(self.enable_script)
        self.sites_file = self.data_dir / "sites.json"
        self.db_path = self.data_dir / "blockhead.db"
        self.logs_dir = self.data_dir / "logs"
        self.generated_dir = self.data_dir / "generated_configs"
        self.backups_dir = self.data_dir / "backups"
        self.console_log = self.data_dir / "blockhead.log"

        # Create directories
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        self.generated_dir.mkdir(parents=True, exist_ok=True)

    def get_server_ip(self) -> str:
        """Get the address to use in "view via IP" links."""
        if self.server_ip:
            return self.server_ip
        try:
            s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            s.connect(("8.8.8.8", 80))
            ip = s.getsockname()[0]
            s.close()
            return ip
        except OSError:
            return "127.0.0.1"


config = Config()
