"""Global configuration values for the WSL 2FA Connector."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple


def _default_data_dir() -> Path:
    local_app_data = os.environ.get("LOCALAPPDATA")
    base = Path(local_app_data) if local_app_data else Path.cwd()
    return (base / "WSL2FAConnector").expanduser()


def _default_usbipd_command() -> str:
    return os.environ.get("USBIPD_EXE", "").strip().strip('"') or "usbipd"


@dataclass(slots=True)
class ConnectorConfig:
    """Runtime configuration for the connector service."""

    data_path: Path = field(default_factory=_default_data_dir)
    log_file: str = "wsl2fa.log"
    settings_file: str = "settings.json"
    log_max_bytes: int = 1_000_000
    poll_seconds: float = 2.0
    drive_poll_idle_seconds: float = 20.0
    drive_poll_busy_seconds: float = 2.0
    mount_poll_idle_seconds: float = 30.0
    mount_poll_busy_seconds: float = 5.0
    burst_seconds: float = 20.0
    usbipd_timeout_seconds: float = 5.0
    wsl_timeout_seconds: float = 8.0
    usbipd_command: str = field(default_factory=_default_usbipd_command)
    wsl_command: str = "wsl"
    device_aliases: Tuple[str, ...] = (
        "yubi",
        "smartcard",
        "ccid",
        "fido",
        "security key",
    )

    def ensure_directories(self) -> None:
        """Create the application data directory if it does not exist."""
        self.data_path.mkdir(parents=True, exist_ok=True)

    @property
    def log_location(self) -> Path:
        return self.data_path / self.log_file

    @property
    def settings_location(self) -> Path:
        return self.data_path / self.settings_file


DEFAULT_CONFIG = ConnectorConfig()
DEFAULT_CONFIG.ensure_directories()
