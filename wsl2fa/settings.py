"""Persistent user settings for drive mounting and USB auto-attach."""
from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .config import DEFAULT_CONFIG, ConnectorConfig

logger = logging.getLogger("wsl2fa.settings")

DEFAULT_MOUNT_BASE = "/mnt"


def normalize_mount_base(raw: Optional[str]) -> str:
    """Return ``raw`` as an absolute guest path without a trailing slash."""
    base = (raw or "").strip()
    if not base:
        return DEFAULT_MOUNT_BASE
    if not base.startswith("/"):
        base = "/" + base
    if len(base) > 1:
        base = base.rstrip("/") or "/"
    return base


def _normalize_distro(raw: Any) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    return raw.strip() or None


@dataclass(slots=True)
class Settings:
    wsl_distro: Optional[str] = None
    mount_base: str = DEFAULT_MOUNT_BASE
    auto_mount_drives: bool = False
    auto_unmount_drives: bool = True
    auto_attach_usb: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wslDistro": self.wsl_distro,
            "mountBase": normalize_mount_base(self.mount_base),
            "autoMountDrives": self.auto_mount_drives,
            "autoUnmountDrives": self.auto_unmount_drives,
            "autoAttachUsb": self.auto_attach_usb,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        defaults = cls()

        def _flag(key: str, default: bool) -> bool:
            value = data.get(key, default)
            return value if isinstance(value, bool) else default

        mount_base = data.get("mountBase")
        return cls(
            wsl_distro=_normalize_distro(data.get("wslDistro")),
            mount_base=normalize_mount_base(mount_base if isinstance(mount_base, str) else None),
            auto_mount_drives=_flag("autoMountDrives", defaults.auto_mount_drives),
            auto_unmount_drives=_flag("autoUnmountDrives", defaults.auto_unmount_drives),
            auto_attach_usb=_flag("autoAttachUsb", defaults.auto_attach_usb),
        )


class SettingsStore:
    """Reads and writes ``settings.json``; IO failures never propagate."""

    def __init__(self, config: ConnectorConfig | None = None) -> None:
        self.config = config or DEFAULT_CONFIG
        self.path: Path = self.config.settings_location
        self._lock = threading.RLock()

    def load(self) -> Settings:
        with self._lock:
            if not self.path.exists():
                return Settings()
            try:
                data = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.warning("settings load fail: %s", exc)
                return Settings()
            if not isinstance(data, dict):
                logger.warning("settings load fail: expected an object in %s", self.path)
                return Settings()
            return Settings.from_dict(data)

    def save(self, settings: Settings) -> bool:
        with self._lock:
            settings.mount_base = normalize_mount_base(settings.mount_base)
            settings.wsl_distro = _normalize_distro(settings.wsl_distro)
            try:
                self.config.ensure_directories()
                self.path.write_text(
                    json.dumps(settings.to_dict(), indent=2), encoding="utf-8"
                )
            except OSError as exc:
                logger.error("settings save fail: %s", exc)
                return False
            return True
