"""Timer-driven reconciliation of security-key attachment and drive mounts.

One :class:`Reconciler` owns all mutable state. Every pass (scheduled tick,
manual attach/detach, manual drive toggle) runs under a single non-blocking
busy guard, so passes never overlap and a request arriving while another
pass is active is dropped rather than queued.

Order inside a tick matters: status refresh, optional auto-attach and its
re-refresh, drive/mount polling, then the drive action pass. Acting on drive
data before polling would churn mounts on stale information.
"""
from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Iterable, Iterator, List, Optional, Set, Tuple

from .config import DEFAULT_CONFIG, ConnectorConfig
from .drives import WslClient, present_drive_letters
from .settings import Settings, SettingsStore
from .usbipd import DeviceRecord, DeviceState, StatusSnapshot, UiStatus, UsbipdClient

logger = logging.getLogger("wsl2fa.reconciler")

NEVER = float("-inf")


@dataclass(frozen=True, slots=True)
class DriveSnapshot:
    present: FrozenSet[str] = frozenset()
    mounted: FrozenSet[str] = frozenset()


@dataclass(slots=True)
class ReconciliationState:
    known_drives: Set[str] = field(default_factory=set)
    initialized: bool = False
    burst_until: float = NEVER
    last_drive_poll: float = NEVER
    last_mount_poll: float = NEVER
    present: Set[str] = field(default_factory=set)
    mounted: Set[str] = field(default_factory=set)


class Reconciler:
    """Single-flow controller for attach/bind and drive mount decisions."""

    def __init__(
        self,
        usbipd: UsbipdClient,
        wsl: WslClient,
        settings: Settings,
        *,
        settings_store: SettingsStore | None = None,
        config: ConnectorConfig | None = None,
        present_reader: Callable[[], Iterable[str]] = present_drive_letters,
        clock: Callable[[], float] = time.monotonic,
        on_status: Callable[[StatusSnapshot], None] | None = None,
        on_drives: Callable[[DriveSnapshot], None] | None = None,
        notify: Callable[[str], None] | None = None,
    ) -> None:
        self.config = config or DEFAULT_CONFIG
        self.settings = settings
        self.state = ReconciliationState()
        self.last_snapshot: Optional[StatusSnapshot] = None
        self._usbipd = usbipd
        self._wsl = wsl
        self._settings_store = settings_store
        self._present_reader = present_reader
        self._clock = clock
        self._on_status = on_status
        self._on_drives = on_drives
        self._notify = notify
        self._busy = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    @property
    def drive_snapshot(self) -> DriveSnapshot:
        return DriveSnapshot(frozenset(self.state.present), frozenset(self.state.mounted))

    @property
    def in_burst(self) -> bool:
        return self._clock() < self.state.burst_until

    @contextmanager
    def _exclusive(self, action: str, *, quiet: bool = False) -> Iterator[bool]:
        acquired = self._busy.acquire(blocking=False)
        if not acquired and not quiet:
            logger.info("%s requested while busy; dropping", action)
        try:
            yield acquired
        finally:
            if acquired:
                self._busy.release()

    # --- scheduled pass ------------------------------------------------------
    def tick(self) -> bool:
        """Run one reconciliation pass; returns False when skipped as busy."""
        with self._exclusive("tick", quiet=True) as acquired:
            if not acquired:
                return False
            snapshot = self.refresh_status()
            if self.settings.auto_attach_usb and snapshot.ui_status is UiStatus.DETECTED_NOT_ATTACHED:
                self._attach_sequence(snapshot, label="auto", manual=False)
                self.refresh_status()
            self.refresh_drives(force=False)
            self.reconcile_drives()
            return True

    def refresh_status(self) -> StatusSnapshot:
        snapshot = self._usbipd.get_status(self.config.device_aliases)
        previous = self.last_snapshot
        if previous is None or previous.ui_status is not snapshot.ui_status:
            logger.info("status %s: %s", snapshot.ui_status.value, snapshot.message)
        self.last_snapshot = snapshot
        if self._on_status is not None:
            self._on_status(snapshot)
        return snapshot

    # --- attach / detach -----------------------------------------------------
    def attach(self) -> bool:
        with self._exclusive("attach") as acquired:
            if not acquired:
                return False
            try:
                logger.info("attach requested")
                snapshot = self._usbipd.get_status(self.config.device_aliases)
                return self._attach_sequence(snapshot, label="attach", manual=True)
            finally:
                self.refresh_status()

    def detach(self) -> bool:
        with self._exclusive("detach") as acquired:
            if not acquired:
                return False
            try:
                logger.info("detach requested")
                snapshot = self._usbipd.get_status(self.config.device_aliases)
                self._log_devices("detach devices", snapshot.all_devices)
                device = snapshot.first_attached()
                if device is None:
                    logger.info("detach failed: no attached device")
                    self._send_notification("No attached device found.")
                    return False
                logger.info("detach %s", device.bus_id)
                result = self._usbipd.detach(device.bus_id)
                logger.info("detach exit %s %s", result.exit_code, result.output)
                return True
            finally:
                self.refresh_status()

    def refresh(self) -> bool:
        """Manual status refresh, serialized with every other pass."""
        with self._exclusive("refresh") as acquired:
            if not acquired:
                return False
            self.refresh_status()
            return True

    def toggle_attach_detach(self) -> bool:
        snapshot = self.last_snapshot
        if snapshot is None:
            return False
        if snapshot.ui_status is UiStatus.ATTACHED:
            return self.detach()
        return self.attach()

    def _attach_sequence(self, snapshot: StatusSnapshot, *, label: str, manual: bool) -> bool:
        device = snapshot.primary
        if device is None:
            logger.info("%s failed: no matching device", label)
            if manual:
                self._send_notification("No matching device found.")
            return False

        self._log_devices(f"{label} devices", snapshot.all_devices)
        if device.state is DeviceState.NOT_SHARED:
            logger.info("%s bind %s", label, device.bus_id)
            bind = self._usbipd.bind(device.bus_id)
            logger.info("%s bind exit %s %s", label, bind.exit_code, bind.output)

        logger.info("%s attach %s", label, device.bus_id)
        result = self._usbipd.attach(device.bus_id)
        logger.info("%s attach exit %s %s", label, result.exit_code, result.output)
        return True

    @staticmethod
    def _log_devices(label: str, devices: Iterable[DeviceRecord]) -> None:
        for device in devices:
            logger.info("%s: %s", label, device.raw_line)

    # --- drives --------------------------------------------------------------
    def refresh_drives(self, *, force: bool = False) -> bool:
        """Poll host presence and guest mounts when their cadence is due."""
        now = self._clock()
        in_burst = now < self.state.burst_until
        polled = False

        drive_interval = (
            self.config.drive_poll_busy_seconds if in_burst else self.config.drive_poll_idle_seconds
        )
        if force or now - self.state.last_drive_poll >= drive_interval:
            self.state.last_drive_poll = now
            self.state.present = set(self._present_reader())
            if not self.state.initialized:
                self.state.known_drives = set(self.state.present)
                self.state.initialized = True
            polled = True

        mount_interval = (
            self.config.mount_poll_busy_seconds if in_burst else self.config.mount_poll_idle_seconds
        )
        if force or now - self.state.last_mount_poll >= mount_interval:
            self._poll_mounts(now)
            polled = True

        if polled:
            self._publish_drives()
        return polled

    def reconcile_drives(self) -> Tuple[List[str], List[str]]:
        """Diff the drives present now against the previous pass and act on it."""
        if not self.state.initialized:
            return [], []
        current = set(self._present_reader())
        self.state.present = set(current)
        added = sorted(current - self.state.known_drives)
        removed = sorted(self.state.known_drives - current)

        if added:
            logger.info("drives added: %s", ", ".join(added))
        if removed:
            logger.info("drives removed: %s", ", ".join(removed))

        if self.settings.auto_mount_drives and added:
            for letter in added:
                logger.info("auto mount %s:", letter)
                self._wsl.mount_drive(letter, self.settings)
            self._poll_mounts(self._clock())
            self._start_burst()

        if self.settings.auto_unmount_drives and removed:
            for letter in removed:
                if letter in self.state.mounted:
                    logger.info("auto unmount %s:", letter)
                    self._wsl.unmount_drive(letter, self.settings)
            self._poll_mounts(self._clock())
            self._start_burst()

        if added or removed:
            self._publish_drives()

        self.state.known_drives = current
        return added, removed

    def toggle_drive(self, letter: str) -> bool:
        letter = letter.strip().rstrip(":").upper()
        with self._exclusive(f"drive toggle {letter}:") as acquired:
            if not acquired:
                return False
            if letter in self.state.mounted:
                logger.info("drive unmount %s:", letter)
                self._wsl.unmount_drive(letter, self.settings)
            else:
                logger.info("drive mount %s:", letter)
                self._wsl.mount_drive(letter, self.settings)
            self._poll_mounts(self._clock())
            self._start_burst()
            self._publish_drives()
            return True

    def force_drive_refresh(self) -> bool:
        with self._exclusive("drive refresh") as acquired:
            if not acquired:
                return False
            self.refresh_drives(force=True)
            return True

    def _poll_mounts(self, now: float) -> None:
        self.state.last_mount_poll = now
        self.state.mounted = set(self._wsl.mounted_letters(self.settings))

    def _start_burst(self) -> None:
        # Restarted on every action, so repeated toggling keeps the fast cadence.
        self.state.burst_until = self._clock() + self.config.burst_seconds

    def _publish_drives(self) -> None:
        if self._on_drives is not None:
            self._on_drives(self.drive_snapshot)

    # --- settings ------------------------------------------------------------
    def toggle_auto_attach(self) -> bool:
        self.settings.auto_attach_usb = not self.settings.auto_attach_usb
        self._persist_settings()
        logger.info("auto-attach %s", "on" if self.settings.auto_attach_usb else "off")
        return self.settings.auto_attach_usb

    def toggle_auto_mount(self) -> bool:
        self.settings.auto_mount_drives = not self.settings.auto_mount_drives
        self._persist_settings()
        logger.info("auto-mount drives %s", "on" if self.settings.auto_mount_drives else "off")
        return self.settings.auto_mount_drives

    def toggle_auto_unmount(self) -> bool:
        self.settings.auto_unmount_drives = not self.settings.auto_unmount_drives
        self._persist_settings()
        logger.info("auto-unmount drives %s", "on" if self.settings.auto_unmount_drives else "off")
        return self.settings.auto_unmount_drives

    def apply_settings(self, updated: Settings) -> bool:
        """Copy ``updated`` into the live settings, persist, and re-poll drives.

        Returns whether the settings file was written.
        """
        self.settings.wsl_distro = updated.wsl_distro
        self.settings.mount_base = updated.mount_base
        self.settings.auto_mount_drives = updated.auto_mount_drives
        self.settings.auto_unmount_drives = updated.auto_unmount_drives
        self.settings.auto_attach_usb = updated.auto_attach_usb
        saved = self._persist_settings()
        self.force_drive_refresh()
        return saved

    def _persist_settings(self) -> bool:
        if self._settings_store is None:
            return False
        return self._settings_store.save(self.settings)

    def _send_notification(self, message: str) -> None:
        if self._notify is not None:
            self._notify(message)
