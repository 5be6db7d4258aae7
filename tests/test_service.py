"""Tests for ConnectorService threading and request dispatch."""
from __future__ import annotations

import threading
from pathlib import Path

from fakes import FakeGuest, FakeUsbipd

from wsl2fa.config import ConnectorConfig
from wsl2fa.drives import WslClient
from wsl2fa.service import ConnectorService
from wsl2fa.usbipd import StatusSnapshot, UiStatus, UsbipdClient

SHARED = "1-4    1050:0407  YubiKey OTP+FIDO+CCID  Shared"
ATTACHED = "1-4    1050:0407  YubiKey OTP+FIDO+CCID  Attached"


def build_service(
    tmp_path: Path, runner: FakeUsbipd, *, poll_seconds: float = 0.05, **kwargs
) -> ConnectorService:
    cfg = ConnectorConfig(
        data_path=tmp_path,
        log_file="log.txt",
        settings_file="settings.json",
        poll_seconds=poll_seconds,
    )
    return ConnectorService(
        cfg,
        usbipd=UsbipdClient(cfg, runner=runner),
        wsl=WslClient(cfg, runner=FakeGuest()),
        **kwargs,
    )


def test_run_ticks_until_duration_elapses(tmp_path: Path) -> None:
    statuses = []
    service = build_service(tmp_path, FakeUsbipd(SHARED), on_status=statuses.append)
    service.run(duration_seconds=0.5)
    assert len(statuses) >= 2
    assert statuses[-1].ui_status is UiStatus.DETECTED_NOT_ATTACHED


def test_manual_attach_runs_on_worker(tmp_path: Path) -> None:
    runner = FakeUsbipd(SHARED)
    runner.after_attach = ATTACHED
    attached = threading.Event()

    def on_status(snapshot: StatusSnapshot) -> None:
        if snapshot.ui_status is UiStatus.ATTACHED:
            attached.set()

    service = build_service(tmp_path, runner, poll_seconds=60, on_status=on_status)
    service.start()
    try:
        assert service.request_attach() is True
        assert attached.wait(timeout=5.0)
    finally:
        service.stop()
    assert ["attach", "--wsl", "--auto-attach", "--busid", "1-4"] in runner.actions


def test_settings_loaded_from_store(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_text('{"autoAttachUsb": true, "mountBase": "x/"}')
    service = build_service(tmp_path, FakeUsbipd(""))
    assert service.settings.auto_attach_usb is True
    assert service.settings.mount_base == "/x"
    assert service.reconciler.settings is service.settings
