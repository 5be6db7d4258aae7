"""Tests for the administration CLI's settings command."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from fakes import FakeGuest, FakeUsbipd

from wsl2fa.config import ConnectorConfig
from wsl2fa.drives import WslClient
from wsl2fa.reconciler import Reconciler
from wsl2fa.settings import Settings, SettingsStore
from wsl2fa.usbipd import UsbipdClient
from wsl2fa_cli import build_parser, cmd_settings


def build_cli_reconciler(
    data_path: Path, guest: FakeGuest, settings: Optional[Settings] = None
) -> Reconciler:
    cfg = ConnectorConfig(data_path=data_path, settings_file="settings.json", log_file="log.txt")
    store = SettingsStore(cfg)
    return Reconciler(
        UsbipdClient(cfg, runner=FakeUsbipd()),
        WslClient(cfg, runner=guest),
        settings or store.load(),
        settings_store=store,
        config=cfg,
        present_reader=lambda: {"C", "E"},
    )


def test_settings_set_applies_to_live_reconciler(tmp_path: Path, capsys) -> None:
    guest = FakeGuest(["E"], mount_base="/media")
    reconciler = build_cli_reconciler(tmp_path, guest)
    args = build_parser().parse_args(
        ["settings", "set", "--mount-base", "media/", "--distro", " Ubuntu ", "--auto-mount"]
    )

    assert cmd_settings(args, reconciler) == 0

    assert reconciler.settings.mount_base == "/media"
    assert reconciler.settings.wsl_distro == "Ubuntu"
    assert reconciler.settings.auto_mount_drives is True
    assert reconciler.state.mounted == {"E"}
    assert any(script.startswith("findmnt") for script in guest.scripts)
    assert guest.calls[-1][:2] == ["-d", "Ubuntu"]

    saved = json.loads((tmp_path / "settings.json").read_text(encoding="utf-8"))
    assert saved["mountBase"] == "/media"
    assert saved["wslDistro"] == "Ubuntu"
    assert saved["autoMountDrives"] is True
    assert json.loads(capsys.readouterr().out) == saved


def test_settings_set_default_distro_clears_choice(tmp_path: Path) -> None:
    reconciler = build_cli_reconciler(tmp_path, FakeGuest(), Settings(wsl_distro="Debian"))
    args = build_parser().parse_args(["settings", "set", "--default-distro", "--no-auto-unmount"])

    assert cmd_settings(args, reconciler) == 0

    reloaded = SettingsStore(reconciler.config).load()
    assert reloaded.wsl_distro is None
    assert reloaded.auto_unmount_drives is False


def test_settings_set_reports_save_failure(tmp_path: Path, capsys) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    reconciler = build_cli_reconciler(blocker, FakeGuest())
    args = build_parser().parse_args(["settings", "set", "--auto-attach"])

    assert cmd_settings(args, reconciler) == 1
    assert "Failed to save settings" in capsys.readouterr().out


def test_settings_show_does_not_write(tmp_path: Path) -> None:
    guest = FakeGuest()
    reconciler = build_cli_reconciler(tmp_path, guest)

    assert cmd_settings(build_parser().parse_args(["settings", "show"]), reconciler) == 0
    assert not (tmp_path / "settings.json").exists()
    assert guest.calls == []
