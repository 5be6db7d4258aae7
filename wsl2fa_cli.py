"""Command-line helper for administering the WSL 2FA Connector."""
from __future__ import annotations

import argparse
import json
from dataclasses import replace
from typing import Callable

from wsl2fa.config import DEFAULT_CONFIG
from wsl2fa.drives import WslClient
from wsl2fa.logging_setup import configure_logging
from wsl2fa.reconciler import Reconciler
from wsl2fa.settings import SettingsStore, normalize_mount_base
from wsl2fa.usbipd import UiStatus, UsbipdClient


def build_reconciler(store: SettingsStore) -> Reconciler:
    return Reconciler(
        UsbipdClient(store.config),
        WslClient(store.config),
        store.load(),
        settings_store=store,
        config=store.config,
        notify=print,
    )


def cmd_status(_: argparse.Namespace, reconciler: Reconciler) -> int:
    snapshot = reconciler.refresh_status()
    print("Status:", snapshot.ui_status.value)
    print("Message:", snapshot.message)
    for device in snapshot.matching_devices:
        marker = "*" if device is snapshot.primary else " "
        print(f"{marker} {device.bus_id}\t{device.state.value}\t{device.description}")
    return 1 if snapshot.ui_status is UiStatus.ERROR else 0


def cmd_devices(_: argparse.Namespace, reconciler: Reconciler) -> int:
    snapshot = reconciler.refresh_status()
    if snapshot.ui_status is UiStatus.ERROR:
        print("usbipd is not installed or not on PATH.")
        return 1
    if not snapshot.all_devices:
        print("No USB devices listed.")
        return 0
    for device in snapshot.all_devices:
        print(f"{device.bus_id}\t{device.state.value}\t{device.raw_line}")
    return 0


def cmd_attach(_: argparse.Namespace, reconciler: Reconciler) -> int:
    attempted = reconciler.attach()
    snapshot = reconciler.last_snapshot
    if snapshot is not None:
        print(snapshot.message)
    return 0 if attempted and snapshot is not None and snapshot.ui_status is UiStatus.ATTACHED else 1


def cmd_detach(_: argparse.Namespace, reconciler: Reconciler) -> int:
    attempted = reconciler.detach()
    snapshot = reconciler.last_snapshot
    if snapshot is not None:
        print(snapshot.message)
    return 0 if attempted else 1


def cmd_drives(_: argparse.Namespace, reconciler: Reconciler) -> int:
    reconciler.refresh_drives(force=True)
    drives = reconciler.drive_snapshot
    base = reconciler.settings.mount_base
    if not drives.present and not drives.mounted:
        print("(no drives)")
        return 0
    for letter in sorted(drives.present | drives.mounted):
        state = "mounted" if letter in drives.mounted else "not mounted"
        if letter not in drives.present:
            state += " (drive removed)"
        print(f"{letter}:\t{state}\t{base.rstrip('/')}/{letter.lower()}")
    return 0


def _set_mounted(letter: str, reconciler: Reconciler, *, mounted: bool) -> int:
    letter = letter.strip().rstrip(":").upper()
    if len(letter) != 1 or not letter.isalpha():
        print(f"Invalid drive letter: {letter!r}")
        return 2
    reconciler.refresh_drives(force=True)
    if (letter in reconciler.state.mounted) != mounted:
        reconciler.toggle_drive(letter)
    ok = (letter in reconciler.state.mounted) == mounted
    verb = "mounted" if mounted else "unmounted"
    print(f"{letter}: {verb}" if ok else f"{letter}: could not be {verb} (see log)")
    return 0 if ok else 1


def cmd_mount(args: argparse.Namespace, reconciler: Reconciler) -> int:
    return _set_mounted(args.letter, reconciler, mounted=True)


def cmd_unmount(args: argparse.Namespace, reconciler: Reconciler) -> int:
    return _set_mounted(args.letter, reconciler, mounted=False)


def cmd_settings(args: argparse.Namespace, reconciler: Reconciler) -> int:
    if args.action == "set":
        updated = replace(reconciler.settings)
        if args.default_distro:
            updated.wsl_distro = None
        elif args.distro is not None:
            updated.wsl_distro = args.distro.strip() or None
        if args.mount_base is not None:
            updated.mount_base = normalize_mount_base(args.mount_base)
        if args.auto_mount is not None:
            updated.auto_mount_drives = args.auto_mount
        if args.auto_unmount is not None:
            updated.auto_unmount_drives = args.auto_unmount
        if args.auto_attach is not None:
            updated.auto_attach_usb = args.auto_attach
        if not reconciler.apply_settings(updated):
            print("Failed to save settings (see log).")
            return 1
    print(json.dumps(reconciler.settings.to_dict(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="WSL 2FA Connector administration CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Show security key status")
    subparsers.add_parser("devices", help="List every device reported by usbipd")
    subparsers.add_parser("attach", help="Bind (if needed) and attach the security key to WSL")
    subparsers.add_parser("detach", help="Detach the attached security key from WSL")
    subparsers.add_parser("drives", help="List host drives and their WSL mount state")
    mount_parser = subparsers.add_parser("mount", help="Mount a host drive in WSL")
    mount_parser.add_argument("letter", help="Drive letter, e.g. E or E:")
    unmount_parser = subparsers.add_parser("unmount", help="Unmount a host drive from WSL")
    unmount_parser.add_argument("letter", help="Drive letter, e.g. E or E:")

    settings_parser = subparsers.add_parser("settings", help="Show or change persisted settings")
    settings_parser.add_argument("action", choices=["show", "set"], help="Show or update settings")
    distro_group = settings_parser.add_mutually_exclusive_group()
    distro_group.add_argument("--distro", help="WSL distribution to use")
    distro_group.add_argument(
        "--default-distro",
        action="store_true",
        help="Use the default WSL distribution",
    )
    settings_parser.add_argument("--mount-base", help="Guest directory drives are mounted under")
    settings_parser.add_argument(
        "--auto-mount",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Mount newly inserted drives automatically",
    )
    settings_parser.add_argument(
        "--auto-unmount",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Unmount drives automatically when they are removed",
    )
    settings_parser.add_argument(
        "--auto-attach",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Attach the security key automatically when detected",
    )
    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    configure_logging()
    reconciler = build_reconciler(SettingsStore(DEFAULT_CONFIG))

    commands: dict[str, Callable[[argparse.Namespace, Reconciler], int]] = {
        "status": cmd_status,
        "devices": cmd_devices,
        "attach": cmd_attach,
        "detach": cmd_detach,
        "drives": cmd_drives,
        "mount": cmd_mount,
        "unmount": cmd_unmount,
        "settings": cmd_settings,
    }
    handler = commands[args.command]
    return handler(args, reconciler)


if __name__ == "__main__":
    raise SystemExit(main())
