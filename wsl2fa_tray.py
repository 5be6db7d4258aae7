"""Tray helper that keeps the security key attached to WSL with a status icon."""
from __future__ import annotations

import argparse
import logging
import threading
from typing import TYPE_CHECKING, Dict, List, Optional

from wsl2fa.reconciler import DriveSnapshot
from wsl2fa.service import ConnectorService
from wsl2fa.status_view import APP_TITLE, STATUS_COLORS, tooltip_for
from wsl2fa.usbipd import StatusSnapshot, UiStatus

try:  # pragma: no cover - UI dependency checked at runtime
    import pystray
    from PIL import Image, ImageDraw
except ImportError as exc:  # pragma: no cover - surfaced to user
    _TRAY_IMPORT_ERROR: Optional[Exception] = exc
else:  # pragma: no cover - UI dependency checked at runtime
    _TRAY_IMPORT_ERROR = None

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from PIL import Image as PILImage

LOGGER = logging.getLogger("wsl2fa.tray")


class ConnectorTrayApp:
    def __init__(self, *, console_log: bool = False) -> None:
        if _TRAY_IMPORT_ERROR:
            raise RuntimeError(
                "pystray and Pillow are required for the tray icon.\n"
                "Install them with 'pip install pystray Pillow'."
            ) from _TRAY_IMPORT_ERROR
        self._icons: Dict[UiStatus, "PILImage"] = {
            status: self._build_image(color) for status, color in STATUS_COLORS.items()
        }
        self._snapshot: Optional[StatusSnapshot] = None
        self._drives = DriveSnapshot()
        self._state_lock = threading.Lock()
        self.service = ConnectorService(
            console_log=console_log,
            on_status=self._on_status,
            on_drives=self._on_drives,
            notify=self._notify,
        )
        self.icon = pystray.Icon(
            "wsl2fa",
            self._icons[UiStatus.ERROR],
            APP_TITLE,
            menu=self._build_menu(),
        )

    def _build_image(self, color: tuple) -> "PILImage":
        size = 64
        image = Image.new("RGBA", (size, size), (0, 0, 0, 0))
        draw = ImageDraw.Draw(image)
        draw.ellipse((8, 8, size - 8, size - 8), fill=color, outline=(0, 0, 0, 110), width=4)
        return image

    def _build_menu(self) -> "pystray.Menu":
        settings = self.service.settings
        return pystray.Menu(
            pystray.MenuItem(APP_TITLE, None, enabled=False),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Toggle", self._on_toggle, default=True, visible=False),
            pystray.MenuItem("Attach", self._on_attach, enabled=lambda _item: self._can_attach()),
            pystray.MenuItem("Detach", self._on_detach, enabled=lambda _item: self._is_attached()),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem(
                "Auto-attach",
                self._on_toggle_auto_attach,
                checked=lambda _item: settings.auto_attach_usb,
            ),
            pystray.MenuItem("Refresh", lambda _icon, _item: self.service.request_refresh()),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Drives", None, enabled=False),
            pystray.MenuItem(
                "Auto-mount new drives",
                self._on_toggle_auto_mount,
                checked=lambda _item: settings.auto_mount_drives,
            ),
            pystray.MenuItem(
                "Auto-unmount on removal",
                self._on_toggle_auto_unmount,
                checked=lambda _item: settings.auto_unmount_drives,
            ),
            pystray.MenuItem(
                "Refresh drives",
                lambda _icon, _item: self.service.request_drive_refresh(),
            ),
            pystray.MenuItem("Drives", pystray.Menu(self._drive_items)),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Exit", self._on_exit),
        )

    def _drive_items(self) -> List["pystray.MenuItem"]:
        with self._state_lock:
            drives = self._drives
        if not drives.present:
            return [pystray.MenuItem("(no drives)", None, enabled=False)]
        return [self._drive_item(letter, letter in drives.mounted) for letter in sorted(drives.present)]

    def _drive_item(self, letter: str, mounted: bool) -> "pystray.MenuItem":
        def _toggle(_icon, _item) -> None:
            self.service.request_drive_toggle(letter)

        return pystray.MenuItem(f"{letter}:", _toggle, checked=lambda _item: mounted)

    def _can_attach(self) -> bool:
        snapshot = self._snapshot
        return snapshot is not None and snapshot.ui_status not in (UiStatus.ATTACHED, UiStatus.ERROR)

    def _is_attached(self) -> bool:
        snapshot = self._snapshot
        return snapshot is not None and snapshot.ui_status is UiStatus.ATTACHED

    # --- service callbacks (timer/worker threads) ------------------------------
    def _on_status(self, snapshot: StatusSnapshot) -> None:
        self._snapshot = snapshot
        self.icon.icon = self._icons[snapshot.ui_status]
        self.icon.title = tooltip_for(snapshot)
        self.icon.update_menu()

    def _on_drives(self, drives: DriveSnapshot) -> None:
        with self._state_lock:
            self._drives = drives
        self.icon.update_menu()

    def _notify(self, message: str) -> None:
        try:
            self.icon.notify(message, APP_TITLE)
        except Exception as exc:  # pragma: no cover - backend specific
            LOGGER.warning("Notification failed: %s", exc)

    # --- menu handlers (tray thread) -------------------------------------------
    def _on_toggle(self, _icon, _item) -> None:
        self.service.request_toggle()

    def _on_attach(self, _icon, _item) -> None:
        self.service.request_attach()

    def _on_detach(self, _icon, _item) -> None:
        self.service.request_detach()

    def _on_toggle_auto_attach(self, _icon, _item) -> None:
        self.service.reconciler.toggle_auto_attach()

    def _on_toggle_auto_mount(self, _icon, _item) -> None:
        self.service.reconciler.toggle_auto_mount()

    def _on_toggle_auto_unmount(self, _icon, _item) -> None:
        self.service.reconciler.toggle_auto_unmount()

    def _on_exit(self, icon, _item) -> None:
        self.service.stop()
        icon.stop()

    def start(self) -> None:
        def _setup(icon) -> None:
            icon.visible = True
            self.service.start()

        try:
            self.icon.run(setup=_setup)
        finally:
            self.service.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the WSL 2FA Connector tray icon")
    parser.add_argument(
        "--console-log",
        action="store_true",
        help="Mirror connector logs to this console while the tray icon is active.",
    )
    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    app = ConnectorTrayApp(console_log=args.console_log)
    app.start()


if __name__ == "__main__":
    main()
