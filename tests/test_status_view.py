"""Tests for the tray display helpers; none of them need pystray or a display."""
from __future__ import annotations

import sys

from wsl2fa.status_view import APP_TITLE, STATUS_COLORS, TOOLTIP_LIMIT, tooltip_for
from wsl2fa.usbipd import StatusSnapshot, UiStatus


def test_tooltip_is_truncated() -> None:
    snapshot = StatusSnapshot(UiStatus.DETECTED_NOT_ATTACHED, message="Detected 1-4 (not shared) " * 4)
    tooltip = tooltip_for(snapshot)
    assert tooltip.startswith(f"{APP_TITLE} - Detected 1-4")
    assert len(tooltip) == TOOLTIP_LIMIT


def test_short_tooltip_kept() -> None:
    assert tooltip_for(StatusSnapshot(UiStatus.ERROR, message="usbipd missing")) == (
        "WSL 2FA Connector - usbipd missing"
    )


def test_every_status_has_a_color() -> None:
    assert set(STATUS_COLORS) == set(UiStatus)


def test_helpers_do_not_load_tray_toolkit() -> None:
    assert "wsl2fa_tray" not in sys.modules
    assert "pystray" not in sys.modules
