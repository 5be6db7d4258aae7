"""Display helpers for the tray that need no GUI toolkit."""
from __future__ import annotations

from typing import Dict, Tuple

from .usbipd import StatusSnapshot, UiStatus

APP_TITLE = "WSL 2FA Connector"
# Windows rejects notify-icon tooltips longer than this.
TOOLTIP_LIMIT = 63

STATUS_COLORS: Dict[UiStatus, Tuple[int, int, int, int]] = {
    UiStatus.ATTACHED: (0, 180, 0, 255),
    UiStatus.DETECTED_NOT_ATTACHED: (255, 185, 0, 255),
    UiStatus.NOT_DETECTED: (200, 0, 0, 255),
    UiStatus.ERROR: (120, 120, 120, 255),
}


def tooltip_for(snapshot: StatusSnapshot) -> str:
    return f"{APP_TITLE} - {snapshot.message}"[:TOOLTIP_LIMIT]
