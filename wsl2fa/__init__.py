"""WSL 2FA Connector package initialization."""

__all__ = [
    "config",
    "logging_setup",
    "process",
    "usbipd",
    "drives",
    "settings",
    "reconciler",
    "service",
    "status_view",
]
