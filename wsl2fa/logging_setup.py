"""Centralized logging configuration for the connector."""
from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

from .config import DEFAULT_CONFIG, ConnectorConfig


def configure_logging(
    *,
    force_console: bool | None = None,
    config: ConnectorConfig | None = None,
) -> logging.Logger:
    """Configure the ``wsl2fa`` logger with a single-backup rotating file."""
    cfg = config or DEFAULT_CONFIG
    cfg.ensure_directories()
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s %(threadName)s - %(message)s"
    )

    logger = logging.getLogger("wsl2fa")
    logger.setLevel(logging.INFO)
    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        handler = RotatingFileHandler(
            cfg.log_location,
            maxBytes=cfg.log_max_bytes,
            backupCount=1,
            encoding="utf-8",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    console_pref = force_console
    if console_pref is None:
        console_pref = os.environ.get("WSL2FA_CONSOLE_LOG", "0") not in {"0", ""}
    if console_pref and not any(isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler) for h in logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger
