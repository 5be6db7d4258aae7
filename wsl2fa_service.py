"""Entry point for running the connector without a tray icon."""
from __future__ import annotations

import argparse
import signal
from typing import Sequence

from wsl2fa.service import ConnectorService


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the WSL 2FA Connector reconciliation loop")
    parser.add_argument(
        "--console-log",
        action="store_true",
        help="Mirror log output to stdout (useful while testing interactively)",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Auto-stop the service after N seconds (omit for indefinite run)",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    service = ConnectorService(console_log=args.console_log)

    def handle_signal(signum: int, _frame: object) -> None:
        service.logger.info("Signal %s received, stopping service", signum)
        service.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    if args.console_log:
        print("WSL 2FA Connector running. Press Ctrl+C to stop.")

    try:
        service.run(duration_seconds=args.duration)
    finally:
        service.stop()


if __name__ == "__main__":
    main()
