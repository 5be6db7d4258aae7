"""Blocking execution of external command-line tools with a hard timeout."""
from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Callable, Sequence

logger = logging.getLogger("wsl2fa.process")

EXIT_NOT_FOUND = 127
EXIT_FAILED = -1


@dataclass(frozen=True, slots=True)
class CommandResult:
    exit_code: int
    output: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


CommandRunner = Callable[[str, Sequence[str], float], CommandResult]


def _popen_flags() -> int:
    if os.name != "nt":
        return 0
    return int(getattr(subprocess, "CREATE_NO_WINDOW", 0))


def run_command(command: str, args: Sequence[str], timeout: float) -> CommandResult:
    """Run ``command`` with ``args`` and return exit code plus trimmed output.

    Stdout and stderr are concatenated. A missing binary, a timeout, or an
    OS-level launch failure produce a synthetic failing result instead of an
    exception so that one bad call never aborts a reconciliation pass.
    """
    argv = [command, *args]
    try:
        completed = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            check=False,
            creationflags=_popen_flags(),
        )
    except FileNotFoundError:
        logger.debug("Executable not found: %s", command)
        return CommandResult(
            EXIT_NOT_FOUND,
            f"'{command}' is not recognized as a command or executable program",
        )
    except subprocess.TimeoutExpired:
        # subprocess.run kills the child before re-raising.
        logger.warning("%s %s timed out after %.1fs", command, " ".join(args), timeout)
        return CommandResult(EXIT_FAILED, f"{os.path.basename(command)} timed out")
    except OSError as err:
        logger.error("Failed to launch %s: %s", command, err)
        return CommandResult(EXIT_FAILED, str(err))

    combined = (completed.stdout or "") + (completed.stderr or "")
    # wsl.exe emits UTF-16 for its own diagnostics; stray NULs are noise here.
    return CommandResult(completed.returncode, combined.replace("\x00", "").strip())
