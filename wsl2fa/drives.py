"""Host drive presence and guest (WSL) drvfs mount management."""
from __future__ import annotations

import logging
import string
from typing import Iterable, List, Optional, Sequence, Set

import psutil

from .config import DEFAULT_CONFIG, ConnectorConfig
from .process import CommandResult, CommandRunner, run_command
from .settings import Settings, normalize_mount_base

logger = logging.getLogger("wsl2fa.drives")

DRIVE_LETTERS = frozenset(string.ascii_uppercase)
FINDMNT_SCRIPT = "findmnt -rn -t drvfs -o TARGET"
PROC_MOUNTS_SCRIPT = "grep -i ' drvfs ' /proc/mounts"


def present_drive_letters() -> Set[str]:
    """Return the upper-case letters of host volumes that are currently ready."""
    letters: Set[str] = set()
    try:
        partitions = psutil.disk_partitions(all=False)
    except (OSError, psutil.Error) as exc:
        logger.warning("drive list fail: %s", exc)
        return letters
    for partition in partitions:
        name = (partition.mountpoint or partition.device or "").strip()
        if not name:
            continue
        letter = name[0].upper()
        if letter in DRIVE_LETTERS:
            letters.add(letter)
    return letters


def shell_quote(value: str) -> str:
    """Single-quote ``value`` for ``sh``, splicing in escaped embedded quotes."""
    return "'" + value.replace("'", "'\"'\"'") + "'"


def mount_point(mount_base: str, letter: str) -> str:
    base = normalize_mount_base(mount_base).rstrip("/")
    return f"{base}/{letter.lower()}"


def letter_under(target: str, mount_base: str) -> Optional[str]:
    """Drive letter that ``target`` binds directly under ``mount_base``, if any."""
    prefix = normalize_mount_base(mount_base).rstrip("/") + "/"
    target = target.strip()
    if len(target) <= len(prefix) or not target.lower().startswith(prefix.lower()):
        return None
    letter = target[len(prefix)].upper()
    return letter if letter in DRIVE_LETTERS else None


def letters_from_targets(targets: Iterable[str], mount_base: str) -> Set[str]:
    letters: Set[str] = set()
    for target in targets:
        letter = letter_under(target, mount_base)
        if letter:
            letters.add(letter)
    return letters


def parse_findmnt(output: str, mount_base: str) -> Set[str]:
    return letters_from_targets(output.splitlines(), mount_base)


def parse_proc_mounts(output: str, mount_base: str) -> Set[str]:
    targets: List[str] = []
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 2:
            continue
        targets.append(parts[1])
    return letters_from_targets(targets, mount_base)


class WslClient:
    """Runs shell snippets inside the configured WSL distribution."""

    def __init__(
        self,
        config: ConnectorConfig | None = None,
        *,
        runner: CommandRunner = run_command,
    ) -> None:
        self.config = config or DEFAULT_CONFIG
        self._runner = runner

    def build_args(
        self, settings: Settings, command: Sequence[str], *, as_root: bool = False
    ) -> List[str]:
        args: List[str] = []
        if as_root:
            args.extend(["-u", "root"])
        if settings.wsl_distro and settings.wsl_distro.strip():
            args.extend(["-d", settings.wsl_distro.strip(), "--"])
        args.extend(command)
        return args

    def run_shell(self, settings: Settings, script: str, *, as_root: bool = False) -> CommandResult:
        args = self.build_args(settings, ["sh", "-lc", script], as_root=as_root)
        return self._runner(self.config.wsl_command, args, self.config.wsl_timeout_seconds)

    def mounted_letters(self, settings: Settings) -> Set[str]:
        """Letters bound as drvfs under the mount base, via findmnt or /proc/mounts."""
        base = settings.mount_base
        primary = self.run_shell(settings, FINDMNT_SCRIPT)
        if primary.ok and primary.output.strip():
            return parse_findmnt(primary.output, base)

        fallback = self.run_shell(settings, PROC_MOUNTS_SCRIPT)
        if not fallback.ok or not fallback.output.strip():
            return set()
        return parse_proc_mounts(fallback.output, base)

    def mount_drive(self, letter: str, settings: Settings) -> bool:
        target = shell_quote(mount_point(settings.mount_base, letter))
        drive = shell_quote(f"{letter.upper()}:")
        prep = self.run_shell(settings, f"mkdir -p {target}", as_root=True)
        if not prep.ok:
            logger.warning("mkdir %s: exit %s %s", letter, prep.exit_code, prep.output)
            return False
        result = self.run_shell(settings, f"mount -t drvfs {drive} {target}", as_root=True)
        logger.info("mount %s: exit %s %s", letter, result.exit_code, result.output)
        return result.ok

    def unmount_drive(self, letter: str, settings: Settings) -> bool:
        target = shell_quote(mount_point(settings.mount_base, letter))
        result = self.run_shell(settings, f"umount {target}", as_root=True)
        logger.info("umount %s: exit %s %s", letter, result.exit_code, result.output)
        cleanup = self.run_shell(settings, f"rmdir {target}", as_root=True)
        if not cleanup.ok and cleanup.output.strip():
            logger.info("rmdir %s: exit %s %s", letter, cleanup.exit_code, cleanup.output)
        return result.ok
