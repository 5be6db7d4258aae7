"""Parsing and classification of ``usbipd list`` output, plus device commands."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

from .config import DEFAULT_CONFIG, ConnectorConfig
from .process import CommandResult, CommandRunner, run_command

logger = logging.getLogger("wsl2fa.usbipd")

BUS_ID_PATTERN = re.compile(r"^(\d+-\d+)\b")
TOOL_ABSENT_MARKERS = ("not recognized",)
ALREADY_BOUND_MARKERS = ("already bound", "already shared")


class DeviceState(Enum):
    ATTACHED = "Attached"
    SHARED = "Shared"
    NOT_SHARED = "Not shared"
    UNKNOWN = "Unknown"


class UiStatus(Enum):
    ATTACHED = "attached"
    DETECTED_NOT_ATTACHED = "detected_not_attached"
    NOT_DETECTED = "not_detected"
    ERROR = "error"


STATE_LABELS = {
    DeviceState.NOT_SHARED: "not shared",
    DeviceState.SHARED: "shared",
}


@dataclass(frozen=True, slots=True)
class DeviceRecord:
    bus_id: str
    state: DeviceState
    description: str
    raw_line: str


@dataclass(frozen=True, slots=True)
class StatusSnapshot:
    ui_status: UiStatus
    all_devices: Tuple[DeviceRecord, ...] = field(default_factory=tuple)
    matching_devices: Tuple[DeviceRecord, ...] = field(default_factory=tuple)
    primary: Optional[DeviceRecord] = None
    message: str = ""

    def first_attached(self) -> Optional[DeviceRecord]:
        for device in self.matching_devices:
            if device.state is DeviceState.ATTACHED:
                return device
        return None


def parse_state(line: str) -> DeviceState:
    # "Not shared" must be tested before the bare "Shared" it contains.
    text = line.lower()
    if "attached" in text:
        return DeviceState.ATTACHED
    if "not shared" in text:
        return DeviceState.NOT_SHARED
    if "shared" in text:
        return DeviceState.SHARED
    return DeviceState.UNKNOWN


def parse_devices(output: str) -> List[DeviceRecord]:
    """Turn ``usbipd list`` text into device records, in listing order.

    Only lines starting with a ``<digits>-<digits>`` bus id are kept; headers,
    section titles and persisted-device GUID rows are skipped silently.
    """
    devices: List[DeviceRecord] = []
    for raw in output.splitlines():
        line = raw.strip()
        if not line:
            continue
        match = BUS_ID_PATTERN.match(line)
        if match is None:
            continue
        description = line[match.end():].strip().lower()
        devices.append(
            DeviceRecord(
                bus_id=match.group(1),
                state=parse_state(line),
                description=description,
                raw_line=line,
            )
        )
    return devices


def is_tool_absent(result: CommandResult) -> bool:
    if result.ok:
        return False
    text = result.output.lower()
    return any(marker in text for marker in TOOL_ABSENT_MARKERS)


def classify(devices: Sequence[DeviceRecord], aliases: Iterable[str]) -> StatusSnapshot:
    """Derive the tray status and primary device from parsed records."""
    patterns = [alias.lower() for alias in aliases if alias]
    all_devices = tuple(devices)
    matching = tuple(
        device
        for device in all_devices
        if any(pattern in device.description for pattern in patterns)
    )
    if not matching:
        return StatusSnapshot(
            UiStatus.NOT_DETECTED, all_devices, matching, None, "2FA device not detected"
        )

    for device in matching:
        if device.state is DeviceState.ATTACHED:
            return StatusSnapshot(
                UiStatus.ATTACHED, all_devices, matching, device, f"Attached {device.bus_id}"
            )

    primary = matching[0]
    label = STATE_LABELS.get(primary.state, "detected")
    return StatusSnapshot(
        UiStatus.DETECTED_NOT_ATTACHED,
        all_devices,
        matching,
        primary,
        f"Detected {primary.bus_id} ({label})",
    )


class UsbipdClient:
    """Thin wrapper over the usbipd command line."""

    def __init__(
        self,
        config: ConnectorConfig | None = None,
        *,
        runner: CommandRunner = run_command,
    ) -> None:
        self.config = config or DEFAULT_CONFIG
        self._runner = runner

    def run(self, args: Sequence[str]) -> CommandResult:
        return self._runner(
            self.config.usbipd_command, list(args), self.config.usbipd_timeout_seconds
        )

    def get_status(self, aliases: Iterable[str] | None = None) -> StatusSnapshot:
        result = self.run(["list"])
        if is_tool_absent(result):
            logger.debug("usbipd unavailable: %s", result.output)
            return StatusSnapshot(UiStatus.ERROR, message="usbipd missing")
        patterns = self.config.device_aliases if aliases is None else aliases
        return classify(parse_devices(result.output), patterns)

    def bind(self, bus_id: str) -> CommandResult:
        result = self.run(["bind", f"--busid={bus_id}"])
        if not result.ok and any(m in result.output.lower() for m in ALREADY_BOUND_MARKERS):
            logger.info("bind %s: device already shared", bus_id)
        return result

    def attach(self, bus_id: str) -> CommandResult:
        return self.run(["attach", "--wsl", "--auto-attach", "--busid", bus_id])

    def detach(self, bus_id: str) -> CommandResult:
        return self.run(["detach", f"--busid={bus_id}"])
