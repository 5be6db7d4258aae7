"""Tests for usbipd listing parsing and status classification."""
from __future__ import annotations

from pathlib import Path

from fakes import FakeUsbipd

from wsl2fa.config import ConnectorConfig
from wsl2fa.process import CommandResult
from wsl2fa.usbipd import (
    DeviceState,
    UiStatus,
    UsbipdClient,
    classify,
    is_tool_absent,
    parse_devices,
    parse_state,
)

ALIASES = ("yubi", "smartcard", "ccid", "fido", "security key")

LISTING = """\
Connected:
BUSID  VID:PID    DEVICE                                                        STATE
1-4    1050:0407  USB Input Device, Microsoft Usbccid Smartcard Reader (WUDF)  Not shared
2-1    046d:c52b  Logitech USB Input Device, USB Input Device                   Not shared
2-3    1050:0407  YubiKey OTP+FIDO+CCID                                         Shared

Persisted:
GUID                                  DEVICE
9f3b5c1e-2a77-4d0b-8d6e-4c2f0e9a1b23  YubiKey OTP+FIDO+CCID
"""


def build_client(runner: FakeUsbipd, tmp_path: Path) -> UsbipdClient:
    cfg = ConnectorConfig(data_path=tmp_path, usbipd_command="usbipd")
    return UsbipdClient(cfg, runner=runner)


def test_parse_attached_line() -> None:
    devices = parse_devices("1-4    Attached   Yubico YubiKey OTP+FIDO+CCID")
    assert len(devices) == 1
    device = devices[0]
    assert device.bus_id == "1-4"
    assert device.state is DeviceState.ATTACHED
    assert "yubico yubikey" in device.description
    assert device.description == device.description.lower()
    assert device.raw_line == "1-4    Attached   Yubico YubiKey OTP+FIDO+CCID"


def test_parse_skips_headers_and_guid_rows() -> None:
    devices = parse_devices(LISTING)
    assert [d.bus_id for d in devices] == ["1-4", "2-1", "2-3"]
    assert [d.state for d in devices] == [
        DeviceState.NOT_SHARED,
        DeviceState.NOT_SHARED,
        DeviceState.SHARED,
    ]


def test_parse_requires_word_boundary_after_bus_id() -> None:
    assert parse_devices("1-4a   something Attached") == []
    assert parse_devices("") == []
    assert [d.bus_id for d in parse_devices("  10-12  Foo  Shared\r\n")] == ["10-12"]


def test_state_precedence() -> None:
    assert parse_state("1-1 thing Attached") is DeviceState.ATTACHED
    assert parse_state("1-1 Attached but Not shared") is DeviceState.ATTACHED
    assert parse_state("1-1 thing Not shared") is DeviceState.NOT_SHARED
    assert parse_state("1-1 thing Shared") is DeviceState.SHARED
    assert parse_state("1-1 thing") is DeviceState.UNKNOWN


def test_classify_attached() -> None:
    devices = parse_devices("1-4    Attached   Yubico YubiKey OTP+FIDO+CCID")
    snapshot = classify(devices, ["yubi"])
    assert snapshot.ui_status is UiStatus.ATTACHED
    assert snapshot.primary is not None
    assert snapshot.primary.bus_id == "1-4"
    assert "1-4" in snapshot.message


def test_classify_not_shared_is_detected_not_attached() -> None:
    devices = parse_devices("3-2    1050:0402  Security Key by Yubico, FIDO  Not shared")
    snapshot = classify(devices, ["fido"])
    assert devices[0].state is DeviceState.NOT_SHARED
    assert snapshot.ui_status is UiStatus.DETECTED_NOT_ATTACHED
    assert "not shared" in snapshot.message
    assert "3-2" in snapshot.message


def test_classify_first_match_wins_when_none_attached() -> None:
    snapshot = classify(parse_devices(LISTING), ALIASES)
    assert snapshot.ui_status is UiStatus.DETECTED_NOT_ATTACHED
    assert [d.bus_id for d in snapshot.matching_devices] == ["1-4", "2-3"]
    assert snapshot.primary is not None and snapshot.primary.bus_id == "1-4"
    assert len(snapshot.all_devices) == 3


def test_classify_prefers_attached_regardless_of_order() -> None:
    listing = (
        "1-1    1050:0407  YubiKey OTP+FIDO+CCID  Shared\n"
        "1-2    1050:0407  YubiKey OTP+FIDO+CCID  Attached\n"
    )
    snapshot = classify(parse_devices(listing), ["YUBI"])
    assert snapshot.ui_status is UiStatus.ATTACHED
    assert snapshot.primary is not None and snapshot.primary.bus_id == "1-2"


def test_classify_shared_and_unknown_labels() -> None:
    shared = classify(parse_devices("1-1  YubiKey  Shared"), ["yubi"])
    unknown = classify(parse_devices("1-1  YubiKey"), ["yubi"])
    assert shared.message == "Detected 1-1 (shared)"
    assert unknown.message == "Detected 1-1 (detected)"


def test_classify_no_match() -> None:
    snapshot = classify(parse_devices("2-1  Logitech mouse  Not shared"), ALIASES)
    assert snapshot.ui_status is UiStatus.NOT_DETECTED
    assert snapshot.primary is None
    assert snapshot.matching_devices == ()
    assert len(snapshot.all_devices) == 1


def test_classify_is_deterministic() -> None:
    devices = parse_devices(LISTING)
    assert classify(devices, ALIASES) == classify(devices, ALIASES)


def test_tool_absent_detection() -> None:
    assert is_tool_absent(CommandResult(1, "'usbipd' is not recognized as an internal or external command"))
    assert not is_tool_absent(CommandResult(0, "not recognized"))
    assert not is_tool_absent(CommandResult(1, "usbipd: error: access denied"))


def test_client_reports_error_when_tool_missing(tmp_path: Path) -> None:
    runner = FakeUsbipd("usbipd : The term 'usbipd' is Not Recognized", exit_code=1)
    snapshot = build_client(runner, tmp_path).get_status(ALIASES)
    assert snapshot.ui_status is UiStatus.ERROR
    assert snapshot.all_devices == ()
    assert snapshot.matching_devices == ()
    assert snapshot.primary is None


def test_failing_listing_without_tool_signature_is_not_detected(tmp_path: Path) -> None:
    runner = FakeUsbipd("usbipd: error: Could not open '/var/x': No such file or directory", exit_code=1)
    snapshot = build_client(runner, tmp_path).get_status(ALIASES)
    assert snapshot.ui_status is UiStatus.NOT_DETECTED
    assert snapshot.all_devices == ()
    assert not is_tool_absent(CommandResult(127, "sh: usbipd: command not found"))


def test_client_garbled_listing_is_not_detected(tmp_path: Path) -> None:
    runner = FakeUsbipd("usbipd: error: service not running", exit_code=1)
    snapshot = build_client(runner, tmp_path).get_status(ALIASES)
    assert snapshot.ui_status is UiStatus.NOT_DETECTED


def test_client_command_shapes(tmp_path: Path) -> None:
    runner = FakeUsbipd(LISTING)
    client = build_client(runner, tmp_path)
    client.bind("1-4")
    client.attach("1-4")
    client.detach("1-4")
    assert runner.calls == [
        ["bind", "--busid=1-4"],
        ["attach", "--wsl", "--auto-attach", "--busid", "1-4"],
        ["detach", "--busid=1-4"],
    ]
