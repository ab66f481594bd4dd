"""Tests for write gating, parsing, results, log sinks and core actions."""

import logging

import pytest

from quansheng_k5_tool.core import (
    MemorySink,
    MessageLevel,
    OperationResult,
    SafetyContext,
    WarningCode,
    WritePermissionError,
    parse_address,
    parse_hex,
    require_write_permission,
    result_to_warnings,
)
from quansheng_k5_tool.core import actions
from quansheng_k5_tool.core.messages import LoggingSink, WarningItem, classify_message
from quansheng_k5_tool.core.safety import CONFIRMATION_TOKEN
from quansheng_k5_tool.protocol.commands import Opcode
from quansheng_k5_tool.protocol.k5_protocol import FALLBACK_BATTERY_CALIBRATION
from quansheng_k5_tool.record_codec import Channel, DeviceSettings

from conftest import FakeTransport

CALIBRATION = bytes(range(0x40, 0x50))


def _confirmed() -> SafetyContext:
    return SafetyContext(write_enabled=True, confirmation_token="WRITE", interactive=False)


class TestWriteGating:
    def test_simulate_always_allowed(self) -> None:
        require_write_permission(SafetyContext(simulate=True), "settings", 32)

    def test_write_flag_required(self) -> None:
        with pytest.raises(WritePermissionError) as excinfo:
            require_write_permission(SafetyContext(model="UV-K5"), "settings", 32, address=0x0E70)
        assert "--write" in excinfo.value.reason
        assert excinfo.value.details["model"] == "UV-K5"
        assert excinfo.value.details["address"] == "0x0E70"

    def test_token_mismatch(self) -> None:
        ctx = SafetyContext(write_enabled=True, confirmation_token="yes")
        with pytest.raises(WritePermissionError, match="mismatch"):
            require_write_permission(ctx)

    def test_token_case_insensitive(self) -> None:
        ctx = SafetyContext(write_enabled=True, confirmation_token=" write ")
        require_write_permission(ctx)

    def test_non_interactive_needs_token(self) -> None:
        ctx = SafetyContext(write_enabled=True, interactive=False)
        with pytest.raises(WritePermissionError, match="Non-interactive"):
            require_write_permission(ctx)

    def test_interactive_without_prompt(self) -> None:
        with pytest.raises(WritePermissionError, match="no prompt handler"):
            require_write_permission(SafetyContext(write_enabled=True))

    def test_interactive_prompt_accepted(self) -> None:
        shown = []
        ctx = SafetyContext(
            write_enabled=True,
            prompt_confirmation=lambda text: CONFIRMATION_TOKEN,
            show_details=shown.append,
        )
        require_write_permission(ctx, "battery_calibration", 16, address=0x1EC0)

        assert shown[0]["address"] == "0x1EC0"
        assert shown[0]["bytes_length"] == 16

    def test_interactive_prompt_refused(self) -> None:
        ctx = SafetyContext(write_enabled=True, prompt_confirmation=lambda text: "no")
        with pytest.raises(WritePermissionError, match="aborted"):
            require_write_permission(ctx)

    def test_warnings_in_details(self) -> None:
        ctx = SafetyContext()
        ctx.add_warning("Handshake failed")
        assert ctx.to_details_dict()["warnings"] == ["Handshake failed"]


class TestParsing:
    @pytest.mark.parametrize("text,expected", [
        ("7872", 7872),
        ("0x1EC0", 0x1EC0),
        ("0X1ec0", 0x1EC0),
        ("1EC0h", 0x1EC0),
        ("  16 ", 16),
    ])
    def test_address_formats(self, text, expected) -> None:
        assert parse_address(text) == expected

    def test_address_blank(self) -> None:
        assert parse_address(None) is None
        assert parse_address("   ") is None

    def test_address_invalid(self) -> None:
        with pytest.raises(ValueError, match="Invalid address"):
            parse_address("0xZZ")

    @pytest.mark.parametrize("text", [
        "3C 14 1E",
        "3c,14,1e",
        "3C:14:1E",
        "0x3C 0x14 0x1E",
        "3C141E",
    ])
    def test_hex_separators(self, text) -> None:
        assert parse_hex(text) == b"\x3C\x14\x1E"

    def test_hex_odd_digits(self) -> None:
        with pytest.raises(ValueError, match="odd"):
            parse_hex("3C1")

    def test_hex_invalid(self) -> None:
        with pytest.raises(ValueError):
            parse_hex("GG")


class TestOperationResult:
    def test_summary(self) -> None:
        result = OperationResult.success("read_battery", model="UV-K5", region="battery_voltage", bytes_len=2)
        result.metadata["voltage"] = "7.125 V"
        result.add_warning("Voltage outside range")

        summary = result.to_summary()
        assert summary.startswith("[SUCCESS] read_battery")
        assert "voltage: 7.125 V" in summary
        assert "- Voltage outside range" in summary

    def test_add_error_marks_failure(self) -> None:
        result = OperationResult.success("read_settings")
        result.add_error("boom")
        assert not result.ok
        assert result.to_dict()["errors"] == ["boom"]

    def test_failure(self) -> None:
        result = OperationResult.failure("flash_firmware", "Radio did not answer", model="UV-K5")
        assert not result.ok
        assert "[FAILED] flash_firmware" in result.to_summary()

    @pytest.mark.parametrize("data,expected", [
        (None, ""),
        (bytes(16), "16 bytes"),
        (bytes(0x2000), "8,192 bytes"),
        ([Channel(index=0, frequency=145.5), Channel(index=1, frequency=146.52)], "2 channels"),
        (DeviceSettings(), "DeviceSettings"),
        (7.4, "7.400"),
    ])
    def test_payload_description(self, data, expected) -> None:
        result = OperationResult.success("read", data=data)
        assert result.payload == expected
        assert result.to_dict()["payload"] == expected

    def test_summary_shows_payload(self) -> None:
        result = OperationResult.success("read_channels", data=[Channel(index=0, frequency=145.5)])
        assert "  Payload: 1 channel" in result.to_summary().splitlines()
        assert "Payload" not in OperationResult.success("write_settings").to_summary()


class TestMessages:
    @pytest.mark.parametrize("message,code", [
        ("Handshake failed; continuing without it", WarningCode.W_HANDSHAKE_FAILED),
        ("Battery calibration unreadable; returning fallback pattern", WarningCode.W_FALLBACK_DATA),
        ("read 0x1EC0/16 failed after 3 attempts", WarningCode.W_SERIAL_TIMEOUT),
        ("Channel scan: no channels found by any strategy", WarningCode.W_NO_CHANNELS),
        ("Something odd", WarningCode.W_UNKNOWN),
    ])
    def test_classify(self, message, code) -> None:
        assert classify_message(message) is code

    def test_remediation_filled_from_code(self) -> None:
        item = WarningItem(MessageLevel.WARNING, WarningCode.W_WRITE_DISABLED, "Write blocked")
        assert "--write" in item.remediation
        assert item.to_dict()["code"] == "W_WRITE_DISABLED"

    def test_result_to_warnings(self) -> None:
        result = OperationResult.failure("read_channels", "Operation cancelled")
        result.add_warning("Handshake failed")
        items = result_to_warnings(result)

        assert [i.level for i in items] == [MessageLevel.WARNING, MessageLevel.ERROR]
        assert items[1].code is WarningCode.W_CANCELLED

    def test_memory_sink_forwards(self) -> None:
        downstream = MemorySink()
        sink = MemorySink(forward=downstream)
        sink("retrying", MessageLevel.DEBUG)
        sink("done", MessageLevel.SUCCESS)

        assert sink.messages() == ["retrying", "done"]
        assert downstream.messages(MessageLevel.SUCCESS) == ["done"]
        assert "SUCCESS" in sink.lines()[1]

    def test_logging_sink(self, caplog) -> None:
        sink = LoggingSink(logging.getLogger("k5test"))
        with caplog.at_level(logging.DEBUG, logger="k5test"):
            sink("Settings written", MessageLevel.SUCCESS)
            sink("Handshake failed", MessageLevel.WARNING)

        assert caplog.records[0].levelno == logging.INFO
        assert caplog.records[0].getMessage() == "✓ Settings written"
        assert caplog.records[1].levelno == logging.WARNING


class TestActions:
    def test_fallback_calibration_flagged(self, make_session) -> None:
        session = make_session(FakeTransport())
        result = actions.read_battery_calibration(session)

        assert result.ok
        assert result.data == FALLBACK_BATTERY_CALIBRATION
        assert result.metadata["fallback"] is True
        assert any("fallback" in w for w in result.warnings)

    def test_simulated_write_sends_nothing(self, make_session, radio) -> None:
        session = make_session(radio)
        result = actions.write_battery_calibration(session, CALIBRATION, SafetyContext(simulate=True))

        assert result.ok
        assert result.metadata["simulated"] is True
        assert radio.writes == []

    def test_confirmed_write(self, make_session, radio) -> None:
        session = make_session(radio)
        result = actions.write_battery_calibration(session, CALIBRATION, _confirmed())

        assert result.ok
        assert bytes(radio.memory[0x1EC0:0x1ED0]) == CALIBRATION

    def test_permission_error_propagates(self, make_session, radio) -> None:
        session = make_session(radio)
        with pytest.raises(WritePermissionError):
            actions.write_settings(session, DeviceSettings(), SafetyContext(interactive=False))
        assert radio.writes == []

    def test_invalid_channels_never_written(self, make_session, radio) -> None:
        session = make_session(radio)
        result = actions.write_channels(session, [Channel(index=0, frequency=433.5)], _confirmed())

        assert not result.ok
        assert "Channel 1" in result.metadata["invalid"]
        assert radio.writes == []

    def test_device_failure_becomes_result(self, make_session) -> None:
        session = make_session(FakeTransport())
        result = actions.write_settings(session, DeviceSettings(), _confirmed())

        assert not result.ok
        assert result.errors

    def test_logs_restored_after_action(self, make_session, radio, sink) -> None:
        session = make_session(radio)
        result = actions.read_settings(session)

        assert result.ok
        assert session.log is sink
        assert session.engine.log is sink
        assert result.logs

    def test_read_memory_hex(self, make_session, radio) -> None:
        radio.load(0x1EC0, CALIBRATION)
        session = make_session(radio)
        result = actions.read_memory(session, 0x1EC0, 4)

        assert result.metadata["hex"] == "40 41 42 43"
        assert result.region == "0x1EC0/4B"

    def test_read_channels_empty_warns(self, make_session) -> None:
        result = actions.read_channels(make_session(FakeTransport()))
        assert result.ok
        assert result.data == []
        assert "No channels found" in result.warnings
        assert result.metadata["strategy"] == "none"

    def test_connection_probe(self, make_session, radio) -> None:
        result = actions.test_connection(make_session(radio))
        assert result.ok
        assert result.metadata["handshake"] is True

    def test_write_frames_only_after_gate(self, make_session, radio) -> None:
        session = make_session(radio)
        actions.write_settings(session, DeviceSettings(backlight=30), _confirmed())
        assert len(radio.frames(Opcode.WRITE_EEPROM)) == 1
