"""Tests for UV-K5 command frame construction and reply classification."""

import pytest

from quansheng_k5_tool.protocol.commands import (
    MAGIC_PREAMBLE,
    Opcode,
    ResponseKind,
    build_bootloader_command,
    build_calibration_read_command,
    build_checksummed_read_command,
    build_headerless_read_command,
    build_magic_read_command,
    build_read_command,
    build_status_command,
    build_write_command,
    describe_frame,
    extract_payload,
    format_hex,
    validate_response,
    xor_checksum,
)


class TestFrameBuilders:
    """Frame layouts must match the working captures byte for byte."""

    def test_primary_read_frame(self) -> None:
        frame = build_read_command(0x1EC0, 16)
        assert frame == bytes([0x1B, 0x05, 0x04, 0x00, 0xC0, 0x1E, 0x10, 0x00])

    @pytest.mark.parametrize("address", [0x0000, 0x0001, 0x0F30, 0x1EC0, 0x8000, 0xFFFF])
    @pytest.mark.parametrize("length", [0, 1, 16, 128, 255, 256, 0x180, 0xFFFF])
    def test_read_frame_address_and_length(self, address, length) -> None:
        frame = build_read_command(address, length)
        assert len(frame) == 8
        assert frame[4:6] == address.to_bytes(2, "little")
        assert frame[6] == length & 0xFF
        assert frame[7] == 0x00

    def test_read_frame_alternate_opcode(self) -> None:
        frame = build_read_command(0x0F30, 128, Opcode.READ_MEMORY)
        assert frame[0] == 0x1A
        assert frame[4:7] == bytes([0x30, 0x0F, 0x80])

    def test_write_frame_layout(self) -> None:
        frame = build_write_command(0x1EC0, b"\x01\x02")
        assert frame == bytes([0x1D, 0x05, 0x04, 0x00, 0xC0, 0x1E, 0x02, 0x00, 0x01, 0x02])

    def test_write_frame_16bit_length(self) -> None:
        frame = build_write_command(0x0100, bytes(256), Opcode.WRITE_FLASH)
        assert frame[0] == 0x19
        assert frame[6:8] == bytes([0x00, 0x01])
        assert len(frame) == 256 + 8

    def test_address_out_of_range_rejected(self) -> None:
        with pytest.raises(ValueError):
            build_read_command(0x10000, 1)
        with pytest.raises(ValueError):
            build_write_command(-1, b"\x00")

    def test_headerless_read(self) -> None:
        assert build_headerless_read_command(0x1EC0, 16) == bytes([0x1B, 0xC0, 0x1E, 0x10])

    def test_checksummed_read_appends_xor(self) -> None:
        frame = build_checksummed_read_command(0x1EC0, 16)
        body = bytes([0x1B, 0xC0, 0x1E, 0x10])
        assert frame[:4] == body
        assert frame[4] == 0x1B ^ 0xC0 ^ 0x1E ^ 0x10
        assert xor_checksum(body) == frame[4]

    def test_magic_read_prefix(self) -> None:
        frame = build_magic_read_command(0x0F30, 128)
        assert frame.startswith(MAGIC_PREAMBLE)
        assert frame[4:] == build_read_command(0x0F30, 128)

    def test_calibration_read(self) -> None:
        frame = build_calibration_read_command(0x1EC0)
        assert frame == bytes([0x33, 0x05, 0x04, 0x00, 0x01, 0xC0, 0x1E, 0x00])

    def test_status_and_bootloader_frames(self) -> None:
        assert build_status_command() == bytes([0x05, 0x05, 0x04, 0x00, 0x00, 0x00, 0x00, 0x00])
        assert build_bootloader_command(Opcode.ENTER_BOOTLOADER) == bytes([0x18, 0x00, 0x00, 0x00])
        assert build_bootloader_command(Opcode.EXIT_BOOTLOADER) == bytes([0x16, 0x00, 0x00, 0x00])


class TestValidateResponse:
    """Replies are classified by length and header only."""

    def test_empty(self) -> None:
        response = validate_response(b"")
        assert response.kind is ResponseKind.EMPTY
        assert response.is_empty
        assert response.first_byte is None

    def test_short_ack(self) -> None:
        response = validate_response(b"\x1D\x00")
        assert response.kind is ResponseKind.SHORT_ACK
        assert response.echoes(Opcode.WRITE_EEPROM)

    def test_single_byte_is_not_an_echo(self) -> None:
        assert not validate_response(b"\x1D").echoes(Opcode.WRITE_EEPROM)

    def test_headered(self) -> None:
        raw = bytes([0x1B, 0x05, 0x04, 0x00, 0xC0, 0x1E, 0x10, 0x00]) + b"\xAA" * 4
        response = validate_response(raw)
        assert response.kind is ResponseKind.HEADERED
        assert response.payload == b"\xAA" * 4

    def test_raw(self) -> None:
        response = validate_response(b"\x01\x02\x03\x04\x05\x06")
        assert response.kind is ResponseKind.RAW
        assert response.payload == b"\x01\x02\x03\x04\x05\x06"

    def test_payload_at_known_offsets(self) -> None:
        response = validate_response(bytes(range(12)))
        assert response.payload_at(0) == bytes(range(12))
        assert response.payload_at(4) == bytes(range(4, 12))
        with pytest.raises(ValueError):
            response.payload_at(3)


class TestExtractPayload:
    def test_exact_length(self) -> None:
        assert extract_payload(b"\x01\x02", 2) == b"\x01\x02"

    @pytest.mark.parametrize("header", [2, 4, 8])
    def test_known_header_stripped(self, header) -> None:
        raw = b"\xEE" * header + bytes(range(16))
        assert extract_payload(raw, 16) == bytes(range(16))

    def test_unknown_header_size(self) -> None:
        assert extract_payload(b"\xEE" * 3 + bytes(16), 16) is None

    def test_too_short(self) -> None:
        assert extract_payload(bytes(10), 16) is None

    def test_zero_expected_length(self) -> None:
        assert extract_payload(b"", 0) is None


def test_format_hex() -> None:
    assert format_hex(b"\x3C\x14\x0A") == "3C 14 0A"
    assert format_hex(b"") == ""


def test_describe_frame() -> None:
    assert describe_frame(build_read_command(0, 1)) == ("READ_EEPROM", "1B 05 04 00 00 00 01 00")
    assert describe_frame(b"\xEE\x01")[0] == "0xEE"
    assert describe_frame(b"") == ("EMPTY", "")
