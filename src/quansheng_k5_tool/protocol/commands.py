"""
UV-K5 Command Codec

Builds the fixed-layout command frames understood by the UV-K5 programming
interface and classifies the raw replies.

The radio's dialect is only partly documented. The primary read layout
below is the one seen in working captures; the alternate layouts (magic
preamble, no protocol header, other opcodes, XOR checksum) are legal frames
that the session may send while probing.

Primary frame formats:
    READ:   [ op | 05 04 00 | addr_lo | addr_hi | len & 0xFF | 00 ]
    WRITE:  [ op | 05 04 00 | addr_lo | addr_hi | len_lo | len_hi | payload... ]
    BOOT:   [ op | 00 00 00 ]

Replies have no framing guarantee: an echoed opcode plus header, the raw
payload, or a 2-4 byte ack are all observed.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional, Tuple


class Opcode(IntEnum):
    """Command opcodes as sent on the wire."""
    HANDSHAKE = 0x14
    ACKNOWLEDGE = 0x06
    READ_EEPROM = 0x1B          # Primary read (working captures)
    READ_MEMORY = 0x1A          # Alternate read
    WRITE_EEPROM = 0x1D         # Primary write, echoed on success
    WRITE_MEMORY = 0x1C
    ENTER_BOOTLOADER = 0x18     # Also used by the radio as generic ACK
    EXIT_BOOTLOADER = 0x16
    ERASE_FLASH = 0x15
    WRITE_FLASH = 0x19
    READ_VERSION = 0x17
    READ_DEVICE_ID = 0x05
    READ_CALIBRATION = 0x33
    WRITE_CALIBRATION = 0x34
    READ_SETTINGS = 0x35
    WRITE_SETTINGS = 0x36


PROTOCOL_HEADER = bytes([0x05, 0x04, 0x00])
MAGIC_PREAMBLE = bytes([0xAB, 0xCD, 0xEF, 0xAB])
BOOTLOADER_ACK = Opcode.ENTER_BOOTLOADER

READ_FRAME_SIZE = 8
WRITE_HEADER_SIZE = 8
MAX_WRITE_PAYLOAD = 0xFFFF

# Header sizes observed in front of a payload
PAYLOAD_OFFSETS = (0, 2, 4, 8)
SHORT_ACK_MAX = 4
HEADERED_MIN = 8

# Calibration type selector for the READ_CALIBRATION opcode
CALIBRATION_TYPE_BATTERY = 0x01


def _check_address(address: int) -> None:
    if not 0 <= address <= 0xFFFF:
        raise ValueError(f"Address out of range: 0x{address:X}")


def _check_length(length: int) -> None:
    if not 0 <= length <= 0xFFFF:
        raise ValueError(f"Length out of range: {length}")


def xor_checksum(data: bytes) -> int:
    """XOR of all bytes; used by the checksummed frame layout."""
    checksum = 0
    for byte in data:
        checksum ^= byte
    return checksum


def build_read_command(address: int, length: int, opcode: int = Opcode.READ_EEPROM) -> bytes:
    """
    Build the primary read frame.

    Args:
        address: 16-bit EEPROM address
        length: Number of bytes requested (only the low byte is sent)
        opcode: Read opcode (default READ_EEPROM)

    Returns:
        8-byte frame
    """
    _check_address(address)
    _check_length(length)
    return bytes([
        opcode,
        *PROTOCOL_HEADER,
        address & 0xFF,
        (address >> 8) & 0xFF,
        length & 0xFF,
        0x00,
    ])


def build_write_command(address: int, payload: bytes, opcode: int = Opcode.WRITE_EEPROM) -> bytes:
    """
    Build the primary write frame.

    Frame: [ op | 05 04 00 | addr_lo | addr_hi | len_lo | len_hi | payload ]

    For payloads up to 255 bytes the length field is identical to the
    "length byte + pad" layout used by reads.

    Args:
        address: 16-bit address
        payload: Bytes to write
        opcode: WRITE_EEPROM, WRITE_MEMORY or WRITE_FLASH

    Returns:
        Frame of len(payload) + 8 bytes
    """
    _check_address(address)
    if len(payload) > MAX_WRITE_PAYLOAD:
        raise ValueError(f"Payload too large: {len(payload)} bytes")
    size = len(payload)
    frame = bytearray([
        opcode,
        *PROTOCOL_HEADER,
        address & 0xFF,
        (address >> 8) & 0xFF,
        size & 0xFF,
        (size >> 8) & 0xFF,
    ])
    frame.extend(payload)
    return bytes(frame)


def build_headerless_read_command(address: int, length: int, opcode: int = Opcode.READ_EEPROM) -> bytes:
    """Build the 4-byte read layout without protocol header."""
    _check_address(address)
    _check_length(length)
    return bytes([opcode, address & 0xFF, (address >> 8) & 0xFF, length & 0xFF])


def build_magic_read_command(address: int, length: int) -> bytes:
    """Primary read frame prefixed with the magic preamble."""
    return MAGIC_PREAMBLE + build_read_command(address, length)


def build_checksummed_read_command(address: int, length: int, opcode: int = Opcode.READ_EEPROM) -> bytes:
    """Read layout with trailing XOR checksum: [ op | addr LE | len | xor ]."""
    body = build_headerless_read_command(address, length, opcode)
    return body + bytes([xor_checksum(body)])


def build_calibration_read_command(address: int, calibration_type: int = CALIBRATION_TYPE_BATTERY) -> bytes:
    """Calibration-specific read: [ 33 | 05 04 00 | type | addr_lo | addr_hi | 00 ]."""
    _check_address(address)
    return bytes([
        Opcode.READ_CALIBRATION,
        *PROTOCOL_HEADER,
        calibration_type & 0xFF,
        address & 0xFF,
        (address >> 8) & 0xFF,
        0x00,
    ])


def build_status_command() -> bytes:
    """Device status request (READ_DEVICE_ID with zero padding)."""
    return bytes([Opcode.READ_DEVICE_ID, *PROTOCOL_HEADER, 0x00, 0x00, 0x00, 0x00])


def build_bootloader_command(opcode: int) -> bytes:
    """Bootloader control frame: [ op | 00 00 00 ]."""
    return bytes([opcode, 0x00, 0x00, 0x00])


class ResponseKind(Enum):
    """Shape of a raw reply."""
    EMPTY = "empty"
    SHORT_ACK = "short_ack"
    HEADERED = "headered"
    RAW = "raw"


@dataclass(frozen=True)
class Response:
    """
    Classified raw reply.

    Attributes:
        kind: Heuristic shape of the reply
        raw: Bytes exactly as received
    """
    kind: ResponseKind
    raw: bytes

    @property
    def is_empty(self) -> bool:
        return self.kind is ResponseKind.EMPTY

    @property
    def first_byte(self) -> Optional[int]:
        return self.raw[0] if self.raw else None

    def payload_at(self, offset: int) -> bytes:
        """
        Payload starting at ``offset``.

        Args:
            offset: One of 0, 2, 4 or 8

        Returns:
            Bytes after the assumed header (may be empty)
        """
        if offset not in PAYLOAD_OFFSETS:
            raise ValueError(f"Unsupported payload offset {offset}; use one of {PAYLOAD_OFFSETS}")
        return self.raw[offset:]

    @property
    def payload(self) -> bytes:
        """Best-guess payload: after the 8-byte header for HEADERED replies."""
        if self.kind is ResponseKind.HEADERED:
            return self.raw[HEADERED_MIN:]
        return self.raw

    def echoes(self, opcode: int, min_length: int = 2) -> bool:
        """True if the reply starts with ``opcode`` and has at least ``min_length`` bytes."""
        return len(self.raw) >= min_length and self.raw[0] == opcode


def validate_response(raw: bytes) -> Response:
    """
    Classify a raw reply by length.

    - Empty: nothing received (never an error by itself)
    - ShortAck: 1-4 bytes, typically an echoed opcode
    - Headered: 8+ bytes starting with the echoed header
    - Raw: anything else, payload occupies the whole buffer

    Args:
        raw: Bytes as received

    Returns:
        Response with the inferred kind
    """
    if not raw:
        return Response(ResponseKind.EMPTY, b"")
    if len(raw) <= SHORT_ACK_MAX:
        return Response(ResponseKind.SHORT_ACK, bytes(raw))
    if len(raw) >= HEADERED_MIN and raw[1:4] == PROTOCOL_HEADER:
        return Response(ResponseKind.HEADERED, bytes(raw))
    return Response(ResponseKind.RAW, bytes(raw))


def extract_payload(raw: bytes, expected_length: int) -> Optional[bytes]:
    """
    Locate a payload of known size in a reply.

    Accepts the reply as-is when its length matches, or strips a 2, 4 or 8
    byte header when the reply is exactly that much longer.

    Returns:
        Payload bytes, or None if the length does not fit any known layout
    """
    if expected_length <= 0:
        return None
    if len(raw) == expected_length:
        return bytes(raw)
    extra = len(raw) - expected_length
    if extra > 0 and extra in PAYLOAD_OFFSETS:
        return bytes(raw[extra:])
    return None


def describe_frame(frame: bytes) -> Tuple[str, str]:
    """Return (opcode name, spaced hex) for logging."""
    if not frame:
        return "EMPTY", ""
    try:
        name = Opcode(frame[0]).name
    except ValueError:
        name = f"0x{frame[0]:02X}"
    return name, format_hex(frame)


def format_hex(data: bytes) -> str:
    """Format bytes as upper-case hex pairs separated by spaces."""
    return " ".join(f"{b:02X}" for b in data)
