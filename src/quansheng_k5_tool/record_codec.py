"""
UV-K5 Record Codec

Decodes and encodes the fixed-size binary records stored in the radio's
EEPROM:

Channel record (16 bytes):
    0-3   receive frequency (encoding varies, see decode_frequency)
    4     settings: bits 0-1 tx power, 0x10 wide, 0x20 scrambler
    5-6   rx tone, little-endian
    7-8   tx tone, little-endian
    9-15  name, ASCII, zero padded

Tone word:
    0x0000 / 0xFFFF  no tone
    < 1000           CTCSS, value / 10 Hz
    >= 1000          DCS, code = value

Settings block (32 bytes):
    0-3   default frequency, u32 LE, Hz
    4     tx power
    5     auto scan flag
    6     backlight brightness (0-100)
    7     auto backlight off flag

Also converts raw battery ADC counts to volts using an ordered list of
candidate coefficients (see models.registry.VoltageProfile).
"""

import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .models.registry import VoltageProfile, VOLTAGE_PROFILES, DEFAULT_VOLTAGE_PROFILE

CHANNEL_SIZE = 16
SETTINGS_SIZE = 32
NAME_OFFSET = 9
NAME_LENGTH = 7
NAME_MIN_LENGTH = 2
NAME_OFFSETS = (9, 8, 0)

FREQ_MIN_MHZ = 136.0
FREQ_MAX_MHZ = 520.0

# Band accepted by the stock firmware for channel writes
VALID_BAND_MHZ = (136.0, 174.0)
CTCSS_RANGE_HZ = (67.0, 254.1)
TONE_DCS_MIN = 1000
TONE_UNSET = (0x0000, 0xFFFF)

POWER_MASK = 0x03
WIDE_FLAG = 0x10
SCRAMBLER_FLAG = 0x20

MODEL_NAME = "Quansheng UV-K5"
UNKNOWN = "Unknown"


class Bandwidth(Enum):
    NARROW = "narrow"
    WIDE = "wide"


class ToneKind(Enum):
    NONE = "none"
    CTCSS = "ctcss"
    DCS = "dcs"


@dataclass(frozen=True)
class Tone:
    """
    Sub-audible squelch tone.

    ``value`` is the CTCSS frequency in Hz or the DCS code; None for no tone.
    """
    kind: ToneKind = ToneKind.NONE
    value: Optional[float] = None

    @classmethod
    def none(cls) -> "Tone":
        return cls()

    @classmethod
    def ctcss(cls, hz: float) -> "Tone":
        return cls(ToneKind.CTCSS, float(hz))

    @classmethod
    def dcs(cls, code: int) -> "Tone":
        return cls(ToneKind.DCS, int(code))

    @classmethod
    def decode(cls, word: int) -> "Tone":
        """Decode a 16-bit tone word."""
        if word in TONE_UNSET:
            return cls()
        if word < TONE_DCS_MIN:
            return cls.ctcss(word / 10.0)
        return cls.dcs(word)

    def encode(self) -> int:
        """Encode as a 16-bit tone word."""
        if self.kind is ToneKind.CTCSS:
            return int(round(self.value * 10)) & 0xFFFF
        if self.kind is ToneKind.DCS:
            return int(self.value) & 0xFFFF
        return 0

    @property
    def is_set(self) -> bool:
        return self.kind is not ToneKind.NONE

    def __str__(self) -> str:
        if self.kind is ToneKind.CTCSS:
            return f"CTCSS {self.value:.1f}"
        if self.kind is ToneKind.DCS:
            return f"DCS {int(self.value)}"
        return "None"

    @classmethod
    def parse(cls, text: str) -> "Tone":
        """Parse "None", "CTCSS 88.5" or "DCS 1023"; anything else is no tone."""
        cleaned = text.strip().lower()
        try:
            if cleaned.startswith("ctcss"):
                return cls.ctcss(float(cleaned[5:].strip()))
            if cleaned.startswith("dcs"):
                return cls.dcs(int(cleaned[3:].strip()))
        except ValueError:
            pass
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        if self.kind is ToneKind.NONE:
            return {"type": "none"}
        value = int(self.value) if self.kind is ToneKind.DCS else self.value
        return {"type": self.kind.value, "value": value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Tone":
        kind = data.get("type", "none")
        if kind == "ctcss":
            return cls.ctcss(data["value"])
        if kind == "dcs":
            return cls.dcs(data["value"])
        return cls()


@dataclass
class Channel:
    """
    One memory channel.

    Attributes:
        index: Zero-based channel slot
        frequency: Receive frequency in MHz
        name: Up to 7 ASCII characters
        tx_power: 0 (low), 1 (mid) or 2 (high)
    """
    index: int
    frequency: float
    name: str = ""
    tx_power: int = 1
    bandwidth: Bandwidth = Bandwidth.NARROW
    scrambler: bool = False
    rx_tone: Tone = field(default_factory=Tone)
    tx_tone: Tone = field(default_factory=Tone)

    @property
    def display_name(self) -> str:
        return self.name or f"CH-{self.index + 1}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "frequency": self.frequency,
            "name": self.name,
            "txPower": self.tx_power,
            "bandwidth": self.bandwidth.value,
            "scrambler": self.scrambler,
            "rxTone": self.rx_tone.to_dict(),
            "txTone": self.tx_tone.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Channel":
        bandwidth = Bandwidth.WIDE if data.get("bandwidth") == "wide" else Bandwidth.NARROW
        return cls(
            index=int(data["index"]),
            frequency=float(data["frequency"]),
            name=data.get("name", ""),
            tx_power=int(data.get("txPower", 1)),
            bandwidth=bandwidth,
            scrambler=bool(data.get("scrambler", False)),
            rx_tone=Tone.from_dict(data.get("rxTone", {})),
            tx_tone=Tone.from_dict(data.get("txTone", {})),
        )


@dataclass
class DeviceSettings:
    """Main settings block."""
    default_frequency: float = 145.0
    tx_power: int = 1
    auto_scan: bool = False
    backlight: int = 50
    auto_backlight_off: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "defaultFrequency": self.default_frequency,
            "txPower": self.tx_power,
            "autoScan": self.auto_scan,
            "backlightBrightness": self.backlight,
            "autoBacklightOff": self.auto_backlight_off,
        }


@dataclass
class CalibrationData:
    """Opaque calibration buffers; an empty buffer means "not read"."""
    battery: bytes = b""
    rssi: bytes = b""
    general: bytes = b""

    @property
    def is_empty(self) -> bool:
        return not (self.battery or self.rssi or self.general)


@dataclass
class DeviceInfo:
    model: str = MODEL_NAME
    firmware_version: str = UNKNOWN
    bootloader_version: str = UNKNOWN
    battery_voltage: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "firmwareVersion": self.firmware_version,
            "bootloaderVersion": self.bootloader_version,
            "batteryVoltage": self.battery_voltage,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeviceInfo":
        return cls(
            model=data.get("model", MODEL_NAME),
            firmware_version=data.get("firmwareVersion", UNKNOWN),
            bootloader_version=data.get("bootloaderVersion", UNKNOWN),
            battery_voltage=float(data.get("batteryVoltage", 0.0)),
        )


@dataclass(frozen=True)
class VoltageReading:
    """
    Result of an ADC conversion.

    Attributes:
        raw: ADC counts as read from the radio
        voltage: Converted value in volts
        coefficient_index: Position of the coefficient used
        in_range: False if no coefficient produced a plausible voltage
    """
    raw: int
    voltage: float
    coefficient_index: int
    in_range: bool
    coefficient_label: str = ""


# ---------------------------------------------------------------------------
# Frequency
# ---------------------------------------------------------------------------

def _le_100k(raw: bytes) -> Optional[float]:
    return struct.unpack("<I", raw)[0] / 100000.0


def _bcd_100k(raw: bytes) -> Optional[float]:
    digits = []
    for byte in raw:
        high, low = byte >> 4, byte & 0x0F
        if high > 9 or low > 9:
            return None
        digits.extend((high, low))
    return int("".join(str(d) for d in digits)) / 100000.0


def _le_10k(raw: bytes) -> Optional[float]:
    return struct.unpack("<I", raw)[0] / 10000.0


def _be_100k(raw: bytes) -> Optional[float]:
    return struct.unpack(">I", raw)[0] / 100000.0


FREQUENCY_DECODERS: Tuple[Tuple[str, Callable[[bytes], Optional[float]]], ...] = (
    ("le/100000", _le_100k),
    ("bcd/100000", _bcd_100k),
    ("le/10000", _le_10k),
    ("be/100000", _be_100k),
)


def in_frequency_range(mhz: Optional[float]) -> bool:
    return mhz is not None and FREQ_MIN_MHZ <= mhz <= FREQ_MAX_MHZ


def decode_frequency(raw: bytes) -> Tuple[float, bool]:
    """
    Decode a 4-byte frequency field.

    Interpretations are tried in FREQUENCY_DECODERS order and the first in
    [136, 520] MHz wins. Otherwise the little-endian / 100000 value is
    returned as-is.

    Returns:
        (MHz, True if a plausible interpretation was found)
    """
    if len(raw) != 4:
        raise ValueError(f"Frequency field must be 4 bytes, got {len(raw)}")
    for _, decoder in FREQUENCY_DECODERS:
        mhz = decoder(raw)
        if in_frequency_range(mhz):
            return mhz, True
    return _le_100k(raw), False


def encode_frequency(mhz: float) -> bytes:
    value = int(round(mhz * 100000))
    if not 0 <= value <= 0xFFFFFFFF:
        raise ValueError(f"Frequency {mhz} MHz cannot be encoded")
    return struct.pack("<I", value)


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------

def is_empty_record(record: bytes) -> bool:
    """True if every byte is 0x00, or every byte is 0xFF."""
    return all(b == 0x00 for b in record) or all(b == 0xFF for b in record)


def _printable_run(data: bytes) -> str:
    run = bytearray()
    for byte in data[:NAME_LENGTH]:
        if not 0x20 <= byte <= 0x7E:
            break
        run.append(byte)
    return run.decode("ascii").strip()


def decode_name(record: bytes) -> Optional[str]:
    """First printable name of 2+ characters at offsets 9, 8 or 0."""
    for offset in NAME_OFFSETS:
        name = _printable_run(record[offset:])
        if len(name) >= NAME_MIN_LENGTH:
            return name
    return None


def decode_channel(record: bytes, index: int) -> Optional[Channel]:
    """
    Decode one 16-byte channel record.

    Args:
        record: Record bytes (at least 16)
        index: Slot number given to the channel

    Returns:
        Channel, or None for an empty record
    """
    if len(record) < CHANNEL_SIZE:
        raise ValueError(f"Channel record must be {CHANNEL_SIZE} bytes, got {len(record)}")
    record = bytes(record[:CHANNEL_SIZE])
    if is_empty_record(record):
        return None

    frequency, _ = decode_frequency(record[0:4])
    flags = record[4]
    rx_word, tx_word = struct.unpack_from("<HH", record, 5)

    return Channel(
        index=index,
        frequency=frequency,
        name=decode_name(record) or f"CH-{index + 1}",
        tx_power=flags & POWER_MASK,
        bandwidth=Bandwidth.WIDE if flags & WIDE_FLAG else Bandwidth.NARROW,
        scrambler=bool(flags & SCRAMBLER_FLAG),
        rx_tone=Tone.decode(rx_word),
        tx_tone=Tone.decode(tx_word),
    )


def encode_name(name: str) -> bytes:
    """ASCII-only, truncated to 7 bytes, zero padded."""
    ascii_name = name.encode("ascii", errors="ignore")[:NAME_LENGTH]
    return ascii_name.ljust(NAME_LENGTH, b"\x00")


def encode_channel(channel: Channel) -> bytes:
    """Encode a channel as a 16-byte record."""
    flags = channel.tx_power & POWER_MASK
    if channel.bandwidth is Bandwidth.WIDE:
        flags |= WIDE_FLAG
    if channel.scrambler:
        flags |= SCRAMBLER_FLAG

    record = (
        encode_frequency(channel.frequency)
        + bytes([flags])
        + struct.pack("<HH", channel.rx_tone.encode(), channel.tx_tone.encode())
        + encode_name(channel.name)
    )
    assert len(record) == CHANNEL_SIZE
    return record


def plausible_channel(record: bytes) -> bool:
    """Cheap pre-check used by the memory scanners."""
    if len(record) < CHANNEL_SIZE or is_empty_record(record[:CHANNEL_SIZE]):
        return False
    _, plausible = decode_frequency(record[0:4])
    return plausible


def distinct_frequencies(channels: Sequence[Channel]) -> int:
    return len({round(c.frequency, 5) for c in channels})


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def decode_settings(data: bytes) -> DeviceSettings:
    """Decode the settings block (only the first 8 bytes are interpreted)."""
    if len(data) < 8:
        raise ValueError(f"Settings block too short: {len(data)} bytes")
    frequency = struct.unpack_from("<I", data, 0)[0] / 1000000.0
    return DeviceSettings(
        default_frequency=frequency,
        tx_power=data[4],
        auto_scan=data[5] != 0,
        backlight=data[6],
        auto_backlight_off=data[7] != 0,
    )


def encode_settings(settings: DeviceSettings) -> bytes:
    """Encode settings as a 32-byte block; reserved bytes are zero."""
    block = bytearray(SETTINGS_SIZE)
    struct.pack_into("<I", block, 0, int(round(settings.default_frequency * 1000000)) & 0xFFFFFFFF)
    block[4] = settings.tx_power & 0xFF
    block[5] = 1 if settings.auto_scan else 0
    block[6] = max(0, min(100, int(settings.backlight)))
    block[7] = 1 if settings.auto_backlight_off else 0
    return bytes(block)


# ---------------------------------------------------------------------------
# Battery
# ---------------------------------------------------------------------------

def adc_value_from_reply(payload: bytes) -> Optional[int]:
    """
    Pull the 16-bit ADC value out of a voltage reply.

    4+ bytes: bytes 2-3 (after a 2-byte header); 2-3 bytes: bytes 0-1.
    """
    if len(payload) >= 4:
        return struct.unpack_from("<H", payload, 2)[0]
    if len(payload) >= 2:
        return struct.unpack_from("<H", payload, 0)[0]
    return None


def convert_adc_to_voltage(raw: int, profile: Optional[VoltageProfile] = None) -> VoltageReading:
    """
    Convert ADC counts to volts.

    The first coefficient whose result lies inside the profile window wins.
    If none does, the first coefficient is used and ``in_range`` is False.
    """
    profile = profile or VOLTAGE_PROFILES[DEFAULT_VOLTAGE_PROFILE]
    for index, (label, coefficient) in enumerate(profile.coefficients):
        voltage = raw * coefficient
        if profile.contains(voltage):
            return VoltageReading(raw, voltage, index, True, label)

    label, coefficient = profile.coefficients[0]
    return VoltageReading(raw, raw * coefficient, 0, False, label)


# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------

def decode_version_string(data: bytes) -> str:
    """ASCII text with control and non-ASCII bytes removed."""
    text = "".join(chr(b) for b in data if 0x20 <= b <= 0x7E).strip()
    return text or UNKNOWN


def validate_channel(channel: Channel) -> List[str]:
    """
    Check a channel before it is written.

    Returns:
        Human-readable problems (empty if the channel is fine)
    """
    errors = []
    low, high = VALID_BAND_MHZ
    if not low <= channel.frequency <= high:
        errors.append(f"Frequency must be within {low:g}-{high:g} MHz")
    if len(channel.name) > NAME_LENGTH:
        errors.append(f"Name must be at most {NAME_LENGTH} characters")
    if not 0 <= channel.tx_power <= 2:
        errors.append("TX power must be 0, 1 or 2")

    for label, tone in (("RX", channel.rx_tone), ("TX", channel.tx_tone)):
        if tone.kind is ToneKind.CTCSS:
            ctcss_low, ctcss_high = CTCSS_RANGE_HZ
            if not ctcss_low <= tone.value <= ctcss_high:
                errors.append(f"{label} CTCSS must be within {ctcss_low}-{ctcss_high} Hz")
            elif tone.encode() >= TONE_DCS_MIN:
                errors.append(f"{label} CTCSS {tone.value:.1f} Hz would be read back as DCS")
        elif tone.kind is ToneKind.DCS:
            if not TONE_DCS_MIN <= int(tone.value) < 0xFFFF:
                errors.append(f"{label} DCS code {int(tone.value)} cannot be stored (must be {TONE_DCS_MIN}-65534)")
    return errors


def validate_channels(channels: Sequence[Channel]) -> Dict[str, List[str]]:
    """Map "Channel N" to its problems, for channels that have any."""
    problems = {}
    for channel in channels:
        errors = validate_channel(channel)
        if errors:
            problems[f"Channel {channel.index + 1}"] = errors
    return problems
