"""
Model registry for Quansheng UV-K5 radios.

Provides a single source of truth for:
- The EEPROM / flash memory map (named regions, channel table layout)
- Battery voltage conversion profiles
- Per-model protocol parameters (baud rate, settle delays, block sizes)

Everything here is read-only configuration: the dataclasses are frozen and
the registries are never mutated at runtime.

Usage:
    from quansheng_k5_tool.models import get_model, list_models

    config = get_model("UV-K5")
    region = config.memory_map.region("battery_calibration")
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple


@dataclass(frozen=True)
class MemoryRegion:
    """Named, fixed-size block of device memory."""
    name: str
    address: int
    length: int
    writable: bool = True
    description: str = ""

    @property
    def end_addr(self) -> int:
        """Return end address (exclusive)."""
        return self.address + self.length

    def describe(self) -> str:
        return f"{self.name} @0x{self.address:04X}/{self.length}B"


_REGIONS: Tuple[MemoryRegion, ...] = (
    MemoryRegion("device_info", 0x0000, 64, writable=False,
                 description="Device information block"),
    MemoryRegion("settings", 0x0E70, 32,
                 description="Main device settings"),
    MemoryRegion("menu_settings", 0x0F50, 16,
                 description="Menu settings"),
    MemoryRegion("scan_list", 0x1D00, 16,
                 description="Scan list"),
    MemoryRegion("dtmf_settings", 0x1E00, 16,
                 description="DTMF settings"),
    MemoryRegion("fm_settings", 0x1E80, 16,
                 description="FM broadcast radio settings"),
    MemoryRegion("battery_calibration", 0x1EC0, 16,
                 description="Battery ADC calibration"),
    MemoryRegion("battery_voltage", 0x1EC8, 2, writable=False,
                 description="Live battery ADC reading"),
    MemoryRegion("tx_calibration", 0x1F40, 32,
                 description="Transmitter calibration (general)"),
    MemoryRegion("rx_calibration", 0x1F60, 32,
                 description="Receiver calibration"),
    MemoryRegion("rssi_calibration", 0x1F80, 32,
                 description="RSSI calibration"),
    MemoryRegion("firmware_version", 0x2000, 16, writable=False,
                 description="Firmware version string"),
)


@dataclass(frozen=True)
class K5MemoryMap:
    """
    Static memory layout of the UV-K5.

    The channel table base differs between firmware revisions (0x0F30 and
    0x0000 both appear), so both are kept as candidates in probe order.
    Writes use the first candidate.
    """
    regions: Mapping[str, MemoryRegion] = field(
        default_factory=lambda: MappingProxyType({r.name: r for r in _REGIONS})
    )
    eeprom_start: int = 0x0000
    eeprom_size: int = 0x2000
    flash_start: int = 0x08000000
    flash_size: int = 0x10000
    channel_bases: Tuple[int, ...] = (0x0F30, 0x0000)
    channel_size: int = 16
    max_channels: int = 200

    def region(self, name: str) -> Optional[MemoryRegion]:
        """Look up a region by name (None if unknown)."""
        return self.regions.get(name)

    @property
    def channel_table_size(self) -> int:
        return self.channel_size * self.max_channels

    @property
    def primary_channel_base(self) -> int:
        return self.channel_bases[0]

    def channel_address(self, index: int, base: Optional[int] = None) -> int:
        """Address of channel ``index`` in the table starting at ``base``."""
        if not 0 <= index < self.max_channels:
            raise ValueError(f"Channel index {index} out of range (0-{self.max_channels - 1})")
        start = self.primary_channel_base if base is None else base
        return start + index * self.channel_size


DEFAULT_MEMORY_MAP = K5MemoryMap()


@dataclass(frozen=True)
class VoltageProfile:
    """
    Battery ADC conversion profile.

    Coefficients are tried in order; the first voltage inside ``window`` is
    accepted. If none lands in range, the first coefficient's result is used.

    Attributes:
        name: Profile identifier
        window: Plausible (min, max) voltage, exclusive bounds
        coefficients: Ordered (label, volts-per-count) pairs
        nominal: Value reported when the radio never answers
    """
    name: str
    window: Tuple[float, float]
    coefficients: Tuple[Tuple[str, float], ...]
    nominal: float = 7.6
    description: str = ""

    def contains(self, voltage: float) -> bool:
        low, high = self.window
        return low < voltage < high


# Conversion candidates, in the order the radio firmware revisions suggest
_ADC_COEFFICIENTS: Tuple[Tuple[str, float], ...] = (
    ("12-bit ADC, 7.6 V divider", 7.6 / 4096.0),
    ("10-bit ADC, 3.3 V ref", 3.3 / 1024.0),
    ("12-bit ADC, 3.3 V ref", 3.3 / 4096.0),
    ("millivolts", 1 / 1000.0),
    ("centivolts", 1 / 100.0),
    ("empirical K5", 0.00806),
    ("empirical K5 alt", 0.01611),
)

VOLTAGE_PROFILES: Mapping[str, VoltageProfile] = MappingProxyType({
    "pack-7v6": VoltageProfile(
        name="pack-7v6",
        window=(6.0, 9.0),
        coefficients=_ADC_COEFFICIENTS,
        nominal=7.6,
        description="2S pack, ~7.6 V nominal",
    ),
    "li-ion-3v7": VoltageProfile(
        name="li-ion-3v7",
        window=(2.5, 4.5),
        coefficients=_ADC_COEFFICIENTS,
        nominal=3.7,
        description="Single Li-ion cell, ~3.7 V nominal",
    ),
})

DEFAULT_VOLTAGE_PROFILE = "pack-7v6"


def get_voltage_profile(name: str) -> VoltageProfile:
    """
    Get a voltage profile by name.

    Raises:
        ValueError: If the profile is unknown
    """
    key = name.strip().lower()
    if key not in VOLTAGE_PROFILES:
        valid = ", ".join(sorted(VOLTAGE_PROFILES))
        raise ValueError(f"Unknown voltage profile '{name}'. Valid profiles: {valid}")
    return VOLTAGE_PROFILES[key]


@dataclass(frozen=True)
class ModelConfig:
    """
    Complete configuration for one radio model.

    Attributes:
        name: Canonical model name
        vendor: Manufacturer
        baud_rate: Serial baud rate
        memory_map: Memory layout
        voltage_profile: Battery conversion profile
        variant_pause: Pause after a failed command variant (seconds)
        voltage_variant_pause: Same, for battery voltage probes
        bootloader_enter_delay: Settle time after entering the bootloader
        erase_settle_delay: Fixed wait for the flash erase to finish
        bootloader_exit_delay: Wait for the reboot after leaving the bootloader
        firmware_block_size: Bytes per firmware write frame
        aliases: Other names accepted by get_model()
    """
    name: str
    vendor: str = "Quansheng"
    baud_rate: int = 38400
    memory_map: K5MemoryMap = DEFAULT_MEMORY_MAP
    voltage_profile: VoltageProfile = VOLTAGE_PROFILES[DEFAULT_VOLTAGE_PROFILE]
    variant_pause: float = 0.3
    voltage_variant_pause: float = 0.2
    bootloader_enter_delay: float = 1.0
    erase_settle_delay: float = 5.0
    bootloader_exit_delay: float = 2.0
    firmware_block_size: int = 256
    aliases: Tuple[str, ...] = ()

    @property
    def display_name(self) -> str:
        return f"{self.vendor} {self.name}"


MODELS: Mapping[str, ModelConfig] = MappingProxyType({
    "UV-K5": ModelConfig(
        name="UV-K5",
        aliases=("K5", "UVK5", "UV-K5(8)"),
    ),
    "UV-K6": ModelConfig(
        name="UV-K6",
        aliases=("K6", "UVK6"),
    ),
})

DEFAULT_MODEL = "UV-K5"


def list_models() -> List[str]:
    """Return all registered model names."""
    return list(MODELS.keys())


def get_model(name: str = DEFAULT_MODEL) -> Optional[ModelConfig]:
    """
    Get model configuration by name or alias (case-insensitive).

    Returns:
        ModelConfig or None if not found
    """
    wanted = name.strip().upper()
    for key, config in MODELS.items():
        if key.upper() == wanted or wanted in (a.upper() for a in config.aliases):
            return config
    return None
