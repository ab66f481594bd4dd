"""
Core workflow actions for the Quansheng K5 tool.

One function per device action. Each takes an open K5Session, returns an
OperationResult and never raises for device-level failures; those become
failed results. All write operations go through the safety context.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Sequence

from ..protocol.errors import K5Error
from ..protocol.k5_protocol import FALLBACK_BATTERY_CALIBRATION, K5Session
from ..protocol.commands import format_hex
from ..record_codec import (
    CalibrationData,
    Channel,
    DeviceSettings,
    validate_channels,
)
from .messages import MemorySink, MessageLevel
from .results import OperationResult
from .safety import SafetyContext, require_write_permission

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


@contextmanager
def _capture_logs(session: K5Session) -> Iterator[MemorySink]:
    """Route the session's log sink through a MemorySink for the duration."""
    previous = session.log
    sink = MemorySink(forward=previous)
    session.log = sink
    session.engine.log = sink
    try:
        yield sink
    finally:
        session.log = previous
        session.engine.log = previous


def _finish(result: OperationResult, sink: MemorySink) -> OperationResult:
    """Copy non-debug log lines and sink warnings into the result."""
    result.logs = [e.to_line() for e in sink.entries if e.level is not MessageLevel.DEBUG]
    for message in sink.messages(MessageLevel.WARNING):
        if message not in result.warnings:
            result.add_warning(message)
    return result


def _region_label(session: K5Session, name: str) -> str:
    region = session.memory_map.region(name)
    return region.describe() if region else name


def _fail(operation: str, error: Exception, session: K5Session, sink: MemorySink) -> OperationResult:
    logger.debug(f"{operation} failed", exc_info=True)
    result = OperationResult.failure(
        operation=operation,
        error=str(error),
        model=session.model.name,
    )
    return _finish(result, sink)


def test_connection(session: K5Session) -> OperationResult:
    """Probe the link and run the handshake."""
    with _capture_logs(session) as sink:
        try:
            answered = session.test_communication()
            handshake = session.handshake()
        except K5Error as e:
            return _fail("test_connection", e, session, sink)

        if not answered and not handshake:
            result = OperationResult.failure(
                operation="test_connection",
                error="Radio did not answer any probe or handshake",
                model=session.model.name,
            )
        else:
            result = OperationResult.success(operation="test_connection", model=session.model.name)
        result.data = answered or handshake
        result.metadata["probes_answered"] = answered
        result.metadata["handshake"] = handshake
        return _finish(result, sink)


def read_device_info(session: K5Session) -> OperationResult:
    with _capture_logs(session) as sink:
        try:
            info = session.read_device_info()
        except K5Error as e:
            return _fail("read_device_info", e, session, sink)

        result = OperationResult.success(operation="read_device_info", model=session.model.name)
        result.data = info
        result.metadata.update(info.to_dict())
        return _finish(result, sink)


def read_battery(session: K5Session, cancel: Optional[threading.Event] = None) -> OperationResult:
    """Read the live battery voltage and record which coefficient was used."""
    with _capture_logs(session) as sink:
        try:
            voltage = session.read_battery_voltage(cancel=cancel)
        except K5Error as e:
            return _fail("read_battery", e, session, sink)

        result = OperationResult.success(
            operation="read_battery",
            model=session.model.name,
            region=_region_label(session, "battery_voltage"),
        )
        result.data = voltage
        result.metadata["voltage"] = f"{voltage:.3f} V"
        result.metadata["profile"] = session.voltage_profile.name
        reading = session.last_voltage_reading
        if reading is not None:
            result.metadata["raw"] = f"0x{reading.raw:04X}"
            result.metadata["coefficient"] = f"#{reading.coefficient_index + 1} ({reading.coefficient_label})"
            result.metadata["in_range"] = reading.in_range
        else:
            result.metadata["fallback"] = True
        return _finish(result, sink)


def read_battery_calibration(session: K5Session, cancel: Optional[threading.Event] = None) -> OperationResult:
    with _capture_logs(session) as sink:
        try:
            data = session.read_battery_calibration(cancel=cancel)
        except K5Error as e:
            return _fail("read_battery_calibration", e, session, sink)

        result = OperationResult.success(
            operation="read_battery_calibration",
            model=session.model.name,
            region=_region_label(session, "battery_calibration"),
            bytes_len=len(data),
        )
        result.data = data
        result.metadata["hex"] = format_hex(data)
        probe = session.last_probe
        if probe is not None:
            result.metadata["variant"] = probe.variant.name
            result.metadata["variants_tried"] = probe.attempted
        result.metadata["fallback"] = probe is None and data == FALLBACK_BATTERY_CALIBRATION
        return _finish(result, sink)


def write_battery_calibration(session: K5Session, data: bytes, safety_ctx: SafetyContext) -> OperationResult:
    """Write the battery calibration block after the safety check."""
    region = _region_label(session, "battery_calibration")
    with _capture_logs(session) as sink:
        require_write_permission(
            safety_ctx,
            target_region=region,
            bytes_length=len(data),
            address=session.memory_map.region("battery_calibration").address,
        )
        if safety_ctx.simulate:
            result = OperationResult.success(
                operation="write_battery_calibration",
                model=session.model.name,
                region=region,
                bytes_len=len(data),
            )
            result.metadata["simulated"] = True
            result.add_warning("Simulation mode - no actual write performed")
            return _finish(result, sink)

        try:
            session.write_battery_calibration(data)
        except (K5Error, ValueError) as e:
            return _fail("write_battery_calibration", e, session, sink)

        result = OperationResult.success(
            operation="write_battery_calibration",
            model=session.model.name,
            region=region,
            bytes_len=len(data),
        )
        return _finish(result, sink)


def read_full_calibration(session: K5Session) -> OperationResult:
    with _capture_logs(session) as sink:
        try:
            calibration = session.read_full_calibration()
        except K5Error as e:
            return _fail("read_full_calibration", e, session, sink)

        if calibration.is_empty:
            result = OperationResult.failure(
                operation="read_full_calibration",
                error="No calibration buffer could be read",
                model=session.model.name,
            )
        else:
            result = OperationResult.success(
                operation="read_full_calibration",
                model=session.model.name,
                bytes_len=len(calibration.battery) + len(calibration.rssi) + len(calibration.general),
            )
        result.data = calibration
        for name in ("battery", "rssi", "general"):
            result.metadata[name] = f"{len(getattr(calibration, name))} bytes"
        return _finish(result, sink)


def write_full_calibration(
    session: K5Session,
    calibration: CalibrationData,
    safety_ctx: SafetyContext,
) -> OperationResult:
    total = len(calibration.battery) + len(calibration.rssi) + len(calibration.general)
    with _capture_logs(session) as sink:
        require_write_permission(safety_ctx, target_region="calibration (battery, RSSI, TX)", bytes_length=total)
        if safety_ctx.simulate:
            result = OperationResult.success(operation="write_full_calibration", model=session.model.name, bytes_len=total)
            result.metadata["simulated"] = True
            result.add_warning("Simulation mode - no actual write performed")
            return _finish(result, sink)

        if calibration.is_empty:
            return _finish(
                OperationResult.failure(
                    operation="write_full_calibration",
                    error="Calibration data is empty; nothing to write",
                    model=session.model.name,
                ),
                sink,
            )

        try:
            session.write_full_calibration(calibration)
        except (K5Error, ValueError) as e:
            return _fail("write_full_calibration", e, session, sink)

        result = OperationResult.success(operation="write_full_calibration", model=session.model.name, bytes_len=total)
        return _finish(result, sink)


def read_settings(session: K5Session) -> OperationResult:
    with _capture_logs(session) as sink:
        try:
            settings = session.read_settings()
        except K5Error as e:
            return _fail("read_settings", e, session, sink)

        result = OperationResult.success(
            operation="read_settings",
            model=session.model.name,
            region=_region_label(session, "settings"),
        )
        result.data = settings
        result.metadata.update(settings.to_dict())
        return _finish(result, sink)


def write_settings(session: K5Session, settings: DeviceSettings, safety_ctx: SafetyContext) -> OperationResult:
    region = _region_label(session, "settings")
    with _capture_logs(session) as sink:
        require_write_permission(
            safety_ctx,
            target_region=region,
            bytes_length=32,
            address=session.memory_map.region("settings").address,
        )
        if safety_ctx.simulate:
            result = OperationResult.success(operation="write_settings", model=session.model.name, region=region)
            result.metadata["simulated"] = True
            result.add_warning("Simulation mode - no actual write performed")
            return _finish(result, sink)

        try:
            session.write_settings(settings)
        except K5Error as e:
            return _fail("write_settings", e, session, sink)

        result = OperationResult.success(operation="write_settings", model=session.model.name, region=region)
        result.metadata.update(settings.to_dict())
        return _finish(result, sink)


def read_channels(session: K5Session, cancel: Optional[threading.Event] = None) -> OperationResult:
    """Discover channels; an empty list is a success with a warning."""
    with _capture_logs(session) as sink:
        try:
            channels = session.read_channels(cancel=cancel)
        except K5Error as e:
            return _fail("read_channels", e, session, sink)

        result = OperationResult.success(operation="read_channels", model=session.model.name)
        result.data = channels
        result.metadata["channels"] = len(channels)
        result.metadata["strategy"] = session.last_channel_strategy or "none"
        if not channels:
            result.add_warning("No channels found")
        return _finish(result, sink)


def write_channels(
    session: K5Session,
    channels: Sequence[Channel],
    safety_ctx: SafetyContext,
    progress: Optional[ProgressCallback] = None,
    cancel: Optional[threading.Event] = None,
) -> OperationResult:
    """Validate then write channels; invalid channels abort before any write."""
    problems = validate_channels(channels)
    if problems:
        result = OperationResult.failure(
            operation="write_channels",
            error=f"{len(problems)} channels failed validation",
            model=session.model.name,
        )
        for label, errors in problems.items():
            for error in errors:
                result.add_warning(f"{label}: {error}")
        result.metadata["invalid"] = problems
        return result

    with _capture_logs(session) as sink:
        require_write_permission(
            safety_ctx,
            target_region="channel table",
            bytes_length=16 * len(channels),
            address=session.memory_map.primary_channel_base,
        )
        if safety_ctx.simulate:
            result = OperationResult.success(operation="write_channels", model=session.model.name)
            result.metadata["simulated"] = True
            result.add_warning("Simulation mode - no actual write performed")
            return _finish(result, sink)

        try:
            session.write_channels(channels, cancel=cancel, progress=progress)
        except (K5Error, ValueError) as e:
            return _fail("write_channels", e, session, sink)

        result = OperationResult.success(
            operation="write_channels",
            model=session.model.name,
            bytes_len=16 * len(channels),
        )
        result.metadata["channels"] = len(channels)
        return _finish(result, sink)


def dump_eeprom(
    session: K5Session,
    progress: Optional[ProgressCallback] = None,
    cancel: Optional[threading.Event] = None,
) -> OperationResult:
    with _capture_logs(session) as sink:
        try:
            image = session.dump_eeprom(cancel=cancel, progress=progress)
        except K5Error as e:
            return _fail("dump_eeprom", e, session, sink)

        result = OperationResult.success(
            operation="dump_eeprom",
            model=session.model.name,
            region=f"0x{session.memory_map.eeprom_start:04X}-0x{session.memory_map.eeprom_size - 1:04X}",
            bytes_len=len(image),
        )
        result.data = image
        return _finish(result, sink)


def read_region(session: K5Session, name: str) -> OperationResult:
    """Read one named region of the memory map."""
    with _capture_logs(session) as sink:
        try:
            data = session.read_region(name)
        except K5Error as e:
            return _fail("read_region", e, session, sink)

        result = OperationResult.success(
            operation="read_region",
            model=session.model.name,
            region=_region_label(session, name),
            bytes_len=len(data),
        )
        result.data = data
        result.metadata["hex"] = format_hex(data)
        return _finish(result, sink)


def read_memory(session: K5Session, address: int, length: int) -> OperationResult:
    with _capture_logs(session) as sink:
        try:
            data = session.read_memory(address, length)
        except (K5Error, ValueError) as e:
            return _fail("read_memory", e, session, sink)

        result = OperationResult.success(
            operation="read_memory",
            model=session.model.name,
            region=f"0x{address:04X}/{length}B",
            bytes_len=len(data),
        )
        result.data = data
        result.metadata["hex"] = format_hex(data)
        return _finish(result, sink)


def flash_firmware(
    session: K5Session,
    firmware: bytes,
    safety_ctx: SafetyContext,
    progress: Optional[ProgressCallback] = None,
    cancel: Optional[threading.Event] = None,
) -> OperationResult:
    """Flash a firmware image after the safety check."""
    region = f"flash @0x{session.memory_map.flash_start:08X}"
    with _capture_logs(session) as sink:
        require_write_permission(
            safety_ctx,
            target_region=region,
            bytes_length=len(firmware),
        )
        if safety_ctx.simulate:
            result = OperationResult.success(
                operation="flash_firmware",
                model=session.model.name,
                region=region,
                bytes_len=len(firmware),
            )
            result.metadata["simulated"] = True
            result.add_warning("Simulation mode - no actual write performed")
            return _finish(result, sink)

        try:
            session.flash_firmware(firmware, progress=progress, cancel=cancel)
        except (K5Error, ValueError) as e:
            return _fail("flash_firmware", e, session, sink)

        result = OperationResult.success(
            operation="flash_firmware",
            model=session.model.name,
            region=region,
            bytes_len=len(firmware),
        )
        return _finish(result, sink)


def describe_channels(channels: Sequence[Channel]) -> List[List[str]]:
    """Rows for table display: index, name, MHz, power, bandwidth, scrambler, tones."""
    return [
        [
            str(c.index + 1),
            c.display_name,
            f"{c.frequency:.5f}",
            str(c.tx_power),
            c.bandwidth.value,
            "yes" if c.scrambler else "no",
            str(c.rx_tone),
            str(c.tx_tone),
        ]
        for c in channels
    ]
