"""
File formats for calibration and channel data.

Calibration:
    JSON record  {"deviceInfo", "batteryCalibration" (hex), "timestamp", "version"}
                 full records add "rssiCalibration" and "generalCalibration"
    .bin         raw bytes, no metadata (battery calibration only)

Channels:
    JSON         {"version", "deviceModel", "exportDate", "channels": [...]}
    CSV          Index,Name,Frequency,TxPower,Bandwidth,Scrambler,RxTone,TxTone
    CHIRP CSV    export only, 1-based locations
"""

import csv
import io
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .core.parsing import parse_hex
from .protocol.commands import format_hex
from .record_codec import (
    MODEL_NAME,
    Bandwidth,
    CalibrationData,
    Channel,
    DeviceInfo,
    Tone,
    ToneKind,
)

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1.0"
PathLike = Union[str, Path]

CSV_HEADER = ["Index", "Name", "Frequency", "TxPower", "Bandwidth", "Scrambler", "RxTone", "TxTone"]
CHIRP_HEADER = [
    "Location", "Name", "Frequency", "Duplex", "Offset", "Tone", "rToneFreq", "cToneFreq",
    "DtcsCode", "DtcsPolarity", "RxDtcsCode", "CrossMode", "Mode", "TStep", "Skip", "Comment",
    "URCALL", "RPT1CALL", "RPT2CALL",
]
CHIRP_DEFAULT_TONE = "88.5"
CHIRP_DEFAULT_DCS = "023"
CHIRP_DEFAULT_CROSS = "Tone->Tone"


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


# ---------------------------------------------------------------------------
# Calibration
# ---------------------------------------------------------------------------

def calibration_record(
    battery: bytes,
    device_info: Optional[DeviceInfo] = None,
    timestamp: Optional[str] = None,
) -> Dict[str, Any]:
    """Structured record for a battery calibration block."""
    return {
        "deviceInfo": (device_info or DeviceInfo()).to_dict(),
        "batteryCalibration": format_hex(battery),
        "timestamp": timestamp or _now_iso(),
        "version": FORMAT_VERSION,
    }


def full_calibration_record(
    calibration: CalibrationData,
    device_info: Optional[DeviceInfo] = None,
    timestamp: Optional[str] = None,
) -> Dict[str, Any]:
    record = calibration_record(calibration.battery, device_info, timestamp)
    record["rssiCalibration"] = format_hex(calibration.rssi)
    record["generalCalibration"] = format_hex(calibration.general)
    return record


def save_calibration(
    path: PathLike,
    battery: bytes,
    device_info: Optional[DeviceInfo] = None,
) -> Path:
    """
    Save battery calibration; the extension picks the format.

    ``.bin`` writes the raw bytes, anything else writes the JSON record.
    """
    path = Path(path)
    if path.suffix.lower() == ".bin":
        path.write_bytes(battery)
    else:
        path.write_text(json.dumps(calibration_record(battery, device_info), indent=2))
    logger.info(f"Saved battery calibration ({len(battery)} bytes) to {path}")
    return path


def load_calibration(path: PathLike) -> Tuple[bytes, DeviceInfo]:
    """
    Load battery calibration from a JSON record or a raw ``.bin`` file.

    A ``.bin`` file carries no metadata, so placeholder device info is returned.

    Raises:
        ValueError: If a JSON file lacks batteryCalibration or holds bad hex
    """
    path = Path(path)
    if path.suffix.lower() != ".json":
        data = path.read_bytes()
        logger.info(f"Loaded {len(data)} raw calibration bytes from {path}")
        return data, DeviceInfo()

    record = json.loads(path.read_text())
    if "batteryCalibration" not in record:
        raise ValueError(f"{path} is not a calibration record (no batteryCalibration)")
    info = DeviceInfo.from_dict(record.get("deviceInfo", {}))
    return parse_hex(record["batteryCalibration"]), info


def save_full_calibration(
    path: PathLike,
    calibration: CalibrationData,
    device_info: Optional[DeviceInfo] = None,
) -> Path:
    path = Path(path)
    if path.suffix.lower() == ".bin":
        path.write_bytes(calibration.battery)
    else:
        path.write_text(json.dumps(full_calibration_record(calibration, device_info), indent=2))
    logger.info(f"Saved full calibration to {path}")
    return path


def load_full_calibration(path: PathLike) -> Tuple[CalibrationData, DeviceInfo]:
    """Load a full calibration record; a ``.bin`` file becomes the battery buffer."""
    path = Path(path)
    if path.suffix.lower() != ".json":
        return CalibrationData(battery=path.read_bytes()), DeviceInfo()

    record = json.loads(path.read_text())
    calibration = CalibrationData(
        battery=parse_hex(record.get("batteryCalibration", "")),
        rssi=parse_hex(record.get("rssiCalibration", "")),
        general=parse_hex(record.get("generalCalibration", "")),
    )
    return calibration, DeviceInfo.from_dict(record.get("deviceInfo", {}))


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------

def channels_to_json(channels: Sequence[Channel], export_date: Optional[str] = None) -> str:
    document = {
        "version": FORMAT_VERSION,
        "deviceModel": MODEL_NAME,
        "exportDate": export_date or _now_iso(),
        "channels": [c.to_dict() for c in channels],
    }
    return json.dumps(document, indent=2)


def channels_from_json(text: str) -> List[Channel]:
    document = json.loads(text)
    return [Channel.from_dict(item) for item in document.get("channels", [])]


def channels_to_csv(channels: Sequence[Channel]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for c in channels:
        writer.writerow([
            c.index,
            c.name,
            f"{c.frequency:.5f}",
            c.tx_power,
            "Wide" if c.bandwidth is Bandwidth.WIDE else "Narrow",
            "Yes" if c.scrambler else "No",
            str(c.rx_tone),
            str(c.tx_tone),
        ])
    return buffer.getvalue()


def channels_from_csv(text: str) -> List[Channel]:
    """
    Parse channels from CSV; short or malformed rows are skipped.

    Raises:
        ValueError: If there is no header line
    """
    rows = list(csv.reader(io.StringIO(text)))
    if not rows:
        raise ValueError("Invalid CSV: empty file")

    channels = []
    for row in rows[1:]:
        if len(row) < len(CSV_HEADER):
            continue
        try:
            channel = Channel(
                index=int(row[0]),
                name=row[1],
                frequency=float(row[2]),
                tx_power=int(row[3]),
                bandwidth=Bandwidth.WIDE if row[4].strip().lower() == "wide" else Bandwidth.NARROW,
                scrambler=row[5].strip().lower() == "yes",
                rx_tone=Tone.parse(row[6]),
                tx_tone=Tone.parse(row[7]),
            )
        except ValueError:
            logger.warning(f"Skipping malformed CSV row: {row}")
            continue
        channels.append(channel)
    return channels


def _chirp_mode(tone: Tone) -> str:
    if tone.kind is ToneKind.CTCSS:
        return "Tone"
    if tone.kind is ToneKind.DCS:
        return "DTCS"
    return ""


def _chirp_tone_freq(tone: Tone) -> str:
    return f"{tone.value:.1f}"


def _chirp_dcs(tone: Tone) -> str:
    return f"{int(tone.value):03d}"


def chirp_tone_columns(rx: Tone, tx: Tone) -> Dict[str, str]:
    """
    Tone columns of one CHIRP row.

    Follows CHIRP's split-tone rules: a TX-only CTCSS tone is "Tone" with
    the tone in rToneFreq, the same CTCSS tone both ways is "TSQL" with the
    tone in cToneFreq, the same DCS code both ways is "DTCS", and every
    other combination is "Cross" with a CrossMode such as "Tone->".
    """
    columns = {
        "Tone": "",
        "rToneFreq": CHIRP_DEFAULT_TONE,
        "cToneFreq": CHIRP_DEFAULT_TONE,
        "DtcsCode": CHIRP_DEFAULT_DCS,
        "RxDtcsCode": CHIRP_DEFAULT_DCS,
        "CrossMode": CHIRP_DEFAULT_CROSS,
    }
    tx_mode, rx_mode = _chirp_mode(tx), _chirp_mode(rx)

    if not tx_mode and not rx_mode:
        return columns
    if tx_mode == "Tone" and not rx_mode:
        columns.update(Tone="Tone", rToneFreq=_chirp_tone_freq(tx))
    elif tx_mode == rx_mode == "Tone" and tx.value == rx.value:
        columns.update(Tone="TSQL", cToneFreq=_chirp_tone_freq(tx))
    elif tx_mode == rx_mode == "DTCS" and tx.value == rx.value:
        columns.update(Tone="DTCS", DtcsCode=_chirp_dcs(tx))
    else:
        columns.update(Tone="Cross", CrossMode=f"{tx_mode}->{rx_mode}")
        if tx_mode == "Tone":
            columns["rToneFreq"] = _chirp_tone_freq(tx)
        elif tx_mode == "DTCS":
            columns["DtcsCode"] = _chirp_dcs(tx)
        if rx_mode == "Tone":
            columns["cToneFreq"] = _chirp_tone_freq(rx)
        elif rx_mode == "DTCS":
            columns["RxDtcsCode"] = _chirp_dcs(rx)
    return columns


def channels_to_chirp_csv(channels: Sequence[Channel]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CHIRP_HEADER, restval="", lineterminator="\n")
    writer.writeheader()
    for c in channels:
        row = {
            "Location": c.index + 1,
            "Name": c.name,
            "Frequency": f"{c.frequency:.5f}",
            "DtcsPolarity": "NN",
            "Mode": "FM",
            "TStep": "5.00",
        }
        row.update(chirp_tone_columns(c.rx_tone, c.tx_tone))
        writer.writerow(row)
    return buffer.getvalue()


def export_channels(path: PathLike, channels: Sequence[Channel], chirp: bool = False) -> Path:
    """
    Write channels to ``path``: ``.csv`` as CSV (CHIRP layout if ``chirp``),
    anything else as JSON.
    """
    path = Path(path)
    if path.suffix.lower() == ".csv":
        text = channels_to_chirp_csv(channels) if chirp else channels_to_csv(channels)
    elif chirp:
        raise ValueError("CHIRP export needs a .csv file")
    else:
        text = channels_to_json(channels)
    path.write_text(text, encoding="utf-8")
    logger.info(f"Exported {len(channels)} channels to {path}")
    return path


def import_channels(path: PathLike) -> List[Channel]:
    """Read channels from a ``.csv`` or JSON file."""
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".csv":
        return channels_from_csv(text)
    return channels_from_json(text)
