"""Tests for calibration and channel file formats."""

import csv
import io
import json

import pytest

from quansheng_k5_tool.exporters import (
    CHIRP_HEADER,
    CSV_HEADER,
    channels_from_csv,
    channels_from_json,
    channels_to_chirp_csv,
    channels_to_csv,
    channels_to_json,
    export_channels,
    import_channels,
    load_calibration,
    load_full_calibration,
    save_calibration,
    save_full_calibration,
)
from quansheng_k5_tool.record_codec import Bandwidth, CalibrationData, Channel, DeviceInfo, Tone

CALIBRATION = bytes([0x3C, 0x14, 0x1E, 0x28, 0x32, 0x3C, 0x46, 0x50,
                     0x5A, 0x64, 0x6E, 0x78, 0x82, 0x8C, 0x96, 0xA0])

CHANNELS = [
    Channel(index=0, frequency=145.5, name="ALPHA", tx_power=2, rx_tone=Tone.ctcss(88.5),
            tx_tone=Tone.ctcss(88.5)),
    Channel(index=1, frequency=146.52, name="CALL", bandwidth=Bandwidth.WIDE, scrambler=True),
    Channel(index=7, frequency=144.8, name="APRS", rx_tone=Tone.dcs(1023), tx_tone=Tone.dcs(1023)),
]


class TestCalibrationFiles:
    def test_json_record(self, tmp_path) -> None:
        info = DeviceInfo(firmware_version="v2.01.26", battery_voltage=7.4)
        path = save_calibration(tmp_path / "cal.json", CALIBRATION, info)

        record = json.loads(path.read_text())
        assert record["batteryCalibration"] == "3C 14 1E 28 32 3C 46 50 5A 64 6E 78 82 8C 96 A0"
        assert record["version"] == "1.0"
        assert record["deviceInfo"]["firmwareVersion"] == "v2.01.26"
        assert "timestamp" in record

        data, loaded = load_calibration(path)
        assert data == CALIBRATION
        assert loaded == info

    def test_raw_bin(self, tmp_path) -> None:
        path = save_calibration(tmp_path / "cal.bin", CALIBRATION)
        assert path.read_bytes() == CALIBRATION

        data, info = load_calibration(path)
        assert data == CALIBRATION
        assert info == DeviceInfo()

    def test_json_without_calibration_rejected(self, tmp_path) -> None:
        path = tmp_path / "other.json"
        path.write_text(json.dumps({"version": "1.0"}))
        with pytest.raises(ValueError):
            load_calibration(path)

    def test_full_record_round_trip(self, tmp_path) -> None:
        calibration = CalibrationData(battery=CALIBRATION, rssi=bytes(range(32)), general=bytes(32))
        path = save_full_calibration(tmp_path / "full.json", calibration)

        record = json.loads(path.read_text())
        assert {"rssiCalibration", "generalCalibration"} <= set(record)

        loaded, info = load_full_calibration(path)
        assert loaded == calibration
        assert info.model == "Quansheng UV-K5"

    def test_full_record_from_bin(self, tmp_path) -> None:
        path = tmp_path / "battery.bin"
        path.write_bytes(CALIBRATION)
        loaded, _ = load_full_calibration(path)
        assert loaded == CalibrationData(battery=CALIBRATION)


class TestChannelFiles:
    def test_json_round_trip(self) -> None:
        text = channels_to_json(CHANNELS, export_date="2024-01-01T00:00:00+00:00")
        document = json.loads(text)

        assert document["deviceModel"] == "Quansheng UV-K5"
        assert document["exportDate"] == "2024-01-01T00:00:00+00:00"
        assert document["channels"][0]["rxTone"] == {"type": "ctcss", "value": 88.5}
        assert channels_from_json(text) == CHANNELS

    def test_csv_round_trip(self) -> None:
        text = channels_to_csv(CHANNELS)
        rows = list(csv.reader(io.StringIO(text)))

        assert rows[0] == CSV_HEADER
        assert rows[1] == ["0", "ALPHA", "145.50000", "2", "Narrow", "No", "CTCSS 88.5", "CTCSS 88.5"]
        assert channels_from_csv(text) == CHANNELS

    def test_csv_malformed_rows_skipped(self) -> None:
        text = ",".join(CSV_HEADER) + "\n" + "0,BAD,abc,1,Narrow,No,None,None\n" + "1,SHORT\n"
        assert channels_from_csv(text) == []

    def test_csv_empty_file(self) -> None:
        with pytest.raises(ValueError):
            channels_from_csv("")

    def test_chirp_layout(self) -> None:
        rows = list(csv.DictReader(io.StringIO(channels_to_chirp_csv(CHANNELS))))

        assert list(rows[0]) == CHIRP_HEADER
        assert [rows[0][k] for k in ("Location", "Name", "Frequency", "Tone", "cToneFreq")] == [
            "1", "ALPHA", "145.50000", "TSQL", "88.5",
        ]
        assert rows[1]["Tone"] == ""
        assert rows[2]["Location"] == "8"
        assert rows[2]["Tone"] == "DTCS"
        assert rows[2]["DtcsCode"] == "1023"

    @pytest.mark.parametrize("rx,tx,expected", [
        (Tone.none(), Tone.none(), {"Tone": ""}),
        (Tone.none(), Tone.ctcss(94.8), {"Tone": "Tone", "rToneFreq": "94.8"}),
        (Tone.ctcss(94.8), Tone.ctcss(94.8), {"Tone": "TSQL", "cToneFreq": "94.8"}),
        (Tone.dcs(1023), Tone.dcs(1023), {"Tone": "DTCS", "DtcsCode": "1023"}),
        (Tone.ctcss(94.8), Tone.none(), {"Tone": "Cross", "CrossMode": "->Tone", "cToneFreq": "94.8"}),
        (Tone.ctcss(67.0), Tone.ctcss(94.8),
         {"Tone": "Cross", "CrossMode": "Tone->Tone", "rToneFreq": "94.8", "cToneFreq": "67.0"}),
        (Tone.none(), Tone.dcs(1023), {"Tone": "Cross", "CrossMode": "DTCS->", "DtcsCode": "1023"}),
        (Tone.dcs(1023), Tone.none(), {"Tone": "Cross", "CrossMode": "->DTCS", "RxDtcsCode": "1023"}),
        (Tone.dcs(1023), Tone.ctcss(88.5),
         {"Tone": "Cross", "CrossMode": "Tone->DTCS", "rToneFreq": "88.5", "RxDtcsCode": "1023"}),
    ])
    def test_chirp_tone_modes(self, rx, tx, expected) -> None:
        channel = Channel(index=0, frequency=145.5, name="TONES", rx_tone=rx, tx_tone=tx)
        row = next(csv.DictReader(io.StringIO(channels_to_chirp_csv([channel]))))

        for column, value in expected.items():
            assert row[column] == value, column

    def test_export_and_import_by_extension(self, tmp_path) -> None:
        json_path = export_channels(tmp_path / "channels.json", CHANNELS)
        csv_path = export_channels(tmp_path / "channels.csv", CHANNELS)

        assert import_channels(json_path) == CHANNELS
        assert import_channels(csv_path) == CHANNELS

    def test_chirp_needs_csv(self, tmp_path) -> None:
        with pytest.raises(ValueError):
            export_channels(tmp_path / "channels.json", CHANNELS, chirp=True)
