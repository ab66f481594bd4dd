"""Tests for channel, settings, tone and battery record decoding."""

import struct

import pytest

from quansheng_k5_tool.models.registry import get_voltage_profile
from quansheng_k5_tool.record_codec import (
    Bandwidth,
    Channel,
    DeviceSettings,
    Tone,
    ToneKind,
    adc_value_from_reply,
    convert_adc_to_voltage,
    decode_channel,
    decode_frequency,
    decode_name,
    decode_settings,
    decode_version_string,
    distinct_frequencies,
    encode_channel,
    encode_frequency,
    encode_settings,
    is_empty_record,
    plausible_channel,
    validate_channel,
    validate_channels,
)


def _channel(**overrides) -> Channel:
    fields = dict(index=0, frequency=145.5, name="ALPHA")
    fields.update(overrides)
    return Channel(**fields)


class TestChannelRecords:
    @pytest.mark.parametrize("frequency", [136.0, 300.0, 433.12345, 520.0])
    @pytest.mark.parametrize("tx_power", [0, 1, 2])
    @pytest.mark.parametrize("bandwidth", list(Bandwidth))
    @pytest.mark.parametrize("scrambler", [False, True])
    def test_round_trip(self, frequency, tx_power, bandwidth, scrambler) -> None:
        channel = _channel(
            index=3,
            frequency=frequency,
            tx_power=tx_power,
            bandwidth=bandwidth,
            scrambler=scrambler,
            rx_tone=Tone.ctcss(88.5),
            tx_tone=Tone.dcs(1023),
        )
        record = encode_channel(channel)
        decoded = decode_channel(record, 3)

        assert len(record) == 16
        assert decoded.frequency == pytest.approx(frequency, abs=0.00001)
        assert decoded.tx_power == tx_power
        assert decoded.bandwidth is bandwidth
        assert decoded.scrambler is scrambler
        assert (decoded.rx_tone, decoded.tx_tone) == (channel.rx_tone, channel.tx_tone)

    @pytest.mark.parametrize("rx_tone,tx_tone", [
        (Tone.none(), Tone.none()),
        (Tone.ctcss(67.0), Tone.none()),
        (Tone.none(), Tone.ctcss(97.4)),
        (Tone.dcs(1023), Tone.ctcss(88.5)),
    ])
    def test_tones_round_trip(self, rx_tone, tx_tone) -> None:
        decoded = decode_channel(encode_channel(_channel(rx_tone=rx_tone, tx_tone=tx_tone)), 0)
        assert (decoded.rx_tone, decoded.tx_tone) == (rx_tone, tx_tone)

    @pytest.mark.parametrize("name", ["AB", "RPT", "APRS1", "CALLING", "A1 B2"])
    def test_name_round_trip(self, name) -> None:
        assert decode_channel(encode_channel(_channel(name=name)), 0).name == name

    @pytest.mark.parametrize("name", ["", "Z"])
    def test_too_short_name_gets_slot_label(self, name) -> None:
        assert decode_channel(encode_channel(_channel(name=name)), 4).name == "CH-5"

    def test_non_ascii_name_characters_dropped(self) -> None:
        record = encode_channel(_channel(name="Réseau"))
        assert record[9:16] == b"Rseau\x00\x00"
        assert decode_channel(record, 0).name == "Rseau"

    def test_record_layout(self) -> None:
        record = encode_channel(_channel(tx_power=2, bandwidth=Bandwidth.WIDE, rx_tone=Tone.ctcss(88.5)))
        assert record[0:4] == struct.pack("<I", 14550000)
        assert record[4] == 0x12
        assert record[5:7] == struct.pack("<H", 885)
        assert record[7:9] == b"\x00\x00"
        assert record[9:16] == b"ALPHA\x00\x00"

    @pytest.mark.parametrize("index", [0, 1, 57, 199])
    @pytest.mark.parametrize("fill", [0x00, 0xFF])
    def test_uniform_record_is_empty(self, fill, index) -> None:
        record = bytes([fill]) * 16
        assert is_empty_record(record)
        assert decode_channel(record, index) is None
        assert not plausible_channel(record)

    def test_mixed_fill_is_not_empty(self) -> None:
        assert not is_empty_record(b"\x00" * 8 + b"\xFF" * 8)

    def test_name_found_at_offset_zero(self) -> None:
        record = b"RADIO01" + b"\x00" * 9
        assert decode_name(record) == "RADIO01"

    def test_long_name_truncated_on_encode(self) -> None:
        record = encode_channel(_channel(name="REPEATER1"))
        assert record[9:16] == b"REPEATE"

    def test_short_record_rejected(self) -> None:
        with pytest.raises(ValueError):
            decode_channel(bytes(8), 0)

    def test_distinct_frequencies(self) -> None:
        channels = [_channel(index=i, frequency=f) for i, f in enumerate([145.5, 145.5, 433.5])]
        assert distinct_frequencies(channels) == 2


class TestFrequency:
    def test_little_endian_hundred_khz(self) -> None:
        assert decode_frequency(encode_frequency(145.5)) == (145.5, True)

    def test_bcd(self) -> None:
        assert decode_frequency(bytes([0x14, 0x55, 0x00, 0x00])) == (145.5, True)

    def test_little_endian_ten_khz(self) -> None:
        mhz, plausible = decode_frequency(struct.pack("<I", 1455000))
        assert plausible
        assert mhz == pytest.approx(145.5)

    def test_implausible_falls_back_to_primary(self) -> None:
        mhz, plausible = decode_frequency(bytes([0x0A, 0x0B, 0x0C, 0x0D]))
        assert not plausible
        assert mhz == pytest.approx(0x0D0C0B0A / 100000.0)

    def test_wrong_size(self) -> None:
        with pytest.raises(ValueError):
            decode_frequency(b"\x00\x01")


class TestTones:
    @pytest.mark.parametrize("word", [0x0000, 0xFFFF])
    def test_unset(self, word) -> None:
        tone = Tone.decode(word)
        assert tone.kind is ToneKind.NONE
        assert not tone.is_set
        assert str(tone) == "None"

    def test_ctcss(self) -> None:
        tone = Tone.decode(885)
        assert tone == Tone.ctcss(88.5)
        assert str(tone) == "CTCSS 88.5"
        assert tone.encode() == 885

    def test_dcs(self) -> None:
        tone = Tone.decode(1023)
        assert tone == Tone.dcs(1023)
        assert str(tone) == "DCS 1023"

    def test_parse(self) -> None:
        assert Tone.parse("CTCSS 88.5") == Tone.ctcss(88.5)
        assert Tone.parse("dcs 1023") == Tone.dcs(1023)
        assert Tone.parse("None") == Tone.none()
        assert Tone.parse("CTCSS abc") == Tone.none()

    def test_dict_round_trip(self) -> None:
        for tone in (Tone.none(), Tone.ctcss(67.0), Tone.dcs(1250)):
            assert Tone.from_dict(tone.to_dict()) == tone


class TestSettings:
    def test_round_trip(self) -> None:
        settings = DeviceSettings(
            default_frequency=446.0, tx_power=2, auto_scan=True, backlight=80, auto_backlight_off=False
        )
        block = encode_settings(settings)
        assert len(block) == 32
        assert block[8:] == bytes(24)
        assert decode_settings(block) == settings

    def test_backlight_clamped(self) -> None:
        assert encode_settings(DeviceSettings(backlight=250))[6] == 100

    def test_short_block_rejected(self) -> None:
        with pytest.raises(ValueError):
            decode_settings(bytes(7))


class TestBatteryConversion:
    def test_adc_value_after_two_byte_header(self) -> None:
        assert adc_value_from_reply(bytes([0xAA, 0xBB, 0x00, 0x0F])) == 0x0F00

    def test_adc_value_bare(self) -> None:
        assert adc_value_from_reply(bytes([0x34, 0x12])) == 0x1234
        assert adc_value_from_reply(b"\x01") is None

    def test_first_coefficient_in_pack_window(self) -> None:
        reading = convert_adc_to_voltage(0x0F00)
        assert reading.in_range
        assert reading.coefficient_index == 0
        assert reading.voltage == pytest.approx(7.125)

    def test_li_ion_profile_picks_later_coefficient(self) -> None:
        reading = convert_adc_to_voltage(0x0F00, get_voltage_profile("li-ion-3v7"))
        assert reading.in_range
        assert reading.coefficient_index == 2
        assert reading.voltage == pytest.approx(3.09375)

    def test_out_of_range_uses_first_coefficient(self) -> None:
        reading = convert_adc_to_voltage(0)
        assert not reading.in_range
        assert reading.coefficient_index == 0
        assert reading.voltage == 0.0


def test_decode_version_string() -> None:
    assert decode_version_string(b"v2.01.26\x00\x00\xFF") == "v2.01.26"
    assert decode_version_string(b"\x00\xFF") == "Unknown"


class TestValidation:
    def test_valid_channel(self) -> None:
        channel = _channel(rx_tone=Tone.ctcss(88.5), tx_tone=Tone.dcs(1023))
        assert validate_channel(channel) == []

    def test_out_of_band(self) -> None:
        assert any("136-174" in e for e in validate_channel(_channel(frequency=433.5)))

    def test_name_power_and_tones(self) -> None:
        errors = validate_channel(_channel(
            name="TOOLONGNAME",
            tx_power=3,
            rx_tone=Tone.ctcss(50.0),
            tx_tone=Tone.dcs(500),
        ))
        assert len(errors) == 4

    def test_ctcss_that_would_read_back_as_dcs(self) -> None:
        errors = validate_channel(_channel(rx_tone=Tone.ctcss(123.0)))
        assert errors == ["RX CTCSS 123.0 Hz would be read back as DCS"]

    def test_validate_channels_keys(self) -> None:
        channels = [_channel(index=0), _channel(index=4, frequency=100.0)]
        problems = validate_channels(channels)
        assert list(problems) == ["Channel 5"]
