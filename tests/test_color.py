# tests/test_color.py
import pytest

from stitch.color import Color, is_hex_color


def test_hex_round_trips_through_8bit_values():
    assert Color(1.0, 0.0, 0.0).hex == "#ff0000"
    assert Color.from_hex("#0E3682").rgb255 == (14, 54, 130)
    assert Color.from_hex("0e3682").hex == "#0e3682"


def test_hex_uses_round_half_up():
    # 0.5 * 255 = 127.5 -> 128
    assert Color(0.5, 0.5, 0.5).hex == "#808080"


def test_luminance_orders_blue_below_red_below_green():
    blue, red, green = Color(0, 0, 1), Color(1, 0, 0), Color(0, 1, 0)
    assert blue.luminance < red.luminance < green.luminance
    assert Color(1, 1, 1).luminance == pytest.approx(1.0)


@pytest.mark.parametrize("bad", ["#ff00", "red", "#gggggg", 123])
def test_from_hex_rejects_malformed_input(bad):
    with pytest.raises(ValueError):
        Color.from_hex(bad)


def test_channels_outside_unit_interval_are_rejected():
    with pytest.raises(ValueError):
        Color(1.2, 0.0, 0.0)
    with pytest.raises(ValueError):
        Color(float("nan"), 0.0, 0.0)


def test_is_hex_color_requires_hash_prefix():
    assert is_hex_color("#a1b2c3")
    assert not is_hex_color("a1b2c3")
    assert not is_hex_color(None)
