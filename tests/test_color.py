import pytest

from jim_converter.color import (
    HARDWARE_LEVELS,
    color_distance,
    decode_hardware_color,
    encode_hardware_color,
    is_hardware_color,
    nearest_palette_index,
    nearest_palette_index_with_distance,
    snap_to_hardware,
)


def test_encode_example_color() -> None:
    word = encode_hardware_color((255, 0, 128))

    assert (word >> 1) & 7 == 7  # 255 // 36
    assert (word >> 5) & 7 == 0
    assert (word >> 9) & 7 == 3  # 128 // 36
    assert word & 1 == 0
    assert word >> 12 == 0
    assert decode_hardware_color(word) == (252, 0, 108)


def test_decode_field_positions() -> None:
    assert decode_hardware_color(0x000E) == (252, 0, 0)
    assert decode_hardware_color(0x00E0) == (0, 252, 0)
    assert decode_hardware_color(0x0E00) == (0, 0, 252)
    # bit 0 and the high nibble are ignored
    assert decode_hardware_color(0xF001) == (0, 0, 0)


def test_hardware_colors_round_trip() -> None:
    for r in HARDWARE_LEVELS:
        for g in HARDWARE_LEVELS:
            for b in (0, 108, 252):
                color = (r, g, b)
                assert decode_hardware_color(encode_hardware_color(color)) == color


def test_snap_rounds_down_and_is_idempotent() -> None:
    snapped = snap_to_hardware((35, 71, 200))

    assert snapped == (0, 36, 180)
    assert snap_to_hardware(snapped) == snapped
    assert is_hardware_color(snapped)
    assert not is_hardware_color((35, 71, 200))


def test_top_level_is_clamped() -> None:
    assert snap_to_hardware((255, 253, 252)) == (252, 252, 252)


def test_nearest_prefers_lowest_index_on_ties() -> None:
    palette = [(10, 0, 0), (0, 0, 0), (20, 0, 0), (0, 0, 0)]

    index, distance = nearest_palette_index_with_distance((10, 0, 0), palette)
    assert (index, distance) == (0, 0)

    # (5,0,0) is 25 away from both entry 0 and entry 1
    assert nearest_palette_index((5, 0, 0), palette) == 0
    assert nearest_palette_index((0, 0, 0), palette) == 1


@pytest.mark.parametrize(
    "a, b, expected",
    [
        ((0, 0, 0), (0, 0, 0), 0),
        ((1, 2, 3), (4, 6, 3), 25),
        ((255, 0, 0), (0, 0, 0), 255 * 255),
    ],
)
def test_color_distance(a, b, expected) -> None:
    assert color_distance(a, b) == expected
