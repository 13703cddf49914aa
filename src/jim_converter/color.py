"""Conversion between 24-bit RGB and the 9-bit hardware colour word.

Colour word layout (16 bits, big-endian in JIM files)::

    ---- BBB- GGG- RRR-

Each 3-bit field is one of 8 levels; a level is expanded to 0-252 by
multiplying by 36. Encoding floors each channel to the level below it, so
``decode(encode(c))`` snaps an arbitrary colour down onto the hardware grid.
"""

from __future__ import annotations

from typing import Sequence, Tuple

Color = Tuple[int, int, int]

LEVEL_STEP = 36
MAX_LEVEL = 7
HARDWARE_LEVELS: Tuple[int, ...] = tuple(level * LEVEL_STEP for level in range(MAX_LEVEL + 1))

_RED_SHIFT = 1
_GREEN_SHIFT = 5
_BLUE_SHIFT = 9


def decode_hardware_color(word: int) -> Color:
    r = ((word >> _RED_SHIFT) & MAX_LEVEL) * LEVEL_STEP
    g = ((word >> _GREEN_SHIFT) & MAX_LEVEL) * LEVEL_STEP
    b = ((word >> _BLUE_SHIFT) & MAX_LEVEL) * LEVEL_STEP
    return (r, g, b)


def _to_level(component: int) -> int:
    return max(0, min(MAX_LEVEL, component // LEVEL_STEP))


def encode_hardware_color(color: Color) -> int:
    r, g, b = color
    return (
        (_to_level(b) << _BLUE_SHIFT)
        | (_to_level(g) << _GREEN_SHIFT)
        | (_to_level(r) << _RED_SHIFT)
    )


def snap_to_hardware(color: Color) -> Color:
    """Round ``color`` down onto the nearest representable hardware colour."""

    return decode_hardware_color(encode_hardware_color(color))


def is_hardware_color(color: Color) -> bool:
    return all(component in HARDWARE_LEVELS for component in color)


def color_distance(a: Color, b: Color) -> int:
    return (a[0] - b[0]) ** 2 + (a[1] - b[1]) ** 2 + (a[2] - b[2]) ** 2


def nearest_palette_index_with_distance(
    rgb: Color, palette: Sequence[Color]
) -> Tuple[int, float]:
    """
    Return ``(index, squared_distance)`` of the palette entry closest to ``rgb``.
    Entries are scanned in order and only a strictly smaller distance replaces
    the current best, so ties resolve to the lowest index.
    """
    r, g, b = rgb
    best_idx = 0
    best_dist = float("inf")
    for i, (pr, pg, pb) in enumerate(palette):
        dist = (r - pr) ** 2 + (g - pg) ** 2 + (b - pb) ** 2
        if dist < best_dist:
            best_idx = i
            best_dist = dist
    return best_idx, best_dist


def nearest_palette_index(rgb: Color, palette: Sequence[Color]) -> int:
    return nearest_palette_index_with_distance(rgb, palette)[0]
