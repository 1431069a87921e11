"""Tile address formatting, parsing and validation.

Tile addresses are four integers ``(tileX, tileY, pixelX, pixelY)``. They are
stored as fixed-width, zero-padded comma strings so that a tile prefix
(``"0047,0123"``) can be matched against full keys
(``"0047,0123,183,593"``) by plain string comparison.
"""

import math
from numbers import Real
from typing import NamedTuple, Sequence, Tuple

from pixel_overlay.config import TILE_SIZE
from pixel_overlay.errors import InvalidGeometry

TILE_FIELD_WIDTH = 4


class TileAddress(NamedTuple):
    tile_x: int
    tile_y: int
    pixel_x: int
    pixel_y: int

    @property
    def tile_coords(self) -> Tuple[int, int]:
        return (self.tile_x, self.tile_y)

    @property
    def pixel_coords(self) -> Tuple[int, int]:
        return (self.pixel_x, self.pixel_y)


def pixel_field_width(tile_size: int = TILE_SIZE) -> int:
    """Digits needed for the largest in-tile pixel offset."""
    return len(str(max(tile_size - 1, 0)))


def format_tile_prefix(tile_coords: Sequence[int]) -> str:
    """``(47, 123)`` -> ``"0047,0123"``."""
    tile_x, tile_y = (int(c) for c in tile_coords[:2])
    return f"{tile_x:0{TILE_FIELD_WIDTH}d},{tile_y:0{TILE_FIELD_WIDTH}d}"


def format_tile_address(address: Sequence[int], tile_size: int = TILE_SIZE) -> str:
    """``(47, 123, 183, 5)`` -> ``"0047,0123,183,005"``."""
    tile_x, tile_y, pixel_x, pixel_y = (int(c) for c in address)
    width = pixel_field_width(tile_size)
    return (f"{format_tile_prefix((tile_x, tile_y))},"
            f"{pixel_x:0{width}d},{pixel_y:0{width}d}")


def parse_tile_address(key: str) -> TileAddress:
    parts = key.split(",")
    if len(parts) != 4:
        raise InvalidGeometry(f"Tile address needs 4 fields, got {key!r}")
    try:
        return TileAddress(*(int(p) for p in parts))
    except ValueError as exc:
        raise InvalidGeometry(f"Malformed tile address {key!r}") from exc


def tile_prefix_of(key: str) -> str:
    """Tile-grid prefix (``"tileX,tileY"``) of a full address key."""
    return ",".join(key.split(",")[:2])


def validate_coords(coords: Sequence, tile_size: int = TILE_SIZE) -> TileAddress:
    """Check user-supplied template coordinates.

    Every component must be a finite, non-negative integer and the pixel
    components must lie inside a tile.

    Raises:
        InvalidGeometry: if any rule is violated.
    """
    if coords is None or len(coords) != 4:
        raise InvalidGeometry(f"Expected 4 coordinates, got {coords!r}")

    values = []
    for value in coords:
        if isinstance(value, bool) or not isinstance(value, Real):
            raise InvalidGeometry(f"Coordinate {value!r} is not a number")
        if not math.isfinite(value):
            raise InvalidGeometry(f"Coordinate {value!r} is not finite")
        if value < 0:
            raise InvalidGeometry(f"Coordinate {value!r} is negative")
        if int(value) != value:
            raise InvalidGeometry(f"Coordinate {value!r} is not an integer")
        values.append(int(value))

    address = TileAddress(*values)
    if address.pixel_x >= tile_size or address.pixel_y >= tile_size:
        raise InvalidGeometry(
            f"Pixel offset {address.pixel_coords} outside a {tile_size}px tile"
        )
    return address


def number_to_encoded(number: int, encoding: str) -> str:
    """Encode a non-negative integer using ``encoding`` as its digit alphabet."""
    if number < 0:
        raise ValueError("Cannot encode a negative number")
    base = len(encoding)
    if number == 0:
        return encoding[0]
    digits = []
    while number > 0:
        number, rem = divmod(number, base)
        digits.append(encoding[rem])
    return "".join(reversed(digits))
