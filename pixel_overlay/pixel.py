"""RGBA pixel values and colour keys."""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from pixel_overlay.config import PAINTED_ALPHA


@dataclass(frozen=True)
class Pixel:
    red: int
    green: int
    blue: int
    alpha: int

    @classmethod
    def from_array(cls, data: np.ndarray, x: int, y: int) -> "Pixel":
        """Read the pixel at column ``x``, row ``y`` of an RGBA array."""
        r, g, b, a = data[y, x]
        return cls(int(r), int(g), int(b), int(a))

    def is_painted(self) -> bool:
        return self.alpha >= PAINTED_ALPHA

    def is_unpainted(self) -> bool:
        return self.alpha < PAINTED_ALPHA

    def color_key(self) -> str:
        return f"{self.red},{self.green},{self.blue}"

    def equals_rgb(self, other: "Pixel") -> bool:
        return (self.red == other.red
                and self.green == other.green
                and self.blue == other.blue)

    def equals_rgba(self, other: "Pixel") -> bool:
        return self.equals_rgb(other) and self.alpha == other.alpha


@dataclass(frozen=True)
class ColorKey:
    """Palette bucket: either a known ``(r, g, b)`` colour or ``OTHER``.

    ``OTHER`` collects every colour outside the canvas palette. It is a
    distinct variant rather than a magic string, so no RGB value can ever
    collide with it.
    """

    rgb: Optional[Tuple[int, int, int]] = None

    @classmethod
    def known(cls, r: int, g: int, b: int) -> "ColorKey":
        return cls((int(r), int(g), int(b)))

    @classmethod
    def parse(cls, text: str) -> "ColorKey":
        """Inverse of ``str()``: ``"r,g,b"`` or ``"other"``."""
        if text == "other":
            return cls.OTHER
        parts = text.split(",")
        if len(parts) != 3:
            raise ValueError(f"Not a colour key: {text!r}")
        return cls.known(*(int(p) for p in parts))

    @classmethod
    def for_pixel(cls, pixel: Pixel, allowed_colors) -> "ColorKey":
        """Bucket a pixel against the allowed colour set.

        An empty (or missing) allowed set means every colour is in-palette.
        """
        key = pixel.color_key()
        if allowed_colors and key not in allowed_colors:
            return cls.OTHER
        return cls.known(pixel.red, pixel.green, pixel.blue)

    @property
    def is_other(self) -> bool:
        return self.rgb is None

    def __str__(self) -> str:
        if self.rgb is None:
            return "other"
        return "{},{},{}".format(*self.rgb)


ColorKey.OTHER = ColorKey()


def pack_rgb(rgb: np.ndarray) -> np.ndarray:
    """Pack the last axis (r, g, b) of an integer array into one int per pixel."""
    rgb = rgb.astype(np.int64)
    return (rgb[..., 0] << 16) | (rgb[..., 1] << 8) | rgb[..., 2]


def pack_color_keys(keys) -> np.ndarray:
    """Pack ``"r,g,b"`` strings the same way ``pack_rgb`` packs arrays."""
    packed = []
    for key in keys:
        r, g, b = (int(p) for p in key.split(","))
        packed.append((r << 16) | (g << 8) | b)
    return np.array(sorted(packed), dtype=np.int64)
