"""Shared fixtures: a tiny canvas (10px tiles, 3x draw multiplier)."""

from __future__ import annotations

import numpy as np
import pytest

from pixel_overlay.config import OverlayConfig

RED = (200, 0, 0)
BLUE = (0, 0, 255)
INK = (10, 20, 30)
WHITE = (255, 255, 255)

ALLOWED = frozenset({"200,0,0", "0,0,255", "10,20,30", "255,255,255"})


def solid(h: int, w: int, rgb, alpha: int = 255) -> np.ndarray:
    """An h x w RGBA array filled with one colour."""
    img = np.zeros((h, w, 4), dtype=np.uint8)
    img[:, :, :3] = rgb
    img[:, :, 3] = alpha
    return img


def blank_tile(size: int = 10) -> np.ndarray:
    return np.zeros((size, size, 4), dtype=np.uint8)


@pytest.fixture
def config() -> OverlayConfig:
    return OverlayConfig(tile_size=10, draw_mult=3, allowed_colors=ALLOWED)
