"""Template entities and the chunker that slices a source image into tiles.

A template is stored as one bitmap per canvas tile it touches. Each bitmap is
drawn at ``draw_mult`` resolution: every template pixel becomes a
``draw_mult x draw_mult`` block whose only opaque pixel is the block center,
so the live canvas stays visible around it when composited.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional, Sequence, Set, Tuple

import numpy as np

from pixel_overlay.config import DRAW_MULT, PAINTED_ALPHA, TILE_SIZE, TRANSPARENT_MARKER
from pixel_overlay.coords import (
    TileAddress,
    format_tile_address,
    parse_tile_address,
    tile_prefix_of,
    validate_coords,
)
from pixel_overlay.errors import InvalidGeometry
from pixel_overlay.imaging import upscale_nearest
from pixel_overlay.pixel import ColorKey, pack_color_keys, pack_rgb

logger = logging.getLogger(__name__)


@dataclass
class PaletteEntry:
    count: int = 0
    enabled: bool = True

    def to_dict(self) -> dict:
        return {"count": int(self.count), "enabled": bool(self.enabled)}


@dataclass(frozen=True, eq=False)
class TileFragment:
    """The part of one template that falls inside a single canvas tile."""
    bitmap: np.ndarray
    tile_coords: Tuple[int, int]
    pixel_coords: Tuple[int, int]

    @classmethod
    def from_key(cls, key: str, bitmap: np.ndarray) -> "TileFragment":
        address = parse_tile_address(key)
        return cls(bitmap=bitmap,
                   tile_coords=address.tile_coords,
                   pixel_coords=address.pixel_coords)


@dataclass(eq=False)
class Template:
    display_name: str
    priority: int = 0
    author_id: str = ""
    tiles: Dict[str, np.ndarray] = field(default_factory=dict)
    color_palette: Dict[ColorKey, PaletteEntry] = field(default_factory=dict)
    allowed_colors: FrozenSet[str] = frozenset()
    required_pixel_count: int = 0
    pixel_count: int = 0
    coords: Optional[TileAddress] = None
    enabled: bool = True
    storage_key: Optional[str] = None
    tile_prefixes: Set[str] = field(default_factory=set, init=False, repr=False)

    def __post_init__(self):
        if self.storage_key is None:
            self.storage_key = f"{self.priority} {self.author_id}"
        self._rebuild_prefixes()

    # -- tile index ------------------------------------------------------

    def set_tiles(self, tiles: Dict[str, np.ndarray]) -> None:
        """Replace the fragment set; the prefix index follows it."""
        self.tiles = dict(tiles)
        self._rebuild_prefixes()

    def _rebuild_prefixes(self) -> None:
        self.tile_prefixes = {tile_prefix_of(key) for key in self.tiles}

    def touches_tile(self, prefix: str) -> bool:
        """Does any fragment of this template land on tile ``prefix``?"""
        if self.tile_prefixes:
            return prefix in self.tile_prefixes
        return self._scan_touches_tile(prefix)

    def _scan_touches_tile(self, prefix: str) -> bool:
        return any(key.startswith(prefix + ",") for key in self.tiles)

    def fragment_for_tile(self, prefix: str) -> Optional[TileFragment]:
        """First fragment of this template on tile ``prefix``, if any.

        The chunker produces at most one fragment per tile, so first match
        wins.
        """
        for key, bitmap in self.tiles.items():
            if key.startswith(prefix + ","):
                return TileFragment.from_key(key, bitmap)
        return None

    # -- palette ---------------------------------------------------------

    def set_color_enabled(self, key: ColorKey, enabled: bool) -> None:
        entry = self.color_palette.get(key)
        if entry is None:
            self.color_palette[key] = PaletteEntry(count=0, enabled=enabled)
        else:
            entry.enabled = enabled

    def merge_palette_flags(self, persisted: dict) -> None:
        """Apply enable flags from a stored ``{"r,g,b": {count, enabled}}`` map."""
        for text, meta in persisted.items():
            try:
                key = ColorKey.parse(text)
            except ValueError:
                logger.warning("Ignoring malformed palette key %r in %s",
                               text, self.storage_key)
                continue
            if meta is None:
                meta = {}
            if not isinstance(meta, dict):
                logger.warning("Ignoring malformed palette entry %r=%r in %s",
                               text, meta, self.storage_key)
                continue
            enabled = bool(meta.get("enabled"))
            if key in self.color_palette:
                self.color_palette[key].enabled = enabled
            else:
                self.color_palette[key] = PaletteEntry(
                    count=int(meta.get("count") or 0), enabled=enabled,
                )

    def palette_to_dict(self) -> Dict[str, dict]:
        return {str(key): entry.to_dict() for key, entry in self.color_palette.items()}


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------

def shred(image: np.ndarray, draw_mult: int = DRAW_MULT) -> np.ndarray:
    """Upscale to draw resolution keeping only each block's center pixel."""
    big = upscale_nearest(image, draw_mult)
    if draw_mult == 1:
        return big
    center = (draw_mult - 1) // 2
    keep = np.zeros(big.shape[:2], dtype=bool)
    keep[center::draw_mult, center::draw_mult] = True
    big[~keep, 3] = 0
    return big


def create_template_tiles(
    image: np.ndarray,
    coords: Sequence,
    tile_size: int = TILE_SIZE,
    draw_mult: int = DRAW_MULT,
) -> Dict[str, np.ndarray]:
    """Slice a template image into tile-aligned fragments.

    Args:
        image: RGBA template at canvas resolution (1 pixel per canvas pixel).
        coords: ``(tileX, tileY, pixelX, pixelY)`` of the top-left corner.
        tile_size: Canvas pixels per tile side.
        draw_mult: Upscale factor of the produced bitmaps.

    Returns:
        Mapping of formatted tile address -> fragment bitmap.

    Raises:
        InvalidGeometry: on bad coordinates or an empty image.
    """
    origin = validate_coords(coords, tile_size)
    h, w = image.shape[:2]
    if h == 0 or w == 0:
        raise InvalidGeometry("Template image is empty")

    tiles: Dict[str, np.ndarray] = {}
    y = origin.pixel_y
    while y < h + origin.pixel_y:
        draw_h = min(tile_size - (y % tile_size), h - (y - origin.pixel_y))
        x = origin.pixel_x
        while x < w + origin.pixel_x:
            draw_w = min(tile_size - (x % tile_size), w - (x - origin.pixel_x))
            sy, sx = y - origin.pixel_y, x - origin.pixel_x
            piece = image[sy:sy + draw_h, sx:sx + draw_w]
            key = format_tile_address(
                (origin.tile_x + x // tile_size,
                 origin.tile_y + y // tile_size,
                 x % tile_size,
                 y % tile_size),
                tile_size,
            )
            tiles[key] = shred(piece, draw_mult)
            x += draw_w
        y += draw_h

    logger.debug("Chunked %dx%d template into %d tiles", w, h, len(tiles))
    return tiles


def center_samples(bitmap: np.ndarray, draw_mult: int = DRAW_MULT) -> np.ndarray:
    """The block-center pixels of a draw-resolution bitmap, as ``N x 4``."""
    center = (draw_mult - 1) // 2
    return bitmap[center::draw_mult, center::draw_mult].reshape(-1, 4)


def sample_palette(
    tiles: Dict[str, np.ndarray],
    allowed_colors: FrozenSet[str],
    draw_mult: int = DRAW_MULT,
) -> Tuple[Dict[ColorKey, PaletteEntry], int]:
    """Count required pixels per colour bucket across all fragments.

    Only block centers with alpha >= 64 count, and the transparent marker
    colour is never required.

    Returns:
        ``(palette, required_pixel_count)``
    """
    marker = np.array(TRANSPARENT_MARKER, dtype=np.uint8)
    allowed_packed = pack_color_keys(allowed_colors) if allowed_colors else None
    counts: Counter = Counter()
    required = 0

    for bitmap in tiles.values():
        samples = center_samples(bitmap, draw_mult)
        mask = samples[:, 3] >= PAINTED_ALPHA
        mask &= ~np.all(samples[:, :3] == marker, axis=1)
        chosen = samples[mask]
        required += len(chosen)
        if len(chosen) == 0:
            continue

        packed = pack_rgb(chosen[:, :3])
        if allowed_packed is not None:
            in_palette = np.isin(packed, allowed_packed)
            counts[ColorKey.OTHER] += int(np.count_nonzero(~in_palette))
            packed = packed[in_palette]
        values, freq = np.unique(packed, return_counts=True)
        for value, n in zip(values.tolist(), freq.tolist()):
            counts[ColorKey.known(value >> 16, (value >> 8) & 0xFF, value & 0xFF)] += n

    palette = {
        key: PaletteEntry(count=n, enabled=True)
        for key, n in counts.most_common() if n > 0
    }
    return palette, required
