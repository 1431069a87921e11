"""Diff engine: compare template fragments against a live canvas tile.

For every tile the engine

1. scales the live tile to draw resolution and snapshots its pixels,
2. classifies each template block center against the snapshot
   (correct / wrong / pending), and
3. composites the fragments over the tile, hiding colours the reference
   palette has disabled.

Only block centers are ever inspected: the rest of each
``draw_mult x draw_mult`` block is padding around the upscaled pixel.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

from pixel_overlay.config import PAINTED_ALPHA, OverlayConfig
from pixel_overlay.imaging import resize_nearest
from pixel_overlay.pixel import ColorKey, Pixel, pack_color_keys, pack_rgb
from pixel_overlay.progress import TileProgress, WrongPixel
from pixel_overlay.template import PaletteEntry, Template, TileFragment

logger = logging.getLogger(__name__)


def _key_from_packed(value: int) -> str:
    return f"{value >> 16},{(value >> 8) & 0xFF},{value & 0xFF}"


@dataclass
class ReferencePalette:
    """The palette that drives filtering and blank-cell checks for a tile.

    Every fragment on a tile is judged against the same reference palette,
    taken from the active (lowest priority) template.
    """

    palette: Dict[ColorKey, PaletteEntry] = field(default_factory=dict)
    allowed_colors: FrozenSet[str] = frozenset()

    @classmethod
    def from_template(cls, template: Optional[Template]) -> "ReferencePalette":
        if template is None:
            return cls()
        return cls(palette=template.color_palette,
                   allowed_colors=template.allowed_colors)

    def has_disabled(self) -> bool:
        return any(entry.enabled is False for entry in self.palette.values())

    def bucket(self, rgb: Tuple[int, int, int]) -> ColorKey:
        return ColorKey.for_pixel(Pixel(*rgb, 255), self.allowed_colors)

    def is_hidden(self, key: ColorKey) -> bool:
        entry = self.palette.get(key)
        if key.is_other:
            # out-of-palette colours only show when "other" is explicitly on
            return entry is None or entry.enabled is False
        return entry is not None and entry.enabled is False


@dataclass
class DiffResult:
    image: np.ndarray
    progress: Optional[TileProgress] = None
    template_count: int = 0


class DiffEngine:
    def __init__(self, config: Optional[OverlayConfig] = None):
        self.config = config or OverlayConfig()

    # ------------------------------------------------------------------
    # Public entry
    # ------------------------------------------------------------------

    def diff_tile(
        self,
        tile: np.ndarray,
        tile_coords: Tuple[int, int],
        fragments: Sequence[Tuple[Template, TileFragment]],
        reference: ReferencePalette,
    ) -> DiffResult:
        """Render ``fragments`` over ``tile`` and measure progress.

        Args:
            tile: Live tile as an RGBA array (any size; it is scaled to
                ``draw_size`` with nearest-neighbour sampling).
            tile_coords: ``(tileX, tileY)`` of the tile.
            fragments: Ordered ``(template, fragment)`` pairs from the matcher.
            reference: Palette used for filtering and blank-cell checks.

        Returns:
            The composite and, when any fragment was processed and the
            snapshot succeeded, the tile's ``TileProgress``. If the tile
            cannot be rendered at all, the input tile comes back unchanged
            with ``template_count == 0``.
        """
        if not fragments:
            return DiffResult(image=tile, progress=None, template_count=0)
        if tile.ndim < 2 or tile.shape[0] == 0 or tile.shape[1] == 0:
            logger.warning("Tile %s has no pixels (shape %s), skipping",
                           tile_coords, tile.shape)
            return DiffResult(image=tile, progress=None, template_count=0)

        try:
            return self._render(tile, tile_coords, fragments, reference)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Failed to render templates on tile %s: %s", tile_coords, exc)
            return DiffResult(image=tile, progress=None, template_count=0)

    def _render(self, tile, tile_coords, fragments, reference) -> DiffResult:
        size = self.config.draw_size
        canvas = resize_nearest(tile, (size, size))

        snapshot = self.capture_snapshot(canvas)
        progress = TileProgress() if snapshot is not None else None

        composite = Image.fromarray(canvas).convert("RGBA")
        for template, fragment in fragments:
            if snapshot is not None:
                try:
                    self.classify_fragment(snapshot, fragment, reference, progress)
                except Exception as exc:  # pylint: disable=broad-except
                    logger.warning("Failed to compute stats for %s on tile %s: %s",
                                   template.storage_key, tile_coords, exc)
            self._draw_fragment(composite, fragment, reference)

        if progress is not None:
            logger.debug(
                "Tile %s: painted %d / %d, wrong %d",
                tile_coords, progress.painted_pixel_count,
                progress.total_pixel_count, progress.wrong_pixel_count,
            )
        return DiffResult(image=np.array(composite), progress=progress,
                          template_count=len(fragments))

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def capture_snapshot(self, canvas: np.ndarray) -> Optional[np.ndarray]:
        """Copy the tile pixels before any overlay is drawn.

        Returns ``None`` when the pixels cannot be read; the tile is then
        rendered without statistics.
        """
        try:
            snapshot = np.array(canvas, dtype=np.uint8, copy=True)
            if snapshot.ndim != 3 or snapshot.shape[2] != 4:
                raise ValueError(f"expected RGBA pixels, got shape {snapshot.shape}")
            return snapshot
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Could not read tile pixels, skipping stats: %s", exc)
            return None

    def sample_positions(self, length: int, offset: int, limit: int) -> Tuple[np.ndarray, np.ndarray]:
        """Block-center indices along one axis and their position in the tile.

        Samples that fall outside ``[0, limit)`` once shifted by ``offset``
        are dropped.
        """
        m = self.config.draw_mult
        local = np.arange(self.config.center_offset, length, m)
        shifted = local + offset
        keep = (shifted >= 0) & (shifted < limit)
        return local[keep], shifted[keep]

    def classify_fragment(
        self,
        snapshot: np.ndarray,
        fragment: TileFragment,
        reference: ReferencePalette,
        progress: TileProgress,
    ) -> None:
        """Classify every sampled template pixel of ``fragment`` into ``progress``."""
        m = self.config.draw_mult
        bitmap = fragment.bitmap
        px, py = (int(v) for v in fragment.pixel_coords)
        tx, ty = (int(v) for v in fragment.tile_coords)

        xs, gx = self.sample_positions(bitmap.shape[1], px * m, snapshot.shape[1])
        ys, gy = self.sample_positions(bitmap.shape[0], py * m, snapshot.shape[0])
        if len(xs) == 0 or len(ys) == 0:
            return

        shreds = bitmap[np.ix_(ys, xs)]
        ground = snapshot[np.ix_(gy, gx)]

        shred_rgb = pack_rgb(shreds[..., :3])
        ground_rgb = pack_rgb(ground[..., :3])
        required = shreds[..., 3] >= PAINTED_ALPHA
        ground_painted = ground[..., 3] >= PAINTED_ALPHA

        if reference.allowed_colors:
            ground_allowed = np.isin(ground_rgb, pack_color_keys(reference.allowed_colors))
        else:
            ground_allowed = np.zeros(ground_rgb.shape, dtype=bool)

        correct = required & ground_painted & (shred_rgb == ground_rgb)
        wrong_required = required & ground_painted & (shred_rgb != ground_rgb)
        # painted where the template asks for nothing
        wrong_blank = ~required & ground_painted & ground_allowed

        progress.total_pixel_count += int(np.count_nonzero(required))

        values, counts = np.unique(shred_rgb[correct], return_counts=True)
        for value, n in zip(values.tolist(), counts.tolist()):
            progress.add_painted(_key_from_packed(value), n)

        # row-major order, matching a plain y/x scan
        for row, col in np.argwhere(wrong_required | wrong_blank).tolist():
            expected = Pixel.from_array(shreds, col, row)
            actual = Pixel.from_array(ground, col, row)
            # blank cells report what was painted, required cells what was wanted
            color = actual.color_key() if expected.is_unpainted() else expected.color_key()
            position = WrongPixel(
                tile_x=tx,
                tile_y=ty,
                pixel_x=px + int(xs[col]) // m,
                pixel_y=py + int(ys[row]) // m,
            )
            progress.add_wrong(color, position)

    def filter_fragment(self, bitmap: np.ndarray, reference: ReferencePalette) -> np.ndarray:
        """Copy of ``bitmap`` with disabled colours made transparent.

        Only block centers are tested and cleared; the surrounding block
        pixels are left as they are.
        """
        m = self.config.draw_mult
        c = self.config.center_offset
        filtered = bitmap.copy()
        centers = filtered[c::m, c::m]
        visible = centers[..., 3] >= 1
        if not np.any(visible):
            return filtered

        packed = pack_rgb(centers[..., :3])
        hidden = np.zeros(packed.shape, dtype=bool)
        for value in np.unique(packed[visible]).tolist():
            rgb = (value >> 16, (value >> 8) & 0xFF, value & 0xFF)
            if reference.is_hidden(reference.bucket(rgb)):
                hidden |= packed == value
        centers[hidden & visible, 3] = 0
        return filtered

    def _draw_fragment(self, composite: Image.Image, fragment: TileFragment,
                       reference: ReferencePalette) -> None:
        m = self.config.draw_mult
        dest = (int(fragment.pixel_coords[0]) * m, int(fragment.pixel_coords[1]) * m)
        bitmap = fragment.bitmap
        if reference.has_disabled():
            try:
                bitmap = self.filter_fragment(fragment.bitmap, reference)
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Failed to apply color filter, drawing raw fragment: %s", exc)
                bitmap = fragment.bitmap
        composite.alpha_composite(Image.fromarray(bitmap), dest=dest)
