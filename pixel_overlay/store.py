"""In-memory store of the templates loaded into a session."""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from pixel_overlay.config import PAINTED_ALPHA, OverlayConfig
from pixel_overlay.coords import validate_coords
from pixel_overlay.imaging import ImageSource, to_rgba
from pixel_overlay.matcher import match_tile
from pixel_overlay.pixel import ColorKey
from pixel_overlay.template import (
    Template,
    TileFragment,
    create_template_tiles,
    sample_palette,
)

logger = logging.getLogger(__name__)


class TemplateStore:
    def __init__(self, config: Optional[OverlayConfig] = None):
        self.config = config or OverlayConfig()
        self._templates: List[Template] = []

    def __len__(self) -> int:
        return len(self._templates)

    def __iter__(self):
        return iter(self._templates)

    @property
    def templates(self) -> List[Template]:
        return list(self._templates)

    def get(self, storage_key: str) -> Optional[Template]:
        for template in self._templates:
            if template.storage_key == storage_key:
                return template
        return None

    def next_priority(self) -> int:
        if not self._templates:
            return 0
        return max(t.priority for t in self._templates) + 1

    def add_template(
        self,
        image: ImageSource,
        display_name: str,
        coords: Sequence,
        author_id: str = "",
        priority: Optional[int] = None,
    ) -> Template:
        """Chunk ``image`` at ``coords`` and register it as a new template.

        Raises:
            InvalidGeometry: if ``coords`` is malformed or ``image`` is empty.
        """
        cfg = self.config
        image = to_rgba(image)
        origin = validate_coords(coords, cfg.tile_size)
        tiles = create_template_tiles(image, origin, cfg.tile_size, cfg.draw_mult)
        palette, required = sample_palette(tiles, cfg.allowed_colors, cfg.draw_mult)

        opaque = int(np.count_nonzero(image[:, :, 3] >= PAINTED_ALPHA))

        template = Template(
            display_name=display_name,
            priority=self.next_priority() if priority is None else priority,
            author_id=author_id,
            tiles=tiles,
            color_palette=palette,
            allowed_colors=cfg.allowed_colors,
            required_pixel_count=required,
            pixel_count=opaque,
            coords=origin,
        )
        self.add(template)
        logger.info("Created template %r (%s) at %s: %d tiles, %d required pixels",
                    display_name, template.storage_key, tuple(origin),
                    len(tiles), required)
        return template

    def add(self, template: Template) -> Template:
        """Register an already-built template, replacing one with the same key."""
        existing = self.get(template.storage_key)
        if existing is not None:
            logger.info("Replacing template %s", template.storage_key)
            self._templates.remove(existing)
        self._templates.append(template)
        return template

    def remove_template(self, storage_key: str) -> bool:
        template = self.get(storage_key)
        if template is None:
            return False
        self._templates.remove(template)
        return True

    def reset(self) -> None:
        self._templates.clear()

    def touches_tile(self, template: Template, prefix: str) -> bool:
        return template.touches_tile(prefix)

    def fragments_for_tile(self, prefix: str) -> List[Tuple[Template, TileFragment]]:
        """Fragments of enabled templates on tile ``prefix``, in draw order."""
        return match_tile((t for t in self._templates if t.enabled), prefix)

    def active_template(self) -> Optional[Template]:
        """The lowest-priority enabled template; it drives palette decisions."""
        enabled = [t for t in self._templates if t.enabled]
        if not enabled:
            return None
        return min(enabled, key=lambda t: t.priority)

    def set_color_enabled(self, storage_key: str, color_key: str, enabled: bool) -> None:
        template = self.get(storage_key)
        if template is None:
            raise KeyError(f"No template with storage key {storage_key!r}")
        template.set_color_enabled(ColorKey.parse(color_key), enabled)

    def required_pixel_total(self) -> int:
        """Pixels still expected from every template that is drawn."""
        return sum(t.required_pixel_count or t.pixel_count or 0
                   for t in self._templates if t.enabled)

