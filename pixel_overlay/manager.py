"""Session coordinator tying the template store, diff engine and progress together.

``TemplateManager`` is the only writer of the progress aggregator: diff
passes hand their ``TileProgress`` back as a value and the manager records
it, so no other component mutates shared progress state.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

from pixel_overlay.config import ENCODING_BASE, OverlayConfig
from pixel_overlay.coords import format_tile_prefix, number_to_encoded
from pixel_overlay.diff import DiffEngine, DiffResult, ReferencePalette
from pixel_overlay.imaging import ImageSource, encode_png, to_rgba
from pixel_overlay.persistence import export_templates, import_templates
from pixel_overlay.progress import ProgressAggregator, WrongPixel
from pixel_overlay.store import TemplateStore
from pixel_overlay.template import Template

logger = logging.getLogger(__name__)


@dataclass
class StatusSnapshot:
    """Numbers for a status display; formatting is left to the caller."""
    template_count: int = 0
    painted_pixel_count: int = 0
    total_pixel_count: int = 0
    wrong_pixel_count: int = 0
    wrong_pixel_positions: List[WrongPixel] = field(default_factory=list)

    @property
    def remaining_pixel_count(self) -> int:
        return max(self.total_pixel_count - self.painted_pixel_count, 0)

    def to_dict(self) -> dict:
        return {
            "template_count": self.template_count,
            "painted_pixel_count": self.painted_pixel_count,
            "total_pixel_count": self.total_pixel_count,
            "wrong_pixel_count": self.wrong_pixel_count,
            "remaining_pixel_count": self.remaining_pixel_count,
            "wrong_pixel_positions": [p.to_dict() for p in self.wrong_pixel_positions],
        }


class TemplateManager:
    def __init__(self, config: Optional[OverlayConfig] = None,
                 user_id: Optional[int] = None):
        self.config = config or OverlayConfig()
        self.user_id = user_id
        self.store = TemplateStore(self.config)
        self.engine = DiffEngine(self.config)
        self.progress = ProgressAggregator()
        self.templates_should_be_drawn = True
        self.last_template_count = 0

    # ------------------------------------------------------------------
    # Template lifecycle
    # ------------------------------------------------------------------

    @property
    def templates(self) -> List[Template]:
        return self.store.templates

    def create_template(self, image: ImageSource, name: str, coords: Sequence) -> Template:
        """Create a template from an image placed at ``(tileX, tileY, pixelX, pixelY)``.

        Raises:
            InvalidGeometry: if ``coords`` is malformed; nothing is stored.
        """
        author_id = number_to_encoded(self.user_id or 0, ENCODING_BASE)
        return self.store.add_template(image, name, coords, author_id=author_id)

    def remove_template(self, storage_key: str) -> bool:
        removed = self.store.remove_template(storage_key)
        if removed:
            self.progress.clear()
        return removed

    def reset(self) -> None:
        self.store.reset()
        self.progress.clear()

    def set_templates_should_be_drawn(self, value: bool) -> None:
        self.templates_should_be_drawn = bool(value)

    def set_color_enabled(self, storage_key: str, color_key: str, enabled: bool) -> None:
        self.store.set_color_enabled(storage_key, color_key, enabled)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def export_json(self) -> dict:
        return export_templates(self.store.templates, self.config)

    def import_json(self, doc: Union[str, dict]) -> List[Template]:
        """Load templates from an exported document (parsed or raw JSON).

        Raises:
            TemplateImportError: if the document is not a template export.
        """
        if isinstance(doc, str):
            doc = json.loads(doc)
        templates = import_templates(doc, self.config)
        for template in templates:
            self.store.add(template)
        return templates

    # ------------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------------

    def diff_tile(self, tile: ImageSource, tile_coords: Sequence[int]) -> DiffResult:
        """Diff one live tile against every template on it and record progress."""
        prefix = format_tile_prefix(tile_coords)
        fragments = self.store.fragments_for_tile(prefix)
        return self._diff_fragments(to_rgba(tile), tile_coords, prefix, fragments)

    def _diff_fragments(self, tile_rgba, tile_coords, prefix, fragments) -> DiffResult:
        self.last_template_count = len(fragments)
        if not fragments:
            logger.debug("No templates on tile %s", prefix)
            return DiffResult(image=tile_rgba)

        reference = ReferencePalette.from_template(self.store.active_template())
        result = self.engine.diff_tile(tile_rgba, tuple(tile_coords[:2]), fragments, reference)
        if result.progress is not None:
            self.progress.record(prefix, result.progress)
        return result

    def draw_template_on_tile(self, tile_blob: bytes, tile_coords: Sequence[int]) -> bytes:
        """Return the tile image with all overlapping templates drawn on it.

        Never raises: on any failure the original tile bytes come back.
        """
        if not self.templates_should_be_drawn:
            return tile_blob

        prefix = format_tile_prefix(tile_coords)
        fragments = self.store.fragments_for_tile(prefix)
        if not fragments:
            self.last_template_count = 0
            return tile_blob

        try:
            result = self._diff_fragments(to_rgba(tile_blob), tile_coords, prefix, fragments)
            if result.template_count == 0:
                return tile_blob
            return encode_png(result.image)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Failed to draw templates on tile %s: %s", prefix, exc)
            return tile_blob

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> StatusSnapshot:
        """Global progress across every tile diffed so far.

        The required total prefers the templates' own pixel counts, which
        cover tiles that have not been seen yet.
        """
        totals = self.progress.totals()
        required = self.store.required_pixel_total()
        return StatusSnapshot(
            template_count=self.last_template_count,
            painted_pixel_count=totals.painted_pixel_count,
            total_pixel_count=required if required > 0 else totals.total_pixel_count,
            wrong_pixel_count=totals.wrong_pixel_count,
            wrong_pixel_positions=totals.wrong_pixel_positions,
        )
