"""Template export/import as JSON records with base64 PNG tiles.

Document layout::

    {
      "whoami": "PixelOverlay",
      "scriptVersion": "0.1.0",
      "schemaVersion": "1.0.0",
      "templates": {
        "0 $Z": {
          "name": "My Template",
          "coords": "1231, 47, 183, 593",
          "enabled": true,
          "tiles": {
            "1231,0047,183,593": "iVBORw0KGgoAAAANSUhEUgAA...",
            "1231,0048,183,000": "iVBORw0KGgoAAAANSUhEUgAA..."
          },
          "palette": {"237,28,36": {"count": 12, "enabled": true},
                      "other": {"count": 3, "enabled": false}}
        }
      }
    }
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

from pixel_overlay.config import OverlayConfig
from pixel_overlay.coords import format_tile_address, parse_tile_address, validate_coords
from pixel_overlay.errors import InvalidGeometry, TemplateImportError
from pixel_overlay.imaging import decode_base64_image, encode_base64_png
from pixel_overlay.template import Template, sample_palette

logger = logging.getLogger(__name__)


def create_document(config: OverlayConfig) -> dict:
    return {
        "whoami": config.app_name,
        "scriptVersion": config.app_version,
        "schemaVersion": config.schema_version,
        "templates": {},
    }


def template_to_record(template: Template) -> dict:
    record = {
        "name": template.display_name,
        "enabled": bool(template.enabled),
        "tiles": {key: encode_base64_png(bitmap) for key, bitmap in template.tiles.items()},
        "palette": template.palette_to_dict(),
    }
    if template.coords is not None:
        record["coords"] = ", ".join(str(c) for c in template.coords)
    return record


def export_templates(templates: List[Template], config: OverlayConfig) -> dict:
    doc = create_document(config)
    for template in templates:
        doc["templates"][template.storage_key] = template_to_record(template)
    return doc


def _parse_storage_key(key: str, fallback_priority: int):
    """``"3 $Z"`` -> ``(3, "$Z")``."""
    parts = key.split(" ", 1)
    try:
        priority = int(parts[0])
    except ValueError:
        logger.warning("Storage key %r has no numeric priority, using %d",
                       key, fallback_priority)
        priority = fallback_priority
    author_id = parts[1] if len(parts) > 1 else "0"
    return priority, author_id


def _parse_coords(text, tile_size: int):
    if not text:
        return None
    try:
        return validate_coords([int(p) for p in str(text).split(",")], tile_size)
    except (ValueError, InvalidGeometry):
        logger.warning("Ignoring malformed template coords %r", text)
        return None


def decode_tiles(tiles: dict, storage_key: str, tile_size: int) -> Dict[str, np.ndarray]:
    """Decode a record's tile map, skipping tiles that cannot be read."""
    decoded = {}
    for address, encoded in tiles.items():
        try:
            key = format_tile_address(parse_tile_address(address), tile_size)
            if not isinstance(encoded, str):
                raise ValueError(f"tile data is {type(encoded).__name__}, not a string")
            decoded[key] = decode_base64_image(encoded)
        except ValueError as exc:
            logger.warning("Skipping tile %s of template %s: %s", address, storage_key, exc)
    return decoded


def record_to_template(key: str, record: dict, config: OverlayConfig,
                       fallback_priority: int = 0) -> Optional[Template]:
    """Rebuild a ``Template`` from one stored record.

    Returns ``None`` when none of the record's tiles could be decoded.
    """
    priority, author_id = _parse_storage_key(key, fallback_priority)
    tiles_in = record.get("tiles") or {}
    if not isinstance(tiles_in, dict):
        logger.warning("Template %s has no tile map", key)
        tiles_in = {}

    tiles = decode_tiles(tiles_in, key, config.tile_size)
    if not tiles:
        logger.warning("Template %s has no readable tiles, skipping", key)
        return None

    palette, required = sample_palette(tiles, config.allowed_colors, config.draw_mult)
    template = Template(
        display_name=record.get("name") or f"Template {priority}",
        priority=priority,
        author_id=author_id,
        tiles=tiles,
        color_palette=palette,
        allowed_colors=config.allowed_colors,
        required_pixel_count=required,
        pixel_count=required,
        coords=_parse_coords(record.get("coords"), config.tile_size),
        enabled=record.get("enabled", True) is not False,
        storage_key=key,
    )
    persisted = record.get("palette")
    if isinstance(persisted, dict):
        template.merge_palette_flags(persisted)
    return template


def import_templates(doc, config: OverlayConfig) -> List[Template]:
    """Parse an exported document into templates.

    Bad tiles and bad records are logged and skipped; the rest still load.

    Raises:
        TemplateImportError: if ``doc`` is not an export of this application.
    """
    if not isinstance(doc, dict):
        raise TemplateImportError("Template document must be a JSON object")
    if doc.get("whoami") != config.app_name:
        raise TemplateImportError(
            f"Not a {config.app_name} template document (whoami={doc.get('whoami')!r})"
        )

    records = doc.get("templates") or {}
    templates = []
    for index, (key, record) in enumerate(records.items()):
        if not isinstance(record, dict):
            logger.warning("Skipping malformed template record %r", key)
            continue
        try:
            template = record_to_template(key, record, config, fallback_priority=index)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Skipping unreadable template record %r: %s", key, exc)
            continue
        if template is not None:
            templates.append(template)
            logger.info("Imported template %r (%s): %d tiles, %d required pixels",
                        template.display_name, key, len(template.tiles),
                        template.required_pixel_count)
    return templates


def save_document(doc: dict, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(doc, f, indent=2)


def load_document(path: Path) -> dict:
    with open(path) as f:
        return json.load(f)
