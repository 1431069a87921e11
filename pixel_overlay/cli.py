"""Command line front end for template overlays.

Usage:
    python -m pixel_overlay.cli create  <image> --coords TX TY PX PY -o templates.json [--name NAME]
    python -m pixel_overlay.cli draw    <templates.json> <tiles...> -o <output_dir>
    python -m pixel_overlay.cli palette <templates.json> [--enable KEY ...] [--disable KEY ...]

Subcommands:
  create  : Chunk an image into a template and add it to a templates file
  draw    : Overlay templates on canvas tile images and report progress
  palette : List a template's colours, or enable/disable some of them

Tile images for ``draw`` are named after their tile address, e.g.
``1231_47.png`` for tile (1231, 47).
"""

import argparse
import json
import logging
import re
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from pixel_overlay.config import OverlayConfig
from pixel_overlay.errors import OverlayError
from pixel_overlay.manager import StatusSnapshot, TemplateManager
from pixel_overlay.persistence import load_document, save_document

logger = logging.getLogger("pixel_overlay")

TILE_NAME_RE = re.compile(r"(\d+)[_,-](\d+)$")


def _setup_logging(debug: bool = False):
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_config(args) -> OverlayConfig:
    if args.config:
        return OverlayConfig.load(Path(args.config))
    return OverlayConfig()


def _load_manager(path: Path, config: OverlayConfig, user_id: int = 0) -> TemplateManager:
    manager = TemplateManager(config, user_id=user_id)
    if path.exists():
        manager.import_json(load_document(path))
    return manager


def _gather_tiles(inputs: List[str]) -> List[Tuple[Path, Tuple[int, int]]]:
    """Collect tile PNGs whose file name carries a tile address."""
    candidates = []
    for inp in inputs:
        p = Path(inp)
        if p.is_dir():
            candidates.extend(sorted(p.glob("*.png")))
        elif p.is_file():
            candidates.append(p)

    tiles = []
    for path in candidates:
        match = TILE_NAME_RE.search(path.stem)
        if not match:
            logger.warning("Skipping %s: name is not a tile address", path.name)
            continue
        tiles.append((path, (int(match.group(1)), int(match.group(2)))))
    return tiles


def format_status(status: StatusSnapshot, max_positions: int = 20) -> str:
    plural = "" if status.template_count == 1 else "s"
    lines = [
        f"Displaying {status.template_count} template{plural}.",
        f"Painted {status.painted_pixel_count:,} / {status.total_pixel_count:,} pixels.",
        f"Wrong {status.wrong_pixel_count:,} pixels.",
        f"{status.remaining_pixel_count:,} pixels left to paint.",
    ]
    positions = status.wrong_pixel_positions
    if positions:
        lines.append("Wrong pixel positions:")
        for p in positions[:max_positions]:
            lines.append(f"  Tx={p.tile_x}, Ty={p.tile_y}, Px={p.pixel_x}, Py={p.pixel_y}")
        if len(positions) > max_positions:
            lines.append(f"  ... and {len(positions) - max_positions} more")
    return "\n".join(lines)


# ---- Subcommand: create ----

def cmd_create(args):
    config = _load_config(args)
    output = Path(args.output)
    manager = _load_manager(output, config, user_id=args.user_id)

    image_path = Path(args.image)
    name = args.name or image_path.stem
    template = manager.create_template(image_path.read_bytes(), name, args.coords)

    save_document(manager.export_json(), output)
    logger.info("Template %r saved as %s to %s (%d required pixels)",
                name, template.storage_key, output, template.required_pixel_count)
    return 0


# ---- Subcommand: draw ----

def cmd_draw(args):
    config = _load_config(args)
    templates_path = Path(args.templates)
    if not templates_path.exists():
        logger.error("Templates file not found: %s", templates_path)
        return 1
    manager = _load_manager(templates_path, config)

    tiles = _gather_tiles(args.tiles)
    if not tiles:
        logger.error("No tile images found in %s", args.tiles)
        return 1

    output_dir = Path(args.output)
    output_dir.mkdir(parents=True, exist_ok=True)

    for path, tile_coords in tiles:
        rendered = manager.draw_template_on_tile(path.read_bytes(), tile_coords)
        out_path = output_dir / f"{tile_coords[0]}_{tile_coords[1]}.png"
        out_path.write_bytes(rendered)
        logger.info("Tile %s -> %s", tile_coords, out_path)

    status = manager.status()
    status_path = output_dir / "status.json"
    with open(status_path, "w") as f:
        json.dump(status.to_dict(), f, indent=2)

    print(format_status(status))
    return 0


# ---- Subcommand: palette ----

def cmd_palette(args):
    config = _load_config(args)
    templates_path = Path(args.templates)
    if not templates_path.exists():
        logger.error("Templates file not found: %s", templates_path)
        return 1
    manager = _load_manager(templates_path, config)
    if not manager.templates:
        logger.error("No templates in %s", templates_path)
        return 1

    if args.template:
        template = manager.store.get(args.template)
        if template is None:
            logger.error("No template with storage key %r", args.template)
            return 1
    else:
        template = manager.store.active_template() or manager.templates[0]

    for key in args.enable or []:
        manager.set_color_enabled(template.storage_key, key, True)
    for key in args.disable or []:
        manager.set_color_enabled(template.storage_key, key, False)

    if args.enable or args.disable:
        save_document(manager.export_json(), templates_path)
        logger.info("Updated palette of %s", template.storage_key)

    print(f"{template.display_name} ({template.storage_key})")
    for key, entry in sorted(template.color_palette.items(),
                             key=lambda kv: -kv[1].count):
        state = "on " if entry.enabled else "off"
        print(f"  [{state}] {str(key):<12} {entry.count:>8,}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pixel-overlay",
        description="Overlay pixel-art templates on canvas tiles and track progress",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    parser.add_argument("--config", default=None,
                        help="OverlayConfig JSON file (tile size, draw multiplier, palette)")
    sub = parser.add_subparsers(dest="command", required=True)

    # -- create --
    p_create = sub.add_parser("create", help="Create a template from an image")
    p_create.add_argument("image", help="Template image file")
    p_create.add_argument("--coords", nargs=4, type=int, required=True,
                          metavar=("TX", "TY", "PX", "PY"),
                          help="Tile and pixel coordinates of the top-left corner")
    p_create.add_argument("-o", "--output", required=True,
                          help="Templates JSON file (created or appended to)")
    p_create.add_argument("--name", default=None, help="Display name")
    p_create.add_argument("--user-id", type=int, default=0,
                          help="Numeric author id encoded into the storage key")
    p_create.set_defaults(func=cmd_create)

    # -- draw --
    p_draw = sub.add_parser("draw", help="Overlay templates on tile images")
    p_draw.add_argument("templates", help="Templates JSON file")
    p_draw.add_argument("tiles", nargs="+", help="Tile PNG files or directories")
    p_draw.add_argument("-o", "--output", required=True, help="Output directory")
    p_draw.set_defaults(func=cmd_draw)

    # -- palette --
    p_palette = sub.add_parser("palette", help="List or toggle template colours")
    p_palette.add_argument("templates", help="Templates JSON file")
    p_palette.add_argument("--template", default=None,
                           help="Storage key (default: the active template)")
    p_palette.add_argument("--enable", nargs="+", default=None, metavar="KEY",
                           help='Colour keys to enable ("r,g,b" or "other")')
    p_palette.add_argument("--disable", nargs="+", default=None, metavar="KEY",
                           help='Colour keys to disable ("r,g,b" or "other")')
    p_palette.set_defaults(func=cmd_palette)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.debug)
    try:
        return args.func(args)
    except (OverlayError, ValueError, OSError) as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
