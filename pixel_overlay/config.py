"""Overlay configuration: canvas geometry, target palette, schema identifiers."""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, List, Tuple


# ---------------------------------------------------------------------------
# Canvas geometry
# ---------------------------------------------------------------------------
TILE_SIZE = 1000   # canvas pixels per tile side (tiles are square)
DRAW_MULT = 3      # device pixels per canvas pixel when drawing. MUST BE ODD

# A pixel counts as painted once its alpha reaches this threshold
PAINTED_ALPHA = 64


# ---------------------------------------------------------------------------
# Target canvas palette
# ---------------------------------------------------------------------------
# Colours the live canvas can actually hold. Anything else in a template is
# bucketed as "other" for filtering.
CANVAS_PALETTE: List[Tuple[str, Tuple[int, int, int]]] = [
    ("Black", (0, 0, 0)),
    ("Dark Gray", (60, 60, 60)),
    ("Gray", (120, 120, 120)),
    ("Medium Gray", (170, 170, 170)),
    ("Light Gray", (210, 210, 210)),
    ("White", (255, 255, 255)),
    ("Deep Red", (96, 0, 24)),
    ("Dark Red", (165, 14, 30)),
    ("Red", (237, 28, 36)),
    ("Light Red", (250, 128, 114)),
    ("Dark Orange", (228, 92, 26)),
    ("Orange", (255, 127, 39)),
    ("Gold", (246, 170, 9)),
    ("Yellow", (249, 221, 59)),
    ("Light Yellow", (255, 250, 188)),
    ("Dark Goldenrod", (156, 132, 49)),
    ("Goldenrod", (197, 173, 49)),
    ("Light Goldenrod", (232, 212, 95)),
    ("Dark Olive", (74, 107, 58)),
    ("Olive", (90, 148, 74)),
    ("Light Olive", (132, 197, 115)),
    ("Dark Green", (14, 185, 104)),
    ("Green", (19, 230, 123)),
    ("Light Green", (135, 255, 94)),
    ("Dark Teal", (12, 129, 110)),
    ("Teal", (16, 174, 166)),
    ("Light Teal", (19, 225, 190)),
    ("Dark Cyan", (15, 121, 159)),
    ("Cyan", (96, 247, 242)),
    ("Light Cyan", (187, 250, 242)),
    ("Dark Blue", (40, 80, 158)),
    ("Blue", (64, 147, 228)),
    ("Light Blue", (125, 199, 255)),
    ("Dark Indigo", (77, 49, 184)),
    ("Indigo", (107, 80, 246)),
    ("Light Indigo", (153, 177, 251)),
    ("Dark Slate Blue", (74, 66, 132)),
    ("Slate Blue", (122, 113, 196)),
    ("Light Slate Blue", (181, 174, 241)),
    ("Dark Purple", (120, 12, 153)),
    ("Purple", (170, 56, 185)),
    ("Light Purple", (224, 159, 249)),
    ("Dark Pink", (203, 0, 122)),
    ("Pink", (236, 31, 128)),
    ("Light Pink", (243, 141, 169)),
    ("Dark Peach", (155, 82, 73)),
    ("Peach", (209, 128, 120)),
    ("Light Peach", (250, 182, 164)),
    ("Dark Brown", (104, 70, 52)),
    ("Brown", (149, 104, 42)),
    ("Light Brown", (219, 164, 99)),
    ("Dark Tan", (123, 99, 82)),
    ("Tan", (156, 132, 107)),
    ("Light Tan", (214, 181, 148)),
    ("Dark Beige", (209, 128, 81)),
    ("Beige", (248, 178, 119)),
    ("Light Beige", (255, 197, 165)),
    ("Dark Stone", (109, 100, 63)),
    ("Stone", (148, 140, 107)),
    ("Light Stone", (205, 197, 158)),
    ("Dark Slate", (51, 57, 65)),
    ("Slate", (109, 117, 141)),
    ("Light Slate", (179, 185, 209)),
]

# Template colour meaning "this cell must stay transparent". Never counted as
# a required pixel.
TRANSPARENT_MARKER = (222, 250, 206)  # #deface


def palette_color_keys(palette: List[Tuple[str, Tuple[int, int, int]]] = None
                       ) -> FrozenSet[str]:
    """Return the ``"r,g,b"`` keys of a named palette."""
    palette = CANVAS_PALETTE if palette is None else palette
    return frozenset(f"{r},{g},{b}" for _, (r, g, b) in palette)


# ---------------------------------------------------------------------------
# Storage identity
# ---------------------------------------------------------------------------
APP_NAME = "PixelOverlay"
APP_VERSION = "0.1.0"
SCHEMA_VERSION = "1.0.0"

# Characters used to encode numeric user ids into storage keys
ENCODING_BASE = (
    "!#$%&'()*+,-./0123456789:;<=>?@ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "[]^_`abcdefghijklmnopqrstuvwxyz{|}~"
)


@dataclass
class OverlayConfig:
    """Runtime configuration for a template overlay session."""

    tile_size: int = TILE_SIZE
    draw_mult: int = DRAW_MULT
    allowed_colors: FrozenSet[str] = field(default_factory=palette_color_keys)
    app_name: str = APP_NAME
    app_version: str = APP_VERSION
    schema_version: str = SCHEMA_VERSION

    def __post_init__(self):
        if self.tile_size <= 0:
            raise ValueError(f"tile_size must be positive, got {self.tile_size}")
        if self.draw_mult < 1 or self.draw_mult % 2 == 0:
            raise ValueError(
                f"draw_mult must be a positive odd integer, got {self.draw_mult}"
            )
        self.allowed_colors = frozenset(self.allowed_colors)

    @property
    def draw_size(self) -> int:
        return self.tile_size * self.draw_mult

    @property
    def center_offset(self) -> int:
        """Offset of the sampled center pixel inside each draw block."""
        return (self.draw_mult - 1) // 2

    def to_dict(self) -> dict:
        d = {}
        for k, v in self.__dict__.items():
            if isinstance(v, frozenset):
                d[k] = sorted(v)
            else:
                d[k] = v
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "OverlayConfig":
        d = {k: v for k, v in d.items() if k in cls.__dataclass_fields__}
        if "allowed_colors" in d:
            d["allowed_colors"] = frozenset(d["allowed_colors"])
        return cls(**d)

    @classmethod
    def load(cls, path: Path) -> "OverlayConfig":
        with open(path) as f:
            return cls.from_dict(json.load(f))
