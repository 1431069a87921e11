"""Public interface for the pixel-art template overlay engine."""

from __future__ import annotations

from .config import OverlayConfig
from .diff import DiffEngine, DiffResult, ReferencePalette
from .errors import InvalidGeometry, OverlayError, TemplateImportError
from .manager import StatusSnapshot, TemplateManager
from .pixel import ColorKey, Pixel
from .progress import ProgressAggregator, TileProgress, WrongPixel
from .store import TemplateStore
from .template import PaletteEntry, Template, TileFragment

__all__ = [
    "ColorKey",
    "DiffEngine",
    "DiffResult",
    "InvalidGeometry",
    "OverlayConfig",
    "OverlayError",
    "PaletteEntry",
    "Pixel",
    "ProgressAggregator",
    "ReferencePalette",
    "StatusSnapshot",
    "Template",
    "TemplateImportError",
    "TemplateManager",
    "TemplateStore",
    "TileFragment",
    "TileProgress",
    "WrongPixel",
]
