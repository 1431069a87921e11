"""Per-tile paint progress and its aggregation across the canvas."""

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple


@dataclass(frozen=True)
class WrongPixel:
    """A wrongly painted pixel, in template (canvas) pixel space."""
    tile_x: int
    tile_y: int
    pixel_x: int
    pixel_y: int

    def to_dict(self) -> dict:
        return {"tx": self.tile_x, "ty": self.tile_y,
                "px": self.pixel_x, "py": self.pixel_y}


@dataclass
class TileProgress:
    total_pixel_count: int = 0
    painted_pixel_count: int = 0
    wrong_pixel_count: int = 0
    painted_color_counts: Dict[str, int] = field(default_factory=dict)
    wrong_color_counts: Dict[str, int] = field(default_factory=dict)
    wrong_pixel_positions: List[WrongPixel] = field(default_factory=list)

    def add_painted(self, color_key: str, count: int = 1) -> None:
        self.painted_pixel_count += count
        self.painted_color_counts[color_key] = self.painted_color_counts.get(color_key, 0) + count

    def add_wrong(self, color_key: str, position: WrongPixel) -> None:
        self.wrong_pixel_count += 1
        self.wrong_color_counts[color_key] = self.wrong_color_counts.get(color_key, 0) + 1
        self.wrong_pixel_positions.append(position)


@dataclass
class ProgressTotals:
    total_pixel_count: int = 0
    painted_pixel_count: int = 0
    wrong_pixel_count: int = 0
    wrong_pixel_positions: List[WrongPixel] = field(default_factory=list)


@dataclass
class ColorTotals:
    painted_color_counts: Dict[str, int] = field(default_factory=dict)
    wrong_color_counts: Dict[str, int] = field(default_factory=dict)


class ProgressAggregator:
    """Latest ``TileProgress`` per tile; global figures are summed on demand.

    Recording a tile again replaces its previous record outright, so
    re-rendered tiles are never double counted.
    """

    def __init__(self):
        self._tiles: Dict[str, TileProgress] = {}

    def __len__(self) -> int:
        return len(self._tiles)

    def __contains__(self, prefix: str) -> bool:
        return prefix in self._tiles

    def items(self) -> Iterator[Tuple[str, TileProgress]]:
        return iter(self._tiles.items())

    def record(self, prefix: str, progress: TileProgress) -> None:
        self._tiles[prefix] = progress

    def get(self, prefix: str) -> Optional[TileProgress]:
        return self._tiles.get(prefix)

    def has(self, prefix: str) -> bool:
        return prefix in self._tiles

    def clear(self) -> None:
        self._tiles.clear()

    def totals(self) -> ProgressTotals:
        totals = ProgressTotals()
        for progress in self._tiles.values():
            totals.total_pixel_count += progress.total_pixel_count
            totals.painted_pixel_count += progress.painted_pixel_count
            totals.wrong_pixel_count += progress.wrong_pixel_count
            totals.wrong_pixel_positions.extend(progress.wrong_pixel_positions)
        return totals

    def color_totals(self) -> ColorTotals:
        painted: Counter = Counter()
        wrong: Counter = Counter()
        for progress in self._tiles.values():
            painted.update(progress.painted_color_counts)
            wrong.update(progress.wrong_color_counts)
        return ColorTotals(painted_color_counts=dict(painted),
                           wrong_color_counts=dict(wrong))
