"""Tests for the diff engine: pixel classification, filtering and compositing."""

from __future__ import annotations

import numpy as np
import pytest

from conftest import ALLOWED, BLUE, INK, RED, blank_tile, solid
from pixel_overlay.diff import DiffEngine, ReferencePalette
from pixel_overlay.pixel import ColorKey
from pixel_overlay.progress import WrongPixel
from pixel_overlay.store import TemplateStore
from pixel_overlay.template import PaletteEntry, Template, TileFragment, shred


def _run(config, image, coords, tile, prefix="0000,0000"):
    """Build a store with one template and diff ``tile`` against it."""
    store = TemplateStore(config)
    template = store.add_template(image, "t", coords)
    fragments = store.fragments_for_tile(prefix)
    reference = ReferencePalette.from_template(store.active_template())
    result = DiffEngine(config).diff_tile(tile, (0, 0), fragments, reference)
    return template, result


def _painted_tile(x0, y0, w, h, rgb):
    tile = blank_tile()
    tile[y0:y0 + h, x0:x0 + w] = solid(h, w, rgb)
    return tile


# ---------------------------------------------------------------------------
# Tests: classification
# ---------------------------------------------------------------------------


class TestClassification:
    def test_fully_painted_template(self, config):
        tile = _painted_tile(2, 2, 3, 3, INK)
        _, result = _run(config, solid(3, 3, INK), (0, 0, 2, 2), tile)
        p = result.progress
        assert (p.total_pixel_count, p.painted_pixel_count, p.wrong_pixel_count) == (9, 9, 0)
        assert p.painted_color_counts == {"10,20,30": 9}
        assert p.wrong_pixel_positions == []

    def test_wrong_colour_records_template_pixel_position(self, config):
        tile = _painted_tile(2, 2, 3, 3, INK)
        tile[4, 3, :3] = RED
        _, result = _run(config, solid(3, 3, INK), (0, 0, 2, 2), tile)
        p = result.progress
        assert (p.total_pixel_count, p.painted_pixel_count, p.wrong_pixel_count) == (9, 8, 1)
        assert p.wrong_pixel_positions == [WrongPixel(0, 0, 3, 4)]
        assert p.wrong_color_counts == {"10,20,30": 1}

    def test_unpainted_ground_is_pending(self, config):
        _, result = _run(config, solid(2, 2, RED), (0, 0, 0, 0), blank_tile())
        p = result.progress
        assert (p.total_pixel_count, p.painted_pixel_count, p.wrong_pixel_count) == (4, 0, 0)

    def test_low_alpha_ground_counts_as_unpainted(self, config):
        tile = _painted_tile(0, 0, 1, 1, RED)
        tile[0, 0, 3] = 63
        _, result = _run(config, solid(1, 1, RED), (0, 0, 0, 0), tile)
        assert result.progress.painted_pixel_count == 0
        assert result.progress.wrong_pixel_count == 0

    def test_transparent_template_over_transparent_tile(self, config):
        _, result = _run(config, solid(1, 1, RED, alpha=0), (0, 0, 0, 0), blank_tile())
        p = result.progress
        assert (p.total_pixel_count, p.painted_pixel_count, p.wrong_pixel_count) == (0, 0, 0)

    def test_paint_inside_blank_template_cell_is_wrong(self, config):
        tile = _painted_tile(5, 5, 1, 1, RED)
        _, result = _run(config, solid(1, 1, RED, alpha=0), (0, 0, 5, 5), tile)
        p = result.progress
        assert p.total_pixel_count == 0
        assert p.wrong_pixel_count == 1
        assert p.wrong_color_counts == {"200,0,0": 1}
        assert p.wrong_pixel_positions == [WrongPixel(0, 0, 5, 5)]

    def test_off_palette_paint_in_blank_cell_is_ignored(self, config):
        tile = _painted_tile(5, 5, 1, 1, (1, 2, 3))
        _, result = _run(config, solid(1, 1, RED, alpha=0), (0, 0, 5, 5), tile)
        assert result.progress.wrong_pixel_count == 0

    def test_wrong_positions_are_row_major(self, config):
        tile = _painted_tile(0, 0, 2, 2, BLUE)
        _, result = _run(config, solid(2, 2, RED), (0, 0, 0, 0), tile)
        positions = [(w.pixel_x, w.pixel_y) for w in result.progress.wrong_pixel_positions]
        assert positions == [(0, 0), (1, 0), (0, 1), (1, 1)]

    def test_only_block_centers_are_sampled(self, config):
        bitmap = solid(3, 3, INK)
        bitmap[1, 1, 3] = 0
        fragment = TileFragment(bitmap=bitmap, tile_coords=(0, 0), pixel_coords=(0, 0))
        result = DiffEngine(config).diff_tile(
            blank_tile(), (0, 0), [(Template(display_name="x"), fragment)],
            ReferencePalette(allowed_colors=ALLOWED),
        )
        assert result.progress.total_pixel_count == 0

    def test_samples_outside_the_tile_are_skipped(self, config):
        fragment = TileFragment(bitmap=shred(solid(2, 2, INK), 3),
                                tile_coords=(0, 0), pixel_coords=(9, 9))
        result = DiffEngine(config).diff_tile(
            blank_tile(), (0, 0), [(Template(display_name="x"), fragment)],
            ReferencePalette(allowed_colors=ALLOWED),
        )
        assert result.progress.total_pixel_count == 1

    def test_two_templates_accumulate_into_one_record(self, config):
        store = TemplateStore(config)
        store.add_template(solid(1, 1, RED), "a", (0, 0, 0, 0))
        store.add_template(solid(1, 1, BLUE), "b", (0, 0, 4, 4))
        tile = _painted_tile(0, 0, 1, 1, RED)
        result = DiffEngine(config).diff_tile(
            tile, (0, 0), store.fragments_for_tile("0000,0000"),
            ReferencePalette.from_template(store.active_template()),
        )
        assert result.template_count == 2
        assert result.progress.total_pixel_count == 2
        assert result.progress.painted_color_counts == {"200,0,0": 1}

    def test_deterministic(self, config):
        tile = _painted_tile(2, 2, 3, 3, INK)
        tile[3, 3, :3] = RED
        _, first = _run(config, solid(3, 3, INK), (0, 0, 2, 2), tile)
        _, second = _run(config, solid(3, 3, INK), (0, 0, 2, 2), tile)
        assert np.array_equal(first.image, second.image)
        assert first.progress == second.progress


# ---------------------------------------------------------------------------
# Tests: compositing + filtering
# ---------------------------------------------------------------------------


class TestCompositing:
    def test_no_fragments_returns_tile_unchanged(self, config):
        tile = blank_tile()
        result = DiffEngine(config).diff_tile(tile, (0, 0), [], ReferencePalette())
        assert result.image is tile
        assert result.progress is None
        assert result.template_count == 0

    def test_composite_is_draw_resolution(self, config):
        _, result = _run(config, solid(1, 1, RED), (0, 0, 0, 0), blank_tile())
        assert result.image.shape == (30, 30, 4)
        assert tuple(result.image[1, 1]) == RED + (255,)
        assert result.image[0, 0, 3] == 0

    def test_live_tile_stays_visible_around_centers(self, config):
        tile = _painted_tile(0, 0, 1, 1, BLUE)
        _, result = _run(config, solid(1, 1, RED), (0, 0, 0, 0), tile)
        assert tuple(result.image[1, 1, :3]) == RED
        assert tuple(result.image[0, 0, :3]) == BLUE

    def test_disabled_colour_is_hidden_but_still_counted(self, config):
        store = TemplateStore(config)
        image = solid(1, 2, RED)
        image[0, 1, :3] = BLUE
        template = store.add_template(image, "t", (0, 0, 0, 0))
        template.set_color_enabled(ColorKey.known(*RED), False)
        result = DiffEngine(config).diff_tile(
            blank_tile(), (0, 0), store.fragments_for_tile("0000,0000"),
            ReferencePalette.from_template(store.active_template()),
        )
        assert result.image[1, 1, 3] == 0
        assert tuple(result.image[1, 4]) == BLUE + (255,)
        assert result.progress.total_pixel_count == 2

    def test_disabled_colour_still_counts_painted_and_wrong(self, config):
        store = TemplateStore(config)
        image = solid(1, 3, RED)
        image[0, 2, :3] = BLUE
        template = store.add_template(image, "t", (0, 0, 0, 0))
        template.set_color_enabled(ColorKey.known(*RED), False)
        tile = blank_tile()
        tile[0, 0] = RED + (255,)
        tile[0, 1] = INK + (255,)
        result = DiffEngine(config).diff_tile(
            tile, (0, 0), store.fragments_for_tile("0000,0000"),
            ReferencePalette.from_template(store.active_template()),
        )
        p = result.progress
        assert (p.total_pixel_count, p.painted_pixel_count, p.wrong_pixel_count) == (3, 1, 1)
        assert p.painted_color_counts == {"200,0,0": 1}
        assert p.wrong_color_counts == {"200,0,0": 1}
        assert p.wrong_pixel_positions == [WrongPixel(0, 0, 1, 0)]
        # hidden centers show the live canvas underneath
        assert tuple(result.image[1, 4, :3]) == INK
        assert tuple(result.image[1, 7]) == BLUE + (255,)

    def test_rgb_tile_still_gets_overlays(self, config):
        store = TemplateStore(config)
        store.add_template(solid(1, 1, RED), "t", (0, 0, 0, 0))
        tile = np.zeros((10, 10, 3), dtype=np.uint8)
        tile[:, :] = BLUE
        result = DiffEngine(config).diff_tile(
            tile, (0, 0), store.fragments_for_tile("0000,0000"),
            ReferencePalette.from_template(store.active_template()),
        )
        assert result.progress is None
        assert result.template_count == 1
        assert result.image.shape == (30, 30, 4)
        assert tuple(result.image[1, 1]) == RED + (255,)
        assert tuple(result.image[0, 0]) == BLUE + (255,)

    def test_empty_tile_is_returned_unchanged(self, config):
        store = TemplateStore(config)
        store.add_template(solid(1, 1, RED), "t", (0, 0, 0, 0))
        tile = np.zeros((0, 0, 4), dtype=np.uint8)
        result = DiffEngine(config).diff_tile(
            tile, (0, 0), store.fragments_for_tile("0000,0000"),
            ReferencePalette.from_template(store.active_template()),
        )
        assert result.image is tile
        assert result.progress is None
        assert result.template_count == 0

    def test_render_failure_returns_tile(self, config, monkeypatch):
        store = TemplateStore(config)
        store.add_template(solid(1, 1, RED), "t", (0, 0, 0, 0))
        engine = DiffEngine(config)

        def boom(*args):
            raise RuntimeError("resize broke")

        monkeypatch.setattr("pixel_overlay.diff.resize_nearest", boom)
        tile = blank_tile()
        result = engine.diff_tile(tile, (0, 0), store.fragments_for_tile("0000,0000"),
                                  ReferencePalette.from_template(store.active_template()))
        assert result.image is tile
        assert result.template_count == 0

    def test_filter_only_touches_block_centers(self, config):
        bitmap = solid(3, 3, RED)
        reference = ReferencePalette(
            palette={ColorKey.known(*RED): PaletteEntry(1, False)},
            allowed_colors=ALLOWED,
        )
        filtered = DiffEngine(config).filter_fragment(bitmap, reference)
        assert filtered[1, 1, 3] == 0
        assert filtered[0, 0, 3] == 255
        assert bitmap[1, 1, 3] == 255

    def test_capture_failure_draws_without_stats(self, config, monkeypatch):
        store = TemplateStore(config)
        store.add_template(solid(1, 1, RED), "t", (0, 0, 0, 0))
        engine = DiffEngine(config)
        monkeypatch.setattr(engine, "capture_snapshot", lambda canvas: None)
        result = engine.diff_tile(blank_tile(), (0, 0), store.fragments_for_tile("0000,0000"),
                                  ReferencePalette.from_template(store.active_template()))
        assert result.progress is None
        assert tuple(result.image[1, 1]) == RED + (255,)

    def test_non_rgba_snapshot_is_rejected(self, config):
        assert DiffEngine(config).capture_snapshot(np.zeros((30, 30, 3), dtype=np.uint8)) is None

    def test_filter_failure_draws_raw_fragment(self, config, monkeypatch):
        store = TemplateStore(config)
        template = store.add_template(solid(1, 1, RED), "t", (0, 0, 0, 0))
        template.set_color_enabled(ColorKey.known(*RED), False)
        engine = DiffEngine(config)

        def boom(bitmap, reference):
            raise RuntimeError("filter broke")

        monkeypatch.setattr(engine, "filter_fragment", boom)
        result = engine.diff_tile(blank_tile(), (0, 0), store.fragments_for_tile("0000,0000"),
                                  ReferencePalette.from_template(store.active_template()))
        assert tuple(result.image[1, 1]) == RED + (255,)
        assert result.progress.total_pixel_count == 1

    def test_stats_failure_keeps_drawing(self, config, monkeypatch):
        store = TemplateStore(config)
        store.add_template(solid(1, 1, RED), "t", (0, 0, 0, 0))
        engine = DiffEngine(config)

        def boom(*args):
            raise RuntimeError("stats broke")

        monkeypatch.setattr(engine, "classify_fragment", boom)
        result = engine.diff_tile(blank_tile(), (0, 0), store.fragments_for_tile("0000,0000"),
                                  ReferencePalette.from_template(store.active_template()))
        assert result.progress is not None
        assert result.progress.total_pixel_count == 0
        assert tuple(result.image[1, 1]) == RED + (255,)


class TestReferencePalette:
    @pytest.fixture
    def reference(self):
        return ReferencePalette(
            palette={
                ColorKey.known(*RED): PaletteEntry(3, False),
                ColorKey.known(*BLUE): PaletteEntry(2, True),
            },
            allowed_colors=ALLOWED,
        )

    def test_known_colours(self, reference):
        assert reference.is_hidden(ColorKey.known(*RED))
        assert not reference.is_hidden(ColorKey.known(*BLUE))
        # colours missing from the palette stay visible
        assert not reference.is_hidden(ColorKey.known(*INK))

    def test_other_hidden_unless_enabled(self, reference):
        assert reference.bucket((1, 2, 3)) is ColorKey.OTHER
        assert reference.is_hidden(ColorKey.OTHER)
        reference.palette[ColorKey.OTHER] = PaletteEntry(1, True)
        assert not reference.is_hidden(ColorKey.OTHER)

    def test_empty_reference(self):
        reference = ReferencePalette.from_template(None)
        assert not reference.has_disabled()
        assert reference.bucket((1, 2, 3)) == ColorKey.known(1, 2, 3)
