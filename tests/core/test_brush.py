from __future__ import annotations

import math

import numpy as np
import pytest

from deckforge.core.brush import (
    MARKER_OPACITY,
    brush_geometry,
    catmull_rom,
    rdp_simplify,
    smooth_points,
    spray_dots,
    variable_width_outline,
)
from deckforge.core.scene import BrushPoint, BrushStroke


def _stroke(brush_type: str, pressures=(0.5, 0.5, 0.5), **kw) -> BrushStroke:
    pts = tuple(BrushPoint(10.0 * i, 0.0, p) for i, p in enumerate(pressures))
    return BrushStroke(brush_type=brush_type, points=pts, **kw)


def test_rdp_drops_nearly_collinear_points_and_keeps_corners() -> None:
    flat = np.asarray([[0, 0, 0.1], [1, 0.01, 0.2], [2, 0, 0.3], [3, 0, 0.4]], dtype=np.float64)
    out = rdp_simplify(flat, 0.5)
    np.testing.assert_allclose(out, flat[[0, 3]])

    corner = np.asarray([[0, 0, 0.5], [1, 5, 0.5], [2, 0, 0.5]], dtype=np.float64)
    assert rdp_simplify(corner, 0.5).shape == (3, 3)


def test_catmull_rom_passes_through_inputs() -> None:
    pts = np.asarray([[0, 0, 0.0], [10, 5, 1.0], [20, 0, 0.0]], dtype=np.float64)
    out = catmull_rom(pts, 4)
    assert out.shape == (9, 3)
    np.testing.assert_allclose(out[[0, 4, 8]], pts)
    # 筆圧は線形補間
    np.testing.assert_allclose(out[:5, 2], [0.0, 0.25, 0.5, 0.75, 1.0])


def test_smoothing_zero_or_short_input_is_passthrough() -> None:
    pts = np.asarray([[0, 0, 0.5], [5, 5, 0.5], [10, 0, 0.5]], dtype=np.float64)
    np.testing.assert_allclose(smooth_points(pts, 0.0), pts)
    np.testing.assert_allclose(smooth_points(pts[:2], 100.0), pts[:2])
    assert smooth_points(pts, 50.0).shape[0] > pts.shape[0]


def test_outline_of_straight_stroke() -> None:
    pts = np.asarray([[0, 0, 0.5], [10, 0, 0.5]], dtype=np.float64)
    anchors = variable_width_outline(pts, 4.0)
    np.testing.assert_allclose([a.xy for a in anchors], [(0, 1), (10, 1), (10, -1), (0, -1)], atol=1e-12)
    # 両端は 2 次ベジエの丸キャップ
    assert anchors[0].cp1 == pytest.approx((-1.0, 0.0))
    assert anchors[2].cp1 == pytest.approx((11.0, 0.0))


def test_outline_width_follows_pressure_and_has_minimum() -> None:
    pts = np.asarray([[0, 0, 1.0], [10, 0, 0.0]], dtype=np.float64)
    anchors = variable_width_outline(pts, 4.0)
    assert anchors[0].y == pytest.approx(2.0)
    assert anchors[1].y == pytest.approx(0.3)

    flat = variable_width_outline(pts, 4.0, pressure_sensitive=False)
    assert flat[0].y == pytest.approx(1.0)
    assert flat[1].y == pytest.approx(1.0)


def test_calligraphy_nib_narrows_parallel_strokes() -> None:
    pts = np.asarray([[0, 0, 0.5], [10, 0, 0.5]], dtype=np.float64)
    parallel = variable_width_outline(pts, 4.0, nib_angle=0.0)
    across = variable_width_outline(pts, 4.0, nib_angle=90.0)
    assert parallel[0].y == pytest.approx(0.3)
    assert across[0].y == pytest.approx(1.0)


def test_outline_needs_two_points() -> None:
    assert variable_width_outline(np.zeros((1, 3)), 4.0) == []


def test_spray_dots_are_scattered_within_radius() -> None:
    pts = np.asarray([[0, 0, 0.5], [50, 0, 1.0]], dtype=np.float64)
    dots = spray_dots(pts, 6.0, np.random.default_rng(3))
    # 筆圧 0.5 → 7 個, 1.0 → 11 個
    assert len(dots) == 18
    for x, y, r in dots[:7]:
        assert math.hypot(x, y) <= 6.0 + 1e-9
        assert 0.3 <= r <= 1.5
    assert dots == spray_dots(pts, 6.0, np.random.default_rng(3))


def test_brush_geometry_by_type() -> None:
    assert brush_geometry(BrushStroke(points=(BrushPoint(0, 0),))) is None

    pencil = brush_geometry(_stroke("pencil"))
    assert pencil is not None and pencil.mode == "stroke"
    assert pencil.width == 4.0

    varied = brush_geometry(_stroke("pencil", pressures=(0.2, 0.9, 0.4)))
    assert varied is not None and varied.mode == "fill"

    assert brush_geometry(_stroke("pressure")).mode == "fill"
    assert brush_geometry(_stroke("calligraphy")).mode == "fill"

    marker = brush_geometry(_stroke("marker", size=8.0))
    assert marker.mode == "stroke"
    assert marker.width == 8.0
    assert marker.opacity_factor == MARKER_OPACITY


def test_spray_prefers_stored_dots() -> None:
    stored = ((1.0, 2.0, 0.5), (3.0, 4.0, 0.7))
    geom = brush_geometry(_stroke("spray", spray_dots=stored))
    assert geom.mode == "dots"
    assert geom.dots == stored

    generated = brush_geometry(_stroke("spray"), np.random.default_rng(0))
    assert generated.dots == brush_geometry(_stroke("spray"), np.random.default_rng(0)).dots
