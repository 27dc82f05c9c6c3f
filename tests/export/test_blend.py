from __future__ import annotations

import numpy as np
import pytest

from deckforge.core.scene import BLEND_MODES
from deckforge.export.blend import compose, compose_over, merge_at


def _px(r: float, g: float, b: float, a: float = 1.0) -> np.ndarray:
    """straight RGBA を premultiplied の 1x1 配列にする。"""
    return np.array([[[r * a, g * a, b * a, a]]], dtype=np.float64)


@pytest.mark.parametrize("mode", BLEND_MODES)
def test_transparent_source_leaves_destination(mode: str) -> None:
    dst = _px(0.2, 0.4, 0.6)
    out = compose(dst, _px(0.9, 0.1, 0.5, 0.0), mode)
    np.testing.assert_allclose(out, dst)


@pytest.mark.parametrize("mode", BLEND_MODES)
def test_opaque_source_over_empty_destination_is_source(mode: str) -> None:
    src = _px(0.9, 0.1, 0.5)
    out = compose(np.zeros((1, 1, 4)), src, mode)
    np.testing.assert_allclose(out, src)


def test_normal_is_source_over() -> None:
    dst = _px(1.0, 1.0, 1.0)
    src = _px(1.0, 0.0, 0.0, 0.5)
    out = compose(dst, src, "normal")
    np.testing.assert_allclose(out, [[[1.0, 0.5, 0.5, 1.0]]])
    np.testing.assert_allclose(compose_over(dst, src), out)


@pytest.mark.parametrize(
    ("mode", "backdrop", "source", "expected"),
    [
        ("multiply", (1.0, 0.0, 0.0), (0.0, 0.0, 1.0), (0.0, 0.0, 0.0)),
        ("multiply", (0.5, 0.5, 0.5), (1.0, 1.0, 1.0), (0.5, 0.5, 0.5)),
        ("screen", (0.3, 0.6, 0.9), (0.0, 0.0, 0.0), (0.3, 0.6, 0.9)),
        ("screen", (0.5, 0.5, 0.5), (0.5, 0.5, 0.5), (0.75, 0.75, 0.75)),
        ("difference", (0.7, 0.2, 0.5), (0.7, 0.2, 0.5), (0.0, 0.0, 0.0)),
        ("exclusion", (1.0, 0.0, 0.5), (1.0, 1.0, 0.5), (0.0, 1.0, 0.5)),
        ("darken", (0.2, 0.8, 0.5), (0.6, 0.4, 0.5), (0.2, 0.4, 0.5)),
        ("lighten", (0.2, 0.8, 0.5), (0.6, 0.4, 0.5), (0.6, 0.8, 0.5)),
        ("soft-light", (0.3, 0.6, 0.9), (0.5, 0.5, 0.5), (0.3, 0.6, 0.9)),
        ("overlay", (0.5, 0.5, 0.5), (0.2, 0.4, 0.8), (0.2, 0.4, 0.8)),
        ("hard-light", (0.2, 0.4, 0.8), (0.5, 0.5, 0.5), (0.2, 0.4, 0.8)),
        ("color-dodge", (0.0, 0.5, 0.5), (0.5, 0.5, 1.0), (0.0, 1.0, 1.0)),
        ("color-burn", (1.0, 0.5, 0.5), (0.5, 0.5, 0.0), (1.0, 0.0, 0.0)),
        ("luminosity", (0.5, 0.5, 0.5), (1.0, 0.0, 0.0), (0.3, 0.3, 0.3)),
    ],
)
def test_separable_and_luminosity_modes(mode, backdrop, source, expected) -> None:
    out = compose(_px(*backdrop), _px(*source), mode)
    np.testing.assert_allclose(out[0, 0, :3], expected, atol=1e-9)
    assert out[0, 0, 3] == pytest.approx(1.0)


def test_color_and_hue_keep_backdrop_luminosity_of_grey() -> None:
    grey = _px(0.5, 0.5, 0.5)
    for mode in ("color", "hue", "saturation"):
        out = compose(grey, _px(0.2, 0.6, 0.2), mode)
        rgb = out[0, 0, :3]
        lum = 0.3 * rgb[0] + 0.59 * rgb[1] + 0.11 * rgb[2]
        assert lum == pytest.approx(0.5, abs=1e-9)


def test_unknown_mode_raises() -> None:
    with pytest.raises(ValueError):
        compose(_px(0, 0, 0), _px(1, 1, 1), "dissolve")


def test_merge_at_clips_to_base_and_updates_in_place() -> None:
    base = np.zeros((4, 4, 4))
    overlay = np.ones((3, 3, 4))
    merge_at(base, overlay, (-1, 2))
    covered = base[..., 3] > 0.5
    assert covered.tolist() == [
        [False, False, False, False],
        [False, False, False, False],
        [True, True, False, False],
        [True, True, False, False],
    ]


def test_merge_at_outside_is_noop() -> None:
    base = np.zeros((2, 2, 4))
    merge_at(base, np.ones((2, 2, 4)), (5, 5))
    assert not base.any()
