"""ラスタ backend（`deckforge.export.raster`）のテスト。"""

from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from deckforge.core.filters import FilterSet
from deckforge.core.resources import DictResourceResolver
from deckforge.core.scene import (
    FontSpec,
    GroupPayload,
    ImagePayload,
    LinePayload,
    NodeKind,
    Scene,
    SceneNode,
    ShapePayload,
    TextPayload,
)
from deckforge.core.style import (
    GradientStop,
    LinearGradientFill,
    PatternSpec,
    SolidFill,
    StrokeSpec,
)
from deckforge.export.image import render_raster
from deckforge.export.raster import RasterBackend, encode_image, gaussian_blur


def _png_bytes(color=(255, 0, 0)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), color).save(buf, format="PNG")
    return buf.getvalue()


def _render(*nodes: SceneNode, dpi_scale: float = 1.0, resources=None, **scene_kw) -> np.ndarray:
    scene_kw.setdefault("width", 20)
    scene_kw.setdefault("height", 20)
    img = render_raster(
        Scene(nodes=nodes, **scene_kw),
        dpi_scale=dpi_scale,
        resolver=DictResourceResolver(resources or {}),
        rng=np.random.default_rng(0),
    )
    assert img.mode == "RGBA"
    return np.asarray(img, dtype=np.int32)


def _rect(node_id: str, fill="#ff0000", size: float = 20.0, **kw) -> SceneNode:
    payload = kw.pop("payload", ShapePayload("rect", fill=SolidFill(fill)))
    return SceneNode(node_id, NodeKind.SHAPE, payload, width=size, height=size, **kw)


def _assert_px(arr: np.ndarray, x: int, y: int, rgba, tol: int = 2) -> None:
    np.testing.assert_allclose(arr[y, x], rgba, atol=tol)


def test_output_size_follows_dpi_scale() -> None:
    arr = _render(dpi_scale=2.5, width=10, height=8)
    assert arr.shape == (20, 25, 4)


def test_background_fills_canvas() -> None:
    arr = _render()
    _assert_px(arr, 0, 0, (255, 255, 255, 255))
    _assert_px(arr, 19, 19, (255, 255, 255, 255))


def test_without_background_canvas_is_transparent() -> None:
    arr = _render(include_background=False)
    assert int(arr[..., 3].max()) == 0


def test_solid_rect_and_opacity() -> None:
    arr = _render(_rect("r", size=10), _rect("half", x=10, opacity=0.5, size=10))
    _assert_px(arr, 5, 5, (255, 0, 0, 255))
    _assert_px(arr, 15, 5, (255, 128, 128, 255))
    _assert_px(arr, 5, 15, (255, 255, 255, 255))


def test_later_nodes_paint_over_earlier_ones() -> None:
    arr = _render(_rect("red"), _rect("blue", fill="#0000ff", size=10))
    _assert_px(arr, 5, 5, (0, 0, 255, 255))
    _assert_px(arr, 15, 15, (255, 0, 0, 255))


def test_multiply_blend_inherited_from_group() -> None:
    group = SceneNode(
        "g",
        NodeKind.GROUP,
        GroupPayload((_rect("blue", fill="#0000ff"),)),
        blend_mode="multiply",
    )
    arr = _render(_rect("red"), group)
    _assert_px(arr, 10, 10, (0, 0, 0, 255))


def test_hidden_node_is_not_drawn() -> None:
    arr = _render(_rect("r", visible=False))
    _assert_px(arr, 10, 10, (255, 255, 255, 255))


def test_rotated_rect_covers_center_but_not_corners() -> None:
    arr = _render(_rect("r", size=10, x=5, y=5, rotation=45))
    _assert_px(arr, 10, 10, (255, 0, 0, 255))
    # 45° 回転した 10x10 の角は bbox 角（5,5）付近に届かない
    _assert_px(arr, 5, 5, (255, 255, 255, 255))


def test_linear_gradient_runs_left_to_right() -> None:
    fill = LinearGradientFill((GradientStop(0, "#000000"), GradientStop(1, "#ffffff")), angle=0)
    arr = _render(_rect("g", payload=ShapePayload("rect", fill=fill)))
    left = int(arr[10, 1, 0])
    right = int(arr[10, 18, 0])
    assert left < 30
    assert right > 225
    assert left < int(arr[10, 10, 0]) < right


def test_checkerboard_pattern_alternates_colors() -> None:
    spec = PatternSpec("checkerboard", primary="#ff0000", secondary="#0000ff", scale=10)
    arr = _render(_rect("p", payload=ShapePayload("rect", pattern=spec)))
    _assert_px(arr, 5, 5, (255, 0, 0, 255), tol=8)
    _assert_px(arr, 15, 5, (0, 0, 255, 255), tol=8)
    _assert_px(arr, 15, 15, (255, 0, 0, 255), tol=8)


def test_dashed_line_leaves_gaps() -> None:
    line = SceneNode(
        "l",
        NodeKind.LINE,
        LinePayload(end_x=40, stroke=StrokeSpec("#000000", width=2, dash="dashed", cap="butt")),
        y=5,
    )
    arr = _render(line, width=40, height=10)
    # dash 6 / gap 4
    assert arr[5, 3, 0] < 64
    assert arr[5, 8, 0] > 200
    assert arr[5, 13, 0] < 64
    assert arr[1, 3, 0] > 200


def test_image_is_drawn_and_filtered() -> None:
    node = SceneNode("i", NodeKind.IMAGE, ImagePayload("red.png"), width=20, height=20)
    inverted = SceneNode(
        "j",
        NodeKind.IMAGE,
        ImagePayload("red.png", filters=FilterSet(invert=True)),
        width=20,
        height=20,
    )
    resources = {"red.png": _png_bytes()}
    _assert_px(_render(node, resources=resources), 10, 10, (255, 0, 0, 255))
    _assert_px(_render(inverted, resources=resources), 10, 10, (0, 255, 255, 255))


@pytest.mark.parametrize("resources", [{}, {"x.png": b"garbage"}])
def test_failed_image_becomes_grey_placeholder(resources) -> None:
    node = SceneNode("i", NodeKind.TEXTURE, ImagePayload("x.png"), width=10, height=10)
    arr = _render(node, resources=resources)
    _assert_px(arr, 5, 5, (204, 204, 204, 255))
    _assert_px(arr, 15, 15, (255, 255, 255, 255))


def test_text_draws_glyph_outlines(font_config) -> None:
    node = SceneNode(
        "t",
        NodeKind.TEXT,
        TextPayload("AB", font=FontSpec(family="DeckTest", size=20), fill=SolidFill("#000000")),
        width=40,
        height=40,
    )
    arr = _render(node, width=40, height=40)
    assert int(arr[..., 0].min()) < 32
    # 箱グリフの間（A の右端 11 と B の左端 13 の間）は塗られない
    assert int(arr[20, 12, 0]) > 200


def test_text_without_font_renders_nothing() -> None:
    node = SceneNode(
        "t",
        NodeKind.TEXT,
        TextPayload("AB", font=FontSpec(family="NoSuchFamily")),
        width=20,
        height=20,
    )
    arr = _render(node)
    assert int(arr[..., 0].min()) == 255


def test_seeded_noise_pattern_is_reproducible() -> None:
    spec = PatternSpec("noise", scale=4)
    node = _rect("n", payload=ShapePayload("rect", pattern=spec))
    assert np.array_equal(_render(node), _render(node))


def test_backend_rejects_bad_scale_and_draw_before_begin() -> None:
    with pytest.raises(ValueError):
        RasterBackend(dpi_scale=0)
    with pytest.raises(RuntimeError):
        RasterBackend().finish()


def test_encode_image_png_and_jpeg() -> None:
    img = Image.new("RGBA", (6, 4), (255, 0, 0, 0))
    png = Image.open(io.BytesIO(encode_image(img, "PNG")))
    assert png.size == (6, 4)
    assert png.mode == "RGBA"

    jpeg = Image.open(io.BytesIO(encode_image(img, "JPEG", quality=90)))
    assert jpeg.format == "JPEG"
    assert jpeg.mode == "RGB"
    # 透明部分は白で平坦化される
    assert min(jpeg.getpixel((3, 2))) > 240

    with pytest.raises(ValueError):
        encode_image(img, "GIF")


def test_gaussian_blur_spreads_alpha_without_darkening_colour() -> None:
    img = np.zeros((9, 9, 4), dtype=np.float64)
    img[4, 4] = [1.0, 0.0, 0.0, 1.0]
    out = gaussian_blur(img, 1.0)
    assert out[4, 4, 3] < 1.0
    assert out[4, 5, 3] > 0.0
    assert out[4, 5, 0] == pytest.approx(1.0, abs=0.05)
    assert out[4, 5, 1] == pytest.approx(0.0, abs=0.05)
    assert gaussian_blur(img, 0.0) is img


def test_blur_fades_image_edges_into_transparency() -> None:
    node = SceneNode(
        "i",
        NodeKind.IMAGE,
        ImagePayload("red.png", filters=FilterSet(blur=2)),
        width=20,
        height=20,
    )
    arr = _render(node, resources={"red.png": _png_bytes()})
    _assert_px(arr, 10, 10, (255, 0, 0, 255), tol=10)
    # 縁は画像外の透明と混ざり、白背景が透ける
    assert arr[10, 0, 1] > 30


@pytest.mark.parametrize("scale_kw", [{"scale_x": 0.0}, {"scale_y": 0.0}])
def test_zero_scale_nodes_are_skipped(scale_kw) -> None:
    fill = LinearGradientFill((GradientStop(0, "#000000"), GradientStop(1, "#ff0000")))
    gradient = _rect("g", payload=ShapePayload("rect", fill=fill), **scale_kw)
    image = SceneNode("i", NodeKind.IMAGE, ImagePayload("red.png"), width=20, height=20, **scale_kw)
    group = SceneNode(
        "grp", NodeKind.GROUP, GroupPayload((_rect("inner", "#0000ff"),)), **scale_kw
    )
    arr = _render(gradient, image, group, resources={"red.png": _png_bytes()})
    _assert_px(arr, 10, 10, (255, 255, 255, 255))
