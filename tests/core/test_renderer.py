from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pytest

from deckforge.core.fonts import FontProvider
from deckforge.core.geometry import AnchorPoint
from deckforge.core.filters import FilterSet
from deckforge.core.renderer import (
    SceneRenderer,
    linear_gradient_points,
    radial_gradient_geometry,
    resolve_paint,
)
from deckforge.core.resources import DictResourceResolver
from deckforge.core.scene import (
    BrushPoint,
    BrushStroke,
    FontSpec,
    GroupPayload,
    ImagePayload,
    LinePayload,
    NodeKind,
    PathPayload,
    Scene,
    SceneNode,
    ShapePayload,
    TextPayload,
)
from deckforge.core.style import (
    GradientStop,
    LinearGradientFill,
    PatternFill,
    PatternSpec,
    SolidFill,
    StrokeSpec,
    parse_color,
)


class RecordingBackend:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def begin(self, scene, background) -> None:
        self.calls.append(("begin", background))

    def enter_group(self, state) -> None:
        self.calls.append(("enter", state))

    def exit_group(self, state) -> None:
        self.calls.append(("exit", state))

    def draw_path(self, state, path, paint, stroke) -> None:
        self.calls.append(("path", state, path, paint, stroke))

    def draw_text(self, state, run, paint, stroke) -> None:
        self.calls.append(("text", state, run, paint, stroke))

    def draw_image(self, state, ref, data, width, height, chain) -> None:
        self.calls.append(("image", state, ref, data, width, height, chain))

    def draw_dots(self, state, dots, color) -> None:
        self.calls.append(("dots", state, dots, color))

    def finish(self) -> list[tuple]:
        return self.calls


def _no_font(name: str) -> Path:
    raise FileNotFoundError(name)


def _render(*nodes: SceneNode, **scene_kw) -> list[tuple]:
    renderer = SceneRenderer(
        RecordingBackend(),
        resolver=DictResourceResolver({"logo.png": b"LOGO"}),
        fonts=FontProvider(resolver=_no_font),
        rng=np.random.default_rng(0),
    )
    return renderer.render(Scene(nodes=nodes, **scene_kw))


def _draws(calls: list[tuple]) -> list[tuple]:
    return [c for c in calls if c[0] != "begin"]


def _rect(node_id: str, **kw) -> SceneNode:
    payload = kw.pop("payload", ShapePayload("rect"))
    return SceneNode(node_id, NodeKind.SHAPE, payload, width=10, height=10, **kw)


@pytest.mark.parametrize("count", [0, 1])
def test_paths_with_fewer_than_two_anchors_draw_nothing(count: int) -> None:
    anchors = tuple(AnchorPoint(i, i) for i in range(count))
    node = SceneNode(
        "p",
        NodeKind.PATH,
        PathPayload(anchors=anchors, closed=True, fill=SolidFill(), stroke=StrokeSpec(width=3)),
    )
    assert _draws(_render(node)) == []


def test_undrawable_subpaths_are_filtered_out() -> None:
    from deckforge.core.path_codec import Subpath

    node = SceneNode(
        "p",
        NodeKind.PATH,
        PathPayload(
            anchors=(AnchorPoint(0, 0), AnchorPoint(10, 0), AnchorPoint(10, 10)),
            closed=True,
            subpaths=(Subpath((AnchorPoint(50, 50),), False),),
        ),
    )
    (call,) = _draws(_render(node))
    assert len(call[2].subpaths) == 1


def test_hidden_nodes_and_their_children_are_skipped() -> None:
    hidden_group = SceneNode(
        "g", NodeKind.GROUP, GroupPayload((_rect("child"),)), visible=False
    )
    calls = _draws(_render(_rect("a"), hidden_group, _rect("b", visible=False)))
    assert [c[1].node.id for c in calls] == ["a"]


def test_group_accumulates_matrix_opacity_and_blend_mode() -> None:
    group = SceneNode(
        "g",
        NodeKind.GROUP,
        GroupPayload(
            (
                _rect("inherit", x=5, y=5, opacity=0.5),
                _rect("override", blend_mode="screen"),
            )
        ),
        x=10,
        y=20,
        opacity=0.5,
        blend_mode="multiply",
    )
    calls = _draws(_render(group))
    assert [c[0] for c in calls] == ["enter", "path", "path", "exit"]

    inherit = calls[1][1]
    assert inherit.opacity == pytest.approx(0.25)
    assert inherit.blend_mode == "multiply"
    np.testing.assert_allclose(inherit.matrix[:2, 2], [15.0, 25.0])
    np.testing.assert_allclose(inherit.local_matrix[:2, 2], [5.0, 5.0])

    override = calls[2][1]
    assert override.blend_mode == "screen"
    assert override.opacity == pytest.approx(0.5)


def test_children_are_painted_in_list_order() -> None:
    group = SceneNode("g", NodeKind.GROUP, GroupPayload((_rect("1"), _rect("2"), _rect("3"))))
    calls = [c for c in _render(group) if c[0] == "path"]
    assert [c[1].node.id for c in calls] == ["1", "2", "3"]


def test_pattern_overrides_shape_fill() -> None:
    payload = ShapePayload("rect", fill=SolidFill(), pattern=PatternSpec("checkerboard", scale=5))
    (call,) = _draws(_render(_rect("r", payload=payload)))
    paint = call[3]
    assert isinstance(paint.fill, PatternFill)
    assert paint.pattern is not None
    assert paint.box == (0.0, 0.0, 10.0, 10.0)


def test_empty_gradient_renders_base_color() -> None:
    fill = LinearGradientFill((), angle=90, base_color="#123456")
    paint = resolve_paint(fill, (0.0, 0.0, 10.0, 10.0))
    assert paint.fill == SolidFill(parse_color("#123456"))
    assert resolve_paint(None, (0.0, 0.0, 1.0, 1.0)) is None


def test_gradient_geometry_helpers() -> None:
    fill = LinearGradientFill((GradientStop(0, "#000"), GradientStop(1, "#fff")), angle=0)
    assert linear_gradient_points(fill, (0.0, 0.0, 10.0, 4.0)) == ((0.0, 2.0), (10.0, 2.0))
    assert radial_gradient_geometry((0.0, 0.0, 10.0, 4.0)) == (5.0, 2.0, 5.0)


def test_lines_without_width_are_skipped() -> None:
    thin = SceneNode("l0", NodeKind.LINE, LinePayload(stroke=StrokeSpec(width=0)))
    thick = SceneNode("l1", NodeKind.LINE, LinePayload(end_x=50, stroke=StrokeSpec(width=2)))
    calls = _draws(_render(thin, thick))
    assert [c[1].node.id for c in calls] == ["l1"]
    assert calls[0][3] is None
    assert calls[0][4].width == 2.0


def test_images_receive_preloaded_bytes_or_none() -> None:
    ok = SceneNode(
        "ok",
        NodeKind.IMAGE,
        ImagePayload("logo.png", filters=FilterSet(invert=True)),
        width=20,
        height=10,
    )
    missing = SceneNode("missing", NodeKind.TEXTURE, ImagePayload("nope.png"), width=5, height=5)
    empty = SceneNode("empty", NodeKind.STICKER, ImagePayload("logo.png"), width=0, height=5)
    calls = _draws(_render(ok, missing, empty))
    assert [(c[2], c[3]) for c in calls] == [("logo.png", b"LOGO"), ("nope.png", None)]
    assert [op.name for op in calls[0][6]] == ["invert"]
    assert calls[0][4:6] == (20.0, 10.0)


def test_background_paint_respects_include_flag() -> None:
    with_bg = _render()
    assert with_bg[0][0] == "begin"
    assert with_bg[0][1].box == (0.0, 0.0, 96.0, 294.0)
    without = _render(include_background=False)
    assert without[0] == ("begin", None)


def test_text_follows_referenced_hidden_path() -> None:
    path = SceneNode(
        "curve",
        NodeKind.PATH,
        PathPayload(anchors=(AnchorPoint(0, 50), AnchorPoint(100, 50))),
        visible=False,
    )
    text = SceneNode(
        "t",
        NodeKind.TEXT,
        TextPayload("AB", font=FontSpec(size=10.0), align="center", path_ref="curve"),
        width=100,
        height=100,
    )
    (call,) = _draws(_render(path, text))
    run = call[2]
    assert run.on_path
    assert [p.x for p in run.placements] == pytest.approx([47.0, 53.0], abs=1e-3)
    assert [p.y for p in run.placements] == pytest.approx([50.0, 50.0], abs=1e-3)


def test_text_path_is_mapped_into_text_local_space() -> None:
    path = SceneNode(
        "curve", NodeKind.PATH, PathPayload(anchors=(AnchorPoint(0, 0), AnchorPoint(100, 0))), y=50
    )
    text = SceneNode(
        "t",
        NodeKind.TEXT,
        TextPayload("A", font=FontSpec(size=10.0), path_ref="curve"),
        x=0,
        y=30,
        width=100,
        height=40,
    )
    calls = [c for c in _render(path, text) if c[0] == "text"]
    (p,) = calls[0][2].placements
    assert p.y == pytest.approx(20.0)


def test_missing_path_ref_falls_back_to_normal_layout(caplog) -> None:
    text = SceneNode(
        "t",
        NodeKind.TEXT,
        TextPayload("AB", path_ref="nowhere"),
        width=100,
        height=40,
    )
    with caplog.at_level(logging.WARNING):
        (call,) = _draws(_render(text))
    assert not call[2].on_path
    assert "nowhere" in caplog.text


def test_empty_text_draws_nothing() -> None:
    text = SceneNode("t", NodeKind.TEXT, TextPayload(""), width=10, height=10)
    assert _draws(_render(text)) == []


def _brush_node(brush_type: str, **kw) -> SceneNode:
    stroke = BrushStroke(
        brush_type=brush_type,
        points=(BrushPoint(0, 0), BrushPoint(10, 5), BrushPoint(20, 0)),
        **kw,
    )
    return SceneNode(
        "b",
        NodeKind.PATH,
        PathPayload(brush=stroke, stroke=StrokeSpec(color="#ff0000")),
        opacity=0.5,
    )


def test_marker_brush_is_a_translucent_stroke() -> None:
    (call,) = _draws(_render(_brush_node("marker")))
    assert call[0] == "path"
    assert call[1].opacity == pytest.approx(0.3)
    assert call[3] is None
    assert call[4].color == parse_color("#ff0000")


def test_pressure_brush_is_filled_outline() -> None:
    (call,) = _draws(_render(_brush_node("pressure")))
    assert call[3].fill == SolidFill(parse_color("#ff0000"))
    assert call[4] is None
    assert call[2].subpaths[0].closed is True


def test_spray_brush_draws_dots() -> None:
    (call,) = _draws(_render(_brush_node("spray")))
    assert call[0] == "dots"
    assert len(call[2]) > 0
    assert call[3] == parse_color("#ff0000")


def test_renderer_keeps_no_state_between_renders() -> None:
    scene = Scene(nodes=(_rect("a"),))
    backend_calls = []
    for _ in range(2):
        renderer = SceneRenderer(RecordingBackend(), fonts=FontProvider(resolver=_no_font))
        backend_calls.append([c[0] for c in renderer.render(scene)])
    assert backend_calls[0] == backend_calls[1] == ["begin", "path"]


def test_nodes_collapsed_by_zero_scale_are_skipped() -> None:
    flat_group = SceneNode("g", NodeKind.GROUP, GroupPayload((_rect("child"),)), scale_y=0.0)
    image = SceneNode(
        "i", NodeKind.IMAGE, ImagePayload("logo.png"), width=10, height=10, scale_x=0.0
    )
    calls = _draws(_render(_rect("a"), _rect("flat", scale_x=0.0), flat_group, image))
    assert [c[1].node.id for c in calls] == ["a"]


def test_payload_swapped_after_construction_raises_type_error() -> None:
    node = _rect("a")
    object.__setattr__(node, "payload", TextPayload("x"))
    with pytest.raises(TypeError):
        _render(node)
