"""SVG export（`deckforge.export.image.render_svg` / `SvgBackend`）のテスト。"""

from __future__ import annotations

import io
import xml.etree.ElementTree as ET

import numpy as np
import pytest
from PIL import Image

from deckforge.core.filters import FilterSet
from deckforge.core.geometry import AnchorPoint
from deckforge.core.resources import DictResourceResolver
from deckforge.core.scene import (
    BrushPoint,
    BrushStroke,
    FontSpec,
    GroupPayload,
    ImagePayload,
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
    PatternSpec,
    SolidFill,
    StrokeSpec,
)
from deckforge.export.image import render_svg

_SVG_NS = "http://www.w3.org/2000/svg"
_NS = {"svg": _SVG_NS}


def _png_bytes(color=(255, 0, 0)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (4, 2), color).save(buf, format="PNG")
    return buf.getvalue()


def _svg(*nodes: SceneNode, resources=None, **scene_kw) -> ET.Element:
    text = render_svg(
        Scene(nodes=nodes, **scene_kw),
        resolver=DictResourceResolver(resources or {}),
        rng=np.random.default_rng(0),
    )
    root = ET.fromstring(text)
    assert root.tag == f"{{{_SVG_NS}}}svg"
    return root


def _by_id(root: ET.Element, node_id: str) -> ET.Element:
    for el in root.iter():
        if el.get("data-node-id") == node_id:
            return el
    raise AssertionError(f"node {node_id} not found")


def _rect(node_id: str, **kw) -> SceneNode:
    payload = kw.pop("payload", ShapePayload("rect", fill=SolidFill("#ff0000")))
    return SceneNode(node_id, NodeKind.SHAPE, payload, width=10, height=10, **kw)


def test_root_dimensions_and_background() -> None:
    root = _svg(width=96, height=294)
    assert root.get("width") == "96"
    assert root.get("height") == "294"
    assert root.get("viewBox") == "0 0 96 294"
    bg = root.find("svg:rect", _NS)
    assert bg is not None
    assert bg.get("fill") == "#FFFFFF"


def test_background_can_be_omitted() -> None:
    root = _svg(include_background=False)
    assert root.find("svg:rect", _NS) is None


def test_shape_is_a_path_with_local_transform() -> None:
    root = _svg(_rect("r", x=5, y=7))
    el = _by_id(root, "r")
    assert el.tag == f"{{{_SVG_NS}}}path"
    assert el.get("d") == "M 0 0 L 10 0 L 10 10 L 0 10 Z"
    assert el.get("fill") == "#FF0000"
    assert el.get("fill-rule") == "evenodd"
    assert el.get("transform") == "matrix(1 0 0 1 5 7)"
    assert el.get("opacity") is None
    assert el.get("style") is None


def test_group_nests_children_and_opacity_lands_on_leaves() -> None:
    group = SceneNode(
        "g",
        NodeKind.GROUP,
        GroupPayload((_rect("a", opacity=0.5), _rect("b"))),
        x=10,
        opacity=0.5,
        blend_mode="multiply",
    )
    root = _svg(group)
    g = _by_id(root, "g")
    assert g.tag == f"{{{_SVG_NS}}}g"
    assert g.get("opacity") is None
    assert g.get("transform") == "matrix(1 0 0 1 10 0)"
    children = [c.get("data-node-id") for c in g]
    assert children == ["a", "b"]
    assert _by_id(root, "a").get("opacity") == "0.25"
    assert _by_id(root, "b").get("opacity") == "0.5"
    assert _by_id(root, "a").get("style") == "mix-blend-mode:multiply"


def test_hidden_nodes_are_not_emitted() -> None:
    root = _svg(_rect("shown"), _rect("hidden", visible=False))
    ids = {el.get("data-node-id") for el in root.iter()}
    assert "shown" in ids
    assert "hidden" not in ids


def test_linear_gradient_goes_to_defs() -> None:
    fill = LinearGradientFill((GradientStop(0, "#000000"), GradientStop(1, "#ffffff")), angle=0)
    root = _svg(_rect("r", payload=ShapePayload("rect", fill=fill)))
    grad = root.find("svg:defs/svg:linearGradient", _NS)
    assert grad is not None
    assert _by_id(root, "r").get("fill") == f"url(#{grad.get('id')})"
    assert (grad.get("x1"), grad.get("y1"), grad.get("x2"), grad.get("y2")) == ("0", "5", "10", "5")
    stops = grad.findall("svg:stop", _NS)
    assert [s.get("stop-color") for s in stops] == ["#000000", "#FFFFFF"]


def test_empty_gradient_is_written_as_solid_base_color() -> None:
    fill = LinearGradientFill((), base_color="#00ff00")
    root = _svg(_rect("r", payload=ShapePayload("rect", fill=fill)))
    assert _by_id(root, "r").get("fill") == "#00FF00"
    assert root.find("svg:defs/svg:linearGradient", _NS) is None


def test_pattern_fill_references_pattern_def() -> None:
    payload = ShapePayload("rect", pattern=PatternSpec("checkerboard", scale=5))
    root = _svg(_rect("r", payload=payload))
    pat = root.find("svg:defs/svg:pattern", _NS)
    assert pat is not None
    assert _by_id(root, "r").get("fill") == f"url(#{pat.get('id')})"
    assert len(pat.findall("svg:rect", _NS)) == 1 + 2


def test_dashed_stroke_attributes() -> None:
    payload = ShapePayload("rect", fill=None, stroke=StrokeSpec("#0000ff", width=2, dash="dashed"))
    el = _by_id(_svg(_rect("r", payload=payload)), "r")
    assert el.get("fill") == "none"
    assert el.get("stroke") == "#0000FF"
    assert el.get("stroke-width") == "2"
    assert el.get("stroke-dasharray") == "6 4"
    assert el.get("stroke-linecap") == "round"


def test_image_is_embedded_as_data_uri_with_filter() -> None:
    node = SceneNode(
        "img",
        NodeKind.IMAGE,
        ImagePayload("logo.png", filters=FilterSet(invert=True, blur=2)),
        width=20,
        height=10,
    )
    root = _svg(node, resources={"logo.png": _png_bytes()})
    el = _by_id(root, "img")
    assert el.tag == f"{{{_SVG_NS}}}image"
    assert el.get("href").startswith("data:image/png;base64,")
    assert el.get("preserveAspectRatio") == "none"
    flt = root.find("svg:defs/svg:filter", _NS)
    assert flt is not None
    assert el.get("filter") == f"url(#{flt.get('id')})"
    assert flt.find("svg:feComponentTransfer", _NS) is not None
    assert flt.find("svg:feGaussianBlur", _NS).get("stdDeviation") == "2"


@pytest.mark.parametrize("resources", [{}, {"bad.png": b"not an image"}])
def test_unresolvable_image_becomes_placeholder(resources) -> None:
    node = SceneNode("img", NodeKind.STICKER, ImagePayload("bad.png"), width=20, height=10)
    el = _by_id(_svg(node, resources=resources), "img")
    assert el.tag == f"{{{_SVG_NS}}}rect"
    assert el.get("fill") == "#CCCCCC"
    assert el.get("width") == "20"


def test_horizontal_text_escapes_characters() -> None:
    node = SceneNode(
        "t",
        NodeKind.TEXT,
        TextPayload("a<b & c", font=FontSpec(family="NoSuchFamily", size=10)),
        width=100,
        height=20,
    )
    g = _by_id(_svg(node), "t")
    assert g.get("font-family") == "NoSuchFamily"
    assert g.get("font-size") == "10"
    (text,) = g.findall("svg:text", _NS)
    assert text.text == "a<b & c"
    assert len(text.get("x").split()) == len("a<b & c")


def test_multiline_text_emits_one_element_per_line() -> None:
    node = SceneNode("t", NodeKind.TEXT, TextPayload("AB\nCD"), width=100, height=100)
    g = _by_id(_svg(node), "t")
    assert [t.text for t in g.findall("svg:text", _NS)] == ["AB", "CD"]


def test_text_on_path_places_each_glyph() -> None:
    path = SceneNode(
        "curve",
        NodeKind.PATH,
        PathPayload(anchors=(AnchorPoint(0, 50), AnchorPoint(100, 50))),
        visible=False,
    )
    text = SceneNode(
        "t",
        NodeKind.TEXT,
        TextPayload("A B", font=FontSpec(size=10.0), path_ref="curve"),
        width=100,
        height=100,
    )
    g = _by_id(_svg(path, text), "t")
    glyphs = g.findall("svg:text", _NS)
    assert [t.text for t in glyphs] == ["A", "B"]
    assert all(t.get("text-anchor") == "middle" for t in glyphs)
    assert all("rotate(0)" in t.get("transform") for t in glyphs)


def test_spray_brush_emits_circles() -> None:
    stroke = BrushStroke(
        "spray",
        points=(BrushPoint(0, 0), BrushPoint(10, 0)),
        spray_dots=((1.0, 2.0, 0.5), (3.0, 4.0, 0.25)),
    )
    node = SceneNode("s", NodeKind.PATH, PathPayload(brush=stroke, stroke=StrokeSpec("#123456")))
    g = _by_id(_svg(node), "s")
    circles = g.findall("svg:circle", _NS)
    assert [(c.get("cx"), c.get("cy"), c.get("r")) for c in circles] == [
        ("1", "2", "0.5"),
        ("3", "4", "0.25"),
    ]
    assert g.get("fill") == "#123456"


def test_output_is_deterministic_with_seeded_rng() -> None:
    payload = ShapePayload("rect", pattern=PatternSpec("noise", scale=4))
    scene = Scene(nodes=(_rect("r", payload=payload),))
    first = render_svg(scene, resolver=DictResourceResolver({}), rng=np.random.default_rng(3))
    second = render_svg(scene, resolver=DictResourceResolver({}), rng=np.random.default_rng(3))
    assert first == second
