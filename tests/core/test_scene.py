from __future__ import annotations

import pytest

from deckforge.core.geometry import AnchorPoint
from deckforge.core.path_codec import Subpath
from deckforge.core.scene import (
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
    WarpSpec,
    find_node,
    iter_nodes,
)


def _rect(node_id: str, **kw) -> SceneNode:
    return SceneNode(node_id, NodeKind.SHAPE, ShapePayload("rect"), **{"width": 10, "height": 10, **kw})


def test_kind_accepts_string_and_checks_payload_type() -> None:
    node = SceneNode("s", "sticker", ImagePayload("star.png"), width=5, height=5)
    assert node.kind is NodeKind.STICKER
    with pytest.raises(TypeError):
        SceneNode("t", NodeKind.TEXT, ShapePayload())
    with pytest.raises(ValueError):
        SceneNode("x", "hologram", ShapePayload())


@pytest.mark.parametrize(
    "kw",
    [
        {"opacity": 1.5},
        {"width": -1.0},
        {"x": float("inf")},
        {"blend_mode": "dissolve"},
    ],
)
def test_invalid_node_fields_are_rejected(kw: dict) -> None:
    with pytest.raises(ValueError):
        _rect("bad", **kw)


def test_kind_specific_validation() -> None:
    with pytest.raises(ValueError):
        ShapePayload("triangle")
    with pytest.raises(ValueError):
        ShapePayload("polygon", polygon_sides=2)
    with pytest.raises(ValueError):
        TextPayload("x", align="justify")
    with pytest.raises(ValueError):
        WarpSpec("twist")
    with pytest.raises(ValueError):
        BrushStroke(brush_type="airbrush")
    with pytest.raises(ValueError):
        FontSpec(size=0)


def test_text_transform() -> None:
    assert TextPayload("hello world", text_transform="capitalize").display_text() == "Hello World"
    assert TextPayload("MiXeD", text_transform="lowercase").display_text() == "mixed"
    assert TextPayload("as is").display_text() == "as is"


def test_path_payload_joins_primary_and_extra_subpaths() -> None:
    extra = Subpath((AnchorPoint(5, 5), AnchorPoint(6, 5), AnchorPoint(6, 6)), True)
    payload = PathPayload(
        anchors=(AnchorPoint(0, 0), AnchorPoint(1, 0)), closed=False, subpaths=(extra,)
    )
    subpaths = payload.all_subpaths()
    assert len(subpaths) == 2
    assert subpaths[1] is extra
    assert PathPayload().all_subpaths() == ()


def test_tree_traversal_is_depth_first_in_paint_order() -> None:
    inner = SceneNode("inner", NodeKind.GROUP, GroupPayload((_rect("c"),)))
    outer = SceneNode("outer", NodeKind.GROUP, GroupPayload((_rect("b"), inner)))
    nodes = (_rect("a"), outer, _rect("d"))
    assert [n.id for n in iter_nodes(nodes)] == ["a", "outer", "b", "inner", "c", "d"]
    assert find_node(nodes, "c") is not None
    assert find_node(nodes, "zzz") is None
    assert _rect("leaf").children == ()


def test_scene_defaults_to_deck_canvas() -> None:
    scene = Scene()
    assert (scene.width, scene.height) == (96.0, 294.0)
    assert scene.include_background is True
