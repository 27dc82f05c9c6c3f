"""
どこで: リポジトリ直下 `main.py`。
何を: API を用いてデッキ 1 枚分の Scene を組み立て、PNG/SVG/PDF に書き出す。
なぜ: 動作確認用の最小エントリポイントとして利用するため。
"""

import sys

sys.path.append("src")

import logging

from deckforge.api import Export, boolean_nodes
from deckforge.core.geometry import AnchorPoint
from deckforge.core.scene import (
    BrushPoint,
    BrushStroke,
    FontSpec,
    GroupPayload,
    LinePayload,
    NodeKind,
    PathPayload,
    Scene,
    SceneNode,
    ShapePayload,
    TextPayload,
    WarpSpec,
)
from deckforge.core.style import (
    GradientStop,
    LinearGradientFill,
    PatternSpec,
    SolidFill,
    StrokeSpec,
)

DECK_WIDTH = 96
DECK_HEIGHT = 294


def build_scene() -> Scene:
    background = LinearGradientFill(
        (GradientStop(0.0, "#1b1f3b"), GradientStop(1.0, "#ff6f61")), angle=90
    )
    checker = SceneNode(
        "checker",
        NodeKind.SHAPE,
        ShapePayload("rect", pattern=PatternSpec("checkerboard", "#ccff00", "#000000", scale=8)),
        x=8,
        y=210,
        width=80,
        height=48,
        opacity=0.8,
        blend_mode="multiply",
    )
    star = SceneNode(
        "star",
        NodeKind.SHAPE,
        ShapePayload("star", fill=SolidFill("#ffd400"), stroke=StrokeSpec("#000000", width=1.5)),
        x=18,
        y=40,
        width=60,
        height=60,
        rotation=12,
    )
    ring = SceneNode("ring", NodeKind.SHAPE, ShapePayload("circle"), x=30, y=52, width=36, height=36)
    badge = boolean_nodes([star, ring], "subtract", new_id="badge")

    curve = SceneNode(
        "curve",
        NodeKind.PATH,
        PathPayload(anchors=(AnchorPoint(8, 150), AnchorPoint(88, 150, cp1=(48, 110)))),
        visible=False,
    )
    title = SceneNode(
        "title",
        NodeKind.TEXT,
        TextPayload("DECKFORGE", font=FontSpec(size=11), fill=SolidFill("#ffffff"), align="center", path_ref="curve"),
        width=DECK_WIDTH,
        height=DECK_HEIGHT,
    )
    tagline = SceneNode(
        "tagline",
        NodeKind.TEXT,
        TextPayload("fingerboard\ngraphics", font=FontSpec(size=8), warp=WarpSpec("arc-up", intensity=40), align="center"),
        x=8,
        y=170,
        width=80,
        height=30,
    )
    scribble = SceneNode(
        "scribble",
        NodeKind.PATH,
        PathPayload(
            stroke=StrokeSpec("#00c2ff"),
            brush=BrushStroke(
                "calligraphy",
                points=tuple(BrushPoint(10 + i * 8, 120 + (i % 2) * 10, 0.3 + i * 0.06) for i in range(10)),
                size=5,
            ),
        ),
    )
    rail = SceneNode(
        "rail",
        NodeKind.LINE,
        LinePayload(end_x=80, curvature=6, stroke=StrokeSpec("#ffffff", width=1, dash="dashed")),
        x=8,
        y=270,
    )
    nodes = [checker, curve, title, tagline, scribble, rail]
    if badge is not None:
        nodes.insert(1, badge)
    group = SceneNode("deck", NodeKind.GROUP, GroupPayload(tuple(nodes)))
    return Scene((group,), width=DECK_WIDTH, height=DECK_HEIGHT, background=background)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    scene = build_scene()
    for fmt in ("png", "svg", "pdf"):
        Export(scene, fmt, f"data/output/{fmt}/main.{fmt}")
