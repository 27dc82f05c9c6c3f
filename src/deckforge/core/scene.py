"""
どこで: `src/deckforge/core/scene.py`。
何を: Scene と Scene Node（kind ごとの payload を持つ tagged union）を定義する。
なぜ: kind 固有の不変条件を構築時に検証し、renderer を読み取り専用の木構造だけに依存させるため。
"""

from __future__ import annotations

import math
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeAlias

from deckforge.core.filters import FilterSet
from deckforge.core.geometry import AnchorPoint
from deckforge.core.path_codec import Subpath
from deckforge.core.style import (
    WHITE,
    FillSpec,
    PatternSpec,
    SolidFill,
    StrokeSpec,
)


class NodeKind(str, Enum):
    SHAPE = "shape"
    TEXT = "text"
    IMAGE = "image"
    LINE = "line"
    STICKER = "sticker"
    TEXTURE = "texture"
    PATH = "path"
    GROUP = "group"


IMAGE_KINDS = frozenset({NodeKind.IMAGE, NodeKind.STICKER, NodeKind.TEXTURE})

BLEND_MODES = (
    "normal",
    "multiply",
    "screen",
    "overlay",
    "darken",
    "lighten",
    "color-dodge",
    "color-burn",
    "hard-light",
    "soft-light",
    "difference",
    "exclusion",
    "hue",
    "saturation",
    "color",
    "luminosity",
)

SHAPE_TYPES = ("rect", "circle", "star", "polygon")

WARP_PRESETS = (
    "arc",
    "arc-up",
    "arc-down",
    "bridge",
    "valley",
    "flag",
    "wave",
    "bulge",
    "fish-eye",
    "rise",
    "inflate",
)

BRUSH_TYPES = ("pencil", "pressure", "calligraphy", "marker", "spray")


@dataclass(frozen=True, slots=True)
class FontSpec:
    """フォント指定。family は font_resolver の部分一致検索に渡す。"""

    family: str = "sans-serif"
    size: float = 20.0
    weight: str = "normal"
    style: str = "normal"

    def __post_init__(self) -> None:
        size = float(self.size)
        if not size > 0.0:
            raise ValueError(f"font size は正の値である必要がある: got={self.size!r}")
        object.__setattr__(self, "size", size)


@dataclass(frozen=True, slots=True)
class WarpSpec:
    """テキストのワーププリセット指定。

    intensity は 0..100。`arc` は angle [deg]（10..350 にクランプ）と direction を使う。
    """

    preset: str
    intensity: float = 50.0
    angle: float = 180.0
    direction: str = "convex"

    def __post_init__(self) -> None:
        if self.preset not in WARP_PRESETS:
            raise ValueError(f"未対応の warp preset: {self.preset!r}")
        if self.direction not in ("convex", "concave"):
            raise ValueError(f"warp direction は convex/concave である必要がある: {self.direction!r}")
        object.__setattr__(self, "intensity", float(self.intensity))
        object.__setattr__(self, "angle", float(self.angle))


@dataclass(frozen=True, slots=True)
class BrushPoint:
    x: float
    y: float
    pressure: float = 0.5


@dataclass(frozen=True, slots=True)
class BrushStroke:
    """フリーハンドストロークのメタデータ（入力点列は node 局所座標）。

    Notes
    -----
    spray の `spray_dots` は `(x, y, r)` の確定済みドット列。空なら描画時に生成する。
    """

    brush_type: str = "pencil"
    points: tuple[BrushPoint, ...] = ()
    size: float = 4.0
    smoothing: float = 50.0
    pressure_sensitive: bool = True
    nib_angle: float = 45.0
    spray_dots: tuple[tuple[float, float, float], ...] = ()

    def __post_init__(self) -> None:
        if self.brush_type not in BRUSH_TYPES:
            raise ValueError(f"未対応の brush type: {self.brush_type!r}")
        size = float(self.size)
        if not size > 0.0:
            raise ValueError(f"brush size は正の値である必要がある: got={self.size!r}")
        object.__setattr__(self, "size", size)
        object.__setattr__(self, "points", tuple(self.points))
        object.__setattr__(self, "spray_dots", tuple(tuple(map(float, d)) for d in self.spray_dots))


@dataclass(frozen=True, slots=True)
class ShapePayload:
    shape_type: str = "rect"
    fill: FillSpec | None = field(default_factory=SolidFill)
    stroke: StrokeSpec | None = None
    pattern: PatternSpec | None = None
    polygon_sides: int = 6
    star_points: int = 5
    inner_ratio: float = 0.4

    def __post_init__(self) -> None:
        if self.shape_type not in SHAPE_TYPES:
            raise ValueError(f"未対応の shape type: {self.shape_type!r}")
        if int(self.polygon_sides) < 3:
            raise ValueError(f"polygon_sides は 3 以上である必要がある: got={self.polygon_sides}")
        if int(self.star_points) < 2:
            raise ValueError(f"star_points は 2 以上である必要がある: got={self.star_points}")
        if not 0.0 < float(self.inner_ratio) <= 1.0:
            raise ValueError(f"inner_ratio は (0, 1] である必要がある: got={self.inner_ratio}")
        object.__setattr__(self, "polygon_sides", int(self.polygon_sides))
        object.__setattr__(self, "star_points", int(self.star_points))
        object.__setattr__(self, "inner_ratio", float(self.inner_ratio))


@dataclass(frozen=True, slots=True)
class TextPayload:
    text: str
    font: FontSpec = field(default_factory=FontSpec)
    fill: FillSpec = field(default_factory=SolidFill)
    align: str = "left"
    letter_spacing: float = 0.0
    line_height: float = 1.2
    text_transform: str = "none"
    warp: WarpSpec | None = None
    path_ref: str | None = None
    stroke: StrokeSpec | None = None

    def __post_init__(self) -> None:
        if self.align not in ("left", "center", "right"):
            raise ValueError(f"未対応の align: {self.align!r}")
        if self.text_transform not in ("none", "uppercase", "lowercase", "capitalize"):
            raise ValueError(f"未対応の text_transform: {self.text_transform!r}")
        object.__setattr__(self, "text", str(self.text))
        object.__setattr__(self, "letter_spacing", float(self.letter_spacing))
        object.__setattr__(self, "line_height", float(self.line_height))

    def display_text(self) -> str:
        """text_transform 適用後の文字列を返す。"""
        if self.text_transform == "uppercase":
            return self.text.upper()
        if self.text_transform == "lowercase":
            return self.text.lower()
        if self.text_transform == "capitalize":
            return " ".join(w[:1].upper() + w[1:] for w in self.text.split(" "))
        return self.text


@dataclass(frozen=True, slots=True)
class ImagePayload:
    src: str
    filters: FilterSet | None = None


@dataclass(frozen=True, slots=True)
class LinePayload:
    end_x: float = 100.0
    end_y: float = 0.0
    curvature: float = 0.0
    stroke: StrokeSpec = field(default_factory=lambda: StrokeSpec(width=2.0))


@dataclass(frozen=True, slots=True)
class PathPayload:
    anchors: tuple[AnchorPoint, ...] = ()
    closed: bool = False
    fill: FillSpec | None = None
    stroke: StrokeSpec | None = field(default_factory=StrokeSpec)
    brush: BrushStroke | None = None
    subpaths: tuple[Subpath, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "anchors", tuple(self.anchors))
        object.__setattr__(self, "closed", bool(self.closed))
        object.__setattr__(self, "subpaths", tuple(self.subpaths))

    def all_subpaths(self) -> tuple[Subpath, ...]:
        """主アンカー列と追加サブパスを 1 つの列で返す。"""
        head = (Subpath(self.anchors, self.closed),) if self.anchors else ()
        return head + self.subpaths


@dataclass(frozen=True, slots=True)
class GroupPayload:
    children: tuple[SceneNode, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "children", tuple(self.children))


NodePayload: TypeAlias = (
    ShapePayload | TextPayload | ImagePayload | LinePayload | PathPayload | GroupPayload
)

_PAYLOAD_BY_KIND: dict[NodeKind, type] = {
    NodeKind.SHAPE: ShapePayload,
    NodeKind.TEXT: TextPayload,
    NodeKind.IMAGE: ImagePayload,
    NodeKind.STICKER: ImagePayload,
    NodeKind.TEXTURE: ImagePayload,
    NodeKind.LINE: LinePayload,
    NodeKind.PATH: PathPayload,
    NodeKind.GROUP: GroupPayload,
}


@dataclass(frozen=True, slots=True)
class SceneNode:
    """描画単位。kind に対応する payload 型を構築時に検証する。

    Parameters
    ----------
    id : str
        一意な識別子。
    kind : NodeKind or str
        ノード種別。
    payload : NodePayload
        kind 固有のデータ。
    x, y, width, height : float
        親座標系での位置と、スケール前のサイズ。
    rotation : float
        回転角 [deg]。
    scale_x, scale_y : float
        軸ごとのスケール。
    opacity : float
        0..1 の不透明度。
    blend_mode : str or None
        合成モード。None / "normal" は通常合成。
    visible, locked : bool
        表示フラグとロックフラグ（ロックは描画に影響しない）。
    """

    id: str
    kind: NodeKind
    payload: NodePayload
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    rotation: float = 0.0
    scale_x: float = 1.0
    scale_y: float = 1.0
    opacity: float = 1.0
    blend_mode: str | None = None
    visible: bool = True
    locked: bool = False

    def __post_init__(self) -> None:
        kind = NodeKind(self.kind)
        object.__setattr__(self, "kind", kind)
        expected = _PAYLOAD_BY_KIND[kind]
        if not isinstance(self.payload, expected):
            raise TypeError(
                f"{kind.value} node の payload は {expected.__name__} である必要がある"
                f": got={type(self.payload).__name__}"
            )
        for name in ("x", "y", "width", "height", "rotation", "scale_x", "scale_y", "opacity"):
            v = float(getattr(self, name))
            if not math.isfinite(v):
                raise ValueError(f"{name} は有限値である必要がある: got={v!r}")
            object.__setattr__(self, name, v)
        if self.width < 0.0 or self.height < 0.0:
            raise ValueError(f"width/height は 0 以上である必要がある: got=({self.width}, {self.height})")
        if not 0.0 <= self.opacity <= 1.0:
            raise ValueError(f"opacity は 0..1 である必要がある: got={self.opacity}")
        if self.blend_mode is not None and self.blend_mode not in BLEND_MODES:
            raise ValueError(f"未対応の blend mode: {self.blend_mode!r}")

    @property
    def children(self) -> tuple[SceneNode, ...]:
        if isinstance(self.payload, GroupPayload):
            return self.payload.children
        return ()


@dataclass(frozen=True, slots=True)
class Scene:
    """1 回の描画入力。キャンバス寸法の妥当性は export 側で検証する。"""

    nodes: tuple[SceneNode, ...] = ()
    width: float = 96.0
    height: float = 294.0
    background: FillSpec = field(default_factory=lambda: SolidFill(WHITE))
    include_background: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "nodes", tuple(self.nodes))
        object.__setattr__(self, "width", float(self.width))
        object.__setattr__(self, "height", float(self.height))


def iter_nodes(nodes: Sequence[SceneNode]) -> Iterator[SceneNode]:
    """深さ優先・描画順でノードを列挙する（group 自身を含む）。"""
    for node in nodes:
        yield node
        if node.kind is NodeKind.GROUP:
            yield from iter_nodes(node.children)


def find_node(nodes: Sequence[SceneNode], node_id: str) -> SceneNode | None:
    for node in iter_nodes(nodes):
        if node.id == node_id:
            return node
    return None


__all__ = [
    "BLEND_MODES",
    "BRUSH_TYPES",
    "BrushPoint",
    "BrushStroke",
    "FontSpec",
    "GroupPayload",
    "IMAGE_KINDS",
    "ImagePayload",
    "LinePayload",
    "NodeKind",
    "NodePayload",
    "PathPayload",
    "SHAPE_TYPES",
    "Scene",
    "SceneNode",
    "ShapePayload",
    "TextPayload",
    "WARP_PRESETS",
    "WarpSpec",
    "find_node",
    "iter_nodes",
]
