"""
どこで: `src/deckforge/core/renderer.py`。
何を: Scene を深さ優先に辿り、node ごとの描画状態（行列・累積不透明度・合成モード）を
      backend へ渡すトラバーサルと、backend が満たすプロトコルを定義する。
なぜ: raster と SVG が同じ描画順・同じ変換規則で出力されるよう、巡回を 1 箇所に集約するため。
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import numpy as np

from deckforge.core.brush import brush_geometry
from deckforge.core.filters import FilterOp, build_filter_chain
from deckforge.core.fonts import FontProvider
from deckforge.core.geometry import BBox, flatten_anchors
from deckforge.core.path_codec import PathGeometry, Subpath
from deckforge.core.patterns import PatternInstructions, generate_pattern
from deckforge.core.resources import (
    ResolvedResources,
    ResourceResolver,
    collect_resource_refs,
    preload_resources,
)
from deckforge.core.scene import (
    IMAGE_KINDS,
    ImagePayload,
    LinePayload,
    NodeKind,
    PathPayload,
    Scene,
    SceneNode,
    ShapePayload,
    TextPayload,
)
from deckforge.core.shape_path import node_local_subpaths
from deckforge.core.style import (
    BLACK,
    ColorRGBA,
    FillSpec,
    LinearGradientFill,
    PatternFill,
    RadialGradientFill,
    SolidFill,
    StrokeSpec,
    parse_color,
)
from deckforge.core.text_layout import MIN_PATH_SAMPLES, TextRun, layout_text
from deckforge.core.transform import apply, identity, is_degenerate, node_matrix

logger = logging.getLogger(__name__)

PLACEHOLDER_COLOR: ColorRGBA = parse_color("#cccccc")


@dataclass(frozen=True, slots=True)
class DrawState:
    """1 node 描画時の状態。

    Attributes
    ----------
    matrix : np.ndarray
        node 局所 → キャンバス座標の累積行列。
    local_matrix : np.ndarray
        node 局所 → 親座標の行列（入れ子出力をする backend 用）。
    opacity : float
        祖先を含めた累積不透明度。
    blend_mode : str
        有効な合成モード。子は親の指定を継承し、明示した子は上書きする。
    node : SceneNode
        描画中の node。
    """

    matrix: np.ndarray
    local_matrix: np.ndarray
    opacity: float
    blend_mode: str
    node: SceneNode


@dataclass(frozen=True, slots=True)
class Paint:
    """塗りの解決結果。box は塗りの基準矩形（node 局所座標）。"""

    fill: FillSpec
    box: BBox
    pattern: PatternInstructions | None = None


def resolve_paint(
    fill: FillSpec | None, box: BBox, rng: np.random.Generator | None = None
) -> Paint | None:
    """FillSpec を backend が直接扱える Paint にする。

    stops が空のグラデーションは base_color の単色にする。パターンはここで命令列を生成する。
    """
    if fill is None:
        return None
    if isinstance(fill, (LinearGradientFill, RadialGradientFill)) and not fill.stops:
        return Paint(SolidFill(fill.base_color), box)
    if isinstance(fill, PatternFill):
        w = max(box[2] - box[0], 1e-6)
        h = max(box[3] - box[1], 1e-6)
        return Paint(fill, box, generate_pattern(fill.pattern, w, h, rng))
    return Paint(fill, box)


def linear_gradient_points(
    fill: LinearGradientFill, box: BBox
) -> tuple[tuple[float, float], tuple[float, float]]:
    """box 中心を通り angle 方向へ伸びるグラデーション軸の始点・終点を返す。"""
    x0, y0, x1, y1 = box
    cx = (x0 + x1) / 2.0
    cy = (y0 + y1) / 2.0
    rad = math.radians(fill.angle)
    dx = math.cos(rad) * (x1 - x0) / 2.0
    dy = math.sin(rad) * (y1 - y0) / 2.0
    return (cx - dx, cy - dy), (cx + dx, cy + dy)


def radial_gradient_geometry(box: BBox) -> tuple[float, float, float]:
    """放射グラデーションの (cx, cy, r) を返す。r は box の長辺の半分。"""
    x0, y0, x1, y1 = box
    r = max(x1 - x0, y1 - y0) / 2.0
    return (x0 + x1) / 2.0, (y0 + y1) / 2.0, max(r, 1e-6)


class RenderBackend(Protocol):
    """描画先のプロトコル。座標はすべて node 局所座標で渡す。"""

    def begin(self, scene: Scene, background: Paint | None) -> None: ...

    def enter_group(self, state: DrawState) -> None: ...

    def exit_group(self, state: DrawState) -> None: ...

    def draw_path(
        self, state: DrawState, path: PathGeometry, paint: Paint | None, stroke: StrokeSpec | None
    ) -> None: ...

    def draw_text(
        self, state: DrawState, run: TextRun, paint: Paint | None, stroke: StrokeSpec | None
    ) -> None: ...

    def draw_image(
        self,
        state: DrawState,
        ref: str,
        data: bytes | None,
        width: float,
        height: float,
        chain: tuple[FilterOp, ...],
    ) -> None: ...

    def draw_dots(
        self, state: DrawState, dots: Sequence[tuple[float, float, float]], color: ColorRGBA
    ) -> None: ...

    def finish(self) -> Any: ...


def _node_box(node: SceneNode, path: PathGeometry | None = None) -> BBox:
    if node.width > 0.0 and node.height > 0.0:
        return (0.0, 0.0, node.width, node.height)
    if path is not None:
        b = path.bounds()
        if b is not None:
            return b
    return (0.0, 0.0, max(node.width, 1.0), max(node.height, 1.0))


def _drawable(subpaths: Sequence[Subpath]) -> PathGeometry:
    return PathGeometry(tuple(sp for sp in subpaths if len(sp.anchors) >= 2))


def _payload_of(node: SceneNode, expected: type) -> Any:
    payload = node.payload
    if not isinstance(payload, expected):
        raise TypeError(
            f"node {node.id!r} の payload は {expected.__name__} である必要がある: got={type(payload).__name__}"
        )
    return payload


class SceneRenderer:
    """Scene を backend へ描く。

    Parameters
    ----------
    backend : RenderBackend
        描画先。`render` ごとに新しいものを渡す。
    resources : ResolvedResources or None
        先読み済みリソース。None なら `resolver` で先読みする。
    resolver : ResourceResolver or None
        画像参照の解決器。resources と両方 None なら画像はすべてプレースホルダ。
    fonts : FontProvider or None
        None なら `render` ごとに新しい FontProvider を作る。
    text_samples : int
        パス沿いテキストのサンプル数（200 未満は 200）。
    rng : numpy.random.Generator or None
        パターン・スプレーの乱数源。None なら seed なし。
    """

    def __init__(
        self,
        backend: RenderBackend,
        *,
        resources: ResolvedResources | None = None,
        resolver: ResourceResolver | None = None,
        fonts: FontProvider | None = None,
        text_samples: int = MIN_PATH_SAMPLES,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.backend = backend
        self._resources = resources
        self._resolver = resolver
        self._fonts = fonts
        self._text_samples = max(MIN_PATH_SAMPLES, int(text_samples))
        self._rng = rng

    def render(self, scene: Scene) -> Any:
        """scene を描き、backend.finish() の戻り値を返す。"""
        resources = self._resources
        if resources is None:
            if self._resolver is not None:
                resources = preload_resources(collect_resource_refs(scene), self._resolver)
            else:
                resources = ResolvedResources()
        ctx = _RenderContext(
            backend=self.backend,
            resources=resources,
            fonts=self._fonts if self._fonts is not None else FontProvider(),
            text_samples=self._text_samples,
            rng=self._rng if self._rng is not None else np.random.default_rng(),
            path_index=_index_paths(scene.nodes),
        )

        background = None
        if scene.include_background:
            background = resolve_paint(
                scene.background, (0.0, 0.0, scene.width, scene.height), ctx.rng
            )
        self.backend.begin(scene, background)
        root = identity()
        for node in scene.nodes:
            ctx.visit(node, root, 1.0, "normal")
        return self.backend.finish()


def _index_paths(
    nodes: Sequence[SceneNode], parent: np.ndarray | None = None
) -> dict[str, tuple[SceneNode, np.ndarray]]:
    """path node の id → (node, 累積行列)。非表示の node も含める。"""
    base = identity() if parent is None else parent
    out: dict[str, tuple[SceneNode, np.ndarray]] = {}
    for node in nodes:
        m = base @ node_matrix(node)
        if node.kind is NodeKind.PATH:
            out[node.id] = (node, m)
        elif node.kind is NodeKind.GROUP:
            out.update(_index_paths(node.children, m))
    return out


@dataclass(slots=True)
class _RenderContext:
    backend: RenderBackend
    resources: ResolvedResources
    fonts: FontProvider
    text_samples: int
    rng: np.random.Generator
    path_index: dict[str, tuple[SceneNode, np.ndarray]]

    def visit(self, node: SceneNode, parent: np.ndarray, opacity: float, blend: str) -> None:
        if not node.visible:
            return
        local = node_matrix(node)
        state = DrawState(
            matrix=parent @ local,
            local_matrix=local,
            opacity=opacity * node.opacity,
            blend_mode=node.blend_mode if node.blend_mode is not None else blend,
            node=node,
        )
        if is_degenerate(state.matrix):
            logger.debug("変換行列が退化しているため描画しません: node=%s", node.id)
            return
        kind = node.kind
        if kind is NodeKind.GROUP:
            self.backend.enter_group(state)
            for child in node.children:
                self.visit(child, state.matrix, state.opacity, state.blend_mode)
            self.backend.exit_group(state)
        elif kind is NodeKind.SHAPE:
            self._draw_shape(state)
        elif kind is NodeKind.PATH:
            self._draw_path(state)
        elif kind is NodeKind.LINE:
            self._draw_line(state)
        elif kind is NodeKind.TEXT:
            self._draw_text(state)
        elif kind in IMAGE_KINDS:
            self._draw_image(state)

    def _draw_shape(self, state: DrawState) -> None:
        payload = _payload_of(state.node, ShapePayload)
        subpaths = node_local_subpaths(state.node) or ()
        path = _drawable(subpaths)
        if path.is_empty:
            return
        box = _node_box(state.node, path)
        fill = PatternFill(payload.pattern) if payload.pattern is not None else payload.fill
        self.backend.draw_path(state, path, resolve_paint(fill, box, self.rng), payload.stroke)

    def _draw_line(self, state: DrawState) -> None:
        payload = _payload_of(state.node, LinePayload)
        path = _drawable(node_local_subpaths(state.node) or ())
        if path.is_empty or payload.stroke.width <= 0.0:
            return
        self.backend.draw_path(state, path, None, payload.stroke)

    def _draw_path(self, state: DrawState) -> None:
        payload = _payload_of(state.node, PathPayload)
        if payload.brush is not None:
            self._draw_brush(state, payload)
            return
        path = _drawable(payload.all_subpaths())
        if path.is_empty:
            return
        box = _node_box(state.node, path)
        self.backend.draw_path(state, path, resolve_paint(payload.fill, box, self.rng), payload.stroke)

    def _draw_brush(self, state: DrawState, payload: PathPayload) -> None:
        if payload.brush is None:
            return
        geom = brush_geometry(payload.brush, self.rng)
        if geom is None:
            return
        color = payload.stroke.color if payload.stroke is not None else BLACK
        if geom.opacity_factor != 1.0:
            state = DrawState(
                state.matrix,
                state.local_matrix,
                state.opacity * geom.opacity_factor,
                state.blend_mode,
                state.node,
            )
        if geom.mode == "dots":
            if geom.dots:
                self.backend.draw_dots(state, geom.dots, color)
            return
        if len(geom.anchors) < 2:
            return
        if geom.mode == "fill":
            path = PathGeometry.from_anchors(geom.anchors, True)
            box = _node_box(state.node, path)
            self.backend.draw_path(state, path, Paint(SolidFill(color), box), None)
            return
        path = PathGeometry.from_anchors(geom.anchors, False)
        self.backend.draw_path(state, path, None, StrokeSpec(color=color, width=geom.width, cap="round"))

    def _path_polyline(self, state: DrawState, ref: str) -> np.ndarray | None:
        """参照先 path の最初の描画可能サブパスを、この node の局所座標で折れ線化する。"""
        hit = self.path_index.get(ref)
        if hit is None:
            logger.warning("path_ref が見つからないため通常配置で描画します: node=%s ref=%s", state.node.id, ref)
            return None
        path_node, path_world = hit
        payload = _payload_of(path_node, PathPayload)
        for sp in payload.all_subpaths():
            if len(sp.anchors) >= 2:
                local_poly = flatten_anchors(sp.anchors, sp.closed, 32)
                to_text = np.linalg.inv(state.matrix) @ path_world
                return apply(to_text, local_poly)
        logger.warning("path_ref に描画可能なサブパスがありません: node=%s ref=%s", state.node.id, ref)
        return None

    def _draw_text(self, state: DrawState) -> None:
        payload = _payload_of(state.node, TextPayload)
        if not payload.text:
            return
        face = self.fonts.face(payload.font)
        polyline = None
        if payload.path_ref:
            polyline = self._path_polyline(state, payload.path_ref)
        run = layout_text(
            payload,
            face,
            state.node.width,
            state.node.height,
            path_polyline=polyline,
            samples=self.text_samples,
        )
        if not run.placements:
            return
        box = _node_box(state.node)
        self.backend.draw_text(state, run, resolve_paint(payload.fill, box, self.rng), payload.stroke)

    def _draw_image(self, state: DrawState) -> None:
        payload = _payload_of(state.node, ImagePayload)
        node = state.node
        if node.width <= 0.0 or node.height <= 0.0:
            return
        data = self.resources.get(payload.src) if payload.src else None
        chain = build_filter_chain(payload.filters)
        self.backend.draw_image(state, payload.src, data, node.width, node.height, chain)


__all__ = [
    "DrawState",
    "Paint",
    "PLACEHOLDER_COLOR",
    "RenderBackend",
    "SceneRenderer",
    "linear_gradient_points",
    "radial_gradient_geometry",
    "resolve_paint",
]
