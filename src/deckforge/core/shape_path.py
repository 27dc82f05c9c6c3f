# どこで: `src/deckforge/core/shape_path.py`。
# 何を: 基本図形（rect/ellipse/star/polygon）と線・パス node をアンカー点列（PathGeometry）へ変換する。
# なぜ: ブーリアン演算や SVG 出力へ「変換属性なしの素の座標」として渡すため。

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np

from deckforge.core.geometry import AnchorPoint, Point, anchor_coordinates, bounds
from deckforge.core.path_codec import PathGeometry, Subpath
from deckforge.core.scene import LinePayload, NodeKind, PathPayload, SceneNode, ShapePayload
from deckforge.core.transform import apply_point, node_matrix

# (4/3)(√2 − 1)
KAPPA = 4.0 * (math.sqrt(2.0) - 1.0) / 3.0


def rect_anchors(width: float, height: float, x: float = 0.0, y: float = 0.0) -> list[AnchorPoint]:
    """矩形の 4 アンカー（左上から時計回り）を返す。"""
    w = float(width)
    h = float(height)
    return [
        AnchorPoint(x, y),
        AnchorPoint(x + w, y),
        AnchorPoint(x + w, y + h),
        AnchorPoint(x, y + h),
    ]


def ellipse_anchors(
    width: float, height: float, x: float = 0.0, y: float = 0.0
) -> list[AnchorPoint]:
    """楕円を 4 本の 3 次ベジエで近似したアンカー列（上端から時計回り）を返す。"""
    rx = float(width) / 2.0
    ry = float(height) / 2.0
    cx = float(x) + rx
    cy = float(y) + ry
    kx = rx * KAPPA
    ky = ry * KAPPA
    return [
        AnchorPoint(cx, cy - ry, cp1=(cx - kx, cy - ry), cp2=(cx + kx, cy - ry)),
        AnchorPoint(cx + rx, cy, cp1=(cx + rx, cy - ky), cp2=(cx + rx, cy + ky)),
        AnchorPoint(cx, cy + ry, cp1=(cx + kx, cy + ry), cp2=(cx - kx, cy + ry)),
        AnchorPoint(cx - rx, cy, cp1=(cx - rx, cy + ky), cp2=(cx - rx, cy - ky)),
    ]


def star_anchors(
    width: float,
    height: float,
    x: float = 0.0,
    y: float = 0.0,
    *,
    points: int = 5,
    inner_ratio: float = 0.4,
) -> list[AnchorPoint]:
    """星形の 2N 頂点（上端の外側頂点から時計回り）を返す。"""
    n = int(points)
    if n < 2:
        raise ValueError(f"points は 2 以上である必要がある: got={points}")
    orx = float(width) / 2.0
    ory = float(height) / 2.0
    cx = float(x) + orx
    cy = float(y) + ory
    out: list[AnchorPoint] = []
    for i in range(n * 2):
        angle = i * math.pi / n - math.pi / 2.0
        k = 1.0 if i % 2 == 0 else float(inner_ratio)
        out.append(AnchorPoint(cx + orx * k * math.cos(angle), cy + ory * k * math.sin(angle)))
    return out


def polygon_anchors(
    width: float, height: float, x: float = 0.0, y: float = 0.0, *, sides: int = 6
) -> list[AnchorPoint]:
    """正多角形の N 頂点（上端から時計回り）を返す。"""
    n = int(sides)
    if n < 3:
        raise ValueError(f"sides は 3 以上である必要がある: got={sides}")
    rx = float(width) / 2.0
    ry = float(height) / 2.0
    cx = float(x) + rx
    cy = float(y) + ry
    return [
        AnchorPoint(
            cx + rx * math.cos(i * 2.0 * math.pi / n - math.pi / 2.0),
            cy + ry * math.sin(i * 2.0 * math.pi / n - math.pi / 2.0),
        )
        for i in range(n)
    ]


def shape_anchors(payload: ShapePayload, width: float, height: float) -> list[AnchorPoint]:
    """ShapePayload の局所座標（0..width, 0..height）アンカー列を返す。"""
    if payload.shape_type == "rect":
        return rect_anchors(width, height)
    if payload.shape_type == "circle":
        return ellipse_anchors(width, height)
    if payload.shape_type == "star":
        return star_anchors(
            width, height, points=payload.star_points, inner_ratio=payload.inner_ratio
        )
    return polygon_anchors(width, height, sides=payload.polygon_sides)


def line_anchors(payload: LinePayload) -> list[AnchorPoint]:
    """線 payload を始点 (0, 0) からの 2 アンカーにする。曲率があれば 2 次ベジエ。"""
    ex = float(payload.end_x)
    ey = float(payload.end_y)
    if payload.curvature == 0.0:
        return [AnchorPoint(0.0, 0.0), AnchorPoint(ex, ey)]
    control = (ex / 2.0, ey / 2.0 + float(payload.curvature))
    return [AnchorPoint(0.0, 0.0), AnchorPoint(ex, ey, cp1=control)]


def map_anchors(anchors: Sequence[AnchorPoint], m: np.ndarray) -> list[AnchorPoint]:
    """アンカーと制御点の全座標に行列 m を適用して返す。"""

    def _map(p: Point | None) -> Point | None:
        if p is None:
            return None
        return apply_point(m, p[0], p[1])

    out: list[AnchorPoint] = []
    for a in anchors:
        x, y = apply_point(m, a.x, a.y)
        out.append(AnchorPoint(x, y, _map(a.cp1), _map(a.cp2)))
    return out


def transform_anchors(
    anchors: Sequence[AnchorPoint],
    *,
    rotation: float = 0.0,
    scale_x: float = 1.0,
    scale_y: float = 1.0,
    x: float = 0.0,
    y: float = 0.0,
    center: Point | None = None,
) -> list[AnchorPoint]:
    """アンカー列を拡大縮小・回転（中心 c 回り）→ 平行移動 (x, y) して返す。

    Parameters
    ----------
    center : tuple[float, float] or None
        回転・拡縮の中心。None なら制御点込みの全座標の bbox 中心。

    Notes
    -----
    rotation=0, scale=(1, 1) のときは平行移動だけを行い、座標を丸め誤差なく保つ。
    """
    if not anchors:
        return []
    tx = float(x)
    ty = float(y)
    if float(rotation) == 0.0 and float(scale_x) == 1.0 and float(scale_y) == 1.0:
        if tx == 0.0 and ty == 0.0:
            return list(anchors)

        def _shift(p: Point | None) -> Point | None:
            return None if p is None else (p[0] + tx, p[1] + ty)

        return [AnchorPoint(a.x + tx, a.y + ty, _shift(a.cp1), _shift(a.cp2)) for a in anchors]

    if center is None:
        bb = bounds(anchor_coordinates(anchors))
        if bb is None:
            raise ValueError("中心を求めるアンカー座標がない")
        cx = (bb[0] + bb[2]) / 2.0
        cy = (bb[1] + bb[3]) / 2.0
    else:
        cx, cy = float(center[0]), float(center[1])

    r = math.radians(float(rotation))
    c = math.cos(r)
    s = math.sin(r)
    sx = float(scale_x)
    sy = float(scale_y)
    m = np.array(
        [
            [c * sx, -s * sy, 0.0],
            [s * sx, c * sy, 0.0],
            [0.0, 0.0, 1.0],
        ],
        dtype=np.float64,
    )
    m[0, 2] = cx + tx - (m[0, 0] * cx + m[0, 1] * cy)
    m[1, 2] = cy + ty - (m[1, 0] * cx + m[1, 1] * cy)
    return map_anchors(anchors, m)


def node_local_subpaths(node: SceneNode) -> tuple[Subpath, ...] | None:
    """shape/path/line node の局所座標サブパス列を返す（他の kind は None）。"""
    payload = node.payload
    if node.kind is NodeKind.SHAPE and isinstance(payload, ShapePayload):
        return (Subpath(tuple(shape_anchors(payload, node.width, node.height)), True),)
    if node.kind is NodeKind.PATH and isinstance(payload, PathPayload):
        return payload.all_subpaths()
    if node.kind is NodeKind.LINE and isinstance(payload, LinePayload):
        return (Subpath(tuple(line_anchors(payload)), False),)
    return None


def node_to_path(node: SceneNode, parent_matrix: np.ndarray | None = None) -> PathGeometry | None:
    """node をキャンバス座標の PathGeometry に変換する（未対応 kind は None）。

    Parameters
    ----------
    parent_matrix : np.ndarray or None
        親 group の累積行列。ルート node なら None。
    """
    subpaths = node_local_subpaths(node)
    if subpaths is None:
        return None
    m = node_matrix(node)
    if parent_matrix is not None:
        m = parent_matrix @ m
    return PathGeometry(
        tuple(Subpath(tuple(map_anchors(sp.anchors, m)), sp.closed) for sp in subpaths)
    )


__all__ = [
    "KAPPA",
    "ellipse_anchors",
    "line_anchors",
    "map_anchors",
    "node_local_subpaths",
    "node_to_path",
    "polygon_anchors",
    "rect_anchors",
    "shape_anchors",
    "star_anchors",
    "transform_anchors",
]
