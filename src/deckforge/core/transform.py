# どこで: `src/deckforge/core/transform.py`。
# 何を: 2D アフィン行列（3x3, numpy）と、Scene Node の局所→親座標変換を提供する。
# なぜ: renderer と shape_path が同じ変換規約（bbox 中心回り / group は原点回り）を共有するため。

from __future__ import annotations

import math
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from deckforge.core.scene import SceneNode


def identity() -> np.ndarray:
    return np.eye(3, dtype=np.float64)


def translate(tx: float, ty: float) -> np.ndarray:
    m = identity()
    m[0, 2] = float(tx)
    m[1, 2] = float(ty)
    return m


def scale(sx: float, sy: float | None = None) -> np.ndarray:
    m = identity()
    m[0, 0] = float(sx)
    m[1, 1] = float(sx if sy is None else sy)
    return m


def rotate_deg(deg: float) -> np.ndarray:
    """時計回り（y 軸下向き座標系）に deg 度回転する行列を返す。"""
    r = math.radians(float(deg))
    c = math.cos(r)
    s = math.sin(r)
    m = identity()
    m[0, 0] = c
    m[0, 1] = -s
    m[1, 0] = s
    m[1, 1] = c
    return m


def compose(*mats: np.ndarray) -> np.ndarray:
    """行列を左から順に掛けた積を返す（右端が最初に適用される）。"""
    out = identity()
    for m in mats:
        out = out @ m
    return out


def apply(m: np.ndarray, points: np.ndarray) -> np.ndarray:
    """shape (N, 2) の点群に行列を適用して返す。"""
    xy = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    return xy @ m[:2, :2].T + m[:2, 2]


def apply_point(m: np.ndarray, x: float, y: float) -> tuple[float, float]:
    return (
        float(m[0, 0] * x + m[0, 1] * y + m[0, 2]),
        float(m[1, 0] * x + m[1, 1] * y + m[1, 2]),
    )


def to_svg_matrix(m: np.ndarray) -> tuple[float, float, float, float, float, float]:
    """SVG `matrix(a b c d e f)` の 6 要素を返す。"""
    return (
        float(m[0, 0]),
        float(m[1, 0]),
        float(m[0, 1]),
        float(m[1, 1]),
        float(m[0, 2]),
        float(m[1, 2]),
    )


def object_matrix(
    *,
    x: float,
    y: float,
    width: float,
    height: float,
    rotation: float,
    scale_x: float,
    scale_y: float,
    about_center: bool = True,
) -> np.ndarray:
    """局所座標 → 親座標の行列を返す。

    Notes
    -----
    about_center=True のとき `T(x, y)·T(c)·R·S·T(-c)`（c は局所 bbox 中心）。
    False（group）のとき `T(x, y)·R·S`。
    """
    rs = rotate_deg(rotation) @ scale(scale_x, scale_y)
    if not about_center:
        return translate(x, y) @ rs
    cx = float(width) / 2.0
    cy = float(height) / 2.0
    return compose(translate(x + cx, y + cy), rs, translate(-cx, -cy))


def node_matrix(node: SceneNode) -> np.ndarray:
    """Scene Node の局所→親座標行列を返す。"""
    from deckforge.core.scene import NodeKind

    return object_matrix(
        x=node.x,
        y=node.y,
        width=node.width,
        height=node.height,
        rotation=node.rotation,
        scale_x=node.scale_x,
        scale_y=node.scale_y,
        about_center=node.kind is not NodeKind.GROUP,
    )


def mean_scale(m: np.ndarray) -> float:
    """行列の平均的な等方スケール（線幅換算用）を返す。"""
    det = abs(float(m[0, 0] * m[1, 1] - m[0, 1] * m[1, 0]))
    return math.sqrt(det)


def is_degenerate(m: np.ndarray, eps: float = 1e-12) -> bool:
    """線形部の行列式がほぼ 0（面積 0 に潰れる）なら True。逆行列を取れない。"""
    det = float(m[0, 0] * m[1, 1] - m[0, 1] * m[1, 0])
    return not math.isfinite(det) or abs(det) <= eps


__all__ = [
    "apply",
    "apply_point",
    "compose",
    "identity",
    "is_degenerate",
    "mean_scale",
    "node_matrix",
    "object_matrix",
    "rotate_deg",
    "scale",
    "to_svg_matrix",
    "translate",
]
