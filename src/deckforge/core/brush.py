# src/deckforge/core/brush.py
# フリーハンドストロークの平滑化（RDP + Catmull-Rom）と、ブラシ種別ごとの描画形状生成。
# 入力点列は node 局所座標。出力は renderer がそのまま backend へ渡せる形にする。

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np
from numba import njit  # type: ignore[import-untyped]

from deckforge.core.geometry import AnchorPoint
from deckforge.core.scene import BrushStroke

MIN_HALF_WIDTH = 0.3
MARKER_OPACITY = 0.6


@njit(cache=True)
def _rdp_keep_mask(xy: np.ndarray, eps: float) -> np.ndarray:
    n = xy.shape[0]
    keep = np.zeros(n, dtype=np.bool_)
    if n == 0:
        return keep
    keep[0] = True
    keep[n - 1] = True
    stack = np.empty((n, 2), dtype=np.int64)
    stack[0, 0] = 0
    stack[0, 1] = n - 1
    top = 1
    eps_sq = eps * eps
    while top > 0:
        top -= 1
        s = stack[top, 0]
        e = stack[top, 1]
        if e - s < 2:
            continue
        ax = xy[s, 0]
        ay = xy[s, 1]
        dx = xy[e, 0] - ax
        dy = xy[e, 1] - ay
        len_sq = dx * dx + dy * dy
        best = -1.0
        idx = -1
        for i in range(s + 1, e):
            t = 0.0
            if len_sq > 0.0:
                t = ((xy[i, 0] - ax) * dx + (xy[i, 1] - ay) * dy) / len_sq
                if t < 0.0:
                    t = 0.0
                elif t > 1.0:
                    t = 1.0
            ex = xy[i, 0] - (ax + t * dx)
            ey = xy[i, 1] - (ay + t * dy)
            d = ex * ex + ey * ey
            if d > best:
                best = d
                idx = i
        if best > eps_sq:
            keep[idx] = True
            stack[top, 0] = s
            stack[top, 1] = idx
            top += 1
            stack[top, 0] = idx
            stack[top, 1] = e
            top += 1
    return keep


def rdp_simplify(points: np.ndarray, eps: float) -> np.ndarray:
    """Ramer-Douglas-Peucker で点列を間引く。列 2 以降（筆圧など）は保持する。"""
    pts = np.asarray(points, dtype=np.float64)
    if pts.shape[0] < 3:
        return pts.copy()
    mask = _rdp_keep_mask(np.ascontiguousarray(pts[:, :2]), float(eps))
    return pts[mask]


def catmull_rom(points: np.ndarray, segments: int) -> np.ndarray:
    """一様 Catmull-Rom スプラインで点列を補間する。

    Parameters
    ----------
    points : np.ndarray
        shape (N, 3) の (x, y, pressure)。
    segments : int
        隣接点間の分割数。

    Returns
    -------
    np.ndarray
        shape ((N-1)*segments + 1, 3)。筆圧は線形補間する。
    """
    pts = np.asarray(points, dtype=np.float64)
    n = pts.shape[0]
    if n < 2:
        return pts.copy()
    seg = max(1, int(segments))
    t = np.arange(seg, dtype=np.float64) / seg
    t2 = t * t
    t3 = t2 * t
    out: list[np.ndarray] = []
    for i in range(n - 1):
        p0 = pts[max(i - 1, 0), :2]
        p1 = pts[i, :2]
        p2 = pts[i + 1, :2]
        p3 = pts[min(i + 2, n - 1), :2]
        xy = 0.5 * (
            (2.0 * p1)[None, :]
            + (-p0 + p2)[None, :] * t[:, None]
            + (2.0 * p0 - 5.0 * p1 + 4.0 * p2 - p3)[None, :] * t2[:, None]
            + (-p0 + 3.0 * p1 - 3.0 * p2 + p3)[None, :] * t3[:, None]
        )
        pressure = pts[i, 2] + (pts[i + 1, 2] - pts[i, 2]) * t
        out.append(np.column_stack([xy, pressure]))
    out.append(pts[-1:].copy())
    return np.concatenate(out, axis=0)


def smooth_points(points: np.ndarray, smoothing: float) -> np.ndarray:
    """smoothing (0..100) に応じて RDP で間引いた後 Catmull-Rom で滑らかにする。"""
    pts = np.asarray(points, dtype=np.float64)
    s = float(smoothing)
    if pts.shape[0] < 3 or s <= 0.0:
        return pts.copy()
    eps = 0.2 + s / 100.0 * 1.5
    segments = max(2, int(round(4.0 + s / 100.0 * 8.0)))
    return catmull_rom(rdp_simplify(pts, eps), segments)


def _tangents(xy: np.ndarray) -> np.ndarray:
    n = xy.shape[0]
    tan = np.empty_like(xy)
    tan[0] = xy[1] - xy[0]
    tan[-1] = xy[-1] - xy[-2]
    if n > 2:
        tan[1:-1] = xy[2:] - xy[:-2]
    length = np.hypot(tan[:, 0], tan[:, 1])
    length[length == 0.0] = 1.0
    return tan / length[:, None]


def variable_width_outline(
    points: np.ndarray,
    size: float,
    *,
    pressure_sensitive: bool = True,
    nib_angle: float | None = None,
) -> list[AnchorPoint]:
    """中心線から可変幅の閉じた輪郭アンカー列を作る。

    半幅は `size * pressure / 2`（最小 0.3）。筆圧を使わない場合 pressure は 0.5 とみなす。
    `nib_angle` [deg] を与えるとカリグラフィのペン先として、進行方向とペン先の
    なす角に応じて幅を 0.3..1.0 倍に変える。両端は 2 次ベジエの丸いキャップで閉じる。
    """
    pts = np.asarray(points, dtype=np.float64)
    if pts.shape[0] < 2:
        return []
    xy = pts[:, :2]
    pressure = pts[:, 2] if pressure_sensitive else np.full(pts.shape[0], 0.5)
    half = np.maximum(MIN_HALF_WIDTH, float(size) * pressure / 2.0)

    tan = _tangents(xy)
    if nib_angle is not None:
        rad = math.radians(float(nib_angle))
        nib = np.array([math.cos(rad), math.sin(rad)])
        cross = np.abs(tan[:, 0] * nib[1] - tan[:, 1] * nib[0])
        half = np.maximum(MIN_HALF_WIDTH, half * (0.3 + cross * 0.7))

    normal = np.column_stack([-tan[:, 1], tan[:, 0]])
    left = xy + normal * half[:, None]
    right = xy - normal * half[:, None]

    end_ctrl = xy[-1] + tan[-1] * half[-1]
    start_ctrl = xy[0] - tan[0] * half[0]

    anchors = [
        AnchorPoint(float(left[0, 0]), float(left[0, 1]), cp1=(float(start_ctrl[0]), float(start_ctrl[1])))
    ]
    anchors.extend(AnchorPoint(float(x), float(y)) for x, y in left[1:])
    anchors.append(
        AnchorPoint(float(right[-1, 0]), float(right[-1, 1]), cp1=(float(end_ctrl[0]), float(end_ctrl[1])))
    )
    anchors.extend(AnchorPoint(float(x), float(y)) for x, y in right[-2::-1])
    return anchors


def spray_dots(
    points: np.ndarray, size: float, rng: np.random.Generator
) -> tuple[tuple[float, float, float], ...]:
    """スプレーのドット列 `(x, y, r)` を生成する。

    おおよそ 100 サンプルごとに、筆圧に応じた数（3..11 個）のドットを
    半径 `size` の円内へ散らす。
    """
    pts = np.asarray(points, dtype=np.float64)
    n = pts.shape[0]
    if n == 0:
        return ()
    step = max(1, n // 100)
    radius = float(size)
    dots: list[tuple[float, float, float]] = []
    for i in range(0, n, step):
        x, y, p = pts[i]
        density = int(round(3.0 + float(p) * 8.0))
        ang = rng.uniform(0.0, 2.0 * math.pi, size=density)
        dist = np.sqrt(rng.uniform(0.0, 1.0, size=density)) * radius
        r = 0.3 + rng.uniform(0.0, 1.0, size=density) * 1.2
        for a, d, rr in zip(ang, dist, r):
            dots.append((float(x + d * math.cos(a)), float(y + d * math.sin(a)), float(rr)))
    return tuple(dots)


@dataclass(frozen=True, slots=True)
class BrushGeometry:
    """ブラシ 1 本分の描画形状。

    mode:
        "fill"   輪郭 `anchors`（閉）を塗る。
        "stroke" 中心線 `anchors`（開）を幅 `width` で描く。
        "dots"   `dots` の円を塗る。
    """

    mode: str
    anchors: tuple[AnchorPoint, ...] = ()
    width: float = 0.0
    dots: tuple[tuple[float, float, float], ...] = ()
    opacity_factor: float = 1.0


def stroke_points(stroke: BrushStroke) -> np.ndarray:
    """BrushStroke の入力点列を shape (N, 3) の配列にする。"""
    if not stroke.points:
        return np.zeros((0, 3), dtype=np.float64)
    return np.asarray([(p.x, p.y, p.pressure) for p in stroke.points], dtype=np.float64)


def _centerline(pts: np.ndarray) -> tuple[AnchorPoint, ...]:
    return tuple(AnchorPoint(float(x), float(y)) for x, y in pts[:, :2])


def brush_geometry(stroke: BrushStroke, rng: np.random.Generator | None = None) -> BrushGeometry | None:
    """ブラシ種別に応じた描画形状を返す。入力点が 2 点未満なら None。"""
    raw = stroke_points(stroke)
    if raw.shape[0] < 2:
        return None

    if stroke.brush_type == "spray":
        dots = stroke.spray_dots
        if not dots:
            gen = rng if rng is not None else np.random.default_rng()
            dots = spray_dots(raw, stroke.size, gen)
        return BrushGeometry("dots", dots=dots)

    pts = smooth_points(raw, stroke.smoothing)

    if stroke.brush_type == "calligraphy":
        outline = variable_width_outline(
            pts, stroke.size, pressure_sensitive=stroke.pressure_sensitive, nib_angle=stroke.nib_angle
        )
        return BrushGeometry("fill", anchors=tuple(outline))

    if stroke.brush_type == "marker":
        return BrushGeometry(
            "stroke", anchors=_centerline(pts), width=stroke.size, opacity_factor=MARKER_OPACITY
        )

    varied = stroke.pressure_sensitive and bool(np.any(np.abs(raw[:, 2] - 0.5) > 1e-9))
    if stroke.brush_type == "pressure" or varied:
        outline = variable_width_outline(pts, stroke.size, pressure_sensitive=stroke.pressure_sensitive)
        return BrushGeometry("fill", anchors=tuple(outline))
    return BrushGeometry("stroke", anchors=_centerline(pts), width=stroke.size)


__all__ = [
    "BrushGeometry",
    "brush_geometry",
    "catmull_rom",
    "rdp_simplify",
    "smooth_points",
    "spray_dots",
    "stroke_points",
    "variable_width_outline",
]
