# src/deckforge/core/geometry.py
# 幾何カーネル: アンカー点モデル、ベジエ評価、線分距離、弧長サンプリング。
# 副作用を持たない純関数のみを置き、描画・パス変換・テキスト配置から共有する。

from __future__ import annotations

import math
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import TypeAlias

import numpy as np
from numba import njit  # type: ignore[import-untyped]

Point: TypeAlias = tuple[float, float]
BBox: TypeAlias = tuple[float, float, float, float]


@dataclass(frozen=True, slots=True)
class AnchorPoint:
    """ベクタパスの頂点。

    Parameters
    ----------
    x, y : float
        頂点座標。
    cp1 : tuple[float, float] or None
        この頂点へ入るセグメント側の制御点。
    cp2 : tuple[float, float] or None
        この頂点から出るセグメント側の制御点。

    Notes
    -----
    セグメント種別（直線/2 次/3 次）は保持せず、隣接アンカーの制御点の有無から導出する。
    """

    x: float
    y: float
    cp1: Point | None = None
    cp2: Point | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "x", float(self.x))
        object.__setattr__(self, "y", float(self.y))
        if self.cp1 is not None:
            object.__setattr__(self, "cp1", (float(self.cp1[0]), float(self.cp1[1])))
        if self.cp2 is not None:
            object.__setattr__(self, "cp2", (float(self.cp2[0]), float(self.cp2[1])))

    @property
    def xy(self) -> Point:
        return (self.x, self.y)


def segment_controls(prev: AnchorPoint, cur: AnchorPoint) -> tuple[Point, ...]:
    """prev→cur セグメントの制御点列（0/1/2 個）を返す。"""
    if prev.cp2 is not None and cur.cp1 is not None:
        return (prev.cp2, cur.cp1)
    if prev.cp2 is not None:
        return (prev.cp2,)
    if cur.cp1 is not None:
        return (cur.cp1,)
    return ()


def segment_kind(prev: AnchorPoint, cur: AnchorPoint) -> str:
    """prev→cur セグメントの種別 `"line" | "quad" | "cubic"` を返す。"""
    n = len(segment_controls(prev, cur))
    return ("line", "quad", "cubic")[n]


def iter_segments(
    anchors: Sequence[AnchorPoint], closed: bool
) -> Iterator[tuple[AnchorPoint, AnchorPoint]]:
    """(prev, cur) のセグメント列を返す。閉パスは 3 点以上のとき末尾→先頭を含む。"""
    for i in range(1, len(anchors)):
        yield anchors[i - 1], anchors[i]
    if closed and len(anchors) >= 3:
        yield anchors[-1], anchors[0]


def dist_to_segment_sq(p: Point, a: Point, b: Point) -> float:
    """点 p から線分 ab への距離の 2 乗を返す。"""
    dx = b[0] - a[0]
    dy = b[1] - a[1]
    len_sq = dx * dx + dy * dy
    if len_sq == 0.0:
        ex = p[0] - a[0]
        ey = p[1] - a[1]
        return ex * ex + ey * ey
    t = ((p[0] - a[0]) * dx + (p[1] - a[1]) * dy) / len_sq
    t = 0.0 if t < 0.0 else 1.0 if t > 1.0 else t
    ex = p[0] - (a[0] + t * dx)
    ey = p[1] - (a[1] + t * dy)
    return ex * ex + ey * ey


def dist_to_segment(p: Point, a: Point, b: Point) -> float:
    """点 p から線分 ab への距離を返す。"""
    return math.sqrt(dist_to_segment_sq(p, a, b))


@njit(cache=True)
def _segment_distances_sq(xy: np.ndarray, px: float, py: float, closed: bool) -> np.ndarray:
    n = xy.shape[0]
    m = n - 1
    if closed and n >= 3:
        m = n
    out = np.empty(m, dtype=np.float64)
    for i in range(m):
        j = (i + 1) % n
        ax = xy[i, 0]
        ay = xy[i, 1]
        dx = xy[j, 0] - ax
        dy = xy[j, 1] - ay
        len_sq = dx * dx + dy * dy
        t = 0.0
        if len_sq > 0.0:
            t = ((px - ax) * dx + (py - ay) * dy) / len_sq
            if t < 0.0:
                t = 0.0
            elif t > 1.0:
                t = 1.0
        ex = px - (ax + t * dx)
        ey = py - (ay + t * dy)
        out[i] = ex * ex + ey * ey
    return out


def closest_segment(
    anchors: Sequence[AnchorPoint], p: Point, closed: bool = False
) -> tuple[int, float] | None:
    """p に最も近いセグメントの (開始アンカー index, 距離) を返す。

    セグメントはアンカー間の弦で近似する。アンカーが 2 点未満なら None。
    """
    if len(anchors) < 2:
        return None
    xy = np.asarray([a.xy for a in anchors], dtype=np.float64)
    d2 = _segment_distances_sq(xy, float(p[0]), float(p[1]), bool(closed))
    i = int(np.argmin(d2))
    return i, math.sqrt(float(d2[i]))


def quad_point(p0: Point, c: Point, p1: Point, t: float | np.ndarray) -> np.ndarray:
    """2 次ベジエを t で評価する。t が配列なら shape (N, 2) を返す。"""
    tt = np.asarray(t, dtype=np.float64)[..., None]
    a = np.asarray(p0, dtype=np.float64)
    b = np.asarray(c, dtype=np.float64)
    d = np.asarray(p1, dtype=np.float64)
    mt = 1.0 - tt
    return mt * mt * a + 2.0 * mt * tt * b + tt * tt * d


def cubic_point(
    p0: Point, c1: Point, c2: Point, p1: Point, t: float | np.ndarray
) -> np.ndarray:
    """3 次ベジエを t で評価する。t が配列なら shape (N, 2) を返す。"""
    tt = np.asarray(t, dtype=np.float64)[..., None]
    a = np.asarray(p0, dtype=np.float64)
    b = np.asarray(c1, dtype=np.float64)
    c = np.asarray(c2, dtype=np.float64)
    d = np.asarray(p1, dtype=np.float64)
    mt = 1.0 - tt
    return mt**3 * a + 3.0 * mt * mt * tt * b + 3.0 * mt * tt * tt * c + tt**3 * d


def flatten_segment(prev: AnchorPoint, cur: AnchorPoint, steps: int = 16) -> np.ndarray:
    """prev→cur セグメントを折れ線化する（始点を含まず終点を含む shape (K, 2)）。"""
    controls = segment_controls(prev, cur)
    if not controls:
        return np.asarray([cur.xy], dtype=np.float64)
    n = max(2, int(steps))
    t = np.linspace(0.0, 1.0, n + 1, dtype=np.float64)[1:]
    if len(controls) == 1:
        return quad_point(prev.xy, controls[0], cur.xy, t)
    return cubic_point(prev.xy, controls[0], controls[1], cur.xy, t)


def bezier_length(*points: Point, steps: int = 32) -> float:
    """2 次/3 次ベジエ（制御点込みで 3 または 4 点）の弧長を固定刻みサンプリングで近似する。"""
    t = np.linspace(0.0, 1.0, max(2, int(steps)) + 1, dtype=np.float64)
    if len(points) == 3:
        pts = quad_point(points[0], points[1], points[2], t)
    elif len(points) == 4:
        pts = cubic_point(points[0], points[1], points[2], points[3], t)
    elif len(points) == 2:
        pts = np.asarray(points, dtype=np.float64)
    else:
        raise ValueError("bezier_length は 2..4 点を受け取る")
    return polyline_length(pts)


def flatten_anchors(
    anchors: Sequence[AnchorPoint], closed: bool = False, steps: int = 16
) -> np.ndarray:
    """アンカー列を折れ線（shape (N, 2), float64）に変換する。

    閉パスかつ 3 点以上なら、終点に始点を重ねたリングとして返す。
    """
    if not anchors:
        return np.zeros((0, 2), dtype=np.float64)
    parts = [np.asarray([anchors[0].xy], dtype=np.float64)]
    for prev, cur in iter_segments(anchors, closed):
        parts.append(flatten_segment(prev, cur, steps))
    return np.concatenate(parts, axis=0)


@njit(cache=True)
def _cumulative_lengths(xy: np.ndarray) -> np.ndarray:
    n = xy.shape[0]
    out = np.zeros(n, dtype=np.float64)
    for i in range(1, n):
        dx = xy[i, 0] - xy[i - 1, 0]
        dy = xy[i, 1] - xy[i - 1, 1]
        out[i] = out[i - 1] + math.sqrt(dx * dx + dy * dy)
    return out


def cumulative_lengths(poly: np.ndarray) -> np.ndarray:
    """折れ線の各頂点までの累積弧長（shape (N,)）を返す。"""
    xy = np.ascontiguousarray(np.asarray(poly, dtype=np.float64)[:, :2])
    if xy.shape[0] == 0:
        return np.zeros((0,), dtype=np.float64)
    return _cumulative_lengths(xy)


def polyline_length(poly: np.ndarray) -> float:
    """折れ線の全長を返す。"""
    cum = cumulative_lengths(poly)
    if cum.size == 0:
        return 0.0
    return float(cum[-1])


def resample_polyline(poly: np.ndarray, n: int) -> np.ndarray:
    """折れ線を弧長等間隔の n 点（両端含む）で再サンプリングして返す。"""
    xy = np.asarray(poly, dtype=np.float64)[:, :2]
    count = int(n)
    if xy.shape[0] == 0 or count <= 0:
        return np.zeros((0, 2), dtype=np.float64)
    if xy.shape[0] == 1 or count == 1:
        return np.repeat(xy[:1], count, axis=0)
    cum = cumulative_lengths(xy)
    total = float(cum[-1])
    if total <= 0.0:
        return np.repeat(xy[:1], count, axis=0)
    targets = np.linspace(0.0, total, count, dtype=np.float64)
    x = np.interp(targets, cum, xy[:, 0])
    y = np.interp(targets, cum, xy[:, 1])
    return np.stack([x, y], axis=1)


def dash_polyline(poly: np.ndarray, pattern: Sequence[float]) -> list[np.ndarray]:
    """折れ線を dash/gap の交互パターンで切り出し、ダッシュごとの折れ線を返す。

    pattern が空、または合計が 0 以下なら原線をそのまま 1 本返す。
    """
    xy = np.asarray(poly, dtype=np.float64)[:, :2]
    pat = [float(v) for v in pattern]
    if xy.shape[0] < 2 or not pat or sum(pat) <= 0.0:
        return [xy]
    if len(pat) % 2 == 1:
        pat = pat * 2

    cum = cumulative_lengths(xy)
    total = float(cum[-1])
    if total <= 0.0:
        return [xy]

    out: list[np.ndarray] = []
    pos = 0.0
    k = 0
    while pos < total:
        seg = pat[k % len(pat)]
        end = min(total, pos + seg)
        if k % 2 == 0 and end > pos:
            inner = (cum > pos) & (cum < end)
            xs = np.concatenate(
                [[np.interp(pos, cum, xy[:, 0])], xy[inner, 0], [np.interp(end, cum, xy[:, 0])]]
            )
            ys = np.concatenate(
                [[np.interp(pos, cum, xy[:, 1])], xy[inner, 1], [np.interp(end, cum, xy[:, 1])]]
            )
            out.append(np.stack([xs, ys], axis=1))
        pos = end
        k += 1
    return out


def polygon_signed_area(ring: np.ndarray) -> float:
    """リングの符号付き面積（shoelace）を返す。"""
    xy = np.asarray(ring, dtype=np.float64)[:, :2]
    if xy.shape[0] < 3:
        return 0.0
    x = xy[:, 0]
    y = xy[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(y, np.roll(x, -1)))


def polygon_area(ring: np.ndarray) -> float:
    """リングの面積（絶対値）を返す。"""
    return abs(polygon_signed_area(ring))


def bounds(points: np.ndarray) -> BBox | None:
    """点群の (min_x, min_y, max_x, max_y) を返す。空なら None。"""
    xy = np.asarray(points, dtype=np.float64)
    if xy.size == 0:
        return None
    xy = xy.reshape(-1, xy.shape[-1])[:, :2]
    mins = np.min(xy, axis=0)
    maxs = np.max(xy, axis=0)
    return float(mins[0]), float(mins[1]), float(maxs[0]), float(maxs[1])


def anchor_coordinates(anchors: Sequence[AnchorPoint]) -> np.ndarray:
    """アンカーと制御点の全座標を shape (N, 2) で返す。"""
    pts: list[Point] = []
    for a in anchors:
        pts.append(a.xy)
        if a.cp1 is not None:
            pts.append(a.cp1)
        if a.cp2 is not None:
            pts.append(a.cp2)
    if not pts:
        return np.zeros((0, 2), dtype=np.float64)
    return np.asarray(pts, dtype=np.float64)


__all__ = [
    "AnchorPoint",
    "BBox",
    "Point",
    "anchor_coordinates",
    "bezier_length",
    "bounds",
    "closest_segment",
    "cubic_point",
    "cumulative_lengths",
    "dash_polyline",
    "dist_to_segment",
    "dist_to_segment_sq",
    "flatten_anchors",
    "flatten_segment",
    "iter_segments",
    "polygon_area",
    "polygon_signed_area",
    "polyline_length",
    "quad_point",
    "resample_polyline",
    "segment_controls",
    "segment_kind",
]
