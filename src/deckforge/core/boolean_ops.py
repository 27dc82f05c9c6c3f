"""
閉パス同士のブーリアン演算（union / subtract / intersect / exclude）。

入力:
- パス文字列、`PathGeometry`、または前段の `BooleanResult`。

処理:
- 各サブパスを折れ線化し、整数座標へスケールして pyclipper（Vatti）で演算する。
- 結果の PolyTree から外周/穴を組み立て、面積と bbox は shapely で求める。

失敗（FAILED）と空（EMPTY）は区別する。FAILED は例外にせず結果値として返す。
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeAlias

import numpy as np
import pyclipper  # type: ignore[import-not-found, import-untyped]
from shapely.geometry import MultiPolygon, Polygon  # type: ignore[import-untyped]

from deckforge.core.geometry import AnchorPoint, BBox
from deckforge.core.path_codec import PathGeometry, Subpath
from deckforge.core.scene import (
    NodeKind,
    PathPayload,
    SceneNode,
    ShapePayload,
)
from deckforge.core.shape_path import node_to_path
from deckforge.core.style import PatternFill

logger = logging.getLogger(__name__)

_SCALE = 1000
_FLATTEN_STEPS = 16
_AREA_EPS = 1e-9

BOOLEAN_OPS = ("union", "subtract", "intersect", "exclude")

_CLIP_TYPES = {
    "union": pyclipper.CT_UNION,  # type: ignore[attr-defined]
    "subtract": pyclipper.CT_DIFFERENCE,  # type: ignore[attr-defined]
    "intersect": pyclipper.CT_INTERSECTION,  # type: ignore[attr-defined]
    "exclude": pyclipper.CT_XOR,  # type: ignore[attr-defined]
}


class BooleanStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class BooleanResult:
    """ブーリアン演算の結果。

    Attributes
    ----------
    status : BooleanStatus
        OK / EMPTY / FAILED。
    rings : tuple[np.ndarray, ...]
        結果の輪郭（外周と穴、終点を重複させない shape (N, 2)）。
    path_data : str
        rings をパス文字列化したもの（EMPTY/FAILED では空文字列）。
    """

    status: BooleanStatus
    rings: tuple[np.ndarray, ...] = field(default=(), compare=False)
    path_data: str = ""
    shape: Any = field(default=None, compare=False, repr=False)
    reason: str = ""

    @property
    def ok(self) -> bool:
        return self.status is BooleanStatus.OK

    @property
    def area(self) -> float:
        if self.shape is None:
            return 0.0
        return float(self.shape.area)

    @property
    def bounds(self) -> BBox | None:
        if self.shape is None or self.shape.is_empty:
            return None
        minx, miny, maxx, maxy = self.shape.bounds
        return float(minx), float(miny), float(maxx), float(maxy)

    def to_geometry(self) -> PathGeometry:
        return _rings_to_geometry(self.rings)


PathLike: TypeAlias = str | PathGeometry | BooleanResult


def _rings_to_geometry(rings: Sequence[np.ndarray]) -> PathGeometry:
    return PathGeometry(
        tuple(
            Subpath(tuple(AnchorPoint(float(x), float(y)) for x, y in ring), True)
            for ring in rings
        )
    )


def _failed(reason: str) -> BooleanResult:
    logger.debug("boolean 演算に失敗: %s", reason)
    return BooleanResult(BooleanStatus.FAILED, reason=reason)


def _remove_consecutive_duplicates(path: list[tuple[int, int]]) -> list[tuple[int, int]]:
    if len(path) < 2:
        return path
    out = [path[0]]
    for pt in path[1:]:
        if pt != out[-1]:
            out.append(pt)
    return out


def _to_int_ring(xy: np.ndarray) -> list[tuple[int, int]] | None:
    if xy.shape[0] < 3:
        return None
    scaled = np.rint(xy.astype(np.float64, copy=False) * float(_SCALE)).astype(np.int64)
    path = _remove_consecutive_duplicates([(int(p[0]), int(p[1])) for p in scaled])
    if len(path) >= 2 and path[0] == path[-1]:
        path = path[:-1]
    return path if len(path) >= 3 else None


def _operand_rings(operand: PathLike) -> tuple[list[list[tuple[int, int]]], bool] | None:
    """operand を整数リング列にする。戻り値の bool は「空集合として扱う」か。"""
    if isinstance(operand, BooleanResult):
        if operand.status is BooleanStatus.FAILED:
            return None
        rings = [r for r in (_to_int_ring(np.asarray(x)) for x in operand.rings) if r is not None]
        return rings, not rings

    geom = PathGeometry.from_path_data(operand) if isinstance(operand, str) else operand
    if geom.is_empty:
        return [], True
    rings: list[list[tuple[int, int]]] = []
    for sp in geom.subpaths:
        if len(sp.anchors) < 3:
            continue
        # 開いたサブパスも塗りと同じく暗黙に閉じる。
        closed = Subpath(sp.anchors, True)
        ring = _to_int_ring(PathGeometry((closed,)).rings(_FLATTEN_STEPS)[0])
        if ring is not None:
            rings.append(ring)
    if not rings:
        return None
    return rings, False


def _collect_polygons(node: Any, out: list[Polygon], contours: list[np.ndarray]) -> None:
    for outer in node.Childs:
        shell = np.asarray(outer.Contour, dtype=np.float64) / float(_SCALE)
        holes = [np.asarray(h.Contour, dtype=np.float64) / float(_SCALE) for h in outer.Childs]
        contours.append(shell)
        contours.extend(holes)
        out.append(Polygon(shell, holes))
        for hole in outer.Childs:
            _collect_polygons(hole, out, contours)


def boolean_op(path_a: PathLike, path_b: PathLike, op: str) -> BooleanResult:
    """2 つの閉パスにブーリアン演算を適用する。

    Parameters
    ----------
    path_a, path_b : str or PathGeometry or BooleanResult
        被演算子。空の PathGeometry / EMPTY 結果は空集合として扱う。
    op : str
        `"union" | "subtract" | "intersect" | "exclude"`。

    Returns
    -------
    BooleanResult
        OK（結果あり）/ EMPTY（面積 0）/ FAILED（入力不正または演算失敗）。

    Raises
    ------
    ValueError
        op が未対応の場合。
    """
    if op not in _CLIP_TYPES:
        raise ValueError(f"未対応の boolean op: {op!r}（{', '.join(BOOLEAN_OPS)}）")

    a = _operand_rings(path_a)
    if a is None:
        return _failed("path_a に塗り可能な閉リングがない")
    b = _operand_rings(path_b)
    if b is None:
        return _failed("path_b に塗り可能な閉リングがない")
    rings_a, _ = a
    rings_b, _ = b
    if not rings_a and not rings_b:
        return BooleanResult(BooleanStatus.EMPTY)

    pc = pyclipper.Pyclipper()  # type: ignore[attr-defined]
    try:
        if rings_a:
            pc.AddPaths(rings_a, pyclipper.PT_SUBJECT, True)  # type: ignore[attr-defined]
        if rings_b:
            pc.AddPaths(rings_b, pyclipper.PT_CLIP, True)  # type: ignore[attr-defined]
        polytree = pc.Execute2(  # type: ignore[attr-defined]
            _CLIP_TYPES[op], pyclipper.PFT_EVENODD, pyclipper.PFT_EVENODD  # type: ignore[attr-defined]
        )
    except pyclipper.ClipperException as exc:  # type: ignore[attr-defined]
        return _failed(f"pyclipper: {exc}")

    polygons: list[Polygon] = []
    contours: list[np.ndarray] = []
    _collect_polygons(polytree, polygons, contours)
    if not polygons:
        return BooleanResult(BooleanStatus.EMPTY)

    shape = MultiPolygon(polygons)
    if float(shape.area) <= _AREA_EPS:
        return BooleanResult(BooleanStatus.EMPTY)

    rings = tuple(contours)
    return BooleanResult(
        BooleanStatus.OK,
        rings=rings,
        path_data=_rings_to_geometry(rings).to_path_data(),
        shape=shape,
    )


def fold_boolean(paths: Sequence[PathLike], op: str) -> BooleanResult:
    """`op(op(op(p0, p1), p2), ...)` を左から畳み込む。

    途中で FAILED になった時点で打ち切ってその結果を返す。EMPTY は有効な中間結果として続行する。
    """
    items = list(paths)
    if len(items) < 2:
        return _failed("boolean 演算には 2 つ以上のパスが必要")
    result = boolean_op(items[0], items[1], op)
    for p in items[2:]:
        if result.status is BooleanStatus.FAILED:
            return result
        result = boolean_op(result, p, op)
    return result


def boolean_nodes(
    nodes: Sequence[SceneNode], op: str, new_id: str | None = None
) -> SceneNode | None:
    """複数 node のブーリアン結果から新しい path node を作る。

    位置・サイズは結果の bbox、塗り・線・不透明度・合成モードは先頭 node から引き継ぐ。
    結果が OK でない場合、または未対応 kind を含む場合は None を返す。
    """
    if len(nodes) < 2:
        return None
    geoms: list[PathGeometry] = []
    for node in nodes:
        g = node_to_path(node)
        if g is None:
            logger.warning("boolean 演算に使えない node を含む: id=%s kind=%s", node.id, node.kind.value)
            return None
        geoms.append(g)

    result = fold_boolean(geoms, op)
    if not result.ok:
        logger.info("boolean 演算の結果がない: op=%s status=%s", op, result.status.value)
        return None
    bb = result.bounds
    if bb is None:
        return None
    minx, miny, maxx, maxy = bb

    subpaths = [
        Subpath(tuple(AnchorPoint(float(x) - minx, float(y) - miny) for x, y in ring), True)
        for ring in result.rings
    ]
    first = nodes[0]
    fill = None
    stroke = None
    if isinstance(first.payload, ShapePayload):
        fill = (
            PatternFill(first.payload.pattern)
            if first.payload.pattern is not None
            else first.payload.fill
        )
        stroke = first.payload.stroke
    elif isinstance(first.payload, PathPayload):
        fill = first.payload.fill
        stroke = first.payload.stroke
    else:
        stroke = getattr(first.payload, "stroke", None)

    payload = PathPayload(
        anchors=subpaths[0].anchors,
        closed=True,
        fill=fill,
        stroke=stroke,
        subpaths=tuple(subpaths[1:]),
    )
    return SceneNode(
        id=new_id if new_id is not None else f"{first.id}-{op}",
        kind=NodeKind.PATH,
        payload=payload,
        x=minx,
        y=miny,
        width=maxx - minx,
        height=maxy - miny,
        opacity=first.opacity,
        blend_mode=first.blend_mode,
    )


__all__ = [
    "BOOLEAN_OPS",
    "BooleanResult",
    "BooleanStatus",
    "PathLike",
    "boolean_nodes",
    "boolean_op",
    "fold_boolean",
]
