"""
どこで: `src/deckforge/core/path_codec.py`。
何を: SVG パス文字列（path grammar）とアンカー点列の相互変換を提供する。
なぜ: パス node・ブーリアン演算・SVG 出力が同じ正規形を共有するため。

正規形
------
- 2 次ベジエの制御点は常に後続アンカーの `cp1` に載せる。
- 3 次ベジエは `prev.cp2 = c1`, `cur.cp1 = c2`。
- 閉パスで先頭アンカーに戻る曲線は、先頭アンカーの `cp1` へ畳み込む。
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import numpy as np

from deckforge.core.geometry import (
    AnchorPoint,
    BBox,
    Point,
    anchor_coordinates,
    bounds,
    flatten_anchors,
    segment_controls,
)

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[A-Za-z]|[-+]?(?:\d*\.\d+|\d+\.?)(?:[eE][-+]?\d+)?")

# コマンドごとの引数個数。
_ARITY = {"M": 2, "L": 2, "H": 1, "V": 1, "Q": 4, "T": 2, "C": 6, "S": 4, "Z": 0}

_MERGE_EPS = 1e-9


def _fmt(v: float) -> str:
    """数値を最短の固定小数表記にする（`10`, `2.5`, `-0` は出さない）。"""
    x = float(v)
    if not math.isfinite(x):
        raise ValueError(f"パス座標は有限値である必要がある: got={v!r}")
    r = round(x)
    if abs(x - r) < 1e-9:
        return str(int(r)) if r != 0 else "0"
    s = f"{x:.6f}".rstrip("0").rstrip(".")
    if s in ("-0", "0", ""):
        return "0"
    return s


def _pt(p: Point) -> str:
    return f"{_fmt(p[0])} {_fmt(p[1])}"


def _segment_command(prev: AnchorPoint, cur: AnchorPoint) -> str:
    controls = segment_controls(prev, cur)
    if len(controls) == 2:
        return f"C {_pt(controls[0])} {_pt(controls[1])} {_pt(cur.xy)}"
    if len(controls) == 1:
        return f"Q {_pt(controls[0])} {_pt(cur.xy)}"
    return f"L {_pt(cur.xy)}"


def encode_path(anchors: Sequence[AnchorPoint], closed: bool = False) -> str:
    """アンカー点列をパス文字列へ変換する。

    Parameters
    ----------
    anchors : Sequence[AnchorPoint]
        頂点列。空なら空文字列を返す。
    closed : bool
        閉パスとして扱うか。閉じる曲線は 3 点以上のときだけ出力する。

    Returns
    -------
    str
        `"M x y L x y ... Z"` 形式の文字列。
    """
    if not anchors:
        return ""
    parts = [f"M {_pt(anchors[0].xy)}"]
    for i in range(1, len(anchors)):
        parts.append(_segment_command(anchors[i - 1], anchors[i]))
    if closed:
        last = anchors[-1]
        first = anchors[0]
        if len(anchors) >= 3 and segment_controls(last, first):
            parts.append(_segment_command(last, first))
        parts.append("Z")
    return " ".join(parts)


@dataclass(frozen=True, slots=True)
class Subpath:
    """1 本のサブパス。"""

    anchors: tuple[AnchorPoint, ...]
    closed: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "anchors", tuple(self.anchors))
        object.__setattr__(self, "closed", bool(self.closed))


class _SubpathBuilder:
    def __init__(self) -> None:
        self.anchors: list[AnchorPoint] = []
        self.closed = False
        # 末尾アンカーが曲線コマンドで追加されたか。
        self.last_via_curve = False

    def append(self, anchor: AnchorPoint, *, curve: bool = False) -> None:
        self.anchors.append(anchor)
        self.last_via_curve = curve

    def set_last_cp2(self, cp2: Point) -> None:
        if not self.anchors:
            return
        last = self.anchors[-1]
        self.anchors[-1] = AnchorPoint(last.x, last.y, last.cp1, cp2)

    def close(self) -> None:
        """閉じる。始点に戻る末尾の曲線は始点の cp1 に畳み込む（直線で戻る頂点は残す）。"""
        self.closed = True
        if len(self.anchors) < 2 or not self.last_via_curve:
            return
        first = self.anchors[0]
        last = self.anchors[-1]
        if abs(first.x - last.x) <= _MERGE_EPS and abs(first.y - last.y) <= _MERGE_EPS:
            cp1 = last.cp1 if last.cp1 is not None else first.cp1
            self.anchors[0] = AnchorPoint(first.x, first.y, cp1, first.cp2)
            self.anchors.pop()

    def build(self) -> Subpath:
        return Subpath(tuple(self.anchors), self.closed)


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(str(text))


def _reflect(ctrl: Point | None, cur: Point) -> Point:
    if ctrl is None:
        return cur
    return (2.0 * cur[0] - ctrl[0], 2.0 * cur[1] - ctrl[1])


def decode_subpaths(text: str) -> list[Subpath]:
    """パス文字列をサブパスごとに分解して返す。

    未知コマンド（円弧 `A` を含む）と引数不足のグループは debug ログを出して読み飛ばす。
    """
    tokens = _tokenize(text)
    out: list[Subpath] = []
    builder: _SubpathBuilder | None = None
    cur: Point = (0.0, 0.0)
    start: Point = (0.0, 0.0)
    last_cubic: Point | None = None
    last_quad: Point | None = None

    cmd: str | None = None
    i = 0
    n = len(tokens)

    def flush() -> None:
        nonlocal builder
        if builder is not None and builder.anchors:
            out.append(builder.build())
        builder = None

    def ensure_builder() -> _SubpathBuilder:
        nonlocal builder
        if builder is None or builder.closed:
            flush()
            builder = _SubpathBuilder()
            builder.append(AnchorPoint(cur[0], cur[1]))
        return builder

    while i < n:
        tok = tokens[i]
        if tok.isalpha():
            cmd = tok
            i += 1
            if cmd.upper() == "Z":
                if builder is not None:
                    builder.close()
                cur = start
                last_cubic = None
                last_quad = None
                cmd = None
                continue
            if cmd.upper() not in _ARITY:
                logger.debug("未知のパスコマンドを読み飛ばす: %r", cmd)
            continue

        if cmd is None or cmd.upper() not in _ARITY:
            i += 1
            continue

        upper = cmd.upper()
        arity = _ARITY[upper]
        args_text = tokens[i : i + arity]
        if len(args_text) < arity or any(t.isalpha() for t in args_text):
            logger.debug("引数不足のパスコマンドを読み飛ばす: %r %r", cmd, args_text)
            i += sum(1 for _ in _leading_numbers(args_text))
            continue
        i += arity
        args = [float(t) for t in args_text]
        rel = cmd.islower()
        ox, oy = cur if rel else (0.0, 0.0)

        if upper == "M":
            flush()
            cur = (ox + args[0], oy + args[1])
            start = cur
            builder = _SubpathBuilder()
            builder.append(AnchorPoint(cur[0], cur[1]))
            last_cubic = None
            last_quad = None
            cmd = "l" if rel else "L"
            continue

        b = ensure_builder()
        if upper == "L":
            cur = (ox + args[0], oy + args[1])
            b.append(AnchorPoint(cur[0], cur[1]))
            last_cubic = last_quad = None
        elif upper == "H":
            cur = ((cur[0] if rel else 0.0) + args[0], cur[1])
            b.append(AnchorPoint(cur[0], cur[1]))
            last_cubic = last_quad = None
        elif upper == "V":
            cur = (cur[0], (cur[1] if rel else 0.0) + args[0])
            b.append(AnchorPoint(cur[0], cur[1]))
            last_cubic = last_quad = None
        elif upper == "Q":
            c = (ox + args[0], oy + args[1])
            cur = (ox + args[2], oy + args[3])
            b.append(AnchorPoint(cur[0], cur[1], cp1=c), curve=True)
            last_quad = c
            last_cubic = None
        elif upper == "T":
            c = _reflect(last_quad, cur)
            cur = (ox + args[0], oy + args[1])
            b.append(AnchorPoint(cur[0], cur[1], cp1=c), curve=True)
            last_quad = c
            last_cubic = None
        elif upper == "C":
            c1 = (ox + args[0], oy + args[1])
            c2 = (ox + args[2], oy + args[3])
            cur = (ox + args[4], oy + args[5])
            b.set_last_cp2(c1)
            b.append(AnchorPoint(cur[0], cur[1], cp1=c2), curve=True)
            last_cubic = c2
            last_quad = None
        elif upper == "S":
            c1 = _reflect(last_cubic, cur)
            c2 = (ox + args[0], oy + args[1])
            cur = (ox + args[2], oy + args[3])
            b.set_last_cp2(c1)
            b.append(AnchorPoint(cur[0], cur[1], cp1=c2), curve=True)
            last_cubic = c2
            last_quad = None

    flush()
    return out


def _leading_numbers(tokens: Iterable[str]) -> Iterable[str]:
    for t in tokens:
        if t.isalpha():
            return
        yield t


def decode_path(text: str) -> tuple[list[AnchorPoint], bool]:
    """パス文字列を `(anchors, closed)` に変換する。

    複数サブパスを含む場合はアンカーを連結し、いずれかが閉じていれば closed=True とする。
    サブパスを保ったまま扱う場合は `decode_subpaths` を使う。
    """
    subpaths = decode_subpaths(text)
    anchors: list[AnchorPoint] = []
    closed = False
    for sp in subpaths:
        anchors.extend(sp.anchors)
        closed = closed or sp.closed
    return anchors, closed


@dataclass(frozen=True, slots=True)
class PathGeometry:
    """キャンバス座標系のパス形状（複数サブパス）。"""

    subpaths: tuple[Subpath, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "subpaths", tuple(self.subpaths))

    @classmethod
    def from_anchors(cls, anchors: Sequence[AnchorPoint], closed: bool) -> PathGeometry:
        return cls((Subpath(tuple(anchors), closed),))

    @classmethod
    def from_path_data(cls, text: str) -> PathGeometry:
        return cls(tuple(decode_subpaths(text)))

    @property
    def is_empty(self) -> bool:
        return not any(len(sp.anchors) >= 2 for sp in self.subpaths)

    def to_path_data(self) -> str:
        return " ".join(
            s for s in (encode_path(sp.anchors, sp.closed) for sp in self.subpaths) if s
        )

    def rings(self, steps: int = 16) -> list[np.ndarray]:
        """2 点以上のサブパスを折れ線化して返す（描画不能なサブパスは除外）。"""
        return [
            flatten_anchors(sp.anchors, sp.closed, steps)
            for sp in self.subpaths
            if len(sp.anchors) >= 2
        ]

    def bounds(self) -> BBox | None:
        coords = [anchor_coordinates(sp.anchors) for sp in self.subpaths if sp.anchors]
        if not coords:
            return None
        return bounds(np.concatenate(coords, axis=0))


__all__ = [
    "PathGeometry",
    "Subpath",
    "decode_path",
    "decode_subpaths",
    "encode_path",
]
