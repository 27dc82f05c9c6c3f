"""
どこで: `src/deckforge/core/text_layout.py`。
何を: 文字 advance の計測、パスの弧長サンプリング、パス沿い/ワープ/通常の文字配置を提供する。
なぜ: raster/SVG の両 backend が同じ配置結果（文字ごとの中心位置と回転）を描けるようにするため。

配置の規約
----------
- `GlyphPlacement.x, y` は文字の advance 中心のベースライン上の位置（node 局所座標）。
- `angle` はその位置での接線角 [deg]。backend は
  `translate(x, y)·rotate(angle)·translate(-advance / 2, 0)` でグリフを置く。
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from deckforge.core.fonts import Face
from deckforge.core.geometry import cumulative_lengths, polyline_length, resample_polyline
from deckforge.core.scene import TextPayload, WarpSpec

logger = logging.getLogger(__name__)

MIN_PATH_SAMPLES = 200
WARP_SEGMENTS = 40
# これ以下の長さのパスは配置に使えない。
MIN_PATH_LENGTH = 1e-9


@dataclass(frozen=True, slots=True)
class GlyphPlacement:
    char: str
    x: float
    y: float
    angle: float
    advance: float
    distance: float = 0.0


@dataclass(frozen=True, slots=True)
class TextRun:
    """1 つの text node の配置結果。"""

    placements: tuple[GlyphPlacement, ...]
    face: Face
    size: float
    on_path: bool = False


def measure_advances(
    text: str, face: Face, size: float, letter_spacing: float = 0.0
) -> np.ndarray:
    """各文字の advance（フォント advance + letter_spacing）を shape (N,) で返す。"""
    if not text:
        return np.zeros((0,), dtype=np.float64)
    return np.asarray(
        [face.advance(ch, size) + float(letter_spacing) for ch in text], dtype=np.float64
    )


def sample_path(polyline: np.ndarray, steps: int = MIN_PATH_SAMPLES) -> np.ndarray:
    """折れ線を弧長等間隔 `steps` 区間（steps + 1 点）でサンプリングする。

    steps は 200 未満なら 200 に切り上げる。入力が 2 点未満なら空配列を返す。
    """
    xy = np.asarray(polyline, dtype=np.float64).reshape(-1, 2)
    if xy.shape[0] < 2:
        return np.zeros((0, 2), dtype=np.float64)
    n = max(MIN_PATH_SAMPLES, int(steps))
    return resample_polyline(xy, n + 1)


def _start_offset(align: str, path_len: float, text_len: float) -> float:
    if align == "center":
        start = (path_len - text_len) / 2.0
    elif align == "right":
        start = path_len - text_len
    else:
        start = 0.0
    return max(0.0, start)


def horizontal_layout(
    text: str, advances: np.ndarray, *, x: float = 0.0, y: float = 0.0
) -> list[GlyphPlacement]:
    """ベースライン y 上に左から並べた配置を返す。"""
    out: list[GlyphPlacement] = []
    acc = float(x)
    for ch, adv in zip(text, advances):
        a = float(adv)
        out.append(GlyphPlacement(ch, acc + a / 2.0, float(y), 0.0, a, acc - float(x) + a / 2.0))
        acc += a
    return out


def layout_on_path(
    text: str, advances: Sequence[float] | np.ndarray, samples: np.ndarray, align: str = "left"
) -> list[GlyphPlacement]:
    """サンプル済みパスに沿って文字を配置する。

    Parameters
    ----------
    text : str
        配置する文字列（改行は含まない想定）。
    advances : array-like
        文字ごとの advance。
    samples : np.ndarray
        `sample_path` の戻り値（shape (M, 2)）。
    align : str
        `"left" | "center" | "right"`。開始オフセットは 0 以上にクランプする。

    Returns
    -------
    list[GlyphPlacement]
        中心距離がパス長を超える文字は含めない。サンプルが 2 点未満、
        またはパス長がほぼ 0 なら水平配置。
    """
    adv = np.asarray(advances, dtype=np.float64).reshape(-1)
    pts = np.asarray(samples, dtype=np.float64).reshape(-1, 2)
    if pts.shape[0] < 2:
        return horizontal_layout(text, adv)

    cum = cumulative_lengths(pts)
    path_len = float(cum[-1])
    if path_len <= MIN_PATH_LENGTH:
        return horizontal_layout(text, adv)
    text_len = float(np.sum(adv))
    start = _start_offset(align, path_len, text_len)

    out: list[GlyphPlacement] = []
    acc = 0.0
    last = pts.shape[0] - 1
    for ch, a in zip(text, adv):
        center = start + acc + float(a) / 2.0
        acc += float(a)
        if center > path_len + 1e-9:
            continue
        k = int(np.argmin(np.abs(cum - center)))
        if k < last:
            p0, p1 = pts[k], pts[k + 1]
        else:
            p0, p1 = pts[k - 1], pts[k]
        angle = math.degrees(math.atan2(float(p1[1] - p0[1]), float(p1[0] - p0[0])))
        out.append(GlyphPlacement(ch, float(pts[k, 0]), float(pts[k, 1]), angle, float(a), center))
    return out


def warp_polyline(warp: WarpSpec, width: float, height: float) -> np.ndarray:
    """ワーププリセットの基準曲線（x: 0..width, y: 0 基準）を shape (41, 2) で返す。"""
    w = float(width)
    h = float(height)
    t = float(warp.intensity) / 100.0
    pct = np.linspace(0.0, 1.0, WARP_SEGMENTS + 1, dtype=np.float64)
    x = pct * w
    centered = pct * 2.0 - 1.0
    preset = warp.preset

    if preset == "arc":
        angle = math.radians(min(350.0, max(10.0, float(warp.angle))))
        radius = (w / 2.0) / math.sin(angle / 2.0) if w > 0.0 else 0.0
        theta = np.linspace(-angle / 2.0, angle / 2.0, WARP_SEGMENTS + 1)
        x = w / 2.0 + radius * np.sin(theta)
        y = radius * (np.cos(theta) - math.cos(angle / 2.0))
        if warp.direction == "concave":
            y = -y
    elif preset in ("arc-up", "arc-down"):
        depth = t * h * 0.5 * (-1.0 if preset == "arc-up" else 1.0)
        y = -4.0 * depth * pct * (1.0 - pct)
    elif preset in ("bridge", "valley"):
        depth = t * h * 0.6 * (1.0 if preset == "bridge" else -1.0)
        y = -depth * (1.0 - centered**4)
    elif preset == "flag":
        y = -(t * h * 0.4) * np.sin(pct * math.pi * 2.0)
    elif preset == "wave":
        y = -(t * h * 0.3) * np.sin(pct * math.pi * 4.0)
    elif preset == "bulge":
        y = -(t * h * 0.5) * np.exp(-4.0 * centered * centered)
    elif preset == "fish-eye":
        y = -(t * h * 0.6) * np.exp(-8.0 * centered * centered)
    elif preset == "rise":
        y = -(t * h * 0.5) * pct * pct
    elif preset == "inflate":
        y = -(t * h * 0.4) * np.sqrt(np.maximum(0.0, 1.0 - centered * centered))
    else:
        raise ValueError(f"未対応の warp preset: {preset!r}")
    return np.stack([x, y], axis=1)


def _baseline_offset(face: Face, size: float, line_box: float) -> float:
    """行ボックス上端からベースラインまでの距離を返す。"""
    asc = face.ascender_em * size
    desc = face.descender_em * size
    return (line_box - (asc - desc)) / 2.0 + asc


def layout_text(
    payload: TextPayload,
    face: Face,
    width: float,
    height: float,
    *,
    path_polyline: np.ndarray | None = None,
    samples: int = MIN_PATH_SAMPLES,
) -> TextRun:
    """text payload を node 局所座標で配置する。

    Notes
    -----
    - `path_polyline`（局所座標）があればパス沿い配置。
    - `warp` があればワープ曲線を縦中央のベースラインに重ねてパス沿い配置。
    - どちらも無ければ改行区切りの複数行を box 内で縦中央・`align` で横揃えする。
      長さ 0 のパスと幅 0 の box でのワープも同じ通常配置にする。
    """
    size = payload.font.size
    text = payload.display_text()

    poly: np.ndarray | None = None
    if path_polyline is not None:
        poly = np.asarray(path_polyline, dtype=np.float64).reshape(-1, 2)
    elif payload.warp is not None and float(width) > 0.0:
        poly = warp_polyline(payload.warp, width, height)
        poly = poly + np.array([0.0, _baseline_offset(face, size, float(height))])
    if poly is not None and (poly.shape[0] < 2 or polyline_length(poly) <= MIN_PATH_LENGTH):
        logger.debug("配置用のパスが長さ 0 のため通常配置にします: text=%r", text[:20])
        poly = None

    if poly is not None:
        line = text.replace("\n", " ")
        advances = measure_advances(line, face, size, payload.letter_spacing)
        pts = sample_path(poly, samples)
        placements = layout_on_path(line, advances, pts, payload.align)
        return TextRun(tuple(placements), face, size, on_path=True)

    lines = text.split("\n")
    line_box = size * payload.line_height
    block_h = line_box * len(lines)
    top = (float(height) - block_h) / 2.0
    out: list[GlyphPlacement] = []
    for i, line in enumerate(lines):
        advances = measure_advances(line, face, size, payload.letter_spacing)
        line_w = float(np.sum(advances))
        if payload.align == "center":
            x0 = (float(width) - line_w) / 2.0
        elif payload.align == "right":
            x0 = float(width) - line_w
        else:
            x0 = 0.0
        baseline = top + i * line_box + _baseline_offset(face, size, line_box)
        out.extend(horizontal_layout(line, advances, x=x0, y=baseline))
    return TextRun(tuple(out), face, size, on_path=False)


__all__ = [
    "GlyphPlacement",
    "MIN_PATH_SAMPLES",
    "TextRun",
    "horizontal_layout",
    "layout_on_path",
    "layout_text",
    "measure_advances",
    "sample_path",
    "warp_polyline",
]
