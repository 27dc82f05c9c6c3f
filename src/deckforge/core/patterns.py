# src/deckforge/core/patterns.py
# 手続き的塗りパターンのレジストリと組み込みパターン。
# パターン名から「背景色 + 描画命令列」を生成する関数を引けるようにする。

from __future__ import annotations

import math
from collections.abc import Callable, ItemsView
from dataclasses import dataclass
from typing import TypeAlias

import numpy as np

from deckforge.core.geometry import Point
from deckforge.core.style import ColorRGBA, PatternSpec


@dataclass(frozen=True, slots=True)
class FillRect:
    x: float
    y: float
    w: float
    h: float
    color: ColorRGBA


@dataclass(frozen=True, slots=True)
class FillEllipse:
    cx: float
    cy: float
    rx: float
    ry: float
    color: ColorRGBA


@dataclass(frozen=True, slots=True)
class FillPolygon:
    points: tuple[Point, ...]
    color: ColorRGBA


@dataclass(frozen=True, slots=True)
class StrokeLine:
    x0: float
    y0: float
    x1: float
    y1: float
    width: float
    color: ColorRGBA


@dataclass(frozen=True, slots=True)
class RadialBlob:
    """中心で color、半径 (rx, ry) で透明になる放射状のぼかし円。"""

    cx: float
    cy: float
    rx: float
    ry: float
    color: ColorRGBA


PatternOp: TypeAlias = FillRect | FillEllipse | FillPolygon | StrokeLine | RadialBlob


@dataclass(frozen=True, slots=True)
class PatternInstructions:
    """パターン 1 枚分の描画命令。座標は (0, 0)-(width, height) の局所座標。"""

    width: float
    height: float
    background: ColorRGBA
    ops: tuple[PatternOp, ...] = ()


PatternFunc = Callable[
    [float, float, ColorRGBA, ColorRGBA, float, np.random.Generator], PatternInstructions
]


class PatternRegistry:
    """パターン名と生成関数を対応付けるレジストリ。

    Notes
    -----
    登録された関数のシグネチャは
    ``func(width, height, primary, secondary, scale, rng) -> PatternInstructions`` を想定する。
    乱数を使わないパターンは rng を無視する。
    """

    def __init__(self) -> None:
        self._items: dict[str, PatternFunc] = {}

    def _register(self, name: str, func: PatternFunc, *, overwrite: bool = True) -> None:
        if not overwrite and name in self._items:
            raise ValueError(f"pattern '{name}' は既に登録されている")
        self._items[name] = func

    def get(self, name: str) -> PatternFunc:
        return self._items[name]

    def __contains__(self, name: object) -> bool:
        return name in self._items

    def __getitem__(self, name: str) -> PatternFunc:
        return self.get(name)

    def items(self) -> ItemsView[str, PatternFunc]:
        return self._items.items()


pattern_registry = PatternRegistry()
"""グローバルな pattern レジストリインスタンス。"""


def pattern(name: str, *, overwrite: bool = True) -> Callable[[PatternFunc], PatternFunc]:
    """グローバル pattern レジストリ用デコレータ。

    Examples
    --------
    @pattern("checkerboard")
    def checkerboard(width, height, primary, secondary, scale, rng):
        ...
    """

    def decorator(f: PatternFunc) -> PatternFunc:
        pattern_registry._register(name, f, overwrite=overwrite)
        return f

    return decorator


def generate_pattern(
    spec: PatternSpec,
    width: float,
    height: float,
    rng: np.random.Generator | None = None,
) -> PatternInstructions:
    """PatternSpec から描画命令を生成する。

    Parameters
    ----------
    rng : numpy.random.Generator or None
        乱数源。None なら seed なしの Generator を使う（noise/speed-lines/tie-dye は描画ごとに変わる）。

    Raises
    ------
    KeyError
        未登録のパターン名の場合。
    """
    func = pattern_registry.get(spec.kind)
    gen = rng if rng is not None else np.random.default_rng()
    return func(float(width), float(height), spec.primary, spec.secondary, spec.scale, gen)


@pattern("checkerboard")
def checkerboard(width, height, primary, secondary, scale, rng):
    ops: list[PatternOp] = []
    nx = int(math.ceil(width / scale))
    ny = int(math.ceil(height / scale))
    for j in range(ny):
        for i in range(nx):
            if (i + j) % 2 == 0:
                ops.append(FillRect(i * scale, j * scale, scale, scale, primary))
    return PatternInstructions(width, height, secondary, tuple(ops))


@pattern("diagonal-stripes")
def diagonal_stripes(width, height, primary, secondary, scale, rng):
    # 45° の平行四辺形を x 方向に scale 周期で並べる（帯幅は周期の半分）。
    band = scale / 2.0
    ops: list[PatternOp] = []
    x = -height
    while x < width:
        ops.append(
            FillPolygon(
                ((x, height), (x + band, height), (x + band + height, 0.0), (x + height, 0.0)),
                primary,
            )
        )
        x += scale
    return PatternInstructions(width, height, secondary, tuple(ops))


@pattern("halftone")
def halftone(width, height, primary, secondary, scale, rng):
    r = scale / 6.0
    ops: list[PatternOp] = []
    ny = int(math.ceil(height / scale))
    nx = int(math.ceil(width / scale))
    for j in range(ny):
        for i in range(nx):
            ops.append(FillEllipse((i + 0.5) * scale, (j + 0.5) * scale, r, r, primary))
    return PatternInstructions(width, height, secondary, tuple(ops))


@pattern("speed-lines")
def speed_lines(width, height, primary, secondary, scale, rng):
    count = max(8, int(height / scale * 4.0))
    ys = rng.uniform(0.0, height, size=count)
    starts = rng.uniform(-0.2 * width, 0.6 * width, size=count)
    lengths = rng.uniform(0.3 * width, 1.0 * width, size=count)
    widths = rng.uniform(0.5, max(0.5, scale / 8.0), size=count)
    ops = tuple(
        StrokeLine(float(x0), float(y), float(x0 + ln), float(y), float(w), primary)
        for y, x0, ln, w in zip(ys, starts, lengths, widths)
    )
    return PatternInstructions(width, height, secondary, ops)


@pattern("crosshatch")
def crosshatch(width, height, primary, secondary, scale, rng):
    step = scale / 2.0
    lw = max(0.5, scale / 20.0)
    ops: list[PatternOp] = []
    d = -height
    while d < width + height:
        ops.append(StrokeLine(d, 0.0, d + height, height, lw, primary))
        ops.append(StrokeLine(d + height, 0.0, d, height, lw, primary))
        d += step
    return PatternInstructions(width, height, secondary, tuple(ops))


@pattern("noise")
def noise(width, height, primary, secondary, scale, rng):
    count = min(4000, max(1, int(width * height / max(scale, 1.0))))
    xs = rng.uniform(0.0, width, size=count)
    ys = rng.uniform(0.0, height, size=count)
    alphas = rng.uniform(0.2, 1.0, size=count)
    size = max(0.5, scale / 20.0)
    r, g, b, a = primary
    ops = tuple(
        FillRect(float(x), float(y), size, size, (r, g, b, a * float(al)))
        for x, y, al in zip(xs, ys, alphas)
    )
    return PatternInstructions(width, height, secondary, ops)


@pattern("tie-dye")
def tie_dye(width, height, primary, secondary, scale, rng):
    count = 6
    cx = rng.uniform(0.0, width, size=count)
    cy = rng.uniform(0.0, height, size=count)
    radii = rng.uniform(0.3, 0.7, size=count) * max(width, height)
    ops = tuple(
        RadialBlob(
            float(x), float(y), float(rad), float(rad), secondary if i % 2 == 0 else primary
        )
        for i, (x, y, rad) in enumerate(zip(cx, cy, radii))
    )
    return PatternInstructions(width, height, primary, ops)


@pattern("hexagons")
def hexagons(width, height, primary, secondary, scale, rng):
    # pointy-top の六角格子。セル間の隙間に背景色が見える。
    r = scale / 2.0
    inner = r * 0.85
    dx = math.sqrt(3.0) * r
    dy = 1.5 * r
    ops: list[PatternOp] = []
    row = 0
    y = 0.0
    while y < height + r:
        x = (dx / 2.0) if row % 2 else 0.0
        while x < width + dx:
            pts = tuple(
                (
                    x + inner * math.cos(math.radians(60.0 * k - 90.0)),
                    y + inner * math.sin(math.radians(60.0 * k - 90.0)),
                )
                for k in range(6)
            )
            ops.append(FillPolygon(pts, primary))
            x += dx
        y += dy
        row += 1
    return PatternInstructions(width, height, secondary, tuple(ops))


__all__ = [
    "FillEllipse",
    "FillPolygon",
    "FillRect",
    "PatternInstructions",
    "PatternOp",
    "PatternRegistry",
    "RadialBlob",
    "StrokeLine",
    "generate_pattern",
    "pattern",
    "pattern_registry",
]
