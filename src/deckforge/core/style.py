"""
どこで: `src/deckforge/core/style.py`。
何を: 色文字列の解釈と、塗り（Fill Spec）・線（Stroke Spec）・パターン指定のモデルを定義する。
なぜ: ラスタ/ベクタの両 backend が同じ塗り表現を解釈できるようにするため。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TypeAlias

ColorRGBA = tuple[float, float, float, float]

TRANSPARENT: ColorRGBA = (0.0, 0.0, 0.0, 0.0)
BLACK: ColorRGBA = (0.0, 0.0, 0.0, 1.0)
WHITE: ColorRGBA = (1.0, 1.0, 1.0, 1.0)

_NAMED_COLORS: dict[str, ColorRGBA] = {
    "black": BLACK,
    "white": WHITE,
    "red": (1.0, 0.0, 0.0, 1.0),
    "green": (0.0, 128.0 / 255.0, 0.0, 1.0),
    "blue": (0.0, 0.0, 1.0, 1.0),
    "yellow": (1.0, 1.0, 0.0, 1.0),
    "gray": (128.0 / 255.0, 128.0 / 255.0, 128.0 / 255.0, 1.0),
    "grey": (128.0 / 255.0, 128.0 / 255.0, 128.0 / 255.0, 1.0),
    "transparent": TRANSPARENT,
    "none": TRANSPARENT,
}

_FUNC_RE = re.compile(r"^(rgba?)\(\s*([^)]*)\)$", re.IGNORECASE)


def _clamp01(v: float) -> float:
    return 0.0 if v < 0.0 else 1.0 if v > 1.0 else v


def parse_color(value: str | tuple[float, ...]) -> ColorRGBA:
    """色指定を RGBA（0..1）に正規化して返す。

    Parameters
    ----------
    value : str or tuple
        `#rgb` / `#rrggbb` / `#rrggbbaa` / `rgb(r, g, b)` / `rgba(r, g, b, a)` /
        名前付き色、または 0..1 の 3/4 要素タプル。

    Returns
    -------
    ColorRGBA
        クランプ済みの (r, g, b, a)。

    Raises
    ------
    ValueError
        解釈できない色指定の場合。
    """
    if isinstance(value, tuple):
        if len(value) == 3:
            r, g, b = value
            return _clamp01(float(r)), _clamp01(float(g)), _clamp01(float(b)), 1.0
        if len(value) == 4:
            r, g, b, a = value
            return (
                _clamp01(float(r)),
                _clamp01(float(g)),
                _clamp01(float(b)),
                _clamp01(float(a)),
            )
        raise ValueError(f"色タプルは長さ 3 または 4 である必要がある: {value!r}")

    text = str(value).strip().lower()
    if text in _NAMED_COLORS:
        return _NAMED_COLORS[text]

    if text.startswith("#"):
        hex_part = text[1:]
        if len(hex_part) in (3, 4):
            hex_part = "".join(ch * 2 for ch in hex_part)
        if len(hex_part) not in (6, 8):
            raise ValueError(f"未対応の色指定: {value!r}")
        try:
            channels = [int(hex_part[i : i + 2], 16) for i in range(0, len(hex_part), 2)]
        except ValueError as exc:
            raise ValueError(f"未対応の色指定: {value!r}") from exc
        if len(channels) == 3:
            channels.append(255)
        r, g, b, a = (c / 255.0 for c in channels)
        return r, g, b, a

    m = _FUNC_RE.match(text)
    if m is not None:
        parts = [p.strip() for p in m.group(2).split(",") if p.strip()]
        if len(parts) not in (3, 4):
            raise ValueError(f"未対応の色指定: {value!r}")
        try:
            rgb = [float(p.rstrip("%")) * (2.55 if p.endswith("%") else 1.0) for p in parts[:3]]
            alpha = float(parts[3]) if len(parts) == 4 else 1.0
        except ValueError as exc:
            raise ValueError(f"未対応の色指定: {value!r}") from exc
        return (
            _clamp01(rgb[0] / 255.0),
            _clamp01(rgb[1] / 255.0),
            _clamp01(rgb[2] / 255.0),
            _clamp01(alpha),
        )

    raise ValueError(f"未対応の色指定: {value!r}")


def rgba01_to_rgba255(rgba: ColorRGBA) -> tuple[int, int, int, int]:
    """0..1 float の RGBA を 0..255 int の RGBA に変換して返す。"""

    return tuple(int(round(_clamp01(float(v)) * 255.0)) for v in rgba)  # type: ignore[return-value]


def rgba01_to_hex(rgba: ColorRGBA) -> str:
    """RGBA の RGB 部分を `#RRGGBB` に変換して返す（alpha は別属性で扱う）。"""

    r, g, b, _a = rgba01_to_rgba255(rgba)
    return f"#{r:02X}{g:02X}{b:02X}"


@dataclass(frozen=True, slots=True)
class GradientStop:
    """グラデーションの色停止点。"""

    offset: float
    color: ColorRGBA

    def __post_init__(self) -> None:
        offset = float(self.offset)
        if not 0.0 <= offset <= 1.0:
            raise ValueError(f"gradient stop の offset は 0..1 である必要がある: got={offset}")
        object.__setattr__(self, "offset", offset)
        object.__setattr__(self, "color", parse_color(self.color))


def _validate_stops(stops: tuple[GradientStop, ...]) -> tuple[GradientStop, ...]:
    out = tuple(stops)
    for prev, cur in zip(out, out[1:]):
        if cur.offset < prev.offset:
            raise ValueError("gradient stop の offset は単調非減少である必要がある")
    return out


@dataclass(frozen=True, slots=True)
class SolidFill:
    """単色塗り。"""

    color: ColorRGBA = BLACK

    def __post_init__(self) -> None:
        object.__setattr__(self, "color", parse_color(self.color))


@dataclass(frozen=True, slots=True)
class LinearGradientFill:
    """線形グラデーション。角度はバウンディングボックス中心を通る方向 [deg]。

    stops が空の場合、描画は `base_color` の単色へフォールバックする。
    """

    stops: tuple[GradientStop, ...] = ()
    angle: float = 0.0
    base_color: ColorRGBA = BLACK

    def __post_init__(self) -> None:
        object.__setattr__(self, "stops", _validate_stops(self.stops))
        object.__setattr__(self, "base_color", parse_color(self.base_color))


@dataclass(frozen=True, slots=True)
class RadialGradientFill:
    """バウンディングボックス中心から広がる放射グラデーション。"""

    stops: tuple[GradientStop, ...] = ()
    base_color: ColorRGBA = BLACK

    def __post_init__(self) -> None:
        object.__setattr__(self, "stops", _validate_stops(self.stops))
        object.__setattr__(self, "base_color", parse_color(self.base_color))


PATTERN_KINDS = (
    "checkerboard",
    "diagonal-stripes",
    "halftone",
    "speed-lines",
    "crosshatch",
    "noise",
    "tie-dye",
    "hexagons",
)


@dataclass(frozen=True, slots=True)
class PatternSpec:
    """手続き的パターン指定。"""

    kind: str
    primary: ColorRGBA = (204.0 / 255.0, 1.0, 0.0, 1.0)
    secondary: ColorRGBA = BLACK
    scale: float = 20.0

    def __post_init__(self) -> None:
        if self.kind not in PATTERN_KINDS:
            raise ValueError(f"未対応の pattern: {self.kind!r}")
        if float(self.scale) <= 0.0:
            raise ValueError(f"pattern の scale は正の値である必要がある: got={self.scale}")
        object.__setattr__(self, "primary", parse_color(self.primary))
        object.__setattr__(self, "secondary", parse_color(self.secondary))
        object.__setattr__(self, "scale", float(self.scale))


@dataclass(frozen=True, slots=True)
class PatternFill:
    """パターン参照による塗り。"""

    pattern: PatternSpec


FillSpec: TypeAlias = SolidFill | LinearGradientFill | RadialGradientFill | PatternFill


@dataclass(frozen=True, slots=True)
class StrokeSpec:
    """線のスタイル。"""

    color: ColorRGBA = BLACK
    width: float = 1.0
    dash: str = "solid"  # "solid" | "dashed" | "dotted"
    cap: str = "round"  # "butt" | "round" | "square"
    dash_pattern: tuple[float, ...] = field(default=(), compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "color", parse_color(self.color))
        if self.dash not in ("solid", "dashed", "dotted"):
            raise ValueError(f"未対応の dash スタイル: {self.dash!r}")
        if self.cap not in ("butt", "round", "square"):
            raise ValueError(f"未対応の line cap: {self.cap!r}")
        w = float(self.width)
        if w < 0.0:
            raise ValueError(f"stroke width は 0 以上である必要がある: got={w}")
        object.__setattr__(self, "width", w)
        if self.dash == "dashed":
            pattern = (w * 3.0, w * 2.0)
        elif self.dash == "dotted":
            pattern = (w, w * 1.5)
        else:
            pattern = ()
        object.__setattr__(self, "dash_pattern", pattern)


def fill_fallback_color(fill: FillSpec) -> ColorRGBA:
    """塗りを単色で代表させるときの色を返す（stops 空の gradient や placeholder 用）。"""

    if isinstance(fill, SolidFill):
        return fill.color
    if isinstance(fill, (LinearGradientFill, RadialGradientFill)):
        if fill.stops:
            return fill.stops[0].color
        return fill.base_color
    return fill.pattern.primary


__all__ = [
    "BLACK",
    "ColorRGBA",
    "FillSpec",
    "GradientStop",
    "LinearGradientFill",
    "PATTERN_KINDS",
    "PatternFill",
    "PatternSpec",
    "RadialGradientFill",
    "SolidFill",
    "StrokeSpec",
    "TRANSPARENT",
    "WHITE",
    "fill_fallback_color",
    "parse_color",
    "rgba01_to_hex",
    "rgba01_to_rgba255",
]
