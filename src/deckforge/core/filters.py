# どこで: `src/deckforge/core/filters.py`。
# 何を: 画像要素に掛けるピクセルフィルタ（FilterSet）と、その評価順序付きチェーンを提供する。
# なぜ: no-op 値を省いた同一のチェーンを raster（numpy 評価、blur は backend 側）と SVG（filter primitive）で共有するため。

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass

import numpy as np

# CSS Filter Effects の行列係数。
_LUM_R = 0.2126
_LUM_G = 0.7152
_LUM_B = 0.0722


@dataclass(frozen=True, slots=True)
class FilterSet:
    """要素単位のフィルタ設定。

    Parameters
    ----------
    contrast, brightness, saturate : float
        パーセント値。100 が no-op。
    grayscale, sepia : float
        パーセント値。0 が no-op。
    threshold, invert : bool
        二値化（contrast 300% + grayscale 100%）/ 色反転。
    hue_rotate : float
        色相回転 [deg]。0 が no-op。
    blur : float
        ガウスぼかしの半径（キャンバス単位）。0 が no-op。
    """

    contrast: float = 100.0
    brightness: float = 100.0
    grayscale: float = 0.0
    threshold: bool = False
    hue_rotate: float = 0.0
    invert: bool = False
    saturate: float = 100.0
    sepia: float = 0.0
    blur: float = 0.0

    def __post_init__(self) -> None:
        for name in ("contrast", "brightness", "grayscale", "hue_rotate", "saturate", "sepia", "blur"):
            v = float(getattr(self, name))
            if not math.isfinite(v):
                raise ValueError(f"{name} は有限値である必要がある: got={v!r}")
            object.__setattr__(self, name, v)
        for name in ("contrast", "brightness", "grayscale", "saturate", "sepia", "blur"):
            if getattr(self, name) < 0.0:
                raise ValueError(f"{name} は 0 以上である必要がある: got={getattr(self, name)}")


@dataclass(frozen=True, slots=True)
class FilterOp:
    """チェーン中の 1 操作。amount は 0..1 の比率（hue-rotate は deg, blur はキャンバス単位）。"""

    name: str
    amount: float


def build_filter_chain(filters: FilterSet | None) -> tuple[FilterOp, ...]:
    """FilterSet を順序付きの操作列に変換する（no-op 値は省く）。

    Notes
    -----
    順序は contrast → brightness → grayscale → threshold → hue-rotate → invert →
    saturate → sepia → blur。threshold は contrast 300% と grayscale 100% に展開する。
    """
    if filters is None:
        return ()
    ops: list[FilterOp] = []
    if filters.contrast != 100.0:
        ops.append(FilterOp("contrast", filters.contrast / 100.0))
    if filters.brightness != 100.0:
        ops.append(FilterOp("brightness", filters.brightness / 100.0))
    if filters.grayscale > 0.0:
        ops.append(FilterOp("grayscale", min(filters.grayscale, 100.0) / 100.0))
    if filters.threshold:
        ops.append(FilterOp("contrast", 3.0))
        ops.append(FilterOp("grayscale", 1.0))
    if filters.hue_rotate != 0.0:
        ops.append(FilterOp("hue-rotate", filters.hue_rotate))
    if filters.invert:
        ops.append(FilterOp("invert", 1.0))
    if filters.saturate != 100.0:
        ops.append(FilterOp("saturate", filters.saturate / 100.0))
    if filters.sepia > 0.0:
        ops.append(FilterOp("sepia", min(filters.sepia, 100.0) / 100.0))
    if filters.blur > 0.0:
        ops.append(FilterOp("blur", filters.blur))
    return tuple(ops)


def filter_chain_to_css(chain: tuple[FilterOp, ...]) -> str:
    """チェーンを CSS `filter` 値の文字列にする（空なら `"none"`）。"""
    if not chain:
        return "none"
    parts: list[str] = []
    for op in chain:
        if op.name == "hue-rotate":
            parts.append(f"hue-rotate({op.amount:g}deg)")
        elif op.name == "blur":
            parts.append(f"blur({op.amount:g}px)")
        else:
            parts.append(f"{op.name}({op.amount * 100.0:g}%)")
    return " ".join(parts)


def grayscale_matrix(amount: float) -> np.ndarray:
    a = 1.0 - float(amount)
    return np.array(
        [
            [0.2126 + 0.7874 * a, 0.7152 - 0.7152 * a, 0.0722 - 0.0722 * a],
            [0.2126 - 0.2126 * a, 0.7152 + 0.2848 * a, 0.0722 - 0.0722 * a],
            [0.2126 - 0.2126 * a, 0.7152 - 0.7152 * a, 0.0722 + 0.9278 * a],
        ],
        dtype=np.float64,
    )


def sepia_matrix(amount: float) -> np.ndarray:
    a = 1.0 - float(amount)
    return np.array(
        [
            [0.393 + 0.607 * a, 0.769 - 0.769 * a, 0.189 - 0.189 * a],
            [0.349 - 0.349 * a, 0.686 + 0.314 * a, 0.168 - 0.168 * a],
            [0.272 - 0.272 * a, 0.534 - 0.534 * a, 0.131 + 0.869 * a],
        ],
        dtype=np.float64,
    )


def saturate_matrix(s: float) -> np.ndarray:
    s = float(s)
    return np.array(
        [
            [_LUM_R + (1 - _LUM_R) * s, _LUM_G - _LUM_G * s, _LUM_B - _LUM_B * s],
            [_LUM_R - _LUM_R * s, _LUM_G + (1 - _LUM_G) * s, _LUM_B - _LUM_B * s],
            [_LUM_R - _LUM_R * s, _LUM_G - _LUM_G * s, _LUM_B + (1 - _LUM_B) * s],
        ],
        dtype=np.float64,
    )


def hue_rotate_matrix(deg: float) -> np.ndarray:
    r = math.radians(float(deg))
    c = math.cos(r)
    s = math.sin(r)
    return np.array(
        [
            [0.213 + c * 0.787 - s * 0.213, 0.715 - c * 0.715 - s * 0.715, 0.072 - c * 0.072 + s * 0.928],
            [0.213 - c * 0.213 + s * 0.143, 0.715 + c * 0.285 + s * 0.140, 0.072 - c * 0.072 - s * 0.283],
            [0.213 - c * 0.213 - s * 0.787, 0.715 - c * 0.715 + s * 0.715, 0.072 + c * 0.928 + s * 0.072],
        ],
        dtype=np.float64,
    )


BlurFunc = Callable[[np.ndarray, float], np.ndarray]


def apply_filter_chain(
    rgba: np.ndarray,
    chain: tuple[FilterOp, ...],
    *,
    pixel_scale: float = 1.0,
    blur: BlurFunc | None = None,
) -> np.ndarray:
    """straight alpha の RGBA float 配列（H, W, 4; 0..1）にチェーンを適用して返す。

    Parameters
    ----------
    rgba : np.ndarray
        入力画像。書き換えない。
    chain : tuple[FilterOp, ...]
        `build_filter_chain` の戻り値。
    pixel_scale : float
        blur 半径をピクセルへ換算する倍率。
    blur : callable or None
        `(rgba, radius_px) -> rgba` のぼかし実装。チェーンに blur があるのに None なら ValueError。
    """
    out = np.array(rgba, dtype=np.float64, copy=True)
    for op in chain:
        rgb = out[..., :3]
        if op.name == "contrast":
            rgb = (rgb - 0.5) * op.amount + 0.5
        elif op.name == "brightness":
            rgb = rgb * op.amount
        elif op.name == "grayscale":
            rgb = rgb @ grayscale_matrix(op.amount).T
        elif op.name == "sepia":
            rgb = rgb @ sepia_matrix(op.amount).T
        elif op.name == "saturate":
            rgb = rgb @ saturate_matrix(op.amount).T
        elif op.name == "hue-rotate":
            rgb = rgb @ hue_rotate_matrix(op.amount).T
        elif op.name == "invert":
            rgb = op.amount * (1.0 - rgb) + (1.0 - op.amount) * rgb
        elif op.name == "blur":
            if blur is None:
                raise ValueError("blur を含むチェーンには blur 実装が必要")
            out = np.array(blur(out, op.amount * float(pixel_scale)), dtype=np.float64)
            continue
        else:
            raise ValueError(f"未対応の filter: {op.name!r}")
        out[..., :3] = np.clip(rgb, 0.0, 1.0)
    return out


__all__ = [
    "BlurFunc",
    "FilterOp",
    "FilterSet",
    "apply_filter_chain",
    "build_filter_chain",
    "filter_chain_to_css",
    "grayscale_matrix",
    "hue_rotate_matrix",
    "saturate_matrix",
    "sepia_matrix",
]
