# src/deckforge/export/blend.py
# premultiplied RGBA（float, 0..1）配列の合成。W3C Compositing の 16 合成モードを実装する。

from __future__ import annotations

from collections.abc import Callable

import numpy as np

_EPS = 1e-12

BlendFunc = Callable[[np.ndarray, np.ndarray], np.ndarray]


def _multiply(cb, cs):
    return cb * cs


def _screen(cb, cs):
    return cb + cs - cb * cs


def _hard_light(cb, cs):
    return np.where(cs <= 0.5, _multiply(cb, 2.0 * cs), _screen(cb, 2.0 * cs - 1.0))


def _overlay(cb, cs):
    return _hard_light(cs, cb)


def _darken(cb, cs):
    return np.minimum(cb, cs)


def _lighten(cb, cs):
    return np.maximum(cb, cs)


def _color_dodge(cb, cs):
    out = np.where(cs >= 1.0, 1.0, np.minimum(1.0, cb / np.maximum(1.0 - cs, _EPS)))
    return np.where(cb <= 0.0, 0.0, out)


def _color_burn(cb, cs):
    out = np.where(cs <= 0.0, 0.0, 1.0 - np.minimum(1.0, (1.0 - cb) / np.maximum(cs, _EPS)))
    return np.where(cb >= 1.0, 1.0, out)


def _soft_light(cb, cs):
    d = np.where(cb <= 0.25, ((16.0 * cb - 12.0) * cb + 4.0) * cb, np.sqrt(cb))
    return np.where(
        cs <= 0.5,
        cb - (1.0 - 2.0 * cs) * cb * (1.0 - cb),
        cb + (2.0 * cs - 1.0) * (d - cb),
    )


def _difference(cb, cs):
    return np.abs(cb - cs)


def _exclusion(cb, cs):
    return cb + cs - 2.0 * cb * cs


def _lum(c: np.ndarray) -> np.ndarray:
    return 0.3 * c[..., 0:1] + 0.59 * c[..., 1:2] + 0.11 * c[..., 2:3]


def _clip_color(c: np.ndarray) -> np.ndarray:
    lum = _lum(c)
    n = np.min(c, axis=-1, keepdims=True)
    x = np.max(c, axis=-1, keepdims=True)
    c = np.where(n < 0.0, lum + (c - lum) * lum / np.maximum(lum - n, _EPS), c)
    c = np.where(x > 1.0, lum + (c - lum) * (1.0 - lum) / np.maximum(x - lum, _EPS), c)
    return c


def _set_lum(c: np.ndarray, lum: np.ndarray) -> np.ndarray:
    return _clip_color(c + (lum - _lum(c)))


def _sat(c: np.ndarray) -> np.ndarray:
    return np.max(c, axis=-1, keepdims=True) - np.min(c, axis=-1, keepdims=True)


def _set_sat(c: np.ndarray, s: np.ndarray) -> np.ndarray:
    cmax = np.max(c, axis=-1, keepdims=True)
    cmin = np.min(c, axis=-1, keepdims=True)
    span = cmax - cmin
    scaled = (c - cmin) * s / np.maximum(span, _EPS)
    return np.where(span > _EPS, scaled, 0.0)


def _hue(cb, cs):
    return _set_lum(_set_sat(cs, _sat(cb)), _lum(cb))


def _saturation(cb, cs):
    return _set_lum(_set_sat(cb, _sat(cs)), _lum(cb))


def _color(cb, cs):
    return _set_lum(cs, _lum(cb))


def _luminosity(cb, cs):
    return _set_lum(cb, _lum(cs))


_BLEND_FUNCS: dict[str, BlendFunc] = {
    "multiply": _multiply,
    "screen": _screen,
    "overlay": _overlay,
    "darken": _darken,
    "lighten": _lighten,
    "color-dodge": _color_dodge,
    "color-burn": _color_burn,
    "hard-light": _hard_light,
    "soft-light": _soft_light,
    "difference": _difference,
    "exclusion": _exclusion,
    "hue": _hue,
    "saturation": _saturation,
    "color": _color,
    "luminosity": _luminosity,
}


def compose_over(dst: np.ndarray, src: np.ndarray) -> np.ndarray:
    """premultiplied の source-over。"""
    return src + dst * (1.0 - src[..., 3:4])


def compose(dst: np.ndarray, src: np.ndarray, mode: str = "normal") -> np.ndarray:
    """premultiplied RGBA の dst に src を合成した配列を返す。

    Notes
    -----
    合成モード B(Cb, Cs) を使い
    `co = cs·(1 - ab) + cb·(1 - as) + as·ab·B(Cb, Cs)` で合成する（cs, cb は premultiplied）。
    """
    if mode == "normal":
        return compose_over(dst, src)
    func = _BLEND_FUNCS.get(mode)
    if func is None:
        raise ValueError(f"未対応の blend mode: {mode!r}")

    sa = src[..., 3:4]
    da = dst[..., 3:4]
    cs = src[..., :3] / np.maximum(sa, _EPS)
    cb = dst[..., :3] / np.maximum(da, _EPS)
    mixed = np.clip(func(cb, cs), 0.0, 1.0)

    out = np.empty_like(dst)
    out[..., :3] = src[..., :3] * (1.0 - da) + dst[..., :3] * (1.0 - sa) + sa * da * mixed
    out[..., 3:4] = sa + da * (1.0 - sa)
    return out


def merge_at(base: np.ndarray, overlay: np.ndarray, offset: tuple[int, int], mode: str = "normal") -> None:
    """overlay を base の (x, y) 位置へ合成する（base をその場で更新する）。

    はみ出した部分は切り捨てる。
    """
    x, y = offset
    bh, bw = base.shape[:2]
    oh, ow = overlay.shape[:2]
    x0, x1 = max(0, x), min(bw, x + ow)
    y0, y1 = max(0, y), min(bh, y + oh)
    if x0 >= x1 or y0 >= y1:
        return
    region = base[y0:y1, x0:x1]
    src = overlay[y0 - y : y1 - y, x0 - x : x1 - x]
    region[...] = np.clip(compose(region, src, mode), 0.0, 1.0)


__all__ = ["compose", "compose_over", "merge_at"]
