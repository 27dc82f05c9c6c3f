"""
どこで: `src/deckforge/export/svg.py`。
何を: Scene を SVG 文書として書き出す RenderBackend 実装を提供する。
なぜ: raster と同じ描画順・変換規則のまま、解像度非依存のベクタ出力を得るため。

出力の規約
----------
- ルート `<svg>` の width/height/viewBox は Scene の寸法。
- group は `<g transform>` として入れ子にし、葉要素は自分の局所行列を transform に持つ。
- 不透明度は renderer が累積した値を葉要素の `opacity` に出す（group には出さない）。
- グラデーション・パターン・フィルタは `<defs>` に置き、id で参照する。
"""

from __future__ import annotations

import base64
import io
import logging
from collections.abc import Sequence
from xml.sax.saxutils import escape

import numpy as np
from PIL import Image

from deckforge.core.filters import FilterOp, grayscale_matrix, sepia_matrix
from deckforge.core.path_codec import PathGeometry
from deckforge.core.patterns import (
    FillEllipse,
    FillPolygon,
    FillRect,
    PatternInstructions,
    RadialBlob,
    StrokeLine,
)
from deckforge.core.renderer import (
    PLACEHOLDER_COLOR,
    DrawState,
    Paint,
    linear_gradient_points,
    radial_gradient_geometry,
)
from deckforge.core.scene import Scene, TextPayload
from deckforge.core.style import (
    ColorRGBA,
    LinearGradientFill,
    PatternFill,
    RadialGradientFill,
    SolidFill,
    StrokeSpec,
    rgba01_to_hex,
)
from deckforge.core.text_layout import GlyphPlacement, TextRun
from deckforge.core.transform import to_svg_matrix

logger = logging.getLogger(__name__)

_SVG_NS = "http://www.w3.org/2000/svg"
_FLOAT_DECIMALS = 3

_MIME_BY_FORMAT = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "GIF": "image/gif",
    "WEBP": "image/webp",
    "BMP": "image/bmp",
}


def _fmt(value: float, *, decimals: int = _FLOAT_DECIMALS) -> str:
    """SVG 出力向けに float を決定的な短い文字列へ変換して返す。"""
    text = f"{float(value):.{int(decimals)}f}".rstrip("0").rstrip(".")
    if text in ("-0", "", "-"):
        return "0"
    return text


def _attrs(items: dict[str, str]) -> str:
    return " ".join(f'{k}="{escape(v, {chr(34): "&quot;"})}"' for k, v in items.items())


def _matrix_attr(m: np.ndarray) -> str:
    return "matrix(" + " ".join(_fmt(v, decimals=6) for v in to_svg_matrix(m)) + ")"


def _color_matrix_values(m3: np.ndarray) -> str:
    rows: list[str] = []
    for i in range(3):
        rows.append(" ".join(_fmt(v, decimals=6) for v in m3[i]) + " 0 0")
    rows.append("0 0 0 1 0")
    return " ".join(rows)


def _group_lines(placements: Sequence[GlyphPlacement]) -> list[list[GlyphPlacement]]:
    """ベースライン y が等しい連続区間ごとに分ける。"""
    lines: list[list[GlyphPlacement]] = []
    for p in placements:
        if lines and abs(lines[-1][-1].y - p.y) < 1e-9:
            lines[-1].append(p)
        else:
            lines.append([p])
    return lines


class SvgBackend:
    """SVG 文字列を組み立てる RenderBackend。"""

    def __init__(self) -> None:
        self._defs: list[str] = []
        self._body: list[str] = []
        self._depth = 1
        self._counter = 0
        self._width = 0.0
        self._height = 0.0

    # --- lifecycle -----------------------------------------------------------------

    def begin(self, scene: Scene, background: Paint | None) -> None:
        self._width = scene.width
        self._height = scene.height
        if background is None:
            return
        attrs = {
            "x": "0",
            "y": "0",
            "width": _fmt(scene.width),
            "height": _fmt(scene.height),
        }
        attrs.update(self._fill_attrs(background))
        self._emit(f"<rect {_attrs(attrs)} />")

    def enter_group(self, state: DrawState) -> None:
        attrs = {"data-node-id": state.node.id, "transform": _matrix_attr(state.local_matrix)}
        self._emit(f"<g {_attrs(attrs)}>")
        self._depth += 1

    def exit_group(self, state: DrawState) -> None:
        self._depth -= 1
        self._emit("</g>")

    def finish(self) -> str:
        lines: list[str] = ['<?xml version="1.0" encoding="UTF-8"?>']
        w = _fmt(self._width)
        h = _fmt(self._height)
        lines.append(f'<svg xmlns="{_SVG_NS}" width="{w}" height="{h}" viewBox="0 0 {w} {h}">')
        lines.append("  <defs>")
        lines.extend(self._defs)
        lines.append("  </defs>")
        lines.extend(self._body)
        lines.append("</svg>")
        return "\n".join(lines) + "\n"

    # --- drawing -------------------------------------------------------------------

    def draw_path(
        self, state: DrawState, path: PathGeometry, paint: Paint | None, stroke: StrokeSpec | None
    ) -> None:
        d = path.to_path_data()
        if not d:
            return
        attrs = self._leaf_attrs(state)
        attrs["d"] = d
        if paint is not None:
            attrs.update(self._fill_attrs(paint))
            attrs["fill-rule"] = "evenodd"
        else:
            attrs["fill"] = "none"
        attrs.update(self._stroke_attrs(stroke))
        self._emit(f"<path {_attrs(attrs)} />")

    def draw_text(
        self, state: DrawState, run: TextRun, paint: Paint | None, stroke: StrokeSpec | None
    ) -> None:
        payload = state.node.payload
        if not isinstance(payload, TextPayload):
            raise TypeError(f"text node の payload が TextPayload ではない: got={type(payload).__name__}")
        font = payload.font
        base = self._leaf_attrs(state)
        base.update(
            {
                "font-family": font.family,
                "font-size": _fmt(run.size),
                "font-weight": str(font.weight),
                "font-style": str(font.style),
                "xml:space": "preserve",
            }
        )
        if paint is not None:
            base.update(self._fill_attrs(paint))
        else:
            base["fill"] = "none"
        base.update(self._stroke_attrs(stroke))

        if not run.on_path:
            self._emit(f"<g {_attrs(base)}>")
            self._depth += 1
            for line in _group_lines(run.placements):
                xs = " ".join(_fmt(p.x - p.advance / 2.0) for p in line)
                text = escape("".join(p.char for p in line))
                self._emit(f'<text x="{xs}" y="{_fmt(line[0].y)}">{text}</text>')
            self._depth -= 1
            self._emit("</g>")
            return

        self._emit(f"<g {_attrs(base)}>")
        self._depth += 1
        for p in run.placements:
            if p.char.isspace():
                continue
            transform = f"translate({_fmt(p.x)} {_fmt(p.y)}) rotate({_fmt(p.angle)})"
            self._emit(
                f'<text x="0" y="0" text-anchor="middle" transform="{transform}">{escape(p.char)}</text>'
            )
        self._depth -= 1
        self._emit("</g>")

    def draw_image(
        self,
        state: DrawState,
        ref: str,
        data: bytes | None,
        width: float,
        height: float,
        chain: tuple[FilterOp, ...],
    ) -> None:
        mime = self._sniff(ref, data)
        attrs = self._leaf_attrs(state)
        if mime is None or data is None:
            attrs.update(
                {
                    "x": "0",
                    "y": "0",
                    "width": _fmt(width),
                    "height": _fmt(height),
                    "fill": rgba01_to_hex(PLACEHOLDER_COLOR),
                }
            )
            self._emit(f"<rect {_attrs(attrs)} />")
            return

        href = f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"
        attrs.update(
            {
                "x": "0",
                "y": "0",
                "width": _fmt(width),
                "height": _fmt(height),
                "preserveAspectRatio": "none",
                "href": href,
            }
        )
        if chain:
            attrs["filter"] = f"url(#{self._filter_def(chain)})"
        self._emit(f"<image {_attrs(attrs)} />")

    def draw_dots(
        self, state: DrawState, dots: Sequence[tuple[float, float, float]], color: ColorRGBA
    ) -> None:
        attrs = self._leaf_attrs(state)
        attrs.update(self._solid_attrs("fill", color))
        self._emit(f"<g {_attrs(attrs)}>")
        self._depth += 1
        for x, y, r in dots:
            self._emit(f'<circle cx="{_fmt(x)}" cy="{_fmt(y)}" r="{_fmt(r)}" />')
        self._depth -= 1
        self._emit("</g>")

    # --- internals -----------------------------------------------------------------

    def _emit(self, line: str) -> None:
        self._body.append("  " * self._depth + line)

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}{self._counter}"

    def _leaf_attrs(self, state: DrawState) -> dict[str, str]:
        attrs = {"data-node-id": state.node.id, "transform": _matrix_attr(state.local_matrix)}
        if state.opacity < 1.0:
            attrs["opacity"] = _fmt(state.opacity)
        if state.blend_mode != "normal":
            attrs["style"] = f"mix-blend-mode:{state.blend_mode}"
        return attrs

    @staticmethod
    def _solid_attrs(prefix: str, color: ColorRGBA) -> dict[str, str]:
        out = {prefix: rgba01_to_hex(color)}
        if color[3] < 1.0:
            out[f"{prefix}-opacity"] = _fmt(color[3])
        return out

    def _stroke_attrs(self, stroke: StrokeSpec | None) -> dict[str, str]:
        if stroke is None or stroke.width <= 0.0:
            return {}
        out = self._solid_attrs("stroke", stroke.color)
        out["stroke-width"] = _fmt(stroke.width)
        out["stroke-linecap"] = stroke.cap
        out["stroke-linejoin"] = "round"
        if stroke.dash_pattern:
            out["stroke-dasharray"] = " ".join(_fmt(v) for v in stroke.dash_pattern)
        return out

    def _fill_attrs(self, paint: Paint) -> dict[str, str]:
        fill = paint.fill
        if isinstance(fill, SolidFill):
            return self._solid_attrs("fill", fill.color)
        if isinstance(fill, LinearGradientFill):
            return {"fill": f"url(#{self._linear_def(fill, paint)})"}
        if isinstance(fill, RadialGradientFill):
            return {"fill": f"url(#{self._radial_def(fill, paint)})"}
        if isinstance(fill, PatternFill) and paint.pattern is not None:
            return {"fill": f"url(#{self._pattern_def(paint.pattern, paint)})"}
        if isinstance(fill, PatternFill):
            return self._solid_attrs("fill", fill.pattern.primary)
        raise TypeError(f"未対応の塗り: {type(fill).__name__}")

    def _stops(self, stops: Sequence[tuple[float, ColorRGBA]]) -> list[str]:
        out: list[str] = []
        for offset, color in stops:
            attrs = {"offset": _fmt(offset), "stop-color": rgba01_to_hex(color)}
            if color[3] < 1.0:
                attrs["stop-opacity"] = _fmt(color[3])
            out.append(f"      <stop {_attrs(attrs)} />")
        return out

    def _linear_def(self, fill: LinearGradientFill, paint: Paint) -> str:
        gid = self._next_id("grad")
        (x1, y1), (x2, y2) = linear_gradient_points(fill, paint.box)
        attrs = {
            "id": gid,
            "gradientUnits": "userSpaceOnUse",
            "x1": _fmt(x1),
            "y1": _fmt(y1),
            "x2": _fmt(x2),
            "y2": _fmt(y2),
        }
        self._defs.append(f"    <linearGradient {_attrs(attrs)}>")
        self._defs.extend(self._stops([(s.offset, s.color) for s in fill.stops]))
        self._defs.append("    </linearGradient>")
        return gid

    def _radial_def(self, fill: RadialGradientFill, paint: Paint) -> str:
        gid = self._next_id("grad")
        cx, cy, r = radial_gradient_geometry(paint.box)
        attrs = {"id": gid, "gradientUnits": "userSpaceOnUse", "cx": _fmt(cx), "cy": _fmt(cy), "r": _fmt(r)}
        self._defs.append(f"    <radialGradient {_attrs(attrs)}>")
        self._defs.extend(self._stops([(s.offset, s.color) for s in fill.stops]))
        self._defs.append("    </radialGradient>")
        return gid

    def _blob_def(self, op: RadialBlob) -> str:
        gid = self._next_id("blob")
        transparent = (op.color[0], op.color[1], op.color[2], 0.0)
        self._defs.append(f'    <radialGradient id="{gid}">')
        self._defs.extend(self._stops([(0.0, op.color), (1.0, transparent)]))
        self._defs.append("    </radialGradient>")
        return gid

    def _pattern_def(self, instr: PatternInstructions, paint: Paint) -> str:
        pid = self._next_id("pat")
        x0, y0 = paint.box[0], paint.box[1]
        items: list[str] = []
        bg = {"x": "0", "y": "0", "width": _fmt(instr.width), "height": _fmt(instr.height)}
        bg.update(self._solid_attrs("fill", instr.background))
        items.append(f"<rect {_attrs(bg)} />")
        for op in instr.ops:
            if isinstance(op, FillRect):
                a = {"x": _fmt(op.x), "y": _fmt(op.y), "width": _fmt(op.w), "height": _fmt(op.h)}
                a.update(self._solid_attrs("fill", op.color))
                items.append(f"<rect {_attrs(a)} />")
            elif isinstance(op, FillEllipse):
                a = {"cx": _fmt(op.cx), "cy": _fmt(op.cy), "rx": _fmt(op.rx), "ry": _fmt(op.ry)}
                a.update(self._solid_attrs("fill", op.color))
                items.append(f"<ellipse {_attrs(a)} />")
            elif isinstance(op, FillPolygon):
                a = {"points": " ".join(f"{_fmt(x)},{_fmt(y)}" for x, y in op.points)}
                a.update(self._solid_attrs("fill", op.color))
                items.append(f"<polygon {_attrs(a)} />")
            elif isinstance(op, StrokeLine):
                a = {
                    "x1": _fmt(op.x0),
                    "y1": _fmt(op.y0),
                    "x2": _fmt(op.x1),
                    "y2": _fmt(op.y1),
                    "stroke-width": _fmt(op.width),
                }
                a.update(self._solid_attrs("stroke", op.color))
                items.append(f"<line {_attrs(a)} />")
            elif isinstance(op, RadialBlob):
                bid = self._blob_def(op)
                a = {
                    "cx": _fmt(op.cx),
                    "cy": _fmt(op.cy),
                    "rx": _fmt(op.rx),
                    "ry": _fmt(op.ry),
                    "fill": f"url(#{bid})",
                }
                items.append(f"<ellipse {_attrs(a)} />")
        attrs = {
            "id": pid,
            "patternUnits": "userSpaceOnUse",
            "x": _fmt(x0),
            "y": _fmt(y0),
            "width": _fmt(instr.width),
            "height": _fmt(instr.height),
        }
        self._defs.append(f"    <pattern {_attrs(attrs)}>")
        self._defs.extend("      " + item for item in items)
        self._defs.append("    </pattern>")
        return pid

    def _filter_def(self, chain: tuple[FilterOp, ...]) -> str:
        fid = self._next_id("filter")
        prims: list[str] = []
        for op in chain:
            a = op.amount
            if op.name == "contrast":
                slope = _fmt(a, decimals=6)
                intercept = _fmt(0.5 - 0.5 * a, decimals=6)
                funcs = "".join(
                    f'<feFunc{c} type="linear" slope="{slope}" intercept="{intercept}" />' for c in "RGB"
                )
                prims.append(f"<feComponentTransfer>{funcs}</feComponentTransfer>")
            elif op.name == "brightness":
                slope = _fmt(a, decimals=6)
                funcs = "".join(f'<feFunc{c} type="linear" slope="{slope}" />' for c in "RGB")
                prims.append(f"<feComponentTransfer>{funcs}</feComponentTransfer>")
            elif op.name == "grayscale":
                values = _color_matrix_values(grayscale_matrix(a))
                prims.append(f'<feColorMatrix type="matrix" values="{values}" />')
            elif op.name == "sepia":
                values = _color_matrix_values(sepia_matrix(a))
                prims.append(f'<feColorMatrix type="matrix" values="{values}" />')
            elif op.name == "saturate":
                prims.append(f'<feColorMatrix type="saturate" values="{_fmt(a, decimals=6)}" />')
            elif op.name == "hue-rotate":
                prims.append(f'<feColorMatrix type="hueRotate" values="{_fmt(a, decimals=6)}" />')
            elif op.name == "invert":
                table = f"{_fmt(a, decimals=6)} {_fmt(1.0 - a, decimals=6)}"
                funcs = "".join(f'<feFunc{c} type="table" tableValues="{table}" />' for c in "RGB")
                prims.append(f"<feComponentTransfer>{funcs}</feComponentTransfer>")
            elif op.name == "blur":
                prims.append(f'<feGaussianBlur stdDeviation="{_fmt(a)}" />')
            else:
                raise ValueError(f"未対応の filter: {op.name!r}")
        self._defs.append(
            f'    <filter id="{fid}" x="-0.25" y="-0.25" width="1.5" height="1.5" '
            'color-interpolation-filters="sRGB">'
        )
        self._defs.extend("      " + p for p in prims)
        self._defs.append("    </filter>")
        return fid

    @staticmethod
    def _sniff(ref: str, data: bytes | None) -> str | None:
        if data is None:
            return None
        try:
            with Image.open(io.BytesIO(data)) as im:
                fmt = im.format
        except (OSError, ValueError) as exc:
            logger.warning("画像形式を判別できないためプレースホルダを出力します: %s (%s)", ref[:80], exc)
            return None
        mime = _MIME_BY_FORMAT.get(str(fmt).upper())
        if mime is None:
            logger.warning("SVG に埋め込めない画像形式のためプレースホルダを出力します: %s (%s)", ref[:80], fmt)
        return mime


__all__ = ["SvgBackend"]
