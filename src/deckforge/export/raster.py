"""
どこで: `src/deckforge/export/raster.py`。
何を: Pillow + numpy によるラスタ backend（RenderBackend 実装）と PNG/JPEG エンコードを提供する。
なぜ: 外部ラスタライザに頼らず、DPI 倍率付きのピクセルバッファへ直接描けるようにするため。

実装メモ
--------
- キャンバスは premultiplied RGBA の float 配列（H, W, 4; 0..1）。
- 塗りの被覆率は supersample 倍の 1bit マスクを even-odd（XOR）で重ね、BOX 縮小で求める。
- 描画は node の bbox に切り詰めた領域だけで行い、`blend.merge_at` で合成する。
"""

from __future__ import annotations

import io
import logging
import math
from collections.abc import Sequence

import numpy as np
from PIL import Image, ImageChops, ImageDraw, ImageFilter

from deckforge.core.filters import FilterOp, apply_filter_chain
from deckforge.core.geometry import dash_polyline
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
from deckforge.core.scene import Scene
from deckforge.core.style import (
    WHITE,
    ColorRGBA,
    LinearGradientFill,
    PatternFill,
    RadialGradientFill,
    SolidFill,
    StrokeSpec,
    rgba01_to_rgba255,
)
from deckforge.core.text_layout import TextRun
from deckforge.core.transform import apply, is_degenerate, mean_scale, rotate_deg, scale, translate
from deckforge.export.blend import merge_at

logger = logging.getLogger(__name__)

Region = tuple[int, int, int, int]

_CURVE_STEPS = 24


def _bbox_region(points: Sequence[np.ndarray], pad: float, width: int, height: int) -> Region | None:
    """点群の bbox を pad だけ広げ、キャンバスに切り詰めた整数領域を返す。"""
    arrays = [p for p in points if p.size]
    if not arrays:
        return None
    xy = np.concatenate(arrays, axis=0)
    if not np.all(np.isfinite(xy)):
        return None
    x0 = max(0, int(math.floor(float(np.min(xy[:, 0])) - pad)))
    y0 = max(0, int(math.floor(float(np.min(xy[:, 1])) - pad)))
    x1 = min(width, int(math.ceil(float(np.max(xy[:, 0])) + pad)))
    y1 = min(height, int(math.ceil(float(np.max(xy[:, 1])) + pad)))
    if x0 >= x1 or y0 >= y1:
        return None
    return x0, y0, x1, y1


def _pixel_centers(region: Region) -> tuple[np.ndarray, np.ndarray]:
    x0, y0, x1, y1 = region
    xs = np.arange(x0, x1, dtype=np.float64) + 0.5
    ys = np.arange(y0, y1, dtype=np.float64) + 0.5
    return np.meshgrid(xs, ys)


def _stop_colors(fill: LinearGradientFill | RadialGradientFill, t: np.ndarray) -> np.ndarray:
    offsets = np.asarray([s.offset for s in fill.stops], dtype=np.float64)
    colors = np.asarray([s.color for s in fill.stops], dtype=np.float64)
    out = np.empty(t.shape + (4,), dtype=np.float64)
    for c in range(4):
        out[..., c] = np.interp(t, offsets, colors[:, c])
    return out


def render_pattern(instr: PatternInstructions, pixel_scale: float) -> Image.Image:
    """PatternInstructions を pixel_scale 倍の RGBA 画像へ描く。"""
    k = float(pixel_scale)
    size = (max(1, int(math.ceil(instr.width * k))), max(1, int(math.ceil(instr.height * k))))
    img = Image.new("RGBA", size, rgba01_to_rgba255(instr.background))
    draw = ImageDraw.Draw(img, "RGBA")
    for op in instr.ops:
        if isinstance(op, FillRect):
            draw.rectangle(
                [op.x * k, op.y * k, (op.x + op.w) * k, (op.y + op.h) * k],
                fill=rgba01_to_rgba255(op.color),
            )
        elif isinstance(op, FillEllipse):
            draw.ellipse(
                [(op.cx - op.rx) * k, (op.cy - op.ry) * k, (op.cx + op.rx) * k, (op.cy + op.ry) * k],
                fill=rgba01_to_rgba255(op.color),
            )
        elif isinstance(op, FillPolygon):
            if len(op.points) >= 3:
                draw.polygon([(x * k, y * k) for x, y in op.points], fill=rgba01_to_rgba255(op.color))
        elif isinstance(op, StrokeLine):
            draw.line(
                [(op.x0 * k, op.y0 * k), (op.x1 * k, op.y1 * k)],
                fill=rgba01_to_rgba255(op.color),
                width=max(1, int(round(op.width * k))),
            )
        elif isinstance(op, RadialBlob):
            img.alpha_composite(_radial_blob(op, size, k))
    return img


def _radial_blob(op: RadialBlob, size: tuple[int, int], k: float) -> Image.Image:
    xs = (np.arange(size[0], dtype=np.float64) + 0.5) / k
    ys = (np.arange(size[1], dtype=np.float64) + 0.5) / k
    gx, gy = np.meshgrid(xs, ys)
    d = np.hypot((gx - op.cx) / max(op.rx, 1e-6), (gy - op.cy) / max(op.ry, 1e-6))
    alpha = np.clip(1.0 - d, 0.0, 1.0) * op.color[3]
    arr = np.empty((size[1], size[0], 4), dtype=np.uint8)
    r, g, b, _a = rgba01_to_rgba255(op.color)
    arr[..., 0] = r
    arr[..., 1] = g
    arr[..., 2] = b
    arr[..., 3] = np.round(alpha * 255.0).astype(np.uint8)
    return Image.fromarray(arr)


def _affine_data(m_px: np.ndarray, region: Region, post: np.ndarray) -> tuple[float, ...]:
    """出力領域のピクセル → 元画像ピクセルの逆写像係数（PIL AFFINE 用）を返す。"""
    x0, y0, _x1, _y1 = region
    inv = post @ np.linalg.inv(m_px) @ translate(x0, y0)
    return (
        float(inv[0, 0]),
        float(inv[0, 1]),
        float(inv[0, 2]),
        float(inv[1, 0]),
        float(inv[1, 1]),
        float(inv[1, 2]),
    )


def _to_float_rgba(img: Image.Image) -> np.ndarray:
    return np.asarray(img.convert("RGBA"), dtype=np.float64) / 255.0


def _from_float_rgba(arr: np.ndarray) -> Image.Image:
    return Image.fromarray(np.round(np.clip(arr, 0.0, 1.0) * 255.0).astype(np.uint8))


def gaussian_blur(rgba: np.ndarray, radius: float) -> np.ndarray:
    """straight RGBA float 配列に Pillow の GaussianBlur を掛ける。

    透明部の色が滲まないよう premultiplied（`RGBa`）へ変換してからぼかす。
    Pillow は端の画素を外側へ延長するため、画像外を透明として扱えるよう余白を付けてから切り戻す。
    """
    if radius <= 0.0:
        return rgba
    img = _from_float_rgba(rgba).convert("RGBa")
    pad = max(1, int(math.ceil(float(radius) * 3.0)))
    padded = Image.new("RGBa", (img.width + 2 * pad, img.height + 2 * pad), (0, 0, 0, 0))
    padded.paste(img, (pad, pad))
    blurred = padded.filter(ImageFilter.GaussianBlur(radius=float(radius)))
    blurred = blurred.crop((pad, pad, pad + img.width, pad + img.height))
    return _to_float_rgba(blurred.convert("RGBA"))


def _extend_ends(poly: np.ndarray, d: float) -> np.ndarray:
    """square cap 用に両端を d だけ延長する。"""
    out = poly.copy()
    for end, nxt in ((0, 1), (-1, -2)):
        v = out[end] - out[nxt]
        n = float(np.hypot(v[0], v[1]))
        if n > 0.0:
            out[end] = out[end] + v / n * d
    return out


class RasterBackend:
    """Pillow でピクセルバッファへ描く RenderBackend。

    Parameters
    ----------
    dpi_scale : float
        キャンバス単位 → ピクセルの倍率。出力は `width*dpi_scale × height*dpi_scale`。
    supersample : int
        被覆率計算の縦横サンプル倍率。
    """

    def __init__(self, *, dpi_scale: float = 3.0, supersample: int = 4) -> None:
        if not float(dpi_scale) > 0.0:
            raise ValueError(f"dpi_scale は正の値である必要がある: got={dpi_scale!r}")
        self.dpi_scale = float(dpi_scale)
        self.supersample = max(1, int(supersample))
        self._canvas: np.ndarray | None = None
        self._width = 0
        self._height = 0
        self._base = scale(self.dpi_scale)

    # --- lifecycle -----------------------------------------------------------------

    def begin(self, scene: Scene, background: Paint | None) -> None:
        self._width = max(1, int(round(scene.width * self.dpi_scale)))
        self._height = max(1, int(round(scene.height * self.dpi_scale)))
        self._canvas = np.zeros((self._height, self._width, 4), dtype=np.float64)
        if background is None:
            return
        region = (0, 0, self._width, self._height)
        color = self._paint_layer(background, self._base, region)
        self._composite(color, 1.0, 1.0, "normal", region)

    def enter_group(self, state: DrawState) -> None:
        # 不透明度は renderer が葉へ累積済み。
        return None

    def exit_group(self, state: DrawState) -> None:
        return None

    def finish(self) -> Image.Image:
        canvas = self._require_canvas()
        alpha = canvas[..., 3:4]
        rgb = np.where(alpha > 1e-12, canvas[..., :3] / np.maximum(alpha, 1e-12), 0.0)
        out = np.concatenate([rgb, alpha], axis=-1)
        return _from_float_rgba(out)

    # --- drawing -------------------------------------------------------------------

    def draw_path(
        self, state: DrawState, path: PathGeometry, paint: Paint | None, stroke: StrokeSpec | None
    ) -> None:
        m = self._base @ state.matrix
        if is_degenerate(m):
            return
        rings = [apply(m, r) for r in path.rings(_CURVE_STEPS)]
        if paint is not None:
            self._fill_rings([rings], paint, m, state)
        if stroke is not None and stroke.width > 0.0:
            self._stroke_polylines(rings, stroke, m, state)

    def draw_text(
        self, state: DrawState, run: TextRun, paint: Paint | None, stroke: StrokeSpec | None
    ) -> None:
        m = self._base @ state.matrix
        if is_degenerate(m):
            return
        glyphs: list[list[np.ndarray]] = []
        for p in run.placements:
            rings = run.face.glyph_rings(p.char, run.size)
            if not rings:
                continue
            g = m @ translate(p.x, p.y) @ rotate_deg(p.angle) @ translate(-p.advance / 2.0, 0.0)
            glyphs.append([apply(g, r) for r in rings])
        if not glyphs:
            return
        if paint is not None:
            self._fill_rings(glyphs, paint, m, state)
        if stroke is not None and stroke.width > 0.0:
            closed = [np.vstack([r, r[:1]]) for rings in glyphs for r in rings]
            self._stroke_polylines(closed, stroke, m, state)

    def draw_image(
        self,
        state: DrawState,
        ref: str,
        data: bytes | None,
        width: float,
        height: float,
        chain: tuple[FilterOp, ...],
    ) -> None:
        m = self._base @ state.matrix
        if is_degenerate(m):
            return
        img = self._decode(ref, data)
        if img is None:
            rect = np.array([[0.0, 0.0], [width, 0.0], [width, height], [0.0, height]])
            paint = Paint(SolidFill(PLACEHOLDER_COLOR), (0.0, 0.0, width, height))
            self._fill_rings([[apply(m, rect)]], paint, m, state)
            return

        if chain:
            arr = apply_filter_chain(
                _to_float_rgba(img), chain, pixel_scale=img.width / width, blur=gaussian_blur
            )
            img = _from_float_rgba(arr)

        corners = apply(m, np.array([[0.0, 0.0], [width, 0.0], [width, height], [0.0, height]]))
        region = _bbox_region([corners], 1.0, self._width, self._height)
        if region is None:
            return
        post = scale(img.width / width, img.height / height)
        size = (region[2] - region[0], region[3] - region[1])
        warped = img.transform(
            size,
            Image.Transform.AFFINE,
            _affine_data(m, region, post),
            resample=Image.Resampling.BICUBIC,
        )
        self._composite(_to_float_rgba(warped), 1.0, state.opacity, state.blend_mode, region)

    def draw_dots(
        self, state: DrawState, dots: Sequence[tuple[float, float, float]], color: ColorRGBA
    ) -> None:
        m = self._base @ state.matrix
        k = mean_scale(m)
        centers = apply(m, np.asarray([(x, y) for x, y, _r in dots], dtype=np.float64))
        radii = np.asarray([r for _x, _y, r in dots], dtype=np.float64) * k
        pad = float(np.max(radii)) + 1.0 if radii.size else 1.0
        region = _bbox_region([centers], pad, self._width, self._height)
        if region is None:
            return
        ss = self.supersample
        x0, y0, x1, y1 = region
        mask = Image.new("L", ((x1 - x0) * ss, (y1 - y0) * ss), 0)
        draw = ImageDraw.Draw(mask)
        for (cx, cy), r in zip(centers, radii):
            px = (cx - x0) * ss
            py = (cy - y0) * ss
            rs = r * ss
            draw.ellipse([px - rs, py - rs, px + rs, py + rs], fill=255)
        coverage = self._downsample(mask, region)
        color_arr = np.asarray(color, dtype=np.float64)[None, None, :]
        self._composite(color_arr, coverage, state.opacity, state.blend_mode, region)

    # --- internals -----------------------------------------------------------------

    def _require_canvas(self) -> np.ndarray:
        if self._canvas is None:
            raise RuntimeError("begin() の前に描画しようとしました")
        return self._canvas

    def _decode(self, ref: str, data: bytes | None) -> Image.Image | None:
        if data is None:
            return None
        try:
            with Image.open(io.BytesIO(data)) as im:
                im.load()
                return im.convert("RGBA")
        except (OSError, ValueError) as exc:
            logger.warning("画像をデコードできないためプレースホルダで描画します: %s (%s)", ref[:80], exc)
            return None

    def _downsample(self, mask: Image.Image, region: Region) -> np.ndarray:
        x0, y0, x1, y1 = region
        if mask.mode != "L":
            mask = mask.convert("L")
        if self.supersample > 1:
            mask = mask.resize((x1 - x0, y1 - y0), Image.Resampling.BOX)
        return np.asarray(mask, dtype=np.float64) / 255.0

    def _evenodd_coverage(self, rings: Sequence[np.ndarray], region: Region) -> np.ndarray | None:
        ss = self.supersample
        x0, y0, x1, y1 = region
        size = ((x1 - x0) * ss, (y1 - y0) * ss)
        acc: Image.Image | None = None
        for ring in rings:
            if ring.shape[0] < 3:
                continue
            img = Image.new("1", size, 0)
            pts = [((float(x) - x0) * ss, (float(y) - y0) * ss) for x, y in ring]
            ImageDraw.Draw(img).polygon(pts, fill=1)
            acc = img if acc is None else ImageChops.logical_xor(acc, img)
        if acc is None:
            return None
        return self._downsample(acc, region)

    def _fill_rings(
        self, shapes: Sequence[Sequence[np.ndarray]], paint: Paint, m: np.ndarray, state: DrawState
    ) -> None:
        """shapes（各要素が even-odd で塗るリング群）を合併して塗る。"""
        region = _bbox_region([r for rings in shapes for r in rings], 1.0, self._width, self._height)
        if region is None:
            return
        coverage: np.ndarray | None = None
        for rings in shapes:
            cov = self._evenodd_coverage(rings, region)
            if cov is None:
                continue
            coverage = cov if coverage is None else np.maximum(coverage, cov)
        if coverage is None:
            return
        color = self._paint_layer(paint, m, region)
        self._composite(color, coverage, state.opacity, state.blend_mode, region)

    def _stroke_polylines(
        self, polylines: Sequence[np.ndarray], stroke: StrokeSpec, m: np.ndarray, state: DrawState
    ) -> None:
        k = mean_scale(m)
        width_px = max(stroke.width * k, 1.0 / self.supersample)
        lines: list[np.ndarray] = []
        for poly in polylines:
            if poly.shape[0] < 2:
                continue
            if stroke.dash_pattern:
                lines.extend(dash_polyline(poly, [d * k for d in stroke.dash_pattern]))
            else:
                lines.append(poly)
        if not lines:
            return
        region = _bbox_region(lines, width_px / 2.0 + 2.0, self._width, self._height)
        if region is None:
            return

        ss = self.supersample
        x0, y0, x1, y1 = region
        mask = Image.new("L", ((x1 - x0) * ss, (y1 - y0) * ss), 0)
        draw = ImageDraw.Draw(mask)
        lw = max(1, int(round(width_px * ss)))
        half = width_px * ss / 2.0
        for line in lines:
            pts = (line - np.array([x0, y0], dtype=np.float64)) * ss
            if stroke.cap == "square":
                pts = _extend_ends(pts, half)
            draw.line([(float(x), float(y)) for x, y in pts], fill=255, width=lw, joint="curve")
            if stroke.cap == "round":
                for x, y in (pts[0], pts[-1]):
                    draw.ellipse([x - half, y - half, x + half, y + half], fill=255)
        coverage = self._downsample(mask, region)
        color = np.asarray(stroke.color, dtype=np.float64)[None, None, :]
        self._composite(color, coverage, state.opacity, state.blend_mode, region)

    def _paint_layer(self, paint: Paint, m: np.ndarray, region: Region) -> np.ndarray:
        """region の各ピクセルの塗り色（straight RGBA）を返す。"""
        fill = paint.fill
        if isinstance(fill, SolidFill):
            return np.asarray(fill.color, dtype=np.float64)[None, None, :]

        if isinstance(fill, PatternFill):
            if paint.pattern is None:
                return np.asarray(fill.pattern.primary, dtype=np.float64)[None, None, :]
            k = mean_scale(m)
            tile = render_pattern(paint.pattern, k)
            post = scale(k) @ translate(-paint.box[0], -paint.box[1])
            size = (region[2] - region[0], region[3] - region[1])
            warped = tile.transform(
                size,
                Image.Transform.AFFINE,
                _affine_data(m, region, post),
                resample=Image.Resampling.BILINEAR,
            )
            return _to_float_rgba(warped)

        gx, gy = _pixel_centers(region)
        inv = np.linalg.inv(m)
        u = inv[0, 0] * gx + inv[0, 1] * gy + inv[0, 2]
        v = inv[1, 0] * gx + inv[1, 1] * gy + inv[1, 2]
        if isinstance(fill, LinearGradientFill):
            (ax, ay), (bx, by) = linear_gradient_points(fill, paint.box)
            dx = bx - ax
            dy = by - ay
            len_sq = dx * dx + dy * dy
            if len_sq > 0.0:
                t = ((u - ax) * dx + (v - ay) * dy) / len_sq
            else:
                t = np.zeros_like(u)
        else:
            cx, cy, r = radial_gradient_geometry(paint.box)
            t = np.hypot(u - cx, v - cy) / r
        return _stop_colors(fill, np.clip(t, 0.0, 1.0))

    def _composite(
        self,
        color: np.ndarray,
        coverage: np.ndarray | float,
        opacity: float,
        blend_mode: str,
        region: Region,
    ) -> None:
        canvas = self._require_canvas()
        x0, y0, x1, y1 = region
        h = y1 - y0
        w = x1 - x0
        alpha = color[..., 3] * np.asarray(coverage, dtype=np.float64) * float(opacity)
        alpha = np.broadcast_to(alpha, (h, w))
        src = np.empty((h, w, 4), dtype=np.float64)
        src[..., :3] = np.broadcast_to(color[..., :3], (h, w, 3)) * alpha[..., None]
        src[..., 3] = alpha
        merge_at(canvas, src, (x0, y0), blend_mode)


def encode_image(
    image: Image.Image,
    fmt: str,
    *,
    quality: int = 95,
    background: ColorRGBA = WHITE,
) -> bytes:
    """RGBA 画像を PNG/JPEG のバイト列にする。JPEG は background の上へ平坦化する。"""
    buf = io.BytesIO()
    key = fmt.upper()
    if key == "PNG":
        image.save(buf, format="PNG")
    elif key in ("JPEG", "JPG"):
        flat = Image.new("RGB", image.size, rgba01_to_rgba255(background)[:3])
        flat.paste(image, mask=image.getchannel("A"))
        flat.save(buf, format="JPEG", quality=int(quality))
    else:
        raise ValueError(f"未対応のラスタ形式: {fmt!r}")
    return buf.getvalue()


__all__ = ["RasterBackend", "encode_image", "gaussian_blur", "render_pattern"]
