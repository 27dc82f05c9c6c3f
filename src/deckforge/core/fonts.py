"""
どこで: `src/deckforge/core/fonts.py`。
何を: fontTools によるグリフ advance とアウトライン（平坦化済みリング）の取得、および読み込み失敗時の代替メトリクスを提供する。
なぜ: テキスト配置と raster 描画が同じフォント計量を使い、フォント欠落でも描画を止めないため。
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable
from pathlib import Path
from typing import Any

import numpy as np

from deckforge.core.font_resolver import resolve_font_path
from deckforge.core.scene import FontSpec

logger = logging.getLogger(__name__)

_BOLD_WEIGHTS = frozenset({"bold", "600", "700", "800", "900"})


class _LRU:
    """単純な上限付き LRU キャッシュ（キー: str）。"""

    def __init__(self, maxsize: int = 1024) -> None:
        self.maxsize = int(maxsize)
        self._od: OrderedDict[str, Any] = OrderedDict()

    def get(self, key: str) -> Any | None:
        value = self._od.get(key)
        if value is not None:
            self._od.move_to_end(key)
        return value

    def set(self, key: str, value: Any) -> None:
        self._od[key] = value
        self._od.move_to_end(key)
        if len(self._od) > self.maxsize:
            self._od.popitem(last=False)


def _commands_to_rings_em(commands: tuple, *, units_per_em: float) -> tuple[np.ndarray, ...]:
    """RecordingPen.value（平坦化済み）を「1em=1, Y 下向き」のリング列へ変換する。"""
    scale = 1.0 / float(units_per_em)
    rings: list[np.ndarray] = []
    current: list[tuple[float, float]] = []

    def flush() -> None:
        nonlocal current
        if len(current) >= 3:
            arr = np.asarray(current, dtype=np.float64) * scale
            arr[:, 1] *= -1.0
            rings.append(arr)
        current = []

    for cmd_type, cmd_values in commands:
        if cmd_type == "moveTo":
            flush()
            x, y = cmd_values[0]
            current.append((float(x), float(y)))
        elif cmd_type == "lineTo":
            x, y = cmd_values[0]
            current.append((float(x), float(y)))
        elif cmd_type in ("closePath", "endPath"):
            flush()
    flush()
    return tuple(rings)


class FontFace:
    """TTFont を包み、advance とグリフ輪郭を em 単位で返す。"""

    is_fallback = False

    def __init__(self, path: Path, font_index: int = 0) -> None:
        from fontTools.ttLib import TTFont  # type: ignore[import-untyped]

        resolved = Path(path).resolve()
        idx = max(0, int(font_index))
        if resolved.suffix.lower() == ".ttc":
            font = TTFont(resolved, fontNumber=idx)
        else:
            font = TTFont(resolved)
        self.path = resolved
        self._font = font
        self.units_per_em = float(font["head"].unitsPerEm)  # type: ignore[index]
        self._cmap = font.getBestCmap() or {}
        self._glyph_set = font.getGlyphSet()
        self._outline_cache = _LRU(maxsize=1024)

        hhea = font["hhea"] if "hhea" in font else None
        if hhea is not None:
            self.ascender_em = float(hhea.ascent) / self.units_per_em
            self.descender_em = float(hhea.descent) / self.units_per_em
        else:
            self.ascender_em = 0.8
            self.descender_em = -0.2

    @property
    def family_name(self) -> str:
        name = self._font["name"].getDebugName(1) if "name" in self._font else None
        return str(name) if name else self.path.stem

    def _glyph_name(self, char: str) -> str | None:
        return self._cmap.get(ord(char))

    def advance_em(self, char: str) -> float:
        """1em を 1.0 とした advance を返す。未収録の文字は 0。"""
        hmtx = self._font["hmtx"]  # type: ignore[index]
        if char == " ":
            glyph_name = self._glyph_name(char) or "space"
            if glyph_name in hmtx.metrics:
                return float(hmtx.metrics[glyph_name][0]) / self.units_per_em
            return 0.25
        glyph_name = self._glyph_name(char)
        if glyph_name is None or glyph_name not in hmtx.metrics:
            return 0.0
        return float(hmtx.metrics[glyph_name][0]) / self.units_per_em

    def advance(self, char: str, size: float) -> float:
        return self.advance_em(char) * float(size)

    def glyph_outline_em(self, char: str) -> tuple[np.ndarray, ...]:
        """グリフ輪郭（原点はベースライン左端、Y 下向き, 1em=1）のリング列を返す。"""
        from fontPens.flattenPen import FlattenPen  # type: ignore[import-untyped]
        from fontTools.pens.recordingPen import (  # type: ignore[import-untyped]
            DecomposingRecordingPen,
            RecordingPen,
        )

        cached = self._outline_cache.get(char)
        if cached is not None:
            return cached

        glyph_name = self._glyph_name(char)
        glyph = self._glyph_set.get(glyph_name) if glyph_name is not None else None
        if glyph is None:
            if not char.isspace():
                logger.warning(
                    "Character '%s' (U+%04X) not found in font '%s'", char, ord(char), str(self.path)
                )
            self._outline_cache.set(char, ())
            return ()

        rec = DecomposingRecordingPen(self._glyph_set, reverseFlipped=True)
        try:
            glyph.draw(rec)
        except rec.MissingComponentError:  # type: ignore[attr-defined]
            logger.warning("Glyph '%s' has missing components in font '%s'", glyph_name, str(self.path))
            self._outline_cache.set(char, ())
            return ()

        flat = RecordingPen()
        flatten_pen = FlattenPen(
            flat, approximateSegmentLength=self.units_per_em / 64.0, segmentLines=True
        )
        rec.replay(flatten_pen)
        rings = _commands_to_rings_em(tuple(flat.value), units_per_em=self.units_per_em)
        self._outline_cache.set(char, rings)
        return rings

    def glyph_rings(self, char: str, size: float) -> list[np.ndarray]:
        return [ring * float(size) for ring in self.glyph_outline_em(char)]


class FallbackFace:
    """フォントを読めなかったときの代替計量。グリフは字幅に応じた箱で表す。"""

    is_fallback = True

    def __init__(self, family: str) -> None:
        self.family_name = str(family)
        self.ascender_em = 0.8
        self.descender_em = -0.2
        self.units_per_em = 1000.0

    def advance_em(self, char: str) -> float:
        return 0.25 if char.isspace() else 0.6

    def advance(self, char: str, size: float) -> float:
        return self.advance_em(char) * float(size)

    def glyph_outline_em(self, char: str) -> tuple[np.ndarray, ...]:
        if char.isspace():
            return ()
        box = np.array([[0.08, -0.7], [0.52, -0.7], [0.52, 0.0], [0.08, 0.0]], dtype=np.float64)
        return (box,)

    def glyph_rings(self, char: str, size: float) -> list[np.ndarray]:
        return [ring * float(size) for ring in self.glyph_outline_em(char)]


Face = FontFace | FallbackFace


def _candidate_names(spec: FontSpec) -> list[str]:
    bold = str(spec.weight).lower() in _BOLD_WEIGHTS
    italic = str(spec.style).lower() == "italic"
    suffix = ("Bold" if bold else "") + ("Italic" if italic else "")
    names: list[str] = []
    if suffix:
        names.append(f"{spec.family}-{suffix}")
        names.append(f"{spec.family} {suffix}")
    names.append(spec.family)
    return names


class FontProvider:
    """FontSpec から Face を引くキャッシュ付きの解決器。

    Notes
    -----
    解決に失敗した場合は warning を出して FallbackFace を返す（例外にしない）。
    """

    def __init__(self, resolver: Callable[[str], Path] = resolve_font_path) -> None:
        self._resolver = resolver
        self._faces: dict[tuple[str, str, str], Face] = {}

    def face(self, spec: FontSpec) -> Face:
        key = (spec.family, str(spec.weight), str(spec.style))
        cached = self._faces.get(key)
        if cached is not None:
            return cached

        face: Face | None = None
        errors: list[str] = []
        for name in _candidate_names(spec):
            try:
                face = FontFace(self._resolver(name))
                break
            except (FileNotFoundError, OSError) as exc:
                errors.append(f"{name}: {exc.__class__.__name__}")
            except Exception as exc:  # 破損フォントは fontTools 側の任意の例外になる
                errors.append(f"{name}: {exc!r}")
        if face is None:
            logger.warning(
                "フォントを読み込めないため代替計量で描画します: family=%r (%s)",
                spec.family,
                "; ".join(errors),
            )
            face = FallbackFace(spec.family)
        self._faces[key] = face
        return face


__all__ = ["Face", "FallbackFace", "FontFace", "FontProvider"]
