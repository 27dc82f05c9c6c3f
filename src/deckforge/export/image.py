"""
どこで: `src/deckforge/export/image.py`。
何を: export profile の検証と、Scene を PNG/JPEG/PDF/SVG のバイト列（またはファイル）へ変換する入口。
なぜ: 形式や寸法の誤りを出力前に検出し、失敗時に中途半端なファイルを残さないため。
"""

from __future__ import annotations

import logging
import math
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image

from deckforge.core.renderer import SceneRenderer
from deckforge.core.resources import FileResourceResolver, ResourceResolver
from deckforge.core.runtime_config import output_root_dir, runtime_config
from deckforge.core.scene import Scene
from deckforge.export.pdf import encode_pdf
from deckforge.export.raster import RasterBackend, encode_image
from deckforge.export.svg import SvgBackend

logger = logging.getLogger(__name__)

RASTER_FORMATS = ("PNG", "JPEG", "PDF")
VECTOR_FORMATS = ("SVG",)

_EXTENSIONS = {"PNG": ".png", "JPEG": ".jpg", "PDF": ".pdf", "SVG": ".svg"}


class ExportError(ValueError):
    """export 設定（形式・寸法・品質）が不正。"""


@dataclass(frozen=True, slots=True)
class ExportProfile:
    """出力設定。

    Parameters
    ----------
    backend : str
        `"raster"` または `"vector"`。
    format : str
        raster は PNG/JPEG/PDF、vector は SVG。
    dpi_scale : float
        raster のキャンバス単位 → ピクセル倍率。PDF は config の `export.pdf.dpi_scale` を使う。
    quality : int
        JPEG 品質（1..100）。
    """

    backend: str = "raster"
    format: str = "PNG"
    dpi_scale: float = 3.0
    quality: int = 95

    def __post_init__(self) -> None:
        backend = str(self.backend).strip().lower()
        fmt = str(self.format).strip().upper()
        if fmt == "JPG":
            fmt = "JPEG"
        if backend == "raster":
            if fmt not in RASTER_FORMATS:
                raise ExportError(f"raster backend が扱えない形式です: {self.format!r}")
        elif backend == "vector":
            if fmt not in VECTOR_FORMATS:
                raise ExportError(f"vector backend が扱えない形式です: {self.format!r}")
        else:
            raise ExportError(f"未対応の backend です: {self.backend!r}")
        dpi = float(self.dpi_scale)
        if not (math.isfinite(dpi) and dpi > 0.0):
            raise ExportError(f"dpi_scale は正の値である必要があります: got={self.dpi_scale!r}")
        quality = int(self.quality)
        if not 1 <= quality <= 100:
            raise ExportError(f"quality は 1..100 である必要があります: got={self.quality!r}")
        object.__setattr__(self, "backend", backend)
        object.__setattr__(self, "format", fmt)
        object.__setattr__(self, "dpi_scale", dpi)
        object.__setattr__(self, "quality", quality)

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self.format]


def validate_scene(scene: Scene) -> None:
    """キャンバス寸法が有限の正値であることを確認する。"""
    for name in ("width", "height"):
        v = float(getattr(scene, name))
        if not (math.isfinite(v) and v > 0.0):
            raise ExportError(f"scene の {name} は正の値である必要があります: got={v!r}")


def render_raster(
    scene: Scene,
    *,
    dpi_scale: float,
    resolver: ResourceResolver | None = None,
    rng: np.random.Generator | None = None,
) -> Image.Image:
    """Scene を RGBA 画像へ描いて返す（`width*dpi_scale × height*dpi_scale`）。"""
    validate_scene(scene)
    cfg = runtime_config()
    backend = RasterBackend(dpi_scale=dpi_scale, supersample=cfg.supersample)
    renderer = SceneRenderer(
        backend,
        resolver=resolver if resolver is not None else FileResourceResolver(),
        text_samples=cfg.text_path_samples,
        rng=rng,
    )
    return renderer.render(scene)


def render_svg(
    scene: Scene,
    *,
    resolver: ResourceResolver | None = None,
    rng: np.random.Generator | None = None,
) -> str:
    """Scene を SVG 文字列にして返す。"""
    validate_scene(scene)
    renderer = SceneRenderer(
        SvgBackend(),
        resolver=resolver if resolver is not None else FileResourceResolver(),
        text_samples=runtime_config().text_path_samples,
        rng=rng,
    )
    return renderer.render(scene)


def export_scene(
    scene: Scene,
    profile: ExportProfile,
    resolver: ResourceResolver | None = None,
    *,
    rng: np.random.Generator | None = None,
) -> bytes:
    """Scene を profile に従ってエンコードしたバイト列を返す。

    Raises
    ------
    ExportError
        scene の寸法が不正な場合（何も描画しない）。
    """
    validate_scene(scene)
    if profile.backend == "vector":
        return render_svg(scene, resolver=resolver, rng=rng).encode("utf-8")

    if profile.format == "PDF":
        cfg = runtime_config()
        image = render_raster(scene, dpi_scale=cfg.pdf_dpi_scale, resolver=resolver, rng=rng)
        return encode_pdf(
            image,
            print_size_mm=cfg.pdf_print_size_mm,
            title=cfg.pdf_title,
            author=cfg.pdf_author,
            subject=cfg.pdf_subject,
        )

    image = render_raster(scene, dpi_scale=profile.dpi_scale, resolver=resolver, rng=rng)
    return encode_image(image, profile.format, quality=profile.quality)


def export_to_path(
    scene: Scene,
    profile: ExportProfile,
    path: str | Path,
    resolver: ResourceResolver | None = None,
    *,
    rng: np.random.Generator | None = None,
) -> Path:
    """export_scene の結果を path へ書き込む。

    一時ファイルへ書いてから置き換えるため、失敗時に既存ファイルは変わらない。
    """
    _path = Path(path)
    data = export_scene(scene, profile, resolver, rng=rng)
    _path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{_path.name}.", suffix=".tmp", dir=str(_path.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, _path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    logger.info("書き出しました: %s (%d bytes)", _path, len(data))
    return _path


def default_output_path(stem: str, profile: ExportProfile) -> Path:
    """`{output_root}/{format}/{stem}{ext}` を返す。"""
    return output_root_dir() / profile.format.lower() / f"{stem}{profile.extension}"


__all__ = [
    "ExportError",
    "ExportProfile",
    "RASTER_FORMATS",
    "VECTOR_FORMATS",
    "default_output_path",
    "export_scene",
    "export_to_path",
    "render_raster",
    "render_svg",
    "validate_scene",
]
