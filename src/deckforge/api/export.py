"""
どこで: `src/deckforge/api/export.py`。
何を: Scene をファイルへ書き出す公開導線 `Export` を提供する。
なぜ: 形式名と出力パスだけで、profile 構築から原子的な書き込みまでを 1 呼び出しで済ませるため。
"""

from __future__ import annotations

from pathlib import Path

from deckforge.core.resources import ResourceResolver
from deckforge.core.runtime_config import runtime_config
from deckforge.core.scene import Scene
from deckforge.export.image import ExportProfile, export_to_path

_BACKEND_BY_FMT = {
    "png": ("raster", "PNG"),
    "image": ("raster", "PNG"),
    "jpeg": ("raster", "JPEG"),
    "jpg": ("raster", "JPEG"),
    "pdf": ("raster", "PDF"),
    "svg": ("vector", "SVG"),
}


class Export:
    """Scene を 1 ファイルへ書き出す。"""

    def __init__(
        self,
        scene: Scene,
        fmt: str,
        path: str | Path,
        *,
        dpi_scale: float | None = None,
        quality: int | None = None,
        resolver: ResourceResolver | None = None,
    ) -> None:
        """export を実行する。

        Parameters
        ----------
        scene : Scene
            書き出す Scene。
        fmt : str
            `"png"`, `"jpeg"`, `"pdf"`, `"svg"`（`"image"` は png）。
        path : str or Path
            出力先パス。
        dpi_scale : float or None
            raster の倍率。None なら config の `export.raster.dpi_scale`。
        quality : int or None
            JPEG 品質。None なら config の `export.raster.jpeg_quality`。
        resolver : ResourceResolver or None
            画像参照の解決器。None ならファイル/data URI の既定解決器。
        """
        self.fmt = str(fmt).lower().strip()
        spec = _BACKEND_BY_FMT.get(self.fmt)
        if spec is None:
            raise ValueError(f"未対応の export fmt: {fmt!r}")

        cfg = runtime_config()
        backend, fmt_name = spec
        self.profile = ExportProfile(
            backend=backend,
            format=fmt_name,
            dpi_scale=cfg.raster_dpi_scale if dpi_scale is None else float(dpi_scale),
            quality=cfg.jpeg_quality if quality is None else int(quality),
        )
        self.path = export_to_path(scene, self.profile, path, resolver)
