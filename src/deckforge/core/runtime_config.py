# どこで: `src/deckforge/core/runtime_config.py`。
# 何を: config.yaml による実行時設定（探索・ロード・キャッシュ）を提供する。
# なぜ: フォント/画像の探索先や export の既定値を、コードを変えずにユーザーが指定できるようにするため。

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RuntimeConfig:
    """deckforge の実行時設定。"""

    config_path: Path | None
    output_dir: Path
    font_dirs: tuple[Path, ...]
    image_dirs: tuple[Path, ...]
    raster_dpi_scale: float
    jpeg_quality: int
    supersample: int
    pdf_dpi_scale: float
    pdf_print_size_mm: tuple[float, float]
    pdf_title: str
    pdf_author: str
    pdf_subject: str
    text_path_samples: int


_EXPLICIT_CONFIG_PATH: Path | None = None
_CONFIG_CACHE: RuntimeConfig | None = None


def set_config_path(path: str | Path | None) -> None:
    """以降の設定探索で使う明示 config パスを設定する。

    Notes
    -----
    `path` を None にすると明示指定を解除し、既定の探索に戻る。
    """

    global _EXPLICIT_CONFIG_PATH, _CONFIG_CACHE
    if path is None:
        _EXPLICIT_CONFIG_PATH = None
        _CONFIG_CACHE = None
        return
    _EXPLICIT_CONFIG_PATH = Path(str(path)).expanduser()
    _CONFIG_CACHE = None


def _default_config_candidates() -> tuple[Path, ...]:
    cwd = Path.cwd()
    home = Path.home()
    return (
        cwd / ".deckforge" / "config.yaml",
        home / ".config" / "deckforge" / "config.yaml",
    )


def _expand_path_text(text: str) -> str:
    return os.path.expandvars(os.path.expanduser(str(text)))


def _as_optional_path(value: Any) -> Path | None:
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    return Path(_expand_path_text(s))


def _as_path_list(value: Any, *, key: str) -> list[Path]:
    if value is None:
        return []
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return []
        return [Path(_expand_path_text(p)) for p in s.split(os.pathsep) if p]
    if not isinstance(value, (list, tuple)):
        raise RuntimeError(f"{key} はパスの配列である必要があります: got={value!r}")

    out: list[Path] = []
    for item in value:
        p = _as_optional_path(item)
        if p is not None:
            out.append(p)
    return out


def _as_mapping(value: Any, *, key: str) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return dict(value)
    raise RuntimeError(f"{key} は mapping である必要があります: got={value!r}")


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """mapping を再帰的にマージする（override 側が勝つ）。"""
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


def _require(value: Any, *, key: str) -> Any:
    if value is None:
        raise RuntimeError(f"{key} が未設定です（同梱 default_config.yaml を確認してください）")
    return value


def _as_float(value: Any, *, key: str) -> float:
    try:
        return float(_require(value, key=key))
    except (TypeError, ValueError) as exc:
        raise RuntimeError(f"{key} は数値である必要があります: got={value!r}") from exc


def _as_int(value: Any, *, key: str) -> int:
    try:
        return int(_require(value, key=key))
    except (TypeError, ValueError) as exc:
        raise RuntimeError(f"{key} は整数である必要があります: got={value!r}") from exc


def _as_float_pair(value: Any, *, key: str) -> tuple[float, float]:
    v = _require(value, key=key)
    if not isinstance(v, (list, tuple)) or len(v) != 2:
        raise RuntimeError(f"{key} は [w, h] の配列である必要があります: got={value!r}")
    try:
        return float(v[0]), float(v[1])
    except (TypeError, ValueError) as exc:
        raise RuntimeError(f"{key} は [w, h] の数値配列である必要があります: got={value!r}") from exc


def _load_yaml_text(text: str, *, source: str) -> dict[str, Any]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise RuntimeError(f"config.yaml の読み込みに失敗しました: source={source}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise RuntimeError(f"config.yaml は mapping である必要があります: source={source}")
    return dict(data)


def _load_yaml_config(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    return _load_yaml_text(text, source=str(path))


def _load_packaged_default_config() -> dict[str, Any]:
    """同梱デフォルト config をロードして dict を返す。"""

    try:
        blob = (
            resources.files("deckforge")
            .joinpath("resource", "default_config.yaml")
            .read_text(encoding="utf-8")
        )
    except (FileNotFoundError, ModuleNotFoundError) as exc:  # pragma: no cover
        raise RuntimeError(
            "同梱 default_config.yaml の読み込みに失敗しました"
            "（パッケージ配布物の package-data を確認してください）"
        ) from exc

    return _load_yaml_text(blob, source="deckforge/resource/default_config.yaml")


def runtime_config() -> RuntimeConfig:
    """実行時設定をロードして返す（キャッシュ）。

    上書き順（後勝ち）:
    1) 同梱 default_config.yaml
    2) `./.deckforge/config.yaml` / `~/.config/deckforge/config.yaml`
    3) `set_config_path(...)` の明示パス
    """

    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None:
        return _CONFIG_CACHE

    explicit_path = _EXPLICIT_CONFIG_PATH
    if explicit_path is not None and not explicit_path.is_file():
        raise FileNotFoundError(f"config.yaml が見つかりません: {explicit_path}")

    discovered_path: Path | None = None
    for p in _default_config_candidates():
        if p.is_file():
            discovered_path = p
            break

    payload = _load_packaged_default_config()
    if discovered_path is not None:
        payload = _merge(payload, _load_yaml_config(discovered_path))
    if explicit_path is not None:
        payload = _merge(payload, _load_yaml_config(explicit_path))

    version = _as_int(payload.get("version"), key="version")
    if version != 1:
        raise RuntimeError(f"未対応の config.yaml version です: got={version}")

    paths = _as_mapping(payload.get("paths"), key="paths")
    output_dir = _as_optional_path(paths.get("output_dir"))
    if output_dir is None:
        raise RuntimeError(
            "paths.output_dir が未設定です（同梱 default_config.yaml を確認してください）"
        )
    font_dirs = _as_path_list(paths.get("font_dirs"), key="paths.font_dirs")
    image_dirs = _as_path_list(paths.get("image_dirs"), key="paths.image_dirs")

    export = _as_mapping(payload.get("export"), key="export")
    raster = _as_mapping(export.get("raster"), key="export.raster")
    pdf = _as_mapping(export.get("pdf"), key="export.pdf")
    text = _as_mapping(payload.get("text"), key="text")

    raster_dpi_scale = _as_float(raster.get("dpi_scale"), key="export.raster.dpi_scale")
    if raster_dpi_scale <= 0:
        raise ValueError(f"export.raster.dpi_scale は正の値である必要があります: got={raster_dpi_scale}")
    jpeg_quality = _as_int(raster.get("jpeg_quality"), key="export.raster.jpeg_quality")
    if not 1 <= jpeg_quality <= 100:
        raise ValueError(f"export.raster.jpeg_quality は 1..100 である必要があります: got={jpeg_quality}")
    supersample = _as_int(raster.get("supersample"), key="export.raster.supersample")
    if supersample < 1:
        raise ValueError(f"export.raster.supersample は 1 以上である必要があります: got={supersample}")

    pdf_dpi_scale = _as_float(pdf.get("dpi_scale"), key="export.pdf.dpi_scale")
    if pdf_dpi_scale <= 0:
        raise ValueError(f"export.pdf.dpi_scale は正の値である必要があります: got={pdf_dpi_scale}")
    print_size = _as_float_pair(pdf.get("print_size_mm"), key="export.pdf.print_size_mm")
    if print_size[0] <= 0 or print_size[1] <= 0:
        raise ValueError(f"export.pdf.print_size_mm は正の値である必要があります: got={print_size}")

    samples = _as_int(text.get("path_samples"), key="text.path_samples")
    if samples < 200:
        logger.warning("text.path_samples は 200 以上に切り上げます: got=%d", samples)
        samples = 200

    cfg = RuntimeConfig(
        config_path=explicit_path or discovered_path,
        output_dir=output_dir,
        font_dirs=tuple(font_dirs),
        image_dirs=tuple(image_dirs),
        raster_dpi_scale=raster_dpi_scale,
        jpeg_quality=jpeg_quality,
        supersample=supersample,
        pdf_dpi_scale=pdf_dpi_scale,
        pdf_print_size_mm=print_size,
        pdf_title=str(pdf.get("title") or ""),
        pdf_author=str(pdf.get("author") or ""),
        pdf_subject=str(pdf.get("subject") or ""),
        text_path_samples=samples,
    )
    _CONFIG_CACHE = cfg
    return cfg


def output_root_dir() -> Path:
    """出力ファイルを保存する既定ルートディレクトリを返す。"""

    return Path(runtime_config().output_dir)


__all__ = ["RuntimeConfig", "output_root_dir", "runtime_config", "set_config_path"]
