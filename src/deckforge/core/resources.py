"""
どこで: `src/deckforge/core/resources.py`。
何を: 画像参照（data URI / ファイルパス）をバイト列へ解決し、描画前にまとめて先読みする。
なぜ: 描画本体を同期・副作用なしに保ち、読み込み失敗をプレースホルダ描画へ落とすため。
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote_to_bytes

from deckforge.core.runtime_config import runtime_config
from deckforge.core.scene import IMAGE_KINDS, ImagePayload, Scene, SceneNode

logger = logging.getLogger(__name__)


class ResourceError(RuntimeError):
    """リソース参照を解決できない。"""


class ResourceResolver(Protocol):
    def resolve(self, ref: str) -> bytes: ...


def decode_data_uri(ref: str) -> bytes:
    """`data:[<mime>][;base64],<payload>` をデコードする。"""
    head, sep, payload = ref.partition(",")
    if not sep:
        raise ResourceError(f"不正な data URI です: {ref[:40]!r}")
    if head.endswith(";base64"):
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise ResourceError("data URI の base64 デコードに失敗しました") from exc
    return unquote_to_bytes(payload)


class FileResourceResolver:
    """data URI とローカルファイルを解決する。

    相対パスは `search_dirs`（None なら config の `paths.image_dirs`）から探す。
    ネットワーク参照は扱わない。
    """

    def __init__(self, search_dirs: Iterable[str | Path] | None = None) -> None:
        if search_dirs is None:
            self._dirs = tuple(Path(d).expanduser() for d in runtime_config().image_dirs)
        else:
            self._dirs = tuple(Path(d).expanduser() for d in search_dirs)

    def resolve(self, ref: str) -> bytes:
        if ref.startswith("data:"):
            return decode_data_uri(ref)
        if ref.startswith(("http://", "https://")):
            raise ResourceError(f"ネットワーク参照は未対応です: {ref}")

        candidates = [Path(ref).expanduser()]
        if not candidates[0].is_absolute():
            candidates.extend(d / ref for d in self._dirs)
        for fp in candidates:
            if fp.is_file():
                try:
                    return fp.read_bytes()
                except OSError as exc:
                    raise ResourceError(f"画像を読み込めません: {fp}") from exc
        raise ResourceError(f"画像が見つかりません: {ref}")


class DictResourceResolver:
    """参照文字列 → バイト列の mapping から解決する（テスト・埋め込み用）。"""

    def __init__(self, mapping: Mapping[str, bytes]) -> None:
        self._mapping = dict(mapping)

    def resolve(self, ref: str) -> bytes:
        if ref.startswith("data:"):
            return decode_data_uri(ref)
        try:
            return self._mapping[ref]
        except KeyError:
            raise ResourceError(f"未登録のリソースです: {ref}") from None


class ResolvedResources:
    """先読み済みリソース。失敗した参照は None を保持する。"""

    def __init__(self, data: Mapping[str, bytes | None] | None = None) -> None:
        self._data: dict[str, bytes | None] = dict(data or {})

    def get(self, ref: str) -> bytes | None:
        return self._data.get(ref)

    def __contains__(self, ref: object) -> bool:
        return ref in self._data

    def __len__(self) -> int:
        return len(self._data)


def _collect(nodes: Iterable[SceneNode], out: dict[str, None]) -> None:
    for node in nodes:
        if not node.visible:
            continue
        if node.kind in IMAGE_KINDS and isinstance(node.payload, ImagePayload):
            if node.payload.src:
                out.setdefault(node.payload.src, None)
        _collect(node.children, out)


def collect_resource_refs(scene: Scene) -> tuple[str, ...]:
    """表示対象の画像参照を描画順・重複なしで返す。"""
    out: dict[str, None] = {}
    _collect(scene.nodes, out)
    return tuple(out)


def _load(resolver: ResourceResolver, ref: str) -> bytes | None:
    try:
        return resolver.resolve(ref)
    except ResourceError as exc:
        logger.warning("リソースを読み込めないためプレースホルダで描画します: %s (%s)", ref[:80], exc)
        return None
    except Exception as exc:  # 外部 resolver の任意の失敗も 1 枚のプレースホルダに留める
        logger.warning(
            "resolver が例外を送出したためプレースホルダで描画します: %s (%s: %s)",
            ref[:80],
            exc.__class__.__name__,
            exc,
        )
        return None


def preload_resources(
    refs: Iterable[str], resolver: ResourceResolver, *, max_workers: int = 4
) -> ResolvedResources:
    """参照をスレッドプールで 1 回ずつ解決する。"""
    unique = list(dict.fromkeys(refs))
    if not unique:
        return ResolvedResources()
    workers = max(1, min(int(max_workers), len(unique)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="deckforge-res") as pool:
        results = list(pool.map(lambda r: _load(resolver, r), unique))
    return ResolvedResources(dict(zip(unique, results)))


__all__ = [
    "DictResourceResolver",
    "FileResourceResolver",
    "ResolvedResources",
    "ResourceError",
    "ResourceResolver",
    "collect_resource_refs",
    "decode_data_uri",
    "preload_resources",
]
