"""
どこで: `src/deckforge/export/batch.py`。
何を: 複数デザインを並列に描画し、1 つの ZIP アーカイブにまとめる。
なぜ: 描画呼び出しは互いに独立なので、まとめ書き出しをスレッドプールで並列化できるため。
"""

from __future__ import annotations

import io
import logging
import re
import zipfile
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from deckforge.core.resources import ResourceResolver
from deckforge.core.scene import Scene
from deckforge.export.image import ExportError, ExportProfile, export_scene

logger = logging.getLogger(__name__)

ARCHIVE_FOLDER = "deckforge-designs"

_UNSAFE_RE = re.compile(r"[^a-z0-9]", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class BatchDesign:
    id: str
    name: str
    scene: Scene


@dataclass(frozen=True, slots=True)
class BatchResult:
    """ZIP 本体と、格納できた/失敗したデザイン id。"""

    archive: bytes
    written: tuple[str, ...]
    failed: tuple[str, ...]


def archive_filename(design: BatchDesign, profile: ExportProfile) -> str:
    """`{安全化した名前}_{id 先頭 8 文字}{拡張子}` を返す。"""
    safe = _UNSAFE_RE.sub("_", design.name).lower()
    return f"{safe}_{design.id[:8]}{profile.extension}"


def batch_export(
    designs: Sequence[BatchDesign],
    profile: ExportProfile | None = None,
    *,
    resolver: ResourceResolver | None = None,
    max_workers: int = 4,
    on_progress: Callable[[int, int], None] | None = None,
) -> BatchResult:
    """designs を profile（既定 PNG, dpi 3）で書き出して ZIP にまとめる。

    失敗したデザインは warning を出して飛ばす。アーカイブ内の順序は入力順。
    """
    prof = profile if profile is not None else ExportProfile()
    total = len(designs)

    def _one(design: BatchDesign) -> bytes | None:
        try:
            return export_scene(design.scene, prof, resolver)
        except (ExportError, ValueError, RuntimeError, OSError) as exc:
            logger.warning("デザインの書き出しに失敗したため飛ばします: %s (%s)", design.name, exc)
            return None

    results: list[bytes | None] = []
    if designs:
        workers = max(1, min(int(max_workers), total))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="deckforge-batch") as pool:
            for i, data in enumerate(pool.map(_one, designs), start=1):
                results.append(data)
                if on_progress is not None:
                    on_progress(i, total)

    written: list[str] = []
    failed: list[str] = []
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=6) as zf:
        for design, data in zip(designs, results):
            if data is None:
                failed.append(design.id)
                continue
            zf.writestr(f"{ARCHIVE_FOLDER}/{archive_filename(design, prof)}", data)
            written.append(design.id)
    return BatchResult(buf.getvalue(), tuple(written), tuple(failed))


__all__ = ["ARCHIVE_FOLDER", "BatchDesign", "BatchResult", "archive_filename", "batch_export"]
