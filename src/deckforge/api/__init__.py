# どこで: `src/deckforge/api/__init__.py`。
# 何を: 公開 API として Export と、Scene 構築・パス演算・書き出しに使う型と関数を再エクスポートする。
# なぜ: ユーザーコードが `from deckforge.api import ...` だけで Scene を組み立てて出力できるようにするため。

from __future__ import annotations

from .export import Export
from deckforge.core.boolean_ops import BooleanResult, BooleanStatus, boolean_nodes, boolean_op, fold_boolean
from deckforge.core.path_codec import PathGeometry, decode_path, encode_path
from deckforge.core.patterns import pattern
from deckforge.core.runtime_config import set_config_path
from deckforge.export.batch import BatchDesign, batch_export
from deckforge.export.image import ExportError, ExportProfile, export_scene, export_to_path

__all__ = [
    "BatchDesign",
    "BooleanResult",
    "BooleanStatus",
    "Export",
    "ExportError",
    "ExportProfile",
    "PathGeometry",
    "batch_export",
    "boolean_nodes",
    "boolean_op",
    "decode_path",
    "encode_path",
    "export_scene",
    "export_to_path",
    "fold_boolean",
    "pattern",
    "set_config_path",
]
