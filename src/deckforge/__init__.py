# どこで: `src/deckforge/__init__.py`。
# 何を: ルート `deckforge` パッケージを定義する。
# なぜ: import 起点を `deckforge` に統一するため。

from __future__ import annotations

from deckforge.api import Export, ExportProfile, batch_export, export_scene

__all__ = ["Export", "ExportProfile", "batch_export", "export_scene"]
