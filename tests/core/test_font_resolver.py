from __future__ import annotations

from pathlib import Path

import pytest

from deckforge.core.font_resolver import resolve_font_path, search_dirs


def test_existing_path_is_returned_directly(box_font_path: Path) -> None:
    assert resolve_font_path(str(box_font_path)) == box_font_path.resolve()


def test_config_font_dirs_are_searched_first(font_config: Path, box_font_path: Path) -> None:
    assert search_dirs()[0] == box_font_path.parent
    assert resolve_font_path("DeckTest-Regular.ttf") == box_font_path.resolve()
    # ステム完全一致 → 部分一致（大文字小文字と空白は無視）
    assert resolve_font_path("decktest-regular") == box_font_path.resolve()
    assert resolve_font_path("Deck Test") == box_font_path.resolve()


def test_unknown_font_error_message_contains_hints(font_config: Path) -> None:
    with pytest.raises(FileNotFoundError) as excinfo:
        resolve_font_path("___no_such_font___")
    msg = str(excinfo.value)
    assert "searched_dirs=" in msg
    assert "font_dirs:" in msg
