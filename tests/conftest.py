from __future__ import annotations

from pathlib import Path

import pytest
from fontTools.fontBuilder import FontBuilder  # type: ignore[import-untyped]
from fontTools.pens.ttGlyphPen import TTGlyphPen  # type: ignore[import-untyped]

from deckforge.core.font_resolver import clear_font_cache
from deckforge.core.runtime_config import set_config_path

# 1000 upem。A/B は幅 600 の箱グリフ、space は輪郭なし。
BOX_ADVANCE = 600
SPACE_ADVANCE = 250


def _box_glyph(x0: int, x1: int, top: int):
    pen = TTGlyphPen(None)
    pen.moveTo((x0, 0))
    pen.lineTo((x0, top))
    pen.lineTo((x1, top))
    pen.lineTo((x1, 0))
    pen.closePath()
    return pen.glyph()


def build_box_font(path: Path, family: str = "DeckTest") -> Path:
    """A/B/space だけを持つ最小 TrueType フォントを書き出す。"""
    fb = FontBuilder(1000, isTTF=True)
    fb.setupGlyphOrder([".notdef", "space", "A", "B"])
    fb.setupCharacterMap({ord(" "): "space", ord("A"): "A", ord("B"): "B"})
    fb.setupGlyf(
        {
            ".notdef": _box_glyph(50, 450, 700),
            "space": TTGlyphPen(None).glyph(),
            "A": _box_glyph(50, 550, 700),
            "B": _box_glyph(50, 550, 700),
        }
    )
    fb.setupHorizontalMetrics(
        {
            ".notdef": (500, 50),
            "space": (SPACE_ADVANCE, 0),
            "A": (BOX_ADVANCE, 50),
            "B": (BOX_ADVANCE, 50),
        }
    )
    fb.setupHorizontalHeader(ascent=800, descent=-200)
    fb.setupNameTable({"familyName": family, "styleName": "Regular"})
    fb.setupOS2(sTypoAscender=800, sTypoDescender=-200, usWinAscent=800, usWinDescent=200)
    fb.setupPost()
    path.parent.mkdir(parents=True, exist_ok=True)
    fb.save(str(path))
    return path


@pytest.fixture(scope="session")
def box_font_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    return build_box_font(tmp_path_factory.mktemp("fonts") / "DeckTest-Regular.ttf")


@pytest.fixture(autouse=True)
def _isolated_runtime_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    # 開発者の ~/.config/deckforge や ./.deckforge を拾わない
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    set_config_path(None)
    clear_font_cache()
    yield
    set_config_path(None)
    clear_font_cache()


@pytest.fixture
def font_config(tmp_path: Path, box_font_path: Path) -> Path:
    """box_font_path のディレクトリを font_dirs に持つ config を有効にする。"""
    cfg = tmp_path / "fonts.yaml"
    cfg.write_text(
        f'version: 1\npaths:\n  font_dirs:\n    - "{box_font_path.parent}"\n',
        encoding="utf-8",
    )
    set_config_path(cfg)
    return cfg
