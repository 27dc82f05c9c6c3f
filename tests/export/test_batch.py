from __future__ import annotations

import io
import logging
import zipfile

from PIL import Image

from deckforge.core.resources import DictResourceResolver
from deckforge.core.scene import Scene
from deckforge.export.batch import (
    ARCHIVE_FOLDER,
    BatchDesign,
    archive_filename,
    batch_export,
)
from deckforge.export.image import ExportProfile


def _design(design_id: str, name: str, width: float = 10.0) -> BatchDesign:
    return BatchDesign(design_id, name, Scene(width=width, height=20))


def test_archive_filename_is_sanitized() -> None:
    design = _design("abcdef123456", "Cool Deck #1")
    assert archive_filename(design, ExportProfile()) == "cool_deck__1_abcdef12.png"
    svg = ExportProfile(backend="vector", format="SVG")
    assert archive_filename(_design("x", "A"), svg) == "a_x.svg"


def test_batch_writes_designs_in_input_order() -> None:
    designs = [_design(f"id-{i:02d}-xxxxxxxx", f"Deck {i}") for i in range(5)]
    progress: list[tuple[int, int]] = []
    result = batch_export(
        designs,
        ExportProfile(dpi_scale=1),
        resolver=DictResourceResolver({}),
        max_workers=3,
        on_progress=lambda done, total: progress.append((done, total)),
    )
    assert result.written == tuple(d.id for d in designs)
    assert result.failed == ()
    assert progress == [(i, 5) for i in range(1, 6)]

    with zipfile.ZipFile(io.BytesIO(result.archive)) as zf:
        names = zf.namelist()
        assert names == [f"{ARCHIVE_FOLDER}/deck_{i}_id-{i:02d}-xx.png" for i in range(5)]
        img = Image.open(io.BytesIO(zf.read(names[0])))
        assert img.size == (10, 20)


def test_failed_design_is_skipped_with_warning(caplog) -> None:
    designs = [_design("good1", "Good"), _design("bad", "Broken", width=0), _design("good2", "Fine")]
    with caplog.at_level(logging.WARNING):
        result = batch_export(designs, ExportProfile(dpi_scale=1), resolver=DictResourceResolver({}))
    assert result.written == ("good1", "good2")
    assert result.failed == ("bad",)
    assert "Broken" in caplog.text
    with zipfile.ZipFile(io.BytesIO(result.archive)) as zf:
        assert len(zf.namelist()) == 2


def test_empty_batch_yields_empty_archive() -> None:
    result = batch_export([])
    assert result.written == ()
    with zipfile.ZipFile(io.BytesIO(result.archive)) as zf:
        assert zf.namelist() == []
