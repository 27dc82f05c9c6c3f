from __future__ import annotations

import re

import pytest
from PIL import Image

from deckforge.core.runtime_config import set_config_path
from deckforge.core.scene import Scene
from deckforge.export.image import ExportProfile, export_scene
from deckforge.export.pdf import encode_pdf, pdf_resolution

_MEDIABOX_RE = re.compile(rb"/MediaBox\s*\[\s*0\s+0\s+([0-9.]+)\s+([0-9.]+)\s*\]")

_PT_PER_MM = 72.0 / 25.4


def _media_box_mm(data: bytes) -> tuple[float, float]:
    m = _MEDIABOX_RE.search(data)
    assert m is not None
    return float(m.group(1)) / _PT_PER_MM, float(m.group(2)) / _PT_PER_MM


def test_pdf_resolution_maps_pixels_to_print_width() -> None:
    assert pdf_resolution(768, 32.0) == pytest.approx(609.6)
    with pytest.raises(ValueError):
        pdf_resolution(100, 0.0)


def test_encode_pdf_page_matches_print_size() -> None:
    image = Image.new("RGBA", (64, 192), (255, 0, 0, 128))
    data = encode_pdf(image, print_size_mm=(32.0, 96.0), title="Deck")
    assert data.startswith(b"%PDF")
    w, h = _media_box_mm(data)
    assert w == pytest.approx(32.0, rel=1e-4)
    assert h == pytest.approx(96.0, rel=1e-4)


def test_encode_pdf_writes_metadata() -> None:
    data = encode_pdf(
        Image.new("RGB", (10, 10)),
        print_size_mm=(32.0, 96.0),
        title="Fingerboard Deck Design",
        author="DeckForge",
    )
    assert any(
        needle in data
        for needle in (b"Fingerboard Deck Design", "Fingerboard Deck Design".encode("utf-16-be"))
    )


def test_export_scene_pdf_uses_config_resolution(tmp_path) -> None:
    cfg = tmp_path / "pdf.yaml"
    cfg.write_text(
        "version: 1\nexport:\n  pdf:\n    dpi_scale: 1\n    print_size_mm: [32, 96]\n",
        encoding="utf-8",
    )
    set_config_path(cfg)
    # dpi_scale はプロファイルでなく config の export.pdf.dpi_scale を使う
    profile = ExportProfile(backend="raster", format="PDF", dpi_scale=50)
    data = export_scene(Scene(width=32, height=96), profile)
    assert data.startswith(b"%PDF")
    w, h = _media_box_mm(data)
    assert w == pytest.approx(32.0, rel=1e-4)
    assert h == pytest.approx(96.0, rel=1e-4)
