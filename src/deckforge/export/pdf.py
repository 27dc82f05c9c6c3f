"""
どこで: `src/deckforge/export/pdf.py`。
何を: 高解像度ラスタを 1 ページの PDF に包んで返す。
なぜ: 印刷用に、物理寸法（mm）とメタデータ付きの入稿ファイルを作るため。
"""

from __future__ import annotations

import io

from PIL import Image

MM_PER_INCH = 25.4


def pdf_resolution(image_width_px: int, print_width_mm: float) -> float:
    """画像幅が印刷幅 [mm] に一致する解像度 [dpi] を返す。"""
    if print_width_mm <= 0:
        raise ValueError(f"print_width_mm は正の値である必要がある: got={print_width_mm}")
    return float(image_width_px) / (float(print_width_mm) / MM_PER_INCH)


def encode_pdf(
    image: Image.Image,
    *,
    print_size_mm: tuple[float, float],
    title: str = "",
    author: str = "",
    subject: str = "",
) -> bytes:
    """RGBA 画像を白背景へ平坦化し、PDF のバイト列にする。

    Notes
    -----
    ページ幅は `print_size_mm[0]` になる。高さは画像の縦横比に従う。
    """
    flat = Image.new("RGB", image.size, (255, 255, 255))
    if image.mode == "RGBA":
        flat.paste(image, mask=image.getchannel("A"))
    else:
        flat.paste(image.convert("RGB"))
    buf = io.BytesIO()
    flat.save(
        buf,
        format="PDF",
        resolution=pdf_resolution(image.width, print_size_mm[0]),
        title=title,
        author=author,
        subject=subject,
    )
    return buf.getvalue()


__all__ = ["encode_pdf", "pdf_resolution"]
