# どこで: `src/deckforge/core/font_resolver.py`。
# 何を: FontSpec.family（パス / ファイル名 / 部分一致 / 総称名）をフォントファイルへ解決する。
# なぜ: config の `font_dirs` とシステムフォントの両方から、同じ規則で実体を引けるようにするため。

from __future__ import annotations

import sys
from pathlib import Path

from deckforge.core.runtime_config import runtime_config

_FONT_EXTENSIONS = (".ttf", ".otf", ".ttc")

# 総称ファミリ名 → 候補ファイル名ステム（先勝ち）。
_GENERIC_FAMILIES: dict[str, tuple[str, ...]] = {
    "sans-serif": ("DejaVuSans", "LiberationSans-Regular", "Arial", "Helvetica", "NotoSans-Regular"),
    "serif": ("DejaVuSerif", "LiberationSerif-Regular", "Times New Roman", "Times", "NotoSerif-Regular"),
    "monospace": ("DejaVuSansMono", "LiberationMono-Regular", "Courier New", "Menlo", "NotoSansMono-Regular"),
}

_FONT_FILES_CACHE: dict[tuple[str, ...], tuple[Path, ...]] = {}


def _system_font_dirs() -> tuple[Path, ...]:
    home = Path.home()
    if sys.platform == "darwin":
        return (Path("/System/Library/Fonts"), Path("/Library/Fonts"), home / "Library" / "Fonts")
    if sys.platform.startswith("win"):
        return (Path("C:/Windows/Fonts"),)
    return (Path("/usr/share/fonts"), Path("/usr/local/share/fonts"), home / ".fonts", home / ".local" / "share" / "fonts")


def search_dirs() -> tuple[Path, ...]:
    """探索ディレクトリ（config の font_dirs → システムフォント）を返す。"""

    cfg = runtime_config()
    dirs = [Path(d).expanduser() for d in cfg.font_dirs]
    dirs.extend(_system_font_dirs())
    return tuple(dirs)


def _list_font_files(*, dirs: tuple[Path, ...]) -> tuple[Path, ...]:
    key = tuple(str(d) for d in dirs)
    cached = _FONT_FILES_CACHE.get(key)
    if cached is not None:
        return cached

    # dirs の順を保ち、各 dir 内はファイル名で安定ソートする。
    seen: dict[Path, None] = {}
    for root in dirs:
        if not root.is_dir():
            continue
        found: list[Path] = []
        for ext in _FONT_EXTENSIONS:
            for fp in root.glob(f"**/*{ext}"):
                resolved = fp.resolve()
                if resolved.is_file():
                    found.append(resolved)
        for fp in sorted(found, key=lambda p: p.name.lower()):
            seen.setdefault(fp, None)

    out = tuple(seen)
    _FONT_FILES_CACHE[key] = out
    return out


def clear_font_cache() -> None:
    """フォントファイル列挙のキャッシュを破棄する。"""

    _FONT_FILES_CACHE.clear()


def _match(files: tuple[Path, ...], raw: str) -> Path | None:
    key = raw.lower().replace(" ", "")
    for fp in files:
        if fp.stem.lower().replace(" ", "") == key:
            return fp
    for fp in files:
        name = fp.name.lower().replace(" ", "")
        if key in name:
            return fp
    return None


def resolve_font_path(font: str) -> Path:
    """`font` 指定を実体ファイルへ解決して返す。

    解決順は以下。
    1) 実在パス（絶対/相対）
    2) 探索ディレクトリ直下のファイル名一致
    3) ステム完全一致 → 部分一致（dirs の順 → ファイル名順）
    4) 総称名（sans-serif / serif / monospace）の既知候補

    Raises
    ------
    FileNotFoundError
        いずれでも解決できない場合。
    """

    raw = str(font).strip()
    if not raw:
        raw = "sans-serif"

    direct_path = Path(raw).expanduser()
    if direct_path.suffix.lower() in _FONT_EXTENSIONS and direct_path.is_file():
        return direct_path.resolve()

    dirs = search_dirs()
    for d in dirs:
        fp = d / raw
        if fp.is_file():
            return fp.resolve()

    files = _list_font_files(dirs=dirs)
    generic = _GENERIC_FAMILIES.get(raw.lower())
    if generic is None:
        hit = _match(files, raw)
        if hit is not None:
            return hit
    else:
        for candidate in generic:
            hit = _match(files, candidate)
            if hit is not None:
                return hit

    searched = ", ".join(str(d) for d in dirs) if dirs else "(none)"
    cfg = runtime_config()
    example_yaml = "paths:\n  font_dirs:\n    - \"~/Fonts\"\n"
    hint = (
        f"フォントが見つかりません: font={raw!r}。"
        " 実在パスを渡すか、config.yaml の `paths.font_dirs` を設定してください"
        "（例: ./.deckforge/config.yaml または ~/.config/deckforge/config.yaml）。"
        f"\n\n{example_yaml}\nsearched_dirs={searched}, config_path={cfg.config_path}"
    )
    raise FileNotFoundError(hint)


__all__ = ["clear_font_cache", "resolve_font_path", "search_dirs"]
