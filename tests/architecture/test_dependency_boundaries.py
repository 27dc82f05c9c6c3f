"""依存境界（core/export/api）の破りを検出するテスト。"""

from __future__ import annotations

import ast
from pathlib import Path


def _repo_root() -> Path:
    path = Path(__file__).resolve()
    for parent in path.parents:
        if (parent / "src").is_dir() and (parent / "tests").is_dir():
            return parent
    raise RuntimeError("repo root が見つからない")


def _module_name(path: Path, src_root: Path) -> tuple[str, bool]:
    parts = list(path.relative_to(src_root).parts)
    is_package = parts[-1] == "__init__.py"
    if is_package:
        parts = parts[:-1]
    else:
        parts[-1] = parts[-1].removesuffix(".py")
    return ".".join(parts), is_package


def _importfrom_targets(*, current_module: str, is_package: bool, node: ast.ImportFrom) -> set[str]:
    level = int(node.level or 0)
    if level == 0:
        base = str(node.module or "")
    else:
        package = current_module if is_package else current_module.rsplit(".", 1)[0]
        parts = package.split(".")
        up = level - 1
        if up >= len(parts):
            raise ValueError(f"相対 import の解決に失敗: module={current_module!r}, level={level}")
        base = ".".join(parts[: len(parts) - up])
        if node.module is not None:
            base = f"{base}.{node.module}"
    if not base:
        return set()
    targets = {base}
    targets.update(f"{base}.{a.name}" for a in node.names if a.name != "*")
    return targets


def _imports(path: Path, src_root: Path) -> set[str]:
    current, is_package = _module_name(path, src_root)
    out: set[str] = set()
    for node in ast.walk(ast.parse(path.read_text(encoding="utf-8"))):
        if isinstance(node, ast.Import):
            out.update(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom):
            out.update(_importfrom_targets(current_module=current, is_package=is_package, node=node))
    return out


def _assert_no_forbidden_imports(sub: str, forbidden: tuple[str, ...]) -> None:
    repo = _repo_root()
    src_root = repo / "src"
    violations: list[str] = []
    for path in sorted((src_root / "deckforge" / sub).rglob("*.py")):
        bad = sorted(m for m in _imports(path, src_root) if m.startswith(forbidden))
        if bad:
            violations.append(f"{path.relative_to(repo)}: {', '.join(bad)}")
    if violations:
        raise AssertionError("依存境界違反の import を検出:\n" + "\n".join(violations))


def test_core_does_not_depend_on_export_api_or_pillow() -> None:
    _assert_no_forbidden_imports("core", ("deckforge.export", "deckforge.api", "PIL"))


def test_export_does_not_depend_on_api() -> None:
    _assert_no_forbidden_imports("export", ("deckforge.api",))


def test_relative_imports_are_resolved() -> None:
    node = ast.parse("from ..export import svg\n").body[0]
    assert isinstance(node, ast.ImportFrom)
    got = _importfrom_targets(current_module="deckforge.core.renderer", is_package=False, node=node)
    assert {"deckforge.export", "deckforge.export.svg"} <= got

    node = ast.parse("from .export import Export\n").body[0]
    assert isinstance(node, ast.ImportFrom)
    got = _importfrom_targets(current_module="deckforge.api", is_package=True, node=node)
    assert "deckforge.api.export" in got
