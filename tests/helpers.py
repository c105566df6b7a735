"""Small filesystem helpers shared by the test modules."""

from __future__ import annotations

from pathlib import Path


def write_files(root: Path, files: dict[str, str | bytes]) -> None:
    """Create ``files`` (relative path → text or bytes) under ``root``."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")


def read_tree(root: Path, *, skip: tuple[str, ...] = ()) -> dict[str, bytes]:
    """Return regular files under ``root`` as relative path → bytes.

    Top-level entries named in ``skip`` are ignored.
    """
    out: dict[str, bytes] = {}
    for p in sorted(root.rglob("*")):
        rel = p.relative_to(root).as_posix()
        if rel.split("/")[0] in skip or not p.is_file() or p.is_symlink():
            continue
        out[rel] = p.read_bytes()
    return out
