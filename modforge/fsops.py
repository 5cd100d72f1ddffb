"""Filesystem helpers: guarded clearing, tree replacement, wildcard matching."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable
import fnmatch
import shutil


def wildcard_match(name: str, pattern: str) -> bool:
    """Case-insensitive ``*``/``?`` match of a single path component."""

    if not pattern:
        return False
    return fnmatch.fnmatchcase(name.lower(), pattern.lower())


def wildcard_any(name: str, patterns: Iterable[str]) -> bool:
    return any(wildcard_match(name, pattern) for pattern in patterns)


def _ensure_not_root(path: Path) -> Path:
    full = path.expanduser().resolve()
    if full == Path(full.anchor) or full == Path.home():
        raise ValueError(f"Refusing to clear directory: {full}")
    return full


def recreate_directory(path: Path) -> Path:
    """Delete *path* (if present) and create it empty."""

    full = _ensure_not_root(path)
    if full.exists():
        shutil.rmtree(full)
    full.mkdir(parents=True)
    return full


def remove_tree(path: Path) -> bool:
    """Remove a directory or file at *path*; return whether anything was removed."""

    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    if path.is_dir():
        _ensure_not_root(path)
        shutil.rmtree(path)
        return True
    return False


def replace_tree(source: Path, destination: Path, *, ignore_patterns: Iterable[str] = ()) -> Path:
    """Copy *source* to *destination*, replacing whatever was there before."""

    if not source.is_dir():
        raise FileNotFoundError(f"Directory not found: {source}")
    remove_tree(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    patterns = list(ignore_patterns)

    def ignore(_: str, names: list[str]) -> set[str]:
        return {name for name in names if wildcard_any(name, patterns)}

    shutil.copytree(source, destination, ignore=ignore if patterns else None)
    return destination


def copy_file(source: Path, destination: Path) -> Path:
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, destination)
    return destination
