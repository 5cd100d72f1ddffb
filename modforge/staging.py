"""Staging of the module sources: filtering, script merging, runtime layouts."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Mapping
import shutil

from .config_loader import PackagingSettings
from .console import Console
from .fsops import copy_file, replace_tree, wildcard_any
from .modules import ModuleDescriptor


def _copy_filtered(source: Path, destination: Path, *, exclude: List[str], scripts_only: bool) -> int:
    copied = 0
    for path in sorted(source.rglob("*")):
        relative = path.relative_to(source)
        if any(wildcard_any(part, exclude) for part in relative.parts):
            continue
        if not path.is_file():
            continue
        if scripts_only and path.suffix.lower() != ".ps1":
            continue
        copy_file(path, destination / relative)
        copied += 1
    return copied


def stage_module(project_path: Path, staging: Path, packaging: PackagingSettings, console: Console) -> int:
    """Copy the packageable parts of *project_path* into *staging*.

    Root files must match ``include_root``; ``include_all`` folders are copied
    whole, ``include_scripts`` folders contribute only ``.ps1`` files. Names
    matching ``exclude`` are skipped at any depth.
    """

    if not project_path.is_dir():
        raise FileNotFoundError(f"Project directory not found: {project_path}")
    staging.mkdir(parents=True, exist_ok=True)

    copied = 0
    for path in sorted(project_path.iterdir()):
        if not path.is_file() or wildcard_any(path.name, packaging.exclude):
            continue
        if wildcard_any(path.name, packaging.include_root):
            copy_file(path, staging / path.name)
            copied += 1

    for folder in packaging.include_all:
        source = project_path / folder
        if source.is_dir() and not wildcard_any(folder, packaging.exclude):
            copied += _copy_filtered(source, staging / folder, exclude=packaging.exclude, scripts_only=False)

    for folder in packaging.include_scripts:
        source = project_path / folder
        if source.is_dir() and not wildcard_any(folder, packaging.exclude):
            copied += _copy_filtered(source, staging / folder, exclude=packaging.exclude, scripts_only=True)

    console.info(f"Staged {copied} file(s) from {project_path} into {staging}")
    return copied


def merge_scripts(
    module: ModuleDescriptor,
    staging: Path,
    order: Iterable[str],
    console: Console,
    *,
    pre: str = "",
    post: str = "",
) -> Path:
    """Merge the staged script folders into ``<Name>.psm1`` and drop the folders."""

    folders = [staging / name for name in order]
    sources: List[Path] = []
    for folder in folders:
        if folder.is_dir():
            sources.extend(sorted(folder.rglob("*.ps1")))

    parts: List[str] = []
    if pre:
        parts.append(pre.rstrip("\n"))
    for source in sources:
        parts.append(source.read_text(encoding="utf-8-sig").rstrip("\n"))
    if post:
        parts.append(post.rstrip("\n"))

    target = staging / f"{module.name}.psm1"
    target.write_text("\n\n".join(parts) + "\n", encoding="utf-8")
    for folder in folders:
        if folder.is_dir():
            shutil.rmtree(folder)
    console.info(f"Merged {len(sources)} script(s) into {target.name}")
    return target


def write_runtime_layouts(staging: Path, runtime_paths: Mapping[str, Path], console: Console) -> List[Path]:
    written: List[Path] = []
    for runtime, path in runtime_paths.items():
        replace_tree(staging, path)
        console.info(f"Wrote {runtime} build to {path}")
        written.append(path)
    return written


__all__ = ["merge_scripts", "stage_module", "write_runtime_layouts"]
