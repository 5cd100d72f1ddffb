"""Population of artefact destination trees."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Mapping

from .config_loader import RUNTIMES
from .console import Console
from .copy_spec import CopyOperation, CopyPlan
from .fsops import copy_file, remove_tree, replace_tree
from .modules import ModuleDescriptor
from .resolver import ResolutionResult


@dataclass(slots=True)
class ArtefactOutput:
    """What one artefact produced so far; filled in stage by stage."""

    artefact_id: str
    root: Path
    module_dir: Path | None = None
    archive_path: Path | None = None
    script_path: Path | None = None
    modules: List[str] = field(default_factory=list)
    copied: List[CopyOperation] = field(default_factory=list)

    @property
    def primary_path(self) -> Path:
        return self.archive_path or self.script_path or self.module_dir or self.root


def main_module_destination(module: ModuleDescriptor, destination: Path, *, include_tag: bool) -> Path:
    path = destination / module.name
    if include_tag:
        path = path / module.tag_name
    return path


def select_build_source(runtime_paths: Mapping[str, Path]) -> Path | None:
    """Prefer the ``Desktop`` build when present, then ``Core``."""

    for runtime in RUNTIMES:
        path = runtime_paths.get(runtime)
        if path is not None and path.is_dir():
            return path
    return None


class ArtefactCopier:
    def __init__(self, console: Console) -> None:
        self._console = console

    def copy_main_module(
        self,
        module: ModuleDescriptor,
        runtime_paths: Mapping[str, Path],
        destination: Path,
        *,
        include_tag: bool = False,
    ) -> Path | None:
        source = select_build_source(runtime_paths)
        if source is None:
            self._console.error(f"No built module found for '{module.name}' in any runtime layout")
            return None
        target = main_module_destination(module, destination, include_tag=include_tag)
        if target.exists():
            self._console.debug(f"Removing previous copy at {target}")
        replace_tree(source, target)
        self._console.info(f"Copied {module.name} from {source} to {target}")
        return target

    def copy_required_modules(self, resolution: ResolutionResult, modules_dir: Path) -> List[str]:
        """Copy every resolved dependency under *modules_dir* by canonical name."""

        for name in resolution.missing:
            self._console.warn(f"Required module '{name}' not found, skipped")

        copied: List[str] = []
        for dependency in resolution.dependencies:
            target = modules_dir / dependency.name
            if dependency.path.name != dependency.name:
                self._console.debug(
                    f"Renaming '{dependency.path.name}' to '{dependency.name}' for {dependency.path}"
                )
            replace_tree(dependency.path, target)
            self._console.info(f"Copied required module {dependency.name} {dependency.version} to {target}")
            copied.append(dependency.name)
        return copied

    def copy_files(self, plan: CopyPlan) -> bool:
        if plan.missing:
            for source in plan.missing:
                self._console.error(f"File to copy does not exist: {source}")
            return False
        for operation in plan.operations:
            copy_file(operation.source, operation.destination)
            self._console.debug(f"Copied file {operation.source} to {operation.destination}")
        return True

    def copy_folders(self, plan: CopyPlan) -> bool:
        for source in plan.missing:
            self._console.warn(f"Folder to copy does not exist, skipped: {source}")
        for operation in plan.operations:
            replace_tree(operation.source, operation.destination)
            self._console.debug(f"Copied folder {operation.source} to {operation.destination}")
        return True

    def write_script(
        self,
        module: ModuleDescriptor,
        build_source: Path,
        dependency_dirs: Iterable[Path],
        target: Path,
        *,
        pre: str = "",
        post: str = "",
    ) -> Path:
        """Write a single-file script out of the required and main module ``.psm1`` files."""

        parts: List[str] = []
        if pre:
            parts.append(pre.rstrip("\n"))
        for folder in dependency_dirs:
            parts.extend(_read_module_scripts(folder))
        main_parts = _read_module_scripts(build_source)
        if not main_parts:
            raise FileNotFoundError(f"No .psm1 file found for '{module.name}' in {build_source}")
        parts.extend(main_parts)
        if post:
            parts.append(post.rstrip("\n"))

        target.parent.mkdir(parents=True, exist_ok=True)
        remove_tree(target)
        target.write_text("\n\n".join(parts) + "\n", encoding="utf-8")
        self._console.info(f"Wrote script artefact {target}")
        return target


def _read_module_scripts(folder: Path) -> List[str]:
    return [
        path.read_text(encoding="utf-8-sig").rstrip("\n")
        for path in sorted(folder.glob("*.psm1"))
    ]


__all__ = [
    "ArtefactCopier",
    "ArtefactOutput",
    "main_module_destination",
    "select_build_source",
]
