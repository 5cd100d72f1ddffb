"""Packaging of assembled artefact trees into compressed files."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import tarfile
import zipfile

import zstandard as zstd

from .console import Console
from .tokens import TokenResolver

_SUFFIX_FORMATS: list[tuple[str, str]] = [
    (".tar.zst", "zst"),
    (".tzst", "zst"),
    (".tar.gz", "gztar"),
    (".tgz", "gztar"),
    (".tar.bz2", "bztar"),
    (".tbz", "bztar"),
    (".tar.xz", "xztar"),
    (".txz", "xztar"),
    (".tar", "tar"),
    (".zip", "zip"),
]

_FORMAT_ALIASES: dict[str, str] = {
    "zst": "zst",
    "tar.zst": "zst",
    "gztar": "gztar",
    "tar.gz": "gztar",
    "bztar": "bztar",
    "tar.bz2": "bztar",
    "xztar": "xztar",
    "tar.xz": "xztar",
    "tar": "tar",
    "zip": "zip",
}


def has_archive_suffix(path: Path | str) -> bool:
    name = str(path).lower()
    return any(name.endswith(suffix) for suffix, _ in _SUFFIX_FORMATS)


def artefact_file_name(
    tokens: TokenResolver,
    *,
    artefact_name: str | None = None,
    include_tag_name: bool = False,
    legacy_naming: bool = False,
) -> str:
    """Name of the archive produced for an artefact.

    Precedence: explicit ``artefact_name`` (tokens replaced), legacy
    ``v<ModuleVersion>.zip``, tagged ``<Name>.v<Version[-Pre]>.zip``, plain
    ``<Name>.zip``.
    """

    if artefact_name:
        return tokens.replace(artefact_name.strip())
    if legacy_naming:
        return f"{tokens.tag_name}.zip"
    if include_tag_name:
        return f"{tokens.module_name}.v{tokens.version_with_pre_release}.zip"
    return f"{tokens.module_name}.zip"


@dataclass(slots=True)
class ArchiveArtifact:
    """Directory whose contents are packaged into an archive."""

    source_dir: Path
    label: str | None = None


class ArchiveManager:
    """Create compressed archives from directories."""

    def __init__(self, console: Console) -> None:
        self._console = console

    def create_archive(
        self,
        *,
        artifact: ArchiveArtifact,
        target_path: Path | str,
        format_hint: str | None = None,
        overwrite: bool = True,
    ) -> Path:
        """Create an archive for *artifact* at *target_path*.

        Parameters
        ----------
        artifact:
            Directory to archive; its contents become the archive root.
        target_path:
            Exact path (including filename) for the archive.
        format_hint:
            Optional explicit format such as ``"zip"`` or ``"zst"``. When omitted,
            the format is inferred from the suffix of *target_path*.
        overwrite:
            When ``False`` and the target already exists, :class:`FileExistsError`
            is raised instead of replacing the file.
        """

        target = Path(target_path).expanduser()
        source_dir = Path(artifact.source_dir).expanduser()

        if not source_dir.is_dir():
            raise FileNotFoundError(f"Archive source directory '{source_dir}' does not exist")

        archive_format = self._resolve_archive_format(target=target, format_hint=format_hint)
        if target.resolve().is_relative_to(source_dir.resolve()):
            raise ValueError(f"Archive target '{target}' must not be inside the archived directory '{source_dir}'")

        if self._console.dry_run:
            label = artifact.label or source_dir.name
            self._console.dry(f"Would archive {label} to {target}")
            return target

        if target.exists():
            if not overwrite:
                raise FileExistsError(f"Archive target '{target}' already exists")
            target.unlink()

        target.parent.mkdir(parents=True, exist_ok=True)
        self._make_archive(target_path=target, archive_format=archive_format, source_dir=source_dir)
        self._console.debug(f"Archived {source_dir} to {target}")
        return target

    def _resolve_archive_format(self, *, target: Path, format_hint: str | None) -> str:
        if format_hint:
            normalized = format_hint.strip().lower()
            if normalized in _FORMAT_ALIASES:
                return _FORMAT_ALIASES[normalized]
            raise ValueError(f"Unsupported archive format hint '{format_hint}'")

        filename = target.name.lower()
        for suffix, fmt in sorted(_SUFFIX_FORMATS, key=lambda item: len(item[0]), reverse=True):
            if filename.endswith(suffix):
                return fmt

        raise ValueError(
            "Unable to determine archive format from target path. "
            "Provide an explicit format_hint or use a supported suffix."
        )

    def _make_archive(self, *, target_path: Path, archive_format: str, source_dir: Path) -> None:
        members = _archive_members(source_dir)
        if archive_format == "zip":
            with zipfile.ZipFile(target_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
                for path, name in members:
                    if path.is_file():
                        archive.write(path, name)
            return

        if archive_format == "zst":
            compressor = zstd.ZstdCompressor(level=19, write_checksum=True)
            with target_path.open("wb") as raw, compressor.stream_writer(raw) as stream:
                with tarfile.open(fileobj=stream, mode="w|", format=tarfile.PAX_FORMAT) as tar:
                    _add_members(tar, members)
            return

        mode = _TAR_MODES.get(archive_format)
        if mode is None:
            raise RuntimeError(f"Unsupported archive format '{archive_format}'")
        with tarfile.open(target_path, mode=mode, format=tarfile.PAX_FORMAT) as tar:
            _add_members(tar, members)


_TAR_MODES: dict[str, str] = {
    "tar": "w",
    "gztar": "w:gz",
    "bztar": "w:bz2",
    "xztar": "w:xz",
}


def _archive_members(source_dir: Path) -> list[tuple[Path, str]]:
    """Every path below *source_dir* in sorted order, with its archive name."""

    return [
        (path, path.relative_to(source_dir).as_posix())
        for path in sorted(source_dir.rglob("*"))
    ]


def _add_members(tar: tarfile.TarFile, members: list[tuple[Path, str]]) -> None:
    for path, name in members:
        tar.add(path, arcname=name, recursive=False)


__all__ = [
    "ArchiveArtifact",
    "ArchiveManager",
    "artefact_file_name",
    "has_archive_suffix",
]
