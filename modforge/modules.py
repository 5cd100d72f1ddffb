"""Module identities, manifests and the installed-module locator."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence
import re

from .errors import ConfigurationError
from .loaders import find_config_file, load_config_file, optional_str


LATEST = "Latest"
MANIFEST_STEM = "module"
DEFAULT_VERSION = "0.0.0"

_VERSION_PATTERN = re.compile(r"^\d+(\.\d+){0,3}(-[0-9A-Za-z.-]+)?$")


def is_version(text: str) -> bool:
    return bool(_VERSION_PATTERN.match(text.strip()))


def version_key(text: str) -> tuple:
    """Sort key for dotted versions; a pre-release sorts before its release."""

    core, _, pre_release = text.strip().partition("-")
    numbers: List[int] = []
    for part in core.split("."):
        numbers.append(int(part) if part.isdigit() else 0)
    while len(numbers) < 4:
        numbers.append(0)
    # (1,) for releases so that "1.0.0" > "1.0.0-preview1"
    return (tuple(numbers), (1,) if not pre_release else (0, pre_release))


@dataclass(frozen=True, slots=True)
class ModuleDescriptor:
    """Identity of the module being built; fixed for one run."""

    name: str
    version: str
    project_path: Path
    manifest_path: Path | None = None
    pre_release: str | None = None

    @property
    def tag_name(self) -> str:
        return f"v{self.version}"

    @property
    def version_with_pre_release(self) -> str:
        if self.pre_release:
            return f"{self.version}-{self.pre_release}"
        return self.version


@dataclass(frozen=True, slots=True)
class RequiredModuleSpec:
    name: str
    version: str = LATEST
    minimum_version: str | None = None

    @property
    def wants_latest(self) -> bool:
        return self.version.lower() in {"latest", "auto"}

    @classmethod
    def from_value(cls, value: Any) -> "RequiredModuleSpec":
        if isinstance(value, str):
            name = value.strip()
            if not name:
                raise ConfigurationError("Required module entries cannot be empty strings")
            return cls(name=name)
        if isinstance(value, Mapping):
            raw_name = value.get("name") or value.get("module_name")
            name = optional_str(raw_name)
            if not name:
                raise ConfigurationError("Required module entries must include a non-empty 'name'")
            version = optional_str(value.get("version") or value.get("required_version")) or LATEST
            minimum = optional_str(value.get("minimum_version"))
            return cls(name=name, version=version, minimum_version=minimum)
        raise ConfigurationError("Required modules must be specified as strings or mappings")

    @classmethod
    def from_list(cls, value: Any, *, field_name: str) -> List["RequiredModuleSpec"]:
        if value is None:
            return []
        if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
            raise ConfigurationError(f"{field_name} must be an array of strings or tables")
        return [cls.from_value(entry) for entry in value]


@dataclass(slots=True)
class ModuleManifest:
    name: str
    version: str
    pre_release: str | None = None
    required_modules: List[RequiredModuleSpec] = field(default_factory=list)
    path: Path | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, fallback_name: str, fallback_version: str) -> "ModuleManifest":
        module_section = data.get("module", data)
        if not isinstance(module_section, Mapping):
            raise ConfigurationError("[module] section of a module manifest must be a table")
        return cls(
            name=optional_str(module_section.get("name")) or fallback_name,
            version=optional_str(module_section.get("version")) or fallback_version,
            pre_release=optional_str(module_section.get("pre_release")),
            required_modules=RequiredModuleSpec.from_list(
                module_section.get("required_modules"),
                field_name="module.required_modules",
            ),
        )


def read_manifest(folder: Path, *, fallback_name: str, fallback_version: str = DEFAULT_VERSION) -> ModuleManifest | None:
    """Read ``module.{toml,json,yaml,yml}`` from *folder* when present."""

    path = find_config_file(folder, MANIFEST_STEM)
    if path is None:
        return None
    manifest = ModuleManifest.from_mapping(
        load_config_file(path),
        fallback_name=fallback_name,
        fallback_version=fallback_version,
    )
    manifest.path = path
    return manifest


@dataclass(slots=True)
class InstalledModule:
    """A single installed copy of a module found under a module root."""

    name: str
    version: str
    path: Path
    required_modules: List[RequiredModuleSpec] = field(default_factory=list)


class ModuleRepository:
    """Locates installed module copies under a list of module roots.

    A module lives in ``<root>/<Name>/`` (matched case-insensitively), either
    directly or split into ``<root>/<Name>/<Version>/`` folders.
    """

    def __init__(self, roots: Iterable[Path]) -> None:
        self._roots = [Path(root) for root in roots]
        self._cache: Dict[str, List[InstalledModule]] = {}

    @property
    def roots(self) -> List[Path]:
        return list(self._roots)

    def find(self, name: str) -> List[InstalledModule]:
        key = name.lower()
        if key not in self._cache:
            candidates: List[InstalledModule] = []
            for root in self._roots:
                if not root.is_dir():
                    continue
                for entry in sorted(root.iterdir()):
                    if entry.is_dir() and entry.name.lower() == key:
                        candidates.extend(self._scan_module_folder(entry))
            candidates.sort(key=lambda module: version_key(module.version), reverse=True)
            self._cache[key] = candidates
        return list(self._cache[key])

    def _scan_module_folder(self, folder: Path) -> List[InstalledModule]:
        version_dirs = [child for child in sorted(folder.iterdir()) if child.is_dir() and is_version(child.name)]
        if not version_dirs:
            return [self._load(folder, fallback_version=DEFAULT_VERSION)]
        return [self._load(child, fallback_version=child.name) for child in version_dirs]

    def _load(self, folder: Path, *, fallback_version: str) -> InstalledModule:
        declared_name = folder.name if not is_version(folder.name) else folder.parent.name
        manifest = read_manifest(folder, fallback_name=declared_name, fallback_version=fallback_version)
        if manifest is None:
            return InstalledModule(name=declared_name, version=fallback_version, path=folder)
        return InstalledModule(
            name=manifest.name,
            version=manifest.version,
            path=folder,
            required_modules=list(manifest.required_modules),
        )


__all__ = [
    "InstalledModule",
    "LATEST",
    "ModuleDescriptor",
    "ModuleManifest",
    "ModuleRepository",
    "RequiredModuleSpec",
    "is_version",
    "read_manifest",
    "version_key",
]
