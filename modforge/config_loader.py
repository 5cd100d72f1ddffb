"""Build configuration loading and validation logic."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence
import os

from .copy_spec import CopyGroup
from .errors import ConfigurationError
from .loaders import (
    coerce_bool,
    load_config_file,
    normalize_string_list,
    optional_str,
    resolve_search_paths,
    section,
)
from .modules import ModuleDescriptor, RequiredModuleSpec, read_manifest


MODULE_PATH_ENV = "MODFORGE_MODULE_PATH"

DEFAULT_EXCLUDE = [".*", "Ignore", "Examples", "package.json", "Publish", "Docs"]
DEFAULT_INCLUDE_ROOT = ["*.psm1", "*.psd1", "License*"]
DEFAULT_INCLUDE_SCRIPTS = ["Private", "Public", "Enums", "Classes"]
DEFAULT_INCLUDE_ALL = ["Images", "Resources", "Templates", "Bin", "Lib", "Data"]
DEFAULT_MERGE_ORDER = ["Enums", "Classes", "Private", "Public"]

RUNTIMES = ("Desktop", "Core")

STEP_NAMES = ("resolve", "stage", "merge", "placeholders", "build", "test", "artefacts", "publish")
_STEP_DEFAULTS = {
    "resolve": True,
    "stage": True,
    "merge": False,
    "placeholders": True,
    "build": True,
    "test": False,
    "artefacts": True,
    "publish": False,
}


class ArtefactType(str, Enum):
    UNPACKED = "unpacked"
    PACKED = "packed"
    SCRIPT = "script"


@dataclass(slots=True)
class PackagingSettings:
    exclude: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE))
    include_root: List[str] = field(default_factory=lambda: list(DEFAULT_INCLUDE_ROOT))
    include_scripts: List[str] = field(default_factory=lambda: list(DEFAULT_INCLUDE_SCRIPTS))
    include_all: List[str] = field(default_factory=lambda: list(DEFAULT_INCLUDE_ALL))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PackagingSettings":
        def pick(key: str, default: List[str]) -> List[str]:
            values = normalize_string_list(data.get(key), field_name=f"information.packaging.{key}")
            return values or list(default)

        return cls(
            exclude=pick("exclude", DEFAULT_EXCLUDE),
            include_root=pick("include_root", DEFAULT_INCLUDE_ROOT),
            include_scripts=pick("include_scripts", DEFAULT_INCLUDE_SCRIPTS),
            include_all=pick("include_all", DEFAULT_INCLUDE_ALL),
        )


@dataclass(slots=True)
class Information:
    module_name: str
    module_version: str
    project_path: Path
    pre_release: str | None = None
    manifest_path: Path | None = None
    required_modules: List[RequiredModuleSpec] = field(default_factory=list)
    packaging: PackagingSettings = field(default_factory=PackagingSettings)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, base_dir: Path) -> "Information":
        project_raw = optional_str(data.get("project_path")) or "."
        project_path = Path(project_raw).expanduser()
        if not project_path.is_absolute():
            project_path = base_dir / project_path
        project_path = project_path.resolve()

        name = optional_str(data.get("module_name"))
        version = optional_str(data.get("module_version"))
        manifest = None
        if project_path.is_dir():
            manifest = read_manifest(project_path, fallback_name=name or project_path.name)
        if not name and manifest is not None:
            name = manifest.name
        if not version and manifest is not None:
            version = manifest.version
        if not name:
            raise ConfigurationError("information.module_name is required")
        if not version:
            raise ConfigurationError("information.module_version is required")

        if "required_modules" in data:
            required = RequiredModuleSpec.from_list(
                data.get("required_modules"),
                field_name="information.required_modules",
            )
        elif manifest is not None:
            required = list(manifest.required_modules)
        else:
            required = []

        pre_release = optional_str(data.get("pre_release"))
        if pre_release is None and manifest is not None:
            pre_release = manifest.pre_release

        return cls(
            module_name=name,
            module_version=version,
            project_path=project_path,
            pre_release=pre_release,
            manifest_path=manifest.path if manifest is not None else None,
            required_modules=required,
            packaging=PackagingSettings.from_mapping(section(data, "packaging", field_name="information.packaging")),
        )

    def descriptor(self) -> ModuleDescriptor:
        return ModuleDescriptor(
            name=self.module_name,
            version=self.module_version,
            project_path=self.project_path,
            manifest_path=self.manifest_path,
            pre_release=self.pre_release,
        )


@dataclass(slots=True)
class BuildSettings:
    output: Path
    runtimes: List[str] = field(default_factory=lambda: list(RUNTIMES))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, project_path: Path) -> "BuildSettings":
        output = Path(optional_str(data.get("output")) or ".build").expanduser()
        if not output.is_absolute():
            output = project_path / output
        runtimes = normalize_string_list(data.get("runtimes"), field_name="build.runtimes") or list(RUNTIMES)
        canonical = {runtime.lower(): runtime for runtime in RUNTIMES}
        normalized: List[str] = []
        for runtime in runtimes:
            if runtime.lower() not in canonical:
                raise ConfigurationError(
                    f"build.runtimes contains unknown runtime '{runtime}'. Allowed: {', '.join(RUNTIMES)}"
                )
            value = canonical[runtime.lower()]
            if value not in normalized:
                normalized.append(value)
        return cls(output=output.resolve(), runtimes=normalized)


@dataclass(slots=True)
class StepSettings:
    enabled: bool
    force: bool = False

    @classmethod
    def from_value(cls, value: Any, *, name: str, default: bool) -> "StepSettings":
        if value is None:
            return cls(enabled=default)
        if isinstance(value, bool):
            return cls(enabled=value)
        if isinstance(value, Mapping):
            return cls(
                enabled=coerce_bool(value.get("enabled"), field_name=f"steps.{name}.enabled", default=True),
                force=coerce_bool(value.get("force"), field_name=f"steps.{name}.force", default=False),
            )
        raise ConfigurationError(f"steps.{name} must be a boolean or a table")


@dataclass(slots=True)
class Options:
    module_paths: List[Path] = field(default_factory=list)
    test_command: List[str] = field(default_factory=list)
    placeholders: Dict[str, str] = field(default_factory=dict)
    merge_order: List[str] = field(default_factory=lambda: list(DEFAULT_MERGE_ORDER))
    pre_merge: str = ""
    post_merge: str = ""
    log_level: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, base_dir: Path) -> "Options":
        modules_section = section(data, "modules", field_name="options.modules")
        paths = normalize_string_list(modules_section.get("paths"), field_name="options.modules.paths")
        env_paths = [part for part in os.environ.get(MODULE_PATH_ENV, "").split(os.pathsep) if part.strip()]

        tests_section = section(data, "tests", field_name="options.tests")
        placeholders_section = section(data, "placeholders", field_name="options.placeholders")
        merge_section = section(data, "merge", field_name="options.merge")

        return cls(
            module_paths=list(resolve_search_paths(base_dir, [*paths, *env_paths])),
            test_command=normalize_string_list(tests_section.get("command"), field_name="options.tests.command"),
            placeholders={str(key): str(value) for key, value in placeholders_section.items()},
            merge_order=normalize_string_list(merge_section.get("order"), field_name="options.merge.order")
            or list(DEFAULT_MERGE_ORDER),
            pre_merge=str(merge_section.get("pre") or ""),
            post_merge=str(merge_section.get("post") or ""),
            log_level=optional_str(data.get("log_level")),
        )


@dataclass(slots=True)
class Toggle:
    enabled: bool = True
    path: str | None = None

    @classmethod
    def from_value(cls, value: Any, *, field_name: str, default_path: str | None = None) -> "Toggle":
        if value is None:
            return cls(path=default_path)
        if isinstance(value, bool):
            return cls(enabled=value, path=default_path)
        if isinstance(value, Mapping):
            return cls(
                enabled=coerce_bool(value.get("enabled"), field_name=f"{field_name}.enabled", default=True),
                path=optional_str(value.get("path")) or default_path,
            )
        raise ConfigurationError(f"{field_name} must be a boolean or a table")


@dataclass(slots=True)
class ArtefactDefinition:
    type: ArtefactType
    id: str
    path: str
    zip_path: str | None = None
    include_tag_name: bool = False
    legacy_naming: bool = False
    artefact_name: str | None = None
    script_name: str | None = None
    pre_script_merge: str = ""
    post_script_merge: str = ""
    do_not_clear: bool = False
    enabled: bool = True
    main_module: Toggle = field(default_factory=Toggle)
    required_modules: Toggle = field(default_factory=lambda: Toggle(path="Modules"))
    files: CopyGroup = field(default_factory=CopyGroup)
    folders: CopyGroup = field(default_factory=CopyGroup)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, index: int) -> "ArtefactDefinition":
        raw_type = optional_str(data.get("type")) or ArtefactType.UNPACKED.value
        try:
            artefact_type = ArtefactType(raw_type.lower())
        except ValueError as exc:
            allowed = ", ".join(item.value for item in ArtefactType)
            raise ConfigurationError(f"artefacts[{index}].type '{raw_type}' is not one of: {allowed}") from exc

        label = f"artefacts[{index}]"
        artefact_id = optional_str(data.get("id")) or f"{artefact_type.value}-{index + 1}"
        path = optional_str(data.get("path")) or f"Artefacts/{artefact_type.value.capitalize()}"

        return cls(
            type=artefact_type,
            id=artefact_id,
            path=path,
            zip_path=optional_str(data.get("zip_path")),
            include_tag_name=coerce_bool(data.get("include_tag_name"), field_name=f"{label}.include_tag_name", default=False),
            legacy_naming=coerce_bool(data.get("legacy_naming"), field_name=f"{label}.legacy_naming", default=False),
            artefact_name=optional_str(data.get("artefact_name")),
            script_name=optional_str(data.get("script_name")),
            pre_script_merge=str(data.get("pre_script_merge") or ""),
            post_script_merge=str(data.get("post_script_merge") or ""),
            do_not_clear=coerce_bool(data.get("do_not_clear"), field_name=f"{label}.do_not_clear", default=False),
            enabled=coerce_bool(data.get("enabled"), field_name=f"{label}.enabled", default=True),
            main_module=Toggle.from_value(data.get("main_module"), field_name=f"{label}.main_module"),
            required_modules=Toggle.from_value(
                data.get("required_modules"),
                field_name=f"{label}.required_modules",
                default_path="Modules",
            ),
            files=CopyGroup.from_mapping(section(data, "files", field_name=f"{label}.files"), field_name=f"{label}.files"),
            folders=CopyGroup.from_mapping(
                section(data, "folders", field_name=f"{label}.folders"),
                field_name=f"{label}.folders",
            ),
        )


@dataclass(slots=True)
class PublishDefinition:
    id: str
    command: List[str]
    artefact: str | None = None
    enabled: bool = True
    force: bool = False

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, index: int) -> "PublishDefinition":
        label = f"publish[{index}]"
        command = normalize_string_list(data.get("command"), field_name=f"{label}.command")
        if not command:
            raise ConfigurationError(f"{label}.command is required")
        return cls(
            id=optional_str(data.get("id")) or f"publish-{index + 1}",
            command=command,
            artefact=optional_str(data.get("artefact")),
            enabled=coerce_bool(data.get("enabled"), field_name=f"{label}.enabled", default=True),
            force=coerce_bool(data.get("force"), field_name=f"{label}.force", default=False),
        )


def _table_list(value: Any, *, field_name: str) -> List[Mapping[str, Any]]:
    if value is None:
        return []
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        tables: List[Mapping[str, Any]] = []
        for entry in value:
            if not isinstance(entry, Mapping):
                raise ConfigurationError(f"[[{field_name}]] entries must be tables")
            tables.append(entry)
        return tables
    raise ConfigurationError(f"[[{field_name}]] must be an array of tables")


@dataclass(slots=True)
class BuildConfiguration:
    source: Path | None
    information: Information
    build: BuildSettings
    steps: Dict[str, StepSettings]
    options: Options
    artefacts: List[ArtefactDefinition] = field(default_factory=list)
    publishes: List[PublishDefinition] = field(default_factory=list)
    raw: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_file(cls, path: Path) -> "BuildConfiguration":
        path = Path(path).expanduser().resolve()
        if not path.is_file():
            raise ConfigurationError(f"Configuration file not found: {path}")
        config = cls.from_mapping(load_config_file(path), base_dir=path.parent)
        config.source = path
        return config

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, base_dir: Path) -> "BuildConfiguration":
        information_section = data.get("information")
        if not isinstance(information_section, Mapping):
            raise ConfigurationError("[information] section is required in build configuration")
        information = Information.from_mapping(information_section, base_dir=base_dir)

        steps_section = section(data, "steps")
        unknown = sorted(set(steps_section) - set(STEP_NAMES))
        if unknown:
            raise ConfigurationError(f"Unknown steps: {', '.join(unknown)}. Allowed: {', '.join(STEP_NAMES)}")
        steps = {
            name: StepSettings.from_value(steps_section.get(name), name=name, default=_STEP_DEFAULTS[name])
            for name in STEP_NAMES
        }

        artefacts = [
            ArtefactDefinition.from_mapping(entry, index=index)
            for index, entry in enumerate(_table_list(data.get("artefacts"), field_name="artefacts"))
        ]
        ids = [artefact.id for artefact in artefacts]
        duplicates = sorted({artefact_id for artefact_id in ids if ids.count(artefact_id) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate artefact ids: {', '.join(duplicates)}")

        publishes = [
            PublishDefinition.from_mapping(entry, index=index)
            for index, entry in enumerate(_table_list(data.get("publish"), field_name="publish"))
        ]
        for publish in publishes:
            if publish.artefact and publish.artefact not in ids:
                raise ConfigurationError(f"publish '{publish.id}' references unknown artefact '{publish.artefact}'")

        return cls(
            source=None,
            information=information,
            build=BuildSettings.from_mapping(section(data, "build"), project_path=information.project_path),
            steps=steps,
            options=Options.from_mapping(section(data, "options"), base_dir=base_dir),
            artefacts=artefacts,
            publishes=publishes,
            raw=data,
        )

    def step(self, name: str) -> StepSettings:
        return self.steps[name]

    def get_artefact(self, artefact_id: str) -> ArtefactDefinition:
        for artefact in self.artefacts:
            if artefact.id == artefact_id:
                return artefact
        available = ", ".join(artefact.id for artefact in self.artefacts) or "<none>"
        raise KeyError(f"Artefact '{artefact_id}' not found. Available artefacts: {available}")


__all__ = [
    "ArtefactDefinition",
    "ArtefactType",
    "BuildConfiguration",
    "BuildSettings",
    "Information",
    "Options",
    "PackagingSettings",
    "PublishDefinition",
    "StepSettings",
    "Toggle",
]
