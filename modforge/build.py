"""Build engine: turns a configuration into the ordered stage list and runs it."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

from .archive import ArchiveArtifact, ArchiveManager, artefact_file_name, has_archive_suffix
from .artefact import ArtefactCopier, ArtefactOutput, main_module_destination, select_build_source
from .command_runner import CommandRunner
from .config_loader import ArtefactDefinition, ArtefactType, BuildConfiguration, PublishDefinition
from .console import Console
from .copy_spec import CopyPlan, CopySpecResolver
from .errors import StageSkipped
from .fsops import recreate_directory
from .modules import ModuleDescriptor, ModuleRepository
from .pipeline import (
    BuildStage,
    DestinationPaths,
    Pipeline,
    PipelineContext,
    PipelineResult,
    StagePolicy,
)
from .resolver import RequiredModuleResolver, ResolutionResult
from .staging import merge_scripts, stage_module, write_runtime_layouts
from .tokens import TokenResolver, substitute_in_tree


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    artefact_id: str
    kind: str
    path: Path

    @property
    def fatal(self) -> bool:
        # missing folders are skipped by the copier, missing files fail the stage
        return self.kind == "file"

    def __str__(self) -> str:
        return f"{self.artefact_id}: {self.kind} not found: {self.path}"


def _policy(force: bool) -> StagePolicy:
    return StagePolicy.CONTINUABLE if force else StagePolicy.FATAL


class BuildEngine:
    def __init__(
        self,
        *,
        config: BuildConfiguration,
        console: Console,
        command_runner: CommandRunner,
    ) -> None:
        self._config = config
        self._console = console
        self._command_runner = command_runner
        self.module: ModuleDescriptor = config.information.descriptor()
        self.tokens = TokenResolver(
            module_name=self.module.name,
            module_version=self.module.version,
            pre_release=self.module.pre_release,
        )
        self.paths = DestinationPaths.under(config.build.output, config.build.runtimes)
        for artefact in config.artefacts:
            self.paths.artefacts[artefact.id] = self._project_path(artefact.path)
        self._repository = ModuleRepository(config.options.module_paths)
        self._resolver = RequiredModuleResolver(self._repository, console)
        self._copy_resolver = CopySpecResolver(project_path=self.module.project_path, tokens=self.tokens)
        self._copier = ArtefactCopier(console)
        self._archiver = ArchiveManager(console)

    def _project_path(self, value: str) -> Path:
        path = Path(self.tokens.replace(value)).expanduser()
        if not path.is_absolute():
            path = self.module.project_path / path
        return path.resolve()

    # Planning -----------------------------------------------------------------

    def resolve_requirements(self) -> ResolutionResult:
        return self._resolver.resolve(self.module.name, self._config.information.required_modules)

    def module_dir(self, artefact: ArtefactDefinition) -> Path:
        root = self.paths.artefacts[artefact.id]
        if artefact.type is ArtefactType.SCRIPT:
            return root
        return main_module_destination(self.module, root, include_tag=artefact.include_tag_name)

    def archive_target(self, artefact: ArtefactDefinition) -> Path:
        """Where the archive of a packed artefact is written.

        ``zip_path`` names a folder unless it ends with an archive suffix; without
        one the archive lands next to the artefact folder.
        """

        root = self.paths.artefacts[artefact.id]
        name = artefact_file_name(
            self.tokens,
            artefact_name=artefact.artefact_name,
            include_tag_name=artefact.include_tag_name,
            legacy_naming=artefact.legacy_naming,
        )
        if not artefact.zip_path:
            return root.parent / name
        target = self._project_path(artefact.zip_path)
        if has_archive_suffix(target):
            return target
        return target / name

    def copy_plans(self, artefact: ArtefactDefinition) -> tuple[CopyPlan, CopyPlan]:
        destination_root = self.module_dir(artefact)
        enforce = artefact.type is ArtefactType.PACKED
        files = self._copy_resolver.resolve(
            artefact.files,
            destination_root=destination_root,
            directories=False,
            enforce_relative=enforce,
        )
        folders = self._copy_resolver.resolve(
            artefact.folders,
            destination_root=destination_root,
            directories=True,
            enforce_relative=enforce,
        )
        return files, folders

    def check(self) -> None:
        """Raise :class:`ConfigurationError` for copy entries no build could honour.

        Runs before any stage so that a bad entry never costs a cleared artefact folder.
        """

        for artefact in self._config.artefacts:
            if artefact.enabled:
                self.copy_plans(artefact)

    def validate(self) -> List[ValidationIssue]:
        """Resolve every copy entry and report missing sources without touching disk."""

        issues: List[ValidationIssue] = []
        for artefact in self._config.artefacts:
            if not artefact.enabled:
                continue
            files, folders = self.copy_plans(artefact)
            if artefact.files.enabled:
                issues.extend(ValidationIssue(artefact.id, "file", path) for path in files.missing)
            if artefact.folders.enabled:
                issues.extend(ValidationIssue(artefact.id, "folder", path) for path in folders.missing)
        return issues

    def stages(self) -> List[BuildStage]:
        config = self._config
        steps = config.steps
        stages: List[BuildStage] = [
            BuildStage("prepare", "Preparing structure", self._prepare),
        ]
        for name, label, action in (
            ("resolve", "Resolving required modules", self._resolve),
            ("stage", "Staging module", self._stage),
            ("merge", "Merging scripts", self._merge),
            ("placeholders", "Replacing placeholders", self._placeholders),
            ("build", "Writing runtime layouts", self._build),
            ("test", "Running tests", self._test),
        ):
            setting = steps[name]
            stages.append(BuildStage(name, label, action, policy=_policy(setting.force), enabled=setting.enabled))

        artefacts_step = steps["artefacts"]
        for artefact in config.artefacts:
            stages.extend(self._artefact_stages(artefact, enabled=artefacts_step.enabled, force=artefacts_step.force))

        publish_step = steps["publish"]
        for publish in config.publishes:
            stages.append(
                BuildStage(
                    f"publish:{publish.id}",
                    f"Publishing {publish.id}",
                    self._publish_action(publish),
                    policy=_policy(publish.force or publish_step.force),
                    enabled=publish_step.enabled and publish.enabled,
                )
            )
        return stages

    def _artefact_stages(self, artefact: ArtefactDefinition, *, enabled: bool, force: bool) -> List[BuildStage]:
        active = enabled and artefact.enabled
        policy = _policy(force)
        is_script = artefact.type is ArtefactType.SCRIPT
        prefix = artefact.id

        def stage(name: str, label: str, action, switch: bool) -> BuildStage:
            return BuildStage(
                f"{prefix}:{name}",
                f"{label} ({prefix})",
                action,
                policy=policy,
                enabled=active and switch,
            )

        stages = [
            stage("main_module", "Copying main module", self._copy_main(artefact),
                  artefact.main_module.enabled and not is_script),
            stage("required_modules", "Copying required modules", self._copy_required(artefact),
                  artefact.required_modules.enabled and not is_script),
            stage("files", "Copying files", self._copy_files(artefact), artefact.files.enabled),
            stage("folders", "Copying folders", self._copy_folders(artefact), artefact.folders.enabled),
        ]
        if artefact.type is ArtefactType.PACKED:
            stages.append(stage("archive", "Compressing artefact", self._archive(artefact), True))
        if is_script:
            stages.append(stage("script", "Writing script", self._script(artefact), True))
        return stages

    # Execution ----------------------------------------------------------------

    def context(self) -> PipelineContext:
        outputs: Dict[str, ArtefactOutput] = {
            artefact.id: ArtefactOutput(artefact_id=artefact.id, root=self.paths.artefacts[artefact.id])
            for artefact in self._config.artefacts
        }
        return PipelineContext(
            console=self._console,
            module=self.module,
            paths=self.paths,
            outputs=outputs,
        )

    def run(self) -> PipelineResult:
        self.check()
        self._console.info(f"Building {self.module.name} {self.module.version_with_pre_release}")
        return Pipeline(self.stages()).run(self.context())

    def _prepare(self, context: PipelineContext) -> bool:
        recreate_directory(context.paths.staging)
        for path in context.paths.runtimes.values():
            recreate_directory(path)
        if not self._config.steps["artefacts"].enabled:
            return True
        for artefact in self._config.artefacts:
            if not artefact.enabled:
                continue
            root = context.paths.artefacts[artefact.id]
            if self.module.project_path.is_relative_to(root):
                raise ValueError(f"Artefact '{artefact.id}' path {root} contains the project folder")
            if artefact.do_not_clear:
                root.mkdir(parents=True, exist_ok=True)
                continue
            recreate_directory(root)
            context.console.debug(f"Cleared artefact folder {root}")
        return True

    def _resolve(self, context: PipelineContext) -> bool:
        if not self._config.information.required_modules:
            raise StageSkipped("no required modules")
        resolution = self.resolve_requirements()
        context.resolution = resolution
        names = ", ".join(resolution.names()) or "<none>"
        context.console.info(f"Required modules in order: {names}")
        return True

    def _stage(self, context: PipelineContext) -> bool:
        stage_module(
            self.module.project_path,
            context.paths.staging,
            self._config.information.packaging,
            context.console,
        )
        return True

    def _merge(self, context: PipelineContext) -> bool:
        options = self._config.options
        merge_scripts(
            self.module,
            context.paths.staging,
            options.merge_order,
            context.console,
            pre=options.pre_merge,
            post=options.post_merge,
        )
        return True

    def _placeholders(self, context: PipelineContext) -> bool:
        changed = substitute_in_tree(context.paths.staging, self.tokens, self._config.options.placeholders)
        context.console.info(f"Replaced placeholders in {len(changed)} file(s)")
        return True

    def _build(self, context: PipelineContext) -> bool:
        write_runtime_layouts(context.paths.staging, context.paths.runtimes, context.console)
        return True

    def _test(self, context: PipelineContext) -> bool:
        command = self._config.options.test_command
        if not command:
            raise StageSkipped("no test command configured")
        result = self._command_runner.run(
            self.tokens.replace_all(command),
            cwd=self.module.project_path,
            note="Running tests",
            stream=True,
        )
        return result.succeeded

    def _copy_main(self, artefact: ArtefactDefinition):
        def action(context: PipelineContext) -> bool:
            target = self._copier.copy_main_module(
                self.module,
                context.paths.runtimes,
                context.paths.artefacts[artefact.id],
                include_tag=artefact.include_tag_name,
            )
            if target is None:
                return False
            context.outputs[artefact.id].module_dir = target
            return True

        return action

    def _copy_required(self, artefact: ArtefactDefinition):
        def action(context: PipelineContext) -> bool:
            resolution = context.resolution
            if not resolution.dependencies and not resolution.missing:
                raise StageSkipped("no required modules resolved")
            modules_dir = self.module_dir(artefact) / (artefact.required_modules.path or "Modules")
            copied = self._copier.copy_required_modules(resolution, modules_dir)
            context.outputs[artefact.id].modules = copied
            return True

        return action

    def _copy_files(self, artefact: ArtefactDefinition):
        def action(context: PipelineContext) -> bool:
            files, _ = self.copy_plans(artefact)
            if not files.operations and not files.missing:
                raise StageSkipped("no files configured")
            if not self._copier.copy_files(files):
                return False
            context.outputs[artefact.id].copied.extend(files.operations)
            return True

        return action

    def _copy_folders(self, artefact: ArtefactDefinition):
        def action(context: PipelineContext) -> bool:
            _, folders = self.copy_plans(artefact)
            if not folders.operations and not folders.missing:
                raise StageSkipped("no folders configured")
            self._copier.copy_folders(folders)
            context.outputs[artefact.id].copied.extend(folders.operations)
            return True

        return action

    def _archive(self, artefact: ArtefactDefinition):
        def action(context: PipelineContext) -> bool:
            root = context.paths.artefacts[artefact.id]
            target_path = self.archive_target(artefact)
            target = self._archiver.create_archive(
                artifact=ArchiveArtifact(source_dir=root, label=artefact.id),
                target_path=target_path,
                format_hint=None if has_archive_suffix(target_path) else "zip",
            )
            context.outputs[artefact.id].archive_path = target
            context.console.info(f"Created artefact {target}")
            return True

        return action

    def _script(self, artefact: ArtefactDefinition):
        def action(context: PipelineContext) -> bool:
            source = select_build_source(context.paths.runtimes)
            if source is None:
                context.console.error(f"No built module found for '{self.module.name}'")
                return False
            resolution = context.resolution
            dependency_dirs = [dependency.path for dependency in resolution.dependencies]
            if artefact.required_modules.enabled:
                for name in resolution.missing:
                    context.console.warn(f"Required module '{name}' not found, skipped")
            else:
                dependency_dirs = []
            name = self.tokens.replace(artefact.script_name or self.module.name)
            if not name.lower().endswith(".ps1"):
                name = f"{name}.ps1"
            target = self._copier.write_script(
                self.module,
                source,
                dependency_dirs,
                context.paths.artefacts[artefact.id] / name,
                pre=self.tokens.replace(artefact.pre_script_merge),
                post=self.tokens.replace(artefact.post_script_merge),
            )
            context.outputs[artefact.id].script_path = target
            return True

        return action

    def _publish_action(self, publish: PublishDefinition):
        def action(context: PipelineContext) -> bool:
            outputs = context.outputs
            if publish.artefact:
                artefact_path = outputs[publish.artefact].primary_path
            elif outputs:
                artefact_path = next(iter(outputs.values())).primary_path
            else:
                artefact_path = select_build_source(context.paths.runtimes) or context.paths.staging
            tokens = self.tokens.with_extra(ArtefactPath=str(artefact_path))
            result = self._command_runner.run(
                tokens.replace_all(publish.command),
                cwd=self.module.project_path,
                note=f"Publishing {publish.id}",
                stream=True,
            )
            return result.succeeded

        return action


__all__ = ["BuildEngine", "ValidationIssue"]
