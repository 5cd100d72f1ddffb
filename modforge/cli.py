"""Command line interface for modforge."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Iterable
import sys

from .build import BuildEngine
from .command_runner import RecordingCommandRunner, SubprocessCommandRunner
from .config_loader import BuildConfiguration
from .console import Console
from .errors import ConfigurationError, DependencyCycleError


def _emit_dry_run_output(runner: RecordingCommandRunner) -> None:
    for line in runner.iter_formatted():
        print(line)


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="modforge", description="Module build and artefact assembly")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser("build", help="Run the build pipeline for a configuration")
    build_parser.add_argument("config", type=Path, help="Path to the build configuration file")
    build_parser.add_argument("--dry-run", action="store_true", help="Record external commands instead of running them")
    build_parser.add_argument("--log", choices=list(Console.LEVELS), help="Console log level (default: info)")

    resolve_parser = subparsers.add_parser("resolve", help="Print the resolved required modules")
    resolve_parser.add_argument("config", type=Path, help="Path to the build configuration file")
    resolve_parser.add_argument("--log", choices=list(Console.LEVELS), help="Console log level (default: info)")

    validate_parser = subparsers.add_parser("validate", help="Validate a configuration and its copy entries")
    validate_parser.add_argument("config", type=Path, help="Path to the build configuration file")

    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)

    try:
        config = BuildConfiguration.from_file(args.config)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    if args.command == "build":
        return _handle_build(args, config)
    if args.command == "resolve":
        return _handle_resolve(args, config)
    if args.command == "validate":
        return _handle_validate(config)
    raise ValueError(f"Unknown command: {args.command}")


def _console_for(args: Namespace, config: BuildConfiguration, *, dry_run: bool = False) -> Console:
    level = getattr(args, "log", None) or config.options.log_level or "info"
    try:
        return Console(level=level, dry_run=dry_run)
    except ValueError as exc:
        raise ConfigurationError(f"options.log_level: {exc}") from exc


def _handle_build(args: Namespace, config: BuildConfiguration) -> int:
    try:
        console = _console_for(args, config, dry_run=args.dry_run)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    runner: SubprocessCommandRunner | RecordingCommandRunner
    if args.dry_run:
        runner = RecordingCommandRunner()
    else:
        runner = SubprocessCommandRunner()

    engine = BuildEngine(config=config, console=console, command_runner=runner)
    try:
        result = engine.run()
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    if args.dry_run and isinstance(runner, RecordingCommandRunner):
        _emit_dry_run_output(runner)
    if result.success and result.failed:
        labels = ", ".join(stage.label for stage in result.failed)
        console.warn(f"Build finished with continuable failures: {labels}")
    return 0 if result.success else 1


def _handle_resolve(args: Namespace, config: BuildConfiguration) -> int:
    try:
        console = _console_for(args, config)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    engine = BuildEngine(config=config, console=console, command_runner=RecordingCommandRunner())
    try:
        resolution = engine.resolve_requirements()
    except DependencyCycleError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    for dependency in resolution.dependencies:
        marker = " (substituted)" if dependency.substituted else ""
        print(f"{dependency.name} {dependency.version} {dependency.path}{marker}")
    for substitution in resolution.substitutions:
        print(f"substituted: {substitution.name} {substitution.requested} -> {substitution.resolved}")
    for name in resolution.missing:
        print(f"missing: {name}")
    return 0


def _handle_validate(config: BuildConfiguration) -> int:
    console = Console(level="warn")
    engine = BuildEngine(config=config, console=console, command_runner=RecordingCommandRunner())
    try:
        issues = engine.validate()
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    for issue in issues:
        if issue.fatal:
            console.error(str(issue))
        else:
            console.warn(str(issue))
    if any(issue.fatal for issue in issues):
        print("Validation failed", file=sys.stderr)
        return 1
    print("Validation successful")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
