"""Ordered execution of build stages with per-stage failure policy."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List
import time

from .artefact import ArtefactOutput
from .console import Console
from .errors import StageSkipped
from .modules import ModuleDescriptor
from .resolver import ResolutionResult


class StageStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class StagePolicy(str, Enum):
    FATAL = "fatal"
    CONTINUABLE = "continuable"


@dataclass(slots=True)
class DestinationPaths:
    """Where one build writes: the staging tree, runtime layouts and artefact roots."""

    staging: Path
    runtimes: Dict[str, Path] = field(default_factory=dict)
    artefacts: Dict[str, Path] = field(default_factory=dict)

    @classmethod
    def under(cls, output: Path, runtimes: List[str]) -> "DestinationPaths":
        return cls(
            staging=output / "Staging",
            runtimes={runtime: output / runtime for runtime in runtimes},
        )


@dataclass(slots=True)
class PipelineContext:
    """State shared by the stages of a single run."""

    console: Console
    paths: DestinationPaths
    module: ModuleDescriptor | None = None
    resolution: ResolutionResult = field(default_factory=ResolutionResult)
    outputs: Dict[str, ArtefactOutput] = field(default_factory=dict)


StageAction = Callable[[PipelineContext], Any]


@dataclass(slots=True)
class BuildStage:
    name: str
    label: str
    action: StageAction
    policy: StagePolicy = StagePolicy.FATAL
    enabled: bool = True


@dataclass(slots=True)
class StageResult:
    name: str
    label: str
    status: StageStatus = StageStatus.PENDING
    message: str | None = None
    duration: float = 0.0


@dataclass(slots=True)
class PipelineResult:
    success: bool
    results: List[StageResult] = field(default_factory=list)

    def get(self, name: str) -> StageResult:
        for result in self.results:
            if result.name == name:
                return result
        raise KeyError(f"Unknown stage '{name}'")

    @property
    def not_run(self) -> List[StageResult]:
        return [result for result in self.results if result.status is StageStatus.PENDING]

    @property
    def failed(self) -> List[StageResult]:
        return [result for result in self.results if result.status is StageStatus.FAILED]


class Pipeline:
    """Runs stages in order; a failed ``FATAL`` stage stops the run."""

    def __init__(self, stages: List[BuildStage]) -> None:
        self.stages = list(stages)

    def run(self, context: PipelineContext) -> PipelineResult:
        console = context.console
        outcome = PipelineResult(success=True)
        started = time.perf_counter()

        for index, stage in enumerate(self.stages):
            result = StageResult(name=stage.name, label=stage.label)
            outcome.results.append(result)

            if not stage.enabled:
                result.status = StageStatus.SKIPPED
                console.debug(f"{stage.label}: disabled, skipped")
                continue

            console.info(f"{stage.label}...")
            result.status = StageStatus.RUNNING
            stage_started = time.perf_counter()
            try:
                value = stage.action(context)
            except StageSkipped as exc:
                result.status = StageStatus.SKIPPED
                result.message = str(exc) or None
            except Exception as exc:
                result.status = StageStatus.FAILED
                result.message = str(exc) or exc.__class__.__name__
            else:
                result.status = StageStatus.SUCCEEDED if value else StageStatus.FAILED
            result.duration = time.perf_counter() - stage_started

            if result.status is StageStatus.SKIPPED:
                suffix = f": {result.message}" if result.message else ""
                console.info(f"{stage.label} skipped{suffix}")
                continue
            if result.status is StageStatus.SUCCEEDED:
                console.info(f"{stage.label} done ({result.duration:.2f}s)")
                continue

            detail = f": {result.message}" if result.message else ""
            if stage.policy is StagePolicy.CONTINUABLE:
                console.warn(f"{stage.label} failed{detail}; continuing")
                continue
            console.error(f"{stage.label} failed{detail}")
            outcome.success = False
            outcome.results.extend(StageResult(name=rest.name, label=rest.label) for rest in self.stages[index + 1 :])
            break

        total = time.perf_counter() - started
        if outcome.success:
            console.info(f"Build finished in {total:.2f}s")
        else:
            console.error(f"Build stopped after {total:.2f}s")
        return outcome


__all__ = [
    "BuildStage",
    "DestinationPaths",
    "Pipeline",
    "PipelineContext",
    "PipelineResult",
    "StagePolicy",
    "StageResult",
    "StageStatus",
]
