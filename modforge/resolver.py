"""Transitive required-module resolution."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Sequence

from .console import Console
from .errors import DependencyCycleError
from .modules import InstalledModule, ModuleRepository, RequiredModuleSpec, version_key


@dataclass(slots=True)
class ResolvedDependency:
    spec: RequiredModuleSpec
    path: Path
    version: str
    substituted: bool = False

    @property
    def name(self) -> str:
        return self.spec.name


@dataclass(frozen=True, slots=True)
class VersionSubstitution:
    name: str
    requested: str
    resolved: str


@dataclass(slots=True)
class ResolutionResult:
    dependencies: List[ResolvedDependency] = field(default_factory=list)
    substitutions: List[VersionSubstitution] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)

    def names(self) -> List[str]:
        return [dependency.name for dependency in self.dependencies]


@dataclass(slots=True)
class _Expansion:
    """The de-duplicated discovery order below one resolved module."""

    entries: List[ResolvedDependency]
    names: frozenset[str]


@dataclass(slots=True)
class _Walk:
    root_key: str
    result: ResolutionResult
    candidates: Dict[str, List[InstalledModule]] = field(default_factory=dict)
    expanded: Dict[tuple[str, Path], _Expansion] = field(default_factory=dict)
    substituted: set[str] = field(default_factory=set)
    missing: set[str] = field(default_factory=set)


def _keep_last(entries: Iterable[ResolvedDependency]) -> List[ResolvedDependency]:
    """Drop every entry whose name shows up again later, keeping the order."""

    kept: List[ResolvedDependency] = []
    seen: set[str] = set()
    for entry in reversed(list(entries)):
        key = entry.name.lower()
        if key in seen:
            continue
        seen.add(key)
        kept.append(entry)
    kept.reverse()
    return kept


class RequiredModuleResolver:
    """Computes the ordered, de-duplicated dependency closure of a module.

    Discovery is depth-first pre-order. The discovered list is then reversed and
    de-duplicated by name (case-insensitive), so the most deeply discovered copy
    of a module is the one kept and tends to sort ahead of its requirers. This is
    not a topological sort.

    Each module is expanded once per resolved folder; later requests for it
    replay the recorded order of its sub-tree.
    """

    def __init__(self, repository: ModuleRepository, console: Console) -> None:
        self._repository = repository
        self._console = console

    def select(self, spec: RequiredModuleSpec, candidates: Sequence[InstalledModule]) -> tuple[InstalledModule | None, bool]:
        """Pick a candidate for *spec*; the flag reports a version substitution."""

        if not candidates:
            return None, False
        newest = candidates[0]
        if spec.wants_latest:
            if spec.minimum_version is None:
                return newest, False
            floor = version_key(spec.minimum_version)
            for candidate in candidates:
                if version_key(candidate.version) >= floor:
                    return candidate, False
            return newest, True
        wanted = version_key(spec.version)
        for candidate in candidates:
            if version_key(candidate.version) == wanted:
                return candidate, False
        return newest, True

    def resolve(self, root_name: str, requirements: Iterable[RequiredModuleSpec]) -> ResolutionResult:
        walk = _Walk(root_key=root_name.lower(), result=ResolutionResult())
        discovered: List[ResolvedDependency] = []
        for spec in requirements:
            discovered.extend(self._expand(spec, (root_name,), walk))
        walk.result.dependencies = list(reversed(_keep_last(discovered)))
        return walk.result

    def _candidates(self, name: str, walk: _Walk) -> List[InstalledModule]:
        key = name.lower()
        if key not in walk.candidates:
            walk.candidates[key] = self._repository.find(name)
        return walk.candidates[key]

    def _expand(self, spec: RequiredModuleSpec, ancestry: tuple[str, ...], walk: _Walk) -> List[ResolvedDependency]:
        key = spec.name.lower()
        ancestors = {name.lower() for name in ancestry}
        if key == walk.root_key or key in ancestors:
            raise DependencyCycleError([*ancestry, spec.name])

        chosen, substituted = self.select(spec, self._candidates(spec.name, walk))
        if chosen is None:
            if key not in walk.missing:
                walk.missing.add(key)
                self._console.warn(f"Required module '{spec.name}' is not installed")
                walk.result.missing.append(spec.name)
            return []

        if substituted and key not in walk.substituted:
            walk.substituted.add(key)
            requested = spec.minimum_version if spec.wants_latest else spec.version
            self._console.warn(
                f"Required module '{spec.name}' version {requested} is not installed; using {chosen.version}"
            )
            walk.result.substitutions.append(
                VersionSubstitution(name=spec.name, requested=str(requested), resolved=chosen.version)
            )
        head = ResolvedDependency(spec=spec, path=chosen.path, version=chosen.version, substituted=substituted)

        memo_key = (key, chosen.path)
        known = walk.expanded.get(memo_key)
        # a recorded sub-tree that reaches an ancestor is walked again so the cycle is reported in full
        if known is not None and not (known.names & ancestors) and walk.root_key not in known.names:
            return [head, *known.entries]

        self._console.debug(f"Resolved '{spec.name}' to {chosen.version} at {chosen.path}")
        below: List[ResolvedDependency] = []
        for child in chosen.required_modules:
            below.extend(self._expand(child, (*ancestry, spec.name), walk))
        entries = _keep_last(below)
        walk.expanded[memo_key] = _Expansion(entries=entries, names=frozenset(entry.name.lower() for entry in entries))
        return [head, *entries]


__all__ = [
    "RequiredModuleResolver",
    "ResolutionResult",
    "ResolvedDependency",
    "VersionSubstitution",
]
