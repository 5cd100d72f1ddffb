"""Execution of external commands used by the test and publish stages."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Sequence
import os
import shlex
import subprocess


@dataclass
class CommandResult:
    """Represents the outcome of an executed command."""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str
    streamed: bool = False

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0


class CommandError(RuntimeError):
    """Raised when a command fails."""

    def __init__(self, result: CommandResult):
        message = f"Command failed with exit code {result.returncode}: {' '.join(map(shlex.quote, result.command))}"
        if result.streamed:
            message = f"{message}\nstdout/stderr already streamed above."
        else:
            details = (result.stderr or result.stdout or "").strip()
            if details:
                message = f"{message}\n{details}"
        super().__init__(message)
        self.result = result


class CommandRunner:
    """Abstract command runner interface."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        raise NotImplementedError

    def format_command(self, command: Sequence[str]) -> str:
        return " ".join(shlex.quote(part) for part in command)


class SubprocessCommandRunner(CommandRunner):
    """Command runner that executes commands via :mod:`subprocess`."""

    @staticmethod
    def _merge_environment(env: Mapping[str, str] | None) -> Dict[str, str] | None:
        if env is None:
            return None
        merged = os.environ.copy()
        merged.update(env)
        return merged

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        try:
            process = subprocess.run(
                list(command),
                cwd=str(cwd) if cwd else None,
                env=self._merge_environment(env),
                capture_output=not stream,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            result = CommandResult(command=command, returncode=127, stdout="", stderr=str(exc))
        else:
            result = CommandResult(
                command=command,
                returncode=process.returncode,
                stdout=process.stdout or "",
                stderr=process.stderr or "",
                streamed=stream,
            )
        if check and not result.succeeded:
            raise CommandError(result)
        return result


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None
    note: str | None


class RecordingCommandRunner(CommandRunner):
    """Command runner that records commands instead of executing them.

    ``returncodes`` maps the first word of a command to the exit code reported for
    it, which lets callers simulate failing external tools.
    """

    def __init__(self, returncodes: Mapping[str, int] | None = None) -> None:
        self.commands: List[RecordedCommand] = []
        self._returncodes = dict(returncodes or {})

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        self.commands.append(
            RecordedCommand(command=list(command), cwd=str(cwd) if cwd else None, note=note)
        )
        returncode = self._returncodes.get(command[0], 0) if command else 0
        result = CommandResult(command=command, returncode=returncode, stdout="", stderr="")
        if check and not result.succeeded:
            raise CommandError(result)
        return result

    def iter_formatted(self) -> Iterable[str]:
        for record in self.commands:
            parts: List[str] = ["[dry-run]"]
            if record.note:
                parts.append(record.note)
            if record.cwd:
                parts.append(f"(cwd={record.cwd})")
            parts.append(self.format_command(record.command))
            yield " ".join(parts)
