"""Console output handler shared by the pipeline components."""
from __future__ import annotations

from datetime import datetime
import sys


class Console:
    """Simple console output handler with configurable log level.

    Levels: none < error < warn < info < debug
    Default: 'info'
    """

    LEVELS = {
        "none": 0,
        "error": 1,
        "warn": 2,
        "info": 3,
        "debug": 4,
    }

    def __init__(self, level: str = "info", dry_run: bool = False, timestamps: bool = True):
        if level not in self.LEVELS:
            raise ValueError(f"Unknown log level '{level}'. Expected one of: {', '.join(self.LEVELS)}")
        self.level_name = level
        self.level = self.LEVELS[level]
        self.dry_run = dry_run
        self.timestamps = timestamps

    def _prefix(self, tag: str) -> str:
        if self.timestamps:
            return f"[{datetime.now():%H:%M:%S}] [{tag}]"
        return f"[{tag}]"

    def info(self, message: str) -> None:
        if self.level >= self.LEVELS["info"]:
            print(f"{self._prefix('INFO')} {message}")

    def warn(self, message: str) -> None:
        if self.level >= self.LEVELS["warn"]:
            print(f"{self._prefix('WARN')} {message}", file=sys.stderr)

    def error(self, message: str) -> None:
        if self.level >= self.LEVELS["error"]:
            print(f"{self._prefix('ERROR')} {message}", file=sys.stderr)

    def dry(self, message: str) -> None:
        if self.dry_run:
            print(f"{self._prefix('DRY')} {message}")

    def debug(self, message: str) -> None:
        if self.level >= self.LEVELS["debug"]:
            print(f"{self._prefix('DEBUG')} {message}")


class RecordingConsole(Console):
    """Console that keeps every message in memory instead of printing it."""

    def __init__(self, level: str = "debug", dry_run: bool = False):
        super().__init__(level=level, dry_run=dry_run, timestamps=False)
        self.messages: list[tuple[str, str]] = []

    def info(self, message: str) -> None:
        if self.level >= self.LEVELS["info"]:
            self.messages.append(("info", message))

    def warn(self, message: str) -> None:
        if self.level >= self.LEVELS["warn"]:
            self.messages.append(("warn", message))

    def error(self, message: str) -> None:
        if self.level >= self.LEVELS["error"]:
            self.messages.append(("error", message))

    def dry(self, message: str) -> None:
        if self.dry_run:
            self.messages.append(("dry", message))

    def debug(self, message: str) -> None:
        if self.level >= self.LEVELS["debug"]:
            self.messages.append(("debug", message))

    def lines(self, kind: str) -> list[str]:
        return [text for level, text in self.messages if level == kind]
