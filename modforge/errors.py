"""Exception types shared across modforge."""
from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised when the build configuration is missing or malformed."""


class DependencyCycleError(ValueError):
    """Raised when required modules reference each other in a loop."""

    def __init__(self, chain: list[str]):
        super().__init__(f"Dependency cycle detected: {' -> '.join(chain)}")
        self.chain = list(chain)


class StageSkipped(Exception):
    """Raised by a stage action that decides there is nothing to do."""
