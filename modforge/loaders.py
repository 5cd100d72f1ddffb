"""Shared helpers for locating and decoding configuration mappings."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence
import json
import tomllib

import yaml

from .errors import ConfigurationError


ConfigLoader = Callable[[Any], Mapping[str, Any]]


FILE_LOADERS: Dict[str, ConfigLoader] = {
    ".toml": lambda stream: tomllib.load(stream),
    ".json": lambda stream: json.load(stream),
    ".yaml": lambda stream: yaml.safe_load(stream),
    ".yml": lambda stream: yaml.safe_load(stream),
}
"""Mapping of file suffixes to loader callables."""


def load_config_file(path: Path) -> Mapping[str, Any]:
    """Load and decode a configuration mapping from ``path``."""

    suffix = path.suffix.lower()
    loader = FILE_LOADERS.get(suffix)
    if loader is None:
        supported = ", ".join(sorted(FILE_LOADERS))
        raise ConfigurationError(
            f"Unsupported configuration file extension: {suffix}. Supported: {supported}"
        )

    mode = "rb" if suffix == ".toml" else "r"
    kwargs: Dict[str, Any] = {}
    if mode == "r":
        kwargs["encoding"] = "utf-8"

    try:
        with path.open(mode, **kwargs) as handle:
            data = loader(handle)
    except (tomllib.TOMLDecodeError, json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Unable to parse '{path}': {exc}") from exc

    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Configuration file '{path}' must contain a mapping at the root")

    return data


def find_config_file(directory: Path, stem: str) -> Path | None:
    """Return the single ``<stem>.<ext>`` file in ``directory`` or ``None``."""

    found: List[Path] = []
    for suffix in FILE_LOADERS:
        candidate = directory / f"{stem}{suffix}"
        if candidate.is_file():
            found.append(candidate)
    if len(found) > 1:
        names = ", ".join(path.name for path in found)
        raise ConfigurationError(
            f"Multiple configuration files found for '{stem}' in '{directory}': {names}. "
            "Only one format per configuration entry is allowed."
        )
    return found[0] if found else None


def normalize_string_list(value: Any, *, field_name: str) -> List[str]:
    """Coerce ``value`` into a list of trimmed, non-empty strings."""

    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        return [text] if text else []
    if isinstance(value, Sequence):
        items: List[str] = []
        for item in value:
            if not isinstance(item, str):
                raise ConfigurationError(f"{field_name} entries must be strings")
            text = item.strip()
            if text:
                items.append(text)
        return items
    raise ConfigurationError(f"{field_name} must be a string or sequence of strings")


def coerce_bool(value: Any, *, field_name: str, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ConfigurationError(f"{field_name} must be a boolean")


def section(data: Mapping[str, Any], key: str, *, field_name: str | None = None) -> Mapping[str, Any]:
    """Return ``data[key]`` as a mapping, treating a missing key as empty."""

    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"[{field_name or key}] must be a table")
    return value


def optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def resolve_search_paths(root: Path, directories: Iterable[str]) -> tuple[Path, ...]:
    """Resolve ``directories`` relative to ``root``, dropping duplicates."""

    resolved: List[Path] = []
    for raw in directories:
        path = Path(raw).expanduser()
        if not path.is_absolute():
            path = root / path
        path = path.resolve()
        if path not in resolved:
            resolved.append(path)
    return tuple(resolved)


__all__ = [
    "FILE_LOADERS",
    "coerce_bool",
    "find_config_file",
    "load_config_file",
    "normalize_string_list",
    "optional_str",
    "resolve_search_paths",
    "section",
]
