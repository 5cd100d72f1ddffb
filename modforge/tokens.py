"""Path token and placeholder substitution."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Mapping
import re


_TOKEN_PATTERN = re.compile(r"<(?P<angle>[A-Za-z]+)>|\{(?P<brace>[A-Za-z]+)\}")

PLACEHOLDER_SUFFIXES = (".ps1", ".psm1", ".psd1")


@dataclass(slots=True)
class TokenResolver:
    """Replaces ``<Token>`` and ``{Token}`` markers with module values.

    Unknown tokens are left untouched so that literal braces in paths or scripts
    survive substitution.
    """

    module_name: str
    module_version: str
    pre_release: str | None = None
    extra: Dict[str, str] = field(default_factory=dict)

    @property
    def tag_name(self) -> str:
        return f"v{self.module_version}"

    @property
    def version_with_pre_release(self) -> str:
        if self.pre_release:
            return f"{self.module_version}-{self.pre_release}"
        return self.module_version

    def values(self) -> Dict[str, str]:
        data = {
            "ModuleName": self.module_name,
            "ModuleVersion": self.module_version,
            "TagName": self.tag_name,
            "ModuleVersionWithPreRelease": self.version_with_pre_release,
            "TagModuleVersionWithPreRelease": f"v{self.version_with_pre_release}",
        }
        data.update(self.extra)
        return data

    def with_extra(self, **extra: str) -> "TokenResolver":
        merged = dict(self.extra)
        merged.update(extra)
        return TokenResolver(
            module_name=self.module_name,
            module_version=self.module_version,
            pre_release=self.pre_release,
            extra=merged,
        )

    def replace(self, text: str) -> str:
        if not text:
            return text
        values = self.values()

        def replacement(match: re.Match[str]) -> str:
            key = match.group("angle") or match.group("brace")
            if key in values:
                return values[key]
            return match.group(0)

        return _TOKEN_PATTERN.sub(replacement, text)

    def replace_all(self, values: Iterable[str]) -> list[str]:
        return [self.replace(value) for value in values]


def apply_placeholders(text: str, resolver: TokenResolver, custom: Mapping[str, str] | None = None) -> str:
    """Apply builtin tokens, then custom literal find/replace pairs."""

    result = resolver.replace(text)
    for find, replace in (custom or {}).items():
        if find:
            result = result.replace(find, str(replace))
    return result


def substitute_in_tree(
    root: Path,
    resolver: TokenResolver,
    custom: Mapping[str, str] | None = None,
    *,
    suffixes: Iterable[str] = PLACEHOLDER_SUFFIXES,
) -> list[Path]:
    """Rewrite matching files under *root* in place and return the changed ones."""

    wanted = {suffix.lower() for suffix in suffixes}
    changed: list[Path] = []
    for path in sorted(root.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in wanted:
            continue
        original = path.read_text(encoding="utf-8-sig")
        updated = apply_placeholders(original, resolver, custom)
        if updated != original:
            path.write_text(updated, encoding="utf-8")
            changed.append(path)
    return changed
