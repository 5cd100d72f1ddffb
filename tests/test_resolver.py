from __future__ import annotations

from pathlib import Path
from typing import Iterable
import tempfile
import textwrap
import unittest

from modforge.console import RecordingConsole
from modforge.errors import DependencyCycleError
from modforge.modules import ModuleRepository, RequiredModuleSpec
from modforge.resolver import RequiredModuleResolver


def _requirement(item: str) -> str:
    name, _, version = item.partition("@")
    if version:
        return f'{{ name = "{name}", version = "{version}" }}'
    return f'"{name}"'


class ResolverTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.modules = Path(self.temp_dir.name) / "modules"
        self.modules.mkdir()
        self.console = RecordingConsole()

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def install(self, name: str, version: str, requires: Iterable[str] = ()) -> Path:
        path = self.modules / name / version
        path.mkdir(parents=True)
        required = ", ".join(_requirement(item) for item in requires)
        (path / "module.toml").write_text(
            textwrap.dedent(
                f"""
                [module]
                name = "{name}"
                version = "{version}"
                required_modules = [{required}]
                """
            ),
            encoding="utf-8",
        )
        (path / f"{name}.psm1").write_text(f"# {name} {version}\n", encoding="utf-8")
        return path

    def resolver(self) -> RequiredModuleResolver:
        return RequiredModuleResolver(ModuleRepository([self.modules]), self.console)


class RequiredModuleResolverTests(ResolverTestCase):
    def test_shared_dependency_appears_once(self) -> None:
        self.install("A", "1.0.0", ["C"])
        self.install("B", "1.0.0", ["C"])
        self.install("C", "1.0.0")

        result = self.resolver().resolve("Root", [RequiredModuleSpec("A"), RequiredModuleSpec("B")])

        self.assertEqual(result.names(), ["C", "B", "A"])
        self.assertEqual(result.missing, [])

    def test_deduplication_is_case_insensitive(self) -> None:
        self.install("Bar", "1.0.0")

        result = self.resolver().resolve("Root", [RequiredModuleSpec("Bar"), RequiredModuleSpec("bar")])

        self.assertEqual(len(result.dependencies), 1)

    def test_latest_picks_newest_installed_version(self) -> None:
        self.install("Bar", "1.0.0")
        newest = self.install("Bar", "2.0.0")
        self.install("Bar", "2.0.0-preview1")

        result = self.resolver().resolve("Root", [RequiredModuleSpec("Bar")])

        self.assertEqual(result.dependencies[0].path, newest)
        self.assertEqual(result.dependencies[0].version, "2.0.0")
        self.assertFalse(result.dependencies[0].substituted)

    def test_requested_version_falls_back_to_newest(self) -> None:
        self.install("Bar", "2.0.0")

        result = self.resolver().resolve("Root", [RequiredModuleSpec("Bar", version="1.5.0")])

        dependency = result.dependencies[0]
        self.assertEqual(dependency.version, "2.0.0")
        self.assertTrue(dependency.substituted)
        self.assertEqual(len(result.substitutions), 1)
        self.assertEqual(result.substitutions[0].requested, "1.5.0")
        self.assertTrue(any("1.5.0" in line for line in self.console.lines("warn")))

    def test_requested_version_is_used_when_installed(self) -> None:
        older = self.install("Bar", "1.5.0")
        self.install("Bar", "2.0.0")

        result = self.resolver().resolve("Root", [RequiredModuleSpec("Bar", version="1.5.0")])

        self.assertEqual(result.dependencies[0].path, older)
        self.assertEqual(result.substitutions, [])

    def test_short_requested_version_matches_installed_release(self) -> None:
        installed = self.install("Bar", "2.0.0")
        self.install("Bar", "3.0.0")

        result = self.resolver().resolve("Root", [RequiredModuleSpec("Bar", version="2.0")])

        self.assertEqual(result.dependencies[0].path, installed)
        self.assertFalse(result.dependencies[0].substituted)
        self.assertEqual(result.substitutions, [])

    def test_minimum_version(self) -> None:
        self.install("Bar", "1.0.0")

        result = self.resolver().resolve("Root", [RequiredModuleSpec("Bar", minimum_version="1.5.0")])

        self.assertTrue(result.dependencies[0].substituted)
        self.assertEqual(result.substitutions[0].resolved, "1.0.0")

    def test_missing_module_is_reported_not_fatal(self) -> None:
        self.install("Bar", "1.0.0", ["Ghost"])

        result = self.resolver().resolve("Root", [RequiredModuleSpec("Bar")])

        self.assertEqual(result.names(), ["Bar"])
        self.assertEqual(result.missing, ["Ghost"])
        self.assertIn("Required module 'Ghost' is not installed", self.console.lines("warn"))

    def test_cycle_is_detected(self) -> None:
        self.install("A", "1.0.0", ["B"])
        self.install("B", "1.0.0", ["A"])

        with self.assertRaises(DependencyCycleError) as ctx:
            self.resolver().resolve("Root", [RequiredModuleSpec("A")])

        self.assertEqual(ctx.exception.chain, ["Root", "A", "B", "A"])

    def test_dependency_on_root_module_is_a_cycle(self) -> None:
        self.install("A", "1.0.0", ["Root"])

        with self.assertRaisesRegex(DependencyCycleError, "Root -> A -> Root"):
            self.resolver().resolve("Root", [RequiredModuleSpec("A")])

    def test_layered_shared_dependencies_are_expanded_once(self) -> None:
        layers = 20
        for layer in range(layers):
            below = [] if layer == layers - 1 else [f"L{layer + 1}a", f"L{layer + 1}b"]
            for side in ("a", "b"):
                requires = [f"{item}@1.0.0" for item in below]
                self.install(f"L{layer}{side}", "2.0.0", requires)

        result = self.resolver().resolve("Root", [RequiredModuleSpec("L0a"), RequiredModuleSpec("L0b")])

        self.assertEqual(len(result.dependencies), layers * 2)
        self.assertEqual(result.names()[:2], ["L19b", "L19a"])
        self.assertEqual(result.names()[-2:], ["L0b", "L0a"])
        self.assertEqual(len(self.console.lines("debug")), layers * 2)
        names = [substitution.name for substitution in result.substitutions]
        self.assertEqual(sorted(names), sorted({name for name in names}))
        self.assertEqual(len(names), (layers - 1) * 2)

    def test_flat_module_folder_without_versions(self) -> None:
        flat = self.modules / "Plain"
        flat.mkdir()
        (flat / "Plain.psm1").write_text("# plain\n", encoding="utf-8")

        result = self.resolver().resolve("Root", [RequiredModuleSpec("plain")])

        self.assertEqual(result.dependencies[0].path, flat)
        self.assertEqual(result.dependencies[0].version, "0.0.0")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
