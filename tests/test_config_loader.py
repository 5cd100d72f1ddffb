from __future__ import annotations

from pathlib import Path
import json
import os
import tempfile
import textwrap
import unittest
from unittest.mock import patch

from modforge.config_loader import ArtefactType, BuildConfiguration, MODULE_PATH_ENV
from modforge.copy_spec import PlainCopy, StructuredCopy
from modforge.errors import ConfigurationError
from modforge.modules import LATEST


class BuildConfigurationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.project = self.root / "Foo"
        self.project.mkdir()

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _write(self, text: str, name: str = "build.toml") -> Path:
        path = self.root / name
        path.write_text(textwrap.dedent(text), encoding="utf-8")
        return path

    def test_loads_full_toml_configuration(self) -> None:
        path = self._write(
            """
            [information]
            module_name = "Foo"
            module_version = "1.2.0"
            project_path = "Foo"
            required_modules = ["Bar", { name = "Baz", version = "1.0.0" }]

            [build]
            runtimes = ["core"]

            [steps]
            merge = true
            test = { enabled = true, force = true }

            [options.modules]
            paths = ["modules"]

            [options.tests]
            command = ["pwsh", "-File", "Tests/Run.ps1"]

            [options.placeholders]
            "{CompanyName}" = "Contoso"

            [[artefacts]]
            type = "packed"
            id = "release"
            path = "out"
            zip_path = "zips"

            [artefacts.required_modules]
            path = "Deps"

            [artefacts.files]
            entries = { "LICENSE" = "LICENSE" }

            [artefacts.folders]
            destination_relative = false
            entries = { "Examples" = { destination = "/tmp/examples", enabled = false } }

            [[publish]]
            id = "gallery"
            artefact = "release"
            command = ["echo", "<ArtefactPath>"]
            """
        )
        with patch.dict(os.environ, {MODULE_PATH_ENV: ""}):
            config = BuildConfiguration.from_file(path)

        info = config.information
        self.assertEqual(config.source, path.resolve())
        self.assertEqual(info.module_name, "Foo")
        self.assertEqual(info.project_path, self.project.resolve())
        self.assertEqual([spec.name for spec in info.required_modules], ["Bar", "Baz"])
        self.assertEqual(info.required_modules[0].version, LATEST)
        self.assertEqual(info.required_modules[1].version, "1.0.0")

        self.assertEqual(config.build.output, (self.project / ".build").resolve())
        self.assertEqual(config.build.runtimes, ["Core"])

        self.assertTrue(config.step("merge").enabled)
        self.assertTrue(config.step("test").force)
        self.assertFalse(config.step("publish").enabled)
        self.assertTrue(config.step("resolve").enabled)

        self.assertEqual(config.options.module_paths, [(self.root / "modules").resolve()])
        self.assertEqual(config.options.test_command, ["pwsh", "-File", "Tests/Run.ps1"])
        self.assertEqual(config.options.placeholders, {"{CompanyName}": "Contoso"})

        artefact = config.get_artefact("release")
        self.assertIs(artefact.type, ArtefactType.PACKED)
        self.assertEqual(artefact.required_modules.path, "Deps")
        self.assertEqual(artefact.files.entries, [("LICENSE", PlainCopy(source="LICENSE", destination="LICENSE"))])
        key, entry = artefact.folders.entries[0]
        self.assertEqual(key, "Examples")
        self.assertIsInstance(entry, StructuredCopy)
        self.assertFalse(entry.enabled)
        self.assertFalse(artefact.folders.destination_relative)

        self.assertEqual(config.publishes[0].command, ["echo", "<ArtefactPath>"])

    def test_environment_module_paths_are_appended(self) -> None:
        extra = self.root / "env-modules"
        path = self._write(
            """
            [information]
            module_name = "Foo"
            module_version = "1.0.0"
            project_path = "Foo"
            """
        )
        with patch.dict(os.environ, {MODULE_PATH_ENV: str(extra)}):
            config = BuildConfiguration.from_file(path)
        self.assertEqual(config.options.module_paths, [extra.resolve()])

    def test_module_manifest_fills_missing_information(self) -> None:
        (self.project / "module.toml").write_text(
            textwrap.dedent(
                """
                [module]
                name = "Foo"
                version = "3.1.0"
                pre_release = "beta"
                required_modules = ["Bar"]
                """
            ),
            encoding="utf-8",
        )
        path = self._write(
            """
            [information]
            project_path = "Foo"
            """
        )
        config = BuildConfiguration.from_file(path)
        self.assertEqual(config.information.module_version, "3.1.0")
        self.assertEqual(config.information.pre_release, "beta")
        self.assertEqual([spec.name for spec in config.information.required_modules], ["Bar"])
        self.assertEqual(config.information.descriptor().version_with_pre_release, "3.1.0-beta")

    def test_json_and_yaml_configurations(self) -> None:
        data = {"information": {"module_name": "Foo", "module_version": "1.0.0", "project_path": "Foo"}}
        json_path = self.root / "build.json"
        json_path.write_text(json.dumps(data), encoding="utf-8")
        yaml_path = self._write(
            """
            information:
              module_name: Foo
              module_version: 1.0.0
              project_path: Foo
            artefacts:
              - type: unpacked
            """,
            name="build.yaml",
        )
        self.assertEqual(BuildConfiguration.from_file(json_path).information.module_name, "Foo")
        config = BuildConfiguration.from_file(yaml_path)
        self.assertEqual(config.artefacts[0].id, "unpacked-1")
        self.assertEqual(config.artefacts[0].path, "Artefacts/Unpacked")

    def test_missing_information_section(self) -> None:
        path = self._write("[build]\noutput = 'out'\n")
        with self.assertRaises(ConfigurationError):
            BuildConfiguration.from_file(path)

    def test_unknown_step_is_rejected(self) -> None:
        path = self._write(
            """
            [information]
            module_name = "Foo"
            module_version = "1.0.0"
            project_path = "Foo"

            [steps]
            sign = true
            """
        )
        with self.assertRaisesRegex(ConfigurationError, "Unknown steps: sign"):
            BuildConfiguration.from_file(path)

    def test_duplicate_artefact_ids_are_rejected(self) -> None:
        path = self._write(
            """
            [information]
            module_name = "Foo"
            module_version = "1.0.0"
            project_path = "Foo"

            [[artefacts]]
            id = "a"

            [[artefacts]]
            id = "a"
            """
        )
        with self.assertRaisesRegex(ConfigurationError, "Duplicate artefact ids"):
            BuildConfiguration.from_file(path)

    def test_publish_must_reference_known_artefact(self) -> None:
        path = self._write(
            """
            [information]
            module_name = "Foo"
            module_version = "1.0.0"
            project_path = "Foo"

            [[publish]]
            artefact = "missing"
            command = ["echo"]
            """
        )
        with self.assertRaisesRegex(ConfigurationError, "unknown artefact 'missing'"):
            BuildConfiguration.from_file(path)

    def test_invalid_artefact_type(self) -> None:
        path = self._write(
            """
            [information]
            module_name = "Foo"
            module_version = "1.0.0"
            project_path = "Foo"

            [[artefacts]]
            type = "installer"
            """
        )
        with self.assertRaises(ConfigurationError):
            BuildConfiguration.from_file(path)

    def test_unknown_runtime(self) -> None:
        path = self._write(
            """
            [information]
            module_name = "Foo"
            module_version = "1.0.0"
            project_path = "Foo"

            [build]
            runtimes = ["Mono"]
            """
        )
        with self.assertRaisesRegex(ConfigurationError, "unknown runtime 'Mono'"):
            BuildConfiguration.from_file(path)

    def test_unparseable_file(self) -> None:
        path = self._write("[information\n")
        with self.assertRaisesRegex(ConfigurationError, "Unable to parse"):
            BuildConfiguration.from_file(path)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
