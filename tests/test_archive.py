from __future__ import annotations

from pathlib import Path
import tarfile
import tempfile
import unittest
import zipfile

import zstandard as zstd

from modforge.archive import ArchiveArtifact, ArchiveManager, artefact_file_name, has_archive_suffix
from modforge.console import RecordingConsole
from modforge.tokens import TokenResolver


class ArtefactFileNameTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tokens = TokenResolver(module_name="Foo", module_version="1.2.0", pre_release="rc1")

    def test_default_name(self) -> None:
        self.assertEqual(artefact_file_name(self.tokens), "Foo.zip")

    def test_tagged_name_includes_pre_release(self) -> None:
        self.assertEqual(artefact_file_name(self.tokens, include_tag_name=True), "Foo.v1.2.0-rc1.zip")

    def test_legacy_name(self) -> None:
        self.assertEqual(artefact_file_name(self.tokens, legacy_naming=True, include_tag_name=True), "v1.2.0.zip")

    def test_explicit_name_wins(self) -> None:
        name = artefact_file_name(self.tokens, artefact_name="<ModuleName>-{ModuleVersion}.zip", legacy_naming=True)
        self.assertEqual(name, "Foo-1.2.0.zip")

    def test_archive_suffix_detection(self) -> None:
        self.assertTrue(has_archive_suffix("dist/Foo.zip"))
        self.assertTrue(has_archive_suffix(Path("dist/Foo.tar.zst")))
        self.assertFalse(has_archive_suffix("dist/zips"))


class ArchiveManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.source = self.root / "out"
        (self.source / "Foo" / "Modules" / "Bar").mkdir(parents=True)
        (self.source / "Foo" / "Foo.psm1").write_text("# foo", encoding="utf-8")
        (self.source / "Foo" / "Modules" / "Bar" / "Bar.psm1").write_text("# bar", encoding="utf-8")
        self.console = RecordingConsole()
        self.manager = ArchiveManager(self.console)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_zip_contains_tree_relative_to_source(self) -> None:
        target = self.manager.create_archive(
            artifact=ArchiveArtifact(source_dir=self.source),
            target_path=self.root / "zips" / "Foo.zip",
        )

        with zipfile.ZipFile(target) as archive:
            self.assertEqual(archive.namelist(), ["Foo/Foo.psm1", "Foo/Modules/Bar/Bar.psm1"])

    def test_existing_archive_is_replaced(self) -> None:
        target = self.root / "Foo.zip"
        target.write_bytes(b"not a zip")

        self.manager.create_archive(artifact=ArchiveArtifact(source_dir=self.source), target_path=target)

        self.assertTrue(zipfile.is_zipfile(target))

    def test_overwrite_disabled(self) -> None:
        target = self.root / "Foo.zip"
        target.write_bytes(b"")
        with self.assertRaises(FileExistsError):
            self.manager.create_archive(
                artifact=ArchiveArtifact(source_dir=self.source),
                target_path=target,
                overwrite=False,
            )

    def test_zstd_archive(self) -> None:
        target = self.manager.create_archive(
            artifact=ArchiveArtifact(source_dir=self.source),
            target_path=self.root / "Foo.tar.zst",
        )

        data = zstd.ZstdDecompressor().decompressobj().decompress(target.read_bytes())
        tar_path = self.root / "Foo.tar"
        tar_path.write_bytes(data)
        with tarfile.open(tar_path) as archive:
            self.assertIn("Foo/Modules/Bar/Bar.psm1", archive.getnames())

    def test_dry_run_writes_nothing(self) -> None:
        manager = ArchiveManager(RecordingConsole(dry_run=True))
        target = manager.create_archive(
            artifact=ArchiveArtifact(source_dir=self.source, label="release"),
            target_path=self.root / "Foo.zip",
        )
        self.assertFalse(target.exists())

    def test_target_inside_source_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.manager.create_archive(
                artifact=ArchiveArtifact(source_dir=self.source),
                target_path=self.source / "Foo.zip",
            )

    def test_missing_source(self) -> None:
        with self.assertRaises(FileNotFoundError):
            self.manager.create_archive(
                artifact=ArchiveArtifact(source_dir=self.root / "missing"),
                target_path=self.root / "Foo.zip",
            )

    def test_unknown_suffix_requires_hint(self) -> None:
        with self.assertRaises(ValueError):
            self.manager.create_archive(
                artifact=ArchiveArtifact(source_dir=self.source),
                target_path=self.root / "Foo.rar",
            )


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
