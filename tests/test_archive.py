from __future__ import annotations

from contextlib import redirect_stdout
from pathlib import Path
import io
import os
import tarfile
import tempfile
import unittest
import zipfile

import zstandard as zstd

from core.archive import ArchiveArtifact, ArchiveManager
from core.console import Console


class ArchiveManagerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.output = self.root / "build" / "wasm"
        self.output.mkdir(parents=True)
        (self.output / "llhttp.wasm").write_bytes(b"\x00asm\x01\x00\x00\x00")
        (self.output / "package.json").write_text('{\n  "type": "commonjs"\n}')
        (self.output / "utils.js").write_text("exports.utils = 1;\n")
        self.manager = ArchiveManager(Console(level="none"))
        self.artifact = ArchiveArtifact(source_dir=self.output, label="llhttp.wasm")

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _read_zst_members(self, path: Path) -> list[tarfile.TarInfo]:
        with path.open("rb") as handle, zstd.ZstdDecompressor().stream_reader(handle) as reader:
            with tarfile.open(fileobj=reader, mode="r|") as tar:
                return list(tar)

    def test_zst_archive_is_reproducible(self) -> None:
        first = self.manager.create_archive(artifact=self.artifact, target_path=self.root / "a.tar.zst")
        os.utime(self.output / "utils.js", (1_000_000, 1_000_000))
        second = self.manager.create_archive(artifact=self.artifact, target_path=self.root / "b.tar.zst")
        self.assertEqual(first.read_bytes(), second.read_bytes())

    def test_tar_entries_are_sorted_and_normalized(self) -> None:
        target = self.manager.create_archive(artifact=self.artifact, target_path=self.root / "out.tar.zst")
        members = self._read_zst_members(target)
        self.assertEqual([member.name for member in members], ["llhttp.wasm", "package.json", "utils.js"])
        for member in members:
            self.assertEqual((member.mtime, member.uid, member.gid, member.mode), (0, 0, 0, 0o644))
            self.assertEqual((member.uname, member.gname), ("", ""))

    def test_gzip_archive_is_reproducible(self) -> None:
        first = self.manager.create_archive(artifact=self.artifact, target_path=self.root / "a.tar.gz")
        second = self.manager.create_archive(artifact=self.artifact, target_path=self.root / "b.tgz")
        self.assertEqual(first.read_bytes(), second.read_bytes())
        with tarfile.open(first, mode="r:gz") as tar:
            self.assertEqual(tar.getnames(), ["llhttp.wasm", "package.json", "utils.js"])

    def test_plain_tar_leaves_no_temporary_file(self) -> None:
        target = self.manager.create_archive(artifact=self.artifact, target_path=self.root / "dist" / "out.tar")
        self.assertEqual([path.name for path in target.parent.iterdir()], ["out.tar"])
        with tarfile.open(target) as tar:
            self.assertEqual(tar.extractfile("llhttp.wasm").read(), b"\x00asm\x01\x00\x00\x00")

    def test_zip_archive(self) -> None:
        target = self.manager.create_archive(artifact=self.artifact, target_path=self.root / "out.zip")
        with zipfile.ZipFile(target) as archive:
            self.assertEqual(archive.namelist(), ["llhttp.wasm", "package.json", "utils.js"])
            self.assertEqual(archive.getinfo("utils.js").date_time, (1980, 1, 1, 0, 0, 0))

    def test_format_resolution(self) -> None:
        resolve = ArchiveManager.resolve_archive_format
        self.assertEqual(resolve(target=Path("x.tar.zst"), format_hint=None), "zst")
        self.assertEqual(resolve(target=Path("x.TGZ"), format_hint=None), "gztar")
        self.assertEqual(resolve(target=Path("x.bin"), format_hint="zip"), "zip")
        with self.assertRaisesRegex(ValueError, "Supported suffixes"):
            resolve(target=Path("x.rar"), format_hint=None)
        with self.assertRaisesRegex(ValueError, "Unsupported archive format hint"):
            resolve(target=Path("x.tar"), format_hint="7z")

    def test_existing_target_without_overwrite(self) -> None:
        target = self.root / "out.tar"
        target.write_text("existing")
        with self.assertRaises(FileExistsError):
            self.manager.create_archive(artifact=self.artifact, target_path=target, overwrite=False)
        self.assertEqual(target.read_text(), "existing")

    def test_missing_source_directory(self) -> None:
        artifact = ArchiveArtifact(source_dir=self.root / "missing")
        with self.assertRaises(FileNotFoundError):
            self.manager.create_archive(artifact=artifact, target_path=self.root / "out.tar.zst")

    def test_dry_run_only_reports(self) -> None:
        manager = ArchiveManager(Console(level="none", dry_run=True))
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            target = manager.create_archive(artifact=self.artifact, target_path=self.root / "out.tar.zst")
        self.assertFalse(target.exists())
        self.assertIn("[DRY] Would archive llhttp.wasm", buffer.getvalue())


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
