"""Reproducible archives of build output directories."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Protocol, runtime_checkable
import gzip
import os
import shutil
import tarfile
import tempfile
import zipfile

import zstandard as zstd

_SUFFIX_FORMATS: list[tuple[str, str]] = [
    (".tar.zst", "zst"),
    (".tzst", "zst"),
    (".tar.gz", "gztar"),
    (".tgz", "gztar"),
    (".tar", "tar"),
    (".zip", "zip"),
]

_FORMAT_ALIASES: dict[str, str] = {
    "zst": "zst",
    "tar.zst": "zst",
    "tzst": "zst",
    "gztar": "gztar",
    "gz": "gztar",
    "tar.gz": "gztar",
    "tgz": "gztar",
    "tar": "tar",
    "zip": "zip",
}

# 1980-01-01, the earliest timestamp a zip entry can carry.
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


@runtime_checkable
class ArchiveConsole(Protocol):
    """Minimal console interface required by :class:`ArchiveManager`."""

    dry_run: bool

    def info(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...

    def dry(self, message: str) -> None:
        ...


@dataclass(slots=True)
class ArchiveArtifact:
    """Directory whose contents are packed at the archive root."""

    source_dir: Path
    label: str | None = None


def _iter_files(root: Path) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(root, topdown=True):
        dirnames.sort()
        for filename in sorted(filenames):
            yield Path(dirpath) / filename


class ArchiveManager:
    """Create compressed archives from directories.

    Entries are written in sorted order with normalized timestamps and
    ownership, so packing the same files twice yields identical bytes.
    """

    def __init__(self, console: ArchiveConsole) -> None:
        self._console = console

    @staticmethod
    def _zstd_compression_params(source_size: int) -> zstd.ZstdCompressionParameters:
        size = max(1, source_size)
        window_log = max(10, min(27, (size - 1).bit_length()))
        params_kwargs: dict[str, Any] = {
            "compression_level": 19,
            "threads": 0,
            "write_checksum": True,
            "write_content_size": True,
            "window_log": window_log,
        }
        return zstd.ZstdCompressionParameters(**params_kwargs)

    def create_archive(
        self,
        *,
        artifact: ArchiveArtifact,
        target_path: Path | str,
        format_hint: str | None = None,
        overwrite: bool = True,
    ) -> Path:
        """Create an archive for *artifact* at *target_path*.

        Parameters
        ----------
        artifact:
            Data describing the directory to archive.
        target_path:
            Exact path (including filename) for the archive that should be created.
        format_hint:
            Optional explicit archive format such as ``"zst"`` or ``"zip"``. When
            omitted, the format is inferred from *target_path*'s suffix.
        overwrite:
            When ``False`` and the target already exists, a :class:`FileExistsError`
            is raised instead of replacing the file.
        """

        target = Path(target_path).expanduser()
        source_dir = Path(artifact.source_dir).expanduser()

        archive_format = self.resolve_archive_format(target=target, format_hint=format_hint)

        if self._console.dry_run:
            label = artifact.label or source_dir.name
            self._console.dry(f"Would archive {label} to {target}")
            return target

        if not source_dir.is_dir():
            raise FileNotFoundError(f"Archive source directory '{source_dir}' does not exist")

        if target.exists() and not overwrite:
            raise FileExistsError(f"Archive target '{target}' already exists")

        target.parent.mkdir(parents=True, exist_ok=True)

        if archive_format == "zip":
            self._make_zip_archive(target_path=target, source_dir=source_dir)
        else:
            self._make_tar_based_archive(
                target_path=target,
                source_dir=source_dir,
                archive_format=archive_format,
            )
        self._console.info(f"Archived {source_dir} to {target}")
        return target

    @staticmethod
    def resolve_archive_format(*, target: Path, format_hint: str | None) -> str:
        if format_hint:
            normalized = format_hint.strip().lower()
            if normalized in _FORMAT_ALIASES:
                return _FORMAT_ALIASES[normalized]
            raise ValueError(f"Unsupported archive format hint '{format_hint}'")

        filename = target.name.lower()
        for suffix, fmt in sorted(_SUFFIX_FORMATS, key=lambda item: len(item[0]), reverse=True):
            if filename.endswith(suffix):
                return fmt

        supported = ", ".join(suffix for suffix, _ in _SUFFIX_FORMATS)
        raise ValueError(
            f"Unable to determine archive format from '{target.name}'. Supported suffixes: {supported}"
        )

    def _make_tar_based_archive(
        self,
        *,
        target_path: Path,
        source_dir: Path,
        archive_format: str,
    ) -> None:
        temp_tar = self._create_pax_tar(root_dir=source_dir, temp_dir=target_path.parent)
        try:
            if archive_format == "zst":
                params = self._zstd_compression_params(temp_tar.stat().st_size)
                compressor = zstd.ZstdCompressor(compression_params=params)
                with temp_tar.open("rb") as src, target_path.open("wb") as dst:
                    compressor.copy_stream(src, dst)
            elif archive_format == "gztar":
                with temp_tar.open("rb") as src, target_path.open("wb") as raw, gzip.GzipFile(
                    filename="", mode="wb", fileobj=raw, compresslevel=9, mtime=0
                ) as dst:
                    shutil.copyfileobj(src, dst)
            elif archive_format == "tar":
                os.replace(temp_tar, target_path)
            else:
                raise RuntimeError(f"Unsupported archive format '{archive_format}'")
        finally:
            temp_tar.unlink(missing_ok=True)

    @staticmethod
    def _normalize_tarinfo(info: tarfile.TarInfo) -> tarfile.TarInfo:
        info.mtime = 0
        info.uid = 0
        info.gid = 0
        info.uname = ""
        info.gname = ""
        info.mode = 0o644
        return info

    def _create_pax_tar(self, *, root_dir: Path, temp_dir: Path) -> Path:
        with tempfile.NamedTemporaryFile(dir=temp_dir, suffix=".tar", delete=False) as temp_handle:
            temp_path = Path(temp_handle.name)

        try:
            with tarfile.open(temp_path, mode="w", format=tarfile.PAX_FORMAT) as tar:
                for file_path in _iter_files(root_dir):
                    if file_path == temp_path:
                        continue
                    arcname = file_path.relative_to(root_dir).as_posix()
                    tar.add(file_path, arcname=arcname, filter=self._normalize_tarinfo)
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise

        return temp_path

    @staticmethod
    def _make_zip_archive(*, target_path: Path, source_dir: Path) -> None:
        with zipfile.ZipFile(
            target_path,
            mode="w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=9,
            allowZip64=True,
        ) as archive:
            for file_path in _iter_files(source_dir):
                if file_path == target_path:
                    continue
                entry = zipfile.ZipInfo(file_path.relative_to(source_dir).as_posix(), date_time=_ZIP_EPOCH)
                entry.compress_type = zipfile.ZIP_DEFLATED
                entry.external_attr = 0o644 << 16
                archive.writestr(entry, file_path.read_bytes())


__all__ = [
    "ArchiveConsole",
    "ArchiveManager",
    "ArchiveArtifact",
]
