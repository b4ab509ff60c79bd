"""
Tech support bundle inspection.

Unpacks an uploaded bundle into a private scratch directory, finds the CLI
output capture and hands its text to the system info extractor. Extraction
refuses members that would escape the scratch directory, device nodes and
bundles whose compression ratio points at a decompression bomb. Link members
are skipped.
"""

from __future__ import annotations

import logging
import shutil
import stat
import tarfile
import zipfile
from pathlib import Path, PurePosixPath
from typing import List, Optional, Tuple

from .errors import ArchiveError, NotFoundError, PipelineError, StorageError
from .models import DeviceFields, Outcome
from .system_info import extract_device_fields

logger = logging.getLogger(__name__)


# Text-heavy bundles compress well, but nothing legitimate comes close to this
_MAX_COMPRESSION_RATIO = 100.0


def _validate_member_path(member_name: str) -> Optional[Path]:
    """
    Return the member's path relative to the extraction root.

    Returns None for the archive root itself (``.`` or ``./``), which
    ``tar -C dir .`` writes as the first member.
    """
    normalized = member_name.replace("\\", "/")
    relative = PurePosixPath(normalized)
    if relative.is_absolute():
        raise ArchiveError(f"Unsafe absolute path in archive: {member_name}")
    parts = [part for part in relative.parts if part != "."]
    if ".." in parts:
        raise ArchiveError(f"Unsafe path in archive: {member_name}")
    return Path(*parts) if parts else None


def _check_compression_ratio(total_uncompressed: int, compressed_size: int, archive_path: Path) -> None:
    if compressed_size <= 0:
        return
    ratio = total_uncompressed / float(compressed_size)
    if ratio > _MAX_COMPRESSION_RATIO:
        logger.error(
            f"Archive {archive_path.name} expands {ratio:.1f}:1 "
            f"({compressed_size} -> {total_uncompressed} bytes), refusing to extract"
        )
        raise ArchiveError(
            f"Archive {archive_path.name} expands to {total_uncompressed} bytes, "
            f"exceeding {_MAX_COMPRESSION_RATIO:.0f}:1 compression ratio"
        )


def _extract_tar(archive_path: Path, destination: Path) -> List[Path]:
    extracted: List[Path] = []
    with tarfile.open(archive_path, mode="r:*") as archive:
        safe_members: List[Tuple[tarfile.TarInfo, Path]] = []
        total_uncompressed = 0
        for member in archive.getmembers():
            member_path = _validate_member_path(member.name)
            if member_path is None:
                continue
            if member.islnk() or member.issym():
                logger.warning(f"Skipping link member {member.name} -> {member.linkname}")
                continue
            if not member.isdir() and not member.isfile():
                raise ArchiveError(f"Unsupported member type in archive: {member.name}")
            total_uncompressed += int(member.size) if member.isfile() else 0
            safe_members.append((member, member_path))
        _check_compression_ratio(total_uncompressed, archive_path.stat().st_size, archive_path)

        for member, member_path in safe_members:
            target_path = destination / member_path
            if member.isdir():
                target_path.mkdir(parents=True, exist_ok=True)
                continue
            target_path.parent.mkdir(parents=True, exist_ok=True)
            source = archive.extractfile(member)
            if source is None:
                raise ArchiveError(f"Failed to extract member: {member.name}")
            with source, target_path.open("wb") as target:
                shutil.copyfileobj(source, target)
            extracted.append(target_path)
    return extracted


def _extract_zip(archive_path: Path, destination: Path) -> List[Path]:
    extracted: List[Path] = []
    with zipfile.ZipFile(archive_path) as archive:
        safe_members: List[Tuple[zipfile.ZipInfo, Path]] = []
        total_uncompressed = 0
        for member in archive.infolist():
            member_path = _validate_member_path(member.filename)
            if member_path is None:
                continue
            if stat.S_ISLNK(member.external_attr >> 16):
                logger.warning(f"Skipping link member {member.filename}")
                continue
            if not member.is_dir():
                total_uncompressed += int(member.file_size)
            safe_members.append((member, member_path))
        compressed_size = max(
            archive_path.stat().st_size,
            sum(int(member.compress_size) for member, _ in safe_members),
        )
        _check_compression_ratio(total_uncompressed, compressed_size, archive_path)

        for member, member_path in safe_members:
            target_path = destination / member_path
            if member.is_dir():
                target_path.mkdir(parents=True, exist_ok=True)
                continue
            target_path.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(member, "r") as source, target_path.open("wb") as target:
                shutil.copyfileobj(source, target)
            extracted.append(target_path)
    return extracted


def extract_archive(archive_path: Path, destination: Path) -> List[Path]:
    """
    Extract a tar (optionally compressed) or zip bundle into ``destination``.

    The format is detected from the file content, since uploaded bundles
    keep whatever name the browser sent.

    Raises:
        ArchiveError: If the file is not a readable archive or contains
            unsafe members
    """
    try:
        if zipfile.is_zipfile(archive_path):
            extracted = _extract_zip(archive_path, destination)
        elif tarfile.is_tarfile(archive_path):
            extracted = _extract_tar(archive_path, destination)
        else:
            raise ArchiveError(f"Unsupported or corrupt archive: {archive_path.name}")
    except (tarfile.TarError, zipfile.BadZipFile, EOFError) as exc:
        raise ArchiveError(f"Failed to extract archive {archive_path.name}", detail=str(exc)) from exc
    except OSError as exc:
        raise ArchiveError(f"Failed to read archive {archive_path.name}", detail=str(exc)) from exc
    logger.info(f"Extracted {len(extracted)} file(s) from {archive_path.name} into {destination}")
    return extracted


class ArchiveInspector:
    """
    Locates and parses the CLI info capture inside a tech support bundle.

    Attributes:
        cli_info_dir: Directory inside the bundle holding CLI captures
        cli_info_suffix: Extension of the capture files
    """

    def __init__(self, cli_info_dir: str = "tmp/cli", cli_info_suffix: str = ".txt") -> None:
        self.cli_info_dir = PurePosixPath(cli_info_dir)
        self.cli_info_suffix = cli_info_suffix

    def find_cli_info_file(self, extraction_dir: Path) -> Path:
        directory = extraction_dir.joinpath(*self.cli_info_dir.parts)
        if not directory.is_dir():
            raise NotFoundError("no CLI info file found", detail=f"{self.cli_info_dir} is missing from the bundle")
        candidates = sorted(
            path for path in directory.iterdir() if path.is_file() and path.name.endswith(self.cli_info_suffix)
        )
        if not candidates:
            raise NotFoundError(
                "no CLI info file found",
                detail=f"no *{self.cli_info_suffix} files under {self.cli_info_dir}",
            )
        return candidates[0]

    def _inspect(self, archive_path: Path, scratch_dir: Path) -> DeviceFields:
        try:
            scratch_dir.mkdir(parents=True, exist_ok=False)
        except OSError as exc:
            raise StorageError("Could not create scratch directory", detail=str(exc)) from exc

        extract_archive(archive_path, scratch_dir)
        info_file = self.find_cli_info_file(scratch_dir)
        logger.info(f"Reading CLI info from {info_file.relative_to(scratch_dir)}")
        try:
            text = info_file.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise StorageError("Could not read CLI info file", detail=str(exc)) from exc
        return extract_device_fields(text)

    def inspect(self, archive_path: Path, scratch_dir: Path) -> Outcome[DeviceFields]:
        """
        Extract ``archive_path`` into ``scratch_dir`` and read its device fields.

        The scratch directory is created here and must not already exist.
        Removing it afterwards is the caller's job, on every exit path.
        """
        try:
            return Outcome.success(self._inspect(archive_path, scratch_dir))
        except PipelineError as exc:
            logger.warning(f"Bundle inspection failed: {exc.message}")
            return Outcome.failure(exc)
