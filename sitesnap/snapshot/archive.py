"""Writes collected entries into a zip, a tar.gz or a plain folder copy."""

import hashlib
import io
import os
import shutil
import sys
import tarfile
import threading
import time
import zipfile
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import BinaryIO

from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from sitesnap.snapshot.errors import ArchiveRootCreateFailed, SnapshotCancelled
from sitesnap.snapshot.models import (
    ArchiveFormat,
    EntryWarning,
    IncludedEntry,
    WriteResult,
)
from sitesnap.utils.mixins import LoggerMixin

DEFAULT_CONTENT_DIR = "files"

# builds an extra (name, data) member once all entries are written
Trailer = Callable[[WriteResult], tuple[str, bytes]]

_PERMANENT_ERRORS = (
    PermissionError,
    FileNotFoundError,
    IsADirectoryError,
    NotADirectoryError,
)


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, OSError) and not isinstance(exc, _PERMANENT_ERRORS)


class _HashingReader:
    """File wrapper that hashes and counts what is read through it"""

    def __init__(self, fileobj: BinaryIO):
        self._fileobj = fileobj
        self.digest = hashlib.sha256()
        self.bytes_read = 0

    def read(self, size: int = -1) -> bytes:
        data = self._fileobj.read(size)
        self.digest.update(data)
        self.bytes_read += len(data)
        return data


class _TarMemberReader(_HashingReader):
    """Feeds tarfile exactly ``size`` bytes of one member.

    tarfile writes the header before the data, so a source that fails or
    shrinks mid-copy cannot be taken back out. The rest of the member is
    zero-filled instead, which keeps the stream aligned for the next
    header, and ``error`` records what happened.
    """

    def __init__(self, fileobj: BinaryIO, size: int):
        super().__init__(fileobj)
        self.remaining = size
        self.error: str | None = None

    def read(self, size: int = -1) -> bytes:
        if size < 0 or size > self.remaining:
            size = self.remaining
        data = b""
        if self.error is None:
            try:
                data = super().read(size)
            except OSError as e:
                self.error = e.strerror or str(e)
            else:
                if len(data) < size:
                    self.error = "file shrank while being read"
        self.remaining -= size
        return data + bytes(size - len(data))


class ArchiveWriter(LoggerMixin):
    """Streams entries, in the order given, into the snapshot destination.

    Files are copied chunk by chunk so peak memory does not depend on file
    size. A failure on one entry is recorded as a warning and the entry is
    left out of the counts; only failing to create the archive itself (or
    the copy root) aborts the write.
    """

    def __init__(
        self,
        compression_level: int = 9,
        chunk_size: int = 1024 * 1024,
        archive_root: str | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.compression_level = compression_level
        self.chunk_size = chunk_size
        self.archive_root = archive_root.strip("/") if archive_root else None
        self.cancel_event = cancel_event

    def write(
        self,
        entries: Iterable[IncludedEntry],
        destination_dir: Path,
        fmt: ArchiveFormat = ArchiveFormat.ZIP,
        archive_name: str | None = None,
        trailer: Trailer | None = None,
    ) -> WriteResult:
        """Write ``entries`` and return what ended up in the snapshot.

        ``trailer`` adds one generated member (the report) at the top level of
        a zip or tar.gz after the entries. It is not counted as an entry.
        """
        destination_dir = Path(destination_dir)
        name = archive_name or destination_dir.name
        result = WriteResult()
        fingerprint = hashlib.md5(usedforsecurity=False)

        if fmt is ArchiveFormat.ZIP:
            self._write_zip(
                entries, destination_dir / f"{name}.zip", result, fingerprint, trailer
            )
        elif fmt is ArchiveFormat.TAR_GZ:
            self._write_tar(
                entries,
                destination_dir / f"{name}.tar.gz",
                result,
                fingerprint,
                trailer,
            )
        else:
            content_root = destination_dir / (self.archive_root or DEFAULT_CONTENT_DIR)
            self._write_directory(entries, content_root, result, fingerprint)

        result.fingerprint = fingerprint.hexdigest()
        self.logger.info(
            "Archive written",
            archive=str(result.archive_path),
            format=fmt.value,
            file_count=result.file_count,
            total_bytes=result.total_bytes,
            warnings=len(result.warnings),
        )
        return result

    # -- helpers ---------------------------------------------------------

    def _arcname(self, entry: IncludedEntry) -> str:
        if self.archive_root:
            return f"{self.archive_root}/{entry.relative_path}"
        return entry.relative_path

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise SnapshotCancelled("Archive write cancelled")

    def _skip(self, result: WriteResult, entry: IncludedEntry, exc: Exception) -> None:
        reason = getattr(exc, "strerror", None) or str(exc)
        if isinstance(exc, PermissionError):
            reason = "permission denied"
        self._warn(result, entry, reason)

    def _warn(self, result: WriteResult, entry: IncludedEntry, reason: str) -> None:
        result.warnings.append(
            EntryWarning(path=entry.relative_path, reason=reason, phase="archive")
        )
        self.logger.warning("Entry skipped", path=entry.relative_path, reason=reason)

    @staticmethod
    def _record(
        result: WriteResult, fingerprint, arcname: str, reader: _HashingReader | None
    ) -> None:
        result.entries.append(arcname)
        if reader is None:
            fingerprint.update(f"{arcname}\n".encode())
            return
        fingerprint.update(f"{arcname}:{reader.digest.hexdigest()}\n".encode())
        result.file_count += 1
        result.total_bytes += reader.bytes_read

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        retry=retry_if_exception(_is_transient),
        reraise=True,
    )
    def _open_source(self, path: Path) -> BinaryIO:
        return open(path, "rb")

    def _zip_info(self, entry: IncludedEntry, arcname: str) -> zipfile.ZipInfo:
        zinfo = zipfile.ZipInfo.from_file(
            entry.source_path, arcname, strict_timestamps=False
        )
        if entry.is_dir:
            return zinfo
        zinfo.compress_type = (
            zipfile.ZIP_DEFLATED if self.compression_level else zipfile.ZIP_STORED
        )
        if sys.version_info >= (3, 13):
            zinfo.compress_level = self.compression_level
        else:
            # no public per-member level before 3.13; open(zinfo, "w") reads this
            zinfo._compresslevel = self.compression_level
        return zinfo

    def _trailer_member(
        self, result: WriteResult, fingerprint, trailer: Trailer | None
    ) -> tuple[str, bytes] | None:
        if trailer is None:
            return None
        # all entries are in, so the digest is final
        result.fingerprint = fingerprint.hexdigest()
        name, data = trailer(result)
        if name in result.entries or f"{name}/" in result.entries:
            self.logger.warning("Trailer name taken by an entry, not added", name=name)
            return None
        return name, data

    # -- formats ---------------------------------------------------------

    def _write_zip(
        self, entries, archive_path: Path, result, fingerprint, trailer=None
    ) -> None:
        try:
            archive = zipfile.ZipFile(
                archive_path,
                "w",
                zipfile.ZIP_DEFLATED,
                compresslevel=self.compression_level,
            )
        except OSError as e:
            raise ArchiveRootCreateFailed(f"Cannot create {archive_path}: {e}") from e
        result.archive_path = archive_path

        with archive:
            for entry in entries:
                self._check_cancelled()
                arcname = self._arcname(entry)
                try:
                    zinfo = self._zip_info(entry, arcname)
                    if entry.is_dir:
                        archive.writestr(zinfo, b"")
                        self._record(result, fingerprint, zinfo.filename, None)
                        continue
                    with self._open_source(entry.source_path) as src:
                        reader = _HashingReader(src)
                        with archive.open(zinfo, "w") as dst:
                            shutil.copyfileobj(reader, dst, self.chunk_size)
                except OSError as e:
                    self._skip(result, entry, e)
                    continue
                self._record(result, fingerprint, arcname, reader)

            member = self._trailer_member(result, fingerprint, trailer)
            if member is not None:
                archive.writestr(member[0], member[1])

    def _write_tar(
        self, entries, archive_path: Path, result, fingerprint, trailer=None
    ) -> None:
        try:
            archive = tarfile.open(
                archive_path, "w:gz", compresslevel=self.compression_level
            )
        except OSError as e:
            raise ArchiveRootCreateFailed(f"Cannot create {archive_path}: {e}") from e
        result.archive_path = archive_path

        with archive:
            for entry in entries:
                self._check_cancelled()
                arcname = self._arcname(entry)
                tinfo = tarfile.TarInfo(arcname)
                tinfo.mtime = int(entry.mtime)
                if entry.is_dir:
                    tinfo.type = tarfile.DIRTYPE
                    tinfo.mode = 0o755
                    archive.addfile(tinfo)
                    self._record(result, fingerprint, arcname + "/", None)
                    continue
                try:
                    with self._open_source(entry.source_path) as src:
                        stat = os.fstat(src.fileno())
                        tinfo.size = stat.st_size
                        tinfo.mode = stat.st_mode & 0o7777
                        reader = _TarMemberReader(src, tinfo.size)
                        archive.addfile(tinfo, fileobj=reader)
                except OSError as e:
                    self._skip(result, entry, e)
                    continue
                if reader.error is not None:
                    self._warn(
                        result, entry, f"read failed mid-copy, zero-filled: {reader.error}"
                    )
                    continue
                self._record(result, fingerprint, arcname, reader)

            member = self._trailer_member(result, fingerprint, trailer)
            if member is not None:
                name, data = member
                tinfo = tarfile.TarInfo(name)
                tinfo.size = len(data)
                tinfo.mtime = int(time.time())
                tinfo.mode = 0o644
                archive.addfile(tinfo, fileobj=io.BytesIO(data))

    def _write_directory(self, entries, content_root: Path, result, fingerprint) -> None:
        try:
            content_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ArchiveRootCreateFailed(f"Cannot create {content_root}: {e}") from e
        result.archive_path = content_root

        directories: list[tuple[Path, float]] = []
        for entry in entries:
            self._check_cancelled()
            target = content_root / entry.relative_path
            try:
                if entry.is_dir:
                    target.mkdir(parents=True, exist_ok=True)
                    directories.append((target, entry.mtime))
                    self._record(result, fingerprint, entry.relative_path + "/", None)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with self._open_source(entry.source_path) as src, open(
                    target, "wb"
                ) as dst:
                    reader = _HashingReader(src)
                    shutil.copyfileobj(reader, dst, self.chunk_size)
            except OSError as e:
                self._skip(result, entry, e)
                continue
            try:
                shutil.copystat(entry.source_path, target)
            except OSError as e:
                self.logger.debug(
                    "Could not copy metadata", path=entry.relative_path, error=str(e)
                )
            self._record(result, fingerprint, entry.relative_path, reader)

        # children were written after their folders, so restore mtimes last
        for path, mtime in reversed(directories):
            try:
                os.utime(path, (mtime, mtime))
            except OSError:
                self.logger.debug("Could not set directory mtime", path=str(path))
