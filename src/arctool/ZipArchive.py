"""ZIP container adapter.

Wraps the standard library `zipfile.ZipFile` behind the encoder/decoder
protocols. Unix permission bits live in the high word of the external
attributes and symlinks are stored the Info-ZIP way: a stored member with
``S_IFLNK`` in its mode and the link target as payload.
"""

import shutil
import stat
import time
import zipfile
from typing import BinaryIO, Iterator, Optional

from .Errors import CorruptContainer
from .FileIO import CHUNK_SIZE, DECODE_ERRORS
from .Models import (
    DEFAULT_DIR_MODE,
    DEFAULT_FILE_MODE,
    ArchiveEntry,
    ArchiveMember,
    CreateOptions,
    EntryKind,
)

METHOD_NAMES = {
    zipfile.ZIP_STORED: "stored",
    zipfile.ZIP_DEFLATED: "deflated",
    zipfile.ZIP_BZIP2: "bzip2",
    zipfile.ZIP_LZMA: "lzma",
}

# MS-DOS directory attribute, set alongside the Unix mode for directories.
MSDOS_DIR_ATTR = 0x10

# General purpose flag bit 0: the member is encrypted.
ENCRYPTED_FLAG = 0x1

# Zip timestamps cannot express anything outside this range.
MIN_DATE_TIME = (1980, 1, 1, 0, 0, 0)
MAX_DATE_TIME = (2107, 12, 31, 23, 59, 58)


def to_date_time(mtime: float) -> tuple:
    date_time = time.localtime(mtime)[:6]
    return min(max(date_time, MIN_DATE_TIME), MAX_DATE_TIME)


def from_date_time(date_time: tuple) -> float:
    return time.mktime(tuple(date_time) + (0, 0, -1))


class ZipEncoder:
    """Writes members into a `zipfile.ZipFile` opened on the engine's sink.

    Attributes:
        method (int): ``ZIP_STORED`` or ``ZIP_DEFLATED``, used for regular
            files; directories and symlinks are always stored.
    """

    def __init__(self, fileobj: BinaryIO, store_only: bool = False) -> None:
        self.method = zipfile.ZIP_STORED if store_only else zipfile.ZIP_DEFLATED
        self.archive = zipfile.ZipFile(fileobj, mode="w", compression=self.method)

    def write_member(self, member: ArchiveMember, payload: Optional[BinaryIO]) -> None:
        info = zipfile.ZipInfo(member.archive_name, date_time=to_date_time(member.mtime))

        if member.kind is EntryKind.DIRECTORY:
            info.external_attr = ((stat.S_IFDIR | member.mode) << 16) | MSDOS_DIR_ATTR
            info.compress_type = zipfile.ZIP_STORED
            self.archive.writestr(info, b"")
        elif member.kind is EntryKind.SYMLINK:
            info.external_attr = (stat.S_IFLNK | member.mode) << 16
            info.compress_type = zipfile.ZIP_STORED
            self.archive.writestr(info, (member.link_target or "").encode("utf-8"))
        else:
            # Hard links have no zip representation; they arrive here as files.
            info.external_attr = (stat.S_IFREG | member.mode) << 16
            info.compress_type = self.method
            info.file_size = member.size
            with self.archive.open(info, mode="w") as target:
                shutil.copyfileobj(payload, target, CHUNK_SIZE)

    def close(self) -> None:
        # Writes the central directory; the sink itself is left open.
        self.archive.close()


class ZipDecoder:
    """Reads a zip archive entry by entry, in central directory order.

    Raises:
        CorruptContainer: If the central directory cannot be parsed.
    """

    def __init__(self, fileobj: BinaryIO, password: Optional[str] = None) -> None:
        try:
            self.archive = zipfile.ZipFile(fileobj)
        except DECODE_ERRORS as e:
            raise CorruptContainer(f"not a readable zip archive: {e}") from e
        if password:
            self.archive.setpassword(password.encode("utf-8"))

    def __iter__(self) -> Iterator[ArchiveEntry]:
        for info in self.archive.infolist():
            yield self._to_entry(info)

    def open_payload(self, entry: ArchiveEntry) -> BinaryIO:
        try:
            return self.archive.open(entry.raw)
        except RuntimeError as e:
            # zipfile raises RuntimeError for encrypted members
            if "password" in str(e).casefold():
                raise CorruptContainer(f"{entry.name}: encrypted, a password is required") from e
            raise
        except NotImplementedError as e:
            raise CorruptContainer(f"{entry.name}: {e}") from e
        except DECODE_ERRORS as e:
            raise CorruptContainer(f"{entry.name}: {e}") from e

    def close(self) -> None:
        self.archive.close()

    def _to_entry(self, info: zipfile.ZipInfo) -> ArchiveEntry:
        unix_mode = info.external_attr >> 16
        link_target = None
        size = info.file_size
        if info.is_dir():
            kind = EntryKind.DIRECTORY
            mode = stat.S_IMODE(unix_mode) or DEFAULT_DIR_MODE
            size = 0
        elif stat.S_ISLNK(unix_mode):
            kind = EntryKind.SYMLINK
            mode = stat.S_IMODE(unix_mode)
            link_target = self._read_link(info)
            size = 0
        else:
            kind = EntryKind.FILE
            mode = stat.S_IMODE(unix_mode) or DEFAULT_FILE_MODE
        return ArchiveEntry(
            name=info.filename.rstrip("/") if info.is_dir() else info.filename,
            kind=kind,
            mode=mode,
            mtime=from_date_time(info.date_time),
            size=size,
            link_target=link_target,
            compressed_size=info.compress_size,
            method=METHOD_NAMES.get(info.compress_type, str(info.compress_type)),
            encrypted=bool(info.flag_bits & ENCRYPTED_FLAG),
            raw=info,
        )

    def _read_link(self, info: zipfile.ZipInfo) -> str:
        try:
            with self.archive.open(info) as source:
                return source.read().decode("utf-8")
        except (UnicodeDecodeError, *DECODE_ERRORS) as e:
            raise CorruptContainer(f"{info.filename}: unreadable symlink target: {e}") from e


class ZipFormat:
    name = "zip"
    supports_compression = False
    supports_hardlinks = False

    def open_encoder(self, fileobj: BinaryIO, options: CreateOptions) -> ZipEncoder:
        return ZipEncoder(fileobj, store_only=options.store_only)

    def open_decoder(self, fileobj: BinaryIO, password: Optional[str] = None) -> ZipDecoder:
        return ZipDecoder(fileobj, password=password)
