import tarfile
from typing import BinaryIO, Iterator, Optional

from .Errors import CorruptContainer
from .FileIO import DECODE_ERRORS
from .Models import ArchiveEntry, ArchiveMember, CreateOptions, EntryKind

# A clean archive ends with a header block made of zeros.
END_BLOCK = bytes(tarfile.BLOCKSIZE)

KIND_TO_TYPE = {
    EntryKind.FILE: tarfile.REGTYPE,
    EntryKind.DIRECTORY: tarfile.DIRTYPE,
    EntryKind.SYMLINK: tarfile.SYMTYPE,
    EntryKind.HARDLINK: tarfile.LNKTYPE,
}


class TarEncoder:

    def __init__(self, fileobj: BinaryIO) -> None:
        # Stream mode: headers and payloads go out strictly in order and the
        # sink is never seeked, so it can be a compression filter.
        self.archive = tarfile.open(fileobj=fileobj, mode="w|", format=tarfile.PAX_FORMAT)

    def write_member(self, member: ArchiveMember, payload: Optional[BinaryIO]) -> None:
        info = tarfile.TarInfo(member.name)
        info.type = KIND_TO_TYPE[member.kind]
        info.mode = member.mode
        info.mtime = int(member.mtime)
        info.uid, info.gid = member.uid, member.gid
        info.uname, info.gname = member.uname, member.gname
        if member.kind in (EntryKind.SYMLINK, EntryKind.HARDLINK):
            info.linkname = member.link_target or ""
        if member.kind is EntryKind.FILE:
            info.size = member.size
            self.archive.addfile(info, payload)
        else:
            self.archive.addfile(info)

    def close(self) -> None:
        # Writes the two zero blocks that end the archive; the sink stays open.
        self.archive.close()


class TailReader:
    """Pass-through reader that remembers the last bytes handed to tarfile.

    tarfile stops iterating quietly when a header after the first one is
    truncated or garbled; keeping the tail lets the decoder check what
    actually sat where iteration stopped.
    """

    def __init__(self, fileobj: BinaryIO, keep: int = 4 * tarfile.RECORDSIZE) -> None:
        self.fileobj = fileobj
        self.keep = keep
        self.position = 0
        self.tail = b""

    def read(self, size: int = -1) -> bytes:
        data = self.fileobj.read(size)
        self.position += len(data)
        self.tail = (self.tail + data)[-self.keep:]
        return data

    def block_at(self, offset: int) -> Optional[bytes]:
        start = self.position - len(self.tail)
        if offset < start:
            return None
        return self.tail[offset - start:offset - start + tarfile.BLOCKSIZE]


class TarDecoder:

    def __init__(self, fileobj: BinaryIO) -> None:
        self.source = TailReader(fileobj)
        try:
            self.archive = tarfile.open(fileobj=self.source, mode="r|")
        except DECODE_ERRORS as e:
            raise CorruptContainer(f"not a readable tar archive: {e}") from e

    def __iter__(self) -> Iterator[ArchiveEntry]:
        members = iter(self.archive)
        while True:
            try:
                info = next(members)
            except StopIteration:
                self._check_end()
                return
            except DECODE_ERRORS as e:
                raise CorruptContainer(f"bad tar header: {e}") from e
            yield self._to_entry(info)

    def open_payload(self, entry: ArchiveEntry) -> BinaryIO:
        try:
            return self.archive.extractfile(entry.raw)
        except DECODE_ERRORS as e:
            raise CorruptContainer(f"{entry.name}: {e}") from e

    def close(self) -> None:
        self.archive.close()

    def _check_end(self) -> None:
        if self.source.block_at(self.archive.offset) != END_BLOCK:
            raise CorruptContainer(f"archive ends without an end marker at offset {self.archive.offset}: "
                                   "truncated or damaged header")

    @staticmethod
    def _to_entry(info: tarfile.TarInfo) -> ArchiveEntry:
        size = 0
        link_target = None
        if info.isreg():
            kind = EntryKind.FILE
            size = info.size
        elif info.isdir():
            kind = EntryKind.DIRECTORY
        elif info.issym():
            kind = EntryKind.SYMLINK
            link_target = info.linkname
        elif info.islnk():
            kind = EntryKind.HARDLINK
            link_target = info.linkname
        else:
            kind = EntryKind.OTHER
        return ArchiveEntry(
            name=info.name,
            kind=kind,
            mode=info.mode & 0o7777,
            mtime=float(info.mtime),
            size=size,
            link_target=link_target,
            uid=info.uid,
            gid=info.gid,
            uname=info.uname,
            gname=info.gname,
            raw=info,
        )


class TarFormat:
    name = "tar"
    supports_compression = True
    supports_hardlinks = True

    def open_encoder(self, fileobj: BinaryIO, options: CreateOptions) -> TarEncoder:
        return TarEncoder(fileobj)

    def open_decoder(self, fileobj: BinaryIO, password: Optional[str] = None) -> TarDecoder:
        return TarDecoder(fileobj)
