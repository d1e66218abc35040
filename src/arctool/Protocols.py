"""Container format protocol definitions.

This module declares `ContainerFormat`, the interface the tar and zip
adapters implement, together with the encoder and decoder objects they
hand out. The engine only talks to these protocols, so walking,
path checks, extraction and reporting are written once for every
format.
"""

from typing import BinaryIO, Iterator, Optional, Protocol

from .Models import ArchiveEntry, ArchiveMember, CreateOptions


class ContainerEncoder(Protocol):
    """Writes members, header then payload, into an open byte sink."""

    def write_member(self, member: ArchiveMember, payload: Optional[BinaryIO]) -> None:
        """Serialize one member.

        Args:
            member (ArchiveMember): Header data for the member.
            payload (BinaryIO|None): Open file with exactly ``member.size``
                bytes for regular files, ``None`` for everything else.
        """
        ...

    def close(self) -> None:
        """Flush whatever trailer the container needs.

        Must not close the byte sink the encoder was opened on; the engine
        owns it and closes it afterwards.
        """
        ...


class ContainerDecoder(Protocol):
    """Iterates the entries of an open container, in archive order."""

    def __iter__(self) -> Iterator[ArchiveEntry]:
        ...

    def open_payload(self, entry: ArchiveEntry) -> BinaryIO:
        """Return a stream over the payload of ``entry``.

        Only valid for the entry most recently yielded by the iterator;
        access is strictly sequential.
        """
        ...

    def close(self) -> None:
        ...


class ContainerFormat(Protocol):
    """Capability object describing one archive container.

    Attributes:
        name (str): Short format name ("tar", "zip").
        supports_compression (bool): Whether the whole container may be
            wrapped in an outer gzip/bzip2/xz filter.
        supports_hardlinks (bool): Whether hard links survive as links; if
            not, the walker stores them as regular files.
    """

    name: str
    supports_compression: bool
    supports_hardlinks: bool

    def open_encoder(self, fileobj: BinaryIO, options: CreateOptions) -> ContainerEncoder:
        ...

    def open_decoder(self, fileobj: BinaryIO, password: Optional[str] = None) -> ContainerDecoder:
        """Open ``fileobj`` for reading.

        Args:
            fileobj (BinaryIO): Container bytes, already decompressed.
            password (str|None): Used by formats with encrypted members.

        Raises:
            CorruptContainer: If the stream does not hold a valid container.
        """
        ...
