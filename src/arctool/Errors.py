"""Error types raised by the archive engine.

Fatal errors abort the whole operation and end up as a single ``Error:``
line on stderr with exit code 1. Entry errors only concern one archive
member: the engine catches them inside its entry loop, reports them and
carries on with the next member.
"""


class ArchiveError(Exception):
    """Base class for every error the engine raises on purpose."""


class OpenFailure(ArchiveError):
    """The archive could not be created or opened."""


class WriteFailure(ArchiveError):
    """An I/O error happened while writing the archive or extracted files."""


class ReadFailure(ArchiveError):
    """The archive source failed while being read (network or disk)."""


class CorruptContainer(ArchiveError):
    """The container could not be decoded."""


class UnsupportedFormat(ArchiveError):
    """The archive uses a container or compression we cannot handle."""


class NothingToArchive(ArchiveError):
    """The walker produced no members to write."""


class EntryError(ArchiveError):
    """An error that only affects a single member.

    Attributes:
        name (str): Member name as stored in the archive.
    """

    reason = "error"

    def __init__(self, name: str, message: str) -> None:
        super().__init__(f"{name}: {message}")
        self.name = name


class UnsafePath(EntryError):
    """The member name would escape the extraction root."""

    reason = "unsafe"


class AlreadyExists(EntryError):
    """The target exists and overwriting was not requested."""

    reason = "exists"


class UnsupportedEntryKind(EntryError):
    """The member type (device, fifo, ...) cannot be materialized."""

    reason = "unsupported"


class MissingLinkTarget(EntryError):
    """A hard link points at a member that was not extracted."""

    reason = "missing-target"
