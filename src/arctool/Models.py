"""Plain data carried between the walker, the engine and the formats.

Nothing here does I/O except :meth:`ArchiveMember.from_path`, which turns
an ``lstat`` result into a member.
"""

import enum
import os
import stat
from dataclasses import dataclass, field
from typing import Optional


class EntryKind(enum.Enum):
    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    HARDLINK = "hardlink"
    OTHER = "other"


class Compression(enum.Enum):
    """Outer stream filters a container can be wrapped in."""

    NONE = "none"
    GZIP = "gz"
    BZIP2 = "bz2"
    XZ = "xz"


class ExtractAction(enum.Enum):
    MKDIR = "mkdir"
    WRITE = "write"
    SYMLINK = "symlink"
    HARDLINK = "hardlink"
    SKIP = "skip"


# Used by zip entries written on systems that do not store Unix modes.
DEFAULT_FILE_MODE = 0o644
DEFAULT_DIR_MODE = 0o755


@dataclass
class ArchiveMember:
    """A filesystem object about to be written into an archive.

    Attributes:
        path (str): Where the object lives on disk.
        name (str): Relative, forward-slash name it gets inside the archive.
        kind (EntryKind): What sort of object it is.
        mode (int): Permission bits (no file type bits).
        mtime (float): Modification time, seconds since the epoch.
        size (int): Payload length; 0 for anything but regular files.
        link_target (str | None): Symlink target, or the archive name of
            the first member sharing the inode for hard links.
    """

    path: str
    name: str
    kind: EntryKind
    mode: int
    mtime: float
    size: int = 0
    link_target: Optional[str] = None
    uid: int = 0
    gid: int = 0
    uname: str = ""
    gname: str = ""

    @classmethod
    def from_path(cls, path: str, name: str) -> "ArchiveMember":
        """Build a member from ``lstat(path)``; symlinks are never followed.

        Raises:
            OSError: If the path cannot be stat'ed or a link cannot be read.
        """
        st = os.lstat(path)
        link_target = None
        size = 0
        if stat.S_ISDIR(st.st_mode):
            kind = EntryKind.DIRECTORY
        elif stat.S_ISLNK(st.st_mode):
            kind = EntryKind.SYMLINK
            link_target = os.readlink(path)
        elif stat.S_ISREG(st.st_mode):
            kind = EntryKind.FILE
            size = st.st_size
        else:
            kind = EntryKind.OTHER
        return cls(
            path=path,
            name=name,
            kind=kind,
            mode=stat.S_IMODE(st.st_mode),
            mtime=st.st_mtime,
            size=size,
            link_target=link_target,
            uid=st.st_uid,
            gid=st.st_gid,
            uname=_user_name(st.st_uid),
            gname=_group_name(st.st_gid),
        )

    @property
    def archive_name(self) -> str:
        # Zip (and tar readers) tell directories apart by the trailing slash.
        if self.kind is EntryKind.DIRECTORY:
            return self.name + "/"
        return self.name


@dataclass
class ArchiveEntry:
    """A member as decoded from an archive."""

    name: str
    kind: EntryKind
    mode: int
    mtime: float
    size: int = 0
    link_target: Optional[str] = None
    compressed_size: Optional[int] = None
    method: Optional[str] = None
    uid: int = 0
    gid: int = 0
    uname: str = ""
    gname: str = ""
    # Zip only: the payload needs a password to be read.
    encrypted: bool = False
    # Format specific handle (TarInfo / ZipInfo) used to reopen the payload.
    raw: object = field(default=None, repr=False, compare=False)


@dataclass
class CreateOptions:
    compression: Compression = Compression.NONE
    recursive: bool = True
    include: Optional[str] = None
    exclude: Optional[str] = None
    # Zip only: store regular files uncompressed instead of deflating them.
    store_only: bool = False


@dataclass
class ExtractOptions:
    target_dir: str = "."
    # None means "detect from the magic bytes".
    compression: Optional[Compression] = None
    include: Optional[str] = None
    exclude: Optional[str] = None
    overwrite: bool = False
    # Treat an unsafe member name as fatal for the whole run.
    strict: bool = False
    # Zip only: password for encrypted members.
    password: Optional[str] = None


def _user_name(uid: int) -> str:
    try:
        import pwd

        return pwd.getpwuid(uid).pw_name
    except (ImportError, KeyError):
        return ""


def _group_name(gid: int) -> str:
    try:
        import grp

        return grp.getgrgid(gid).gr_name
    except (ImportError, KeyError):
        return ""
