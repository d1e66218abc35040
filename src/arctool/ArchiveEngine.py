"""The archive engine: create, list, test and extract.

Every operation is written once against the `ContainerFormat` protocol;
`TarFormat` and `ZipFormat` only know how to encode and decode their own
headers. Per-entry problems (unsafe names, existing files, unsupported
types) become skips reported through the `Reporter`; anything else
aborts the operation with an `ArchiveError`.
"""

import os
import tempfile
import time
from contextlib import ExitStack, contextmanager
from typing import BinaryIO, Callable, Iterator, List, Optional, Tuple

import httpx

from .Errors import (
    AlreadyExists,
    CorruptContainer,
    EntryError,
    MissingLinkTarget,
    NothingToArchive,
    OpenFailure,
    UnsafePath,
    UnsupportedEntryKind,
    UnsupportedFormat,
    WriteFailure,
)
from .FileIO import CHUNK_SIZE, DECODE_ERRORS, compress_writer, decompress_reader, open_source
from .Models import (
    ArchiveEntry,
    ArchiveMember,
    Compression,
    CreateOptions,
    EntryKind,
    ExtractAction,
    ExtractOptions,
)
from .PathSafety import is_root_name, resolve_within
from .Protocols import ContainerDecoder, ContainerEncoder, ContainerFormat
from .Reporter import Reporter, Totals
from .TarArchive import TarFormat
from .Walker import MemberWalker, matches_filters
from .ZipArchive import ZipFormat

# Archive file signatures, from Wikipedia
SIGNATURES = {
    # zip
    b"PK\x03\x04": "zip",
    b"PK\x05\x06": "zip",  # Empty archive
    b"PK\x07\x08": "zip",  # Spanned archive
    # compressed streams (usually a tar inside)
    b"\x1f\x8b": "gz",
    b"BZh": "bz2",
    b"\xfd7zXZ\x00": "xz",
    b"\x28\xb5\x2f\xfd": "zstd",
    # other containers
    b"7z\xbc\xaf\x27\x1c": "7z",
    b"Rar!\x1a\x07": "rar",
}

# ustar magic sits at offset 257 of the first header block
TAR_MAGIC_OFFSET = 257

FORMATS = {
    "tar": TarFormat(),
    "zip": ZipFormat(),
}

KIND_ACTIONS = {
    EntryKind.DIRECTORY: ExtractAction.MKDIR,
    EntryKind.FILE: ExtractAction.WRITE,
    EntryKind.SYMLINK: ExtractAction.SYMLINK,
    EntryKind.HARDLINK: ExtractAction.HARDLINK,
    EntryKind.OTHER: ExtractAction.SKIP,
}


def get_format(name: str) -> ContainerFormat:
    try:
        return FORMATS[name]
    except KeyError:
        raise UnsupportedFormat(f"unknown archive format: {name}") from None


def sniff(fileobj: BinaryIO) -> Optional[str]:
    """Identify the data at the current position without consuming it.

    Returns:
        str|None: "zip", "tar", a compression name ("gz", "bz2", "xz",
        "zstd"), another container name ("7z", "rar"), or None.
    """
    position = fileobj.tell()
    head = fileobj.read(512)
    fileobj.seek(position)
    for signature, kind in SIGNATURES.items():
        if head.startswith(signature):
            return kind
    if head[TAR_MAGIC_OFFSET:TAR_MAGIC_OFFSET + 5] == b"ustar":
        return "tar"
    return None


def detect_compression(fileobj: BinaryIO) -> Compression:
    kind = sniff(fileobj)
    if kind in ("tar", None):
        return Compression.NONE
    for compression in Compression:
        if compression.value == kind:
            return compression
    raise UnsupportedFormat(f"{kind} data cannot be read as a tar archive")


def create_archive(archive: str, paths: List[str], fmt: ContainerFormat,
                   options: Optional[CreateOptions] = None,
                   reporter: Optional[Reporter] = None) -> Totals:
    """Write ``paths`` into a new archive at ``archive``.

    The archive is assembled in a temporary file next to the destination
    and renamed into place only once it is complete, so a failed run never
    leaves a truncated archive behind.

    Args:
        archive (str): Destination path.
        paths (list): Literal paths or glob patterns.
        fmt (ContainerFormat): Container to write.
        options (CreateOptions|None): Compression, recursion and filters.
        reporter (Reporter|None): Receives every written member.

    Returns:
        Totals: Members written and uncompressed bytes.

    Raises:
        NothingToArchive: If the arguments matched nothing.
        OpenFailure: If the destination cannot be created.
        WriteFailure: If reading an input or writing the archive fails.
    """
    options = options or CreateOptions()
    reporter = reporter or Reporter()
    if options.compression is not Compression.NONE and not fmt.supports_compression:
        raise UnsupportedFormat(f"{fmt.name} archives cannot be wrapped in {options.compression.value}")

    walker = MemberWalker(
        recursive=options.recursive,
        include=options.include,
        exclude=options.exclude,
        detect_hardlinks=fmt.supports_hardlinks,
        skip_paths=[archive],
        warn=reporter.warn,
    )
    try:
        members = walker.walk(paths)
    except OSError as e:
        raise WriteFailure(f"cannot read {e.filename}: {e.strerror or e}") from e
    if not members:
        raise NothingToArchive(f"nothing to archive: no files matched {' '.join(paths) or '(none)'}")

    destination = os.path.abspath(archive)
    try:
        fd, temp_path = tempfile.mkstemp(
            prefix=f".{os.path.basename(destination)}.", suffix=".tmp",
            dir=os.path.dirname(destination))
    except OSError as e:
        raise OpenFailure(f"cannot create archive {archive}: {e.strerror or e}") from e

    try:
        # Closed in reverse: encoder trailer, then compression filter, then file.
        with ExitStack() as stack:
            raw = stack.enter_context(os.fdopen(fd, "wb"))
            sink = compress_writer(raw, options.compression)
            if sink is not raw:
                stack.enter_context(sink)
            encoder = fmt.open_encoder(sink, options)
            stack.callback(encoder.close)
            for member in members:
                _write_member(encoder, member, reporter)
        os.chmod(temp_path, 0o666 & ~_current_umask())
        os.replace(temp_path, destination)
    except OSError as e:
        _discard(temp_path)
        raise WriteFailure(f"writing {archive} failed: {e.strerror or e}") from e
    except BaseException:
        _discard(temp_path)
        raise
    return reporter.totals


def _write_member(encoder: ContainerEncoder, member: ArchiveMember, reporter: Reporter) -> None:
    if member.kind is EntryKind.OTHER:
        reporter.skipped(member.name, "unsupported", f"{member.path}: unsupported file type")
        return
    if member.kind is EntryKind.FILE:
        try:
            payload = open(member.path, "rb")
        except OSError as e:
            raise WriteFailure(f"cannot add {member.path}: {e.strerror or e}") from e
        with payload:
            encoder.write_member(member, payload)
    else:
        encoder.write_member(member, None)
    reporter.added(member)


@contextmanager
def open_archive(location: str, fmt: ContainerFormat, compression: Optional[Compression] = None,
                 password: Optional[str] = None,
                 transport: Optional[httpx.BaseTransport] = None) -> Iterator[ContainerDecoder]:
    """Open an archive for sequential reading.

    Yields a decoder whose iteration produces `ArchiveEntry` objects. The
    decoder, the decompression filter and the source are closed in that
    order when the block exits.

    Args:
        location (str): Path or http(s) URL.
        fmt (ContainerFormat): Expected container.
        compression (Compression|None): Outer filter; None auto-detects it
            from the magic bytes for formats that allow one.
        password (str|None): Password for encrypted zip members.
        transport (httpx.BaseTransport|None): HTTP transport for URLs.
    """
    with ExitStack() as stack:
        raw = open_source(location, transport=transport)
        stack.callback(raw.close)
        source = raw
        if fmt.supports_compression:
            if compression is None:
                compression = detect_compression(raw)
            source = decompress_reader(raw, compression)
            if source is not raw:
                stack.callback(source.close)
        elif compression not in (None, Compression.NONE):
            raise UnsupportedFormat(f"{fmt.name} archives cannot be wrapped in {compression.value}")
        decoder = fmt.open_decoder(source, password=password)
        stack.callback(decoder.close)
        yield decoder


def list_archive(location: str, fmt: ContainerFormat, options: Optional[ExtractOptions] = None,
                 reporter: Optional[Reporter] = None,
                 transport: Optional[httpx.BaseTransport] = None) -> List[ArchiveEntry]:
    """Return (and report) the entries of an archive without touching the disk.

    File payloads are still read and discarded so a short or damaged member
    fails the listing instead of going unnoticed. Encrypted zip members are
    only checked when a password is given.

    Raises:
        CorruptContainer: On the first entry whose payload does not check out.
    """
    options = options or ExtractOptions()
    reporter = reporter or Reporter()
    with open_archive(location, fmt, options.compression, options.password, transport) as decoder:
        for entry in decoder:
            if not matches_filters(entry.name, entry.kind is EntryKind.DIRECTORY,
                                   options.include, options.exclude):
                continue
            if entry.kind is EntryKind.FILE and (options.password or not entry.encrypted):
                with decoder.open_payload(entry) as source:
                    _copy_exact(source, None, entry)
            reporter.listed_entry(entry)
    return reporter.listed


def verify_archive(location: str, fmt: ContainerFormat, options: Optional[ExtractOptions] = None,
                   reporter: Optional[Reporter] = None,
                   transport: Optional[httpx.BaseTransport] = None) -> Totals:
    """Read every payload in full to check lengths and checksums.

    Raises:
        CorruptContainer: If any entry failed, after all were checked, or
            immediately if the container structure itself is broken.
    """
    options = options or ExtractOptions()
    reporter = reporter or Reporter()
    with open_archive(location, fmt, options.compression, options.password, transport) as decoder:
        for entry in decoder:
            if not matches_filters(entry.name, entry.kind is EntryKind.DIRECTORY,
                                   options.include, options.exclude):
                continue
            if entry.kind is not EntryKind.FILE:
                reporter.tested(entry)
                continue
            try:
                with decoder.open_payload(entry) as source:
                    _copy_exact(source, None, entry)
            except CorruptContainer as e:
                reporter.tested(entry, str(e))
            else:
                reporter.tested(entry)
    if reporter.totals.errors:
        raise CorruptContainer(f"{location}: {reporter.totals.errors} damaged entries")
    return reporter.totals


def extract_archive(location: str, fmt: ContainerFormat, options: Optional[ExtractOptions] = None,
                    reporter: Optional[Reporter] = None,
                    progress_callback: Optional[Callable[[int], None]] = None,
                    transport: Optional[httpx.BaseTransport] = None) -> Totals:
    """Materialize the entries of an archive under ``options.target_dir``.

    Args:
        location (str): Path or http(s) URL of the archive.
        fmt (ContainerFormat): Container to read.
        options (ExtractOptions|None): Target, filters and policies.
        reporter (Reporter|None): Receives extracted and skipped entries.
        progress_callback (callable|None): Called with the number of bytes
            written on each chunk.
        transport (httpx.BaseTransport|None): HTTP transport for URLs.

    Returns:
        Totals: Extracted entries, bytes and skip counts.

    Raises:
        OpenFailure: If the archive or the target directory cannot be opened.
        CorruptContainer: If the container cannot be decoded.
        WriteFailure: If the filesystem refuses a write.
        UnsafePath: Only with ``options.strict``.
    """
    options = options or ExtractOptions()
    reporter = reporter or Reporter()
    root = options.target_dir
    try:
        os.makedirs(root, exist_ok=True)
    except OSError as e:
        raise OpenFailure(f"cannot create directory {root}: {e.strerror or e}") from e

    directories: List[Tuple[str, ArchiveEntry]] = []
    with open_archive(location, fmt, options.compression, options.password, transport) as decoder:
        for entry in decoder:
            if not matches_filters(entry.name, entry.kind is EntryKind.DIRECTORY,
                                   options.include, options.exclude):
                reporter.skipped(entry.name, "filtered")
                continue
            try:
                size = _extract_entry(decoder, entry, root, options, directories,
                                      reporter, progress_callback)
            except UnsafePath as e:
                if options.strict:
                    raise
                reporter.skipped(entry.name, e.reason, str(e))
            except EntryError as e:
                reporter.skipped(entry.name, e.reason, str(e))
            except OSError as e:
                raise WriteFailure(f"cannot extract {entry.name}: {e.strerror or e}") from e
            else:
                reporter.extracted(entry, size)

    # Deepest first, so a read-only parent does not block its children.
    for path, entry in sorted(directories, key=lambda item: item[0], reverse=True):
        _apply_mode(path, entry, reporter)
        _apply_mtime(path, entry, reporter)
    return reporter.totals


def _extract_entry(decoder: ContainerDecoder, entry: ArchiveEntry, root: str,
                   options: ExtractOptions, directories: list, reporter: Reporter,
                   progress_callback: Optional[Callable[[int], None]]) -> int:
    if entry.kind is EntryKind.DIRECTORY and is_root_name(entry.name):
        # The archive's own "." entry; the target directory already exists.
        return 0
    target = resolve_within(root, entry.name)
    action = KIND_ACTIONS[entry.kind]

    if action is ExtractAction.SKIP:
        raise UnsupportedEntryKind(entry.name, "unsupported entry type")

    if action is ExtractAction.MKDIR:
        if os.path.islink(target) or (os.path.lexists(target) and not os.path.isdir(target)):
            if not options.overwrite:
                raise AlreadyExists(entry.name, "a non-directory is in the way")
            os.unlink(target)
        os.makedirs(target, exist_ok=True)
        directories.append((target, entry))
        return 0

    if os.path.lexists(target):
        if not options.overwrite:
            raise AlreadyExists(entry.name, "already exists")
        if os.path.isdir(target) and not os.path.islink(target):
            raise AlreadyExists(entry.name, "a directory is in the way")
        # Never write through an existing symlink.
        os.unlink(target)
    os.makedirs(os.path.dirname(target), exist_ok=True)

    size = 0
    if action is ExtractAction.WRITE:
        with decoder.open_payload(entry) as source, open(target, "wb") as out:
            size = _copy_exact(source, out, entry, progress_callback)
        _apply_mode(target, entry, reporter)
    elif action is ExtractAction.SYMLINK:
        os.symlink(entry.link_target, target)
    elif action is ExtractAction.HARDLINK:
        source_path = resolve_within(root, entry.link_target or "")
        if not os.path.lexists(source_path):
            raise MissingLinkTarget(entry.name, f"link target {entry.link_target} was not extracted")
        os.link(source_path, target, follow_symlinks=False)

    _apply_mtime(target, entry, reporter)
    return size


def _copy_exact(source: BinaryIO, target: Optional[BinaryIO], entry: ArchiveEntry,
                progress_callback: Optional[Callable[[int], None]] = None) -> int:
    """Copy exactly ``entry.size`` bytes; ``target`` None just drains them."""
    copied = 0
    while copied < entry.size:
        try:
            chunk = source.read(min(CHUNK_SIZE, entry.size - copied))
        except DECODE_ERRORS as e:
            raise CorruptContainer(f"{entry.name}: {e}") from e
        if not chunk:
            raise CorruptContainer(f"{entry.name}: truncated, expected {entry.size} bytes, got {copied}")
        if target is not None:
            target.write(chunk)
        copied += len(chunk)
        if progress_callback:
            progress_callback(len(chunk))
    # One more read past the end: catches oversized payloads and lets zipfile
    # verify the CRC.
    try:
        extra = source.read(1)
    except DECODE_ERRORS as e:
        raise CorruptContainer(f"{entry.name}: {e}") from e
    if extra:
        raise CorruptContainer(f"{entry.name}: payload longer than {entry.size} bytes")
    return copied


def _apply_mode(path: str, entry: ArchiveEntry, reporter: Reporter) -> None:
    try:
        os.chmod(path, entry.mode)
    except OSError as e:
        reporter.warn(f"cannot set mode of {entry.name}: {e.strerror or e}")


def _apply_mtime(path: str, entry: ArchiveEntry, reporter: Reporter) -> None:
    is_link = entry.kind is EntryKind.SYMLINK
    if is_link and os.utime not in os.supports_follow_symlinks:
        return
    try:
        os.utime(path, (time.time(), entry.mtime), follow_symlinks=not is_link)
    except OSError as e:
        reporter.warn(f"cannot set modification time of {entry.name}: {e.strerror or e}")


def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


def _discard(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
