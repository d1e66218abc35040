"""Byte streams underneath the containers.

Provides the outer compression filters wrapped around tar streams, the
local/remote source opener used by the read side, and RemoteStream, an
io.RawIOBase-compatible stream that reads remote archives using HTTP
Range requests so they can be listed or extracted without a download.

Classes:
    RemoteStream: Lazily-fetching HTTP-backed read-only stream.
"""

import bz2
import gzip
import io
import lzma
import tarfile
import zipfile
import zlib
from typing import BinaryIO, Optional

import httpx

from .Errors import OpenFailure, ReadFailure
from .Models import Compression

CHUNK_SIZE = 128 * 1024  # 128 KB
DEFAULT_FETCH_SIZE = 4 * 1024 * 1024  # 4 MiB

# Everything a decoder or decompression filter raises on malformed input.
# OSError covers gzip.BadGzipFile and bz2's "Invalid data stream".
DECODE_ERRORS = (
    tarfile.TarError,
    zipfile.BadZipFile,
    EOFError,
    zlib.error,
    lzma.LZMAError,
    OSError,
)


def compress_writer(raw: BinaryIO, compression: Compression) -> BinaryIO:
    """Wrap ``raw`` in a compressing filter.

    Closing the returned filter writes its trailer but leaves ``raw`` open.
    """
    if compression is Compression.GZIP:
        return gzip.GzipFile(fileobj=raw, mode="wb")
    if compression is Compression.BZIP2:
        return bz2.BZ2File(raw, mode="wb")
    if compression is Compression.XZ:
        return lzma.LZMAFile(raw, mode="wb")
    return raw


def decompress_reader(raw: BinaryIO, compression: Compression) -> BinaryIO:
    if compression is Compression.GZIP:
        return gzip.GzipFile(fileobj=raw, mode="rb")
    if compression is Compression.BZIP2:
        return bz2.BZ2File(raw, mode="rb")
    if compression is Compression.XZ:
        return lzma.LZMAFile(raw, mode="rb")
    return raw


def is_remote(location: str) -> bool:
    return location.lower().startswith(("http://", "https://"))


def open_source(location: str, transport: Optional[httpx.BaseTransport] = None) -> BinaryIO:
    """Open an archive for reading, from disk or over HTTP.

    Args:
        location (str): Filesystem path or http(s) URL.
        transport (httpx.BaseTransport|None): Custom transport for the HTTP
            client, mainly for tests.

    Raises:
        OpenFailure: If the file cannot be opened or the server refuses.
    """
    if is_remote(location):
        return RemoteStream(location, transport=transport)
    try:
        return open(location, "rb")
    except OSError as e:
        raise OpenFailure(f"cannot open archive {location}: {e.strerror or e}") from e


class RemoteStream(io.RawIOBase):
    """File-like stream backed by an HTTP resource using Range requests.

    Only one contiguous window of the resource is cached at a time, so
    memory use stays bounded by ``fetch_size`` whatever the archive size.
    Zip reading jumps to the central directory at the end first and then
    back to each member, which the window handles with a few requests.

    Attributes:
        url (str): Remote resource URL.
        fetch_size (int): Preferred size (bytes) of each range request.
        pos (int): Current logical read position in the virtual file.
        client (httpx.Client): HTTP client used for requests (keep-alive).
    """

    def __init__(self, url: str, fetch_size: int = DEFAULT_FETCH_SIZE,
                 transport: Optional[httpx.BaseTransport] = None):
        """Create a RemoteStream and probe the resource size.

        Args:
            url (str): HTTP(S) URL of the resource to stream.
            fetch_size (int): Preferred fetch size in bytes.
            transport (httpx.BaseTransport|None): Passed to `httpx.Client`.

        Raises:
            OpenFailure: If the probe fails or the server returns an
                unexpected status code.
        """
        self.url = url
        self.fetch_size = fetch_size
        self.pos = 0
        self._size = 0
        self._buffer = b""
        self._buffer_start = 0

        self.client = httpx.Client(
            headers={"Accept": "*/*"},
            follow_redirects=True,
            timeout=httpx.Timeout(10.0, read=300.0),
            transport=transport,
        )

        # A one byte ranged GET tells us the total size through Content-Range
        # and confirms the server honours ranges at all.
        try:
            with self.client.stream("GET", self.url, headers={"Range": "bytes=0-0"}) as r:
                if r.status_code not in (200, 206):
                    raise OpenFailure(f"cannot open archive {url}: server returned {r.status_code}")
                content_range = r.headers.get("Content-Range")
                if content_range:
                    # Content-Range: bytes 0-0/12345 -> final part is total size
                    self._size = int(content_range.split("/")[-1])
                else:
                    self._size = int(r.headers.get("Content-Length", 0))
        except httpx.HTTPError as e:
            self.client.close()
            raise OpenFailure(f"cannot open archive {url}: {e}") from e
        except OpenFailure:
            self.client.close()
            raise

    @property
    def size(self) -> int:
        return self._size

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def writable(self) -> bool:
        return False

    def tell(self) -> int:
        return self.pos

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        """Move the logical position; no request is made until `read`."""
        if whence == io.SEEK_SET:
            self.pos = offset
        elif whence == io.SEEK_CUR:
            self.pos += offset
        elif whence == io.SEEK_END:
            self.pos = self.size + offset
        return self.pos

    def read(self, size: int = -1) -> bytes:
        """Read up to `size` bytes from the stream.

        Args:
            size (int): Number of bytes to read. If -1 (default), read to EOF.

        Returns:
            bytes: Data read (empty bytes on EOF).

        Raises:
            ReadFailure: If a range request fails. There are no retries.
        """
        if size is None or size < 0 or self.pos + size > self.size:
            size = self.size - self.pos
        if size <= 0:
            return b""

        buf_end = self._buffer_start + len(self._buffer)
        if not (self._buffer_start <= self.pos and self.pos + size <= buf_end):
            self._fetch(size)

        offset = self.pos - self._buffer_start
        data = self._buffer[offset: offset + size]
        self.pos += len(data)
        return data

    def readinto(self, b) -> int:
        data = self.read(len(b))
        b[: len(data)] = data
        return len(data)

    def _fetch(self, size: int) -> None:
        """Replace the cached window with one starting at the current position."""
        fetch_size = min(max(size, self.fetch_size), self.size - self.pos)
        # end of range is inclusive per the Range header
        headers = {"Range": f"bytes={self.pos}-{self.pos + fetch_size - 1}"}
        try:
            response = self.client.get(self.url, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ReadFailure(f"reading {self.url} at offset {self.pos} failed: {e}") from e

        if response.status_code != 206 and self.pos > 0:
            raise ReadFailure(f"{self.url}: server ignored the range request")
        if not response.content:
            raise ReadFailure(f"{self.url}: server returned no data at offset {self.pos}")

        self._buffer = response.content
        self._buffer_start = self.pos

    def close(self):
        """Close the underlying HTTP client and stream."""
        self.client.close()
        super().close()
