"""arctool package initializer.

This module provides the package-level public surface of `arctool`, a
small tar/zip archive toolkit:

- __version__: Package version string.
- create_archive / list_archive / verify_archive / extract_archive: the
  archive engine operations.
- get_format: Return the `ContainerFormat` registered for "tar" or "zip".
- ArchiveError: Base class of every error the engine raises.
- tar_cli, zip_cli, unzip_cli: The click commands behind `pytar`,
  `pyzip` and `pyunzip`.

Example:
    from arctool import create_archive, get_format
    create_archive("backup.tar", ["src"], get_format("tar"))

"""

# Public version string
__version__ = "0.1.0"

from .ArchiveEngine import create_archive, extract_archive, get_format, list_archive, verify_archive
from .Errors import ArchiveError
from .Models import ArchiveEntry, ArchiveMember, Compression, CreateOptions, EntryKind, ExtractOptions
from .Protocols import ContainerFormat

# Expose the CLI commands so callers can reuse or register them in other tools.
from .CLI import tar_command as tar_cli
from .CLI import unzip_command as unzip_cli
from .CLI import zip_command as zip_cli

# Define the public API
__all__ = [
    "__version__",
    "create_archive",
    "extract_archive",
    "get_format",
    "list_archive",
    "verify_archive",
    "ArchiveError",
    "ArchiveEntry",
    "ArchiveMember",
    "Compression",
    "ContainerFormat",
    "CreateOptions",
    "EntryKind",
    "ExtractOptions",
    "tar_cli",
    "unzip_cli",
    "zip_cli",
]
