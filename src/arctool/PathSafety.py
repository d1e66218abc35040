"""Guards against archive members escaping the extraction root.

Member names come from untrusted archives. Before anything is created on
disk the name is normalized and checked here; a name that is absolute or
walks upwards with ``..`` raises :class:`UnsafePath`.
"""

import os
import re
from pathlib import PurePosixPath

from .Errors import UnsafePath

_DRIVE = re.compile(r"^[A-Za-z]:")


def normalize_member_name(name: str) -> str:
    """Return the normalized, relative form of an archive member name.

    Backslashes are treated as separators, ``.`` and empty segments are
    dropped and a trailing slash is ignored.

    Args:
        name (str): Name exactly as stored in the archive.

    Returns:
        str: Forward-slash relative path without ``.`` segments.

    Raises:
        UnsafePath: If the name is empty, absolute, or contains ``..``.
    """
    cleaned = name.replace("\\", "/")
    if cleaned.startswith("/") or _DRIVE.match(cleaned):
        raise UnsafePath(name, "absolute path")

    parts = []
    for part in PurePosixPath(cleaned).parts:
        if part in ("", "."):
            continue
        if part == "..":
            raise UnsafePath(name, "path traversal")
        parts.append(part)

    if not parts:
        raise UnsafePath(name, "empty path")
    return "/".join(parts)


def is_root_name(name: str) -> bool:
    """True for names such as "." or "./" that denote the extraction root.

    `tar -C dir -cf x.tar .` stores the root directory itself first; it
    normalizes to nothing but is not an attempt to escape.
    """
    cleaned = name.replace("\\", "/")
    if not cleaned or cleaned.startswith("/"):
        return False
    return all(part in ("", ".") for part in cleaned.split("/"))


def resolve_within(root: str, name: str) -> str:
    """Map a member name to a filesystem path under ``root``.

    On top of :func:`normalize_member_name`, the parent directory of the
    result is resolved so that a symlink extracted earlier cannot be used
    to write outside the root.

    Args:
        root (str): Extraction root directory.
        name (str): Member name as stored in the archive.

    Returns:
        str: Absolute target path.

    Raises:
        UnsafePath: If the member would land outside ``root``.
    """
    relative = normalize_member_name(name)
    real_root = os.path.realpath(root)
    target = os.path.join(real_root, *relative.split("/"))

    parent = os.path.realpath(os.path.dirname(target))
    if os.path.commonpath([real_root, parent]) != real_root:
        raise UnsafePath(name, "resolves outside the extraction root")
    return target
