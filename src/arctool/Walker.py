"""Turns command line path arguments into archive members.

`MemberWalker.walk` expands globs, optionally descends into directories,
applies the include/exclude filters and removes duplicates, producing the
ordered member list the writer consumes.
"""

import fnmatch
import glob
import os
import posixpath
import stat
from typing import Callable, Iterable, List, Optional, Set, Tuple

from .Models import ArchiveMember, EntryKind

GLOB_CHARS = "*?["


def has_glob(pattern: str) -> bool:
    return any(c in pattern for c in GLOB_CHARS)


def matches_filters(name: str, is_dir: bool, include: Optional[str], exclude: Optional[str]) -> bool:
    """Apply the base-name include/exclude rule shared by every operation.

    ``exclude`` drops any matching entry. ``include`` only ever filters
    non-directories, so directories stay traversable and keep their
    structure when only some files are selected.
    """
    base = posixpath.basename(name.rstrip("/")) or name
    if exclude and fnmatch.fnmatchcase(base, exclude):
        return False
    if include and not is_dir and not fnmatch.fnmatchcase(base, include):
        return False
    return True


def archive_name_for(path: str) -> Tuple[str, bool]:
    """Derive the stored name for a command line path.

    Returns:
        tuple: ``(name, stripped)`` where ``name`` is relative and forward
        slashed ("" for the current directory) and ``stripped`` tells
        whether a leading ``/`` or ``..`` had to be removed.
    """
    parts = os.path.normpath(path).replace(os.sep, "/").split("/")
    stripped = False
    while parts and parts[0] in ("", ".."):
        stripped = True
        parts.pop(0)
    name = "/".join(p for p in parts if p != ".")
    return name, stripped


def canonical_path(path: str) -> str:
    # The last component is not resolved so a symlink and its target
    # remain two different members.
    absolute = os.path.abspath(path)
    head, tail = os.path.split(absolute)
    return os.path.join(os.path.realpath(head), tail)


class MemberWalker:
    """Expands path arguments into a flat, duplicate free member list.

    Attributes:
        recursive (bool): Descend into directories.
        include (str|None): Base-name glob non-directories must match.
        exclude (str|None): Base-name glob that drops any entry.
        detect_hardlinks (bool): Store later paths sharing an inode as
            hard links to the first one.
        skip_paths (set): Canonical paths never to add (the archive being
            written).
        warn (callable|None): Receives diagnostic messages.
    """

    def __init__(self, recursive: bool = True, include: Optional[str] = None,
                 exclude: Optional[str] = None, detect_hardlinks: bool = True,
                 skip_paths: Iterable[str] = (), warn: Optional[Callable[[str], None]] = None):
        self.recursive = recursive
        self.include = include
        self.exclude = exclude
        self.detect_hardlinks = detect_hardlinks
        self.skip_paths: Set[str] = {canonical_path(p) for p in skip_paths}
        self.warn = warn or (lambda message: None)

    def expand(self, arg: str) -> List[str]:
        """Expand one argument; literal paths are returned even if missing."""
        if not has_glob(arg):
            return [arg]
        return sorted(glob.glob(arg))

    def walk(self, args: Iterable[str]) -> List[ArchiveMember]:
        """Walk every argument and return the members in first-seen order.

        Raises:
            OSError: If an existing path cannot be stat'ed or listed.
        """
        members: List[ArchiveMember] = []
        seen: Set[str] = set()
        inodes = {}

        for arg in args:
            for path in self.expand(arg):
                name, stripped = archive_name_for(path)
                if stripped:
                    self.warn(f"Removing leading '/' and '..' from member names: {path}")

                # Depth-first with an explicit stack; children are pushed in
                # reverse so they pop in sorted order.
                stack = [(path, name)]
                while stack:
                    current, current_name = stack.pop()
                    canonical = canonical_path(current)
                    if canonical in seen or canonical in self.skip_paths:
                        continue
                    seen.add(canonical)

                    if not os.path.lexists(current):
                        # Deferred: the writer reports it when it opens the path.
                        members.append(ArchiveMember(current, current_name or current,
                                                     EntryKind.FILE, 0, 0.0))
                        continue

                    is_dir = stat.S_ISDIR(os.lstat(current).st_mode)
                    if current_name and not matches_filters(current_name, is_dir,
                                                            self.include, self.exclude):
                        continue

                    if current_name:
                        member = ArchiveMember.from_path(current, current_name)
                        self._link_duplicate_inode(member, inodes)
                        members.append(member)

                    if is_dir and (self.recursive or not current_name):
                        for child in sorted(os.listdir(current), reverse=True):
                            child_name = posixpath.join(current_name, child) if current_name else child
                            stack.append((os.path.join(current, child), child_name))
        return members

    def _link_duplicate_inode(self, member: ArchiveMember, inodes: dict) -> None:
        if not self.detect_hardlinks or member.kind is not EntryKind.FILE:
            return
        st = os.lstat(member.path)
        if st.st_nlink < 2:
            return
        key = (st.st_dev, st.st_ino)
        if key in inodes:
            member.kind = EntryKind.HARDLINK
            member.link_target = inodes[key]
            member.size = 0
        else:
            inodes[key] = member.name
