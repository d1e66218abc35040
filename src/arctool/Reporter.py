"""Counting and presentation for every archive operation.

The engine never prints directly: it hands entries, skips and warnings to
a Reporter, which keeps the running totals and renders them with rich.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .Models import ArchiveEntry, ArchiveMember, EntryKind

# One console for regular output, one for diagnostics on stderr.
console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False)

TYPE_LABELS = {
    EntryKind.FILE: "FILE",
    EntryKind.DIRECTORY: "DIR",
    EntryKind.SYMLINK: "LINK",
    EntryKind.HARDLINK: "HLNK",
    EntryKind.OTHER: "????",
}

TYPE_CHARS = {
    EntryKind.FILE: "-",
    EntryKind.DIRECTORY: "d",
    EntryKind.SYMLINK: "l",
    EntryKind.HARDLINK: "h",
    EntryKind.OTHER: "?",
}


def format_bytes(size: int) -> str:
    unit = 1024
    if size < unit:
        return f"{size} B"
    value, exp = float(size), -1
    while value >= unit and exp < 5:
        value /= unit
        exp += 1
    return f"{value:.1f} {'KMGTPE'[exp]}B"


def format_mode(kind: EntryKind, mode: int) -> str:
    perms = "".join(
        flag if mode & (1 << (8 - i)) else "-" for i, flag in enumerate("rwxrwxrwx")
    )
    return TYPE_CHARS[kind] + perms


def format_time(mtime: float) -> str:
    return time.strftime("%Y-%m-%d %H:%M", time.localtime(mtime))


def display_name(item: Union[ArchiveEntry, ArchiveMember]) -> str:
    if item.kind is EntryKind.SYMLINK:
        return f"{item.name} -> {item.link_target}"
    if item.kind is EntryKind.HARDLINK:
        return f"{item.name} link to {item.link_target}"
    if item.kind is EntryKind.DIRECTORY:
        return item.name + "/"
    return item.name


@dataclass
class Totals:
    entries: int = 0
    bytes: int = 0
    compressed_bytes: int = 0
    skipped: Dict[str, int] = field(default_factory=dict)
    errors: int = 0

    @property
    def skipped_total(self) -> int:
        return sum(self.skipped.values())


class Reporter:
    """Accumulates per-entry statistics and renders them.

    Attributes:
        verbose (bool): Print a line per entry.
        quiet (bool): Suppress everything except warnings and errors.
        totals (Totals): Running counters.
        listed (list): Entries passed to `listed_entry`, in order.
    """

    def __init__(self, verbose: bool = False, quiet: bool = False,
                 out: Optional[Console] = None, err: Optional[Console] = None) -> None:
        self.verbose = verbose
        self.quiet = quiet
        self.out = out or console
        self.err = err or err_console
        self.totals = Totals()
        self.listed: List[ArchiveEntry] = []

    def info(self, message: str) -> None:
        if not self.quiet:
            self.out.print(escape(message))

    def warn(self, message: str) -> None:
        self.err.print(f"[yellow]Warning:[/yellow] {escape(message)}")

    def added(self, member: ArchiveMember) -> None:
        self.totals.entries += 1
        self.totals.bytes += member.size
        if self.verbose and not self.quiet:
            self.out.print(
                f"{format_mode(member.kind, member.mode)} {member.size:>10} "
                f"{format_time(member.mtime)} {escape(display_name(member))}"
            )

    def extracted(self, entry: ArchiveEntry, size: int) -> None:
        self.totals.entries += 1
        self.totals.bytes += size
        if self.verbose and not self.quiet:
            self.out.print(f"  extracted: {escape(display_name(entry))}")

    def listed_entry(self, entry: ArchiveEntry) -> None:
        self.totals.entries += 1
        self.totals.bytes += entry.size
        self.totals.compressed_bytes += entry.compressed_size or 0
        self.listed.append(entry)

    def tested(self, entry: ArchiveEntry, error: Optional[str] = None) -> None:
        if error is None:
            self.totals.entries += 1
            self.totals.bytes += entry.size
            if not self.quiet:
                self.out.print(f"  OK: {escape(entry.name)}")
        else:
            self.totals.errors += 1
            self.err.print(f"[red]Bad:[/red] {escape(entry.name)}: {escape(error)}")

    def skipped(self, name: str, reason: str, message: Optional[str] = None) -> None:
        self.totals.skipped[reason] = self.totals.skipped.get(reason, 0) + 1
        if message:
            self.warn(f"skipping {message}")
        elif self.verbose and not self.quiet:
            self.out.print(f"  skipped ({reason}): {escape(name)}")

    def render_listing(self, title: str, verbose: Optional[bool] = None) -> None:
        """Print the collected entries as a table followed by the totals."""
        if self.quiet:
            return
        verbose = self.verbose if verbose is None else verbose
        table = Table(title=escape(title), show_edge=False)
        if verbose:
            table.add_column("Mode")
            table.add_column("Owner")
            table.add_column("Size", justify="right")
            if any(e.compressed_size is not None for e in self.listed):
                table.add_column("Compressed", justify="right")
                table.add_column("Method")
            table.add_column("Date")
            table.add_column("Name", overflow="fold")
            for e in self.listed:
                row = [format_mode(e.kind, e.mode), f"{e.uname or e.uid}/{e.gname or e.gid}", str(e.size)]
                if e.compressed_size is not None:
                    row += [str(e.compressed_size), e.method or ""]
                row += [format_time(e.mtime), escape(display_name(e))]
                table.add_row(*row)
        else:
            table.add_column("Type")
            table.add_column("Size", justify="right")
            table.add_column("Date")
            table.add_column("Name", overflow="fold")
            for e in self.listed:
                table.add_row(TYPE_LABELS[e.kind], str(e.size), format_time(e.mtime),
                              escape(display_name(e)))
        self.out.print(table)
        self.summary()

    def summary(self, action: str = "Total") -> None:
        if self.quiet:
            return
        t = self.totals
        line = f"{action}: {t.entries} entries, {t.bytes} bytes ({format_bytes(t.bytes)})"
        if t.compressed_bytes:
            line += f", {t.compressed_bytes} bytes compressed"
        self.out.print(line)
        if t.skipped:
            details = ", ".join(f"{count} {reason}" for reason, count in sorted(t.skipped.items()))
            self.out.print(f"Skipped: {t.skipped_total} ({details})")
