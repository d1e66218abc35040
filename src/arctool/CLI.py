"""arctool CLI entrypoints.

This module provides the three click commands installed as console
scripts:

- `pytar`: create, extract or list tar archives, optionally compressed.
- `pyzip`: create zip archives.
- `pyunzip`: list, test or extract zip archives.

Usage example (from shell):
    pytar -czf backup.tar.gz src/ docs/
    pyzip -r site.zip public -x '*.map'
    pyunzip -d out/ site.zip

The commands only parse flags, pick a container format and hand over to
`arctool.ArchiveEngine`; output goes through a `Reporter`. Any
`ArchiveError` is printed as a single line on stderr and turns into exit
status 1.
"""

from contextlib import contextmanager
from typing import Optional

import click
from rich.markup import escape
from rich.progress import BarColumn, DownloadColumn, Progress, SpinnerColumn, TextColumn, TransferSpeedColumn

from .ArchiveEngine import create_archive, extract_archive, get_format, list_archive, verify_archive
from .Errors import ArchiveError
from .Models import Compression, CreateOptions, ExtractOptions
from .Reporter import Reporter, console, err_console

CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])


def fail(error: ArchiveError) -> None:
    """Report a fatal error and exit with status 1."""
    err_console.print(f"[red]Error:[/red] {escape(str(error))}")
    raise SystemExit(1)


@contextmanager
def extraction_progress(enabled: bool):
    """Yield a bytes-written callback backed by a rich progress bar.

    The archive is read as a stream, so the total is unknown and the bar
    only shows bytes written and throughput.
    """
    if not enabled:
        yield None
        return
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Extracting files...", total=None)

        def progress_callback(bytes_written):
            progress.update(task, advance=bytes_written)

        yield progress_callback


def _tar_compression(gzip: bool, bzip2: bool, xz: bool) -> Optional[Compression]:
    chosen = [c for flag, c in ((gzip, Compression.GZIP), (bzip2, Compression.BZIP2),
                                (xz, Compression.XZ)) if flag]
    if len(chosen) > 1:
        raise click.UsageError("choose at most one of -z, -j and -J")
    return chosen[0] if chosen else None


@click.command("pytar", context_settings=CONTEXT_SETTINGS)
@click.option("--create", "-c", is_flag=True, help="Create a new archive")
@click.option("--extract", "-x", is_flag=True, help="Extract files from an archive")
@click.option("--list", "-t", "list_", is_flag=True, help="List the contents of an archive")
@click.option("--file", "-f", "archive", required=True, help="Archive file or http(s) URL")
@click.option("--verbose", "-v", is_flag=True, help="Show every processed entry")
@click.option("--gzip", "-z", is_flag=True, help="Filter the archive through gzip")
@click.option("--bzip2", "-j", is_flag=True, help="Filter the archive through bzip2")
@click.option("--xz", "-J", is_flag=True, help="Filter the archive through xz")
@click.option("--directory", "-C", default=".", show_default=True,
              type=click.Path(file_okay=False), help="Extract into this directory")
@click.option("--overwrite", is_flag=True, help="Replace existing files when extracting")
@click.option("--strict", is_flag=True, help="Abort on the first unsafe member name")
@click.option("--exclude", metavar="PATTERN", help="Skip entries whose base name matches")
@click.option("--include", metavar="PATTERN", help="Keep only files whose base name matches")
@click.argument("paths", nargs=-1)
def tar_command(create, extract, list_, archive, verbose, gzip, bzip2, xz, directory,
                overwrite, strict, exclude, include, paths):
    """Create, extract or list tar archives.

    Exactly one of -c, -x and -t must be given. With -c and no PATHS the
    current directory is archived; directories are always archived with
    their whole contents. Extraction and listing detect gzip, bzip2 and xz
    compression on their own when no filter flag is given.
    """
    if sum((create, extract, list_)) != 1:
        raise click.UsageError("specify exactly one of -c, -x or -t")
    compression = _tar_compression(gzip, bzip2, xz)
    fmt = get_format("tar")
    reporter = Reporter(verbose=verbose)

    try:
        if create:
            options = CreateOptions(compression=compression or Compression.NONE,
                                    include=include, exclude=exclude)
            create_archive(archive, list(paths) or ["."], fmt, options, reporter)
            reporter.info(f"Archive created: {archive}")
            if verbose:
                reporter.summary("Added")
            return

        options = ExtractOptions(target_dir=directory, compression=compression, include=include,
                                 exclude=exclude, overwrite=overwrite, strict=strict)
        if list_:
            list_archive(archive, fmt, options, reporter)
            reporter.render_listing(f"Archive: {archive}")
            return

        with extraction_progress(verbose) as progress_callback:
            extract_archive(archive, fmt, options, reporter, progress_callback=progress_callback)
        reporter.info(f"Archive extracted: {archive}")
        if verbose or reporter.totals.skipped:
            reporter.summary("Extracted")
    except ArchiveError as e:
        fail(e)


@click.command("pyzip", context_settings=CONTEXT_SETTINGS)
@click.option("--recurse-paths", "-r", "recursive", is_flag=True, help="Travel the directory structure recursively")
@click.option("--quiet", "-q", is_flag=True, help="Quiet operation")
@click.option("--store", "-0", "store_only", is_flag=True, help="Store files without compression")
@click.option("--exclude", "-x", metavar="PATTERN", help="Skip files whose base name matches")
@click.option("--include", "-i", metavar="PATTERN", help="Keep only files whose base name matches")
@click.argument("archive")
@click.argument("paths", nargs=-1, required=True)
def zip_command(recursive, quiet, store_only, exclude, include, archive, paths):
    """Package PATHS into the zip file ARCHIVE.

    ".zip" is appended to ARCHIVE when missing. Without -r a directory is
    stored as a single empty directory entry.
    """
    if not archive.lower().endswith(".zip"):
        archive += ".zip"
    reporter = Reporter(verbose=not quiet, quiet=quiet)
    options = CreateOptions(recursive=recursive, include=include, exclude=exclude, store_only=store_only)
    try:
        totals = create_archive(archive, list(paths), get_format("zip"), options, reporter)
    except ArchiveError as e:
        fail(e)
    reporter.info(f"Archive created: {archive} ({totals.entries} entries)")


@click.command("pyunzip", context_settings=CONTEXT_SETTINGS)
@click.option("--list", "-l", "list_", is_flag=True, help="List archive contents without extracting")
@click.option("--test", "-t", "test", is_flag=True, help="Test archive integrity")
@click.option("--quiet", "-q", is_flag=True, help="Quiet operation")
@click.option("--verbose", "-v", is_flag=True, help="Show every processed entry")
@click.option("--overwrite", "-o", is_flag=True, help="Overwrite existing files without asking")
@click.option("--directory", "-d", type=click.Path(file_okay=False), help="Extract into this directory")
@click.option("--exclude", "-x", "-e", metavar="PATTERN", help="Skip entries whose base name matches")
@click.option("--include", "-i", metavar="PATTERN", help="Keep only files whose base name matches")
@click.option("--password", "-P", help="Password for encrypted archives")
@click.option("--strict", is_flag=True, help="Abort on the first unsafe member name")
@click.argument("archive")
@click.argument("target", required=False)
def unzip_command(list_, test, quiet, verbose, overwrite, directory, exclude, include, password, strict,
                  archive, target):
    """List, test or extract the zip file ARCHIVE.

    ARCHIVE may be a local path or an http(s) URL. The target directory
    is taken from -d, then from TARGET, and defaults to the current
    directory.
    """
    if list_ and test:
        raise click.UsageError("-l and -t cannot be combined")
    fmt = get_format("zip")
    reporter = Reporter(verbose=verbose, quiet=quiet)
    options = ExtractOptions(target_dir=directory or target or ".", include=include, exclude=exclude,
                             overwrite=overwrite, strict=strict, password=password)
    try:
        if list_:
            list_archive(archive, fmt, options, reporter)
            reporter.render_listing(f"Archive: {archive}", verbose=True)
        elif test:
            reporter.info(f"Testing archive: {archive}")
            totals = verify_archive(archive, fmt, options, reporter)
            reporter.info(f"No errors detected in {archive} ({totals.entries} entries)")
        else:
            reporter.info(f"Extracting {archive} into {options.target_dir}")
            with extraction_progress(not quiet) as progress_callback:
                extract_archive(archive, fmt, options, reporter, progress_callback=progress_callback)
            reporter.summary("Extracted")
    except ArchiveError as e:
        fail(e)
