import io
import os
import stat
import tarfile
import zipfile
from pathlib import Path

import pytest

from arctool.Reporter import Reporter


def snapshot(root: Path) -> dict:
    """Map every path under ``root`` to what a round trip must preserve."""
    result = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            path = Path(dirpath) / name
            rel = path.relative_to(root).as_posix()
            st = path.lstat()
            if stat.S_ISLNK(st.st_mode):
                result[rel] = ("link", os.readlink(path))
            elif stat.S_ISDIR(st.st_mode):
                result[rel] = ("dir", stat.S_IMODE(st.st_mode))
            else:
                result[rel] = ("file", path.read_bytes(), stat.S_IMODE(st.st_mode))
    return result


def craft_tar(path: Path, entries) -> Path:
    """Write a tar whose member names are taken verbatim.

    ``entries`` holds ``(name, data)`` pairs, or ``(TarInfo, data)`` for
    anything that is not a regular file.
    """
    with tarfile.open(path, "w") as archive:
        for name, data in entries:
            info = name if isinstance(name, tarfile.TarInfo) else tarfile.TarInfo(name)
            if data is None:
                archive.addfile(info)
            else:
                info.size = len(data)
                archive.addfile(info, io.BytesIO(data))
    return path


def craft_zip(path: Path, entries) -> Path:
    with zipfile.ZipFile(path, "w") as archive:
        for name, data in entries:
            archive.writestr(name, data)
    return path


@pytest.fixture
def reporter() -> Reporter:
    return Reporter(quiet=True)


@pytest.fixture
def source_tree(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A small tree under ``tmp_path/src``; the working directory is ``tmp_path``."""
    src = tmp_path / "src"
    (src / "sub" / "deeper").mkdir(parents=True)
    (src / "empty").mkdir()
    (src / "a.txt").write_bytes(b"hello\n")
    (src / "run.sh").write_bytes(b"#!/bin/sh\necho hi\n")
    (src / "run.sh").chmod(0o755)
    (src / "sub" / "nested.bin").write_bytes(bytes(range(256)) * 20)
    (src / "sub" / "private.txt").write_bytes(b"secret")
    (src / "sub" / "private.txt").chmod(0o600)
    (src / "sub" / "deeper" / "zero").write_bytes(b"")
    monkeypatch.chdir(tmp_path)
    return src
