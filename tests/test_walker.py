import os
from pathlib import Path

import pytest

from arctool.Models import EntryKind
from arctool.Walker import MemberWalker, archive_name_for, has_glob, matches_filters


def names(members):
    return [m.name for m in members]


def test_recursive_walk_preserves_structure_in_sorted_order(source_tree: Path):
    members = MemberWalker().walk(["src"])
    assert names(members) == [
        "src",
        "src/a.txt",
        "src/empty",
        "src/run.sh",
        "src/sub",
        "src/sub/deeper",
        "src/sub/deeper/zero",
        "src/sub/nested.bin",
        "src/sub/private.txt",
    ]
    kinds = {m.name: m.kind for m in members}
    assert kinds["src/empty"] is EntryKind.DIRECTORY
    assert kinds["src/a.txt"] is EntryKind.FILE


def test_member_metadata_comes_from_lstat(source_tree: Path):
    members = {m.name: m for m in MemberWalker().walk(["src"])}
    assert members["src/run.sh"].mode == 0o755
    assert members["src/sub/nested.bin"].size == 5120
    assert members["src/sub"].size == 0


def test_non_recursive_keeps_directory_as_single_member(source_tree: Path):
    assert names(MemberWalker(recursive=False).walk(["src"])) == ["src"]


def test_glob_without_matches_yields_nothing(source_tree: Path):
    assert MemberWalker().walk(["src/*.nothing"]) == []


def test_literal_missing_path_is_kept_for_the_writer(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    members = MemberWalker().walk(["missing.txt"])
    assert names(members) == ["missing.txt"]


def test_glob_expansion_is_sorted(source_tree: Path):
    assert names(MemberWalker().walk(["src/*.*"])) == ["src/a.txt", "src/run.sh"]


def test_exclude_matches_base_name_only(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in ("a.txt", "a.log", "b.txt"):
        (tmp_path / name).write_text(name)
    (tmp_path / "logs.d").mkdir()
    (tmp_path / "logs.d" / "c.txt").write_text("c")

    members = MemberWalker(exclude="*.log").walk(["a.txt", "a.log", "b.txt"])
    assert names(members) == ["a.txt", "b.txt"]

    # the pattern is not applied to the directory part of a path
    assert names(MemberWalker(exclude="logs*").walk(["logs.d/c.txt"])) == ["logs.d/c.txt"]


def test_excluded_directory_is_not_descended(source_tree: Path):
    result = names(MemberWalker(exclude="sub").walk(["src"]))
    assert not any(n.startswith("src/sub") for n in result)
    assert "src/a.txt" in result


def test_include_filters_files_but_keeps_directories(source_tree: Path):
    result = names(MemberWalker(include="*.txt").walk(["src"]))
    assert result == ["src", "src/a.txt", "src/empty", "src/sub", "src/sub/deeper", "src/sub/private.txt"]


def test_duplicates_are_removed_first_occurrence_wins(source_tree: Path):
    members = MemberWalker().walk(["src/a.txt", "src/*.txt", "./src/a.txt", "src"])
    result = names(members)
    assert result[0] == "src/a.txt"
    assert result.count("src/a.txt") == 1
    assert result[1] == "src"


def test_symlink_is_not_followed_or_merged_with_target(source_tree: Path):
    os.symlink("a.txt", "src/alias")
    os.symlink("sub", "src/subalias")
    members = {m.name: m for m in MemberWalker().walk(["src"])}
    assert members["src/alias"].kind is EntryKind.SYMLINK
    assert members["src/alias"].link_target == "a.txt"
    assert members["src/subalias"].kind is EntryKind.SYMLINK
    assert "src/subalias/nested.bin" not in members
    assert members["src/a.txt"].kind is EntryKind.FILE


def test_second_path_to_same_inode_becomes_hardlink(source_tree: Path):
    os.link("src/a.txt", "src/z-link.txt")
    members = {m.name: m for m in MemberWalker().walk(["src"])}
    assert members["src/a.txt"].kind is EntryKind.FILE
    assert members["src/z-link.txt"].kind is EntryKind.HARDLINK
    assert members["src/z-link.txt"].link_target == "src/a.txt"
    assert members["src/z-link.txt"].size == 0


def test_hardlink_detection_can_be_disabled(source_tree: Path):
    os.link("src/a.txt", "src/z-link.txt")
    members = {m.name: m for m in MemberWalker(detect_hardlinks=False).walk(["src"])}
    assert members["src/z-link.txt"].kind is EntryKind.FILE


def test_skip_paths_excludes_the_archive_itself(source_tree: Path):
    (source_tree / "out.tar").write_bytes(b"")
    result = names(MemberWalker(skip_paths=["src/out.tar"]).walk(["src"]))
    assert "src/out.tar" not in result


def test_current_directory_contributes_children_without_prefix(source_tree: Path, monkeypatch):
    monkeypatch.chdir(source_tree)
    result = names(MemberWalker().walk(["."]))
    assert result[0] == "a.txt"
    assert "sub/nested.bin" in result
    assert not any(n.startswith("./") for n in result)


def test_deep_tree_does_not_hit_recursion_limit(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "deep"
    path.mkdir()
    current = path
    for _ in range(200):
        current = current / "d"
        current.mkdir()
    (current / "leaf.txt").write_text("leaf")

    members = MemberWalker().walk(["deep"])
    assert members[-1].name.endswith("/d/leaf.txt")
    assert len(members) == 202


@pytest.mark.parametrize(
    "path, expected",
    [
        ("src/a.txt", ("src/a.txt", False)),
        ("./src//a.txt", ("src/a.txt", False)),
        ("/etc/hosts", ("etc/hosts", True)),
        ("../up/file", ("up/file", True)),
        (".", ("", False)),
    ],
)
def test_archive_name_for(path, expected):
    assert archive_name_for(path) == expected


def test_leading_slash_is_stripped_with_a_warning(tmp_path: Path):
    (tmp_path / "f.txt").write_text("x")
    warnings = []
    members = MemberWalker(warn=warnings.append).walk([str(tmp_path / "f.txt")])
    assert not members[0].name.startswith("/")
    assert warnings


def test_has_glob():
    assert has_glob("*.txt") and has_glob("a?") and has_glob("[ab]")
    assert not has_glob("plain/path.txt")


def test_matches_filters_rule():
    assert matches_filters("dir/a.txt", False, None, "*.log")
    assert not matches_filters("dir/a.log", False, None, "*.log")
    assert not matches_filters("dir/a.log", False, "*.log", "*.log")
    assert matches_filters("dir/logs", True, "*.txt", None)
    assert not matches_filters("dir/b.bin", False, "*.txt", None)
