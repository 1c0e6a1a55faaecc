from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

from novelist.archive import (
    ArchiveEntryNotFound,
    ArchiveReader,
    MemoryArchive,
    ZipArchive,
    natural_sorted,
    read_text_members,
    sanitize_filename,
)
from novelist.logging_utils import Diagnostic, debug_log, record, set_debug_logging


def test_zip_archive_reads_members(tmp_path: Path) -> None:
    path = tmp_path / "sample.zip"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("dir/", "")
        zf.writestr("dir/a.txt", "alpha")

    with ZipArchive(path) as archive:
        assert isinstance(archive, ArchiveReader)
        assert list(archive.list()) == ["dir/a.txt"]
        assert archive.get("/dir/a.txt") == b"alpha"
        with pytest.raises(ArchiveEntryNotFound):
            archive.get("Dir/a.txt")


def test_memory_archive_normalizes_paths() -> None:
    archive = MemoryArchive({"OEBPS\\text\\a.xhtml": "<p>x</p>"})

    assert archive.get("OEBPS/text/a.xhtml") == b"<p>x</p>"
    with pytest.raises(KeyError):
        archive.get("missing")


def test_natural_sorted() -> None:
    assert natural_sorted(["c10.txt", "C2.txt", "c1.txt", "b.txt"]) == ["b.txt", "c1.txt", "C2.txt", "c10.txt"]


def test_read_text_members_replaces_bad_bytes() -> None:
    archive = MemoryArchive({"2.txt": b"ok\xff", "1.TXT": "first", "x.md": "skip"})

    assert read_text_members(archive) == [("1.TXT", "first"), ("2.txt", "ok\ufffd")]


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("My Book!", "My_Book"),
        ("  __weird...name__ ", "weird...name"),
        ("???", "file"),
        (None, "file"),
        ("x" * 150, "x" * 100),
    ],
)
def test_sanitize_filename(name: str | None, expected: str) -> None:
    assert sanitize_filename(name) == expected


def test_debug_log_and_diagnostics(capsys) -> None:
    diagnostics: list[Diagnostic] = []
    debug_log("hidden")
    set_debug_logging(True)
    try:
        record(diagnostics, "Kind", "subject", "went wrong")
    finally:
        set_debug_logging(False)

    assert diagnostics == [Diagnostic("Kind", "subject", "went wrong")]
    err = capsys.readouterr().err
    assert "hidden" not in err
    assert "[novelist debug] Kind: subject: went wrong" in err
