from __future__ import annotations

import zipfile
from pathlib import Path

import pytest

import novelist.cli as cli
from novelist.archive import MemoryArchive
from novelist.chapters import EmptyBookError
from novelist.splitter import (
    GROUP_SEPARATOR,
    default_split_path,
    name_split_files,
    split_archive,
    split_document,
    split_epub,
)

SECTIONED = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">
  <body>
    <section epub:type="chapter"><h1>One</h1><p> Alpha </p><p>  </p><p>Beta</p></section>
    <div class="chapter"><h2 class="chapter-title">Two</h2>Plain text
        more text</div>
    <div role="chapter"><p class="title">Three</p><p>Gamma</p></div>
    <div class="note"><p>Not a chapter</p></div>
  </body>
</html>
"""

HEADED = """<html><body><h2>One</h2><p>First.</p><p>Line two.</p><h2>Two</h2><p>Second.</p></body></html>"""


def test_split_document_uses_chapter_sections() -> None:
    assert split_document(SECTIONED) == ["Alpha\nBeta", "Plain text\nmore text", "Gamma"]


def test_split_document_falls_back_to_headings() -> None:
    assert split_document(HEADED) == ["First.\nLine two.", "Second."]


def test_single_heading_is_not_a_split_point() -> None:
    assert split_document("<html><body><h1>Only</h1><p>Text</p></body></html>") == []


def test_split_archive_keeps_archive_order_and_skips_other_members() -> None:
    archive = MemoryArchive(
        {
            "OEBPS/b.xhtml": HEADED,
            "OEBPS/style.css": "h2 { color: red; }",
            "OEBPS/a.html": '<html><body><div class="chapter"><p>Later</p></div></body></html>',
        }
    )

    result = split_archive(archive)

    assert result.chapters == ["First.\nLine two.", "Second.", "Later"]
    assert result.diagnostics == []


def test_split_archive_records_latin1_fallback() -> None:
    html = '<html><body><div class="chapter"><p>Caf\xe9</p></div></body></html>'.encode("latin-1")

    result = split_archive(MemoryArchive({"ch.xhtml": html}))

    assert result.chapters == ["Café"]
    assert [d.kind for d in result.diagnostics] == ["DecodeDegraded"]


def test_name_split_files_one_per_chapter_with_offset() -> None:
    files = name_split_files(["front", "a", "b"], prefix="book", start=1, offset=1)

    assert files == [("book02.txt", "a"), ("book03.txt", "b")]


def test_name_split_files_groups_and_trailing_group() -> None:
    chapters = ["c1", "c2", "c3", "c4", "c5"]

    files = name_split_files(chapters, prefix="test", start=1, group_size=4)

    assert [name for name, _ in files] == ["test C01-04.txt", "test C05.txt"]
    assert files[0][1] == GROUP_SEPARATOR.join(["c1", "c2", "c3", "c4"])
    assert files[1][1] == "c5"


def test_name_split_files_zero_group_size_means_one() -> None:
    files = name_split_files(["a", "b"], prefix="x", start=10, group_size=0)

    assert [name for name, _ in files] == ["x C10.txt", "x C11.txt"]


def test_split_epub_writes_zip(epub_factory, tmp_path: Path) -> None:
    epub = epub_factory({"OEBPS/text/ch.xhtml": SECTIONED})

    report = split_epub(epub, prefix="novel", group_size=2)

    assert report.output_path == tmp_path / "novel_chapters.zip"
    with zipfile.ZipFile(report.output_path) as zf:
        assert zf.namelist() == ["novel C01-02.txt", "novel C03.txt"]
        assert zf.read("novel C03.txt").decode("utf-8") == "Gamma"
    assert report.chapter_count == 3


def test_split_epub_without_chapters_raises(epub_factory) -> None:
    epub = epub_factory({"OEBPS/text/ch.xhtml": "<html><body><p>Loose text</p></body></html>"})

    with pytest.raises(EmptyBookError, match="No chapters found"):
        split_epub(epub)


def test_split_epub_offset_past_every_chapter_raises(epub_factory) -> None:
    epub = epub_factory({"OEBPS/text/ch.xhtml": HEADED})

    with pytest.raises(EmptyBookError, match="skips all 2 chapters"):
        split_epub(epub, offset=5)


def test_default_split_path_sanitizes_prefix(tmp_path: Path) -> None:
    assert default_split_path(tmp_path / "b.epub", "") == tmp_path / "chapter_chapters.zip"


def test_split_command(epub_factory, tmp_path: Path, capsys) -> None:
    epub = epub_factory({"OEBPS/text/ch.xhtml": HEADED})
    output = tmp_path / "parts.zip"

    assert cli.main(["split", str(epub), "-o", str(output), "--prefix", "part", "--start", "3"]) == 0

    with zipfile.ZipFile(output) as zf:
        assert zf.namelist() == ["part03.txt", "part04.txt"]
    assert "Wrote 2 chapters in 2 files" in capsys.readouterr().out


def test_split_command_reports_missing_chapters(epub_factory) -> None:
    epub = epub_factory({"OEBPS/text/ch.xhtml": "<html><body><p>Loose</p></body></html>"})

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["split", str(epub)])

    assert "No chapters found" in str(excinfo.value.code)
