from __future__ import annotations

import json
import zipfile
from pathlib import Path

import pytest

import novelist.cli as cli
from conftest import CONTAINER_XML, make_record, scene_text
from novelist.backup import load_backup, parse_blocks
from novelist.logging_utils import debug_enabled, set_debug_logging


@pytest.fixture
def backup_file(tmp_path: Path) -> Path:
    path = tmp_path / "project.json"
    data = make_record(
        ("Opening", scene_text("the cat sat", "another cat")),
        ("Ending", scene_text("cat")),
    )
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _reset_debug():
    yield
    set_debug_logging(False)


def test_no_arguments_prints_help(capsys) -> None:
    assert cli.main([]) == 0
    assert "epub-to-txt" in capsys.readouterr().out


def test_epub_to_txt(legacy_epub: Path, tmp_path: Path, capsys) -> None:
    output = tmp_path / "chapters.zip"

    assert cli.main(["epub-to-txt", str(legacy_epub), "-o", str(output), "--trim-lines", "1"]) == 0

    with zipfile.ZipFile(output) as zf:
        assert zf.namelist() == ["C01.txt", "C02.txt", "C03.txt"]
        assert zf.read("C02.txt").decode("utf-8") == "\nMorning came."
    assert "Wrote 3 chapters" in capsys.readouterr().out


def test_chapters_lists_toc(legacy_epub: Path, capsys) -> None:
    assert cli.main(["chapters", str(legacy_epub)]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines == [
        "1. Chapter One\tOEBPS/text/ch1.xhtml",
        "2. Chapter Two\tOEBPS/text/ch2.xhtml",
        "3. Chapter Three\tOEBPS/text/ch3.xhtml",
    ]


def test_broken_epub_exits_with_message(tmp_path: Path) -> None:
    epub = tmp_path / "broken.epub"
    with zipfile.ZipFile(epub, "w") as zf:
        zf.writestr("mimetype", "application/epub+zip")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["chapters", str(epub)])

    assert "Not a readable EPUB package" in str(excinfo.value.code)


def test_missing_toc_exits_with_message(tmp_path: Path) -> None:
    epub = tmp_path / "no_toc.epub"
    with zipfile.ZipFile(epub, "w") as zf:
        zf.writestr("META-INF/container.xml", CONTAINER_XML)
        zf.writestr("OEBPS/content.opf", '<package xmlns="http://www.idpf.org/2007/opf"><manifest/></package>')

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["chapters", str(epub)])

    assert "No usable table of contents" in str(excinfo.value.code)


def test_txt_to_epub(tmp_path: Path, capsys) -> None:
    source = tmp_path / "chapters.zip"
    with zipfile.ZipFile(source, "w") as zf:
        zf.writestr("1.txt", "One")
        zf.writestr("2.txt", "Two")
    output = tmp_path / "out.epub"

    assert cli.main(["txt-to-epub", str(source), "-o", str(output), "--title", "Tiny"]) == 0

    assert output.exists()
    assert "Wrote 2 chapters" in capsys.readouterr().out


def test_find_lists_matches(backup_file: Path, capsys) -> None:
    assert cli.main(["find", str(backup_file), "cat"]) == 0

    out = capsys.readouterr().out.splitlines()
    assert out[-1] == "3 matches"
    assert out[0].startswith("Opening [scene 1, block 1, offset 4]")


def test_find_reverse(backup_file: Path, capsys) -> None:
    assert cli.main(["find", str(backup_file), "cat", "--reverse"]) == 0

    out = capsys.readouterr().out.splitlines()
    assert out[0].startswith("Ending [scene 2, block 1, offset 0]")
    assert out[-1] == "3 matches"


def test_find_invalid_regex(backup_file: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["find", str(backup_file), "(", "--regex"])

    assert "Invalid search pattern" in str(excinfo.value.code)


def test_replace_all_writes_output(backup_file: Path, tmp_path: Path, capsys) -> None:
    output = tmp_path / "replaced.json"

    assert cli.main(["replace", str(backup_file), "cat", "dog", "-o", str(output)]) == 0

    data = load_backup(output)
    first = parse_blocks(data["revisions"][0]["scenes"][0]["text"])
    assert [b.text for b in first] == ["the dog sat", "another dog"]
    assert "Replaced 3 matches" in capsys.readouterr().out


def test_interactive_replace_asks_per_match(backup_file: Path, monkeypatch, capsys) -> None:
    answers = iter([True, False, True])
    monkeypatch.setattr(cli.Confirm, "ask", lambda *args, **kwargs: next(answers))

    assert cli.main(["replace", str(backup_file), "cat", "dog", "-i"]) == 0

    scenes = load_backup(backup_file)["revisions"][0]["scenes"]
    assert [b.text for b in parse_blocks(scenes[0]["text"])] == ["the dog sat", "another cat"]
    assert parse_blocks(scenes[1]["text"])[0].text == "dog"
    assert "Replaced 2 matches" in capsys.readouterr().out


def test_interactive_replace_of_empty_regex_match_terminates(tmp_path: Path, monkeypatch, capsys) -> None:
    path = tmp_path / "project.json"
    path.write_text(json.dumps(make_record(("Only", scene_text("a a")))), encoding="utf-8")
    monkeypatch.setattr(cli.Confirm, "ask", lambda *args, **kwargs: True)

    assert cli.main(["replace", str(path), "(?=a)", "x", "--regex", "-i"]) == 0

    scene = load_backup(path)["revisions"][0]["scenes"][0]
    assert parse_blocks(scene["text"])[0].text == "xa xa"
    assert "Replaced 2 matches" in capsys.readouterr().out


def test_invalid_backup_exits_with_message(tmp_path: Path) -> None:
    path = tmp_path / "bad.json"
    path.write_text('{"revisions": []}', encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["find", str(path), "cat"])

    assert "Invalid backup file" in str(excinfo.value.code)


def test_backup_new_and_extend(tmp_path: Path) -> None:
    path = tmp_path / "novel.json"

    assert cli.main(["backup", "new", "Novel", "-n", "2", "-o", str(path)]) == 0
    assert cli.main(["backup", "extend", str(path), "-n", "3"]) == 0

    data = load_backup(path)
    assert [s["code"] for s in data["revisions"][0]["scenes"]] == ["scene1", "scene2", "scene3", "scene4", "scene5"]


def test_backup_new_project_options(tmp_path: Path) -> None:
    path = tmp_path / "novel.json"

    assert cli.main(["backup", "new", "Novel", "--code", "cafe0001", "--no-toc", "-o", str(path)]) == 0

    data = load_backup(path)
    assert data["code"] == "cafe0001"
    assert data["show_table_of_contents"] is False
    assert data["apply_automatic_indentation"] is True


def test_backup_merge_warns_about_bad_sources(backup_file: Path, tmp_path: Path, capsys) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    output = tmp_path / "merged.json"

    assert cli.main(["backup", "merge", str(output), str(backup_file), str(broken), "--title", "Merged"]) == 0

    assert len(load_backup(output)["revisions"][0]["scenes"]) == 2
    assert "BackupUnreadable" in capsys.readouterr().err


def test_debug_flag_enables_logging(legacy_epub: Path, capsys) -> None:
    assert cli.main(["chapters", str(legacy_epub), "--debug"]) == 0

    assert debug_enabled()
    assert "[novelist debug]" in capsys.readouterr().err
