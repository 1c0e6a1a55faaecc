from __future__ import annotations

import json
import zipfile
from pathlib import Path
from typing import Callable

import pytest

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

NCX_OPF = """<?xml version="1.0" encoding="UTF-8"?>
<package version="2.0" unique-identifier="BookId" xmlns="http://www.idpf.org/2007/opf">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:title>Legacy Book</dc:title>
    <dc:creator>Sample Author</dc:creator>
    <dc:language>en</dc:language>
  </metadata>
  <manifest>
    <item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>
    <item id="ch1" href="text/ch1.xhtml" media-type="application/xhtml+xml"/>
    <item id="ch2" href="text/ch2.xhtml" media-type="application/xhtml+xml"/>
    <item id="ch3" href="text/ch3.xhtml" media-type="application/xhtml+xml"/>
  </manifest>
  <spine toc="ncx">
    <itemref idref="ch1"/>
    <itemref idref="ch2"/>
    <itemref idref="ch3"/>
  </spine>
</package>
"""

NCX_TOC = """<?xml version="1.0" encoding="UTF-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <docTitle><text>Legacy Book</text></docTitle>
  <navMap>
    <navPoint id="p1" playOrder="1">
      <navLabel><text>Chapter One</text></navLabel>
      <content src="text/ch1.xhtml#top"/>
    </navPoint>
    <navPoint id="p2" playOrder="2">
      <navLabel><text>Chapter Two</text></navLabel>
      <content src="text/ch2.xhtml"/>
    </navPoint>
    <navPoint id="p3" playOrder="3">
      <navLabel><text>Chapter One (continued)</text></navLabel>
      <content src="text/ch1.xhtml#later"/>
    </navPoint>
    <navPoint id="p4" playOrder="4">
      <navLabel><text>Chapter Three</text></navLabel>
      <content src="text/ch3.xhtml"/>
    </navPoint>
  </navMap>
</ncx>
"""


def chapter_xhtml(title: str, body: str) -> str:
    return f"""<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
  <head><title>{title}</title></head>
  <body>
    <h1>{title}</h1>
    {body}
  </body>
</html>
"""


def legacy_ncx_files() -> dict[str, str | bytes]:
    return {
        "META-INF/container.xml": CONTAINER_XML,
        "OEBPS/content.opf": NCX_OPF,
        "OEBPS/toc.ncx": NCX_TOC,
        "OEBPS/text/ch1.xhtml": chapter_xhtml(
            "Chapter One",
            "<p>It was a dark night.</p>\n    <p>The end<br/>of part one.</p>",
        ),
        "OEBPS/text/ch2.xhtml": chapter_xhtml("Chapter Two", "<p>Morning came.</p>"),
        "OEBPS/text/ch3.xhtml": chapter_xhtml("Chapter Three", "<p>Café au lait.</p>"),
    }


def write_epub(target: Path, files: dict[str, str | bytes]) -> Path:
    with zipfile.ZipFile(target, "w") as zf:
        zf.writestr("mimetype", "application/epub+zip")
        for name, data in files.items():
            zf.writestr(name, data)
    return target


def scene_text(*texts: str) -> str:
    blocks = [{"type": "text", "align": "left", "text": text} for text in texts]
    return json.dumps({"blocks": blocks}, ensure_ascii=False, separators=(",", ":"))


def make_record(*scenes: tuple[str | None, str]) -> dict[str, object]:
    """Backup record with ``(title, scene text)`` pairs as its scenes."""
    scene_list: list[dict[str, object]] = []
    for number, (title, text) in enumerate(scenes, start=1):
        scene: dict[str, object] = {"code": f"scene{number}", "text": text, "ranking": number, "status": "1"}
        if title is not None:
            scene["title"] = title
        scene_list.append(scene)
    return {
        "version": 4,
        "code": "abcd1234",
        "title": "Sample",
        "description": "",
        "last_update_date": 0,
        "last_backup_date": 0,
        "revisions": [
            {
                "number": 1,
                "date": 0,
                "book_progresses": [],
                "statuses": [],
                "scenes": scene_list,
                "sections": [],
            }
        ],
    }


@pytest.fixture
def legacy_epub(tmp_path: Path) -> Path:
    return write_epub(tmp_path / "legacy.epub", legacy_ncx_files())


@pytest.fixture
def epub_factory(tmp_path: Path) -> Callable[..., Path]:
    def _factory(files: dict[str, str | bytes], name: str = "book.epub") -> Path:
        return write_epub(tmp_path / name, files)

    return _factory
