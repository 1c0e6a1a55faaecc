"""
Split an EPUB into chapters from its markup alone, without the table of contents.

Each (X)HTML member is scanned for chapter containers (``section``/``div`` marked
as a chapter by ``epub:type``, ``class`` or ``role``). A document without any
is cut at its ``h1``-``h3`` headings instead.
"""

from __future__ import annotations

import re
import zipfile
from dataclasses import dataclass, field
from pathlib import Path

from bs4 import BeautifulSoup, Comment, NavigableString, Tag  # type: ignore

from .archive import ArchiveReader, ZipArchive, sanitize_filename
from .chapters import EmptyBookError, decode_chapter_bytes
from .logging_utils import DECODE_DEGRADED, Diagnostic, debug_log, record
from .markup import _soup_from_html

MARKUP_EXTS = (".xhtml", ".html", ".htm")
HEADING_TAGS = ("h1", "h2", "h3")
TITLE_CLASSES = ("title", "chapter-title")
GROUP_SEPARATOR = "\n\n\n---------------- END ----------------\n\n\n"


@dataclass
class SplitResult:
    chapters: list[str]
    diagnostics: list[Diagnostic] = field(default_factory=list)


@dataclass
class SplitReport:
    output_path: Path
    files: list[str]
    chapter_count: int
    skipped: int
    diagnostics: list[Diagnostic]


def _is_chapter_container(tag: Tag) -> bool:
    if tag.name not in ("section", "div"):
        return False
    classes = tag.get("class") or []
    return tag.get("epub:type") == "chapter" or "chapter" in classes or tag.get("role") == "chapter"


def _strip_titles(container: Tag) -> None:
    for node in container.find_all(HEADING_TAGS):
        node.decompose()
    for node in container.find_all(class_=list(TITLE_CLASSES)):
        node.decompose()


def _container_text(container: Tag) -> str:
    _strip_titles(container)
    paragraphs = container.find_all("p")
    if paragraphs:
        lines = [p.get_text().strip() for p in paragraphs]
        return "\n".join(line for line in lines if line)
    return re.sub(r"\s*\n\s*", "\n", container.get_text()).strip()


def _heading_sections(soup: BeautifulSoup) -> list[str]:
    headings = soup.find_all(HEADING_TAGS)
    if len(headings) < 2:
        return []
    sections: list[str] = []
    for heading in headings:
        parts: list[str] = []
        for node in heading.next_siblings:
            if isinstance(node, Tag):
                if node.name in HEADING_TAGS:
                    break
                parts.append(node.get_text() + "\n")
            elif isinstance(node, NavigableString) and not isinstance(node, Comment):
                parts.append(str(node))
        text = re.sub(r"\n{3,}", "\n", "".join(parts)).strip()
        if text:
            sections.append(text)
    return sections


def split_document(html: str) -> list[str]:
    """Return the chapter texts found in one (X)HTML document, in document order."""
    soup = _soup_from_html(html)
    containers = [tag for tag in soup.find_all(["section", "div"]) if _is_chapter_container(tag)]
    if containers:
        texts: list[str] = []
        for container in containers:
            if container.decomposed:
                continue
            text = _container_text(container)
            if text:
                texts.append(text)
        return texts
    return _heading_sections(soup)


def split_archive(archive: ArchiveReader) -> SplitResult:
    """Collect chapters from every markup member, in archive order."""
    chapters: list[str] = []
    diagnostics: list[Diagnostic] = []
    for name in archive.list():
        if not name.lower().endswith(MARKUP_EXTS):
            continue
        html, degraded = decode_chapter_bytes(archive.get(name))
        if degraded:
            record(diagnostics, DECODE_DEGRADED, name, "not valid UTF-8; decoded as Latin-1")
        found = split_document(html)
        debug_log(f"{name}: {len(found)} chapters")
        chapters.extend(found)
    return SplitResult(chapters=chapters, diagnostics=diagnostics)


def _number(value: int) -> str:
    return f"{value:02d}"


def name_split_files(
    chapters: list[str],
    *,
    prefix: str = "chapter",
    start: int = 1,
    offset: int = 0,
    group_size: int | None = None,
) -> list[tuple[str, str]]:
    """
    Lay chapters out as ``(file name, text)`` pairs.

    The first ``offset`` chapters are skipped and numbering starts at
    ``start + offset``. Without ``group_size`` each chapter gets
    ``{prefix}{NN}.txt``; with it, consecutive chapters are joined into
    ``{prefix} CNN-MM.txt`` (``{prefix} CNN.txt`` for a group of one).
    """
    offset = max(offset, 0)
    usable = chapters[offset:]
    first = start + offset
    if group_size is None:
        return [(f"{prefix}{_number(first + i)}.txt", text) for i, text in enumerate(usable)]
    size = max(group_size, 1)
    files: list[tuple[str, str]] = []
    for i in range(0, len(usable), size):
        group = usable[i : i + size]
        group_start = first + i
        group_end = group_start + len(group) - 1
        if group_start == group_end:
            name = f"{prefix} C{_number(group_start)}.txt"
        else:
            name = f"{prefix} C{_number(group_start)}-{_number(group_end)}.txt"
        files.append((name, GROUP_SEPARATOR.join(group)))
    return files


def default_split_path(epub_path: Path, prefix: str) -> Path:
    return epub_path.with_name(f"{sanitize_filename(prefix, fallback='chapter')}_chapters.zip")


def split_epub(
    epub_path: str | Path,
    output_path: str | Path | None = None,
    *,
    prefix: str = "chapter",
    start: int = 1,
    offset: int = 0,
    group_size: int | None = None,
) -> SplitReport:
    source = Path(epub_path)
    target = Path(output_path) if output_path is not None else default_split_path(source, prefix)
    with ZipArchive(source) as archive:
        result = split_archive(archive)
    if not result.chapters:
        raise EmptyBookError("No chapters found. Check EPUB structure.")
    files = name_split_files(result.chapters, prefix=prefix, start=start, offset=offset, group_size=group_size)
    if not files:
        raise EmptyBookError(f"Offset {offset} skips all {len(result.chapters)} chapters.")
    target.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, text in files:
            zf.writestr(name, text)
    skipped = max(offset, 0)
    return SplitReport(
        output_path=target,
        files=[name for name, _ in files],
        chapter_count=len(result.chapters) - skipped,
        skipped=skipped,
        diagnostics=result.diagnostics,
    )


__all__ = [
    "GROUP_SEPARATOR",
    "SplitReport",
    "SplitResult",
    "default_split_path",
    "name_split_files",
    "split_archive",
    "split_document",
    "split_epub",
]
