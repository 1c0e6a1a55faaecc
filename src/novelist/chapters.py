from __future__ import annotations

import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from .archive import ArchiveEntryNotFound, ArchiveReader, ZipArchive, sanitize_filename
from .logging_utils import CHAPTER_UNREADABLE, DECODE_DEGRADED, Diagnostic, debug_log, record
from .markup import extract_text_from_html
from .structure import BookStructure, ChapterRef, resolve_book

ProgressCallback = Callable[[dict[str, object]], None]


class EmptyBookError(RuntimeError):
    """Raised when an EPUB yields no chapters to write."""


@dataclass
class ExtractedChapter:
    index: int
    title: str
    path: str
    text: str


@dataclass
class ExtractionResult:
    chapters: list[ExtractedChapter]
    diagnostics: list[Diagnostic] = field(default_factory=list)


@dataclass
class TextArchiveReport:
    output_path: Path
    structure: BookStructure
    files: list[str]
    diagnostics: list[Diagnostic]

    @property
    def chapter_count(self) -> int:
        return len(self.files)


def decode_chapter_bytes(data: bytes) -> tuple[str, bool]:
    """Decode as UTF-8, falling back to Latin-1. Returns ``(text, degraded)``."""
    try:
        return data.decode("utf-8-sig"), False
    except UnicodeDecodeError:
        return data.decode("latin-1"), True


def trim_leading_lines(text: str, count: int) -> str:
    if count <= 0 or not text:
        return text
    lines = text.split("\n")
    if len(lines) <= count:
        return ""
    return "\n".join(lines[count:])


def chapter_filename(number: int) -> str:
    return f"C{number:02d}.txt"


def extract_chapters(
    archive: ArchiveReader,
    chapters: Iterable[ChapterRef],
    *,
    trim_lines: int = 0,
    progress: ProgressCallback | None = None,
) -> ExtractionResult:
    """
    Fetch, decode and flatten each chapter in order.

    Missing chapter files and undecodable bytes are recorded as diagnostics;
    chapters that end up empty are dropped.
    """
    refs = list(chapters)
    total = len(refs)
    extracted: list[ExtractedChapter] = []
    diagnostics: list[Diagnostic] = []
    for position, ref in enumerate(refs, start=1):
        if progress is not None:
            progress({"event": "chapter_start", "index": position, "total": total, "title": ref.title, "path": ref.path})
        try:
            raw = archive.get(ref.path)
        except ArchiveEntryNotFound:
            record(diagnostics, CHAPTER_UNREADABLE, ref.path, "chapter file not found in archive")
            if progress is not None:
                progress({"event": "chapter_skipped", "index": position, "total": total, "reason": "missing"})
            continue
        html, degraded = decode_chapter_bytes(raw)
        if degraded:
            record(diagnostics, DECODE_DEGRADED, ref.path, "not valid UTF-8; decoded as Latin-1")
        text = trim_leading_lines(extract_text_from_html(html), trim_lines)
        if not text.strip():
            debug_log(f"chapter {ref.path} is empty after extraction; skipping")
            if progress is not None:
                progress({"event": "chapter_skipped", "index": position, "total": total, "reason": "empty"})
            continue
        extracted.append(ExtractedChapter(index=len(extracted) + 1, title=ref.title, path=ref.path, text=text))
        if progress is not None:
            progress({"event": "chapter_done", "index": position, "total": total, "title": ref.title})
    return ExtractionResult(chapters=extracted, diagnostics=diagnostics)


def write_text_archive(output_path: Path, chapters: Iterable[ExtractedChapter]) -> list[str]:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    names: list[str] = []
    with zipfile.ZipFile(output_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for number, chapter in enumerate(chapters, start=1):
            name = chapter_filename(number)
            zf.writestr(name, chapter.text)
            names.append(name)
    return names


def default_text_archive_path(epub_path: Path) -> Path:
    stem = sanitize_filename(epub_path.stem, fallback="epub_content")
    return epub_path.with_name(f"{stem}_chapters.zip")


def epub_to_text_archive(
    epub_path: str | Path,
    output_path: str | Path | None = None,
    *,
    trim_lines: int = 0,
    progress: ProgressCallback | None = None,
) -> TextArchiveReport:
    """Convert an EPUB into a zip of ``C01.txt``, ``C02.txt``, ... chapter files."""
    source = Path(epub_path)
    target = Path(output_path) if output_path is not None else default_text_archive_path(source)
    with ZipArchive(source) as archive:
        structure = resolve_book(archive)
        if not structure.chapters:
            raise EmptyBookError(f"No chapters listed in the table of contents of {source.name}")
        result = extract_chapters(archive, structure.chapters, trim_lines=trim_lines, progress=progress)
    if not result.chapters:
        raise EmptyBookError(
            "No chapter content retrieved or all content was removed by the line filter."
        )
    files = write_text_archive(target, result.chapters)
    return TextArchiveReport(
        output_path=target,
        structure=structure,
        files=files,
        diagnostics=result.diagnostics,
    )


__all__ = [
    "EmptyBookError",
    "ExtractedChapter",
    "ExtractionResult",
    "TextArchiveReport",
    "chapter_filename",
    "decode_chapter_bytes",
    "default_text_archive_path",
    "epub_to_text_archive",
    "extract_chapters",
    "trim_leading_lines",
    "write_text_archive",
]
