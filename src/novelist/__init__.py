from .archive import ArchiveEntryNotFound, ArchiveReader, MemoryArchive, ZipArchive
from .backup import (
    RecordStructureInvalidError,
    backup_from_text_archive,
    extend_backup,
    load_backup,
    merge_backups,
    new_backup,
)
from .chapters import EmptyBookError, epub_to_text_archive, extract_chapters
from .epub_builder import text_archive_to_epub
from .find_replace import FindReplaceSession, MatchResult, NoActiveMatchError, PatternError
from .markup import extract_text_from_html
from .splitter import split_epub
from .structure import ChapterRef, StructureNotFoundError, TocNotFoundError, resolve_chapter_list

__all__ = [
    "ArchiveReader",
    "ZipArchive",
    "MemoryArchive",
    "ArchiveEntryNotFound",
    "ChapterRef",
    "resolve_chapter_list",
    "StructureNotFoundError",
    "TocNotFoundError",
    "extract_text_from_html",
    "extract_chapters",
    "epub_to_text_archive",
    "split_epub",
    "EmptyBookError",
    "text_archive_to_epub",
    "load_backup",
    "new_backup",
    "backup_from_text_archive",
    "extend_backup",
    "merge_backups",
    "RecordStructureInvalidError",
    "FindReplaceSession",
    "MatchResult",
    "PatternError",
    "NoActiveMatchError",
]
