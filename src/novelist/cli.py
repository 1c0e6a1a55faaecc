from __future__ import annotations

import argparse
import sys
import zipfile
from importlib import metadata
from pathlib import Path
from typing import Callable

from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.prompt import Confirm

import tomllib

from .archive import ArchiveEntryNotFound, ZipArchive, sanitize_filename
from .backup import (
    RecordStructureInvalidError,
    backup_from_text_archive,
    dump_backup,
    extend_backup,
    load_backup,
    merge_backups,
    new_backup,
)
from .chapters import EmptyBookError, epub_to_text_archive
from .epub_builder import CoverImageError, text_archive_to_epub
from .find_replace import Cursor, FindReplaceSession, MatchResult, NoActiveMatchError, PatternError
from .logging_utils import Diagnostic, set_debug_logging
from .splitter import split_epub
from .structure import StructureNotFoundError, TocNotFoundError, resolve_book


def _read_local_version() -> str | None:
    try:
        pyproject_path = Path(__file__).resolve().parents[2] / "pyproject.toml"
    except IndexError:  # pragma: no cover
        return None
    try:
        with pyproject_path.open("rb") as fh:
            data = tomllib.load(fh)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return None
    return data.get("project", {}).get("version")


try:
    __version__ = metadata.version("novelist")
except metadata.PackageNotFoundError:
    __version__ = _read_local_version() or "0.0.0+unknown"


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"novelist {__version__}",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Print verbose debug logging to stderr.",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="novelist",
        description=(
            "EPUB and manuscript utilities. Commands: epub-to-txt, chapters, split, "
            "txt-to-epub, backup, find, replace. Use `novelist <command> --help` for options."
        ),
    )
    _add_common_flags(ap)
    return ap


def build_epub_to_txt_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="novelist epub-to-txt",
        description="Split an EPUB into a zip of per-chapter plain-text files (C01.txt, C02.txt, ...).",
    )
    _add_common_flags(ap)
    ap.add_argument("epub", help="Path to the input .epub")
    ap.add_argument(
        "-o",
        "--output",
        help="Output .zip path (default: <epub name>_chapters.zip next to the input)",
    )
    ap.add_argument(
        "--trim-lines",
        type=int,
        default=0,
        metavar="N",
        help="Drop the first N lines of every chapter (e.g. repeated chapter headings).",
    )
    return ap


def build_chapters_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="novelist chapters",
        description="List the chapters an EPUB's table of contents points to.",
    )
    _add_common_flags(ap)
    ap.add_argument("epub", help="Path to the input .epub")
    return ap


def build_split_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="novelist split",
        description=(
            "Split an EPUB into chapter text files by its chapter sections or headings, "
            "ignoring the table of contents."
        ),
    )
    _add_common_flags(ap)
    ap.add_argument("epub", help="Path to the input .epub")
    ap.add_argument(
        "-o",
        "--output",
        help="Output .zip path (default: <prefix>_chapters.zip next to the input)",
    )
    ap.add_argument("--prefix", default="chapter", help="File name prefix (default: chapter)")
    ap.add_argument("--start", type=int, default=1, help="Number of the first chapter (default: 1)")
    ap.add_argument(
        "--offset",
        type=int,
        default=0,
        metavar="N",
        help="Skip the first N chapters found (front matter); numbering skips with them.",
    )
    ap.add_argument(
        "--group-size",
        type=int,
        metavar="N",
        help="Join every N chapters into one file named '<prefix> CNN-MM.txt'.",
    )
    return ap


def build_txt_to_epub_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="novelist txt-to-epub",
        description="Build an EPUB 3 book from the .txt files inside a zip, in natural name order.",
    )
    _add_common_flags(ap)
    ap.add_argument("archive", help="Zip containing one .txt file per chapter")
    ap.add_argument("-o", "--output", help="Output .epub path (default: <title>.epub next to the zip)")
    ap.add_argument("--title", default="Untitled EPUB", help="Book title")
    ap.add_argument("--author", default="Unknown Author", help="Book author")
    ap.add_argument("--language", default="en", help="Book language code (default: en)")
    ap.add_argument("--cover", help="Optional JPEG or PNG cover image")
    return ap


def _add_project_options(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("--description", default="", help="Project description")
    ap.add_argument("--code", help="Project code (default: 8 random hex digits)")
    ap.add_argument(
        "--no-toc",
        dest="show_table_of_contents",
        action="store_false",
        help="Hide the table of contents in the editor",
    )
    ap.add_argument(
        "--no-indent",
        dest="apply_automatic_indentation",
        action="store_false",
        help="Disable automatic paragraph indentation in the editor",
    )
    ap.add_argument("-o", "--output", help="Output .json path (default: <title>.json)")


def _project_options(args: argparse.Namespace) -> dict[str, object]:
    return {
        "description": args.description,
        "code": args.code,
        "show_table_of_contents": args.show_table_of_contents,
        "apply_automatic_indentation": args.apply_automatic_indentation,
    }


def build_backup_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="novelist backup",
        description="Create, extend and merge project backup files.",
    )
    _add_common_flags(ap)
    subparsers = ap.add_subparsers(dest="backup_cmd")

    new = subparsers.add_parser("new", help="Create a backup with empty chapters")
    new.add_argument("title", help="Project title")
    new.add_argument("-n", "--chapters", type=int, default=1, help="Number of chapters (default: 1)")
    new.add_argument("--prefix", default="", help="Chapter title prefix (titles become <prefix><n>)")
    _add_project_options(new)

    from_txt = subparsers.add_parser("from-txt", help="Create a backup from a zip of .txt chapters")
    from_txt.add_argument("archive", help="Zip containing one .txt file per chapter")
    from_txt.add_argument("title", help="Project title")
    _add_project_options(from_txt)

    extend = subparsers.add_parser("extend", help="Append empty chapters to an existing backup")
    extend.add_argument("backup", help="Backup .json file")
    extend.add_argument("-n", "--chapters", type=int, default=1, help="Number of chapters to add (default: 1)")
    extend.add_argument("--prefix", default="", help="Chapter title prefix for the new chapters")
    extend.add_argument("-o", "--output", help="Output path (default: overwrite the input)")

    merge = subparsers.add_parser("merge", help="Merge several backups into a new one")
    merge.add_argument("output", help="Output .json path for the merged project")
    merge.add_argument("backups", nargs="+", help="Backup .json files, in merge order")
    merge.add_argument("--title", required=True, help="Title of the merged project")
    merge.add_argument("--description", default="", help="Description of the merged project")
    merge.add_argument("--prefix", default="", help="Renumber chapter titles as <prefix><n>")
    return ap


def _add_pattern_arguments(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("backup", help="Backup .json file")
    ap.add_argument("pattern", help="Text (or regular expression with --regex) to search for")
    ap.add_argument("--regex", action="store_true", help="Treat the pattern as a regular expression")


def build_find_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="novelist find",
        description="List every match of a pattern across the scenes of a backup.",
    )
    _add_common_flags(ap)
    _add_pattern_arguments(ap)
    ap.add_argument("--reverse", action="store_true", help="Walk matches from the end backwards")
    return ap


def build_replace_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="novelist replace",
        description="Replace a pattern across the scenes of a backup. Replacement text is inserted literally.",
    )
    _add_common_flags(ap)
    _add_pattern_arguments(ap)
    ap.add_argument("replacement", help="Replacement text")
    ap.add_argument(
        "-i",
        "--interactive",
        action="store_true",
        help=(
            "Confirm each match before replacing it. An empty regex match at the end of "
            "a replacement is not offered again."
        ),
    )
    ap.add_argument("-o", "--output", help="Output path (default: overwrite the input)")
    return ap


def _warn_diagnostics(console: Console, diagnostics: list[Diagnostic]) -> None:
    for diagnostic in diagnostics:
        console.print(f"[yellow]warning[/yellow] {escape(str(diagnostic))}", highlight=False, soft_wrap=True)


def _default_json_path(title: str) -> Path:
    return Path(f"{sanitize_filename(title, fallback='backup')}.json")


class _ChapterProgress:
    def __init__(self, console: Console) -> None:
        self.console = console
        self.progress: Progress | None = None
        self.task = None
        if not console.is_terminal:
            return
        self.progress = Progress(
            TextColumn("{task.description}", justify="left"),
            BarColumn(bar_width=None),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            TextColumn("{task.fields[detail]}", justify="left"),
            console=console,
            transient=True,
        )

    def __enter__(self) -> "_ChapterProgress":
        if self.progress is not None:
            self.progress.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self.progress is not None:
            self.progress.stop()

    def __call__(self, event: dict[str, object]) -> None:
        if self.progress is None:
            return
        if self.task is None:
            self.task = self.progress.add_task("Chapters", total=event.get("total") or 0, detail="")
        kind = event.get("event")
        if kind == "chapter_start":
            self.progress.update(self.task, detail=str(event.get("title") or ""))
        elif kind in {"chapter_done", "chapter_skipped"}:
            self.progress.advance(self.task)


def _run_epub_to_txt(args: argparse.Namespace) -> int:
    console = Console(stderr=True)
    epub_path = Path(args.epub)
    if not epub_path.exists():
        raise FileNotFoundError(f"Input path not found: {epub_path}")
    if args.trim_lines < 0:
        raise SystemExit("--trim-lines must be zero or positive.")
    with _ChapterProgress(console) as progress:
        report = epub_to_text_archive(
            epub_path,
            args.output,
            trim_lines=args.trim_lines,
            progress=progress,
        )
    _warn_diagnostics(console, report.diagnostics)
    print(f"Wrote {report.chapter_count} chapters to {report.output_path}")
    return 0


def _run_chapters(args: argparse.Namespace) -> int:
    with ZipArchive(args.epub) as archive:
        structure = resolve_book(archive)
    if not structure.chapters:
        Console(stderr=True).print("No chapters found in the table of contents.")
        return 0
    width = len(str(len(structure.chapters)))
    for number, chapter in enumerate(structure.chapters, start=1):
        print(f"{number:>{width}}. {chapter.title}\t{chapter.path}")
    return 0


def _run_split(args: argparse.Namespace) -> int:
    epub_path = Path(args.epub)
    if not epub_path.exists():
        raise FileNotFoundError(f"Input path not found: {epub_path}")
    if args.offset < 0:
        raise SystemExit("--offset must be zero or positive.")
    report = split_epub(
        epub_path,
        args.output,
        prefix=args.prefix,
        start=args.start,
        offset=args.offset,
        group_size=args.group_size,
    )
    _warn_diagnostics(Console(stderr=True), report.diagnostics)
    print(f"Wrote {report.chapter_count} chapters in {len(report.files)} files to {report.output_path}")
    return 0


def _run_txt_to_epub(args: argparse.Namespace) -> int:
    report = text_archive_to_epub(
        args.archive,
        args.output,
        title=args.title,
        author=args.author,
        language=args.language,
        cover_path=args.cover,
    )
    print(f"Wrote {len(report.chapters)} chapters to {report.output_path}")
    return 0


def _run_backup(args: argparse.Namespace) -> int:
    if not args.backup_cmd:
        raise SystemExit("A backup subcommand is required. Use --help for options.")
    console = Console(stderr=True)

    if args.backup_cmd == "new":
        data = new_backup(args.title, args.chapters, prefix=args.prefix, **_project_options(args))
        target = Path(args.output) if args.output else _default_json_path(args.title)
    elif args.backup_cmd == "from-txt":
        with ZipArchive(args.archive) as archive:
            data = backup_from_text_archive(archive, args.title, **_project_options(args))
        target = Path(args.output) if args.output else _default_json_path(args.title)
    elif args.backup_cmd == "extend":
        if args.chapters < 1:
            raise SystemExit("Number of chapters to add must be at least 1.")
        data = extend_backup(load_backup(args.backup), args.chapters, prefix=args.prefix)
        target = Path(args.output) if args.output else Path(args.backup)
    elif args.backup_cmd == "merge":
        sources = [(path, Path(path).read_text(encoding="utf-8")) for path in args.backups]
        result = merge_backups(sources, args.title, description=args.description, prefix=args.prefix)
        _warn_diagnostics(console, result.diagnostics)
        data = result.record
        target = Path(args.output)
    else:
        raise SystemExit(f"Unknown backup subcommand: {args.backup_cmd}")

    dump_backup(data, target)
    scenes = data["revisions"][0]["scenes"]
    print(f"Wrote {len(scenes)} chapters to {target}")
    return 0


def _format_match(match: MatchResult) -> str:
    return (
        f"{match.chapter_title} [scene {match.scene_index + 1}, block {match.block_index + 1}, "
        f"offset {match.match_index}]: {match.match_line.strip()}"
    )


def _run_find(args: argparse.Namespace) -> int:
    session = FindReplaceSession(load_backup(args.backup))
    if args.reverse:
        session.seek_end()
        step = session.find_previous
    else:
        step = session.find_next
    count = 0
    while (match := step(args.pattern, args.regex)) is not None:
        print(_format_match(match))
        count += 1
    print(f"{count} match{'es' if count != 1 else ''}")
    return 0


def _run_replace(args: argparse.Namespace) -> int:
    console = Console(stderr=True)
    session = FindReplaceSession(load_backup(args.backup))
    target = Path(args.output) if args.output else Path(args.backup)

    if args.interactive:
        count = 0
        replaced_at: Cursor | None = None
        while (match := session.find_next(args.pattern, args.regex)) is not None:
            # An empty match right after a replacement is the spot just replaced.
            here = Cursor(match.scene_index, match.block_index, match.match_index)
            if match.match_length == 0 and here == replaced_at:
                continue
            replaced_at = None
            console.print(_format_match(match), markup=False, highlight=False, soft_wrap=True)
            if Confirm.ask("Replace this match?", console=console, default=True):
                session.replace_one(args.replacement)
                replaced_at = session.cursor
                count += 1
        if count and session.record is not None:
            dump_backup(session.record, target)
        print(f"Replaced {count} match{'es' if count != 1 else ''}")
        return 0

    result = session.replace_all(args.pattern, args.replacement, args.regex)
    _warn_diagnostics(console, result.diagnostics)
    if result.count:
        dump_backup(result.record, target)
    print(f"Replaced {result.count} match{'es' if result.count != 1 else ''}")
    return 0


_COMMANDS: dict[str, tuple[Callable[[], argparse.ArgumentParser], Callable[[argparse.Namespace], int]]] = {
    "epub-to-txt": (build_epub_to_txt_parser, _run_epub_to_txt),
    "chapters": (build_chapters_parser, _run_chapters),
    "split": (build_split_parser, _run_split),
    "txt-to-epub": (build_txt_to_epub_parser, _run_txt_to_epub),
    "backup": (build_backup_parser, _run_backup),
    "find": (build_find_parser, _run_find),
    "replace": (build_replace_parser, _run_replace),
}


def _error_message(exc: Exception) -> str:
    if isinstance(exc, StructureNotFoundError):
        return f"Not a readable EPUB package: {exc}"
    if isinstance(exc, TocNotFoundError):
        return f"No usable table of contents: {exc}"
    if isinstance(exc, ArchiveEntryNotFound):
        return f"Missing archive entry: {exc.args[0] if exc.args else exc}"
    if isinstance(exc, PatternError):
        return f"Invalid search pattern: {exc}"
    if isinstance(exc, NoActiveMatchError):
        return f"Nothing to replace: {exc}"
    if isinstance(exc, RecordStructureInvalidError):
        return f"Invalid backup file: {exc}"
    if isinstance(exc, EmptyBookError):
        return f"Nothing to write: {exc}"
    if isinstance(exc, CoverImageError):
        return f"Unusable cover image: {exc}"
    if isinstance(exc, zipfile.BadZipFile):
        return f"Not a zip archive: {exc}"
    return str(exc)


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    if argv and argv[0] in _COMMANDS:
        build, run = _COMMANDS[argv[0]]
        args = build().parse_args(argv[1:])
        set_debug_logging(bool(getattr(args, "debug", False)))
        try:
            return run(args)
        except (
            StructureNotFoundError,
            TocNotFoundError,
            ArchiveEntryNotFound,
            PatternError,
            NoActiveMatchError,
            RecordStructureInvalidError,
            EmptyBookError,
            CoverImageError,
            FileNotFoundError,
            ValueError,
            zipfile.BadZipFile,
        ) as exc:
            raise SystemExit(_error_message(exc)) from exc

    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    parser.parse_args(argv)
    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
