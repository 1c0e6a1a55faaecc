"""
Find and replace across the scenes of a project backup.

Positions are ``(scene, block, offset)`` triples over ``revisions[0].scenes``;
only ``text`` blocks are searched. A session keeps the cursor and the last
match between calls so searches resume where the previous one stopped.
"""

from __future__ import annotations

import copy
import re
import sys
from dataclasses import dataclass, field
from typing import Any, Iterator, Protocol

from .backup import (
    RecordStructureInvalidError,
    SceneDocument,
    SceneTextError,
    TextBlock,
    parse_scene_text,
    scenes_of,
    touch_record,
    validate_backup,
)
from .logging_utils import SCENE_UNPARSABLE, Diagnostic, debug_log, record

_FAR = sys.maxsize


class PatternError(ValueError):
    """Raised when a regular expression search pattern does not compile."""


class NoActiveMatchError(RuntimeError):
    """Raised when replace_one is called without a current match."""


@dataclass(frozen=True, order=True)
class Cursor:
    scene: int = 0
    block: int = 0
    offset: int = 0


ORIGIN = Cursor()


@dataclass(frozen=True)
class MatchResult:
    scene_index: int
    block_index: int
    match_index: int
    match_length: int
    chapter_title: str
    match_line: str


class Pattern(Protocol):
    def next_match_from(self, text: str, offset: int) -> tuple[int, int] | None:
        """Return ``(index, length)`` of the first match starting at or after ``offset``."""
        ...

    def substitute(self, text: str, replacement: str) -> tuple[str, int]:
        """Replace every match globally with ``replacement`` taken literally; return ``(text, count)``."""
        ...


class LiteralPattern:
    def __init__(self, needle: str) -> None:
        self.needle = needle

    def next_match_from(self, text: str, offset: int) -> tuple[int, int] | None:
        if not self.needle:
            return None
        index = text.find(self.needle, offset)
        if index == -1:
            return None
        return index, len(self.needle)

    def substitute(self, text: str, replacement: str) -> tuple[str, int]:
        if not self.needle:
            return text, 0
        count = text.count(self.needle)
        if not count:
            return text, 0
        return text.replace(self.needle, replacement), count


class RegexPattern:
    def __init__(self, source: str) -> None:
        try:
            self.regex = re.compile(source)
        except re.error as exc:
            raise PatternError(f"Invalid regular expression {source!r}: {exc}") from exc

    def next_match_from(self, text: str, offset: int) -> tuple[int, int] | None:
        match = self.regex.search(text, offset)
        if match is None:
            return None
        return match.start(), match.end() - match.start()

    def substitute(self, text: str, replacement: str) -> tuple[str, int]:
        return self.regex.subn(lambda _match: replacement, text)


def compile_pattern(pattern: str, is_regex: bool = False) -> Pattern:
    return RegexPattern(pattern) if is_regex else LiteralPattern(pattern)


def iter_matches(pattern: Pattern, text: str, end: int | None = None) -> Iterator[tuple[int, int]]:
    """
    Yield non-overlapping matches that start before ``end``.

    A match never starts at or past the end of the text. An empty match
    advances the scan by one character.
    """
    limit = len(text) if end is None else min(end, len(text))
    position = 0
    while position < limit:
        found = pattern.next_match_from(text, position)
        if found is None:
            return
        index, length = found
        if index >= limit:
            return
        yield index, length
        position = index + max(length, 1)


def first_match_from(pattern: Pattern, text: str, offset: int) -> tuple[int, int] | None:
    if offset >= len(text):
        return None
    found = pattern.next_match_from(text, offset)
    if found is None or found[0] >= len(text):
        return None
    return found


def _match_line(text: str, index: int) -> str:
    consumed = 0
    for line in text.split("\n"):
        if consumed <= index <= consumed + len(line):
            return line
        consumed += len(line) + 1
    return ""


def _chapter_title(scene: dict[str, Any], index: int) -> str:
    title = scene.get("title")
    return title if isinstance(title, str) and title else f"Scene {index + 1}"


@dataclass
class ReplaceAllResult:
    record: dict[str, Any]
    count: int
    diagnostics: list[Diagnostic] = field(default_factory=list)


class FindReplaceSession:
    """
    Cursor state for one loaded backup.

    ``cursor`` is ``None`` when unset; a backward search then starts at the
    end of the last scene. Replacements deep-copy the record and adopt the copy.
    """

    def __init__(self, record_data: dict[str, Any] | None = None) -> None:
        self.record: dict[str, Any] | None = None
        self.cursor: Cursor | None = ORIGIN
        self.last_match: MatchResult | None = None
        if record_data is not None:
            self.load(record_data)

    def load(self, record_data: dict[str, Any]) -> None:
        validate_backup(record_data)
        self.record = record_data
        self.cursor = ORIGIN
        self.last_match = None

    def reset(self) -> None:
        self.cursor = ORIGIN
        self.last_match = None

    def seek_end(self) -> None:
        self.cursor = None
        self.last_match = None

    def _scenes(self) -> list[dict[str, Any]]:
        if self.record is None:
            raise RecordStructureInvalidError("No backup loaded.")
        return scenes_of(self.record)

    @staticmethod
    def _scene_document(scene: Any, index: int) -> SceneDocument | None:
        if not isinstance(scene, dict):
            return None
        try:
            return parse_scene_text(scene.get("text"))
        except SceneTextError as exc:
            debug_log(f"skipping scene {index}: {exc}")
            return None

    def _positioned(self, scene: dict[str, Any], i: int, j: int, text: str, index: int, length: int) -> MatchResult:
        return MatchResult(
            scene_index=i,
            block_index=j,
            match_index=index,
            match_length=length,
            chapter_title=_chapter_title(scene, i),
            match_line=_match_line(text, index),
        )

    def find_next(self, pattern: str, is_regex: bool = False) -> MatchResult | None:
        matcher = compile_pattern(pattern, is_regex)
        scenes = self._scenes()
        start = self.cursor if self.cursor is not None and self.cursor.scene >= 0 else ORIGIN
        self.last_match = None
        if not pattern and not is_regex:
            return None
        for i in range(start.scene, len(scenes)):
            document = self._scene_document(scenes[i], i)
            if document is None:
                continue
            first_block = max(start.block, 0) if i == start.scene else 0
            for j in range(first_block, len(document.blocks)):
                block = document.blocks[j]
                if not isinstance(block, TextBlock):
                    continue
                offset = max(start.offset, 0) if (i == start.scene and j == start.block) else 0
                found = first_match_from(matcher, block.text, offset)
                if found is None:
                    continue
                index, length = found
                self.cursor = Cursor(i, j, index + max(length, 1))
                self.last_match = self._positioned(scenes[i], i, j, block.text, index, length)
                return self.last_match
        return None

    def find_previous(self, pattern: str, is_regex: bool = False) -> MatchResult | None:
        matcher = compile_pattern(pattern, is_regex)
        scenes = self._scenes()
        start = self.cursor
        if start is None or start.scene < 0 or start.scene >= len(scenes):
            start = Cursor(len(scenes) - 1, _FAR, _FAR)
        self.last_match = None
        if not pattern and not is_regex:
            return None
        for i in range(start.scene, -1, -1):
            document = self._scene_document(scenes[i], i)
            if document is None:
                continue
            last_block = len(document.blocks) - 1
            first_block = min(start.block, last_block) if i == start.scene else last_block
            for j in range(first_block, -1, -1):
                block = document.blocks[j]
                if not isinstance(block, TextBlock):
                    continue
                end = start.offset if (i == start.scene and j == start.block) else len(block.text)
                matches = list(iter_matches(matcher, block.text, end))
                if not matches:
                    continue
                index, length = matches[-1]
                self.cursor = Cursor(i, j, index)
                self.last_match = self._positioned(scenes[i], i, j, block.text, index, length)
                return self.last_match
        return None

    def replace_one(self, replacement: str) -> dict[str, Any]:
        match = self.last_match
        if match is None or self.record is None:
            raise NoActiveMatchError("No current match to replace. Search first.")
        updated = copy.deepcopy(self.record)
        scene = scenes_of(updated)[match.scene_index]
        document = parse_scene_text(scene["text"])
        block = document.blocks[match.block_index]
        if not isinstance(block, TextBlock):
            raise NoActiveMatchError("The current match no longer points at a text block.")
        block.text = (
            block.text[: match.match_index]
            + replacement
            + block.text[match.match_index + match.match_length :]
        )
        scene["text"] = document.to_json()
        self.record = updated
        self.cursor = Cursor(match.scene_index, match.block_index, match.match_index + len(replacement))
        self.last_match = None
        return updated

    def replace_all(self, pattern: str, replacement: str, is_regex: bool = False) -> ReplaceAllResult:
        matcher = compile_pattern(pattern, is_regex)
        if self.record is None:
            raise RecordStructureInvalidError("No backup loaded.")
        updated = copy.deepcopy(self.record)
        diagnostics: list[Diagnostic] = []
        total = 0
        if pattern or is_regex:
            for index, scene in enumerate(scenes_of(updated)):
                if not isinstance(scene, dict):
                    continue
                text = scene.get("text")
                if not isinstance(text, str) or not text.strip():
                    continue
                try:
                    document = parse_scene_text(text)
                except SceneTextError as exc:
                    record(diagnostics, SCENE_UNPARSABLE, _chapter_title(scene, index), str(exc))
                    continue
                scene_count = 0
                for block in document.blocks:
                    if isinstance(block, TextBlock) and block.text:
                        block.text, replaced = substitute_all(matcher, block.text, replacement)
                        scene_count += replaced
                if scene_count:
                    scene["text"] = document.to_json()
                    total += scene_count
        if total:
            touch_record(updated)
        self.record = updated
        self.reset()
        return ReplaceAllResult(record=updated, count=total, diagnostics=diagnostics)


def substitute_all(pattern: Pattern, text: str, replacement: str) -> tuple[str, int]:
    """
    Global substitution used by replace-all.

    Unlike the cursor searches, a zero-width match at the very end of the
    text counts, so ``$`` appends and ``\\b`` sees the final boundary.
    """
    return pattern.substitute(text, replacement)


__all__ = [
    "Cursor",
    "FindReplaceSession",
    "LiteralPattern",
    "MatchResult",
    "NoActiveMatchError",
    "ORIGIN",
    "Pattern",
    "PatternError",
    "RegexPattern",
    "ReplaceAllResult",
    "compile_pattern",
    "iter_matches",
    "substitute_all",
]
