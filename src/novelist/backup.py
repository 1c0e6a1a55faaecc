"""
Project backup records.

A backup is a JSON object whose ``revisions[0].scenes[*].text`` fields are
themselves JSON documents (``{"blocks": [...]}``) stored as strings. Records
are kept as plain dicts so unknown fields survive a load/dump round trip.
"""

from __future__ import annotations

import copy
import json
import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Mapping, Union

from .archive import ArchiveReader, member_stem, read_text_members
from .logging_utils import BACKUP_UNREADABLE, Diagnostic, record

BACKUP_VERSION = 4
DEFAULT_STATUS_CODE = "1"
DEFAULT_STATUSES: list[dict[str, Any]] = [
    {"code": DEFAULT_STATUS_CODE, "title": "Todo", "color": -2697255, "ranking": 1},
]


class RecordStructureInvalidError(ValueError):
    """Raised when a backup is not JSON or lacks ``revisions[0].scenes``."""


class SceneTextError(ValueError):
    """Raised when a scene's text field is not a ``{"blocks": [...]}`` document."""


@dataclass
class TextBlock:
    text: str
    align: str = "left"
    payload: dict[str, Any] | None = None

    def to_payload(self) -> dict[str, Any]:
        if self.payload is None:
            return {"type": "text", "align": self.align, "text": self.text}
        data = dict(self.payload)
        data["text"] = self.text
        return data


@dataclass
class OpaqueBlock:
    """A block kind the editor stores but this package does not interpret."""

    payload: Any

    def to_payload(self) -> Any:
        return self.payload


Block = Union[TextBlock, OpaqueBlock]


def block_from_payload(payload: Any) -> Block:
    if isinstance(payload, Mapping) and payload.get("type") == "text" and isinstance(payload.get("text"), str):
        align = payload.get("align")
        return TextBlock(
            text=payload["text"],
            align=align if isinstance(align, str) else "left",
            payload=dict(payload),
        )
    return OpaqueBlock(payload)


@dataclass
class SceneDocument:
    blocks: list[Block]
    raw: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        data = dict(self.raw)
        data["blocks"] = [block.to_payload() for block in self.blocks]
        return serialize_json_compact(data)


def serialize_json_compact(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def parse_scene_text(text: Any) -> SceneDocument:
    if not isinstance(text, str) or not text.strip():
        raise SceneTextError("scene text is empty")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SceneTextError(f"scene text is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise SceneTextError("scene text is not a JSON object")
    blocks = data.get("blocks")
    if not isinstance(blocks, list):
        raise SceneTextError("scene text has no blocks list")
    return SceneDocument(blocks=[block_from_payload(item) for item in blocks], raw=data)


def parse_blocks(text: Any) -> list[Block]:
    return parse_scene_text(text).blocks


def serialize_blocks(blocks: Iterable[Block]) -> str:
    return SceneDocument(blocks=list(blocks)).to_json()


def empty_scene_text() -> str:
    return serialize_blocks([TextBlock(text="")])


def loads_backup(text: str) -> dict[str, Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise RecordStructureInvalidError(f"Backup is not valid JSON: {exc}") from exc
    validate_backup(data)
    return data


def load_backup(path: str | Path) -> dict[str, Any]:
    return loads_backup(Path(path).read_text(encoding="utf-8"))


def validate_backup(data: Any) -> None:
    if not isinstance(data, dict):
        raise RecordStructureInvalidError("Backup must be a JSON object.")
    revisions = data.get("revisions")
    if not isinstance(revisions, list) or not revisions or not isinstance(revisions[0], dict):
        raise RecordStructureInvalidError("Backup has no revisions.")
    if not isinstance(revisions[0].get("scenes"), list):
        raise RecordStructureInvalidError("Backup revision has no scenes list.")


def dumps_backup(data: Mapping[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2)


def dump_backup(data: Mapping[str, Any], path: str | Path) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(dumps_backup(data), encoding="utf-8")
    return target


def first_revision(data: Mapping[str, Any]) -> dict[str, Any]:
    return data["revisions"][0]


def scenes_of(data: Mapping[str, Any]) -> list[dict[str, Any]]:
    return first_revision(data)["scenes"]


def now_millis() -> int:
    return int(time.time() * 1000)


def generate_project_code() -> str:
    return uuid.uuid4().hex[:8]


def touch_record(data: dict[str, Any], timestamp: int | None = None) -> int:
    """Stamp the record and its first revision as modified now."""
    now = timestamp if timestamp is not None else now_millis()
    data["last_update_date"] = now
    data["last_backup_date"] = now
    revisions = data.get("revisions")
    if isinstance(revisions, list) and revisions and isinstance(revisions[0], dict):
        revisions[0]["date"] = now
    return now


def text_to_blocks(raw_text: str) -> list[TextBlock]:
    """Split chapter text on blank lines into text blocks separated by empty ones."""
    normalized = raw_text.replace("\r\n", "\n").replace("\r", "\n")
    segments = [segment.strip() for segment in re.split(r"\n{2,}", normalized)]
    segments = [segment for segment in segments if segment]
    blocks: list[TextBlock] = []
    for index, segment in enumerate(segments):
        blocks.append(TextBlock(text=segment))
        if index < len(segments) - 1:
            blocks.append(TextBlock(text=""))
    if not blocks:
        blocks.append(TextBlock(text=""))
    return blocks


def count_words(scenes: Iterable[Mapping[str, Any]]) -> int:
    total = 0
    for scene in scenes:
        try:
            blocks = parse_blocks(scene.get("text"))
        except SceneTextError:
            continue
        for block in blocks:
            if isinstance(block, TextBlock) and block.text.strip():
                total += len(block.text.split())
    return total


def make_scene(number: int, title: str, text: str | None = None) -> dict[str, Any]:
    return {
        "code": f"scene{number}",
        "title": title,
        "text": text if text is not None else empty_scene_text(),
        "ranking": number,
        "status": DEFAULT_STATUS_CODE,
    }


def make_section(number: int, title: str, scene_code: str) -> dict[str, Any]:
    return {
        "code": f"section{number}",
        "title": title,
        "synopsis": "",
        "ranking": number,
        "section_scenes": [{"code": scene_code, "ranking": 1}],
    }


def _book_progress(word_count: int) -> dict[str, int]:
    today = datetime.now()
    return {"year": today.year, "month": today.month, "day": today.day, "word_count": word_count}


def build_backup(
    title: str,
    scenes: list[dict[str, Any]],
    sections: list[dict[str, Any]],
    *,
    description: str = "",
    code: str | None = None,
    show_table_of_contents: bool = True,
    apply_automatic_indentation: bool = True,
    statuses: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    now = now_millis()
    return {
        "version": BACKUP_VERSION,
        "code": code or generate_project_code(),
        "title": title,
        "description": description,
        "show_table_of_contents": show_table_of_contents,
        "apply_automatic_indentation": apply_automatic_indentation,
        "last_update_date": now,
        "last_backup_date": now,
        "revisions": [
            {
                "number": 1,
                "date": now,
                "book_progresses": [_book_progress(count_words(scenes))],
                "statuses": copy.deepcopy(statuses) if statuses else copy.deepcopy(DEFAULT_STATUSES),
                "scenes": scenes,
                "sections": sections,
            }
        ],
    }


def new_backup(
    title: str,
    chapters: int,
    *,
    prefix: str = "",
    **options: Any,
) -> dict[str, Any]:
    """Create a backup scaffold with ``chapters`` empty scenes."""
    if not title or chapters < 1:
        raise ValueError("Project title and at least 1 chapter are required.")
    scenes: list[dict[str, Any]] = []
    sections: list[dict[str, Any]] = []
    for number in range(1, chapters + 1):
        chapter_title = f"{prefix}{number}" if prefix else str(number)
        scene = make_scene(number, chapter_title)
        scenes.append(scene)
        sections.append(make_section(number, chapter_title, scene["code"]))
    return build_backup(title, scenes, sections, **options)


def backup_from_text_archive(
    archive: ArchiveReader,
    title: str,
    **options: Any,
) -> dict[str, Any]:
    """Create a backup with one scene per ``.txt`` member, in natural name order."""
    if not title:
        raise ValueError("Project title is required.")
    scenes: list[dict[str, Any]] = []
    sections: list[dict[str, Any]] = []
    for number, (name, text) in enumerate(read_text_members(archive), start=1):
        chapter_title = member_stem(name)
        scene = make_scene(number, chapter_title, serialize_blocks(text_to_blocks(text)))
        scenes.append(scene)
        sections.append(make_section(number, chapter_title, scene["code"]))
    if not scenes:
        raise ValueError("No .txt files found in the archive.")
    return build_backup(title, scenes, sections, **options)


def extend_backup(data: Mapping[str, Any], extra_chapters: int, *, prefix: str = "") -> dict[str, Any]:
    """Return a copy of ``data`` with ``extra_chapters`` empty scenes appended."""
    extended = copy.deepcopy(dict(data))
    validate_backup(extended)
    revision = first_revision(extended)
    if not isinstance(revision.get("sections"), list):
        raise RecordStructureInvalidError("Backup revision has no sections list.")
    scenes = revision["scenes"]
    sections = revision["sections"]
    scene_count = len(scenes)
    section_count = len(sections)
    for offset in range(1, extra_chapters + 1):
        scene_number = scene_count + offset
        chapter_title = f"{prefix}{scene_number}" if prefix else f"Chapter {scene_number}"
        scene = make_scene(scene_number, chapter_title)
        scenes.append(scene)
        sections.append(make_section(section_count + offset, chapter_title, scene["code"]))
    touch_record(extended)
    return extended


@dataclass
class MergeResult:
    record: dict[str, Any]
    diagnostics: list[Diagnostic]


def merge_backups(
    sources: Iterable[tuple[str, str]],
    title: str,
    *,
    description: str = "",
    prefix: str = "",
) -> MergeResult:
    """
    Concatenate the first revision of several backups into one new record.

    ``sources`` yields ``(name, json_text)`` pairs; unreadable ones are skipped
    with a diagnostic. Scenes and sections are renumbered in order.
    """
    if not title:
        raise ValueError("New project title is required for merging.")
    diagnostics: list[Diagnostic] = []
    scenes: list[dict[str, Any]] = []
    sections: list[dict[str, Any]] = []
    statuses: list[dict[str, Any]] | None = None
    for name, text in sources:
        try:
            data = loads_backup(text)
        except RecordStructureInvalidError as exc:
            record(diagnostics, BACKUP_UNREADABLE, name, str(exc))
            continue
        revision = first_revision(data)
        scenes.extend(revision["scenes"])
        if isinstance(revision.get("sections"), list):
            sections.extend(revision["sections"])
        if statuses is None and revision.get("statuses"):
            statuses = revision["statuses"]
    if not scenes:
        raise ValueError("No valid chapters found in the selected backups.")
    for number, scene in enumerate(scenes, start=1):
        scene["code"] = f"scene{number}"
        scene["title"] = f"{prefix}{number}" if prefix else (scene.get("title") or f"Chapter {number}")
        scene["ranking"] = number
    for number, section in enumerate(sections, start=1):
        section["code"] = f"section{number}"
        section["title"] = f"{prefix}{number}" if prefix else (section.get("title") or f"Chapter {number}")
        section["ranking"] = number
        section_scenes = section.get("section_scenes")
        if isinstance(section_scenes, list) and section_scenes and isinstance(section_scenes[0], dict):
            section_scenes[0]["code"] = f"scene{number}"
            section_scenes[0]["ranking"] = 1
        elif isinstance(section_scenes, list):
            section["section_scenes"] = [{"code": f"scene{number}", "ranking": 1}]
    merged = build_backup(title, scenes, sections, description=description, statuses=statuses)
    return MergeResult(record=merged, diagnostics=diagnostics)


__all__ = [
    "BACKUP_VERSION",
    "Block",
    "MergeResult",
    "OpaqueBlock",
    "RecordStructureInvalidError",
    "SceneDocument",
    "SceneTextError",
    "TextBlock",
    "backup_from_text_archive",
    "count_words",
    "dump_backup",
    "dumps_backup",
    "empty_scene_text",
    "extend_backup",
    "load_backup",
    "loads_backup",
    "merge_backups",
    "new_backup",
    "parse_blocks",
    "parse_scene_text",
    "scenes_of",
    "serialize_blocks",
    "text_to_blocks",
    "touch_record",
]
