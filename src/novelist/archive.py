"""Read-only access to the members of a zip container."""

from __future__ import annotations

import re
import zipfile
from pathlib import Path, PurePosixPath
from typing import Iterator, Mapping, Protocol, runtime_checkable

TEXT_EXTS = (".txt",)


class ArchiveEntryNotFound(KeyError):
    """Raised when a requested path is not present in the archive."""


@runtime_checkable
class ArchiveReader(Protocol):
    """Opaque path -> bytes store with enumeration.

    Paths are case-sensitive, forward-slash separated and never start with a slash.
    """

    def get(self, path: str) -> bytes:
        ...

    def list(self) -> Iterator[str]:
        ...


def normalize_member_path(path: str) -> str:
    return path.replace("\\", "/").lstrip("/")


class ZipArchive:
    """ArchiveReader backed by a zip file on disk."""

    def __init__(self, source: str | Path) -> None:
        self.source = Path(source)
        self._zf = zipfile.ZipFile(self.source, "r")
        self._names = {info.filename for info in self._zf.infolist() if not info.is_dir()}

    def get(self, path: str) -> bytes:
        name = normalize_member_path(path)
        if name not in self._names:
            raise ArchiveEntryNotFound(name)
        with self._zf.open(name, "r") as handle:
            return handle.read()

    def list(self) -> Iterator[str]:
        for info in self._zf.infolist():
            if not info.is_dir():
                yield info.filename

    def close(self) -> None:
        self._zf.close()

    def __enter__(self) -> "ZipArchive":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class MemoryArchive:
    """ArchiveReader backed by an in-memory mapping."""

    def __init__(self, entries: Mapping[str, bytes | str]) -> None:
        self._entries: dict[str, bytes] = {}
        for name, data in entries.items():
            payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
            self._entries[normalize_member_path(name)] = payload

    def get(self, path: str) -> bytes:
        name = normalize_member_path(path)
        try:
            return self._entries[name]
        except KeyError:
            raise ArchiveEntryNotFound(name) from None

    def list(self) -> Iterator[str]:
        return iter(list(self._entries))


def _natural_key(name: str) -> list[object]:
    parts = re.split(r"(\d+)", name.casefold())
    key: list[object] = []
    for part in parts:
        if part.isdigit():
            key.append((0, int(part), ""))
        else:
            key.append((1, 0, part))
    return key


def natural_sorted(names: list[str]) -> list[str]:
    return sorted(names, key=_natural_key)


def text_member_names(archive: ArchiveReader) -> list[str]:
    """Return the `.txt` members in natural (numeric-aware) order."""
    names = [name for name in archive.list() if name.lower().endswith(TEXT_EXTS)]
    return natural_sorted(names)


def read_text_members(archive: ArchiveReader) -> list[tuple[str, str]]:
    members: list[tuple[str, str]] = []
    for name in text_member_names(archive):
        raw = archive.get(name)
        members.append((name, raw.decode("utf-8", errors="replace")))
    return members


def member_stem(name: str) -> str:
    return PurePosixPath(name).stem


def sanitize_filename(name: str | None, fallback: str = "file") -> str:
    """Reduce ``name`` to letters, digits, ``.``, ``_`` and ``-`` for use in file names."""
    if not name:
        return fallback
    cleaned_chars: list[str] = []
    for ch in name:
        if ch.isalnum() or ch in "._-":
            cleaned_chars.append(ch)
        else:
            cleaned_chars.append("_")
    cleaned = re.sub(r"_+", "_", "".join(cleaned_chars))
    cleaned = cleaned.strip("_.-")[:100]
    return cleaned or fallback
