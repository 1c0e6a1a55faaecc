"""
Resolve the ordered chapter list of an EPUB package.

container.xml -> package descriptor (.opf) -> table of contents (nav.xhtml or
toc.ncx) -> deduplicated chapter references with archive-absolute paths.
"""

from __future__ import annotations

import enum
import unicodedata
import warnings
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Protocol
from urllib.parse import unquote

from bs4 import BeautifulSoup, FeatureNotFound, Tag, XMLParsedAsHTMLWarning  # type: ignore

from .archive import ArchiveEntryNotFound, ArchiveReader, normalize_member_path
from .logging_utils import debug_log

CONTAINER_PATH = "META-INF/container.xml"
DC_NS = "http://purl.org/dc/elements/1.1/"


class StructureNotFoundError(RuntimeError):
    """Raised when the container or package descriptor is missing or unparsable."""


class TocNotFoundError(RuntimeError):
    """Raised when no usable table of contents can be located."""


class TocKind(enum.Enum):
    NAV = "nav"
    NCX = "ncx"


@dataclass(frozen=True)
class ChapterRef:
    title: str
    path: str


@dataclass
class ManifestItem:
    id: str
    href: str
    media_type: str | None = None
    properties: frozenset[str] = frozenset()


@dataclass
class PackageDocument:
    path: str
    manifest: dict[str, ManifestItem]
    spine: list[str] = field(default_factory=list)
    spine_toc: str | None = None
    title: str | None = None
    author: str | None = None
    language: str | None = None

    @property
    def base_dir(self) -> str:
        return _parent_dir(self.path)


@dataclass(frozen=True)
class TocReference:
    href: str
    kind: TocKind


@dataclass
class BookStructure:
    package: PackageDocument
    toc_path: str
    toc_kind: TocKind
    chapters: list[ChapterRef]


def _strip_tag(tag: str) -> str:
    return tag.split("}", 1)[-1] if "}" in tag else tag


def _get_attr(elem: ET.Element, name: str) -> str | None:
    for attr, value in elem.attrib.items():
        if _strip_tag(attr) == name:
            return value
    return None


def _iter_local(root: ET.Element, name: str):
    for elem in root.iter():
        if isinstance(elem.tag, str) and _strip_tag(elem.tag) == name:
            yield elem


def _first_local(root: ET.Element, name: str) -> ET.Element | None:
    return next(_iter_local(root, name), None)


def _parent_dir(path: str) -> str:
    parent = str(PurePosixPath(path).parent)
    return "" if parent in (".", "/") else parent


def _split_href_fragment(href: str) -> str:
    return href.split("#", 1)[0]


def resolve_path(href: str, base_dir: str) -> str:
    """
    Resolve ``href`` against ``base_dir`` into an archive-absolute path.

    A rooted href is used as-is (minus the leading slash); a relative one is
    joined to the base and ``.``/``..`` segments are collapsed. Percent-escapes
    are decoded.
    """
    if not href:
        return ""
    decoded = unquote(href)
    if decoded.startswith("/"):
        combined = decoded
    elif base_dir:
        combined = f"{base_dir}/{decoded}"
    else:
        combined = decoded
    segments: list[str] = []
    for segment in combined.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if segments:
                segments.pop()
            continue
        segments.append(segment)
    return "/".join(segments)


def _parse_xml(data: bytes, path: str, error: type[RuntimeError]) -> ET.Element:
    try:
        return ET.fromstring(data)
    except ET.ParseError as exc:
        raise error(f"Could not parse XML at {path}: {exc}") from exc


def find_package_path(archive: ArchiveReader) -> str:
    """Return the package descriptor path declared by the container descriptor."""
    try:
        container = archive.get(CONTAINER_PATH)
    except ArchiveEntryNotFound as exc:
        raise StructureNotFoundError(f"Container descriptor not found: {CONTAINER_PATH}") from exc
    root = _parse_xml(container, CONTAINER_PATH, StructureNotFoundError)
    for rootfile in _iter_local(root, "rootfile"):
        full_path = rootfile.attrib.get("full-path")
        if full_path:
            return normalize_member_path(full_path)
    raise StructureNotFoundError(f"No rootfile declared in {CONTAINER_PATH}")


def _dc_text(root: ET.Element, name: str) -> list[str]:
    values: list[str] = []
    for elem in root.iter(f"{{{DC_NS}}}{name}"):
        text = unicodedata.normalize("NFKC", "".join(elem.itertext())).strip()
        if text:
            values.append(text)
    return values


def _package_author(root: ET.Element) -> str | None:
    authors: list[str] = []
    for creator in root.iter(f"{{{DC_NS}}}creator"):
        name = unicodedata.normalize("NFKC", "".join(creator.itertext())).strip()
        if not name:
            continue
        role = _get_attr(creator, "role")
        if role and role.lower() not in {"aut", "author"}:
            continue
        if name not in authors:
            authors.append(name)
    return ", ".join(authors) if authors else None


def read_package(archive: ArchiveReader, path: str) -> PackageDocument:
    try:
        data = archive.get(path)
    except ArchiveEntryNotFound as exc:
        raise StructureNotFoundError(f"Package descriptor not found: {path}") from exc
    root = _parse_xml(data, path, StructureNotFoundError)
    manifest: dict[str, ManifestItem] = {}
    manifest_elem = _first_local(root, "manifest")
    if manifest_elem is not None:
        for item in manifest_elem:
            if not isinstance(item.tag, str) or _strip_tag(item.tag) != "item":
                continue
            item_id = item.attrib.get("id")
            href = item.attrib.get("href")
            if not item_id or not href or item_id in manifest:
                continue
            manifest[item_id] = ManifestItem(
                id=item_id,
                href=href,
                media_type=item.attrib.get("media-type"),
                properties=frozenset((item.attrib.get("properties") or "").split()),
            )
    spine: list[str] = []
    spine_toc: str | None = None
    spine_elem = _first_local(root, "spine")
    if spine_elem is not None:
        spine_toc = spine_elem.attrib.get("toc") or None
        for itemref in _iter_local(spine_elem, "itemref"):
            idref = itemref.attrib.get("idref")
            if idref:
                spine.append(idref)
    titles = _dc_text(root, "title")
    languages = _dc_text(root, "language")
    return PackageDocument(
        path=path,
        manifest=manifest,
        spine=spine,
        spine_toc=spine_toc,
        title=titles[0] if titles else None,
        author=_package_author(root),
        language=languages[0] if languages else None,
    )


def locate_toc(package: PackageDocument) -> TocReference:
    """Find the table of contents: a ``nav`` manifest item first, then the spine ``toc`` id."""
    for item in package.manifest.values():
        if "nav" in item.properties:
            return TocReference(href=item.href, kind=TocKind.NAV)
    if package.spine_toc:
        item = package.manifest.get(package.spine_toc)
        if item is not None:
            return TocReference(href=item.href, kind=TocKind.NCX)
        debug_log(f"spine toc id {package.spine_toc!r} is not in the manifest")
    raise TocNotFoundError(f"No table of contents (nav or NCX) declared in {package.path}")


class TocParser(Protocol):
    kind: TocKind

    def parse(self, data: bytes, path: str) -> list[tuple[str, str]]:
        """Return ordered ``(label, href)`` pairs with fragments removed."""
        ...


class NcxTocParser:
    """Legacy NCX: every ``navPoint`` under ``navMap`` in document order."""

    kind = TocKind.NCX

    def parse(self, data: bytes, path: str) -> list[tuple[str, str]]:
        root = _parse_xml(data, path, TocNotFoundError)
        nav_map = _first_local(root, "navMap")
        if nav_map is None:
            return []
        entries: list[tuple[str, str]] = []
        for nav_point in _iter_local(nav_map, "navPoint"):
            label = ""
            nav_label = next(
                (child for child in nav_point if isinstance(child.tag, str) and _strip_tag(child.tag) == "navLabel"),
                None,
            )
            if nav_label is not None:
                text_elem = next(
                    (child for child in nav_label if isinstance(child.tag, str) and _strip_tag(child.tag) == "text"),
                    None,
                )
                if text_elem is not None:
                    label = "".join(text_elem.itertext()).strip()
            content = _first_local(nav_point, "content")
            src = content.attrib.get("src") if content is not None else None
            if label and src:
                entries.append((label, _split_href_fragment(src)))
        return entries


def _soup_from_markup(data: bytes) -> BeautifulSoup:
    for parser in ("lxml", "html.parser"):
        try:
            with warnings.catch_warnings():
                warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)
                return BeautifulSoup(data, parser)
        except FeatureNotFound:
            continue
    return BeautifulSoup(data, "html.parser")


def _is_toc_nav(nav: Tag) -> bool:
    nav_type = (nav.get("epub:type") or "").lower().split()
    role = (nav.get("role") or "").lower()
    classes = [value.lower() for value in (nav.get("class") or [])]
    return "toc" in nav_type or role == "doc-toc" or nav.get("id") == "toc" or "toc" in classes


class NavTocParser:
    """EPUB 3 navigation document: top-level ``li > a`` of the toc list."""

    kind = TocKind.NAV

    def parse(self, data: bytes, path: str) -> list[tuple[str, str]]:
        soup = _soup_from_markup(data)
        toc_list: Tag | None = None
        for nav in soup.find_all("nav"):
            if _is_toc_nav(nav):
                toc_list = nav.find("ol")
                if toc_list is not None:
                    break
        if toc_list is None:
            body = soup.find("body") or soup
            toc_list = body.find("ol")
        if toc_list is None:
            debug_log(f"no toc list found in {path}")
            return []
        entries: list[tuple[str, str]] = []
        for item in toc_list.find_all("li", recursive=False):
            for anchor in item.find_all("a", href=True, recursive=False):
                label = " ".join(anchor.get_text().split())
                href = anchor.get("href") or ""
                if label and href:
                    entries.append((label, _split_href_fragment(href)))
        return entries


TOC_PARSERS: dict[TocKind, TocParser] = {
    TocKind.NAV: NavTocParser(),
    TocKind.NCX: NcxTocParser(),
}


def deduplicate_chapters(chapters: list[ChapterRef]) -> list[ChapterRef]:
    unique: list[ChapterRef] = []
    seen: set[str] = set()
    for chapter in chapters:
        if chapter.path and chapter.path not in seen:
            unique.append(chapter)
            seen.add(chapter.path)
    return unique


def resolve_book(archive: ArchiveReader) -> BookStructure:
    package_path = find_package_path(archive)
    package = read_package(archive, package_path)
    toc = locate_toc(package)
    toc_path = resolve_path(toc.href, package.base_dir)
    try:
        toc_data = archive.get(toc_path)
    except ArchiveEntryNotFound as exc:
        raise TocNotFoundError(f"Table of contents file not found: {toc_path}") from exc
    parser = TOC_PARSERS[toc.kind]
    toc_dir = _parent_dir(toc_path)
    chapters = [
        ChapterRef(title=label, path=resolve_path(href, toc_dir))
        for label, href in parser.parse(toc_data, toc_path)
    ]
    chapters = deduplicate_chapters(chapters)
    debug_log(f"resolved {len(chapters)} chapters from {toc_path} ({toc.kind.value})")
    return BookStructure(package=package, toc_path=toc_path, toc_kind=toc.kind, chapters=chapters)


def resolve_chapter_list(archive: ArchiveReader) -> list[ChapterRef]:
    """
    Return the deduplicated chapter references of an EPUB in ToC order.

    An empty list is not an error here; callers decide.
    """
    return resolve_book(archive).chapters


__all__ = [
    "BookStructure",
    "ChapterRef",
    "ManifestItem",
    "NavTocParser",
    "NcxTocParser",
    "PackageDocument",
    "StructureNotFoundError",
    "TocKind",
    "TocNotFoundError",
    "TocReference",
    "deduplicate_chapters",
    "find_package_path",
    "locate_toc",
    "read_package",
    "resolve_book",
    "resolve_chapter_list",
    "resolve_path",
]
