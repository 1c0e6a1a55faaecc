from __future__ import annotations

import io
import re
import uuid
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone
from html import escape
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from .archive import ArchiveReader, ZipArchive, member_stem, read_text_members, sanitize_filename
from .logging_utils import debug_log

EPUB_MIMETYPE = "application/epub+zip"
XHTML_MEDIA_TYPE = "application/xhtml+xml"
NCX_MEDIA_TYPE = "application/x-dtbncx+xml"

_COVER_FORMATS = {
    "JPEG": (".jpg", "image/jpeg"),
    "PNG": (".png", "image/png"),
}

STYLESHEET = (
    "body { font-family: sans-serif; line-height: 1.5; margin: 1em; }\n"
    "h1, h2, h3 { text-align: center; }\n"
    "p { text-indent: 1.5em; margin-top: 0; margin-bottom: 0.5em; }\n"
    ".cover { text-align: center; margin-top: 20%; }\n"
    ".cover img { max-width: 80%; max-height: 80vh; }\n"
)

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""


class CoverImageError(ValueError):
    """Raised when the cover image is not a readable JPEG or PNG."""


@dataclass
class CoverImage:
    data: bytes
    extension: str
    media_type: str


@dataclass
class EpubChapter:
    title: str
    basename: str
    text: str

    @property
    def href(self) -> str:
        return f"text/{self.basename}.xhtml"


@dataclass
class EpubReport:
    output_path: Path
    title: str
    chapters: list[EpubChapter]


def load_cover_image(data: bytes) -> CoverImage:
    try:
        with Image.open(io.BytesIO(data)) as img:
            image_format = img.format
            img.verify()
    except (UnidentifiedImageError, OSError) as exc:
        raise CoverImageError(f"Cover image could not be read: {exc}") from exc
    if image_format not in _COVER_FORMATS:
        raise CoverImageError(f"Cover image must be JPEG or PNG (got {image_format}).")
    extension, media_type = _COVER_FORMATS[image_format]
    return CoverImage(data=data, extension=extension, media_type=media_type)


def text_to_xhtml(text: str, title: str, language: str = "en") -> str:
    """Render chapter text as an XHTML page: a heading plus one ``<p>`` per paragraph."""
    paragraphs = re.split(r"\n\n+", text.replace("\r\n", "\n"))
    body = [f"<h2>{escape(title)}</h2>"]
    for paragraph in paragraphs:
        stripped = paragraph.strip()
        if stripped:
            body.append(f"    <p>{escape(stripped)}</p>")
    content = "\n".join(body)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops" xml:lang="{escape(language)}">
<head>
  <title>{escape(title)}</title>
  <link rel="stylesheet" type="text/css" href="../css/style.css" />
</head>
<body>
  <section epub:type="chapter" aria-label="{escape(title)}">
{content}
  </section>
</body>
</html>
"""


def _chapter_basename(index: int, name: str, used_names: set[str]) -> str:
    base = re.sub(r"[^A-Za-z0-9_-]", "_", member_stem(name)) or f"chapter_{index + 1}"
    candidate = base
    suffix = 1
    while candidate in used_names:
        suffix += 1
        candidate = f"{base}_{suffix}"
    used_names.add(candidate)
    return candidate


def collect_chapters(archive: ArchiveReader) -> list[EpubChapter]:
    used_names: set[str] = set()
    chapters: list[EpubChapter] = []
    for index, (name, text) in enumerate(read_text_members(archive)):
        chapters.append(
            EpubChapter(
                title=member_stem(name).replace("_", " "),
                basename=_chapter_basename(index, name, used_names),
                text=text,
            )
        )
    return chapters


def _nav_document(chapters: list[EpubChapter], language: str, has_cover: bool) -> str:
    items = "\n      ".join(
        f'<li><a href="{chapter.href}">{escape(chapter.title)}</a></li>' for chapter in chapters
    )
    cover_landmark = '<li><a epub:type="cover" href="text/cover.xhtml">Cover</a></li>' if has_cover else ""
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops" xml:lang="{escape(language)}">
<head><title>Table of Contents</title><link rel="stylesheet" type="text/css" href="css/style.css"/></head>
<body>
  <nav epub:type="toc" id="toc"><h1>Table of Contents</h1>
    <ol>
      {items}
    </ol>
  </nav>
  <nav epub:type="landmarks" hidden="hidden"><ol>{cover_landmark}<li><a epub:type="toc" href="nav.xhtml">Table of Contents</a></li><li><a epub:type="bodymatter" href="{chapters[0].href}">Start Reading</a></li></ol></nav>
</body>
</html>
"""


def _ncx_document(chapters: list[EpubChapter], title: str, book_id: str) -> str:
    points = "\n    ".join(
        f'<navPoint id="navpoint-{order}" playOrder="{order}"><navLabel><text>{escape(chapter.title)}</text></navLabel>'
        f'<content src="{chapter.href}"/></navPoint>'
        for order, chapter in enumerate(chapters, start=1)
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <head>
    <meta name="dtb:uid" content="{book_id}"/>
    <meta name="dtb:depth" content="1"/>
    <meta name="dtb:totalPageCount" content="0"/>
    <meta name="dtb:maxPageNumber" content="0"/>
  </head>
  <docTitle><text>{escape(title)}</text></docTitle>
  <navMap>
    {points}
  </navMap>
</ncx>
"""


def _cover_page(cover_name: str, language: str) -> str:
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops" xml:lang="{escape(language)}">
<head><title>Cover</title><link rel="stylesheet" type="text/css" href="../css/style.css" /></head>
<body><section epub:type="cover" class="cover"><img src="../images/{cover_name}" alt="Cover Image"/></section></body>
</html>
"""


def _package_document(
    chapters: list[EpubChapter],
    *,
    title: str,
    author: str,
    language: str,
    book_id: str,
    cover: CoverImage | None,
) -> str:
    manifest = [
        '<item id="css" href="css/style.css" media-type="text/css"/>',
        f'<item id="nav" href="nav.xhtml" media-type="{XHTML_MEDIA_TYPE}" properties="nav"/>',
    ]
    spine: list[str] = []
    if cover is not None:
        manifest.append(
            f'<item id="cover-image" href="images/cover{cover.extension}" media-type="{cover.media_type}" properties="cover-image"/>'
        )
        manifest.append(f'<item id="cover-page" href="text/cover.xhtml" media-type="{XHTML_MEDIA_TYPE}"/>')
        spine.append('<itemref idref="cover-page" linear="no"/>')
    for index, chapter in enumerate(chapters, start=1):
        manifest.append(f'<item id="chapter-{index}" href="{chapter.href}" media-type="{XHTML_MEDIA_TYPE}"/>')
        spine.append(f'<itemref idref="chapter-{index}" linear="yes"/>')
    manifest.append(f'<item id="ncx" href="toc.ncx" media-type="{NCX_MEDIA_TYPE}"/>')
    modified = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    cover_meta = '\n    <meta name="cover" content="cover-image"/>' if cover is not None else ""
    manifest_xml = "\n    ".join(manifest)
    spine_xml = "\n    ".join(spine)
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<package xmlns="http://www.idpf.org/2007/opf" unique-identifier="BookId" version="3.0">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/" xmlns:opf="http://www.idpf.org/2007/opf">
    <dc:identifier id="BookId">{book_id}</dc:identifier>
    <dc:title>{escape(title)}</dc:title>
    <dc:language>{escape(language)}</dc:language>
    <dc:creator id="creator">{escape(author)}</dc:creator>
    <meta property="dcterms:modified">{modified}</meta>{cover_meta}
  </metadata>
  <manifest>
    {manifest_xml}
  </manifest>
  <spine toc="ncx">
    {spine_xml}
  </spine>
</package>
"""


def build_epub(
    chapters: list[EpubChapter],
    output_path: Path,
    *,
    title: str = "Untitled EPUB",
    author: str = "Unknown Author",
    language: str = "en",
    cover: CoverImage | None = None,
) -> Path:
    if not chapters:
        raise ValueError("No chapters to write.")
    title = title.strip() or "Untitled EPUB"
    author = author.strip() or "Unknown Author"
    language = language.strip() or "en"
    book_id = f"urn:uuid:{uuid.uuid4()}"
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(output_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(zipfile.ZipInfo("mimetype"), EPUB_MIMETYPE, compress_type=zipfile.ZIP_STORED)
        zf.writestr("META-INF/container.xml", CONTAINER_XML)
        zf.writestr("OEBPS/css/style.css", STYLESHEET)
        if cover is not None:
            zf.writestr(f"OEBPS/images/cover{cover.extension}", cover.data)
            zf.writestr("OEBPS/text/cover.xhtml", _cover_page(f"cover{cover.extension}", language))
        for chapter in chapters:
            zf.writestr(f"OEBPS/{chapter.href}", text_to_xhtml(chapter.text, chapter.title, language))
        zf.writestr("OEBPS/nav.xhtml", _nav_document(chapters, language, cover is not None))
        zf.writestr("OEBPS/toc.ncx", _ncx_document(chapters, title, book_id))
        zf.writestr(
            "OEBPS/content.opf",
            _package_document(
                chapters,
                title=title,
                author=author,
                language=language,
                book_id=book_id,
                cover=cover,
            ),
        )
    debug_log(f"wrote {len(chapters)} chapters to {output_path}")
    return output_path


def text_archive_to_epub(
    source: str | Path,
    output_path: str | Path | None = None,
    *,
    title: str = "Untitled EPUB",
    author: str = "Unknown Author",
    language: str = "en",
    cover_path: str | Path | None = None,
) -> EpubReport:
    """Build an EPUB from the ``.txt`` members of a zip, in natural name order."""
    source_path = Path(source)
    with ZipArchive(source_path) as archive:
        chapters = collect_chapters(archive)
    if not chapters:
        raise ValueError("No .txt files found in the uploaded ZIP.")
    cover = load_cover_image(Path(cover_path).read_bytes()) if cover_path else None
    resolved_title = title.strip() or "Untitled EPUB"
    if output_path is None:
        target = source_path.with_name(f"{sanitize_filename(resolved_title, fallback='generated_epub')}.epub")
    else:
        target = Path(output_path)
    build_epub(chapters, target, title=resolved_title, author=author, language=language, cover=cover)
    return EpubReport(output_path=target, title=resolved_title, chapters=chapters)


__all__ = [
    "CoverImage",
    "CoverImageError",
    "EpubChapter",
    "EpubReport",
    "build_epub",
    "collect_chapters",
    "load_cover_image",
    "text_archive_to_epub",
    "text_to_xhtml",
]
