"""Parsing interfaces and concrete parsers for heterogeneous inputs."""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag

from knowledge_qa.errors import ValidationError
from knowledge_qa.types import ParsedSource, SourceType, TranscriptSegment

_YOUTUBE_ID_PATTERNS = (
    re.compile(r"(?:youtube\.com/watch\?v=)([a-zA-Z0-9_-]{11})"),
    re.compile(r"(?:youtu\.be/)([a-zA-Z0-9_-]{11})"),
    re.compile(r"(?:youtube\.com/embed/)([a-zA-Z0-9_-]{11})"),
    re.compile(r"(?:youtube\.com/shorts/)([a-zA-Z0-9_-]{11})"),
)
_BARE_VIDEO_ID = re.compile(r"^[a-zA-Z0-9_-]{11}$")
_NAV_TEXT = re.compile(r"^(home|about|contact|sign in|log in|subscribe|share|tweet|follow)", re.I)


class Parser(ABC):
    """Base parser interface used by the ingest pipeline."""

    extensions: tuple[str, ...] = ()

    @abstractmethod
    def parse(self, path: Path, *, source_name: str | None = None) -> ParsedSource:
        """Parse a file into normalized text + metadata."""


class TextParser(Parser):
    """Parser for plain text and markdown documents."""

    extensions = (".txt", ".md", ".markdown")

    def parse(self, path: Path, *, source_name: str | None = None) -> ParsedSource:
        text = path.read_text(encoding="utf-8")
        return ParsedSource(
            source_name=source_name or path.name,
            source_type=SourceType.DOCUMENT,
            pages=[text],
            metadata={"format": path.suffix.lstrip(".").lower() or "text"},
        )


class PdfParser(Parser):
    """Parser for PDF documents; one text entry per page."""

    extensions = (".pdf",)

    def parse(self, path: Path, *, source_name: str | None = None) -> ParsedSource:
        try:
            import fitz
        except ImportError as exc:  # pragma: no cover - import path is environment-dependent
            raise RuntimeError("PDF support is not available. Install pymupdf.") from exc

        with fitz.open(str(path)) as doc:
            pages = [page.get_text() for page in doc]

        text_length = sum(len(page) for page in pages)
        page_count = max(1, len(pages))
        return ParsedSource(
            source_name=source_name or path.name,
            source_type=SourceType.DOCUMENT,
            pages=pages,
            metadata={
                "format": "pdf",
                "page_count": page_count,
                "likely_scanned": text_length / page_count < 100,
            },
        )


class TranscriptParser(Parser):
    """Parser for transcript JSON files.

    Accepts YouTube-style segments (`offset`/`duration` in milliseconds) or
    Whisper-style segments (`start`/`end` in seconds).
    """

    extensions = (".json",)

    def __init__(self, source_type: SourceType = SourceType.VIDEO) -> None:
        self.source_type = source_type

    def parse(self, path: Path, *, source_name: str | None = None) -> ParsedSource:
        payload: Any = json.loads(path.read_text(encoding="utf-8"))
        items = payload.get("segments", []) if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            raise ValidationError(f"Transcript file has no segment list: {path}")
        return ParsedSource(
            source_name=source_name or path.stem,
            source_type=self.source_type,
            segments=parse_transcript_segments(items),
            metadata={"format": "transcript"},
        )


class ParserRegistry:
    """Maps file extension to parser implementation."""

    def __init__(self, parsers: list[Parser] | None = None) -> None:
        self._parsers: dict[str, Parser] = {}
        for parser in parsers or [TextParser(), PdfParser(), TranscriptParser()]:
            self.register(parser)

    def register(self, parser: Parser) -> None:
        for extension in parser.extensions:
            self._parsers[extension.lower()] = parser

    def parse_path(self, path: str | Path, *, source_name: str | None = None) -> ParsedSource:
        file_path = Path(path)
        parser = self._parsers.get(file_path.suffix.lower())
        if parser is None:
            raise ValidationError(f"No parser registered for extension: {file_path.suffix}")
        return parser.parse(file_path, source_name=source_name)


def parse_transcript_segments(items: list[dict[str, Any]]) -> list[TranscriptSegment]:
    segments: list[TranscriptSegment] = []
    for item in items:
        text = str(item.get("text", ""))
        if "offset" in item:
            start = float(item["offset"]) / 1000.0
            duration = float(item.get("duration", 0.0)) / 1000.0
        else:
            start = float(item.get("start", 0.0))
            duration = float(item.get("end", start)) - start
        segments.append(TranscriptSegment(text=text, start=start, duration=max(0.0, duration)))
    return segments


_REMOVE_SELECTORS = (
    "script", "style", "noscript", "iframe", "svg", "canvas",
    "nav", "footer", "header", "aside", "form",
    ".nav", ".navbar", ".navigation", ".menu", ".sidebar",
    ".footer", ".header", ".advertisement", ".ad", ".ads",
    ".social", ".share", ".sharing", ".related", ".recommended",
    ".comments", ".comment", "#comments", ".newsletter",
    ".cookie", ".popup", ".modal", ".overlay", ".banner",
    '[role="navigation"]', '[role="banner"]', '[role="contentinfo"]',
    ".skip-link", ".breadcrumb", ".pagination",
)
_MAIN_CONTENT_SELECTORS = (
    "article", "main", '[role="main"]',
    ".post-content", ".article-content", ".entry-content",
    ".content", ".post", ".article", ".story",
    "#content", "#main", "#article",
)
_STRUCTURE_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6", "p", "li", "blockquote", "pre", "code"]
# Below this, structured extraction missed the page; the container text is used.
_MIN_STRUCTURED_CHARS = 200


def _collapse(text: str) -> str:
    return " ".join(text.split())


def _meta_content(soup: BeautifulSoup, attrs: dict[str, str]) -> str:
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return ""
    return _collapse(str(tag.get("content") or ""))


def _main_container(soup: BeautifulSoup) -> Tag:
    for selector in _MAIN_CONTENT_SELECTORS:
        element = soup.select_one(selector)
        if element is not None:
            return element
    return soup.body or soup


def _structured_parts(container: Tag) -> list[str]:
    parts: list[str] = []
    for element in container.find_all(_STRUCTURE_TAGS):
        if element.name == "code" and element.find_parent("pre") is not None:
            continue
        text = _collapse(element.get_text(" "))
        if len(text) < 10 or _NAV_TEXT.match(text):
            continue
        if element.name.startswith("h"):
            parts.append(f"{'#' * int(element.name[1])} {text}")
        elif element.name == "li":
            parts.append(f"• {text}")
        elif element.name == "blockquote":
            parts.append(f"> {text}")
        elif element.name in ("pre", "code"):
            parts.append(f"```\n{text}\n```")
        else:
            parts.append(text)
    return parts


def parse_html(html: str, url: str) -> ParsedSource:
    """Extract the readable body of a web page.

    Page chrome (scripts, navigation, footers, ads, comment threads) is
    removed first. Headings, paragraphs, list items, quotes and code inside
    the main content container are kept with light markdown structure; when
    that yields under 200 characters the container's plain text is used.
    """

    soup = BeautifulSoup(html, "html.parser")
    for selector in _REMOVE_SELECTORS:
        for element in soup.select(selector):
            if not element.decomposed:
                element.decompose()

    first_h1 = soup.find("h1")
    title = (
        _meta_content(soup, {"property": "og:title"})
        or _meta_content(soup, {"name": "twitter:title"})
        or (_collapse(soup.title.get_text()) if soup.title else "")
        or (_collapse(first_h1.get_text(" ")) if first_h1 else "")
        or "Untitled Page"
    )

    container = _main_container(soup)
    content = re.sub(r"\n{3,}", "\n\n", "\n\n".join(_structured_parts(container))).strip()
    if len(content) < _MIN_STRUCTURED_CHARS:
        content = _collapse(container.get_text(" "))

    return ParsedSource(
        source_name=title[:200],
        source_type=SourceType.WEB,
        text=content,
        pages=[content],
        url=url,
        metadata={
            "domain": extract_domain(url),
            "description": _meta_content(soup, {"property": "og:description"})
            or _meta_content(soup, {"name": "description"}),
        },
    )


def normalize_url(url: str) -> str:
    normalized = url.strip()
    if not normalized.startswith(("http://", "https://")):
        normalized = "https://" + normalized
    return normalized


def is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc) and "." in parsed.netloc


def is_youtube_url(url: str) -> bool:
    return "youtube.com" in url or "youtu.be" in url


def extract_domain(url: str) -> str:
    host = urlparse(url).hostname or ""
    return host.removeprefix("www.") or "unknown"


def extract_video_id(url: str) -> str | None:
    for pattern in _YOUTUBE_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    if _BARE_VIDEO_ID.match(url):
        return url
    return None


def format_timestamp(seconds: float) -> str:
    """Render seconds as `M:SS`, or `H:MM:SS` past the hour."""

    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"
