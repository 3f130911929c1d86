"""Reduce fetched HTML pages and RSS/Atom documents to comparable content."""

import logging
import re

import feedparser
from bs4 import BeautifulSoup, Comment

from sitewatch_agent.models import (
    DESCRIPTION_LIMIT,
    MAIN_CONTENT_LIMIT,
    MAX_FEED_ENTRIES,
    TITLE_LIMIT,
    ExtractedContent,
    FeedContent,
    FeedEntry,
    HtmlContent,
    truncate,
)

logger = logging.getLogger(__name__)

# Candidate regions for the main content, in rank order
CONTENT_SELECTORS = [
    "article",
    "main",
    ".content",
    "#content",
    ".post-content",
    ".entry-content",
    ".article-content",
    ".post",
    "#main-content",
]
NOISE_TAGS = ["script", "style", "noscript", "iframe"]

MIN_SELECTED_LENGTH = 100
MIN_PARAGRAPH_LENGTH = 40
FEED_ENTRY_TEXT_LIMIT = 200
FEED_ENTRY_PREVIEW = 100
FEED_MAIN_CONTENT_LIMIT = 500

_WHITESPACE_RE = re.compile(r"\s+")


class ExtractionError(Exception):
    """Raised when a document cannot be parsed into content."""


def extract(body: str, is_feed_like: bool) -> ExtractedContent:
    """Extract title, description and main content from a fetched body.

    Never raises: a document that cannot be parsed is returned as raw
    main content so the caller still has something to compare.
    """
    try:
        if is_feed_like:
            return extract_feed(body)
        return extract_html(body)
    except ExtractionError as e:
        logger.warning("Falling back to raw content: %s", e)
        raw = truncate(body, MAIN_CONTENT_LIMIT)
        if is_feed_like:
            return FeedContent(title="", description="", main_content=raw)
        return HtmlContent(title="", description="", main_content=raw)


def extract_html(body: str) -> HtmlContent:
    """Extract content from an HTML page."""
    try:
        soup = BeautifulSoup(body, "html.parser")
    except Exception as e:
        raise ExtractionError(f"Could not parse HTML: {e}") from e

    for element in soup(NOISE_TAGS):
        element.decompose()
    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()

    title = soup.title.get_text().strip() if soup.title else ""
    main_content = _select_main_content(soup)

    if len(main_content) < MIN_SELECTED_LENGTH:
        paragraphs = _paragraph_text(soup)
        if len(paragraphs) > len(main_content):
            main_content = paragraphs

    return HtmlContent(
        title=truncate(title, TITLE_LIMIT),
        description=truncate(_meta_description(soup), DESCRIPTION_LIMIT),
        main_content=truncate(main_content, MAIN_CONTENT_LIMIT),
    )


def extract_feed(body: str) -> FeedContent:
    """Extract channel metadata and the latest entries from RSS or Atom."""
    parsed = feedparser.parse(body)
    if parsed.bozo and not parsed.entries and not parsed.feed.get("title"):
        raise ExtractionError(
            f"Not a valid RSS or Atom document: {parsed.get('bozo_exception')}"
        )

    entries = [_entry_from(raw) for raw in parsed.entries[:MAX_FEED_ENTRIES]]
    previews = [
        f"{entry.title}\n{(entry.description or entry.body)[:FEED_ENTRY_PREVIEW]}"
        for entry in entries
    ]

    return FeedContent(
        title=truncate(_plain_text(parsed.feed.get("title")), TITLE_LIMIT),
        description=truncate(
            _plain_text(parsed.feed.get("description") or parsed.feed.get("subtitle")),
            DESCRIPTION_LIMIT,
        ),
        main_content=truncate("\n\n".join(previews), FEED_MAIN_CONTENT_LIMIT),
        entries=entries,
    )


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def _select_main_content(soup: BeautifulSoup) -> str:
    best = ""
    for selector in CONTENT_SELECTORS:
        elements = soup.select(selector)
        if not elements:
            continue
        text = collapse_whitespace(" ".join(el.get_text(" ") for el in elements))
        if len(text) > len(best):
            best = text
    return best


def _paragraph_text(soup: BeautifulSoup) -> str:
    paragraphs = [p.get_text().strip() for p in soup.find_all("p")]
    substantial = [text for text in paragraphs if len(text) > MIN_PARAGRAPH_LENGTH]
    return "\n\n".join(substantial)[:MAIN_CONTENT_LIMIT]


def _meta_description(soup: BeautifulSoup) -> str:
    for attrs in ({"name": "description"}, {"property": "og:description"}):
        meta = soup.find("meta", attrs=attrs)
        if meta and meta.get("content"):
            return meta["content"].strip()
    return ""


def _entry_from(raw: dict) -> FeedEntry:
    contents = raw.get("content") or []
    body = contents[0].get("value", "") if contents else ""
    return FeedEntry(
        title=_plain_text(raw.get("title")),
        description=truncate(_plain_text(raw.get("summary")), FEED_ENTRY_TEXT_LIMIT),
        body=truncate(_plain_text(body), FEED_ENTRY_TEXT_LIMIT),
        published_at=raw.get("published") or raw.get("updated") or "",
    )


def _plain_text(value: str | None) -> str:
    """Feed fields may carry escaped markup; keep only its text."""
    if not value:
        return ""
    if "<" not in value:
        return value.strip()
    try:
        soup = BeautifulSoup(value, "html.parser")
    except Exception as e:
        raise ExtractionError(f"Could not parse feed markup: {e}") from e
    return collapse_whitespace(soup.get_text(" "))
