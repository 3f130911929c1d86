"""Data models for SiteWatch Agent."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Literal

# Storage bounds; the record store rejects items above a fixed size ceiling
TITLE_LIMIT = 100
DESCRIPTION_LIMIT = 200
MAIN_CONTENT_LIMIT = 1000
SNAPSHOT_LIMIT = 500
ENTRY_FIELD_LIMIT = 100
MAX_FEED_ENTRIES = 3

DEFAULT_CATEGORY = "Uncategorized"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def truncate(text: str | None, limit: int) -> str:
    """Return text cut to at most `limit` characters ("" for None)."""
    return (text or "")[:limit]


@dataclass(frozen=True)
class Session:
    """The signed-in user on whose behalf the store and checks operate."""

    username: str

    @property
    def is_authenticated(self) -> bool:
        return bool(self.username)


@dataclass
class FeedEntry:
    """One of the most recent entries of an RSS/Atom resource."""

    title: str
    description: str = ""
    body: str = ""
    published_at: str = ""

    def bounded(self, limit: int = ENTRY_FIELD_LIMIT) -> "FeedEntry":
        return FeedEntry(
            title=truncate(self.title, limit),
            description=truncate(self.description, limit),
            body=truncate(self.body, limit),
            published_at=truncate(self.published_at, limit),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class HtmlContent:
    """Meaningful content extracted from an HTML page."""

    title: str
    description: str
    main_content: str
    kind: Literal["html"] = "html"


@dataclass(frozen=True)
class FeedContent:
    """Meaningful content extracted from an RSS or Atom document."""

    title: str
    description: str
    main_content: str
    entries: list[FeedEntry] = field(default_factory=list)
    kind: Literal["feed"] = "feed"


ExtractedContent = HtmlContent | FeedContent


@dataclass
class TrackedResource:
    """A website or feed the user follows."""

    url: str
    title: str
    description: str = ""
    category: str = DEFAULT_CATEGORY
    is_feed: bool = False
    feed_entries: list[FeedEntry] = field(default_factory=list)
    content_snapshot: str = ""
    previous_snapshot: str = ""
    main_content: str = ""
    content_hash: str = ""
    changed: bool = False
    last_error: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    last_checked_at: datetime | None = None
    last_changed_at: datetime | None = None
    id: int | None = None

    @property
    def recency_key(self) -> datetime:
        """Timestamp that orders the feed: last change, else creation."""
        return self.last_changed_at or self.created_at


def sort_by_recent_change(resources: list[TrackedResource]) -> list[TrackedResource]:
    """Most recently changed resources first."""
    return sorted(resources, key=lambda r: r.recency_key, reverse=True)
