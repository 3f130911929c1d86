"""SQLite-backed record store for tracked resources."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Callable, Protocol

from sitewatch_agent.models import (
    DEFAULT_CATEGORY,
    FeedEntry,
    Session,
    TrackedResource,
    sort_by_recent_change,
    utcnow,
)

logger = logging.getLogger(__name__)

# Per-item ceiling of the hosted store the records were sized for
MAX_RECORD_BYTES = 10 * 1024

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS resources (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner TEXT NOT NULL,
    url TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    category TEXT NOT NULL DEFAULT 'Uncategorized',
    is_feed INTEGER DEFAULT 0,
    feed_entries TEXT NOT NULL DEFAULT '[]',
    content_snapshot TEXT NOT NULL DEFAULT '',
    previous_snapshot TEXT NOT NULL DEFAULT '',
    main_content TEXT NOT NULL DEFAULT '',
    content_hash TEXT NOT NULL DEFAULT '',
    changed INTEGER DEFAULT 0,
    last_error TEXT,
    created_at TEXT NOT NULL,
    last_checked_at TEXT,
    last_changed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_resources_owner ON resources(owner);
"""

UPDATABLE_FIELDS = frozenset({
    "url",
    "title",
    "description",
    "category",
    "is_feed",
    "feed_entries",
    "content_snapshot",
    "previous_snapshot",
    "main_content",
    "content_hash",
    "changed",
    "last_error",
    "last_checked_at",
    "last_changed_at",
})

Subscriber = Callable[[list[TrackedResource]], None]


class AdapterError(Exception):
    """Raised when the store rejects a read or write."""


class RecordStore(Protocol):
    """Interface the checker and tools use to reach tracked resources."""

    def list(self, session: Session) -> list[TrackedResource]: ...

    def get(self, session: Session, resource_id: int) -> TrackedResource | None: ...

    def create(self, session: Session, resource: TrackedResource) -> TrackedResource: ...

    def update(self, session: Session, resource_id: int, fields: dict[str, Any]) -> None: ...

    def delete(self, session: Session, resource_id: int) -> bool: ...

    def subscribe(self, session: Session, callback: Subscriber) -> Callable[[], None]: ...


class ResourceStore:
    """SQLite database manager for tracked resources."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._subscribers: list[tuple[str, Subscriber]] = []

    def connect(self) -> None:
        """Open database connection and initialize schema."""
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    # --- Reads ---

    def list(self, session: Session) -> list[TrackedResource]:
        """All resources of the session's user, most recently changed first."""
        _require_session(session)
        try:
            rows = self.conn.execute(
                "SELECT * FROM resources WHERE owner = ?", (session.username,)
            ).fetchall()
        except sqlite3.Error as e:
            raise AdapterError(f"Could not load websites: {e}") from e
        return sort_by_recent_change([_row_to_resource(r) for r in rows])

    def get(self, session: Session, resource_id: int) -> TrackedResource | None:
        _require_session(session)
        try:
            row = self.conn.execute(
                "SELECT * FROM resources WHERE id = ? AND owner = ?",
                (resource_id, session.username),
            ).fetchone()
        except sqlite3.Error as e:
            raise AdapterError(f"Could not load website: {e}") from e
        return _row_to_resource(row) if row else None

    def find_by_identifier(self, session: Session, identifier: str) -> list[TrackedResource]:
        """Find resources by exact URL or case-insensitive title substring."""
        _require_session(session)
        try:
            rows = self.conn.execute(
                """SELECT * FROM resources
                   WHERE owner = ? AND (url = ? OR title LIKE ? COLLATE NOCASE)""",
                (session.username, identifier, f"%{identifier}%"),
            ).fetchall()
        except sqlite3.Error as e:
            raise AdapterError(f"Could not search websites: {e}") from e
        return sort_by_recent_change([_row_to_resource(r) for r in rows])

    # --- Writes ---

    def create(self, session: Session, resource: TrackedResource) -> TrackedResource:
        """Insert a new resource and return it with its assigned id."""
        _require_session(session)
        values = _resource_to_columns(resource)
        _check_size(values)
        try:
            cursor = self.conn.execute(
                f"""INSERT INTO resources (owner, {", ".join(values)})
                    VALUES (?, {", ".join("?" for _ in values)})""",
                (session.username, *values.values()),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise AdapterError(f"Could not save website: {e}") from e
        resource.id = cursor.lastrowid
        self._notify(session)
        return resource

    def update(self, session: Session, resource_id: int, fields: dict[str, Any]) -> None:
        """Apply a partial update to one resource.

        Raises:
            AdapterError: If the record is missing, the write fails or the
                updated record would exceed the per-item size ceiling.
        """
        _require_session(session)
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown fields: {', '.join(sorted(unknown))}")

        current = self.get(session, resource_id)
        if current is None:
            raise AdapterError(f"Website {resource_id} not found")

        columns = {name: _to_column(value) for name, value in fields.items()}
        _check_size({**_resource_to_columns(current), **columns})

        assignments = ", ".join(f"{name} = ?" for name in columns)
        try:
            self.conn.execute(
                f"UPDATE resources SET {assignments} WHERE id = ? AND owner = ?",
                (*columns.values(), resource_id, session.username),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise AdapterError(f"Could not update website: {e}") from e
        logger.debug("Updated website %s: %s", resource_id, ", ".join(columns))
        self._notify(session)

    def delete(self, session: Session, resource_id: int) -> bool:
        """Delete a resource. Returns True if deleted."""
        _require_session(session)
        try:
            cursor = self.conn.execute(
                "DELETE FROM resources WHERE id = ? AND owner = ?",
                (resource_id, session.username),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise AdapterError(f"Could not remove website: {e}") from e
        if cursor.rowcount > 0:
            self._notify(session)
            return True
        return False

    # --- Change notification ---

    def subscribe(self, session: Session, callback: Subscriber) -> Callable[[], None]:
        """Call `callback` with the full current set after every write.

        The callback also receives the current set immediately. Returns a
        function that removes the subscription.
        """
        entry = (session.username, callback)
        self._subscribers.append(entry)
        callback(self.list(session))

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def _notify(self, session: Session) -> None:
        listeners = [cb for owner, cb in self._subscribers if owner == session.username]
        if not listeners:
            return
        resources = self.list(session)
        for callback in listeners:
            callback(resources)


# --- Helper functions ---


def _require_session(session: Session) -> None:
    if session is None or not session.is_authenticated:
        raise AdapterError("Not signed in")


def _check_size(columns: dict[str, Any]) -> None:
    size = len(json.dumps(columns, default=str).encode("utf-8"))
    if size > MAX_RECORD_BYTES:
        raise AdapterError(
            f"Website record is {size} bytes, over the {MAX_RECORD_BYTES} byte limit"
        )


def _to_column(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, list):
        return json.dumps([e.to_dict() if isinstance(e, FeedEntry) else e for e in value])
    return value


def _resource_to_columns(resource: TrackedResource) -> dict[str, Any]:
    return {
        "url": resource.url,
        "title": resource.title,
        "description": resource.description,
        "category": resource.category,
        "is_feed": int(resource.is_feed),
        "feed_entries": _to_column(resource.feed_entries),
        "content_snapshot": resource.content_snapshot,
        "previous_snapshot": resource.previous_snapshot,
        "main_content": resource.main_content,
        "content_hash": resource.content_hash,
        "changed": int(resource.changed),
        "last_error": resource.last_error,
        "created_at": _dt_to_str(resource.created_at),
        "last_checked_at": _dt_to_str(resource.last_checked_at),
        "last_changed_at": _dt_to_str(resource.last_changed_at),
    }


def _dt_to_str(dt: datetime | None) -> str | None:
    """Convert datetime to ISO string for storage."""
    return dt.isoformat() if dt else None


def _str_to_dt(s: str | None) -> datetime | None:
    """Convert stored ISO string back to datetime."""
    if not s:
        return None
    return datetime.fromisoformat(s)


def _row_to_resource(row: sqlite3.Row) -> TrackedResource:
    """Convert a database row to a TrackedResource dataclass."""
    entries = [FeedEntry(**e) for e in json.loads(row["feed_entries"] or "[]")]
    return TrackedResource(
        id=row["id"],
        url=row["url"],
        title=row["title"],
        description=row["description"],
        category=row["category"] or DEFAULT_CATEGORY,
        is_feed=bool(row["is_feed"]),
        feed_entries=entries,
        content_snapshot=row["content_snapshot"],
        previous_snapshot=row["previous_snapshot"],
        main_content=row["main_content"],
        content_hash=row["content_hash"],
        changed=bool(row["changed"]),
        last_error=row["last_error"],
        created_at=_str_to_dt(row["created_at"]) or utcnow(),
        last_checked_at=_str_to_dt(row["last_checked_at"]),
        last_changed_at=_str_to_dt(row["last_changed_at"]),
    )
