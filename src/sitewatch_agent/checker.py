"""Check tracked resources for content changes."""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable
from urllib.parse import urlsplit

import httpx

from sitewatch_agent.extractor import extract
from sitewatch_agent.fetcher import (
    DEFAULT_TIMEOUT,
    FetchResult,
    fetch,
    is_feed_like,
    normalize_url,
)
from sitewatch_agent.fingerprint import (
    build_snapshot,
    content_hash,
    has_hash_changed,
    snapshot_changed,
)
from sitewatch_agent.models import (
    DEFAULT_CATEGORY,
    DESCRIPTION_LIMIT,
    MAIN_CONTENT_LIMIT,
    MAX_FEED_ENTRIES,
    TITLE_LIMIT,
    ExtractedContent,
    FeedContent,
    Session,
    TrackedResource,
    truncate,
    utcnow,
)
from sitewatch_agent.store import AdapterError, RecordStore

logger = logging.getLogger(__name__)

BATCH_SIZE = 5
BATCH_DELAY = 1.0  # seconds between batches

FetchFunc = Callable[[str], Awaitable[FetchResult]]
Notifier = Callable[[str], None]


class RunState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIAL_FAILURE = "partial_failure"


@dataclass
class CheckOutcome:
    """Result of checking one resource."""

    resource_id: int | None
    url: str
    changed: bool = False
    error: str | None = None


@dataclass
class RunSummary:
    """Aggregate result of one pass over the tracked set."""

    outcomes: list[CheckOutcome] = field(default_factory=list)
    silent: bool = False

    @property
    def processed(self) -> int:
        return len(self.outcomes)

    @property
    def changed(self) -> int:
        return sum(1 for o in self.outcomes if o.changed)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.error is not None)

    @property
    def state(self) -> RunState:
        return RunState.PARTIAL_FAILURE if self.failed else RunState.COMPLETED

    @property
    def message(self) -> str:
        if self.changed:
            text = f"Found updates for {self.changed} website{'' if self.changed == 1 else 's'}"
        else:
            text = "All websites are up to date"
        if self.failed:
            text += f" ({self.failed} of {self.processed} could not be checked)"
        return text


@dataclass
class HashCheck:
    """Result of a single-page fingerprint check."""

    url: str
    content_hash: str
    changed: bool


def changed_fields(
    resource: TrackedResource,
    content: ExtractedContent,
    snapshot: str,
    now: datetime,
) -> dict:
    """Full update written when a resource's snapshot changed."""
    entries = content.entries if isinstance(content, FeedContent) else []
    return {
        "title": truncate(content.title, TITLE_LIMIT) or resource.title,
        "description": truncate(content.description, DESCRIPTION_LIMIT) or resource.description,
        "main_content": truncate(content.main_content, MAIN_CONTENT_LIMIT),
        "feed_entries": [e.bounded() for e in entries[:MAX_FEED_ENTRIES]],
        "content_snapshot": snapshot,
        "previous_snapshot": resource.content_snapshot,
        "changed": True,
        "last_changed_at": now,
        "last_checked_at": now,
    }


def snapshot_for(content: ExtractedContent) -> str:
    """Snapshot of freshly extracted content only, with no stored fallbacks."""
    return build_snapshot(
        truncate(content.title, TITLE_LIMIT),
        truncate(content.description, DESCRIPTION_LIMIT),
        content.main_content,
    )


class CheckOrchestrator:
    """Runs fetch, extract and compare over every tracked resource.

    Resources are checked in fixed-size batches; a batch runs concurrently
    and batches run one after another with a pause in between. Only one
    run may be active at a time: a second `run()` while one is in progress
    returns None.
    """

    def __init__(
        self,
        store: RecordStore,
        fetch_func: FetchFunc | None = None,
        notifier: Notifier | None = None,
        batch_size: int = BATCH_SIZE,
        batch_delay: float = BATCH_DELAY,
        timeout: float = DEFAULT_TIMEOUT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._fetch = fetch_func  # Injectable for testing
        self._notify = notifier
        self._batch_size = batch_size
        self._batch_delay = batch_delay
        self._timeout = timeout
        self._sleep = sleep
        self._clock = clock
        self._guard = threading.Lock()
        self._state = RunState.IDLE
        self._listeners: list[Callable[[RunSummary], None]] = []
        self.last_summary: RunSummary | None = None

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._guard.locked()

    def add_completion_listener(self, listener: Callable[[RunSummary], None]) -> None:
        """Register a callable invoked with the summary of every completed run."""
        self._listeners.append(listener)

    async def run(self, session: Session, silent: bool = False) -> RunSummary | None:
        """Check every tracked resource of the session's user.

        Args:
            session: Whose resources to check.
            silent: Suppress user-facing notifications (background runs).

        Returns:
            The run summary, or None if another run was already active.

        Raises:
            AdapterError: If the store rejects a read or write; the run is
                abandoned after the current batch settles.
        """
        if not self._guard.acquire(blocking=False):
            logger.info("Check already in progress, skipping")
            return None

        self._state = RunState.RUNNING
        try:
            summary = await self._run(session, silent)
        except AdapterError as e:
            logger.error("Check run aborted: %s", e)
            if self._notify and not silent:
                self._notify(f"Could not check websites: {e}")
            raise
        finally:
            if self._state is RunState.RUNNING:
                self._state = RunState.IDLE
            self._guard.release()

        self._state = summary.state
        self.last_summary = summary
        logger.info(
            "Check run complete: %d changed, %d failed, %d processed",
            summary.changed, summary.failed, summary.processed,
        )
        if self._notify and not silent:
            self._notify(summary.message)
        for listener in self._listeners:
            listener(summary)
        return summary

    async def _run(self, session: Session, silent: bool) -> RunSummary:
        resources = self._store.list(session)
        summary = RunSummary(silent=silent)
        if not resources:
            return summary

        if self._notify and not silent:
            self._notify("Checking for content updates...")

        batches = [
            resources[i:i + self._batch_size]
            for i in range(0, len(resources), self._batch_size)
        ]
        async with httpx.AsyncClient(follow_redirects=True, timeout=self._timeout) as client:
            fetch_func = self._fetch or (lambda url: fetch(url, client=client, timeout=self._timeout))

            for index, batch in enumerate(batches):
                results = await asyncio.gather(
                    *(self.check_resource(session, r, fetch_func) for r in batch),
                    return_exceptions=True,
                )

                # Let the whole batch settle before a store failure aborts the run
                for result in results:
                    if isinstance(result, BaseException):
                        raise result
                summary.outcomes.extend(results)

                if index < len(batches) - 1:
                    await self._sleep(self._batch_delay)

        return summary

    async def check_resource(
        self,
        session: Session,
        resource: TrackedResource,
        fetch_func: FetchFunc,
    ) -> CheckOutcome:
        """Fetch, extract and compare one resource, then write back the result.

        Fetch and extraction failures are recorded on the resource and
        reported in the outcome; store failures propagate.
        """
        try:
            result = await fetch_func(resource.url)
            content = extract(result.body, result.is_feed_like)
        except Exception as e:
            logger.warning("Website '%s' check failed: %s", resource.title, e)
            self._store.update(
                session, resource.id,
                {"last_checked_at": self._clock(), "last_error": str(e)},
            )
            return CheckOutcome(resource.id, resource.url, error=str(e))

        now = self._clock()
        snapshot = snapshot_for(content)
        if snapshot_changed(snapshot, resource.content_snapshot):
            fields = changed_fields(resource, content, snapshot, now)
            if resource.last_error:
                fields["last_error"] = None
            self._store.update(session, resource.id, fields)
            logger.info("Website '%s' changed", resource.title)
            return CheckOutcome(resource.id, resource.url, changed=True)

        fields = {"last_checked_at": now}
        if resource.last_error:
            fields["last_error"] = None
        self._store.update(session, resource.id, fields)
        return CheckOutcome(resource.id, resource.url)


async def check_page_for_update(
    url: str,
    previous_hash: str,
    fetch_func: FetchFunc | None = None,
) -> HashCheck:
    """Fingerprint a single page and compare it with its previous hash.

    Raises:
        InvalidUrlError, FetchError, NetworkError: Propagated from the fetch.
    """
    normalized = normalize_url(url)
    result = await (fetch_func or fetch)(normalized)
    new_hash = content_hash(result.body)
    return HashCheck(
        url=normalized,
        content_hash=new_hash,
        changed=has_hash_changed(new_hash, previous_hash),
    )


async def add_resource(
    store: RecordStore,
    session: Session,
    url: str,
    category: str = DEFAULT_CATEGORY,
    fetch_func: FetchFunc | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> TrackedResource:
    """Fetch a new URL and start tracking it.

    The first observation counts as a change: the record starts with
    `changed` set and an empty previous snapshot.

    Raises:
        InvalidUrlError, FetchError, NetworkError: Propagated from the fetch.
        AdapterError: If the store rejects the new record.
    """
    normalized = normalize_url(url)
    result = await (fetch_func or fetch)(normalized)
    content = extract(result.body, result.is_feed_like)

    title = truncate(content.title, TITLE_LIMIT) or urlsplit(normalized).hostname or normalized
    description = truncate(content.description, DESCRIPTION_LIMIT)
    main_content = truncate(content.main_content, MAIN_CONTENT_LIMIT)
    entries = content.entries if isinstance(content, FeedContent) else []
    now = clock()

    resource = TrackedResource(
        url=normalized,
        title=title,
        description=description,
        category=category or DEFAULT_CATEGORY,
        is_feed=result.is_feed_like or is_feed_like(normalized),
        feed_entries=[e.bounded() for e in entries[:MAX_FEED_ENTRIES]],
        content_snapshot=snapshot_for(content),
        previous_snapshot="",
        main_content=main_content,
        content_hash=content_hash(result.body),
        changed=True,
        created_at=now,
        last_checked_at=now,
        last_changed_at=now,
    )
    saved = store.create(session, resource)
    logger.info("Now tracking '%s' (%s)", saved.title, saved.url)
    return saved
