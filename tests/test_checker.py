"""Tests for the check orchestrator and single-page checks."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from sitewatch_agent.checker import (
    CheckOrchestrator,
    RunState,
    add_resource,
    check_page_for_update,
)
from sitewatch_agent.fetcher import FetchError, FetchResult, NetworkError
from sitewatch_agent.fingerprint import build_snapshot, content_hash
from sitewatch_agent.models import TrackedResource
from sitewatch_agent.store import AdapterError


NOW = datetime(2026, 2, 13, 12, 0, tzinfo=timezone.utc)
EARLIER = NOW - timedelta(hours=3)


async def no_sleep(seconds: float) -> None:
    return None


def _orchestrator(store, fetch_func, **kwargs) -> CheckOrchestrator:
    kwargs.setdefault("sleep", no_sleep)
    return CheckOrchestrator(store, fetch_func=fetch_func, clock=lambda: NOW, **kwargs)


def _track(store, session, url, **kwargs) -> TrackedResource:
    kwargs.setdefault("title", url)
    kwargs.setdefault("created_at", EARLIER)
    return store.create(session, TrackedResource(url=url, **kwargs))


def _current_snapshot(article_text: str) -> str:
    return build_snapshot("Foo", "The Foo project homepage", article_text)


class TestRun:
    def test_changed_resource_gets_full_update(self, store, session, fake_fetch, sample_html, article_text):
        resource = _track(store, session, "https://a.com", content_snapshot="stale snapshot")
        fetch = fake_fetch({"https://a.com": sample_html})

        summary = asyncio.run(_orchestrator(store, fetch).run(session))

        updated = store.get(session, resource.id)
        assert summary.changed == 1
        assert updated.changed is True
        assert updated.title == "Foo"
        assert updated.main_content == article_text
        assert updated.previous_snapshot == "stale snapshot"
        assert updated.content_snapshot == _current_snapshot(article_text)
        assert updated.last_changed_at == NOW
        assert updated.last_checked_at == NOW

    def test_removed_description_is_a_change(self, store, session, fake_fetch, sample_html, article_text):
        resource = _track(
            store, session, "https://a.com",
            description="Old description",
            content_snapshot=build_snapshot("Foo", "Old description", article_text),
        )
        page = sample_html.replace('<meta name="description" content="The Foo project homepage">', "")
        fetch = fake_fetch({"https://a.com": page})

        summary = asyncio.run(_orchestrator(store, fetch).run(session))

        updated = store.get(session, resource.id)
        assert summary.changed == 1
        assert updated.content_snapshot == build_snapshot("Foo", "", article_text)
        assert updated.previous_snapshot == build_snapshot("Foo", "Old description", article_text)
        # The displayed description keeps its last known value
        assert updated.description == "Old description"

    def test_removed_title_is_a_change(self, store, session, fake_fetch, sample_html, article_text):
        resource = _track(
            store, session, "https://a.com",
            title="Foo",
            content_snapshot=_current_snapshot(article_text),
        )
        fetch = fake_fetch({"https://a.com": sample_html.replace("<title>Foo</title>", "")})

        summary = asyncio.run(_orchestrator(store, fetch).run(session))

        updated = store.get(session, resource.id)
        assert summary.changed == 1
        assert updated.content_snapshot == build_snapshot("", "The Foo project homepage", article_text)
        assert updated.title == "Foo"

    def test_renamed_resource_without_page_title_is_unchanged(
        self, store, session, fake_fetch, sample_html, article_text
    ):
        page = sample_html.replace("<title>Foo</title>", "")
        resource = _track(
            store, session, "https://a.com",
            title="My renamed page",
            content_snapshot=build_snapshot("", "The Foo project homepage", article_text),
        )
        fetch = fake_fetch({"https://a.com": page})

        summary = asyncio.run(_orchestrator(store, fetch).run(session))

        updated = store.get(session, resource.id)
        assert summary.changed == 0
        assert updated.changed is False
        assert updated.title == "My renamed page"

    def test_unchanged_resource_only_gets_liveness_update(
        self, store, session, fake_fetch, sample_html, article_text
    ):
        resource = _track(
            store, session, "https://a.com",
            content_snapshot=_current_snapshot(article_text),
            previous_snapshot="older snapshot",
            main_content="stored body",
            last_changed_at=EARLIER,
        )
        fetch = fake_fetch({"https://a.com": sample_html})

        summary = asyncio.run(_orchestrator(store, fetch).run(session))

        updated = store.get(session, resource.id)
        assert summary.changed == 0
        assert updated.previous_snapshot == "older snapshot"
        assert updated.main_content == "stored body"
        assert updated.last_changed_at == EARLIER
        assert updated.last_checked_at == NOW
        assert updated.changed is False

    def test_failed_fetch_records_error_and_keeps_snapshot(self, store, session, fake_fetch):
        resource = _track(store, session, "https://a.com", content_snapshot="snap")
        fetch = fake_fetch({"https://a.com": FetchError(503, "Service Unavailable")})

        summary = asyncio.run(_orchestrator(store, fetch).run(session))

        updated = store.get(session, resource.id)
        assert summary.failed == 1
        assert summary.state is RunState.PARTIAL_FAILURE
        assert updated.last_error == "Failed to fetch website: 503 Service Unavailable"
        assert updated.last_checked_at == NOW
        assert updated.content_snapshot == "snap"

    def test_success_clears_stale_error(self, store, session, fake_fetch, sample_html, article_text):
        resource = _track(
            store, session, "https://a.com",
            content_snapshot=_current_snapshot(article_text),
            last_error="timeout",
        )
        fetch = fake_fetch({"https://a.com": sample_html})

        asyncio.run(_orchestrator(store, fetch).run(session))

        assert store.get(session, resource.id).last_error is None

    def test_one_failure_does_not_abort_siblings(self, store, session, fake_fetch, sample_html):
        urls = [f"https://site{i}.com" for i in range(1, 7)]
        for url in urls:
            _track(store, session, url)
        pages = {url: sample_html for url in urls}
        pages["https://site3.com"] = NetworkError("connection reset")

        summary = asyncio.run(_orchestrator(store, fake_fetch(pages)).run(session))

        assert summary.processed == 6
        assert summary.failed == 1
        for resource in store.list(session):
            assert resource.last_checked_at == NOW
            if resource.url == "https://site3.com":
                assert resource.last_error == "connection reset"
            else:
                assert resource.last_error is None

    def test_batches_are_throttled(self, store, session, fake_fetch, sample_html):
        urls = [f"https://site{i}.com" for i in range(11)]
        for url in urls:
            _track(store, session, url)
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        fetch = fake_fetch({url: sample_html for url in urls})
        asyncio.run(_orchestrator(store, fetch, sleep=record_sleep).run(session))

        # 11 resources -> batches of 5, 5, 1 -> a pause after the first two only
        assert delays == [1.0, 1.0]
        assert len(fetch.calls) == 11

    def test_empty_set(self, store, session, fake_fetch):
        summary = asyncio.run(_orchestrator(store, fake_fetch({})).run(session))

        assert summary.processed == 0
        assert summary.state is RunState.COMPLETED


class TestNotifications:
    def test_user_run_notifies(self, store, session, fake_fetch, sample_html):
        _track(store, session, "https://a.com")
        messages = []
        orchestrator = _orchestrator(
            store, fake_fetch({"https://a.com": sample_html}), notifier=messages.append
        )

        asyncio.run(orchestrator.run(session))

        assert messages == ["Checking for content updates...", "Found updates for 1 website"]

    def test_silent_run_does_not_notify(self, store, session, fake_fetch, sample_html):
        _track(store, session, "https://a.com")
        messages = []
        orchestrator = _orchestrator(
            store, fake_fetch({"https://a.com": sample_html}), notifier=messages.append
        )

        summary = asyncio.run(orchestrator.run(session, silent=True))

        assert summary.silent is True
        assert messages == []


class TestGuard:
    def test_overlapping_run_is_skipped(self, store, session, sample_html):
        _track(store, session, "https://a.com")

        async def scenario():
            gate = asyncio.Event()

            async def slow_fetch(url):
                await gate.wait()
                return FetchResult(url=url, status=200, body=sample_html, is_feed_like=False)

            orchestrator = _orchestrator(store, slow_fetch)
            first = asyncio.create_task(orchestrator.run(session))
            await asyncio.sleep(0)
            assert orchestrator.is_running
            assert orchestrator.state is RunState.RUNNING

            second = await orchestrator.run(session)
            gate.set()
            return second, await first, orchestrator

        second, first, orchestrator = asyncio.run(scenario())

        assert second is None
        assert first.processed == 1
        assert not orchestrator.is_running
        assert orchestrator.state is RunState.COMPLETED

    def test_adapter_error_aborts_run_and_releases_guard(self, session, sample_html):
        store = MagicMock()
        store.list.return_value = [TrackedResource(url="https://a.com", title="A", id=1)]
        store.update.side_effect = AdapterError("quota exceeded")
        messages = []

        async def fetch(url):
            return FetchResult(url=url, status=200, body=sample_html, is_feed_like=False)

        orchestrator = _orchestrator(store, fetch, notifier=messages.append)

        with pytest.raises(AdapterError):
            asyncio.run(orchestrator.run(session))

        assert messages == [
            "Checking for content updates...",
            "Could not check websites: quota exceeded",
        ]
        assert not orchestrator.is_running
        assert orchestrator.state is RunState.IDLE

    def test_silent_run_stays_silent_on_abort(self, session, sample_html):
        store = MagicMock()
        store.list.return_value = [TrackedResource(url="https://a.com", title="A", id=1)]
        store.update.side_effect = AdapterError("quota exceeded")
        messages = []

        async def fetch(url):
            return FetchResult(url=url, status=200, body=sample_html, is_feed_like=False)

        orchestrator = _orchestrator(store, fetch, notifier=messages.append)

        with pytest.raises(AdapterError):
            asyncio.run(orchestrator.run(session, silent=True))

        assert messages == []
        assert not orchestrator.is_running


class TestAddResource:
    def test_end_to_end_add(self, store, session, fake_fetch, sample_html, article_text):
        fetch = fake_fetch({"https://example.com": sample_html})

        resource = asyncio.run(
            add_resource(store, session, "example.com", fetch_func=fetch, clock=lambda: NOW)
        )

        saved = store.get(session, resource.id)
        assert saved.url == "https://example.com"
        assert saved.title == "Foo"
        assert saved.main_content == article_text
        assert saved.changed is True
        assert saved.previous_snapshot == ""
        assert saved.content_snapshot == _current_snapshot(article_text)
        assert saved.content_hash == content_hash(sample_html)
        assert saved.last_changed_at == NOW

    def test_feed_entries_bounded(self, store, session, fake_fetch, sample_rss_xml):
        fetch = fake_fetch({"https://example.com/feed": sample_rss_xml})

        resource = asyncio.run(add_resource(store, session, "https://example.com/feed", fetch_func=fetch))

        saved = store.get(session, resource.id)
        assert saved.is_feed is True
        assert saved.title == "Test Feed"
        assert len(saved.feed_entries) == 3
        assert all(len(e.description) <= 100 for e in saved.feed_entries)

    def test_missing_title_falls_back_to_hostname(self, store, session, fake_fetch):
        fetch = fake_fetch({"https://notitle.org": "<html><body><p>hi</p></body></html>"})

        resource = asyncio.run(add_resource(store, session, "notitle.org", fetch_func=fetch))

        assert resource.title == "notitle.org"


class TestCheckPageForUpdate:
    def test_first_check_is_not_a_change(self, fake_fetch, sample_html):
        fetch = fake_fetch({"https://a.com": sample_html})

        result = asyncio.run(check_page_for_update("a.com", "", fetch_func=fetch))

        assert result.changed is False
        assert result.content_hash == content_hash(sample_html)

    def test_detects_change(self, fake_fetch, sample_html):
        fetch = fake_fetch({"https://a.com": sample_html.replace("Foo", "Bar")})

        result = asyncio.run(
            check_page_for_update("https://a.com", content_hash(sample_html), fetch_func=fetch)
        )

        assert result.changed is True
