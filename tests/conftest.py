"""Shared test fixtures for SiteWatch Agent tests."""

import os
import tempfile

import pytest

from sitewatch_agent.fetcher import FetchResult
from sitewatch_agent.models import Session
from sitewatch_agent.store import ResourceStore


SAMPLE_RSS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/">
  <channel>
    <title>Test Feed</title>
    <link>https://example.com</link>
    <description>A test RSS feed</description>
    <item>
      <title>First Article</title>
      <link>https://example.com/article-1</link>
      <guid>article-1</guid>
      <description>Description of the first article</description>
      <content:encoded><![CDATA[<p>Full body of the first article</p>]]></content:encoded>
      <pubDate>Thu, 13 Feb 2026 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Second Article</title>
      <link>https://example.com/article-2</link>
      <guid>article-2</guid>
      <description>Description of the second article</description>
      <pubDate>Thu, 13 Feb 2026 09:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Third Article</title>
      <guid>article-3</guid>
      <description>Description of the third article</description>
    </item>
    <item>
      <title>Fourth Article</title>
      <guid>article-4</guid>
      <description>Description of the fourth article</description>
    </item>
  </channel>
</rss>"""

SAMPLE_ATOM_XML = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Test Atom Feed</title>
  <link href="https://example.com"/>
  <subtitle>A test Atom feed</subtitle>
  <entry>
    <title>Atom Entry 1</title>
    <link href="https://example.com/entry-1"/>
    <id>urn:uuid:entry-1</id>
    <summary>Summary of entry 1</summary>
    <updated>2026-02-13T10:00:00Z</updated>
  </entry>
</feed>"""

ARTICLE_TEXT = (
    "Foo releases a new version of its widget toolkit with faster rendering, "
    "better accessibility support and a redesigned plugin system for all its users."
)

SAMPLE_HTML = f"""<!DOCTYPE html>
<html>
  <head>
    <title>Foo</title>
    <meta name="description" content="The Foo project homepage">
    <style>body {{ color: red; }}</style>
    <script>var tracking = "should never leak";</script>
  </head>
  <body>
    <nav>Home | About</nav>
    <!-- build 1234 -->
    <article>{ARTICLE_TEXT}</article>
    <noscript>Enable JavaScript</noscript>
  </body>
</html>"""


@pytest.fixture
def tmp_db_path():
    """Provide a temporary SQLite database path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    yield path
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(path + suffix)
        except OSError:
            pass


@pytest.fixture
def store(tmp_db_path):
    """A connected record store on a temporary database."""
    db = ResourceStore(tmp_db_path)
    db.connect()
    yield db
    db.close()


@pytest.fixture
def session():
    return Session(username="alice")


@pytest.fixture
def sample_rss_xml():
    """Sample valid RSS 2.0 XML."""
    return SAMPLE_RSS_XML


@pytest.fixture
def sample_atom_xml():
    """Sample valid Atom XML."""
    return SAMPLE_ATOM_XML


@pytest.fixture
def sample_html():
    """Sample HTML page with a single article and noise elements."""
    return SAMPLE_HTML


@pytest.fixture
def article_text():
    return ARTICLE_TEXT


@pytest.fixture
def fake_fetch():
    """Build an async fetch function that serves bodies from a dict.

    Values may be strings (served as HTML unless the URL looks like a feed)
    or exceptions, which are raised.
    """

    def factory(pages: dict):
        calls: list[str] = []

        async def fetch(url: str) -> FetchResult:
            calls.append(url)
            page = pages[url]
            if isinstance(page, Exception):
                raise page
            is_feed = url.endswith((".xml", "/feed", "/rss"))
            return FetchResult(url=url, status=200, body=page, is_feed_like=is_feed)

        fetch.calls = calls
        return fetch

    return factory
