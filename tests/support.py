"""Shared builders and fakes for the test suite."""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from rss_watch import AutoDetectParser, FeedSnapshot, FetchError, Item


def rss(items, title="Example News", hub: Optional[str] = None, self_url: Optional[str] = None) -> str:
    """Render a small RSS 2.0 document; items are (guid, title, day) tuples."""
    links = ""
    if hub:
        links += f'<atom:link rel="hub" href="{hub}"/>'
    if self_url:
        links += f'<atom:link rel="self" href="{self_url}" type="application/rss+xml"/>'
    body = "".join(
        f"""
    <item>
      <guid>{guid}</guid>
      <title>{t}</title>
      <link>https://example.com/{guid}</link>
      <description>&lt;p&gt;About {t}&lt;/p&gt;</description>
      <category>World</category>
      <pubDate>{day:%a, %d %b %Y} 10:00:00 GMT</pubDate>
    </item>"""
        for guid, t, day in items
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:atom="http://www.w3.org/2005/Atom">
  <channel>
    <title>{title}</title>
    <link>https://example.com/</link>
    <description>Sample</description>{links}{body}
  </channel>
</rss>"""


DAY = datetime(2024, 3, 1, tzinfo=timezone.utc)


def make_item(ident="a", title="Title", day=0, **kw) -> Item:
    kw.setdefault("link", f"https://example.com/{ident}")
    return Item(id=ident, title=title, published_at=DAY + timedelta(days=day), **kw)


class FakeSource:
    """In-memory feed server: maps URL -> list of (guid, title, day)."""

    def __init__(self) -> None:
        self.feeds: Dict[str, List[tuple]] = {}
        self.calls: List[str] = []
        self.failing: set = set()
        # url -> advertised hub
        self.hubs: Dict[str, str] = {}
        self.parser = AutoDetectParser()

    def set(self, url: str, *entries) -> None:
        self.feeds[url] = [(g, f"Story {g}", DAY + timedelta(days=i)) for i, g in enumerate(entries)]

    def raw(self, url: str) -> str:
        hub = self.hubs.get(url)
        return rss(self.feeds[url], hub=hub, self_url=url if hub else None)

    def fetch(self, url: str) -> FeedSnapshot:
        self.calls.append(url)
        if url in self.failing:
            raise FetchError(f"HTTP error 503 fetching {url}")
        return self.parser.parse(self.raw(url), url)


class FakeClock:
    def __init__(self, start: datetime = DAY) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)
