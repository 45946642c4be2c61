from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Union
from urllib.parse import urlparse

import requests

from .config import DEFAULT_USER_AGENT
from .dedup import UpdateDetector
from .exceptions import FetchError, ParseError
from .models import FeedSnapshot, Item
from .parser import AutoDetectParser

logger = logging.getLogger(__name__)


def _is_valid_url(url: str) -> bool:
    parts = urlparse(url)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


class FeedFetcher:
    """
    Fetch a feed over HTTP and run it through the auto-detect parser.

    The raw body is kept on the returned snapshot (``original_content``) so a
    WebSub hub can be discovered from it without a second request.
    """

    def __init__(
        self,
        parser: Optional[AutoDetectParser] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.parser = parser or AutoDetectParser()
        self.session = session or requests.Session()
        self.timeout = timeout
        self.headers = {
            "User-Agent": user_agent,
            "Accept": "application/rss+xml,application/atom+xml,application/feed+json,application/xml;q=0.9,*/*;q=0.8",
        }

    def fetch_raw(self, url: str) -> str:
        """
        Fetch a single feed URL and return its body.

        Raises FetchError on invalid URLs, network issues, HTTP >= 400 or an empty body.
        """
        if not _is_valid_url(url):
            raise FetchError(f"Invalid URL: {url}")
        try:
            resp = self.session.get(url, headers=self.headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise FetchError(f"Failed to fetch feed: {url} ({e})") from e
        if resp.status_code >= 400:
            raise FetchError(f"HTTP error {resp.status_code} fetching {url}")
        if not resp.text:
            raise FetchError(f"Empty response from {url}")
        return resp.text

    def fetch(self, url: str) -> FeedSnapshot:
        raw = self.fetch_raw(url)
        feed = self.parser.parse(raw, url)
        feed.original_content = raw
        return feed

    def __call__(self, url: str) -> FeedSnapshot:
        return self.fetch(url)

    def fetch_many(self, urls: Mapping[str, Union[str, Mapping[str, str]]]) -> Dict[str, FeedSnapshot]:
        """
        Fetch several feeds keyed by id; values are URLs or ``{"url": ...}`` mappings.

        Failures on individual feeds are logged and skipped; they do not abort the batch.
        """
        feeds: Dict[str, FeedSnapshot] = {}
        for feed_id, info in urls.items():
            url = info if isinstance(info, str) else info.get("url")
            if not url:
                continue
            try:
                feeds[feed_id] = self.fetch(url)
            except (FetchError, ParseError) as e:
                logger.warning("Feed fetch error for %s: %s", feed_id, e)
        return feeds

    @staticmethod
    def has_new_items(old: FeedSnapshot, new: FeedSnapshot) -> bool:
        return UpdateDetector.has_new(new.items(), old.fingerprints())

    @staticmethod
    def get_new_items(old: FeedSnapshot, new: FeedSnapshot) -> List[Item]:
        return UpdateDetector.detect(new.items(), set(old.fingerprints()))
