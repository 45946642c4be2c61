"""FeedFetcher tests with a mocked requests session."""

from unittest.mock import MagicMock

import pytest
import requests

from rss_watch import FeedFetcher, FetchError

from .support import DAY, rss

URL = "https://example.com/feed"


def _session(status=200, text=""):
    session = MagicMock(spec=requests.Session)
    session.get.return_value = MagicMock(status_code=status, text=text)
    return session


class TestFetch:
    def test_fetch_parses_and_keeps_raw_body(self):
        raw = rss([("a", "Alpha", DAY)], hub="https://hub.example.com/")
        session = _session(text=raw)
        feed = FeedFetcher(session=session, timeout=5, user_agent="test-agent").fetch(URL)
        assert [it.id for it in feed.items()] == ["a"]
        assert feed.original_content == raw
        _, kwargs = session.get.call_args
        assert kwargs["timeout"] == 5
        assert kwargs["headers"]["User-Agent"] == "test-agent"

    def test_http_error_status(self):
        with pytest.raises(FetchError) as exc:
            FeedFetcher(session=_session(status=503, text="down")).fetch(URL)
        assert "503" in str(exc.value)

    def test_transport_error_is_wrapped(self):
        session = MagicMock(spec=requests.Session)
        session.get.side_effect = requests.ConnectionError("refused")
        with pytest.raises(FetchError) as exc:
            FeedFetcher(session=session).fetch(URL)
        assert isinstance(exc.value.__cause__, requests.ConnectionError)

    def test_empty_body(self):
        with pytest.raises(FetchError):
            FeedFetcher(session=_session(text="")).fetch(URL)

    @pytest.mark.parametrize("url", ["", "ftp://example.com/feed", "not a url"])
    def test_invalid_url_is_rejected_before_request(self, url):
        session = _session(text="x")
        with pytest.raises(FetchError):
            FeedFetcher(session=session).fetch(url)
        session.get.assert_not_called()

    def test_fetch_many_skips_failures(self):
        session = MagicMock(spec=requests.Session)
        good = MagicMock(status_code=200, text=rss([("a", "Alpha", DAY)]))
        bad = MagicMock(status_code=404, text="")
        session.get.side_effect = lambda url, **kw: good if url == URL else bad
        feeds = FeedFetcher(session=session).fetch_many(
            {"good": URL, "bad": {"url": "https://example.com/missing"}, "none": {}}
        )
        assert list(feeds) == ["good"]

    def test_new_item_helpers(self):
        fetcher = FeedFetcher(session=_session())
        old = fetcher.parser.parse(rss([("a", "Alpha", DAY)]), URL)
        new = fetcher.parser.parse(rss([("a", "Alpha", DAY), ("b", "Beta", DAY)]), URL)
        assert FeedFetcher.has_new_items(old, new)
        assert not FeedFetcher.has_new_items(new, old)
        assert [it.id for it in FeedFetcher.get_new_items(old, new)] == ["b"]
