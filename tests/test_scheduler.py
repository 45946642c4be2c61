"""Tests for PollingScheduler cadence, failure isolation and history."""

from datetime import timedelta

import pytest

from rss_watch import FetchError, PollingScheduler

from .support import make_item

URL = "https://example.com/feed"


@pytest.fixture
def scheduler(source, clock):
    source.set(URL, "a", "b")
    sched = PollingScheduler(source.fetch, clock=clock)
    sched.register("f", URL, interval_seconds=60)
    return sched


class TestRegister:
    def test_initial_fetch_is_the_baseline(self, scheduler, source):
        assert source.calls == [URL]
        assert sorted(it.id for it in scheduler.get_feed("f").items()) == ["a", "b"]
        assert len(scheduler.get_history("f")) == 1

    def test_failed_initial_fetch_registers_nothing(self, source, clock):
        source.set(URL, "a")
        source.failing.add(URL)
        sched = PollingScheduler(source.fetch, clock=clock)
        with pytest.raises(FetchError):
            sched.register("f", URL)
        assert "f" not in sched
        assert len(sched) == 0

    def test_register_many_skips_entries_without_url(self, source, clock):
        source.set(URL, "a")
        sched = PollingScheduler(source.fetch, clock=clock)
        sched.register_many({"f": {"url": URL, "interval": 5}, "g": {"interval": 5}})
        assert sched.feed_ids() == ["f"]
        assert sched.get_entry("f").interval_seconds == 5

    def test_history_can_be_disabled(self, source, clock):
        source.set(URL, "a")
        sched = PollingScheduler(source.fetch, clock=clock)
        sched.register("f", URL, keep_history=False)
        assert sched.get_history("f") is None


class TestCheckUpdates:
    def test_feed_is_not_fetched_before_interval(self, scheduler, source, clock):
        clock.advance(59)
        assert scheduler.check_updates() == {}
        assert source.calls == [URL]

    def test_only_new_items_are_reported(self, scheduler, source, clock):
        source.set(URL, "a", "b", "c")
        clock.advance(60)
        updates = scheduler.check_updates()
        assert list(updates) == ["f"]
        assert [it.id for it in updates["f"].new_items] == ["c"]
        assert updates["f"].new_items_count == 1
        assert sorted(it.id for it in scheduler.get_feed("f").items()) == ["a", "b", "c"]
        assert scheduler.get_entry("f").last_update == clock.now

    def test_unchanged_poll_is_not_reported(self, scheduler, source, clock):
        clock.advance(60)
        assert scheduler.check_updates() == {}
        assert len(source.calls) == 2
        entry = scheduler.get_entry("f")
        assert entry.last_checked == clock.now
        assert entry.last_update < clock.now

    def test_quiet_poll_does_not_delay_next_check(self, scheduler, source, clock):
        clock.advance(60)
        assert scheduler.check_updates() == {}
        source.set(URL, "a", "b", "c")
        clock.advance(10)
        updates = scheduler.check_updates()
        assert [it.id for it in updates["f"].new_items] == ["c"]
        assert len(source.calls) == 3

    def test_next_update_follows_last_update(self, scheduler, clock):
        start = scheduler.get_entry("f").last_update
        clock.advance(60)
        scheduler.check_updates()
        entry = scheduler.get_entry("f")
        assert entry.next_update == start + timedelta(seconds=60)
        assert scheduler.get_status("f")["last_checked"] == clock.now.isoformat()

    def test_items_dropped_upstream_are_kept(self, scheduler, source, clock):
        source.set(URL, "c")
        clock.advance(60)
        scheduler.check_updates()
        assert sorted(it.id for it in scheduler.get_feed("f").items()) == ["a", "b", "c"]

    def test_failure_is_isolated(self, scheduler, source, clock):
        other = "https://example.com/other"
        source.set(other, "x")
        scheduler.register("g", other, interval_seconds=60)
        before = scheduler.get_entry("f").last_update

        source.failing.add(URL)
        source.set(other, "x", "y")
        clock.advance(60)
        updates = scheduler.check_updates()

        assert list(updates) == ["g"]
        assert scheduler.get_entry("f").last_update == before
        assert scheduler.get_status("f")["due"] is True

    def test_unexpected_exception_does_not_stop_sweep(self, scheduler, source, clock):
        other = "https://example.com/other"
        source.set(other, "x")
        scheduler.register("g", other, interval_seconds=60)
        real_fetch = source.fetch

        def flaky(url):
            if url == URL:
                raise RuntimeError("socket closed")
            return real_fetch(url)

        scheduler._fetch = flaky
        source.set(other, "x", "y")
        clock.advance(60)
        assert list(scheduler.check_updates()) == ["g"]

    def test_history_is_bounded(self, scheduler, source, clock):
        guids = ["a", "b"]
        for n in range(12):
            guids.append(f"n{n}")
            source.set(URL, *guids)
            clock.advance(60)
            assert "f" in scheduler.check_updates()
        history = scheduler.get_history("f")
        assert len(history) == 10
        assert len(history[-1]) == len(guids)


class TestForceUpdate:
    def test_fetches_regardless_of_interval(self, scheduler, source):
        source.set(URL, "a", "b", "c")
        assert scheduler.force_update("f") is True
        assert len(source.calls) == 2
        assert len(scheduler.get_feed("f")) == 3

    def test_unknown_feed(self, scheduler):
        assert scheduler.force_update("nope") is False
        with pytest.raises(KeyError):
            scheduler.refresh("nope")

    def test_failure_returns_false(self, scheduler, source):
        source.failing.add(URL)
        assert scheduler.force_update("f") is False


class TestMerge:
    def test_merge_adds_only_unknown_items(self, scheduler, clock):
        clock.advance(5)
        known = scheduler.get_feed("f").items()[0]
        added = scheduler.merge("f", [known, make_item("pushed")])
        assert [it.id for it in added] == ["pushed"]
        assert scheduler.get_entry("f").last_update == clock.now
        # push does not count as a poll
        assert len(scheduler.get_history("f")) == 1

    def test_merge_nothing_new_keeps_last_update(self, scheduler, clock):
        before = scheduler.get_entry("f").last_update
        clock.advance(5)
        assert scheduler.merge("f", scheduler.get_feed("f").items()) == []
        assert scheduler.get_entry("f").last_update == before

    def test_merge_unknown_feed(self, scheduler):
        with pytest.raises(KeyError):
            scheduler.merge("nope", [make_item()])

    def test_unregister(self, scheduler):
        assert scheduler.unregister("f")
        assert not scheduler.unregister("f")
        assert scheduler.get_feed("f") is None
