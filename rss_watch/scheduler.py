"""
Interval-based polling of registered feeds.

Each feed cycles ``registered -> fetching -> updated | unchanged | failed ->
registered``. A sweep (``check_updates``) visits feeds in registration order
and only fetches the ones whose interval has elapsed. All mutation of a feed's
entry happens under that feed's lock, which the push path (``merge``) shares.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional

from .dedup import UpdateDetector
from .exceptions import RSSWatchError
from .models import FeedSnapshot, Item

logger = logging.getLogger(__name__)

FetchFunc = Callable[[str], FeedSnapshot]
Clock = Callable[[], datetime]

HISTORY_SIZE = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ScheduledFeedEntry:
    feed_id: str
    url: str
    interval_seconds: int
    last_update: datetime
    keep_history: bool
    snapshot: FeedSnapshot
    # last successful fetch, new items or not; reported only, never gates polling
    last_checked: datetime = None  # type: ignore[assignment]
    history: Optional[Deque[FeedSnapshot]] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self) -> None:
        if self.last_checked is None:
            self.last_checked = self.last_update

    def is_due(self, now: datetime) -> bool:
        return (now - self.last_update).total_seconds() >= self.interval_seconds

    @property
    def next_update(self) -> datetime:
        return self.last_update + timedelta(seconds=self.interval_seconds)


@dataclass
class UpdateResult:
    feed_id: str
    snapshot: FeedSnapshot
    new_items: List[Item]

    @property
    def new_items_count(self) -> int:
        return len(self.new_items)


class FeedRepository:
    """Scheduled entries in registration order; the map itself has its own lock."""

    def __init__(self) -> None:
        self._entries: Dict[str, ScheduledFeedEntry] = {}
        self._lock = threading.Lock()

    def put(self, entry: ScheduledFeedEntry) -> None:
        with self._lock:
            self._entries[entry.feed_id] = entry

    def get(self, feed_id: str) -> Optional[ScheduledFeedEntry]:
        with self._lock:
            return self._entries.get(feed_id)

    def remove(self, feed_id: str) -> Optional[ScheduledFeedEntry]:
        with self._lock:
            return self._entries.pop(feed_id, None)

    def entries(self) -> List[ScheduledFeedEntry]:
        with self._lock:
            return list(self._entries.values())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, feed_id: object) -> bool:
        with self._lock:
            return feed_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class PollingScheduler:
    def __init__(
        self,
        fetch: FetchFunc,
        clock: Optional[Clock] = None,
        history_size: int = HISTORY_SIZE,
        repository: Optional[FeedRepository] = None,
    ) -> None:
        self._fetch = fetch
        self._clock = clock or _utcnow
        self.history_size = history_size
        self._repo = repository or FeedRepository()

    def register(
        self,
        feed_id: str,
        url: str,
        interval_seconds: int = 1800,
        keep_history: bool = True,
    ) -> ScheduledFeedEntry:
        """
        Fetch ``url`` once to seed the baseline and start tracking it.

        The initial fetch error propagates and nothing is registered.
        """
        snapshot = self._fetch(url)
        now = self._clock()
        entry = ScheduledFeedEntry(
            feed_id=feed_id,
            url=url,
            interval_seconds=interval_seconds,
            last_update=now,
            keep_history=keep_history,
            snapshot=snapshot,
            history=deque([snapshot.copy()], maxlen=self.history_size) if keep_history else None,
        )
        self._repo.put(entry)
        logger.info("Registered feed %s (%s), %d items, every %ds", feed_id, url, len(snapshot), interval_seconds)
        return entry

    def register_many(self, feeds: Mapping[str, Mapping[str, Any]]) -> "PollingScheduler":
        for feed_id, cfg in feeds.items():
            url = cfg.get("url")
            if url:
                self.register(
                    feed_id,
                    url,
                    int(cfg.get("interval", 1800)),
                    bool(cfg.get("keep_history", True)),
                )
        return self

    def _poll(self, entry: ScheduledFeedEntry, now: datetime) -> List[Item]:
        with entry.lock:
            fresh = self._fetch(entry.url)
            new_items = UpdateDetector.detect(fresh.items(), set(entry.snapshot.fingerprints()))
            entry.last_checked = now
            if new_items:
                entry.snapshot.add_items(new_items)
                entry.last_update = now
                if entry.history is not None:
                    entry.history.append(fresh)
            return new_items

    def check_updates(self) -> Dict[str, UpdateResult]:
        """
        Poll every due feed and return the ones that produced new items.

        A failure on one feed is logged and leaves its cadence untouched, so it is
        retried on the next sweep; the other feeds are still processed.
        """
        now = self._clock()
        updates: Dict[str, UpdateResult] = {}
        for entry in self._repo.entries():
            if not entry.is_due(now):
                continue
            try:
                new_items = self._poll(entry, now)
            except RSSWatchError as e:
                logger.warning("Error updating feed %s: %s", entry.feed_id, e)
                continue
            except Exception:
                logger.exception("Unexpected error updating feed %s", entry.feed_id)
                continue
            if new_items:
                logger.info("Feed %s: %d new items", entry.feed_id, len(new_items))
                updates[entry.feed_id] = UpdateResult(entry.feed_id, entry.snapshot, new_items)
        return updates

    def refresh(self, feed_id: str) -> List[Item]:
        """Poll one feed regardless of its interval; errors propagate."""
        entry = self._repo.get(feed_id)
        if entry is None:
            raise KeyError(feed_id)
        return self._poll(entry, self._clock())

    def force_update(self, feed_id: str) -> bool:
        if feed_id not in self._repo:
            return False
        try:
            self.refresh(feed_id)
        except KeyError:
            return False
        except Exception as e:
            logger.warning("Error force-updating feed %s: %s", feed_id, e)
            return False
        return True

    def merge(self, feed_id: str, items: Iterable[Item]) -> List[Item]:
        """Merge externally delivered items (push path); returns the new ones."""
        entry = self._repo.get(feed_id)
        if entry is None:
            raise KeyError(feed_id)
        with entry.lock:
            new_items = UpdateDetector.detect(items, set(entry.snapshot.fingerprints()))
            added = entry.snapshot.add_items(new_items)
            if added:
                entry.last_update = self._clock()
            return added

    def get_entry(self, feed_id: str) -> Optional[ScheduledFeedEntry]:
        return self._repo.get(feed_id)

    def get_feed(self, feed_id: str) -> Optional[FeedSnapshot]:
        entry = self._repo.get(feed_id)
        return entry.snapshot if entry else None

    def all_feeds(self) -> Dict[str, FeedSnapshot]:
        return {e.feed_id: e.snapshot for e in self._repo.entries()}

    def feed_ids(self) -> List[str]:
        return [e.feed_id for e in self._repo.entries()]

    def get_status(self, feed_id: str) -> Optional[Dict[str, Any]]:
        entry = self._repo.get(feed_id)
        if entry is None:
            return None
        now = self._clock()
        return {
            "feed_id": feed_id,
            "url": entry.url,
            "last_update": entry.last_update.isoformat(),
            "last_checked": entry.last_checked.isoformat(),
            "next_update": entry.next_update.isoformat(),
            "interval": entry.interval_seconds,
            "seconds_since_update": int((now - entry.last_update).total_seconds()),
            "items_count": len(entry.snapshot),
            "due": entry.is_due(now),
        }

    def all_status(self) -> Dict[str, Dict[str, Any]]:
        return {e.feed_id: self.get_status(e.feed_id) for e in self._repo.entries()}

    def get_history(self, feed_id: str) -> Optional[List[FeedSnapshot]]:
        entry = self._repo.get(feed_id)
        if entry is None or entry.history is None:
            return None
        with entry.lock:
            return list(entry.history)

    def unregister(self, feed_id: str) -> bool:
        removed = self._repo.remove(feed_id) is not None
        if removed:
            logger.info("Unregistered feed %s", feed_id)
        return removed

    def clear(self) -> None:
        self._repo.clear()

    def __contains__(self, feed_id: object) -> bool:
        return feed_id in self._repo

    def __len__(self) -> int:
        return len(self._repo)
