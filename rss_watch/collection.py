from __future__ import annotations

import threading
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from .models import FeedSnapshot, Item


class FeedCollection:
    """
    Feeds grouped by category, with cross-feed queries.

    A feed may sit in several categories; the first one given is its primary
    category and is stamped onto the items it returns.
    """

    def __init__(self, default_category: str = "Uncategorized") -> None:
        self.default_category = default_category
        self._feeds: Dict[str, FeedSnapshot] = {}
        self._categories: Dict[str, List[str]] = {}
        self._primary: Dict[str, str] = {}
        self._lock = threading.RLock()

    def add_feed(
        self,
        feed_id: str,
        feed: FeedSnapshot,
        categories: Union[None, str, Sequence[str]] = None,
    ) -> "FeedCollection":
        if categories is None:
            names = [self.default_category]
        elif isinstance(categories, str):
            names = [categories]
        else:
            names = list(categories) or [self.default_category]

        with self._lock:
            self._feeds[feed_id] = feed
            self._primary[feed_id] = names[0]
            for name in names:
                ids = self._categories.setdefault(name, [])
                if feed_id not in ids:
                    ids.append(feed_id)
        return self

    def remove_feed(self, feed_id: str) -> bool:
        with self._lock:
            if feed_id not in self._feeds:
                return False
            del self._feeds[feed_id]
            self._primary.pop(feed_id, None)
            for ids in self._categories.values():
                if feed_id in ids:
                    ids.remove(feed_id)
            return True

    def get_feed(self, feed_id: str) -> Optional[FeedSnapshot]:
        with self._lock:
            return self._feeds.get(feed_id)

    def find_feed_id(self, url: str) -> Optional[str]:
        with self._lock:
            for feed_id, feed in self._feeds.items():
                if feed.url == url:
                    return feed_id
        return None

    def all_feeds(self) -> Dict[str, FeedSnapshot]:
        with self._lock:
            return dict(self._feeds)

    def has_feed(self, feed_id: str) -> bool:
        with self._lock:
            return feed_id in self._feeds

    def categories(self) -> List[str]:
        with self._lock:
            return list(self._categories)

    def has_category(self, name: str) -> bool:
        with self._lock:
            return name in self._categories

    def get_feeds_by_category(self, name: str) -> Dict[str, FeedSnapshot]:
        with self._lock:
            return {fid: self._feeds[fid] for fid in self._categories.get(name, []) if fid in self._feeds}

    def primary_category(self, feed_id: str) -> str:
        with self._lock:
            return self._primary.get(feed_id, self.default_category)

    def _stamped(self, feed_id: str) -> List[Item]:
        feed = self._feeds.get(feed_id)
        if feed is None:
            return []
        category = self._primary.get(feed_id, self.default_category)
        return [it if it.category == category else it.with_category(category) for it in feed.items()]

    def get_all_items(self) -> List[Item]:
        with self._lock:
            out: List[Item] = []
            for feed_id in self._feeds:
                out.extend(self._stamped(feed_id))
            return out

    def get_items_by_category(self, name: str) -> List[Item]:
        """
        Items of every feed whose category equals ``name`` or contains it
        (case-insensitive), so "Sport" also matches "News > Sport".
        """
        needle = name.lower()
        with self._lock:
            matched: List[str] = list(self._categories.get(name, []))
            for cat, ids in self._categories.items():
                if needle in cat.lower():
                    matched.extend(ids)

            items: List[Item] = []
            seen_feeds = set()
            seen_items = set()
            for feed_id in matched:
                if feed_id in seen_feeds or feed_id not in self._feeds:
                    continue
                seen_feeds.add(feed_id)
                for it in self._feeds[feed_id].items():
                    if id(it) not in seen_items:
                        seen_items.add(id(it))
                        items.append(it)
            return items

    def get_items_by_feeds(self, feed_ids: Iterable[str]) -> List[Item]:
        with self._lock:
            out: List[Item] = []
            for feed_id in feed_ids:
                feed = self._feeds.get(feed_id)
                if feed is not None:
                    out.extend(feed.items())
            return out

    def get_latest_items(self, limit: int = 10) -> List[Item]:
        items = sorted(self.get_all_items(), key=lambda it: it.published_at, reverse=True)
        return items[:limit]

    def get_latest_items_by_category(self, name: str, limit: int = 10) -> List[Item]:
        items = sorted(self.get_items_by_category(name), key=lambda it: it.published_at, reverse=True)
        return items[:limit]

    def search_items(self, query: str) -> List[Item]:
        """Case-insensitive substring search over title, content, category and link."""
        q = query.lower()
        results: List[Item] = []
        for it in self.get_all_items():
            for text in (it.title, it.content, it.category, it.link):
                if text and q in text.lower():
                    results.append(it)
                    break
        return results

    def stats(self) -> Dict[str, Any]:
        names = self.categories()
        return {
            "total_feeds": len(self),
            "total_categories": len(names),
            "total_items": len(self.get_all_items()),
            "categories": {
                name: {
                    "feeds_count": len(self.get_feeds_by_category(name)),
                    "items_count": len(self.get_items_by_category(name)),
                }
                for name in names
            },
            "feeds_list": list(self.all_feeds()),
        }

    def metadata(self) -> Dict[str, Any]:
        dates = [it.published_at for it in self.get_all_items()]
        return {
            "stats": self.stats(),
            "earliest_item": min(dates).isoformat() if dates else None,
            "latest_item": max(dates).isoformat() if dates else None,
            "feeds_with_enclosures": sum(
                1 for feed in self.all_feeds().values() if any(it.enclosure for it in feed.items())
            ),
        }

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            categories = {name: list(ids) for name, ids in self._categories.items()}
        return {
            "feeds": {fid: feed.to_dict() for fid, feed in self.all_feeds().items()},
            "categories": categories,
            "stats": self.stats(),
        }

    def clear(self) -> None:
        with self._lock:
            self._feeds.clear()
            self._categories.clear()
            self._primary.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._feeds)
