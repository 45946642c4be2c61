from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .fingerprint import FingerprintStrategy, fingerprint


@dataclass(frozen=True)
class Item:
    """
    Stable public model representing a normalized feed entry.

    WARNING: Do not change fields lightly. This is the library's contract.
    An item needs a non-empty ``id`` or a non-empty ``link``. ``extra`` is copied
    into a read-only mapping.
    """
    id: str
    title: str
    link: str
    published_at: datetime
    content: Optional[str] = None
    enclosure: Optional[str] = None
    category: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        if not self.id and not self.link:
            raise ValueError("Either id or link must be provided")
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra or {})))

    def fingerprint(self, strategy: str = "default") -> str:
        return fingerprint(self, strategy)

    def equals(self, other: "Item") -> bool:
        return self.fingerprint() == other.fingerprint()

    def is_similar(self, other: "Item") -> bool:
        return self.fingerprint("content") == other.fingerprint("content")

    def with_category(self, category: str) -> "Item":
        return replace(self, category=category)

    def get_extra(self, key: str, default: Any = None) -> Any:
        """Look up an extra field; dotted keys walk nested mappings ("author.name")."""
        value: Any = self.extra
        for part in key.split("."):
            if not isinstance(value, Mapping) or part not in value:
                return default
            value = value[part]
        return value

    def has_extra(self, key: str) -> bool:
        marker = object()
        return self.get_extra(key, marker) is not marker

    def metadata(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "url": self.link,
            "category": self.category,
            "published_date": self.published_at.isoformat(),
            "has_content": bool(self.content),
            "has_enclosure": bool(self.enclosure),
            "extra_fields_count": len(self.extra),
            **{f"fingerprint_{s.value}": self.fingerprint(s.value) for s in FingerprintStrategy},
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "link": self.link,
            "content": self.content,
            "enclosure": self.enclosure,
            "published_at": self.published_at.isoformat(),
            "category": self.category,
            "extra": dict(self.extra),
            "fingerprint": self.fingerprint(),
        }

    def __str__(self) -> str:
        return f"{self.title} - {self.published_at:%Y-%m-%d %H:%M} ({self.category or 'uncategorized'})"


class FeedSnapshot:
    """
    Items of one feed keyed by their default fingerprint.

    At most one item per fingerprint: ``add_item`` with a known fingerprint is a
    no-op (first write wins).
    """

    def __init__(self, url: str, title: str = "", original_content: Optional[str] = None) -> None:
        self.url = url
        self.title = title
        self.original_content = original_content
        self._items: Dict[str, Item] = {}
        self._lock = threading.Lock()

    def add_item(self, item: Item) -> bool:
        fp = item.fingerprint()
        with self._lock:
            if fp in self._items:
                return False
            self._items[fp] = item
            return True

    def add_items(self, items: Iterable[Item]) -> List[Item]:
        """Insert items, returning the ones that were actually new."""
        return [it for it in items if self.add_item(it)]

    def items(self) -> List[Item]:
        with self._lock:
            return list(self._items.values())

    def fingerprints(self) -> List[str]:
        with self._lock:
            return list(self._items)

    def has_item(self, fp: str) -> bool:
        with self._lock:
            return fp in self._items

    def get_item(self, fp: str) -> Optional[Item]:
        with self._lock:
            return self._items.get(fp)

    def remove_item(self, fp: str) -> bool:
        with self._lock:
            return self._items.pop(fp, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def copy(self) -> "FeedSnapshot":
        dup = FeedSnapshot(self.url, self.title, self.original_content)
        dup.add_items(self.items())
        return dup

    def find_by_category(self, category: str) -> List[Item]:
        return [it for it in self.items() if it.category == category]

    def find_after(self, when: datetime) -> List[Item]:
        return [it for it in self.items() if it.published_at > when]

    def find_before(self, when: datetime) -> List[Item]:
        return [it for it in self.items() if it.published_at < when]

    def search_by_title(self, query: str) -> List[Item]:
        q = query.lower()
        return [it for it in self.items() if q in it.title.lower()]

    def sorted_items(self, descending: bool = True) -> List[Item]:
        return sorted(self.items(), key=lambda it: it.published_at, reverse=descending)

    def latest(self, limit: int = 10) -> List[Item]:
        return self.sorted_items()[:limit]

    def paginate(self, page: int = 1, per_page: int = 10) -> List[Item]:
        start = (page - 1) * per_page
        return self.items()[start:start + per_page]

    def metadata(self) -> Dict[str, Any]:
        items = self.items()
        dates = [it.published_at for it in items]
        return {
            "url": self.url,
            "title": self.title,
            "total_items": len(items),
            "first_item_date": min(dates).isoformat() if dates else None,
            "latest_item_date": max(dates).isoformat() if dates else None,
            "categories": sorted({it.category for it in items if it.category}),
            "items_with_enclosures": sum(1 for it in items if it.enclosure),
        }

    def to_dict(self) -> Dict[str, Any]:
        items = self.items()
        return {
            "url": self.url,
            "title": self.title,
            "items_count": len(items),
            "items": [it.to_dict() for it in items],
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, item: object) -> bool:
        return isinstance(item, Item) and self.has_item(item.fingerprint())

    def __repr__(self) -> str:
        return f"FeedSnapshot(url={self.url!r}, items={len(self)})"


class SubscriptionState(str, Enum):
    PENDING = "pending_verification"
    VERIFIED = "verified"


@dataclass
class Subscription:
    feed_url: str
    hub_url: str
    callback_url: str
    secret: str
    lease_seconds: int
    subscribed_at: datetime
    state: SubscriptionState = SubscriptionState.PENDING
    verified_at: Optional[datetime] = None
    # secret sent with a renewal; active only once the hub verifies it
    pending_secret: Optional[str] = field(default=None, repr=False)
    on_verified: Optional[Callable[[Dict[str, Any]], None]] = field(default=None, repr=False)

    @property
    def verified(self) -> bool:
        return self.state is SubscriptionState.VERIFIED

    def secrets(self) -> List[str]:
        """Secrets a push may be signed with: the active one, then a pending renewal."""
        return [s for s in (self.secret, self.pending_secret) if s]

    @property
    def expires_at(self) -> Optional[datetime]:
        if not self.verified or self.verified_at is None or self.lease_seconds <= 0:
            return None
        return self.verified_at + timedelta(seconds=self.lease_seconds)

    def to_dict(self) -> Dict[str, Any]:
        expires = self.expires_at
        return {
            "feed_url": self.feed_url,
            "hub_url": self.hub_url,
            "callback_url": self.callback_url,
            "state": self.state.value,
            "verified": self.verified,
            "subscribed_at": self.subscribed_at.isoformat(),
            "lease_seconds": self.lease_seconds,
            "expires_at": expires.isoformat() if expires else None,
        }
