from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .collection import FeedCollection
from .config import Settings
from .dedup import deduplicate
from .events import Event, EventBus, EventPayload
from .exceptions import RSSWatchError
from .fetcher import FeedFetcher
from .handler import WebSubHandler
from .models import FeedSnapshot, Item
from .scheduler import PollingScheduler, UpdateResult
from .websub import HubResult, Notification, WebSubSubscriber, detect_hub

logger = logging.getLogger(__name__)

Categories = Union[None, str, Sequence[str]]


class FeedManager:
    """
    High-level API: track feeds, detect new items, and announce them.

    Polling (``check_updates``) and push (``ingest``) both merge through the
    scheduler's per-feed lock and the same novelty check, so an item seen on
    one path is never announced again by the other.

    Example
    -------
    manager = FeedManager()
    manager.on("item:new", lambda ev: print(ev.feed_id, ev.item.title))
    manager.register_feed("bbc", "https://feeds.bbci.co.uk/news/rss.xml", category="World")
    manager.check_updates()
    """

    def __init__(
        self,
        fetcher: Optional[FeedFetcher] = None,
        scheduler: Optional[PollingScheduler] = None,
        collection: Optional[FeedCollection] = None,
        events: Optional[EventBus] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.fetcher = fetcher or FeedFetcher(
            timeout=self.settings.http_timeout,
            user_agent=self.settings.user_agent,
        )
        self.scheduler = scheduler or PollingScheduler(self.fetcher.fetch, history_size=self.settings.history_size)
        self.collection = collection or FeedCollection(self.settings.default_category)
        self.events = events or EventBus()

    def on(self, event: Union[Event, str], handler: Callable[[EventPayload], None]) -> "FeedManager":
        """Events: 'feed:registered', 'feed:updated', 'feed:removed', 'item:new'."""
        self.events.on(event, handler)
        return self

    def register_feed(
        self,
        feed_id: str,
        url: str,
        category: Categories = None,
        interval: Optional[int] = None,
        keep_history: Optional[bool] = None,
    ) -> FeedSnapshot:
        entry = self.scheduler.register(
            feed_id,
            url,
            interval if interval is not None else self.settings.poll_interval,
            keep_history if keep_history is not None else self.settings.keep_history,
        )
        self.collection.add_feed(feed_id, entry.snapshot, category)
        self.events.emit(Event.FEED_REGISTERED, feed_id, url=url)
        return entry.snapshot

    def register_feeds(self, feeds: Mapping[str, Mapping[str, Any]]) -> "FeedManager":
        for feed_id, cfg in feeds.items():
            if not cfg.get("url"):
                continue
            self.register_feed(
                feed_id,
                cfg["url"],
                category=cfg.get("category"),
                interval=cfg.get("interval"),
                keep_history=cfg.get("keep_history"),
            )
        return self

    def _announce(self, feed_id: str, new_items: List[Item]) -> None:
        if not new_items:
            return
        for item in new_items:
            self.events.emit(Event.ITEM_NEW, feed_id, item)
        self.events.emit(Event.FEED_UPDATED, feed_id, new_items_count=len(new_items))

    def check_updates(self) -> Dict[str, UpdateResult]:
        """Run one polling sweep; returns new items grouped by feed."""
        updates = self.scheduler.check_updates()
        for feed_id, result in updates.items():
            self._announce(feed_id, result.new_items)
        return updates

    def force_update_feed(self, feed_id: str) -> bool:
        try:
            new_items = self.scheduler.refresh(feed_id)
        except KeyError:
            return False
        except Exception as e:
            logger.warning("Error force-updating feed %s: %s", feed_id, e)
            return False
        self._announce(feed_id, new_items)
        return True

    def force_update_all(self) -> List[str]:
        return [fid for fid in self.scheduler.feed_ids() if self.force_update_feed(fid)]

    def feed_id_for(self, url: str) -> Optional[str]:
        for feed_id in self.scheduler.feed_ids():
            entry = self.scheduler.get_entry(feed_id)
            if entry is not None and url in (entry.url, entry.snapshot.url):
                return feed_id
        return None

    def ingest(self, feed_url: str, items: Iterable[Item]) -> List[Item]:
        """
        Merge pushed items for ``feed_url``; returns and announces only the new ones.

        Items for a feed that is not registered are ignored.
        """
        feed_id = self.feed_id_for(feed_url)
        if feed_id is None:
            logger.info("Ignoring pushed items for unregistered feed %s", feed_url)
            return []
        try:
            new_items = self.scheduler.merge(feed_id, deduplicate(items))
        except KeyError:
            # removed while the notification was in flight
            return []
        self._announce(feed_id, new_items)
        return new_items

    def remove_feed(self, feed_id: str) -> bool:
        in_collection = self.collection.remove_feed(feed_id)
        in_scheduler = self.scheduler.unregister(feed_id)
        if not (in_collection or in_scheduler):
            return False
        self.events.emit(Event.FEED_REMOVED, feed_id)
        return True

    def get_feed(self, feed_id: str) -> Optional[FeedSnapshot]:
        return self.collection.get_feed(feed_id)

    def get_all_items(self) -> List[Item]:
        return self.collection.get_all_items()

    def get_latest_items(self, limit: int = 10) -> List[Item]:
        return self.collection.get_latest_items(limit)

    def get_items_by_category(self, category: str) -> List[Item]:
        return self.collection.get_items_by_category(category)

    def get_latest_items_by_category(self, category: str, limit: int = 10) -> List[Item]:
        return self.collection.get_latest_items_by_category(category, limit)

    def search_items(self, query: str) -> List[Item]:
        return self.collection.search_items(query)

    def get_history(self, feed_id: str) -> Optional[List[FeedSnapshot]]:
        return self.scheduler.get_history(feed_id)

    def get_feed_status(self, feed_id: str) -> Optional[Dict[str, Any]]:
        return self.scheduler.get_status(feed_id)

    def get_all_feeds_status(self) -> Dict[str, Dict[str, Any]]:
        return self.scheduler.all_status()

    def stats(self) -> Dict[str, Any]:
        return self.collection.stats()

    def metadata(self) -> Dict[str, Any]:
        return {
            "collection": self.collection.metadata(),
            "feeds_status": self.get_all_feeds_status(),
        }


@dataclass
class WebSubRegistration:
    feed_id: str
    feed_url: str
    status: str
    hub_url: Optional[str] = None
    subscription: Optional[HubResult] = None
    error: Optional[str] = None

    @property
    def has_hub(self) -> bool:
        return self.hub_url is not None


class WebSubManager:
    """
    Push-first feed tracking: subscribe to a feed's hub when it advertises one,
    and keep polling it regardless (or exclusively, when there is no hub).
    """

    def __init__(
        self,
        manager: FeedManager,
        callback_url: Optional[str] = None,
        subscriber: Optional[WebSubSubscriber] = None,
        auto_subscribe: bool = True,
        fallback_to_polling: bool = True,
    ) -> None:
        self.manager = manager
        settings = manager.settings
        if subscriber is None:
            url = callback_url or settings.callback_url
            if not url:
                raise ValueError("A callback URL is required (argument or RSS_WATCH_CALLBACK_URL)")
            subscriber = WebSubSubscriber(
                url,
                lease_seconds=settings.lease_seconds,
                timeout=settings.hub_timeout,
                require_signature=settings.require_signature,
                parser=getattr(manager.fetcher, "parser", None),
                user_agent=settings.user_agent,
            )
        self.subscriber = subscriber
        self.auto_subscribe = auto_subscribe
        self.fallback_to_polling = fallback_to_polling
        self._feed_hubs: Dict[str, str] = {}

    def register_feed_with_websub(self, feed_id: str, feed_url: str, **options: Any) -> WebSubRegistration:
        """
        Register ``feed_url`` for polling, then subscribe to its hub if one is advertised.

        Options are passed to ``FeedManager.register_feed`` (category, interval, keep_history).
        """
        try:
            snapshot = self.manager.register_feed(feed_id, feed_url, **options)
        except RSSWatchError as e:
            logger.warning("Could not register %s (%s): %s", feed_id, feed_url, e)
            return WebSubRegistration(feed_id, feed_url, "failed", error=str(e))

        hub_url = detect_hub(snapshot.original_content or "")
        if hub_url is None:
            if self.fallback_to_polling:
                logger.info("No WebSub hub for %s; falling back to polling", feed_url)
            return WebSubRegistration(feed_id, feed_url, "no_hub_found")

        self._feed_hubs[feed_id] = hub_url
        if not self.auto_subscribe:
            return WebSubRegistration(feed_id, feed_url, "hub_found", hub_url=hub_url)

        result = self.subscriber.subscribe(
            feed_url,
            hub_url,
            lambda data: logger.info("WebSub subscription for %s verified (lease %ss)", feed_id, data["lease_seconds"]),
        )
        status = "pending_verification" if result.success else "subscription_failed"
        return WebSubRegistration(feed_id, feed_url, status, hub_url=hub_url, subscription=result, error=result.error)

    def register_many(self, feeds: Mapping[str, Union[str, Mapping[str, Any]]]) -> Dict[str, WebSubRegistration]:
        results: Dict[str, WebSubRegistration] = {}
        for feed_id, data in feeds.items():
            if isinstance(data, str):
                results[feed_id] = self.register_feed_with_websub(feed_id, data)
                continue
            url = data.get("url")
            if url:
                results[feed_id] = self.register_feed_with_websub(feed_id, url, **data.get("options", {}))
        return results

    def check_updates(self) -> Dict[str, UpdateResult]:
        return self.manager.check_updates()

    def _ingest(self, notification: Notification) -> List[Item]:
        if notification.dropped or not notification.topic:
            return []
        return self.manager.ingest(notification.topic, notification.items)

    def handle_notification(
        self, body: Union[str, bytes], headers: Mapping[str, str], topic: Optional[str] = None
    ) -> List[Item]:
        """Authenticate, parse and merge a push; returns the items that were new."""
        return self._ingest(self.subscriber.handle_notification(body, headers, topic=topic))

    def handler(self) -> WebSubHandler:
        return WebSubHandler(self.subscriber, on_notification=self._ingest)

    def unsubscribe(self, feed_id: str) -> HubResult:
        entry = self.manager.scheduler.get_entry(feed_id)
        url = entry.url if entry else feed_id
        result = self.subscriber.unsubscribe(url)
        if result.success:
            self._feed_hubs.pop(feed_id, None)
        return result

    def websub_feeds(self) -> List[Dict[str, str]]:
        return [{"feed_id": fid, "hub_url": hub} for fid, hub in self._feed_hubs.items()]

    def statistics(self) -> Dict[str, Any]:
        stats = self.manager.stats()
        return {
            "total_feeds": stats["total_feeds"],
            "total_items": stats["total_items"],
            "websub_enabled": len(self._feed_hubs),
            "verified_subscriptions": self.subscriber.verified_count,
            "auto_subscribe": self.auto_subscribe,
            "fallback_polling": self.fallback_to_polling,
            "subscriptions": self.subscriber.status()["subscriptions"],
        }
