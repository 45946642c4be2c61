"""
rss_watch

Update detection for syndicated feeds, by polling or by WebSub push.

Core ideas:
- Input: RSS 2.0 / Atom / JSON Feed / RDF / GeoRSS feed URLs
- Process: fetch -> parse -> fingerprint -> detect new -> merge -> announce
- Push: subscribe to a feed's WebSub hub, verify the hub's challenge, and
  authenticate pushed bodies with HMAC before they reach the same merge step
- Output: `item:new` / `feed:updated` events and queryable item collections

Example
-------
import time

from rss_watch import FeedManager, WebSubManager

manager = FeedManager()
manager.on("item:new", lambda ev: print(ev.feed_id, ev.item.title))
manager.register_feed("bbc", "https://feeds.bbci.co.uk/news/rss.xml", category="World", interval=600)

websub = WebSubManager(manager, callback_url="https://example.com/websub")
websub.register_feed_with_websub("verge", "https://www.theverge.com/rss/index.xml")
handler = websub.handler()  # call handler.process_request(...) from your web framework

while True:
    manager.check_updates()
    time.sleep(60)
"""
from .models import FeedSnapshot, Item, Subscription, SubscriptionState
from .fingerprint import FingerprintStrategy, fingerprint
from .dedup import UpdateDetector, deduplicate
from .collection import FeedCollection
from .scheduler import PollingScheduler, UpdateResult
from .events import Event, EventBus, EventPayload
from .parser import AutoDetectParser
from .fetcher import FeedFetcher
from .websub import Notification, WebSubSubscriber, detect_hub
from .handler import HandlerResponse, WebSubHandler
from .core import FeedManager, WebSubManager
from .config import Settings
from .exceptions import (
    FetchError,
    ParseError,
    RSSWatchError,
    SignatureError,
    SubscriptionError,
    VerificationError,
)

__all__ = [
    "Item",
    "FeedSnapshot",
    "Subscription",
    "SubscriptionState",
    "FingerprintStrategy",
    "fingerprint",
    "UpdateDetector",
    "deduplicate",
    "FeedCollection",
    "PollingScheduler",
    "UpdateResult",
    "Event",
    "EventBus",
    "EventPayload",
    "AutoDetectParser",
    "FeedFetcher",
    "Notification",
    "WebSubSubscriber",
    "detect_hub",
    "HandlerResponse",
    "WebSubHandler",
    "FeedManager",
    "WebSubManager",
    "Settings",
    "RSSWatchError",
    "FetchError",
    "ParseError",
    "SignatureError",
    "VerificationError",
    "SubscriptionError",
]
