"""
WebSub (PubSubHubbub) subscriber.

Lifecycle of a topic: unsubscribed -> pending verification -> verified ->
unsubscribed. The hub proves our callback by sending a challenge we echo back;
afterwards it pushes feed bodies, optionally signed with
``X-Hub-Signature: sha1=<hmac>`` under the secret we handed it on subscribe.

Unsubscribing is fire-and-forget: local state is dropped right away, but the
topic is remembered for a while so the hub's unsubscribe verification can be
confirmed and late pushes for it are dropped instead of being rejected.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import feedparser
import requests

from .config import DEFAULT_USER_AGENT
from .exceptions import SignatureError, SubscriptionError, VerificationError
from .models import Item, Subscription, SubscriptionState
from .parser import AutoDetectParser

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature"
DEFAULT_LEASE_SECONDS = 86400


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _find_link(feed_content: str, rel: str) -> Optional[str]:
    try:
        parsed = feedparser.parse(feed_content)
    except Exception:  # pragma: no cover - feedparser is lenient, stay best-effort
        logger.debug("Could not parse feed while looking for rel=%s", rel, exc_info=True)
        return None
    for link in parsed.feed.get("links", []):
        if link.get("rel") == rel and link.get("href"):
            return link["href"]
    return None


def detect_hub(feed_content: str) -> Optional[str]:
    """
    First ``rel="hub"`` link of the feed (Atom ``<link>`` or RSS ``<atom:link>``).

    None means "no hub, keep polling", never an error.
    """
    if not feed_content:
        return None
    return _find_link(feed_content, "hub")


def detect_self(feed_content: str) -> Optional[str]:
    if not feed_content:
        return None
    return _find_link(feed_content, "self")


def parse_link_header(value: str) -> Dict[str, str]:
    """Map rel -> URL for an HTTP ``Link`` header."""
    links: Dict[str, str] = {}
    for link in requests.utils.parse_header_links(value or ""):
        for rel in link.get("rel", "").split():
            links.setdefault(rel, link.get("url", ""))
    return links


def sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha1).hexdigest()


@dataclass
class HubResult:
    success: bool
    feed_url: str
    hub_url: Optional[str] = None
    message: str = ""
    error: Optional[str] = None


@dataclass
class VerificationResult:
    challenge: str
    feed_url: str
    mode: str
    lease_seconds: int
    message: str = ""


@dataclass
class Notification:
    topic: Optional[str]
    items: List[Item] = field(default_factory=list)
    title: str = ""
    authenticated: bool = False
    dropped: bool = False

    @property
    def items_count(self) -> int:
        return len(self.items)


class SubscriptionRepository:
    """Subscriptions keyed by topic; callers only ever get copies of the map."""

    def __init__(self) -> None:
        self._subs: Dict[str, Subscription] = {}
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def put(self, sub: Subscription) -> None:
        with self._lock:
            self._subs[sub.feed_url] = sub

    def get(self, feed_url: str) -> Optional[Subscription]:
        with self._lock:
            return self._subs.get(feed_url)

    def remove(self, feed_url: str) -> Optional[Subscription]:
        with self._lock:
            return self._subs.pop(feed_url, None)

    def all(self) -> List[Subscription]:
        with self._lock:
            return list(self._subs.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._subs)


class WebSubSubscriber:
    def __init__(
        self,
        callback_url: str,
        session: Optional[requests.Session] = None,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
        timeout: float = 10.0,
        require_signature: bool = False,
        parser: Optional[AutoDetectParser] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        tombstone_seconds: int = 3600,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.callback_url = callback_url
        self.session = session or requests.Session()
        self.lease_seconds = lease_seconds
        self.timeout = timeout
        self.require_signature = require_signature
        self.parser = parser or AutoDetectParser()
        self.user_agent = user_agent
        self.tombstone_seconds = tombstone_seconds
        self._clock = clock or _utcnow
        self._subs = SubscriptionRepository()
        # topic -> when it was unsubscribed locally
        self._departed: Dict[str, datetime] = {}

    detect_hub = staticmethod(detect_hub)
    detect_self = staticmethod(detect_self)

    def _send_hub_request(self, hub_url: str, params: Mapping[str, Any]) -> str:
        try:
            resp = self.session.post(
                hub_url,
                data=dict(params),
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise SubscriptionError(f"Hub request to {hub_url} failed: {e}") from e
        if not 200 <= resp.status_code < 300:
            raise SubscriptionError(f"Hub returned HTTP {resp.status_code}")
        return resp.text or ""

    def subscribe(
        self,
        feed_url: str,
        hub_url: str,
        on_verified: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> HubResult:
        """
        Ask ``hub_url`` to push ``feed_url`` to our callback.

        The pending subscription is recorded before the request goes out, since
        some hubs verify before answering, and is rolled back when the hub
        cannot be reached or rejects the request.
        """
        secret = secrets.token_hex(32)
        params = {
            "hub.callback": self.callback_url,
            "hub.mode": "subscribe",
            "hub.topic": feed_url,
            "hub.lease_seconds": self.lease_seconds,
            "hub.secret": secret,
        }
        pending = Subscription(
            feed_url=feed_url,
            hub_url=hub_url,
            callback_url=self.callback_url,
            secret=secret,
            lease_seconds=self.lease_seconds,
            subscribed_at=self._clock(),
            on_verified=on_verified,
        )
        with self._subs.lock:
            previous = self._subs.get(feed_url)
            if previous is not None and previous.verified:
                # a renewal keeps serving the current lease and secret until the hub verifies again
                pending.state = SubscriptionState.VERIFIED
                pending.verified_at = previous.verified_at
                pending.lease_seconds = previous.lease_seconds
                pending.secret = previous.secret
                pending.pending_secret = secret
            self._departed.pop(feed_url, None)
            self._subs.put(pending)

        try:
            self._send_hub_request(hub_url, params)
        except SubscriptionError as e:
            with self._subs.lock:
                if self._subs.get(feed_url) is pending:
                    if previous is not None:
                        self._subs.put(previous)
                    else:
                        self._subs.remove(feed_url)
            logger.warning("Subscribe to %s via %s failed: %s", feed_url, hub_url, e)
            return HubResult(False, feed_url, hub_url, error=str(e))

        logger.info("Subscription request for %s sent to %s", feed_url, hub_url)
        return HubResult(True, feed_url, hub_url, message="Subscription request sent to hub. Awaiting verification...")

    def renew(self, feed_url: str) -> HubResult:
        """Re-send the subscribe request for a known topic, keeping its callback."""
        sub = self._subs.get(feed_url)
        if sub is None:
            return HubResult(False, feed_url, error="Feed not subscribed")
        return self.subscribe(feed_url, sub.hub_url, sub.on_verified)

    def expiring(self, within_seconds: int, now: Optional[datetime] = None) -> List[Subscription]:
        """Verified subscriptions whose lease ends within ``within_seconds``."""
        limit = (now or self._clock()) + timedelta(seconds=within_seconds)
        return [s for s in self._subs.all() if s.expires_at is not None and s.expires_at <= limit]

    def unsubscribe(self, feed_url: str) -> HubResult:
        """
        Ask the hub to stop pushing ``feed_url`` and forget it locally.

        Local state goes as soon as the hub accepts the request, without waiting
        for its verification round-trip.
        """
        sub = self._subs.get(feed_url)
        if sub is None:
            return HubResult(False, feed_url, error="Feed not subscribed")

        params = {
            "hub.callback": sub.callback_url,
            "hub.mode": "unsubscribe",
            "hub.topic": feed_url,
        }
        with self._subs.lock:
            self._departed[feed_url] = self._clock()
        try:
            self._send_hub_request(sub.hub_url, params)
        except SubscriptionError as e:
            with self._subs.lock:
                self._departed.pop(feed_url, None)
            logger.warning("Unsubscribe from %s via %s failed: %s", feed_url, sub.hub_url, e)
            return HubResult(False, feed_url, sub.hub_url, error=str(e))

        with self._subs.lock:
            if self._subs.get(feed_url) is sub:
                self._subs.remove(feed_url)
        logger.info("Unsubscribed %s from %s", feed_url, sub.hub_url)
        return HubResult(True, feed_url, sub.hub_url, message="Unsubscribed from hub")

    def _recently_departed(self, topic: str) -> bool:
        with self._subs.lock:
            since = self._departed.get(topic)
            if since is None:
                return False
            if (self._clock() - since).total_seconds() > self.tombstone_seconds:
                del self._departed[topic]
                return False
            return True

    def verify_challenge(self, params: Mapping[str, Any]) -> VerificationResult:
        """
        Answer a hub verification request.

        Raises VerificationError with status 400 when ``hub.challenge`` or
        ``hub.topic`` is missing, and 403 when the topic is not ours. On success
        the caller must echo ``result.challenge`` verbatim with HTTP 200.
        """
        def param(name: str) -> Optional[str]:
            val = params.get(f"hub.{name}", params.get(f"hub_{name}"))
            if isinstance(val, (list, tuple)):
                val = val[0] if val else None
            return val

        challenge = param("challenge")
        topic = param("topic")
        if not challenge or not topic:
            raise VerificationError("Missing required verification parameters", status=400)
        mode = param("mode") or "subscribe"
        raw_lease = param("lease_seconds")
        try:
            lease_seconds: Optional[int] = int(raw_lease) if raw_lease else None
        except ValueError:
            lease_seconds = None

        if mode == "unsubscribe":
            if not self._recently_departed(topic):
                raise VerificationError(f"No unsubscription pending for feed: {topic}", status=403)
            with self._subs.lock:
                self._departed.pop(topic, None)
            logger.info("Hub confirmed unsubscribe for %s", topic)
            return VerificationResult(challenge, topic, mode, 0, f"Unsubscription verified for {topic}")

        with self._subs.lock:
            sub = self._subs.get(topic)
            if sub is None:
                raise VerificationError(f"Subscription not found for feed: {topic}", status=403)
            sub.state = SubscriptionState.VERIFIED
            # an omitted hub.lease_seconds keeps the lease we asked for
            if lease_seconds is not None:
                sub.lease_seconds = lease_seconds
            lease_seconds = sub.lease_seconds
            sub.verified_at = self._clock()
            if sub.pending_secret:
                sub.secret, sub.pending_secret = sub.pending_secret, None
            callback = sub.on_verified

        logger.info("Subscription verified for %s (lease %ss)", topic, lease_seconds)
        if callback is not None:
            try:
                callback({"feed_url": topic, "mode": mode, "lease_seconds": lease_seconds})
            except Exception:
                logger.exception("Verification callback failed for %s", topic)
        return VerificationResult(challenge, topic, mode, lease_seconds, f"Subscription verified for {topic}")

    def _match(
        self, text: str, headers: Mapping[str, str], topic: Optional[str]
    ) -> Tuple[Optional[str], Optional[Subscription]]:
        """
        Find the subscription a notification belongs to.

        A topic given by the caller or by the hub's ``Link: rel="self"`` header is
        binding. The body's own self link is only a hint; failing that, a single
        known subscription is unambiguous.
        """
        declared = topic or parse_link_header(headers.get("link", "")).get("self")
        if declared:
            return declared, self._subs.get(declared)
        hint = detect_self(text)
        if hint:
            sub = self._subs.get(hint)
            if sub is not None or self._recently_departed(hint):
                return hint, sub
        subs = self._subs.all()
        if len(subs) == 1:
            return subs[0].feed_url, subs[0]
        return hint, None

    def verify_signature(self, body: bytes, signature: str, sub: Optional[Subscription]) -> None:
        if sub is None:
            raise SignatureError("No subscription secret found for signature verification")
        algo, sep, digest = signature.partition("=")
        if not sep:
            raise SignatureError("Invalid signature format")
        if algo.strip().lower() != "sha1":
            raise SignatureError(f"Unsupported signature algorithm: {algo}")
        given = digest.strip().lower()
        if not any(hmac.compare_digest(given, sign(body, secret)) for secret in sub.secrets()):
            raise SignatureError("Signature verification failed")

    def handle_notification(
        self,
        body: Union[str, bytes],
        headers: Mapping[str, str],
        topic: Optional[str] = None,
    ) -> Notification:
        """
        Authenticate and parse a pushed feed body.

        Raises SignatureError before touching the body when the HMAC does not
        match, and ParseError when the body is not a recognised feed.
        """
        raw = body if isinstance(body, bytes) else body.encode("utf-8")
        text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
        lowered = {k.lower(): v for k, v in headers.items()}

        resolved, sub = self._match(text, lowered, topic)
        if resolved and sub is None and self._recently_departed(resolved):
            logger.info("Dropping notification for unsubscribed topic %s", resolved)
            return Notification(resolved, dropped=True)

        signature = lowered.get(SIGNATURE_HEADER.lower())
        if signature:
            self.verify_signature(raw, signature, sub)
        elif self.require_signature:
            raise SignatureError("Missing X-Hub-Signature header")

        feed = self.parser.parse(text, resolved or "")
        logger.debug("Notification for %s carried %d items", resolved, len(feed))
        return Notification(resolved, feed.items(), feed.title, authenticated=bool(signature))

    def get_subscription(self, feed_url: str) -> Optional[Subscription]:
        return self._subs.get(feed_url)

    def subscriptions(self) -> List[Subscription]:
        return self._subs.all()

    def status(self, feed_url: Optional[str] = None) -> Dict[str, Any]:
        if feed_url is not None:
            sub = self._subs.get(feed_url)
            return {"feed_url": feed_url, "data": sub.to_dict() if sub else None}
        subs = self._subs.all()
        return {
            "total_subscriptions": len(subs),
            "subscriptions": [s.to_dict() for s in subs],
        }

    @property
    def subscription_count(self) -> int:
        return len(self._subs)

    @property
    def verified_count(self) -> int:
        return sum(1 for s in self._subs.all() if s.verified)
