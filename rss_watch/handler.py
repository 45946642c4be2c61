from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Mapping, Optional, Union

from .exceptions import ParseError, SignatureError, VerificationError
from .models import Item
from .websub import Notification, WebSubSubscriber

logger = logging.getLogger(__name__)

NotificationCallback = Callable[[Notification], None]


@dataclass
class HandlerResponse:
    status: int
    body: str = ""
    error: Optional[str] = None
    items: List[Item] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class WebSubHandler:
    """
    Framework-agnostic adapter for the WebSub callback endpoint.

    GET carries the hub's verification challenge, POST carries pushed content.
    Wire it into any web framework by passing the request method, query
    parameters, raw body and headers, then send back ``status`` and ``body``.
    """

    def __init__(self, subscriber: WebSubSubscriber, on_notification: Optional[NotificationCallback] = None) -> None:
        self.subscriber = subscriber
        self._on_notification = on_notification

    def on_notification(self, callback: NotificationCallback) -> "WebSubHandler":
        self._on_notification = callback
        return self

    def process_request(
        self,
        method: str,
        query: Mapping[str, str],
        body: Union[str, bytes] = b"",
        headers: Optional[Mapping[str, str]] = None,
    ) -> HandlerResponse:
        verb = method.upper()
        if verb == "GET":
            return self._handle_verification(query)
        if verb == "POST":
            return self._handle_notification(body, headers or {}, query)
        return HandlerResponse(405, "Method not allowed", error=f"Invalid HTTP method: {method}")

    def _handle_verification(self, query: Mapping[str, str]) -> HandlerResponse:
        try:
            result = self.subscriber.verify_challenge(query)
        except VerificationError as e:
            logger.info("Rejected verification request: %s", e)
            return HandlerResponse(e.status, "Verification failed", error=str(e))
        return HandlerResponse(200, result.challenge)

    def _handle_notification(
        self, body: Union[str, bytes], headers: Mapping[str, str], query: Mapping[str, str]
    ) -> HandlerResponse:
        # a callback URL of the form ...?topic=<feed url> pins the topic
        topic = query.get("topic") or query.get("hub.topic")
        try:
            notification = self.subscriber.handle_notification(body, headers, topic=topic)
        except (SignatureError, ParseError) as e:
            logger.warning("Rejected notification: %s", e)
            return HandlerResponse(400, "Invalid notification", error=str(e))

        if self._on_notification is not None and not notification.dropped:
            try:
                self._on_notification(notification)
            except Exception:
                logger.exception("Notification callback failed for %s", notification.topic)
        return HandlerResponse(204, "", items=notification.items)
