from unittest.mock import MagicMock

import pytest
import requests

from rss_watch import WebSubHandler, WebSubSubscriber
from rss_watch.websub import sign

from .support import DAY, rss

TOPIC = "https://example.com/feed"


@pytest.fixture
def subscriber(clock):
    session = MagicMock(spec=requests.Session)
    session.post.return_value = MagicMock(status_code=202, text="")
    sub = WebSubSubscriber("https://me.example.com/cb", session=session, clock=clock)
    sub.subscribe(TOPIC, "https://hub.example.com/")
    return sub


@pytest.fixture
def received():
    return []


@pytest.fixture
def handler(subscriber, received):
    return WebSubHandler(subscriber, on_notification=received.append)


BODY = rss([("a", "Alpha", DAY)], self_url=TOPIC).encode("utf-8")


class TestVerification:
    def test_challenge_is_echoed(self, handler):
        resp = handler.process_request(
            "GET", {"hub.mode": "subscribe", "hub.topic": TOPIC, "hub.challenge": "abc123", "hub.lease_seconds": "86400"}
        )
        assert resp.status == 200
        assert resp.body == "abc123"
        assert resp.ok

    def test_unknown_topic(self, handler):
        resp = handler.process_request(
            "get", {"hub.mode": "subscribe", "hub.topic": "https://example.com/nope", "hub.challenge": "x"}
        )
        assert resp.status == 403
        assert resp.body == "Verification failed"

    def test_missing_challenge(self, handler):
        resp = handler.process_request("GET", {"hub.mode": "subscribe", "hub.topic": TOPIC})
        assert resp.status == 400
        assert not resp.ok


class TestNotification:
    def test_signed_push(self, handler, subscriber, received):
        secret = subscriber.get_subscription(TOPIC).secret
        resp = handler.process_request("POST", {}, BODY, {"X-Hub-Signature": "sha1=" + sign(BODY, secret)})
        assert resp.status == 204
        assert resp.body == ""
        assert [it.id for it in resp.items] == ["a"]
        (note,) = received
        assert note.topic == TOPIC
        assert note.authenticated

    def test_bad_signature(self, handler, received):
        resp = handler.process_request("POST", {}, BODY, {"X-Hub-Signature": "sha1=deadbeef"})
        assert resp.status == 400
        assert resp.body == "Invalid notification"
        assert received == []

    def test_unparseable_body(self, handler, received):
        resp = handler.process_request("POST", {"topic": TOPIC}, b"hello", {})
        assert resp.status == 400
        assert received == []

    def test_failing_callback_still_acknowledges(self, subscriber):
        def boom(note):
            raise RuntimeError("downstream bug")

        resp = WebSubHandler(subscriber).on_notification(boom).process_request("POST", {}, BODY, {})
        assert resp.status == 204

    def test_topic_from_callback_query(self, handler, subscriber, received):
        other = "https://example.com/other"
        subscriber.subscribe(other, "https://hub.example.com/")
        secret = subscriber.get_subscription(other).secret
        resp = handler.process_request(
            "POST", {"topic": other}, BODY, {"X-Hub-Signature": "sha1=" + sign(BODY, secret)}
        )
        assert resp.status == 204
        assert received[0].topic == other


@pytest.mark.parametrize("method", ["PUT", "DELETE", "PATCH"])
def test_other_methods_are_not_allowed(handler, method):
    resp = handler.process_request(method, {})
    assert resp.status == 405
