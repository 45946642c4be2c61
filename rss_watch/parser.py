from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

import feedparser
from feedparser.datetimes import _parse_date

from .exceptions import ParseError
from .models import FeedSnapshot
from .normalizer import to_item

logger = logging.getLogger(__name__)


class FeedAdapter(Protocol):
    name: str

    def supports(self, raw: str) -> bool:  # pragma: no cover - interface
        ...

    def parse(self, raw: str, source_url: str) -> FeedSnapshot:  # pragma: no cover - interface
        ...


def _struct_to_datetime(val: Any) -> Optional[datetime]:
    if isinstance(val, tuple) and len(val) >= 6:
        try:
            return datetime(*val[:6], tzinfo=timezone.utc)
        except (TypeError, ValueError):
            return None
    return None


def _to_datetime(entry: Dict[str, Any]) -> Optional[datetime]:
    """
    Convert feed entry date fields to timezone-aware UTC datetime.
    Priority: published_parsed -> updated_parsed -> created_parsed -> None.
    """
    for key in ("published_parsed", "updated_parsed", "created_parsed"):
        dt = _struct_to_datetime(entry.get(key))
        if dt:
            return dt
    # feedparser normally fills *_parsed; retry its date parser on raw strings
    for key in ("published", "updated", "created"):
        s = entry.get(key)
        if isinstance(s, str) and s:
            dt = _struct_to_datetime(_parse_date(s))
            if dt:
                return dt
    return None


def _first_enclosure(entry: Dict[str, Any]) -> Optional[str]:
    for enc in entry.get("enclosures") or []:
        href = enc.get("href") or enc.get("url")
        if href:
            return href
    for link in entry.get("links") or []:
        if link.get("rel") == "enclosure" and link.get("href"):
            return link["href"]
    return None


def _extra(entry: Dict[str, Any]) -> Dict[str, Any]:
    extra: Dict[str, Any] = {}
    for key in ("author", "comments"):
        val = entry.get(key)
        if isinstance(val, str) and val.strip():
            extra[key] = val.strip()
    author_detail = entry.get("author_detail")
    if isinstance(author_detail, dict) and author_detail:
        extra["author_detail"] = {k: v for k, v in author_detail.items() if isinstance(v, str)}
    src = entry.get("source")
    if isinstance(src, dict) and src.get("title"):
        extra["source"] = src["title"]
    tags = [t.get("term") for t in entry.get("tags") or [] if isinstance(t, dict) and t.get("term")]
    if len(tags) > 1:
        extra["tags"] = tags
    thumbs = entry.get("media_thumbnail")
    if isinstance(thumbs, list) and thumbs and thumbs[0].get("url"):
        extra["media_thumbnail"] = thumbs[0]["url"]
    media = entry.get("media_content")
    if isinstance(media, list) and media:
        extra["media_content"] = [
            {"url": m.get("url", ""), "type": m.get("type", ""), "medium": m.get("medium", "")} for m in media
        ]
    where = entry.get("where")
    if isinstance(where, dict) and where.get("coordinates"):
        # GeoJSON order is (lon, lat)
        coords = where["coordinates"]
        if where.get("type") == "Point" and len(coords) >= 2:
            extra["geo"] = {"lat": float(coords[1]), "lon": float(coords[0])}
        else:
            extra["geo"] = {"type": where.get("type"), "coordinates": coords}
    elif entry.get("georss_point"):
        try:
            lat, lon = (float(p) for p in str(entry["georss_point"]).split()[:2])
            extra["geo"] = {"lat": lat, "lon": lon}
        except ValueError:
            pass
    return extra


def parse_entry(entry: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map a raw feed entry (from feedparser) to a normalized dict with common fields.
    Fields: id, title, link, content, enclosure, published_at (datetime|None), category, extra
    """
    title = (entry.get("title") or "").strip()
    link = (entry.get("link") or entry.get("feedburner_origlink") or "").strip()

    # Prefer entry id/guid if present
    guid = ""
    for k in ("id", "guid"):
        v = entry.get(k)
        if isinstance(v, str) and v.strip():
            guid = v.strip()
            break

    content = None
    blocks = entry.get("content")
    if isinstance(blocks, list) and blocks and blocks[0].get("value"):
        content = blocks[0]["value"]
    if not content:
        content = entry.get("summary") or entry.get("description")

    # Category: prefer first tag term
    category = None
    tags = entry.get("tags")
    if isinstance(tags, list) and tags:
        t0 = tags[0]
        if isinstance(t0, dict):
            term = t0.get("term")
            if isinstance(term, str) and term.strip():
                category = term.strip()

    return {
        "id": guid or link,
        "title": title,
        "link": link,
        "content": content,
        "enclosure": _first_enclosure(entry),
        "published_at": _to_datetime(entry),
        "category": category,
        "extra": _extra(entry),
    }


def _build_snapshot(entries: Sequence[Dict[str, Any]], title: str, source_url: str, raw: str) -> FeedSnapshot:
    feed = FeedSnapshot(source_url, title, original_content=raw)
    fetched_at = datetime.now(timezone.utc)
    for e in entries:
        try:
            feed.add_item(to_item(e, fallback_date=fetched_at))
        except ValueError as exc:
            # Skip malformed rows
            logger.debug("Skipping entry in %s: %s", source_url, exc)
    return feed


class _XmlAdapter:
    """XML dialects, all read by feedparser; only the sniffing differs."""

    name = "XML"
    markers: Sequence[str] = ()

    def supports(self, raw: str) -> bool:
        return any(m in raw for m in self.markers)

    def parse(self, raw: str, source_url: str) -> FeedSnapshot:
        parsed = feedparser.parse(raw)
        entries = getattr(parsed, "entries", None)
        if getattr(parsed, "bozo", 0) and not entries and not parsed.get("version"):
            exc = getattr(parsed, "bozo_exception", None)
            msg = f"Invalid {self.name} feed: {source_url}"
            if exc:
                msg += f" ({exc})"
            raise ParseError(msg)
        title = (parsed.feed.get("title") or "").strip()
        return _build_snapshot([parse_entry(e) for e in entries or []], title, source_url, raw)


class GeoRssAdapter(_XmlAdapter):
    name = "GeoRSS"

    def supports(self, raw: str) -> bool:
        return ("xmlns:georss" in raw or "georss:" in raw) and ("<rss" in raw or "<feed" in raw)


class Rss20Adapter(_XmlAdapter):
    name = "RSS 2.0"
    markers = ("<rss",)


class AtomAdapter(_XmlAdapter):
    name = "Atom"

    def supports(self, raw: str) -> bool:
        return "<feed" in raw and "http://www.w3.org/2005/Atom" in raw


class RdfAdapter(_XmlAdapter):
    name = "RDF/RSS 1.0"
    markers = ("<rdf:RDF", "http://purl.org/rss/1.0/")


class JsonFeedAdapter:
    name = "JSON Feed"

    def supports(self, raw: str) -> bool:
        head = raw.lstrip()[:512]
        return head.startswith("{") and "jsonfeed.org/version" in head

    def parse(self, raw: str, source_url: str) -> FeedSnapshot:
        try:
            doc = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON Feed: {source_url} ({e})") from e
        if not isinstance(doc, dict):
            raise ParseError(f"Invalid JSON Feed: {source_url}")

        entries = []
        for it in doc.get("items") or []:
            if not isinstance(it, dict):
                continue
            published = it.get("date_published") or it.get("date_modified")
            tags = it.get("tags") or []
            attachments = it.get("attachments") or []
            extra = {}
            authors = it.get("authors") or ([it["author"]] if it.get("author") else [])
            if authors and isinstance(authors[0], dict) and authors[0].get("name"):
                extra["author"] = authors[0]["name"]
            if it.get("image"):
                extra["image"] = it["image"]
            if len(tags) > 1:
                extra["tags"] = list(tags)
            link = (it.get("url") or it.get("external_url") or "").strip()
            entries.append({
                "id": str(it.get("id") or link),
                "title": (it.get("title") or "").strip(),
                "link": link,
                "content": it.get("content_html") or it.get("content_text") or it.get("summary"),
                "enclosure": attachments[0].get("url") if attachments and isinstance(attachments[0], dict) else None,
                "published_at": _parse_iso(published),
                "category": tags[0] if tags else None,
                "extra": extra,
            })
        return _build_snapshot(entries, (doc.get("title") or "").strip(), source_url, raw)


def _parse_iso(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    return _struct_to_datetime(_parse_date(value))


class AutoDetectParser:
    """First-match-wins dispatch over an ordered list of adapters."""

    def __init__(self, adapters: Optional[Sequence[FeedAdapter]] = None) -> None:
        if adapters:
            self.adapters: List[FeedAdapter] = list(adapters)
        else:
            self.adapters = [GeoRssAdapter(), Rss20Adapter(), AtomAdapter(), JsonFeedAdapter(), RdfAdapter()]

    def add_adapter(self, adapter: FeedAdapter) -> "AutoDetectParser":
        self.adapters.append(adapter)
        return self

    def supports(self, raw: str) -> bool:
        return any(a.supports(raw) for a in self.adapters)

    def parse(self, raw: str, source_url: str) -> FeedSnapshot:
        for adapter in self.adapters:
            if adapter.supports(raw):
                logger.debug("Parsing %s as %s", source_url, adapter.name)
                return adapter.parse(raw, source_url)
        names = ", ".join(a.name for a in self.adapters)
        raise ParseError(f"Unsupported feed format. Supported formats: {names}")
