from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from .models import Item


def to_item(entry: Dict[str, Any], fallback_date: Optional[datetime] = None) -> Item:
    """
    Convert a parsed entry dict into an Item.
    Requires:
    - id or link (non-empty)
    - published_at (datetime), or a fallback_date to stamp undated entries
    Optional:
    - title, content, enclosure, category, extra
    """
    item_id = (entry.get("id") or "").strip()
    link = (entry.get("link") or "").strip()
    published_at = entry.get("published_at") or fallback_date

    if not published_at:
        raise ValueError("Entry lacks required field for Item: published_at")

    return Item(
        id=item_id,
        title=entry.get("title") or "",
        link=link,
        published_at=published_at,
        content=entry.get("content") or None,
        enclosure=entry.get("enclosure") or None,
        category=entry.get("category") or None,
        extra=entry.get("extra") or {},
    )
