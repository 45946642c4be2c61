"""
Item identity hashing.

Three strategies, each a SHA-256 hex digest over a different view of the item:

- ``default``: ``id|link``. Exact identity across repeated fetches of one source.
- ``content``: ``title|text(content)|YYYY-MM-DD``, lowercased. The same story
  republished under another id or link.
- ``fuzzy``: ``title|YYYY-MM-DD``, lowercased. Near-duplicate grouping only.

Digests from different strategies are never comparable with each other.
"""
from __future__ import annotations

import hashlib
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

from bs4 import BeautifulSoup

if TYPE_CHECKING:  # pragma: no cover
    from .models import Item


class FingerprintStrategy(str, Enum):
    DEFAULT = "default"
    CONTENT = "content"
    FUZZY = "fuzzy"


def strip_markup(text: Optional[str]) -> str:
    if not text:
        return ""
    if "<" not in text and "&" not in text:
        return text
    return BeautifulSoup(text, "html.parser").get_text()


def _digest(data: str) -> str:
    return hashlib.sha256(data.strip().encode("utf-8")).hexdigest()


def fingerprint(item: "Item", strategy: Union[str, FingerprintStrategy] = FingerprintStrategy.DEFAULT) -> str:
    try:
        strategy = FingerprintStrategy(strategy)
    except ValueError:
        raise ValueError(f"Unknown fingerprint strategy: {strategy!r}") from None

    if strategy is FingerprintStrategy.DEFAULT:
        return _digest(f"{item.id}|{item.link}")

    day = item.published_at.strftime("%Y-%m-%d")
    if strategy is FingerprintStrategy.CONTENT:
        return _digest(f"{item.title.lower()}|{strip_markup(item.content).lower()}|{day}")
    return _digest(f"{item.title.lower()}|{day}")


def equals(a: "Item", b: "Item") -> bool:
    return fingerprint(a, FingerprintStrategy.DEFAULT) == fingerprint(b, FingerprintStrategy.DEFAULT)


def is_similar(a: "Item", b: "Item") -> bool:
    return fingerprint(a, FingerprintStrategy.CONTENT) == fingerprint(b, FingerprintStrategy.CONTENT)
