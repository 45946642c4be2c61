from __future__ import annotations

from typing import Collection, Iterable, List, Set

from .models import Item


class UpdateDetector:
    """
    Single authority on novelty for both the polling and the push path.

    An item is new iff its default fingerprint is absent from the known set.
    """

    @staticmethod
    def detect(current: Iterable[Item], known_fingerprints: Collection[str]) -> List[Item]:
        known = known_fingerprints if isinstance(known_fingerprints, (set, frozenset)) else set(known_fingerprints)
        return [it for it in current if it.fingerprint() not in known]

    @staticmethod
    def has_new(current: Iterable[Item], known_fingerprints: Collection[str]) -> bool:
        known = set(known_fingerprints)
        return any(it.fingerprint() not in known for it in current)


def deduplicate(items: Iterable[Item]) -> List[Item]:
    """
    Remove duplicates by default fingerprint.
    Keeps the first occurrence and preserves original order.
    """
    seen: Set[str] = set()
    out: List[Item] = []
    for it in items:
        key = it.fingerprint()
        if key in seen:
            continue
        seen.add(key)
        out.append(it)
    return out
