"""Subject similarity used to tolerate drift inside a conversation.

Two subjects are similar when, after removing one leading ``Re:`` / ``Fw:``
marker, they are identical, their normalized Levenshtein distance is at most
``SIMILARITY_THRESHOLD``, or one is a prefix of the other.
"""

from __future__ import annotations

import re

import structlog

logger = structlog.get_logger()

SIMILARITY_THRESHOLD = 0.25

_REPLY_MARKER = re.compile(r"^(?:re|fw):\s*", re.IGNORECASE)


def strip_reply_marker(subject: str) -> str:
    """Remove a single leading reply/forward marker (not recursive)."""
    return _REPLY_MARKER.sub("", subject, count=1)


def levenshtein(s1: str, s2: str) -> int:
    """Edit distance between *s1* and *s2*, computed with two rolling rows."""
    if len(s1) < len(s2):
        s1, s2 = s2, s1
    if not s2:
        return len(s1)

    previous = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1, start=1):
        current = [i]
        for j, c2 in enumerate(s2, start=1):
            cost = 0 if c1 == c2 else 1
            current.append(min(current[j - 1] + 1, previous[j] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def normalized_distance(s1: str, s2: str) -> float:
    """Levenshtein distance divided by the longer length.

    When either string is empty the longer length itself is returned, so an
    empty string is never within the threshold of a non-empty one.
    """
    longest = max(len(s1), len(s2))
    if not s1 or not s2:
        return float(longest)
    return levenshtein(s1, s2) / longest


def similar(s1: str, s2: str) -> bool:
    """Return True when two subjects can be considered the same conversation."""
    a = strip_reply_marker(s1)
    b = strip_reply_marker(s2)
    if a == b:
        return True
    if not a or not b:
        return False

    distance = normalized_distance(a, b)
    if distance <= SIMILARITY_THRESHOLD:
        logger.debug("subjects_similar", reason="distance", distance=distance)
        return True
    if a.startswith(b) or b.startswith(a):
        logger.debug("subjects_similar", reason="prefix")
        return True
    return False
