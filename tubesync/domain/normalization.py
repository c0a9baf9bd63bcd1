from __future__ import annotations

import re
from typing import Set


# Only ASCII letters and digits survive; titles in other scripts normalize to "".
_NON_ALNUM_SPACE_PATTERN = re.compile(r"[^a-z0-9\s]")
_NON_ALNUM_PATTERN = re.compile(r"[^a-z0-9]")
_MULTISPACE_PATTERN = re.compile(r"\s+")


def normalize_keep_spaces(value: str) -> str:
    """Lowercase, keep alphanumerics and single spaces. Used for similarity scoring."""
    value = (value or "").lower()
    value = _NON_ALNUM_SPACE_PATTERN.sub("", value)
    return _MULTISPACE_PATTERN.sub(" ", value).strip()


def normalize_strip_spaces(value: str) -> str:
    """Lowercase, keep alphanumerics only. Used for the exact/containment bonuses."""
    value = (value or "").lower()
    return _NON_ALNUM_PATTERN.sub("", value)


def bigrams(value: str) -> Set[str]:
    return {value[i:i + 2] for i in range(len(value) - 1)}


def similarity(a: str, b: str) -> float:
    """Dice coefficient over the character-bigram sets of both normalized strings.

    Identical normalized strings score 1.0; otherwise anything shorter than two
    characters scores 0.0.
    """
    n1 = normalize_keep_spaces(a)
    n2 = normalize_keep_spaces(b)

    if n1 == n2:
        return 1.0
    if len(n1) < 2 or len(n2) < 2:
        return 0.0

    b1 = bigrams(n1)
    b2 = bigrams(n2)
    return (2 * len(b1 & b2)) / (len(b1) + len(b2))
