from __future__ import annotations

import re
from typing import Iterable, Optional, Tuple

from .entities import ParsedTitle


DEFAULT_NOISE_PHRASES: Tuple[str, ...] = (
    "official video",
    "official music video",
    "lyrics",
    "lyric video",
    "audio",
    "hd",
    "4k",
    "video song",
    "full song",
)

ARTIST_TRACK_SEPARATOR = " - "

_PARENS_CONTENT_PATTERN = re.compile(r"\([^)]*\)")
_BRACKETS_CONTENT_PATTERN = re.compile(r"\[[^\]]*\]")
_STRAY_CHARS_PATTERN = re.compile(r"[|\"]")
# YouTube Music auto-generated channels are named "<Artist> - Topic"
_TOPIC_SUFFIX_PATTERN = re.compile(r"\s*-\s*Topic$", re.IGNORECASE)


def _capitalize_words(text: str) -> str:
    return " ".join(w[0].upper() + w[1:] for w in text.split(" ") if w)


def clean_channel_title(channel: Optional[str]) -> str:
    """Recover an artist name from a channel title by dropping a trailing " - Topic"."""
    if not channel:
        return ""
    return _TOPIC_SUFFIX_PATTERN.sub("", channel).strip()


class TitleParser:
    """Turns a noisy video title into an artist/track guess.

    Noise phrases are removed as plain substrings, so a phrase embedded in a longer
    word is removed as well ("shadow" loses its "hd").
    """

    def __init__(self, noise_phrases: Iterable[str] = DEFAULT_NOISE_PHRASES):
        self.noise_phrases = tuple(p.lower() for p in noise_phrases)

    def clean(self, title: str) -> str:
        """Lowercased title with bracketed groups, noise phrases and stray characters removed."""
        value = (title or "").lower()
        value = _PARENS_CONTENT_PATTERN.sub("", value)
        value = _BRACKETS_CONTENT_PATTERN.sub("", value)
        for phrase in self.noise_phrases:
            value = value.replace(phrase, "", 1)
        value = _STRAY_CHARS_PATTERN.sub("", value)
        return value.strip()

    def parse(self, title: str) -> ParsedTitle:
        cleaned = self.clean(title)
        parts = [p.strip() for p in cleaned.split(ARTIST_TRACK_SEPARATOR)]

        if len(parts) >= 2:
            return ParsedTitle(
                artist=_capitalize_words(parts[0]),
                track=_capitalize_words(parts[1]),
                raw=title,
            )
        return ParsedTitle(artist=None, track=_capitalize_words(cleaned), raw=title)


_default_parser = TitleParser()


def parse_title(title: str) -> ParsedTitle:
    return _default_parser.parse(title)
