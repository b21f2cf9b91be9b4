"""Best-effort inference of artist, album and release year from video text.

Every field is resolved by an ordered list of matcher strategies. A strategy
looks at ``(title, description)`` and returns a raw candidate or ``None``;
the first candidate that survives cleaning and validation wins, otherwise the
field is ``""``. Nothing in this module performs I/O or raises.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Callable, Iterable, Optional

from metadata.types import InferredMetadata

Strategy = Callable[[str, str], Optional[str]]

_DESCRIPTION_SCAN_LINES = 10
_MIN_CANDIDATE_LENGTH = 2
_MAX_CANDIDATE_LENGTH = 100

# A title side made only of these words carries no artist signal.
_CLUTTER_WORDS = frozenset(
    {
        "official",
        "music",
        "video",
        "audio",
        "lyric",
        "lyrics",
        "full",
        "hd",
        "hq",
        "4k",
        "live",
        "concert",
        "performance",
        "session",
        "acoustic",
        "unplugged",
        "remix",
        "cover",
        "version",
        "remaster",
        "remastered",
        "extended",
        "radio",
        "edit",
        "visualizer",
    }
)

_WS_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"[^\W_]+")
_URL_RE = re.compile(r"https?://|www\.", re.IGNORECASE)
_TRAILING_PUNCT_RE = re.compile(r"[\s,.;:!?\"'“”‘’]+$")
_BRACKET_PAIRS = {")": "(", "]": "[", "}": "{"}
_OPENERS = {opener: closer for closer, opener in _BRACKET_PAIRS.items()}

# A hyphen touching words on both sides is part of a name (Jay-Z, A-ha).
_DASH_SPLIT_RE = re.compile(r"^\s*(?P<left>.+?)(?:\s*[–—]\s*|\s+-\s*|\s*-\s+)(?P<right>.+?)\s*$")
_PIPE_SPLIT_RE = re.compile(r"^\s*(?P<left>.+?)\s*[|~]\s*(?P<right>.+?)\s*$")

_ARTIST_LABEL_RES: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"^\s*(?:artist|performed\s+by|music\s+by|written\s+(?:and\s+performed\s+)?by|singer|vocals)"
        r"\s*:\s*(?P<value>.+)$",
        re.IGNORECASE,
    ),
    re.compile(r"^\s*performed\s+by\s+(?P<value>.+)$", re.IGNORECASE),
)

_ALBUM_LABEL_RES: tuple[re.Pattern[str], ...] = (
    re.compile(r"^\s*album\s*:\s*(?P<value>.+)$", re.IGNORECASE),
    re.compile(r"^\s*from\s+the\s+album\s*[:\-–—]\s*(?P<value>.+)$", re.IGNORECASE),
    re.compile(
        r"^\s*(?:taken\s+(?:from|off)|off)\s+the\s+(?:album|record|lp|ep)\s*[:\-–—]\s*(?P<value>.+)$",
        re.IGNORECASE,
    ),
)

_INLINE_ALBUM_RE = re.compile(
    r"\bfrom\s+the\s+(?:new\s+)?album\s*[:\-–—]?\s*"
    r"(?:[\"“‘'](?P<quoted>[^\"”’'\n]+)[\"”’']|(?P<bare>[^\n.,;!?(\[]+))",
    re.IGNORECASE,
)

_TITLE_ALBUM_RE = re.compile(
    r"[\(\[](?P<value>[^\)\]]*\b(?:album|ep|lp|single)\b[^\)\]]*)[\)\]]",
    re.IGNORECASE,
)

_YEAR_RE = re.compile(r"(?<!\d)(?:19|20)\d{2}(?!\d)")
_YEAR_LABEL_RE = re.compile(
    r"^\s*(?:release(?:d)?(?:\s+date)?|year)\s*:\s*(?P<value>.+)$",
    re.IGNORECASE,
)
_RIGHTS_YEAR_RE = re.compile(r"[℗©]\s*(?P<value>(?:19|20)\d{2})(?!\d)")

_TITLE_CLUTTER_SUFFIX_RE = re.compile(
    r"\s*[\(\[](?:official|music|audio|video|lyric|lyrics|hd|hq|4k|visualizer)[^\)\]]*[\)\]]\s*$",
    re.IGNORECASE,
)


def infer_metadata(title: str | None, description: str | None) -> InferredMetadata:
    """Infer ``{title, artist, album, release_year}`` from raw video text.

    Referentially transparent: the same inputs always give the same result.
    Fields without a usable signal are empty strings; nothing is fabricated.
    """
    title_text = _coerce_text(title)
    description_text = _coerce_text(description)

    artist = _first_candidate(ARTIST_STRATEGIES, title_text, description_text)
    album = _first_candidate(ALBUM_STRATEGIES, title_text, description_text)
    release_year = _first_candidate(RELEASE_YEAR_STRATEGIES, title_text, description_text)

    return InferredMetadata(
        title=clean_title(title_text, artist),
        artist=artist,
        album=album,
        release_year=release_year,
    )


def clean_title(title: str, artist: str = "") -> str:
    """Return the song title without the artist prefix and trailing clutter.

    ``"Artist - Song (Official Audio)"`` becomes ``"Song"``. Parentheticals
    that carry meaning, such as ``(Live)`` or ``(Remix)``, are preserved.
    Falls back to the whitespace-normalized input when cleaning empties it.
    """
    original = _WS_RE.sub(" ", _coerce_text(title)).strip()
    cleaned = original
    if artist:
        prefix_re = re.compile(
            r"^\s*" + re.escape(artist) + r"\s*[-–—:|~]\s*",
            re.IGNORECASE,
        )
        cleaned = prefix_re.sub("", cleaned, count=1)
    while True:
        updated = _TITLE_CLUTTER_SUFFIX_RE.sub("", cleaned).strip()
        if updated == cleaned:
            break
        cleaned = updated
    return cleaned or original


def is_clutter(text: str) -> bool:
    words = _WORD_RE.findall(str(text or "").lower())
    if not words:
        return True
    return all(word in _CLUTTER_WORDS for word in words)


def clean_candidate(value: str | None) -> str | None:
    """Normalize a raw candidate, or return ``None`` when it fails validation."""
    if value is None:
        return None
    text = unicodedata.normalize("NFC", str(value))
    text = _WS_RE.sub(" ", text).strip()
    text = _strip_edges(text).strip()
    if len(text) < _MIN_CANDIDATE_LENGTH or len(text) > _MAX_CANDIDATE_LENGTH:
        return None
    if _URL_RE.search(text):
        return None
    return text


# --- strategies -------------------------------------------------------------


def _title_split(pattern: re.Pattern[str]) -> Strategy:
    def _strategy(title: str, description: str) -> Optional[str]:
        match = pattern.match(title)
        if not match:
            return None
        left = match.group("left").strip()
        if len(left) < _MIN_CANDIDATE_LENGTH or is_clutter(left):
            return None
        return left

    return _strategy


def _labelled_line(patterns: Iterable[re.Pattern[str]], *, max_lines: int | None = None) -> Strategy:
    patterns = tuple(patterns)

    def _strategy(title: str, description: str) -> Optional[str]:
        for line in _description_lines(description, max_lines):
            for pattern in patterns:
                match = pattern.match(line)
                if match:
                    return match.group("value")
        return None

    return _strategy


def _inline_album(title: str, description: str) -> Optional[str]:
    match = _INLINE_ALBUM_RE.search(description)
    if not match:
        return None
    return match.group("quoted") or match.group("bare")


def _title_parenthetical_album(title: str, description: str) -> Optional[str]:
    match = _TITLE_ALBUM_RE.search(title)
    return match.group("value") if match else None


def _labelled_year(title: str, description: str) -> Optional[str]:
    for line in _description_lines(description, None):
        match = _YEAR_LABEL_RE.match(line)
        if not match:
            continue
        year = _YEAR_RE.search(match.group("value"))
        if year:
            return year.group(0)
    return None


def _rights_year(title: str, description: str) -> Optional[str]:
    match = _RIGHTS_YEAR_RE.search(description)
    return match.group("value") if match else None


def _bare_description_year(title: str, description: str) -> Optional[str]:
    match = _YEAR_RE.search(description)
    return match.group(0) if match else None


def _title_year(title: str, description: str) -> Optional[str]:
    match = _YEAR_RE.search(title)
    return match.group(0) if match else None


ARTIST_STRATEGIES: tuple[Strategy, ...] = (
    _title_split(_DASH_SPLIT_RE),
    _labelled_line(_ARTIST_LABEL_RES, max_lines=_DESCRIPTION_SCAN_LINES),
    _title_split(_PIPE_SPLIT_RE),
)

ALBUM_STRATEGIES: tuple[Strategy, ...] = (
    _labelled_line(_ALBUM_LABEL_RES),
    _inline_album,
    _title_parenthetical_album,
)

RELEASE_YEAR_STRATEGIES: tuple[Strategy, ...] = (
    _labelled_year,
    _rights_year,
    _bare_description_year,
    _title_year,
)


# --- helpers ----------------------------------------------------------------


def _first_candidate(strategies: Iterable[Strategy], title: str, description: str) -> str:
    for strategy in strategies:
        candidate = clean_candidate(strategy(title, description))
        if candidate:
            return candidate
    return ""


def _description_lines(description: str, max_lines: int | None) -> list[str]:
    lines = [line.strip() for line in description.splitlines() if line.strip()]
    if max_lines is not None:
        return lines[:max_lines]
    return lines


def _coerce_text(value) -> str:
    if value is None:
        return ""
    return str(value)


def _strip_edges(text: str) -> str:
    text = _TRAILING_PUNCT_RE.sub("", text)
    start, end = 0, len(text)
    while start < end and not text[start].isalnum():
        closer = _OPENERS.get(text[start])
        if closer and closer in text[start + 1:end]:
            break
        start += 1
    while end > start and not text[end - 1].isalnum():
        opener = _BRACKET_PAIRS.get(text[end - 1])
        if opener and opener in text[start:end - 1]:
            break
        end -= 1
    return text[start:end]
