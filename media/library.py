"""Listing and tag reading for files in the downloads directory."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone

import mutagen
from mutagen import MutagenError

from config.settings import AUDIO_EXTENSIONS

logger = logging.getLogger(__name__)

_TAG_KEYS = ("title", "artist", "album", "date")


def _empty_tags() -> dict:
    tags = {key: "" for key in _TAG_KEYS}
    tags["duration"] = 0
    return tags


def read_tags(path: str) -> dict:
    """Return ``{title, artist, album, date, duration}`` for an audio file.

    Raises ``FileNotFoundError`` for a missing file. Unreadable or untagged
    files yield empty strings.
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(path)
    tags = _empty_tags()
    try:
        audio = mutagen.File(path, easy=True)
    except MutagenError as exc:
        logger.debug("Tag read failed for %s: %s", path, exc)
        return tags
    if audio is None:
        return tags
    tag_map = audio.tags if audio.tags is not None else {}
    for key in _TAG_KEYS:
        values = tag_map.get(key)
        if values:
            tags[key] = str(values[0]).strip()
    length = getattr(getattr(audio, "info", None), "length", None)
    if length:
        tags["duration"] = int(length)
    return tags


def list_downloads(directory: str) -> list[dict]:
    """Audio files in ``directory`` with their tags, newest first."""
    if not os.path.isdir(directory):
        return []
    results = []
    for name in os.listdir(directory):
        # Hidden names are in-flight ffmpeg rewrites.
        if name.startswith(".") or not name.lower().endswith(AUDIO_EXTENSIONS):
            continue
        path = os.path.join(directory, name)
        if not os.path.isfile(path):
            continue
        stat = os.stat(path)
        results.append(
            {
                "filename": name,
                "size": stat.st_size,
                "date": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
                "metadata": read_tags(path),
            }
        )
    results.sort(key=lambda entry: entry["date"], reverse=True)
    return results
