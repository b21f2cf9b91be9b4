"""Output filename helpers shared by the download and lookup steps."""

from __future__ import annotations

import os
import re
from typing import Iterable

from config.settings import DEFAULT_AUDIO_EXTENSION, MAX_FILENAME_LENGTH

_INVALID_FS_CHARS_RE = re.compile(r'[<>:"/\\|?*]')
_MULTISPACE_RE = re.compile(r"\s+")
_PARTIAL_SUFFIXES = (".part", ".ytdl", ".temp")


def sanitize_filename(title: str | None, maxlen: int = MAX_FILENAME_LENGTH) -> str:
    """Return the filesystem-safe prefix used for a job's output file.

    Illegal characters become ``_``, whitespace runs collapse to one space and
    the result is truncated. The download step and the later directory scan
    must both derive the prefix through this function.
    """
    sanitized = _INVALID_FS_CHARS_RE.sub("_", str(title or ""))
    sanitized = _MULTISPACE_RE.sub(" ", sanitized).strip()
    return sanitized[:maxlen]


def output_template(directory: str, prefix: str) -> str:
    return os.path.join(directory, f"{prefix}.%(ext)s")


def select_output_file(
    filenames: Iterable[str],
    prefix: str,
    default_extension: str = DEFAULT_AUDIO_EXTENSION,
) -> str:
    """Pick the produced file for ``prefix`` out of a directory listing.

    An exact ``<prefix>.<ext>`` name wins over longer names sharing the
    prefix; among the rest the first name in sorted order is taken. When
    nothing matches, ``<prefix>.<default_extension>`` is assumed.
    """
    candidates = sorted(
        name
        for name in filenames
        if name.startswith(prefix) and not name.endswith(_PARTIAL_SUFFIXES)
    )
    for name in candidates:
        stem, ext = os.path.splitext(name)
        if stem == prefix and ext:
            return name
    if candidates:
        return candidates[0]
    return f"{prefix}.{default_extension.lstrip('.')}"
