"""Structured metadata types for audio tagging."""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass(frozen=True)
class InferredMetadata:
    """Best-effort metadata guessed from a video's title and description.

    Values are never authoritative; a field with no usable signal is ``""``.
    """

    title: str = ""
    artist: str = ""
    album: str = ""
    release_year: str = ""

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class TagSet:
    """Tags written into an audio container by the tag-embedding step."""

    title: str = ""
    artist: str = ""
    album: str = ""
    date: str = ""

    @classmethod
    def from_mapping(cls, values: dict | None) -> "TagSet":
        values = values or {}
        return cls(
            title=str(values.get("title") or "").strip(),
            artist=str(values.get("artist") or "").strip(),
            album=str(values.get("album") or "").strip(),
            date=str(values.get("date") or "").strip(),
        )

    def to_dict(self) -> dict[str, str]:
        return asdict(self)
