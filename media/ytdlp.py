"""yt-dlp invocations: metadata query, audio download, playlist listing."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

from config.settings import AUDIO_FORMAT_PREFERENCE, YT_DLP_PATH
from engine.process import ProcessInvocation, run_process

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

_PROGRESS_RE = re.compile(r"(?:^|\s)(\d{1,3}(?:\.\d+)?)%")


class MetadataQueryError(RuntimeError):
    """Raised when yt-dlp succeeds but its JSON output cannot be used."""


@dataclass(frozen=True)
class VideoInfo:
    title: str
    duration: float | None
    thumbnail_url: str | None
    uploader: str
    description: str
    upload_date: str | None
    webpage_url: str | None
    video_id: str | None = None

    @classmethod
    def from_info(cls, info: dict[str, Any]) -> "VideoInfo":
        return cls(
            title=str(info.get("title") or "").strip(),
            duration=_as_float(info.get("duration")),
            thumbnail_url=info.get("thumbnail") or None,
            uploader=str(info.get("uploader") or info.get("channel") or ""),
            description=str(info.get("description") or ""),
            upload_date=str(info["upload_date"]) if info.get("upload_date") else None,
            webpage_url=info.get("webpage_url") or None,
            video_id=info.get("id") or None,
        )

    @property
    def upload_year(self) -> str:
        raw = self.upload_date or ""
        if len(raw) == 8 and raw.isdigit():
            return raw[:4]
        return ""


def _as_float(value) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def parse_progress_line(line: str | None) -> float | None:
    """Return the percentage carried by a yt-dlp output line, if any."""
    if not line or "Destination:" in line:
        return None
    match = _PROGRESS_RE.search(line)
    if not match:
        return None
    percent = float(match.group(1))
    return max(0.0, min(100.0, percent))


def _json_documents(stdout: str) -> list[dict]:
    documents = []
    for line in (stdout or "").splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            documents.append(json.loads(line))
        except json.JSONDecodeError as exc:
            raise MetadataQueryError(f"yt-dlp returned invalid JSON: {exc}") from exc
    return documents


class YtDlpClient:
    def __init__(
        self,
        executable: str = YT_DLP_PATH,
        *,
        ffmpeg_location: str | None = None,
        format_preference: str = AUDIO_FORMAT_PREFERENCE,
        runner=run_process,
    ) -> None:
        self.executable = executable
        self.ffmpeg_location = ffmpeg_location
        self.format_preference = format_preference
        self._runner = runner

    async def query_info(self, url: str) -> VideoInfo:
        invocation = await self._runner(self.executable, ["--dump-json", "--no-playlist", url])
        documents = _json_documents(invocation.stdout)
        if not documents:
            raise MetadataQueryError(f"yt-dlp returned no metadata for {url}")
        return VideoInfo.from_info(documents[0])

    def build_download_args(self, url: str, output_template: str) -> list[str]:
        args = ["--format", self.format_preference, "--output", output_template]
        if self.ffmpeg_location:
            args.extend(["--ffmpeg-location", self.ffmpeg_location])
        args.extend(["--newline", "--no-playlist", url])
        return args

    async def download(
        self,
        url: str,
        output_template: str,
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ProcessInvocation:
        # yt-dlp writes progress to stdout, but some builds route it to stderr.
        def _on_line(line: str) -> None:
            percent = parse_progress_line(line)
            if percent is not None and on_progress is not None:
                on_progress(percent)

        return await self._runner(
            self.executable,
            self.build_download_args(url, output_template),
            on_stdout_line=_on_line,
            on_stderr_line=_on_line,
        )

    async def playlist_entries(self, url: str) -> dict[str, Any]:
        # Raw URL on purpose: canonicalization would strip the list= parameter.
        invocation = await self._runner(
            self.executable,
            ["--flat-playlist", "--dump-json", "--no-download", url],
        )
        playlist_title = ""
        entries = []
        for info in _json_documents(invocation.stdout):
            if not playlist_title and info.get("playlist_title"):
                playlist_title = info["playlist_title"]
            thumbnails = info.get("thumbnails") or []
            entries.append(
                {
                    "url": info.get("webpage_url") or info.get("url") or f"https://www.youtube.com/watch?v={info.get('id')}",
                    "title": info.get("title") or info.get("id") or "",
                    "duration": info.get("duration") or 0,
                    "thumbnail": info.get("thumbnail") or (thumbnails[0].get("url") if thumbnails else None),
                }
            )
        return {"title": playlist_title, "entries": entries}
