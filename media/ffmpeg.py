"""ffmpeg invocations for tag and cover-art embedding."""

from __future__ import annotations

import logging
import os
import tempfile

import anyio

from config.settings import FFMPEG_PATH
from engine.process import ProcessError, run_process
from metadata.types import TagSet

logger = logging.getLogger(__name__)

_MP4_FAMILY = {".m4a", ".mp4", ".m4v", ".mov"}
_ID3_FAMILY = {".mp3"}
_MKV_FAMILY = {".mkv", ".webm"}
_TAG_VALUE_LIMIT = 256
_PNG_SIGNATURE = b"\x89PNG"
TEMP_PREFIX = ".grabber-"


def _tag_value(value: str) -> str:
    text = (value or "").replace("\x00", " ").strip()
    return text[:_TAG_VALUE_LIMIT]


def _sibling_temp_path(path: str, label: str) -> str:
    base_ext = os.path.splitext(path)[1] or ".m4a"
    # Dot prefix keeps in-flight rewrites out of download listings.
    fd, tmp_path = tempfile.mkstemp(
        prefix=TEMP_PREFIX, suffix=f".{label}{base_ext}", dir=os.path.dirname(path) or "."
    )
    os.close(fd)
    return tmp_path


def _write_cover(data: bytes, temp_dir: str | None) -> str:
    fd, cover_path = tempfile.mkstemp(suffix=".jpg", prefix="artwork-", dir=temp_dir)
    with os.fdopen(fd, "wb") as handle:
        handle.write(data)
    return cover_path


def _discard(path: str | None) -> None:
    if not path:
        return
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


class FfmpegClient:
    def __init__(self, executable: str = FFMPEG_PATH, *, temp_dir: str | None = None, runner=run_process) -> None:
        self.executable = executable
        self.temp_dir = temp_dir
        self._runner = runner

    def build_tag_args(self, path: str, tags: TagSet, output_path: str) -> list[str]:
        args = ["-y", "-i", path, "-map", "0", "-c", "copy"]
        for key, value in tags.to_dict().items():
            args.extend(["-metadata", f"{key}={_tag_value(value)}"])
        args.append(output_path)
        return args

    async def write_tags(self, path: str, tags: TagSet) -> None:
        """Rewrite ``path`` with ``tags``; the original is only replaced on success."""
        tmp_path = _sibling_temp_path(path, "tagged")
        try:
            await self._runner(self.executable, self.build_tag_args(path, tags, tmp_path))
            await anyio.to_thread.run_sync(os.replace, tmp_path, path)
            tmp_path = None
        finally:
            _discard(tmp_path)
        logger.info("Tags written to %s", os.path.basename(path))

    def build_artwork_args(self, path: str, cover_path: str, output_path: str) -> list[str] | None:
        ext = os.path.splitext(path)[1].lower()
        args = ["-y", "-i", path]
        if ext in _MP4_FAMILY or ext in _ID3_FAMILY:
            args.extend(["-i", cover_path, "-map", "0:a", "-map", "1:v", "-c:a", "copy", "-c:v", "copy"])
            if ext in _ID3_FAMILY:
                args.extend(["-id3v2_version", "3"])
            args.extend(["-disposition:v:0", "attached_pic"])
        elif ext in _MKV_FAMILY:
            args.extend([
                "-attach",
                cover_path,
                "-metadata:s:t",
                "mimetype=image/jpeg",
                "-metadata:s:t",
                "filename=cover.jpg",
                "-map",
                "0",
                "-c",
                "copy",
            ])
        else:
            return None
        args.append(output_path)
        return args

    async def embed_artwork(self, path: str, cover_jpeg: bytes) -> bool:
        """Attach a JPEG cover to ``path``. Returns False for unsupported containers."""
        cover_path = await anyio.to_thread.run_sync(_write_cover, cover_jpeg, self.temp_dir)
        tmp_path = None
        try:
            tmp_path = _sibling_temp_path(path, "artwork")
            args = self.build_artwork_args(path, cover_path, tmp_path)
            if args is None:
                logger.warning("Artwork embedding unsupported for %s", os.path.basename(path))
                return False
            await self._runner(self.executable, args)
            await anyio.to_thread.run_sync(os.replace, tmp_path, path)
            tmp_path = None
            return True
        finally:
            _discard(tmp_path)
            _discard(cover_path)

    def build_extract_args(self, path: str) -> list[str]:
        return ["-v", "error", "-i", path, "-an", "-map", "0:v:0", "-c:v", "copy", "-f", "image2", "pipe:1"]

    async def extract_artwork(self, path: str) -> tuple[bytes, str] | None:
        """Return ``(image_bytes, content_type)`` for the embedded cover, or None."""
        try:
            invocation = await self._runner(self.executable, self.build_extract_args(path))
        except ProcessError as exc:
            logger.debug("No artwork in %s: %s", os.path.basename(path), exc)
            return None
        data = invocation.stdout_bytes
        if not data:
            return None
        content_type = "image/png" if data.startswith(_PNG_SIGNATURE) else "image/jpeg"
        return data, content_type
