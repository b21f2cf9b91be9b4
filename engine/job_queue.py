import asyncio
import functools
import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import anyio

from config import settings
from engine.broadcast import (
    ProgressBroadcaster,
    complete_event,
    error_event,
    progress_event,
    status_event,
)
from engine.urls import InvalidUrlError, normalize_url, require_http_url
from media.ffmpeg import FfmpegClient
from media.ytdlp import MetadataQueryError, YtDlpClient
from metadata.artwork import fetch_thumbnail, square_cover
from metadata.inference import infer_metadata
from metadata.naming import output_template, sanitize_filename, select_output_file
from metadata.types import TagSet

logger = logging.getLogger(__name__)

JOB_STATUS_PENDING = "pending"
JOB_STATUS_RUNNING = "running"
JOB_STATUS_COMPLETE = "complete"
JOB_STATUS_FAILED = "failed"

TERMINAL_STATUSES = (
    JOB_STATUS_COMPLETE,
    JOB_STATUS_FAILED,
)


def utc_now():
    return datetime.now(timezone.utc).replace(microsecond=0)


def _log_event(level, message, **fields):
    payload = {"message": message, **fields}
    try:
        logger.log(level, json.dumps(payload, sort_keys=True, default=str))
    except (TypeError, ValueError) as exc:
        logger.log(level, f"log_event_serialization_failed: {exc} message={message}")


@dataclass
class Job:
    id: str
    source_url: str
    status: str = JOB_STATUS_PENDING
    progress_percent: float | None = None
    filename: str | None = None
    error: str | None = None
    title: str | None = None
    metadata: dict | None = None
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    def to_dict(self):
        return {
            "id": self.id,
            "url": self.source_url,
            "status": self.status,
            "progress": self.progress_percent,
            "filename": self.filename,
            "error": self.error,
            "title": self.title,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


def build_tags(info, inferred):
    """Tags for a freshly downloaded file; inferred values, upload year as date fallback."""
    return TagSet(
        title=inferred.title or info.title,
        artist=inferred.artist,
        album=inferred.album,
        date=inferred.release_year or info.upload_year,
    )


def describe_download(info, inferred):
    tags = build_tags(info, inferred)
    return {
        **tags.to_dict(),
        "uploader": info.uploader,
        "duration": info.duration,
        "url": info.webpage_url or "",
    }


class JobRegistry:
    """Owns every job record and drives each one on the running event loop.

    All mutation happens on a single event loop: ``submit`` schedules the
    driving coroutine and nothing else writes to a job afterwards, so job
    records and observer lists need no locking.
    """

    def __init__(
        self,
        downloads_dir,
        *,
        downloader=None,
        tagger=None,
        thumbnail_fetcher=fetch_thumbnail,
        cover_normalizer=square_cover,
        default_extension=settings.DEFAULT_AUDIO_EXTENSION,
        thumbnail_timeout=settings.THUMBNAIL_TIMEOUT_SECONDS,
        job_ttl_seconds=settings.JOB_TTL_SECONDS,
        max_concurrent_jobs=settings.MAX_CONCURRENT_JOBS,
    ):
        self.downloads_dir = str(downloads_dir)
        self.default_extension = default_extension
        self.thumbnail_timeout = thumbnail_timeout
        self.job_ttl_seconds = job_ttl_seconds
        self._downloader = downloader or YtDlpClient()
        self._tagger = tagger or FfmpegClient()
        self._thumbnail_fetcher = thumbnail_fetcher
        self._cover_normalizer = cover_normalizer
        self._jobs: dict[str, Job] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._broadcaster = ProgressBroadcaster(self._snapshot_event)
        self._semaphore = asyncio.Semaphore(max_concurrent_jobs) if max_concurrent_jobs else None

    @classmethod
    def from_config(cls, config, paths):
        ffmpeg_location = shutil.which(config["ffmpeg_path"])
        downloader = YtDlpClient(
            config["yt_dlp_path"],
            ffmpeg_location=ffmpeg_location,
            format_preference=config["audio_format"],
        )
        tagger = FfmpegClient(ffmpeg_location or config["ffmpeg_path"], temp_dir=paths.temp_dir)
        return cls(
            paths.downloads_dir,
            downloader=downloader,
            tagger=tagger,
            default_extension=config["default_extension"],
            thumbnail_timeout=config["thumbnail_timeout_seconds"],
            job_ttl_seconds=config["job_ttl_seconds"],
            max_concurrent_jobs=config["max_concurrent_jobs"],
        )

    @property
    def tagger(self):
        return self._tagger

    # --- public API ---------------------------------------------------------

    def submit(self, url):
        """Create a pending job for ``url`` and start driving it.

        Raises ``InvalidUrlError`` for unusable input; downstream failures are
        reported through the job's state, never raised here. Must be called
        from a running event loop.
        """
        candidate = require_http_url(url)
        job = Job(id=uuid4().hex, source_url=normalize_url(candidate))
        self._jobs[job.id] = job
        task = asyncio.get_running_loop().create_task(self._drive(job))
        self._tasks[job.id] = task
        task.add_done_callback(lambda _task, job_id=job.id: self._tasks.pop(job_id, None))
        _log_event(logging.INFO, "job_submitted", job_id=job.id, url=job.source_url)
        return job.id

    def get(self, job_id):
        return self._jobs.get(job_id)

    def list_jobs(self):
        return sorted(self._jobs.values(), key=lambda job: job.created_at, reverse=True)

    def subscribe(self, job_id, observer):
        return self._broadcaster.subscribe(job_id, observer)

    def unsubscribe(self, job_id, observer):
        self._broadcaster.unsubscribe(job_id, observer)

    async def wait(self, job_id):
        task = self._tasks.get(job_id)
        if task is not None:
            await task
        return self._jobs.get(job_id)

    async def get_video_info(self, url):
        candidate = require_http_url(url)
        info = await self._downloader.query_info(normalize_url(candidate))
        inferred = infer_metadata(info.title, info.description)
        return {
            "title": info.title,
            "duration": info.duration,
            "thumbnail": info.thumbnail_url,
            "uploader": info.uploader,
            "metadata": inferred.to_dict(),
        }

    async def playlist_entries(self, url):
        return await self._downloader.playlist_entries(require_http_url(url))

    async def submit_playlist(self, url):
        """Submit one independent job per playlist entry; returns their ids in order."""
        playlist = await self.playlist_entries(url)
        job_ids = []
        for entry in playlist.get("entries") or []:
            try:
                job_ids.append(self.submit(entry.get("url")))
            except InvalidUrlError as exc:
                logger.warning("Playlist entry skipped (%s): %s", entry.get("title") or "untitled", exc)
        _log_event(logging.INFO, "playlist_submitted", url=url, jobs=len(job_ids))
        return job_ids

    async def find_artwork(self, query):
        """Fetch a thumbnail for a video URL, or for the first search hit of ``query``."""
        query = (query or "").strip()
        if not query:
            raise InvalidUrlError("An artwork search needs a URL or search terms")
        try:
            target = normalize_url(require_http_url(query))
        except InvalidUrlError:
            target = f"ytsearch1:{query}"
        info = await self._downloader.query_info(target)
        if not info.thumbnail_url:
            raise MetadataQueryError(f"No thumbnail found for {query!r}")
        return await anyio.to_thread.run_sync(
            functools.partial(self._thumbnail_fetcher, info.thumbnail_url, timeout=self.thumbnail_timeout)
        )

    async def replace_artwork(self, path, image_data):
        """Normalize ``image_data`` to a square JPEG and embed it in ``path``."""
        cover = await anyio.to_thread.run_sync(self._cover_normalizer, image_data)
        embedded = await self._tagger.embed_artwork(path, cover)
        if embedded:
            _log_event(logging.INFO, "artwork_replaced", filename=os.path.basename(path))
        return embedded

    def prune_expired(self, now=None):
        """Forget terminal jobs that finished more than ``job_ttl_seconds`` ago."""
        if not self.job_ttl_seconds:
            return 0
        cutoff = (now or utc_now()) - timedelta(seconds=self.job_ttl_seconds)
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.is_terminal and job.finished_at is not None and job.finished_at <= cutoff
        ]
        for job_id in expired:
            self._jobs.pop(job_id, None)
            self._broadcaster.close(job_id)
        if expired:
            _log_event(logging.INFO, "jobs_pruned", count=len(expired), remaining=len(self._jobs))
        return len(expired)

    # --- driving ------------------------------------------------------------

    def _snapshot_event(self, job_id):
        job = self._jobs.get(job_id)
        if job is None:
            return None
        if job.status == JOB_STATUS_COMPLETE:
            return complete_event(job.filename, job.metadata)
        if job.status == JOB_STATUS_FAILED:
            return error_event(job.error)
        return progress_event(job.progress_percent)

    async def _drive(self, job):
        if self._semaphore is None:
            await self._drive_guarded(job)
            return
        async with self._semaphore:
            await self._drive_guarded(job)

    async def _drive_guarded(self, job):
        try:
            await self._run_steps(job)
        except Exception as exc:
            logger.debug("job %s failed", job.id, exc_info=True)
            self._fail(job, str(exc) or type(exc).__name__)

    async def _run_steps(self, job):
        job.status = JOB_STATUS_RUNNING
        job.started_at = utc_now()
        _log_event(logging.INFO, "job_running", job_id=job.id, url=job.source_url)
        self._broadcaster.publish(job.id, status_event(JOB_STATUS_RUNNING))

        info = await self._downloader.query_info(job.source_url)
        job.title = info.title
        inferred = infer_metadata(info.title, info.description)
        prefix = sanitize_filename(info.title) or sanitize_filename(info.video_id) or job.id

        await anyio.to_thread.run_sync(functools.partial(os.makedirs, self.downloads_dir, exist_ok=True))
        await self._downloader.download(
            job.source_url,
            output_template(self.downloads_dir, prefix),
            on_progress=functools.partial(self._set_progress, job),
        )

        listing = await anyio.to_thread.run_sync(os.listdir, self.downloads_dir)
        filename = select_output_file(listing, prefix, self.default_extension)
        path = os.path.join(self.downloads_dir, filename)

        await self._tagger.write_tags(path, build_tags(info, inferred))
        if info.thumbnail_url:
            await self._embed_thumbnail(job, path, info.thumbnail_url)

        self._complete(job, filename, describe_download(info, inferred))

    def _set_progress(self, job, percent):
        if job.status != JOB_STATUS_RUNNING:
            return
        job.progress_percent = percent
        self._broadcaster.publish(job.id, progress_event(percent))

    async def _embed_thumbnail(self, job, path, thumbnail_url):
        try:
            data = await anyio.to_thread.run_sync(
                functools.partial(self._thumbnail_fetcher, thumbnail_url, timeout=self.thumbnail_timeout)
            )
            cover = await anyio.to_thread.run_sync(self._cover_normalizer, data)
            await self._tagger.embed_artwork(path, cover)
        except Exception as exc:
            logger.warning("Thumbnail embedding skipped for job %s: %s", job.id, exc)

    def _complete(self, job, filename, metadata):
        job.status = JOB_STATUS_COMPLETE
        job.progress_percent = 100.0
        job.filename = filename
        job.metadata = metadata
        job.finished_at = utc_now()
        _log_event(logging.INFO, "job_complete", job_id=job.id, filename=filename)
        self._broadcaster.publish(job.id, complete_event(filename, metadata))

    def _fail(self, job, reason):
        if job.is_terminal:
            return
        job.status = JOB_STATUS_FAILED
        job.error = reason
        job.finished_at = utc_now()
        _log_event(logging.WARNING, "job_failed", job_id=job.id, url=job.source_url, error=reason)
        self._broadcaster.publish(job.id, error_event(reason))
