from __future__ import annotations

import asyncio
from datetime import timedelta
from pathlib import Path

import pytest
import requests

from engine.job_queue import Job, JobRegistry, build_tags
from engine.process import ProcessError
from engine.urls import InvalidUrlError
from media.ytdlp import MetadataQueryError, VideoInfo
from metadata.inference import infer_metadata
from metadata.types import TagSet

URL_A = "https://www.youtube.com/watch?v=aaaaaaaaaaa"
URL_B = "https://www.youtube.com/watch?v=bbbbbbbbbbb"


def _info(title: str, *, description: str = "", thumbnail_url: str | None = None, video_id: str = "aaaaaaaaaaa") -> VideoInfo:
    return VideoInfo(
        title=title,
        duration=190.0,
        thumbnail_url=thumbnail_url,
        uploader="Uploader",
        description=description,
        upload_date="20230131",
        webpage_url=f"https://www.youtube.com/watch?v={video_id}",
        video_id=video_id,
    )


class FakeDownloader:
    def __init__(self, infos: dict, *, progress=(10.0, 55.5, 100.0), error=None, gate=None, playlist=None) -> None:
        self.infos = infos
        self.playlist = playlist or {"title": "Mix", "entries": []}
        self.progress = progress
        self.error = error
        self.gate = gate
        self.queried: list[str] = []
        self.downloaded: list[tuple[str, str]] = []

    async def query_info(self, url):
        self.queried.append(url)
        return self.infos[url]

    async def download(self, url, template, *, on_progress=None):
        self.downloaded.append((url, template))
        if self.gate is not None:
            await self.gate.wait()
        for percent in self.progress:
            on_progress(percent)
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        Path(template.replace("%(ext)s", "m4a")).write_bytes(b"audio")

    async def playlist_entries(self, url):
        return self.playlist


class FakeTagger:
    def __init__(self, *, error=None) -> None:
        self.error = error
        self.tagged: list[tuple[str, TagSet]] = []
        self.covers: list[tuple[str, bytes]] = []

    async def write_tags(self, path, tags):
        if self.error is not None:
            raise self.error
        self.tagged.append((path, tags))

    async def embed_artwork(self, path, cover_jpeg):
        self.covers.append((path, cover_jpeg))
        return True


def _registry(tmp_path: Path, downloader, tagger=None, **kwargs) -> JobRegistry:
    kwargs.setdefault("thumbnail_fetcher", lambda url, timeout=None: b"thumbnail")
    kwargs.setdefault("cover_normalizer", lambda data: b"jpeg")
    return JobRegistry(tmp_path, downloader=downloader, tagger=tagger or FakeTagger(), **kwargs)


def test_job_completes_with_inferred_tags(tmp_path: Path) -> None:
    info = _info("Boygenius - Emily I'm Sorry", description="Album: the record\n℗ 2023 Interscope")
    downloader = FakeDownloader({URL_A: info})
    tagger = FakeTagger()

    async def _run():
        registry = _registry(tmp_path, downloader, tagger)
        events: list = []
        job_id = registry.submit("https://youtu.be/aaaaaaaaaaa?t=3")
        assert registry.get(job_id).status == "pending"
        assert registry.subscribe(job_id, events.append)
        job = await registry.wait(job_id)
        return job, events

    job, events = asyncio.run(_run())

    assert job.status == "complete"
    assert job.source_url == URL_A
    assert job.filename == "Boygenius - Emily I'm Sorry.m4a"
    assert job.progress_percent == 100.0
    assert (tmp_path / job.filename).exists()
    assert tagger.tagged == [
        (
            str(tmp_path / job.filename),
            TagSet(title="Emily I'm Sorry", artist="Boygenius", album="the record", date="2023"),
        )
    ]
    assert events[0] == {"type": "progress", "progress": 0.0}
    assert events[1] == {"type": "status", "status": "running"}
    assert [event["progress"] for event in events if event["type"] == "progress"][1:] == [10.0, 55.5, 100.0]
    assert events[-1]["type"] == "complete"
    assert events[-1]["filename"] == job.filename
    assert events[-1]["metadata"]["artist"] == "Boygenius"


def test_download_failure_fails_job_with_single_error_event(tmp_path: Path) -> None:
    downloader = FakeDownloader(
        {URL_A: _info("Some Song")},
        error=ProcessError("yt-dlp", 1, "network error"),
    )

    async def _run():
        registry = _registry(tmp_path, downloader)
        events: list = []
        job_id = registry.submit(URL_A)
        registry.subscribe(job_id, events.append)
        job = await registry.wait(job_id)
        return registry, job, events

    registry, job, events = asyncio.run(_run())

    assert job.status == "failed"
    assert "network error" in job.error
    assert job.finished_at is not None
    assert [event for event in events if event["type"] == "error"] == [{"type": "error", "error": job.error}]
    assert events[-1]["type"] == "error"
    assert registry._broadcaster.observer_count(job.id) == 0


def test_metadata_query_failure_fails_job(tmp_path: Path) -> None:
    class BrokenDownloader(FakeDownloader):
        async def query_info(self, url):
            raise ProcessError("yt-dlp", 1, "ERROR: Video unavailable")

    async def _run():
        registry = _registry(tmp_path, BrokenDownloader({}))
        return await registry.wait(registry.submit(URL_A))

    job = asyncio.run(_run())

    assert job.status == "failed"
    assert "Video unavailable" in job.error


def test_independent_jobs_do_not_share_events(tmp_path: Path) -> None:
    downloader = FakeDownloader(
        {
            URL_A: _info("Artist A - First"),
            URL_B: _info("Artist B - Second", video_id="bbbbbbbbbbb"),
        }
    )

    async def _run():
        registry = _registry(tmp_path, downloader)
        events_a: list = []
        events_b: list = []
        job_a = registry.submit(URL_A)
        job_b = registry.submit(URL_B)
        registry.subscribe(job_a, events_a.append)
        registry.subscribe(job_b, events_b.append)
        results = await asyncio.gather(registry.wait(job_a), registry.wait(job_b))
        return results, events_a, events_b

    (job_a, job_b), events_a, events_b = asyncio.run(_run())

    assert job_a.status == "complete"
    assert job_b.status == "complete"
    assert [event["filename"] for event in events_a if event["type"] == "complete"] == ["Artist A - First.m4a"]
    assert [event["filename"] for event in events_b if event["type"] == "complete"] == ["Artist B - Second.m4a"]


def test_unsubscribed_observer_misses_later_events_but_job_completes(tmp_path: Path) -> None:
    async def _run():
        gate = asyncio.Event()
        downloader = FakeDownloader({URL_A: _info("Some Song")}, gate=gate)
        registry = _registry(tmp_path, downloader)
        events: list = []
        job_id = registry.submit(URL_A)
        registry.subscribe(job_id, events.append)
        while not downloader.downloaded:
            await asyncio.sleep(0)
        registry.unsubscribe(job_id, events.append)
        gate.set()
        job = await registry.wait(job_id)
        return job, events

    job, events = asyncio.run(_run())

    assert job.status == "complete"
    assert events == [
        {"type": "progress", "progress": 0.0},
        {"type": "status", "status": "running"},
    ]


def test_subscribing_after_completion_replays_final_event(tmp_path: Path) -> None:
    downloader = FakeDownloader({URL_A: _info("Some Song")})

    async def _run():
        registry = _registry(tmp_path, downloader)
        job_id = registry.submit(URL_A)
        await registry.wait(job_id)
        events: list = []
        subscribed = registry.subscribe(job_id, events.append)
        return registry, job_id, subscribed, events

    registry, job_id, subscribed, events = asyncio.run(_run())

    assert subscribed is True
    assert events == [
        {"type": "complete", "filename": "Some Song.m4a", "metadata": registry.get(job_id).metadata}
    ]
    assert registry._broadcaster.observer_count(job_id) == 0


def test_unknown_job_lookups(tmp_path: Path) -> None:
    registry = _registry(tmp_path, FakeDownloader({}))

    assert registry.get("missing") is None
    assert registry.subscribe("missing", print) is False


def test_invalid_url_is_rejected_before_a_job_exists(tmp_path: Path) -> None:
    registry = _registry(tmp_path, FakeDownloader({}))

    with pytest.raises(InvalidUrlError):
        registry.submit("not a url")

    assert registry.list_jobs() == []


def test_thumbnail_is_embedded_when_available(tmp_path: Path) -> None:
    downloader = FakeDownloader({URL_A: _info("Some Song", thumbnail_url="https://i.ytimg.com/vi/a/hq.jpg")})
    tagger = FakeTagger()

    async def _run():
        registry = _registry(tmp_path, downloader, tagger)
        return await registry.wait(registry.submit(URL_A))

    job = asyncio.run(_run())

    assert job.status == "complete"
    assert tagger.covers == [(str(tmp_path / "Some Song.m4a"), b"jpeg")]


def test_thumbnail_failure_does_not_fail_job(tmp_path: Path) -> None:
    downloader = FakeDownloader({URL_A: _info("Some Song", thumbnail_url="https://i.ytimg.com/vi/a/hq.jpg")})
    tagger = FakeTagger()

    def _unreachable(url, timeout=None):
        raise requests.ConnectionError("thumbnail host down")

    async def _run():
        registry = _registry(tmp_path, downloader, tagger, thumbnail_fetcher=_unreachable)
        return await registry.wait(registry.submit(URL_A))

    job = asyncio.run(_run())

    assert job.status == "complete"
    assert tagger.covers == []
    assert len(tagger.tagged) == 1


def test_tag_failure_fails_job(tmp_path: Path) -> None:
    downloader = FakeDownloader({URL_A: _info("Some Song")})
    tagger = FakeTagger(error=ProcessError("ffmpeg", 1, "Invalid data found when processing input"))

    async def _run():
        registry = _registry(tmp_path, downloader, tagger)
        return await registry.wait(registry.submit(URL_A))

    job = asyncio.run(_run())

    assert job.status == "failed"
    assert "Invalid data found" in job.error


def test_concurrency_cap_keeps_extra_jobs_pending(tmp_path: Path) -> None:
    async def _run():
        gate = asyncio.Event()
        downloader = FakeDownloader(
            {URL_A: _info("First"), URL_B: _info("Second", video_id="bbbbbbbbbbb")},
            gate=gate,
        )
        registry = _registry(tmp_path, downloader, max_concurrent_jobs=1)
        job_a = registry.submit(URL_A)
        job_b = registry.submit(URL_B)
        while not downloader.downloaded:
            await asyncio.sleep(0)
        for _ in range(5):
            await asyncio.sleep(0)
        statuses = (registry.get(job_a).status, registry.get(job_b).status)
        gate.set()
        results = await asyncio.gather(registry.wait(job_a), registry.wait(job_b))
        return statuses, [job.status for job in results]

    statuses, final = asyncio.run(_run())

    assert statuses == ("running", "pending")
    assert final == ["complete", "complete"]


def test_prune_expired_forgets_old_terminal_jobs(tmp_path: Path) -> None:
    downloader = FakeDownloader({URL_A: _info("Some Song")})

    async def _run():
        registry = _registry(tmp_path, downloader, job_ttl_seconds=3600)
        job_id = registry.submit(URL_A)
        return registry, await registry.wait(job_id)

    registry, job = asyncio.run(_run())

    assert registry.prune_expired(now=job.finished_at) == 0
    assert registry.get(job.id) is job
    assert registry.prune_expired(now=job.finished_at + timedelta(seconds=3601)) == 1
    assert registry.get(job.id) is None


def test_progress_ignored_once_job_is_terminal(tmp_path: Path) -> None:
    registry = _registry(tmp_path, FakeDownloader({}))
    job = Job(id="done", source_url=URL_A, status="complete", progress_percent=100.0)

    registry._set_progress(job, 12.0)

    assert job.progress_percent == 100.0


def test_get_video_info_returns_inferred_metadata(tmp_path: Path) -> None:
    downloader = FakeDownloader({URL_A: _info("Boygenius - Emily I'm Sorry")})
    registry = _registry(tmp_path, downloader)

    result = asyncio.run(registry.get_video_info("https://youtu.be/aaaaaaaaaaa"))

    assert downloader.queried == [URL_A]
    assert result["title"] == "Boygenius - Emily I'm Sorry"
    assert result["metadata"]["artist"] == "Boygenius"
    assert result["uploader"] == "Uploader"


def test_build_tags_falls_back_to_upload_year() -> None:
    info = _info("Some Song")

    tags = build_tags(info, infer_metadata(info.title, info.description))

    assert tags == TagSet(title="Some Song", artist="", album="", date="2023")


def test_submit_playlist_starts_one_job_per_entry(tmp_path: Path) -> None:
    playlist = {
        "title": "Mix",
        "entries": [
            {"url": URL_A, "title": "First"},
            {"url": None, "title": "Private video"},
            {"url": URL_B, "title": "Second"},
        ],
    }
    downloader = FakeDownloader(
        {URL_A: _info("First Song"), URL_B: _info("Second Song", video_id="bbbbbbbbbbb")},
        playlist=playlist,
    )

    async def _run():
        registry = _registry(tmp_path, downloader)
        job_ids = await registry.submit_playlist("https://www.youtube.com/playlist?list=PL123")
        return [await registry.wait(job_id) for job_id in job_ids]

    jobs = asyncio.run(_run())

    assert [job.source_url for job in jobs] == [URL_A, URL_B]
    assert [job.status for job in jobs] == ["complete", "complete"]
    assert len({job.id for job in jobs}) == 2
    assert (tmp_path / "First Song.m4a").exists()
    assert (tmp_path / "Second Song.m4a").exists()


def test_find_artwork_searches_when_query_is_not_a_url(tmp_path: Path) -> None:
    fetched: list = []
    downloader = FakeDownloader(
        {"ytsearch1:Boygenius Not Strong Enough": _info("Not Strong Enough", thumbnail_url="https://i.ytimg.com/vi/b/hq.jpg")}
    )

    def _fetch(url, timeout=None):
        fetched.append(url)
        return b"thumbnail"

    registry = _registry(tmp_path, downloader, thumbnail_fetcher=_fetch)

    data = asyncio.run(registry.find_artwork("Boygenius Not Strong Enough"))

    assert data == b"thumbnail"
    assert fetched == ["https://i.ytimg.com/vi/b/hq.jpg"]


def test_find_artwork_normalizes_video_urls(tmp_path: Path) -> None:
    downloader = FakeDownloader({URL_A: _info("Some Song", thumbnail_url="https://i.ytimg.com/vi/a/hq.jpg")})
    registry = _registry(tmp_path, downloader)

    asyncio.run(registry.find_artwork("https://youtu.be/aaaaaaaaaaa?si=share"))

    assert downloader.queried == [URL_A]


def test_find_artwork_without_thumbnail_raises(tmp_path: Path) -> None:
    downloader = FakeDownloader({URL_A: _info("Some Song")})
    registry = _registry(tmp_path, downloader)

    with pytest.raises(MetadataQueryError):
        asyncio.run(registry.find_artwork(URL_A))


def test_replace_artwork_normalizes_then_embeds(tmp_path: Path) -> None:
    tagger = FakeTagger()
    registry = _registry(tmp_path, FakeDownloader({}), tagger, cover_normalizer=lambda data: b"square:" + data)

    embedded = asyncio.run(registry.replace_artwork("/music/song.m4a", b"png"))

    assert embedded is True
    assert tagger.covers == [("/music/song.m4a", b"square:png")]
