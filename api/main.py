#!/usr/bin/env python3
import asyncio
import base64
import binascii
import json
import logging
import os

import anyio
import requests
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import Body, FastAPI, HTTPException, Query
from fastapi.responses import Response, StreamingResponse
from PIL import UnidentifiedImageError
from pydantic import BaseModel
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from engine.broadcast import error_event, is_terminal_event
from engine.core import load_runtime_config
from engine.job_queue import JobRegistry
from engine.paths import build_engine_paths, ensure_dir, resolve_config_path, resolve_dir
from engine.process import ProcessError
from engine.runtime import get_runtime_info
from engine.urls import InvalidUrlError
from media.library import list_downloads, read_tags
from media.ytdlp import MetadataQueryError
from metadata.types import TagSet

APP_NAME = "Audio Grabber API"
PRUNE_JOB_ID = "prune_finished_jobs"
_SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}


def _env_or_default(name, default):
    value = os.environ.get(name)
    return value if value else default


_TRUST_PROXY = _env_or_default("AUDIO_GRABBER_TRUST_PROXY", "false").lower() in ("1", "true", "yes")

app = FastAPI(
    title=APP_NAME,
    description="Download the audio track of a video, tag it and follow progress live.",
)

if _TRUST_PROXY:
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")


def _setup_logging(log_dir):
    ensure_dir(log_dir)
    root = logging.getLogger("")
    log_path = os.path.join(log_dir, "audio_grabber.log")
    root.setLevel(logging.INFO)
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            if os.path.abspath(getattr(handler, "baseFilename", "")) == os.path.abspath(log_path):
                return
    file_handler = logging.FileHandler(log_path)
    file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    file_handler.setLevel(logging.INFO)
    root.addHandler(file_handler)


class DownloadRequest(BaseModel):
    url: str | None = None


class ArtworkUploadRequest(BaseModel):
    data: str
    contentType: str | None = None


class ArtworkSearchRequest(BaseModel):
    url: str | None = None


class MetadataUpdateRequest(BaseModel):
    title: str = ""
    artist: str = ""
    album: str = ""
    date: str = ""


@app.on_event("startup")
async def startup():
    try:
        config_path = resolve_config_path(os.environ.get("AUDIO_GRABBER_CONFIG"))
    except ValueError as exc:
        logging.error("Invalid config override: %s", exc)
        config_path = resolve_config_path(None)
    config = load_runtime_config(config_path)
    paths = build_engine_paths(config.get("downloads_dir"))
    _setup_logging(paths.log_dir)

    app.state.config = config
    app.state.paths = paths
    app.state.registry = JobRegistry.from_config(config, paths)

    app.state.scheduler = AsyncIOScheduler(timezone="UTC")
    if config["job_ttl_seconds"] and config["job_prune_interval_seconds"]:
        app.state.scheduler.add_job(
            _prune_finished_jobs,
            IntervalTrigger(seconds=config["job_prune_interval_seconds"]),
            id=PRUNE_JOB_ID,
            replace_existing=True,
        )
    app.state.scheduler.start()
    logging.info("%s ready; downloads_dir=%s", APP_NAME, paths.downloads_dir)


@app.on_event("shutdown")
async def shutdown():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler:
        scheduler.shutdown(wait=False)
    logging.shutdown()


async def _prune_finished_jobs():
    # Coroutine so the scheduler runs it on the event loop that owns the registry.
    app.state.registry.prune_expired()


def _registry():
    registry = getattr(app.state, "registry", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Job registry not ready")
    return registry


def _downloads_dir():
    return app.state.paths.downloads_dir


def _resolve_download_file(filename):
    if not filename or os.path.basename(filename) != filename:
        raise HTTPException(status_code=400, detail="Invalid filename")
    try:
        return resolve_dir(filename, _downloads_dir())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid filename") from exc


def _sse(event):
    return f"data: {json.dumps(event)}\n\n"


@app.get("/api/video-info")
async def api_video_info(url: str | None = Query(default=None)):
    if not url:
        raise HTTPException(status_code=400, detail="url query parameter required")
    try:
        return await _registry().get_video_info(url)
    except InvalidUrlError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (ProcessError, MetadataQueryError) as exc:
        logging.warning("Video info lookup failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.get("/api/playlist")
async def api_playlist(url: str | None = Query(default=None)):
    if not url:
        raise HTTPException(status_code=400, detail="url query parameter required")
    try:
        return await _registry().playlist_entries(url)
    except InvalidUrlError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (ProcessError, MetadataQueryError) as exc:
        logging.warning("Playlist lookup failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.post("/api/download")
async def api_download(request: DownloadRequest):
    if not request.url:
        raise HTTPException(status_code=400, detail="url is required in body")
    try:
        job_id = _registry().submit(request.url)
    except InvalidUrlError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"jobId": job_id}


@app.post("/api/download-playlist")
async def api_download_playlist(request: DownloadRequest):
    if not request.url:
        raise HTTPException(status_code=400, detail="url is required in body")
    try:
        job_ids = await _registry().submit_playlist(request.url)
    except InvalidUrlError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (ProcessError, MetadataQueryError) as exc:
        logging.warning("Playlist submission failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return {"jobIds": job_ids}


@app.get("/api/jobs")
async def api_jobs():
    return [job.to_dict() for job in _registry().list_jobs()]


@app.get("/api/download/{job_id}")
async def api_download_status(job_id: str):
    job = _registry().get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.to_dict()


@app.get("/api/download/{job_id}/progress")
async def api_download_progress(job_id: str):
    registry = _registry()
    queue = asyncio.Queue()
    observer = queue.put_nowait

    if not registry.subscribe(job_id, observer):
        async def _not_found():
            yield _sse(error_event("Job not found"))

        return StreamingResponse(_not_found(), media_type="text/event-stream", headers=_SSE_HEADERS)

    async def _stream():
        try:
            while True:
                event = await queue.get()
                yield _sse(event)
                if is_terminal_event(event):
                    break
        finally:
            # Also runs on client disconnect; the job itself keeps going.
            registry.unsubscribe(job_id, observer)

    return StreamingResponse(_stream(), media_type="text/event-stream", headers=_SSE_HEADERS)


@app.get("/api/downloads")
async def api_downloads():
    return await anyio.to_thread.run_sync(list_downloads, _downloads_dir())


@app.get("/api/downloads/{filename}/metadata")
async def api_download_metadata(filename: str):
    path = _resolve_download_file(filename)
    try:
        return await anyio.to_thread.run_sync(read_tags, path)
    except FileNotFoundError as exc:
        raise HTTPException(status_code=404, detail="File not found") from exc


@app.put("/api/metadata/{filename}")
async def api_write_metadata(filename: str, request: MetadataUpdateRequest):
    path = _resolve_download_file(filename)
    if not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="File not found")
    tags = TagSet.from_mapping(request.model_dump())
    try:
        await _registry().tagger.write_tags(path, tags)
    except ProcessError as exc:
        logging.warning("Metadata write failed for %s: %s", filename, exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return {"success": True}


def _existing_download(filename):
    path = _resolve_download_file(filename)
    if not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="File not found")
    return path


async def _embed_cover(filename, path, image_data):
    try:
        embedded = await _registry().replace_artwork(path, image_data)
    except UnidentifiedImageError as exc:
        raise HTTPException(status_code=400, detail="Image data could not be decoded") from exc
    except ProcessError as exc:
        logging.warning("Artwork embedding failed for %s: %s", filename, exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    if not embedded:
        raise HTTPException(status_code=415, detail="Artwork is not supported for this file type")
    return {"success": True}


@app.get("/api/downloads/{filename}/artwork")
async def api_download_artwork(filename: str):
    path = _existing_download(filename)
    artwork = await _registry().tagger.extract_artwork(path)
    if artwork is None:
        raise HTTPException(status_code=404, detail="No artwork embedded")
    content, media_type = artwork
    return Response(content=content, media_type=media_type)


@app.post("/api/downloads/{filename}/artwork")
async def api_upload_artwork(filename: str, request: ArtworkUploadRequest):
    path = _existing_download(filename)
    try:
        image_data = base64.b64decode(request.data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise HTTPException(status_code=400, detail="data must be base64-encoded") from exc
    if not image_data:
        raise HTTPException(status_code=400, detail="data is empty")
    return await _embed_cover(filename, path, image_data)


@app.post("/api/downloads/{filename}/artwork/youtube")
async def api_youtube_artwork(filename: str, request: ArtworkSearchRequest = Body(default=ArtworkSearchRequest())):
    path = _existing_download(filename)
    query = (request.url or "").strip()
    if not query:
        tags = await anyio.to_thread.run_sync(read_tags, path)
        query = " ".join(part for part in (tags["artist"], tags["title"]) if part)
        query = query or os.path.splitext(filename)[0]
    try:
        image_data = await _registry().find_artwork(query)
    except InvalidUrlError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (ProcessError, MetadataQueryError, requests.RequestException, ValueError) as exc:
        logging.warning("Artwork lookup failed for %s: %s", filename, exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return await _embed_cover(filename, path, image_data)


@app.get("/api/version")
async def api_version():
    return get_runtime_info(getattr(app.state, "config", None))


if __name__ == "__main__":
    import uvicorn

    host = _env_or_default("AUDIO_GRABBER_HOST", "127.0.0.1")
    port = int(_env_or_default("AUDIO_GRABBER_PORT", "8000"))
    uvicorn.run("api.main:app", host=host, port=port, reload=False)
