#!/usr/bin/env python3
"""
Grab the audio track of a single video from the command line.
- Runs one job on a fresh registry and prints its progress events.
- Exits 0 when the file is tagged and saved, 1 otherwise.
"""

import argparse
import asyncio
import json
import logging
import os
import sys

from engine.core import load_runtime_config
from engine.job_queue import JOB_STATUS_COMPLETE, JobRegistry
from engine.paths import build_engine_paths
from engine.urls import InvalidUrlError


def _setup_logging(log_dir):
    os.makedirs(log_dir, exist_ok=True)
    logging.basicConfig(
        filename=os.path.join(log_dir, "grabber.log"),
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    console.setLevel(logging.WARNING)
    logging.getLogger("").addHandler(console)


def _print_event(event):
    print(json.dumps(event), flush=True)


async def grab(registry, url, on_event=_print_event):
    """Submit ``url``, stream its events to ``on_event`` and return the final job."""
    job_id = registry.submit(url)
    registry.subscribe(job_id, on_event)
    job = await registry.wait(job_id)
    registry.unsubscribe(job_id, on_event)
    return job


def main(argv=None):
    parser = argparse.ArgumentParser(description="Download a video's audio track and tag it.")
    parser.add_argument("url", help="Video URL (youtube.com/watch?v=... or youtu.be/...).")
    parser.add_argument("--config", help="Path to a JSON config file.")
    parser.add_argument("--downloads", help="Directory to save the audio file into.")
    args = parser.parse_args(argv)

    try:
        config = load_runtime_config(args.config)
    except (OSError, ValueError) as exc:
        print(f"Config error: {exc}", file=sys.stderr)
        return 1
    if args.downloads:
        config["downloads_dir"] = args.downloads
    paths = build_engine_paths(config.get("downloads_dir"))
    _setup_logging(paths.log_dir)

    registry = JobRegistry.from_config(config, paths)
    try:
        job = asyncio.run(grab(registry, args.url))
    except InvalidUrlError as exc:
        print(f"Invalid URL: {exc}", file=sys.stderr)
        return 1

    if job.status != JOB_STATUS_COMPLETE:
        logging.error("Download failed for %s: %s", job.source_url, job.error)
        return 1
    print(os.path.join(registry.downloads_dir, job.filename))
    return 0


if __name__ == "__main__":
    sys.exit(main())
