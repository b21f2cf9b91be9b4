"""Application settings constants."""

from __future__ import annotations

# External tools; resolved through PATH unless overridden in config.json.
YT_DLP_PATH = "yt-dlp"
FFMPEG_PATH = "ffmpeg"

# Prefer containers that carry tags without re-encoding.
AUDIO_FORMAT_PREFERENCE = "bestaudio[ext=m4a]/bestaudio[ext=mp3]/bestaudio"

# Assumed when the produced file cannot be found after a download.
DEFAULT_AUDIO_EXTENSION = "m4a"

AUDIO_EXTENSIONS = (".m4a", ".mp3", ".webm", ".opus")

MAX_FILENAME_LENGTH = 200

THUMBNAIL_TIMEOUT_SECONDS = 15.0

# Terminal jobs older than this are evicted from the registry; 0 keeps them forever.
JOB_TTL_SECONDS = 3600

JOB_PRUNE_INTERVAL_SECONDS = 60

# 0 means no cap on simultaneously running jobs.
MAX_CONCURRENT_JOBS = 0
