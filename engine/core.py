import json
import logging
import os

from config import settings

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG = {
    "yt_dlp_path": settings.YT_DLP_PATH,
    "ffmpeg_path": settings.FFMPEG_PATH,
    "audio_format": settings.AUDIO_FORMAT_PREFERENCE,
    "default_extension": settings.DEFAULT_AUDIO_EXTENSION,
    "downloads_dir": None,
    "thumbnail_timeout_seconds": settings.THUMBNAIL_TIMEOUT_SECONDS,
    "job_ttl_seconds": settings.JOB_TTL_SECONDS,
    "job_prune_interval_seconds": settings.JOB_PRUNE_INTERVAL_SECONDS,
    "max_concurrent_jobs": settings.MAX_CONCURRENT_JOBS,
}

_STRING_FIELDS = ("yt_dlp_path", "ffmpeg_path", "audio_format", "default_extension")
_NON_NEGATIVE_FIELDS = (
    "thumbnail_timeout_seconds",
    "job_ttl_seconds",
    "job_prune_interval_seconds",
    "max_concurrent_jobs",
)


def load_config(path):
    with open(path, "r") as f:
        return json.load(f)


def validate_config(config):
    errors = []
    if not isinstance(config, dict):
        return ["config must be a JSON object"]

    for field in _STRING_FIELDS:
        value = config.get(field)
        if value is None:
            continue
        if not isinstance(value, str) or not value.strip():
            errors.append(f"{field} must be a non-empty string")

    downloads_dir = config.get("downloads_dir")
    if downloads_dir is not None and not isinstance(downloads_dir, str):
        errors.append("downloads_dir must be a string")

    for field in _NON_NEGATIVE_FIELDS:
        value = config.get(field)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"{field} must be a number")
        elif value < 0:
            errors.append(f"{field} must be >= 0")

    max_jobs = config.get("max_concurrent_jobs")
    if isinstance(max_jobs, float) and not max_jobs.is_integer():
        errors.append("max_concurrent_jobs must be an integer")

    extension = config.get("default_extension")
    if isinstance(extension, str) and extension.startswith("."):
        errors.append("default_extension must not start with '.'")

    return errors


def build_runtime_config(config=None):
    """Merge a user config over the defaults; unknown keys are kept untouched."""
    merged = dict(_DEFAULT_CONFIG)
    for key, value in (config or {}).items():
        if value is not None:
            merged[key] = value
    merged["max_concurrent_jobs"] = int(merged["max_concurrent_jobs"] or 0)
    return merged


def load_runtime_config(path=None):
    if not path or not os.path.exists(path):
        if path:
            logger.info("Config file %s not found; using defaults", path)
        return build_runtime_config()
    config = load_config(path)
    errors = validate_config(config)
    if errors:
        raise ValueError("Invalid config: " + "; ".join(errors))
    return build_runtime_config(config)
