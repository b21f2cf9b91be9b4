import os
import shutil
import sys

from yt_dlp.version import __version__ as ytdlp_version


def get_runtime_info(config=None):
    config = config or {}
    return {
        "app_version": os.environ.get("AUDIO_GRABBER_VERSION", "0.0.0"),
        "python_version": sys.version.split()[0],
        "yt_dlp_version": ytdlp_version,
        "yt_dlp_path": shutil.which(config.get("yt_dlp_path") or "yt-dlp"),
        "ffmpeg_path": shutil.which(config.get("ffmpeg_path") or "ffmpeg"),
    }
