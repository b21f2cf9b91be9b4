import os
from dataclasses import dataclass
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_FILENAME = "config.json"


def _in_container():
    return os.path.exists("/.dockerenv") or os.path.isdir("/data")


def _env_path(name, default):
    return Path(os.environ.get(name) or default).resolve()


# Containers mount each directory at the filesystem root; local runs keep them in the checkout.
_DATA_DEFAULT = Path("/data") if _in_container() else PROJECT_ROOT / "data"
_BASE = Path("/") if _in_container() else _DATA_DEFAULT

DATA_DIR = _env_path("AUDIO_GRABBER_DATA_DIR", _DATA_DEFAULT)
CONFIG_DIR = _env_path("AUDIO_GRABBER_CONFIG_DIR", _BASE / "config")
DOWNLOADS_DIR = _env_path("AUDIO_GRABBER_DOWNLOADS_DIR", _BASE / "downloads")
LOG_DIR = _env_path("AUDIO_GRABBER_LOG_DIR", _BASE / "logs")


@dataclass(frozen=True)
class EnginePaths:
    log_dir: str
    downloads_dir: str
    temp_dir: str


def ensure_dir(path):
    if path:
        os.makedirs(path, exist_ok=True)


def _is_within_base(path, base_dir):
    base = os.path.realpath(base_dir)
    return os.path.commonpath([os.path.realpath(path), base]) == base


def _absolute(path, base_dir):
    return os.path.abspath(path if os.path.isabs(path) else os.path.join(base_dir, path))


def resolve_config_path(path):
    """Config file location; relative names are taken from ``CONFIG_DIR``."""
    resolved = _absolute(path or CONFIG_FILENAME, CONFIG_DIR)
    if not _is_within_base(resolved, CONFIG_DIR):
        raise ValueError(f"Config path must be within CONFIG_DIR: {CONFIG_DIR}")
    return resolved


def resolve_dir(path, base_dir):
    """Resolve ``path`` against ``base_dir``, refusing anything that escapes it."""
    if not path:
        return base_dir
    resolved = _absolute(path, base_dir)
    if not _is_within_base(resolved, base_dir):
        raise ValueError(f"Path must be within base directory: {base_dir}")
    return resolved


def build_engine_paths(downloads_dir=None):
    downloads = Path(downloads_dir).resolve() if downloads_dir else DOWNLOADS_DIR
    paths = EnginePaths(
        log_dir=str(LOG_DIR),
        downloads_dir=str(downloads),
        temp_dir=str(DATA_DIR / "tmp"),
    )
    for directory in (paths.downloads_dir, paths.temp_dir, paths.log_dir, CONFIG_DIR):
        ensure_dir(directory)
    return paths
