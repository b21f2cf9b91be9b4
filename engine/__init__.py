from .broadcast import ProgressBroadcaster
from .core import build_runtime_config, load_config, load_runtime_config, validate_config
from .job_queue import Job, JobRegistry
from .paths import EnginePaths
from .process import ProcessError, ProcessInvocation, run_process
from .runtime import get_runtime_info
from .urls import InvalidUrlError, normalize_url

__all__ = [
    "EnginePaths",
    "InvalidUrlError",
    "Job",
    "JobRegistry",
    "ProcessError",
    "ProcessInvocation",
    "ProgressBroadcaster",
    "build_runtime_config",
    "get_runtime_info",
    "load_config",
    "load_runtime_config",
    "normalize_url",
    "run_process",
    "validate_config",
]
