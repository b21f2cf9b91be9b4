"""Async invocation of external command-line tools."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

logger = logging.getLogger(__name__)

LineCallback = Callable[[str], None]

# yt-dlp --dump-json emits one JSON document per line and can exceed the
# 64 KiB default StreamReader limit.
_STREAM_LIMIT = 16 * 1024 * 1024
_STDERR_SUMMARY_LIMIT = 2000


@dataclass(frozen=True)
class ProcessInvocation:
    executable: str
    arguments: tuple[str, ...]
    stdout: str
    stderr: str
    exit_code: int
    stdout_bytes: bytes = b""


class ProcessError(RuntimeError):
    """Raised when an external tool cannot start or exits non-zero."""

    def __init__(self, executable: str, exit_code: int | None, stderr: str = "") -> None:
        self.executable = executable
        self.exit_code = exit_code
        self.stderr = stderr
        name = os.path.basename(executable) or executable
        detail = _summarize(stderr)
        if exit_code is None:
            message = f"{name} could not be started"
        else:
            message = f"{name} exited with code {exit_code}"
        super().__init__(f"{message}: {detail}" if detail else message)


def _summarize(text: str) -> str:
    text = (text or "").strip()
    if len(text) > _STDERR_SUMMARY_LIMIT:
        return "..." + text[-_STDERR_SUMMARY_LIMIT:]
    return text


async def _pump(stream, sink: list[bytes], callback: Optional[LineCallback]) -> None:
    if stream is None:
        return
    while True:
        raw = await stream.readline()
        if not raw:
            break
        sink.append(raw)
        if callback is None:
            continue
        try:
            callback(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
        except Exception:
            logger.exception("process_line_callback_failed")


def _decode(chunks: list[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace")


async def _stop(proc) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        pass
    await proc.wait()


async def run_process(
    executable: str,
    arguments: Sequence[str],
    *,
    on_stdout_line: Optional[LineCallback] = None,
    on_stderr_line: Optional[LineCallback] = None,
    cwd: str | None = None,
) -> ProcessInvocation:
    """Run ``executable`` with ``arguments`` and capture both output streams.

    Lines are handed to the callbacks as they arrive. Returns the captured
    invocation on exit code 0; raises ``ProcessError`` otherwise, including
    when the executable is missing or writes a line longer than the stream
    limit (the child is killed in that case).
    """
    args = tuple(str(arg) for arg in arguments)
    logger.debug("exec %s %s", executable, " ".join(args))
    try:
        proc = await asyncio.create_subprocess_exec(
            executable,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            limit=_STREAM_LIMIT,
        )
    except OSError as exc:
        raise ProcessError(executable, None, str(exc)) from exc

    stdout_chunks: list[bytes] = []
    stderr_chunks: list[bytes] = []
    pumps = [
        asyncio.ensure_future(_pump(proc.stdout, stdout_chunks, on_stdout_line)),
        asyncio.ensure_future(_pump(proc.stderr, stderr_chunks, on_stderr_line)),
    ]
    try:
        await asyncio.gather(*pumps)
    except ValueError as exc:
        # StreamReader reports an overlong line as ValueError.
        for pump in pumps:
            pump.cancel()
        await asyncio.gather(*pumps, return_exceptions=True)
        await _stop(proc)
        detail = f"output line exceeded {_STREAM_LIMIT} bytes"
        stderr = _decode(stderr_chunks)
        raise ProcessError(executable, proc.returncode, f"{stderr}\n{detail}" if stderr else detail) from exc
    exit_code = await proc.wait()

    stdout_bytes = b"".join(stdout_chunks)
    invocation = ProcessInvocation(
        executable=executable,
        arguments=args,
        stdout=stdout_bytes.decode("utf-8", errors="replace"),
        stderr=_decode(stderr_chunks),
        exit_code=exit_code,
        stdout_bytes=stdout_bytes,
    )
    if exit_code != 0:
        raise ProcessError(executable, exit_code, invocation.stderr)
    return invocation
