"""Per-job progress fan-out with replay of the current state on subscribe."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

EVENT_STATUS = "status"
EVENT_PROGRESS = "progress"
EVENT_COMPLETE = "complete"
EVENT_ERROR = "error"
TERMINAL_EVENTS = (EVENT_COMPLETE, EVENT_ERROR)

Event = dict[str, Any]
Observer = Callable[[Event], None]
SnapshotFn = Callable[[str], Optional[Event]]


def status_event(status: str) -> Event:
    return {"type": EVENT_STATUS, "status": status}


def progress_event(percent: float | None) -> Event:
    return {"type": EVENT_PROGRESS, "progress": float(percent or 0.0)}


def complete_event(filename: str, metadata: dict | None = None) -> Event:
    return {"type": EVENT_COMPLETE, "filename": filename, "metadata": dict(metadata or {})}


def error_event(reason: str) -> Event:
    return {"type": EVENT_ERROR, "error": reason}


def is_terminal_event(event: Event) -> bool:
    return event.get("type") in TERMINAL_EVENTS


class ProgressBroadcaster:
    """Maps job ids to ordered observer lists.

    ``snapshot`` returns the replay event for a job id, or ``None`` when the
    job is unknown. Observers are plain callables invoked synchronously on the
    event loop; an observer that raises is logged and skipped.
    """

    def __init__(self, snapshot: SnapshotFn) -> None:
        self._snapshot = snapshot
        self._observers: dict[str, list[Observer]] = {}

    def subscribe(self, job_id: str, observer: Observer) -> bool:
        event = self._snapshot(job_id)
        if event is None:
            return False
        if not is_terminal_event(event):
            self._observers.setdefault(job_id, []).append(observer)
        self._deliver(job_id, observer, event)
        return True

    def unsubscribe(self, job_id: str, observer: Observer) -> None:
        observers = self._observers.get(job_id)
        if not observers:
            return
        remaining = [existing for existing in observers if existing != observer]
        if remaining:
            self._observers[job_id] = remaining
        else:
            self._observers.pop(job_id, None)

    def publish(self, job_id: str, event: Event) -> None:
        observers = list(self._observers.get(job_id, ()))
        if is_terminal_event(event):
            self.close(job_id)
        for observer in observers:
            self._deliver(job_id, observer, event)

    def close(self, job_id: str) -> None:
        self._observers.pop(job_id, None)

    def observer_count(self, job_id: str) -> int:
        return len(self._observers.get(job_id, ()))

    def _deliver(self, job_id: str, observer: Observer, event: Event) -> None:
        try:
            observer(event)
        except Exception:
            logger.exception("job_observer_failed job_id=%s event=%s", job_id, event.get("type"))
