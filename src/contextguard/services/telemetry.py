"""In-process telemetry bus for governance events."""

from __future__ import annotations

import logging
from collections import deque
from threading import Lock
from typing import Any, Callable, Mapping

LOGGER = logging.getLogger(__name__)

TelemetryListener = Callable[[dict[str, Any]], None]

_EVENT_LISTENERS: dict[str, list[TelemetryListener]] = {}


def register_event_listener(event_name: str, callback: TelemetryListener) -> None:
    """Register a callback invoked whenever :func:`emit` fires *event_name*."""

    if not event_name or callback is None:
        return
    listeners = _EVENT_LISTENERS.setdefault(event_name, [])
    if callback not in listeners:
        listeners.append(callback)


def unregister_event_listener(event_name: str, callback: TelemetryListener) -> None:
    listeners = _EVENT_LISTENERS.get(event_name)
    if not listeners:
        return
    if callback in listeners:
        listeners.remove(callback)
    if not listeners:
        _EVENT_LISTENERS.pop(event_name, None)


def clear_event_listeners() -> None:
    _EVENT_LISTENERS.clear()


def emit(event_name: str, payload: Mapping[str, Any] | None = None) -> None:
    """Broadcast a structured telemetry event to in-process listeners."""

    if not event_name:
        return
    event_payload: dict[str, Any] = {"event": event_name}
    if payload:
        event_payload.update(payload)
    listeners = list(_EVENT_LISTENERS.get(event_name, ()))
    for callback in listeners:
        try:
            callback(dict(event_payload))
        except Exception:
            LOGGER.debug("Telemetry listener %s failed", callback, exc_info=True)
    LOGGER.debug("Telemetry emit %s: %s", event_name, event_payload)


class EventRecorder:
    """Ring buffer that captures emitted events for inspection and tests."""

    def __init__(self, *event_names: str, capacity: int = 200) -> None:
        self._event_names = tuple(event_names)
        self._buffer: deque[dict[str, Any]] = deque(maxlen=max(10, capacity))
        self._lock = Lock()

    def __enter__(self) -> "EventRecorder":
        for name in self._event_names:
            register_event_listener(name, self.record)
        return self

    def __exit__(self, *_exc: object) -> None:
        for name in self._event_names:
            unregister_event_listener(name, self.record)

    def record(self, payload: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.append(payload)

    def events(self, event_name: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            events = list(self._buffer)
        if event_name is None:
            return events
        return [event for event in events if event.get("event") == event_name]

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


__all__ = [
    "EventRecorder",
    "TelemetryListener",
    "clear_event_listeners",
    "emit",
    "register_event_listener",
    "unregister_event_listener",
]
