"""Structured progress events and the thread-safe channel that carries them to the UI"""

import logging
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

DEFAULT_CHANNEL_SIZE = 1000


class LogLevel(str, Enum):
    """User-visible log levels"""

    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"


_SYMBOLS = {LogLevel.SUCCESS: "✓ ", LogLevel.WARNING: "⚠ ", LogLevel.ERROR: "✗ "}

_PYTHON_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class BackupEvent:
    """A log line or a state change produced by a running operation"""

    level: LogLevel
    message: str
    timestamp: datetime = field(default_factory=datetime.now)
    state: str | None = None

    @property
    def is_state_change(self) -> bool:
        return self.state is not None

    def format(self) -> str:
        """Render as `[yyyy-MM-dd HH:mm:ss] [LEVEL] message`"""
        stamp = self.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        return f"[{stamp}] [{self.level.value}] {_SYMBOLS.get(self.level, '')}{self.message}"


EventSink = Callable[[BackupEvent], None]


class EventReporter:
    """Writes each message to a Python logger and forwards it to an optional sink"""

    def __init__(self, logger: logging.Logger, sink: EventSink | None = None):
        self.logger = logger
        self.sink = sink

    def _send(self, event: BackupEvent) -> None:
        if self.sink is None:
            return
        try:
            self.sink(event)
        except Exception as e:
            self.logger.warning(f"Error in event sink: {e}")

    def emit(self, level: LogLevel, message: str) -> None:
        self.logger.log(_PYTHON_LEVELS[level], message)
        self._send(BackupEvent(level=level, message=message))

    def state_changed(self, state: str) -> None:
        self.logger.debug(f"State -> {state}")
        self._send(BackupEvent(level=LogLevel.INFO, message=state, state=state))

    def info(self, message: str) -> None:
        self.emit(LogLevel.INFO, message)

    def success(self, message: str) -> None:
        self.emit(LogLevel.SUCCESS, message)

    def warning(self, message: str) -> None:
        self.emit(LogLevel.WARNING, message)

    def error(self, message: str) -> None:
        self.emit(LogLevel.ERROR, message)

    def child(self, name: str) -> "EventReporter":
        """Reporter for a sub-component sharing the same sink"""
        return EventReporter(logging.getLogger(f"dbvault.{name}"), self.sink)


class EventChannel:
    """Bounded hand-off from a worker thread to the thread that owns the UI

    The worker calls `publish`; the UI thread calls `drain`. By default a
    full queue blocks the worker until the UI catches up, so every event
    arrives in order. With `put_timeout` set, the oldest pending event is
    discarded once the wait runs out and counted in `dropped`.
    """

    def __init__(self, maxsize: int = DEFAULT_CHANNEL_SIZE, put_timeout: float | None = None):
        self._queue: queue.Queue[BackupEvent] = queue.Queue(maxsize=maxsize)
        self._put_timeout = put_timeout
        self._lock = threading.Lock()
        self.dropped = 0

    def publish(self, event: BackupEvent) -> None:
        if self._put_timeout is None:
            self._queue.put(event)
            return

        try:
            self._queue.put(event, timeout=self._put_timeout)
            return
        except queue.Full:
            pass

        with self._lock:
            try:
                self._queue.get_nowait()
                self.dropped += 1
            except queue.Empty:
                pass
            self._queue.put_nowait(event)

    __call__ = publish

    def drain(self, timeout: float | None = None) -> list[BackupEvent]:
        """Return pending events, waiting up to `timeout` seconds for the first one"""
        events: list[BackupEvent] = []
        try:
            if timeout is None:
                events.append(self._queue.get_nowait())
            else:
                events.append(self._queue.get(timeout=timeout))
        except queue.Empty:
            return events

        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events
