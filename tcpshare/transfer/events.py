"""
Transfer Events

Everything the engines report to their callers. Callbacks run
synchronously, in the order the underlying transitions happened.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from .protocol import FileEntry

logger = logging.getLogger(__name__)


# === Client events ===

@dataclass(frozen=True)
class ConnectionStateChanged:
    connected: bool


@dataclass(frozen=True)
class ListReceived:
    files: List[FileEntry] = field(default_factory=list)


@dataclass(frozen=True)
class Progress:
    """Download progress; percent is floor(bytes_received * 100 / total)."""
    name: str
    percent: int
    bytes_received: int
    total: int


@dataclass(frozen=True)
class FileReceived:
    name: str
    size: int
    path: Optional[Path] = None


@dataclass(frozen=True)
class TransferCancelled:
    name: str
    bytes_received: int


@dataclass(frozen=True)
class Diagnostic:
    """Something odd but harmless, e.g. bytes arriving while idle."""
    message: str


# === Server events ===

@dataclass(frozen=True)
class ServerStatusChanged:
    running: bool


@dataclass(frozen=True)
class ClientConnected:
    peer: str


@dataclass(frozen=True)
class ClientDisconnected:
    peer: str


@dataclass(frozen=True)
class FileRequested:
    peer: str
    name: str


@dataclass(frozen=True)
class SendProgress:
    name: str
    percent: int
    bytes_sent: int
    total: int


@dataclass(frozen=True)
class FileSent:
    name: str
    size: int


# === Shared ===

@dataclass(frozen=True)
class ErrorOccurred:
    """Exactly one of these per aborted exchange."""
    message: str
    error: Optional[Exception] = None


# Callback type for any event above
EventCallback = Callable[[object], None]


class EventEmitter:
    """Ordered fan-out of events to registered callbacks."""

    def __init__(self):
        self._callbacks: List[EventCallback] = []

    def on_event(self, callback: EventCallback):
        """Register a callback for every event."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: EventCallback):
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def emit(self, event: object):
        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Callback error: {e}")
