"""
Transfer Controller - Main Client Controller

Orchestrates a ClientEngine for front ends (CLI, UI):
- Remote file model (name, size, selection, status, progress)
- Awaitable refresh() / download() on top of the event-driven engine
- Sequential batch downloads: one file at a time, never pipelined
"""

import asyncio
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional
from dataclasses import dataclass

from .transfer import (
    ClientEngine, ConnectionStateChanged, ListReceived, Progress, FileReceived,
    TransferCancelled, ErrorOccurred
)
from .transfer.protocol import MAX_LIST_RESPONSE_SIZE
from .errors import NotConnected, TransferError

logger = logging.getLogger(__name__)

STATUS_IDLE = ''
STATUS_WAITING = 'waiting'
STATUS_DOWNLOADING = 'downloading'
STATUS_COMPLETE = 'complete'
STATUS_FAILED = 'failed'
STATUS_CANCELLED = 'cancelled'


@dataclass
class RemoteFile:
    """A file offered by the server, as shown to the user."""
    name: str
    size: int
    selected: bool = False
    status: str = STATUS_IDLE
    progress: int = 0


# Callback fired whenever the controller's model changes
ChangeCallback = Callable[['TransferController'], None]


class TransferController:
    """
    Front-end facing wrapper around a ClientEngine.

    Usage:
        controller = TransferController('127.0.0.1', 8000, Path('./downloads'))
        await controller.connect()
        files = await controller.refresh()
        await controller.download(['a.txt'])
    """

    def __init__(self, server_host: str = '127.0.0.1', server_port: int = 8000,
                 download_dir: Path = Path('./downloads'),
                 connect_timeout: float = 5.0,
                 max_list_size: int = MAX_LIST_RESPONSE_SIZE,
                 engine: Optional[ClientEngine] = None):
        self.server_host = server_host
        self.server_port = server_port
        self.download_dir = Path(download_dir)
        self.engine = engine or ClientEngine(
            connect_timeout=connect_timeout, max_list_size=max_list_size
        )

        self.files: Dict[str, RemoteFile] = {}
        self.downloading = False
        self.current_download = ''
        self.overall_progress = 0
        self.error_message = ''
        self.status_message = ''

        self._total_to_download = 0
        self._files_downloaded = 0
        self._waiter: Optional[asyncio.Future] = None
        self._callbacks: List[ChangeCallback] = []

        self.engine.on_event(self._on_engine_event)

    @classmethod
    def from_config(cls, config) -> 'TransferController':
        return cls(
            server_host=config.server_host,
            server_port=config.port,
            download_dir=config.download_dir,
            connect_timeout=config.connect_timeout,
            max_list_size=config.max_list_size,
        )

    def on_change(self, callback: ChangeCallback):
        """Register a callback for model changes."""
        self._callbacks.append(callback)

    def _notify(self):
        for callback in self._callbacks:
            try:
                callback(self)
            except Exception as e:
                logger.error(f"Callback error: {e}")

    @property
    def connected(self) -> bool:
        return self.engine.is_connected

    # === Connection ===

    async def connect(self):
        """Connect to the configured server."""
        self.clear_error()
        self._set_status(f"Connecting to {self.server_host}:{self.server_port}...")
        try:
            await self.engine.connect(self.server_host, self.server_port)
        except TransferError as e:
            self._set_error(str(e))
            raise
        self._set_status("Connected")

    async def disconnect(self):
        await self.engine.disconnect()

    async def cancel(self):
        """Stop the running download (and the connection with it)."""
        await self.engine.cancel()

    # === Listing ===

    async def refresh(self, timeout: Optional[float] = None) -> List[RemoteFile]:
        """
        Fetch the remote listing and rebuild the file model.

        On timeout the connection is dropped, so a late listing is never
        read as the answer to a later request.
        """
        if not self.connected:
            self._set_error("Not connected to server")
            raise NotConnected("Not connected to server")

        waiter = self._new_waiter()
        await self.engine.request_list()
        self._set_status("Requesting file list...")
        try:
            event = await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError:
            self._waiter = None
            await self.engine.disconnect()
            self._set_error(f"No file list received within {timeout}s")
            raise

        if isinstance(event, ListReceived):
            return self.get_files()

        raise self._as_error(event)

    def get_files(self) -> List[RemoteFile]:
        return list(self.files.values())

    def select_all(self):
        for f in self.files.values():
            f.selected = True
        self._notify()

    def clear_selection(self):
        for f in self.files.values():
            f.selected = False
        self._notify()

    def select(self, name: str, selected: bool = True):
        if name in self.files:
            self.files[name].selected = selected
            self._notify()

    # === Downloads ===

    async def download(self, names: Optional[List[str]] = None) -> List[Path]:
        """
        Download files one after another.

        Args:
            names: Files to fetch (default: currently selected files)

        Returns:
            Paths of the files that completed
        """
        if names is None:
            names = [f.name for f in self.files.values() if f.selected]
        if not names:
            self._set_error("No files selected")
            return []
        if not self.connected:
            self._set_error("Not connected to server")
            raise NotConnected("Not connected to server")

        for name in names:
            entry = self.files.setdefault(name, RemoteFile(name=name, size=0))
            entry.status = STATUS_WAITING
            entry.progress = 0

        self.downloading = True
        self._total_to_download = len(names)
        self._files_downloaded = 0
        self.overall_progress = 0
        self._notify()

        completed: List[Path] = []
        try:
            for name in names:
                if not self.connected:
                    self.files[name].status = STATUS_FAILED
                    continue

                path = await self._download_one(name)
                if path is not None:
                    completed.append(path)
                self._files_downloaded += 1
                self._update_overall_progress(0)
        finally:
            self.downloading = False
            self.current_download = ''
            self._notify()

        self._set_status(f"Downloaded {len(completed)}/{len(names)} files")
        return completed

    async def _download_one(self, name: str) -> Optional[Path]:
        entry = self.files[name]
        entry.status = STATUS_DOWNLOADING
        self.current_download = name
        self._set_status(f"Downloading {name}...")

        waiter = self._new_waiter()
        try:
            await self.engine.request_file(name, self.download_dir)
        except TransferError as e:
            self._waiter = None
            entry.status = STATUS_FAILED
            self._set_error(str(e))
            return None

        event = await waiter
        if isinstance(event, FileReceived):
            entry.status = STATUS_COMPLETE
            entry.progress = 100
            return event.path

        entry.status = STATUS_CANCELLED if isinstance(event, TransferCancelled) else STATUS_FAILED
        return None

    # === Engine events ===

    def _new_waiter(self) -> asyncio.Future:
        self._waiter = asyncio.get_running_loop().create_future()
        return self._waiter

    def _resolve(self, event):
        waiter = self._waiter
        self._waiter = None
        if waiter is not None and not waiter.done():
            waiter.set_result(event)

    def _on_engine_event(self, event):
        if isinstance(event, ListReceived):
            self.files = {
                entry.name: RemoteFile(name=entry.name, size=entry.size)
                for entry in event.files
            }
            self._set_status(f"Found {len(event.files)} files")
            self._resolve(event)

        elif isinstance(event, Progress):
            entry = self.files.get(event.name)
            if entry is not None:
                entry.progress = event.percent
            self._update_overall_progress(event.percent)

        elif isinstance(event, FileReceived):
            self._set_status(f"Downloaded {event.name} ({event.size:,} bytes)")
            self._resolve(event)

        elif isinstance(event, TransferCancelled):
            self._set_status(f"Cancelled {event.name}")
            self._resolve(event)

        elif isinstance(event, ErrorOccurred):
            self._set_error(event.message)
            self._resolve(event)

        elif isinstance(event, ConnectionStateChanged):
            if not event.connected:
                self._set_status("Disconnected")
                self._resolve(event)
            self._notify()

    def _as_error(self, event) -> TransferError:
        if isinstance(event, ErrorOccurred) and isinstance(event.error, TransferError):
            return event.error
        if isinstance(event, ErrorOccurred):
            return TransferError(event.message)
        return NotConnected("Connection closed")

    def _update_overall_progress(self, current_percent: int):
        if self._total_to_download == 0:
            self.overall_progress = 0
        else:
            done = self._files_downloaded * 100 + current_percent
            self.overall_progress = min(100, done // self._total_to_download)
        self._notify()

    # === Messages ===

    def clear_error(self):
        self.error_message = ''
        self._notify()

    def _set_error(self, message: str):
        logger.error(message)
        self.error_message = message
        self._notify()

    def _set_status(self, message: str):
        logger.debug(message)
        self.status_message = message
        self._notify()
