"""
Client Engine

Drives a TransferSession over one outbound TCP connection.

Download Flow:
1. request_file() prepares the destination file, sends GET <name>
2. Read loop feeds every received chunk into the session
3. Session events are turned into file writes and caller events
4. Completion, error, cancel, or disconnect closes the destination handle

Failures of the public coroutines (not connected, busy, cannot open the
destination) are raised. Failures discovered while reading are reported
once, as an ErrorOccurred event.

A failure that leaves unread body bytes on the stream (destination write
error, name mismatch, undecodable frame) also drops the connection, since
the next header cannot be located in what follows.
"""

import asyncio
import logging
from contextlib import suppress
from pathlib import Path
from typing import Optional

from .protocol import Command, MAX_LIST_RESPONSE_SIZE
from .session import (
    TransferSession, TransferState, ActiveDownload,
    HeaderAccepted, BodyChunk, DownloadComplete, SessionFailed, UnexpectedData
)
from .events import (
    EventEmitter, EventCallback, ConnectionStateChanged, ListReceived,
    Progress, FileReceived, TransferCancelled, ErrorOccurred, Diagnostic
)
from ..errors import (
    ConnectError, NotConnected, TransferInProgress, TransferIOError,
    FileUnavailable, NameMismatch, FrameError
)
from ..file.storage import open_destination, remove_quietly

logger = logging.getLogger(__name__)

# Read size for the inbound stream
READ_SIZE = 64 * 1024


class ClientEngine:
    """
    File transfer client.

    One connection, one session, at most one download at a time.
    Register callbacks with on_event() to receive progress and results.
    """

    def __init__(self, connect_timeout: float = 5.0,
                 max_list_size: int = MAX_LIST_RESPONSE_SIZE):
        self.connect_timeout = connect_timeout
        self.session = TransferSession(max_list_size=max_list_size)
        self.events = EventEmitter()

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._read_task: Optional[asyncio.Task] = None
        self._connecting = False

        # Statistics
        self.files_received = 0
        self.bytes_received = 0

    def on_event(self, callback: EventCallback):
        """Register a callback for client events."""
        self.events.on_event(callback)

    @property
    def is_connected(self) -> bool:
        return self._writer is not None

    @property
    def state(self) -> TransferState:
        return self.session.state

    @property
    def download(self) -> Optional[ActiveDownload]:
        return self.session.download

    @property
    def remote_address(self):
        if self._writer is None:
            return None
        return self._writer.get_extra_info('peername')

    # === Connection ===

    async def connect(self, host: str, port: int):
        """
        Connect to a server.

        Raises:
            ConnectError: refused, unreachable, timed out, or already connected
        """
        if self._connecting or self.is_connected:
            raise ConnectError("Connection already in progress or established")

        self._connecting = True
        try:
            logger.info(f"Connecting to {host}:{port}")
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=self.connect_timeout
            )
        except asyncio.TimeoutError as e:
            raise ConnectError(
                f"Timed out connecting to {host}:{port} after {self.connect_timeout}s"
            ) from e
        except OSError as e:
            raise ConnectError(f"Failed to connect to {host}:{port}: {e}") from e
        finally:
            self._connecting = False

        self._reader = reader
        self._writer = writer
        self.session.abort()
        self._read_task = asyncio.create_task(self._read_loop())

        logger.info(f"Connected to {host}:{port}")
        self.events.emit(ConnectionStateChanged(True))

    async def disconnect(self):
        """
        Close the connection.

        An unfinished download is reported as TransferInterrupted; the
        partial file stays on disk.
        """
        if not self.is_connected:
            return
        logger.info("Disconnecting from server")
        await self._stop_reading()
        await self._connection_lost()

    async def _stop_reading(self):
        task = self._read_task
        self._read_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def _close_transport(self):
        writer = self._writer
        self._writer = None
        self._reader = None
        if writer is None:
            return False
        writer.close()
        with suppress(ConnectionError, OSError):
            await writer.wait_closed()
        return True

    async def _connection_lost(self):
        """Abort pending exchanges, close the socket, tell the caller."""
        await self._handle_events(self.session.eof())
        await self._drop_connection()

    async def _drop_connection(self):
        if await self._close_transport():
            self.events.emit(ConnectionStateChanged(False))

    async def _send(self, command: Command):
        self._writer.write(command.to_bytes())
        await self._writer.drain()

    # === Requests ===

    async def request_list(self):
        """
        Ask the server for its file listing.

        Raises:
            NotConnected: no active connection
            TransferInProgress: another exchange is pending
        """
        if not self.is_connected:
            raise NotConnected("Not connected to server")

        self.session.begin_list()
        logger.debug("Requesting file list")
        try:
            await self._send(Command.list())
        except (ConnectionError, OSError) as e:
            self.session.abort()
            raise NotConnected(f"Failed to send LIST: {e}") from e

    async def request_file(self, name: str, destination_directory: Path) -> Path:
        """
        Ask the server for one file, saving it as destination_directory/name.

        Returns:
            Path the file is being written to

        Raises:
            NotConnected: no active connection
            TransferInProgress: a download (or listing) is already active
            UnsafeName: name is not a bare file name
            TransferIOError: destination could not be prepared
        """
        if not self.is_connected:
            raise NotConnected("Not connected to server")
        if self.session.download is not None or not self.session.is_idle:
            raise TransferInProgress("A download is already in progress")

        path, handle = await open_destination(Path(destination_directory), name)
        self.session.begin_download(name, destination=path, handle=handle)

        logger.info(f"Downloading {name} to {path}")
        try:
            await self._send(Command.get(name))
        except (ConnectionError, OSError) as e:
            download = self.session.abort()
            await self._close_handle(download)
            raise NotConnected(f"Failed to send GET: {e}") from e

        return path

    async def cancel(self):
        """
        Abort the active download and drop the connection.

        No-op when nothing is downloading. The partial file is kept.
        """
        download = self.session.download
        if download is None:
            return

        logger.info(f"Cancelling download of {download.requested_name}")
        self.session.abort()
        await self._stop_reading()
        await self._close_handle(download)

        self.events.emit(TransferCancelled(
            name=download.requested_name,
            bytes_received=download.bytes_received,
        ))
        await self._drop_connection()

    # === Inbound path ===

    async def _read_loop(self):
        try:
            while True:
                data = await self._reader.read(READ_SIZE)
                if not data:
                    logger.info("Server closed the connection")
                    break
                await self._handle_events(self.session.feed(data))
                if not self.is_connected:
                    break
        except asyncio.CancelledError:
            raise
        except (ConnectionError, OSError) as e:
            logger.warning(f"Connection error: {e}")

        self._read_task = None
        await self._connection_lost()

    async def _handle_events(self, events):
        for event in events:
            if isinstance(event, BodyChunk):
                await self._write_body(event)
            elif isinstance(event, DownloadComplete):
                await self._finish_download(event)
            elif isinstance(event, SessionFailed):
                await self._fail_download(event)
            elif isinstance(event, HeaderAccepted):
                logger.debug(f"Header: {event.header.name} ({event.header.size:,} bytes)")
            elif isinstance(event, ListReceived):
                logger.info(f"Received file list ({len(event.files)} files)")
                self.events.emit(event)
            elif isinstance(event, UnexpectedData):
                message = f"Discarded {event.size} unexpected bytes"
                logger.debug(message)
                self.events.emit(Diagnostic(message))

    async def _write_body(self, chunk: BodyChunk):
        download = chunk.download
        if download.handle is None:
            # Already aborted by an earlier write failure
            return
        try:
            await download.handle.write(chunk.data)
        except OSError as e:
            if self.session.download is download:
                self.session.abort()
            await self._close_handle(download)
            error = TransferIOError(
                f"Write failed for {download.requested_name}: {e}",
                name=download.requested_name,
                bytes_received=download.bytes_written,
            )
            logger.error(str(error))
            self.events.emit(ErrorOccurred(str(error), error))
            await self._drop_connection()
            return

        download.bytes_written += len(chunk.data)
        self.bytes_received += len(chunk.data)
        self.events.emit(Progress(
            name=download.requested_name,
            percent=chunk.percent,
            bytes_received=chunk.bytes_received,
            total=chunk.expected_size,
        ))

    async def _finish_download(self, event: DownloadComplete):
        download = event.download
        if download.handle is None:
            return
        await self._close_handle(download)
        self.files_received += 1
        logger.info(f"Download complete: {event.name} ({download.bytes_written:,} bytes)")
        self.events.emit(FileReceived(
            name=event.name,
            size=download.bytes_written,
            path=download.destination,
        ))

    async def _fail_download(self, event: SessionFailed):
        error = event.error
        download = event.download
        if download is not None:
            await self._close_handle(download)
            header_failure = isinstance(error, (FileUnavailable, NameMismatch, FrameError))
            if header_failure and download.bytes_received == 0 and download.destination:
                await remove_quietly(download.destination)
        logger.error(f"Transfer failed: {error}")
        self.events.emit(ErrorOccurred(str(error), error))
        if isinstance(error, (NameMismatch, FrameError)):
            await self._drop_connection()

    async def _close_handle(self, download: Optional[ActiveDownload]):
        if download is None or download.handle is None:
            return
        handle = download.handle
        download.handle = None
        try:
            await handle.close()
        except OSError as e:
            logger.warning(f"Error closing {download.destination}: {e}")

    def get_stats(self) -> dict:
        """Get client statistics."""
        return {
            'connected': self.is_connected,
            'state': self.session.state.value,
            'files_received': self.files_received,
            'bytes_received': self.bytes_received,
        }
