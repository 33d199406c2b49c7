"""
Server Engine

Serves LIST and GET from one shared directory.

Design Decision: Concurrency
============================

Options Considered:
1. Thread per connection with blocking sockets
   - Simple, but a slow client pins a thread per transfer

2. asyncio streams, one handler task per connection
   - Thousands of idle connections cost almost nothing
   - drain() gives back-pressure for free

Decision: asyncio streams
- One ConnectionHandler per client, no shared mutable state
- Each upload runs as its own task so commands keep being read
- Every chunk write awaits drain(), so a slow reader slows the sender
  instead of growing the write buffer

Busy Policy:
- A GET arriving while an upload is running is answered with a
  TransferInProgress refusal header *after* the running body completes,
  so the first transfer's bytes are never interleaved
- A LIST arriving during an upload is served after it, in order
"""

import asyncio
import logging
from collections import deque
from contextlib import suppress
from pathlib import Path
from typing import Deque, Optional, Set, Union

import aiofiles

from .protocol import (
    CHUNK_SIZE, Command, CommandType, FileHeader, split_commands,
    ERROR_NOT_FOUND, ERROR_EMPTY_FILE, ERROR_UNSAFE_NAME, ERROR_TRANSFER_IN_PROGRESS
)
from .session import ActiveUpload
from .events import (
    EventEmitter, EventCallback, ServerStatusChanged, ClientConnected,
    ClientDisconnected, FileRequested, SendProgress, FileSent, ErrorOccurred
)
from ..errors import BindError, FrameError, UnsafeName
from ..file.storage import SharedDirectory

logger = logging.getLogger(__name__)

# Commands are short; anything longer is not a command
COMMAND_READ_SIZE = 4096


class ConnectionHandler:
    """
    Responder for one client connection.

    Owns at most one ActiveUpload and its file handle.
    """

    def __init__(self, server: 'ServerEngine', reader: asyncio.StreamReader,
                 writer: asyncio.StreamWriter):
        self.server = server
        self.reader = reader
        self.writer = writer
        self.upload: Optional[ActiveUpload] = None
        self._upload_task: Optional[asyncio.Task] = None
        self._deferred: Deque[Union[Command, bytes]] = deque()
        self._closed = False

        peername = writer.get_extra_info('peername')
        if isinstance(peername, tuple):
            self.peer = f"{peername[0]}:{peername[1]}"
        else:
            self.peer = str(peername)

    @property
    def is_uploading(self) -> bool:
        return self._upload_task is not None and not self._upload_task.done()

    async def run(self):
        """Read and dispatch commands until the client goes away."""
        try:
            while not self._closed:
                data = await self.reader.read(COMMAND_READ_SIZE)
                if not data:
                    break
                for raw in split_commands(data):
                    await self._dispatch(raw)
        except asyncio.CancelledError:
            raise
        except (ConnectionError, OSError) as e:
            logger.debug(f"Connection error from {self.peer}: {e}")
        finally:
            await self.close()

    async def close(self):
        """Abort any upload and close the socket. Safe to call from the upload task."""
        if self._closed:
            return
        self._closed = True

        task = self._upload_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

        if self.upload is not None:
            logger.info(f"Upload of {self.upload.file_name} to {self.peer} aborted "
                        f"after {self.upload.bytes_sent:,} bytes")
            self.upload = None

        self.writer.close()
        with suppress(ConnectionError, OSError):
            await self.writer.wait_closed()

    async def _dispatch(self, raw: bytes):
        try:
            command = Command.from_bytes(raw)
        except FrameError as e:
            logger.warning(f"Bad command from {self.peer}: {e}")
            self.server.events.emit(ErrorOccurred(f"Bad command from {self.peer}: {e}", e))
            return

        if command.type == CommandType.GET:
            self.server.events.emit(FileRequested(peer=self.peer, name=command.name))

        if self.is_uploading:
            if command.type == CommandType.GET:
                logger.info(f"Refusing GET {command.name} from {self.peer}: upload in progress")
                refusal = FileHeader.refusal(
                    command.name, ERROR_TRANSFER_IN_PROGRESS,
                    "A file is already being sent on this connection"
                )
                self._deferred.append(refusal.to_bytes())
            else:
                self._deferred.append(command)
            return

        if command.type == CommandType.LIST:
            await self._send_list()
        else:
            await self._start_upload(command.name)

    async def _write(self, data: bytes):
        self.writer.write(data)
        await self.writer.drain()

    async def _send_list(self):
        logger.debug(f"Client {self.peer} requested file list")
        response = await self.server.shared.list_response()
        await self._write(response.to_bytes())
        logger.info(f"Sent file list to {self.peer} ({len(response.files)} files)")

    async def _refuse(self, name: str, error: str, message: str):
        logger.info(f"Refusing {name!r} to {self.peer}: {message}")
        self.server.events.emit(ErrorOccurred(f"{self.peer}: {message}"))
        await self._write(FileHeader.refusal(name, error, message).to_bytes())

    async def _start_upload(self, name: str):
        """Validate the request, send the header, start streaming the body."""
        try:
            path, size = await self.server.shared.stat_file(name)
        except UnsafeName as e:
            await self._refuse(name, ERROR_UNSAFE_NAME, str(e))
            return
        except OSError as e:
            await self._refuse(name, ERROR_NOT_FOUND, f"File not found or not readable: {name}")
            logger.debug(f"stat failed for {name}: {e}")
            return

        if size == 0:
            await self._refuse(name, ERROR_EMPTY_FILE, f"File is empty: {name}")
            return

        try:
            handle = await aiofiles.open(path, 'rb')
        except OSError as e:
            logger.debug(f"open failed for {name}: {e}")
            await self._refuse(name, ERROR_NOT_FOUND, f"File not found or not readable: {name}")
            return

        try:
            header = FileHeader(name=name, size=size).to_bytes()
        except FrameError as e:
            await handle.close()
            await self._refuse(name, ERROR_NOT_FOUND, str(e))
            return

        self.upload = ActiveUpload(file_name=name, total_size=size, source=path)
        logger.info(f"Sending {name} ({size:,} bytes) to {self.peer}")
        self._upload_task = asyncio.create_task(self._send_file(handle, header))

    async def _send_file(self, handle, header: bytes):
        """
        Stream header and body, then answer deferred commands.

        Any failure once the header may be on the wire closes the
        connection: the client can only recover a half-sent body via EOF.
        """
        upload = self.upload
        try:
            await self._write(header)
            chunk_size = self.server.chunk_size
            while upload.bytes_sent < upload.total_size:
                want = min(chunk_size, upload.total_size - upload.bytes_sent)
                chunk = await handle.read(want)
                if not chunk:
                    message = (f"{upload.file_name} truncated during send "
                               f"({upload.bytes_sent}/{upload.total_size} bytes)")
                    logger.error(message)
                    self.server.events.emit(ErrorOccurred(message))
                    await self.close()
                    return

                await self._write(chunk)
                upload.bytes_sent += len(chunk)
                self.server.bytes_uploaded += len(chunk)
                self.server.events.emit(SendProgress(
                    name=upload.file_name,
                    percent=upload.percent,
                    bytes_sent=upload.bytes_sent,
                    total=upload.total_size,
                ))
        except (ConnectionError, OSError) as e:
            message = f"Sending {upload.file_name} to {self.peer} failed: {e}"
            logger.warning(message)
            self.server.events.emit(ErrorOccurred(message, e))
            await self.close()
            return
        except Exception as e:
            message = f"Upload of {upload.file_name} to {self.peer} crashed: {e}"
            logger.error(message)
            self.server.events.emit(ErrorOccurred(message, e))
            await self.close()
            return
        finally:
            await handle.close()

        self.upload = None
        self.server.files_served += 1
        logger.info(f"Sent {upload.file_name} to {self.peer} ({upload.total_size:,} bytes)")
        self.server.events.emit(FileSent(name=upload.file_name, size=upload.total_size))

        await self._flush_deferred()

    async def _flush_deferred(self):
        try:
            while self._deferred and not self._closed:
                item = self._deferred.popleft()
                if isinstance(item, Command):
                    await self._send_list()
                else:
                    await self._write(item)
        except (ConnectionError, OSError) as e:
            logger.debug(f"Failed to answer deferred commands from {self.peer}: {e}")


class ServerEngine:
    """
    TCP file server.

    Serves the listing and the files of one flat shared directory.
    """

    def __init__(self, host: str = '0.0.0.0', chunk_size: int = CHUNK_SIZE):
        self.host = host
        self.chunk_size = chunk_size
        self.port: Optional[int] = None
        self.shared: Optional[SharedDirectory] = None
        self.server: Optional[asyncio.AbstractServer] = None
        self.events = EventEmitter()
        self._handlers: Set[ConnectionHandler] = set()

        # Statistics
        self.files_served = 0
        self.bytes_uploaded = 0

    def on_event(self, callback: EventCallback):
        """Register a callback for server events."""
        self.events.on_event(callback)

    @property
    def is_listening(self) -> bool:
        return self.server is not None

    @property
    def connection_count(self) -> int:
        return len(self._handlers)

    async def start(self, port: int, shared_dir: Path):
        """
        Start listening.

        Raises:
            FileNotFoundError: shared_dir does not exist
            BindError: port unavailable
        """
        shared = SharedDirectory(shared_dir)
        if not shared.exists():
            raise FileNotFoundError(f"Shared directory not found: {shared_dir}")

        if self.is_listening:
            logger.info("Server already running, restarting")
            await self.stop()

        try:
            self.server = await asyncio.start_server(
                self._handle_connection,
                self.host,
                port
            )
        except OSError as e:
            logger.error(f"Failed to start server on port {port}: {e}")
            self.events.emit(ServerStatusChanged(False))
            raise BindError(f"Cannot listen on {self.host}:{port}: {e}") from e

        self.shared = shared
        self.port = self.server.sockets[0].getsockname()[1]

        logger.info(f"File server listening on {self.host}:{self.port}, sharing {shared.root}")
        self.events.emit(ServerStatusChanged(True))

    async def stop(self):
        """Disconnect every client and stop listening."""
        if self.server is None:
            return

        server = self.server
        self.server = None
        server.close()

        for handler in list(self._handlers):
            await handler.close()

        await server.wait_closed()
        logger.info(f"File server stopped. Served {self.files_served} files, "
                    f"{self.bytes_uploaded:,} bytes")
        self.events.emit(ServerStatusChanged(False))

    async def get_file_list(self):
        """Current listing of the shared directory."""
        if self.shared is None:
            return []
        return await self.shared.list_files()

    async def _handle_connection(self, reader: asyncio.StreamReader,
                                 writer: asyncio.StreamWriter):
        """Handle an incoming connection."""
        handler = ConnectionHandler(self, reader, writer)
        self._handlers.add(handler)
        logger.info(f"New client connection from {handler.peer}")
        self.events.emit(ClientConnected(handler.peer))

        try:
            await handler.run()
        except Exception as e:
            logger.error(f"Error handling connection from {handler.peer}: {e}")
        finally:
            self._handlers.discard(handler)
            logger.info(f"Client disconnected: {handler.peer}")
            self.events.emit(ClientDisconnected(handler.peer))

    def get_stats(self) -> dict:
        """Get server statistics."""
        return {
            'listening': self.is_listening,
            'port': self.port,
            'shared_dir': str(self.shared.root) if self.shared else None,
            'active_connections': self.connection_count,
            'files_served': self.files_served,
            'bytes_uploaded': self.bytes_uploaded,
        }
