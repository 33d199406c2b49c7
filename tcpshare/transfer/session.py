"""
Transfer Session

Design Decision: Where the state machine lives
===============================================

Options Considered:
1. Inline in the socket callbacks (one flag per mode)
   - What most quick clients do
   - Flags drift out of sync; a connection ends up "receiving a list"
     and "receiving a header" at the same time

2. Sans-IO state machine fed with bytes
   - Transition is a pure function of (state, new bytes)
   - Same logic under asyncio, threads, or a test harness
   - Engine owns sockets and file handles, session owns bookkeeping

Decision: Sans-IO session
- feed(data) returns events, the engine performs the I/O they imply
- Exactly one TransferState at a time

States:
```
IDLE --LIST--> AWAITING_LIST_RESPONSE --parsed--> IDLE
IDLE --GET---> AWAITING_FILE_HEADER --size>0--> RECEIVING_FILE_BODY --complete--> IDLE
                        |                               |
                        +--size==0 / mismatch / bad frame / eof / cancel--> IDLE
```
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional
from dataclasses import dataclass

from .protocol import (
    HEADER_SIZE, MAX_LIST_RESPONSE_SIZE, FileHeader, ListResponse
)
from .events import ListReceived
from ..errors import (
    TransferError, TransferInProgress, FrameError, FrameTruncated,
    FrameMalformed, NameMismatch, FileUnavailable, TransferInterrupted
)

logger = logging.getLogger(__name__)


class TransferState(Enum):
    """What the connection is currently waiting for."""
    IDLE = 'idle'
    AWAITING_LIST_RESPONSE = 'awaiting_list_response'
    AWAITING_FILE_HEADER = 'awaiting_file_header'
    RECEIVING_FILE_BODY = 'receiving_file_body'


@dataclass
class ActiveDownload:
    """Client side of one GET."""
    requested_name: str
    destination: Optional[Path] = None
    expected_size: int = 0
    bytes_received: int = 0
    # Owned by the engine, never touched here
    handle: Any = None
    bytes_written: int = 0

    @property
    def percent(self) -> int:
        if self.expected_size == 0:
            return 0
        return self.bytes_received * 100 // self.expected_size


@dataclass
class ActiveUpload:
    """Server side of one GET."""
    file_name: str
    total_size: int
    source: Optional[Path] = None
    bytes_sent: int = 0

    @property
    def percent(self) -> int:
        if self.total_size == 0:
            return 0
        return self.bytes_sent * 100 // self.total_size


# === Session events (consumed by the engine) ===

@dataclass(frozen=True)
class HeaderAccepted:
    header: FileHeader


@dataclass(frozen=True)
class BodyChunk:
    """Bytes to append to the destination file."""
    download: ActiveDownload
    data: bytes
    bytes_received: int
    expected_size: int
    percent: int


@dataclass(frozen=True)
class DownloadComplete:
    download: ActiveDownload
    name: str
    bytes_received: int


@dataclass(frozen=True)
class SessionFailed:
    """The current exchange was aborted; session is back to IDLE."""
    error: TransferError
    download: Optional[ActiveDownload] = None


@dataclass(frozen=True)
class UnexpectedData:
    size: int


class TransferSession:
    """
    Per-connection client state machine.

    Feed it whatever the transport delivers; it never blocks and never
    performs I/O.
    """

    def __init__(self, max_list_size: int = MAX_LIST_RESPONSE_SIZE):
        self.max_list_size = max_list_size
        self.state = TransferState.IDLE
        self.download: Optional[ActiveDownload] = None
        self._header_buffer = bytearray()
        self._list_buffer = bytearray()

    @property
    def is_idle(self) -> bool:
        return self.state == TransferState.IDLE

    def _require_idle(self):
        if not self.is_idle:
            raise TransferInProgress(f"Session busy ({self.state.value})")

    def begin_list(self):
        """Client sent LIST."""
        self._require_idle()
        self._list_buffer.clear()
        self.state = TransferState.AWAITING_LIST_RESPONSE

    def begin_download(self, name: str, destination: Optional[Path] = None,
                       handle: Any = None) -> ActiveDownload:
        """Client sent GET <name>."""
        self._require_idle()
        self._header_buffer.clear()
        self.download = ActiveDownload(
            requested_name=name,
            destination=destination,
            handle=handle,
        )
        self.state = TransferState.AWAITING_FILE_HEADER
        return self.download

    def abort(self) -> Optional[ActiveDownload]:
        """Drop whatever is in progress and return to IDLE."""
        download = self.download
        self._reset()
        return download

    def _reset(self):
        self.state = TransferState.IDLE
        self.download = None
        self._header_buffer.clear()
        self._list_buffer.clear()

    def _fail(self, error: TransferError) -> SessionFailed:
        logger.debug(f"Session aborted in {self.state.value}: {error}")
        event = SessionFailed(error=error, download=self.download)
        self._reset()
        return event

    # === Inbound bytes ===

    def feed(self, data: bytes) -> List[object]:
        """Consume newly arrived bytes and return the resulting events."""
        events: List[object] = []
        if not data:
            return events

        if self.state == TransferState.AWAITING_FILE_HEADER:
            self._header_buffer.extend(data)
            self._consume_header(events)
        elif self.state == TransferState.RECEIVING_FILE_BODY:
            self._consume_body(bytes(data), events)
        elif self.state == TransferState.AWAITING_LIST_RESPONSE:
            self._list_buffer.extend(data)
            self._consume_list(events)
        else:
            events.append(UnexpectedData(len(data)))

        return events

    def _consume_header(self, events: List[object]):
        if len(self._header_buffer) < HEADER_SIZE:
            return

        frame = bytes(self._header_buffer[:HEADER_SIZE])
        remaining = bytes(self._header_buffer[HEADER_SIZE:])
        self._header_buffer.clear()

        try:
            header = FileHeader.from_bytes(frame)
        except FrameError as e:
            events.append(self._fail(e))
            if remaining:
                events.append(UnexpectedData(len(remaining)))
            return

        download = self.download
        if header.is_refusal:
            events.append(self._fail(
                FileUnavailable(download.requested_name, header.error, header.message)
            ))
            if remaining:
                events.append(UnexpectedData(len(remaining)))
            return

        if header.name != download.requested_name:
            events.append(self._fail(NameMismatch(download.requested_name, header.name)))
            if remaining:
                events.append(UnexpectedData(len(remaining)))
            return

        download.expected_size = header.size
        self.state = TransferState.RECEIVING_FILE_BODY
        events.append(HeaderAccepted(header))

        if remaining:
            self._consume_body(remaining, events)

    def _consume_body(self, data: bytes, events: List[object]):
        download = self.download
        needed = download.expected_size - download.bytes_received
        body, excess = data[:needed], data[needed:]

        if body:
            download.bytes_received += len(body)
            events.append(BodyChunk(
                download=download,
                data=body,
                bytes_received=download.bytes_received,
                expected_size=download.expected_size,
                percent=download.percent,
            ))

        if download.bytes_received >= download.expected_size:
            events.append(DownloadComplete(
                download=download,
                name=download.requested_name,
                bytes_received=download.bytes_received,
            ))
            self._reset()

        if excess:
            events.append(UnexpectedData(len(excess)))

    def _consume_list(self, events: List[object]):
        try:
            response = ListResponse.from_bytes(bytes(self._list_buffer))
        except FrameTruncated:
            if len(self._list_buffer) > self.max_list_size:
                events.append(self._fail(FrameMalformed(
                    f"Listing exceeded {self.max_list_size} bytes without parsing"
                )))
            return
        except FrameError as e:
            events.append(self._fail(e))
            return

        self._reset()
        events.append(ListReceived(files=response.files))

    # === Connection closed ===

    def eof(self) -> List[object]:
        """Peer closed the stream; finish or abort whatever was pending."""
        events: List[object] = []

        if self.state == TransferState.AWAITING_LIST_RESPONSE:
            try:
                response = ListResponse.from_bytes(bytes(self._list_buffer))
            except FrameError as e:
                events.append(self._fail(FrameMalformed(
                    f"Connection closed before listing completed: {e}"
                )))
            else:
                self._reset()
                events.append(ListReceived(files=response.files))

        elif self.state in (TransferState.AWAITING_FILE_HEADER,
                            TransferState.RECEIVING_FILE_BODY):
            download = self.download
            events.append(self._fail(TransferInterrupted(
                download.requested_name,
                download.bytes_received,
                download.expected_size,
            )))

        return events
