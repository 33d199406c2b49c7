"""
Transfer Module - Protocol, Session, Client, Server

Handles the LIST/GET file transfer protocol over TCP.
"""

from .protocol import (
    HEADER_SIZE, CHUNK_SIZE, FileEntry, FileHeader, ListResponse,
    Command, CommandType
)
from .session import TransferSession, TransferState, ActiveDownload, ActiveUpload
from .events import (
    EventEmitter, ConnectionStateChanged, ListReceived, Progress, FileReceived,
    TransferCancelled, ErrorOccurred, Diagnostic, ServerStatusChanged,
    ClientConnected, ClientDisconnected, FileRequested, SendProgress, FileSent
)
from .client import ClientEngine
from .server import ServerEngine, ConnectionHandler

__all__ = [
    'HEADER_SIZE',
    'CHUNK_SIZE',
    'FileEntry',
    'FileHeader',
    'ListResponse',
    'Command',
    'CommandType',
    'TransferSession',
    'TransferState',
    'ActiveDownload',
    'ActiveUpload',
    'EventEmitter',
    'ConnectionStateChanged',
    'ListReceived',
    'Progress',
    'FileReceived',
    'TransferCancelled',
    'ErrorOccurred',
    'Diagnostic',
    'ServerStatusChanged',
    'ClientConnected',
    'ClientDisconnected',
    'FileRequested',
    'SendProgress',
    'FileSent',
    'ClientEngine',
    'ServerEngine',
    'ConnectionHandler',
]
