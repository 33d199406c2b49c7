"""
tcpshare - LIST/GET file sharing over a single TCP stream

A server publishes one flat directory; clients fetch its listing and
download files one at a time.
"""

# transfer must be imported before file: file.storage depends on transfer.protocol
from .transfer import (
    ClientEngine, ServerEngine, TransferSession, TransferState,
    FileEntry, FileHeader, ListResponse, Command, CommandType
)
from .file import SharedDirectory
from .controller import TransferController, RemoteFile
from .errors import (
    TransferError, ConnectError, NotConnected, TransferInProgress, BindError,
    FrameError, FrameTruncated, FrameMalformed, HeaderTooLarge,
    ProtocolError, NameMismatch, FileUnavailable, UnsafeName,
    TransferIOError, TransferInterrupted
)

__version__ = '1.0.0'

__all__ = [
    'ClientEngine',
    'ServerEngine',
    'TransferSession',
    'TransferState',
    'FileEntry',
    'FileHeader',
    'ListResponse',
    'Command',
    'CommandType',
    'SharedDirectory',
    'TransferController',
    'RemoteFile',
    'TransferError',
    'ConnectError',
    'NotConnected',
    'TransferInProgress',
    'BindError',
    'FrameError',
    'FrameTruncated',
    'FrameMalformed',
    'HeaderTooLarge',
    'ProtocolError',
    'NameMismatch',
    'FileUnavailable',
    'UnsafeName',
    'TransferIOError',
    'TransferInterrupted',
]
