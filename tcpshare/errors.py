"""
Transfer Errors

Every failure the protocol can surface, rooted at TransferError so callers
can catch the whole family at once.

Recoverable vs fatal:
- FrameTruncated just means "buffer more bytes and try again"
- FrameMalformed / HeaderTooLarge abort the current exchange only
- ProtocolError aborts the current transfer, the connection stays usable
- TransferInterrupted / TransferIOError abort the transfer with context
"""

from typing import Optional


class TransferError(Exception):
    """Base exception for file transfer errors."""
    pass


class ConnectError(TransferError):
    """Connection refused, host unreachable, timed out, or already connected."""
    pass


class NotConnected(TransferError):
    """Operation needs an established connection."""
    pass


class TransferInProgress(TransferError):
    """Another exchange is already active on this connection."""
    pass


class BindError(TransferError):
    """Server could not listen on the requested port."""
    pass


# === Framing ===

class FrameError(TransferError):
    """Bytes on the wire could not be turned into a frame."""
    pass


class FrameTruncated(FrameError):
    """Not enough bytes yet; buffer more and retry."""
    pass


class FrameMalformed(FrameError):
    """Bytes can never decode into a valid frame."""
    pass


class HeaderTooLarge(FrameError):
    """Encoded header payload does not fit in the fixed header frame."""
    pass


# === Protocol ===

class ProtocolError(TransferError):
    """Peer answered with something the protocol does not allow."""
    pass


class NameMismatch(ProtocolError):
    """Header names a different file than the one requested."""

    def __init__(self, requested: str, received: str):
        super().__init__(f"Requested {requested!r} but server sent {received!r}")
        self.requested = requested
        self.received = received


class FileUnavailable(ProtocolError):
    """Server sent a zero-size header: missing, empty, unsafe or refused."""

    def __init__(self, name: str, code: Optional[str] = None,
                 message: Optional[str] = None):
        detail = message or "file not found or empty"
        if code:
            detail = f"{detail} ({code})"
        super().__init__(f"{name}: {detail}")
        self.name = name
        self.code = code


class UnsafeName(ProtocolError):
    """Requested name is not a bare file name inside the shared directory."""

    def __init__(self, name: str):
        super().__init__(f"Unsafe file name: {name!r}")
        self.name = name


# === Transfer aborts ===

class TransferIOError(TransferError):
    """Local file could not be created, opened, or written."""

    def __init__(self, message: str, name: str = '', bytes_received: int = 0):
        super().__init__(message)
        self.name = name
        self.bytes_received = bytes_received


class TransferInterrupted(TransferError):
    """Connection went away before the file body was complete."""

    def __init__(self, name: str, bytes_received: int, expected_size: int):
        super().__init__(
            f"Download interrupted: {name} "
            f"(received {bytes_received}/{expected_size} bytes)"
        )
        self.name = name
        self.bytes_received = bytes_received
        self.expected_size = expected_size
