"""
Wire Framing

Design Decision: Framing
========================

Options Considered:
1. Delimiter-terminated header ("\\r\\n\\r\\n")
   - Simple, but the delimiter can appear in JSON or in file bytes

2. Fixed-size header frame with a length prefix
   - Receiver knows exactly how many bytes to wait for
   - Body can follow immediately on the same stream

3. Length prefix on every message
   - Most robust, but older peers never sent one for listings

Decision: Fixed 1024-byte header frame + unprefixed JSON listing
- Header: 4-byte big-endian length + JSON + zero padding to 1024 bytes
- Listing: one JSON document, receiver buffers until it parses
- Commands: bare ASCII text, no terminator

Header Frame:
```
+----------------+------------------+-------------------+
| Length (4B)    | Header (JSON, L) | Zero padding      |
+----------------+------------------+-------------------+
|<-------------------- 1024 bytes --------------------->|

Header JSON:
{"name": "a.txt", "size": "12"}
{"name": "missing.txt", "size": "0", "error": "NotFound", "message": "..."}
```

Listing:
```
{"files": [{"name": "a.txt", "size": "12"}, ...], "count": 1}
```

Sizes travel as decimal strings so no JSON reader loses precision.
"""

import json
import struct
from enum import Enum
from typing import Optional, List, Dict, Any
from dataclasses import dataclass, field

from ..errors import FrameTruncated, FrameMalformed, HeaderTooLarge

HEADER_SIZE = 1024
LENGTH_PREFIX = struct.Struct('>I')
MAX_HEADER_PAYLOAD = HEADER_SIZE - LENGTH_PREFIX.size  # 1020

# Body chunk size for the send path (64KB)
CHUNK_SIZE = 64 * 1024

# Upper bound for an unparsed listing before giving up
MAX_LIST_RESPONSE_SIZE = 4 * 1024 * 1024

CMD_LIST = b'LIST'
CMD_GET = b'GET'

# Error codes carried by zero-size headers
ERROR_NOT_FOUND = 'NotFound'
ERROR_EMPTY_FILE = 'EmptyFile'
ERROR_UNSAFE_NAME = 'UnsafeName'
ERROR_TRANSFER_IN_PROGRESS = 'TransferInProgress'

_UNSAFE_CHARS = ('/', '\\', '\x00')


def is_safe_name(name: str) -> bool:
    """True if name is a bare file name (no separators, no '..', not absolute)."""
    if not name or name in ('.', '..'):
        return False
    if any(ch in name for ch in _UNSAFE_CHARS):
        return False
    # Windows drive prefix, e.g. "C:evil"
    if len(name) >= 2 and name[1] == ':':
        return False
    return True


def _parse_size(value: Any) -> int:
    """Accept a decimal string (canonical) or a JSON integer."""
    if isinstance(value, bool):
        raise FrameMalformed(f"Invalid size: {value!r}")
    if isinstance(value, int):
        size = value
    elif isinstance(value, str) and value.isascii() and value.isdigit():
        size = int(value)
    else:
        raise FrameMalformed(f"Invalid size: {value!r}")
    if size < 0:
        raise FrameMalformed(f"Negative size: {size}")
    return size


@dataclass(frozen=True)
class FileEntry:
    """One file in a directory listing."""
    name: str
    size: int

    def __post_init__(self):
        if not is_safe_name(self.name):
            raise ValueError(f"Invalid file name: {self.name!r}")
        if self.size < 0:
            raise ValueError(f"Negative size: {self.size}")

    def to_dict(self) -> dict:
        return {'name': self.name, 'size': str(self.size)}

    @classmethod
    def from_dict(cls, data: Any) -> 'FileEntry':
        if not isinstance(data, dict):
            raise FrameMalformed(f"File entry is not an object: {data!r}")
        name = data.get('name')
        if not isinstance(name, str):
            raise FrameMalformed(f"File entry without a name: {data!r}")
        size = _parse_size(data.get('size'))
        try:
            return cls(name=name, size=size)
        except ValueError as e:
            raise FrameMalformed(str(e)) from e


@dataclass
class ListResponse:
    """Answer to LIST, in directory scan order."""
    files: List[FileEntry] = field(default_factory=list)

    def to_bytes(self) -> bytes:
        """Serialize listing to bytes."""
        doc = {
            'files': [entry.to_dict() for entry in self.files],
            'count': len(self.files),
        }
        return json.dumps(doc).encode('utf-8')

    @classmethod
    def from_bytes(cls, data: bytes) -> 'ListResponse':
        """
        Parse a listing.

        Raises:
            FrameTruncated: document is not complete (yet)
            FrameMalformed: document parsed but is not a listing
        """
        try:
            doc = json.loads(data.decode('utf-8'))
        except (UnicodeDecodeError, ValueError) as e:
            raise FrameTruncated(f"Incomplete listing: {e}") from e

        if not isinstance(doc, dict) or not isinstance(doc.get('files'), list):
            raise FrameMalformed("Listing must be an object with a 'files' array")

        files = [FileEntry.from_dict(item) for item in doc['files']]

        count = doc.get('count')
        if count is not None and count != len(files):
            raise FrameMalformed(f"Listing count {count} != {len(files)} entries")

        return cls(files=files)


@dataclass(frozen=True)
class FileHeader:
    """
    Fixed-size frame preceding a file body.

    size == 0 means "nothing follows"; error/message say why.
    """
    name: str
    size: int
    error: Optional[str] = None
    message: Optional[str] = None

    @property
    def is_refusal(self) -> bool:
        return self.size == 0 or self.error is not None

    def to_dict(self) -> Dict[str, str]:
        header = {'name': self.name, 'size': str(self.size)}
        if self.error:
            header['error'] = self.error
        if self.message:
            header['message'] = self.message
        return header

    def to_bytes(self) -> bytes:
        """Serialize header to exactly HEADER_SIZE bytes."""
        if self.size < 0:
            raise ValueError(f"Negative size: {self.size}")

        payload = json.dumps(self.to_dict()).encode('utf-8')
        if len(payload) > MAX_HEADER_PAYLOAD:
            raise HeaderTooLarge(
                f"Header payload is {len(payload)} bytes, limit {MAX_HEADER_PAYLOAD}"
            )

        frame = LENGTH_PREFIX.pack(len(payload)) + payload
        return frame.ljust(HEADER_SIZE, b'\x00')

    @classmethod
    def from_bytes(cls, data: bytes) -> 'FileHeader':
        """
        Decode a header from the first HEADER_SIZE bytes of data.

        Raises:
            FrameTruncated: fewer than HEADER_SIZE bytes available
            FrameMalformed: bad length prefix or payload
        """
        if len(data) < HEADER_SIZE:
            raise FrameTruncated(f"Header needs {HEADER_SIZE} bytes, have {len(data)}")

        (length,) = LENGTH_PREFIX.unpack_from(data)
        if length > MAX_HEADER_PAYLOAD:
            raise FrameMalformed(f"Header length {length} exceeds {MAX_HEADER_PAYLOAD}")

        start = LENGTH_PREFIX.size
        payload = bytes(data[start:start + length])
        try:
            doc = json.loads(payload.decode('utf-8'))
        except (UnicodeDecodeError, ValueError) as e:
            raise FrameMalformed(f"Invalid header payload: {e}") from e

        if not isinstance(doc, dict) or not isinstance(doc.get('name'), str):
            raise FrameMalformed(f"Header without a name: {doc!r}")

        error = doc.get('error')
        message = doc.get('message')
        return cls(
            name=doc['name'],
            size=_parse_size(doc.get('size')),
            error=str(error) if error is not None else None,
            message=str(message) if message is not None else None,
        )

    @classmethod
    def refusal(cls, name: str, error: str, message: str = '') -> 'FileHeader':
        """Zero-size header telling the client no body follows."""
        header = cls(name=name, size=0, error=error, message=message or None)
        try:
            header.to_bytes()
        except HeaderTooLarge:
            # Name too long to echo back
            header = cls(name='', size=0, error=error, message=message or None)
        return header


class CommandType(Enum):
    """Client command verbs."""
    LIST = 'LIST'
    GET = 'GET'


@dataclass(frozen=True)
class Command:
    """A client request."""
    type: CommandType
    name: str = ''

    def to_bytes(self) -> bytes:
        if self.type == CommandType.LIST:
            return CMD_LIST
        return CMD_GET + b' ' + self.name.encode('utf-8')

    @classmethod
    def list(cls) -> 'Command':
        return cls(type=CommandType.LIST)

    @classmethod
    def get(cls, name: str) -> 'Command':
        return cls(type=CommandType.GET, name=name)

    @classmethod
    def from_bytes(cls, data: bytes) -> 'Command':
        """Parse a single command (one trailing newline tolerated)."""
        if data.endswith(b'\r\n'):
            data = data[:-2]
        elif data.endswith(b'\n'):
            data = data[:-1]

        if data == CMD_LIST:
            return cls.list()

        prefix = CMD_GET + b' '
        if data.startswith(prefix) and len(data) > len(prefix):
            try:
                name = data[len(prefix):].decode('utf-8')
            except UnicodeDecodeError as e:
                raise FrameMalformed(f"File name is not UTF-8: {e}") from e
            if '\n' in name or '\r' in name:
                raise FrameMalformed(f"File name contains a newline: {name!r}")
            return cls.get(name)

        raise FrameMalformed(f"Unknown command: {data[:64]!r}")


def split_commands(data: bytes) -> List[bytes]:
    """
    Split one received chunk into raw commands.

    Commands carry no terminator, so a chunk without newlines is one
    command; newline-separated chunks hold several.
    """
    if b'\n' not in data.rstrip(b'\r\n'):
        return [data] if data.strip() else []
    return [line for line in data.splitlines() if line.strip()]
