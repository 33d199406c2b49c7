"""
Shared Directory & Download Storage

Design Decision: Listing Order
==============================

Options Considered:
1. Raw readdir order
   - Filesystem dependent (hash order on ext4), differs run to run

2. Sorted by modification time
   - Changes whenever someone touches a file

3. Case-insensitive name order
   - What the desktop file servers this protocol grew up with produced
   - Stable, predictable for users

Decision: Case-insensitive name order, regular non-hidden files only.

Path Safety:
- Only bare file names are accepted (see protocol.is_safe_name)
- The resolved path must stay inside the shared directory, so a symlink
  pointing elsewhere is refused as well
"""

import logging
from pathlib import Path
from typing import List, Tuple
from dataclasses import dataclass

import aiofiles
import aiofiles.os

from ..errors import UnsafeName, TransferIOError
from ..transfer.protocol import FileEntry, ListResponse, is_safe_name

logger = logging.getLogger(__name__)


@dataclass
class DirectoryStats:
    """Statistics about the shared directory."""
    file_count: int
    total_bytes: int


class SharedDirectory:
    """
    Read-only view of the server's flat shared directory.

    Provides:
    - Listing (name + size) in a stable order
    - Safe resolution of requested names
    """

    def __init__(self, root: Path):
        """
        Args:
            root: Directory to share (must already exist)
        """
        self.root = Path(root)

    def exists(self) -> bool:
        return self.root.is_dir()

    async def list_files(self) -> List[FileEntry]:
        """Scan the directory (non-recursive)."""
        entries = []

        with await aiofiles.os.scandir(self.root) as it:
            for entry in it:
                if entry.name.startswith('.') or not is_safe_name(entry.name):
                    continue
                try:
                    if not entry.is_file():
                        continue
                    size = entry.stat().st_size
                except OSError as e:
                    # Deleted or unreadable between readdir and stat
                    logger.debug(f"Skipping {entry.name}: {e}")
                    continue
                entries.append(FileEntry(name=entry.name, size=size))

        entries.sort(key=lambda e: (e.name.lower(), e.name))
        return entries

    async def list_response(self) -> ListResponse:
        return ListResponse(files=await self.list_files())

    def resolve(self, name: str) -> Path:
        """
        Map a requested name to a path inside the shared directory.

        Raises:
            UnsafeName: name is not a bare file name or escapes the directory
        """
        if not is_safe_name(name):
            raise UnsafeName(name)

        root = self.root.resolve()
        path = (root / name).resolve()
        if path.parent != root:
            raise UnsafeName(name)

        return path

    async def stat_file(self, name: str) -> Tuple[Path, int]:
        """
        Re-check a file at request time.

        Returns:
            (path, size) tuple

        Raises:
            UnsafeName: see resolve()
            FileNotFoundError: missing or not a regular file
        """
        path = self.resolve(name)
        if not await aiofiles.os.path.isfile(path):
            raise FileNotFoundError(f"File not found: {name}")
        stat = await aiofiles.os.stat(path)
        return path, stat.st_size

    async def get_stats(self) -> DirectoryStats:
        files = await self.list_files()
        return DirectoryStats(
            file_count=len(files),
            total_bytes=sum(f.size for f in files),
        )


async def open_destination(directory: Path, name: str):
    """
    Create directory if needed and open directory/name for writing.

    Returns:
        (path, aiofiles handle) tuple

    Raises:
        UnsafeName: name would land outside directory
        TransferIOError: directory or file could not be created
    """
    if not is_safe_name(name):
        raise UnsafeName(name)

    directory = Path(directory)
    try:
        await aiofiles.os.makedirs(directory, exist_ok=True)
    except OSError as e:
        raise TransferIOError(f"Cannot create directory {directory}: {e}", name=name) from e

    path = directory / name
    try:
        handle = await aiofiles.open(path, 'wb')
    except OSError as e:
        raise TransferIOError(f"Cannot open {path} for writing: {e}", name=name) from e

    return path, handle


async def remove_quietly(path: Path):
    """Delete a file that may already be gone."""
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        pass
